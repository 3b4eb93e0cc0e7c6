"""ポリシー・ルール定義のMCPリソース。"""

from pathlib import Path

import yaml
from fastmcp import FastMCP

from bosun.models.policy import PolicyConfig


def register_policy_resources(mcp: FastMCP, config_dir: Path, policy: PolicyConfig) -> None:
    """ポリシー関連のMCPリソースを登録する。"""

    @mcp.resource("bosun://policy")
    async def scoring_policy() -> str:
        """スコアリングポリシーを取得する。

        ディメンションの重み、重大度別ペナルティ、合格閾値を返します。
        """
        return yaml.dump({"policy": policy.model_dump()}, allow_unicode=True, default_flow_style=False)

    @mcp.resource("bosun://validation-rules")
    async def validation_rules() -> str:
        """組み込みバリデーションルール定義を取得する。"""
        rules_dir = config_dir / "validation-rules"
        all_rules: dict[str, list[dict]] = {"rules": []}  # type: ignore[type-arg]
        if rules_dir.exists():
            for rule_file in sorted(rules_dir.glob("*.yaml")):
                with open(rule_file, encoding="utf-8") as f:
                    data = yaml.safe_load(f)
                if data and "rules" in data:
                    all_rules["rules"].extend(data["rules"])
        return yaml.dump(all_rules, allow_unicode=True, default_flow_style=False)

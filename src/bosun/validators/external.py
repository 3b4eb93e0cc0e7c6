"""外部バリデータの許可リストと引数リストの組み立て。"""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from bosun.models.process import ToolSpec
from bosun.models.validation import ArtifactKind
from bosun.security.inputs import Identifier
from bosun.validators.powershell import build_arm_ttk_script

# 外部バリデータの許可リスト
BUILTIN_TOOLS: dict[str, ToolSpec] = {
    "arm-ttk": ToolSpec(
        name="arm-ttk",
        executable="pwsh",
        parser="arm_ttk",
        description="Azure Resource Manager Template Toolkit (Test-AzTemplate)",
        dimensions=frozenset({"structure", "security", "compliance"}),
        artifact_kinds=frozenset({"template", "ui_definition", "view_definition", "package_root"}),
    ),
    "template-analyzer": ToolSpec(
        name="template-analyzer",
        executable="TemplateAnalyzer",
        parser="sarif",
        description="ARM Template Best Practice Analyzer (SARIF output)",
        # 5: 違反あり（ツール自体は正常終了）
        ok_exit_codes=frozenset({0, 5}),
        dimensions=frozenset({"security"}),
        artifact_kinds=frozenset({"template", "package_root"}),
    ),
    "bicep": ToolSpec(
        name="bicep",
        executable="bicep",
        parser="exit_code",
        description="Bicep CLI decompile check (exit code only)",
        ok_exit_codes=frozenset({0, 1}),
        dimensions=frozenset({"structure"}),
        artifact_kinds=frozenset({"template"}),
    ),
    "az-deployment": ToolSpec(
        name="az-deployment",
        executable="az",
        parser="az_deployment",
        description="Azure CLI preflight validation (az deployment group validate)",
        ok_exit_codes=frozenset({0, 1}),
        dimensions=frozenset({"structure", "compliance"}),
        artifact_kinds=frozenset({"template"}),
        # サービスプリンシパルの資格情報は子プロセスの環境変数でのみ渡す
        secret_channel="env",
        extra_env={"AZURE_CORE_NO_COLOR": "1", "AZURE_CORE_ONLY_SHOW_ERRORS": "1"},
    ),
}


class ToolContext(BaseModel):
    """引数リストの組み立てに使う検証済みの値。"""

    model_config = ConfigDict(frozen=True)

    arm_ttk_module_dir: Path = Path("/opt/arm-ttk/arm-ttk")
    skip_tests: tuple[Identifier, ...] = ()
    subscription_id: Identifier | None = None
    resource_group: Identifier | None = None
    secrets: dict[str, str] = Field(default_factory=dict, repr=False)


def select_tools(enabled: list[str], kind: ArtifactKind, tools: dict[str, ToolSpec] | None = None) -> list[ToolSpec]:
    """有効化されたツールのうち、アーティファクト種別に適用可能なものを返す。"""
    catalog = tools if tools is not None else BUILTIN_TOOLS
    return [catalog[name] for name in enabled if name in catalog and kind in catalog[name].artifact_kinds]


def build_argv(spec: ToolSpec, target_path: Path, kind: ArtifactKind, context: ToolContext) -> list[str] | None:
    """ツールごとの引数リストを組み立てる。

    target_pathはvalidate_pathで検証済みであること。実行ファイル名は含まない。

    Returns:
        引数リスト。必要な値が揃わず実行できない場合はNone。
    """
    path = str(target_path)
    if spec.name == "arm-ttk":
        script = build_arm_ttk_script(context.arm_ttk_module_dir, target_path, context.skip_tests)
        return ["-NoProfile", "-NonInteractive", "-Command", script]
    if spec.name == "template-analyzer":
        subcommand = "analyze-directory" if kind == "package_root" else "analyze-template"
        return [subcommand, path, "--report-format", "Sarif"]
    if spec.name == "bicep":
        return ["decompile", path, "--stdout"]
    if spec.name == "az-deployment":
        if context.subscription_id is None or context.resource_group is None:
            return None
        return [
            "deployment",
            "group",
            "validate",
            "--subscription",
            context.subscription_id.value,
            "--resource-group",
            context.resource_group.value,
            "--template-file",
            path,
            "--output",
            "json",
        ]
    # テスト等で登録されたカスタムツールは対象パスのみを渡す
    return [path]

"""テスト共通フィクスチャ。"""

import copy
from pathlib import Path
from typing import Any

import pytest

from bosun.config import BosunConfig
from bosun.models.policy import PolicyConfig
from bosun.scoring.scorer import QualityScorer
from bosun.security.inputs import PathValidator
from bosun.services.invoker import ProcessInvoker
from bosun.services.pipeline import ValidationPipeline
from bosun.storage.service import ReportStore
from bosun.validators.template import TemplateRuleChecker

SCHEMA = "https://schema.management.azure.com/schemas/2019-04-01/deploymentTemplate.json#"

# 組み込みルールで1件もFindingが出ないテンプレート
CLEAN_TEMPLATE: dict[str, Any] = {
    "$schema": SCHEMA,
    "contentVersion": "1.0.0.0",
    "metadata": {"description": "Storage account for the marketplace offer"},
    "parameters": {
        "storageAccountName": {
            "type": "string",
            "metadata": {"description": "Name of the storage account"},
        },
        "location": {
            "type": "string",
            "defaultValue": "[resourceGroup().location]",
            "metadata": {"description": "Location for all resources"},
        },
    },
    "resources": [
        {
            "type": "Microsoft.Storage/storageAccounts",
            "apiVersion": "2023-01-01",
            "name": "[parameters('storageAccountName')]",
            "location": "[parameters('location')]",
            "sku": {"name": "Standard_LRS"},
            "kind": "StorageV2",
            "properties": {"supportsHttpsTrafficOnly": True, "minimumTlsVersion": "TLS1_2"},
        }
    ],
    "outputs": {
        "storageAccountId": {
            "type": "string",
            "value": "[resourceId('Microsoft.Storage/storageAccounts', parameters('storageAccountName'))]",
        }
    },
}


@pytest.fixture
def clean_template() -> dict[str, Any]:
    """Findingの出ないテンプレート（テストごとに独立したコピー）。"""
    return copy.deepcopy(CLEAN_TEMPLATE)


@pytest.fixture
def tmp_data_dir(tmp_path: Path) -> Path:
    """テスト用の一時データディレクトリ。"""
    return tmp_path / "bosun-test"


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """検証対象を置く許可ルート。"""
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def config_dir() -> Path:
    """設定ファイルディレクトリ。"""
    return Path(__file__).parent.parent / "config"


@pytest.fixture
def policy() -> PolicyConfig:
    return PolicyConfig.default()


@pytest.fixture
def rule_checker(config_dir: Path) -> TemplateRuleChecker:
    return TemplateRuleChecker(config_dir=config_dir)


@pytest.fixture
def store(tmp_data_dir: Path) -> ReportStore:
    """テスト用ReportStore。"""
    return ReportStore(data_dir=tmp_data_dir)


@pytest.fixture
def pipeline(workspace: Path, rule_checker: TemplateRuleChecker, policy: PolicyConfig) -> ValidationPipeline:
    """外部バリデータを使わず組み込みルールのみで検証するパイプライン。"""
    return ValidationPipeline(
        path_validator=PathValidator([workspace]),
        invoker=ProcessInvoker([]),
        scorer=QualityScorer(policy),
        rule_checker=rule_checker,
        enabled_tools=[],
    )


@pytest.fixture
def bosun_config(tmp_data_dir: Path, config_dir: Path, workspace: Path) -> BosunConfig:
    """テスト用BosunConfig。外部バリデータは無効。"""
    return BosunConfig(
        data_dir=tmp_data_dir,
        config_dir=config_dir,
        allowed_roots=[workspace],
        enabled_tools=[],
    )

"""ToolSpec.parser名 → パーサー関数の対応表。"""

from bosun.models.process import ParserName
from bosun.parsers.arm_ttk import parse_arm_ttk
from bosun.parsers.az_deployment import parse_az_deployment
from bosun.parsers.base import OutputParser
from bosun.parsers.exit_code import parse_exit_code
from bosun.parsers.sarif import parse_sarif

PARSERS: dict[ParserName, OutputParser] = {
    "arm_ttk": parse_arm_ttk,
    "sarif": parse_sarif,
    "az_deployment": parse_az_deployment,
    "exit_code": parse_exit_code,
}


def get_parser(name: ParserName) -> OutputParser:
    return PARSERS[name]

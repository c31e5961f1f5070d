"""
フロー定義カタログ

パッケージに同梱された YAML フロー定義の一覧と読み込みを提供する。
fragments/ 配下は include で参照される共有ステップ列（単体では実行しない）。
"""

from __future__ import annotations

from pathlib import Path

from ..core.errors import FlowDefinitionError
from ..dsl.parser import FlowParser
from ..dsl.schema import FlowDefinition

FLOWS_DIR = Path(__file__).parent
FRAGMENTS_DIR = FLOWS_DIR / "fragments"


def list_flows() -> list[str]:
    """同梱フロー名をソート済みリストで返す。"""
    return sorted(p.stem for p in FLOWS_DIR.glob("*.yaml"))


def flow_path(name: str) -> Path:
    """フロー名から定義ファイルのパスを返す。

    Raises:
        FlowDefinitionError: 未定義のフロー名の場合
    """
    path = FLOWS_DIR / f"{name}.yaml"
    if not path.exists():
        raise FlowDefinitionError(
            f"未定義のフローです: {name}（定義済み: {', '.join(list_flows())}）"
        )
    return path


def load_flow(name: str, *, require_terminal: bool = True) -> FlowDefinition:
    """同梱フローを読み込む。"""
    parser = FlowParser(fragments_dir=FRAGMENTS_DIR)
    return parser.load(flow_path(name), require_terminal=require_terminal)

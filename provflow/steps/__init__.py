"""
ステップライブラリモジュール

主要エクスポート:
  - StepRegistry: ステップハンドラの登録・検索・一覧
  - StepHandler: ステップハンドラの共通 Protocol
  - StepContext: ステップ実行コンテキスト
  - StepInfo: ステップのメタ情報
  - create_default_registry: 標準ステップ登録済みレジストリの生成
"""

from .builtin import BRANCH_STEP_INFO, create_default_registry
from .registry import StepContext, StepHandler, StepInfo, StepRegistry

__all__ = [
    "BRANCH_STEP_INFO",
    "StepContext",
    "StepHandler",
    "StepInfo",
    "StepRegistry",
    "create_default_registry",
]

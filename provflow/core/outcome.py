"""
Outcome — フロー実行の終端結果

1 回のフロー実行につき必ず 1 つだけ生成される。

  - Success: 秘密値（またはフローが宣言した成功値）を得た
  - NeedsHumanInput: 人間の操作が必要（CAPTCHA / 2FA / 抽出失敗 等）
  - PartialSuccess: 一部完了（アカウント作成済み・メール確認待ち 等）
  - Failure: 回復不能なエラー
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

MANUAL_EXTRACTION_NEEDED = "MANUAL_EXTRACTION_NEEDED"
EMAIL_CONFIRMATION_NEEDED = "EMAIL_CONFIRMATION_NEEDED"


@dataclass(frozen=True)
class Success:
    """成功。secret は repr に含めない。"""

    secret: str = field(repr=False)
    kind: str = field(default="success", init=False)


@dataclass(frozen=True)
class NeedsHumanInput:
    """人間の操作待ち。

    Attributes:
        reason: 人間が必要な理由（"CAPTCHA", "2FA" 等）
        sentinel: 追加で出力する機械判定用トークン（抽出失敗時のみ）
    """

    reason: str
    sentinel: Optional[str] = None
    kind: str = field(default="needs_human", init=False)


@dataclass(frozen=True)
class PartialSuccess:
    """部分的な成功。sentinel は `<KEY>=<sentinel>` として出力される。"""

    note: str
    sentinel: str = EMAIL_CONFIRMATION_NEEDED
    kind: str = field(default="partial", init=False)


@dataclass(frozen=True)
class Failure:
    """回復不能な失敗。"""

    error: str
    kind: str = field(default="failure", init=False)


Outcome = Union[Success, NeedsHumanInput, PartialSuccess, Failure]

"""
例外定義 — フロー実行エンジンのエラー分類

全ての例外は ProvflowError を基底とする。

分類:
  - MissingCredential: 必須の認証情報が欠落（ブラウザ起動前に検出）
  - UnknownService: 未定義のサービス ID
  - ElementNotFound: LocatorSet の全候補が可視にならなかった
  - UnexpectedPageState: 期待したページ状態に到達しなかった
  - ExtractionFailure: 秘密値の抽出に失敗（NeedsHumanInput に降格される）
  - SessionClosedError: 終了済みセッションへのアクセス
  - FlowDefinitionError: フロー定義の構造的な不備
"""

from __future__ import annotations

from typing import Sequence


class ProvflowError(Exception):
    """provflow の全例外の基底クラス。"""


class MissingCredential(ProvflowError):
    """必須の認証情報キーが存在しない、または空の場合のエラー。

    Attributes:
        service_id: 対象サービス ID
        missing_fields: 欠落しているキー名（宣言順）
    """

    def __init__(self, service_id: str, missing_fields: Sequence[str]) -> None:
        self.service_id = service_id
        self.missing_fields = list(missing_fields)
        super().__init__(
            f"'{service_id}' の認証情報が不足しています: "
            f"{', '.join(self.missing_fields)}"
        )


class UnknownService(ProvflowError, KeyError):
    """認証情報の定義がないサービス ID が指定された場合のエラー。"""

    def __init__(self, service_id: str) -> None:
        self.service_id = service_id
        super().__init__(f"未定義のサービスです: {service_id}")

    def __str__(self) -> str:
        return self.args[0]


class ElementNotFound(ProvflowError):
    """LocatorSet のどの候補もタイムアウトまでに可視にならなかった場合のエラー。

    Attributes:
        field: 論理フィールド名（"email box" 等）
        details: 候補ごとの失敗理由
    """

    def __init__(self, field: str, details: str = "") -> None:
        self.field = field
        self.details = details
        message = f"要素が見つかりません: {field}"
        if details:
            message += f"\n試行結果:\n{details}"
        super().__init__(message)


class UnexpectedPageState(ProvflowError):
    """ページが想定したいずれの状態にもならなかった場合のエラー。"""


class ExtractionFailure(ProvflowError):
    """秘密値の抽出に失敗した場合のエラー。

    Runner はこのエラーを Failure ではなく NeedsHumanInput に降格する。
    """


class SessionClosedError(ProvflowError, RuntimeError):
    """終了済み（または未起動）のブラウザセッションにアクセスした場合のエラー。"""


class FlowDefinitionError(ProvflowError, ValueError):
    """フロー定義の読み込み・構造検証に失敗した場合のエラー。"""

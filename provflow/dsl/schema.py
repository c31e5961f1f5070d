"""
DSL スキーマ定義 — セレクタ・LocatorSet・ステップ・フローモデル

YAML で記述されたフロー定義の Pydantic v2 モデルを定義する。
ステップは `{ stepType: params, ... }` 形式で、キー名によって種別が決まる。
各モデルは extra="forbid" とし、Union の自動判別を一意にする。

フローは構築時に「必ず終端ステップに到達する」ことを検証する。
終端ステップ: halt, extractSecret（いずれも必ず Outcome を生成する）
"""

from __future__ import annotations

import re
from typing import ClassVar, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)


# ---------------------------------------------------------------------------
# 単一セレクタ定義
# ---------------------------------------------------------------------------

class _Descriptor(BaseModel):
    model_config = ConfigDict(extra="forbid")

    strict: bool = Field(
        default=False,
        description="True の場合、複数要素ヒットを失敗として扱う（False は先頭要素を採用）",
    )


class TestIdSelector(_Descriptor):
    """data-testid 属性によるセレクタ。"""

    __test__ = False

    testId: str = Field(..., description="data-testid 属性の値")


class RoleSelector(_Descriptor):
    """ARIA ロールによるセレクタ。name で同一ロールの要素を区別する。"""

    role: str = Field(..., description="ARIA ロール名（button, textbox, link 等）")
    name: Optional[str] = Field(default=None, description="アクセシブルネーム")
    exact: Optional[bool] = Field(default=None, description="name の完全一致検索")


class LabelSelector(_Descriptor):
    """ラベルテキストによるセレクタ。"""

    label: str = Field(..., description="ラベルテキスト")


class PlaceholderSelector(_Descriptor):
    """placeholder 属性によるセレクタ。"""

    placeholder: str = Field(..., description="プレースホルダーテキスト")


class CssSelector(_Descriptor):
    """CSS セレクタ。text を補助条件として絞り込める。"""

    css: str = Field(..., description="CSS セレクタ文字列")
    text: Optional[str] = Field(default=None, description="テキスト内容による補助条件")


class TextSelector(_Descriptor):
    """テキスト内容によるセレクタ。"""

    text: str = Field(..., description="テキスト内容")


SingleSelector = Union[
    TestIdSelector,
    RoleSelector,
    LabelSelector,
    PlaceholderSelector,
    CssSelector,
    TextSelector,
]


class LocatorSet(BaseModel):
    """同一の論理フィールドを指す要素記述子の順序付き集合。

    ページのバリアント（A/B テスト等）ごとに属性名が異なる同じフィールドを、
    上から順に試行して最初に可視になったものを採用する。
    順序は優先度を表す（最も安定した記述子を先頭に置く）。
    """

    model_config = ConfigDict(extra="forbid")

    field: str = Field(..., description="論理フィールド名（エラーメッセージ・ログ用）")
    any: list[SingleSelector] = Field(
        ..., min_length=1, description="記述子リスト（上から順に試行）",
    )
    each: Optional[int] = Field(
        default=None, ge=1,
        description="記述子ごとのポーリング上限（ミリ秒）。None で全体タイムアウトを等分",
    )


# ---------------------------------------------------------------------------
# ページ状態の述語
# ---------------------------------------------------------------------------

class Condition(BaseModel):
    """ページ状態の述語。visible / hidden / url / text のいずれか 1 つを指定する。

    timeout までに成立しなければ False として扱う（ブロックし続けない）。
    url と text は正規表現（text は大文字小文字を区別しない）。
    """

    model_config = ConfigDict(extra="forbid")

    visible: Optional[LocatorSet] = None
    hidden: Optional[LocatorSet] = None
    url: Optional[str] = None
    text: Optional[str] = None
    timeout: int = Field(default=3000, ge=0, description="述語の待機上限（ミリ秒）")

    @model_validator(mode="after")
    def _exactly_one(self) -> "Condition":
        given = [k for k in ("visible", "hidden", "url", "text") if getattr(self, k) is not None]
        if len(given) != 1:
            raise ValueError(
                "visible / hidden / url / text のいずれか 1 つを指定してください"
                f"（指定: {given or 'なし'}）"
            )
        for pattern in (self.url, self.text):
            if pattern is not None:
                _check_regex(pattern)
        return self

    def describe(self) -> str:
        """述語の人間可読な説明を返す。"""
        if self.visible is not None:
            return f"visible({self.visible.field})"
        if self.hidden is not None:
            return f"hidden({self.hidden.field})"
        if self.url is not None:
            return f"url~/{self.url}/"
        return f"text~/{self.text}/i"


# ---------------------------------------------------------------------------
# 抽出戦略
# ---------------------------------------------------------------------------

class ValueStrategy(BaseModel):
    """input 要素の value を読む。"""

    model_config = ConfigDict(extra="forbid")
    value: LocatorSet


class AttrStrategy(BaseModel):
    """要素の属性値を読む（data-clipboard-text, value 等）。"""

    model_config = ConfigDict(extra="forbid")
    attr: str
    by: LocatorSet


class TextStrategy(BaseModel):
    """要素の表示テキストを読む。"""

    model_config = ConfigDict(extra="forbid")
    text: LocatorSet


ExtractStrategy = Union[ValueStrategy, AttrStrategy, TextStrategy]


# ===========================================================================
# ステップモデル定義
# ===========================================================================

class _Step(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    kind: ClassVar[str] = ""
    terminal: ClassVar[bool] = False

    name: Optional[str] = Field(default=None, description="ステップ名（任意）")

    def display_name(self, index: int) -> str:
        return self.name or f"{self.kind}_{index}"


class NavigateStep(_Step):
    """指定 URL へ遷移する。遷移後に domcontentloaded を待機する。"""

    kind: ClassVar[str] = "navigate"
    navigate: str = Field(..., description="遷移先 URL（変数展開可）")


class FillStep(_Step):
    """入力フィールドに値を入力する。secret: true で値をログからマスクする。"""

    kind: ClassVar[str] = "fill"
    fill: LocatorSet
    value: str
    secret: bool = False
    timeout: Optional[int] = None


class ClickStep(_Step):
    """要素をクリックする。"""

    kind: ClassVar[str] = "click"
    click: LocatorSet
    timeout: Optional[int] = None


class CheckStep(_Step):
    """チェックボックスをチェック状態にする。"""

    kind: ClassVar[str] = "check"
    check: LocatorSet
    timeout: Optional[int] = None


class WaitForTextStep(_Step):
    """テキスト（正規表現）の出現を待機する。

    タイムアウト時は False 扱いで続行する。required: true の場合は
    UnexpectedPageState とする。
    """

    kind: ClassVar[str] = "waitForText"
    waitForText: str
    timeout: int = Field(default=10_000, ge=0)
    required: bool = False

    @field_validator("waitForText")
    @classmethod
    def _valid_regex(cls, v: str) -> str:
        return _check_regex(v)


class ExpectStep(_Step):
    """述語が成立することを要求する。不成立は UnexpectedPageState。"""

    kind: ClassVar[str] = "expect"
    expect: Condition
    message: Optional[str] = None


class ExtractSecretStep(_Step):
    """戦略を順に試して秘密値を抽出する（終端ステップ）。

    空値・欠落・pattern 不一致は抽出失敗として NeedsHumanInput になる。
    """

    kind: ClassVar[str] = "extractSecret"
    terminal: ClassVar[bool] = True
    extractSecret: str = Field(..., description="抽出対象の説明")
    strategies: list[ExtractStrategy] = Field(..., min_length=1)
    pattern: Optional[str] = Field(default=None, description="値が一致すべき正規表現")
    timeout: int = Field(default=5000, ge=0, description="戦略ごとの要素待機上限（ミリ秒）")

    @field_validator("pattern")
    @classmethod
    def _valid_regex(cls, v: Optional[str]) -> Optional[str]:
        return _check_regex(v) if v is not None else v


class SuspendStep(_Step):
    """人間の操作を待つ中断点。

    until は人間の操作完了を示すページ状態。人間待ち時間が 0 の場合、
    または until が成立しない場合は NeedsHumanInput(reason) で停止する。
    """

    kind: ClassVar[str] = "suspend"
    suspend: str = Field(..., description="人間が必要な理由（CAPTCHA, 2FA 等）")
    prompt: Optional[str] = Field(default=None, description="人間向けの指示")
    until: Optional[Condition] = None


class HaltStep(_Step):
    """指定の Outcome でフローを終了する（終端ステップ）。"""

    kind: ClassVar[str] = "halt"
    terminal: ClassVar[bool] = True
    halt: Literal["success", "partial", "needs_human", "failure"]
    message: str
    sentinel: Optional[str] = None


class BranchStep(_Step):
    """述語を評価し、then / else のどちらか一方だけを実行する。

    実行後は branch の次のステップから再開する。
    """

    kind: ClassVar[str] = "branch"
    branch: str = Field(..., description="分岐の説明")
    when: Condition
    then: list["Step"] = Field(default_factory=list)
    otherwise: list["Step"] = Field(default_factory=list, alias="else")


Step = Union[
    NavigateStep,
    FillStep,
    ClickStep,
    CheckStep,
    WaitForTextStep,
    ExpectStep,
    ExtractSecretStep,
    SuspendStep,
    HaltStep,
    BranchStep,
]

STEP_MODELS: tuple[type[_Step], ...] = (
    NavigateStep,
    FillStep,
    ClickStep,
    CheckStep,
    WaitForTextStep,
    ExpectStep,
    ExtractSecretStep,
    SuspendStep,
    HaltStep,
    BranchStep,
)

BranchStep.model_rebuild()


# ===========================================================================
# フロー定義
# ===========================================================================

class ReportSpec(BaseModel):
    """Outcome の出力先キー。

    Attributes:
        key: 標準出力に `<key>=<value>` として出すキー
        needsHuman: NeedsHumanInput 時に key に出す値（None で出力しない）
        failure: Failure 時に key に出す値（None で出力しない）
    """

    model_config = ConfigDict(extra="forbid")

    key: str = Field(..., pattern=r"^[A-Z][A-Z0-9_]*$")
    needsHuman: Optional[str] = None
    failure: Optional[str] = None


class FlowDefinition(BaseModel):
    """1 つのプロビジョニングフロー。

    steps は構築時に終端到達性を検証する。到達しない場合は ValidationError。
    検証コンテキストに allow_open=True を渡した場合のみ検証を省略する。
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., pattern=r"^[a-z][a-z0-9-]*$")
    title: str
    service: str
    report: ReportSpec
    vars: dict[str, str] = Field(default_factory=dict)
    steps: list[Step] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _must_terminate(self, info: ValidationInfo) -> "FlowDefinition":
        # Linter 用の読み込みでは検証を省略し、lint ルールとして報告する
        if info.context and info.context.get("allow_open"):
            return self
        if not reaches_terminal(self.steps):
            raise ValueError(
                f"フロー '{self.name}' は終端ステップ（halt / extractSecret）に"
                "到達しない経路を含みます"
            )
        return self


# ---------------------------------------------------------------------------
# ヘルパー関数
# ---------------------------------------------------------------------------

def is_terminal(step: _Step) -> bool:
    """ステップが必ず Outcome を生成するかを返す。

    branch は両方の分岐が終端に到達する場合のみ終端とみなす。
    """
    if step.terminal:
        return True
    if isinstance(step, BranchStep):
        return reaches_terminal(step.then) and reaches_terminal(step.otherwise)
    return False


def reaches_terminal(steps: list[_Step]) -> bool:
    """ステップリストが全経路で終端ステップに到達するかを返す。"""
    return any(is_terminal(step) for step in steps)


def _check_regex(pattern: str) -> str:
    try:
        re.compile(pattern)
    except re.error as exc:
        raise ValueError(f"不正な正規表現です: {pattern!r} ({exc})") from exc
    return pattern

"""
ステップレジストリ — ステップハンドラの登録・検索・一覧

ステップ種別（YAML DSL のキー名）とハンドラの対応を管理する。
branch のように Runner 自身が制御するステップはここには登録しない。

主な構成:
  - StepHandler Protocol: ステップハンドラの共通インターフェース
  - StepContext: ステップ実行時のコンテキスト情報
  - StepInfo: ステップのメタ情報（名前、説明、カテゴリ）
  - StepRegistry: ステップハンドラの登録・検索・一覧
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

from pydantic import BaseModel

if TYPE_CHECKING:
    from playwright.async_api import Page

    from ..core.outcome import Outcome
    from ..core.selector import SelectorResolver
    from ..dsl.variables import VariableExpander

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# ステップ実行コンテキスト
# ---------------------------------------------------------------------------

@dataclass
class StepContext:
    """ステップ実行時のコンテキスト情報。

    Attributes:
        selector_resolver: LocatorSet を Playwright Locator に変換するリゾルバ
        variable_expander: ${creds.X} / ${vars.X} / ${env.X} の変数展開エンジン
        human_wait: suspend で人間の操作を待つ上限（ミリ秒）。0 で待たない
    """

    selector_resolver: SelectorResolver
    variable_expander: VariableExpander
    human_wait: int = 0


# ---------------------------------------------------------------------------
# ステップメタ情報
# ---------------------------------------------------------------------------

@dataclass
class StepInfo:
    """ステップのメタ情報。CLI の steps コマンドで一覧表示に使用する。

    Attributes:
        name: ステップ名（YAML DSL で使用するキー名）
        description: ステップの説明文
        category: カテゴリ（navigation, action, wait, validation, retrieval, human, control）
    """

    name: str
    description: str
    category: str


# ---------------------------------------------------------------------------
# ステップハンドラ Protocol
# ---------------------------------------------------------------------------

@runtime_checkable
class StepHandler(Protocol):
    """ステップハンドラの共通インターフェース。"""

    async def execute(
        self, page: Page, step: BaseModel, context: StepContext,
    ) -> Optional[Outcome]:
        """ステップを実行する。

        Args:
            page: Playwright の Page オブジェクト
            step: 検証済みのステップモデル
            context: ステップ実行コンテキスト

        Returns:
            フローを終了する場合は Outcome、次のステップへ進む場合は None
        """
        ...

    def get_schema(self) -> type[BaseModel]:
        """このハンドラが扱うステップモデルのクラスを返す。"""
        ...


# ---------------------------------------------------------------------------
# StepRegistry 本体
# ---------------------------------------------------------------------------

class StepRegistry:
    """ステップハンドラの登録・検索・一覧を管理するレジストリ。

    使用例::

        registry = StepRegistry()
        registry.register("click", ClickHandler(), info=StepInfo(...))
        handler = registry.get("click")
    """

    def __init__(self) -> None:
        self._handlers: dict[str, StepHandler] = {}
        self._info: dict[str, StepInfo] = {}

    def register(
        self,
        name: str,
        handler: StepHandler,
        *,
        info: Optional[StepInfo] = None,
    ) -> None:
        """ステップハンドラを登録する。

        同名のハンドラが既に登録されている場合は上書きする（警告を出力）。

        Raises:
            TypeError: handler が StepHandler Protocol を満たさない場合
        """
        if not isinstance(handler, StepHandler):
            raise TypeError(
                f"handler は StepHandler Protocol を満たす必要があります: "
                f"{type(handler).__name__}"
            )

        if name in self._handlers:
            logger.warning(
                "ステップ '%s' のハンドラを上書きします（既存: %s → 新規: %s）",
                name,
                type(self._handlers[name]).__name__,
                type(handler).__name__,
            )

        self._handlers[name] = handler

        if info is not None:
            self._info[name] = info
        elif name not in self._info:
            self._info[name] = StepInfo(
                name=name,
                description=f"{name} ステップ",
                category="unknown",
            )

        logger.debug("ステップ '%s' を登録しました: %s", name, type(handler).__name__)

    def get(self, name: str) -> StepHandler:
        """名前でステップハンドラを取得する。

        Raises:
            KeyError: 指定名のハンドラが未登録の場合
        """
        if not self.has(name):
            registered = ", ".join(self.names)
            raise KeyError(
                f"ステップ '{name}' は登録されていません。"
                f"登録済みステップ: [{registered}]"
            )
        return self._handlers[name]

    def list_all(self) -> list[StepInfo]:
        """登録済み全ステップのメタ情報を名前順で返す。"""
        return sorted(self._info.values(), key=lambda s: s.name)

    def has(self, name: str) -> bool:
        return name in self._handlers

    @property
    def names(self) -> list[str]:
        """登録済み全ステップ名をソート済みリストで返す。"""
        return sorted(self._handlers.keys())

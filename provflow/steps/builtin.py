"""
標準ステップハンドラ — フロー DSL の固定語彙

YAML DSL のステップを Playwright API 呼び出しに変換する。
各ハンドラは StepHandler Protocol を満たし、StepRegistry に登録される。
branch は Runner が直接制御するため、ここには含まれない。

カテゴリ:
  - ナビゲーション: navigate
  - 操作: fill, click, check
  - 待機: waitForText
  - 検証: expect
  - 取得: extractSecret
  - 人間: suspend
  - 制御: halt
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel

from ..core.errors import ElementNotFound, ExtractionFailure, UnexpectedPageState
from ..core.outcome import (
    EMAIL_CONFIRMATION_NEEDED,
    Failure,
    NeedsHumanInput,
    Outcome,
    PartialSuccess,
    Success,
)
from ..core.selector import _describe_selector
from ..core.waits import wait_for_condition
from ..dsl.schema import (
    AttrStrategy,
    CheckStep,
    ClickStep,
    Condition,
    ExpectStep,
    ExtractSecretStep,
    ExtractStrategy,
    FillStep,
    HaltStep,
    NavigateStep,
    SuspendStep,
    TextStrategy,
    ValueStrategy,
    WaitForTextStep,
)
from .registry import StepContext, StepHandler, StepInfo, StepRegistry

if TYPE_CHECKING:
    from playwright.async_api import Locator, Page

logger = logging.getLogger(__name__)


async def _prepare_locator_for_action(locator: Locator) -> None:
    """操作前に locator を表示領域へスクロールする。"""
    try:
        await locator.scroll_into_view_if_needed(timeout=5_000)
    except Exception as exc:  # noqa: BLE001
        # 画面外でも操作可能なケースがあるため継続する
        logger.debug("scroll_into_view_if_needed に失敗しました: %s", exc)


# ===========================================================================
# ナビゲーションハンドラ
# ===========================================================================

class NavigateHandler:
    """navigate ステップ — 指定 URL へ遷移（domcontentloaded 待機付き）。"""

    async def execute(
        self, page: Page, step: NavigateStep, context: StepContext,
    ) -> Optional[Outcome]:
        url = context.variable_expander.expand(step.navigate)
        logger.info("navigate: %s", context.variable_expander.mask(url))
        await page.goto(url)
        await page.wait_for_load_state("domcontentloaded")
        return None

    def get_schema(self) -> type[BaseModel]:
        return NavigateStep


# ===========================================================================
# 操作ハンドラ
# ===========================================================================

class FillHandler:
    """fill ステップ — 入力フィールドに値を入力。"""

    async def execute(
        self, page: Page, step: FillStep, context: StepContext,
    ) -> Optional[Outcome]:
        value = context.variable_expander.expand(step.value)
        if step.secret:
            context.variable_expander.add_secret(value)
        locator = await context.selector_resolver.resolve(page, step.fill, timeout=step.timeout)
        display_value = "***" if step.secret else context.variable_expander.mask(value)
        logger.info("fill: %s → %s", step.fill.field, display_value)
        await _prepare_locator_for_action(locator)
        await locator.fill(value)
        return None

    def get_schema(self) -> type[BaseModel]:
        return FillStep


class ClickHandler:
    """click ステップ — 要素をクリック。"""

    async def execute(
        self, page: Page, step: ClickStep, context: StepContext,
    ) -> Optional[Outcome]:
        locator = await context.selector_resolver.resolve(page, step.click, timeout=step.timeout)
        logger.info("click: %s", step.click.field)
        await _prepare_locator_for_action(locator)
        await locator.click()
        return None

    def get_schema(self) -> type[BaseModel]:
        return ClickStep


class CheckHandler:
    """check ステップ — チェックボックスをチェック状態にする。"""

    async def execute(
        self, page: Page, step: CheckStep, context: StepContext,
    ) -> Optional[Outcome]:
        locator = await context.selector_resolver.resolve(page, step.check, timeout=step.timeout)
        logger.info("check: %s", step.check.field)
        await _prepare_locator_for_action(locator)
        await locator.check()
        return None

    def get_schema(self) -> type[BaseModel]:
        return CheckStep


# ===========================================================================
# 待機・検証ハンドラ
# ===========================================================================

class WaitForTextHandler:
    """waitForText ステップ — テキストの出現を待機。

    タイムアウト時は警告を出して続行する。required: true の場合のみ
    UnexpectedPageState とする。
    """

    async def execute(
        self, page: Page, step: WaitForTextStep, context: StepContext,
    ) -> Optional[Outcome]:
        condition = Condition(text=step.waitForText, timeout=step.timeout)
        logger.info("waitForText: /%s/ (timeout=%dms)", step.waitForText, step.timeout)
        found = await wait_for_condition(page, condition, context.selector_resolver)
        if found:
            return None
        if step.required:
            raise UnexpectedPageState(
                f"テキスト /{step.waitForText}/ が {step.timeout}ms 以内に表示されませんでした"
            )
        logger.warning("テキスト /%s/ は表示されませんでした（続行します）", step.waitForText)
        return None

    def get_schema(self) -> type[BaseModel]:
        return WaitForTextStep


class ExpectHandler:
    """expect ステップ — 述語の成立を要求する。"""

    async def execute(
        self, page: Page, step: ExpectStep, context: StepContext,
    ) -> Optional[Outcome]:
        logger.info("expect: %s", step.expect.describe())
        if await wait_for_condition(page, step.expect, context.selector_resolver):
            return None
        message = step.message or f"期待したページ状態になりませんでした: {step.expect.describe()}"
        raise UnexpectedPageState(message)

    def get_schema(self) -> type[BaseModel]:
        return ExpectStep


# ===========================================================================
# 取得ハンドラ
# ===========================================================================

class ExtractSecretHandler:
    """extractSecret ステップ — 戦略を順に試して秘密値を抽出する。

    空値・要素なし・pattern 不一致の候補は採用しない。
    全戦略が失敗した場合は ExtractionFailure を送出する。
    """

    async def execute(
        self, page: Page, step: ExtractSecretStep, context: StepContext,
    ) -> Optional[Outcome]:
        pattern = re.compile(step.pattern) if step.pattern else None
        reasons: list[str] = []

        for idx, strategy in enumerate(step.strategies):
            try:
                raw = await self._read(page, strategy, step.timeout, context)
            except ElementNotFound as exc:
                reasons.append(f"[{idx}] {_describe_strategy(strategy)}: 要素なし")
                logger.debug("抽出戦略 %d: %s", idx, exc)
                continue

            value = (raw or "").strip()
            if not value:
                reasons.append(f"[{idx}] {_describe_strategy(strategy)}: 空値")
                continue
            if pattern is not None and not pattern.search(value):
                # 値そのものはログに出さない
                reasons.append(f"[{idx}] {_describe_strategy(strategy)}: パターン不一致")
                continue

            context.variable_expander.add_secret(value)
            logger.info("extractSecret: %s を抽出しました（戦略 %d）", step.extractSecret, idx)
            return Success(value)

        logger.warning(
            "extractSecret: %s を抽出できませんでした\n%s",
            step.extractSecret, "\n".join(reasons),
        )
        raise ExtractionFailure(f"{step.extractSecret} を自動抽出できませんでした")

    async def _read(
        self, page: Page, strategy: ExtractStrategy, timeout: int, context: StepContext,
    ) -> Optional[str]:
        resolver = context.selector_resolver
        if isinstance(strategy, ValueStrategy):
            locator = await resolver.resolve(page, strategy.value, timeout=timeout)
            return await locator.input_value()
        if isinstance(strategy, AttrStrategy):
            locator = await resolver.resolve(page, strategy.by, timeout=timeout)
            return await locator.get_attribute(strategy.attr)
        locator = await resolver.resolve(page, strategy.text, timeout=timeout)
        return await locator.inner_text()

    def get_schema(self) -> type[BaseModel]:
        return ExtractSecretStep


def _describe_strategy(strategy: ExtractStrategy) -> str:
    if isinstance(strategy, ValueStrategy):
        return f"value({_describe_selector(strategy.value)})"
    if isinstance(strategy, AttrStrategy):
        return f"attr[{strategy.attr}]({_describe_selector(strategy.by)})"
    if isinstance(strategy, TextStrategy):
        return f"text({_describe_selector(strategy.text)})"
    return type(strategy).__name__


# ===========================================================================
# 人間・制御ハンドラ
# ===========================================================================

class SuspendHandler:
    """suspend ステップ — 人間の操作が必要な地点。

    human_wait が 0 の場合は即座に NeedsHumanInput で停止する。
    human_wait > 0 の場合は until が成立するまで待ち、成立すれば続行する。
    """

    async def execute(
        self, page: Page, step: SuspendStep, context: StepContext,
    ) -> Optional[Outcome]:
        if context.human_wait <= 0 or step.until is None:
            logger.info("suspend: %s（人間の操作待ちで停止します）", step.suspend)
            return NeedsHumanInput(step.suspend)

        logger.warning(
            "人間の操作が必要です: %s: %s（最大 %dms 待機）",
            step.suspend, step.prompt or step.until.describe(), context.human_wait,
        )
        resumed = await wait_for_condition(
            page, step.until, context.selector_resolver, timeout=context.human_wait,
        )
        if resumed:
            logger.info("suspend: %s が解消されました。続行します", step.suspend)
            return None
        return NeedsHumanInput(step.suspend)

    def get_schema(self) -> type[BaseModel]:
        return SuspendStep


class HaltHandler:
    """halt ステップ — 指定の Outcome でフローを終了する。"""

    async def execute(
        self, page: Page, step: HaltStep, context: StepContext,
    ) -> Optional[Outcome]:
        message = context.variable_expander.expand(step.message)
        logger.info("halt: %s", step.halt)
        if step.halt == "success":
            return Success(message)
        if step.halt == "partial":
            return PartialSuccess(message, sentinel=step.sentinel or EMAIL_CONFIRMATION_NEEDED)
        if step.halt == "needs_human":
            return NeedsHumanInput(message, sentinel=step.sentinel)
        return Failure(message)

    def get_schema(self) -> type[BaseModel]:
        return HaltStep


# ===========================================================================
# レジストリ登録
# ===========================================================================

# Runner が直接制御するステップのメタ情報（steps コマンドの一覧表示用）
BRANCH_STEP_INFO = StepInfo("branch", "述語を評価し then / else の一方だけを実行", "control")

_BUILTIN_STEPS: list[tuple[str, StepHandler, StepInfo]] = [
    ("navigate", NavigateHandler(), StepInfo("navigate", "指定 URL へ遷移（domcontentloaded 待機付き）", "navigation")),
    ("fill", FillHandler(), StepInfo("fill", "入力フィールドに値を入力", "action")),
    ("click", ClickHandler(), StepInfo("click", "要素をクリック", "action")),
    ("check", CheckHandler(), StepInfo("check", "チェックボックスをチェック", "action")),
    ("waitForText", WaitForTextHandler(), StepInfo("waitForText", "テキストの出現を待機（タイムアウト時は続行）", "wait")),
    ("expect", ExpectHandler(), StepInfo("expect", "述語の成立を要求", "validation")),
    ("extractSecret", ExtractSecretHandler(), StepInfo("extractSecret", "戦略を順に試して秘密値を抽出", "retrieval")),
    ("suspend", SuspendHandler(), StepInfo("suspend", "人間の操作が必要な地点で停止または待機", "human")),
    ("halt", HaltHandler(), StepInfo("halt", "指定の Outcome でフローを終了", "control")),
]


def register_builtin_steps(registry: StepRegistry) -> None:
    """全標準ステップハンドラをレジストリに登録する。"""
    for name, handler, info in _BUILTIN_STEPS:
        registry.register(name, handler, info=info)
    logger.debug("標準ステップ %d 種を登録しました", len(_BUILTIN_STEPS))


def create_default_registry() -> StepRegistry:
    """標準ステップが登録済みの StepRegistry を生成する。"""
    registry = StepRegistry()
    register_builtin_steps(registry)
    return registry

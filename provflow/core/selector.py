"""
セレクタリゾルバ — LocatorSet を Playwright Locator に解決

LocatorSet の記述子を上から順に試行し、最初に可視になった要素を採用する。
ページのバリアントごとに属性名が異なる同一フィールドを、フロー側で
個別に分岐せずに扱うための仕組み。

解決手順:
  1. クイックパス: 全記述子を順に 1 回ずつ確認し、可視なら即採用
     （複数が同時に可視の場合は記述子順で先のものが勝つ）
  2. ポーリング: 各記述子を記述子ごとの上限まで順にポーリングし、
     全体タイムアウトまで繰り返す
  3. 全体タイムアウトまでに可視にならなければ ElementNotFound
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from ..dsl.schema import (
    CssSelector,
    LabelSelector,
    LocatorSet,
    PlaceholderSelector,
    RoleSelector,
    SingleSelector,
    TestIdSelector,
    TextSelector,
)
from .errors import ElementNotFound

if TYPE_CHECKING:
    from playwright.async_api import Locator, Page

logger = logging.getLogger(__name__)

# ポーリング間隔（秒）
_POLL_INTERVAL = 0.1

# 記述子ごとのポーリング上限の下限（ミリ秒）
_MIN_EACH_MS = 250


@dataclass
class CandidateFailure:
    """解決に失敗した候補の情報。

    Attributes:
        index: 候補リスト内のインデックス（0始まり）
        selector_desc: セレクタの説明文字列
        reason: 最後に観測した失敗理由
    """

    index: int
    selector_desc: str
    reason: str


class SelectorResolver:
    """LocatorSet を可視の Playwright Locator に解決する。"""

    def __init__(self, default_timeout: int = 15_000) -> None:
        """SelectorResolver を初期化する。

        Args:
            default_timeout: 全体タイムアウト（ミリ秒）の既定値
        """
        self._default_timeout = default_timeout

    # -------------------------------------------------------------------
    # パブリック API
    # -------------------------------------------------------------------

    async def resolve(
        self, page: Page, locators: LocatorSet, timeout: Optional[int] = None,
    ) -> Locator:
        """LocatorSet を解決し、最初に可視になった要素の Locator を返す。

        Args:
            page: Playwright の Page オブジェクト
            locators: 解決対象の LocatorSet
            timeout: 全体タイムアウト（ミリ秒）。None で既定値

        Returns:
            可視の要素を指す Locator

        Raises:
            ElementNotFound: 全体タイムアウトまでにどの候補も可視にならなかった場合
        """
        total_ms = self._default_timeout if timeout is None else timeout
        deadline = time.perf_counter() + total_ms / 1000.0
        candidates = locators.any
        each_ms = locators.each or max(total_ms // len(candidates), _MIN_EACH_MS)
        reasons: dict[int, str] = {}

        # クイックパス: 記述子順に 1 回ずつ確認
        for idx, candidate in enumerate(candidates):
            locator, reason = await self._check(page, candidate)
            if locator is not None:
                return self._found(locators, idx, candidate, locator)
            reasons[idx] = reason

        # ポーリング: 記述子ごとの上限まで順に待機
        while time.perf_counter() < deadline:
            for idx, candidate in enumerate(candidates):
                remaining = deadline - time.perf_counter()
                if remaining <= 0:
                    break
                budget = min(each_ms / 1000.0, remaining)
                locator, reason = await self._poll(page, candidate, budget)
                if locator is not None:
                    return self._found(locators, idx, candidate, locator)
                reasons[idx] = reason

        failures = [
            CandidateFailure(index=i, selector_desc=_describe_selector(c), reason=reasons.get(i, "未試行"))
            for i, c in enumerate(candidates)
        ]
        details = "\n".join(f"  [{f.index}] {f.selector_desc}: {f.reason}" for f in failures)
        logger.debug("%s: %dms 以内に可視の候補がありませんでした", locators.field, total_ms)
        raise ElementNotFound(locators.field, details)

    async def probe(self, page: Page, locators: LocatorSet) -> bool:
        """待機せずに 1 回だけ確認し、いずれかの候補が可視かを返す。"""
        for candidate in locators.any:
            locator, _ = await self._check(page, candidate)
            if locator is not None:
                return True
        return False

    # -------------------------------------------------------------------
    # 単一セレクタの解決
    # -------------------------------------------------------------------

    def _resolve_single(self, page: Page, selector: SingleSelector) -> Locator:
        """単一セレクタを Playwright Locator に変換する。"""
        if isinstance(selector, TestIdSelector):
            return page.get_by_test_id(selector.testId)

        if isinstance(selector, RoleSelector):
            kwargs: dict = {}
            if selector.name is not None:
                kwargs["name"] = selector.name
            if selector.exact is not None:
                kwargs["exact"] = selector.exact
            return page.get_by_role(selector.role, **kwargs)

        if isinstance(selector, LabelSelector):
            return page.get_by_label(selector.label)

        if isinstance(selector, PlaceholderSelector):
            return page.get_by_placeholder(selector.placeholder)

        if isinstance(selector, CssSelector):
            if selector.text is not None:
                return page.locator(selector.css, has_text=selector.text)
            return page.locator(selector.css)

        if isinstance(selector, TextSelector):
            return page.get_by_text(selector.text)

        raise TypeError(f"未知のセレクタ種別です: {type(selector).__name__}")

    async def _check(
        self, page: Page, selector: SingleSelector,
    ) -> tuple[Optional[Locator], str]:
        """候補を 1 回確認する。可視なら (Locator, "")、そうでなければ (None, 理由)。"""
        try:
            locator = self._resolve_single(page, selector)
            count = await locator.count()
            if count == 0:
                return None, "要素が見つかりません（0件ヒット）"
            if count > 1:
                if selector.strict:
                    return None, f"strict モード違反: {count} 件の要素がヒットしました"
                # 非 strict では最初に可視な要素を採用する
                for i in range(count):
                    candidate = locator.nth(i)
                    if await candidate.is_visible():
                        return candidate, ""
                return None, f"{count} 件ヒットしましたが全て非表示です"
            if not await locator.is_visible():
                return None, "要素は存在しますが非表示です"
            return locator, ""
        except Exception as exc:  # noqa: BLE001
            return None, str(exc)

    async def _poll(
        self, page: Page, selector: SingleSelector, budget_sec: float,
    ) -> tuple[Optional[Locator], str]:
        """候補が可視になるまで budget_sec 秒を上限にポーリングする。"""
        end = time.perf_counter() + budget_sec
        while True:
            locator, reason = await self._check(page, selector)
            if locator is not None or time.perf_counter() >= end:
                return locator, reason
            await asyncio.sleep(min(_POLL_INTERVAL, max(end - time.perf_counter(), 0)))

    def _found(
        self, locators: LocatorSet, idx: int, selector: SingleSelector, locator: Locator,
    ) -> Locator:
        logger.debug(
            "%s: 候補 %d (%s) を採用しました", locators.field, idx, _describe_selector(selector),
        )
        return locator


# ---------------------------------------------------------------------------
# ヘルパー関数
# ---------------------------------------------------------------------------

def _describe_selector(selector: SingleSelector | LocatorSet) -> str:
    """セレクタの人間可読な説明文字列を生成する。"""
    if isinstance(selector, TestIdSelector):
        return f"testId='{selector.testId}'"
    if isinstance(selector, RoleSelector):
        if selector.name:
            return f"role='{selector.role}', name='{selector.name}'"
        return f"role='{selector.role}'"
    if isinstance(selector, LabelSelector):
        return f"label='{selector.label}'"
    if isinstance(selector, PlaceholderSelector):
        return f"placeholder='{selector.placeholder}'"
    if isinstance(selector, CssSelector):
        if selector.text:
            return f"css='{selector.css}', text='{selector.text}'"
        return f"css='{selector.css}'"
    if isinstance(selector, TextSelector):
        return f"text='{selector.text}'"
    if isinstance(selector, LocatorSet):
        inner = ", ".join(_describe_selector(c) for c in selector.any)
        return f"{selector.field}=[{inner}]"
    return f"unknown({type(selector).__name__})"

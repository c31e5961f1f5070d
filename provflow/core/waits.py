"""
待機戦略 — ページ状態の述語を時間制限付きで評価する

branch / expect / suspend / waitForText が使用する。
全ての待機はタイムアウトを持ち、タイムアウト時は False を返す（例外にしない）。

主な機能:
  - evaluate_condition: Condition を 1 回評価する
  - wait_for_condition: Condition が成立するまでポーリングする
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from playwright.async_api import Page

    from ..dsl.schema import Condition
    from .selector import SelectorResolver

logger = logging.getLogger(__name__)

# ポーリング間隔（秒）
_POLL_INTERVAL = 0.1

# 本文テキスト取得の既定上限と最小値（ミリ秒）
_TEXT_READ_TIMEOUT_MS = 1000
_MIN_TEXT_READ_MS = 50


async def evaluate_condition(
    page: Page,
    condition: Condition,
    resolver: SelectorResolver,
    budget_ms: Optional[float] = None,
) -> bool:
    """Condition を待機せずに 1 回評価する。

    ページ遷移中などで評価自体が失敗した場合は False とする。
    budget_ms は本文テキスト取得の上限（ミリ秒）。None で _TEXT_READ_TIMEOUT_MS。
    """
    try:
        if condition.visible is not None:
            return await resolver.probe(page, condition.visible)
        if condition.hidden is not None:
            return not await resolver.probe(page, condition.hidden)
        if condition.url is not None:
            return re.search(condition.url, page.url) is not None
        return re.search(condition.text or "", await page_text(page, budget_ms), re.IGNORECASE) is not None
    except Exception as exc:  # noqa: BLE001
        logger.debug("述語 %s の評価中にエラー: %s", condition.describe(), exc)
        return False


async def wait_for_condition(
    page: Page,
    condition: Condition,
    resolver: SelectorResolver,
    timeout: Optional[int] = None,
) -> bool:
    """Condition が成立するまで待機する。

    Args:
        page: Playwright の Page オブジェクト
        condition: 評価する述語
        resolver: visible / hidden の解決に使うリゾルバ
        timeout: 待機上限（ミリ秒）。None で condition.timeout

    Returns:
        タイムアウトまでに成立した場合 True、それ以外は False
    """
    limit_ms = condition.timeout if timeout is None else timeout
    start = time.perf_counter()
    deadline_sec = limit_ms / 1000.0

    while True:
        remaining_ms = max((deadline_sec - (time.perf_counter() - start)) * 1000, _MIN_TEXT_READ_MS)
        if await evaluate_condition(page, condition, resolver, remaining_ms):
            logger.debug(
                "述語 %s が成立しました（%.0fms 経過）",
                condition.describe(), (time.perf_counter() - start) * 1000,
            )
            return True

        if time.perf_counter() - start >= deadline_sec:
            logger.debug("述語 %s は %dms 以内に成立しませんでした", condition.describe(), limit_ms)
            return False

        await asyncio.sleep(_POLL_INTERVAL)


async def page_text(page: Page, timeout: Optional[float] = None) -> str:
    """ページ本文の表示テキストを返す。

    Args:
        page: Playwright の Page オブジェクト
        timeout: 取得の上限（ミリ秒）。None で _TEXT_READ_TIMEOUT_MS
    """
    limit = _TEXT_READ_TIMEOUT_MS if timeout is None else timeout
    return await page.locator("body").inner_text(timeout=limit)

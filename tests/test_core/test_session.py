"""
BrowserSession / SessionManager のユニットテスト

テスト対象:
  - SessionManager: acquire の冪等性、scope による全経路での release
  - BrowserSession: 起動前・終了後のアクセスで SessionClosedError
  - BrowserSession.launch: Playwright 呼び出し（async_playwright をモック化）
  - launch_args: 画面外配置の起動引数
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import FakePage, FakeSession
from provflow.config import RunConfig
from provflow.core.errors import SessionClosedError
from provflow.core.session import BrowserSession, SessionManager, SessionState, launch_args


def _mock_playwright(launch_error: Exception | None = None):
    """async_playwright() が返すオブジェクトと、その内部モックを生成する。"""
    page = MagicMock(name="page")
    context = MagicMock(name="context")
    context.new_page = AsyncMock(return_value=page)
    context.close = AsyncMock()
    browser = MagicMock(name="browser")
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock()
    pw = MagicMock(name="pw")
    pw.stop = AsyncMock()
    if launch_error is not None:
        pw.chromium.launch = AsyncMock(side_effect=launch_error)
    else:
        pw.chromium.launch = AsyncMock(return_value=browser)
    starter = MagicMock(name="async_playwright")
    starter.start = AsyncMock(return_value=pw)
    return starter, pw, browser, context, page


# ---------------------------------------------------------------------------
# SessionManager
# ---------------------------------------------------------------------------

class TestSessionManager:
    """SessionManager のテスト。"""

    def _manager(self) -> tuple[SessionManager, list[FakeSession]]:
        created: list[FakeSession] = []

        def factory() -> FakeSession:
            session = FakeSession(FakePage())
            created.append(session)
            return session

        return SessionManager(RunConfig(), session_factory=factory), created

    def test_acquire_is_idempotent(self) -> None:
        manager, created = self._manager()

        async def scenario():
            first = await manager.acquire()
            second = await manager.acquire()
            return first, second

        first, second = asyncio.run(scenario())

        assert first is second
        assert len(created) == 1
        assert created[0].launch_count == 1

    def test_release_closes_session(self) -> None:
        manager, created = self._manager()

        async def scenario():
            await manager.acquire()
            await manager.release()

        asyncio.run(scenario())
        assert created[0].state == SessionState.CLOSED

    def test_release_without_acquire_is_noop(self) -> None:
        manager, created = self._manager()
        asyncio.run(manager.release())
        assert created == []

    def test_acquire_after_release_raises(self) -> None:
        manager, _ = self._manager()

        async def scenario():
            await manager.acquire()
            await manager.release()
            await manager.acquire()

        with pytest.raises(SessionClosedError):
            asyncio.run(scenario())

    def test_scope_releases_on_success(self) -> None:
        manager, created = self._manager()

        async def scenario():
            async with manager.scope() as session:
                assert session.is_active

        asyncio.run(scenario())
        assert created[0].close_count == 1

    def test_scope_releases_on_exception(self) -> None:
        manager, created = self._manager()

        async def scenario():
            async with manager.scope():
                raise ValueError("boom")

        with pytest.raises(ValueError):
            asyncio.run(scenario())
        assert created[0].close_count == 1
        assert created[0].state == SessionState.CLOSED


# ---------------------------------------------------------------------------
# BrowserSession
# ---------------------------------------------------------------------------

class TestBrowserSession:
    """BrowserSession のテスト。"""

    def test_page_before_launch_raises(self) -> None:
        session = BrowserSession()
        assert session.state == SessionState.IDLE
        with pytest.raises(SessionClosedError):
            _ = session.page

    def test_close_before_launch_is_safe(self) -> None:
        session = BrowserSession()
        asyncio.run(session.close())
        asyncio.run(session.close())
        assert session.state == SessionState.CLOSED

    def test_launch_and_close(self) -> None:
        starter, pw, browser, context, page = _mock_playwright()
        session = BrowserSession()
        config = RunConfig(slow_mo=50)

        with patch("playwright.async_api.async_playwright", return_value=starter):
            asyncio.run(session.launch(config))

        assert session.is_active
        assert session.page is page
        kwargs = pw.chromium.launch.call_args.kwargs
        assert kwargs["headless"] is False
        assert kwargs["slow_mo"] == 50
        assert "--window-position=-2400,-2400" in kwargs["args"]
        browser.new_context.assert_awaited_once_with(viewport={"width": 1280, "height": 800})

        asyncio.run(session.close())

        assert session.state == SessionState.CLOSED
        context.close.assert_awaited_once()
        browser.close.assert_awaited_once()
        pw.stop.assert_awaited_once()
        with pytest.raises(SessionClosedError):
            _ = session.page

    def test_launch_failure_cleans_up(self) -> None:
        starter, pw, *_ = _mock_playwright(launch_error=RuntimeError("Executable doesn't exist"))
        session = BrowserSession()

        with patch("playwright.async_api.async_playwright", return_value=starter):
            with pytest.raises(RuntimeError, match="Executable"):
                asyncio.run(session.launch(RunConfig()))

        assert session.state == SessionState.CLOSED
        pw.stop.assert_awaited_once()

    def test_closed_session_cannot_relaunch(self) -> None:
        session = BrowserSession()
        asyncio.run(session.close())
        with pytest.raises(SessionClosedError):
            asyncio.run(session.launch(RunConfig()))


# ---------------------------------------------------------------------------
# launch_args
# ---------------------------------------------------------------------------

class TestLaunchArgs:
    """launch_args のテスト。"""

    def test_offscreen_headed(self) -> None:
        args = launch_args(RunConfig(viewport_width=1024, viewport_height=768))
        assert "--disable-blink-features=AutomationControlled" in args
        assert "--window-position=-2400,-2400" in args
        assert "--window-size=1024,768" in args

    def test_visible_window(self) -> None:
        args = launch_args(RunConfig(offscreen=False))
        assert not any(a.startswith("--window-position") for a in args)

    def test_headless_has_no_window_args(self) -> None:
        args = launch_args(RunConfig(headless=True))
        assert args == ["--disable-blink-features=AutomationControlled"]

"""
Session — ブラウザセッション管理

1 回の実行につきブラウザプロセス・コンテキスト・ページを 1 つずつ保持する。

ブラウザはヘッドレスではなく、ウィンドウを画面外に配置して起動する。
完全なヘッドレスモードは対象サイトのボット対策に検知されやすく、
CAPTCHA が頻発するため。

主な機能:
  - BrowserSession: ブラウザの起動・終了・状態管理
  - SessionManager: acquire（冪等）/ release と、全ての終了経路で
    release を保証する scope() コンテキストマネージャ
"""

from __future__ import annotations

import enum
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Callable, Optional

from .errors import SessionClosedError

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Page

    from ..config import RunConfig

logger = logging.getLogger(__name__)

# 画面外に配置するウィンドウ位置
_OFFSCREEN_POSITION = "-2400,-2400"


# ---------------------------------------------------------------------------
# セッション状態
# ---------------------------------------------------------------------------

class SessionState(enum.Enum):
    """ブラウザセッションの状態。"""

    IDLE = "idle"
    LAUNCHING = "launching"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


# ---------------------------------------------------------------------------
# BrowserSession 本体
# ---------------------------------------------------------------------------

class BrowserSession:
    """Playwright ブラウザセッション。

    終了後（および起動前）に page / context へアクセスすると
    SessionClosedError を送出する。
    """

    def __init__(self) -> None:
        self._state: SessionState = SessionState.IDLE
        self._pw_instance: Optional[object] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state == SessionState.ACTIVE

    @property
    def page(self) -> Page:
        """現在のアクティブなページを返す。"""
        self._ensure_active()
        return self._page  # type: ignore[return-value]

    async def launch(self, config: RunConfig) -> None:
        """ブラウザを起動し、Page を生成する。

        Raises:
            RuntimeError: 既にアクティブなセッションがある場合
        """
        if self._state == SessionState.ACTIVE:
            raise RuntimeError(
                "既にアクティブなセッションがあります。"
                "先に close() を呼んでください。"
            )
        if self._state == SessionState.CLOSED:
            raise SessionClosedError("終了済みのセッションは再起動できません")

        self._state = SessionState.LAUNCHING
        logger.info(
            "ブラウザを起動しています... (headless=%s, offscreen=%s)",
            config.headless, config.offscreen,
        )

        try:
            from playwright.async_api import async_playwright

            pw = await async_playwright().start()
            self._pw_instance = pw

            self._browser = await pw.chromium.launch(
                headless=config.headless,
                slow_mo=config.slow_mo,
                args=launch_args(config),
            )
            self._context = await self._browser.new_context(
                viewport={"width": config.viewport_width, "height": config.viewport_height},
            )
            self._page = await self._context.new_page()
            self._state = SessionState.ACTIVE
            logger.info("ブラウザを起動しました")

        except Exception:
            logger.exception("ブラウザの起動に失敗しました")
            await self.close()
            raise

    async def close(self) -> None:
        """ブラウザを終了し、リソースをクリーンアップする。2 回目以降は何もしない。"""
        if self._state in (SessionState.CLOSED, SessionState.CLOSING):
            return

        self._state = SessionState.CLOSING
        logger.info("ブラウザを終了しています...")

        try:
            if self._context is not None:
                await self._context.close()
            if self._browser is not None:
                await self._browser.close()
            if self._pw_instance is not None and hasattr(self._pw_instance, "stop"):
                await self._pw_instance.stop()
        except Exception:
            logger.exception("ブラウザの終了中にエラーが発生しました")
        finally:
            self._browser = None
            self._context = None
            self._page = None
            self._pw_instance = None
            self._state = SessionState.CLOSED
            logger.info("ブラウザを終了しました")

    def _ensure_active(self) -> None:
        if not self.is_active:
            raise SessionClosedError(
                f"ブラウザセッションがアクティブではありません（状態: {self._state.value}）"
            )


# ---------------------------------------------------------------------------
# SessionManager
# ---------------------------------------------------------------------------

class SessionManager:
    """1 回の実行で唯一の BrowserSession を所有する。

    使用例::

        manager = SessionManager(config)
        async with manager.scope() as session:
            await session.page.goto(url)
    """

    def __init__(
        self,
        config: RunConfig,
        session_factory: Callable[[], BrowserSession] = BrowserSession,
    ) -> None:
        self._config = config
        self._session_factory = session_factory
        self._session: Optional[BrowserSession] = None

    @property
    def session(self) -> Optional[BrowserSession]:
        return self._session

    async def acquire(self) -> BrowserSession:
        """セッションを返す。既にアクティブなセッションがあればそれを返す（冪等）。"""
        if self._session is not None and self._session.is_active:
            return self._session
        if self._session is not None and self._session.state == SessionState.CLOSED:
            raise SessionClosedError("この実行のセッションは既に解放されています")

        session = self._session_factory()
        self._session = session
        await session.launch(self._config)
        return session

    async def release(self) -> None:
        """セッションを終了する。未取得・解放済みの場合は何もしない。"""
        if self._session is None:
            return
        await self._session.close()

    @asynccontextmanager
    async def scope(self) -> AsyncIterator[BrowserSession]:
        """acquire し、正常終了・例外・早期 return の全経路で release する。"""
        session = await self.acquire()
        try:
            yield session
        finally:
            await self.release()


def launch_args(config: RunConfig) -> list[str]:
    """Chromium の起動引数を返す。"""
    args = ["--disable-blink-features=AutomationControlled"]
    if not config.headless and config.offscreen:
        args.append(f"--window-position={_OFFSCREEN_POSITION}")
        args.append(f"--window-size={config.viewport_width},{config.viewport_height}")
    return args

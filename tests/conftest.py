"""
テスト共通フィクスチャ — スクリプト化したフェイク Playwright Page

実際のブラウザは起動しない。FakePage はセレクタの種類と値をキーに
FakeLocator を返し、登録されていないセレクタは 0 件ヒットとして扱う。

使用例::

    page = FakePage(url="https://supabase.com/dashboard/sign-up")
    page.add("css", "input#email")
    page.add("role", "button", "Sign Up")
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import pytest

from provflow.config import RunConfig
from provflow.core.selector import SelectorResolver
from provflow.core.session import SessionState
from provflow.dsl.variables import VariableExpander
from provflow.steps.registry import StepContext


# ---------------------------------------------------------------------------
# フェイク Locator / Page
# ---------------------------------------------------------------------------

class FakeLocator:
    """Playwright Locator の最小限のフェイク。操作は actions に記録される。"""

    def __init__(
        self,
        *,
        count: int = 1,
        visible: bool = True,
        value: Optional[str] = None,
        attrs: Optional[dict[str, str]] = None,
        text: Optional[str] = None,
        elements: Optional[list["FakeLocator"]] = None,
    ) -> None:
        self._count = len(elements) if elements else count
        self.elements = elements or []
        self.visible = visible
        self.value = value
        self.attrs = attrs or {}
        self.text = text
        self.actions: list[tuple] = []

    def nth(self, index: int) -> "FakeLocator":
        """elements 未指定の場合は全て同一要素として扱う。"""
        return self.elements[index] if self.elements else self

    async def count(self) -> int:
        return self._count

    async def is_visible(self) -> bool:
        return self._count > 0 and self.visible

    async def scroll_into_view_if_needed(self, timeout: Optional[float] = None) -> None:
        return None

    async def fill(self, value: str) -> None:
        self.actions.append(("fill", value))

    async def click(self) -> None:
        self.actions.append(("click",))

    async def check(self) -> None:
        self.actions.append(("check",))

    async def input_value(self) -> str:
        return self.value or ""

    async def get_attribute(self, name: str) -> Optional[str]:
        return self.attrs.get(name)

    async def inner_text(self, timeout: Optional[float] = None) -> str:
        return self.text or ""


class FakePage:
    """Playwright Page の最小限のフェイク。"""

    def __init__(self, url: str = "about:blank", body_text: str = "") -> None:
        self.url = url
        self.body_text = body_text
        self.navigations: list[str] = []
        # 遷移先 URL を一度だけ別の URL に差し替える（ログイン画面へのリダイレクト等）
        self.redirects: dict[str, str] = {}
        self._elements: dict[tuple, FakeLocator] = {}

    def add(self, kind: str, *key: Optional[str], **kwargs) -> FakeLocator:
        """要素を登録し、その FakeLocator を返す。"""
        locator = FakeLocator(**kwargs)
        self._elements[(kind, *key)] = locator
        return locator

    def remove(self, kind: str, *key: Optional[str]) -> None:
        self._elements.pop((kind, *key), None)

    def _lookup(self, *key: Optional[str]) -> FakeLocator:
        return self._elements.get(tuple(key), FakeLocator(count=0, visible=False))

    # --- Playwright API ---

    async def goto(self, url: str) -> None:
        self.navigations.append(url)
        self.url = self.redirects.pop(url, url)

    async def wait_for_load_state(self, state: str = "load") -> None:
        return None

    def get_by_test_id(self, test_id: str) -> FakeLocator:
        return self._lookup("testId", test_id)

    def get_by_role(self, role: str, name: Optional[str] = None, exact: Optional[bool] = None) -> FakeLocator:
        return self._lookup("role", role, name)

    def get_by_label(self, label: str) -> FakeLocator:
        return self._lookup("label", label)

    def get_by_placeholder(self, placeholder: str) -> FakeLocator:
        return self._lookup("placeholder", placeholder)

    def get_by_text(self, text: str) -> FakeLocator:
        return self._lookup("text", text)

    def locator(self, css: str, has_text: Optional[str] = None) -> FakeLocator:
        if css == "body":
            return FakeLocator(text=self.body_text)
        if has_text is not None:
            return self._lookup("css", css, has_text)
        return self._lookup("css", css)


class FakeSession:
    """SessionManager に渡すフェイクセッション。"""

    def __init__(self, page: FakePage) -> None:
        self._page = page
        self.state = SessionState.IDLE
        self.launch_count = 0
        self.close_count = 0

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.ACTIVE

    @property
    def page(self) -> FakePage:
        return self._page

    async def launch(self, config: RunConfig) -> None:
        self.launch_count += 1
        self.state = SessionState.ACTIVE

    async def close(self) -> None:
        self.close_count += 1
        self.state = SessionState.CLOSED


# ---------------------------------------------------------------------------
# pytest フィクスチャ
# ---------------------------------------------------------------------------

@pytest.fixture
def page() -> FakePage:
    return FakePage()


@pytest.fixture
def expander() -> VariableExpander:
    """テスト用の認証情報・変数を持つ VariableExpander。"""
    return VariableExpander(
        creds={"email": "dev@example.com", "password": "hunter2-secret", "username": "octodev"},
        vars={"tokenLabel": "ci-token"},
        env={},
    )


@pytest.fixture
def step_context(expander: VariableExpander) -> StepContext:
    """短いタイムアウトの StepContext。"""
    return StepContext(
        selector_resolver=SelectorResolver(default_timeout=200),
        variable_expander=expander,
    )


@pytest.fixture
def secrets_file(tmp_path: Path) -> Path:
    """supabase / github の認証情報を含む KEY=VALUE ファイル。"""
    path = tmp_path / ".secrets"
    path.write_text(
        "SUPABASE_EMAIL=dev@example.com\n"
        "SUPABASE_PASSWORD=hunter2-secret\n"
        "GITHUB_USERNAME=octodev\n"
        "GITHUB_PASSWORD=hunter2-secret\n",
        encoding="utf-8",
    )
    return path

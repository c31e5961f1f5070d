"""
StepRegistry のユニットテスト
"""

from __future__ import annotations

import pytest
from pydantic import BaseModel

from provflow.dsl.schema import STEP_MODELS, NavigateStep
from provflow.steps import BRANCH_STEP_INFO, StepHandler, StepInfo, StepRegistry, create_default_registry


class _DummyHandler:
    async def execute(self, page, step, context):
        return None

    def get_schema(self) -> type[BaseModel]:
        return NavigateStep


class TestStepRegistry:
    """StepRegistry のテスト。"""

    def test_register_and_get(self) -> None:
        registry = StepRegistry()
        handler = _DummyHandler()
        registry.register("navigate", handler)

        assert registry.get("navigate") is handler
        assert registry.has("navigate")
        assert registry.list_all()[0].category == "unknown"

    def test_get_unknown_lists_registered(self) -> None:
        registry = StepRegistry()
        registry.register("navigate", _DummyHandler())
        registry.register("click", _DummyHandler())
        with pytest.raises(KeyError, match=r"\[click, navigate\]"):
            registry.get("scroll")
        assert not registry.has("scroll")

    def test_register_non_handler(self) -> None:
        with pytest.raises(TypeError):
            StepRegistry().register("bad", object())  # type: ignore[arg-type]

    def test_overwrite_keeps_info(self) -> None:
        registry = StepRegistry()
        registry.register("navigate", _DummyHandler(), info=StepInfo("navigate", "遷移", "navigation"))
        replacement = _DummyHandler()
        registry.register("navigate", replacement)

        assert registry.get("navigate") is replacement
        assert registry.list_all()[0].category == "navigation"

    def test_protocol(self) -> None:
        assert isinstance(_DummyHandler(), StepHandler)


class TestDefaultRegistry:
    """標準レジストリのテスト。"""

    def test_every_step_kind_is_covered(self) -> None:
        registry = create_default_registry()
        kinds = {model.kind for model in STEP_MODELS}

        assert set(registry.names) | {BRANCH_STEP_INFO.name} == kinds
        assert "branch" not in registry.names

    def test_schema_matches_kind(self) -> None:
        registry = create_default_registry()
        for name in registry.names:
            assert registry.get(name).get_schema().kind == name

    def test_list_all_sorted(self) -> None:
        names = [info.name for info in create_default_registry().list_all()]
        assert names == sorted(names)
        assert len(names) == 9

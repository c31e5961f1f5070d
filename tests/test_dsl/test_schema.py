"""
DSL スキーマのユニットテスト

テスト対象:
  - ステップ種別の自動判別（extra="forbid" による一意化）
  - LocatorSet / Condition の検証
  - 終端到達性の検証と allow_open コンテキスト
  - is_terminal / reaches_terminal
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from provflow.dsl.schema import (
    BranchStep,
    ClickStep,
    Condition,
    CssSelector,
    ExtractSecretStep,
    FillStep,
    FlowDefinition,
    HaltStep,
    LocatorSet,
    NavigateStep,
    ReportSpec,
    RoleSelector,
    SuspendStep,
    TextStrategy,
    ValueStrategy,
    is_terminal,
    reaches_terminal,
)

_EMAIL = {"field": "email box", "any": [{"css": "input#email"}, {"label": "Email"}]}


def _flow_data(steps: list, **overrides) -> dict:
    data = {
        "name": "sample-flow",
        "title": "サンプル",
        "service": "github",
        "report": {"key": "SAMPLE"},
        "steps": steps,
    }
    data.update(overrides)
    return data


class TestStepDiscrimination:
    """ステップ種別の判別テスト。"""

    def test_each_step_kind(self) -> None:
        flow = FlowDefinition(**_flow_data([
            {"navigate": "https://github.com/login"},
            {"fill": _EMAIL, "value": "${creds.email}"},
            {"click": _EMAIL},
            {"suspend": "CAPTCHA"},
            {"halt": "success", "message": "ok"},
        ]))
        kinds = [type(step) for step in flow.steps]
        assert kinds == [NavigateStep, FillStep, ClickStep, SuspendStep, HaltStep]

    def test_unknown_key_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            FlowDefinition(**_flow_data([
                {"navigate": "https://github.com", "clicky": True},
                {"halt": "success", "message": "ok"},
            ]))

    def test_branch_else_alias(self) -> None:
        flow = FlowDefinition(**_flow_data([{
            "branch": "logged in",
            "when": {"url": "/dashboard"},
            "then": [{"halt": "success", "message": "ok"}],
            "else": [{"halt": "failure", "message": "ng"}],
        }]))
        branch = flow.steps[0]
        assert isinstance(branch, BranchStep)
        assert isinstance(branch.otherwise[0], HaltStep)
        assert branch.otherwise[0].halt == "failure"

    def test_extract_strategies(self) -> None:
        step = ExtractSecretStep(
            extractSecret="token",
            strategies=[
                {"value": _EMAIL},
                {"attr": "data-clipboard-text", "by": _EMAIL},
                {"text": _EMAIL},
            ],
        )
        assert isinstance(step.strategies[0], ValueStrategy)
        assert isinstance(step.strategies[2], TextStrategy)
        assert step.timeout == 5000

    def test_display_name(self) -> None:
        assert NavigateStep(navigate="x").display_name(3) == "navigate_3"
        assert NavigateStep(name="open", navigate="x").display_name(3) == "open"

    def test_invalid_halt_kind(self) -> None:
        with pytest.raises(ValidationError):
            HaltStep(halt="maybe", message="x")


class TestLocatorSet:
    """LocatorSet のテスト。"""

    def test_descriptor_types(self) -> None:
        locators = LocatorSet(**{
            "field": "submit",
            "any": [{"role": "button", "name": "Sign Up"}, {"css": "button", "text": "Sign"}],
        })
        assert isinstance(locators.any[0], RoleSelector)
        assert isinstance(locators.any[1], CssSelector)

    def test_empty_any_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            LocatorSet(field="submit", any=[])


class TestCondition:
    """Condition のテスト。"""

    def test_exactly_one_predicate(self) -> None:
        with pytest.raises(ValidationError):
            Condition(url="/a", text="b")
        with pytest.raises(ValidationError):
            Condition()

    def test_invalid_regex(self) -> None:
        with pytest.raises(ValidationError):
            Condition(url="([")

    def test_describe(self) -> None:
        assert Condition(url="/dashboard").describe() == "url~//dashboard/"
        assert Condition(text="hello").describe() == "text~/hello/i"
        assert Condition(visible=_EMAIL).describe() == "visible(email box)"
        assert Condition(hidden=_EMAIL).describe() == "hidden(email box)"

    def test_default_timeout(self) -> None:
        assert Condition(url="/x").timeout == 3000


class TestTermination:
    """終端到達性のテスト。"""

    def test_open_flow_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="終端"):
            FlowDefinition(**_flow_data([{"navigate": "https://github.com"}]))

    def test_branch_with_one_terminal_arm_is_open(self) -> None:
        with pytest.raises(ValidationError):
            FlowDefinition(**_flow_data([{
                "branch": "b",
                "when": {"url": "x"},
                "then": [{"halt": "success", "message": "ok"}],
            }]))

    def test_branch_with_both_terminal_arms(self) -> None:
        flow = FlowDefinition(**_flow_data([{
            "branch": "b",
            "when": {"url": "x"},
            "then": [{"halt": "success", "message": "ok"}],
            "else": [{"extractSecret": "t", "strategies": [{"value": _EMAIL}]}],
        }]))
        assert is_terminal(flow.steps[0])

    def test_allow_open_context(self) -> None:
        flow = FlowDefinition.model_validate(
            _flow_data([{"navigate": "https://github.com"}]),
            context={"allow_open": True},
        )
        assert not reaches_terminal(flow.steps)

    def test_is_terminal(self) -> None:
        assert is_terminal(HaltStep(halt="failure", message="x"))
        assert not is_terminal(SuspendStep(suspend="2FA"))


class TestFlowMetadata:
    """FlowDefinition / ReportSpec のメタデータ検証。"""

    def test_invalid_name(self) -> None:
        with pytest.raises(ValidationError):
            FlowDefinition(**_flow_data([{"halt": "success", "message": "ok"}], name="Bad Name"))

    def test_report_key_must_be_upper(self) -> None:
        with pytest.raises(ValidationError):
            ReportSpec(key="lower_key")

    def test_vars_default(self) -> None:
        flow = FlowDefinition(**_flow_data([{"halt": "success", "message": "ok"}]))
        assert flow.vars == {}

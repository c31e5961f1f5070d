"""
OutcomeReporter のユニットテスト

テスト対象:
  - render(): Outcome 種別ごとの stdout / stderr / 終了コード
  - 改行を含む値の 1 行化
  - emit(): typer.echo による書き出し
  - generate_json(): 秘密値を含まない JSON レポート
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import pytest
from hypothesis import given
from hypothesis import strategies as st

from provflow.core.outcome import (
    MANUAL_EXTRACTION_NEEDED,
    Failure,
    NeedsHumanInput,
    PartialSuccess,
    Success,
)
from provflow.core.reporting import OutcomeReporter, Report
from provflow.core.runner import FlowResult, StepResult
from provflow.dsl.schema import ReportSpec


@pytest.fixture
def reporter() -> OutcomeReporter:
    return OutcomeReporter()


@pytest.fixture
def report_spec() -> ReportSpec:
    return ReportSpec(key="SUPABASE_SIGNUP", needsHuman="MANUAL_CHECK_NEEDED")


class TestRender:
    """render() のテスト。"""

    def test_success(self, reporter: OutcomeReporter, report_spec: ReportSpec) -> None:
        report = reporter.render(Success("SUCCESS"), report_spec)
        assert report == Report(("SUPABASE_SIGNUP=SUCCESS",), (), 0)

    def test_partial(self, reporter: OutcomeReporter, report_spec: ReportSpec) -> None:
        report = reporter.render(PartialSuccess("確認メールを開いてください"), report_spec)
        assert report.stdout == ("SUPABASE_SIGNUP=EMAIL_CONFIRMATION_NEEDED",)
        assert report.stderr == ("NOTE: 確認メールを開いてください",)
        assert report.exit_code == 0

    def test_needs_human_with_declared_value(self, reporter: OutcomeReporter, report_spec: ReportSpec) -> None:
        report = reporter.render(NeedsHumanInput("CAPTCHA"), report_spec)
        assert report.stdout == ("SUPABASE_SIGNUP=MANUAL_CHECK_NEEDED",)
        assert report.stderr == ("NEEDS_HUMAN_INPUT=CAPTCHA",)
        assert report.exit_code == 0

    def test_needs_human_without_declared_value(self, reporter: OutcomeReporter) -> None:
        report = reporter.render(NeedsHumanInput("2FA"), ReportSpec(key="GITHUB_TOKEN"))
        assert report.stdout == ()
        assert report.stderr == ("NEEDS_HUMAN_INPUT=2FA",)

    def test_manual_extraction_sentinel(self, reporter: OutcomeReporter) -> None:
        outcome = NeedsHumanInput("token を自動抽出できませんでした", sentinel=MANUAL_EXTRACTION_NEEDED)
        report = reporter.render(outcome, ReportSpec(key="GITHUB_TOKEN"))
        assert report.stderr == (
            "MANUAL_EXTRACTION_NEEDED",
            "NEEDS_HUMAN_INPUT=token を自動抽出できませんでした",
        )

    def test_failure(self, reporter: OutcomeReporter) -> None:
        report = reporter.render(Failure("要素が見つかりません"), ReportSpec(key="GITHUB_TOKEN"))
        assert report.stdout == ()
        assert report.stderr == ("ERROR: 要素が見つかりません",)
        assert report.exit_code == 1

    def test_failure_with_declared_value(self, reporter: OutcomeReporter) -> None:
        report_spec = ReportSpec(key="GITHUB_LOGGED_IN", needsHuman="false", failure="false")
        report = reporter.render(Failure("login failed"), report_spec)
        assert report.stdout == ("GITHUB_LOGGED_IN=false",)
        assert report.exit_code == 1

    def test_multiline_error_is_single_line(self, reporter: OutcomeReporter, report_spec: ReportSpec) -> None:
        report = reporter.render(Failure("要素が見つかりません: email box\n試行結果:\n  [0] css"), report_spec)
        assert report.stderr == ("ERROR: 要素が見つかりません: email box | 試行結果: | [0] css",)

    @given(text=st.text(min_size=1))
    def test_every_line_is_single_line(self, text: str) -> None:
        reporter = OutcomeReporter()
        report_spec = ReportSpec(key="KEY", needsHuman="X", failure="Y")
        for outcome in (Success(text), PartialSuccess(text), NeedsHumanInput(text, text), Failure(text)):
            report = reporter.render(outcome, report_spec)
            for line in report.stdout + report.stderr:
                assert "\n" not in line
                assert "\r" not in line

    def test_render_is_deterministic(self, reporter: OutcomeReporter, report_spec: ReportSpec) -> None:
        outcome = NeedsHumanInput("CAPTCHA")
        assert reporter.render(outcome, report_spec) == reporter.render(outcome, report_spec)


def test_emit_writes_streams(reporter: OutcomeReporter, capsys: pytest.CaptureFixture) -> None:
    code = reporter.emit(Report(("KEY=value",), ("NOTE: hi",), 0))
    captured = capsys.readouterr()
    assert code == 0
    assert captured.out == "KEY=value\n"
    assert captured.err == "NOTE: hi\n"


class TestGenerateJson:
    """generate_json() のテスト。"""

    def _result(self) -> FlowResult:
        return FlowResult(
            flow_name="github-token",
            outcome=Success("ghp_supersecret"),
            steps=[
                StepResult("navigate_0", "navigate", "0", duration_ms=12.0),
                StepResult("fill_note", "fill", "1", status="failed", error="boom"),
                StepResult("extractSecret_2", "extractSecret", "2", status="halted"),
            ],
            duration_ms=100.0,
            started_at=datetime(2024, 1, 1, 12, 0, 0),
            finished_at=datetime(2024, 1, 1, 12, 0, 1),
        )

    def test_writes_report(self, reporter: OutcomeReporter, tmp_path: Path) -> None:
        path = reporter.generate_json(self._result(), tmp_path / "out" / "report.json")

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["flow"] == "github-token"
        assert data["outcome"] == {"kind": "success", "value": "***"}
        assert data["started_at"] == "2024-01-01T12:00:00"
        assert data["summary"] == {"total": 3, "passed": 1, "failed": 1, "halted": 1}
        assert data["steps"][1]["error"] == "boom"

    def test_secret_is_not_written(self, reporter: OutcomeReporter, tmp_path: Path) -> None:
        path = reporter.generate_json(self._result(), tmp_path / "report.json")
        assert "ghp_supersecret" not in path.read_text(encoding="utf-8")

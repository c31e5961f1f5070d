"""
Reporter — Outcome の出力

Outcome を呼び出し元（オーケストレータ）が機械的に読める行形式に変換する。
標準出力には `<KEY>=<value>` の 1 行だけを出し、補足は標準エラー出力に出す。

主な機能:
  - render(): Outcome → Report（純粋関数。同じ入力には同じ出力）
  - emit(): Report を標準出力・標準エラー出力へ書き出す
  - generate_json(): 実行結果の JSON レポート生成（秘密値はマスク済み）

出力規則:
  - Success         → stdout `<KEY>=<secret>`、終了コード 0
  - PartialSuccess  → stdout `<KEY>=<sentinel>`、stderr `NOTE: <note>`、終了コード 0
  - NeedsHumanInput → stdout `<KEY>=<needsHuman>`（宣言時のみ）、
                      stderr `<sentinel>`（ある場合）、stderr `NEEDS_HUMAN_INPUT=<reason>`、
                      終了コード 0
  - Failure         → stdout `<KEY>=<failure>`（宣言時のみ）、stderr `ERROR: <error>`、
                      終了コード 1
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import typer

from .outcome import Failure, NeedsHumanInput, Outcome, PartialSuccess, Success

if TYPE_CHECKING:
    from ..dsl.schema import ReportSpec
    from .runner import FlowResult, StepResult

logger = logging.getLogger(__name__)

_LINE_BREAKS = re.compile(r"\s*[\r\n]+\s*")


@dataclass(frozen=True)
class Report:
    """出力内容。

    Attributes:
        stdout: 標準出力に書く行
        stderr: 標準エラー出力に書く行
        exit_code: プロセスの終了コード
    """

    stdout: tuple[str, ...]
    stderr: tuple[str, ...]
    exit_code: int


class OutcomeReporter:
    """Outcome を行形式の出力に変換するクラス。"""

    # -------------------------------------------------------------------
    # 行形式の出力
    # -------------------------------------------------------------------

    def render(self, outcome: Outcome, declared: ReportSpec) -> Report:
        """Outcome を Report に変換する。

        Args:
            outcome: フローの終端結果
            declared: フローが宣言した出力キーと代替値

        Returns:
            出力内容
        """
        key = declared.key

        if isinstance(outcome, Success):
            return Report((_line(key, outcome.secret),), (), 0)

        if isinstance(outcome, PartialSuccess):
            return Report(
                (_line(key, outcome.sentinel),),
                (f"NOTE: {_single_line(outcome.note)}",),
                0,
            )

        if isinstance(outcome, NeedsHumanInput):
            stdout = (_line(key, declared.needsHuman),) if declared.needsHuman is not None else ()
            stderr: list[str] = []
            if outcome.sentinel:
                stderr.append(_single_line(outcome.sentinel))
            stderr.append(f"NEEDS_HUMAN_INPUT={_single_line(outcome.reason)}")
            return Report(stdout, tuple(stderr), 0)

        if isinstance(outcome, Failure):
            stdout = (_line(key, declared.failure),) if declared.failure is not None else ()
            return Report(stdout, (f"ERROR: {_single_line(outcome.error)}",), 1)

        raise TypeError(f"未知の Outcome です: {type(outcome).__name__}")

    def emit(self, report: Report) -> int:
        """Report を書き出し、終了コードを返す。"""
        for line in report.stdout:
            typer.echo(line)
        for line in report.stderr:
            typer.echo(line, err=True)
        return report.exit_code

    # -------------------------------------------------------------------
    # JSON レポート
    # -------------------------------------------------------------------

    def generate_json(self, result: FlowResult, output_path: Path) -> Path:
        """JSON レポートを生成する。

        Args:
            result: フロー実行結果
            output_path: 出力先ファイルパス

        Returns:
            生成されたファイルのパス
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        report_data = self._build_report_dict(result)
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(report_data, f, ensure_ascii=False, indent=2)

        logger.info("JSON レポートを生成しました: %s", output_path)
        return output_path

    # -------------------------------------------------------------------
    # 内部ヘルパー
    # -------------------------------------------------------------------

    def _build_report_dict(self, result: FlowResult) -> dict[str, Any]:
        steps_data = [
            {
                "step_name": step.step_name,
                "step_type": step.step_type,
                "path": step.path,
                "status": step.status,
                "duration_ms": step.duration_ms,
                "error": step.error,
            }
            for step in result.steps
        ]

        return {
            "flow": result.flow_name,
            "outcome": _outcome_dict(result.outcome),
            "duration_ms": result.duration_ms,
            "started_at": (
                result.started_at.isoformat() if result.started_at else None
            ),
            "finished_at": (
                result.finished_at.isoformat() if result.finished_at else None
            ),
            "steps": steps_data,
            "summary": self._compute_summary(result.steps),
        }

    def _compute_summary(self, steps: list[StepResult]) -> dict[str, int]:
        return {
            "total": len(steps),
            "passed": sum(1 for s in steps if s.status == "passed"),
            "failed": sum(1 for s in steps if s.status == "failed"),
            "halted": sum(1 for s in steps if s.status == "halted"),
        }


# ---------------------------------------------------------------------------
# ヘルパー関数
# ---------------------------------------------------------------------------

def _single_line(value: str) -> str:
    """改行を含む値を 1 行にまとめる。"""
    return _LINE_BREAKS.sub(" | ", str(value)).strip()


def _line(key: str, value: str) -> str:
    return f"{key}={_single_line(value)}"


def _outcome_dict(outcome: Outcome | None) -> dict[str, Any] | None:
    """Outcome を JSON 用の辞書に変換する。秘密値は含めない。"""
    if outcome is None:
        return None
    if isinstance(outcome, Success):
        return {"kind": outcome.kind, "value": "***"}
    if isinstance(outcome, PartialSuccess):
        return {"kind": outcome.kind, "note": outcome.note, "sentinel": outcome.sentinel}
    if isinstance(outcome, NeedsHumanInput):
        return {"kind": outcome.kind, "reason": outcome.reason, "sentinel": outcome.sentinel}
    return {"kind": outcome.kind, "error": outcome.error}

"""
Flow Linter — フロー定義の静的解析

実行前にフロー定義の構造上の問題やアンチパターンを検出する。

検出ルール:
  - missing-terminal: 終端ステップに到達しない経路がある → error
  - unreachable-step: 終端ステップの後に置かれたステップ → warning
  - missing-secret: パスワード系フィールドの fill に secret 未設定 → warning
  - single-descriptor: 記述子が 1 つだけの LocatorSet → info
  - suspend-without-until: until のない suspend（人間待ちで再開できない）→ info

各 lint 結果にはステップ名、ステップの位置、重大度（error/warning/info）を含む。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional

from .schema import (
    BranchStep,
    CheckStep,
    ClickStep,
    CssSelector,
    FillStep,
    FlowDefinition,
    LabelSelector,
    LocatorSet,
    PlaceholderSelector,
    RoleSelector,
    Step,
    SuspendStep,
    TestIdSelector,
    TextSelector,
    is_terminal,
    reaches_terminal,
)


# ---------------------------------------------------------------------------
# Lint 重大度
# ---------------------------------------------------------------------------

class LintSeverity(Enum):
    """Lint 結果の重大度レベル。"""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


# ---------------------------------------------------------------------------
# Lint 検出結果
# ---------------------------------------------------------------------------

@dataclass
class LintIssue:
    """Lint で検出された問題。

    Attributes:
        step_name: 問題が検出されたステップの名前（フロー全体の問題は "<flow>"）
        path: ステップの位置（"3", "3.then.0" 等）
        severity: 重大度（error / warning / info）
        rule: 適用されたルール名
        message: 問題の説明メッセージ
    """

    step_name: str
    path: str
    severity: LintSeverity
    rule: str
    message: str


# パスワード系フィールドを検出するためのキーワードパターン（大文字小文字不問）
_PASSWORD_KEYWORDS = re.compile(
    r"(password|パスワード|secret|credential|passphrase|otp|暗証)",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# FlowLinter 本体
# ---------------------------------------------------------------------------

class FlowLinter:
    """フロー定義の静的解析を行う Linter。

    終端到達性を検証せずに読み込んだ FlowDefinition
    （FlowParser.load(path, require_terminal=False)）も受け付ける。
    """

    def lint(self, flow: FlowDefinition) -> list[LintIssue]:
        """全 lint ルールを適用し、問題を検出する。

        Args:
            flow: 検査対象のフロー

        Returns:
            検出された LintIssue のリスト（問題なしの場合は空リスト）
        """
        issues: list[LintIssue] = []

        if not reaches_terminal(flow.steps):
            issues.append(LintIssue(
                step_name="<flow>",
                path="",
                severity=LintSeverity.ERROR,
                rule="missing-terminal",
                message=(
                    "終端ステップ（halt / extractSecret）に到達しない経路があります。"
                    "全ての経路の最後に halt を置いてください。"
                ),
            ))

        issues.extend(self._check_unreachable(flow.steps, prefix=""))

        for path, index, step in self._iter_steps(flow.steps, prefix=""):
            for check in (
                self._check_missing_secret,
                self._check_single_descriptor,
                self._check_suspend_without_until,
            ):
                issue = check(step, index, path)
                if issue is not None:
                    issues.append(issue)

        return issues

    # -----------------------------------------------------------------
    # Lint ルール
    # -----------------------------------------------------------------

    def _check_unreachable(self, steps: list[Step], prefix: str) -> list[LintIssue]:
        """終端ステップの後に置かれたステップを報告する（branch の腕も再帰的に検査）。"""
        issues: list[LintIssue] = []
        terminated = False

        for idx, step in enumerate(steps):
            path = f"{prefix}{idx}"
            if terminated:
                issues.append(LintIssue(
                    step_name=step.display_name(idx),
                    path=path,
                    severity=LintSeverity.WARNING,
                    rule="unreachable-step",
                    message="終端ステップの後にあるため、このステップは実行されません。",
                ))
                continue
            if isinstance(step, BranchStep):
                issues.extend(self._check_unreachable(step.then, f"{path}.then."))
                issues.extend(self._check_unreachable(step.otherwise, f"{path}.else."))
            if is_terminal(step):
                terminated = True

        return issues

    def _check_missing_secret(
        self, step: Step, index: int, path: str,
    ) -> Optional[LintIssue]:
        """パスワード系フィールドに secret: true が未設定の場合に warning を出力する。

        値が ${creds.password} を参照している場合、またはフィールド名・セレクタに
        パスワード関連キーワードが含まれる場合に検出する。
        """
        if not isinstance(step, FillStep) or step.secret:
            return None

        texts = [step.name or "", step.value, step.fill.field]
        texts.extend(_selector_texts(step.fill))

        if any(_PASSWORD_KEYWORDS.search(text) for text in texts):
            return LintIssue(
                step_name=step.display_name(index),
                path=path,
                severity=LintSeverity.WARNING,
                rule="missing-secret",
                message=(
                    "パスワード関連のフィールドに secret: true が設定されていません。"
                    "ログやレポートで値がマスクされるよう、secret: true の付与を推奨します。"
                ),
            )
        return None

    def _check_single_descriptor(
        self, step: Step, index: int, path: str,
    ) -> Optional[LintIssue]:
        """操作ステップの LocatorSet に記述子が 1 つしかない場合に info を出力する。"""
        locators = _action_locators(step)
        if locators is None or len(locators.any) > 1:
            return None

        return LintIssue(
            step_name=step.display_name(index),
            path=path,
            severity=LintSeverity.INFO,
            rule="single-descriptor",
            message=(
                f"'{locators.field}' の記述子が 1 つだけです。"
                "ページのバリアントに備えて代替の記述子を追加することを推奨します。"
            ),
        )

    def _check_suspend_without_until(
        self, step: Step, index: int, path: str,
    ) -> Optional[LintIssue]:
        if not isinstance(step, SuspendStep) or step.until is not None:
            return None

        return LintIssue(
            step_name=step.display_name(index),
            path=path,
            severity=LintSeverity.INFO,
            rule="suspend-without-until",
            message=(
                "until が未設定のため、人間待ち時間を設定しても再開できず、"
                "常に NeedsHumanInput で停止します。"
            ),
        )

    # -----------------------------------------------------------------
    # ヘルパーメソッド
    # -----------------------------------------------------------------

    def _iter_steps(
        self, steps: list[Step], prefix: str,
    ) -> Iterator[tuple[str, int, Step]]:
        """branch の腕を含む全ステップを (位置, インデックス, ステップ) で列挙する。"""
        for idx, step in enumerate(steps):
            path = f"{prefix}{idx}"
            yield path, idx, step
            if isinstance(step, BranchStep):
                yield from self._iter_steps(step.then, f"{path}.then.")
                yield from self._iter_steps(step.otherwise, f"{path}.else.")


def _action_locators(step: Step) -> Optional[LocatorSet]:
    if isinstance(step, FillStep):
        return step.fill
    if isinstance(step, ClickStep):
        return step.click
    if isinstance(step, CheckStep):
        return step.check
    return None


def _selector_texts(locators: LocatorSet) -> list[str]:
    """LocatorSet の各記述子からテキスト値を収集する。"""
    texts: list[str] = []
    for selector in locators.any:
        if isinstance(selector, TestIdSelector):
            texts.append(selector.testId)
        elif isinstance(selector, RoleSelector):
            texts.append(selector.name or "")
        elif isinstance(selector, LabelSelector):
            texts.append(selector.label)
        elif isinstance(selector, PlaceholderSelector):
            texts.append(selector.placeholder)
        elif isinstance(selector, CssSelector):
            texts.extend([selector.css, selector.text or ""])
        elif isinstance(selector, TextSelector):
            texts.append(selector.text)
    return texts

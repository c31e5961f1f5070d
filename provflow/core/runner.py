"""
Runner — フロー実行エンジン

FlowDefinition のステップを順に実行し、必ず 1 つの Outcome で終了する。

主な機能:
  - StepResult / FlowResult: 実行結果データクラス
  - Runner: ステップのディスパッチ・branch の制御・例外の Outcome 化
  - run_flow: 認証情報の事前検証 → セッション取得 → 実行 → 解放

例外と Outcome の対応:
  - ExtractionFailure → NeedsHumanInput(sentinel=MANUAL_EXTRACTION_NEEDED)
    （extractSecret のステップタイムアウトもこちらに含める）
  - ステップタイムアウト・ElementNotFound・UnexpectedPageState 等 → Failure
  - ステップ列を使い切った場合 → Failure
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Literal, Mapping, Optional

from ..dsl.schema import BranchStep, ExtractSecretStep, SuspendStep
from ..dsl.variables import VariableExpander
from ..steps.builtin import create_default_registry
from ..steps.registry import StepContext
from .errors import ExtractionFailure, MissingCredential, UnknownService
from .outcome import MANUAL_EXTRACTION_NEEDED, Failure, NeedsHumanInput, Outcome
from .selector import SelectorResolver
from .session import SessionManager
from .waits import wait_for_condition

if TYPE_CHECKING:
    from playwright.async_api import Page

    from ..config import RunConfig
    from ..dsl.schema import FlowDefinition, Step
    from ..steps.registry import StepRegistry
    from .credentials import SecretStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# 結果データクラス
# ---------------------------------------------------------------------------

@dataclass
class StepResult:
    """単一ステップの実行結果。

    Attributes:
        step_name: ステップ名（YAML の name フィールド、なければ種別_インデックス）
        step_type: ステップ種別（navigate, fill, branch 等）
        path: ステップの位置（"3", "3.then.0" のように branch の腕を含む）
        status: passed / failed / halted（Outcome を生成して終了）
        duration_ms: 実行時間（ミリ秒）
        error: エラーメッセージ（失敗時のみ、マスク済み）
    """

    step_name: str
    step_type: str
    path: str
    status: Literal["passed", "failed", "halted"] = "passed"
    duration_ms: float = 0.0
    error: Optional[str] = None


@dataclass
class FlowResult:
    """フロー全体の実行結果。

    Attributes:
        flow_name: フロー名
        outcome: 終端結果（実行後は必ず設定される）
        steps: 各ステップの実行結果リスト
        duration_ms: 全体実行時間（ミリ秒）
        started_at: 実行開始日時
        finished_at: 実行終了日時
    """

    flow_name: str
    outcome: Optional[Outcome] = None
    steps: list[StepResult] = field(default_factory=list)
    duration_ms: float = 0.0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def status(self) -> str:
        return self.outcome.kind if self.outcome is not None else "pending"


# ---------------------------------------------------------------------------
# Runner 本体
# ---------------------------------------------------------------------------

class Runner:
    """フロー実行エンジン。

    StepRegistry を通じてステップ種別に応じたハンドラへディスパッチする。
    branch は Runner 自身が述語を評価し、選ばれた腕を再帰的に実行する。

    使用例::

        runner = Runner(registry)
        result = await runner.run(flow, page, context)
    """

    def __init__(self, registry: StepRegistry) -> None:
        self._registry = registry

    # -------------------------------------------------------------------
    # パブリック API
    # -------------------------------------------------------------------

    async def run(
        self,
        flow: FlowDefinition,
        page: Page,
        context: StepContext,
        *,
        step_timeout: int = 60_000,
    ) -> FlowResult:
        """フローを実行し、結果を返す。

        Args:
            flow: 実行対象のフロー
            page: Playwright の Page オブジェクト
            context: ステップ実行コンテキスト
            step_timeout: 各ステップのタイムアウト（ミリ秒）。0 で無制限。
                suspend には適用しない

        Returns:
            outcome が必ず設定された FlowResult
        """
        result = FlowResult(flow_name=flow.name, started_at=datetime.now())
        start_time = time.perf_counter()
        logger.info("フロー開始: %s (%s)", flow.name, flow.title)

        outcome = await self._execute_steps(page, flow.steps, context, result, "", step_timeout)
        if outcome is None:
            outcome = Failure(f"フロー '{flow.name}' が Outcome を生成せずに終了しました")
            logger.error(outcome.error)

        result.outcome = outcome
        result.finished_at = datetime.now()
        result.duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info("フロー終了: %s → %s (%.0fms)", flow.name, outcome.kind, result.duration_ms)
        return result

    # -------------------------------------------------------------------
    # ステップ実行
    # -------------------------------------------------------------------

    async def _execute_steps(
        self,
        page: Page,
        steps: list[Step],
        context: StepContext,
        result: FlowResult,
        prefix: str,
        step_timeout: int,
    ) -> Optional[Outcome]:
        """ステップリストを順次実行する。Outcome が生成された時点で返す。"""
        for idx, step in enumerate(steps):
            path = f"{prefix}{idx}"

            if isinstance(step, BranchStep):
                start_time = time.perf_counter()
                taken = await wait_for_condition(page, step.when, context.selector_resolver)
                arm_name = "then" if taken else "else"
                logger.info("branch: %s → %s (%s)", step.branch, arm_name, step.when.describe())
                result.steps.append(StepResult(
                    step_name=step.display_name(idx),
                    step_type=step.kind,
                    path=path,
                    duration_ms=(time.perf_counter() - start_time) * 1000,
                ))
                arm = step.then if taken else step.otherwise
                outcome = await self._execute_steps(
                    page, arm, context, result, f"{path}.{arm_name}.", step_timeout,
                )
                if outcome is not None:
                    return outcome
                continue

            step_result, outcome = await self._execute_single_step(
                page, step, idx, path, context, step_timeout,
            )
            result.steps.append(step_result)
            if outcome is not None:
                return outcome

        return None

    async def _execute_single_step(
        self,
        page: Page,
        step: Step,
        index: int,
        path: str,
        context: StepContext,
        step_timeout: int,
    ) -> tuple[StepResult, Optional[Outcome]]:
        """単一ステップを実行する。

        ステップ内で発生した例外は Outcome に変換し、呼び出し元へは送出しない。
        """
        step_name = step.display_name(index)
        step_result = StepResult(step_name=step_name, step_type=step.kind, path=path)
        outcome: Optional[Outcome] = None
        start_time = time.perf_counter()

        try:
            handler = self._registry.get(step.kind)
            if step_timeout > 0 and not isinstance(step, SuspendStep):
                try:
                    outcome = await asyncio.wait_for(
                        handler.execute(page, step, context),
                        timeout=step_timeout / 1000.0,
                    )
                except asyncio.TimeoutError:
                    if isinstance(step, ExtractSecretStep):
                        raise ExtractionFailure(
                            f"{step.extractSecret} を {step_timeout}ms 以内に抽出できませんでした"
                        ) from None
                    raise TimeoutError(
                        f"ステップ '{step_name}' が {step_timeout}ms 以内に完了しませんでした。"
                        f" --step-timeout オプションで調整できます。"
                    ) from None
            else:
                outcome = await handler.execute(page, step, context)

            step_result.status = "passed" if outcome is None else "halted"

        except ExtractionFailure as exc:
            message = context.variable_expander.mask(str(exc))
            step_result.status = "halted"
            step_result.error = message
            outcome = NeedsHumanInput(message, sentinel=MANUAL_EXTRACTION_NEEDED)

        except Exception as exc:
            message = context.variable_expander.mask(str(exc))
            step_result.status = "failed"
            step_result.error = message
            logger.error("ステップ '%s' (path=%s) でエラー: %s", step_name, path, message)
            outcome = Failure(message)

        step_result.duration_ms = (time.perf_counter() - start_time) * 1000
        return step_result, outcome


# ---------------------------------------------------------------------------
# オーケストレーション
# ---------------------------------------------------------------------------

async def run_flow(
    flow: FlowDefinition,
    store: SecretStore,
    config: RunConfig,
    *,
    registry: Optional[StepRegistry] = None,
    session_manager: Optional[SessionManager] = None,
    vars: Optional[Mapping[str, str]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> FlowResult:
    """1 つのフローを最初から最後まで実行する。

    認証情報はブラウザを起動する前に検証する。不足している場合は
    ブラウザを起動せずに Failure を返す。セッションは全ての終了経路で解放される。

    Args:
        flow: 実行するフロー
        store: 認証情報ストア
        config: 実行設定
        registry: ステップレジストリ（None で標準レジストリ）
        session_manager: セッションマネージャ（None で config から生成）
        vars: フロー変数の上書き
        env: ${env.X} の参照先（None で os.environ）

    Returns:
        outcome が必ず設定された FlowResult
    """
    started_at = datetime.now()

    try:
        credential = store.load(flow.service)
    except (MissingCredential, UnknownService) as exc:
        logger.error("%s", exc)
        return FlowResult(
            flow_name=flow.name,
            outcome=Failure(str(exc)),
            started_at=started_at,
            finished_at=datetime.now(),
        )

    expander = VariableExpander(
        creds=credential.fields,
        vars={**flow.vars, **(vars or {})},
        env=os.environ if env is None else env,
    )
    context = StepContext(
        selector_resolver=SelectorResolver(default_timeout=config.timeout),
        variable_expander=expander,
        human_wait=config.human_wait,
    )
    runner = Runner(registry or create_default_registry())
    manager = session_manager or SessionManager(config)

    try:
        async with manager.scope() as session:
            return await runner.run(flow, session.page, context, step_timeout=config.step_timeout)
    except Exception as exc:
        message = expander.mask(f"ブラウザセッションでエラーが発生しました: {exc}")
        logger.error(message)
        return FlowResult(
            flow_name=flow.name,
            outcome=Failure(message),
            started_at=started_at,
            finished_at=datetime.now(),
        )

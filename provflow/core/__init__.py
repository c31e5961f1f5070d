# コアモジュール
# 認証情報、ブラウザセッション、セレクタリゾルバ、待機、Runner、Outcome、レポート出力を提供

from .credentials import Credential, SecretStore
from .errors import (
    ElementNotFound,
    ExtractionFailure,
    FlowDefinitionError,
    MissingCredential,
    ProvflowError,
    SessionClosedError,
    UnexpectedPageState,
    UnknownService,
)
from .outcome import Failure, NeedsHumanInput, Outcome, PartialSuccess, Success
from .reporting import OutcomeReporter, Report
from .runner import FlowResult, Runner, StepResult, run_flow
from .selector import SelectorResolver
from .session import BrowserSession, SessionManager, SessionState

__all__ = [
    "BrowserSession",
    "Credential",
    "ElementNotFound",
    "ExtractionFailure",
    "Failure",
    "FlowDefinitionError",
    "FlowResult",
    "MissingCredential",
    "NeedsHumanInput",
    "Outcome",
    "OutcomeReporter",
    "PartialSuccess",
    "ProvflowError",
    "Report",
    "Runner",
    "SecretStore",
    "SelectorResolver",
    "SessionClosedError",
    "SessionManager",
    "SessionState",
    "StepResult",
    "Success",
    "UnexpectedPageState",
    "UnknownService",
    "run_flow",
]

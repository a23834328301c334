"""
Error Taxonomy for the Hierarchy Report Run

Provides systematic classification of failure modes with:
- Error categories aligned to the phases of a run
- A policy table mapping each category to its recovery action
- Explicit fetch outcomes for external-call wrappers
- Structured error context for debugging
"""

from enum import Enum, auto
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Callable, Generic, TypeVar
import logging
import traceback

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorCategory(Enum):
    """Systematic classification of failure modes."""
    # Startup
    CONNECTION_FAILED = auto()
    AUTHENTICATION_FAILED = auto()
    CONFIGURATION_ERROR = auto()

    # Record store reads
    FETCH_FAILED = auto()

    # Hierarchy traversal
    USER_PROCESSING_FAILED = auto()

    # Rendering and upload
    REPORT_FAILED = auto()

    UNKNOWN_ERROR = auto()


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class RecoveryAction:
    """What the run does after an error of a given category."""
    action_type: str
    description: str

    @staticmethod
    def default_value() -> "RecoveryAction":
        return RecoveryAction(
            action_type="default_value",
            description="Log and continue with an empty/default value",
        )

    @staticmethod
    def abandon_node() -> "RecoveryAction":
        return RecoveryAction(
            action_type="abandon_node",
            description="Log, drop the remaining work for this user, continue with the next seed user",
        )

    @staticmethod
    def skip_report() -> "RecoveryAction":
        return RecoveryAction(
            action_type="skip_report",
            description="Log and skip this report; traversal continues",
        )

    @staticmethod
    def abort_run() -> "RecoveryAction":
        return RecoveryAction(
            action_type="abort_run",
            description="Abort the whole run with a non-zero exit code",
        )


RECOVERY_POLICY: Dict[ErrorCategory, RecoveryAction] = {
    ErrorCategory.CONNECTION_FAILED: RecoveryAction.abort_run(),
    ErrorCategory.AUTHENTICATION_FAILED: RecoveryAction.abort_run(),
    ErrorCategory.CONFIGURATION_ERROR: RecoveryAction.abort_run(),
    ErrorCategory.FETCH_FAILED: RecoveryAction.default_value(),
    ErrorCategory.USER_PROCESSING_FAILED: RecoveryAction.abandon_node(),
    ErrorCategory.REPORT_FAILED: RecoveryAction.skip_report(),
    ErrorCategory.UNKNOWN_ERROR: RecoveryAction.abandon_node(),
}


@dataclass
class ClassifiedError:
    """A classified error with full context."""
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    recoverable: bool

    original_exception: Optional[Exception] = None
    context: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None

    def __post_init__(self):
        if self.original_exception and not self.stack_trace:
            self.stack_trace = ''.join(traceback.format_exception(
                type(self.original_exception),
                self.original_exception,
                self.original_exception.__traceback__
            ))

    @property
    def recovery_action(self) -> RecoveryAction:
        return RECOVERY_POLICY[self.category]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.name,
            "severity": self.severity.value,
            "message": self.message,
            "recoverable": self.recoverable,
            "recovery_action": self.recovery_action.action_type,
            "context": self.context,
        }


class ReporterError(Exception):
    """Base exception for reporter errors with classification."""

    category = ErrorCategory.UNKNOWN_ERROR
    severity = ErrorSeverity.MEDIUM
    recoverable = False

    def __init__(self, message: str, context: Dict[str, Any] = None):
        super().__init__(message)
        self.context = context or {}

    def classify(self) -> ClassifiedError:
        return ClassifiedError(
            category=self.category,
            severity=self.severity,
            message=str(self),
            recoverable=self.recoverable,
            original_exception=self,
            context=dict(self.context),
        )


class FatalConnectionError(ReporterError):
    """The record store cannot be reached at startup. Aborts the run."""
    category = ErrorCategory.CONNECTION_FAILED
    severity = ErrorSeverity.CRITICAL


class ConfigurationError(ReporterError):
    """Required settings are missing or invalid."""
    category = ErrorCategory.CONFIGURATION_ERROR
    severity = ErrorSeverity.CRITICAL


class RecoverableFetchError(ReporterError):
    """A single query or resolve call failed."""
    category = ErrorCategory.FETCH_FAILED
    severity = ErrorSeverity.LOW
    recoverable = True


class RecoverableUserError(ReporterError):
    """Processing one seed user or one chain node failed."""
    category = ErrorCategory.USER_PROCESSING_FAILED
    severity = ErrorSeverity.MEDIUM
    recoverable = True


class ReportError(ReporterError):
    """Rendering or delivering one report failed."""
    category = ErrorCategory.REPORT_FAILED
    severity = ErrorSeverity.MEDIUM
    recoverable = True


def classify_error(exception: Exception, context: Dict[str, Any] = None) -> ClassifiedError:
    """Classify an exception into a structured error."""
    context = context or {}

    if isinstance(exception, ReporterError):
        classified = exception.classify()
        classified.context.update(context)
        return classified

    error_str = str(exception).lower()

    if "401" in error_str or "403" in error_str or "unauthorized" in error_str:
        return ClassifiedError(
            category=ErrorCategory.AUTHENTICATION_FAILED,
            severity=ErrorSeverity.HIGH,
            message=str(exception),
            recoverable=False,
            original_exception=exception,
            context=context,
        )

    return ClassifiedError(
        category=ErrorCategory.UNKNOWN_ERROR,
        severity=ErrorSeverity.HIGH,
        message=str(exception),
        recoverable=True,
        original_exception=exception,
        context=context,
    )


@dataclass
class FetchOutcome(Generic[T]):
    """Result of a guarded external call: a value, plus the error if it failed."""
    value: T
    error: Optional[ClassifiedError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def guarded_fetch(
    operation: str,
    fetch: Callable[[], T],
    default: T,
    absorb_fatal: bool = False,
    **context: Any,
) -> FetchOutcome[T]:
    """
    Run one external read and convert recoverable failures into a default.

    Non-recoverable reporter errors (connection, configuration) propagate
    unless absorb_fatal is set; anything else raised by the read is logged
    and replaced by the default.

    Args:
        operation: Name used in the log line, e.g. "fetch_products"
        fetch: Zero-argument callable performing the read
        default: Value returned when the read fails
        absorb_fatal: Also replace non-recoverable errors by the default
        **context: Extra fields attached to the classified error

    Returns:
        FetchOutcome holding the fetched value or the default
    """
    try:
        return FetchOutcome(value=fetch())
    except Exception as e:
        if isinstance(e, ReporterError) and not e.recoverable and not absorb_fatal:
            raise
        error = e if isinstance(e, ReporterError) else RecoverableFetchError(str(e) or type(e).__name__)
        classified = classify_error(error, context={"operation": operation, **context})
        details = ", ".join(f"{k}={v}" for k, v in context.items())
        logger.error(f"{operation} failed ({details}): {e}")
        return FetchOutcome(value=default, error=classified)


def summarize_errors(errors: List[ClassifiedError]) -> Dict[str, int]:
    """Count classified errors by category name."""
    counts: Dict[str, int] = {}
    for error in errors:
        counts[error.category.name] = counts.get(error.category.name, 0) + 1
    return counts

"""
Tests for error classification, the recovery policy and guarded fetches.
"""
import pytest

from crm_reporter.core.error_taxonomy import (
    ErrorCategory,
    FatalConnectionError,
    RECOVERY_POLICY,
    RecoverableFetchError,
    RecoverableUserError,
    ReportError,
    classify_error,
    guarded_fetch,
    summarize_errors,
)


class TestRecoveryPolicy:

    @pytest.mark.parametrize("category,action", [
        (ErrorCategory.CONNECTION_FAILED, "abort_run"),
        (ErrorCategory.FETCH_FAILED, "default_value"),
        (ErrorCategory.USER_PROCESSING_FAILED, "abandon_node"),
        (ErrorCategory.REPORT_FAILED, "skip_report"),
    ])
    def test_policy_table(self, category, action):
        """Test that each category maps to its recovery action."""
        assert RECOVERY_POLICY[category].action_type == action

    def test_every_category_has_a_policy(self):
        """Should define a recovery policy for every category."""
        assert set(RECOVERY_POLICY) == set(ErrorCategory)


class TestClassification:

    def test_reporter_error_keeps_its_category(self):
        """Should keep the category and merge context of reporter errors."""
        classified = classify_error(RecoverableFetchError("timeout", context={"id": "l-1"}),
                                    context={"operation": "fetch"})

        assert classified.category == ErrorCategory.FETCH_FAILED
        assert classified.recoverable
        assert classified.context == {"id": "l-1", "operation": "fetch"}
        assert classified.recovery_action.action_type == "default_value"

    def test_fatal_is_not_recoverable(self):
        """Should mark connection errors as aborting the run."""
        classified = classify_error(FatalConnectionError("unreachable"))

        assert not classified.recoverable
        assert classified.to_dict()["recovery_action"] == "abort_run"

    def test_unauthorized_message_is_authentication(self):
        """Should classify 401 messages as authentication failures."""
        classified = classify_error(RuntimeError("401 Client Error: Unauthorized"))

        assert classified.category == ErrorCategory.AUTHENTICATION_FAILED

    def test_unknown_exception(self):
        """Should classify other exceptions as unknown with a trace."""
        classified = classify_error(KeyError("value"))

        assert classified.category == ErrorCategory.UNKNOWN_ERROR
        assert classified.stack_trace is not None

    def test_summarize(self):
        """Should count errors by category."""
        errors = [
            classify_error(ReportError("a")),
            classify_error(ReportError("b")),
            classify_error(RecoverableUserError("c")),
        ]

        assert summarize_errors(errors) == {"REPORT_FAILED": 2, "USER_PROCESSING_FAILED": 1}


class TestGuardedFetch:

    def test_success(self):
        """Should wrap a successful read."""
        outcome = guarded_fetch("fetch_products", lambda: [1, 2], default=[])

        assert outcome.ok
        assert outcome.value == [1, 2]

    def test_failure_returns_default(self, caplog):
        """Should log the failure and return the default."""
        def fail():
            raise ValueError("bad json")

        outcome = guarded_fetch("fetch_products", fail, default=[], user_id="u-1")

        assert not outcome.ok
        assert outcome.value == []
        assert outcome.error.category == ErrorCategory.FETCH_FAILED
        assert outcome.error.context["user_id"] == "u-1"
        assert "fetch_products failed (user_id=u-1): bad json" in caplog.text

    def test_fatal_error_propagates(self):
        """Should re-raise fatal errors by default."""
        def fail():
            raise FatalConnectionError("organization unreachable")

        with pytest.raises(FatalConnectionError):
            guarded_fetch("fetch_products", fail, default=[])

    def test_fatal_error_absorbed_on_request(self):
        """Should return the default for a fatal error when absorb_fatal is set."""
        def fail():
            raise FatalConnectionError("organization unreachable")

        outcome = guarded_fetch("resolve_entity_field", fail, default="", absorb_fatal=True, id="l-1")

        assert outcome.value == ""
        assert outcome.error.category == ErrorCategory.CONNECTION_FAILED
        assert "absorb_fatal" not in outcome.error.context

"""Tests for ondeploy error classes.

Tests cover:
- The EarlyTermination hierarchy
- Error kinds used to classify aborts
- Cause and context carried by the errors
"""

import pytest
from ondeploy.errors import (
    ConfigurationError,
    EarlyTermination,
    ErrorKind,
    InconsistentState,
    OnDeployError,
    ScriptExecutionError,
    SessionUnavailable,
    StoreUnavailable,
)


ALL_TERMINATIONS = [
    (ConfigurationError, ErrorKind.CONFIGURATION),
    (SessionUnavailable, ErrorKind.SESSION_UNAVAILABLE),
    (StoreUnavailable, ErrorKind.STORE_UNAVAILABLE),
]


class TestHierarchy:
    """Every abort is an EarlyTermination."""

    def test_early_termination_is_ondeploy_error(self):
        assert issubclass(EarlyTermination, OnDeployError)
        assert issubclass(OnDeployError, Exception)

    @pytest.mark.parametrize("cls,kind", ALL_TERMINATIONS)
    def test_simple_errors_have_kind(self, cls, kind):
        error = cls("boom")
        assert isinstance(error, EarlyTermination)
        assert error.kind == kind
        assert str(error) == "boom"

    def test_bare_early_termination_is_not_a_configuration_error(self):
        error = EarlyTermination("deploy cancelled")
        assert error.kind == ErrorKind.ABORTED
        assert not isinstance(error, ConfigurationError)

    def test_script_execution_error(self):
        error = ScriptExecutionError("AddIndex", "On-deploy script failed: AddIndex")
        assert isinstance(error, EarlyTermination)
        assert error.kind == ErrorKind.SCRIPT_EXECUTION
        assert error.identity == "AddIndex"

    def test_inconsistent_state(self):
        error = InconsistentState("AddIndex", "running", "already running")
        assert isinstance(error, EarlyTermination)
        assert error.kind == ErrorKind.INCONSISTENT_STATE
        assert error.identity == "AddIndex"
        assert error.status == "running"

    def test_can_be_caught_as_early_termination(self):
        with pytest.raises(EarlyTermination):
            raise StoreUnavailable("disk full")


class TestCause:
    """The causing error travels with the abort."""

    def test_cause_attribute(self):
        cause = OSError("permission denied")
        error = StoreUnavailable("cannot write", cause)
        assert error.cause is cause

    def test_cause_defaults_to_none(self):
        assert ConfigurationError("x").cause is None

    def test_raise_from_chains_cause(self):
        cause = RuntimeError("script bug")
        with pytest.raises(ScriptExecutionError) as exc_info:
            try:
                raise cause
            except RuntimeError as e:
                raise ScriptExecutionError("A", "failed", e) from e

        assert exc_info.value.__cause__ is cause
        assert exc_info.value.cause is cause

    def test_error_kind_values_are_strings(self):
        assert ErrorKind.STORE_UNAVAILABLE.value == "store_unavailable"
        assert ErrorKind("inconsistent_state") is ErrorKind.INCONSISTENT_STATE

"""
Error classes for ondeploy activations.

Every fatal condition in an activation is an EarlyTermination. The
subclasses classify the cause:
- ConfigurationError: a configured script cannot be resolved
- SessionUnavailable: the privileged session could not be acquired
- StoreUnavailable: the status store cannot be read or written
- ScriptExecutionError: the script itself raised
- InconsistentState: a status record says the script is still running

None of these are retried within an activation. Retry happens on the next
activation, driven by the persisted status records.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification of an early termination."""
    ABORTED = "aborted"
    CONFIGURATION = "configuration"
    SESSION_UNAVAILABLE = "session_unavailable"
    STORE_UNAVAILABLE = "store_unavailable"
    SCRIPT_EXECUTION = "script_execution"
    INCONSISTENT_STATE = "inconsistent_state"


class OnDeployError(Exception):
    """Base exception for ondeploy."""
    pass


class EarlyTermination(OnDeployError):
    """
    Abort signal for the current activation.

    Carries the causing error (also chained as __cause__ when raised with
    ``raise ... from``). Remaining scripts are not attempted, but session
    release still runs.
    """

    kind: ErrorKind = ErrorKind.ABORTED

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ConfigurationError(EarlyTermination):
    """A configured script identity cannot be resolved to a valid script."""
    kind = ErrorKind.CONFIGURATION


class SessionUnavailable(EarlyTermination):
    """The session to the target system could not be opened."""
    kind = ErrorKind.SESSION_UNAVAILABLE


class StoreUnavailable(EarlyTermination):
    """The status store could not be created, read or written."""
    kind = ErrorKind.STORE_UNAVAILABLE


class ScriptExecutionError(EarlyTermination):
    """An on-deploy script raised while executing."""
    kind = ErrorKind.SCRIPT_EXECUTION

    def __init__(self, identity: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(message, cause)
        self.identity = identity


class InconsistentState(EarlyTermination):
    """
    A script's record is Running (or unreadable as a known status) at the
    start of its cycle.

    Either another activation is running it right now or a previous one
    crashed mid-run. Which one cannot be told apart, so the batch aborts and
    the record must be repaired by hand (see ``ondeploy reset``).
    """
    kind = ErrorKind.INCONSISTENT_STATE

    def __init__(self, identity: str, status: Optional[str], message: str):
        super().__init__(message)
        self.identity = identity
        self.status = status

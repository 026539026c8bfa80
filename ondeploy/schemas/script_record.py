"""
ScriptRecord schema - tracks the execution status of one on-deploy script.

A ScriptRecord is keyed by the script identity and is the only thing that
survives between activations. Absence of a record means "never run".
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class ScriptStatus(str, Enum):
    """Persisted status of a script. A missing status is Python None."""
    RUNNING = "running"
    SUCCESS = "success"
    FAIL = "fail"


# Statuses a finished script may be recorded with
OUTCOMES = (ScriptStatus.SUCCESS, ScriptStatus.FAIL)


def parse_status(value: Optional[str]) -> Optional[ScriptStatus]:
    """Parse a persisted status string.

    Raises:
        ValueError: If the value is not a known status
    """
    if value is None:
        return None
    return ScriptStatus(value)


@dataclass
class ScriptRecord:
    """
    Persisted execution record of an on-deploy script.

    Attributes:
        identity: Stable script identity (store key)
        status: None (never run), running, success or fail
        started_at: Set when the script transitions into running
        ended_at: Cleared when running, set on success/fail
    """
    identity: str
    status: Optional[ScriptStatus] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    def __post_init__(self):
        if self.status is not None and not isinstance(self.status, ScriptStatus):
            self.status = ScriptStatus(self.status)
        if self.status == ScriptStatus.RUNNING and self.ended_at is not None:
            raise ValueError("Running scripts should not have ended_at")

    def mark_running(self, now: Optional[datetime] = None) -> None:
        """Transition into running: stamp the start, clear the end."""
        self.status = ScriptStatus.RUNNING
        self.started_at = now or _utcnow()
        self.ended_at = None

    def mark_outcome(self, outcome: ScriptStatus, now: Optional[datetime] = None) -> None:
        """Record the final outcome of a run."""
        if outcome not in OUTCOMES:
            raise ValueError(f"Not a final outcome: {outcome!r}")
        self.status = outcome
        self.ended_at = now or _utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted layout."""
        return {
            "identity": self.identity,
            "status": self.status.value if self.status else None,
            "startDate": self.started_at.isoformat() if self.started_at else None,
            "endDate": self.ended_at.isoformat() if self.ended_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScriptRecord":
        """Deserialize from the persisted layout.

        Raises:
            ValueError: If the status is not a known status
        """
        started_at = None
        if data.get("startDate"):
            started_at = datetime.fromisoformat(data["startDate"])
        ended_at = None
        if data.get("endDate"):
            ended_at = datetime.fromisoformat(data["endDate"])
        return cls(
            identity=data["identity"],
            status=parse_status(data.get("status")),
            started_at=started_at,
            ended_at=ended_at,
        )

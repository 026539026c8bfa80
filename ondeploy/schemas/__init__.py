"""
ondeploy.schemas - Data structures persisted by ondeploy.

ScriptRecord is the per-script status record kept by the status store.
Its lifecycle within one activation:

    None/fail -> running -> success | fail
"""

from .script_record import (
    OUTCOMES,
    ScriptRecord,
    ScriptStatus,
    parse_status,
)

__all__ = [
    "OUTCOMES",
    "ScriptRecord",
    "ScriptStatus",
    "parse_status",
]

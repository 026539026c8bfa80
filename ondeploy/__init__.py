"""
ondeploy - Run one-time upgrade scripts exactly once.

Runs an ordered list of idempotent on-deploy scripts against a target
database, recording each script's outcome so later activations skip scripts
that succeeded and retry scripts that failed.
"""

__version__ = "0.1.0"


__all__ = [
    "OnDeployScript",
    "OnDeployExecutor",
    "ScriptRegistry",
    "register",
    "run_on_deploy",
]

from .script import OnDeployScript
from .registry import ScriptRegistry, register
from .executor import OnDeployExecutor, run_on_deploy

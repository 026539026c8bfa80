"""Base contract for on-deploy scripts.

An on-deploy script is a unit of one-time upgrade work run against the
target system. Scripts should be idempotent by convention: the status store
can be wiped, and a failed script is run again on the next activation, so
any script may end up running more than once.
"""

import sqlite3
from abc import ABC, abstractmethod
from typing import Optional

from ondeploy.query import QueryHelper


class OnDeployScript(ABC):
    """
    Abstract base class for on-deploy scripts.

    Subclasses implement ``execute``. Returning normally means success;
    raising any exception means failure.

    The status store keys the script by ``identity``: the name it was
    resolved under (set on the instance by the registry), else the
    ``script_id`` declared on its own class, otherwise the fully-qualified
    class name. ``script_id`` is not inherited, so a subclass gets its own
    record. Renaming a script's identity makes it run again.
    """

    script_id: Optional[str] = None

    @property
    def identity(self) -> str:
        cls = type(self)
        script_id = self.__dict__.get("script_id") or cls.__dict__.get("script_id")
        if script_id:
            return script_id
        return f"{cls.__module__}.{cls.__qualname__}"

    @abstractmethod
    def execute(self, connection: sqlite3.Connection, query: QueryHelper) -> None:
        """
        Apply the script to the target system.

        Args:
            connection: The session's connection to the target database
            query: Read helpers over the same connection
        """
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(identity={self.identity!r})"

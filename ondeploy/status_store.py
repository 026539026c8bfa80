"""
StatusStore - Persist per-script execution status between activations.

The StatusStore manages one ScriptRecord per script identity. Absence of a
record means "never run", so wiping the whole store is tolerated and simply
makes every script eligible again.

Storage backends:
- In-memory (for testing)
- File-based: one JSON file per identity under a root directory
- SQLite: a status table inside the target database itself

Every write is durable before the call returns. Low-level errors (OSError,
JSON decoding, sqlite3.Error) are translated into StoreUnavailable here, at
the store boundary.
"""

import json
import os
import re
import sqlite3
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Optional
from urllib.parse import quote, unquote

from ondeploy.errors import ConfigurationError, InconsistentState, StoreUnavailable
from ondeploy.schemas import OUTCOMES, ScriptRecord, ScriptStatus, parse_status

if TYPE_CHECKING:
    from ondeploy.session import Session


DEFAULT_STATUS_TABLE = "ondeploy_script_status"

_TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StatusHandle:
    """
    Stable reference to the record of one script.

    Attributes:
        identity: The script identity
        location: Where the record lives (file path or table/key), for logs
    """
    identity: str
    location: str


def _unknown_state(handle: StatusHandle, value: Optional[str]) -> InconsistentState:
    return InconsistentState(
        handle.identity,
        value,
        f"On-deploy script is in an unknown state: {handle.location} - status: {value}",
    )


class StatusStore(ABC):
    """
    Abstract base class for script status storage.

    Implementations must provide methods to:
    - Locate (and lazily create) the record of a script
    - Read its status
    - Mark it running, and record its outcome
    - List and reset records for administration
    """

    @abstractmethod
    def get_or_create(self, identity: str) -> StatusHandle:
        """
        Return a handle to the record of ``identity``, creating it if absent.

        A newly created record has no status.

        Raises:
            StoreUnavailable: If the backing structure cannot be created
        """
        pass

    @abstractmethod
    def read_status(self, handle: StatusHandle) -> Optional[ScriptStatus]:
        """
        Read the current status of a record.

        Returns:
            The status, or None if the script never ran

        Raises:
            StoreUnavailable: If the record cannot be read
            InconsistentState: If the persisted status is not a known status
        """
        pass

    @abstractmethod
    def write_running(self, handle: StatusHandle) -> None:
        """
        Mark the script running: status=running, start stamped, end cleared.

        Raises:
            StoreUnavailable: If the record cannot be written
        """
        pass

    @abstractmethod
    def write_outcome(self, handle: StatusHandle, outcome: ScriptStatus) -> None:
        """
        Record the final outcome (success or fail) and stamp the end.

        Raises:
            StoreUnavailable: If the record cannot be written
            ValueError: If outcome is not success or fail
        """
        pass

    @abstractmethod
    def get_record(self, identity: str) -> Optional[ScriptRecord]:
        """Return the full record of ``identity``, or None if there is none."""
        pass

    @abstractmethod
    def list_records(self) -> list[ScriptRecord]:
        """Return all records, sorted by identity."""
        pass

    @abstractmethod
    def reset(self, identity: str) -> bool:
        """
        Delete the record of ``identity`` so the script runs again.

        This is an administrative operation; activations never call it.

        Returns:
            True if a record was removed
        """
        pass


def _check_outcome(outcome: ScriptStatus) -> None:
    if outcome not in OUTCOMES:
        raise ValueError(f"Outcome must be success or fail, got: {outcome!r}")


class InMemoryStatusStore(StatusStore):
    """
    In-memory implementation of StatusStore for testing.

    All data is lost when the instance is garbage collected.
    """

    def __init__(self):
        self._records: dict[str, ScriptRecord] = {}

    def get_or_create(self, identity: str) -> StatusHandle:
        if identity not in self._records:
            self._records[identity] = ScriptRecord(identity=identity)
        return StatusHandle(identity=identity, location=f"mem://{identity}")

    def read_status(self, handle: StatusHandle) -> Optional[ScriptStatus]:
        record = self._records.get(handle.identity)
        return record.status if record else None

    def write_running(self, handle: StatusHandle) -> None:
        record = self._records.setdefault(handle.identity, ScriptRecord(identity=handle.identity))
        record.mark_running()

    def write_outcome(self, handle: StatusHandle, outcome: ScriptStatus) -> None:
        _check_outcome(outcome)
        record = self._records.setdefault(handle.identity, ScriptRecord(identity=handle.identity))
        record.mark_outcome(outcome)

    def get_record(self, identity: str) -> Optional[ScriptRecord]:
        return self._records.get(identity)

    def list_records(self) -> list[ScriptRecord]:
        return [self._records[k] for k in sorted(self._records)]

    def reset(self, identity: str) -> bool:
        return self._records.pop(identity, None) is not None

    def clear(self) -> None:
        """Clear all stored records (for testing)."""
        self._records.clear()


class FileStatusStore(StatusStore):
    """
    File-based implementation of StatusStore.

    Stores one JSON document per script identity:
        root/
            {quoted identity}.json

    The identity is percent-encoded so any identity maps to exactly one file
    name. Records are replaced atomically (write temp file, fsync, rename), so
    a crash never leaves a partially written record behind.
    """

    def __init__(self, root: Path | str):
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, identity: str) -> Path:
        """Deterministic record path for an identity."""
        name = quote(identity, safe="")
        # dotfiles are reserved for temp files
        if name.startswith("."):
            name = "%2E" + name[1:]
        return self._root / f"{name}.json"

    def _handle(self, identity: str) -> StatusHandle:
        return StatusHandle(identity=identity, location=str(self.path_for(identity)))

    def _write(self, record: ScriptRecord) -> None:
        path = self.path_for(record.identity)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(record.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def _load(self, handle: StatusHandle) -> Optional[ScriptRecord]:
        path = Path(handle.location)
        try:
            if not path.exists():
                return None
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreUnavailable(f"Could not read script status file: {path}", e) from e

        if not isinstance(data, dict):
            raise StoreUnavailable(f"Malformed script status file: {path}")

        try:
            parse_status(data.get("status"))
        except ValueError:
            raise _unknown_state(handle, data.get("status"))

        data.setdefault("identity", handle.identity)
        try:
            return ScriptRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise StoreUnavailable(f"Malformed script status file: {path}", e) from e

    def get_or_create(self, identity: str) -> StatusHandle:
        handle = self._handle(identity)
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            if not self.path_for(identity).exists():
                self._write(ScriptRecord(identity=identity))
        except OSError as e:
            raise StoreUnavailable(
                f"Could not find or create script status file: {handle.location}", e
            ) from e
        return handle

    def read_status(self, handle: StatusHandle) -> Optional[ScriptStatus]:
        record = self._load(handle)
        return record.status if record else None

    def write_running(self, handle: StatusHandle) -> None:
        record = ScriptRecord(identity=handle.identity)
        record.mark_running()
        try:
            self._write(record)
        except OSError as e:
            raise StoreUnavailable(f"Could not write script status file: {handle.location}", e) from e

    def write_outcome(self, handle: StatusHandle, outcome: ScriptStatus) -> None:
        _check_outcome(outcome)
        record = self._load(handle) or ScriptRecord(identity=handle.identity)
        record.mark_outcome(outcome)
        try:
            self._write(record)
        except OSError as e:
            raise StoreUnavailable(f"Could not write script status file: {handle.location}", e) from e

    def get_record(self, identity: str) -> Optional[ScriptRecord]:
        return self._load(self._handle(identity))

    def list_records(self) -> list[ScriptRecord]:
        if not self._root.exists():
            return []
        records = []
        for path in sorted(self._root.glob("*.json")):
            if path.name.startswith("."):
                continue
            record = self.get_record(unquote(path.stem))
            if record is not None:
                records.append(record)
        return sorted(records, key=lambda r: r.identity)

    def reset(self, identity: str) -> bool:
        path = self.path_for(identity)
        try:
            if not path.exists():
                return False
            path.unlink()
        except OSError as e:
            raise StoreUnavailable(f"Could not delete script status file: {path}", e) from e
        return True


class SqliteStatusStore(StatusStore):
    """
    SQLite implementation of StatusStore.

    Keeps the records in a table of the target database, next to the data the
    scripts migrate:

        CREATE TABLE ondeploy_script_status (
            identity   TEXT PRIMARY KEY,
            status     TEXT,
            start_date TEXT,
            end_date   TEXT
        )

    The table is (re)created on demand, so dropping it resets every script.
    Each write is committed immediately.
    """

    def __init__(self, connection: sqlite3.Connection, table: str = DEFAULT_STATUS_TABLE):
        if not _TABLE_NAME_RE.match(table):
            raise ValueError(f"Invalid status table name: {table!r}")
        self._conn = connection
        self._table = table

    @property
    def table(self) -> str:
        return self._table

    def _handle(self, identity: str) -> StatusHandle:
        return StatusHandle(identity=identity, location=f"{self._table}/{identity}")

    def _commit(self, sql: str, params: tuple, handle: StatusHandle, action: str) -> None:
        try:
            self._conn.execute(sql, params)
            self._conn.commit()
        except sqlite3.Error as e:
            try:
                self._conn.rollback()
            except sqlite3.Error:
                pass
            raise StoreUnavailable(f"Could not {action} script status row: {handle.location}", e) from e

    def _fetch(self, handle: StatusHandle) -> Optional[tuple]:
        try:
            cursor = self._conn.execute(
                f"SELECT identity, status, start_date, end_date FROM {self._table} WHERE identity = ?",
                (handle.identity,),
            )
            return cursor.fetchone()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Could not read script status row: {handle.location}", e) from e

    def _to_record(self, handle: StatusHandle, row: tuple) -> ScriptRecord:
        identity, status, start_date, end_date = row
        try:
            parse_status(status)
        except ValueError:
            raise _unknown_state(handle, status)
        return ScriptRecord.from_dict({
            "identity": identity,
            "status": status,
            "startDate": start_date,
            "endDate": end_date,
        })

    def get_or_create(self, identity: str) -> StatusHandle:
        handle = self._handle(identity)
        try:
            self._conn.execute(
                f"CREATE TABLE IF NOT EXISTS {self._table} ("
                "identity TEXT PRIMARY KEY, status TEXT, start_date TEXT, end_date TEXT)"
            )
            self._conn.execute(
                f"INSERT OR IGNORE INTO {self._table} (identity) VALUES (?)",
                (identity,),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StoreUnavailable(
                f"Could not find or create script status row: {handle.location}", e
            ) from e
        return handle

    def read_status(self, handle: StatusHandle) -> Optional[ScriptStatus]:
        row = self._fetch(handle)
        if row is None:
            return None
        return self._to_record(handle, row).status

    def write_running(self, handle: StatusHandle) -> None:
        self._commit(
            f"INSERT INTO {self._table} (identity, status, start_date, end_date) "
            "VALUES (?, ?, ?, NULL) "
            "ON CONFLICT(identity) DO UPDATE SET "
            "status = excluded.status, start_date = excluded.start_date, end_date = NULL",
            (handle.identity, ScriptStatus.RUNNING.value, _utcnow().isoformat()),
            handle,
            "write",
        )

    def write_outcome(self, handle: StatusHandle, outcome: ScriptStatus) -> None:
        _check_outcome(outcome)
        self._commit(
            f"INSERT INTO {self._table} (identity, status, end_date) VALUES (?, ?, ?) "
            "ON CONFLICT(identity) DO UPDATE SET "
            "status = excluded.status, end_date = excluded.end_date",
            (handle.identity, outcome.value, _utcnow().isoformat()),
            handle,
            "write",
        )

    def get_record(self, identity: str) -> Optional[ScriptRecord]:
        handle = self._handle(identity)
        if not self._table_exists():
            return None
        row = self._fetch(handle)
        return self._to_record(handle, row) if row else None

    def list_records(self) -> list[ScriptRecord]:
        if not self._table_exists():
            return []
        try:
            rows = self._conn.execute(
                f"SELECT identity, status, start_date, end_date FROM {self._table} ORDER BY identity"
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Could not list script status table: {self._table}", e) from e
        return [self._to_record(self._handle(row[0]), row) for row in rows]

    def reset(self, identity: str) -> bool:
        if not self._table_exists():
            return False
        handle = self._handle(identity)
        try:
            cursor = self._conn.execute(
                f"DELETE FROM {self._table} WHERE identity = ?", (identity,)
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Could not delete script status row: {handle.location}", e) from e
        return cursor.rowcount > 0

    def _table_exists(self) -> bool:
        try:
            row = self._conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
                (self._table,),
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Could not inspect status table: {self._table}", e) from e
        return row is not None


# Durable backends selectable by name. InMemoryStatusStore is injected
# through a store factory in tests only.
STATUS_BACKENDS = ("sqlite", "file")


def create_status_store(
    backend: str,
    session: "Session",
    root: Optional[Path | str] = None,
    table: str = DEFAULT_STATUS_TABLE,
) -> StatusStore:
    """
    Build the status store for an activation.

    Args:
        backend: "sqlite" (table in the target database) or "file"
        session: The active session; the sqlite backend uses its connection
        root: Root directory for the file backend
        table: Table name for the sqlite backend

    Raises:
        ConfigurationError: If the backend is unknown or misconfigured
    """
    if backend == "sqlite":
        try:
            return SqliteStatusStore(session.connection, table=table)
        except ValueError as e:
            raise ConfigurationError(str(e), e) from e
    if backend == "file":
        if root is None:
            raise ConfigurationError("The file status backend requires a status_root")
        return FileStatusStore(root)
    raise ConfigurationError(
        f"Unknown status backend '{backend}'. Available: {', '.join(STATUS_BACKENDS)}"
    )

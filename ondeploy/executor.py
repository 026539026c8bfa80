"""
OnDeployExecutor - Run on-deploy scripts exactly once.

The executor manages scripts so that they only run once (unless the script
fails). Scripts run in the order they are configured, one at a time, and the
outcome of each is recorded in a StatusStore.

Per-script state machine, decided from the status read before acting:

    None    -> mark running, execute, mark success | fail
    fail    -> mark running, execute (retry), mark success | fail
    running -> abort the activation (InconsistentState), record untouched
    success -> skip

Any failure aborts the remaining batch: later scripts may assume earlier ones
completed. Nothing is retried within an activation; a failed or missing
record is picked up again by the next activation.

NOTE: since the status store can always be wiped, scripts should be written
defensively in case they are actually run more than once.

Usage:
    from ondeploy.executor import OnDeployExecutor

    executor = OnDeployExecutor(
        registry=registry,
        session_factory=SqliteSessionFactory("app.db"),
    )
    executor.activate(["AddIndex", "MigrateUsers"])
"""

import logging
from typing import Callable, Iterable, Optional

from ondeploy.config import OnDeployConfig
from ondeploy.errors import InconsistentState, ScriptExecutionError, StoreUnavailable
from ondeploy.registry import ScriptRegistry, registry as default_registry
from ondeploy.schemas import ScriptStatus
from ondeploy.script import OnDeployScript
from ondeploy.session import Session, SessionFactory, SqliteSessionFactory, session_scope
from ondeploy.status_store import StatusHandle, StatusStore, create_status_store

logger = logging.getLogger(__name__)

StoreFactory = Callable[[Session], StatusStore]


def _extra(handle: StatusHandle, status: Optional[ScriptStatus]) -> dict:
    return {"identity": handle.identity, "status": status.value if status else None}


def sqlite_store_factory(session: Session) -> StatusStore:
    """Default store factory: status table inside the target database."""
    return create_status_store("sqlite", session)


class OnDeployExecutor:
    """
    Executes on-deploy scripts against a target system.

    Each call to activate() is one activation: it opens a session, resolves
    the configured scripts, and runs them in order, releasing the session on
    every exit path.
    """

    def __init__(
        self,
        registry: ScriptRegistry,
        session_factory: SessionFactory,
        store_factory: Optional[StoreFactory] = None,
    ):
        """
        Initialize the executor.

        Args:
            registry: Resolves configured identifiers to script instances
            session_factory: Opens the session scripts run against
            store_factory: Builds the StatusStore for a session
                (default: SQLite status table in the target database)
        """
        self._registry = registry
        self._session_factory = session_factory
        self._store_factory = store_factory or sqlite_store_factory

    @property
    def session_factory(self) -> SessionFactory:
        return self._session_factory

    @property
    def store_factory(self) -> StoreFactory:
        return self._store_factory

    def activate(self, script_ids: Iterable[str]) -> None:
        """
        Run every configured script that has not yet succeeded.

        Args:
            script_ids: Script identifiers, in the order to run them

        Raises:
            EarlyTermination: If the activation was aborted
        """
        logger.info("Checking for on-deploy scripts")
        script_ids = [s for s in script_ids if s and s.strip()]
        if not script_ids:
            logger.debug("No on-deploy scripts found.")
            return

        with session_scope(self._session_factory) as session:
            scripts = self._registry.resolve(script_ids)
            store = self._store_factory(session)
            self.run_scripts(session, store, scripts)

    def run_scripts(self, session: Session, store: StatusStore, scripts: list[OnDeployScript]) -> None:
        for script in scripts:
            self.run_script(session, store, script)

    def run_script(self, session: Session, store: StatusStore, script: OnDeployScript) -> None:
        """Apply the state machine to a single script."""
        handle = self._get_or_create_status(store, script.identity)
        status = self._get_status(store, handle)

        if status is None or status == ScriptStatus.FAIL:
            self._track_start(store, handle)
            try:
                script.execute(session.connection, session.query)
                session.commit()
            except Exception as e:
                msg = f"On-deploy script failed: {handle.location}"
                logger.error(msg, exc_info=True, extra=_extra(handle, ScriptStatus.FAIL))
                self._discard_changes(session, handle)
                self._track_end(store, handle, ScriptStatus.FAIL)
                raise ScriptExecutionError(handle.identity, msg, e) from e

            logger.info(
                f"On-deploy script completed successfully: {handle.location}",
                extra=_extra(handle, ScriptStatus.SUCCESS),
            )
            self._track_end(store, handle, ScriptStatus.SUCCESS)
        elif status == ScriptStatus.RUNNING:
            msg = (
                f"On-deploy script is already running or in an otherwise unknown state: "
                f"{handle.location} - status: {status.value}"
            )
            logger.error(msg, extra=_extra(handle, status))
            raise InconsistentState(handle.identity, status.value, msg)
        else:
            logger.debug(
                f"Skipping on-deploy script, as it is already complete: {handle.location}",
                extra=_extra(handle, status),
            )

    def reset(self, identity: str) -> bool:
        """
        Force-reset one script's record so the next activation runs it again.

        This is the manual repair for a record stuck in running. It is never
        done automatically.

        Returns:
            True if a record was removed
        """
        with session_scope(self._session_factory) as session:
            store = self._store_factory(session)
            removed = store.reset(identity)
        if removed:
            logger.warning(f"On-deploy script status was reset: {identity}")
        else:
            logger.info(f"No on-deploy script status to reset: {identity}")
        return removed

    def _get_or_create_status(self, store: StatusStore, identity: str) -> StatusHandle:
        try:
            return store.get_or_create(identity)
        except StoreUnavailable:
            logger.error(
                f"On-deploy script cannot be run because the system could not find or create "
                f"the script status record: {identity}"
            )
            raise

    def _get_status(self, store: StatusStore, handle: StatusHandle) -> Optional[ScriptStatus]:
        try:
            return store.read_status(handle)
        except StoreUnavailable:
            logger.error(
                f"On-deploy script cannot be run because the system could not read the script "
                f"status record: {handle.location}"
            )
            raise
        except InconsistentState as e:
            logger.error(str(e))
            raise

    def _track_start(self, store: StatusStore, handle: StatusHandle) -> None:
        logger.info(
            f"Starting on-deploy script: {handle.location}",
            extra=_extra(handle, ScriptStatus.RUNNING),
        )
        try:
            store.write_running(handle)
        except StoreUnavailable:
            logger.error(
                f"On-deploy script cannot be run because the system could not write to the "
                f"script status record: {handle.location}"
            )
            raise

    def _track_end(self, store: StatusStore, handle: StatusHandle, status: ScriptStatus) -> None:
        try:
            store.write_outcome(handle, status)
        except StoreUnavailable:
            logger.error(
                f"On-deploy script status record could not be updated: {handle.location} "
                f"- status: {status.value}"
            )
            raise

    def _discard_changes(self, session: Session, handle: StatusHandle) -> None:
        try:
            session.rollback()
        except Exception:
            logger.warning(
                f"Could not roll back changes of failed on-deploy script: {handle.location}",
                exc_info=True,
            )


def build_executor(config: OnDeployConfig, registry: Optional[ScriptRegistry] = None) -> OnDeployExecutor:
    """Build an executor from configuration."""
    registry = registry or default_registry
    registry.import_modules(config.script_modules)

    def store_factory(session: Session) -> StatusStore:
        return create_status_store(
            config.status_backend,
            session,
            root=config.status_root,
            table=config.status_table,
        )

    return OnDeployExecutor(
        registry=registry,
        session_factory=SqliteSessionFactory(config.database_path),
        store_factory=store_factory,
    )


def run_on_deploy(
    config: OnDeployConfig,
    script_ids: Optional[list[str]] = None,
    registry: Optional[ScriptRegistry] = None,
) -> None:
    """
    Activate once over the configured scripts.

    Args:
        config: Loaded configuration
        script_ids: Override the configured script list
        registry: Registry to resolve scripts with (default: process-wide)
    """
    executor = build_executor(config, registry=registry)
    executor.activate(config.scripts if script_ids is None else script_ids)

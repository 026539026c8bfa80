import pytest

from ondeploy.registry import ScriptRegistry
from ondeploy.script import OnDeployScript
from ondeploy.session import SqliteSessionFactory


class RecordingScript(OnDeployScript):
    """Test script that records its invocations and can be told to fail."""

    def __init__(self, name, calls, fail=False, action=None):
        self.script_id = name
        self._calls = calls
        self._fail = fail
        self._action = action

    def execute(self, connection, query):
        self._calls.append(self.script_id)
        if self._action is not None:
            self._action(connection, query)
        if self._fail:
            raise RuntimeError(f"{self.script_id} exploded")


class CountingSessionFactory:
    """Wraps SqliteSessionFactory and counts opened/released sessions."""

    def __init__(self, database_path):
        self._inner = SqliteSessionFactory(database_path)
        self.opened = 0
        self.released = 0

    def open(self):
        session = self._inner.open()
        self.opened += 1
        session.on_release("count", self._count_release)
        return session

    def _count_release(self):
        self.released += 1


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "app.db"


@pytest.fixture
def session_factory(db_path):
    return CountingSessionFactory(db_path)


@pytest.fixture
def calls():
    return []


@pytest.fixture
def registry():
    return ScriptRegistry()


@pytest.fixture
def add_script(registry, calls):
    """Register a RecordingScript under a name. Returns the behaviour dict so
    tests can flip a script between failing and passing across activations."""
    behaviours = {}

    def _add(name, fail=False, action=None):
        behaviours[name] = {"fail": fail, "action": action}
        registry.add(
            name,
            lambda: RecordingScript(
                name,
                calls,
                fail=behaviours[name]["fail"],
                action=behaviours[name]["action"],
            ),
        )
        return behaviours[name]

    return _add

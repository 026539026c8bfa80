"""
ScriptRegistry - Resolve configured script identifiers to script instances.

The registry provides:
- Explicit registration of script factories by name (decorator or add())
- Discovery of scripts published by installed packages via entry points
- Loading "module:attr" paths, restricted to an allowlist of modules
- Fresh instances on every resolve, in the order requested
"""

import importlib
import logging
from importlib.metadata import entry_points
from typing import Any, Callable, Iterable, Optional

from ondeploy.errors import ConfigurationError
from ondeploy.script import OnDeployScript

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "ondeploy.scripts"

ScriptFactory = Callable[[], OnDeployScript]


class ScriptRegistry:
    """
    Registry mapping script identities to script factories.

    Lookup order for an identifier:
        1. names registered with register()/add()
        2. entry points in the "ondeploy.scripts" group
        3. "package.module:ClassName" (or "package.module.ClassName") paths
           whose module is allowlisted

    Example:
        registry = ScriptRegistry()

        @registry.register("AddIndex")
        class AddIndex(OnDeployScript):
            def execute(self, connection, query):
                connection.execute("CREATE INDEX IF NOT EXISTS ...")

        scripts = registry.resolve(["AddIndex"])
    """

    def __init__(self, allowed_modules: Optional[Iterable[str]] = None):
        """
        Initialize the registry.

        Args:
            allowed_modules: Modules (and their submodules) that configured
                "module:attr" paths may be loaded from
        """
        self._factories: dict[str, ScriptFactory] = {}
        self._allowed_modules: list[str] = list(allowed_modules or [])

    @property
    def allowed_modules(self) -> list[str]:
        return list(self._allowed_modules)

    def allow_module(self, module_path: str) -> None:
        if module_path not in self._allowed_modules:
            self._allowed_modules.append(module_path)

    def add(self, name: str, factory: ScriptFactory) -> None:
        """
        Register a factory under a script identity.

        Raises:
            ValueError: If the name is blank or already registered
        """
        if not name or not name.strip():
            raise ValueError("Script name must not be blank")
        if name in self._factories:
            raise ValueError(f"Script already registered: {name}")
        self._factories[name] = factory

    def register(self, name: Optional[str] = None) -> Callable[[type], type]:
        """
        Class decorator registering an OnDeployScript subclass.

        The registered name becomes the script's identity. Defaults to the
        class name.
        """
        def decorator(cls: type) -> type:
            if not (isinstance(cls, type) and issubclass(cls, OnDeployScript)):
                raise TypeError(f"{cls!r} does not implement OnDeployScript")
            script_name = name or cls.__name__
            self.add(script_name, cls)
            cls.script_id = script_name
            return cls
        return decorator

    def import_modules(self, modules: Iterable[str]) -> None:
        """
        Import modules so their @register decorators run, and allowlist them.

        Raises:
            ConfigurationError: If a module cannot be imported
        """
        for module_path in modules:
            try:
                importlib.import_module(module_path)
            except ImportError as e:
                logger.error(f"Could not import on-deploy script module: {module_path}")
                raise ConfigurationError(
                    f"Cannot import script module '{module_path}': {e}", e
                ) from e
            self.allow_module(module_path)

    def names(self) -> list[str]:
        """Registered and entry-point script names, sorted."""
        names = set(self._factories)
        names.update(ep.name for ep in entry_points().select(group=ENTRY_POINT_GROUP))
        return sorted(names)

    def resolve(self, identities: Iterable[str]) -> list[OnDeployScript]:
        """
        Resolve identifiers to fresh script instances, preserving order.

        Blank identifiers are ignored. Scripts found by registered name or
        entry point are keyed by that name, so two names sharing one class
        keep separate status records.

        Raises:
            ConfigurationError: If an identifier is unknown, its factory
                fails, or it does not produce an OnDeployScript
        """
        scripts = []
        for identity in identities:
            if not identity or not identity.strip():
                continue
            identity = identity.strip()
            factory, named = self._find_factory(identity)
            script = self._instantiate(identity, factory)
            if named:
                script.script_id = identity
            scripts.append(script)
        return scripts

    def _find_factory(self, identity: str) -> tuple[Any, bool]:
        """Return (factory, whether identity is a registered or entry point name)."""
        if identity in self._factories:
            return self._factories[identity], True

        for ep in entry_points().select(group=ENTRY_POINT_GROUP, name=identity):
            try:
                return ep.load(), True
            except Exception as e:
                logger.error(f"Could not load on-deploy script entry point: {identity}")
                raise ConfigurationError(
                    f"Cannot load entry point for script '{identity}': {e}", e
                ) from e

        return self._load_path(identity), False

    def _is_allowed_module(self, module_path: str) -> bool:
        """Check if module is allowlisted (exact match or submodule)."""
        for allowed in self._allowed_modules:
            if module_path == allowed or module_path.startswith(allowed + "."):
                return True
        return False

    def _load_path(self, identity: str) -> Any:
        if ":" in identity:
            module_path, attr = identity.rsplit(":", 1)
        elif "." in identity:
            module_path, attr = identity.rsplit(".", 1)
        else:
            logger.error(f"Could not find on-deploy script: {identity}")
            raise ConfigurationError(f"Unknown on-deploy script: {identity}")

        if not self._is_allowed_module(module_path):
            logger.error(f"Could not find on-deploy script: {identity}")
            raise ConfigurationError(
                f"Unknown on-deploy script '{identity}' "
                f"(module '{module_path}' is not in the allowlist: {self._allowed_modules})"
            )

        try:
            module = importlib.import_module(module_path)
        except ImportError as e:
            logger.error(f"Could not find on-deploy script module: {module_path}")
            raise ConfigurationError(f"Cannot import module '{module_path}': {e}", e) from e

        try:
            return getattr(module, attr)
        except AttributeError as e:
            logger.error(f"Could not find on-deploy script class: {identity}")
            raise ConfigurationError(f"'{attr}' not found in '{module_path}'", e) from e

    def _instantiate(self, identity: str, factory: Any) -> OnDeployScript:
        if isinstance(factory, type) and not issubclass(factory, OnDeployScript):
            msg = f"On-deploy script class does not implement OnDeployScript: {identity}"
            logger.error(msg)
            raise ConfigurationError(msg)
        if not callable(factory):
            msg = f"On-deploy script is not a class or factory: {identity}"
            logger.error(msg)
            raise ConfigurationError(msg)

        try:
            script = factory()
        except Exception as e:
            logger.error(f"Could not instantiate on-deploy script: {identity}")
            raise ConfigurationError(f"Cannot instantiate script '{identity}': {e}", e) from e

        if not isinstance(script, OnDeployScript):
            msg = f"On-deploy script does not implement OnDeployScript: {identity}"
            logger.error(msg)
            raise ConfigurationError(msg)
        return script


# Process-wide registry used by the CLI
registry = ScriptRegistry()
register = registry.register

"""
Plugin discovery, loading and validation for tokentop.

Local plugins are Python files or packages on disk; remote plugins are
packages installed by :mod:`tokentop.plugins.installer`. Either way the
module must expose exactly one plugin object:

    - a module-level ``plugin`` attribute, or
    - a module-level ``PLUGIN`` attribute, or
    - the single :class:`~tokentop.plugins.sdk.Plugin` instance (or concrete
      ``Plugin`` subclass, which is instantiated) among its globals.

Every loaded object is checked by :func:`validate_plugin` before it is
handed back. Loading never raises: failures come back as
:class:`PluginLoadResult` with ``success=False``.

Example:
    from tokentop.plugins.loader import PluginLoader

    loader = PluginLoader(plugins_dir=Path("~/.config/tokentop/plugins"))

    for path in loader.discover_local_plugins():
        result = await loader.load_local_plugin(path)
        if result.success:
            print(f"Loaded {result.plugin.id}")
        else:
            print(f"Skipped {path}: {result.error}")
"""

from __future__ import annotations

import asyncio
import hashlib
import importlib
import importlib.util
import inspect
import logging
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Mapping

from tokentop.plugins.errors import PluginDiscoveryError, PluginValidationError
from tokentop.plugins.sdk import (
    CURRENT_API_VERSION,
    LIFECYCLE_HOOKS,
    PLUGIN_CLASSES,
    Plugin,
    PluginPermissions,
    PluginType,
)

logger = logging.getLogger(__name__)

DEFAULT_PLUGINS_DIR = Path("~/.config/tokentop/plugins")

PLUGIN_ID_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")

SEMVER_RE = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)

# Module attributes checked, in order, for the exported plugin
PLUGIN_EXPORTS = ("plugin", "PLUGIN")

AGENT_CAPABILITY_FLAGS = (
    "session_parsing",
    "auth_reading",
    "real_time_tracking",
    "multi_provider",
)


@dataclass
class ValidationResult:
    """Result of :func:`validate_plugin`.

    Attributes:
        valid: True when ``errors`` is empty.
        errors: Problems that prevent the plugin from loading.
        warnings: Problems worth logging that do not block loading.
    """

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class PluginLoadResult:
    """Outcome of loading one plugin candidate.

    Attributes:
        success: Whether a valid plugin was produced.
        plugin: The plugin, when ``success`` is True.
        error: Reason for the failure otherwise.
        source: Path or package name the plugin was loaded from.
    """

    success: bool
    plugin: Plugin | None = None
    error: str | None = None
    source: str = ""


def _get(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _type_value(value: Any) -> Any:
    return value.value if isinstance(value, PluginType) else value


def validate_plugin(obj: Any) -> ValidationResult:
    """Check that *obj* has the shape of a tokentop plugin.

    The check is structural so it also works on plain objects. Error
    strings are stable; callers and tests match on them.

    Args:
        obj: Candidate plugin object.

    Returns:
        ValidationResult with every error found, not just the first.
    """
    errors: list[str] = []
    warnings: list[str] = []

    plugin_id = _get(obj, "id")
    if not isinstance(plugin_id, str) or not plugin_id:
        errors.append('Plugin must have a non-empty string "id"')
    elif not PLUGIN_ID_RE.match(plugin_id):
        errors.append(
            f'Plugin id "{plugin_id}" must be kebab-case '
            "(lowercase letters, digits and single hyphens)"
        )

    plugin_type = _type_value(_get(obj, "type"))
    valid_types = [t.value for t in PluginType]
    if plugin_type not in valid_types:
        errors.append(f'Plugin "type" must be one of: {", ".join(valid_types)}')

    name = _get(obj, "name")
    if not isinstance(name, str) or not name:
        errors.append('Plugin must have a non-empty string "name"')

    version = _get(obj, "version")
    if not isinstance(version, str) or not SEMVER_RE.match(version):
        errors.append(f'Plugin must have a valid semver "version" (got {version!r})')

    api_version = _get(obj, "api_version")
    if api_version != CURRENT_API_VERSION:
        errors.append(
            f"Unsupported api_version {api_version!r}, expected {CURRENT_API_VERSION}"
        )

    permissions = _get(obj, "permissions")
    if not isinstance(permissions, (PluginPermissions, Mapping)):
        errors.append('Plugin must declare "permissions" object')

    if plugin_type == PluginType.PROVIDER.value:
        auth = _get(obj, "auth")
        if auth is None or not (
            callable(_get(auth, "discover")) and callable(_get(auth, "is_configured"))
        ):
            errors.append(
                'Provider plugin must declare "auth" object with '
                "discover() and is_configured()"
            )
        if not callable(_get(obj, "fetch_usage")):
            errors.append('Provider plugin must implement "fetch_usage" function')

    elif plugin_type == PluginType.THEME.value:
        if _get(obj, "color_scheme") not in ("dark", "light"):
            errors.append('Theme plugin "color_scheme" must be "dark" or "light"')
        colors = _get(obj, "colors")
        if not isinstance(colors, Mapping) or not colors:
            errors.append('Theme plugin must declare "colors" object')

    elif plugin_type == PluginType.NOTIFICATION.value:
        if not callable(_get(obj, "notify")):
            errors.append('Notification plugin must implement "notify" function')
        system = _get(permissions, "system") if permissions is not None else None
        if system is None or not _get(system, "notifications"):
            warnings.append(
                "Notification plugin does not declare system.notifications permission"
            )

    elif plugin_type == PluginType.AGENT.value:
        capabilities = _get(obj, "capabilities")
        if capabilities is None:
            errors.append('Agent plugin must declare "capabilities" object')
        else:
            for flag in AGENT_CAPABILITY_FLAGS:
                if not isinstance(_get(capabilities, flag), bool):
                    errors.append(f'Agent plugin "capabilities.{flag}" must be a boolean')
        if not callable(_get(obj, "parse_sessions")):
            errors.append('Agent plugin must implement "parse_sessions" function')

    for hook in LIFECYCLE_HOOKS:
        value = _get(obj, hook)
        if value is not None and not callable(value):
            errors.append(f'Lifecycle hook "{hook}" must be callable')

    meta = _get(obj, "meta")
    if meta is None or not _get(meta, "description"):
        warnings.append("Plugin has no meta.description")

    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


class PluginLoader:
    """Finds and imports plugin modules.

    Imports run in a worker thread (``asyncio.to_thread``) so a slow plugin
    module does not stall the event loop.

    Attributes:
        plugins_dir: Directory scanned by :meth:`discover_local_plugins`.
    """

    def __init__(self, plugins_dir: str | Path | None = None):
        self.plugins_dir = Path(plugins_dir or DEFAULT_PLUGINS_DIR).expanduser()

    def resolve_plugin_path(self, path: str | Path) -> Path:
        """Expand ``~`` and make *path* absolute (relative to the cwd)."""
        return Path(path).expanduser().resolve()

    def discover_local_plugins(self, plugins_dir: str | Path | None = None) -> list[Path]:
        """List plugin candidates in *plugins_dir* (default: :attr:`plugins_dir`).

        Candidates are ``*.py`` files and package directories (with an
        ``__init__.py``). Names starting with ``_`` or ``.`` are skipped.
        A missing directory yields an empty list.
        """
        directory = Path(plugins_dir).expanduser() if plugins_dir else self.plugins_dir
        if not directory.is_dir():
            logger.debug(f"Plugin directory does not exist: {directory}")
            return []

        candidates: list[Path] = []
        for item in sorted(directory.iterdir()):
            if item.name.startswith(("_", ".")):
                continue
            if item.is_file() and item.suffix == ".py":
                candidates.append(item.resolve())
            elif item.is_dir() and (item / "__init__.py").exists():
                candidates.append(item.resolve())

        logger.debug(f"Discovered {len(candidates)} plugin candidates in {directory}")
        return candidates

    async def load_local_plugin(self, path: str | Path) -> PluginLoadResult:
        """Load and validate the plugin at *path* (a file or package dir)."""
        resolved = self.resolve_plugin_path(path)
        return await self._load(str(resolved), lambda: self._import_path(resolved))

    async def load_remote_plugin(
        self,
        package_name: str,
        resolved_path: str | Path,
    ) -> PluginLoadResult:
        """Load and validate the entry module of an installed package.

        Args:
            package_name: Name the package was installed under.
            resolved_path: The package's import directory (or module file)
                inside the install target.
        """
        resolved = Path(resolved_path)
        return await self._load(package_name, lambda: self._import_installed(resolved))

    async def _load(self, source: str, importer: Any) -> PluginLoadResult:
        try:
            module = await asyncio.to_thread(importer)
            plugin = self._extract_plugin(module, source)
            self._check(plugin)
        except (PluginDiscoveryError, PluginValidationError) as e:
            logger.debug(f"Plugin candidate {source} rejected: {e}")
            return PluginLoadResult(success=False, error=str(e), source=source)
        except Exception as e:
            logger.debug(f"Plugin candidate {source} failed to import: {e}")
            return PluginLoadResult(
                success=False,
                error=str(PluginDiscoveryError(source, f"{type(e).__name__}: {e}", e)),
                source=source,
            )

        return PluginLoadResult(success=True, plugin=plugin, source=source)

    def _import_path(self, path: Path) -> ModuleType:
        if not path.exists():
            raise PluginDiscoveryError(str(path), "path does not exist")

        digest = hashlib.sha1(str(path).encode()).hexdigest()[:8]
        module_name = f"tokentop_local_plugin_{path.stem.replace('-', '_')}_{digest}"

        if path.is_dir():
            init = path / "__init__.py"
            if not init.exists():
                raise PluginDiscoveryError(str(path), "directory has no __init__.py")
            spec = importlib.util.spec_from_file_location(
                module_name, init, submodule_search_locations=[str(path)]
            )
        else:
            spec = importlib.util.spec_from_file_location(module_name, path)

        if spec is None or spec.loader is None:
            raise PluginDiscoveryError(str(path), "not an importable Python module")

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except BaseException:
            sys.modules.pop(module_name, None)
            raise
        return module

    def _import_installed(self, path: Path) -> ModuleType:
        if not path.exists():
            raise PluginDiscoveryError(str(path), "installed package not found")

        search_root = str(path.parent)
        if search_root not in sys.path:
            sys.path.insert(0, search_root)
        importlib.invalidate_caches()
        return importlib.import_module(path.stem if path.is_file() else path.name)

    def _extract_plugin(self, module: ModuleType, source: str) -> Any:
        for attr in PLUGIN_EXPORTS:
            exported = getattr(module, attr, None)
            if exported is not None:
                return self._instantiate(exported)

        instances = [v for v in vars(module).values() if isinstance(v, Plugin)]
        if len(instances) == 1:
            return instances[0]
        if len(instances) > 1:
            raise PluginDiscoveryError(
                source, f"module defines {len(instances)} plugin objects; export one as 'plugin'"
            )

        classes = [
            v for v in vars(module).values()
            if inspect.isclass(v)
            and issubclass(v, Plugin)
            and v.__module__ == module.__name__
            and not inspect.isabstract(v)
        ]
        if len(classes) == 1:
            return classes[0]()

        raise PluginDiscoveryError(source, "module does not export a plugin")

    def _instantiate(self, exported: Any) -> Any:
        if inspect.isclass(exported) and issubclass(exported, Plugin):
            return exported()
        return exported

    def _check(self, plugin: Any) -> None:
        result = validate_plugin(plugin)
        plugin_id = _get(plugin, "id") if isinstance(_get(plugin, "id"), str) else None
        if not result.valid:
            raise PluginValidationError(result.errors, plugin_id)

        expected = PLUGIN_CLASSES[PluginType(_type_value(_get(plugin, "type")))]
        if not isinstance(plugin, expected):
            raise PluginValidationError(
                [f"Plugin object must be an instance of {expected.__name__}"],
                plugin_id,
            )

        for warning in result.warnings:
            logger.debug(f"Plugin {plugin_id}: {warning}")

    def __repr__(self) -> str:
        return f"<PluginLoader dir={self.plugins_dir}>"

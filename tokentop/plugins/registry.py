"""
Plugin registry for tokentop.

The registry is the single source of truth for which plugins are active.
It keeps one collection per plugin type, keyed by plugin id, and records
where each registration came from.

Sources and priority:
    - LOCAL (2): files/packages on the user's machine
    - REMOTE (1): packages installed from the package index
    - BUILTIN (0): plugins shipped inside tokentop

A registration replaces an existing one with the same ``(type, id)`` only
if its source priority is greater than or equal to the stored one. This
lets a user shadow a builtin plugin with a local copy.

Example:
    from tokentop.plugins.registry import PluginRegistry

    registry = PluginRegistry(loader=PluginLoader(), installer=PackageInstaller())
    await registry.initialize(app_config.plugins, cli_plugins=["./my-theme.py"])

    for theme in registry.get_all(PluginType.THEME):
        print(theme.id, registry.get_source(PluginType.THEME, theme.id))
"""

from __future__ import annotations

import asyncio
import importlib
import inspect
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping

from tokentop.plugins.installer import PackageInstaller
from tokentop.plugins.loader import PluginLoader, PluginLoadResult
from tokentop.plugins.sdk import PLUGIN_TYPES, Plugin, PluginSource, PluginType

logger = logging.getLogger(__name__)

SOURCE_PRIORITY: dict[PluginSource, int] = {
    PluginSource.LOCAL: 2,
    PluginSource.REMOTE: 1,
    PluginSource.BUILTIN: 0,
}

BUILTIN_GROUPS: dict[PluginType, str] = {
    PluginType.PROVIDER: "tokentop.plugins.builtin.providers",
    PluginType.AGENT: "tokentop.plugins.builtin.agents",
    PluginType.THEME: "tokentop.plugins.builtin.themes",
    PluginType.NOTIFICATION: "tokentop.plugins.builtin.notifications",
}

PluginKey = tuple[PluginType, str]


def _has_plugin_shape(obj: Any) -> bool:
    if inspect.isclass(obj) or inspect.ismodule(obj):
        return False
    return all(hasattr(obj, attr) for attr in ("id", "type", "name", "version"))


class PluginRegistry:
    """Registry of active plugins, one collection per type.

    Attributes:
        loader: Loads local and remote plugin modules.
        installer: Installs remote plugin packages.
    """

    def __init__(
        self,
        loader: PluginLoader | None = None,
        installer: PackageInstaller | None = None,
        builtin_groups: Mapping[PluginType, str] | None = None,
    ):
        """Initialize an empty registry.

        Args:
            loader: Plugin loader. Defaults to one scanning the default
                plugins directory.
            installer: Package installer for remote plugins.
            builtin_groups: Module path per type for builtin plugins.
                Tests point this at fixture modules.
        """
        self.loader = loader or PluginLoader()
        self.installer = installer or PackageInstaller()
        self._builtin_groups = dict(builtin_groups if builtin_groups is not None else BUILTIN_GROUPS)

        self._plugins: dict[PluginType, dict[str, Plugin]] = {t: {} for t in PLUGIN_TYPES}
        self._sources: dict[PluginKey, PluginSource] = {}
        self._official: set[PluginKey] = set()
        self._packages: dict[PluginKey, str] = {}
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    # =========================================================================
    # Registration
    # =========================================================================

    def register(
        self,
        plugin: Plugin,
        source: PluginSource = PluginSource.BUILTIN,
        package_name: str | None = None,
    ) -> bool:
        """Register *plugin* from *source*.

        Returns:
            True if the plugin is now the active registration for its
            ``(type, id)``; False if a higher-priority source already
            holds that slot.
        """
        plugin_type = PluginType(plugin.type)
        key = (plugin_type, plugin.id)
        existing = self._sources.get(key)

        if existing is not None and SOURCE_PRIORITY[existing] > SOURCE_PRIORITY[source]:
            logger.debug(
                f"Skipping {source.value} plugin {plugin.id}: "
                f"already registered from {existing.value}"
            )
            return False

        if existing is not None and existing != source:
            logger.info(
                f'Plugin "{plugin.id}" overridden by {source.value} (was {existing.value})'
            )

        self._sources[key] = source
        self._plugins[plugin_type][plugin.id] = plugin
        if source == PluginSource.REMOTE and package_name:
            self._packages[key] = package_name
        else:
            self._packages.pop(key, None)
        return True

    def unregister(self, plugin_type: PluginType, plugin_id: str) -> bool:
        """Remove a plugin. Returns False if it was not registered."""
        plugin_type = PluginType(plugin_type)
        if self._plugins[plugin_type].pop(plugin_id, None) is None:
            return False
        self._sources.pop((plugin_type, plugin_id), None)
        self._packages.pop((plugin_type, plugin_id), None)
        return True

    def disable_plugin(self, plugin_type: PluginType, plugin_id: str) -> bool:
        """Remove a plugin the user has disabled."""
        return self.unregister(plugin_type, plugin_id)

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, plugin_type: PluginType, plugin_id: str) -> Plugin | None:
        return self._plugins[PluginType(plugin_type)].get(plugin_id)

    def get_all(self, plugin_type: PluginType) -> list[Plugin]:
        """Plugins of one type, in registration order."""
        return list(self._plugins[PluginType(plugin_type)].values())

    def get_all_plugins(self) -> list[Plugin]:
        """Every plugin: providers, agents, themes, then notifications."""
        plugins: list[Plugin] = []
        for plugin_type in PLUGIN_TYPES:
            plugins.extend(self._plugins[plugin_type].values())
        return plugins

    def has(self, plugin_type: PluginType, plugin_id: str) -> bool:
        return plugin_id in self._plugins[PluginType(plugin_type)]

    def count(self, plugin_type: PluginType | None = None) -> int:
        if plugin_type is not None:
            return len(self._plugins[PluginType(plugin_type)])
        return sum(len(plugins) for plugins in self._plugins.values())

    def get_source(self, plugin_type: PluginType, plugin_id: str) -> PluginSource | None:
        return self._sources.get((PluginType(plugin_type), plugin_id))

    def is_official(self, plugin_type: PluginType, plugin_id: str) -> bool:
        """True if ``(type, id)`` was shipped as a builtin plugin.

        Stays True when a local or remote plugin overrides the builtin.
        """
        return (PluginType(plugin_type), plugin_id) in self._official

    def get_package_name(self, plugin_type: PluginType, plugin_id: str) -> str | None:
        """Package a remote plugin was installed from, if any."""
        return self._packages.get((PluginType(plugin_type), plugin_id))

    # =========================================================================
    # Loading
    # =========================================================================

    async def load_builtin_plugins(self) -> None:
        """Register every plugin exported by the builtin group modules."""
        for plugin_type, module_path in self._builtin_groups.items():
            try:
                module = importlib.import_module(module_path)
            except Exception as e:
                logger.error(f"Failed to import builtin {plugin_type.value} plugins: {e}")
                continue

            exported = getattr(module, "PLUGINS", None)
            if exported is None:
                exported = [v for k, v in vars(module).items() if not k.startswith("_")]

            seen: set[int] = set()
            for obj in exported:
                if id(obj) in seen or not _has_plugin_shape(obj):
                    continue
                seen.add(id(obj))
                if obj.type != plugin_type:
                    continue
                self.register(obj, PluginSource.BUILTIN)
                self._official.add((plugin_type, obj.id))

    async def load_local_plugins(self, extra_paths: Iterable[str | Path] = ()) -> None:
        """Load plugins from the plugins directory plus *extra_paths*."""
        discovered = self.loader.discover_local_plugins()
        extra = [self.loader.resolve_plugin_path(p) for p in extra_paths]
        paths = [*discovered, *extra]
        if not paths:
            return

        results: list[PluginLoadResult] = await asyncio.gather(
            *(self.loader.load_local_plugin(p) for p in paths)
        )
        for path, result in zip(paths, results):
            if result.success and result.plugin is not None:
                self.register(result.plugin, PluginSource.LOCAL)
                logger.info(f"Loaded local plugin: {result.plugin.name} ({result.plugin.id})")
            else:
                logger.warning(f"Failed to load plugin from {path}: {result.error}")

    async def load_remote_plugins(self, packages: Iterable[str]) -> None:
        """Install (if needed) and load remote plugin packages."""
        packages = list(packages)
        if not packages:
            return

        for install in await self.installer.install_all_packages(packages):
            if install.error:
                logger.warning(f"Failed to install plugin package {install.name}: {install.error}")
            elif install.installed:
                logger.info(f"Installed plugin package: {install.name}=={install.version}")

        results: list[PluginLoadResult] = await asyncio.gather(
            *(self._load_remote_plugin(package) for package in packages)
        )
        for package, result in zip(packages, results):
            if result.success and result.plugin is not None:
                self.register(result.plugin, PluginSource.REMOTE, package_name=package)
                logger.info(f"Loaded remote plugin: {result.plugin.name} ({package})")
            else:
                logger.warning(f"Failed to load remote plugin {package}: {result.error}")

    async def _load_remote_plugin(self, package: str) -> PluginLoadResult:
        try:
            path = self.installer.resolve_installed_path(package)
        except ValueError as e:
            return PluginLoadResult(success=False, error=str(e), source=package)
        return await self.loader.load_remote_plugin(package, path)

    async def initialize(
        self,
        config: Any | None = None,
        cli_plugins: Iterable[str | Path] = (),
    ) -> None:
        """Load every plugin source once.

        Order: builtin, local (configured paths then *cli_plugins*), remote,
        then remove disabled ids from every type. A failing phase is logged
        and the next one still runs. Later calls do nothing.

        Args:
            config: Object with ``local``, ``remote`` and ``disabled`` lists
                (normally :class:`tokentop.config.schema.PluginsConfig`).
            cli_plugins: Extra local plugin paths from the command line.
        """
        if self._initialized:
            return

        local_paths = [*getattr(config, "local", []), *cli_plugins]
        remote = list(getattr(config, "remote", []))
        disabled = list(getattr(config, "disabled", []))

        phases = [
            ("builtin", self.load_builtin_plugins()),
            ("local", self.load_local_plugins(local_paths)),
        ]
        if remote:
            phases.append(("remote", self.load_remote_plugins(remote)))

        for phase, coro in phases:
            try:
                await coro
            except Exception as e:
                logger.error(f"Loading {phase} plugins failed: {e}")

        for plugin_id in disabled:
            for plugin_type in PLUGIN_TYPES:
                if self.has(plugin_type, plugin_id):
                    self.disable_plugin(plugin_type, plugin_id)
                    logger.info(f"Disabled plugin: {plugin_id}")

        self._initialized = True
        logger.info(
            f"Plugin registry initialized: {self.count(PluginType.PROVIDER)} providers, "
            f"{self.count(PluginType.AGENT)} agents, {self.count(PluginType.THEME)} themes, "
            f"{self.count(PluginType.NOTIFICATION)} notifications"
        )

    def __repr__(self) -> str:
        return f"<PluginRegistry plugins={self.count()} initialized={self._initialized}>"

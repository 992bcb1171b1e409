"""
Update checks for remote plugins.

Only plugins installed from the package index have something to compare
against; builtin and local plugins are skipped. Each package is looked up
at most once per checker (results, including failures, are cached).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx
from packaging.requirements import InvalidRequirement, Requirement
from packaging.version import InvalidVersion, Version

from tokentop.plugins.registry import PluginRegistry
from tokentop.plugins.sdk import PluginSource

logger = logging.getLogger(__name__)

DEFAULT_INDEX_URL = "https://pypi.org/pypi"
LOOKUP_TIMEOUT_SECONDS = 8.0


@dataclass
class PluginUpdateInfo:
    """Result of one update check.

    Attributes:
        package_name: Package looked up on the index.
        current_version: Version currently loaded.
        latest_version: Newest version on the index, ``None`` if the
            lookup failed.
        has_update: True when ``latest_version`` is newer.
        error: Lookup failure, if any.
    """

    package_name: str
    current_version: str
    latest_version: str | None = None
    has_update: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "package_name": self.package_name,
            "current_version": self.current_version,
            "latest_version": self.latest_version,
            "has_update": self.has_update,
            "error": self.error,
        }


def is_newer(current: str, latest: str) -> bool:
    """True if *latest* is a strictly newer version than *current*.

    Unparseable versions never count as an update.
    """
    try:
        return Version(latest) > Version(current)
    except InvalidVersion:
        return False


def project_name(package: str) -> str:
    """Strip any version specifier from a configured package string."""
    try:
        return Requirement(package).name
    except InvalidRequirement:
        return package


class UpdateChecker:
    """Looks up the latest versions of remote plugins.

    Attributes:
        index_url: Base of the index JSON API (``{index_url}/{name}/json``).
    """

    def __init__(
        self,
        index_url: str = DEFAULT_INDEX_URL,
        client: httpx.AsyncClient | None = None,
    ):
        self.index_url = index_url.rstrip("/")
        self._client = client
        self._cache: dict[str, PluginUpdateInfo] = {}

    async def _fetch_latest(self, name: str) -> str:
        url = f"{self.index_url}/{name}/json"
        if self._client is not None:
            resp = await self._client.get(url, timeout=LOOKUP_TIMEOUT_SECONDS)
        else:
            async with httpx.AsyncClient(timeout=LOOKUP_TIMEOUT_SECONDS) as client:
                resp = await client.get(url)
        resp.raise_for_status()

        latest = resp.json().get("info", {}).get("version")
        if not latest:
            raise ValueError(f"No latest version found for {name}")
        return latest

    async def check_for_update(self, package: str, current_version: str) -> PluginUpdateInfo:
        """Compare *current_version* with the newest release of *package*."""
        name = project_name(package)
        cached = self._cache.get(name)
        if cached is not None:
            return cached

        try:
            latest = await self._fetch_latest(name)
            info = PluginUpdateInfo(
                package_name=name,
                current_version=current_version,
                latest_version=latest,
                has_update=is_newer(current_version, latest),
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Update check failed for {name}: {e}")
            info = PluginUpdateInfo(
                package_name=name,
                current_version=current_version,
                error=str(e) or type(e).__name__,
            )

        self._cache[name] = info
        return info

    async def check_all_updates(self, registry: PluginRegistry) -> dict[str, PluginUpdateInfo]:
        """Check every remote plugin in *registry* concurrently.

        Returns:
            Results keyed by ``"<type>:<id>"``.
        """
        targets = []
        for plugin in registry.get_all_plugins():
            if registry.get_source(plugin.type, plugin.id) != PluginSource.REMOTE:
                continue
            package = registry.get_package_name(plugin.type, plugin.id)
            if package:
                targets.append((f"{plugin.type.value}:{plugin.id}", package, plugin.version))

        infos = await asyncio.gather(*(
            self.check_for_update(package, version) for _, package, version in targets
        ))
        return {key: info for (key, _, _), info in zip(targets, infos)}

    def clear_cache(self) -> None:
        self._cache.clear()

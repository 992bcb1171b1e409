"""
Installs remote plugin packages for tokentop.

Remote plugins are ordinary Python distributions. They are installed with
``pip install --target`` into a private directory (by default
``~/.local/share/tokentop/plugins``) so they never touch the interpreter's
own site-packages. Packages already present in the target are left alone.

Example:
    installer = PackageInstaller(target_dir=Path("~/.local/share/tokentop/plugins"))
    for result in await installer.install_all_packages(["tokentop-provider-replicate"]):
        if result.error:
            print(f"{result.name}: {result.error}")
"""

from __future__ import annotations

import asyncio
import importlib.metadata
import logging
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

from packaging.requirements import InvalidRequirement, Requirement
from packaging.utils import canonicalize_name

logger = logging.getLogger(__name__)

DEFAULT_REMOTE_PLUGINS_DIR = Path("~/.local/share/tokentop/plugins")

PIP_TIMEOUT_SECONDS = 300


@dataclass
class InstallResult:
    """Outcome of installing one package.

    Attributes:
        name: Package name as given in the config.
        version: Installed version, when known.
        installed: True only if this call installed it; False when it was
            already present or the install failed.
        error: Failure reason, if any.
    """

    name: str
    version: str | None = None
    installed: bool = False
    error: str | None = None


class PackageInstaller:
    """Installs and locates remote plugin packages.

    Attributes:
        target_dir: Directory passed to ``pip install --target``.
        index_url: Optional package index to install from.
    """

    def __init__(
        self,
        target_dir: str | Path | None = None,
        index_url: str | None = None,
    ):
        self.target_dir = Path(target_dir or DEFAULT_REMOTE_PLUGINS_DIR).expanduser()
        self.index_url = index_url

    @staticmethod
    def _requirement(package: str) -> Requirement:
        try:
            return Requirement(package)
        except InvalidRequirement as e:
            raise ValueError(f"Invalid package name '{package}': {e}") from e

    def _find_distribution(self, package: str) -> importlib.metadata.Distribution | None:
        if not self.target_dir.is_dir():
            return None
        wanted = canonicalize_name(self._requirement(package).name)
        for dist in importlib.metadata.distributions(path=[str(self.target_dir)]):
            name = dist.metadata["Name"]
            if name and canonicalize_name(name) == wanted:
                return dist
        return None

    def installed_version(self, package: str) -> str | None:
        """Version of *package* present in the target directory, if any."""
        dist = self._find_distribution(package)
        return dist.version if dist is not None else None

    def resolve_installed_path(self, package: str) -> Path:
        """Path of the package's importable module inside the target.

        Uses the distribution's ``top_level.txt`` when present, else the
        project name with ``-`` replaced by ``_``. The path may not exist if
        the package is not installed; the loader reports that.
        """
        dist = self._find_distribution(package)
        if dist is not None:
            top_level = dist.read_text("top_level.txt")
            if top_level:
                names = [line.strip() for line in top_level.splitlines() if line.strip()]
                if names:
                    return self._module_path(names[0])

        import_name = self._requirement(package).name.replace("-", "_").replace(".", "_").lower()
        return self._module_path(import_name)

    def _module_path(self, import_name: str) -> Path:
        package_dir = self.target_dir / import_name
        module_file = self.target_dir / f"{import_name}.py"
        if not package_dir.exists() and module_file.exists():
            return module_file
        return package_dir

    def _pip_install(self, package: str) -> None:
        self.target_dir.mkdir(parents=True, exist_ok=True)
        cmd = [
            sys.executable, "-m", "pip", "install",
            "--quiet",
            "--disable-pip-version-check",
            "--target", str(self.target_dir),
        ]
        if self.index_url:
            cmd.extend(["--index-url", self.index_url])
        cmd.append(package)

        logger.debug(f"Running: {' '.join(cmd)}")
        completed = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=PIP_TIMEOUT_SECONDS,
            check=False,
        )
        if completed.returncode != 0:
            stderr = completed.stderr.strip().splitlines()
            detail = stderr[-1] if stderr else f"exit code {completed.returncode}"
            raise RuntimeError(f"pip install failed: {detail}")

    async def install_package(self, package: str) -> InstallResult:
        """Install *package* unless it is already present."""
        try:
            existing = self.installed_version(package)
            if existing is not None:
                logger.debug(f"Plugin package {package} already installed ({existing})")
                return InstallResult(name=package, version=existing, installed=False)

            logger.info(f"Installing plugin package: {package}")
            await asyncio.to_thread(self._pip_install, package)
            return InstallResult(
                name=package,
                version=self.installed_version(package),
                installed=True,
            )
        except (ValueError, RuntimeError, OSError, subprocess.SubprocessError) as e:
            return InstallResult(name=package, installed=False, error=str(e))

    async def install_all_packages(self, packages: list[str]) -> list[InstallResult]:
        """Install *packages* one after another.

        Installs run one at a time against the shared target directory.
        One failure does not stop the rest.
        """
        results: list[InstallResult] = []
        for package in packages:
            results.append(await self.install_package(package))
        return results

    def __repr__(self) -> str:
        return f"<PackageInstaller target={self.target_dir}>"

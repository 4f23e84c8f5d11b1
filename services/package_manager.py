"""System package installation."""

from abc import ABC, abstractmethod
from typing import Iterable, List
from loguru import logger

from utils.command_line import CommandLine
from utils.constants import PACKAGE_INSTALL_TIMEOUT
from utils.errors import EnvironmentNotSupportedError, ProcessError


class PackageManager(ABC):
    """Capability interface for the distribution package manager."""

    def __init__(self, cli: CommandLine):
        self.cli = cli

    @abstractmethod
    def installed(self, package: str) -> bool:
        pass

    @abstractmethod
    def install(self, packages: Iterable[str]):
        pass

    @abstractmethod
    def is_available(self) -> bool:
        pass

    @abstractmethod
    def php_fpm_name(self, version: str) -> str:
        pass

    @abstractmethod
    def extension_prefix(self, version: str) -> str:
        pass

    def ensure_installed(self, *packages: str):
        """Install whichever of the packages are missing."""
        missing = [p for p in packages if not self.installed(p)]
        if missing:
            self.install(missing)


class Apt(PackageManager):
    """Debian/Ubuntu apt-get."""

    def installed(self, package: str) -> bool:
        result = self.cli.run(["dpkg-query", "-W", "-f=${Status}", package], check=False)
        return result.ok and "install ok installed" in result.stdout

    def install(self, packages: Iterable[str]):
        packages: List[str] = list(packages)
        logger.info(f"Installing packages: {' '.join(packages)}")
        try:
            self.cli.run(
                ["apt-get", "install", "-y"] + packages,
                timeout=PACKAGE_INSTALL_TIMEOUT,
                env={"DEBIAN_FRONTEND": "noninteractive"}
            )
        except ProcessError as e:
            logger.error(f"Apt was unable to install {packages}: {e}")
            raise

    def is_available(self) -> bool:
        return self.cli.which("apt-get") is not None

    def php_fpm_name(self, version: str) -> str:
        return f"php{version}-fpm"

    def extension_prefix(self, version: str) -> str:
        return f"php{version}-"


def detect_package_manager(cli: CommandLine) -> PackageManager:
    apt = Apt(cli)
    if apt.is_available():
        return apt
    raise EnvironmentNotSupportedError("No supported package manager found (apt)")

"""PHP-FPM runtime versions, sockets and pool configuration."""

import re
from pathlib import Path
from typing import List, Optional, Sequence, Set, TYPE_CHECKING
from loguru import logger

from models.site_kind import IsolatedKind
from services.config_store import ConfigStore
from services.package_manager import PackageManager
from services.service_manager import ServiceManager
from services.site_config_registry import SiteConfigRegistry
from services.stub_template_engine import StubTemplateEngine
from utils.command_line import CommandLine, current_group, current_user
from utils.constants import (
    COMMON_EXTENSIONS, DEFAULT_PHP_VERSION, FPM_CONFIG_DIR_CANDIDATES, FPM_CONFIG_FILE_NAME,
    ISOLATION_SUPPORTED_PHP_VERSIONS, SUPPORTED_PHP_VERSIONS
)
from utils.errors import EnvironmentNotSupportedError, ValetValidationError
from utils.filesystem import Filesystem
from utils.paths import ValetPaths

if TYPE_CHECKING:
    from services.nginx_service import NginxService


VERSION_PATTERN = re.compile(r"^(?:php[@-]?)?(?P<major>\d)\.?(?P<minor>\d)$", re.IGNORECASE)
SOCKET_REFERENCE_PATTERN = re.compile(r"unix:\S*?valet\d+\.sock")


def normalize(version: Optional[str]) -> str:
    """
    Normalize a PHP version string.

    Accepts `8.2`, `82`, `php8.2`, `php-8.2` and `php@8.2`.

    Returns:
        "MAJOR.MINOR", or "" when the input is malformed or not a version
        this manager can run
    """
    if not version:
        return ""
    match = VERSION_PATTERN.match(version.strip())
    if not match:
        return ""
    normalized = f"{match.group('major')}.{match.group('minor')}"
    return normalized if normalized in ISOLATION_SUPPORTED_PHP_VERSIONS else ""


def socket_name(version: str) -> str:
    """Socket file name for a version: `8.2` -> `valet82.sock`."""
    digits = re.sub(r"\D", "", version)
    return f"valet{digits}.sock"


class PhpRuntimeManager:
    """
    Keeps PHP-FPM pools, site socket references and the active version consistent.

    A version moves NotInstalled -> Installed -> Enabled -> Active. Sites
    reference a runtime by its socket (`<home>/valet82.sock`); isolated sites
    are pinned to their own version and never rewritten by a switch.
    """

    normalize = staticmethod(normalize)
    socket_name = staticmethod(socket_name)

    def __init__(self, paths: ValetPaths, config: ConfigStore, registry: SiteConfigRegistry,
                 engine: StubTemplateEngine, packages: PackageManager,
                 services: ServiceManager, cli: CommandLine,
                 filesystem: Optional[Filesystem] = None,
                 nginx: Optional["NginxService"] = None,
                 fpm_dir_candidates: Sequence[str] = FPM_CONFIG_DIR_CANDIDATES):
        self.paths = paths
        self.config = config
        self.registry = registry
        self.engine = engine
        self.packages = packages
        self.services = services
        self.cli = cli
        self.files = filesystem or Filesystem()
        self.nginx = nginx
        self.fpm_dir_candidates = tuple(fpm_dir_candidates)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def current_version(self) -> str:
        return self.config.load().php_version or DEFAULT_PHP_VERSION

    def fpm_socket_file(self, version: Optional[str] = None) -> Path:
        return self.paths.home / socket_name(version or self.current_version())

    def service_name(self, version: Optional[str] = None) -> str:
        return self.packages.php_fpm_name(version or self.current_version())

    def validate_version(self, version: str) -> bool:
        return version in SUPPORTED_PHP_VERSIONS

    def validate_isolation_version(self, version: str) -> str:
        """
        Normalize a version requested for a per-site override.

        Raises:
            ValetValidationError: not in the isolation set
        """
        normalized = normalize(version)
        if not normalized:
            raise ValetValidationError(
                f"Invalid version [{version}] used. Supported versions are: "
                f"{', '.join(ISOLATION_SUPPORTED_PHP_VERSIONS)}",
                subject=version
            )
        return normalized

    def fpm_config_path(self, version: Optional[str] = None) -> Path:
        """
        PHP-FPM pool directory for a version.

        Raises:
            EnvironmentNotSupportedError: none of the known distribution paths exist
        """
        version = version or self.current_version()
        directory = self._find_fpm_config_dir(version)
        if directory is None:
            raise EnvironmentNotSupportedError(
                "Unable to determine PHP-FPM configuration folder", subject=version
            )
        return directory

    def _find_fpm_config_dir(self, version: str) -> Optional[Path]:
        for candidate in self.fpm_dir_candidates:
            path = Path(candidate.format(version=version, version_nodot=version.replace(".", "")))
            if self.files.is_dir(path):
                return path
        return None

    def php_executable(self, version: Optional[str] = None) -> str:
        """Path of the PHP CLI binary for a version, or of the unversioned `php`."""
        binary = f"php{normalize(version)}" if version else "php"
        return self.cli.which(binary) or f"/usr/bin/{binary}"

    def isolated_versions(self) -> Set[str]:
        """Versions pinned by isolated sites; an empty pin counts as the current version."""
        versions = set()
        for _, contents in self.registry.items():
            kind = self.engine.recover_kind_or_plain(contents)
            if isinstance(kind, IsolatedKind):
                versions.add(normalize(kind.php_version) or self.current_version())
        return versions

    def utilized_versions(self) -> List[str]:
        """
        Versions referenced by non-isolated sites, plus the active version.

        Isolated sites are pinned and excluded; see isolated_versions().
        """
        sockets = {socket_name(v): v for v in ISOLATION_SUPPORTED_PHP_VERSIONS}
        versions: List[str] = []
        for hostname, contents in self.registry.items():
            if isinstance(self.engine.recover_kind_or_plain(contents), IsolatedKind):
                continue
            for sock, version in sockets.items():
                if sock in contents and version not in versions:
                    versions.append(version)
                    break

        current = self.current_version()
        if current not in versions:
            versions.append(current)
        return versions

    # ------------------------------------------------------------------
    # Service control
    # ------------------------------------------------------------------

    def restart(self, version: Optional[str] = None):
        self.services.restart(self.service_name(version))

    def stop(self, version: Optional[str] = None):
        self.services.stop(self.service_name(version))

    def status(self, version: Optional[str] = None) -> str:
        return self.services.status(self.service_name(version))

    def stop_if_unused(self, version: str) -> bool:
        """Stop a runtime no site and no isolated pin uses. Returns True when stopped."""
        version = normalize(version)
        if not version:
            return False
        if version in self.utilized_versions() or version in self.isolated_versions():
            logger.debug(f"PHP {version} still in use, keeping it running")
            return False
        logger.info(f"PHP {version} no longer used, stopping")
        self.stop(version)
        return True

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def install(self, version: Optional[str] = None, with_extensions: bool = True) -> bool:
        """
        Install and configure one PHP-FPM version.

        Args:
            version: Any accepted version spelling; defaults to the active version
            with_extensions: Also install COMMON_EXTENSIONS on a fresh install

        Returns:
            True when anything changed (and the service was restarted)

        Raises:
            ValetValidationError: the version does not normalize
            EnvironmentNotSupportedError: no PHP-FPM pool directory on this host
        """
        raw = version or self.current_version()
        version = normalize(raw)
        if not version:
            raise ValetValidationError("Unsupported PHP version", subject=raw)

        changed = False
        package = self.packages.php_fpm_name(version)
        if not self.packages.installed(package):
            logger.info(f"Installing PHP {version}")
            self.packages.ensure_installed(package)
            if with_extensions:
                self.install_extensions(version)
            self.services.enable(self.service_name(version))
            changed = True

        if self.install_configuration(version):
            changed = True

        if changed:
            self.restart(version)
        else:
            logger.info(f"PHP {version} already installed and configured")
        return changed

    def install_extensions(self, version: str):
        prefix = self.packages.extension_prefix(version)
        self.packages.ensure_installed(*[f"{prefix}{ext}" for ext in COMMON_EXTENSIONS])

    def install_configuration(self, version: str) -> bool:
        """Write the pool file. Returns False when it already has this content."""
        contents = self.engine.render_fpm_pool({
            "user": current_user(),
            "group": current_group(),
            "fpm_socket": str(self.fpm_socket_file(version)),
            "version_digits": re.sub(r"\D", "", version),
        })
        path = self.fpm_config_path(version) / FPM_CONFIG_FILE_NAME
        if self.files.read_optional(path) == contents:
            return False
        self.files.write_text(path, contents)
        logger.info(f"PHP-FPM pool written: {path}")
        return True

    def uninstall(self, version: Optional[str] = None) -> bool:
        """Remove the pool file and stop the service. No-op when not configured."""
        raw = version or self.current_version()
        version = normalize(raw)
        if not version:
            raise ValetValidationError("Unsupported PHP version", subject=raw)

        directory = self._find_fpm_config_dir(version)
        if directory is None or not self.files.exists(directory / FPM_CONFIG_FILE_NAME):
            logger.info(f"PHP {version} has no pool configuration, nothing to remove")
            return False
        self.files.unlink(directory / FPM_CONFIG_FILE_NAME)
        self.stop(version)
        return True

    def switch_version(self, version: str, update_system_default: bool = False,
                       ignore_extensions: bool = False) -> List[str]:
        """
        Make a version the active one.

        Site files are rewired to the new socket first and the previous
        version is stopped afterwards, not the other way round. The usage
        scan then sees the post-switch sockets, and a previous version still
        pinned by an isolated site keeps running.

        Returns:
            Hostnames whose generated file was rewritten

        Raises:
            ValetValidationError: not a supported serving version
        """
        normalized = normalize(version)
        if not normalized or not self.validate_version(normalized):
            raise ValetValidationError(
                f"Invalid version [{version}] used. Supported versions are: "
                f"{', '.join(SUPPORTED_PHP_VERSIONS)}",
                subject=version
            )

        previous = self.current_version()
        logger.info(f"Changing PHP version {previous} -> {normalized}")

        self.install(normalized, with_extensions=not ignore_extensions)
        service = self.service_name(normalized)
        if not self.services.is_enabled(service):
            self.services.enable(service)

        self.config.update(php_version=normalized)
        rewritten = self.update_site_sockets(normalized)

        if previous != normalized:
            self.stop_if_unused(previous)

        if self.nginx is not None:
            self.nginx.install_server(socket_name(normalized))
            self.nginx.restart()

        if update_system_default:
            self.cli.run(["update-alternatives", "--set", "php", self.php_executable(normalized)])
            logger.info(f"System php now points at php{normalized}")

        return rewritten

    def update_site_sockets(self, version: str) -> List[str]:
        """Point every non-isolated site at the socket of `version`."""
        replacement = f"unix:{self.fpm_socket_file(version)}"
        rewritten = []
        for hostname, contents in self.registry.items():
            if isinstance(self.engine.recover_kind_or_plain(contents), IsolatedKind):
                continue
            updated = SOCKET_REFERENCE_PATTERN.sub(replacement, contents)
            if updated != contents:
                self.registry.write(hostname, updated)
                rewritten.append(hostname)
        if rewritten:
            logger.info(f"Rewired {len(rewritten)} site(s) to PHP {version}")
        return rewritten

    def update_home_path(self, old_home: str, new_home: str) -> List[Path]:
        """Rewrite socket paths inside every pool file after the home directory moved."""
        updated = []
        for version in ISOLATION_SUPPORTED_PHP_VERSIONS:
            directory = self._find_fpm_config_dir(version)
            if directory is None:
                continue
            path = directory / FPM_CONFIG_FILE_NAME
            contents = self.files.read_optional(path)
            if contents and old_home in contents:
                self.files.write_text(path, contents.replace(old_home, new_home))
                updated.append(path)
        return updated

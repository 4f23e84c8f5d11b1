"""Served sites, reverse proxies and per-site PHP isolation."""

import os
from pathlib import Path
from typing import Dict, Optional
from loguru import logger
from pydantic import ValidationError

from models.site_kind import IsolatedKind, PlainKind, ProxyKind
from services.config_store import ConfigStore
from services.php_runtime_manager import PhpRuntimeManager, normalize
from services.site_certificate_manager import SiteCertificateManager
from services.site_config_registry import SiteConfigRegistry
from services.stub_template_engine import StubTemplateEngine
from utils.constants import PHP_RC_FILE_NAME
from utils.errors import ValetValidationError
from utils.filesystem import Filesystem
from utils.paths import ValetPaths


class SiteManager:
    """Site-level operations built on the certificate manager and PHP runtime manager."""

    def __init__(self, paths: ValetPaths, config: ConfigStore, registry: SiteConfigRegistry,
                 engine: StubTemplateEngine, certificates: SiteCertificateManager,
                 php: PhpRuntimeManager, filesystem: Optional[Filesystem] = None):
        self.paths = paths
        self.config = config
        self.registry = registry
        self.engine = engine
        self.certificates = certificates
        self.php = php
        self.files = filesystem or Filesystem()

    # ------------------------------------------------------------------
    # Proxies
    # ------------------------------------------------------------------

    def proxy(self, name: str, target: str, secure: bool = False) -> str:
        """
        Serve a hostname by proxying to an upstream.

        Args:
            name: Site name, with or without the configured domain
            target: Upstream, e.g. `localhost:3000` or `http://127.0.0.1:8080`
            secure: Issue a certificate and render the TLS variant

        Returns:
            The full hostname

        Raises:
            ValetValidationError: malformed hostname or unusable target
        """
        hostname = self.certificates.validate_hostname(self.config.parse_domain(name))
        if "://" not in target:
            target = f"http://{target}"
        try:
            kind = ProxyKind(target=target)
        except ValidationError as e:
            raise ValetValidationError(e.errors()[0]["msg"], subject=target) from e

        if self.certificates.has_certificate(hostname):
            self.certificates.unsecure(hostname)
        self.registry.write(hostname, self.certificates.render_site(hostname, kind, secure=False))
        if secure:
            self.certificates.secure(hostname)

        logger.info(f"{hostname} now proxies to {target}")
        return hostname

    def unproxy(self, name: str) -> str:
        """
        Raises:
            ValetValidationError: the site is not a proxy
        """
        hostname = self.certificates.validate_hostname(self.config.parse_domain(name))
        kind = self.engine.recover_kind_or_plain(self.registry.read(hostname))
        if not isinstance(kind, ProxyKind):
            raise ValetValidationError("Site is not a proxy", subject=hostname)
        self.certificates.unsecure(hostname)
        self.registry.remove(hostname)
        logger.info(f"Proxy removed for {hostname}")
        return hostname

    def proxies(self) -> Dict[str, str]:
        """hostname -> upstream for every proxy site."""
        result = {}
        for hostname, contents in self.registry.items():
            kind = self.engine.recover_kind_or_plain(contents)
            if isinstance(kind, ProxyKind):
                result[hostname] = kind.target
        return result

    # ------------------------------------------------------------------
    # Isolation
    # ------------------------------------------------------------------

    def isolate(self, name: str, version: str) -> str:
        """
        Pin a site to its own PHP version.

        Raises:
            ValetValidationError: version outside the isolation set
        """
        hostname = self.certificates.validate_hostname(self.config.parse_domain(name))
        version = self.php.validate_isolation_version(version)
        self.php.install(version)

        kind = IsolatedKind(php_version=version)
        secure = self.certificates.has_certificate(hostname)
        self.registry.write(hostname, self.certificates.render_site(hostname, kind, secure=secure))
        logger.info(f"{hostname} isolated to PHP {version}")
        return hostname

    def unisolate(self, name: str) -> str:
        """Return a site to the default PHP version and stop its runtime if unused."""
        hostname = self.certificates.validate_hostname(self.config.parse_domain(name))
        kind = self.engine.recover_kind_or_plain(self.registry.read(hostname))
        if not isinstance(kind, IsolatedKind):
            logger.info(f"{hostname} is not isolated")
            return hostname

        if self.certificates.has_certificate(hostname):
            self.registry.write(hostname, self.certificates.render_site(hostname, PlainKind(), secure=True))
        else:
            self.registry.remove(hostname)

        if kind.php_version:
            self.php.stop_if_unused(kind.php_version)
        logger.info(f"{hostname} uses the default PHP version again")
        return hostname

    def isolated_sites(self) -> Dict[str, str]:
        """hostname -> pinned version. An empty pin resolves to the current version."""
        result = {}
        for hostname, contents in self.registry.items():
            kind = self.engine.recover_kind_or_plain(contents)
            if isinstance(kind, IsolatedKind):
                result[hostname] = normalize(kind.php_version) or self.php.current_version()
        return result

    # ------------------------------------------------------------------
    # Served sites
    # ------------------------------------------------------------------

    def link(self, target: str, name: str) -> Path:
        """Serve `target` as `<name>.<domain>` through a symlink in Sites/."""
        link_path = self.paths.sites_path(name)
        self.files.symlink(Path(target).resolve(), link_path)
        logger.info(f"Linked {target} as {name}")
        return link_path

    def served_sites(self) -> Dict[str, str]:
        """site name -> directory, from parked paths and Sites/ links."""
        sites: Dict[str, str] = {}
        sites_dir = self.paths.sites_path()
        for parked in self.config.load().paths:
            if Path(parked) == sites_dir:
                continue
            for entry in self.files.scandir(parked):
                directory = Path(parked) / entry
                if self.files.is_dir(directory):
                    sites[entry] = str(directory)
        for linked in self.files.scandir(sites_dir):
            sites[linked] = str(self.files.realpath(sites_dir / linked))
        return sites

    def get_site_url(self, directory: str) -> str:
        """
        Raises:
            ValetValidationError: the site is not served
        """
        domain = self.config.load().domain
        if directory in (".", "./"):
            directory = Path(os.getcwd()).name
        else:
            suffix = f".{domain}"
            if directory.endswith(suffix):
                directory = directory[:-len(suffix)]
        if directory not in self.served_sites():
            raise ValetValidationError("The site could not be found in the site list", subject=directory)
        return f"{directory}.{domain}"

    def php_rc_version(self, site: str) -> Optional[str]:
        """Version requested by a site's `.valetphprc`, if any."""
        directory = self.served_sites().get(site)
        if directory is None:
            return None
        contents = self.files.read_optional(Path(directory) / PHP_RC_FILE_NAME)
        if contents is None:
            return None
        return normalize(contents.strip()) or None

    def prune_links(self):
        """Drop Sites/ links whose target is gone."""
        self.files.ensure_dir(self.paths.sites_path(), mode=0o775)
        removed = self.files.remove_broken_links_at(self.paths.sites_path())
        if removed:
            logger.info(f"Pruned broken links: {', '.join(removed)}")

"""Per-site TLS certificates and the secure/unsecure site files."""

import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Set
from loguru import logger

from models.reports import ReSecureReport, TrustReport
from models.site_kind import IsolatedKind, SiteKind
from services.certificate_authority import CertificateAuthority
from services.config_store import ConfigStore
from services.php_runtime_manager import PhpRuntimeManager, normalize
from services.site_config_registry import SiteConfigRegistry
from services.stub_template_engine import StubTemplateEngine
from utils.command_line import CommandLine
from utils.constants import (
    CERTIFICATE_FILE_SUFFIXES, CERTIFICATE_VALIDITY_DAYS, VALET_SERVER_PATH, VALET_STATIC_PREFIX
)
from utils.errors import ValetError, ValetValidationError
from utils.filesystem import Filesystem
from utils.paths import ValetPaths


HOSTNAME_PATTERN = re.compile(
    r"^(?=.{1,253}$)(?:[a-z0-9](?:[a-z0-9\-_]{0,61}[a-z0-9])?\.)*[a-z0-9](?:[a-z0-9\-_]{0,61}[a-z0-9])?$"
)


class SiteCertificateManager:
    """
    Issues and revokes a leaf certificate per hostname.

    A certificate for H exists exactly when the generated file for H is a
    secure variant. Every operation keeps that pairing; `reconcile` repairs
    it after a failure.

    Callers must not run two mutating operations at the same time: the
    certificate and site directories are plain files with no locking.
    """

    def __init__(self, paths: ValetPaths, config: ConfigStore, ca: CertificateAuthority,
                 engine: StubTemplateEngine, registry: SiteConfigRegistry,
                 php: PhpRuntimeManager, cli: CommandLine,
                 filesystem: Optional[Filesystem] = None):
        self.paths = paths
        self.config = config
        self.ca = ca
        self.engine = engine
        self.registry = registry
        self.php = php
        self.cli = cli
        self.files = filesystem or Filesystem()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def validate_hostname(hostname: str) -> str:
        """
        Raises:
            ValetValidationError: not a usable DNS name
        """
        candidate = (hostname or "").strip().rstrip(".").lower()
        if not HOSTNAME_PATTERN.match(candidate):
            raise ValetValidationError("Invalid hostname", subject=hostname or "<empty>")
        return candidate

    def certificate_file(self, hostname: str, suffix: str) -> Path:
        return self.paths.certificates_path(f"{hostname}{suffix}")

    def has_certificate(self, hostname: str) -> bool:
        return self.files.is_file(self.certificate_file(hostname, ".crt"))

    def site_params(self, hostname: str, kind: SiteKind) -> Dict[str, Any]:
        """Template parameters for one site."""
        state = self.config.load()
        version = self.php.current_version()
        if isinstance(kind, IsolatedKind):
            version = normalize(kind.php_version) or version
        return {
            "home_path": str(self.paths.home),
            "server_path": VALET_SERVER_PATH,
            "static_prefix": VALET_STATIC_PREFIX,
            "site": hostname,
            "http_port": state.http_port,
            "https_port": state.https_port,
            "redirect_port": state.https_suffix,
            "fpm_socket": str(self.php.fpm_socket_file(version)),
            "cert": str(self.certificate_file(hostname, ".crt")),
            "key": str(self.certificate_file(hostname, ".key")),
        }

    def render_site(self, hostname: str, kind: SiteKind, secure: bool) -> str:
        return self.engine.render(kind, secure, self.site_params(hostname, kind))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def secured(self) -> Set[str]:
        """Hostnames with a certificate on disk; the certificate directory is authoritative."""
        names = set()
        for entry in self.files.scandir(self.paths.certificates_path()):
            for suffix in CERTIFICATE_FILE_SUFFIXES:
                if entry.endswith(suffix):
                    names.add(entry[:-len(suffix)])
                    break
        return {name for name in names if self.has_certificate(name)}

    def secure(self, hostname: str, seed: Optional[str] = None) -> TrustReport:
        """
        Issue a certificate and write the secure variant of the site's kind.

        Args:
            hostname: Site hostname, e.g. `blog.test`
            seed: Generated-file text to recover the kind from instead of the
                file currently on disk

        Returns:
            TrustReport from establishing the CA

        Raises:
            ValetValidationError: malformed hostname
            ProcessError / ValetIOError: issuance or file write failed; the
                certificate/site-file pairing is repaired before raising
        """
        hostname = self.validate_hostname(hostname)
        existing = seed if seed is not None else self.registry.read(hostname)
        kind = self.engine.recover_kind_or_plain(existing)
        logger.info(f"Securing {hostname} ({kind.kind})")

        try:
            report = self.ca.ensure()
            self.files.ensure_dir(self.paths.certificates_path(), mode=0o775)
            self._create_certificate(hostname)
            self.registry.write(hostname, self.render_site(hostname, kind, secure=True))
        except Exception:
            self._reconcile_after_failure(hostname)
            raise

        logger.info(f"{hostname} secured")
        return report

    def unsecure(self, hostname: str, preserve_kind: bool = False) -> bool:
        """
        Remove the certificate of a site.

        With preserve_kind the site file is replaced by the unsecure variant
        of the same kind; otherwise it is removed and the site falls back to
        the catch-all server block.

        Returns:
            False when there was no certificate (nothing done)
        """
        hostname = self.validate_hostname(hostname)
        if not self.has_certificate(hostname):
            logger.debug(f"{hostname} has no certificate, nothing to unsecure")
            return False

        kind = None
        if preserve_kind:
            kind = self.engine.recover_kind_or_plain(self.registry.read(hostname))

        self.registry.remove(hostname)
        self._remove_certificate_files(hostname)

        if kind is not None:
            self.registry.write(hostname, self.render_site(hostname, kind, secure=False))
        logger.info(f"{hostname} unsecured")
        return True

    def regenerate_secured_sites_config(self) -> List[str]:
        """Re-render every secure site file, e.g. after a port change."""
        regenerated = []
        for hostname in sorted(self.secured()):
            kind = self.engine.recover_kind_or_plain(self.registry.read(hostname))
            self.registry.write(hostname, self.render_site(hostname, kind, secure=True))
            regenerated.append(hostname)
        return regenerated

    def re_secure_for_new_domain(self, old_domain: str, new_domain: str) -> ReSecureReport:
        """
        Move every secured `*.old_domain` site to `*.new_domain`.

        Each site is unsecured and then secured under its new name, seeded
        with its old file so the kind and its parameters carry over. A new
        name that is not a valid hostname leaves the old site untouched.
        Otherwise not atomic per site: a failure leaves that site unsecured
        and is recorded in the report while the remaining sites are still
        processed.
        """
        report = ReSecureReport(old_domain=old_domain, new_domain=new_domain)
        if not self.files.is_dir(self.paths.certificates_path()):
            return report

        suffix = f".{old_domain}"
        for old_host in sorted(self.secured()):
            if not old_host.endswith(suffix):
                report.skipped.append(old_host)
                continue
            new_host = f"{old_host[:-len(suffix)]}.{new_domain}"
            try:
                new_host = self.validate_hostname(new_host)
                seed = self.registry.read(old_host)
                if seed is not None:
                    seed = seed.replace(old_host, new_host)
                self.unsecure(old_host, preserve_kind=False)
                self.secure(new_host, seed=seed)
                report.secured[old_host] = new_host
            except ValetError as e:
                logger.error(f"Unable to re-secure {old_host} as {new_host}: {e}")
                report.failed[old_host] = str(e)

        logger.info(f"Re-secured {len(report.secured)} site(s) for .{new_domain}, {len(report.failed)} failed")
        return report

    def reconcile(self, hostname: str) -> Optional[str]:
        """
        Restore the certificate/secure-file pairing for one hostname.

        Returns:
            Description of the repair, or None when nothing was wrong
        """
        has_certificate = self.has_certificate(hostname)
        contents = self.registry.read(hostname)
        secure_file = contents is not None and self.engine.is_secure(contents)

        if has_certificate and not secure_file:
            self._remove_certificate_files(hostname)
            action = "removed orphan certificate"
        elif secure_file and not has_certificate:
            kind = self.engine.recover_kind_or_plain(contents)
            self.registry.write(hostname, self.render_site(hostname, kind, secure=False))
            action = "downgraded secure site file without certificate"
        else:
            if not has_certificate:
                self._remove_certificate_files(hostname)
            return None

        logger.warning(f"Reconciled {hostname}: {action}")
        return action

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reconcile_after_failure(self, hostname: str):
        try:
            self.reconcile(hostname)
        except ValetError as e:
            logger.error(f"Unable to reconcile {hostname} after failure: {e}")

    def _remove_certificate_files(self, hostname: str):
        for suffix in CERTIFICATE_FILE_SUFFIXES:
            self.files.unlink(self.certificate_file(hostname, suffix))

    def _create_certificate(self, hostname: str):
        key_path = self.certificate_file(hostname, ".key")
        csr_path = self.certificate_file(hostname, ".csr")
        crt_path = self.certificate_file(hostname, ".crt")
        conf_path = self.certificate_file(hostname, ".conf")

        for path in (key_path, csr_path, crt_path):
            self.files.unlink(path)
        self.files.write_text(conf_path, self.engine.render_openssl_ext(hostname))

        self.cli.run_as_user([
            "openssl", "req", "-new", "-newkey", "rsa:2048", "-sha256", "-nodes",
            "-keyout", str(key_path),
            "-subj", f"/CN={hostname}",
            "-out", str(csr_path),
            "-config", str(conf_path),
        ])
        serial = self.ca.next_serial()
        self.cli.run_as_user([
            "openssl", "x509", "-req", "-sha256",
            "-in", str(csr_path),
            "-CA", str(self.ca.pem_path),
            "-CAkey", str(self.ca.key_path),
            "-set_serial", f"0x{serial:X}",
            "-out", str(crt_path),
            "-days", str(CERTIFICATE_VALIDITY_DAYS),
            "-extfile", str(conf_path),
            "-extensions", "x509_ext",
        ])
        logger.info(f"Certificate issued for {hostname} (serial {serial:X})")

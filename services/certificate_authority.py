"""Local root certificate authority and its trust-store installation."""

import secrets
from pathlib import Path
from typing import Callable, List, Optional, Tuple
from loguru import logger

from models.reports import TrustReport, TrustStoreFailure
from utils.command_line import CommandLine, user_home
from utils.constants import (
    CA_COMMON_NAME, CA_DUMMY_EMAIL, CA_KEY_BITS, CA_KEY_NAME, CA_ORGANIZATION,
    CA_PEM_NAME, CA_SRL_NAME, CA_TRUST_DIR, CA_VALIDITY_DAYS
)
from utils.errors import ProcessError, TrustStoreError, ValetIOError
from utils.filesystem import Filesystem
from utils.paths import ValetPaths


OS_STORE = "os"
NSS_STORE = "nssdb"
FIREFOX_PROFILE_GLOBS = (
    ".mozilla/firefox/*.default*",
    "snap/firefox/common/.mozilla/firefox/*.default*",
)


class CertificateAuthority:
    """
    One self-signed root key/certificate pair under `<home>/CA`.

    The OS trust store is mandatory; the NSS user database and Firefox
    profiles are best-effort and their failures end up in the TrustReport.
    """

    def __init__(self, paths: ValetPaths, cli: CommandLine,
                 filesystem: Optional[Filesystem] = None,
                 trust_dir: str = CA_TRUST_DIR,
                 home_resolver: Callable[[], Path] = user_home):
        self.paths = paths
        self.cli = cli
        self.files = filesystem or Filesystem()
        self.trust_dir = Path(trust_dir)
        self.home_resolver = home_resolver

    @property
    def key_path(self) -> Path:
        return self.paths.ca_path(CA_KEY_NAME)

    @property
    def pem_path(self) -> Path:
        return self.paths.ca_path(CA_PEM_NAME)

    @property
    def serial_path(self) -> Path:
        return self.paths.ca_path(CA_SRL_NAME)

    @property
    def trusted_copy_path(self) -> Path:
        return self.trust_dir / f"{CA_PEM_NAME}.crt"

    def exists(self) -> bool:
        return self.files.is_file(self.key_path) and self.files.is_file(self.pem_path)

    def ensure(self) -> TrustReport:
        """
        Guarantee a trusted root exists.

        Returns:
            TrustReport listing created/installed/unchanged stores and
            optional-store failures

        Raises:
            ProcessError: certificate generation failed
            ValetIOError / ProcessError: the OS trust store could not be updated
        """
        report = TrustReport()
        self.files.ensure_dir(self.paths.ca_path(), mode=0o775)

        if self.exists():
            self._trust(report)
            return report

        logger.info("Creating local certificate authority")
        for path in (self.key_path, self.pem_path, self.serial_path):
            self.files.unlink(path)
        self._remove_os_copy()

        subject = (
            f"/O={CA_ORGANIZATION}/CN={CA_COMMON_NAME}"
            f"/OU=Developers/emailAddress={CA_DUMMY_EMAIL}"
        )
        try:
            self.cli.run_as_user([
                "openssl", "req", "-new", "-newkey", f"rsa:{CA_KEY_BITS}",
                "-days", str(CA_VALIDITY_DAYS), "-nodes", "-x509",
                "-subj", subject,
                "-keyout", str(self.key_path),
                "-out", str(self.pem_path),
            ])
        except ProcessError:
            # never leave one half of the pair behind
            self.files.unlink(self.key_path)
            self.files.unlink(self.pem_path)
            raise
        if not self.exists():
            self.files.unlink(self.key_path)
            self.files.unlink(self.pem_path)
            raise ValetIOError("openssl did not produce the CA key and certificate",
                               subject=str(self.paths.ca_path()))

        self.files.chmod(self.key_path, 0o600)
        self._write_serial(secrets.randbits(63) or 1)
        report.created = True
        logger.info(f"Certificate authority created: {self.pem_path}")

        self._trust(report)
        return report

    def revoke(self):
        """Remove the root certificate from the OS trust store. Key and certificate stay."""
        if self._remove_os_copy():
            logger.info("Certificate authority removed from the OS trust store")

    def next_serial(self) -> int:
        """
        Next certificate serial number.

        The serial file holds a hex counter that is incremented and persisted
        on every call, so no serial repeats during the CA's lifetime.
        """
        current = None
        content = self.files.read_optional(self.serial_path)
        if content:
            try:
                current = int(content.strip(), 16)
            except ValueError:
                logger.warning(f"Unreadable serial file {self.serial_path}, starting a new counter")
        serial = (current + 1) if current is not None else (secrets.randbits(63) or 1)
        self._write_serial(serial)
        return serial

    def _write_serial(self, serial: int):
        self.files.write_text(self.serial_path, f"{serial:X}\n")

    # ------------------------------------------------------------------
    # Trust stores
    # ------------------------------------------------------------------

    def _trust(self, report: TrustReport):
        self._trust_os(report)
        for store, database in self._nss_databases():
            try:
                if self._trust_nss(store, database):
                    report.installed.append(store)
                else:
                    report.unchanged.append(store)
            except TrustStoreError as e:
                logger.warning(f"Unable to trust CA in {e.store}: {e.message}")
                report.failures.append(TrustStoreFailure(store=e.store, message=e.message))

    def _trust_os(self, report: TrustReport):
        """
        Copy into the OS store and refresh. Failure here is fatal.

        The copy only survives a successful refresh, so an identical copy
        means the system bundle already carries the CA.
        """
        if self.files.same_content(self.pem_path, self.trusted_copy_path):
            report.unchanged.append(OS_STORE)
            return
        self.files.copy(self.pem_path, self.trusted_copy_path)
        try:
            self.cli.run(["update-ca-certificates"])
        except ProcessError:
            self.files.unlink(self.trusted_copy_path)
            raise
        report.installed.append(OS_STORE)
        logger.info(f"CA installed into OS trust store: {self.trusted_copy_path}")

    def _remove_os_copy(self) -> bool:
        if not self.files.unlink(self.trusted_copy_path):
            return False
        self.cli.run(["update-ca-certificates", "--fresh"])
        return True

    def _nss_databases(self) -> List[Tuple[str, str]]:
        """(store name, certutil -d argument) for every NSS database found."""
        home = self.home_resolver()
        databases = []

        nssdb = home / ".pki" / "nssdb"
        if self.files.is_dir(nssdb):
            databases.append((NSS_STORE, f"sql:{nssdb}"))
        else:
            logger.debug(f"No NSS user database at {nssdb}")

        for pattern in FIREFOX_PROFILE_GLOBS:
            for profile in sorted(home.glob(pattern)):
                if not profile.is_dir():
                    continue
                prefix = "sql:" if (profile / "cert9.db").exists() else ""
                databases.append((str(profile), f"{prefix}{profile}"))
        return databases

    def _trust_nss(self, store: str, database: str) -> bool:
        """
        Add the CA to one NSS database.

        Returns:
            True when the certificate was added, False when already present

        Raises:
            TrustStoreError: certutil missing or failed
        """
        try:
            listed = self.cli.run_as_user(
                ["certutil", "-d", database, "-L", "-n", CA_ORGANIZATION], check=False
            )
            if listed.ok:
                return False
            self.cli.run_as_user([
                "certutil", "-d", database, "-A", "-t", "TC",
                "-n", CA_ORGANIZATION, "-i", str(self.pem_path)
            ])
        except ProcessError as e:
            raise TrustStoreError(e.message, store=store) from e
        logger.info(f"CA added to NSS database: {database}")
        return True

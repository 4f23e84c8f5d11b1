"""Nginx installation and process management service."""

import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple
import psutil
from loguru import logger

from models.nginx_status import ConfigTestStatus, NginxProcessInfo, NginxProcessStatus, NginxStatus
from services.config_store import ConfigStore
from services.package_manager import PackageManager
from services.service_manager import ServiceManager
from services.site_config_registry import SiteConfigRegistry
from services.stub_template_engine import StubTemplateEngine
from utils.command_line import CommandLine, current_group, current_user
from utils.constants import (
    NGINX_CONF, SITES_AVAILABLE_CONF, SITES_ENABLED_CONF, SITES_ENABLED_DEFAULT,
    VALET_SERVER_PATH, VALET_STATIC_PREFIX
)
from utils.errors import ProcessError
from utils.filesystem import Filesystem
from utils.paths import ValetPaths


NGINX_SERVICE = "nginx"
NGINX_CONFIG_TEST_TIMEOUT = 10  # seconds


class NginxService:
    """
    Nginx service management.

    Responsibilities:
    1. Install nginx and its main configuration
    2. Maintain the catch-all server block that points at the default PHP socket
    3. Config test, restart and stop through the service manager
    4. Process state via psutil
    """

    def __init__(self, paths: ValetPaths, config: ConfigStore, registry: SiteConfigRegistry,
                 engine: StubTemplateEngine, packages: PackageManager, services: ServiceManager,
                 cli: CommandLine, filesystem: Optional[Filesystem] = None,
                 nginx_conf: str = NGINX_CONF,
                 sites_available_conf: str = SITES_AVAILABLE_CONF,
                 sites_enabled_conf: str = SITES_ENABLED_CONF,
                 sites_enabled_default: str = SITES_ENABLED_DEFAULT):
        self.paths = paths
        self.config = config
        self.registry = registry
        self.engine = engine
        self.packages = packages
        self.services = services
        self.cli = cli
        self.files = filesystem or Filesystem()
        self.nginx_conf = Path(nginx_conf)
        self.sites_available_conf = Path(sites_available_conf)
        self.sites_enabled_conf = Path(sites_enabled_conf)
        self.sites_enabled_default = Path(sites_enabled_default)

        logger.debug(f"NginxService initialized: config={self.nginx_conf}")

    def install(self, socket_file_name: str):
        """
        Install nginx and point it at the valet configuration.

        Args:
            socket_file_name: Socket of the default PHP version, e.g. `valet82.sock`
        """
        self.packages.ensure_installed("nginx")
        self.services.enable(NGINX_SERVICE)
        self._handle_apache_service()
        self.files.ensure_dir(self.sites_available_conf.parent, mode=0o775)
        self.files.ensure_dir(self.sites_enabled_conf.parent, mode=0o775)
        self.stop()
        self.install_configuration()
        self.install_server(socket_file_name)
        self.registry.ensure()
        logger.info("Nginx installed")

    def _handle_apache_service(self):
        """Apache would hold port 80."""
        if not self.packages.installed("apache2"):
            return
        if self.services.is_enabled("apache2"):
            self.services.disable("apache2")
        self.services.stop("apache2")
        logger.info("apache2 disabled and stopped")

    def install_configuration(self):
        """Replace nginx.conf, keeping a one-time backup of the distribution file."""
        contents = self.engine.render_nginx_conf({
            "user": current_user(),
            "group": current_group(),
            "home_path": str(self.paths.home),
        })
        self.files.backup(self.nginx_conf)
        self.files.write_text(self.nginx_conf, contents)
        logger.info(f"Nginx configuration written: {self.nginx_conf}")

    def install_server(self, socket_file_name: str):
        """
        Write the catch-all server block and enable it.

        Args:
            socket_file_name: Default PHP socket file name
        """
        contents = self.engine.render_server({
            "home_path": str(self.paths.home),
            "fpm_socket": str(self.paths.home / socket_file_name),
            "server_path": VALET_SERVER_PATH,
            "static_prefix": VALET_STATIC_PREFIX,
            "http_port": self.config.load().http_port,
        })
        self.files.write_text(self.sites_available_conf, contents)
        if self.files.exists(self.sites_enabled_default) or self.files.is_link(self.sites_enabled_default):
            self.files.unlink(self.sites_enabled_default)
        self.files.symlink(self.sites_available_conf, self.sites_enabled_conf)
        logger.info(f"Server block installed for {socket_file_name}")

    def test_config(self) -> Tuple[bool, str]:
        """
        Test nginx configuration syntax.

        Returns:
            (is_valid, message)
        """
        result = self.cli.run(["nginx", "-t"], timeout=NGINX_CONFIG_TEST_TIMEOUT, check=False)
        output = result.stderr.strip() or result.stdout.strip()
        if result.ok:
            logger.info(f"Config test passed: {output}")
            return True, output or "Configuration test successful"
        logger.error(f"Config test failed: {output}")
        return False, output or "Unknown error"

    def restart(self):
        """
        Restart nginx after a successful config test.

        Raises:
            ProcessError: the configuration does not pass `nginx -t`
        """
        is_valid, message = self.test_config()
        if not is_valid:
            raise ProcessError(f"Configuration test failed: {message}", command="nginx -t",
                               subject=NGINX_SERVICE)
        self.services.restart(NGINX_SERVICE)

    def stop(self):
        self.services.stop(NGINX_SERVICE)

    def is_running(self) -> bool:
        """Check whether an nginx master process exists."""
        return bool(self.get_nginx_processes())

    def get_nginx_processes(self) -> List[psutil.Process]:
        processes = []
        for proc in psutil.process_iter(["name", "pid"]):
            try:
                if proc.info.get("name") == "nginx" and proc.status() != psutil.STATUS_ZOMBIE:
                    processes.append(proc)
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                # process ended or is not ours
                continue
        return processes

    def get_process_info(self) -> Optional[NginxProcessInfo]:
        """Master/worker details. The master is the oldest nginx process."""
        processes = self.get_nginx_processes()
        if not processes:
            return None

        master = None
        for proc in processes:
            try:
                if master is None or proc.create_time() < master.create_time():
                    master = proc
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        if master is None:
            return None

        info = NginxProcessInfo(worker_pids=[p.pid for p in processes if p.pid != master.pid])
        try:
            created = master.create_time()
            mem = master.memory_info()
            info.pid = master.pid
            info.start_time = datetime.fromtimestamp(created)
            info.uptime_seconds = int(time.time() - created)
            info.memory_info = {"rss": mem.rss, "vms": mem.vms}
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.debug(f"Unable to read nginx master details: {e}")
        return info

    def status(self, secured_sites: int = 0, test_config: bool = False) -> NginxStatus:
        """Collect process, configuration and site statistics."""
        status = NginxStatus(
            config_path=str(self.nginx_conf),
            php_version=self.config.load().php_version,
            secured_sites=secured_sites,
        )

        info = self.get_process_info()
        status.status = NginxProcessStatus.RUNNING if info else NginxProcessStatus.STOPPED
        status.process_info = info

        if test_config:
            ok, message = self.test_config()
            status.config_test_status = ConfigTestStatus.SUCCESS if ok else ConfigTestStatus.FAILED
            status.config_test_message = message

        by_kind = {}
        for _, contents in self.registry.items():
            kind = self.engine.recover_kind_or_plain(contents).kind
            by_kind[kind] = by_kind.get(kind, 0) + 1
        status.sites_by_kind = by_kind
        status.total_sites = sum(by_kind.values())
        return status

"""System service control (systemd or legacy init scripts)."""

from abc import ABC, abstractmethod
from pathlib import Path
from loguru import logger

from utils.command_line import CommandLine
from utils.errors import EnvironmentNotSupportedError


class ServiceManager(ABC):
    """Capability interface; the concrete manager is chosen once at startup."""

    name = "base"

    def __init__(self, cli: CommandLine):
        self.cli = cli

    def start(self, *services: str):
        for service in services:
            self._action(service, "start")

    def stop(self, *services: str):
        for service in services:
            self._action(service, "stop")

    def restart(self, *services: str):
        for service in services:
            self._action(service, "restart")

    @abstractmethod
    def _action(self, service: str, action: str):
        """Run one start/stop/restart action."""

    @abstractmethod
    def is_running(self, service: str) -> bool:
        pass

    @abstractmethod
    def is_enabled(self, service: str) -> bool:
        pass

    @abstractmethod
    def enable(self, service: str):
        pass

    @abstractmethod
    def disable(self, service: str):
        pass

    @abstractmethod
    def is_available(self) -> bool:
        pass

    def status(self, service: str) -> str:
        """Human readable one-line status."""
        state = "running" if self.is_running(service) else "stopped"
        return f"{service} is {state}"


class SystemdServiceManager(ServiceManager):
    """systemctl based manager."""

    name = "systemd"

    def _action(self, service: str, action: str):
        logger.info(f"systemctl {action} {service}")
        self.cli.run(["systemctl", action, service])

    def is_running(self, service: str) -> bool:
        return self.cli.run(["systemctl", "is-active", "--quiet", service], check=False).ok

    def is_enabled(self, service: str) -> bool:
        result = self.cli.run(["systemctl", "is-enabled", service], check=False)
        return result.stdout.strip() == "enabled"

    def enable(self, service: str):
        if not self.is_enabled(service):
            self.cli.run(["systemctl", "enable", service])
            logger.info(f"{service} enabled")

    def disable(self, service: str):
        if self.is_enabled(service):
            self.cli.run(["systemctl", "disable", service])
            logger.info(f"{service} disabled")

    def is_available(self) -> bool:
        # systemctl may be installed in containers that were not booted by systemd
        return self.cli.which("systemctl") is not None and Path("/run/systemd/system").is_dir()


class SysvinitServiceManager(ServiceManager):
    """`service` / update-rc.d based manager for hosts without systemd."""

    name = "sysvinit"

    def _action(self, service: str, action: str):
        logger.info(f"service {service} {action}")
        self.cli.run(["service", service, action])

    def is_running(self, service: str) -> bool:
        result = self.cli.run(["service", service, "status"], check=False)
        return result.ok and "running" in result.stdout

    def is_enabled(self, service: str) -> bool:
        return any(Path("/etc/rc2.d").glob(f"S[0-9][0-9]{service}"))

    def enable(self, service: str):
        self.cli.run(["update-rc.d", service, "defaults"])
        logger.info(f"{service} enabled")

    def disable(self, service: str):
        self.cli.run(["update-rc.d", service, "disable"])
        logger.info(f"{service} disabled")

    def is_available(self) -> bool:
        return self.cli.which("service") is not None


def detect_service_manager(cli: CommandLine) -> ServiceManager:
    """
    Probe the host and return the matching manager.

    Raises:
        EnvironmentNotSupportedError: neither systemd nor `service` is present
    """
    for manager_class in (SystemdServiceManager, SysvinitServiceManager):
        manager = manager_class(cli)
        if manager.is_available():
            logger.info(f"Using {manager.name} service manager")
            return manager
    raise EnvironmentNotSupportedError("No supported service manager found (systemd or sysvinit)")

"""Host requirements checked before installing."""

from loguru import logger

from utils.command_line import CommandLine
from utils.errors import EnvironmentNotSupportedError
from utils.paths import ValetPaths


class Requirements:
    """Refuses hosts the stack cannot run on."""

    def __init__(self, paths: ValetPaths, cli: CommandLine, ignore_selinux: bool = False):
        self.paths = paths
        self.cli = cli
        self.ignore_selinux = ignore_selinux

    def check(self):
        """
        Raises:
            EnvironmentNotSupportedError: home inside /root, or SELinux enforcing
        """
        self.home_path_is_inside_root()
        self.selinux_is_enforcing()

    def home_path_is_inside_root(self):
        # nginx and php-fpm workers cannot traverse /root
        if str(self.paths.home).startswith("/root/"):
            raise EnvironmentNotSupportedError("Valet home directory is inside /root",
                                               subject=str(self.paths.home))

    def selinux_is_enforcing(self):
        if self.ignore_selinux:
            return
        if self.cli.which("sestatus") is None:
            logger.debug("sestatus not available, skipping SELinux check")
            return
        output = self.cli.run(["sestatus"], check=False).stdout
        fields = {}
        for line in output.splitlines():
            if ":" in line:
                key, value = line.split(":", 1)
                fields[key.strip()] = value.strip()
        if fields.get("SELinux status") == "enabled" and fields.get("Current mode") == "enforcing":
            raise EnvironmentNotSupportedError("SELinux is in enforcing mode; rerun with --ignore-selinux")

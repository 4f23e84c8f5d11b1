"""Access to the generated per-site nginx files."""

from pathlib import Path
from typing import Iterator, List, Optional, Tuple
from loguru import logger

from utils.filesystem import Filesystem
from utils.paths import ValetPaths


class SiteConfigRegistry:
    """
    One generated file per hostname under `<home>/Nginx`.

    Storage only: which kind a file holds is the template engine's business.
    """

    def __init__(self, paths: ValetPaths, filesystem: Optional[Filesystem] = None):
        self.paths = paths
        self.files = filesystem or Filesystem()

    @property
    def directory(self) -> Path:
        return self.paths.nginx_path()

    def ensure(self):
        """Create the directory with a `.keep` file so nginx's include glob never fails."""
        self.files.ensure_dir(self.directory)
        self.files.touch(self.directory / ".keep")

    def path(self, hostname: str) -> Path:
        return self.paths.nginx_path(hostname)

    def hostnames(self) -> List[str]:
        """Sorted hostnames that have a generated file. Dotfiles are skipped."""
        return [
            name for name in self.files.scandir(self.directory)
            if not name.startswith(".") and self.files.is_file(self.directory / name)
        ]

    def exists(self, hostname: str) -> bool:
        return self.files.is_file(self.path(hostname))

    def read(self, hostname: str) -> Optional[str]:
        """Contents of the generated file, or None."""
        return self.files.read_optional(self.path(hostname))

    def write(self, hostname: str, contents: str):
        self.files.ensure_dir(self.directory)
        self.files.write_text(self.path(hostname), contents)
        logger.info(f"Wrote site config: {hostname}")

    def remove(self, hostname: str) -> bool:
        removed = self.files.unlink(self.path(hostname))
        if removed:
            logger.info(f"Removed site config: {hostname}")
        return removed

    def items(self) -> Iterator[Tuple[str, str]]:
        """(hostname, contents) for every generated file."""
        for hostname in self.hostnames():
            contents = self.read(hostname)
            if contents is not None:
                yield hostname, contents

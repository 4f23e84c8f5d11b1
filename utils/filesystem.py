"""
Filesystem capability.

Every service touches disk through this class so tests can point it at a
temporary directory. Writes go to a sibling temp file first and are renamed
into place, so a reader never sees a half-written file.
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional, Union
from loguru import logger

from utils.errors import ValetIOError

PathLike = Union[str, Path]


class Filesystem:
    """Thin wrapper around pathlib/shutil that raises ValetIOError."""

    def exists(self, path: PathLike) -> bool:
        return Path(path).exists()

    def is_dir(self, path: PathLike) -> bool:
        return Path(path).is_dir()

    def is_file(self, path: PathLike) -> bool:
        return Path(path).is_file()

    def is_link(self, path: PathLike) -> bool:
        return Path(path).is_symlink()

    def read_text(self, path: PathLike, encoding: str = "utf-8") -> str:
        """
        Read a text file.

        Args:
            path: File path
            encoding: Expected encoding

        Returns:
            File content; undecodable bytes are replaced rather than raising

        Raises:
            ValetIOError: file missing or unreadable
        """
        path = Path(path)
        try:
            return path.read_text(encoding=encoding)
        except UnicodeDecodeError as e:
            logger.warning(f"UnicodeDecodeError reading {path} with {encoding}: {e}")
            return path.read_text(encoding=encoding, errors="replace")
        except OSError as e:
            raise ValetIOError(f"Unable to read file: {e}", subject=str(path)) from e

    def read_optional(self, path: PathLike) -> Optional[str]:
        """Read a file, or return None when it does not exist."""
        if not Path(path).is_file():
            return None
        return self.read_text(path)

    def write_text(self, path: PathLike, content: str, encoding: str = "utf-8",
                   mode: Optional[int] = None) -> None:
        """
        Atomically replace a file's content.

        Args:
            path: Destination
            content: Text to write
            encoding: Output encoding
            mode: Optional permission bits applied before the rename
        """
        path = Path(path)
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", encoding=encoding, dir=str(path.parent),
                prefix=f".{path.name}.", suffix=".tmp", delete=False
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(content)
            if mode is not None:
                os.chmod(tmp_name, mode)
            os.replace(tmp_name, path)
            tmp_name = None
            logger.debug(f"Wrote file: {path} ({len(content)} bytes)")
        except OSError as e:
            raise ValetIOError(f"Unable to write file: {e}", subject=str(path)) from e
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

    def touch(self, path: PathLike) -> None:
        try:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            Path(path).touch(exist_ok=True)
        except OSError as e:
            raise ValetIOError(f"Unable to touch file: {e}", subject=str(path)) from e

    def unlink(self, path: PathLike) -> bool:
        """Remove a file or symlink. Returns False when there was nothing to remove."""
        path = Path(path)
        if not path.exists() and not path.is_symlink():
            return False
        try:
            path.unlink()
            logger.debug(f"Removed file: {path}")
            return True
        except OSError as e:
            raise ValetIOError(f"Unable to remove file: {e}", subject=str(path)) from e

    def remove_tree(self, path: PathLike) -> None:
        path = Path(path)
        if not path.exists():
            return
        try:
            shutil.rmtree(path)
            logger.info(f"Removed directory: {path}")
        except OSError as e:
            raise ValetIOError(f"Unable to remove directory: {e}", subject=str(path)) from e

    def ensure_dir(self, path: PathLike, mode: int = 0o755) -> None:
        path = Path(path)
        if path.is_dir():
            return
        try:
            path.mkdir(parents=True, exist_ok=True, mode=mode)
            logger.debug(f"Ensured directory exists: {path}")
        except OSError as e:
            raise ValetIOError(f"Unable to create directory: {e}", subject=str(path)) from e

    def copy(self, source: PathLike, destination: PathLike) -> None:
        try:
            Path(destination).parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, destination)
            logger.debug(f"Copied {source} -> {destination}")
        except OSError as e:
            raise ValetIOError(f"Unable to copy {source}: {e}", subject=str(destination)) from e

    def same_content(self, first: PathLike, second: PathLike) -> bool:
        """True when both files exist and hold identical bytes."""
        first, second = Path(first), Path(second)
        if not first.is_file() or not second.is_file():
            return False
        return first.read_bytes() == second.read_bytes()

    def backup(self, path: PathLike) -> Optional[Path]:
        """Keep a one-time `.bak` copy of a system file before it is overwritten."""
        path = Path(path)
        backup_path = path.with_name(path.name + ".bak")
        if path.is_file() and not backup_path.exists():
            self.copy(path, backup_path)
            logger.info(f"Backup created: {backup_path}")
            return backup_path
        return None

    def symlink(self, target: PathLike, link: PathLike) -> None:
        """Create or replace a symlink, like `ln -snf`."""
        link = Path(link)
        try:
            if link.is_symlink() or link.exists():
                link.unlink()
            link.parent.mkdir(parents=True, exist_ok=True)
            link.symlink_to(target)
        except OSError as e:
            raise ValetIOError(f"Unable to link {target}: {e}", subject=str(link)) from e

    def chmod(self, path: PathLike, mode: int) -> None:
        try:
            os.chmod(path, mode)
        except OSError as e:
            raise ValetIOError(f"Unable to chmod: {e}", subject=str(path)) from e

    def scandir(self, path: PathLike) -> List[str]:
        """Sorted entry names of a directory; a missing directory is empty."""
        path = Path(path)
        if not path.is_dir():
            return []
        return sorted(entry.name for entry in path.iterdir())

    def realpath(self, path: PathLike) -> Path:
        return Path(path).resolve()

    def is_broken_link(self, path: PathLike) -> bool:
        path = Path(path)
        return path.is_symlink() and not path.exists()

    def remove_broken_links_at(self, path: PathLike) -> List[str]:
        removed = []
        for name in self.scandir(path):
            entry = Path(path) / name
            if self.is_broken_link(entry):
                self.unlink(entry)
                removed.append(name)
        return removed

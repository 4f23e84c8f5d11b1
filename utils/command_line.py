"""External command execution."""

import grp
import os
import pwd
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Optional, Sequence
from loguru import logger
from pydantic import BaseModel

from utils.constants import COMMAND_TIMEOUT
from utils.errors import ProcessError, ProcessTimeoutError


def current_user() -> str:
    """The invoking (non-root) user when running under sudo."""
    return os.environ.get("SUDO_USER") or pwd.getpwuid(os.getuid()).pw_name


def current_group() -> str:
    try:
        return grp.getgrgid(pwd.getpwnam(current_user()).pw_gid).gr_name
    except KeyError:
        return current_user()


def user_home() -> Path:
    try:
        return Path(pwd.getpwnam(current_user()).pw_dir)
    except KeyError:
        return Path.home()


class CommandResult(BaseModel):
    """Outcome of one external command."""

    command: str
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandLine:
    """
    Runs external commands as argument lists, never through a shell.

    The process is expected to run with root privileges (as `sudo easyvalet`);
    commands that must create files owned by the real user go through
    `run_as_user`.
    """

    def __init__(self, timeout: int = COMMAND_TIMEOUT):
        self.timeout = timeout

    def run(self, args: Sequence[str], timeout: Optional[int] = None,
            check: bool = True, env: Optional[dict] = None) -> CommandResult:
        """
        Run a command and capture its output.

        Args:
            args: Program and arguments
            timeout: Seconds before the command is killed (default: instance timeout)
            check: Raise ProcessError on a non-zero exit status
            env: Extra environment variables

        Returns:
            CommandResult

        Raises:
            ProcessTimeoutError: the deadline expired
            ProcessError: non-zero exit with check=True, or the program is missing
        """
        args = [str(a) for a in args]
        command = shlex.join(args)
        timeout = timeout or self.timeout
        run_env = None
        if env:
            run_env = os.environ.copy()
            run_env.update(env)

        logger.debug(f"Running: {command}")
        try:
            completed = subprocess.run(
                args,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                env=run_env
            )
        except subprocess.TimeoutExpired as e:
            logger.error(f"Command timeout ({timeout}s): {command}")
            raise ProcessTimeoutError(
                f"Command timed out after {timeout}s", command=command, subject=args[0]
            ) from e
        except OSError as e:
            logger.error(f"Failed to execute {command}: {e}")
            raise ProcessError(f"Unable to execute: {e}", command=command, subject=args[0]) from e

        result = CommandResult(
            command=command,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or ""
        )
        if not result.ok:
            logger.debug(f"Exit {result.returncode}: {command}: {result.stderr.strip()}")
            if check:
                raise ProcessError(
                    result.stderr.strip() or f"exit status {result.returncode}",
                    command=command,
                    returncode=result.returncode,
                    stderr=result.stderr,
                    subject=args[0]
                )
        return result

    def run_as_user(self, args: Sequence[str], timeout: Optional[int] = None,
                    check: bool = True) -> CommandResult:
        """Run a command as the invoking user (drops root via sudo)."""
        args = [str(a) for a in args]
        if os.geteuid() == 0 and current_user() != "root":
            args = ["sudo", "-u", current_user(), "-H"] + args
        return self.run(args, timeout=timeout, check=check)

    def which(self, program: str) -> Optional[str]:
        return shutil.which(program)

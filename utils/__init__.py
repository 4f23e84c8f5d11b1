"""Utility modules."""

from .logger import init_logger
from .paths import ValetPaths
from .filesystem import Filesystem
from .command_line import CommandLine, CommandResult

__all__ = [
    "init_logger",
    "ValetPaths",
    "Filesystem",
    "CommandLine",
    "CommandResult"
]

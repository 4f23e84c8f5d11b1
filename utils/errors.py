"""Exception hierarchy shared by all services."""

from typing import Optional


class ValetError(Exception):
    """Base class for every failure surfaced to the caller."""

    def __init__(self, message: str, subject: Optional[str] = None):
        self.message = message
        self.subject = subject
        super().__init__(message)

    def __str__(self) -> str:
        if self.subject:
            return f"[{self.subject}] {self.message}"
        return self.message


class ValetIOError(ValetError):
    """File read/write/permission failure."""


class EnvironmentNotSupportedError(ValetIOError):
    """The host lacks something the manager cannot work without."""


class ProcessError(ValetError):
    """External command exited with a non-zero status."""

    retryable = False

    def __init__(self, message: str, command: str = "", returncode: Optional[int] = None,
                 stderr: str = "", subject: Optional[str] = None):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message, subject)


class ProcessTimeoutError(ProcessError):
    """External command did not finish before its deadline."""

    retryable = True


class ValetValidationError(ValetError):
    """Rejected request: unsupported version, bad hostname, invalid directory."""


class ConfigValidationError(ValetValidationError):
    """The configuration document is malformed."""

    def __init__(self, message: str, key: Optional[str] = None):
        self.key = key
        super().__init__(message, subject=key)


class StubParseError(ValetError):
    """A stub marker is present but a required parameter cannot be recovered."""


class StubRenderError(StubParseError):
    """A template referenced a parameter that was not supplied."""


class TrustStoreError(ValetError):
    """An optional trust store could not be updated. Never fatal."""

    def __init__(self, message: str, store: str):
        self.store = store
        super().__init__(message, subject=store)

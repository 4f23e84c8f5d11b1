"""Filesystem layout of the valet home directory."""

import os
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


def default_home() -> Path:
    """Home directory, overridable through VALET_HOME."""
    override = os.environ.get("VALET_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "valetui"


class ValetPaths(BaseModel):
    """Every per-user path the services read or write."""

    model_config = ConfigDict(frozen=True)

    home: Path = Field(default_factory=default_home, description="valet home directory")

    @field_validator("home")
    @classmethod
    def validate_home(cls, v: Path) -> Path:
        return Path(v).expanduser()

    @property
    def config_file(self) -> Path:
        return self.home / "config.json"

    @property
    def stubs_dir(self) -> Path:
        return self.home / "stubs"

    @property
    def log_dir(self) -> Path:
        return self.home / "Log"

    @property
    def drivers_dir(self) -> Path:
        return self.home / "Drivers"

    @property
    def extensions_dir(self) -> Path:
        return self.home / "Extensions"

    def sites_path(self, file: Optional[str] = None) -> Path:
        """Linked sites directory, or one entry inside it."""
        base = self.home / "Sites"
        return base / file if file else base

    def certificates_path(self, file: Optional[str] = None) -> Path:
        base = self.home / "Certificates"
        return base / file if file else base

    def ca_path(self, file: Optional[str] = None) -> Path:
        base = self.home / "CA"
        return base / file if file else base

    def nginx_path(self, file: Optional[str] = None) -> Path:
        """Generated per-site nginx files live here, one file per hostname."""
        base = self.home / "Nginx"
        return base / file if file else base

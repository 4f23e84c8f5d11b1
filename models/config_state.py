"""Durable configuration document."""

import re
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from utils.constants import (
    CONFIG_SCHEMA_VERSION, DEFAULT_DOMAIN, DEFAULT_HTTP_PORT, DEFAULT_HTTPS_PORT
)


class ConfigState(BaseModel):
    """
    Typed view of `config.json`.

    On disk the ports are strings (`"port": "80"`) for compatibility with
    existing installations; in memory they are integers.
    """

    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        validate_assignment=True
    )

    schema_version: int = Field(default=CONFIG_SCHEMA_VERSION, ge=1, description="document schema")
    domain: str = Field(default=DEFAULT_DOMAIN, min_length=1, description="top level domain")
    http_port: int = Field(default=DEFAULT_HTTP_PORT, ge=1, le=65535, alias="port")
    https_port: int = Field(default=DEFAULT_HTTPS_PORT, ge=1, le=65535)
    php_version: Optional[str] = Field(default=None, description="active PHP version")
    paths: List[str] = Field(default_factory=list, description="parked directories, ordered")

    @field_validator("schema_version")
    @classmethod
    def validate_schema_version(cls, v: int) -> int:
        if v > CONFIG_SCHEMA_VERSION:
            raise ValueError(f"unsupported schema version {v} (newest known: {CONFIG_SCHEMA_VERSION})")
        return v

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        v = v.strip().strip(".").lower()
        if not re.match(r"^[a-z0-9](?:[a-z0-9\-]*[a-z0-9])?(?:\.[a-z0-9](?:[a-z0-9\-]*[a-z0-9])?)*$", v):
            raise ValueError(f"invalid domain: {v!r}")
        return v

    @field_validator("php_version")
    @classmethod
    def validate_php_version(cls, v: Optional[str]) -> Optional[str]:
        if v in (None, ""):
            return None
        if not re.match(r"^\d\.\d$", v):
            raise ValueError(f"invalid PHP version: {v!r}")
        return v

    @field_validator("paths")
    @classmethod
    def validate_paths(cls, v: List[str]) -> List[str]:
        # order preserved, duplicates dropped
        return list(dict.fromkeys(p for p in v if p))

    @field_serializer("http_port", "https_port")
    def serialize_port(self, port: int) -> str:
        return str(port)

    def to_document(self) -> dict:
        """Dictionary in the on-disk layout."""
        return self.model_dump(by_alias=True, exclude_none=True)

    @property
    def https_suffix(self) -> str:
        """`:<port>` for redirects, empty for the default HTTPS port."""
        return "" if self.https_port == 443 else f":{self.https_port}"

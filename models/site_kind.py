"""Kinds of generated site configuration."""

from typing import Literal, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator


class SiteKindBase(BaseModel):
    """Common configuration for every site kind."""

    model_config = ConfigDict(frozen=True, extra="forbid")


class PlainKind(SiteKindBase):
    """Site served through the default PHP runtime."""

    kind: Literal["plain"] = "plain"


class ProxyKind(SiteKindBase):
    """Reverse proxy to an upstream."""

    kind: Literal["proxy"] = "proxy"
    target: str = Field(..., min_length=1, description="proxy_pass upstream")

    @field_validator("target")
    @classmethod
    def validate_target(cls, v: str) -> str:
        v = v.strip()
        if not v or any(c in v for c in ";{}\n"):
            raise ValueError(f"Invalid proxy target: {v!r}")
        return v


class IsolatedKind(SiteKindBase):
    """Site pinned to its own PHP version. Empty version means the default runtime."""

    kind: Literal["isolated"] = "isolated"
    php_version: str = Field(default="", description="normalized MAJOR.MINOR or empty")


SiteKind = Union[PlainKind, ProxyKind, IsolatedKind]

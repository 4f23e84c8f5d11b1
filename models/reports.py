"""Results of best-effort batch operations."""

from typing import Dict, List
from pydantic import BaseModel, ConfigDict, Field


class TrustStoreFailure(BaseModel):
    """One optional trust store that could not be updated."""

    store: str = Field(..., description="Store identifier, e.g. nssdb or a Firefox profile path")
    message: str


class TrustReport(BaseModel):
    """Outcome of establishing or re-asserting the root certificate."""

    model_config = ConfigDict(validate_assignment=True)

    created: bool = Field(default=False, description="A new key/certificate pair was generated")
    installed: List[str] = Field(default_factory=list, description="Stores that received the certificate")
    unchanged: List[str] = Field(default_factory=list, description="Stores that already trusted it")
    failures: List[TrustStoreFailure] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.created or bool(self.installed)

    def is_ok(self) -> bool:
        return not self.failures


class ReSecureReport(BaseModel):
    """Per-hostname outcome of moving secured sites to a new domain."""

    old_domain: str
    new_domain: str
    secured: Dict[str, str] = Field(default_factory=dict, description="old hostname -> new hostname")
    failed: Dict[str, str] = Field(default_factory=dict, description="old hostname -> error message")
    skipped: List[str] = Field(default_factory=list, description="secured hosts outside the old domain")

    def is_ok(self) -> bool:
        return not self.failed

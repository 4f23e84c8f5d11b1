"""Data models for easyValet."""

from .config_state import ConfigState
from .site_kind import SiteKind, PlainKind, ProxyKind, IsolatedKind
from .reports import TrustReport, TrustStoreFailure, ReSecureReport
from .nginx_status import NginxStatus, NginxProcessStatus

__all__ = [
    "ConfigState",
    "SiteKind",
    "PlainKind",
    "ProxyKind",
    "IsolatedKind",
    "TrustReport",
    "TrustStoreFailure",
    "ReSecureReport",
    "NginxStatus",
    "NginxProcessStatus"
]

"""Service layer for easyValet."""

from .config_store import ConfigStore
from .site_config_registry import SiteConfigRegistry
from .stub_template_engine import StubTemplateEngine
from .certificate_authority import CertificateAuthority
from .php_runtime_manager import PhpRuntimeManager
from .site_certificate_manager import SiteCertificateManager
from .site_manager import SiteManager
from .nginx_service import NginxService
from .service_manager import ServiceManager, detect_service_manager
from .package_manager import PackageManager, detect_package_manager
from .requirements import Requirements

__all__ = [
    "ConfigStore",
    "SiteConfigRegistry",
    "StubTemplateEngine",
    "CertificateAuthority",
    "PhpRuntimeManager",
    "SiteCertificateManager",
    "SiteManager",
    "NginxService",
    "ServiceManager",
    "detect_service_manager",
    "PackageManager",
    "detect_package_manager",
    "Requirements"
]

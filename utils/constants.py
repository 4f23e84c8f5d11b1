"""Fixed values shared across services."""

APP_NAME = "easyValet"
APP_VERSION = "v1.0"

# PHP
SUPPORTED_PHP_VERSIONS = ("8.2", "8.3")
ISOLATION_SUPPORTED_PHP_VERSIONS = (
    "7.0", "7.1", "7.2", "7.3", "7.4", "8.0", "8.1", "8.2", "8.3"
)
DEFAULT_PHP_VERSION = "8.2"
COMMON_EXTENSIONS = (
    "cli", "mysql", "gd", "zip", "xml", "curl", "mbstring", "pgsql", "intl", "posix"
)
FPM_CONFIG_FILE_NAME = "valet.conf"
PHP_RC_FILE_NAME = ".valetphprc"

# Candidate PHP-FPM pool directories, probed in order.
# {version} is "8.2", {version_nodot} is "82".
FPM_CONFIG_DIR_CANDIDATES = (
    "/etc/php/{version}/fpm/pool.d",     # Debian / Ubuntu
    "/etc/php{version}/fpm/pool.d",
    "/etc/php{version}/php-fpm.d",      # Manjaro
    "/etc/php{version_nodot}/php-fpm.d",  # Arch
    "/etc/php7/fpm/php-fpm.d",          # openSUSE
    "/etc/php8/fpm/php-fpm.d",
    "/etc/php-fpm.d",                   # Fedora
    "/etc/php/php-fpm.d",
)

# Nginx
NGINX_CONF = "/etc/nginx/nginx.conf"
SITES_AVAILABLE_CONF = "/etc/nginx/sites-available/valet.conf"
SITES_ENABLED_CONF = "/etc/nginx/sites-enabled/valet.conf"
SITES_ENABLED_DEFAULT = "/etc/nginx/sites-enabled/default"
VALET_SERVER_PATH = "/usr/share/easyvalet/server.php"
VALET_STATIC_PREFIX = "/41c270e4-5535-4daa-b23e-c269744c2f45"

# Stub marker
STUB_ENGINE = "valet"
ISOLATED_VERSION_KEY = "ISOLATED_PHP_VERSION"

# Certificate authority
CA_TRUST_DIR = "/usr/local/share/ca-certificates"
CA_PEM_NAME = "ValetLinuxCASelfSigned.pem"
CA_KEY_NAME = "ValetLinuxCASelfSigned.key"
CA_SRL_NAME = "ValetLinuxCASelfSigned.srl"
CA_ORGANIZATION = "Valet Linux CA Self Signed Organization"
CA_COMMON_NAME = "Valet Linux CA Self Signed CN"
CA_DUMMY_EMAIL = "certificate@valet.linux"
CA_VALIDITY_DAYS = 20 * 365
CA_KEY_BITS = 2048
CERTIFICATE_VALIDITY_DAYS = 365
CERTIFICATE_FILE_SUFFIXES = (".key", ".csr", ".crt", ".conf")

# External commands
COMMAND_TIMEOUT = 120  # seconds
PACKAGE_INSTALL_TIMEOUT = 900

# Config document
CONFIG_SCHEMA_VERSION = 1
DEFAULT_DOMAIN = "test"
DEFAULT_HTTP_PORT = 80
DEFAULT_HTTPS_PORT = 443

"""Generated site file templates and kind recovery."""

import re
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError, UndefinedError
from loguru import logger
from pydantic import ValidationError

from models.site_kind import SiteKind, PlainKind, ProxyKind, IsolatedKind
from utils.constants import ISOLATED_VERSION_KEY, STUB_ENGINE
from utils.errors import StubParseError, StubRenderError
from utils.filesystem import Filesystem


MARKER_PATTERN = re.compile(
    r"^#\s*(?P<engine>[\w-]+) stub: (?P<tls>secure\.)?(?P<kind>[\w-]*?)\.?(?:valet\.)?conf[ \t]*$",
    re.MULTILINE
)
PROXY_PASS_PATTERN = re.compile(r"^\s*proxy_pass\s+(?P<target>[^;]+?)\s*;", re.MULTILINE)
ISOLATED_VERSION_PATTERN = re.compile(
    rf"^#\s*{ISOLATED_VERSION_KEY}=(?P<version>[^\s]*)[ \t]*$", re.MULTILINE
)

SITE_TEMPLATES = {
    ("plain", False): "site.valet.conf",
    ("plain", True): "secure.valet.conf",
    ("proxy", False): "proxy.valet.conf",
    ("proxy", True): "secure.proxy.valet.conf",
    ("isolated", False): "isolated.valet.conf",
    ("isolated", True): "secure.isolated.valet.conf",
}
SERVER_TEMPLATE = "server.valet.conf"
NGINX_TEMPLATE = "nginx.conf"
FPM_POOL_TEMPLATE = "fpm.valet.conf"
OPENSSL_TEMPLATE = "openssl.conf"


class StubTemplateEngine:
    """
    Maps between a generated site file and its SiteKind.

    Every generated file embeds a marker line such as
    `# valet stub: secure.proxy.valet.conf`; the marker, plus the
    `proxy_pass` directive or the isolated version comment, is enough to
    rebuild the file for another hostname, port or security flag.

    Templates live in `template_dir`. Missing ones are written from the
    built-in defaults on first use, so users may edit them afterwards.
    """

    def __init__(self, template_dir: Path, filesystem: Optional[Filesystem] = None):
        self.template_dir = Path(template_dir)
        self.files = filesystem or Filesystem()
        self.files.ensure_dir(self.template_dir)

        self.jinja_env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False
        )

        logger.debug(f"StubTemplateEngine initialized with template dir: {self.template_dir}")

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def parse_marker(self, contents: str) -> Optional[Tuple[bool, str]]:
        """
        Find the stub marker.

        Returns:
            (secure, kind token) or None when the file carries no marker
        """
        match = MARKER_PATTERN.search(contents or "")
        if not match:
            return None
        return bool(match.group("tls")), match.group("kind").lower()

    def is_secure(self, contents: str) -> bool:
        marker = self.parse_marker(contents)
        return bool(marker and marker[0])

    def recover_kind(self, contents: str) -> SiteKind:
        """
        Recover the kind of a generated file.

        Args:
            contents: Full text of the generated file

        Returns:
            PlainKind, ProxyKind(target) or IsolatedKind(version)

        Raises:
            StubParseError: proxy marker without a usable proxy_pass directive
        """
        marker = self.parse_marker(contents)
        if marker is None:
            return PlainKind()

        _, token = marker
        if token in ("", "site", "plain"):
            return PlainKind()

        if token == "proxy":
            match = PROXY_PASS_PATTERN.search(contents)
            if not match:
                raise StubParseError("proxy marker present but no proxy_pass directive found")
            try:
                return ProxyKind(target=match.group("target"))
            except ValidationError as e:
                raise StubParseError(f"unusable proxy_pass target: {e.errors()[0]['msg']}") from e

        if token == "isolated":
            match = ISOLATED_VERSION_PATTERN.search(contents)
            if not match or not match.group("version"):
                logger.warning(f"Isolated marker without {ISOLATED_VERSION_KEY}; using the default PHP version")
                return IsolatedKind(php_version="")
            return IsolatedKind(php_version=match.group("version"))

        logger.info(f"Unknown stub kind {token!r}, treating as plain")
        return PlainKind()

    def recover_kind_or_plain(self, contents: Optional[str]) -> SiteKind:
        """Like recover_kind, but any parse failure falls back to PlainKind."""
        if not contents:
            return PlainKind()
        try:
            return self.recover_kind(contents)
        except StubParseError as e:
            logger.warning(f"Falling back to plain site: {e}")
            return PlainKind()

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def template_name(self, kind: SiteKind, secure: bool) -> str:
        return SITE_TEMPLATES[(kind.kind, bool(secure))]

    def render(self, kind: SiteKind, secure: bool, params: Dict[str, Any]) -> str:
        """
        Render the generated file for a kind.

        Args:
            kind: Site kind; proxy target / isolated version come from here
            secure: Render the TLS variant
            params: home_path, server_path, static_prefix, site, http_port,
                https_port, fpm_socket and, when secure, cert, key, redirect_port

        Returns:
            File contents

        Raises:
            StubRenderError: a template referenced a missing parameter
        """
        context = dict(params)
        if isinstance(kind, ProxyKind):
            context["proxy_target"] = kind.target
        elif isinstance(kind, IsolatedKind):
            context["php_version"] = kind.php_version
        return self._render(self.template_name(kind, secure), context)

    def render_server(self, params: Dict[str, Any]) -> str:
        """Catch-all server block for every site without its own file."""
        return self._render(SERVER_TEMPLATE, params)

    def render_nginx_conf(self, params: Dict[str, Any]) -> str:
        return self._render(NGINX_TEMPLATE, params)

    def render_fpm_pool(self, params: Dict[str, Any]) -> str:
        return self._render(FPM_POOL_TEMPLATE, params)

    def render_openssl_ext(self, hostname: str) -> str:
        return self._render(OPENSSL_TEMPLATE, {"hostname": hostname})

    def ensure_templates(self):
        """Write every missing default template."""
        for name in DEFAULT_TEMPLATES:
            if not self.files.exists(self.template_dir / name):
                self._create_default_template(name)

    def _render(self, template_name: str, context: Dict[str, Any]) -> str:
        template_path = self.template_dir / template_name
        if not self.files.exists(template_path):
            self._create_default_template(template_name)

        try:
            template = self.jinja_env.get_template(template_name)
            return template.render(**context)
        except UndefinedError as e:
            raise StubRenderError(f"missing template parameter: {e.message}", subject=template_name) from e
        except TemplateError as e:
            raise StubRenderError(f"template error: {e}", subject=template_name) from e

    def _create_default_template(self, template_name: str):
        """
        Write a built-in template into the template directory.

        Args:
            template_name: File name, one of DEFAULT_TEMPLATES
        """
        if template_name not in DEFAULT_TEMPLATES:
            raise StubRenderError("unknown template", subject=template_name)
        logger.warning(f"Template {template_name} not found, creating default...")
        self.files.write_text(self.template_dir / template_name, DEFAULT_TEMPLATES[template_name])
        logger.info(f"Created default template: {template_name}")


_PHP_LOCATION = r'''
    location ~ [^/]\.php(/|$) {
        fastcgi_split_path_info ^(.+\.php)(/.+)$;
        fastcgi_pass unix:{{ fpm_socket }};
        fastcgi_index "{{ server_path }}";
        include fastcgi_params;
        fastcgi_param SCRIPT_FILENAME "{{ server_path }}";
        fastcgi_param PATH_INFO $fastcgi_path_info;
    }
'''

_SITE_BODY = r'''    root /;
    charset utf-8;
    client_max_body_size 512M;

    location {{ static_prefix }}/ {
        internal;
        alias /;
        try_files $uri $uri/;
    }

    location / {
        rewrite ^ "{{ server_path }}" last;
    }

    location = /favicon.ico { access_log off; log_not_found off; }
    location = /robots.txt  { access_log off; log_not_found off; }

    access_log off;
    error_log "{{ home_path }}/Log/nginx-error.log";

    error_page 404 "{{ server_path }}";
''' + _PHP_LOCATION + r'''
    location ~ /\.ht {
        deny all;
    }
'''

_PROXY_BODY = r'''    charset utf-8;
    client_max_body_size 128M;

    location / {
        proxy_pass {{ proxy_target }};
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
        proxy_set_header X-Client-Verify SUCCESS;
        proxy_http_version 1.1;
        proxy_set_header Upgrade $http_upgrade;
        proxy_set_header Connection "upgrade";
        proxy_read_timeout 600;
        proxy_buffer_size 64k;
        proxy_buffers 8 64k;
        proxy_busy_buffers_size 128k;
    }

    access_log off;
    error_log "{{ home_path }}/Log/nginx-error.log";
'''

_TLS = r'''
    ssl_certificate "{{ cert }}";
    ssl_certificate_key "{{ key }}";
    ssl_protocols TLSv1.2 TLSv1.3;
    ssl_session_cache shared:SSL:10m;
    ssl_session_timeout 10m;
'''


def _redirect_block() -> str:
    return r'''server {
    listen 127.0.0.1:{{ http_port }};
    server_name {{ site }} www.{{ site }} *.{{ site }};
    return 301 https://$host{{ redirect_port }}$request_uri;
}

'''


def _site(marker: str, body: str, secure: bool, header: str = "") -> str:
    text = header + f"# {STUB_ENGINE} stub: {marker}\n"
    if secure:
        text += _redirect_block()
        text += "server {\n    listen 127.0.0.1:{{ https_port }} ssl http2;\n"
    else:
        text += "server {\n    listen 127.0.0.1:{{ http_port }};\n"
    text += "    server_name {{ site }} www.{{ site }} *.{{ site }};\n"
    text += body
    if secure:
        text += _TLS
    text += "}\n"
    return text


_ISOLATED_HEADER = f"# {ISOLATED_VERSION_KEY}={{{{ php_version }}}}\n"

DEFAULT_TEMPLATES = {
    "site.valet.conf": _site("valet.conf", _SITE_BODY, secure=False),
    "secure.valet.conf": _site("secure.valet.conf", _SITE_BODY, secure=True),
    "proxy.valet.conf": _site("proxy.valet.conf", _PROXY_BODY, secure=False),
    "secure.proxy.valet.conf": _site("secure.proxy.valet.conf", _PROXY_BODY, secure=True),
    "isolated.valet.conf": _site("isolated.valet.conf", _SITE_BODY, secure=False,
                                 header=_ISOLATED_HEADER),
    "secure.isolated.valet.conf": _site("secure.isolated.valet.conf", _SITE_BODY, secure=True,
                                        header=_ISOLATED_HEADER),

    SERVER_TEMPLATE: r'''server {
    listen {{ http_port }} default_server;
    root /;
    charset utf-8;
    client_max_body_size 128M;

    location {{ static_prefix }}/ {
        internal;
        alias /;
        try_files $uri $uri/;
    }

    location / {
        rewrite ^ "{{ server_path }}" last;
    }

    access_log off;
    error_log "{{ home_path }}/Log/nginx-error.log";

    error_page 404 "{{ server_path }}";
''' + _PHP_LOCATION + r'''}
''',

    NGINX_TEMPLATE: r'''user "{{ user }}" "{{ group }}";
worker_processes auto;
pid /run/nginx.pid;
include /etc/nginx/modules-enabled/*.conf;

events {
    worker_connections 768;
}

http {
    sendfile on;
    tcp_nopush on;
    types_hash_max_size 2048;
    server_names_hash_bucket_size 128;

    include /etc/nginx/mime.types;
    default_type application/octet-stream;

    ssl_prefer_server_ciphers on;

    access_log /var/log/nginx/access.log;
    error_log /var/log/nginx/error.log;

    gzip on;
    gzip_comp_level 5;
    gzip_min_length 256;
    gzip_proxied any;
    gzip_vary on;
    gzip_types application/javascript application/json application/xml image/svg+xml text/css text/plain;

    include /etc/nginx/conf.d/*.conf;
    include /etc/nginx/sites-enabled/*;
    include "{{ home_path }}/Nginx/*";
}
''',

    FPM_POOL_TEMPLATE: r'''; valet stub: fpm.valet.conf
[valet{{ version_digits }}]
user = {{ user }}
group = {{ group }}

listen = {{ fpm_socket }}
listen.owner = {{ user }}
listen.group = {{ group }}
listen.mode = 0666

pm = dynamic
pm.max_children = 5
pm.start_servers = 2
pm.min_spare_servers = 1
pm.max_spare_servers = 3
''',

    OPENSSL_TEMPLATE: r'''[dn]
CN={{ hostname }}
[req]
distinguished_name = dn
[EXT]
subjectAltName=DNS:{{ hostname }}
keyUsage=digitalSignature
extendedKeyUsage=serverAuth
[x509_ext]
subjectAltName=DNS:{{ hostname }}
''',
}

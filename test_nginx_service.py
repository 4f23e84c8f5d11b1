#!/usr/bin/env python3
"""Nginx configuration install, catch-all server block and status."""

import pytest

from models.nginx_status import ConfigTestStatus, NginxProcessInfo, NginxStatus
from models.site_kind import IsolatedKind, ProxyKind
from utils.errors import ProcessError


def nginx_file(env, *parts):
    return env.etc.joinpath("nginx", *parts)


def test_install(env):
    conf = nginx_file(env, "nginx.conf")
    conf.parent.mkdir(parents=True)
    conf.write_text("# distribution nginx.conf\n")
    default = nginx_file(env, "sites-enabled", "default")
    default.parent.mkdir(parents=True)
    default.write_text("server {}\n")

    env.nginx.install("valet82.sock")

    assert "nginx" in env.packages.packages
    assert "nginx" in env.services.enabled
    assert nginx_file(env, "nginx.conf.bak").read_text() == "# distribution nginx.conf\n"
    assert f'include "{env.paths.home}/Nginx/*";' in conf.read_text()
    assert not default.exists()
    assert (env.paths.nginx_path() / ".keep").is_file()


def test_install_server_points_at_default_socket(env):
    env.nginx.install_server("valet83.sock")

    available = nginx_file(env, "sites-available", "valet.conf")
    enabled = nginx_file(env, "sites-enabled", "valet.conf")
    assert f"fastcgi_pass unix:{env.paths.home / 'valet83.sock'};" in available.read_text()
    assert enabled.is_symlink()
    assert enabled.resolve() == available.resolve()


def test_install_disables_apache(env):
    env.packages.packages.add("apache2")
    env.services.enabled.add("apache2")

    env.nginx.install("valet82.sock")

    assert "apache2" not in env.services.enabled
    assert ("stop", "apache2") in env.services.actions


def test_restart_refuses_broken_configuration(env):
    env.cli.failing["nginx"] = "nginx: [emerg] unexpected end of file"

    ok, message = env.nginx.test_config()
    assert ok is False
    assert "unexpected end of file" in message
    with pytest.raises(ProcessError):
        env.nginx.restart()
    assert ("restart", "nginx") not in env.services.actions


def test_restart(env):
    env.nginx.restart()
    assert env.cli.ran("nginx", "-t")
    assert env.services.actions == [("restart", "nginx")]


def test_status_counts_sites_by_kind(env, monkeypatch):
    monkeypatch.setattr(env.nginx, "get_process_info", lambda: None)
    env.certificates.secure("blog.test")
    env.registry.write("api.test", env.certificates.render_site(
        "api.test", ProxyKind(target="http://127.0.0.1:3000"), secure=False))
    env.registry.write("legacy.test", env.certificates.render_site(
        "legacy.test", IsolatedKind(php_version="7.4"), secure=False))

    status = env.nginx.status(secured_sites=1, test_config=True)

    assert not status.is_running()
    assert status.total_sites == 3
    assert status.secured_sites == 1
    assert status.sites_by_kind == {"plain": 1, "proxy": 1, "isolated": 1}
    assert status.config_test_status == ConfigTestStatus.SUCCESS


def test_uptime_display():
    status = NginxStatus(process_info=NginxProcessInfo(pid=1, uptime_seconds=90061))
    assert status.get_uptime_display() == "1d 1h"
    assert NginxStatus().get_uptime_display() == "-"

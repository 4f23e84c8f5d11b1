#!/usr/bin/env python3
"""PHP version normalization, socket rewiring and runtime lifecycle."""

import pytest

from models.site_kind import IsolatedKind, PlainKind, ProxyKind
from services.php_runtime_manager import normalize, socket_name
from utils.errors import EnvironmentNotSupportedError, ValetValidationError


@pytest.mark.parametrize("raw", ["8.2", "82", "php8.2", "php-8.2", "php@8.2", "PHP8.2", " 8.2 "])
def test_normalize_accepts_common_spellings(raw):
    assert normalize(raw) == "8.2"


@pytest.mark.parametrize("raw", ["", None, "9.9", "8", "8.2.1", "latest", "php"])
def test_normalize_rejects_everything_else(raw):
    assert normalize(raw) == ""


def test_socket_name():
    assert socket_name("8.2") == "valet82.sock"
    assert socket_name("7.4") == "valet74.sock"


def write_site(env, hostname, kind, secure=False):
    env.registry.write(hostname, env.certificates.render_site(hostname, kind, secure=secure))


def test_utilized_versions_always_includes_current(env):
    assert env.php.utilized_versions() == ["8.2"]


def test_utilized_versions_skips_isolated_sites(env):
    write_site(env, "blog.test", PlainKind())
    write_site(env, "legacy.test", IsolatedKind(php_version="7.4"))

    assert env.php.utilized_versions() == ["8.2"]
    assert env.php.isolated_versions() == {"7.4"}


def test_validate_isolation_version(env):
    assert env.php.validate_isolation_version("php7.4") == "7.4"
    with pytest.raises(ValetValidationError):
        env.php.validate_isolation_version("5.6")


def test_fpm_config_path_requires_known_directory(env):
    with pytest.raises(EnvironmentNotSupportedError):
        env.php.fpm_config_path("8.3")
    env.add_fpm_dir("8.3")
    assert env.php.fpm_config_path("8.3") == env.etc / "php" / "8.3" / "fpm" / "pool.d"


def test_install_restarts_only_on_change(env):
    env.add_fpm_dir("8.2")

    assert env.php.install("8.2") is True
    assert "php8.2-fpm" in env.packages.packages
    assert "php8.2-mbstring" in env.packages.packages
    assert ("restart", "php8.2-fpm") in env.services.actions

    pool = (env.etc / "php" / "8.2" / "fpm" / "pool.d" / "valet.conf").read_text()
    assert f"listen = {env.paths.home / 'valet82.sock'}" in pool
    assert "[valet82]" in pool

    env.services.actions.clear()
    assert env.php.install("8.2") is False
    assert env.services.actions == []


def test_install_rejects_unknown_version(env):
    with pytest.raises(ValetValidationError):
        env.php.install("5.6")


def test_switch_version_rewires_shared_sites_only(env):
    env.add_fpm_dir("8.2", "8.3", "7.4")
    write_site(env, "blog.test", PlainKind())
    write_site(env, "shop.test", PlainKind(), secure=True)
    write_site(env, "legacy.test", IsolatedKind(php_version="7.4"))
    write_site(env, "api.test", ProxyKind(target="http://127.0.0.1:3000"))

    rewritten = env.php.switch_version("php8.3")

    assert sorted(rewritten) == ["blog.test", "shop.test"]
    assert env.config.load().php_version == "8.3"
    assert "valet83.sock" in env.registry.read("blog.test")
    assert "valet82.sock" not in env.registry.read("shop.test")
    assert "valet74.sock" in env.registry.read("legacy.test")
    assert env.engine.is_secure(env.registry.read("shop.test"))

    # 8.2 lost its last user and is stopped; nginx now defaults to 8.3
    assert ("stop", "php8.2-fpm") in env.services.actions
    assert ("restart", "nginx") in env.services.actions
    server = (env.etc / "nginx" / "sites-available" / "valet.conf").read_text()
    assert "valet83.sock" in server


def test_switch_version_keeps_runtime_pinned_by_isolated_site(env):
    env.add_fpm_dir("8.2", "8.3")
    write_site(env, "legacy.test", IsolatedKind(php_version="8.2"))

    env.php.switch_version("8.3")

    assert ("stop", "php8.2-fpm") not in env.services.actions
    assert "valet82.sock" in env.registry.read("legacy.test")


def test_switch_version_rejects_isolation_only_version(env):
    with pytest.raises(ValetValidationError):
        env.php.switch_version("7.4")


def test_switch_version_updates_system_default(env):
    env.add_fpm_dir("8.3")
    env.php.switch_version("8.3", update_system_default=True)
    assert env.cli.ran("update-alternatives", "--set", "php", "/usr/bin/php8.3")


def test_stop_if_unused(env):
    write_site(env, "legacy.test", IsolatedKind(php_version="7.4"))

    assert env.php.stop_if_unused("8.2") is False
    assert env.php.stop_if_unused("7.4") is False
    assert env.php.stop_if_unused("8.1") is True
    assert env.services.actions == [("stop", "php8.1-fpm")]


def test_uninstall_without_pool_is_noop(env):
    env.add_fpm_dir("8.2")
    assert env.php.uninstall("8.2") is False

    env.php.install_configuration("8.2")
    assert env.php.uninstall("8.2") is True
    assert ("stop", "php8.2-fpm") in env.services.actions


def test_update_home_path_rewrites_pools(env):
    env.add_fpm_dir("8.2")
    env.php.install_configuration("8.2")
    old_home = str(env.paths.home)

    updated = env.php.update_home_path(old_home, "/srv/valet")

    assert len(updated) == 1
    assert "listen = /srv/valet/valet82.sock" in updated[0].read_text()

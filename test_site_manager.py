#!/usr/bin/env python3
"""Proxies, isolation and served-site discovery."""

import pytest

from models.site_kind import IsolatedKind, PlainKind, ProxyKind
from utils.errors import ValetValidationError


def test_proxy_adds_scheme_and_domain(env):
    hostname = env.sites.proxy("api", "localhost:3000")

    assert hostname == "api.test"
    kind = env.engine.recover_kind(env.registry.read("api.test"))
    assert kind == ProxyKind(target="http://localhost:3000")
    assert env.sites.proxies() == {"api.test": "http://localhost:3000"}
    assert not env.certificates.has_certificate("api.test")


def test_secure_proxy(env):
    env.sites.proxy("api.test", "https://127.0.0.1:8443", secure=True)

    contents = env.registry.read("api.test")
    assert env.engine.is_secure(contents)
    assert env.engine.recover_kind(contents) == ProxyKind(target="https://127.0.0.1:8443")
    assert env.certificates.has_certificate("api.test")


def test_reproxy_secured_site_replaces_certificate_state(env):
    env.sites.proxy("api", "localhost:3000", secure=True)
    env.sites.proxy("api", "localhost:4000")

    assert env.sites.proxies() == {"api.test": "http://localhost:4000"}
    assert not env.certificates.has_certificate("api.test")
    assert not env.engine.is_secure(env.registry.read("api.test"))


def test_unproxy(env):
    env.sites.proxy("api", "localhost:3000", secure=True)
    env.sites.unproxy("api")

    assert env.registry.read("api.test") is None
    assert env.certificate_files("api.test") == []


def test_unproxy_rejects_other_kinds(env):
    env.certificates.secure("blog.test")
    with pytest.raises(ValetValidationError):
        env.sites.unproxy("blog")


def test_proxy_rejects_unsafe_target(env):
    with pytest.raises(ValetValidationError):
        env.sites.proxy("api", "localhost:3000; }")
    assert env.registry.read("api.test") is None


def test_isolate_installs_runtime_and_pins_site(env):
    env.add_fpm_dir("7.4")

    hostname = env.sites.isolate("legacy", "php7.4")

    assert hostname == "legacy.test"
    assert "php7.4-fpm" in env.packages.packages
    contents = env.registry.read("legacy.test")
    assert env.engine.recover_kind(contents) == IsolatedKind(php_version="7.4")
    assert "valet74.sock" in contents
    assert env.sites.isolated_sites() == {"legacy.test": "7.4"}


def test_isolate_secured_site_stays_secure(env):
    env.add_fpm_dir("7.4")
    env.certificates.secure("legacy.test")

    env.sites.isolate("legacy", "7.4")

    contents = env.registry.read("legacy.test")
    assert env.engine.is_secure(contents)
    assert env.engine.recover_kind(contents) == IsolatedKind(php_version="7.4")


def test_isolate_rejects_unknown_version(env):
    with pytest.raises(ValetValidationError):
        env.sites.isolate("legacy", "5.6")


def test_unisolate_removes_file_and_stops_unused_runtime(env):
    env.add_fpm_dir("7.4")
    env.sites.isolate("legacy", "7.4")
    env.services.actions.clear()

    env.sites.unisolate("legacy")

    assert env.registry.read("legacy.test") is None
    assert ("stop", "php7.4-fpm") in env.services.actions
    assert env.sites.isolated_sites() == {}


def test_unisolate_secured_site_becomes_secure_plain(env):
    env.add_fpm_dir("7.4")
    env.sites.isolate("legacy", "7.4")
    env.certificates.secure("legacy.test")

    env.sites.unisolate("legacy")

    contents = env.registry.read("legacy.test")
    assert env.engine.is_secure(contents)
    assert env.engine.recover_kind(contents) == PlainKind()
    assert "valet82.sock" in contents


def test_served_sites_from_parked_paths_and_links(env, tmp_path):
    parked = tmp_path / "code"
    (parked / "blog").mkdir(parents=True)
    (parked / "notes.txt").write_text("")
    linked = tmp_path / "elsewhere" / "shop"
    linked.mkdir(parents=True)

    env.config.add_path(str(parked))
    env.sites.link(str(linked), "store")

    assert env.sites.served_sites() == {"blog": str(parked / "blog"), "store": str(linked.resolve())}
    assert env.sites.get_site_url("blog") == "blog.test"
    assert env.sites.get_site_url("store.test") == "store.test"
    with pytest.raises(ValetValidationError):
        env.sites.get_site_url("missing")


def test_php_rc_version(env, tmp_path):
    parked = tmp_path / "code"
    (parked / "blog").mkdir(parents=True)
    (parked / "blog" / ".valetphprc").write_text("php@7.4\n")
    (parked / "shop").mkdir()
    env.config.add_path(str(parked))

    assert env.sites.php_rc_version("blog") == "7.4"
    assert env.sites.php_rc_version("shop") is None
    assert env.sites.php_rc_version("missing") is None


def test_prune_links(env, tmp_path):
    target = tmp_path / "gone"
    target.mkdir()
    env.sites.link(str(target), "gone")
    target.rmdir()

    env.sites.prune_links()

    assert not env.paths.sites_path("gone").is_symlink()

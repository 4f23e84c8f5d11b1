#!/usr/bin/env python3
"""Configuration document loading, validation and updates."""

import json

import pytest

from models.config_state import ConfigState
from services.config_store import ConfigStore
from utils.errors import ConfigValidationError
from utils.filesystem import Filesystem
from utils.paths import ValetPaths


@pytest.fixture
def store(tmp_path):
    return ConfigStore(ValetPaths(home=tmp_path / "valet"), Filesystem())


def test_missing_file_loads_defaults(store):
    state = store.load()
    assert state == ConfigState()
    assert state.domain == "test"
    assert state.http_port == 80


def test_install_writes_base_document(store):
    store.install()

    document = json.loads(store.path.read_text())
    assert document["domain"] == "test"
    assert document["port"] == "80"
    assert document["paths"] == []
    assert "php_version" not in document
    assert (store.paths.log_dir / "nginx-error.log").is_file()
    assert store.paths.certificates_path().is_dir()


def test_install_keeps_existing_document(store):
    store.install()
    store.update(domain="dev")
    store.install()
    assert store.load().domain == "dev"


def test_legacy_string_port_is_accepted(store):
    store.paths.home.mkdir(parents=True)
    store.path.write_text(json.dumps({"domain": "test", "paths": [], "port": "8080"}))
    assert store.load().http_port == 8080
    assert store.get("port") == 8080
    assert store.get("http_port") == 8080


def test_invalid_json(store):
    store.paths.home.mkdir(parents=True)
    store.path.write_text("{not json")
    with pytest.raises(ConfigValidationError):
        store.load()


def test_unknown_key_is_named(store):
    store.paths.home.mkdir(parents=True)
    store.path.write_text(json.dumps({"domain": "test", "tld": "dev"}))
    with pytest.raises(ConfigValidationError) as excinfo:
        store.load()
    assert excinfo.value.key == "tld"


def test_invalid_port_is_named(store):
    store.paths.home.mkdir(parents=True)
    store.path.write_text(json.dumps({"port": "eighty"}))
    with pytest.raises(ConfigValidationError) as excinfo:
        store.load()
    assert excinfo.value.key == "port"


def test_newer_schema_is_rejected(store):
    store.paths.home.mkdir(parents=True)
    store.path.write_text(json.dumps({"schema_version": 99}))
    with pytest.raises(ConfigValidationError):
        store.load()


def test_update_validates_before_writing(store):
    store.install()
    with pytest.raises(ConfigValidationError):
        store.update(https_port=70000)
    with pytest.raises(ConfigValidationError):
        store.update(colour="blue")
    assert store.load().https_port == 443


def test_update_normalizes_domain(store):
    assert store.update(domain=" .DEV. ").domain == "dev"
    assert json.loads(store.path.read_text())["domain"] == "dev"


def test_add_path_moves_instead_of_duplicating(store):
    store.add_path("/srv/a")
    store.add_path("/srv/b")
    store.add_path("/srv/a", prepend=True)
    assert store.load().paths == ["/srv/a", "/srv/b"]

    store.add_path("/srv/a")
    assert store.load().paths == ["/srv/b", "/srv/a"]

    store.remove_path("/srv/b")
    assert store.load().paths == ["/srv/a"]


def test_prune_drops_missing_directories(store, tmp_path):
    kept = tmp_path / "kept"
    kept.mkdir()
    store.add_path(str(kept))
    store.add_path(str(tmp_path / "removed"))

    assert store.prune().paths == [str(kept)]


def test_parse_domain(store):
    assert store.parse_domain("blog") == "blog.test"
    assert store.parse_domain("Blog.Test") == "blog.test"
    assert store.parse_domain("shop.test.") == "shop.test"

#!/usr/bin/env python3
"""Root CA creation, trust-store installation and serial numbers."""

import pytest

from services.certificate_authority import NSS_STORE, OS_STORE
from utils.errors import ProcessError


def test_ensure_creates_and_trusts(env):
    report = env.ca.ensure()

    assert report.created is True
    assert report.installed == [OS_STORE]
    assert report.is_ok()
    assert env.ca.key_path.is_file()
    assert env.ca.pem_path.is_file()
    assert env.ca.trusted_copy_path.read_bytes() == env.ca.pem_path.read_bytes()
    assert len(env.cli.ran("update-ca-certificates")) == 1
    assert int(env.ca.serial_path.read_text().strip(), 16) > 0


def test_ensure_is_idempotent(env):
    (env.user_home / ".pki" / "nssdb").mkdir(parents=True)
    first = env.ca.ensure()
    commands = len(env.cli.commands)

    second = env.ca.ensure()

    assert first.installed == [OS_STORE, NSS_STORE]
    assert second.created is False
    assert second.installed == []
    assert second.unchanged == [OS_STORE, NSS_STORE]
    assert not second.changed
    new_commands = env.cli.commands[commands:]
    assert not [c for c in new_commands if c[0] in ("openssl", "update-ca-certificates")]
    assert not [c for c in new_commands if c[0] == "certutil" and "-A" in c]


def test_missing_nss_database_is_skipped(env):
    report = env.ca.ensure()
    assert NSS_STORE not in report.installed
    assert env.cli.ran("certutil") == []


def test_firefox_profiles_are_trusted(env):
    profile = env.user_home / ".mozilla" / "firefox" / "abcd.default-release"
    profile.mkdir(parents=True)
    (profile / "cert9.db").write_text("")

    report = env.ca.ensure()

    assert str(profile) in report.installed
    assert f"sql:{profile}" in env.cli.nss_trusted


def test_nss_failure_is_collected_not_raised(env):
    (env.user_home / ".pki" / "nssdb").mkdir(parents=True)
    env.cli.failing["certutil"] = "certutil: command not found"

    report = env.ca.ensure()

    assert not report.is_ok()
    assert report.failures[0].store == NSS_STORE
    assert "certutil" in report.failures[0].message
    assert OS_STORE in report.installed


def test_os_store_failure_is_fatal(env):
    env.cli.failing["update-ca-certificates"] = "read-only file system"
    with pytest.raises(ProcessError):
        env.ca.ensure()


def test_os_refresh_is_retried_after_failure(env):
    env.cli.failing["update-ca-certificates"] = "timed out"
    with pytest.raises(ProcessError):
        env.ca.ensure()
    assert not env.ca.trusted_copy_path.exists()
    assert env.ca.exists()

    del env.cli.failing["update-ca-certificates"]
    refreshes = len(env.cli.ran("update-ca-certificates"))
    report = env.ca.ensure()

    assert report.created is False
    assert OS_STORE in report.installed
    assert len(env.cli.ran("update-ca-certificates")) == refreshes + 1
    assert env.ca.trusted_copy_path.read_bytes() == env.ca.pem_path.read_bytes()


def test_failed_generation_leaves_nothing_behind(env):
    env.cli.failing["openssl"] = "unable to write key"
    with pytest.raises(ProcessError):
        env.ca.ensure()
    assert not env.ca.key_path.exists()
    assert not env.ca.pem_path.exists()


def test_half_pair_is_regenerated(env):
    env.ca.ensure()
    env.ca.pem_path.unlink()

    report = env.ca.ensure()

    assert report.created is True
    assert env.ca.pem_path.is_file()


def test_next_serial_increments(env):
    env.ca.ensure()
    first = env.ca.next_serial()
    second = env.ca.next_serial()
    assert second == first + 1
    assert env.ca.serial_path.read_text().strip() == f"{second:X}"


def test_next_serial_recovers_from_garbage(env):
    env.paths.ca_path().mkdir(parents=True, exist_ok=True)
    env.ca.serial_path.write_text("not-hex\n")
    assert env.ca.next_serial() > 0


def test_revoke_keeps_key_and_certificate(env):
    env.ca.ensure()
    env.ca.revoke()

    assert not env.ca.trusted_copy_path.exists()
    assert env.ca.exists()
    assert env.cli.ran("update-ca-certificates", "--fresh")

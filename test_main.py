#!/usr/bin/env python3
"""Command line parsing and error reporting of the entry point."""

import pytest
from loguru import logger

import main
from utils.errors import ValetValidationError


@pytest.fixture(autouse=True)
def detach_log_sinks():
    """main() binds sinks to the captured stderr; drop them before it closes."""
    yield
    logger.remove()


def test_parser_subcommands():
    parser = main.build_parser()

    args = parser.parse_args(["use", "8.3", "--update-cli"])
    assert args.handler is main.cmd_use
    assert args.version == "8.3"
    assert args.update_cli is True

    args = parser.parse_args(["proxy", "api", "localhost:3000", "--secure"])
    assert (args.name, args.target, args.secure) == ("api", "localhost:3000", True)

    args = parser.parse_args(["port", "8443", "--https"])
    assert args.port == 8443 and args.https is True


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        main.build_parser().parse_args([])


def test_valet_error_exits_with_status_one(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("VALET_HOME", str(tmp_path / "valet"))

    def failing_valet(*args, **kwargs):
        raise ValetValidationError("Invalid hostname", subject="bad host")

    monkeypatch.setattr(main, "Valet", failing_valet)

    assert main.main(["secure", "bad host"]) == 1
    assert "Invalid hostname" in capsys.readouterr().err


def test_handler_receives_services(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("VALET_HOME", str(tmp_path / "valet"))
    seen = {}

    class StubValet:
        def __init__(self, paths, timeout, ignore_selinux):
            seen["home"] = paths.home
            seen["timeout"] = timeout

    monkeypatch.setattr(main, "Valet", StubValet)
    monkeypatch.setattr(main, "cmd_secured", lambda valet, args: print("blog.test"))

    assert main.main(["--timeout", "30", "secured"]) == 0
    assert seen == {"home": tmp_path / "valet", "timeout": 30}


def test_logging_after_main_does_not_hit_closed_stream(capsys):
    # runs after the main() calls above, whose stderr capture is closed by now
    logger.info("still logging")
    assert "Logging error" not in capsys.readouterr().err

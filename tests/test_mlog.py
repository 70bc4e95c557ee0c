import json
import logging

import pytest

from mosdns.mlog import LogConfig, logger, new_logger, nop, set_level


def _close(lg):
    for handler in lg.handlers:
        handler.close()


def test_invalid_level_raises():
    with pytest.raises(ValueError, match="invalid log level"):
        new_logger(LogConfig(level="verbose"))


def test_empty_level_means_info():
    lg = new_logger(LogConfig())
    try:
        assert lg.isEnabledFor(logging.INFO)
        assert not lg.isEnabledFor(logging.DEBUG)
    finally:
        _close(lg)


def test_warn_level():
    lg = new_logger(LogConfig(level="warn"))
    try:
        assert lg.isEnabledFor(logging.WARNING)
        assert not lg.isEnabledFor(logging.INFO)
    finally:
        _close(lg)


def test_file_output_console(tmp_path):
    path = tmp_path / "out.log"
    lg = new_logger(LogConfig(level="info", file=str(path)))
    try:
        lg.debug("hidden")
        lg.info("hello")
    finally:
        _close(lg)
    text = path.read_text()
    assert "hello" in text
    assert "hidden" not in text
    assert "INFO" in text


def test_file_output_appends(tmp_path):
    path = tmp_path / "out.log"
    path.write_text("existing\n")
    lg = new_logger(LogConfig(level="info", file=str(path)))
    try:
        lg.info("hello")
    finally:
        _close(lg)
    lines = path.read_text().splitlines()
    assert lines[0] == "existing"
    assert "hello" in lines[1]


def test_production_json(tmp_path):
    path = tmp_path / "out.json"
    lg = new_logger(LogConfig(level="debug", file=str(path), production=True))
    try:
        lg.info("hello", extra={"tag": "fwd"})
    finally:
        _close(lg)
    entry = json.loads(path.read_text().splitlines()[0])
    assert entry["msg"] == "hello"
    assert entry["level"] == "info"
    assert entry["tag"] == "fwd"
    assert entry["logger"] == lg.name


def test_new_loggers_are_distinct():
    a = new_logger(LogConfig())
    b = new_logger(LogConfig())
    try:
        assert a is not b
        assert a.name != b.name
    finally:
        _close(a)
        _close(b)


def test_nop_never_enabled():
    assert not nop().isEnabledFor(logging.CRITICAL)
    assert not nop().getChild("plugin").isEnabledFor(logging.CRITICAL)


def test_set_level_changes_global_logger():
    try:
        set_level("debug")
        assert logger().isEnabledFor(logging.DEBUG)
        set_level("error")
        assert not logger().isEnabledFor(logging.WARNING)
    finally:
        set_level("info")
    assert logger().isEnabledFor(logging.INFO)


def test_set_level_rejects_unknown():
    with pytest.raises(ValueError):
        set_level("loud")
import logging

import pytest

from sanding_monitor.internal_core.config import configure_logging, load_config

_ENV_NAMES = (
    "SANDING_MACHINE_ID",
    "SANDING_PART_ID",
    "SANDING_POLL_INTERVAL_SECONDS",
    "SANDING_POLL_MAX_SECONDS",
    "SANDING_SUBSCRIBER_POLICY",
    "SANDING_NOTES_PAGE_SIZE",
    "SANDING_LOG_LEVEL",
)


def _clear_env(monkeypatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_load_config_defaults(monkeypatch) -> None:
    _clear_env(monkeypatch)
    cfg = load_config()
    assert cfg.SANDING_MACHINE_ID == ""
    assert cfg.SANDING_POLL_INTERVAL_SECONDS == 5.0
    assert cfg.SANDING_POLL_MAX_SECONDS == 60.0
    assert cfg.SANDING_SUBSCRIBER_POLICY == "last_wins"
    assert cfg.SANDING_VIDEO_BUFFER_SECONDS == 10.0
    assert cfg.SANDING_FETCH_TIMEOUT_SECONDS == 30.0
    assert cfg.SANDING_NOTES_PAGE_SIZE == 100
    assert cfg.SANDING_NOTES_CREATED_BY == "web-app"
    assert cfg.SANDING_NOTES_COMPONENT_NAME == "sanding-notes"


def test_load_config_reads_environment(monkeypatch) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("SANDING_MACHINE_ID", "machine-7")
    monkeypatch.setenv("SANDING_POLL_INTERVAL_SECONDS", "0.5")
    monkeypatch.setenv("SANDING_NOTES_PAGE_SIZE", "25")
    monkeypatch.setenv("SANDING_SUBSCRIBER_POLICY", " FanOut ")
    cfg = load_config()
    assert cfg.SANDING_MACHINE_ID == "machine-7"
    assert cfg.SANDING_POLL_INTERVAL_SECONDS == 0.5
    assert cfg.SANDING_NOTES_PAGE_SIZE == 25
    assert cfg.SANDING_SUBSCRIBER_POLICY == "fanout"


def test_load_config_rejects_unknown_policy(monkeypatch) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("SANDING_SUBSCRIBER_POLICY", "broadcast")
    with pytest.raises(ValueError):
        load_config()


def test_configure_logging_falls_back_to_info(monkeypatch) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("SANDING_LOG_LEVEL", "chatty")
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
    configure_logging(load_config())
    assert calls[0]["level"] == logging.INFO

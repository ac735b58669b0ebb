from __future__ import annotations

import logging
import os
from dataclasses import dataclass


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _getenv_choice(name: str, default: str, choices: set[str]) -> str:
    value = _getenv_str(name, default).strip().lower()
    if value not in choices:
        raise ValueError(f"{name} must be one of {sorted(choices)}, got {value!r}")
    return value


@dataclass(frozen=True)
class MonitorConfig:
    SANDING_MACHINE_ID: str
    SANDING_PART_ID: str
    SANDING_POLL_INTERVAL_SECONDS: float
    SANDING_POLL_MAX_SECONDS: float
    SANDING_SUBSCRIBER_POLICY: str
    SANDING_VIDEO_BUFFER_SECONDS: float
    SANDING_FETCH_TIMEOUT_SECONDS: float
    SANDING_FETCH_WINDOW_SECONDS: float
    SANDING_NOTES_PAGE_SIZE: int
    SANDING_NOTES_CREATED_BY: str
    SANDING_NOTES_COMPONENT_NAME: str
    SANDING_NOTES_COMPONENT_TYPE: str
    SANDING_VIDEO_COMPONENT_NAME: str
    SANDING_VIDEO_DELAY_SECONDS: float
    SANDING_LOG_LEVEL: str


def load_config() -> MonitorConfig:
    return MonitorConfig(
        SANDING_MACHINE_ID=_getenv_str("SANDING_MACHINE_ID", ""),
        SANDING_PART_ID=_getenv_str("SANDING_PART_ID", ""),
        SANDING_POLL_INTERVAL_SECONDS=_getenv_float("SANDING_POLL_INTERVAL_SECONDS", 5.0),
        SANDING_POLL_MAX_SECONDS=_getenv_float("SANDING_POLL_MAX_SECONDS", 60.0),
        SANDING_SUBSCRIBER_POLICY=_getenv_choice(
            "SANDING_SUBSCRIBER_POLICY", "last_wins", {"last_wins", "fanout"}
        ),
        SANDING_VIDEO_BUFFER_SECONDS=_getenv_float("SANDING_VIDEO_BUFFER_SECONDS", 10.0),
        SANDING_FETCH_TIMEOUT_SECONDS=_getenv_float("SANDING_FETCH_TIMEOUT_SECONDS", 30.0),
        SANDING_FETCH_WINDOW_SECONDS=_getenv_float("SANDING_FETCH_WINDOW_SECONDS", 300.0),
        SANDING_NOTES_PAGE_SIZE=_getenv_int("SANDING_NOTES_PAGE_SIZE", 100),
        SANDING_NOTES_CREATED_BY=_getenv_str("SANDING_NOTES_CREATED_BY", "web-app"),
        SANDING_NOTES_COMPONENT_NAME=_getenv_str("SANDING_NOTES_COMPONENT_NAME", "sanding-notes"),
        SANDING_NOTES_COMPONENT_TYPE=_getenv_str(
            "SANDING_NOTES_COMPONENT_TYPE", "rdk:component:generic"
        ),
        SANDING_VIDEO_COMPONENT_NAME=_getenv_str("SANDING_VIDEO_COMPONENT_NAME", "video-store"),
        SANDING_VIDEO_DELAY_SECONDS=_getenv_float("SANDING_VIDEO_DELAY_SECONDS", 2.0),
        SANDING_LOG_LEVEL=_getenv_str("SANDING_LOG_LEVEL", "INFO"),
    )


def configure_logging(cfg: MonitorConfig) -> None:
    level = logging.getLevelName(cfg.SANDING_LOG_LEVEL.strip().upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

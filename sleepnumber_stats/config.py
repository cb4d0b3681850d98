"""Configuration loader for sleepnumber-stats."""

from __future__ import annotations

import configparser
import os
import re
from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from . import constants

SECTIONS = ("sleepiq", "polling", "influxdb", "logging", "health")

_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$", re.IGNORECASE)
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


class ConfigurationError(ValueError):
    """Raised when the configuration file cannot be loaded or is invalid."""


@dataclass(slots=True)
class SleepIQConfig:
    username: str = ""
    password: str = ""
    base_url: str = constants.DEFAULT_SLEEPIQ_BASE_URL
    request_timeout_seconds: float = 10.0


@dataclass(slots=True)
class PollingConfig:
    interval_seconds: float = constants.DEFAULT_POLL_INTERVAL_SECONDS
    shutdown_timeout_seconds: float = constants.DEFAULT_SHUTDOWN_TIMEOUT_SECONDS


@dataclass(slots=True)
class InfluxConfig:
    address: str = constants.DEFAULT_INFLUXDB_ADDRESS
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None
    organization: Optional[str] = None
    bucket: Optional[str] = None
    database: Optional[str] = None
    retention_policy: Optional[str] = None
    measurement_prefix: str = ""
    skip_verify_ssl: bool = False
    flush_interval_seconds: float = constants.DEFAULT_FLUSH_INTERVAL_SECONDS
    batch_size: int = constants.DEFAULT_BATCH_SIZE
    timeout_seconds: float = 10.0


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class HealthConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 0


@dataclass(slots=True)
class CollectorConfig:
    sleepiq: SleepIQConfig
    polling: PollingConfig
    influxdb: InfluxConfig
    logging: LoggingConfig
    health: HealthConfig
    path: Path


def parse_duration(value: str) -> float:
    """Parse ``"30"``, ``"30s"``, ``"500ms"``, ``"5m"`` or ``"1h"`` into seconds."""

    match = _DURATION_PATTERN.match(value or "")
    if match is None:
        raise ConfigurationError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return float(amount) * _DURATION_UNITS.get((unit or "s").lower(), 1.0)


def _optional(parser: ConfigParser, section: str, option: str) -> Optional[str]:
    value = parser.get(section, option, fallback="").strip()
    return value or None


def _apply_environment(parser: ConfigParser, environ: Mapping[str, str]) -> None:
    """Override options from ``SLEEPNUMBER_STATS_<SECTION>_<OPTION>`` variables."""

    for key, value in environ.items():
        if not key.startswith(constants.ENV_PREFIX):
            continue
        remainder = key[len(constants.ENV_PREFIX) :].lower()
        for section in SECTIONS:
            prefix = f"{section}_"
            if remainder.startswith(prefix) and len(remainder) > len(prefix):
                parser.set(section, remainder[len(prefix) :], value)
                break


def load_config(
    path: Optional[Path] = None, *, environ: Optional[Mapping[str, str]] = None
) -> CollectorConfig:
    """Load configuration from disk and the environment, applying defaults."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    # secrets may contain "%"
    parser = ConfigParser(interpolation=None)
    parser.read_dict(
        {
            "sleepiq": {
                "base_url": constants.DEFAULT_SLEEPIQ_BASE_URL,
                "request_timeout": "10",
            },
            "polling": {
                "interval": str(constants.DEFAULT_POLL_INTERVAL_SECONDS),
                "shutdown_timeout": str(constants.DEFAULT_SHUTDOWN_TIMEOUT_SECONDS),
            },
            "influxdb": {
                "address": constants.DEFAULT_INFLUXDB_ADDRESS,
                "measurement_prefix": "",
                "skip_verify_ssl": "false",
                "flush_interval": str(constants.DEFAULT_FLUSH_INTERVAL_SECONDS),
                "batch_size": str(constants.DEFAULT_BATCH_SIZE),
                "timeout": "10",
            },
            "logging": {
                "level": "INFO",
                "path": "",
                "log_network": "false",
            },
            "health": {
                "enabled": "false",
                "host": "127.0.0.1",
                "port": "0",
            },
        }
    )

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        parser.read(config_path, encoding="utf-8")
    except configparser.Error as exc:
        raise ConfigurationError(
            f"Error reading config file {config_path}: {exc}"
        ) from exc

    try:
        _apply_environment(parser, os.environ if environ is None else environ)
        return _build_config(parser, config_path)
    except ConfigurationError:
        raise
    except (configparser.Error, ValueError) as exc:
        raise ConfigurationError(f"Unable to decode configuration: {exc}") from exc


def _build_config(parser: ConfigParser, config_path: Path) -> CollectorConfig:
    sleepiq = SleepIQConfig(
        username=parser.get("sleepiq", "username", fallback="").strip(),
        password=parser.get("sleepiq", "password", fallback=""),
        base_url=parser.get("sleepiq", "base_url"),
        request_timeout_seconds=parse_duration(
            parser.get("sleepiq", "request_timeout")
        ),
    )
    if not sleepiq.username or not sleepiq.password:
        raise ConfigurationError("SleepIQ username and password are required")

    polling = PollingConfig(
        interval_seconds=parse_duration(parser.get("polling", "interval")),
        shutdown_timeout_seconds=max(
            0.0, parse_duration(parser.get("polling", "shutdown_timeout"))
        ),
    )
    if polling.interval_seconds <= 0:
        raise ConfigurationError("Poll interval must be greater than zero")

    flush_interval = parse_duration(parser.get("influxdb", "flush_interval"))
    influxdb = InfluxConfig(
        address=parser.get("influxdb", "address"),
        username=_optional(parser, "influxdb", "username"),
        password=_optional(parser, "influxdb", "password"),
        token=_optional(parser, "influxdb", "token"),
        organization=_optional(parser, "influxdb", "organization"),
        bucket=_optional(parser, "influxdb", "bucket"),
        database=_optional(parser, "influxdb", "database"),
        retention_policy=_optional(parser, "influxdb", "retention_policy"),
        measurement_prefix=parser.get("influxdb", "measurement_prefix"),
        skip_verify_ssl=parser.getboolean("influxdb", "skip_verify_ssl"),
        # zero means "unset", as in the InfluxDB client defaults
        flush_interval_seconds=flush_interval
        if flush_interval > 0
        else constants.DEFAULT_FLUSH_INTERVAL_SECONDS,
        batch_size=max(1, parser.getint("influxdb", "batch_size")),
        timeout_seconds=parse_duration(parser.get("influxdb", "timeout")),
    )

    log_path_value = parser.get("logging", "path").strip()
    logging_config = LoggingConfig(
        level=parser.get("logging", "level"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_network=parser.getboolean("logging", "log_network"),
    )

    health = HealthConfig(
        enabled=parser.getboolean("health", "enabled"),
        host=parser.get("health", "host"),
        port=parser.getint("health", "port"),
    )

    return CollectorConfig(
        sleepiq=sleepiq,
        polling=polling,
        influxdb=influxdb,
        logging=logging_config,
        health=health,
        path=config_path,
    )

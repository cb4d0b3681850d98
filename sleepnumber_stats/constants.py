"""Constants used across the sleepnumber-stats package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "sleepnumber-stats"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path(DEFAULT_CONFIG_FILENAME)

ENV_PREFIX = "SLEEPNUMBER_STATS_"

DEFAULT_SLEEPIQ_BASE_URL = "https://prod-api.sleepiq.sleepnumber.com/rest"
DEFAULT_INFLUXDB_ADDRESS = "http://localhost:8086"

DEFAULT_POLL_INTERVAL_SECONDS = 60.0
DEFAULT_FLUSH_INTERVAL_SECONDS = 30.0
DEFAULT_SHUTDOWN_TIMEOUT_SECONDS = 10.0
DEFAULT_BATCH_SIZE = 5000

MEASUREMENT_FOUNDATION = "bed_foundation_state"
MEASUREMENT_FOOTWARMERS = "bed_footwarmers_state"
MEASUREMENT_SLEEPERS = "bed_sleeper_state"

"""Adapter modules for external integrations."""

from .influxdb import (
    DeliveryError,
    InfluxPointWriter,
    MetricSink,
    SinkConfigurationError,
    resolve_auth,
    resolve_destination,
    to_influx_point,
)
from .sleepiq import SleepIQAPIError, SleepIQClient, is_session_invalid

__all__ = [
    "DeliveryError",
    "InfluxPointWriter",
    "MetricSink",
    "SinkConfigurationError",
    "SleepIQAPIError",
    "SleepIQClient",
    "is_session_invalid",
    "resolve_auth",
    "resolve_destination",
    "to_influx_point",
]

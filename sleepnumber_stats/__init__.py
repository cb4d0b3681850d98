"""SleepIQ to InfluxDB telemetry collector."""

__version__ = "0.1.0"

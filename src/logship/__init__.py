"""
logship - buffered log shipping to Grafana Loki

Groups structured log records into label-addressed streams, batches them in
memory and pushes them to a Loki-style push API from a background task.
"""

__version__ = "0.1.0"

from .config import ShipperSettings, load_settings
from .core.exceptions import (
    CapacityError,
    ConfigError,
    DeliveryError,
    FlushTimeout,
    FormatError,
    LogShipException,
    PermanentTransportError,
    RetryableTransportError,
    ShipperStateError,
    TransportError,
)
from .core.formatter import AutoFields, Formatter, JsonFormatter, LogfmtFormatter
from .core.shipper import Shipper
from .core.transport import DeliveryResult
from .log_config import configure_logging
from .models import LabelSet, LogLevel, LogRecord

__all__ = [
    "AutoFields",
    "CapacityError",
    "ConfigError",
    "DeliveryError",
    "DeliveryResult",
    "FlushTimeout",
    "FormatError",
    "Formatter",
    "JsonFormatter",
    "LabelSet",
    "LogLevel",
    "LogRecord",
    "LogShipException",
    "LogfmtFormatter",
    "PermanentTransportError",
    "RetryableTransportError",
    "Shipper",
    "ShipperSettings",
    "ShipperStateError",
    "TransportError",
    "configure_logging",
    "load_settings",
]

"""
Data models package.

Contains the value types that flow through the shipper:
- Log records handed in by the application
- Label sets identifying streams
"""

from .labels import LabelSet
from .record import FieldValue, LogLevel, LogRecord

__all__ = [
    "FieldValue",
    "LabelSet",
    "LogLevel",
    "LogRecord",
]

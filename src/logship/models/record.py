"""
Log record data model.

- Nanosecond wall-clock timestamp, level and message
- Ordered structured fields with scalar values
- Optional call-site metadata: target, module, file, line
"""

import time
from enum import Enum
from typing import Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

FieldValue = Union[str, int, float, bool, None]


class LogLevel(str, Enum):
    """Record severity levels."""

    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"

    @property
    def severity(self) -> int:
        """Rank from TRACE (0) to ERROR (4); higher is more severe."""
        return _SEVERITY[self]


_SEVERITY = {level: rank for rank, level in enumerate(LogLevel)}


class LogRecord(BaseModel):
    """
    A single structured log event handed to the shipper.

    Immutable once created.
    """

    timestamp_ns: int = Field(
        ge=0,
        description="Unix timestamp of the event in nanoseconds"
    )
    level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Record severity"
    )
    message: str = Field(
        default="",
        description="Rendered log message"
    )
    fields: Dict[str, FieldValue] = Field(
        default_factory=dict,
        description="Structured key/value fields in insertion order"
    )

    # Optional call-site metadata
    target: Optional[str] = Field(default=None, description="Logger name or target")
    module: Optional[str] = Field(default=None, description="Module path of the call site")
    file: Optional[str] = Field(default=None, description="Source file of the call site")
    line: Optional[int] = Field(default=None, ge=0, description="Source line of the call site")

    @field_validator("fields")
    def validate_field_keys(cls, v: Dict[str, FieldValue]) -> Dict[str, FieldValue]:
        """Field keys must be strings."""
        for key in v:
            if not isinstance(key, str):
                raise ValueError(f"Field key {key!r} must be a string")
        return v

    model_config = ConfigDict(frozen=True)

    @classmethod
    def create(
        cls,
        level: Union[LogLevel, str],
        message: str,
        target: Optional[str] = None,
        module: Optional[str] = None,
        file: Optional[str] = None,
        line: Optional[int] = None,
        **fields: FieldValue,
    ) -> "LogRecord":
        """Build a record stamped with the current wall-clock time."""
        return cls(
            timestamp_ns=time.time_ns(),
            level=level,
            message=message,
            fields=fields,
            target=target,
            module=module,
            file=file,
            line=line,
        )

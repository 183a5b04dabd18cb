"""
Push payload encoding.

Loki expects:
{
    "streams": [
        {
            "stream": {"label1": "value1", "label2": "value2"},
            "values": [["timestamp_ns", "log_line"], ...]
        }
    ]
}
"""

import gzip
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..models.labels import LabelSet
from .buffer import Entry, SealedBatch

CONTENT_TYPE = "application/json"
GZIP_ENCODING = "gzip"


@dataclass(frozen=True)
class PushPayload:
    """Wire-ready body for one sealed batch."""
    body: bytes
    content_encoding: Optional[str]
    entry_count: int
    stream_count: int
    generation: int

    @property
    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": CONTENT_TYPE}
        if self.content_encoding:
            headers["Content-Encoding"] = self.content_encoding
        return headers


def build_streams(batch: SealedBatch) -> List[Dict[str, Any]]:
    """Convert a sealed batch to the list of Loki stream objects."""
    return [
        {
            "stream": labels.to_dict(),
            "values": [[str(timestamp_ns), line] for timestamp_ns, line in entries],
        }
        for labels, entries in batch.streams
        if entries
    ]


def encode(batch: SealedBatch, compress: bool = False) -> PushPayload:
    """Serialize a sealed batch, wrapping it in one gzip envelope if requested."""
    streams = build_streams(batch)
    body = json.dumps({"streams": streams}, ensure_ascii=False, separators=(",", ":")).encode("utf-8")

    if compress:
        body = gzip.compress(body)

    return PushPayload(
        body=body,
        content_encoding=GZIP_ENCODING if compress else None,
        entry_count=sum(len(s["values"]) for s in streams),
        stream_count=len(streams),
        generation=batch.generation,
    )


def decode(payload: PushPayload) -> List[Tuple[LabelSet, List[Entry]]]:
    """Parse a payload back into label sets and ordered entries."""
    body = payload.body
    if payload.content_encoding == GZIP_ENCODING:
        body = gzip.decompress(body)

    document = json.loads(body.decode("utf-8"))
    return [
        (
            LabelSet(stream["stream"]),
            [(int(timestamp), line) for timestamp, line in stream["values"]],
        )
        for stream in document["streams"]
    ]

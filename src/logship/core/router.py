"""
Stream routing.

Resolves the label set that identifies the stream a record belongs to.
"""

from typing import AbstractSet, Dict, Iterable, Mapping, Optional

from ..models.labels import LabelSet
from ..models.record import LogRecord


def route(
    record: LogRecord,
    global_labels: LabelSet,
    label_fields: Optional[AbstractSet[str]] = None,
) -> LabelSet:
    """
    Merge global labels with the record's label-bearing fields.

    Only fields named in `label_fields` are promoted to labels; they override
    same-named global labels. Fields with a None value are not promoted.
    Without `label_fields` the global labels are returned unchanged.
    """
    if not label_fields:
        return global_labels

    overrides: Dict[str, str] = {}
    for key, value in record.fields.items():
        if key in label_fields and value is not None:
            overrides[key] = str(value).lower() if isinstance(value, bool) else str(value)

    return global_labels.merge(overrides)


class StreamRouter:
    """Binds the global labels and field promotion rules for `route`."""

    def __init__(
        self,
        global_labels: Mapping[str, str],
        merge_record_labels: bool = False,
        label_fields: Iterable[str] = (),
    ) -> None:
        self.global_labels = global_labels if isinstance(global_labels, LabelSet) else LabelSet(global_labels)
        self.label_fields = frozenset(label_fields) if merge_record_labels else frozenset()

    def route(self, record: LogRecord) -> LabelSet:
        return route(record, self.global_labels, self.label_fields)

"""
Label set model.

A LabelSet is the identity of a stream: an immutable string-to-string
mapping compared by content, not by insertion order.
"""

from collections.abc import Mapping as MappingABC
from typing import Any, Dict, FrozenSet, Iterator, Mapping, Optional, Tuple


class LabelSet(MappingABC):
    """
    Immutable, hashable set of stream labels.

    Two label sets built from the same pairs in different order are equal
    and hash the same, so they address the same stream.
    """

    __slots__ = ("_labels", "_key")

    def __init__(self, labels: Optional[Mapping[str, str]] = None, **kwargs: str) -> None:
        merged: Dict[str, str] = dict(labels or {})
        merged.update(kwargs)

        for key, value in merged.items():
            if not isinstance(key, str) or not key:
                raise ValueError(f"Label key must be a non-empty string, got {key!r}")
            if not isinstance(value, str):
                raise ValueError(f"Label value for '{key}' must be a string")

        self._labels = merged
        self._key: FrozenSet[Tuple[str, str]] = frozenset(merged.items())

    def __getitem__(self, key: str) -> str:
        return self._labels[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._labels)

    def __len__(self) -> int:
        return len(self._labels)

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, LabelSet):
            return self._key == other._key
        if isinstance(other, MappingABC):
            return self._key == frozenset(other.items())
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._key)

    def __repr__(self) -> str:
        pairs = ", ".join(f"{k}={v!r}" for k, v in sorted(self._labels.items()))
        return f"LabelSet({pairs})"

    def merge(self, overrides: Mapping[str, str]) -> "LabelSet":
        """Return a new label set where `overrides` win over existing keys."""
        if not overrides:
            return self
        merged = dict(self._labels)
        merged.update(overrides)
        return LabelSet(merged)

    def to_dict(self) -> Dict[str, str]:
        """Plain dict copy in insertion order, as sent on the wire."""
        return dict(self._labels)

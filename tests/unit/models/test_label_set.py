"""
Tests for LabelSet identity semantics.
"""

import pytest

from logship.models import LabelSet


class TestLabelSetIdentity:
    """Label sets compare and hash by content."""

    def test_insertion_order_does_not_matter(self) -> None:
        first = LabelSet({"app": "checkout", "env": "prod"})
        second = LabelSet({"env": "prod", "app": "checkout"})

        assert first == second
        assert hash(first) == hash(second)
        assert len({first, second}) == 1

    def test_different_values_are_different_streams(self) -> None:
        assert LabelSet(app="checkout", env="prod") != LabelSet(app="checkout", env="dev")

    def test_compares_equal_to_plain_mapping(self) -> None:
        assert LabelSet(app="checkout") == {"app": "checkout"}

    def test_keeps_insertion_order_for_the_wire(self) -> None:
        labels = LabelSet({"zone": "a", "app": "checkout"})
        assert list(labels.to_dict()) == ["zone", "app"]

    def test_is_read_only(self) -> None:
        labels = LabelSet(app="checkout")
        with pytest.raises(TypeError):
            labels["app"] = "other"  # type: ignore[index]


class TestLabelSetValidation:
    """Only non-empty string keys and string values are allowed."""

    def test_rejects_empty_key(self) -> None:
        with pytest.raises(ValueError):
            LabelSet({"": "value"})

    def test_rejects_non_string_value(self) -> None:
        with pytest.raises(ValueError):
            LabelSet({"port": 8080})  # type: ignore[dict-item]


class TestLabelSetMerge:
    """Overrides win and the original is untouched."""

    def test_override_wins(self) -> None:
        base = LabelSet(app="checkout", env="prod")
        merged = base.merge({"env": "staging", "region": "eu"})

        assert merged == {"app": "checkout", "env": "staging", "region": "eu"}
        assert base["env"] == "prod"

    def test_empty_override_returns_same_instance(self) -> None:
        base = LabelSet(app="checkout")
        assert base.merge({}) is base

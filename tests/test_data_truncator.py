#!/usr/bin/env python3
"""Tests for structure-preserving truncation."""
from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path

import pytest

# Add scripts directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))

from data_truncator import (
    BINARY_MARKER,
    CIRCULAR_MARKER,
    MAX_DEPTH_MARKER,
    PROCESSING_ERROR_MARKER,
    TRUNCATED_KEY,
    DataTruncator,
)


@pytest.fixture
def truncator() -> DataTruncator:
    return DataTruncator()


# =============================================================================
# truncate_string
# =============================================================================

class TestTruncateString:

    def test_short_string_unchanged(self, truncator):
        assert truncator.truncate_string("hello", 10) == "hello"
        assert truncator.truncate_string("x" * 10, 10) == "x" * 10

    def test_long_string_gets_marker(self, truncator):
        result = truncator.truncate_string("x" * 2000, 500)

        assert result.startswith("x" * 500)
        assert result[500:] == "...[1500 characters truncated]"

    def test_truncation_is_idempotent(self, truncator):
        once = truncator.truncate_string("y" * 800, 100)
        twice = truncator.truncate_string(once, 100)

        assert twice == once

    def test_retruncation_accumulates_removed_count(self, truncator):
        once = truncator.truncate_string("z" * 1000, 500)
        tighter = truncator.truncate_string(once, 100)

        assert tighter == "z" * 100 + "...[900 characters truncated]"


# =============================================================================
# truncate_sequence
# =============================================================================

class TestTruncateSequence:

    def test_within_bound_unchanged(self, truncator):
        items = [1, 2, 3]
        assert truncator.truncate_sequence(items, 3) is items

    def test_list_keeps_first_items_and_marker(self, truncator):
        result = truncator.truncate_sequence(list(range(10)), 4)

        assert result == [0, 1, 2, 3, "...[6 items removed]"]

    def test_mapping_gets_marker_key(self, truncator):
        result = truncator.truncate_sequence({f"k{i}": i for i in range(5)}, 2)

        assert result == {"k0": 0, "k1": 1, TRUNCATED_KEY: "3 items removed"}

    def test_list_truncation_is_idempotent(self, truncator):
        once = truncator.truncate_sequence(list(range(10)), 4)

        assert truncator.truncate_sequence(once, 4) == once

    def test_input_not_mutated(self, truncator):
        items = list(range(10))
        truncator.truncate_sequence(items, 2)

        assert items == list(range(10))


# =============================================================================
# truncate_nested
# =============================================================================

class TestTruncateNested:

    def test_body_scenario(self, truncator):
        """A 2000-char string under max_string_length=500 keeps a 500-char prefix."""
        result = truncator.truncate_nested({"a": "x" * 2000}, 5, 500, 50)

        assert result["a"] == "x" * 500 + "...[1500 characters truncated]"
        assert "1500 characters truncated" in result["a"]

    def test_keys_and_shape_preserved(self, truncator):
        data = {"user": {"name": "Ana", "tags": ["a", "b"], "age": 31, "admin": False, "x": None}}

        assert truncator.truncate_nested(data) == data

    def test_depth_limit_replaces_subtree(self, truncator):
        data = {"l1": {"l2": {"l3": {"l4": "deep"}}}}

        result = truncator.truncate_nested(data, max_depth=2)

        assert result == {"l1": {"l2": MAX_DEPTH_MARKER}}

    def test_zero_depth_means_unlimited(self, truncator):
        data = {"l1": {"l2": {"l3": {"l4": {"l5": {"l6": "deep"}}}}}}

        assert truncator.truncate_nested(data, max_depth=0) == data

    def test_list_items_capped(self, truncator):
        result = truncator.truncate_nested(list(range(30)), 5, 500, 20)

        assert len(result) == 21
        assert result[:20] == list(range(20))
        assert result[-1] == "...[10 items removed]"

    def test_mapping_items_capped(self, truncator):
        data = {f"k{i}": i for i in range(25)}

        result = truncator.truncate_nested(data, 5, 500, 20)

        assert len(result) == 21
        assert result[TRUNCATED_KEY] == "5 items removed"
        assert list(result)[:20] == [f"k{i}" for i in range(20)]

    def test_nested_truncation_is_idempotent(self, truncator):
        data = {"rows": [{"text": "t" * 900} for _ in range(60)], "more": {f"k{i}": i for i in range(70)}}

        once = truncator.truncate_nested(data, 5, 500, 50)
        twice = truncator.truncate_nested(once, 5, 500, 50)

        assert twice == once

    def test_tuples_become_lists(self, truncator):
        assert truncator.truncate_nested({"t": (1, 2)}) == {"t": [1, 2]}

    def test_binary_string_replaced(self, truncator):
        assert truncator.truncate_nested({"file": "PNG\x00\x01\x02data"}) == {"file": BINARY_MARKER}

    def test_bytes_decoded_or_marked(self, truncator):
        assert truncator.truncate_nested(b"plain text") == "plain text"
        assert truncator.truncate_nested(b"\xff\xfe\x00") == BINARY_MARKER

    def test_circular_reference_marked(self, truncator):
        data: dict = {"name": "loop"}
        data["self"] = data

        result = truncator.truncate_nested(data, max_depth=0)

        assert result == {"name": "loop", "self": CIRCULAR_MARKER}

    def test_shared_reference_is_not_circular(self, truncator):
        shared = {"v": 1}

        assert truncator.truncate_nested({"a": shared, "b": shared}) == {"a": {"v": 1}, "b": {"v": 1}}

    def test_non_serializable_object_marked(self, truncator):
        class Widget:
            pass

        result = truncator.truncate_nested({"w": Widget(), "s": {1, 2}})

        assert result == {
            "w": "[non-serializable object: Widget]",
            "s": "[non-serializable object: set]",
        }

    def test_dataclass_converted(self, truncator):
        @dataclass
        class Query:
            sql: str
            time: float

        result = truncator.truncate_nested({"q": Query("select 1", 0.5)})

        assert result == {"q": {"sql": "select 1", "time": 0.5}}

    def test_to_dict_objects_converted(self, truncator):
        class Dto:
            def to_dict(self):
                return {"id": 7}

        assert truncator.truncate_nested([Dto()]) == [{"id": 7}]

    def test_errors_become_marker(self, truncator):
        class Exploding:
            def to_dict(self):
                raise RuntimeError("boom")

        result = truncator.truncate_nested({"ok": 1, "bad": Exploding()})

        assert result == {"ok": 1, "bad": PROCESSING_ERROR_MARKER}

    def test_very_deep_unlimited_structure_does_not_raise(self, truncator):
        data: list = []
        node = data
        for _ in range(5000):
            child: list = []
            node.append(child)
            node = child

        result = truncator.truncate_nested(data, max_depth=0)

        assert isinstance(result, list)

    def test_input_not_mutated(self, truncator):
        data = {"a": "x" * 1000, "b": list(range(100))}
        truncator.truncate_nested(data, 5, 10, 5)

        assert data == {"a": "x" * 1000, "b": list(range(100))}


# =============================================================================
# is_binary
# =============================================================================

class TestIsBinary:

    def test_non_strings_are_never_binary(self, truncator):
        for value in (None, 1, 2.5, True, b"\x00", ["\x00"], {"a": "\x00"}):
            assert truncator.is_binary(value) is False

    def test_control_characters(self, truncator):
        assert truncator.is_binary("abc\x00def")
        assert truncator.is_binary("\x1b[31mred")

    def test_whitespace_is_text(self, truncator):
        assert not truncator.is_binary("line one\nline two\tcol\r\n")

    def test_long_invalid_utf8_is_binary(self, truncator):
        raw = bytes(range(128, 256)) * 10
        text = raw.decode("utf-8", errors="surrogateescape")

        assert len(text) > 1000
        assert truncator.is_binary(text)

    def test_short_invalid_utf8_is_not_flagged(self, truncator):
        text = b"\xff\xfe".decode("utf-8", errors="surrogateescape")

        assert not truncator.is_binary(text)

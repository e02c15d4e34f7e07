#!/usr/bin/env python3
"""
Structure-preserving truncation utilities.

Shrinks strings, sequences and arbitrarily nested values while keeping
keys and overall shape intact, so a reduced payload still reads like the
original:
- Strings are cut and tagged with how many characters were removed
- Lists and mappings are capped and tagged with how many entries were removed
- Nesting is cut off at a maximum depth
- Binary blobs and non-serializable objects become short markers

Truncation is idempotent: markers left by a previous pass are recognized
and carried forward instead of being truncated again.
"""
from __future__ import annotations

import dataclasses
import re
from collections.abc import Mapping
from typing import Any, Optional

TRUNCATED_KEY = "...[truncated]"
MAX_DEPTH_MARKER = "[max depth reached]"
BINARY_MARKER = "[binary data]"
CIRCULAR_MARKER = "[circular reference]"
PROCESSING_ERROR_MARKER = "[processing error]"

# Strings longer than this are also checked for invalid UTF-8
BINARY_CHECK_MIN_LENGTH = 1000

# C0 control characters except tab, line feed and carriage return
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F]")
_STRING_MARKER = re.compile(r"\.\.\.\[(\d+) characters truncated\]\Z")
_ITEMS_MARKER = re.compile(r"\A\.\.\.\[(\d+) items removed\]\Z")
_ITEMS_VALUE = re.compile(r"\A(\d+) items removed\Z")


def string_marker(removed: int) -> str:
    return f"...[{removed} characters truncated]"


def items_marker(removed: int) -> str:
    return f"...[{removed} items removed]"


def unserializable_marker(value: Any) -> str:
    return f"[non-serializable object: {type(value).__name__}]"


def _split_list_marker(items: list) -> tuple[list, int]:
    """Separate a trailing removed-items marker from a list."""
    if items and isinstance(items[-1], str):
        match = _ITEMS_MARKER.match(items[-1])
        if match:
            return items[:-1], int(match.group(1))
    return items, 0


def _split_mapping_marker(mapping: Mapping) -> tuple[list[tuple[Any, Any]], int]:
    """Separate the removed-items entry from a mapping's items."""
    entries = []
    previous = 0
    for key, value in mapping.items():
        if key == TRUNCATED_KEY and isinstance(value, str):
            match = _ITEMS_VALUE.match(value)
            if match:
                previous = int(match.group(1))
                continue
        entries.append((key, value))
    return entries, previous


def _output_key(key: Any) -> Any:
    if key is None or isinstance(key, (str, int, float, bool)):
        return key
    return str(key)


class DataTruncator:
    """Truncates data while preserving its structure."""

    def truncate_string(self, value: str, max_length: int) -> str:
        """
        Cut a string to max_length characters and append a removal marker.

        A string that already carries a marker is measured without it, and
        the removed counts accumulate.
        """
        base, previous = value, 0
        match = _STRING_MARKER.search(value)
        if match:
            base = value[: match.start()]
            previous = int(match.group(1))

        if len(base) <= max_length:
            return value

        removed = len(base) - max_length + previous
        return base[:max_length] + string_marker(removed)

    def truncate_sequence(self, items: Any, max_items: int) -> Any:
        """
        Keep the first max_items entries of a list or mapping.

        Lists get a trailing "...[N items removed]" entry, mappings a
        TRUNCATED_KEY entry with value "N items removed".
        """
        if isinstance(items, Mapping):
            entries, previous = _split_mapping_marker(items)
            if len(entries) <= max_items:
                return items
            result = dict(entries[:max_items])
            result[TRUNCATED_KEY] = f"{len(entries) - max_items + previous} items removed"
            return result

        seq = list(items)
        entries, previous = _split_list_marker(seq)
        if len(entries) <= max_items:
            return items
        return entries[:max_items] + [items_marker(len(entries) - max_items + previous)]

    def truncate_nested(
        self,
        value: Any,
        max_depth: int = 5,
        max_string_length: int = 500,
        max_array_items: int = 50,
        depth: int = 0,
        _seen: Optional[set[int]] = None,
    ) -> Any:
        """
        Recursively truncate a nested structure.

        Keeps every key that survives the item bound and only reduces values:
        strings are truncated, lists and mappings are capped, and anything at
        or below max_depth (when max_depth > 0) becomes a depth marker. A
        max_array_items of 0 disables the item bound.

        Never raises: failures on a node turn that node into a marker.
        """
        if _seen is None:
            _seen = set()

        try:
            if max_depth > 0 and depth >= max_depth:
                return MAX_DEPTH_MARKER

            if self.is_binary(value):
                return BINARY_MARKER

            if isinstance(value, str):
                return self.truncate_string(value, max_string_length)

            if value is None or isinstance(value, (bool, int, float)):
                return value

            if isinstance(value, (bytes, bytearray)):
                try:
                    text = bytes(value).decode("utf-8")
                except UnicodeDecodeError:
                    return BINARY_MARKER
                return self.truncate_nested(
                    text, max_depth, max_string_length, max_array_items, depth, _seen
                )

            if isinstance(value, (Mapping, list, tuple)):
                obj_id = id(value)
                if obj_id in _seen:
                    return CIRCULAR_MARKER
                _seen.add(obj_id)
                try:
                    if isinstance(value, Mapping):
                        return self._truncate_mapping(
                            value, max_depth, max_string_length, max_array_items, depth, _seen
                        )
                    return self._truncate_list(
                        value, max_depth, max_string_length, max_array_items, depth, _seen
                    )
                finally:
                    _seen.discard(obj_id)

            converted = self._to_plain(value)
            if converted is None:
                return unserializable_marker(value)
            return self.truncate_nested(
                converted, max_depth, max_string_length, max_array_items, depth + 1, _seen
            )
        except Exception:
            return PROCESSING_ERROR_MARKER

    def _truncate_mapping(
        self,
        value: Mapping,
        max_depth: int,
        max_string_length: int,
        max_array_items: int,
        depth: int,
        seen: set[int],
    ) -> dict:
        entries, previous = _split_mapping_marker(value)
        result = {}
        for count, (key, item) in enumerate(entries):
            if max_array_items > 0 and count >= max_array_items:
                previous += len(entries) - count
                break
            result[_output_key(key)] = self.truncate_nested(
                item, max_depth, max_string_length, max_array_items, depth + 1, seen
            )
        if previous:
            result[TRUNCATED_KEY] = f"{previous} items removed"
        return result

    def _truncate_list(
        self,
        value: Any,
        max_depth: int,
        max_string_length: int,
        max_array_items: int,
        depth: int,
        seen: set[int],
    ) -> list:
        entries, previous = _split_list_marker(list(value))
        result = []
        for count, item in enumerate(entries):
            if max_array_items > 0 and count >= max_array_items:
                previous += len(entries) - count
                break
            result.append(
                self.truncate_nested(
                    item, max_depth, max_string_length, max_array_items, depth + 1, seen
                )
            )
        if previous:
            result.append(items_marker(previous))
        return result

    def _to_plain(self, value: Any) -> Optional[Any]:
        """Convert a DTO-like object to plain data, or None if it has no plain form."""
        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            return dataclasses.asdict(value)
        to_dict = getattr(value, "to_dict", None)
        if callable(to_dict):
            plain = to_dict()
            if isinstance(plain, (Mapping, list, tuple)):
                return plain
        return None

    def is_binary(self, value: Any) -> bool:
        """
        Check whether a value looks like binary data.

        Only strings can be binary: those containing control characters
        (other than tab/newline/carriage return), or long strings that are
        not valid UTF-8 (lone surrogates from undecodable input).
        """
        if not isinstance(value, str):
            return False

        if _CONTROL_CHARS.search(value):
            return True

        if len(value) > BINARY_CHECK_MIN_LENGTH:
            try:
                value.encode("utf-8")
            except UnicodeEncodeError:
                return True

        return False

#!/usr/bin/env python3
"""Byte-size checks for telemetry payloads."""
from __future__ import annotations

import json
import logging
import sys
from typing import Any

logger = logging.getLogger(__name__)

# Returned when not even an estimate can be produced; exceeds any limit.
UNKNOWN_SIZE = sys.maxsize

# Estimates over-report by this factor.
ESTIMATE_PADDING = 1.1

CIRCULAR_MARKER_SIZE = 24


def serialize(payload: Any) -> str:
    """Encode a payload the way the collector receives it (compact, unescaped UTF-8)."""
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def _utf8_len(text: str) -> int:
    return len(text.encode("utf-8", errors="replace"))


def _footprint(value: Any, seen: set[int]) -> int:
    if value is None or isinstance(value, bool):
        return 5
    if isinstance(value, (int, float)):
        return len(repr(value))
    if isinstance(value, str):
        return _utf8_len(value) + 2
    if isinstance(value, (bytes, bytearray)):
        # Escaped binary can take up to six bytes per byte in JSON
        return len(value) * 6 + 2

    if isinstance(value, (dict, list, tuple)):
        obj_id = id(value)
        if obj_id in seen:
            return CIRCULAR_MARKER_SIZE
        seen.add(obj_id)
        try:
            if isinstance(value, dict):
                total = 2
                for key, item in value.items():
                    total += _utf8_len(str(key)) + 4 + _footprint(item, seen)
                return total
            return 2 + sum(_footprint(item, seen) + 1 for item in value)
        finally:
            seen.discard(obj_id)

    return _utf8_len(repr(value)) + 2


def estimate_size(payload: Any) -> int:
    """
    Approximate the serialized size of a payload that json cannot encode.

    Walks the structure summing the JSON footprint of each node. Unknown
    objects count as their repr, circular references as a short marker.
    The result is padded so it errs on the large side.
    """
    try:
        return int(_footprint(payload, set()) * ESTIMATE_PADDING) + 1
    except Exception as e:
        logger.debug("size estimate failed: %s", e)
        return UNKNOWN_SIZE


class SizeChecker:
    """Computes payload size in bytes and compares it to a budget."""

    def size(self, payload: Any) -> int:
        """Serialized size in bytes, or an over-reporting estimate if encoding fails."""
        try:
            return _utf8_len(serialize(payload))
        except Exception as e:
            # TypeError, ValueError (circular), RecursionError, ...
            logger.debug("payload not serializable (%s), estimating size", e)
            return estimate_size(payload)

    def exceeds_limit(self, payload: Any, limit: int) -> bool:
        """True if the payload is over the limit, or if its size cannot be determined."""
        try:
            return self.size(payload) > limit
        except Exception:
            return True

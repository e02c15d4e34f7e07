#!/usr/bin/env python3
"""
Configuration for the payload reducer.

Budgets and per-section tunables, with defaults matching the SDK's
documented values. Every value can be overridden through LONOMIA_*
environment variables via ReducerConfig.from_env().
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

# Payload budgets (bytes)
DEFAULT_MAX_PAYLOAD_OK = 300 * 1024
DEFAULT_MAX_PAYLOAD_ERROR = 1536 * 1024

# Body reduction
DEFAULT_BODY_MAX_STRING_LENGTH = 500
DEFAULT_BODY_MAX_ARRAY_ITEMS = 50
DEFAULT_BODY_MAX_DEPTH = 5

# Log reduction
DEFAULT_LOGS_MAX_COUNT = 100
DEFAULT_LOGS_MAX_MESSAGE_LENGTH = 1000

# Request trace reduction
DEFAULT_MAX_HTTP_REQUESTS = 50
DEFAULT_MAX_EXTERNAL_REQUESTS = 50

# Cache reduction
DEFAULT_CACHE_MAX_OPERATIONS = 100

# Convergence loop
DEFAULT_MAX_ITERATIONS = 10
DEFAULT_STALL_RATIO = 0.99


@dataclass(frozen=True)
class ReducerConfig:
    """Read-only reducer settings, shared by every request."""

    max_payload_ok: int = DEFAULT_MAX_PAYLOAD_OK
    max_payload_error: int = DEFAULT_MAX_PAYLOAD_ERROR
    body_max_string_length: int = DEFAULT_BODY_MAX_STRING_LENGTH
    body_max_array_items: int = DEFAULT_BODY_MAX_ARRAY_ITEMS
    body_max_depth: int = DEFAULT_BODY_MAX_DEPTH
    logs_max_count: int = DEFAULT_LOGS_MAX_COUNT
    logs_max_message_length: int = DEFAULT_LOGS_MAX_MESSAGE_LENGTH
    max_http_requests: int = DEFAULT_MAX_HTTP_REQUESTS
    max_external_requests: int = DEFAULT_MAX_EXTERNAL_REQUESTS
    cache_max_operations: int = DEFAULT_CACHE_MAX_OPERATIONS
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    stall_ratio: float = DEFAULT_STALL_RATIO

    def limit_for(self, is_error: bool) -> int:
        """Byte budget for a request: error traces get the larger one."""
        return self.max_payload_error if is_error else self.max_payload_ok

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ReducerConfig":
        """Create config from environment variables."""
        env = os.environ if env is None else env

        def parse_int(key: str, default: int) -> int:
            raw = env.get(key)
            if raw is None or raw.strip() == "":
                return default
            try:
                value = int(raw)
            except ValueError:
                logger.warning("Invalid integer for %s: %r, using %d", key, raw, default)
                return default
            if value <= 0:
                logger.warning("Non-positive value for %s: %d, using %d", key, value, default)
                return default
            return value

        def parse_ratio(key: str, default: float) -> float:
            raw = env.get(key)
            if raw is None or raw.strip() == "":
                return default
            try:
                value = float(raw)
            except ValueError:
                logger.warning("Invalid number for %s: %r, using %s", key, raw, default)
                return default
            if not 0.0 < value <= 1.0:
                logger.warning("%s must be in (0, 1], got %s, using %s", key, value, default)
                return default
            return value

        return cls(
            max_payload_ok=parse_int("LONOMIA_MAX_PAYLOAD_OK", DEFAULT_MAX_PAYLOAD_OK),
            max_payload_error=parse_int("LONOMIA_MAX_PAYLOAD_ERROR", DEFAULT_MAX_PAYLOAD_ERROR),
            body_max_string_length=parse_int(
                "LONOMIA_BODY_MAX_STRING_LENGTH", DEFAULT_BODY_MAX_STRING_LENGTH
            ),
            body_max_array_items=parse_int(
                "LONOMIA_BODY_MAX_ARRAY_ITEMS", DEFAULT_BODY_MAX_ARRAY_ITEMS
            ),
            body_max_depth=parse_int("LONOMIA_BODY_MAX_DEPTH", DEFAULT_BODY_MAX_DEPTH),
            logs_max_count=parse_int("LONOMIA_LOGS_MAX_COUNT", DEFAULT_LOGS_MAX_COUNT),
            logs_max_message_length=parse_int(
                "LONOMIA_LOGS_MAX_MESSAGE_LENGTH", DEFAULT_LOGS_MAX_MESSAGE_LENGTH
            ),
            max_http_requests=parse_int("LONOMIA_MAX_HTTP_REQUESTS", DEFAULT_MAX_HTTP_REQUESTS),
            max_external_requests=parse_int(
                "LONOMIA_MAX_EXTERNAL_REQUESTS", DEFAULT_MAX_EXTERNAL_REQUESTS
            ),
            cache_max_operations=parse_int(
                "LONOMIA_CACHE_MAX_OPERATIONS", DEFAULT_CACHE_MAX_OPERATIONS
            ),
            max_iterations=parse_int("LONOMIA_REDUCER_MAX_ITERATIONS", DEFAULT_MAX_ITERATIONS),
            stall_ratio=parse_ratio("LONOMIA_REDUCER_STALL_RATIO", DEFAULT_STALL_RATIO),
        )

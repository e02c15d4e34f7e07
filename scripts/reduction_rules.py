#!/usr/bin/env python3
"""
Reduction rules for telemetry payloads.

Each rule targets one section of the payload and shrinks it. Rules are
ordered by priority, from least destructive (1) to most destructive (5):

1. ReduceBodyRule     - request/response bodies
2. ReduceLogsRule     - log entries
3. ReduceRequestsRule - outbound http/external request traces
4. ReduceCacheRule    - cache operations
5. FinalCutRule       - rebuild a minimal payload from an allow-list

Rules never mutate the payload they receive; sections they rewrite are
copied first.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional

from data_truncator import DataTruncator
from reducer_config import ReducerConfig

logger = logging.getLogger(__name__)

# Tighter nested bounds for secondary data (log context, trace bodies, cache values)
SECONDARY_MAX_DEPTH = 3
SECONDARY_MAX_STRING_LENGTH = 500
SECONDARY_MAX_ITEMS = 20

RESPONSE_BODY_MAX_LENGTH = 1000
CACHE_VALUE_MAX_LENGTH = 500

ESSENTIAL_HEADERS = frozenset({
    "content-type",
    "content-length",
    "user-agent",
    "accept",
    "authorization",
})
MINIMAL_HEADERS = frozenset({"content-type", "content-length"})
SMALL_HEADER_BYTES = 200
COOKIE_MAX_BYTES = 200
AUTHORIZATION_PREFIX_LENGTH = 20

FINAL_CUT_MAX_QUERIES = 10
FINAL_CUT_MAX_LOGS = 20
PERFORMANCE_KEYS = ("execution_time", "peak_memory")
IMPORTANT_LOG_LEVELS = frozenset({"error", "warning", "critical", "alert", "emergency"})


# =============================================================================
# Shared helpers
# =============================================================================

def _section(payload: Mapping, key: str) -> Optional[Mapping]:
    value = payload.get(key)
    return value if isinstance(value, Mapping) else None


def _dig(payload: Any, section: str, key: str, default: Any) -> Any:
    """Read payload[section][key] without trusting the payload's shape."""
    try:
        value = payload[section][key]
    except (KeyError, TypeError, IndexError):
        return default
    return default if value is None else value


def minimal_payload(payload: Any) -> dict[str, Any]:
    """
    Smallest valid payload: tracking id, request line, status and exception.

    Used when a reduction cannot be completed. Reads the source payload
    defensively and never raises.
    """
    try:
        source = payload if isinstance(payload, Mapping) else {}
        tracking_id = source.get("tracking_id")
        return {
            "tracking_id": "" if tracking_id is None else tracking_id,
            "request": {
                "method": _dig(payload, "request", "method", "GET"),
                "url": _dig(payload, "request", "url", ""),
            },
            "response": {
                "status": _dig(payload, "response", "status", 200),
            },
            "exception": source.get("exception"),
        }
    except Exception:
        return {
            "tracking_id": "",
            "request": {"method": "GET", "url": ""},
            "response": {"status": 200},
            "exception": None,
        }


def keep_most_recent(items: list, max_count: int) -> list:
    """Drop the oldest entries so at most max_count remain, in original order."""
    if max_count <= 0:
        return []
    if len(items) <= max_count:
        return list(items)
    return list(items[-max_count:])


# =============================================================================
# Rule contract
# =============================================================================

@dataclass
class RuleOutcome:
    """Result of running one rule: the resulting payload, or the error that stopped it."""
    rule: str
    payload: dict[str, Any]
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ReductionRule(ABC):
    """
    A stateless, priority-ordered payload transformation.

    Subclasses implement reduce(); callers use run() to get an error value
    instead of an exception, or apply() to get the payload either way.
    """

    priority: int = 0

    def __init__(
        self,
        config: Optional[ReducerConfig] = None,
        truncator: Optional[DataTruncator] = None,
    ):
        self.config = config or ReducerConfig()
        self.truncator = truncator or DataTruncator()

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def reduce(self, payload: dict[str, Any], limit: int) -> dict[str, Any]:
        """Return a reduced copy of the payload. May raise."""

    def run(self, payload: dict[str, Any], limit: int) -> RuleOutcome:
        try:
            return RuleOutcome(rule=self.name, payload=self.reduce(payload, limit))
        except Exception as e:
            return RuleOutcome(rule=self.name, payload=payload, error=e)

    def apply(self, payload: dict[str, Any], limit: int) -> dict[str, Any]:
        """Reduce the payload; on failure the input comes back unchanged."""
        return self.run(payload, limit).payload

    def _nested_secondary(self, value: Any) -> Any:
        return self.truncator.truncate_nested(
            value, SECONDARY_MAX_DEPTH, SECONDARY_MAX_STRING_LENGTH, SECONDARY_MAX_ITEMS
        )

    def __repr__(self) -> str:
        return f"<{self.name} priority={self.priority}>"


# =============================================================================
# Rules
# =============================================================================

class ReduceBodyRule(ReductionRule):
    """Truncates request and response bodies, keeping all their keys."""

    priority = 1

    def reduce(self, payload: dict[str, Any], limit: int) -> dict[str, Any]:
        result = dict(payload)
        for section_key in ("request", "response"):
            section = _section(payload, section_key)
            if section is None or section.get("body") is None:
                continue
            section = dict(section)
            section["body"] = self.truncator.truncate_nested(
                section["body"],
                self.config.body_max_depth,
                self.config.body_max_string_length,
                self.config.body_max_array_items,
            )
            result[section_key] = section
        return result


class ReduceLogsRule(ReductionRule):
    """Keeps the most recent log entries and shortens messages and context."""

    priority = 2

    def reduce(self, payload: dict[str, Any], limit: int) -> dict[str, Any]:
        logs = payload.get("logs")
        if not isinstance(logs, list):
            return payload

        max_length = self.config.logs_max_message_length
        reduced = []
        for entry in keep_most_recent(logs, self.config.logs_max_count):
            if not isinstance(entry, Mapping):
                reduced.append(self._nested_secondary(entry))
                continue

            entry = dict(entry)
            if isinstance(entry.get("message"), str):
                entry["message"] = self.truncator.truncate_string(entry["message"], max_length)

            context = entry.get("context")
            if isinstance(context, str):
                entry["context"] = self.truncator.truncate_string(context, max_length)
            elif isinstance(context, (Mapping, list, tuple)):
                entry["context"] = self._nested_secondary(context)

            reduced.append(entry)

        result = dict(payload)
        result["logs"] = reduced
        return result


def _first_value(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def _same_shape(original: Any, replacement: str) -> Any:
    return [replacement] if isinstance(original, (list, tuple)) else replacement


def _encoded_length(value: Any) -> Optional[int]:
    try:
        return len(json.dumps(value))
    except (TypeError, ValueError):
        return None


class ReduceRequestsRule(ReductionRule):
    """
    Caps outbound request traces and strips them down.

    Headers are reduced to an allow-list plus anything already small,
    large cookies become a size marker and authorization values are cut
    to a short prefix. Bodies are truncated structurally.
    """

    priority = 3

    # (header fields, nested body fields) per trace list
    HTTP_REQUEST_FIELDS = (("headers", "response_headers"), ("body",))
    EXTERNAL_REQUEST_FIELDS = (("request_headers", "response_headers"), ("request_body",))

    def reduce(self, payload: dict[str, Any], limit: int) -> dict[str, Any]:
        result = dict(payload)

        http_requests = payload.get("http_requests")
        if isinstance(http_requests, list):
            result["http_requests"] = self._reduce_traces(
                http_requests, self.config.max_http_requests, *self.HTTP_REQUEST_FIELDS
            )

        external_requests = payload.get("external_requests")
        if isinstance(external_requests, list):
            result["external_requests"] = self._reduce_traces(
                external_requests,
                self.config.max_external_requests,
                *self.EXTERNAL_REQUEST_FIELDS,
            )

        return result

    def _reduce_traces(
        self,
        traces: list,
        max_count: int,
        header_fields: tuple[str, ...],
        body_fields: tuple[str, ...],
    ) -> list:
        reduced = []
        for trace in keep_most_recent(traces, max_count):
            if not isinstance(trace, Mapping):
                reduced.append(self._nested_secondary(trace))
                continue

            trace = dict(trace)
            for field_name in header_fields:
                if isinstance(trace.get(field_name), Mapping):
                    trace[field_name] = self.reduce_headers(trace[field_name])

            for field_name in body_fields:
                if trace.get(field_name) is not None:
                    trace[field_name] = self._nested_secondary(trace[field_name])

            response_body = trace.get("response_body")
            if isinstance(response_body, str):
                trace["response_body"] = self.truncator.truncate_string(
                    response_body, RESPONSE_BODY_MAX_LENGTH
                )
            elif response_body is not None:
                trace["response_body"] = self._nested_secondary(response_body)

            reduced.append(trace)
        return reduced

    def reduce_headers(self, headers: Mapping) -> dict[str, Any]:
        """Keep essential or small headers; shrink cookies and authorization."""
        reduced = {}
        for key, value in headers.items():
            lower_key = str(key).lower()
            first = _first_value(value)

            if lower_key == "cookie" and isinstance(first, str):
                cookie_bytes = len(first.encode("utf-8"))
                if cookie_bytes > COOKIE_MAX_BYTES:
                    reduced[key] = _same_shape(
                        value, f"[cookie truncated - {cookie_bytes} bytes]"
                    )
                    continue

            if lower_key == "authorization" and isinstance(first, str):
                if len(first) > AUTHORIZATION_PREFIX_LENGTH:
                    reduced[key] = _same_shape(
                        value, first[:AUTHORIZATION_PREFIX_LENGTH] + "..."
                    )
                    continue

            if lower_key in ESSENTIAL_HEADERS:
                reduced[key] = value
                continue

            encoded = _encoded_length(value)
            if encoded is not None and encoded < SMALL_HEADER_BYTES:
                reduced[key] = value

        return reduced


class ReduceCacheRule(ReductionRule):
    """Keeps the most recent cache operations and truncates cached values."""

    priority = 4

    def reduce(self, payload: dict[str, Any], limit: int) -> dict[str, Any]:
        cache = payload.get("cache")
        if not isinstance(cache, list):
            return payload

        reduced = []
        for operation in keep_most_recent(cache, self.config.cache_max_operations):
            if not isinstance(operation, Mapping):
                reduced.append(self._nested_secondary(operation))
                continue

            operation = dict(operation)
            value = operation.get("value")
            if isinstance(value, str):
                operation["value"] = self.truncator.truncate_string(value, CACHE_VALUE_MAX_LENGTH)
            elif isinstance(value, (Mapping, list, tuple)):
                operation["value"] = self._nested_secondary(value)
            reduced.append(operation)

        result = dict(payload)
        result["cache"] = reduced
        return result


def _query_time(query: Any) -> float:
    if not isinstance(query, Mapping):
        return 0.0
    value = query.get("time")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def _is_important_log(entry: Any) -> bool:
    if not isinstance(entry, Mapping):
        return False
    level = entry.get("level")
    return isinstance(level, str) and level.lower() in IMPORTANT_LOG_LEVELS


def _minimal_headers(headers: Any) -> dict[str, Any]:
    if not isinstance(headers, Mapping):
        return {}
    return {k: v for k, v in headers.items() if str(k).lower() in MINIMAL_HEADERS}


class FinalCutRule(ReductionRule):
    """
    Rebuilds the payload from a fixed allow-list.

    Keeps the tracking id, request line, response status, headline
    performance numbers, the exception (always, verbatim), the slowest
    queries and the latest error-level logs. Everything else is dropped.
    """

    priority = 5

    def reduce(self, payload: dict[str, Any], limit: int) -> dict[str, Any]:
        try:
            return self._cut(payload)
        except Exception as e:
            logger.warning("final cut failed (%s), falling back to minimal payload", e)
            return minimal_payload(payload)

    def _cut(self, payload: Mapping) -> dict[str, Any]:
        tracking_id = payload.get("tracking_id")
        minimal: dict[str, Any] = {
            "tracking_id": "" if tracking_id is None else tracking_id,
        }

        request = _section(payload, "request")
        if request is not None:
            minimal["request"] = {
                "method": _dig(payload, "request", "method", "GET"),
                "url": _dig(payload, "request", "url", ""),
            }
            if isinstance(request.get("headers"), Mapping):
                minimal["request"]["headers"] = _minimal_headers(request["headers"])

        response = _section(payload, "response")
        if response is not None:
            minimal["response"] = {"status": _dig(payload, "response", "status", 200)}
            if isinstance(response.get("headers"), Mapping):
                minimal["response"]["headers"] = _minimal_headers(response["headers"])

        performance = _section(payload, "performance")
        if performance is not None:
            minimal["performance"] = {
                key: performance[key] for key in PERFORMANCE_KEYS if key in performance
            }

        if payload.get("exception") is not None:
            minimal["exception"] = payload["exception"]

        queries = payload.get("queries")
        if isinstance(queries, list):
            slowest = sorted(queries, key=_query_time, reverse=True)
            minimal["queries"] = slowest[:FINAL_CUT_MAX_QUERIES]

        logs = payload.get("logs")
        if isinstance(logs, list):
            important = [entry for entry in logs if _is_important_log(entry)]
            minimal["logs"] = important[-FINAL_CUT_MAX_LOGS:]

        return minimal


def default_rules(config: Optional[ReducerConfig] = None) -> list[ReductionRule]:
    """The standard rule set, sorted by priority."""
    config = config or ReducerConfig()
    truncator = DataTruncator()
    rules = [
        ReduceBodyRule(config, truncator),
        ReduceLogsRule(config, truncator),
        ReduceRequestsRule(config, truncator),
        ReduceCacheRule(config, truncator),
        FinalCutRule(config, truncator),
    ]
    return sorted(rules, key=lambda rule: rule.priority)

#!/usr/bin/env python3
"""
Progressive size-bounded payload reduction.

PayloadReducer keeps a telemetry payload under its byte budget before it
is sent to the collector. When a payload is over budget, the reduction
rules run in priority order, pass after pass, until:
- the payload fits the budget,
- a pass shrinks it by less than 1% (further passes would not help), or
- the iteration cap is reached.

The reducer never raises. If something unexpected fails, it returns a
minimal payload built from the original's essential fields.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from reducer_config import ReducerConfig
from reduction_rules import ReductionRule, default_rules, minimal_payload
from size_checker import UNKNOWN_SIZE, SizeChecker

logger = logging.getLogger(__name__)


@dataclass
class PassSummary:
    """Sizes before and after one sweep over the rule set."""
    index: int
    size_before: int
    size_after: int
    failed_rules: list[str] = field(default_factory=list)

    @property
    def reduction(self) -> int:
        return self.size_before - self.size_after


@dataclass
class ReductionReport:
    """What the reducer did to one payload."""
    timestamp: datetime
    original_size: int
    reduced_size: int
    limit: int
    passes: list[PassSummary] = field(default_factory=list)
    stalled: bool = False
    fallback_used: bool = False

    @property
    def within_limit(self) -> bool:
        return self.reduced_size <= self.limit

    @property
    def size_reduction(self) -> int:
        return self.original_size - self.reduced_size

    @property
    def size_reduction_percent(self) -> float:
        if self.original_size == 0:
            return 0.0
        return (self.size_reduction / self.original_size) * 100

    def to_summary(self) -> str:
        """Human-readable summary of the reduction."""
        lines = [
            "[PAYLOAD REDUCTION SUMMARY]",
            f"Original: {self.original_size} bytes | Reduced: {self.reduced_size} bytes "
            f"({self.size_reduction_percent:.1f}% reduction)",
            f"Limit: {self.limit} bytes | Status: "
            f"{'Within limit' if self.within_limit else 'OVER LIMIT'}",
        ]

        if self.passes:
            lines.append("")
            lines.append("PASSES:")
            for summary in self.passes:
                line = f"  - #{summary.index}: {summary.size_before} -> {summary.size_after} bytes"
                if summary.failed_rules:
                    line += f" (failed: {', '.join(summary.failed_rules)})"
                lines.append(line)

        if self.stalled:
            lines.append("")
            lines.append("STALLED: last pass shrank the payload by less than the stall threshold")

        if self.fallback_used:
            lines.append("")
            lines.append("FALLBACK: reduction failed, minimal payload returned")

        lines.append("[END REDUCTION SUMMARY]")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "bytes": {
                "original": self.original_size,
                "reduced": self.reduced_size,
                "reduction": self.size_reduction,
                "reduction_percent": round(self.size_reduction_percent, 2),
                "limit": self.limit,
                "within_limit": self.within_limit,
            },
            "passes": [
                {
                    "index": summary.index,
                    "size_before": summary.size_before,
                    "size_after": summary.size_after,
                    "failed_rules": summary.failed_rules,
                }
                for summary in self.passes
            ],
            "stalled": self.stalled,
            "fallback_used": self.fallback_used,
        }


def ensure_valid_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Make sure a reduced payload still carries a tracking id and a request line."""
    result = dict(payload)
    if result.get("tracking_id") is None:
        result["tracking_id"] = ""

    request = result.get("request")
    if not isinstance(request, Mapping):
        result["request"] = {"method": "GET", "url": ""}
    elif request.get("method") is None or request.get("url") is None:
        request = dict(request)
        if request.get("method") is None:
            request["method"] = "GET"
        if request.get("url") is None:
            request["url"] = ""
        result["request"] = request

    return result


class PayloadReducer:
    """
    Orchestrates reduction rules until a payload fits its budget.

    Rules are sorted by ascending priority once, at construction time.
    The reducer holds no per-request state and can be shared.
    """

    def __init__(
        self,
        config: Optional[ReducerConfig] = None,
        rules: Optional[list[ReductionRule]] = None,
        size_checker: Optional[SizeChecker] = None,
    ):
        self.config = config or ReducerConfig.from_env()
        self.size_checker = size_checker or SizeChecker()
        if rules is None:
            rules = default_rules(self.config)
        self.rules = sorted(rules, key=lambda rule: rule.priority)

    def limit_for(self, is_error: bool) -> int:
        return self.config.limit_for(is_error)

    def reduce(self, payload: dict[str, Any], is_error: bool = False) -> dict[str, Any]:
        """
        Reduce a payload to fit the ok budget, or the error budget if is_error.

        Payloads already within budget are returned as-is (same object).
        """
        reduced, _ = self.reduce_with_report(payload, is_error)
        return reduced

    def reduce_with_report(
        self,
        payload: dict[str, Any],
        is_error: bool = False,
    ) -> tuple[dict[str, Any], ReductionReport]:
        """
        Reduce a payload and report what was done.

        Returns:
            Tuple of (reduced_payload, ReductionReport)
        """
        start_time = datetime.now()
        limit = 0
        original_size = 0
        try:
            limit = self.limit_for(is_error)
            original_size = self.size_checker.size(payload)
            report = ReductionReport(
                timestamp=start_time,
                original_size=original_size,
                reduced_size=original_size,
                limit=limit,
            )

            if original_size <= limit:
                return payload, report

            logger.debug("payload over limit: %d > %d bytes", original_size, limit)
            reduced = self._converge(payload, limit, report)
            reduced = ensure_valid_payload(reduced)
            report.reduced_size = self.size_checker.size(reduced)

            if not report.within_limit:
                logger.info(
                    "payload still over limit after reduction: %d > %d bytes",
                    report.reduced_size, limit,
                )
            return reduced, report
        except Exception:
            logger.exception("payload reduction failed, sending minimal payload")
            fallback = minimal_payload(payload)
            report = ReductionReport(
                timestamp=start_time,
                original_size=original_size,
                reduced_size=self._safe_size(fallback),
                limit=limit,
                fallback_used=True,
            )
            return fallback, report

    def _safe_size(self, payload: Any) -> int:
        try:
            return self.size_checker.size(payload)
        except Exception:
            return UNKNOWN_SIZE

    def _converge(
        self,
        payload: dict[str, Any],
        limit: int,
        report: ReductionReport,
    ) -> dict[str, Any]:
        """Run rule passes until the payload fits, stops shrinking, or the cap is hit."""
        reduced = payload
        current_size = report.original_size
        iteration = 0

        while current_size > limit and iteration < self.config.max_iterations:
            previous_size = current_size
            before = reduced
            failed: list[str] = []

            for rule in self.rules:
                outcome = rule.run(reduced, limit)
                if not outcome.ok:
                    logger.warning("reduction rule %s failed: %s", outcome.rule, outcome.error)
                    failed.append(outcome.rule)
                    continue
                reduced = outcome.payload

            new_size = self.size_checker.size(reduced)
            if new_size > previous_size:
                logger.debug(
                    "pass %d grew payload %d -> %d bytes, keeping previous",
                    iteration + 1, previous_size, new_size,
                )
                reduced, new_size = before, previous_size
            current_size = new_size
            report.passes.append(PassSummary(
                index=iteration + 1,
                size_before=previous_size,
                size_after=new_size,
                failed_rules=failed,
            ))

            if new_size >= previous_size * self.config.stall_ratio:
                report.stalled = new_size > limit
                break

            iteration += 1

        return reduced

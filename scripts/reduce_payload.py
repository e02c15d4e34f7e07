#!/usr/bin/env python3
"""
Reduce a captured telemetry payload from the command line.

Reads a payload (JSON object) from a file or stdin, runs it through the
PayloadReducer with the budgets from the environment, and writes the
reduced payload to stdout. Useful for replaying payloads the collector
rejected and for tuning the LONOMIA_* limits.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

# Import sibling modules
script_dir = Path(__file__).parent
sys.path.insert(0, str(script_dir))

from payload_reducer import PayloadReducer
from reducer_config import ReducerConfig


class PayloadLoadError(ValueError):
    """Raised when the input cannot be turned into a payload object."""


def load_payload(text: str) -> tuple[dict[str, Any], str]:
    """
    Parse a payload, repairing broken JSON if needed.

    Payload dumps are often cut off mid-write, so when strict parsing
    fails json_repair is used to recover what is there.

    Returns:
        Tuple of (payload, method) where method is "json" or "repaired".

    Raises:
        PayloadLoadError: if no JSON object can be recovered.
    """
    from json_repair import repair_json

    if not text.strip():
        raise PayloadLoadError("empty input")

    try:
        payload, method = json.loads(text), "json"
    except json.JSONDecodeError:
        payload, method = repair_json(text, return_objects=True), "repaired"

    if not isinstance(payload, dict) or not payload:
        raise PayloadLoadError("input is not a JSON object")

    return payload, method


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Reduce a telemetry payload to its byte budget",
        epilog=(
            "Budgets come from LONOMIA_MAX_PAYLOAD_OK (default 307200) and "
            "LONOMIA_MAX_PAYLOAD_ERROR (default 1572864)."
        ),
    )
    parser.add_argument("--file", help="JSON payload file (or use stdin)")
    parser.add_argument("--error", action="store_true", help="Use the error budget")
    parser.add_argument("--report", action="store_true", help="Print reduction summary to stderr")
    parser.add_argument("--minify", action="store_true", help="Output minified JSON")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="[reducer] %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        if args.file:
            with open(args.file, "r", encoding="utf-8") as f:
                text = f.read()
        else:
            text = sys.stdin.read()
        payload, method = load_payload(text)
    except (OSError, PayloadLoadError) as e:
        print(f"[reducer] Error: {e}", file=sys.stderr)
        return 1

    if method == "repaired":
        print("[reducer] Input was not valid JSON, repaired before reducing", file=sys.stderr)

    reducer = PayloadReducer(ReducerConfig.from_env())
    reduced, report = reducer.reduce_with_report(payload, is_error=args.error)

    if args.minify:
        print(json.dumps(reduced, separators=(",", ":"), ensure_ascii=False, default=str))
    else:
        print(json.dumps(reduced, indent=2, ensure_ascii=False, default=str))

    if args.report:
        print(f"\n{report.to_summary()}", file=sys.stderr)

    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
Pytest configuration and fixtures for payload reduction tests.
"""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pytest

# Add scripts to path for imports
scripts_dir = Path(__file__).parent.parent / "scripts"
sys.path.insert(0, str(scripts_dir))

from payload_reducer import PayloadReducer
from reducer_config import ReducerConfig


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


# =============================================================================
# Config Fixtures
# =============================================================================

@pytest.fixture
def config() -> ReducerConfig:
    """Default configuration, independent of the environment."""
    return ReducerConfig()


@pytest.fixture
def reducer(config) -> PayloadReducer:
    return PayloadReducer(config)


# =============================================================================
# Payload Fixtures
# =============================================================================

def build_payload(**sections: Any) -> dict[str, Any]:
    """A small, well-formed payload; keyword arguments replace or add sections."""
    payload: dict[str, Any] = {
        "tracking_id": "trk-0001",
        "request": {
            "method": "POST",
            "url": "https://shop.example.com/api/orders",
            "headers": {
                "content-type": ["application/json"],
                "content-length": ["42"],
                "x-request-id": ["abc-123"],
            },
            "body": {"sku": "A-1", "quantity": 2},
        },
        "response": {
            "status": 201,
            "headers": {"content-type": ["application/json"], "x-powered-by": ["php"]},
            "body": {"id": 99, "status": "created"},
        },
        "performance": {
            "execution_time": 0.182,
            "memory_start": 2048,
            "memory_end": 4096,
            "peak_memory": 8192,
            "is_streamed": False,
        },
        "queries": [
            {"sql": "select * from orders where id = ?", "bindings": [1], "time": 1.5},
        ],
        "logs": [
            {"level": "info", "message": "order created", "context": {"order": 99}},
        ],
        "http_requests": [],
        "external_requests": [],
        "cache": [],
        "jobs": [],
        "apm": {},
        "exception": None,
    }
    payload.update(sections)
    return payload


def make_logs(count: int, level: str = "info", message_size: int = 20) -> list[dict[str, Any]]:
    return [
        {
            "level": level,
            "message": f"log {i} " + "m" * message_size,
            "context": {"i": i},
            "timestamp": 1700000000 + i,
        }
        for i in range(count)
    ]


@pytest.fixture
def payload() -> dict[str, Any]:
    return build_payload()


@pytest.fixture
def payload_factory():
    """Factory fixture for payloads with custom sections."""
    return build_payload


@pytest.fixture
def sample_exception() -> dict[str, Any]:
    return {
        "class": "RuntimeException",
        "message": "Payment gateway timeout",
        "file": "/app/Services/PaymentService.php",
        "line": 118,
        "trace": [
            {"file": f"/app/vendor/frame{i}.php", "line": i, "function": f"call{i}"}
            for i in range(30)
        ],
    }

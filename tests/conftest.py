"""
Root conftest.py — Shared Pytest fixtures.

Provides fixtures for:
- Reporter configuration (fresh launch and reused launch).
- A mocked ReportPortal client whose start calls return sequential temp IDs.
- Connected and disconnected report sessions.
- Screenshot files and an error formatter.

No fixture talks to a real ReportPortal server.
"""

from __future__ import annotations

import itertools
from concurrent.futures import Future
from pathlib import Path
from typing import Any, List
from unittest.mock import MagicMock

import pytest

from product_report.client.rp_client import ItemHandle, ReportPortalClient, ReportPortalError
from product_report.config.settings import ReportConfig
from product_report.session import ReportSession


PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def resolved(value: Any = None) -> Future:
    """Return a Future already completed with ``value``."""
    future: Future = Future()
    future.set_result(value)
    return future


def failed(error: BaseException) -> Future:
    """Return a Future already failed with ``error``."""
    future: Future = Future()
    future.set_exception(error)
    return future


class ErrorFormatterStub:
    """Formats raw errors the way a runner would, with terminal colors."""

    def __init__(self) -> None:
        self.formatted: List[Any] = []

    def format_error(self, err: Any) -> str:
        self.formatted.append(err)
        return f"\x1b[31mAssertionError\x1b[39m: {err}"


def make_client(probe: Future | None = None) -> MagicMock:
    """Build a mocked ReportPortalClient with sequential temp IDs."""
    client = MagicMock(spec=ReportPortalClient)
    counter = itertools.count(1)

    client.check_connect.return_value = probe if probe is not None else resolved(
        {"full_name": "Test User"}
    )
    client.now.return_value = 1_000_000
    client.start_launch.side_effect = lambda rq: ItemHandle(
        temp_id=f"launch-{next(counter)}", promise=resolved("real-launch")
    )
    client.adopt_launch.side_effect = lambda launch_id: ItemHandle(
        temp_id=launch_id, promise=resolved(launch_id)
    )
    client.start_test_item.side_effect = lambda rq, launch_id, parent_id=None: ItemHandle(
        temp_id=f"{rq['type'].lower()}-{next(counter)}", promise=resolved("real-item")
    )
    client.send_log.side_effect = lambda *args, **kwargs: resolved({})
    client.finish_test_item.side_effect = lambda item_id, rq: resolved({})
    client.finish_launch.side_effect = lambda launch_id, rq: resolved({})
    return client


# ---------------------------------------------------------------------------
# Configuration Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def report_config() -> ReportConfig:
    """Configuration starting a fresh launch."""
    return ReportConfig(
        project="Demo",
        endpoint="https://rp.example.com/",
        token="test-token",
        description="Nightly regression",
        tags={"nightly", "smoke"},
    )


@pytest.fixture
def reuse_config() -> ReportConfig:
    """Configuration reporting into an existing launch."""
    return ReportConfig(
        project="Demo",
        endpoint="https://rp.example.com",
        token="test-token",
        launch_id_override="existing-launch-42",
    )


# ---------------------------------------------------------------------------
# Session Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def rp_client() -> MagicMock:
    """Mocked client whose connectivity probe succeeds."""
    return make_client()


@pytest.fixture
def session(report_config: ReportConfig, rp_client: MagicMock) -> ReportSession:
    """Connected session starting a fresh launch."""
    return ReportSession(report_config, client=rp_client)


@pytest.fixture
def reuse_session(reuse_config: ReportConfig, rp_client: MagicMock) -> ReportSession:
    """Connected session reporting into an existing launch."""
    return ReportSession(reuse_config, client=rp_client)


@pytest.fixture
def offline_client() -> MagicMock:
    """Mocked client whose connectivity probe fails."""
    return make_client(probe=failed(ReportPortalError("Cannot connect", status_code=401)))


@pytest.fixture
def offline_session(report_config: ReportConfig, offline_client: MagicMock) -> ReportSession:
    """Session in disconnected mode."""
    return ReportSession(report_config, client=offline_client)


@pytest.fixture
def formatter() -> ErrorFormatterStub:
    return ErrorFormatterStub()


@pytest.fixture
def screenshot_files(tmp_path: Path) -> List[Path]:
    """Two small PNG files on disk."""
    paths = []
    for idx in range(2):
        path = tmp_path / f"shot_{idx}.png"
        path.write_bytes(PNG_BYTES + bytes([idx]))
        paths.append(path)
    return paths

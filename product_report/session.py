"""
Report Session Module.

Tracks one test run's launch/fixture/step hierarchy on ReportPortal.

The session probes the server when it is created. Until the probe resolves
the session behaves as connected; once the probe has failed every operation
degrades to a no-op (or returns a placeholder ID) so the test run itself is
never blocked by reporting.

Usage::

    session = ReportSession(ReportConfig.from_env())
    launch_id = session.start_launch()
    fixture_id = session.capture_fixture_item(launch_id, "login.spec")
    session.capture_test_item(
        launch_id, fixture_id, "logs in", "passed",
        {"durationMs": 512}, formatter,
    )
    session.finish_launch(launch_id)
"""

from __future__ import annotations

import json
from concurrent.futures import Future, wait
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Set

from loguru import logger

from product_report.client.rp_client import ReportPortalClient, ReportPortalError
from product_report.config.settings import ReportConfig
from product_report.reporting.ansi import strip_ansi
from product_report.reporting.attachments import read_screenshot
from product_report.reporting.models import ErrorFormatter, TestRunInfo


UNKNOWN_LAUNCH_ID = "Unknown Launch ID"
UNKNOWN_TEST_ID = "Unknown Test ID"

SCREENSHOT_MESSAGE = "Error Screenshot"


class ConnectivityStatus(Enum):
    """Result of the connectivity probe issued at session creation."""

    PENDING = "pending"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass
class Launch:
    """
    The launch a session reports into.

    A fresh launch is started by this session and finished by it. A reused
    launch was started by another process; this session reports into it but
    never finishes it.
    """

    id: str
    owned: bool
    client: ReportPortalClient

    @classmethod
    def fresh(
        cls,
        client: ReportPortalClient,
        name: str,
        description: Optional[str] = None,
        tags: Optional[Set[str]] = None,
    ) -> "Launch":
        handle = client.start_launch({
            "name": name,
            "description": description,
            "tags": tags,
        })
        return cls(id=handle.temp_id, owned=True, client=client)

    @classmethod
    def reused(cls, client: ReportPortalClient, launch_id: str) -> "Launch":
        client.adopt_launch(launch_id)
        return cls(id=launch_id, owned=False, client=client)

    def finish(self, end_time: int) -> Optional[Future]:
        """Finish the launch if this session owns it."""
        if not self.owned:
            logger.info(f"Launch {self.id} is owned by another process, not finishing it")
            return None
        return self.client.finish_launch(self.id, {"end_time": end_time})


class ReportSession:
    """
    Reports one test run to ReportPortal.

    Attributes:
        config: Reporter configuration.
        client: ReportPortal client used for all remote calls.
        launch: The launch started by ``start_launch`` (None before that).
        fixture_list: Temporary IDs of every fixture captured, in order.
    """

    def __init__(
        self,
        config: ReportConfig,
        client: Optional[ReportPortalClient] = None,
    ) -> None:
        """
        Create the session and start the connectivity probe.

        Construction never fails because the server is unreachable; a failed
        probe only switches the session to disconnected mode.

        Args:
            config: Reporter configuration.
            client: Optional pre-built client (default: built from config).
        """
        self.config = config
        self.project_name = config.project
        self.launch_name = config.launch_name
        self.description = config.description
        self.tags = config.tags
        self.fixture_list: List[str] = []
        self.launch: Optional[Launch] = None
        self._status = ConnectivityStatus.PENDING

        self.client = client or ReportPortalClient(config)
        logger.info(
            f"ReportSession created — project={self.project_name}, "
            f"launch={self.launch_name}"
        )

        try:
            self._probe: Optional[Future] = self.client.check_connect()
        except ReportPortalError as e:
            self._probe = None
            self._mark_disconnected(e)
        else:
            self._probe.add_done_callback(self._on_probe_done)

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------

    @property
    def status(self) -> ConnectivityStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        """
        True unless the connectivity probe has failed.

        Operations issued while the probe is still pending behave as
        connected.
        """
        return self._status is not ConnectivityStatus.DISCONNECTED

    def _on_probe_done(self, probe: Future) -> None:
        error = probe.exception() if not probe.cancelled() else ReportPortalError(
            "Connectivity check was cancelled"
        )
        if error is not None:
            self._mark_disconnected(error)
            return
        self._status = ConnectivityStatus.CONNECTED
        user = probe.result() or {}
        logger.info(
            f"Connected to ReportPortal as {user.get('full_name', user.get('userId', 'unknown'))}"
        )

    def _mark_disconnected(self, error: BaseException) -> None:
        self._status = ConnectivityStatus.DISCONNECTED
        logger.warning(
            "Error connecting to ReportPortal, confirm that your details are correct: "
            f"{error}"
        )

    def wait_for_connectivity(self, timeout: Optional[float] = None) -> ConnectivityStatus:
        """
        Block until the connectivity probe resolves or ``timeout`` expires.

        Returns:
            The connectivity status after waiting (PENDING on timeout).
        """
        if self._probe is not None:
            done, _ = wait([self._probe], timeout=timeout)
            if done and self._status is ConnectivityStatus.PENDING:
                self._on_probe_done(self._probe)
        return self._status

    # ------------------------------------------------------------------
    # Launch and fixtures
    # ------------------------------------------------------------------

    def start_launch(self) -> str:
        """
        Start the launch for this run.

        With ``launch_id_override`` configured the existing launch is reused
        and its ID returned; otherwise a new launch is started and its
        temporary ID returned.

        Returns:
            Launch ID, or UNKNOWN_LAUNCH_ID when disconnected.
        """
        if not self.is_connected:
            return UNKNOWN_LAUNCH_ID

        if self.config.launch_id_override:
            self.launch = Launch.reused(self.client, self.config.launch_id_override)
        else:
            self.launch = Launch.fresh(
                self.client,
                name=self.launch_name,
                description=self.description,
                tags=self.tags,
            )
        logger.info(f"Launch started: {self.launch.id} (owned={self.launch.owned})")
        return self.launch.id

    def capture_fixture_item(self, launch_id: str, fixture_name: str) -> str:
        """
        Start a SUITE item under the launch and track it for finishing.

        Every call starts a new suite, even for a repeated name.

        Returns:
            Fixture temporary ID, or UNKNOWN_TEST_ID when disconnected.
        """
        if not self.is_connected:
            return UNKNOWN_TEST_ID

        suite = self.client.start_test_item(
            {"name": fixture_name, "type": "SUITE"}, launch_id
        )
        self.fixture_list.append(suite.temp_id)
        logger.info(f"Fixture captured: '{fixture_name}' -> {suite.temp_id}")
        return suite.temp_id

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def capture_test_item(
        self,
        launch_id: str,
        fixture_id: str,
        step_name: str,
        status: str,
        test_run_info: TestRunInfo | Mapping[str, Any],
        parent_self: ErrorFormatter,
    ) -> Optional[Future]:
        """
        Report one completed step: start it, attach screenshots and errors,
        then finish it with the given status.

        Args:
            launch_id: Launch ID from ``start_launch``.
            fixture_id: Fixture ID from ``capture_fixture_item``.
            step_name: Step display name.
            status: Step status ("passed", "failed", "skipped", ...).
            test_run_info: Duration, screenshots and raw errors.
            parent_self: Formats raw errors into text.

        Returns:
            Future of the step's finish request, or None when disconnected.

        Raises:
            OSError: If a screenshot file cannot be read.
        """
        if not self.is_connected:
            return None

        info = (
            test_run_info if isinstance(test_run_info, TestRunInfo)
            else TestRunInfo.from_dict(test_run_info)
        )

        start_time = self.client.now()
        step = self.client.start_test_item(
            {"name": step_name, "start_time": start_time, "type": "STEP"},
            launch_id,
            fixture_id,
        )

        run_info = (
            info.to_dict() if isinstance(test_run_info, TestRunInfo) else dict(test_run_info)
        )
        logger.info(json.dumps(run_info, indent=2, default=str))

        for screenshot in info.screenshots:
            attachment = read_screenshot(screenshot.screenshot_path, f"{step_name}.png")
            self.client.send_log(
                step.temp_id,
                {"status": "error", "message": SCREENSHOT_MESSAGE, "time": start_time},
                attachment,
            )

        for err in info.errs:
            message = strip_ansi(parent_self.format_error(err))
            self.client.send_log(
                step.temp_id,
                {"status": "error", "message": message, "time": start_time},
            )

        test_result: Dict[str, Any] = {
            "status": status,
            "end_time": start_time + info.duration_ms,
        }
        if status == "skipped":
            test_result["issue"] = {"issue_type": "NOT_ISSUE"}

        logger.debug(f"Step '{step_name}' -> {status} ({info.duration_ms} ms)")
        return self.client.finish_test_item(step.temp_id, test_result)

    # ------------------------------------------------------------------
    # Finishing
    # ------------------------------------------------------------------

    def finish_fixture(self) -> List[Future]:
        """
        Finish every tracked fixture.

        The tracked list is not cleared: calling this twice finishes the same
        fixtures twice.

        Returns:
            Finish futures, one per fixture (empty when disconnected).
        """
        if not self.is_connected:
            return []

        return [
            self.client.finish_test_item(fixture_id, {"end_time": self.client.now()})
            for fixture_id in self.fixture_list
        ]

    def finish_launch(self, launch_id: str) -> None:
        """
        Finish all fixtures, wait for them, then finish the launch.

        The launch finish is issued even when a fixture finish was rejected.
        A reused launch (``launch_id_override``) is never finished.

        Raises:
            ReportPortalError: If a fixture or launch finish request failed.
        """
        if not self.is_connected:
            return

        fixture_finishes = self.finish_fixture()
        wait(fixture_finishes)
        failures: List[BaseException] = [
            f.exception() for f in fixture_finishes if f.exception() is not None
        ]

        launch = self.launch
        if launch is None or launch.id != launch_id:
            launch = Launch(
                id=launch_id,
                owned=not self.config.reuses_launch,
                client=self.client,
            )

        finished = launch.finish(self.client.now())
        if finished is not None:
            try:
                finished.result()
            except ReportPortalError as e:
                failures.append(e)
            else:
                logger.info(f"Launch finished: {launch_id}")

        if failures:
            first = failures[0]
            logger.error(f"{len(failures)} finish request(s) failed for launch {launch_id}")
            if isinstance(first, ReportPortalError) and len(failures) == 1:
                raise first
            raise ReportPortalError(
                f"{len(failures)} finish request(s) failed: {first}",
                status_code=getattr(first, "status_code", None),
            ) from first

    def close(self) -> None:
        """Wait for outstanding requests and release the client."""
        self.client.close()

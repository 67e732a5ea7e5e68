"""
Pytest plugin reporting a test session to ReportPortal.

Enable with ``pytest --rp``. Settings come from the REPORT_PORTAL_*
environment variables (or a .env file), or from a settings file given with
``--rp-config``.

Mapping:
- the pytest session is the launch,
- each test module is a fixture (suite), captured on its first result,
- each test is a step: its call phase, or a failed/skipped setup, or a
  failed teardown.

Screenshots are attached from ``record_property("screenshot", path)``.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import pytest
from loguru import logger

from product_report.client.rp_client import ReportPortalError
from product_report.config.loader import ConfigLoader
from product_report.config.settings import ConfigurationError, ReportConfig
from product_report.reporting.models import Screenshot, TestRunInfo
from product_report.session import ReportSession

PLUGIN_NAME = "product_report_session"
SCREENSHOT_PROPERTY = "screenshot"


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add ReportPortal CLI options."""
    group = parser.getgroup("reportportal", "ReportPortal reporting")
    group.addoption(
        "--rp",
        action="store_true",
        default=False,
        dest="rp_enabled",
        help="Report the test session to ReportPortal. Default: False",
    )
    group.addoption(
        "--rp-config",
        default=None,
        dest="rp_config",
        help="Reporter settings file (YAML/JSON). Default: REPORT_PORTAL_* env",
    )


def pytest_configure(config: pytest.Config) -> None:
    """Register the reporting plugin when --rp is given."""
    if not config.getoption("rp_enabled", default=False):
        return
    try:
        report_config = load_report_config(config.getoption("rp_config", default=None))
    except (ConfigurationError, FileNotFoundError) as e:
        logger.warning(f"ReportPortal reporting disabled: {e}")
        return
    config.pluginmanager.register(ReportPortalPlugin(report_config), PLUGIN_NAME)


def load_report_config(path: Optional[str]) -> ReportConfig:
    """Load settings from ``path`` if given, otherwise from the environment."""
    if path:
        return ConfigLoader(config_dir=".").load(path)
    return ReportConfig.from_env()


def step_status(report: Any) -> Optional[str]:
    """
    Map a pytest phase report to a step status.

    Returns:
        "passed", "failed" or "skipped", or None when the phase is not
        reported as a step.
    """
    if report.when == "call":
        if report.skipped:
            return "skipped"
        return "failed" if report.failed else "passed"
    if report.when == "setup" and (report.failed or report.skipped):
        return "failed" if report.failed else "skipped"
    if report.when == "teardown" and report.failed:
        return "failed"
    return None


def fixture_name(nodeid: str) -> str:
    """Module part of a node ID (``tests/test_login.py``)."""
    return nodeid.split("::", 1)[0]


def step_name(nodeid: str, when: str) -> str:
    """Node ID without the module part, tagged with the phase for teardown."""
    parts = nodeid.split("::", 1)
    name = parts[1] if len(parts) > 1 else parts[0]
    return f"{name} (teardown)" if when == "teardown" else name


class ReportPortalPlugin:
    """
    Drives a ReportSession from pytest hooks.

    Also acts as the session's error formatter: pytest reports carry their
    own failure text.
    """

    def __init__(
        self,
        report_config: ReportConfig,
        session_factory: Callable[[ReportConfig], ReportSession] = ReportSession,
    ) -> None:
        self.report_config = report_config
        self._session_factory = session_factory
        self.session: Optional[ReportSession] = None
        self.launch_id: Optional[str] = None
        self._fixtures: Dict[str, str] = {}

    def format_error(self, err: Any) -> str:
        longrepr = getattr(err, "longreprtext", None)
        return longrepr if longrepr is not None else str(err)

    def _fixture_for(self, nodeid: str) -> str:
        name = fixture_name(nodeid)
        if name not in self._fixtures:
            self._fixtures[name] = self.session.capture_fixture_item(self.launch_id, name)
        return self._fixtures[name]

    @staticmethod
    def _screenshots(report: Any) -> List[Screenshot]:
        return [
            Screenshot(screenshot_path=str(value), taken_on_fail=bool(report.failed))
            for key, value in getattr(report, "user_properties", [])
            if key == SCREENSHOT_PROPERTY
        ]

    @pytest.hookimpl(trylast=True)
    def pytest_sessionstart(self, session: pytest.Session) -> None:
        self.session = self._session_factory(self.report_config)
        self.launch_id = self.session.start_launch()

    def pytest_runtest_logreport(self, report: pytest.TestReport) -> None:
        if self.session is None:
            return
        status = step_status(report)
        if status is None:
            return

        info = TestRunInfo(
            duration_ms=int(report.duration * 1000),
            screenshots=self._screenshots(report),
            errs=[report] if report.failed else [],
            skipped=status == "skipped",
        )
        try:
            self.session.capture_test_item(
                self.launch_id,
                self._fixture_for(report.nodeid),
                step_name(report.nodeid, report.when),
                status,
                info,
                self,
            )
        except OSError as e:
            logger.error(f"Failed to report {report.nodeid}: {e}")

    @pytest.hookimpl(trylast=True)
    def pytest_sessionfinish(self, session: pytest.Session, exitstatus: int) -> None:
        if self.session is None:
            return
        try:
            self.session.finish_launch(self.launch_id)
        except ReportPortalError as e:
            logger.error(f"Failed to finish ReportPortal launch {self.launch_id}: {e}")
        finally:
            self.session.close()

"""
Unit Tests for the ReportPortal Client.

Covers:
- Request building: endpoints, payloads, auth header (HTTP mocked).
- Temporary IDs resolving to server IDs.
- Dependency ordering between starts, logs and finishes.
- Adopting an existing launch.
- Error handling: HTTP errors, failed dependencies, unknown IDs.
"""

from __future__ import annotations

import gc
import json
import threading
import weakref
from typing import Any, Dict, Iterator, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest
import requests

from product_report.client.rp_client import ReportPortalClient, ReportPortalError, now_ms
from product_report.config.settings import ReportConfig
from product_report.reporting.attachments import Attachment

API = "https://rp.example.com/api/v1"
TIMEOUT = 5


class _FakeHTTP:
    """Records requests and answers them like a ReportPortal server."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []
        self.fail_urls: Dict[str, int] = {}
        self.launch_gate: Optional[threading.Event] = None
        self._lock = threading.Lock()
        self._ids = 0
        self.session = MagicMock(spec=requests.Session)
        self.session.request.side_effect = self._request
        self.session.headers = {}

    def _request(self, method: str, url: str, **kwargs: Any) -> MagicMock:
        if self.launch_gate is not None and url.endswith("/launch"):
            self.launch_gate.wait(TIMEOUT)
        with self._lock:
            self.calls.append((method, url, kwargs))
            self._ids += 1
            real_id = f"real-{self._ids}"

        response = MagicMock()
        if url in self.fail_urls:
            error = requests.exceptions.HTTPError(f"{self.fail_urls[url]} Error")
            error.response = MagicMock(status_code=self.fail_urls[url])
            response.raise_for_status.side_effect = error
            return response

        if method == "GET":
            body: Dict[str, Any] = {"full_name": "Test User"}
        elif method == "POST" and not url.endswith("/log"):
            body = {"id": real_id}
        else:
            body = {"msg": "ok"}
        response.content = json.dumps(body).encode()
        response.json.return_value = body
        return response

    def find(self, method: str, suffix: str) -> List[Tuple[str, str, Dict[str, Any]]]:
        return [c for c in self.calls if c[0] == method and c[1].endswith(suffix)]


@pytest.fixture
def http() -> _FakeHTTP:
    return _FakeHTTP()


@pytest.fixture
def client(http: _FakeHTTP) -> Iterator[ReportPortalClient]:
    config = ReportConfig(
        project="demo",
        endpoint="https://rp.example.com",
        token="secret",
        max_workers=4,
    )
    rp = ReportPortalClient(config, session=http.session)
    yield rp
    rp.close(timeout=TIMEOUT)


class TestReportPortalClient:
    """Tests for request building and temporary ID resolution."""

    def test_check_connect(self, client: ReportPortalClient, http: _FakeHTTP) -> None:
        user = client.check_connect().result(timeout=TIMEOUT)

        assert user == {"full_name": "Test User"}
        method, url, kwargs = http.calls[0]
        assert (method, url) == ("GET", f"{API}/user")
        assert kwargs["timeout"] == 30

    def test_check_connect_failure(self, client: ReportPortalClient, http: _FakeHTTP) -> None:
        http.fail_urls[f"{API}/user"] = 401

        with pytest.raises(ReportPortalError) as exc_info:
            client.check_connect().result(timeout=TIMEOUT)
        assert exc_info.value.status_code == 401

    def test_start_launch_resolves_real_id(
        self, client: ReportPortalClient, http: _FakeHTTP
    ) -> None:
        handle = client.start_launch({
            "name": "Nightly",
            "description": "desc",
            "tags": {"b", "a"},
        })

        assert handle.temp_id != handle.promise.result(timeout=TIMEOUT)
        assert handle.promise.result(timeout=TIMEOUT).startswith("real-")
        method, url, kwargs = http.find("POST", "/demo/launch")[0]
        payload = kwargs["json"]
        assert payload["name"] == "Nightly"
        assert payload["description"] == "desc"
        assert payload["tags"] == ["a", "b"]
        assert payload["mode"] == "DEFAULT"
        assert isinstance(payload["start_time"], int)

    def test_start_launch_omits_empty_fields(
        self, client: ReportPortalClient, http: _FakeHTTP
    ) -> None:
        client.start_launch({"name": "Nightly", "description": None, "tags": None}).promise.result(
            timeout=TIMEOUT
        )
        payload = http.find("POST", "/demo/launch")[0][2]["json"]
        assert "description" not in payload
        assert "tags" not in payload

    def test_suite_and_step_hierarchy(
        self, client: ReportPortalClient, http: _FakeHTTP
    ) -> None:
        launch = client.start_launch({"name": "Nightly"})
        suite = client.start_test_item({"name": "suite-A", "type": "SUITE"}, launch.temp_id)
        step = client.start_test_item(
            {"name": "step-1", "type": "STEP", "start_time": 42},
            launch.temp_id,
            suite.temp_id,
        )

        launch_real = launch.promise.result(timeout=TIMEOUT)
        suite_real = suite.promise.result(timeout=TIMEOUT)
        step.promise.result(timeout=TIMEOUT)

        suite_call = http.find("POST", "/demo/item")[0]
        assert suite_call[2]["json"] == {
            "name": "suite-A",
            "type": "SUITE",
            "start_time": suite_call[2]["json"]["start_time"],
            "launch_id": launch_real,
        }
        step_call = http.find("POST", f"/demo/item/{suite_real}")[0]
        assert step_call[2]["json"]["launch_id"] == launch_real
        assert step_call[2]["json"]["start_time"] == 42

    def test_send_log_without_attachment(
        self, client: ReportPortalClient, http: _FakeHTTP
    ) -> None:
        launch = client.start_launch({"name": "Nightly"})
        item = client.start_test_item({"name": "suite-A", "type": "SUITE"}, launch.temp_id)
        client.send_log(
            item.temp_id, {"status": "error", "message": "boom", "time": 7}
        ).result(timeout=TIMEOUT)

        payload = http.find("POST", "/demo/log")[0][2]["json"]
        assert payload == {
            "level": "error",
            "message": "boom",
            "time": 7,
            "item_id": item.promise.result(),
        }

    def test_send_log_with_attachment_is_multipart(
        self, client: ReportPortalClient, http: _FakeHTTP
    ) -> None:
        launch = client.start_launch({"name": "Nightly"})
        item = client.start_test_item({"name": "suite-A", "type": "SUITE"}, launch.temp_id)
        attachment = Attachment(name="step-1.png", content=b"\x89PNG")

        client.send_log(
            item.temp_id,
            {"status": "error", "message": "Error Screenshot", "time": 7},
            attachment,
        ).result(timeout=TIMEOUT)

        kwargs = http.find("POST", "/demo/log")[0][2]
        assert "json" not in kwargs
        (json_name, json_part), (file_name, file_part) = kwargs["files"]
        assert json_name == "json_request_part"
        body = json.loads(json_part[1])
        assert body[0]["file"] == {"name": "step-1.png"}
        assert body[0]["item_id"] == item.promise.result()
        assert file_name == "file"
        assert file_part == ("step-1.png", b"\x89PNG", "image/png")

    def test_finish_item_and_launch(
        self, client: ReportPortalClient, http: _FakeHTTP
    ) -> None:
        launch = client.start_launch({"name": "Nightly"})
        suite = client.start_test_item({"name": "suite-A", "type": "SUITE"}, launch.temp_id)

        client.finish_test_item(
            suite.temp_id,
            {"status": "skipped", "end_time": 99, "issue": {"issue_type": "NOT_ISSUE"}},
        ).result(timeout=TIMEOUT)
        client.finish_launch(launch.temp_id, {"end_time": 100}).result(timeout=TIMEOUT)

        suite_real = suite.promise.result()
        launch_real = launch.promise.result()
        item_put = http.find("PUT", f"/demo/item/{suite_real}")[0]
        assert item_put[2]["json"] == {
            "status": "skipped",
            "end_time": 99,
            "issue": {"issue_type": "NOT_ISSUE"},
        }
        launch_put = http.find("PUT", f"/demo/launch/{launch_real}/finish")[0]
        assert launch_put[2]["json"] == {"end_time": 100}

    def test_launch_finishes_after_children(
        self, client: ReportPortalClient, http: _FakeHTTP
    ) -> None:
        launch = client.start_launch({"name": "Nightly"})
        suites = [
            client.start_test_item({"name": f"suite-{i}", "type": "SUITE"}, launch.temp_id)
            for i in range(3)
        ]
        for suite in suites:
            client.finish_test_item(suite.temp_id, {"end_time": 1})
        client.finish_launch(launch.temp_id, {"end_time": 2}).result(timeout=TIMEOUT)

        order = [c[1] for c in http.calls if c[0] == "PUT"]
        assert order[-1].endswith("/finish")
        assert len(order) == 4

    def test_adopt_launch(self, client: ReportPortalClient, http: _FakeHTTP) -> None:
        """An adopted launch is addressed by its own ID and never POSTed."""
        handle = client.adopt_launch("existing-42")
        assert handle.temp_id == "existing-42"
        assert handle.promise.result(timeout=TIMEOUT) == "existing-42"

        suite = client.start_test_item({"name": "suite-A", "type": "SUITE"}, "existing-42")
        suite.promise.result(timeout=TIMEOUT)

        assert http.find("POST", "/demo/launch") == []
        assert http.find("POST", "/demo/item")[0][2]["json"]["launch_id"] == "existing-42"

    def test_unknown_temp_id(self, client: ReportPortalClient) -> None:
        with pytest.raises(ReportPortalError, match="not found"):
            client.start_test_item({"name": "x", "type": "STEP"}, "nope")
        with pytest.raises(ReportPortalError, match="not found"):
            client.finish_test_item("nope", {})

    def test_failed_parent_fails_children(
        self, client: ReportPortalClient, http: _FakeHTTP
    ) -> None:
        http.fail_urls[f"{API}/demo/launch"] = 500
        launch = client.start_launch({"name": "Nightly"})
        suite = client.start_test_item({"name": "suite-A", "type": "SUITE"}, launch.temp_id)

        with pytest.raises(ReportPortalError) as exc_info:
            launch.promise.result(timeout=TIMEOUT)
        assert exc_info.value.status_code == 500
        with pytest.raises(ReportPortalError, match="Dependent request failed"):
            suite.promise.result(timeout=TIMEOUT)
        assert http.find("POST", "/demo/item") == []

    def test_failed_log_does_not_block_finish(
        self, client: ReportPortalClient, http: _FakeHTTP
    ) -> None:
        http.fail_urls[f"{API}/demo/log"] = 400
        launch = client.start_launch({"name": "Nightly"})
        suite = client.start_test_item({"name": "suite-A", "type": "SUITE"}, launch.temp_id)
        log = client.send_log(suite.temp_id, {"status": "error", "message": "boom"})

        client.finish_test_item(suite.temp_id, {"end_time": 1}).result(timeout=TIMEOUT)
        assert log.exception(timeout=TIMEOUT) is not None

    def test_sent_attachment_is_released(
        self, client: ReportPortalClient, http: _FakeHTTP
    ) -> None:
        """Attachment bytes are not retained once the log has been sent."""
        http.launch_gate = threading.Event()
        launch = client.start_launch({"name": "Nightly"})
        suite = client.start_test_item({"name": "suite-A", "type": "SUITE"}, launch.temp_id)
        attachment = Attachment(name="a.png", content=b"\x89PNG" * 1024)
        attachment_ref = weakref.ref(attachment)

        log = client.send_log(suite.temp_id, {"status": "error", "message": "shot"}, attachment)
        del attachment
        http.launch_gate.set()

        log.result(timeout=TIMEOUT)
        client.close(timeout=TIMEOUT)
        gc.collect()

        assert attachment_ref() is None
        assert not client._outstanding

    def test_completed_requests_are_not_tracked(
        self, client: ReportPortalClient, http: _FakeHTTP
    ) -> None:
        launch = client.start_launch({"name": "Nightly"})
        client.finish_launch(launch.temp_id, {"end_time": 1}).result(timeout=TIMEOUT)

        assert client.wait_all(timeout=TIMEOUT)
        client.close(timeout=TIMEOUT)
        assert not client._outstanding

    def test_auth_header_on_default_session(self) -> None:
        config = ReportConfig(project="demo", endpoint="https://rp.example.com", token="secret")
        rp = ReportPortalClient(config)
        try:
            session = rp._get_session()
            assert session.headers["Authorization"] == "Bearer secret"
        finally:
            rp.close()

    def test_closed_client_fails_requests(self, http: _FakeHTTP) -> None:
        config = ReportConfig(project="demo", endpoint="https://rp.example.com")
        rp = ReportPortalClient(config, session=http.session)
        rp.close()

        with pytest.raises(ReportPortalError, match="closed"):
            rp.check_connect().result(timeout=TIMEOUT)

    def test_now_ms(self) -> None:
        before = now_ms()
        assert ReportPortalClient.now() >= before
        assert before > 1_500_000_000_000

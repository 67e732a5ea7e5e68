"""
ReportPortal REST API Client.

Provides an asynchronous client for the ReportPortal v1 REST API:
- Connectivity check against the current user endpoint.
- Starting and finishing launches and test items (suites, steps).
- Sending log entries, optionally with a file attachment.

Every start operation returns immediately with a temporary ID. The real
server ID resolves later on a request pool; operations addressed to a
temporary ID are issued once the requests they depend on have completed:

- a child item starts after its launch and parent have started,
- a log is sent after its item has started,
- an item (or launch) finishes after it has started and after every log and
  every already-finishing child below it has completed.
"""

from __future__ import annotations

import json
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

import requests
from loguru import logger

from product_report.config.settings import ReportConfig
from product_report.reporting.attachments import Attachment


class ReportPortalError(Exception):
    """Raised when a ReportPortal API operation fails."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def now_ms() -> int:
    """Current epoch time in milliseconds, the unit ReportPortal expects."""
    return int(time.time() * 1000)


@dataclass
class ItemHandle:
    """
    Handle returned by start operations.

    Attributes:
        temp_id: Local temporary ID, valid for all later calls on this client.
        promise: Future resolving to the server-issued ID.
    """

    temp_id: str
    promise: Future


@dataclass
class _ItemRecord:
    """Client-side bookkeeping for a launch or test item."""

    temp_id: str
    start: Future
    children: List["_ItemRecord"] = field(default_factory=list)
    logs: List[Future] = field(default_factory=list)
    finish: Optional[Future] = None

    @property
    def real_id(self) -> str:
        return self.start.result()

    def finish_dependencies(self) -> List[Future]:
        deps: List[Future] = []
        deps.extend(c.finish for c in self.children if c.finish is not None)
        deps.extend(self.logs)
        return deps


class ReportPortalClient:
    """
    Client for the ReportPortal v1 REST API.

    Usage::

        client = ReportPortalClient(ReportConfig(
            project="demo",
            endpoint="https://rp.example.com",
            token="your-token-here",
        ))
        launch = client.start_launch({"name": "Nightly"})
        suite = client.start_test_item({"name": "login", "type": "SUITE"},
                                       launch.temp_id)
        client.finish_test_item(suite.temp_id, {"end_time": client.now()})
        client.finish_launch(launch.temp_id, {"end_time": client.now()}).result()
        client.close()
    """

    ENDPOINTS = {
        "user": "/user",
        "launch": "/{project}/launch",
        "launch_finish": "/{project}/launch/{launch_id}/finish",
        "item": "/{project}/item",
        "child_item": "/{project}/item/{parent_id}",
        "item_finish": "/{project}/item/{item_id}",
        "log": "/{project}/log",
    }

    def __init__(
        self,
        config: ReportConfig,
        session: Optional[requests.Session] = None,
    ) -> None:
        """
        Initialize the ReportPortal client.

        Args:
            config: Reporter configuration (endpoint, token, project).
            session: Optional pre-built HTTP session, mainly for tests.
        """
        self._config = config
        self._session: Optional[requests.Session] = session
        self._session_lock = threading.Lock()
        self._map: Dict[str, _ItemRecord] = {}
        self._map_lock = threading.Lock()
        self._outstanding: Set[Future] = set()
        self._executor = ThreadPoolExecutor(
            max_workers=config.max_workers,
            thread_name_prefix="rp-client",
        )
        logger.info(
            f"ReportPortalClient initialized — project={config.project}, "
            f"url={config.api_url}"
        )

    def __enter__(self) -> "ReportPortalClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    @property
    def project(self) -> str:
        return self._config.project

    @staticmethod
    def now() -> int:
        """Clock helper: current time in epoch milliseconds."""
        return now_ms()

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _get_session(self) -> requests.Session:
        """Get or create an HTTP session with the Bearer token header."""
        with self._session_lock:
            if self._session is None:
                self._session = requests.Session()
                self._session.verify = self._config.verify_ssl
                self._session.headers.update({
                    "Accept": "application/json",
                    "Authorization": f"Bearer {self._config.token}",
                })
            return self._session

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> Dict[str, Any]:
        """
        Make an authenticated API request.

        Args:
            method: HTTP method (GET, POST, PUT).
            endpoint: API endpoint path below /api/v1.
            **kwargs: Additional arguments for requests (json, files).

        Returns:
            Parsed JSON response (empty dict for an empty body).

        Raises:
            ReportPortalError: If the request fails.
        """
        session = self._get_session()
        url = f"{self._config.api_url}{endpoint}"
        logger.debug(f"ReportPortal API {method} {url}")

        try:
            response = session.request(
                method=method,
                url=url,
                timeout=self._config.timeout_sec,
                **kwargs,
            )
            response.raise_for_status()
            return response.json() if response.content else {}
        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            logger.error(f"ReportPortal API HTTP error: {e} (status={status_code})")
            raise ReportPortalError(
                f"ReportPortal API request failed: {e}", status_code=status_code
            ) from e
        except requests.exceptions.ConnectionError as e:
            logger.error(f"ReportPortal API connection error: {e}")
            raise ReportPortalError(f"Cannot connect to ReportPortal: {e}") from e
        except requests.exceptions.Timeout as e:
            logger.error(f"ReportPortal API timeout: {e}")
            raise ReportPortalError(
                f"ReportPortal API request timed out after {self._config.timeout_sec}s"
            ) from e
        except ValueError as e:
            logger.error(f"ReportPortal API returned invalid JSON: {e}")
            raise ReportPortalError(f"Invalid JSON response from {url}: {e}") from e

    def _endpoint(self, name: str, **params: str) -> str:
        return self.ENDPOINTS[name].format(project=self._config.project, **params)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _schedule(
        self,
        required: List[Future],
        func: Callable[..., Any],
        *args: Any,
        after: Optional[List[Future]] = None,
    ) -> Future:
        """
        Run ``func`` on the request pool once its dependencies are done.

        ``required`` futures must succeed: if one failed, func is not run and
        the returned Future fails with ReportPortalError. ``after`` futures
        only have to complete, successfully or not.

        The callbacks left on dependency futures do not keep func's
        arguments alive once the request has been handed to the pool.

        Returns:
            Future carrying func's result.
        """
        result: Future = Future()
        dependencies = list(required) + list(after or [])
        call = [(func, args)]
        remaining = [len(dependencies)]
        lock = threading.Lock()

        def _transfer(inner: Future) -> None:
            if inner.cancelled():
                result.set_exception(ReportPortalError("Request was cancelled"))
            elif inner.exception() is not None:
                result.set_exception(inner.exception())
            else:
                result.set_result(inner.result())

        def _submit() -> None:
            request_func, request_args = call.pop()
            for dep in required:
                if dep.cancelled() or dep.exception() is not None:
                    reason = "cancelled" if dep.cancelled() else dep.exception()
                    logger.debug(f"Skipping request, dependency failed: {reason}")
                    result.set_exception(
                        ReportPortalError(f"Dependent request failed: {reason}")
                    )
                    return
            try:
                inner = self._executor.submit(request_func, *request_args)
            except RuntimeError as e:
                result.set_exception(ReportPortalError(f"Client is closed: {e}"))
                return
            inner.add_done_callback(_transfer)

        def _on_dependency_done(_: Future) -> None:
            with lock:
                remaining[0] -= 1
                ready = remaining[0] == 0
            if ready:
                _submit()

        with self._map_lock:
            self._outstanding.add(result)
        result.add_done_callback(self._forget)

        if not dependencies:
            _submit()
        else:
            for dep in dependencies:
                dep.add_done_callback(_on_dependency_done)
        return result

    def _forget(self, future: Future) -> None:
        with self._map_lock:
            self._outstanding.discard(future)

    def _get_record(self, temp_id: str) -> _ItemRecord:
        with self._map_lock:
            record = self._map.get(temp_id)
        if record is None:
            raise ReportPortalError(f"Item with temp id '{temp_id}' not found")
        return record

    def _register(self, record: _ItemRecord) -> ItemHandle:
        with self._map_lock:
            self._map[record.temp_id] = record
        return ItemHandle(temp_id=record.temp_id, promise=record.start)

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------

    def check_connect(self) -> Future:
        """
        Probe the server with the current user endpoint.

        Returns:
            Future resolving to the user info dict, or failing with
            ReportPortalError.
        """
        return self._schedule([], self._request, "GET", self._endpoint("user"))

    # ------------------------------------------------------------------
    # Launch Operations
    # ------------------------------------------------------------------

    def start_launch(self, launch_rq: Dict[str, Any]) -> ItemHandle:
        """
        Start a new launch.

        Args:
            launch_rq: Launch fields: name, description, tags, start_time, mode.

        Returns:
            ItemHandle with the launch's temporary ID.
        """
        payload: Dict[str, Any] = {
            "name": launch_rq.get("name") or self._config.launch_name,
            "start_time": launch_rq.get("start_time") or now_ms(),
            "mode": launch_rq.get("mode", "DEFAULT"),
        }
        if launch_rq.get("description") is not None:
            payload["description"] = launch_rq["description"]
        if launch_rq.get("tags"):
            payload["tags"] = sorted(launch_rq["tags"])

        logger.info(f"Starting launch: '{payload['name']}'")
        start = self._schedule([], self._post_start, self._endpoint("launch"), payload)
        return self._register(_ItemRecord(temp_id=str(uuid.uuid4()), start=start))

    def adopt_launch(self, launch_id: str) -> ItemHandle:
        """
        Register a launch started elsewhere so items can be reported into it.

        The launch is addressed by ``launch_id`` both as temporary and real ID.
        No request is made.
        """
        start: Future = Future()
        start.set_result(launch_id)
        logger.info(f"Reporting into existing launch: {launch_id}")
        return self._register(_ItemRecord(temp_id=launch_id, start=start))

    def finish_launch(self, launch_id: str, finish_rq: Dict[str, Any]) -> Future:
        """
        Finish a launch.

        Args:
            launch_id: Temporary ID of the launch.
            finish_rq: Finish fields: end_time, status.

        Returns:
            Future resolving to the server response.
        """
        record = self._get_record(launch_id)
        payload = dict(finish_rq)
        payload.setdefault("end_time", now_ms())
        record.finish = self._schedule(
            [record.start], self._put_finish, record, "launch_finish", payload,
            after=record.finish_dependencies(),
        )
        return record.finish

    # ------------------------------------------------------------------
    # Test Item Operations
    # ------------------------------------------------------------------

    def start_test_item(
        self,
        item_rq: Dict[str, Any],
        launch_id: str,
        parent_id: Optional[str] = None,
    ) -> ItemHandle:
        """
        Start a test item (SUITE or STEP) under a launch or parent item.

        Args:
            item_rq: Item fields: name, type, start_time, description.
            launch_id: Temporary ID of the launch.
            parent_id: Temporary ID of the parent item, if nested.

        Returns:
            ItemHandle with the item's temporary ID.

        Raises:
            ReportPortalError: If launch_id or parent_id is unknown.
        """
        launch = self._get_record(launch_id)
        parent = self._get_record(parent_id) if parent_id else None

        payload = dict(item_rq)
        payload.setdefault("type", "STEP")
        payload.setdefault("start_time", now_ms())
        deps = [launch.start] + ([parent.start] if parent else [])

        logger.debug(f"Starting {payload['type']}: '{payload.get('name')}'")
        start = self._schedule(deps, self._post_item, launch, parent, payload)
        record = _ItemRecord(temp_id=str(uuid.uuid4()), start=start)
        (parent or launch).children.append(record)
        return self._register(record)

    def finish_test_item(self, item_id: str, finish_rq: Dict[str, Any]) -> Future:
        """
        Finish a test item.

        Args:
            item_id: Temporary ID of the item.
            finish_rq: Finish fields: end_time, status, issue.

        Returns:
            Future resolving to the server response.
        """
        record = self._get_record(item_id)
        payload = dict(finish_rq)
        payload.setdefault("end_time", now_ms())
        record.finish = self._schedule(
            [record.start], self._put_finish, record, "item_finish", payload,
            after=record.finish_dependencies(),
        )
        return record.finish

    # ------------------------------------------------------------------
    # Log Operations
    # ------------------------------------------------------------------

    def send_log(
        self,
        item_id: str,
        log_rq: Dict[str, Any],
        attachment: Optional[Attachment] = None,
    ) -> Future:
        """
        Send a log entry for a test item.

        Args:
            item_id: Temporary ID of the item.
            log_rq: Log fields: status (log level), message, time.
            attachment: Optional file to attach to the entry.

        Returns:
            Future resolving to the server response.
        """
        record = self._get_record(item_id)
        payload = {
            "level": log_rq.get("status", "info"),
            "message": log_rq.get("message", ""),
            "time": log_rq.get("time") or now_ms(),
        }
        future = self._schedule([record.start], self._post_log, record, payload, attachment)
        record.logs.append(future)
        return future

    # ------------------------------------------------------------------
    # Request bodies (run on the request pool)
    # ------------------------------------------------------------------

    def _post_start(self, endpoint: str, payload: Dict[str, Any]) -> str:
        response = self._request("POST", endpoint, json=payload)
        real_id = response.get("id")
        if not real_id:
            raise ReportPortalError(f"No id in start response: {response}")
        return real_id

    def _post_item(
        self,
        launch: _ItemRecord,
        parent: Optional[_ItemRecord],
        payload: Dict[str, Any],
    ) -> str:
        body = dict(payload, launch_id=launch.real_id)
        if parent is not None:
            endpoint = self._endpoint("child_item", parent_id=parent.real_id)
        else:
            endpoint = self._endpoint("item")
        return self._post_start(endpoint, body)

    def _put_finish(
        self, record: _ItemRecord, endpoint_name: str, payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        if endpoint_name == "launch_finish":
            endpoint = self._endpoint(endpoint_name, launch_id=record.real_id)
        else:
            endpoint = self._endpoint(endpoint_name, item_id=record.real_id)
        return self._request("PUT", endpoint, json=payload)

    def _post_log(
        self,
        record: _ItemRecord,
        payload: Dict[str, Any],
        attachment: Optional[Attachment],
    ) -> Dict[str, Any]:
        body = dict(payload, item_id=record.real_id)
        if attachment is None:
            return self._request("POST", self._endpoint("log"), json=body)

        body["file"] = {"name": attachment.name}
        files = [
            ("json_request_part", (None, json.dumps([body]), "application/json")),
            ("file", (attachment.name, attachment.content, attachment.mime_type)),
        ]
        return self._request("POST", self._endpoint("log"), files=files)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def wait_all(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for every request issued so far.

        Returns:
            True if all requests completed within the timeout.
        """
        with self._map_lock:
            pending = list(self._outstanding)
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self, timeout: Optional[float] = None) -> None:
        """Wait for outstanding requests, then shut down the pool and session."""
        if not self.wait_all(timeout):
            logger.warning("Closing ReportPortal client with requests still pending")
        self._executor.shutdown(wait=True)
        if self._session is not None:
            self._session.close()
            self._session = None
        logger.debug("ReportPortal client closed")

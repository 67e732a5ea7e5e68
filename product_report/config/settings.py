"""
Reporter Settings.

Defines the explicit configuration consumed by a ReportSession. Every option
the reporter recognizes is a field of ReportConfig; nothing is read from the
environment inside the session itself.

Environment variables (read by ``ReportConfig.from_env``):

    REPORT_PORTAL_BASE_URL      Server URL, without the /api/v1 suffix.
    REPORT_PORTAL_TOKEN         API token (sent as a Bearer token).
    REPORT_PORTAL_PROJECT_NAME  Project name (required).
    REPORT_PORTAL_LAUNCH_NAME   Launch name (defaults to the project name).
    REPORT_PORTAL_DESCRIPTION   Optional launch description.
    REPORT_PORTAL_TAGS          Optional comma-separated tag list.
    REPORT_PORTAL_LAUNCH_ID     Optional existing launch to report into.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Set

from dotenv import dotenv_values
from loguru import logger


class ConfigurationError(Exception):
    """Raised when reporter configuration is missing or invalid."""

    pass


ENV_PREFIX = "REPORT_PORTAL_"

ENV_KEYS = {
    "endpoint": "REPORT_PORTAL_BASE_URL",
    "token": "REPORT_PORTAL_TOKEN",
    "project": "REPORT_PORTAL_PROJECT_NAME",
    "launch_name": "REPORT_PORTAL_LAUNCH_NAME",
    "description": "REPORT_PORTAL_DESCRIPTION",
    "tags": "REPORT_PORTAL_TAGS",
    "launch_id_override": "REPORT_PORTAL_LAUNCH_ID",
}

API_SUFFIX = "/api/v1"


def parse_tags(raw: Optional[str | Iterable[str]]) -> Optional[Set[str]]:
    """
    Parse a tag list into a set of strings.

    Accepts either a comma-separated string or an iterable of strings.
    Whitespace around entries is stripped and empty entries are dropped.

    Returns:
        Set of tags, or None when ``raw`` is None.
    """
    if raw is None:
        return None
    items = raw.split(",") if isinstance(raw, str) else raw
    return {str(item).strip() for item in items if str(item).strip()}


@dataclass
class ReportConfig:
    """
    Configuration for a reporting session.

    Attributes:
        project: ReportPortal project name.
        endpoint: Server base URL (e.g., "https://rp.example.com").
        token: API token for Bearer authentication.
        launch_name: Launch display name. Defaults to ``project``.
        description: Optional launch description.
        tags: Optional set of launch tags.
        launch_id_override: Existing launch ID to attach to instead of
            starting a new launch. The session never finishes such a launch.
        timeout_sec: Per-request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates.
        max_workers: Size of the client's request pool.
    """

    project: str
    endpoint: str = ""
    token: str = ""
    launch_name: str = ""
    description: Optional[str] = None
    tags: Optional[Set[str]] = None
    launch_id_override: Optional[str] = None
    timeout_sec: int = 30
    verify_ssl: bool = True
    max_workers: int = 8

    def __post_init__(self) -> None:
        if not self.project:
            raise ConfigurationError(
                f"Project name is required (set {ENV_KEYS['project']})"
            )
        self.endpoint = (self.endpoint or "").rstrip("/")
        if not self.launch_name:
            self.launch_name = self.project
        if self.tags is not None and not isinstance(self.tags, set):
            self.tags = parse_tags(self.tags)
        if not self.launch_id_override:
            self.launch_id_override = None

    @property
    def api_url(self) -> str:
        """Base URL of the v1 REST API."""
        return f"{self.endpoint}{API_SUFFIX}"

    @property
    def reuses_launch(self) -> bool:
        """True when reporting into a launch owned by another process."""
        return self.launch_id_override is not None

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        dotenv_path: Optional[str] = None,
    ) -> "ReportConfig":
        """
        Build the configuration from environment variables.

        Values from a .env file are used only for variables not already set
        in ``environ``.

        Args:
            environ: Mapping to read from (default: os.environ).
            dotenv_path: Explicit .env path. When None and ``environ`` is also
                None, a .env file in the current working directory is used
                if present.

        Returns:
            ReportConfig instance.

        Raises:
            ConfigurationError: If the project name is missing.
        """
        env: Dict[str, Optional[str]] = {}
        dotenv_file = dotenv_path
        if dotenv_file is None and environ is None:
            dotenv_file = os.path.join(os.getcwd(), ".env")
        if dotenv_file and os.path.isfile(dotenv_file):
            env.update(
                {k: v for k, v in dotenv_values(dotenv_file).items()
                 if k.startswith(ENV_PREFIX)}
            )
            logger.debug(f"Loaded reporter settings from {dotenv_file}")
        source = os.environ if environ is None else environ
        env.update({k: v for k, v in source.items() if k.startswith(ENV_PREFIX)})

        config = cls(
            project=env.get(ENV_KEYS["project"]) or "",
            endpoint=env.get(ENV_KEYS["endpoint"]) or "",
            token=env.get(ENV_KEYS["token"]) or "",
            launch_name=env.get(ENV_KEYS["launch_name"]) or "",
            description=env.get(ENV_KEYS["description"]),
            tags=parse_tags(env.get(ENV_KEYS["tags"])),
            launch_id_override=env.get(ENV_KEYS["launch_id_override"]),
        )
        logger.info(
            f"ReportConfig loaded from environment — project={config.project}, "
            f"launch={config.launch_name}, url={config.endpoint}"
        )
        return config

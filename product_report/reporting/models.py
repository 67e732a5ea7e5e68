"""
Test Run Info Models.

Data passed by a test runner when a step completes: its duration, any
screenshots taken, and the raw error objects the runner collected.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Protocol, runtime_checkable


@runtime_checkable
class ErrorFormatter(Protocol):
    """Converts a raw runner error object into human-readable text."""

    def format_error(self, err: Any) -> str:
        ...


@dataclass
class Screenshot:
    """
    A screenshot taken during a step.

    Attributes:
        screenshot_path: Path of the image file on disk.
        taken_on_fail: Whether the runner captured it because the step failed.
    """

    screenshot_path: str
    taken_on_fail: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Screenshot":
        path = data.get("screenshotPath", data.get("screenshot_path"))
        if not path:
            raise ValueError(f"Screenshot entry has no path: {dict(data)}")
        return cls(
            screenshot_path=str(path),
            taken_on_fail=bool(data.get("takenOnFail", data.get("taken_on_fail", False))),
        )


@dataclass
class TestRunInfo:
    """
    Result details for one reported step.

    Attributes:
        duration_ms: Step duration in milliseconds.
        screenshots: Screenshots to attach, in order.
        errs: Raw error objects, formatted by the caller's ErrorFormatter.
        skipped: Whether the runner skipped the step.
    """

    __test__ = False

    duration_ms: int = 0
    screenshots: List[Screenshot] = field(default_factory=list)
    errs: List[Any] = field(default_factory=list)
    skipped: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TestRunInfo":
        """
        Build from a runner-style mapping.

        Accepts camelCase keys (``durationMs``, ``screenshots[].screenshotPath``,
        ``errs``) as well as their snake_case forms.
        """
        screenshots = [
            s if isinstance(s, Screenshot) else Screenshot.from_dict(s)
            for s in data.get("screenshots") or []
        ]
        return cls(
            duration_ms=round(float(data.get("durationMs", data.get("duration_ms", 0)) or 0)),
            screenshots=screenshots,
            errs=list(data.get("errs") or []),
            skipped=bool(data.get("skipped", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "duration_ms": self.duration_ms,
            "screenshots": [asdict(s) for s in self.screenshots],
            "errs": list(self.errs),
            "skipped": self.skipped,
        }

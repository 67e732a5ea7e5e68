"""
Screenshot Attachments.

Reads screenshot files into in-memory attachments for log entries.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

PNG_MIME_TYPE = "image/png"


@dataclass(frozen=True)
class Attachment:
    """A file attached to a log entry."""

    name: str
    content: bytes
    mime_type: str = PNG_MIME_TYPE


def read_screenshot(path: str | Path, name: str) -> Attachment:
    """
    Read a screenshot file as a PNG attachment.

    Args:
        path: Screenshot file path.
        name: Attachment file name shown in the report.

    Raises:
        OSError: If the file is missing or unreadable.
    """
    return Attachment(name=name, content=Path(path).read_bytes())

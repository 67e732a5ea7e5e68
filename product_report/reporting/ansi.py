"""Terminal escape sequence removal for error text sent to ReportPortal."""

from __future__ import annotations

import re

# CSI sequences (colors, cursor movement) and OSC sequences (hyperlinks, titles).
_ANSI_PATTERN = re.compile(
    r"[\u001B\u009B][\[\]()#;?]*"
    r"(?:(?:(?:(?:;[-a-zA-Z\d/#&.:=?%@~_]+)*"
    r"|[a-zA-Z\d]+(?:;[-a-zA-Z\d/#&.:=?%@~_]*)*)?\u0007)"
    r"|(?:(?:\d{1,4}(?:;\d{0,4})*)?[\dA-PR-TZcf-nq-uy=><~]))"
)


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from ``text``."""
    return _ANSI_PATTERN.sub("", text)

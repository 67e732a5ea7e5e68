"""
Reporting Module.

Handles the data passed from a test runner into a report session:
- Test run info records (duration, screenshots, errors).
- Screenshot attachments read as PNG byte buffers.
- Terminal color code stripping for error text.
"""

from product_report.reporting.ansi import strip_ansi
from product_report.reporting.attachments import Attachment, read_screenshot
from product_report.reporting.models import ErrorFormatter, Screenshot, TestRunInfo

__all__ = [
    "Attachment",
    "ErrorFormatter",
    "Screenshot",
    "TestRunInfo",
    "read_screenshot",
    "strip_ansi",
]

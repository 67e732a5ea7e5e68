"""
ReportPortal Client Module.

Provides an asynchronous client for the ReportPortal REST API:
- Connectivity checks.
- Launch and test item lifecycle with temporary IDs.
- Log entries and file attachments.
"""

from product_report.client.rp_client import (
    ItemHandle,
    ReportPortalClient,
    ReportPortalError,
    now_ms,
)

__all__ = ["ItemHandle", "ReportPortalClient", "ReportPortalError", "now_ms"]

"""
Product Report - ReportPortal reporting for automated test runs.

This package contains the core logic for:
- Session: launch/fixture/step hierarchy tracking with a disconnected fallback.
- Client: asynchronous ReportPortal REST client with temporary item IDs.
- Configuration: environment, .env and file based reporter settings.
- Reporting: screenshot attachments and error text cleanup.
"""

__version__ = "0.1.0"

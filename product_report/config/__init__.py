"""
Configuration Management Module.

Handles loading and validation of:
- Reporter settings from the process environment (and .env files).
- Reporter settings files (JSON/YAML) validated against a JSON schema.
"""

from product_report.config.loader import ConfigLoader
from product_report.config.settings import ConfigurationError, ReportConfig

__all__ = ["ConfigLoader", "ConfigurationError", "ReportConfig"]

"""
Product Report - Test Suite Package.

Unit tests for the session, the ReportPortal client, configuration loading,
reporting helpers and the pytest plugin. No test needs a live server.
"""

"""Tests for the systest package.

This package contains unit and integration tests validating suite
parsing, provider registration, verification and the execution
lifecycle of declarative system-test suites.
"""

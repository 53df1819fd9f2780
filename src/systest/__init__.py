"""Declarative system-test orchestrator for containerized services.

The `systest` package reads YAML suites of test cases, provisions the
services under test in isolated per-case environments, drives inputs
into them, observes their outputs and reports a verdict per case.

Key features:
- immutable, validated suite model built by a location-aware parser;
- pluggable providers selected by kind through an extension registry;
- concurrent provisioning and observation within a case, with
  unconditional teardown;
- ordered and unordered expectation matching with timeout bounds;
- machine-readable JSON reports and JUnit-style XML results.
"""

"""Immutable model of declarative system-test suites.

Defines Pydantic models describing services under test, input actions,
expected outputs and their grouping into cases and suites, together with
their structural and referential validation rules.
"""

from .cases import (
    CaseDefinition,
    Defaults,
    Disabled,
    Location,
    SuiteDefinition,
    TestCase,
    TestSuite,
)
from .expectations import AnyExpectation, Expectation, MatchMode, NoExtraOutput, Ordering
from .inputs import Input
from .services import ServiceDefinition, ServiceRef

__all__ = (
    'AnyExpectation',
    'CaseDefinition',
    'Defaults',
    'Disabled',
    'Expectation',
    'Input',
    'Location',
    'MatchMode',
    'NoExtraOutput',
    'Ordering',
    'ServiceDefinition',
    'ServiceRef',
    'SuiteDefinition',
    'TestCase',
    'TestSuite',
)

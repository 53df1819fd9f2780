"""Payload matchers.

This module defines the comparison rules used to decide whether an
observed payload satisfies an expected one, and a helper rendering the
difference between the two for reports.

Two matching modes are supported:
    exact: equal type and value; numbers compare by value.
    partial: every expected mapping key must be present and match
        recursively, every expected sequence item must match some
        observed item. Scalars compare exactly.
"""

from difflib import unified_diff
from typing import TYPE_CHECKING

from yaml import safe_dump

from systest.values import MAPPINGS, SCALARS, SEQUENCES

if TYPE_CHECKING:
    from systest.schema import MatchMode
    from systest.values import RuntimeValue

NUMBERS = (int, float)


def _is_number(value: 'RuntimeValue') -> bool:
    """Check whether a value is a number, excluding booleans."""
    return isinstance(value, NUMBERS) and not isinstance(value, bool)


def _exact_match(actual: 'RuntimeValue', expected: 'RuntimeValue') -> bool:
    """Perform strict equality comparison.

    Numbers compare by value, anything else must share its type.
    """
    if _is_number(actual) and _is_number(expected):
        return actual == expected

    return (
        isinstance(actual, type(expected))
        and isinstance(expected, type(actual))
        and actual == expected
    )


def _seq_partial_match(actual: 'RuntimeValue', expected: 'RuntimeValue') -> bool:
    """Perform partial match for sequences.

    A partial sequence match succeeds if each expected element matches
    at least one element in the actual sequence.
    """
    if not isinstance(actual, SEQUENCES) or not isinstance(expected, SEQUENCES):
        return False

    return all(
        any(_partial_match(actual_item, expected_item) for actual_item in actual)
        for expected_item in expected
    )


def _map_partial_match(actual: 'RuntimeValue', expected: 'RuntimeValue') -> bool:
    """Perform partial match for mappings.

    Every expected key must be present and its value must match.
    """
    if not isinstance(actual, MAPPINGS) or not isinstance(expected, MAPPINGS):
        return False

    return all(
        key in actual and _partial_match(actual[key], value)
        for key, value in expected.items()
    )


def _partial_match(actual: 'RuntimeValue', expected: 'RuntimeValue') -> bool:
    """Recursively perform partial matching.

    Raises:
        TypeError: If the expected value type is unsupported.
    """
    if expected is None or isinstance(expected, SCALARS):
        return _exact_match(actual, expected)

    if isinstance(expected, SEQUENCES):
        return _seq_partial_match(actual, expected)

    if isinstance(expected, MAPPINGS):
        return _map_partial_match(actual, expected)

    raise TypeError(f'Unsupported type {expected.__class__!r}')  # pragma: no cover


def matches(actual: 'RuntimeValue', expected: 'RuntimeValue',
            mode: 'MatchMode' = 'exact') -> bool:
    """Check whether an observed payload satisfies an expected one.

    Args:
        actual: Observed payload.
        expected: Expected payload.
        mode: Matching mode, `exact` or `partial`.

    Returns:
        True if the payloads match.
    """
    if mode == 'partial':
        return _partial_match(actual, expected)

    return _exact_match(actual, expected)


def diff(actual: 'RuntimeValue', expected: 'RuntimeValue') -> str:
    """Render a unified diff between an expected and an observed payload.

    Args:
        actual: Observed payload.
        expected: Expected payload.

    Returns:
        Unified diff of the YAML representations of both payloads.
    """
    return ''.join(unified_diff(
        safe_dump(expected, indent=2, sort_keys=True).splitlines(keepends=True),
        safe_dump(actual, indent=2, sort_keys=True).splitlines(keepends=True),
        fromfile='expected',
        tofile='observed',
    ))

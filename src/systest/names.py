"""Identifier types and duration parsing rules.

This module defines name patterns and strongly-typed aliases used to
validate service names, channel names, provider kinds and durations.

The rules defined here form part of the public suite document contract
and are relied upon by the parser, providers and tooling.
"""

from re import ASCII
from re import compile as regexp
from typing import Annotated, Any

from pydantic import BeforeValidator, Field

#: Base pattern for all identifiers.
_NAME_PATTERN = r'[a-zA-Z][\w-]*'

#: Compiled pattern for provider kinds.
#: Supports builtin kinds ("loopback") and plugin-qualified kinds ("kafka.topic").
KIND_PATTERN = regexp(
    rf'^((?P<plugin>{_NAME_PATTERN})\.)?(?P<name>{_NAME_PATTERN})$',
    flags=ASCII,
)

#: Compiled pattern for service and channel names.
NAME_PATTERN = regexp(
    rf'^(?P<name>{_NAME_PATTERN})$',
    flags=ASCII,
)

#: Compiled pattern for durations: a number followed by an optional unit.
DURATION_PATTERN = regexp(r'^(?P<value>\d+(\.\d+)?)\s*(?P<unit>ms|s|m|h)?$')

#: Units for durations, in seconds.
_DURATION_UNITS = {
    'ms': 0.001,
    's': 1,
    'm': 60,
    'h': 3_600,
}


def parse_duration(value: Any) -> Any:  # noqa: ANN401
    """Convert a human-authored duration into seconds.

    Numbers are taken as seconds. Strings may carry a unit suffix,
    for example `250ms`, `5s`, `1.5m` or `1h`. Other values are passed
    through unchanged for the float validator to reject.

    Args:
        value: Raw duration value from a document.

    Returns:
        The duration in seconds, or the value as is.

    Raises:
        ValueError: If a string does not match the duration format.
    """
    if not isinstance(value, str):
        return value

    matched = DURATION_PATTERN.match(value.strip())
    if not matched:
        raise ValueError(f'invalid duration {value!r}')

    unit = matched.group('unit') or 's'

    return float(matched.group('value')) * _DURATION_UNITS[unit]


Kind = Annotated[
    str, Field(
        pattern=rf'^({_NAME_PATTERN}\.)?{_NAME_PATTERN}$',
        title='Provider kind',
        description=(
            'Tag selecting the provider that provisions and drives a service. '
            'Either a builtin kind (for example, `loopback`) or a '
            'plugin-qualified kind using dot notation (for example, `kafka.topic`).'
        ),
        examples=[
            'loopback',
            'container',
            'kafka.topic',
        ],
    ),
]

Name = Annotated[
    str, Field(
        pattern=rf'^{_NAME_PATTERN}$',
        title='Identifier',
        description=(
            'Name of a service or channel. Must start with a letter and may '
            'contain letters, digits, underscores or dashes.'
        ),
        examples=[
            'orders',
            'order-events',
        ],
    ),
]

Duration = Annotated[
    float,
    BeforeValidator(parse_duration),
    Field(
        ge=0,
        title='Duration',
        description=(
            'Duration in seconds, or a string with a unit suffix '
            '(`ms`, `s`, `m`, `h`).'
        ),
        examples=[
            1.5,
            '250ms',
            '5s',
        ],
    ),
]

"""Expectation definitions.

Expectations describe outputs a case must (or must not) observe on a
service channel, together with matching, ordering and timing tolerances.
"""

from typing import Annotated, Any, Literal

from pydantic import Discriminator, Field, Tag

from systest.models import DescribedMixin, SchemaModel
from systest.names import Duration, Name  # noqa: TC001
from systest.values import Value  # noqa: TC001

#: Ordering of an expectation relative to its siblings on the same channel.
type Ordering = Literal['ordered', 'unordered']

#: Matcher used to compare an expected payload with an observed one.
type MatchMode = Literal['exact', 'partial']


class BaseExpectation(DescribedMixin, SchemaModel):
    """Common fields of all expectations."""

    service: Name = Field(
        title='Observed service',
        description='Name of the service whose output is observed.',
    )

    channel: Name | None = Field(
        default=None,
        title='Observed channel',
        description=(
            'Provider-specific output channel. '
            'When omitted, the provider default output channel is used.'
        ),
    )

    timeout: Duration | None = Field(
        default=None,
        title='Observation timeout',
        description=(
            'Length of the observation window, measured from the end of '
            'input dispatch. Falls back to the suite or runtime default.'
        ),
    )


class Expectation(BaseExpectation):
    """Expected output record on a service channel."""

    payload: Value = Field(
        title='Expected payload',
        description='Value the observed record payload must satisfy.',
    )

    match: MatchMode = Field(
        default='exact',
        title='Matching mode',
        description=(
            '`exact` requires equal type and value; `partial` requires every '
            'expected key or item to be present in the observed payload.'
        ),
    )

    ordering: Ordering | None = Field(
        default=None,
        title='Ordering mode',
        description=(
            '`ordered` expectations must match records in declaration order; '
            '`unordered` ones may match in any arrival order. '
            'Falls back to the suite default.'
        ),
    )

    optional: bool = Field(
        default=False,
        title='Optional flag',
        description=(
            'If true, a timeout of this expectation is reported but does not '
            'fail the case. Mismatches still fail the case.'
        ),
    )


class NoExtraOutput(BaseExpectation):
    """Explicit assertion that a channel emits nothing unexpected.

    Records on the channel that are not claimed by another expectation
    within the window fail this expectation.
    """

    no_extra_output: Literal[True] = Field(
        title='No extra output marker',
        description='Marks the expectation as a "no extra output" assertion.',
    )


def _expectation_tag(value: Any) -> str:  # noqa: ANN401
    """Select an expectation variant for raw or validated values."""
    if isinstance(value, dict):
        return 'no-extra-output' if 'no_extra_output' in value else 'expected-output'

    return 'no-extra-output' if isinstance(value, NoExtraOutput) else 'expected-output'


#: Any expectation declared by a case.
AnyExpectation = Annotated[
    Annotated[Expectation, Tag('expected-output')] | Annotated[NoExtraOutput, Tag('no-extra-output')],
    Discriminator(_expectation_tag),
]

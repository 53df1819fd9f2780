"""Input action definitions."""

from pydantic import Field

from systest.models import DescribedMixin, SchemaModel
from systest.names import Duration, Name  # noqa: TC001
from systest.values import Value  # noqa: TC001


class Input(DescribedMixin, SchemaModel):
    """Action injecting a payload into a service.

    Inputs of a case are dispatched strictly in declaration order.
    A delay postpones the dispatch relative to the scheduled time of the
    previous input on the case clock, so slow dispatches do not shift
    the timing of later inputs.
    """

    service: Name = Field(
        title='Target service',
        description='Name of the service receiving the payload.',
    )

    channel: Name | None = Field(
        default=None,
        title='Target channel',
        description=(
            'Provider-specific channel (topic, endpoint, stream) to inject into. '
            'When omitted, the provider default input channel is used.'
        ),
    )

    payload: Value = Field(
        default=None,
        title='Payload',
        description='Data injected into the service.',
    )

    delay: Duration = Field(
        default=0.0,
        title='Dispatch delay',
        description=(
            'Time to wait, on the case clock, after the previous input was '
            'scheduled before dispatching this input.'
        ),
    )

"""Provider service-provider interface.

A provider bridges the orchestrator to one concrete kind of service:
it provisions live instances, injects inputs into them, captures their
outputs and releases them. The orchestrator only ever talks to services
through this interface, so new protocols are supported by registering
new providers rather than by changing the engine.

All operations are coroutines and must honor cancellation: when the
orchestrator cancels a provisioning, injection or capture task, the
provider is expected to stop promptly and leave the handle in a state
where `teardown` can still release it.
"""

from abc import ABC, abstractmethod
from asyncio import Queue, get_running_loop
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import Field

from systest.models import SchemaModel
from systest.values import RuntimeValue, Value, normalize

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

if TYPE_CHECKING:
    from systest.schema import Input, ServiceDefinition


class ObservedRecord(SchemaModel):
    """Single output record emitted by a service."""

    service: str = Field(
        title='Service name',
        description='Logical name of the service that emitted the record.',
    )

    channel: str = Field(
        title='Channel',
        description='Output channel the record was captured on.',
    )

    payload: Value = Field(
        default=None,
        title='Payload',
        description='Normalized payload of the record.',
    )

    timestamp: float = Field(
        default=0.0,
        title='Timestamp',
        description='Capture time on the event loop clock.',
    )

    sequence: int = Field(
        default=0,
        title='Arrival sequence',
        description='Arrival position of the record within its channel.',
    )

    elapsed: float = Field(
        default=0.0,
        title='Elapsed time',
        description=(
            'Seconds between the opening of the observation window and '
            'the arrival of the record. Negative for records that arrived '
            'while inputs were still being dispatched.'
        ),
    )


class Handle:
    """Live runtime handle of one provisioned service.

    A handle is owned by exactly one case execution. Providers keep
    transport-specific state in `resource` and may buffer captured output
    in `outputs`. Only teardown transitions a handle to the released
    state, and it does so at most once.

    Attributes:
        service: Logical name of the service.
        kind: Kind of the provider that created the handle.
        resource: Provider-specific runtime object (client, container, ...).
        options: Provider-specific settings resolved at provisioning.
        outputs: Buffer of records awaiting capture.
    """

    def __init__(self, service: str, kind: str,
                 resource: Any = None, **options: Any) -> None:  # noqa: ANN401
        """Initialize a handle.

        Args:
            service: Logical name of the service.
            kind: Kind of the provider that created the handle.
            resource: Provider-specific runtime object.
            options: Provider-specific settings.
        """
        self.service = service
        self.kind = kind
        self.resource = resource
        self.options = options

        self.outputs: Queue[ObservedRecord] = Queue()

        self._released = False

    def __repr__(self) -> str:
        """String representation."""
        state = 'released' if self._released else 'live'
        return f'<Handle {self.kind}:{self.service} {state}>'

    @property
    def released(self) -> bool:
        """Whether the handle has been released."""
        return self._released

    def release(self) -> bool:
        """Transition the handle to the released state.

        Returns:
            True on the first call, False if the handle was already released.
        """
        if self._released:
            return False

        self._released = True

        return True

    def record(self, channel: str, payload: RuntimeValue) -> ObservedRecord:
        """Create an output record stamped with the current loop time.

        Args:
            channel: Output channel of the record.
            payload: Raw payload, normalized into the record.

        Returns:
            The new record.
        """
        return ObservedRecord(
            service=self.service,
            channel=channel,
            payload=normalize(payload),
            timestamp=get_running_loop().time(),
        )

    def emit(self, channel: str, payload: RuntimeValue) -> ObservedRecord:
        """Buffer an output record for capture.

        Returns:
            The buffered record.
        """
        record = self.record(channel, payload)
        self.outputs.put_nowait(record)

        return record


class Provider(ABC):
    """Base class of all providers.

    Subclasses declare their `kind` and default channels and implement
    the lifecycle coroutines. The default `capture` implementation drains
    the handle output buffer, which suits providers that push records
    with `Handle.emit`.
    """

    #: Kind tag the provider is registered under.
    kind: ClassVar[str]

    #: Channel used by inputs that do not declare one.
    input_channel: ClassVar[str] = 'input'
    #: Channel used by expectations that do not declare one.
    output_channel: ClassVar[str] = 'output'

    def __repr__(self) -> str:
        """String representation."""
        return f'<{type(self).__name__} {self.kind!r}>'

    @abstractmethod
    async def provision(self, definition: 'ServiceDefinition') -> Handle:
        """Start a fresh service instance and wait until it is ready.

        Args:
            definition: Definition of the service to provision.

        Returns:
            Live handle of the provisioned instance.

        Raises:
            ProvisioningError: If the service can not be started.
        """

    @abstractmethod
    async def inject(self, handle: Handle, action: 'Input') -> RuntimeValue:
        """Dispatch an input into a live service.

        Args:
            handle: Live handle of the target service.
            action: Input to dispatch.

        Returns:
            Provider-specific dispatch result.

        Raises:
            DispatchError: If the input can not be delivered.
        """

    async def capture(self, handle: Handle, since: float) -> 'AsyncIterator[ObservedRecord]':
        """Lazily yield records emitted by a live service.

        The iterator is unbounded; the orchestrator bounds it in time by
        cancelling the consuming task when the observation window closes.

        Args:
            handle: Live handle of the observed service.
            since: Loop time before which records are discarded.

        Yields:
            Observed records in arrival order.
        """
        while True:
            record = await handle.outputs.get()
            if record.timestamp >= since:
                yield record

    @abstractmethod
    async def teardown(self, handle: Handle) -> None:
        """Release every resource held by a handle.

        Args:
            handle: Handle to release.
        """

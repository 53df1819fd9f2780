"""In-process loopback provider.

The loopback provider implements the reference echo contract used to
exercise the orchestrator without external infrastructure: every
injected payload is emitted back as an output record, optionally after a
configured delay.

Supported service configuration:
    startup: Time to wait before the service reports readiness.
    delay: Time between an injection and the matching output record.
    channel: Output channel of echoed records (defaults to `output`).
"""

import logging
from asyncio import TimerHandle, get_running_loop, sleep
from typing import TYPE_CHECKING

from systest.extensions import Handle, Provider
from systest.names import parse_duration

if TYPE_CHECKING:
    from systest.schema import Input, ServiceDefinition

LOGGER = logging.getLogger(__name__)


class LoopbackProvider(Provider):
    """Provider echoing injected payloads back as output records."""

    kind = 'loopback'

    input_channel = 'input'
    output_channel = 'output'

    async def provision(self, definition: 'ServiceDefinition') -> Handle:
        """Create an echo service, waiting for the configured startup time."""
        if startup := parse_duration(definition.config.get('startup', 0)):
            await sleep(startup)

        LOGGER.debug('Loopback service %r is ready', definition.name)

        return Handle(
            definition.name, self.kind, resource=[],
            delay=parse_duration(definition.config.get('delay', 0)),
            channel=definition.config.get('channel', self.output_channel),
        )

    async def inject(self, handle: Handle, action: 'Input') -> None:
        """Schedule the echo of an injected payload."""
        delay = handle.options['delay']
        channel = handle.options['channel']

        if not delay:
            handle.emit(channel, action.payload)
            return

        timer: TimerHandle = get_running_loop().call_later(
            delay, handle.emit, channel, action.payload,
        )
        handle.resource.append(timer)

    async def teardown(self, handle: Handle) -> None:
        """Cancel pending echoes."""
        for timer in handle.resource:
            timer.cancel()

        handle.resource.clear()

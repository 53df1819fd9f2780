"""Docker container provider.

Provisions one fresh container per case execution through the Docker
SDK, waits until it is running (or healthy, when the image defines a
health check), injects inputs by executing commands inside it and
captures the lines it writes to stdout.

Supported service configuration:
    image: Image to run (required).
    command: Command overriding the image default.
    environment: Environment variables of the container.
    ports: Port bindings, as accepted by the Docker SDK.
    network: Network to attach the container to.
    poll_interval: Pause between readiness and log polls.
    stop_timeout: Grace period before the container is killed on teardown.

Input payloads are commands (a string or a list of arguments) or
mappings with `command`, `environment` and `workdir` keys. Results of
executed commands are recorded on the `exec` channel. Stdout lines are
recorded on the `stdout` channel, decoded from JSON when possible.

All SDK calls are blocking and run in worker threads.
"""

import logging
from asyncio import CancelledError, create_task, get_running_loop, shield, sleep, to_thread
from json import loads
from time import time
from typing import TYPE_CHECKING, Any

import docker
from docker.errors import DockerException

from systest.errors import CaptureError, DispatchError, ProvisioningError
from systest.extensions import Handle, ObservedRecord, Provider
from systest.names import parse_duration
from systest.values import MAPPINGS

if TYPE_CHECKING:
    from asyncio import Task
    from collections.abc import AsyncIterator

if TYPE_CHECKING:
    from docker import DockerClient
    from docker.models.containers import Container

if TYPE_CHECKING:
    from systest.schema import Input, ServiceDefinition

LOGGER = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_STOP_TIMEOUT = 10

#: Container states that can never become ready.
TERMINAL_STATES = frozenset({'exited', 'dead', 'removing'})

#: Label attached to every container started by the provider.
LABEL = 'systest.service'


class ContainerProvider(Provider):
    """Provider running services as Docker containers."""

    kind = 'container'

    input_channel = 'exec'
    output_channel = 'stdout'

    def __init__(self, client: 'DockerClient | None' = None) -> None:
        """Initialize the provider.

        Args:
            client: Docker client to use. When omitted, a client is created
                from the environment on first provisioning.
        """
        self._client = client
        self._discards: 'set[Task[None]]' = set()

    async def get_client(self) -> 'DockerClient':
        """Get the Docker client, creating it from the environment if needed."""
        if self._client is None:
            self._client = await to_thread(docker.from_env)

        return self._client

    async def provision(self, definition: 'ServiceDefinition') -> Handle:
        """Start a container and wait until it is ready."""
        config = definition.config

        if not isinstance(image := config.get('image'), str):
            raise ProvisioningError(
                'Container service requires an `image` string',
                service=definition.name,
            )

        try:
            client = await self.get_client()

        except DockerException as base:
            raise ProvisioningError(
                f'Failed to connect to Docker: {base}',
                service=definition.name,
            ) from base

        starting = create_task(to_thread(
            client.containers.run,
            image,
            command=config.get('command'),
            environment=config.get('environment'),
            ports=config.get('ports'),
            network=config.get('network'),
            labels={LABEL: definition.name},
            detach=True,
        ))

        try:
            container: Container = await shield(starting)

        except CancelledError:
            discard = create_task(self._discard(starting, definition.name))
            self._discards.add(discard)
            discard.add_done_callback(self._discards.discard)
            await shield(discard)
            raise

        except DockerException as base:
            raise ProvisioningError(
                f'Failed to start container from {image!r}: {base}',
                service=definition.name,
            ) from base

        LOGGER.info('Started container %s for service %r', container.short_id, definition.name)

        handle = Handle(
            definition.name, self.kind, resource=container,
            poll_interval=parse_duration(config.get('poll_interval', DEFAULT_POLL_INTERVAL)),
            stop_timeout=int(parse_duration(config.get('stop_timeout', DEFAULT_STOP_TIMEOUT))),
        )

        try:
            await self._wait_ready(handle)

        except BaseException:
            await to_thread(container.remove, force=True)
            raise

        return handle

    async def inject(self, handle: Handle, action: 'Input') -> dict[str, Any]:
        """Execute a command inside the container."""
        container: Container = handle.resource

        options = action.payload if isinstance(action.payload, MAPPINGS) else {
            'command': action.payload,
        }
        if not options.get('command'):
            raise DispatchError('Container input requires a command', service=handle.service)

        try:
            exit_code, output = await to_thread(
                container.exec_run,
                options['command'],
                environment=options.get('environment'),
                workdir=options.get('workdir'),
            )

        except DockerException as base:
            raise DispatchError(
                f'Failed to execute command in {container.short_id}: {base}',
                service=handle.service,
            ) from base

        result = {
            'exit_code': exit_code,
            'output': self._decode_line(output.decode('utf-8', errors='replace').strip()),
        }
        handle.emit(self.input_channel, result)

        return result

    async def capture(self, handle: Handle, since: float) -> 'AsyncIterator[ObservedRecord]':
        """Yield buffered records and stdout lines written after capture started.

        The log is read from the wall-clock instant matching `since`, so
        lines written before the case inputs are never captured, even if
        the first poll only runs after an input was executed.
        """
        container: Container = handle.resource

        loop = get_running_loop()
        started = time() - (loop.time() - since)
        consumed = 0

        while True:
            while not handle.outputs.empty():
                if (record := handle.outputs.get_nowait()).timestamp >= since:
                    yield record

            try:
                logs = await to_thread(container.logs, stdout=True, stderr=False, since=started)

            except DockerException as base:
                raise CaptureError(
                    f'Failed to read logs of {container.short_id}: {base}',
                    service=handle.service,
                ) from base

            # a line still being written is left for the next poll
            text = logs.decode('utf-8', errors='replace')
            complete = text[:text.rfind('\n') + 1]

            for line in complete[consumed:].splitlines():
                if line.strip():
                    yield handle.record(self.output_channel, self._decode_line(line))

            consumed = max(consumed, len(complete))

            await sleep(handle.options['poll_interval'])

    async def teardown(self, handle: Handle) -> None:
        """Stop and remove the container."""
        container: Container = handle.resource

        try:
            await to_thread(container.stop, timeout=handle.options['stop_timeout'])

        finally:
            await to_thread(container.remove, force=True)

        LOGGER.info('Removed container %s of service %r', container.short_id, handle.service)

    async def _discard(self, starting: 'Task[Container]', service: str) -> None:
        """Remove a container whose start outlived a cancelled provisioning."""
        try:
            container = await starting

        except DockerException:
            return

        LOGGER.warning('Removing container %s of cancelled service %r', container.short_id, service)

        await to_thread(container.remove, force=True)

    async def _wait_ready(self, handle: Handle) -> None:
        """Poll container state until it is running and healthy.

        The wait is unbounded; the caller bounds it with a timeout.

        Raises:
            ProvisioningError: If the container stops before becoming ready.
        """
        container: Container = handle.resource

        while True:
            await to_thread(container.reload)

            state = container.attrs.get('State', {})
            if state.get('Status') in TERMINAL_STATES:
                logs = await to_thread(container.logs, tail=20)
                raise ProvisioningError(
                    f'Container {container.short_id} stopped with code '
                    f'{state.get('ExitCode')}: {logs.decode('utf-8', errors='replace').strip()}',
                    service=handle.service,
                )

            if health := state.get('Health'):
                if health.get('Status') == 'healthy':
                    return
            elif state.get('Running'):
                return

            await sleep(handle.options['poll_interval'])

    @staticmethod
    def _decode_line(line: str) -> Any:  # noqa: ANN401
        """Decode a line as JSON, falling back to the raw text."""
        try:
            return loads(line)

        except ValueError:
            return line

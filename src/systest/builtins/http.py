"""HTTP service provider.

Drives an already reachable HTTP service: provisioning probes its
readiness endpoint, every input is sent as a request and every response
is recorded as an output record on the `responses` channel.

Supported service configuration:
    base_url: Base URL of the service (required).
    readiness_path: Path polled until it answers with a 2xx status.
    probe_interval: Pause between readiness probes.
    headers: Headers sent with every request.
    request_timeout: Timeout of a single request.

Input payloads are mappings with optional `method` (`POST` by default),
`path`, `params`, `headers`, `json` and `content` keys. Input channels
are ignored.
"""

import logging
from asyncio import sleep
from typing import TYPE_CHECKING, Any

import httpx

from systest.errors import DispatchError, ProvisioningError
from systest.extensions import Handle, Provider
from systest.names import parse_duration
from systest.values import MAPPINGS

if TYPE_CHECKING:
    from systest.schema import Input, ServiceDefinition

LOGGER = logging.getLogger(__name__)

DEFAULT_PROBE_INTERVAL = 0.2
DEFAULT_REQUEST_TIMEOUT = 10.0


class HttpProvider(Provider):
    """Provider sending HTTP requests and recording responses."""

    kind = 'http'

    input_channel = 'requests'
    output_channel = 'responses'

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Initialize the provider.

        Args:
            transport: Optional transport shared by every client, for
                example an `httpx.MockTransport`.
        """
        self.transport = transport

    async def provision(self, definition: 'ServiceDefinition') -> Handle:
        """Create a client and wait for the readiness endpoint."""
        config = definition.config

        if not isinstance(base_url := config.get('base_url'), str):
            raise ProvisioningError(
                'HTTP service requires a `base_url` string',
                service=definition.name,
            )

        client = httpx.AsyncClient(
            base_url=base_url,
            headers=config.get('headers') or {},
            timeout=parse_duration(config.get('request_timeout', DEFAULT_REQUEST_TIMEOUT)),
            transport=self.transport,
        )

        try:
            if readiness_path := config.get('readiness_path'):
                interval = parse_duration(config.get('probe_interval', DEFAULT_PROBE_INTERVAL))
                await self._wait_ready(client, str(readiness_path), interval)

        except BaseException:
            await client.aclose()
            raise

        LOGGER.debug('HTTP service %r is ready at %s', definition.name, base_url)

        return Handle(definition.name, self.kind, resource=client)

    async def inject(self, handle: Handle, action: 'Input') -> httpx.Response:
        """Send a request and buffer its response."""
        client: httpx.AsyncClient = handle.resource
        request = self._build_request(action.payload)

        try:
            response = await client.request(**request)

        except httpx.HTTPError as base:
            raise DispatchError(
                f'Request {request['method']} {request['url']} failed: {base}',
                service=handle.service,
            ) from base

        handle.emit(self.output_channel, {
            'status': response.status_code,
            'body': self._decode_body(response),
        })

        return response

    async def teardown(self, handle: Handle) -> None:
        """Close the client."""
        await handle.resource.aclose()

    @staticmethod
    async def _wait_ready(client: httpx.AsyncClient, path: str, interval: float) -> None:
        """Poll a readiness endpoint until it answers with a 2xx status.

        The wait is unbounded; the caller bounds it with a timeout.
        """
        while True:
            try:
                response = await client.get(path)
                if response.is_success:
                    return
                LOGGER.debug('Readiness probe %s answered %d', path, response.status_code)

            except httpx.TransportError as error:
                LOGGER.debug('Readiness probe %s failed: %s', path, error)

            await sleep(interval)

    @staticmethod
    def _build_request(payload: Any) -> dict[str, Any]:  # noqa: ANN401
        """Build `httpx.AsyncClient.request` arguments from an input payload."""
        payload = payload if isinstance(payload, MAPPINGS) else {'json': payload}

        request: dict[str, Any] = {
            'method': str(payload.get('method', 'POST')).upper(),
            'url': payload.get('path', ''),
        }

        for key in ('params', 'headers', 'json', 'content'):
            if payload.get(key) is not None:
                request[key] = payload[key]

        return request

    @staticmethod
    def _decode_body(response: httpx.Response) -> Any:  # noqa: ANN401
        """Decode a response body as JSON when possible, as text otherwise."""
        if not response.content:
            return None

        if response.headers.get('content-type', '').startswith('application/json'):
            try:
                return response.json()

            except ValueError:
                LOGGER.debug('Response declared JSON but failed to decode')

        return response.text

"""Case-scoped execution environment.

An execution environment is the arena of one case execution: it owns
the live handles of every service provisioned for the case and releases
all of them at a single teardown point. Environments are never shared
between cases, and no process-wide list of live environments exists.
"""

import logging
from typing import TYPE_CHECKING
from warnings import warn

from systest.errors import TeardownWarning

if TYPE_CHECKING:
    from systest.extensions import Handle, Provider

LOGGER = logging.getLogger(__name__)


class ExecutionEnvironment:
    """Live handles of the services of one case execution.

    Attributes:
        case_name: Name of the owning case.
        warnings: Teardown issues collected during release.
    """

    def __init__(self, case_name: str) -> None:
        """Initialize an empty environment.

        Args:
            case_name: Name of the owning case.
        """
        self.case_name = case_name

        self.warnings: list[str] = []

        self._handles: dict[str, tuple[Provider, Handle]] = {}

    def __contains__(self, service: object) -> bool:
        """Check whether a service has a live handle."""
        return service in self._handles

    def __len__(self) -> int:
        """Number of adopted handles."""
        return len(self._handles)

    def adopt(self, provider: 'Provider', handle: 'Handle') -> None:
        """Take ownership of a freshly provisioned handle.

        Args:
            provider: Provider that created the handle.
            handle: Live handle to own.

        Raises:
            ValueError: If a handle for the same service is already owned.
        """
        if handle.service in self._handles:
            raise ValueError(f'Service {handle.service!r} is already provisioned')

        self._handles[handle.service] = (provider, handle)

    def get(self, service: str) -> tuple['Provider', 'Handle']:
        """Get the provider and live handle of a service.

        Raises:
            KeyError: If the service has no live handle.
        """
        return self._handles[service]

    def items(self) -> list[tuple['Provider', 'Handle']]:
        """Providers and handles in provisioning order."""
        return list(self._handles.values())

    async def release(self) -> None:
        """Tear down every owned handle in reverse provisioning order.

        Each handle is torn down at most once, even if release is called
        again. Teardown failures are logged, emitted as `TeardownWarning`
        and collected in `warnings`; they never propagate.
        """
        for provider, handle in reversed(self.items()):
            if not handle.release():
                continue

            try:
                await provider.teardown(handle)

            except Exception as error:  # noqa: BLE001
                message = f'Teardown of service {handle.service!r} failed: {error}'
                LOGGER.warning('Case %r: %s', self.case_name, message)
                warn(message, category=TeardownWarning, stacklevel=2)
                self.warnings.append(message)

            else:
                LOGGER.debug('Case %r: service %r torn down', self.case_name, handle.service)

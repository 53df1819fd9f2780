"""Provider plugin discovery.

Plugins are third-party packages exposing a `Plugin` object through the
`systest_providers` entry point group. Every provider of a plugin is
registered under a kind namespaced by the plugin name.

A broken plugin is reported as a `PluginWarning` and skipped, so one
faulty package does not prevent running suites that never use it. On
strict mode the same issues raise a `PluginError` instead.
"""

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING
from warnings import warn

from pydantic import ValidationError

from systest.errors import PluginError, PluginWarning
from systest.extensions import Plugin

if TYPE_CHECKING:
    from importlib.metadata import EntryPoint

if TYPE_CHECKING:
    from systest.extensions import Provider

LOGGER = logging.getLogger(__name__)

#: Entry point group scanned for provider plugins.
ENTRYPOINT_GROUP = 'systest_providers'


class ProvidersLoaderMixin(ABC):
    """Plugin discovery for provider registries.

    Registries implement `register`; the mixin turns entry points into
    `register` calls and decides how plugin issues are reported.

    Attributes:
        strict_mode: Whether plugin issues raise instead of warning.
    """

    strict_mode: bool = False

    @abstractmethod
    def register(self, kind: str, provider: 'Provider',
                 entrypoint: 'EntryPoint | None' = None) -> None:
        """Register a provider under a kind."""

    def add_provider(self, provider: 'Provider',
                     entrypoint: 'EntryPoint | None' = None,
                     namespace: str | None = None) -> None:
        """Register a provider under its kind, prefixed by a plugin name.

        Args:
            provider: Provider instance.
            entrypoint: Entry point the provider comes from, if any.
            namespace: Plugin name prefixed to the kind, if any.
        """
        self.register(
            f'{namespace}.{provider.kind}' if namespace else provider.kind,
            provider,
            entrypoint,
        )

    def report_plugin_issue(self, message: str,
                            entrypoint: 'EntryPoint | None' = None,
                            cause: BaseException | None = None) -> None:
        """Warn about a plugin issue, or raise it on strict mode.

        Args:
            message: Description of the issue.
            entrypoint: Entry point the issue relates to, if any.
            cause: Exception that caused the issue, if any.

        Raises:
            PluginError: On strict mode.
        """
        if self.strict_mode:
            raise PluginError(message, entrypoint=entrypoint) from cause

        warn(message, category=PluginWarning, stacklevel=3)

    def load_plugins(self) -> None:
        """Discover plugins and register their providers.

        Raises:
            PluginError: On the first plugin issue, on strict mode.
        """
        from importlib.metadata import entry_points  # noqa: PLC0415

        for entrypoint in entry_points().select(group=ENTRYPOINT_GROUP):
            if (plugin := self._load_plugin(entrypoint)) is None:
                continue

            LOGGER.debug(
                'Plugin %r from %r provides %d provider(s)',
                plugin.name, entrypoint.value, len(plugin.providers),
            )

            for provider in plugin.providers:
                self.add_provider(provider, entrypoint, namespace=plugin.name)

    def _load_plugin(self, entrypoint: 'EntryPoint') -> Plugin | None:
        """Import the object behind an entry point.

        Returns:
            The plugin, or `None` if the entry point was reported as broken.
        """
        try:
            plugin = entrypoint.load()

        except ValidationError as error:
            self.report_plugin_issue(
                f'Failed to validate entrypoint {entrypoint.name!r}',
                entrypoint, error,
            )
            return None

        except Exception as error:  # noqa: BLE001
            self.report_plugin_issue(
                f'Failed to load entrypoint {entrypoint.name!r}',
                entrypoint, error,
            )
            return None

        if isinstance(plugin, Plugin):
            return plugin

        self.report_plugin_issue(
            f'Loaded from entrypoint {entrypoint.name!r} object is not a plugin',
            entrypoint,
        )

        return None

"""Extension registry of providers keyed by kind.

The registry is populated once, before a run starts: builtin providers
are registered first, then providers contributed by plugins. Once frozen
the registry is read-only and lookups are served from an immutable
mapping, so concurrent cases can resolve providers safely.
"""

from types import MappingProxyType
from typing import TYPE_CHECKING

from systest.builtins import container, http, loopback
from systest.errors import PluginError, UnknownKindError

from .loader import ProvidersLoaderMixin

if TYPE_CHECKING:
    from collections.abc import Mapping
    from importlib.metadata import EntryPoint

if TYPE_CHECKING:
    from systest.extensions import Provider


class ProviderRegistry(ProvidersLoaderMixin):
    """Registry resolving provider kinds to provider instances.

    Registering a kind twice shadows the earlier provider with a warning,
    or fails in strict mode.
    """

    def __init__(self, strict: bool = False, *,
                 builtins: bool = True,
                 plugins: bool = True) -> None:
        """Initialize the registry.

        Args:
            strict: Whether to raise errors on plugin loading failures and
                shadowed kinds instead of emitting warnings.
            builtins: Whether to register the bundled providers.
            plugins: Whether to discover and register plugin providers.

        Raises:
            PluginError: If a plugin fails to load on strict mode.
        """
        self.strict_mode = strict

        self._providers: dict[str, Provider] = {}
        self._frozen: Mapping[str, Provider] | None = None

        if builtins:
            self.add_provider(loopback.LoopbackProvider())
            self.add_provider(container.ContainerProvider())
            self.add_provider(http.HttpProvider())

        if plugins:
            self.load_plugins()

    def __contains__(self, kind: object) -> bool:
        """Check whether a kind is registered."""
        return kind in self.providers

    @property
    def frozen(self) -> bool:
        """Whether the registry is read-only."""
        return self._frozen is not None

    @property
    def providers(self) -> 'Mapping[str, Provider]':
        """Registered providers by kind."""
        if self._frozen is not None:
            return self._frozen

        return MappingProxyType(self._providers)

    def register(self, kind: str, provider: 'Provider',
                 entrypoint: 'EntryPoint | None' = None) -> None:
        """Register a provider under a kind.

        Args:
            kind: Kind tag, optionally plugin-qualified.
            provider: Provider instance.
            entrypoint: Entry point the provider was loaded from, if any.

        Raises:
            PluginError: If the registry is frozen, or if the kind is
                already registered on strict mode.
        """
        if self._frozen is not None:
            raise PluginError(f'Can not register {kind!r}: registry is frozen')

        module = entrypoint.value if entrypoint else type(provider).__module__

        if kind in self._providers:
            self.report_plugin_issue(
                f'Provider {kind!r} from {module!r} is shadowing an existing',
                entrypoint,
            )

        self._providers[kind] = provider

    def resolve(self, kind: str) -> 'Provider':
        """Resolve the provider registered for a kind.

        Args:
            kind: Kind tag to resolve.

        Returns:
            The registered provider.

        Raises:
            UnknownKindError: If no provider is registered for the kind.
        """
        try:
            return self.providers[kind]

        except KeyError:
            raise UnknownKindError(kind) from None

    def freeze(self) -> 'ProviderRegistry':
        """Make the registry read-only.

        Returns:
            The registry itself.
        """
        if self._frozen is None:
            self._frozen = MappingProxyType(dict(self._providers))

        return self

"""Declarative provider plugin definition.

This module defines the top-level declarative container used to ship
providers from a third-party package.

A plugin is registered through the `systest_providers` entry point group.
Its providers are registered under kinds namespaced by the plugin name,
for example a provider of kind `topic` in the plugin `kafka` becomes
available as `kafka.topic`.
"""

from pydantic import Field

from systest.models import SchemaModel
from systest.names import Name  # noqa: TC001

from .providers import Handle, ObservedRecord, Provider

__all__ = (
    'Handle',
    'ObservedRecord',
    'Plugin',
    'Provider',
)


class Plugin(SchemaModel):
    """Declarative container for plugin providers.

    Plugin instances are declarative descriptions only. They are consumed
    by the provider registry to register providers and detect naming
    conflicts.
    """

    name: Name = Field(
        title='Plugin namespace',
        description=(
            'Logical namespace of the plugin. '
            'Used to qualify provider kinds and for diagnostics.'
        ),
    )

    version: int = Field(
        default=1,
        title='Provider API version',
        description=(
            'Version of the provider interface the plugin targets. '
            'This is not a semantic version of the plugin implementation.'
        ),
    )

    providers: list[Provider] = Field(
        default_factory=list,
        title='Providers',
        description='Provider instances contributed by the plugin.',
    )

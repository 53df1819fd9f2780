"""Service definitions and references.

A service definition is the runtime descriptor of one service under
test: which provider kind drives it, how it is configured and how long
it may take to become ready. A service reference binds a logical name
inside a test case to such a definition.
"""

from pydantic import Field

from systest.models import DescribedMixin, SchemaModel
from systest.names import Duration, Kind, Name  # noqa: TC001
from systest.values import Value  # noqa: TC001


class ServiceDefinition(DescribedMixin, SchemaModel):
    """Descriptor of a service that can be provisioned by a provider."""

    name: Name = Field(
        title='Service name',
        description=(
            'Logical name of the service within the suite.\n'
            'Inputs and expectations refer to the service by this name.'
        ),
    )

    kind: Kind = Field(
        title='Provider kind',
        description=(
            'Kind tag selecting the registered provider responsible for '
            'provisioning the service, injecting inputs and capturing outputs.'
        ),
    )

    config: dict[str, Value] = Field(
        default_factory=dict,
        title='Provider configuration',
        description=(
            'Provider-specific configuration, for example a container image, '
            'environment variables or a base URL.'
        ),
    )

    readiness_timeout: Duration | None = Field(
        default=None,
        title='Readiness timeout',
        description=(
            'Maximum time to wait for the service to become ready.\n'
            'Falls back to the suite or runtime provisioning timeout.'
        ),
    )


class ServiceRef(SchemaModel):
    """Reference from a test case to a participating service.

    References are resolved by the parser, so a reference always carries
    the full definition. Each case execution provisions its own live
    instance of every referenced service.
    """

    name: Name = Field(
        title='Service name',
        description='Logical name of the referenced service.',
    )

    definition: ServiceDefinition = Field(
        title='Service definition',
        description='Resolved definition of the referenced service.',
    )

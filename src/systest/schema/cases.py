"""Test suite and test case models.

Two families of models live here. Document models (`SuiteDefinition`,
`CaseDefinition`) mirror the authored YAML structure one to one and are
used for structural validation and JSON Schema generation. Resolved
models (`TestSuite`, `TestCase`) are produced by the parser after
referential validation: service references are bound to definitions,
suite defaults are applied and source locations are attached.
"""

from typing import ClassVar

from pydantic import Field, model_validator

from systest.models import DescribedMixin, SchemaModel
from systest.names import Duration, Name  # noqa: TC001

from .expectations import AnyExpectation, Expectation, Ordering  # noqa: TC001
from .inputs import Input  # noqa: TC001
from .services import ServiceDefinition, ServiceRef  # noqa: TC001


class Disabled(SchemaModel):
    """Marker disabling a suite or a case.

    Disabled elements are never executed, but they are still reported
    with a skipped verdict.
    """

    reason: str = Field(
        title='Reason',
        description='Human-readable reason why the element is disabled.',
    )

    issue: str | None = Field(
        default=None,
        title='Issue',
        description='Optional link to the issue tracking the re-enablement.',
    )


class Location(SchemaModel):
    """Source location of a suite element."""

    filename: str | None = None
    line: int | None = None


class Defaults(SchemaModel):
    """Suite-level defaults applied uniformly to every case.

    Unset timeouts stay unset in the model and are resolved against the
    runtime settings once, at run start.
    """

    provision_timeout: Duration | None = Field(
        default=None,
        title='Provisioning timeout',
        description='Default readiness timeout for every service.',
    )

    expectation_timeout: Duration | None = Field(
        default=None,
        title='Expectation timeout',
        description='Default observation window for every expectation.',
    )

    case_timeout: Duration | None = Field(
        default=None,
        title='Case timeout',
        description=(
            'Overall time budget of a case. When omitted, the budget is '
            'derived from the phase timeouts of the case.'
        ),
    )

    ordering: Ordering = Field(
        default='unordered',
        title='Default ordering',
        description='Ordering mode of expectations that do not declare one.',
    )


class CaseMixin(DescribedMixin, SchemaModel):
    """Fields shared by the authored and the resolved case models."""

    name: Name = Field(
        title='Case name',
        description='Name of the test case, unique within the suite.',
    )

    notes: str | None = Field(
        default=None,
        title='Notes',
        description='Free-form notes attached to the case.',
    )

    disabled: Disabled | None = Field(
        default=None,
        title='Disabled marker',
        description='When set, the case is skipped.',
    )


class CaseDefinition(CaseMixin):
    """Test case as authored in a suite document."""

    services: list[Name] | None = Field(
        default=None,
        title='Participating services',
        description=(
            'Names of suite services participating in the case. '
            'When omitted, every service of the suite participates.'
        ),
    )

    inputs: list[Input] = Field(
        default_factory=list,
        title='Inputs',
        description='Actions dispatched in declaration order.',
    )

    expectations: list[AnyExpectation] = Field(
        default_factory=list,
        title='Expectations',
        description='Outputs the case must observe.',
    )


class SuiteDefinition(DescribedMixin, SchemaModel):
    """Test suite as authored in a suite document."""

    name: Name = Field(
        title='Suite name',
        description='Name of the test suite.',
    )

    disabled: Disabled | None = Field(
        default=None,
        title='Disabled marker',
        description='When set, every case of the suite is skipped.',
    )

    defaults: Defaults = Field(
        default_factory=Defaults,
        title='Defaults',
        description='Timeouts and ordering applied to every case.',
    )

    services: list[ServiceDefinition] = Field(
        default_factory=list,
        title='Services',
        description='Catalog of services cases may reference.',
    )

    cases: list[CaseDefinition] = Field(
        min_length=1,
        title='Test cases',
        description='Ordered sequence of test cases.',
    )


class TestCase(CaseMixin):
    """Resolved, executable test case."""

    __test__: ClassVar[bool] = False

    services: tuple[ServiceRef, ...] = ()
    inputs: tuple[Input, ...] = ()
    expectations: tuple[AnyExpectation, ...] = ()

    location: Location = Field(default_factory=Location)

    @model_validator(mode='after')
    def check_references(self) -> 'TestCase':
        """Ensure every input and expectation targets a declared service."""
        declared = {ref.name for ref in self.services}

        for position, item in enumerate(self.inputs, start=1):
            if item.service not in declared:
                raise ValueError(
                    f'input {position} targets undeclared service {item.service!r}',
                )

        for position, item in enumerate(self.expectations, start=1):
            if item.service not in declared:
                raise ValueError(
                    f'expectation {position} observes undeclared service {item.service!r}',
                )

        return self

    @property
    def payload_expectations(self) -> tuple[Expectation, ...]:
        """Expectations matching payloads, excluding absence assertions."""
        return tuple(
            item
            for item in self.expectations
            if isinstance(item, Expectation)
        )

    def get_service(self, name: str) -> ServiceRef:
        """Get a participating service by its name.

        Raises:
            KeyError: If the service does not participate in the case.
        """
        for ref in self.services:
            if ref.name == name:
                return ref

        raise KeyError(name)


class TestSuite(DescribedMixin, SchemaModel):
    """Resolved, executable test suite."""

    __test__: ClassVar[bool] = False

    name: Name
    disabled: Disabled | None = None
    defaults: Defaults = Field(default_factory=Defaults)

    services: tuple[ServiceDefinition, ...] = ()
    cases: tuple[TestCase, ...] = Field(min_length=1)

    location: Location = Field(default_factory=Location)

    @model_validator(mode='after')
    def check_unique_names(self) -> 'TestSuite':
        """Ensure case names and service names are unique."""
        for label, names in (
            ('service', [item.name for item in self.services]),
            ('case', [item.name for item in self.cases]),
        ):
            seen: set[str] = set()
            for name in names:
                if name in seen:
                    raise ValueError(f'duplicate {label} name {name!r}')
                seen.add(name)

        return self


"""Per-expectation results, per-case verdicts and the suite report.

All result types are immutable once produced. A report always holds
exactly one verdict per declared test case, in declaration order.
"""

from datetime import datetime  # noqa: TC003
from typing import Literal

from pydantic import Field, computed_field

from systest.errors import ExpectationError, MismatchError, ObservationTimeout
from systest.models import SchemaModel
from systest.values import Value  # noqa: TC001

#: Outcome of a single expectation.
type ExpectationStatus = Literal['matched', 'mismatched', 'timed_out', 'unexpected']

#: Outcome of a test case.
type VerdictStatus = Literal['passed', 'failed', 'error', 'skipped']

#: Lifecycle states of a case execution.
type CaseState = Literal[
    'pending',
    'provisioning',
    'ready',
    'injecting',
    'observing',
    'verifying',
    'torn_down',
    'failed',
]

#: Machine-readable causes of unsuccessful verdicts.
type VerdictCause = Literal[
    'expectation',
    'provisioning',
    'timeout',
    'aborted',
    'dispatch',
    'capture',
    'disabled',
    'internal',
]


class ExpectationResult(SchemaModel):
    """Outcome of one expectation of a case."""

    index: int = Field(
        title='Expectation index',
        description='Zero-based position of the expectation within its case.',
    )

    service: str
    channel: str

    status: ExpectationStatus
    optional: bool = False

    expected: Value = None
    observed: Value = None

    diff: str | None = Field(
        default=None,
        title='Payload diff',
        description='Unified diff between expected and nearest observed payload.',
    )

    message: str = ''

    @property
    def failed(self) -> bool:
        """Whether the result fails its case.

        Optional expectations that time out are reported but do not fail.
        """
        if self.status == 'matched':
            return False

        return not (self.optional and self.status == 'timed_out')

    def as_error(self, case_name: str | None = None) -> ExpectationError | None:
        """Convert an unsuccessful result into an exception.

        Args:
            case_name: Name of the case, attached to the error context.

        Returns:
            `ObservationTimeout` for timed out results, `MismatchError`
            for mismatched or unexpected ones, `None` for matched ones.
        """
        if self.status == 'matched':
            return None

        error_type = ObservationTimeout if self.status == 'timed_out' else MismatchError

        return error_type(self.message, context={
            'case_name': case_name,
            'expectation_num': self.index,
            'element': {'expected': self.expected, 'observed': self.observed},
        })


class Verdict(SchemaModel):
    """Final outcome of one test case."""

    case: str = Field(
        title='Case name',
        description='Name of the test case the verdict belongs to.',
    )

    status: VerdictStatus
    cause: VerdictCause | None = None

    state: CaseState = Field(
        default='pending',
        title='Last state',
        description='Last lifecycle state reached before the case ended.',
    )

    phase: CaseState | None = Field(
        default=None,
        title='Failure phase',
        description='Lifecycle state in which the case failed, if it did.',
    )

    message: str | None = None

    expectations: tuple[ExpectationResult, ...] = ()
    warnings: tuple[str, ...] = ()

    duration: float = 0.0

    @property
    def successful(self) -> bool:
        """Whether the verdict does not fail the suite."""
        return self.status in ('passed', 'skipped')


class Report(SchemaModel):
    """Machine-readable summary of one suite run."""

    suite: str
    description: str | None = None

    filename: str | None = None
    hostname: str | None = None
    timestamp: datetime | None = None

    duration: float = 0.0

    verdicts: tuple[Verdict, ...] = ()

    @computed_field
    @property
    def passed(self) -> int:
        """Number of passed cases."""
        return self._count('passed')

    @computed_field
    @property
    def failed(self) -> int:
        """Number of failed cases."""
        return self._count('failed')

    @computed_field
    @property
    def errors(self) -> int:
        """Number of cases ended with an error."""
        return self._count('error')

    @computed_field
    @property
    def skipped(self) -> int:
        """Number of skipped cases."""
        return self._count('skipped')

    @property
    def successful(self) -> bool:
        """Whether every case passed or was skipped."""
        return all(verdict.successful for verdict in self.verdicts)

    def get_verdict(self, case: str) -> Verdict:
        """Get the verdict of a case by its name.

        Raises:
            KeyError: If the report has no verdict for the case.
        """
        for verdict in self.verdicts:
            if verdict.case == case:
                return verdict

        raise KeyError(case)

    def _count(self, status: VerdictStatus) -> int:
        return sum(1 for verdict in self.verdicts if verdict.status == status)

"""Suite orchestration.

The orchestrator runs every case of a suite and aggregates their
verdicts into a report. Cases run sequentially by default; a bounded
number of cases may run concurrently when parallel execution is
enabled. Either way, each case execution owns its own environment and
the report lists exactly one verdict per declared case, in declaration
order.
"""

import logging
from asyncio import Semaphore, TaskGroup, get_running_loop
from asyncio import run as run_async
from datetime import UTC, datetime
from socket import gethostname
from typing import TYPE_CHECKING

from systest.results.verdicts import Report, Verdict
from systest.settings import ExecutorSettings

from .execution import CaseExecution
from .verifier import Verifier

if TYPE_CHECKING:
    from systest.core import ProviderRegistry
    from systest.schema import Defaults, TestCase, TestSuite

LOGGER = logging.getLogger(__name__)


class Orchestrator:
    """Run test suites against live services.

    The registry is frozen when the orchestrator is created, so provider
    lookups during a run are read-only.
    """

    def __init__(self, registry: 'ProviderRegistry',
                 settings: ExecutorSettings | None = None,
                 verifier: Verifier | None = None) -> None:
        """Initialize the orchestrator.

        Args:
            registry: Registry resolving provider kinds.
            settings: Runtime settings. Resolved from the environment
                when omitted.
            verifier: Verifier of observed records.
        """
        self.registry = registry.freeze()
        self.settings = settings or ExecutorSettings()
        self.verifier = verifier or Verifier()

    def run(self, suite: 'TestSuite') -> Report:
        """Run a suite to completion.

        Args:
            suite: Parsed suite to run.

        Returns:
            Report with one verdict per declared case.
        """
        return run_async(self.execute(suite))

    def resolve_defaults(self, suite: 'TestSuite') -> 'Defaults':
        """Resolve suite defaults against the runtime settings.

        Defaults are resolved once per run and shared by every case, so
        the order of cases has no effect on their timeouts.
        """
        defaults = suite.defaults

        return defaults.model_copy(update={
            'provision_timeout': (
                defaults.provision_timeout
                if defaults.provision_timeout is not None
                else self.settings.provision_timeout
            ),
            'expectation_timeout': (
                defaults.expectation_timeout
                if defaults.expectation_timeout is not None
                else self.settings.expectation_timeout
            ),
        })

    async def execute(self, suite: 'TestSuite') -> Report:
        """Run a suite to completion.

        Args:
            suite: Parsed suite to run.

        Returns:
            Report with one verdict per declared case.
        """
        loop = get_running_loop()
        started = loop.time()
        timestamp = datetime.now(UTC)

        defaults = self.resolve_defaults(suite)
        verdicts: dict[str, Verdict] = {}
        aborted = False

        LOGGER.info('Suite %r: running %d case(s)', suite.name, len(suite.cases))

        async def execute_case(case: 'TestCase') -> None:
            nonlocal aborted

            if suite.disabled is not None or case.disabled is not None:
                verdicts[case.name] = self.skip(case, suite)
                return

            if aborted:
                verdicts[case.name] = self.abort(case)
                return

            verdict = await CaseExecution(
                case, defaults,
                registry=self.registry,
                verifier=self.verifier,
                grace=self.settings.case_grace,
            ).run()
            verdicts[case.name] = verdict

            if self.settings.stop_on_first_failure and not verdict.successful:
                LOGGER.warning('Suite %r: stopping after case %r', suite.name, case.name)
                aborted = True

        if self.settings.parallel_cases > 1:
            semaphore = Semaphore(self.settings.parallel_cases)

            async def execute_bounded(case: 'TestCase') -> None:
                async with semaphore:
                    await execute_case(case)

            async with TaskGroup() as group:
                for case in suite.cases:
                    group.create_task(execute_bounded(case))

        else:
            for case in suite.cases:
                await execute_case(case)

        report = Report(
            suite=suite.name,
            description=suite.description,
            filename=suite.location.filename,
            hostname=gethostname(),
            timestamp=timestamp,
            duration=loop.time() - started,
            verdicts=tuple(verdicts[case.name] for case in suite.cases),
        )

        LOGGER.info(
            'Suite %r: %d passed, %d failed, %d errors, %d skipped',
            suite.name, report.passed, report.failed, report.errors, report.skipped,
        )

        return report

    @staticmethod
    def skip(case: 'TestCase', suite: 'TestSuite') -> Verdict:
        """Build the verdict of a disabled case."""
        disabled = case.disabled or suite.disabled
        message = disabled.reason if disabled else None
        if disabled and disabled.issue:
            message = f'{message} ({disabled.issue})'

        return Verdict(
            case=case.name,
            status='skipped',
            cause='disabled',
            message=message,
        )

    @staticmethod
    def abort(case: 'TestCase') -> Verdict:
        """Build the verdict of a case not run after an earlier failure."""
        return Verdict(
            case=case.name,
            status='failed',
            cause='aborted',
            message='Not run: an earlier case failed and the run was stopped',
        )

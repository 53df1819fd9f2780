"""Execution of a single test case.

A case execution walks the lifecycle

    pending -> provisioning -> ready -> injecting -> observing
            -> verifying -> torn_down

and ends in `failed` from any non-terminal state on an unrecoverable
error. Provisioning of all services and capture of all observed services
run concurrently within the case. Teardown of the case environment runs
unconditionally, outside the case time budget.
"""

import logging
from asyncio import Event, TaskGroup, get_running_loop, sleep, timeout
from collections import defaultdict
from typing import TYPE_CHECKING

from systest.errors import (
    CaptureError,
    CaseTimeoutError,
    DispatchError,
    ProviderError,
    ProvisioningError,
    UnknownKindError,
)
from systest.results.verdicts import Verdict
from systest.schema import Expectation, NoExtraOutput

from .environment import ExecutionEnvironment

if TYPE_CHECKING:
    from asyncio import Task

if TYPE_CHECKING:
    from systest.core import ProviderRegistry
    from systest.extensions import Handle, ObservedRecord, Provider
    from systest.results.verdicts import CaseState, ExpectationResult
    from systest.schema import AnyExpectation, Defaults, ServiceRef, TestCase

    from .verifier import Verifier

LOGGER = logging.getLogger(__name__)


def _first_error(group: BaseExceptionGroup) -> BaseException:
    """Pick the most relevant error of an exception group.

    Provider errors are preferred over any other error, so the cause of a
    fail-fast join is reported rather than a follow-up failure.
    """
    errors: list[BaseException] = []
    pending: list[BaseException] = [group]
    while pending:
        error = pending.pop(0)
        if isinstance(error, BaseExceptionGroup):
            pending[:0] = error.exceptions
        else:
            errors.append(error)

    for error in errors:
        if isinstance(error, ProviderError):
            return error

    return errors[0]


class CaseExecution:
    """Single execution of one test case.

    The execution owns a fresh environment, so two executions of the same
    case never share live handles.

    Attributes:
        case: Case being executed.
        state: Current lifecycle state.
        phase: State in which the case failed, if it did.
    """

    def __init__(self, case: 'TestCase', defaults: 'Defaults', *,
                 registry: 'ProviderRegistry',
                 verifier: 'Verifier',
                 grace: float = 0.0) -> None:
        """Initialize a case execution.

        Args:
            case: Case to execute.
            defaults: Suite defaults with every timeout resolved.
            registry: Frozen provider registry.
            verifier: Verifier of observed records.
            grace: Extra time added to a derived case budget.
        """
        self.case = case
        self.defaults = defaults
        self.registry = registry
        self.verifier = verifier
        self.grace = grace

        self.state: CaseState = 'pending'
        self.phase: CaseState | None = None

        self.environment = ExecutionEnvironment(case.name)
        self.records: list[ObservedRecord] = []

        self._sequences: dict[tuple[str, str], int] = defaultdict(int)
        self._arrived = Event()

    def transition(self, state: 'CaseState') -> None:
        """Move the case to a new lifecycle state."""
        LOGGER.debug('Case %r: %s -> %s', self.case.name, self.state, state)
        self.state = state

    @property
    def budget(self) -> float:
        """Case-level time budget in seconds.

        An explicit case timeout wins. Otherwise the budget is the sum of
        the longest provisioning timeout, the total input delay and the
        longest expectation timeout, plus the grace period.
        """
        if self.defaults.case_timeout is not None:
            return self.defaults.case_timeout

        provisioning = max((
            self.provision_timeout(ref)
            for ref in self.case.services
        ), default=0.0)

        delays = sum(action.delay for action in self.case.inputs)

        observation = max((
            self.expectation_timeout(expectation)
            for expectation in self.case.expectations
        ), default=0.0)

        return provisioning + delays + observation + self.grace

    def provision_timeout(self, ref: 'ServiceRef') -> float:
        """Readiness timeout of a service."""
        if ref.definition.readiness_timeout is not None:
            return ref.definition.readiness_timeout

        return self.defaults.provision_timeout or 0.0

    def expectation_timeout(self, expectation: 'AnyExpectation') -> float:
        """Observation window of an expectation."""
        if expectation.timeout is not None:
            return expectation.timeout

        return self.defaults.expectation_timeout or 0.0

    async def run(self) -> Verdict:
        """Execute the case and produce its verdict.

        Provider failures and the case timeout are converted into the
        verdict, as is any unexpected error. The environment is released
        in every case.

        Returns:
            Verdict of the case.
        """
        loop = get_running_loop()
        started = loop.time()
        budget = self.budget

        LOGGER.info('Case %r: started with a budget of %.3fs', self.case.name, budget)

        status, cause, message = 'passed', None, None
        results: tuple[ExpectationResult, ...] = ()

        try:
            async with timeout(budget) as scope:
                results = await self._execute()

        except ProviderError as error:
            if scope.expired():
                status, cause = 'failed', CaseTimeoutError.cause
                message = f'Case exceeded its budget of {budget:g}s'
            elif isinstance(error, ProvisioningError):
                status, cause, message = 'failed', error.cause, str(error)
            else:
                status, cause, message = 'error', error.cause, str(error)
            LOGGER.warning('Case %r: %s', self.case.name, message)
            self._fail()

        except Exception as error:
            if scope.expired():
                status, cause = 'failed', CaseTimeoutError.cause
                message = f'Case exceeded its budget of {budget:g}s'
                LOGGER.warning('Case %r: %s in state %r', self.case.name, message, self.state)
            else:
                status, cause = 'error', 'internal'
                message = f'Unexpected {type(error).__name__} in state {self.state!r}: {error}'
                LOGGER.exception('Case %r: %s', self.case.name, message)
            self._fail()

        else:
            if failures := [item for item in results if item.failed]:
                status, cause = 'failed', 'expectation'
                message = '; '.join(item.message for item in failures)

        finally:
            self.transition('torn_down' if self.phase is None else 'failed')
            await self.environment.release()

        verdict = Verdict(
            case=self.case.name,
            status=status,
            cause=cause,
            state=self.state,
            phase=self.phase,
            message=message,
            expectations=results,
            warnings=tuple(self.environment.warnings),
            duration=loop.time() - started,
        )

        LOGGER.info('Case %r: %s', self.case.name, verdict.status)

        return verdict

    def _fail(self) -> None:
        """Remember the state in which the case failed."""
        self.phase = self.state

    async def _execute(self) -> tuple['ExpectationResult', ...]:
        """Run the case phases up to verification."""
        await self._provision()
        self.transition('ready')

        expectations = self._resolve_expectations()
        observed = sorted({expectation.service for expectation in expectations})

        loop = get_running_loop()
        since = loop.time()

        try:
            async with TaskGroup() as group:
                tasks: list[Task[None]] = [
                    group.create_task(self._capture(*self.environment.get(service), since))
                    for service in observed
                ]

                await self._inject()

                window_open = loop.time()
                self.transition('observing')
                await self._observe(expectations, window_open)

                # let capture tasks pick up output emitted right before the window closed
                await sleep(0)

                for task in tasks:
                    task.cancel()

        except BaseExceptionGroup as group:
            raise _first_error(group) from group

        self._drain(observed, since)
        self.transition('verifying')

        records = [
            record.model_copy(update={'elapsed': record.timestamp - window_open})
            for record in self.records
        ]

        return self.verifier.verify(expectations, records)

    async def _provision(self) -> None:
        """Provision every service of the case concurrently.

        Raises:
            ProvisioningError: On the first failed or timed out service.
                Remaining provisioning attempts are cancelled.
        """
        self.transition('provisioning')

        try:
            async with TaskGroup() as group:
                for ref in self.case.services:
                    group.create_task(self._provision_service(ref))

        except BaseExceptionGroup as group:
            raise _first_error(group) from group

    async def _provision_service(self, ref: 'ServiceRef') -> None:
        """Provision a single service and adopt its handle."""
        try:
            provider = self.registry.resolve(ref.definition.kind)

        except UnknownKindError as base:
            raise ProvisioningError(str(base), service=ref.name) from base

        limit = self.provision_timeout(ref)

        try:
            async with timeout(limit):
                handle = await provider.provision(ref.definition)

        except TimeoutError as base:
            raise ProvisioningError(
                f'Service {ref.name!r} was not ready within {limit:g}s',
                service=ref.name,
            ) from base

        except ProvisioningError:
            raise

        except Exception as base:
            raise ProvisioningError(
                f'Failed to provision service {ref.name!r}: {base}',
                service=ref.name,
            ) from base

        self.environment.adopt(provider, handle)

        LOGGER.debug('Case %r: service %r is ready', self.case.name, ref.name)

    def _resolve_expectations(self) -> list['AnyExpectation']:
        """Fill in default channels, timeouts and ordering of expectations."""
        resolved = []

        for expectation in self.case.expectations:
            provider, _ = self.environment.get(expectation.service)
            update = {
                'channel': expectation.channel or provider.output_channel,
                'timeout': self.expectation_timeout(expectation),
            }
            if isinstance(expectation, Expectation) and expectation.ordering is None:
                update['ordering'] = self.defaults.ordering
            resolved.append(expectation.model_copy(update=update))

        return resolved

    async def _inject(self) -> None:
        """Dispatch inputs in declaration order on the case clock.

        Raises:
            DispatchError: If an input can not be delivered.
        """
        self.transition('injecting')

        loop = get_running_loop()
        scheduled = loop.time()

        for position, action in enumerate(self.case.inputs, start=1):
            scheduled += action.delay
            if (pause := scheduled - loop.time()) > 0:
                await sleep(pause)

            provider, handle = self.environment.get(action.service)
            if action.channel is None:
                action = action.model_copy(update={'channel': provider.input_channel})

            try:
                await provider.inject(handle, action)

            except DispatchError:
                raise

            except Exception as base:
                raise DispatchError(
                    f'Input {position} to service {action.service!r} failed: {base}',
                    service=action.service,
                ) from base

    def _collect(self, record: 'ObservedRecord') -> None:
        """Number a captured record in arrival order and buffer it."""
        key = record.service, record.channel
        self._sequences[key] += 1
        self.records.append(record.model_copy(update={
            'sequence': self._sequences[key],
        }))
        self._arrived.set()

    def _drain(self, services: list[str], since: float) -> None:
        """Collect records left on handle buffers once capture has stopped."""
        for service in services:
            _, handle = self.environment.get(service)
            while not handle.outputs.empty():
                if (record := handle.outputs.get_nowait()).timestamp >= since:
                    self._collect(record)

    async def _capture(self, provider: 'Provider', handle: 'Handle', since: float) -> None:
        """Buffer records captured from one service until cancelled.

        Raises:
            CaptureError: If capturing crashes.
        """
        try:
            async for record in provider.capture(handle, since):
                self._collect(record)

        except CaptureError:
            raise

        except Exception as base:
            raise CaptureError(
                f'Capture from service {handle.service!r} failed: {base}',
                service=handle.service,
            ) from base

    async def _observe(self, expectations: list['AnyExpectation'], window_open: float) -> None:
        """Wait until the observation windows close.

        Observation stops early once every expectation is matched, unless
        the case asserts the absence of extra output.
        """
        loop = get_running_loop()
        deadline = window_open + max((
            expectation.timeout or 0.0
            for expectation in expectations
        ), default=0.0)

        early = not any(isinstance(item, NoExtraOutput) for item in expectations)

        while (remaining := deadline - loop.time()) > 0:
            if early and self._satisfied(expectations, window_open):
                LOGGER.debug('Case %r: all expectations matched early', self.case.name)
                return

            self._arrived.clear()
            try:
                async with timeout(remaining):
                    await self._arrived.wait()

            except TimeoutError:
                return

    def _satisfied(self, expectations: list['AnyExpectation'], window_open: float) -> bool:
        """Check whether the records captured so far match every expectation."""
        if not self.records:
            return not expectations

        records = [
            record.model_copy(update={'elapsed': record.timestamp - window_open})
            for record in self.records
        ]

        return all(
            result.status == 'matched'
            for result in self.verifier.verify(expectations, records)
        )

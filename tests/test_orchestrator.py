"""Tests for case execution and suite orchestration."""

from asyncio import run
from typing import TYPE_CHECKING

import pytest

from systest.errors import TeardownWarning
from systest.executor import CaseExecution, ExecutionEnvironment, Orchestrator, Verifier
from systest.extensions import Handle

if TYPE_CHECKING:
    from systest.core import ProviderRegistry, SuiteParser
    from systest.results import Report
    from systest.settings import ExecutorSettings
    from tests.examples.providers import ScriptedProvider

ECHO_SUITE = (
    'name: echo\n'
    'services:\n'
    '  - name: echo\n'
    '    kind: loopback\n'
    'cases:\n'
    '  - name: single\n'
    '    inputs:\n'
    '      - service: echo\n'
    '        payload: {id: 1}\n'
    '    expectations:\n'
    '      - service: echo\n'
    '        payload: {id: 1}\n'
    '        timeout: 2s\n'
)

SCRIPTED_SUITE = (
    'name: scripted\n'
    'services:\n'
    '  - name: svc\n'
    '    kind: scripted\n'
    'cases:\n'
    '  - name: first\n'
    '    inputs:\n'
    '      - service: svc\n'
    '        payload: 1\n'
    '    expectations:\n'
    '      - service: svc\n'
    '        payload: 1\n'
    '  - name: second\n'
    '    inputs:\n'
    '      - service: svc\n'
    '        payload: 2\n'
    '    expectations:\n'
    '      - service: svc\n'
    '        payload: 2\n'
    '  - name: third\n'
    '    inputs:\n'
    '      - service: svc\n'
    '        payload: 3\n'
    '    expectations:\n'
    '      - service: svc\n'
    '        payload: 3\n'
)


PING_CASE = (
    '    inputs:\n'
    '      - service: svc\n'
    '        payload: ping\n'
    '    expectations:\n'
    '      - service: svc\n'
    '        payload: ping\n'
    '        timeout: 200ms\n'
)


def scripted_case(config: str = '', case: str = PING_CASE, defaults: str = '') -> str:
    """Build a one-case suite around a scripted service."""
    return (
        'name: scripted\n'
        f'{defaults}'
        'services:\n'
        '  - name: svc\n'
        '    kind: scripted\n'
        f'{config}'
        'cases:\n'
        '  - name: only\n'
        f'{case}'
    )


def run_suite(content: str, parser: 'SuiteParser', registry: 'ProviderRegistry',
              settings: 'ExecutorSettings', **overrides: object) -> 'Report':
    """Parse and run a suite."""
    suite = parser.parse(content)

    return Orchestrator(registry, settings.model_copy(update=overrides)).run(suite)


def test_echo_passes(parser: 'SuiteParser', registry: 'ProviderRegistry',
                     settings: 'ExecutorSettings') -> None:
    """A loopback echo satisfies its expectation."""
    report = run_suite(ECHO_SUITE, parser, registry, settings)

    assert report.suite == 'echo'
    assert report.successful
    assert report.passed == 1

    verdict = report.get_verdict('single')
    assert verdict.status == 'passed'
    assert verdict.cause is None
    assert verdict.state == 'torn_down'
    assert verdict.phase is None
    assert [result.status for result in verdict.expectations] == ['matched']
    assert verdict.expectations[0].channel == 'output'
    assert verdict.duration < 2.0


def test_echo_without_window(parser: 'SuiteParser', registry: 'ProviderRegistry',
                             settings: 'ExecutorSettings') -> None:
    """Output emitted while inputs are dispatched is seen by a zero window."""
    content = ECHO_SUITE.replace('timeout: 2s', 'timeout: 0')

    verdict = run_suite(content, parser, registry, settings).get_verdict('single')

    assert verdict.status == 'passed'
    assert verdict.expectations[0].status == 'matched'
    assert verdict.expectations[0].observed == {'id': 1}


def test_echo_mismatch(parser: 'SuiteParser', registry: 'ProviderRegistry',
                       settings: 'ExecutorSettings') -> None:
    """A wrong payload fails the case with an expectation cause."""
    content = ECHO_SUITE.replace(
        '        payload: {id: 1}\n        timeout: 2s\n',
        '        payload: {id: 2}\n        timeout: 200ms\n',
    )

    verdict = run_suite(content, parser, registry, settings).get_verdict('single')

    assert verdict.status == 'failed'
    assert verdict.cause == 'expectation'
    assert verdict.state == 'torn_down'
    assert verdict.expectations[0].status == 'mismatched'
    assert verdict.message == '1 record(s) on echo:output did not match'


def test_echo_after_window(parser: 'SuiteParser', registry: 'ProviderRegistry',
                           settings: 'ExecutorSettings') -> None:
    """An echo arriving after the window closes times out."""
    content = ECHO_SUITE.replace(
        '    kind: loopback\n',
        '    kind: loopback\n    config:\n      delay: 1s\n',
    ).replace('timeout: 2s', 'timeout: 100ms')

    verdict = run_suite(content, parser, registry, settings).get_verdict('single')

    assert verdict.status == 'failed'
    assert verdict.cause == 'expectation'
    assert verdict.expectations[0].status == 'timed_out'


def test_optional_expectation_timeout(parser: 'SuiteParser', registry: 'ProviderRegistry',
                                      settings: 'ExecutorSettings') -> None:
    """Optional expectations that time out do not fail the case."""
    report = run_suite(scripted_case(case=(
        '    inputs:\n'
        '      - service: svc\n'
        '        payload: ping\n'
        '    expectations:\n'
        '      - service: svc\n'
        '        payload: ping\n'
        '      - service: svc\n'
        '        channel: audit\n'
        '        payload: logged\n'
        '        optional: yes\n'
        '        timeout: 100ms\n'
    )), parser, registry, settings)

    verdict = report.get_verdict('only')
    assert verdict.status == 'passed'
    assert [result.status for result in verdict.expectations] == ['matched', 'timed_out']


def test_ordered_replies(parser: 'SuiteParser', registry: 'ProviderRegistry',
                         settings: 'ExecutorSettings') -> None:
    """Replies arriving out of declaration order fail ordered expectations."""
    report = run_suite(scripted_case(
        defaults='defaults:\n  ordering: ordered\n',
        config='    config:\n      replies: [second, first]\n',
        case=(
            '    inputs:\n'
            '      - service: svc\n'
            '    expectations:\n'
            '      - service: svc\n'
            '        payload: first\n'
            '        timeout: 200ms\n'
            '      - service: svc\n'
            '        payload: second\n'
            '        timeout: 200ms\n'
        ),
    ), parser, registry, settings)

    verdict = report.get_verdict('only')
    assert verdict.status == 'failed'
    assert verdict.cause == 'expectation'
    assert [result.status for result in verdict.expectations] == ['matched', 'mismatched']


def test_inputs_in_declaration_order(parser: 'SuiteParser', registry: 'ProviderRegistry',
                                     settings: 'ExecutorSettings',
                                     scripted: 'ScriptedProvider') -> None:
    """Inputs are dispatched in declaration order on the default channel."""
    report = run_suite(scripted_case(case=(
        '    inputs:\n'
        '      - service: svc\n'
        '        payload: 1\n'
        '      - service: svc\n'
        '        payload: 2\n'
        '        delay: 50ms\n'
        '      - service: svc\n'
        '        channel: admin\n'
        '        payload: 3\n'
    )), parser, registry, settings)

    assert report.successful
    assert scripted.injected == [
        ('svc', 'input', 1),
        ('svc', 'input', 2),
        ('svc', 'admin', 3),
    ]


def test_case_isolation(parser: 'SuiteParser', registry: 'ProviderRegistry',
                        settings: 'ExecutorSettings', scripted: 'ScriptedProvider') -> None:
    """Every case provisions and releases its own service instances."""
    report = run_suite(SCRIPTED_SUITE, parser, registry, settings)

    assert [verdict.status for verdict in report.verdicts] == ['passed', 'passed', 'passed']

    assert len(scripted.provisioned) == 3
    assert len({id(handle) for handle in scripted.provisioned}) == 3
    assert scripted.released == list(scripted.provisioned)
    assert all(handle.released for handle in scripted.provisioned)


def test_rerun_is_idempotent(parser: 'SuiteParser', registry: 'ProviderRegistry',
                             settings: 'ExecutorSettings', scripted: 'ScriptedProvider') -> None:
    """Running the same suite twice yields the same verdicts."""
    suite = parser.parse(SCRIPTED_SUITE)
    orchestrator = Orchestrator(registry, settings)

    first = orchestrator.run(suite)
    second = orchestrator.run(suite)

    def outcome(report: 'Report') -> list[tuple[str, str, str | None]]:
        return [(verdict.case, verdict.status, verdict.cause) for verdict in report.verdicts]

    assert outcome(first) == outcome(second)
    assert len({id(handle) for handle in scripted.provisioned}) == 6
    assert len(scripted.released) == 6


def test_parallel_cases(parser: 'SuiteParser', registry: 'ProviderRegistry',
                        settings: 'ExecutorSettings', scripted: 'ScriptedProvider') -> None:
    """Cases run concurrently keep their own environments and order."""
    report = run_suite(SCRIPTED_SUITE, parser, registry, settings, parallel_cases=3)

    assert [verdict.case for verdict in report.verdicts] == ['first', 'second', 'third']
    assert [verdict.status for verdict in report.verdicts] == ['passed', 'passed', 'passed']
    assert len(scripted.released) == 3


def test_disabled_case(parser: 'SuiteParser', registry: 'ProviderRegistry',
                       settings: 'ExecutorSettings', scripted: 'ScriptedProvider') -> None:
    """Disabled cases are reported as skipped without running."""
    content = SCRIPTED_SUITE.replace(
        '  - name: second\n',
        '  - name: second\n    disabled:\n      reason: Flaky\n      issue: BUG-7\n',
    )

    report = run_suite(content, parser, registry, settings)

    verdict = report.get_verdict('second')
    assert verdict.status == 'skipped'
    assert verdict.cause == 'disabled'
    assert verdict.message == 'Flaky (BUG-7)'

    assert report.skipped == 1
    assert report.passed == 2
    assert report.successful
    assert len(scripted.provisioned) == 2


def test_disabled_suite(parser: 'SuiteParser', registry: 'ProviderRegistry',
                        settings: 'ExecutorSettings', scripted: 'ScriptedProvider') -> None:
    """Every case of a disabled suite is skipped."""
    content = 'disabled:\n  reason: Maintenance\n' + SCRIPTED_SUITE

    report = run_suite(content, parser, registry, settings)

    assert [verdict.status for verdict in report.verdicts] == ['skipped'] * 3
    assert {verdict.message for verdict in report.verdicts} == {'Maintenance'}
    assert scripted.provisioned == []


def test_stop_on_first_failure(parser: 'SuiteParser', registry: 'ProviderRegistry',
                               settings: 'ExecutorSettings', scripted: 'ScriptedProvider') -> None:
    """Remaining cases are aborted after the first unsuccessful one."""
    content = (
        'name: scripted\n'
        'services:\n'
        '  - name: broken\n'
        '    kind: scripted\n'
        '    config:\n'
        '      fail_provision: no capacity\n'
        '  - name: good\n'
        '    kind: scripted\n'
        'cases:\n'
        '  - name: first\n'
        '    services: [broken]\n'
        '  - name: second\n'
        '    services: [good]\n'
        '  - name: third\n'
        '    services: [good]\n'
    )

    report = run_suite(content, parser, registry, settings, stop_on_first_failure=True)

    assert len(report.verdicts) == 3
    assert [(verdict.status, verdict.cause) for verdict in report.verdicts] == [
        ('failed', 'provisioning'),
        ('failed', 'aborted'),
        ('failed', 'aborted'),
    ]
    assert scripted.provisioned == []

    report = run_suite(content, parser, registry, settings)

    assert [verdict.status for verdict in report.verdicts] == ['failed', 'passed', 'passed']


def test_unexpected_error(parser: 'SuiteParser', registry: 'ProviderRegistry',
                          settings: 'ExecutorSettings', scripted: 'ScriptedProvider') -> None:
    """An unexpected failure errors its case and the suite carries on."""
    content = (
        'name: scripted\n'
        'services:\n'
        '  - name: good\n'
        '    kind: scripted\n'
        '  - name: stray\n'
        '    kind: scripted\n'
        '    config:\n'
        '      handle_name: other-name\n'
        'cases:\n'
        '  - name: first\n'
        '    services: [good]\n'
        '  - name: second\n'
        '    services: [stray]\n'
        '    expectations:\n'
        '      - service: stray\n'
        '        payload: ping\n'
        '  - name: third\n'
        '    services: [good]\n'
    )

    report = run_suite(content, parser, registry, settings)

    assert [(verdict.status, verdict.cause) for verdict in report.verdicts] == [
        ('passed', None),
        ('error', 'internal'),
        ('passed', None),
    ]

    verdict = report.get_verdict('second')
    assert verdict.state == 'failed'
    assert verdict.phase == 'ready'
    assert verdict.message == "Unexpected KeyError in state 'ready': 'stray'"
    assert [handle.service for handle in scripted.released] == ['good', 'other-name', 'good']


def test_provisioning_failure(parser: 'SuiteParser', registry: 'ProviderRegistry',
                              settings: 'ExecutorSettings', scripted: 'ScriptedProvider') -> None:
    """A failing service fails the case and releases the other services."""
    content = (
        'name: scripted\n'
        'services:\n'
        '  - name: good\n'
        '    kind: scripted\n'
        '  - name: broken\n'
        '    kind: scripted\n'
        '    config:\n'
        '      fail_provision: no capacity\n'
        'cases:\n'
        '  - name: only\n'
        '    inputs:\n'
        '      - service: good\n'
        '      - service: broken\n'
    )

    verdict = run_suite(content, parser, registry, settings).get_verdict('only')

    assert verdict.status == 'failed'
    assert verdict.cause == 'provisioning'
    assert verdict.state == 'failed'
    assert verdict.phase == 'provisioning'
    assert verdict.message is not None
    assert verdict.message.startswith("Failed to provision service 'broken': no capacity")

    assert scripted.injected == []
    assert scripted.released == scripted.provisioned


def test_provisioning_timeout(parser: 'SuiteParser', registry: 'ProviderRegistry',
                              settings: 'ExecutorSettings', scripted: 'ScriptedProvider') -> None:
    """A service not ready within its readiness timeout fails provisioning."""
    verdict = run_suite(scripted_case(
        config='    readiness_timeout: 100ms\n    config:\n      startup: 2s\n',
    ), parser, registry, settings).get_verdict('only')

    assert verdict.status == 'failed'
    assert verdict.cause == 'provisioning'
    assert verdict.message == "Service 'svc' was not ready within 0.1s"
    assert scripted.provisioned == []


def test_inject_crash(parser: 'SuiteParser', registry: 'ProviderRegistry',
                      settings: 'ExecutorSettings', scripted: 'ScriptedProvider') -> None:
    """A provider crash during injection ends the case with an error."""
    verdict = run_suite(scripted_case(
        config='    config:\n      fail_inject: connection reset\n',
    ), parser, registry, settings).get_verdict('only')

    assert verdict.status == 'error'
    assert verdict.cause == 'dispatch'
    assert verdict.phase == 'injecting'
    assert verdict.message == "Input 1 to service 'svc' failed: connection reset"
    assert len(scripted.released) == 1


def test_capture_crash(parser: 'SuiteParser', registry: 'ProviderRegistry',
                       settings: 'ExecutorSettings', scripted: 'ScriptedProvider') -> None:
    """A provider crash during capture ends the case with an error."""
    verdict = run_suite(scripted_case(
        config='    config:\n      fail_capture: stream closed\n',
    ), parser, registry, settings).get_verdict('only')

    assert verdict.status == 'error'
    assert verdict.cause == 'capture'
    assert verdict.message == "Capture from service 'svc' failed: stream closed"
    assert len(scripted.released) == 1


def test_case_timeout_while_provisioning(parser: 'SuiteParser', registry: 'ProviderRegistry',
                                         settings: 'ExecutorSettings') -> None:
    """The case budget bounds provisioning."""
    verdict = run_suite(scripted_case(
        defaults='defaults:\n  case_timeout: 200ms\n',
        config='    readiness_timeout: 5s\n    config:\n      startup: 2s\n',
    ), parser, registry, settings).get_verdict('only')

    assert verdict.status == 'failed'
    assert verdict.cause == 'timeout'
    assert verdict.phase == 'provisioning'
    assert verdict.message == 'Case exceeded its budget of 0.2s'
    assert verdict.duration < 2.0


def test_case_timeout_wins(parser: 'SuiteParser', registry: 'ProviderRegistry',
                           settings: 'ExecutorSettings', scripted: 'ScriptedProvider') -> None:
    """The case timeout wins over pending expectation results."""
    verdict = run_suite(scripted_case(
        defaults='defaults:\n  case_timeout: 300ms\n',
        case=(
            '    inputs:\n'
            '      - service: svc\n'
            '        payload: ping\n'
            '    expectations:\n'
            '      - service: svc\n'
            '        payload: pong\n'
            '        timeout: 5s\n'
        ),
    ), parser, registry, settings).get_verdict('only')

    assert verdict.status == 'failed'
    assert verdict.cause == 'timeout'
    assert verdict.phase == 'observing'
    assert verdict.expectations == ()
    assert len(scripted.released) == 1


def test_teardown_failure(parser: 'SuiteParser', registry: 'ProviderRegistry',
                          settings: 'ExecutorSettings') -> None:
    """Teardown failures are reported without changing the verdict."""
    with pytest.warns(TeardownWarning, match=r"^Teardown of service 'svc' failed: stuck"):
        verdict = run_suite(scripted_case(
            config='    config:\n      fail_teardown: stuck\n',
        ), parser, registry, settings).get_verdict('only')

    assert verdict.status == 'passed'
    assert verdict.warnings == ("Teardown of service 'svc' failed: stuck",)


def test_report(parser: 'SuiteParser', registry: 'ProviderRegistry',
                settings: 'ExecutorSettings') -> None:
    """Reports count verdicts and describe the run."""
    content = SCRIPTED_SUITE.replace(
        '        payload: 3\n    expectations:\n      - service: svc\n        payload: 3\n',
        '        payload: 3\n    expectations:\n      - service: svc\n        payload: 4\n'
        '        timeout: 100ms\n',
    )

    report = run_suite(content, parser, registry, settings)

    assert (report.passed, report.failed, report.errors, report.skipped) == (2, 1, 0, 0)
    assert not report.successful
    assert report.hostname
    assert report.timestamp is not None

    data = report.model_dump(mode='json')
    assert data['failed'] == 1
    assert [item['case'] for item in data['verdicts']] == ['first', 'second', 'third']

    with pytest.raises(KeyError):
        report.get_verdict('fourth')


def test_case_budget(parser: 'SuiteParser', registry: 'ProviderRegistry',
                     settings: 'ExecutorSettings') -> None:
    """Derived case budgets sum the phase timeouts and the grace period."""
    suite = parser.parse(
        'name: budget\n'
        'services:\n'
        '  - name: slow\n'
        '    kind: scripted\n'
        '    readiness_timeout: 3s\n'
        '  - name: fast\n'
        '    kind: scripted\n'
        'cases:\n'
        '  - name: only\n'
        '    inputs:\n'
        '      - service: slow\n'
        '        delay: 500ms\n'
        '      - service: fast\n'
        '        delay: 1.5s\n'
        '    expectations:\n'
        '      - service: slow\n'
        '        payload: 1\n'
        '        timeout: 2s\n'
        '      - service: fast\n'
        '        payload: 2\n',
    )
    orchestrator = Orchestrator(registry, settings)
    defaults = orchestrator.resolve_defaults(suite)

    assert defaults.provision_timeout == 2.0
    assert defaults.expectation_timeout == 0.5

    execution = CaseExecution(
        suite.cases[0], defaults,
        registry=registry,
        verifier=Verifier(),
        grace=settings.case_grace,
    )
    assert execution.state == 'pending'
    assert execution.budget == 3.0 + 2.0 + 2.0 + 1.0

    execution = CaseExecution(
        suite.cases[0], defaults.model_copy(update={'case_timeout': 4.0}),
        registry=registry,
        verifier=Verifier(),
    )
    assert execution.budget == 4.0


def test_environment_release(scripted: 'ScriptedProvider') -> None:
    """Environments release each handle once, in reverse order."""
    environment = ExecutionEnvironment('case')
    first = Handle('first', 'scripted')
    second = Handle('second', 'scripted')

    environment.adopt(scripted, first)
    environment.adopt(scripted, second)

    with pytest.raises(ValueError, match=r"^Service 'first' is already provisioned"):
        environment.adopt(scripted, Handle('first', 'scripted'))

    assert len(environment) == 2
    assert 'first' in environment

    run(environment.release())
    run(environment.release())

    assert scripted.released == [second, first]
    assert first.released
    assert second.released

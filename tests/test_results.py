"""Tests for report rendering: JUnit XML results and issue summaries."""

from datetime import UTC, datetime
from os import linesep
from typing import TYPE_CHECKING
from xml.etree.ElementTree import parse

import pytest

from systest.results import (
    ExpectationResult,
    Report,
    Verdict,
    format_issues,
    format_summary,
    write_report,
)
from systest.results.junit import format_time, sanitize

if TYPE_CHECKING:
    from pyfakefs.fake_filesystem import FakeFilesystem


@pytest.fixture
def report() -> Report:
    """Provide a report with one verdict of every status."""
    return Report(
        suite='orders api',
        hostname='ci-runner',
        timestamp=datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC),
        duration=1.2345,
        verdicts=(
            Verdict(case='ok', status='passed', duration=0.5),
            Verdict(
                case='bad',
                status='failed',
                cause='expectation',
                message='1 record(s) on svc:output did not match',
                expectations=(
                    ExpectationResult(
                        index=0,
                        service='svc',
                        channel='output',
                        status='mismatched',
                        expected={'id': 1},
                        observed={'id': 2},
                        diff='--- expected\n+++ observed\n-id: 1\n+id: 2\n',
                        message='1 record(s) on svc:output did not match',
                    ),
                ),
                duration=0.25,
            ),
            Verdict(
                case='crash',
                status='error',
                cause='dispatch',
                message="Input 1 to service 'svc' failed: connection reset",
            ),
            Verdict(case='off', status='skipped', cause='disabled', message='Flaky'),
        ),
    )


def test_report_counts(report: Report) -> None:
    """Reports count verdicts by status."""
    assert (report.passed, report.failed, report.errors, report.skipped) == (1, 1, 1, 1)
    assert not report.successful
    assert report.get_verdict('off').successful
    assert not report.get_verdict('crash').successful


def test_write_report(fs: 'FakeFilesystem', report: Report) -> None:  # noqa: ARG001
    """Reports are written as JUnit XML files."""
    path = write_report(report, '/results/junit')

    assert path.name == 'TEST-orders_api.xml'
    assert path.exists()

    suite = parse(path).getroot()
    assert suite.tag == 'testsuite'
    assert suite.attrib == {
        'name': 'orders api',
        'tests': '4',
        'skipped': '1',
        'failures': '1',
        'errors': '1',
        'timestamp': '2026-01-02T03:04:05',
        'hostname': 'ci-runner',
        'time': '1.234',
    }

    cases = {case.get('name'): case for case in suite.iter('testcase')}
    assert list(cases) == ['ok', 'bad', 'crash', 'off']
    assert {case.get('classname') for case in cases.values()} == {'orders api'}

    assert list(cases['ok']) == []
    assert cases['ok'].get('time') == '0.500'

    failure = cases['bad'].find('failure')
    assert failure is not None
    assert failure.get('type') == 'expectation'
    assert failure.get('message') == '1 record(s) on svc:output did not match'
    assert failure.text is not None
    assert 'expectation 1: 1 record(s) on svc:output did not match' in failure.text
    assert '+id: 2' in failure.text

    error = cases['crash'].find('error')
    assert error is not None
    assert error.get('type') == 'dispatch'
    assert error.get('message') == "Input 1 to service 'svc' failed: connection reset"

    skipped = cases['off'].find('skipped')
    assert skipped is not None
    assert skipped.get('message') == 'Flaky'


def test_format_issues(report: Report) -> None:
    """Issues list one line per unsuccessful case."""
    assert format_issues([report]) == linesep.join([
        'orders api:bad: 1 record(s) on svc:output did not match',
        "orders api:crash: Input 1 to service 'svc' failed: connection reset",
    ])


def test_format_summary(report: Report) -> None:
    """Summaries count cases over every report."""
    assert format_summary([report, report]) == (
        '8 case(s): 2 passed, 2 failed, 2 errors, 2 skipped'
    )


@pytest.mark.parametrize(('seconds', 'text'), (
    pytest.param(0, '0.000', id='zero'),
    pytest.param(0.0125, '0.012', id='milliseconds'),
    pytest.param(61.5, '61.500', id='minutes'),
))
def test_format_time(seconds: float, text: str) -> None:
    """Durations are formatted with millisecond precision."""
    assert format_time(seconds) == text


def test_sanitize() -> None:
    """Unsafe characters of suite names are replaced in file names."""
    assert sanitize('orders/api v2.1-beta_x') == 'orders_api_v2.1-beta_x'

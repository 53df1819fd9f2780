"""JUnit-style XML results writer.

Writes one `TEST-<suite>.xml` file per suite report, in the format
understood by CI servers: failed cases carry a `failure` element, cases
ended with an error carry an `error` element and skipped cases carry a
`skipped` element.
"""

from pathlib import Path
from re import compile as regexp
from typing import TYPE_CHECKING
from xml.etree.ElementTree import Element, ElementTree, SubElement, indent

if TYPE_CHECKING:
    from .verdicts import Report, Verdict

#: Characters replaced in suite names to build file names.
_UNSAFE_CHARS = regexp(r'[^a-zA-Z0-9\-_.]')


def format_time(seconds: float) -> str:
    """Format a duration as seconds with millisecond precision."""
    milliseconds = max(int(seconds * 1000), 0)

    return f'{milliseconds // 1000}.{milliseconds % 1000:03d}'


def sanitize(name: str) -> str:
    """Make a suite name safe to use in a file name."""
    return _UNSAFE_CHARS.sub('_', name)


def _issue_details(verdict: 'Verdict') -> str:
    """Render failed expectation details of a verdict."""
    lines = []

    for result in verdict.expectations:
        if not result.failed:
            continue
        lines.append(f'expectation {result.index + 1}: {result.message}')
        if result.diff:
            lines.append(result.diff.rstrip())

    return '\n'.join(lines)


def build_testcase(verdict: 'Verdict', suite: str) -> Element:
    """Build the `testcase` element of a verdict."""
    element = Element('testcase', {
        'name': verdict.case,
        'classname': suite,
        'time': format_time(verdict.duration),
    })

    if verdict.status == 'skipped':
        SubElement(element, 'skipped', {'message': verdict.message or ''})

    elif verdict.status in ('failed', 'error'):
        issue = SubElement(element, 'failure' if verdict.status == 'failed' else 'error', {
            'message': verdict.message or '',
            'type': verdict.cause or '',
        })
        issue.text = _issue_details(verdict) or None

    return element


def build_testsuite(report: 'Report') -> Element:
    """Build the `testsuite` element of a report."""
    timestamp = report.timestamp.replace(tzinfo=None).isoformat() if report.timestamp else ''

    element = Element('testsuite', {
        'name': report.suite,
        'tests': str(len(report.verdicts)),
        'skipped': str(report.skipped),
        'failures': str(report.failed),
        'errors': str(report.errors),
        'timestamp': timestamp,
        'hostname': report.hostname or 'Unknown',
        'time': format_time(report.duration),
    })

    for verdict in report.verdicts:
        element.append(build_testcase(verdict, report.suite))

    return element


def write_report(report: 'Report', directory: Path | str) -> Path:
    """Write a report as a JUnit XML file.

    Args:
        report: Suite report to write.
        directory: Output directory, created if missing.

    Returns:
        Path of the written file.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    path = directory / f'TEST-{sanitize(report.suite)}.xml'

    tree = ElementTree(build_testsuite(report))
    indent(tree)
    tree.write(path, encoding='utf-8', xml_declaration=True)

    return path

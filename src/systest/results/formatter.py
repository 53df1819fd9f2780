"""Human-readable summaries of suite reports."""

from os import linesep
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .verdicts import Report, Verdict


def format_issue(suite: str, verdict: 'Verdict') -> str:
    """Format the issue of a verdict as a `suite:case: message` line.

    Returns:
        The formatted line, or an empty string for successful verdicts.
    """
    if verdict.successful:
        return ''

    message = verdict.message or verdict.cause or verdict.status

    return f'{suite}:{verdict.case}: {message}'


def format_issues(reports: 'Iterable[Report]') -> str:
    """Format one line per unsuccessful case of every report."""
    return linesep.join(
        line
        for report in reports
        for verdict in report.verdicts
        if (line := format_issue(report.suite, verdict))
    )


def format_summary(reports: 'Iterable[Report]') -> str:
    """Format a one-line count summary over every report."""
    reports = list(reports)

    return (
        f'{sum(len(report.verdicts) for report in reports)} case(s): '
        f'{sum(report.passed for report in reports)} passed, '
        f'{sum(report.failed for report in reports)} failed, '
        f'{sum(report.errors for report in reports)} errors, '
        f'{sum(report.skipped for report in reports)} skipped'
    )

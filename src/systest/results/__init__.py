"""Run results: verdicts, reports and their renderings."""

from .formatter import format_issue, format_issues, format_summary
from .junit import write_report
from .verdicts import (
    CaseState,
    ExpectationResult,
    ExpectationStatus,
    Report,
    Verdict,
    VerdictCause,
    VerdictStatus,
)

__all__ = (
    'CaseState',
    'ExpectationResult',
    'ExpectationStatus',
    'Report',
    'Verdict',
    'VerdictCause',
    'VerdictStatus',
    'format_issue',
    'format_issues',
    'format_summary',
    'write_report',
)

"""Execution engine.

Runs parsed suites against live services: provisions a fresh environment
per case, dispatches inputs, captures outputs, verifies them against
expectations and tears everything down.
"""

from .environment import ExecutionEnvironment
from .execution import CaseExecution
from .matchers import diff, matches
from .orchestrator import Orchestrator
from .verifier import Verifier

__all__ = (
    'CaseExecution',
    'ExecutionEnvironment',
    'Orchestrator',
    'Verifier',
    'diff',
    'matches',
)

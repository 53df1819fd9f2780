"""Command-line interface of the systest orchestrator.

The CLI is a thin shell over the library: it parses suites, runs them
with settings resolved from the environment and command-line flags, and
writes the JSON report, JUnit XML results and a summary of issues.
"""

import logging
from json import dumps
from pathlib import Path
from typing import TYPE_CHECKING

from click import IntRange, argument, echo, group, option
from click import Path as PathParam

from systest.core import ProviderRegistry, SuiteParser
from systest.errors import SystestError
from systest.executor import Orchestrator
from systest.jsonschema import SchemaGenerator
from systest.results import format_issues, format_summary, write_report
from systest.settings import ExecutorSettings

if TYPE_CHECKING:
    from systest.core import SuiteFilter
    from systest.results import Report

#: Exit code of runs with unsuccessful cases.
EXIT_FAILED = 1
#: Exit code of runs that could not start.
EXIT_USAGE = 2

LOG_FORMAT = '%(asctime)s %(levelname)-8s %(name)s: %(message)s'

InputPath = PathParam(
    exists=True,
    readable=True,
    path_type=Path,
)

OutputFilepath = PathParam(
    dir_okay=False,
    writable=True,
    path_type=Path,
)

OutputDirectory = PathParam(
    file_okay=False,
    writable=True,
    path_type=Path,
)


@group(help='Declarative system tests for containerized services.')
def cli() -> None:
    """Root CLI group for systest tools."""
    return None


def _make_filter(pattern: str | None) -> 'SuiteFilter | None':
    """Build a suite file predicate from a glob pattern."""
    if not pattern:
        return None

    return lambda path: path.match(pattern)


def _write_json(reports: 'list[Report]', path: Path) -> None:
    """Write reports as a JSON document."""
    path.parent.mkdir(parents=True, exist_ok=True)

    with path.open('wt', encoding='utf-8') as output:
        output.write(dumps(
            [report.model_dump(mode='json') for report in reports],
            ensure_ascii=False,
            indent=4,
        ))
        output.write('\n')


@cli.command(
    name='run',
    help='Run a suite file, or every suite of a directory.',
)
@argument('path', type=InputPath)
@option(
    '-k', '--filter', 'pattern',
    help='Glob pattern selecting suite files, for example "orders*.yml".',
)
@option(
    '--json', 'json_path',
    type=OutputFilepath,
    help='Write the machine-readable report to a JSON file.',
)
@option(
    '--results-dir',
    type=OutputDirectory,
    help='Write JUnit XML results to a directory.',
)
@option(
    '-x', '--stop-on-first-failure',
    is_flag=True,
    help='Abort the remaining cases of a suite after the first unsuccessful one.',
)
@option(
    '-n', '--parallel',
    type=IntRange(min=1),
    help='Maximum number of cases executed concurrently.',
)
@option(
    '-v', '--verbose',
    count=True,
    help='Increase logging verbosity.',
)
@option(
    '--relaxed',
    is_flag=True,
    help='Warn instead of failing on plugin issues and shadowed kinds.',
)
def run_suites(path: Path, pattern: str | None, json_path: Path | None,  # noqa: PLR0913
               results_dir: Path | None, stop_on_first_failure: bool,  # noqa: FBT001
               parallel: int | None, verbose: int, relaxed: bool) -> None:  # noqa: FBT001
    """Parse and run suites, then report their outcome."""
    logging.basicConfig(
        level=logging.DEBUG if verbose > 1 else logging.INFO if verbose else logging.WARNING,
        format=LOG_FORMAT,
    )

    overrides: dict[str, object] = {}
    if stop_on_first_failure:
        overrides['stop_on_first_failure'] = True
    if parallel is not None:
        overrides['parallel_cases'] = parallel
    if relaxed:
        overrides['strict'] = False

    try:
        settings = ExecutorSettings(**overrides)
        registry = ProviderRegistry(strict=settings.strict)
        suites = SuiteParser(registry).load_directory(path, _make_filter(pattern))

    except SystestError as error:
        echo(str(error), err=True)
        raise SystemExit(EXIT_USAGE) from error

    if not suites:
        echo(f'No suites found in {path}', err=True)
        raise SystemExit(EXIT_USAGE)

    orchestrator = Orchestrator(registry, settings)
    reports = [orchestrator.run(suite) for suite in suites]

    if json_path is not None:
        _write_json(reports, json_path)

    if results_dir is not None:
        for report in reports:
            write_report(report, results_dir)

    if issues := format_issues(reports):
        echo(issues, err=True)
    echo(format_summary(reports))

    if not all(report.successful for report in reports):
        raise SystemExit(EXIT_FAILED)


@cli.command(
    name='schema',
    help='Print the suite document JSON Schema to standard output.',
)
def print_schema() -> None:
    """Generate and print the JSON Schema."""
    echo(SchemaGenerator.make_schema())


if __name__ == '__main__':
    cli()

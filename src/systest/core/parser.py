"""YAML suite parser.

This module converts human-authored YAML suite documents into validated,
immutable `TestSuite` models.

Parsing runs in two passes:
- structural validation of the document against the `SuiteDefinition`
  schema, with validation failures located back to the source line;
- referential validation, which binds every service reference, input
  and expectation of a case to a declared service definition.

The parser never returns a partially constructed suite: any failure
raises a `ParseError` carrying the source location and a human-readable
cause.
"""

from pathlib import Path
from typing import TYPE_CHECKING
from warnings import warn

from pydantic import ValidationError
from yaml import SafeLoader
from yaml.error import MarkedYAMLError
from yaml.nodes import MappingNode, ScalarNode, SequenceNode

from systest.errors import ErrorContext, ParseError, UnusedServiceWarning, find_mark
from systest.schema import (
    CaseDefinition,
    Expectation,
    Location,
    ServiceRef,
    SuiteDefinition,
    TestCase,
    TestSuite,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from io import TextIOBase

if TYPE_CHECKING:
    from yaml.nodes import Node

if TYPE_CHECKING:
    from systest.errors import Mark, MarksIndex
    from systest.schema import ServiceDefinition

    from .registry import ProviderRegistry

#: Predicate selecting suite files when loading a directory.
type SuiteFilter = Callable[[Path], bool]

#: Suffixes of suite files.
SUITE_SUFFIXES = ('.yml', '.yaml')


class SuiteParser:
    """Parser of YAML suite documents.

    When a provider registry is supplied, service kinds are checked
    against it at parse time, so an unknown kind fails before any
    environment is provisioned.
    """

    def __init__(self, registry: 'ProviderRegistry | None' = None,
                 loader: type[SafeLoader] = SafeLoader) -> None:
        """Initialize the suite parser.

        Args:
            registry: Optional registry used to check provider kinds.
            loader: YAML loader class. Safe loading is used by default.
        """
        self.registry = registry
        self.loader = loader

    def parse(self, content: 'TextIOBase | str', *,
              filename: str | None = None) -> TestSuite:
        """Parse a YAML suite document.

        Args:
            content: YAML content as a string or file-like object.
            filename: Name of the source file, used for error locations.

        Returns:
            The validated suite.

        Raises:
            ParseError: If YAML parsing, structural validation or
                referential validation fails.
        """
        node, data = self._load(content, filename)

        marks = self._index_marks(node) if node is not None else {}

        try:
            definition = SuiteDefinition.model_validate(data)

        except ValidationError as base:
            raise ParseError.from_pydantic_error(
                base,
                data=data,
                filename=filename,
                marks=marks,
            ) from base

        return self._resolve(definition, marks, filename)

    def parse_file(self, path: Path | str) -> TestSuite:
        """Parse a YAML suite file.

        Args:
            path: Path to the suite file.

        Returns:
            The validated suite.

        Raises:
            ParseError: If the file can not be read or is invalid.
        """
        path = Path(path)

        try:
            with path.open('rt', encoding='utf-8') as content:
                return self.parse(content, filename=str(path))

        except OSError as base:
            raise ParseError(
                f'Can not read suite file: {base.strerror or base}',
                context=ErrorContext(filename=str(path)),
            ) from base

    def load_directory(self, root: Path | str,
                       suite_filter: 'SuiteFilter | None' = None) -> tuple[TestSuite, ...]:
        """Parse every suite file of a directory tree.

        Every `*.yml` and `*.yaml` file under the root is a suite. Files
        are parsed in path order, so loading is deterministic.

        Args:
            root: Directory to scan, or a single suite file.
            suite_filter: Optional predicate selecting suite files.

        Returns:
            Parsed suites in path order.

        Raises:
            ParseError: If any selected suite file is invalid.
        """
        root = Path(root)

        if root.is_file():
            return (self.parse_file(root),)

        paths = sorted(
            path
            for path in root.rglob('*')
            if path.is_file() and path.suffix in SUITE_SUFFIXES
        )

        return tuple(
            self.parse_file(path)
            for path in paths
            if suite_filter is None or suite_filter(path)
        )

    def _load(self, content: 'TextIOBase | str',
              filename: str | None) -> tuple['Node | None', object]:
        """Compose and construct a single YAML document."""
        loader = self.loader(content)
        if filename:
            loader.name = filename

        try:
            node = loader.get_single_node()
            data = loader.construct_document(node) if node is not None else None

        except MarkedYAMLError as base:
            raise ParseError.from_yaml_error(base) from base

        finally:
            loader.dispose()

        return node, data

    @classmethod
    def _index_marks(cls, node: 'Node',
                     path: tuple[int | str, ...] = ()) -> dict[tuple[int | str, ...], 'Mark']:
        """Index start locations of document elements by their path."""
        marks = {path: (node.start_mark.line, node.start_mark.column)}

        if isinstance(node, MappingNode):
            for key, value in node.value:
                if isinstance(key, ScalarNode):
                    marks.update(cls._index_marks(value, (*path, key.value)))

        elif isinstance(node, SequenceNode):
            for position, item in enumerate(node.value):
                marks.update(cls._index_marks(item, (*path, position)))

        return marks

    @staticmethod
    def _error(message: str, marks: 'MarksIndex',
               path: tuple[int | str, ...], filename: str | None,
               case_name: str | None = None) -> ParseError:
        """Build a parse error located at a document path."""
        line_num, column_num = find_mark(marks, path)

        return ParseError(message, context=ErrorContext(
            filename=filename,
            line_num=line_num,
            column_num=column_num,
            case_name=case_name,
        ))

    def _check_unique(self, names: 'Iterable[str]', label: str, marks: 'MarksIndex',
                      path: tuple[int | str, ...], filename: str | None,
                      case_name: str | None = None) -> None:
        """Ensure names are unique within a list."""
        seen: set[str] = set()

        for position, name in enumerate(names):
            if name in seen:
                raise self._error(
                    f'Duplicate {label} name {name!r}',
                    marks, (*path, position), filename, case_name,
                )
            seen.add(name)

    def _resolve(self, definition: SuiteDefinition, marks: 'MarksIndex',
                 filename: str | None) -> TestSuite:
        """Run referential validation and build the resolved suite."""
        self._check_unique((item.name for item in definition.services), 'service',
                           marks, ('services',), filename)
        self._check_unique((item.name for item in definition.cases), 'case',
                           marks, ('cases',), filename)

        catalog = {item.name: item for item in definition.services}

        if self.registry is not None:
            for position, service in enumerate(definition.services):
                if service.kind not in self.registry:
                    raise self._error(
                        f'Unknown provider kind {service.kind!r} of service {service.name!r}',
                        marks, ('services', position, 'kind'), filename,
                    )

        used: set[str] = set()
        cases = []

        for position, case in enumerate(definition.cases):
            case_test = self._resolve_case(
                case, catalog, marks, ('cases', position), filename,
                definition.defaults.ordering,
            )
            cases.append(case_test)
            used.update(case.services or ())
            used.update(item.service for item in case.inputs)
            used.update(item.service for item in case.expectations)

        for name in catalog:
            if name not in used:
                warn(
                    f'Service {name!r} of suite {definition.name!r} is not used by any case',
                    category=UnusedServiceWarning,
                    stacklevel=3,
                )

        try:
            return TestSuite(
                name=definition.name,
                description=definition.description,
                disabled=definition.disabled,
                defaults=definition.defaults,
                services=tuple(definition.services),
                cases=tuple(cases),
                location=Location(filename=filename, line=self._line(marks, ())),
            )

        except ValidationError as base:
            raise ParseError.from_pydantic_error(
                base,
                data=definition.model_dump(),
                filename=filename,
                marks=marks,
            ) from base

    def _resolve_case(self, case: CaseDefinition,
                      catalog: dict[str, 'ServiceDefinition'],
                      marks: 'MarksIndex', path: tuple[int | str, ...],
                      filename: str | None, ordering: str) -> TestCase:
        """Bind the references of a case to service definitions."""
        names = list(catalog) if case.services is None else case.services

        self._check_unique(names, 'participating service', marks,
                           (*path, 'services'), filename, case.name)

        for position, name in enumerate(names):
            if name not in catalog:
                raise self._error(
                    f'Case {case.name!r} references undeclared service {name!r}',
                    marks, (*path, 'services', position), filename, case.name,
                )

        for section, items in (('inputs', case.inputs), ('expectations', case.expectations)):
            for position, item in enumerate(items):
                if item.service not in names:
                    raise self._error(
                        f'{section.capitalize()[:-1]} {position + 1} of case {case.name!r} '
                        f'targets service {item.service!r} not declared for the case',
                        marks, (*path, section, position, 'service'), filename, case.name,
                    )

        expectations = tuple(
            item.model_copy(update={'ordering': ordering})
            if isinstance(item, Expectation) and item.ordering is None
            else item
            for item in case.expectations
        )

        return TestCase(
            name=case.name,
            description=case.description,
            notes=case.notes,
            disabled=case.disabled,
            services=tuple(
                ServiceRef(name=name, definition=catalog[name])
                for name in names
            ),
            inputs=tuple(case.inputs),
            expectations=expectations,
            location=Location(filename=filename, line=self._line(marks, path)),
        )

    @staticmethod
    def _line(marks: 'MarksIndex', path: tuple[int | str, ...]) -> int | None:
        """One-based source line of a document element."""
        if (mark := marks.get(path)) is None:
            return None

        return mark[0] + 1

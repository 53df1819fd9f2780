"""Core exception and warning hierarchy.

Every error raised by the library derives from `SystestError`, which
renders its message together with the location it refers to: the source
file, line and column of a suite document, the case and expectation
involved, and a YAML snippet of the offending element.

A rendered parse error reads, for example::

    Field required at cases.0.name
        in "orders.yml", line 7, column 5
            ...
            - inputs: []
"""

from os import linesep
from typing import TYPE_CHECKING, Any, TypedDict

from yaml import dump
from yaml.error import MarkedYAMLError

from systest.values import MAPPINGS, SCALARS, SEQUENCES

if TYPE_CHECKING:
    from collections.abc import Mapping
    from importlib.metadata import EntryPoint
    from typing import Self

if TYPE_CHECKING:
    from pydantic_core import ErrorDetails, ValidationError
    from yaml.nodes import Node

#: Location of a document element: `(line, column)`, both zero-based.
type Mark = tuple[int, int]

#: Path of a document element: mapping keys and sequence positions.
type DocumentPath = tuple[int | str, ...]

#: Index of document element locations by their path in the document tree.
type MarksIndex = Mapping[DocumentPath, Mark]

INDENT = '    '
UNKNOWN_SOURCE = '<unicode string>'
RUNTIME_PLACEHOLDER = '<runtime object>'


class ErrorContext(TypedDict, total=False):
    """Where an error happened and what it happened on.

    Every key is optional; only the available ones are rendered.
    """

    #: Name of the source file.
    filename: str | None

    #: Zero-based line in the source file.
    line_num: int | None
    #: Zero-based column in the source file.
    column_num: int | None

    #: Name of the test case.
    case_name: str | None
    #: Zero-based position of the expectation within its case.
    expectation_num: int | None

    #: Underlying exception.
    error: Exception | None

    #: Document element rendered as a snippet.
    element: Any


def find_mark(marks: 'MarksIndex | None',
              path: 'DocumentPath') -> tuple[int | None, int | None]:
    """Find the location of a document element or of its closest ancestor.

    Args:
        marks: Element locations indexed by document path.
        path: Path of the element.

    Returns:
        Zero-based `(line, column)`, or `(None, None)` if unknown.
    """
    if marks:
        for depth in range(len(path), -1, -1):
            if (mark := marks.get(path[:depth])) is not None:
                return mark

    return None, None


def _yaml_safe(value: Any) -> Any:  # noqa: ANN401
    """Replace runtime objects with a placeholder before dumping to YAML."""
    if value is None or isinstance(value, SCALARS):
        return value

    if isinstance(value, MAPPINGS):
        return {key: _yaml_safe(item) for key, item in value.items()}

    if isinstance(value, SEQUENCES):
        return [_yaml_safe(item) for item in value]

    return RUNTIME_PLACEHOLDER


def _indented(text: str, prefix: str) -> list[str]:
    """Split text into non-blank lines carrying a prefix."""
    return [f'{prefix}{line}' for line in text.splitlines() if line.strip()]


class ErrorFormatter:
    """Render error messages with their location and a snippet."""

    @classmethod
    def format(cls, message: str, context: ErrorContext | None = None) -> str:
        """Render a message with its context.

        Args:
            message: Human-readable error message.
            context: Optional location and element data.

        Returns:
            The message followed by location and snippet lines.
        """
        if not context:
            return message

        return linesep.join([
            message,
            *cls.location_lines(context),
            *cls.snippet_lines(context),
        ]).rstrip()

    @classmethod
    def location_lines(cls, context: ErrorContext) -> list[str]:
        """Render the source location, and the case and expectation if known."""
        source = f'in "{context.get('filename') or UNKNOWN_SOURCE}"'
        if (line_num := context.get('line_num')) is not None:
            source += f', line {line_num + 1}'
            if (column_num := context.get('column_num')) is not None:
                source += f', column {column_num + 1}'

        lines = [f'{INDENT}{source}']

        if (case_name := context.get('case_name')) is not None:
            case = f'on case {case_name!r}'
            if (expectation_num := context.get('expectation_num')) is not None:
                case += f', expectation {expectation_num + 1}'
            lines.append(f'{INDENT}{case}')

        return lines

    @classmethod
    def snippet_lines(cls, context: ErrorContext) -> list[str]:
        """Render the offending YAML fragment or element.

        YAML syntax errors show the source line with a caret under the
        problem. Other errors show the failing element as YAML.
        """
        prefix = INDENT * 2

        error = context.get('error')
        if isinstance(error, MarkedYAMLError) and error.problem_mark is not None:
            return _indented(error.problem_mark.get_snippet(indent=0) or '', prefix)

        if element := context.get('element'):
            document = dump(_yaml_safe(element), indent=2, sort_keys=False)
            return [f'{prefix} ...', *_indented(document, prefix)]

        return []


class PluginWarning(UserWarning):
    """Warning emitted for non-fatal plugin-related issues.

    Used when a plugin cannot be loaded or shadows an existing provider,
    but the issue does not prevent execution (in relaxed mode).
    """


class TeardownWarning(UserWarning):
    """Warning emitted when releasing a service handle fails.

    Teardown failures never change a case verdict; they are reported
    through this warning, the log and the verdict's warnings list.
    """


class UnusedServiceWarning(UserWarning):
    """Warning emitted when a suite declares a service no case uses."""


class SystestError(Exception, ErrorFormatter):
    """Base exception for all systest errors.

    Attributes:
        message: Message without location details.
        context: Location details rendered by `str()`.
    """

    def __init__(self, message: str, *,
                 context: ErrorContext | None = None) -> None:
        """Initialize an error.

        Args:
            message: Human-readable error description.
            context: Optional location and element data.
        """
        self.message = message
        self.context = context

        super().__init__(message)

    def __str__(self) -> str:
        """Message rendered with its context."""
        return self.format(self.message, self.context)


class PluginError(SystestError):
    """Error raised for fatal plugin-related failures.

    Raised on strict mode when a plugin entry point fails to load or
    does not expose a plugin, when a kind is registered twice, and when
    registering into a frozen registry.
    """

    def __init__(self, message: str, *,
                 entrypoint: 'EntryPoint | None' = None) -> None:
        """Initialize a plugin error.

        Args:
            message: Human-readable error description.
            entrypoint: Entry point the failure relates to, if any.
        """
        self.entrypoint = entrypoint

        super().__init__(message)


class UnknownKindError(SystestError):
    """Error raised when no provider is registered for a kind."""

    def __init__(self, kind: str) -> None:
        """Initialize an unknown kind error.

        Args:
            kind: The provider kind that failed to resolve.
        """
        self.kind = kind

        super().__init__(f'No provider registered for kind {kind!r}')


class ParseError(SystestError):
    """Error raised when a suite document is malformed or invalid.

    A parse error is fatal to suite start: no environment is provisioned
    for a suite that fails to parse.
    """

    @classmethod
    def from_yaml_node(cls, message: str, node: 'Node',
                       error: Exception | None = None) -> 'Self':
        """Create an error located at a YAML node.

        Args:
            message: Human-readable error message.
            node: YAML node the error refers to.
            error: Optional underlying exception.

        Returns:
            A parse error located at the node start.
        """
        return cls(message, context=ErrorContext(
            filename=node.start_mark.name,
            line_num=node.start_mark.line,
            column_num=node.start_mark.column,
            error=error,
        ))

    @classmethod
    def from_yaml_error(cls, error: MarkedYAMLError) -> 'Self':
        """Create an error from a YAML syntax failure.

        Args:
            error: Exception raised by the YAML parser.

        Returns:
            A parse error located at the problem mark.
        """
        context = ErrorContext(error=error)
        if (mark := error.problem_mark) is not None:
            context.update(
                filename=mark.name,
                line_num=mark.line,
                column_num=mark.column,
            )

        message = 'Invalid YAML'
        if error.problem:
            message += f'{linesep}{INDENT}{error.problem}'

        return cls(message, context=context)

    @classmethod
    def from_pydantic_error(cls, error: 'ValidationError', *,
                            data: Any = None,  # noqa: ANN401
                            filename: str | None = None,
                            marks: 'MarksIndex | None' = None) -> 'Self':
        """Create an error from a Pydantic validation failure.

        Only the first validation issue is reported. It is located at the
        deepest element of its error path present in the document data.

        Args:
            error: ValidationError raised by Pydantic.
            data: Raw document data that failed validation.
            filename: Name of the source file.
            marks: Element locations indexed by document path.

        Returns:
            A parse error with the location and snippet of the issue.
        """
        context = ErrorContext(filename=filename, error=error)

        if not data or not isinstance(data, dict):
            return cls('Suite document must be a mapping', context=context)

        for details in error.errors(include_url=False, include_input=False):
            summary = cls._summarize(details)
            if summary is None:
                continue

            path, element = cls._follow(data, details['loc'])
            line_num, column_num = find_mark(marks, path)

            return cls(summary, context=ErrorContext(
                **context,
                line_num=line_num,
                column_num=column_num,
                element=element,
            ))

        return cls('Validation error', context=context)

    @staticmethod
    def _summarize(details: 'ErrorDetails') -> str | None:
        """First non-blank message line, suffixed with the error path."""
        for line in (details.get('msg') or '').splitlines():
            if line := line.strip():
                return f'{line} at {'.'.join(map(str, details['loc'])) or 'document'}'

        return None

    @staticmethod
    def _follow(data: Any, loc: tuple[int | str, ...]) -> tuple['DocumentPath', Any]:  # noqa: ANN401
        """Follow an error path through the document data.

        Path items absent from the data, such as union tags, are skipped.
        The walk stops at the first scalar.

        Returns:
            The path reached in the document, and the reached element
            wrapped in a container of its parent's type, or `None` if no
            part of the path was found.
        """
        path: list[int | str] = []
        parent = node = data

        for key in loc:
            if isinstance(node, MAPPINGS):
                if key not in node:
                    continue
            elif isinstance(node, (list, tuple)):
                if not isinstance(key, int) or not 0 <= key < len(node):
                    continue
            else:
                break

            parent, node = node, node[key]
            path.append(key)

        if not path:
            return (), None

        if isinstance(parent, MAPPINGS):
            return tuple(path), {path[-1]: node}

        return tuple(path), [node]


class ProviderError(SystestError):
    """Base error for failures raised while driving a provider.

    Attributes:
        service: Logical name of the service the failure relates to.
    """

    #: Machine-readable cause reported on the verdict.
    cause: str = 'provider'

    def __init__(self, message: str, *, service: str | None = None,
                 context: ErrorContext | None = None) -> None:
        """Initialize a provider error.

        Args:
            message: Human-readable error description.
            service: Name of the service involved.
            context: Optional error context.
        """
        self.service = service

        super().__init__(message, context=context)


class ProvisioningError(ProviderError):
    """Error raised when a service fails to start or become ready."""

    cause = 'provisioning'


class DispatchError(ProviderError):
    """Error raised when an input can not be injected into a service."""

    cause = 'dispatch'


class CaptureError(ProviderError):
    """Error raised when capturing the output of a service crashes."""

    cause = 'capture'


class CaseTimeoutError(SystestError):
    """Error raised when the case-level time budget is exhausted."""

    cause = 'timeout'


class ExpectationError(SystestError):
    """Base error for a failed expectation."""


class ObservationTimeout(ExpectationError):
    """No matching record arrived within the expectation window."""


class MismatchError(ExpectationError):
    """A record arrived within the window but with the wrong payload or order."""

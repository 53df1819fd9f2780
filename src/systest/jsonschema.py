"""JSON Schema management."""

from functools import cache
from json import dumps
from typing import TYPE_CHECKING

from pydantic.json_schema import GenerateJsonSchema, JsonSchemaValue

from systest.names import DURATION_PATTERN, parse_duration
from systest.schema import SuiteDefinition

if TYPE_CHECKING:
    from pydantic_core import core_schema as core


class SchemaGenerator(GenerateJsonSchema):
    """Custom JSON Schema generator for suite documents.

    Durations are validated from numbers of seconds or from strings with
    a unit suffix, while their validated type is a plain number. The
    generated schema accepts both forms, so editors do not flag
    human-authored durations such as `"250ms"`.
    """

    @classmethod
    @cache
    def make_schema(cls, indent: int | str | None = 4) -> str:
        """Generate the JSON Schema for suite documents.

        Args:
            indent: Indentation level used for JSON formatting.

        Returns:
            Serialized JSON Schema string.
        """
        schema = {
            **SuiteDefinition.model_json_schema(
                schema_generator=cls,
                mode='validation',
            ),
            'title': 'systest',
            'description': 'JSON Schema for systest suite documents',
            '$schema': cls.schema_dialect,
        }

        return dumps(
            schema,
            ensure_ascii=False,
            sort_keys=True,
            indent=indent,
        )

    def function_before_schema(self,
                               schema: 'core.BeforeValidatorFunctionSchema') -> JsonSchemaValue:
        """Generate JSON Schema for values converted before validation.

        Args:
            schema: Pydantic core schema with a before validator.

        Returns:
            Either a number or a duration string for durations, the
            schema of the validated value otherwise.
        """
        if schema['function'].get('function') is not parse_duration:
            return super().function_before_schema(schema)

        return {
            'anyOf': [
                self.generate_inner(schema['schema']),
                {'type': 'string', 'pattern': DURATION_PATTERN.pattern},
            ],
        }

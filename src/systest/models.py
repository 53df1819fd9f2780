"""Base Pydantic models for suite elements and runtime settings.

This module defines the foundational model classes used by all suite
structures. It enforces immutability and strict schema validation to
guarantee that parsed suites are deterministic and explicit.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchemaModel(BaseModel):
    """Base immutable model for all suite elements.

    This class serves as the root for all Pydantic models representing
    suite constructs such as services, inputs, expectations and cases.

    Design principles enforced by this model:
        - Immutability: elements cannot be modified after creation,
          so the orchestrator can only read what the parser produced.
        - Strict schema validation: unknown or extra fields are rejected
          to avoid silent errors caused by typos in suite documents.

    All suite models must inherit from this class.
    """

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        frozen=True,
        extra='forbid',
    )


class DescribedMixin(SchemaModel):
    """Mixin providing element self-documentation.

    The fields defined in this model do not affect execution semantics
    and are used purely for reporting.
    """

    description: str | None = Field(
        default=None,
        title='Description',
        description='Detailed human-readable description of the element.',
    )


class SettingsModel(BaseSettings):
    """Base immutable model for runtime settings.

    Design principles enforced by this model:
        - Immutability: resolved settings cannot be modified after creation.
        - Tolerant schema handling: unknown or extra fields are ignored,
          so unrelated environment variables never break resolution.
    """

    model_config = SettingsConfigDict(
        frozen=True,
        extra='ignore',
    )

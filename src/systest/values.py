"""Payload values.

Inputs, expectations and observed records all carry payloads of the same
shape: trees of scalars, sequences and string-keyed mappings. Providers
hand over whatever their SDK returns, so observed output is normalized
into that shape before it is recorded.
"""

from collections.abc import Mapping, Sequence
from datetime import date, datetime, timedelta
from typing import Any

from pydantic import BaseModel

#: Atomic payload values.
type Scalar = date | datetime | timedelta | str | bytes | int | float | bool

#: A payload is a tree of scalars, sequences and string-keyed mappings.
type Value = Scalar | Sequence['Value'] | Mapping[str, 'Value'] | None

#: Any object received from providers, SDKs or the YAML loader
#: before normalization.
type RuntimeValue = Any

MAPPINGS = (dict,)
SCALARS = (date, datetime, timedelta, str, bytes, int, float, bool)
SEQUENCES = (list, tuple, set, frozenset)


def normalize(value: RuntimeValue) -> Value:
    """Recursively convert a runtime object into a payload value.

    Sequences and sets become lists. Mappings must have string keys.
    Pydantic models are dumped to mappings first.

    Args:
        value: Object to convert.

    Returns:
        The payload value.

    Raises:
        TypeError: If the object, or a mapping key, is not a payload.
    """
    if value is None or isinstance(value, SCALARS):
        return value

    if isinstance(value, BaseModel):
        return normalize(value.model_dump(mode='json'))

    if isinstance(value, Mapping):
        payload = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f'Can not use {key!r} as mapping key')
            payload[key] = normalize(item)
        return payload

    if isinstance(value, SEQUENCES):
        return [normalize(item) for item in value]

    raise TypeError(f'{value!r} has unsupported type')

"""Suite parsing and provider registry.

This package provides the two collaborators of the execution engine
that are set up before a run starts:
- `SuiteParser`, which parses YAML suite documents into validated,
  immutable suite models;
- `ProviderRegistry`, which resolves provider kinds to providers,
  including providers discovered from installed plugins.
"""

from .parser import SuiteFilter, SuiteParser
from .registry import ProviderRegistry

__all__ = (
    'ProviderRegistry',
    'SuiteFilter',
    'SuiteParser',
)

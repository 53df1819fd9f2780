"""Tests configurations and fixtures."""

from importlib.metadata import EntryPoint, EntryPoints
from typing import TYPE_CHECKING

import pytest
import yaml

from systest.core import ProviderRegistry, SuiteParser
from systest.settings import ExecutorSettings
from tests.examples.providers import ScriptedProvider

if TYPE_CHECKING:
    from collections.abc import Callable

if TYPE_CHECKING:
    from pytest_mock import MockerFixture, MockType

if TYPE_CHECKING:
    from systest.extensions import Plugin


@pytest.fixture
def loader() -> type[yaml.SafeLoader]:
    """Provide an isolated YAML SafeLoader class for tests.

    Creates a dedicated subclass of `yaml.SafeLoader` so constructors
    registered during a test never leak into other tests.
    """
    class Loader(yaml.SafeLoader):
        pass

    return Loader


@pytest.fixture
def patch_entrypoints(mocker: 'MockerFixture') -> 'Callable[..., MockType]':
    """Provide a factory replacing installed `systest_providers` plugins.

    Calling the factory without plugins hides every installed plugin.
    Each given object becomes the result of loading one entry point,
    unless `raises` makes loading fail instead.
    """
    def make_entrypoint(plugin: object, raises: Exception | None) -> 'MockType':
        entrypoint = mocker.Mock(spec=EntryPoint)
        entrypoint.group = 'systest_providers'
        entrypoint.name = 'tests'
        entrypoint.value = 'tests.examples.plugins:example'
        entrypoint.load.return_value = plugin
        entrypoint.load.side_effect = raises

        return entrypoint

    def patch(*plugins: 'Plugin | object', raises: Exception | None = None) -> 'MockType':
        """Patch `importlib.metadata.entry_points` for the current test.

        Args:
            plugins: Objects returned by the entry points.
            raises: Exception raised by every entry point instead.

        Returns:
            The `entry_points` mock.
        """
        return mocker.patch(
            'importlib.metadata.entry_points',
            return_value=EntryPoints(make_entrypoint(plugin, raises) for plugin in plugins),
        )

    return patch


@pytest.fixture
def scripted() -> ScriptedProvider:
    """Provide a fresh scripted provider."""
    return ScriptedProvider()


@pytest.fixture
def registry(scripted: ScriptedProvider) -> ProviderRegistry:
    """Provide a registry of builtin providers and the scripted provider.

    Installed plugins are not discovered, so tests do not depend on the
    environment they run in.
    """
    registry = ProviderRegistry(plugins=False)
    registry.register('scripted', scripted)

    return registry


@pytest.fixture
def parser(registry: ProviderRegistry, loader: type[yaml.SafeLoader]) -> SuiteParser:
    """Provide a suite parser checking kinds against the test registry."""
    return SuiteParser(registry, loader)


@pytest.fixture
def settings() -> ExecutorSettings:
    """Provide settings with short timeouts."""
    return ExecutorSettings(
        provision_timeout=2.0,
        expectation_timeout=0.5,
        case_grace=1.0,
    )

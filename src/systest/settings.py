"""Runtime settings of the executor.

Settings are resolved from `SYSTEST_*` environment variables and may be
overridden by explicit keyword arguments, for example from CLI flags.
Suite defaults take precedence over these settings for the timeouts they
declare.
"""

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from systest.models import SettingsModel
from systest.names import Duration  # noqa: TC001


class ExecutorSettings(SettingsModel):
    """Settings controlling a suite run."""

    model_config = SettingsConfigDict(
        env_prefix='SYSTEST_',
        frozen=True,
        extra='ignore',
    )

    provision_timeout: Duration = Field(
        default=60.0,
        description='Readiness timeout of services without an explicit one.',
    )

    expectation_timeout: Duration = Field(
        default=5.0,
        description='Observation window of expectations without an explicit one.',
    )

    case_grace: Duration = Field(
        default=5.0,
        description='Extra time added to derived case budgets.',
    )

    stop_on_first_failure: bool = Field(
        default=False,
        description='Abort remaining cases after the first unsuccessful one.',
    )

    parallel_cases: int = Field(
        default=1,
        ge=1,
        description='Maximum number of cases executed concurrently.',
    )

    strict: bool = Field(
        default=True,
        description='Fail on plugin issues and shadowed provider kinds.',
    )

"""Public API surface for lt_common."""

from lt_common.env import (
    parse_bool_env,
    parse_float_env,
    parse_int_env,
    parse_properties_env,
)
from lt_common.errors import (
    BackendError,
    BackendExecutionError,
    CiBuildTimeoutError,
    ConfigurationError,
    InjectionError,
    InvalidTransitionError,
    JobNotFoundError,
    LTError,
    PersistenceError,
    ResultParseError,
    SchedulerError,
    error_to_payload,
    wrap_error,
)
from lt_common.logging import configure_logging

__all__ = [
    "BackendError",
    "BackendExecutionError",
    "CiBuildTimeoutError",
    "ConfigurationError",
    "InjectionError",
    "InvalidTransitionError",
    "JobNotFoundError",
    "LTError",
    "PersistenceError",
    "ResultParseError",
    "SchedulerError",
    "configure_logging",
    "error_to_payload",
    "parse_bool_env",
    "parse_float_env",
    "parse_int_env",
    "parse_properties_env",
    "wrap_error",
]

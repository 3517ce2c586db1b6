"""
Adaptive bulkhead configuration for Python.

Defines and validates the parameters of an adaptive bulkhead: a concurrency
limiter that adjusts its limit from observed latency instead of a fixed value.

Quick Start:
    >>> from adaptive_bulkhead import AdaptiveBulkheadConfig
    >>> config = (
    ...     AdaptiveBulkheadConfig.builder()
    ...     .desirable_average_throughput(2)
    ...     .desirable_operation_latency(0.2)
    ...     .max_acceptable_request_latency(0.26)
    ...     .build()
    ... )

Overrides from the environment:
    >>> config = AdaptiveBulkheadConfig.of_defaults().with_env_vars()

Main Classes:
    - AdaptiveBulkheadConfig: Immutable, validated bulkhead parameters.
    - AdaptiveBulkheadConfigBuilder: Mutable builder that stages and validates them.
    - ConfigValidationError: Exception raised when a parameter or invariant is invalid.
    - ConfigEnvVarError: Exception raised when env var parsing fails.
"""

from importlib.metadata import version as _get_version

__version__ = _get_version("adaptive-bulkhead")

from adaptive_bulkhead._config import (
    MIN_ADAPTATION_WINDOWS_PER_RECONFIGURATION,
    MIN_MEASUREMENTS_PER_ADAPTATION_WINDOW,
    AdaptiveBulkheadConfig,
    AdaptiveBulkheadConfigBuilder,
    ConfigEnvVarError,
    ConfigValidationError,
)

__all__ = [
    "__version__",
    # Configuration
    "AdaptiveBulkheadConfig",
    "AdaptiveBulkheadConfigBuilder",
    "ConfigEnvVarError",
    "ConfigValidationError",
    # Constants
    "MIN_MEASUREMENTS_PER_ADAPTATION_WINDOW",
    "MIN_ADAPTATION_WINDOWS_PER_RECONFIGURATION",
]

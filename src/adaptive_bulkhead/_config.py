"""
Configuration for the adaptive bulkhead.

An adaptive bulkhead throttles concurrent operations based on observed
latency instead of a fixed limit. This module holds the parameters its
control loop runs with: an immutable `AdaptiveBulkheadConfig` and the
mutable `AdaptiveBulkheadConfigBuilder` used to stage and validate it.

Every config that leaves this module satisfies the invariants the control
loop depends on, so consumers never need to re-validate:

1. All reals are strictly positive.
2. max_acceptable_request_latency >= desirable_operation_latency.
3. window_for_adaptation is long enough to take 15 measurements.
4. window_for_reconfiguration spans more than 15 adaptation windows.

Example:
    >>> from datetime import timedelta
    >>> from adaptive_bulkhead import AdaptiveBulkheadConfig
    >>>
    >>> config = (
    ...     AdaptiveBulkheadConfig.builder()
    ...     .desirable_operation_latency(0.2)
    ...     .max_acceptable_request_latency(0.3)
    ...     .build()
    ... )
    >>>
    >>> # Derive a new config, keeping every other field
    >>> slower = (
    ...     AdaptiveBulkheadConfig.from_config(config)
    ...     .window_for_adaptation(timedelta(seconds=60))
    ...     .window_for_reconfiguration(timedelta(minutes=20))
    ...     .build()
    ... )
"""

from __future__ import annotations

import logging
import math
import os
from collections.abc import Callable
from dataclasses import dataclass, field, fields
from datetime import timedelta
from typing import Any, Self

from adaptive_bulkhead._utils import as_duration, to_nanos

logger = logging.getLogger(__name__)

# At least this many latency samples must fit in one adaptation window.
MIN_MEASUREMENTS_PER_ADAPTATION_WINDOW = 15

# A reconfiguration window must span strictly more adaptation windows than this.
MIN_ADAPTATION_WINDOWS_PER_RECONFIGURATION = 15

# Informational only: the default ceiling is the literal 0.13, i.e. 0.1 * 1.3.
DEFAULT_MAX_LATENCY_FACTOR = 1.3

_NANOS_PER_SECOND = 1_000_000_000


# =============================================================================
# Exceptions
# =============================================================================


class ConfigEnvVarError(ValueError):
    """Raised when an environment variable has an invalid value."""

    def __init__(
        self,
        env_var: str,
        value: str,
        expected_type: str,
        cause: Exception | None = None,
    ):
        self.env_var = env_var
        self.value = value
        self.expected_type = expected_type
        super().__init__(f"Invalid value for {env_var}: '{value}' (expected {expected_type})")
        self.__cause__ = cause


class ConfigValidationError(ValueError):
    """Raised when a configuration value fails validation."""

    def __init__(self, field: str, value: Any, message: str):
        self.field = field
        self.value = value
        super().__init__(f"Invalid value for '{field}': {value!r}. {message}")


# =============================================================================
# Environment Variables
# =============================================================================


class EnvVars:
    """
    Reads the ADAPTIVE_BULKHEAD_* variables declared in config field metadata.

    Example:
        >>> # ADAPTIVE_BULKHEAD_LOW_LATENCY_MULTIPLIER=0.75
        >>> EnvVars.get("ADAPTIVE_BULKHEAD_LOW_LATENCY_MULTIPLIER", type_hint=float)
        0.75
    """

    @staticmethod
    def get(
        var_name: str,
        type_hint: Any = str,
        converter: Callable[[str], Any] | None = None,
    ) -> Any:
        """
        Read an environment variable with optional type conversion.

        Args:
            var_name: The environment variable name.
            type_hint: Type hint used to infer the converter (ignored if converter is provided).
            converter: Custom converter function (takes precedence over type_hint).

        Returns:
            The converted value, or None if env var is not set/empty.

        Raises:
            ConfigEnvVarError: If the value cannot be converted.
        """
        raw_value = os.environ.get(var_name)
        if not raw_value:  # None or empty string
            return None

        actual_converter = converter or EnvVars._infer_converter(type_hint)
        try:
            return actual_converter(raw_value)
        except (ValueError, TypeError, OverflowError) as e:
            raise ConfigEnvVarError(
                env_var=var_name,
                value=raw_value,
                expected_type=type_hint.__name__ if hasattr(type_hint, "__name__") else str(type_hint),
                cause=e,
            ) from e

    @staticmethod
    def _infer_converter(type_hint: Any) -> Callable[[str], Any]:
        """
        Pick a converter for a field type.

        Field types are strings here (PEP 563), so both forms are matched.
        """
        if type_hint is float or str(type_hint) == "float":
            return float
        return str


def _seconds_to_duration(raw: str) -> timedelta:
    """Parse a number of seconds (e.g. "50" or "0.5") into a timedelta."""
    return timedelta(seconds=float(raw))


# =============================================================================
# Validation helpers
# =============================================================================


def _require_positive(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigValidationError(
            name, value,
            "Must be a number."
        )
    try:
        number = float(value)
    except OverflowError as e:
        raise ConfigValidationError(
            name, value,
            "Must be a number that fits in a float."
        ) from e
    # `not number > 0` also rejects NaN
    if not number > 0 or not math.isfinite(number):
        raise ConfigValidationError(
            name, value,
            "Must be a positive value greater than zero."
        )
    return number


def _require_convertible_duration(name: str, value: Any) -> timedelta:
    try:
        return as_duration(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise ConfigValidationError(
            name, value,
            "Must be a timedelta or a representable number of seconds."
        ) from e


def _require_duration(name: str, value: Any) -> timedelta:
    if not isinstance(value, timedelta):
        raise ConfigValidationError(
            name, value,
            "Must be a timedelta."
        )
    return value


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class AdaptiveBulkheadConfig:
    """
    Operating parameters of an adaptive bulkhead.

    Immutable and safe to share between threads. To change a value, derive
    a new config with `from_config()` or `with_overrides()`; the bulkhead
    holding the old one is reconfigured by installing the new instance.

    Instances are normally created through `builder()`. Direct construction
    runs the same validation, so an invalid config cannot exist.

    Attributes:
        desirable_average_throughput: Target steady-state throughput in op/sec.
            Seeds the initial limiter state.
            Env var: ADAPTIVE_BULKHEAD_DESIRABLE_AVERAGE_THROUGHPUT

        desirable_operation_latency: Latency the limiter steers toward, in sec/op.
            Env var: ADAPTIVE_BULKHEAD_DESIRABLE_OPERATION_LATENCY

        max_acceptable_request_latency: Hard latency ceiling, in sec/op.
            Must not be lower than desirable_operation_latency.
            Env var: ADAPTIVE_BULKHEAD_MAX_ACCEPTABLE_REQUEST_LATENCY

        window_for_adaptation: Cadence at which average latency is recomputed
            and concurrency adjusted.
            Env var: ADAPTIVE_BULKHEAD_WINDOW_FOR_ADAPTATION (seconds)

        window_for_reconfiguration: Cadence at which latency variance is
            recomputed and the local latency ceiling re-derived.
            Env var: ADAPTIVE_BULKHEAD_WINDOW_FOR_RECONFIGURATION (seconds)

        low_latency_multiplier: Scales limiter behavior while latency is
            comfortably below target.
            Env var: ADAPTIVE_BULKHEAD_LOW_LATENCY_MULTIPLIER

        concurrency_drop_multiplier: Scales how aggressively concurrency is cut
            when the ceiling is approached or exceeded.
            Env var: ADAPTIVE_BULKHEAD_CONCURRENCY_DROP_MULTIPLIER

    Example:
        >>> config = AdaptiveBulkheadConfig.of_defaults()
        >>> config.desirable_average_throughput
        3.0
        >>> config.window_for_adaptation
        datetime.timedelta(seconds=50)
    """

    desirable_average_throughput: float = field(
        default=3.0,
        metadata={"env": "ADAPTIVE_BULKHEAD_DESIRABLE_AVERAGE_THROUGHPUT"},
    )
    desirable_operation_latency: float = field(
        default=0.1,
        metadata={"env": "ADAPTIVE_BULKHEAD_DESIRABLE_OPERATION_LATENCY"},
    )
    # desirable_operation_latency * DEFAULT_MAX_LATENCY_FACTOR, kept as the exact literal
    max_acceptable_request_latency: float = field(
        default=0.13,
        metadata={"env": "ADAPTIVE_BULKHEAD_MAX_ACCEPTABLE_REQUEST_LATENCY"},
    )
    window_for_adaptation: timedelta = field(
        default=timedelta(seconds=50),
        metadata={"env": "ADAPTIVE_BULKHEAD_WINDOW_FOR_ADAPTATION", "converter": _seconds_to_duration},
    )
    window_for_reconfiguration: timedelta = field(
        default=timedelta(seconds=900),
        metadata={"env": "ADAPTIVE_BULKHEAD_WINDOW_FOR_RECONFIGURATION", "converter": _seconds_to_duration},
    )
    low_latency_multiplier: float = field(
        default=0.8,
        metadata={"env": "ADAPTIVE_BULKHEAD_LOW_LATENCY_MULTIPLIER"},
    )
    concurrency_drop_multiplier: float = field(
        default=0.85,
        metadata={"env": "ADAPTIVE_BULKHEAD_CONCURRENCY_DROP_MULTIPLIER"},
    )

    def __post_init__(self) -> None:
        self.validate()

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    @classmethod
    def builder(cls) -> AdaptiveBulkheadConfigBuilder:
        """Return a builder seeded with the default parameters."""
        return AdaptiveBulkheadConfigBuilder()

    @classmethod
    def from_config(cls, base: AdaptiveBulkheadConfig) -> AdaptiveBulkheadConfigBuilder:
        """
        Return a builder seeded with every field of an existing config.

        Useful to override a few fields while keeping the rest:

            >>> custom = AdaptiveBulkheadConfig.from_config(base).low_latency_multiplier(0.7).build()
        """
        return AdaptiveBulkheadConfigBuilder(base)

    @classmethod
    def of_defaults(cls) -> AdaptiveBulkheadConfig:
        """Return a config holding the default parameters."""
        return cls.builder().build()

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate(self) -> Self:
        """
        Validate every field, then the cross-field invariants.

        Cross-field checks run in a fixed order so the reported error is
        deterministic: latency ordering, adaptation window size, then the
        reconfiguration/adaptation window ratio.

        Returns:
            This config, unchanged.

        Raises:
            ConfigValidationError: On the first violated rule.
        """
        for name in _REAL_FIELDS:
            _require_positive(name, getattr(self, name))
        for name in _DURATION_FIELDS:
            _require_duration(name, getattr(self, name))

        if self.max_acceptable_request_latency < self.desirable_operation_latency:
            raise ConfigValidationError(
                "max_acceptable_request_latency", self.max_acceptable_request_latency,
                f"Can't be less than desirable_operation_latency ({self.desirable_operation_latency!r})."
            )

        # NOTE: suspected defect, scales throughput (op/sec) where a per-operation interval is expected.
        adaptation_nanos = to_nanos(self.window_for_adaptation)
        min_adaptation_nanos = (
            self.desirable_average_throughput * MIN_MEASUREMENTS_PER_ADAPTATION_WINDOW * _NANOS_PER_SECOND
        )
        # an overflowed product means no window is long enough
        if not math.isfinite(min_adaptation_nanos) or adaptation_nanos <= min_adaptation_nanos:
            raise ConfigValidationError(
                "window_for_adaptation", self.window_for_adaptation,
                f"Window is too small to make at least {MIN_MEASUREMENTS_PER_ADAPTATION_WINDOW} "
                f"measurements during it."
            )

        if MIN_ADAPTATION_WINDOWS_PER_RECONFIGURATION >= self.adaptation_windows_per_reconfiguration:
            raise ConfigValidationError(
                "window_for_reconfiguration", self.window_for_reconfiguration,
                f"Should be more than {MIN_ADAPTATION_WINDOWS_PER_RECONFIGURATION} times bigger "
                f"than window_for_adaptation ({self.window_for_adaptation!r})."
            )
        return self

    # -------------------------------------------------------------------------
    # Derivation
    # -------------------------------------------------------------------------

    @property
    def adaptation_windows_per_reconfiguration(self) -> int:
        """Number of whole adaptation windows that fit in one reconfiguration window."""
        return to_nanos(self.window_for_reconfiguration) // to_nanos(self.window_for_adaptation)

    def with_overrides(self, overrides: dict[str, Any]) -> AdaptiveBulkheadConfig:
        """
        Return a new config with the specified fields overridden.

        Values go through the builder setters, so the same per-field and
        cross-field validation applies. None values are ignored.

        Args:
            overrides: Dict of field names to new values.

        Returns:
            New validated instance (or self when there is nothing to override).

        Raises:
            ValueError: If overrides contains unknown field names.
            ConfigValidationError: If the resulting config is invalid.

        Example:
            >>> config.with_overrides({"low_latency_multiplier": 0.7})
        """
        if not overrides:
            return self

        valid_fields = {f.name for f in fields(self)}
        invalid_fields = set(overrides.keys()) - valid_fields

        if invalid_fields:
            raise ValueError(
                f"Unknown config fields: {invalid_fields}. "
                f"Valid fields are: {valid_fields}"
            )

        filtered = {k: v for k, v in overrides.items() if v is not None}
        if not filtered:
            return self

        builder = AdaptiveBulkheadConfig.from_config(self)
        for name, value in filtered.items():
            getattr(builder, name)(value)
        return builder.build()

    def with_env_vars(self) -> AdaptiveBulkheadConfig:
        """
        Return a new config with environment variables applied on top.

        Raises:
            ConfigEnvVarError: If an env var has an invalid value.
            ConfigValidationError: If the resulting config is invalid.
        """
        return AdaptiveBulkheadConfig.from_config(self).with_env_vars().build()


_REAL_FIELDS = (
    "desirable_average_throughput",
    "desirable_operation_latency",
    "max_acceptable_request_latency",
    "low_latency_multiplier",
    "concurrency_drop_multiplier",
)

_DURATION_FIELDS = (
    "window_for_adaptation",
    "window_for_reconfiguration",
)


def _default_values() -> dict[str, Any]:
    """Return a fresh dict with the default value of every config field."""
    return {f.name: f.default for f in fields(AdaptiveBulkheadConfig)}


# =============================================================================
# Builder
# =============================================================================


class AdaptiveBulkheadConfigBuilder:
    """
    Mutable staging area for an `AdaptiveBulkheadConfig`.

    Each setter validates its own value and returns the builder for chaining.
    Cross-field invariants are checked once, by `build()`.

    The builder keeps its own copy of the staged values, so it can be reused
    after `build()` without affecting configs it already returned. It is not
    meant to be shared between threads.

    Example:
        >>> builder = AdaptiveBulkheadConfigBuilder()
        >>> config = builder.desirable_average_throughput(2).build()
        >>> config.desirable_average_throughput
        2.0
    """

    def __init__(self, base: AdaptiveBulkheadConfig | None = None):
        if base is None:
            self._values = _default_values()
        else:
            self._values = {f.name: getattr(base, f.name) for f in fields(base)}

    def desirable_average_throughput(self, desirable_average_throughput: float) -> Self:
        """
        Desirable average throughput in op/sec.

        Provides the initial limiter state. The closer it is to the real
        value, the faster the real concurrency limit is found.
        """
        self._values["desirable_average_throughput"] = _require_positive(
            "desirable_average_throughput", desirable_average_throughput
        )
        return self

    def desirable_operation_latency(self, desirable_operation_latency: float) -> Self:
        """
        Desirable operation latency in sec/op.

        This is the target the limiter circles around: actual average latency
        is measured continuously and compared with it.
        """
        self._values["desirable_operation_latency"] = _require_positive(
            "desirable_operation_latency", desirable_operation_latency
        )
        return self

    def max_acceptable_request_latency(self, max_acceptable_request_latency: float) -> Self:
        """
        Maximum acceptable operation latency in sec/op.

        Set it wisely: the limiter does its best never to reach this latency,
        so a value too close to the desirable latency leaves no room to adapt.
        20-30% above the usual average latency is a good start. The default
        is 1.3 times the default desirable_operation_latency.
        """
        self._values["max_acceptable_request_latency"] = _require_positive(
            "max_acceptable_request_latency", max_acceptable_request_latency
        )
        return self

    def low_latency_multiplier(self, low_latency_multiplier: float) -> Self:
        self._values["low_latency_multiplier"] = _require_positive(
            "low_latency_multiplier", low_latency_multiplier
        )
        return self

    def concurrency_drop_multiplier(self, concurrency_drop_multiplier: float) -> Self:
        self._values["concurrency_drop_multiplier"] = _require_positive(
            "concurrency_drop_multiplier", concurrency_drop_multiplier
        )
        return self

    def window_for_adaptation(self, window_for_adaptation: timedelta | float) -> Self:
        """
        Adaptation window, as a timedelta or in seconds.

        At the end of each window the average latency is recomputed and the
        concurrency level adapted. Checked against the throughput by `build()`.
        """
        self._values["window_for_adaptation"] = _require_convertible_duration(
            "window_for_adaptation", window_for_adaptation
        )
        return self

    def window_for_reconfiguration(self, window_for_reconfiguration: timedelta | float) -> Self:
        """
        Reconfiguration window, as a timedelta or in seconds.

        At the end of each window the standard deviation of latencies across
        adaptations is recomputed and the local latency ceiling re-derived for
        the next cycle, absorbing daily latency drift. Checked against the
        adaptation window by `build()`.
        """
        self._values["window_for_reconfiguration"] = _require_convertible_duration(
            "window_for_reconfiguration", window_for_reconfiguration
        )
        return self

    def with_env_vars(self) -> Self:
        """
        Apply environment variable overrides to the staged values.

        Reads the env var declared in each config field's metadata and
        applies it through the matching setter. Unset or empty variables
        are ignored.

        Raises:
            ConfigEnvVarError: If an env var cannot be converted.
            ConfigValidationError: If a converted value is out of range.
        """
        for f in fields(AdaptiveBulkheadConfig):
            env_var = f.metadata.get("env")
            if not env_var:
                continue
            value = EnvVars.get(
                var_name=env_var,
                type_hint=f.type,
                converter=f.metadata.get("converter"),
            )
            if value is not None:
                logger.debug("Applying %s=%r from environment", env_var, value)
                getattr(self, f.name)(value)
        return self

    def build(self) -> AdaptiveBulkheadConfig:
        """
        Validate the cross-field invariants and return the config.

        Can be called repeatedly; each call re-validates and returns a
        snapshot of the currently staged values.

        Raises:
            ConfigValidationError: If an invariant is violated.
        """
        config = AdaptiveBulkheadConfig(**self._values)
        logger.debug("Built %r", config)
        return config

    def __repr__(self) -> str:
        staged = ", ".join(f"{name}={value!r}" for name, value in self._values.items())
        return f"AdaptiveBulkheadConfigBuilder({staged})"

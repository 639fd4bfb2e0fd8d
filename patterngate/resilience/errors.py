#!/usr/bin/env python3
# CUI // SP-CTI
"""PatternGate structured exception hierarchy.

Only genuinely exceptional conditions are raised with these types: the store
is unreachable, a persisted record cannot be decoded, or configuration is
invalid. Protocol outcomes (validation issues, phase refusals, scope
violations, contradictions) are returned as data and never raised.

Usage:
    from patterngate.resilience.errors import StoreUnavailableError

    raise StoreUnavailableError("database is locked", component="store")
"""


class PatternGateError(Exception):
    """Base exception for all PatternGate errors.

    Attributes:
        component: Name of the component that raised (e.g. "store").
        retryable: Whether the caller may retry the operation.
    """

    def __init__(self, message: str, component: str = "", retryable: bool = False):
        super().__init__(message)
        self.component = component
        self.retryable = retryable

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "type": type(self).__name__,
            "component": self.component,
            "retryable": self.retryable,
        }


class TransientError(PatternGateError):
    """The operation may succeed if repeated later."""

    def __init__(self, message: str, component: str = "", retryable: bool = True):
        super().__init__(message, component=component, retryable=retryable)


class PermanentError(PatternGateError):
    """Repeating the operation will not help."""

    def __init__(self, message: str, component: str = "", retryable: bool = False):
        super().__init__(message, component=component, retryable=retryable)


class StoreUnavailableError(TransientError):
    """The session store could not be reached or stayed locked past the retry budget."""

    def __init__(self, message: str = "", component: str = "store"):
        super().__init__(
            message or "Session store is unavailable",
            component=component,
            retryable=True,
        )


class CorruptRecordError(PermanentError):
    """A persisted record could not be decoded into its domain type.

    Attributes:
        record_id: Identifier of the offending row.
    """

    def __init__(self, message: str, record_id: str = ""):
        super().__init__(message, component="store", retryable=False)
        self.record_id = record_id


class ConfigurationError(PermanentError):
    """Configuration error: missing or invalid configuration."""

    def __init__(self, message: str, config_key: str = ""):
        super().__init__(message, component="config", retryable=False)
        self.config_key = config_key

"""Custom exception hierarchy for routewatch."""

from __future__ import annotations

from typing import Any


class RouteWatchError(Exception):
    """Base exception for all routewatch errors."""

    def __init__(self, message: str = "", **kwargs: Any) -> None:
        super().__init__(message)
        self.message = message


class FetchFailure(RouteWatchError):
    """The fetcher for a cache key failed and no usable stale entry existed.

    The original exception is kept on ``cause`` (and chained as ``__cause__``
    when raised with ``raise ... from``).
    """

    def __init__(
        self,
        message: str = "",
        key: str = "",
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.key = key
        self.cause = cause


class ValidationFailure(RouteWatchError):
    """Malformed geographic, vehicle or station input.

    Raised only by the ingress parsers. Pure calculations convert bad input
    to a safe default instead of raising this.
    """

    def __init__(
        self,
        message: str = "",
        field: str = "",
        value: Any = None,
        reason: str = "",
    ) -> None:
        super().__init__(message)
        self.field = field
        self.value = value
        self.reason = reason


class ConfigurationFailure(RouteWatchError):
    """A single configuration field is out of range or of the wrong type."""

    def __init__(
        self,
        message: str = "",
        field: str = "",
        value: Any = None,
        reason: str = "",
    ) -> None:
        super().__init__(message)
        self.field = field
        self.value = value
        self.reason = reason


class CircuitOpenFailure(RouteWatchError):
    """The call was rejected without being attempted because its circuit is open."""

    def __init__(
        self,
        message: str = "",
        component: str = "",
        next_attempt_time: float | None = None,
    ) -> None:
        super().__init__(message)
        self.component = component
        self.next_attempt_time = next_attempt_time


class ConcurrencyFailure(RouteWatchError):
    """An exclusive operation was invoked again before the previous run finished."""

    def __init__(self, message: str = "", operation: str = "") -> None:
        super().__init__(message)
        self.operation = operation

# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
pacforge Exception Hierarchy

Exception Hierarchy:
    PacforgeError (base)
    ├── ConfigError
    ├── NetworkError
    ├── GraphFrozenError
    ├── ResolutionError
    │   ├── PackageNotFound
    │   ├── VersionConflict
    │   ├── UnsatisfiedDependency
    │   └── PackageConflict
    ├── PlanError
    │   └── UnresolvableCycle
    ├── InvalidTransition
    ├── BatchError
    │   ├── FetchFailure
    │   ├── BuildFailure
    │   └── InstallFailure
    └── UserAbort

Resolution and plan errors are fatal and raised before anything is
installed. Batch errors are local to one batch of the plan.
"""

from typing import Any, Dict, List, Optional

# ============================================================================
# Base Exceptions
# ============================================================================


class PacforgeError(Exception):
    """Base exception for all pacforge errors"""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        result = {
            "type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }

        if self.cause:
            result["cause"] = {
                "type": self.cause.__class__.__name__,
                "message": str(self.cause),
            }

        return result

    def __str__(self):
        base = self.message
        if self.details:
            base += f" | Details: {self.details}"
        if self.cause:
            base += f" | Caused by: {self.cause}"
        return base


class ConfigError(PacforgeError):
    """Configuration-related errors"""


class NetworkError(PacforgeError):
    """Remote metadata request failed"""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.url = url
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({"url": self.url, "status_code": self.status_code})
        return result


class GraphFrozenError(PacforgeError):
    """Mutation attempted on a frozen dependency graph"""


# ============================================================================
# Resolution Errors
# ============================================================================


class ResolutionError(PacforgeError):
    """Errors raised while building the dependency graph"""


class PackageNotFound(ResolutionError):
    """A name has no candidate in any source"""

    def __init__(self, message: str, missing: Optional[List[Any]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.missing = missing or []

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["missing"] = [str(m) for m in self.missing]
        return result


class UnsatisfiedDependency(ResolutionError):
    """A required edge has candidates, but none satisfies its constraint"""

    def __init__(self, message: str, missing: Optional[List[Any]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.missing = missing or []

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["missing"] = [str(m) for m in self.missing]
        return result


class VersionConflict(ResolutionError):
    """Two constraints on one node are incompatible"""

    def __init__(
        self,
        message: str,
        name: Optional[str] = None,
        bound_version: Optional[str] = None,
        constraint: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.name = name
        self.bound_version = bound_version
        self.constraint = constraint

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update(
            {
                "name": self.name,
                "bound_version": self.bound_version,
                "constraint": self.constraint,
            }
        )
        return result


class PackageConflict(ResolutionError):
    """Conflicting packages in the resolved set (reported exhaustively)"""

    def __init__(self, message: str, conflicts: Optional[List[Any]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.conflicts = conflicts or []

    @property
    def pairs(self) -> List[tuple]:
        return [(c.a, c.b) for c in self.conflicts]

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["conflicts"] = [str(c) for c in self.conflicts]
        return result


# ============================================================================
# Plan Errors
# ============================================================================


class PlanError(PacforgeError):
    """Errors raised while ordering the build plan"""


class UnresolvableCycle(PlanError):
    """Circular build dependency spanning more than one package base"""

    def __init__(self, message: str, cycle: Optional[List[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.cycle = cycle or []

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["cycle"] = self.cycle
        return result


# ============================================================================
# Batch Errors
# ============================================================================


class BatchError(PacforgeError):
    """Failure local to one batch of the plan"""

    def __init__(self, message: str, batch: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.batch = batch

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["batch"] = self.batch
        return result


class FetchFailure(BatchError):
    """Retrieving a build recipe failed or timed out"""


class BuildFailure(BatchError):
    """The external build tool failed"""

    def __init__(self, message: str, exit_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.exit_code = exit_code

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["exit_code"] = self.exit_code
        return result


class InstallFailure(BatchError):
    """The host package manager transaction failed"""

    def __init__(self, message: str, exit_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.exit_code = exit_code

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["exit_code"] = self.exit_code
        return result


class InvalidTransition(PacforgeError):
    """Illegal batch state change requested"""


class UserAbort(PacforgeError):
    """The user declined to continue"""


# ============================================================================
# Retry Decorator
# ============================================================================


def retry_on_error(
    max_retries: int = 3,
    delay_ms: int = 1000,
    backoff: float = 2.0,
    exceptions: tuple = (Exception,),
):
    """
    Retry decorator with exponential backoff

    Args:
        max_retries: Maximum number of retries
        delay_ms: Initial delay in milliseconds
        backoff: Backoff multiplier
        exceptions: Tuple of exceptions to catch

    Usage:
        @retry_on_error(max_retries=3, delay_ms=1000)
        async def my_function():
            ...
    """
    import asyncio
    import time
    from functools import wraps

    def decorator(func):
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            delay = delay_ms / 1000

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions:
                    if attempt < max_retries:
                        await asyncio.sleep(delay)
                        delay *= backoff
                    else:
                        raise

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            delay = delay_ms / 1000

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions:
                    if attempt < max_retries:
                        time.sleep(delay)
                        delay *= backoff
                    else:
                        raise

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        else:
            return sync_wrapper

    return decorator

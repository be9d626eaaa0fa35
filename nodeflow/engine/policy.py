"""
Failure-handling policy for workflow runs.

A run is executed under an ExecutionPolicy. Individual nodes may override
any of its fields through a NodePolicy, which is persisted with the node.
"""

from typing import Any, Dict, Optional
from dataclasses import dataclass, fields, replace
from enum import Enum

from nodeflow.config import settings


def check_limits(
    timeout: Optional[float],
    max_retries: Optional[int],
    retry_backoff: Optional[float],
) -> None:
    """
    Reject policy values of the wrong type or out of range.

    Raises:
        TypeError: A value is not a number (or not an integer for retries)
        ValueError: A value is out of range
    """
    for name, value in (("timeout", timeout), ("retry_backoff", retry_backoff)):
        if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
            raise TypeError(f"{name} must be a number, got {type(value).__name__}")
    if max_retries is not None and (isinstance(max_retries, bool) or not isinstance(max_retries, int)):
        raise TypeError(f"max_retries must be an integer, got {type(max_retries).__name__}")

    if max_retries is not None and max_retries < 0:
        raise ValueError("max_retries cannot be negative")
    if timeout is not None and timeout <= 0:
        raise ValueError("timeout must be positive")
    if retry_backoff is not None and retry_backoff < 0:
        raise ValueError("retry_backoff cannot be negative")


class ErrorPolicy(str, Enum):
    """What the engine does after a node fails."""
    STOP = "stop"          # Halt the run, keep completed results
    CONTINUE = "continue"  # Skip dependents, keep running independent nodes


@dataclass
class NodePolicy:
    """Per-node overrides. None means "use the run policy"."""
    error_policy: Optional[ErrorPolicy] = None
    timeout: Optional[float] = None
    max_retries: Optional[int] = None
    retry_backoff: Optional[float] = None

    def __post_init__(self):
        if self.error_policy is not None:
            self.error_policy = ErrorPolicy(self.error_policy)
        check_limits(self.timeout, self.max_retries, self.retry_backoff)

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "errorPolicy": self.error_policy.value if self.error_policy else None,
            "timeout": self.timeout,
            "maxRetries": self.max_retries,
            "retryBackoff": self.retry_backoff,
        }
        return {key: value for key, value in data.items() if value is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodePolicy":
        error_policy = data.get("errorPolicy")
        return cls(
            error_policy=ErrorPolicy(error_policy) if error_policy else None,
            timeout=data.get("timeout"),
            max_retries=data.get("maxRetries"),
            retry_backoff=data.get("retryBackoff"),
        )


@dataclass
class ExecutionPolicy:
    """
    Run-wide failure handling.

    Attributes:
        error_policy: Stop the run or continue with independent nodes
        timeout: Seconds a single node may run (None disables the timer)
        max_retries: Extra attempts after a failed execution
        retry_backoff: Seconds to wait, multiplied by the attempt number
    """
    error_policy: ErrorPolicy = ErrorPolicy.STOP
    timeout: Optional[float] = None
    max_retries: int = 0
    retry_backoff: float = 1.0

    def __post_init__(self):
        self.error_policy = ErrorPolicy(self.error_policy)
        check_limits(self.timeout, self.max_retries, self.retry_backoff)

    def merge(self, override: Optional[NodePolicy]) -> "ExecutionPolicy":
        """Apply a node's overrides on top of this policy."""
        if override is None:
            return self
        changes = {
            f.name: getattr(override, f.name)
            for f in fields(override)
            if getattr(override, f.name) is not None
        }
        return replace(self, **changes) if changes else self

    @classmethod
    def from_settings(cls) -> "ExecutionPolicy":
        """Build the default policy from application settings."""
        return cls(
            error_policy=ErrorPolicy(settings.DEFAULT_ERROR_POLICY),
            timeout=settings.NODE_TIMEOUT,
            max_retries=settings.NODE_MAX_RETRIES,
            retry_backoff=settings.RETRY_BACKOFF,
        )

"""Data models for distributed rate limiting.

Rules and policy sets are pydantic models so they can be loaded straight
from settings or a JSON policy file. Results are plain dataclasses.
"""

import math
import time
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from quotagate.app.exceptions import InvalidConfigurationError

# Remaining value reported when a request is not subject to any limit
UNLIMITED = -1


class FailurePolicy(str, Enum):
    """What the rate limiter does when Redis is unavailable."""

    RAISE = "raise"    # propagate StoreUnavailableError to the caller
    OPEN = "open"      # admit the request, prioritize availability
    CLOSED = "closed"  # deny the request, prioritize strict enforcement


class Rule(BaseModel):
    """Rate limit rule for a path pattern.

    Attributes:
        pattern: Exact path or wildcard pattern such as "/api/*" (key "path" in config)
        limit_per_second: Max requests per second, 0 disables the window
        limit_per_minute: Max requests per minute, 0 disables the window
        burst_size: Bucket capacity, defaults to 2x the window's limit when 0
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    pattern: str = Field(alias="path")
    limit_per_second: int = 0
    limit_per_minute: int = 0
    burst_size: int = 0

    @model_validator(mode="after")
    def _check_limits(self) -> "Rule":
        self.validate_limits()
        return self

    def validate_limits(self) -> None:
        """Check the rule is usable.

        Raises:
            InvalidConfigurationError: Empty pattern, negative values, or no window set.
        """
        if not self.pattern:
            raise InvalidConfigurationError("Rule pattern must not be empty")
        if self.limit_per_second < 0 or self.limit_per_minute < 0 or self.burst_size < 0:
            raise InvalidConfigurationError(
                f"Rule {self.pattern!r} has negative limits", rule_path=self.pattern
            )
        if self.limit_per_second == 0 and self.limit_per_minute == 0:
            raise InvalidConfigurationError(
                f"Rule {self.pattern!r} must set limit_per_second or limit_per_minute",
                rule_path=self.pattern,
            )

    def burst_for(self, limit: int) -> int:
        """Bucket capacity for a window with the given limit."""
        if self.burst_size > 0:
            return self.burst_size
        if limit > 0:
            return limit * 2
        return 0


class PolicySet(BaseModel):
    """Ordered rules plus an optional default rule.

    Order matters: the first matching rule wins, so rules must be
    listed most-specific-first.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    enabled: bool = True
    rules: list[Rule] = Field(default_factory=list)
    default_rule: Rule | None = None


@dataclass(frozen=True)
class BucketResult:
    """Outcome of one atomic token bucket check."""
    allowed: bool
    remaining: int
    reset_after: int


@dataclass(frozen=True)
class Verdict:
    """Admission decision returned to callers.

    Attributes:
        allowed: Whether the request may proceed
        remaining: Whole tokens left, or UNLIMITED (-1) when no limit applies
        reset_at: Unix timestamp when the reported bucket is full again (0 if unlimited)
        degraded: True when produced by the store-failure policy, not by a bucket
    """
    allowed: bool
    remaining: int
    reset_at: float = 0.0
    degraded: bool = False

    @classmethod
    def unlimited(cls) -> "Verdict":
        return cls(allowed=True, remaining=UNLIMITED)

    @property
    def is_limited(self) -> bool:
        """True when a concrete rule produced the figures."""
        return self.remaining >= 0

    def retry_after(self, now: float | None = None) -> int:
        """Whole seconds until reset_at, never negative."""
        if not self.reset_at:
            return 0
        if now is None:
            now = time.time()
        return max(0, math.ceil(self.reset_at - now))

"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass

from core.models import RuleSet


class ConfigError(ValueError):
    """Raised when configuration values cannot be used by the pipeline."""


@dataclass(frozen=True)
class PublishWindow:
    """Bounds (in seconds) of the random delay between two releases."""

    min_seconds: int
    max_seconds: int

    def __post_init__(self) -> None:
        if self.min_seconds < 0 or self.max_seconds < 0:
            raise ConfigError("publish interval bounds must not be negative")
        if self.min_seconds > self.max_seconds:
            raise ConfigError(
                f"publish_interval_min ({self.min_seconds}) must not exceed "
                f"publish_interval_max ({self.max_seconds})"
            )


@dataclass(frozen=True)
class QueueTimings:
    """Timer and timeout settings for the release scheduler."""

    poll_seconds: float = 5.0
    publish_timeout_seconds: float = 60.0


def validate_rule_set(rule_set: RuleSet) -> PublishWindow:
    """Reject unusable rule sets and return the validated publish window."""

    window = PublishWindow(rule_set.min_interval_seconds, rule_set.max_interval_seconds)
    if not str(rule_set.target_id or "").strip():
        raise ConfigError("target_channel_id is required")
    return window

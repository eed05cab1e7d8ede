"""Immutable admission snapshot and the live reference that points to it.

Matchers are never mutated after construction. A configuration change builds
a whole new ConfigSnapshot and swaps the reference held by LiveConfig, so a
message is always checked against one consistent rule set.
"""

from __future__ import annotations

from dataclasses import dataclass

from core.config import PublishWindow, validate_rule_set
from core.models import RuleSet
from core.rules_engine import AdFilter, build_ad_filter
from core.source_keys import ChannelMatcher


@dataclass(frozen=True)
class ConfigSnapshot:
    """Everything the pipeline consults for one message or one release."""

    channel_matcher: ChannelMatcher
    ad_filter: AdFilter
    window: PublishWindow
    target_id: str
    enable_queue: bool


def build_snapshot(rule_set: RuleSet) -> ConfigSnapshot:
    """Validate a rule set and compile fresh matchers from it."""

    window = validate_rule_set(rule_set)
    return ConfigSnapshot(
        channel_matcher=ChannelMatcher(rule_set.whitelist),
        ad_filter=build_ad_filter(rule_set.ad_rules),
        window=window,
        target_id=str(rule_set.target_id).strip(),
        enable_queue=rule_set.enable_queue,
    )


class LiveConfig:
    """Single swappable reference to the current ConfigSnapshot."""

    def __init__(self, snapshot: ConfigSnapshot) -> None:
        self._snapshot = snapshot

    @property
    def current(self) -> ConfigSnapshot:
        return self._snapshot

    def replace(self, snapshot: ConfigSnapshot) -> ConfigSnapshot:
        """Swap in a new snapshot and return the previous one."""

        previous, self._snapshot = self._snapshot, snapshot
        return previous

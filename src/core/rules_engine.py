"""Rule compilation and matching logic (core domain)."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Iterable, Optional, Tuple, Union

from core.models import FilterRule

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class LiteralRule:
    """Case-insensitive substring rule; ``needle`` is stored lower-cased."""

    needle: str

    def matches(self, lowered: str, original: str) -> bool:
        return self.needle in lowered


@dataclass(frozen=True)
class PatternRule:
    """Case-insensitive regular expression rule."""

    regex: re.Pattern

    def matches(self, lowered: str, original: str) -> bool:
        return self.regex.search(original) is not None


CompiledRule = Union[LiteralRule, PatternRule]


def compile_rule(rule: FilterRule) -> Optional[CompiledRule]:
    """Compile one rule, or return None when it cannot take part in matching.

    Disabled and blank rules are dropped silently. An invalid regular
    expression is dropped with a warning; it must never break the filter.
    """

    if not rule.enabled:
        return None
    pattern = rule.pattern.strip()
    if not pattern:
        return None
    if not rule.is_regex:
        return LiteralRule(needle=pattern.lower())
    try:
        return PatternRule(regex=re.compile(pattern, re.IGNORECASE))
    except re.error as exc:
        LOGGER.warning("Skipping invalid regex rule %r: %s", pattern, exc)
        return None


class AdFilter:
    """Suppression predicate built once from a frozen list of rules."""

    def __init__(self, rules: Iterable[CompiledRule]) -> None:
        self._rules: Tuple[CompiledRule, ...] = tuple(rules)

    @property
    def rule_count(self) -> int:
        return len(self._rules)

    def is_suppressed(self, text: Optional[str], caption: Optional[str] = None) -> bool:
        """Return True when any enabled rule matches the text or caption."""

        if not self._rules:
            return False
        content = " ".join([text or "", caption or ""])
        lowered = content.lower()
        return any(rule.matches(lowered, content) for rule in self._rules)


def build_ad_filter(rules: Iterable[FilterRule]) -> AdFilter:
    """Compile stored rules into an AdFilter, skipping unusable entries."""

    compiled = [compiled for compiled in (compile_rule(rule) for rule in rules) if compiled]
    return AdFilter(compiled)

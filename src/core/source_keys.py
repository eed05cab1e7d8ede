"""Helpers for working with source channel specifiers."""

from __future__ import annotations

import re
from typing import FrozenSet, Iterable, Optional, Set, Tuple, Union

_NUMERIC_ID = re.compile(r"^-?\d+$")


def is_numeric_id(value: str) -> bool:
    return bool(_NUMERIC_ID.match(value))


def normalize_username(value: str) -> str:
    """Strip a leading ``@`` and lower-case a channel username."""

    return value.strip().lstrip("@").lower()


def split_specifiers(specifiers: Iterable[str]) -> Tuple[Set[int], Set[str]]:
    """Bucket whitelist specifiers into numeric peer ids and normalized usernames.

    Numeric specifiers are taken as marked peer ids (``-100<channel_id>`` for
    channels) and are matched exactly.
    """

    ids: Set[int] = set()
    usernames: Set[str] = set()
    for spec in specifiers:
        trimmed = str(spec).strip()
        if not trimmed:
            continue
        if is_numeric_id(trimmed):
            ids.add(int(trimmed))
            continue
        username = normalize_username(trimmed)
        if username:
            usernames.add(username)
    return ids, usernames


class ChannelMatcher:
    """Whitelist predicate built once from a list of channel specifiers."""

    def __init__(self, specifiers: Iterable[str]) -> None:
        cleaned = [str(spec).strip() for spec in specifiers]
        self._entry_count = len({spec for spec in cleaned if spec})
        ids, usernames = split_specifiers(cleaned)
        self._ids: FrozenSet[int] = frozenset(ids)
        self._usernames: FrozenSet[str] = frozenset(usernames)

    @property
    def size(self) -> int:
        return self._entry_count

    def is_allowed(self, channel_id: Union[int, str, None], username: Optional[str]) -> bool:
        if channel_id is not None:
            raw = str(channel_id).strip()
            if is_numeric_id(raw) and int(raw) in self._ids:
                return True
        if username:
            return normalize_username(username) in self._usernames
        return False

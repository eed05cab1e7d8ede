from __future__ import annotations

from core.source_keys import ChannelMatcher, normalize_username, split_specifiers


def test_matches_numeric_id_and_username_case_insensitively() -> None:
    matcher = ChannelMatcher(["-100123", "@MyChan"])

    assert matcher.is_allowed(-100123, None)
    assert matcher.is_allowed(-100123, "someone")
    assert matcher.is_allowed("-100123", None)
    assert matcher.is_allowed(0, "mychan")
    assert matcher.is_allowed(0, "MyChan")
    assert matcher.is_allowed(None, "@mychan")


def test_rejects_everything_else() -> None:
    matcher = ChannelMatcher(["-100123", "@MyChan"])

    assert not matcher.is_allowed(-100999, "other")
    assert not matcher.is_allowed(123, None)
    assert not matcher.is_allowed(-123, None)
    assert not matcher.is_allowed(-1000000000123, None)
    assert not matcher.is_allowed(-100123000, "mychan2")
    assert not matcher.is_allowed(None, None)


def test_bare_id_specifier_matches_only_itself() -> None:
    matcher = ChannelMatcher(["123"])

    assert matcher.is_allowed(123, None)
    assert not matcher.is_allowed(-123, None)
    assert not matcher.is_allowed(-100123, None)
    assert not matcher.is_allowed(-1000000000123, None)


def test_username_field_is_not_treated_as_id() -> None:
    matcher = ChannelMatcher(["@mychan"])

    assert not matcher.is_allowed(123, None)
    assert not matcher.is_allowed("not-a-number", None)


def test_blank_specifiers_are_ignored() -> None:
    matcher = ChannelMatcher(["", "   ", "@a", "@a"])

    assert matcher.size == 1
    assert matcher.is_allowed(1, "a")
    assert not matcher.is_allowed(1, "")


def test_split_specifiers_buckets_ids_and_usernames() -> None:
    ids, usernames = split_specifiers(["42", "-10042", " @Foo ", "bar"])

    assert ids == {42, -10042}
    assert usernames == {"foo", "bar"}


def test_normalize_username() -> None:
    assert normalize_username("  @SomeChannel ") == "somechannel"

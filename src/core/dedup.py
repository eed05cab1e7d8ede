"""Deduplication helpers (core domain)."""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
import logging
from typing import Callable, Iterable, List, Set

from core.models import FingerprintedMedia, MediaItem

LOGGER = logging.getLogger(__name__)

# Stored fingerprints in the archive depend on this algorithm; changing it
# makes every previously published item look new again.
FINGERPRINT_ALGORITHM = "sha256"


def compute_fingerprint(payload: bytes) -> str:
    """Return the hex content fingerprint of a media payload."""

    return hashlib.new(FINGERPRINT_ALGORITHM, payload).hexdigest()


def fingerprint_media(item: MediaItem) -> FingerprintedMedia:
    return FingerprintedMedia(item=item, fingerprint=compute_fingerprint(item.payload))


@dataclass(frozen=True)
class DedupResult:
    """First-seen items (input order preserved) and how many were dropped."""

    admitted: List[FingerprintedMedia]
    duplicate_count: int


def partition_duplicates(
    items: Iterable[MediaItem],
    exists: Callable[[str], bool],
) -> DedupResult:
    """Split a batch into first-seen items and duplicates.

    An item is a duplicate when an earlier item of the same batch had the same
    fingerprint, or when ``exists`` reports the fingerprint as already
    archived. Errors raised by ``exists`` propagate to the caller: a failed
    lookup must never be mistaken for "not published yet".
    """

    fingerprinted = [fingerprint_media(item) for item in items]
    seen: Set[str] = set()
    admitted: List[FingerprintedMedia] = []

    for media in fingerprinted:
        if media.fingerprint in seen:
            LOGGER.debug("Duplicate within batch, skipping %s", media.fingerprint)
            continue
        seen.add(media.fingerprint)

        if exists(media.fingerprint):
            LOGGER.debug("Already archived, skipping %s", media.fingerprint)
            continue

        admitted.append(media)

    return DedupResult(
        admitted=admitted,
        duplicate_count=len(fingerprinted) - len(admitted),
    )

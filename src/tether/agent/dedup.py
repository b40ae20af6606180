"""Consecutive-duplicate suppression for streamed payloads.

Both the debug log and the assistant-text assembler drop a payload when it
is identical to the one immediately before it.  Comparing whole strings is
O(n) per payload; :class:`DigestFilter` keeps only a SHA-256 digest instead,
for when replies get large.
"""

from __future__ import annotations

import hashlib
from typing import Literal, Protocol, runtime_checkable

DedupStrategy = Literal["exact", "digest"]


@runtime_checkable
class DuplicateFilter(Protocol):
    """Remembers the last payload seen and flags immediate repeats."""

    def is_duplicate(self, payload: str) -> bool:
        """Return ``True`` if *payload* equals the previous one.

        A non-duplicate payload becomes the new "previous" payload.
        """
        ...

    def reset(self) -> None:
        """Forget the previous payload."""
        ...


class ExactTextFilter:
    """Compares full payload strings."""

    def __init__(self) -> None:
        self._last: str | None = None

    def is_duplicate(self, payload: str) -> bool:
        if payload == self._last:
            return True
        self._last = payload
        return False

    def reset(self) -> None:
        self._last = None


class DigestFilter:
    """Compares SHA-256 digests of payloads."""

    def __init__(self) -> None:
        self._last: bytes | None = None

    def is_duplicate(self, payload: str) -> bool:
        digest = hashlib.sha256(payload.encode("utf-8", errors="replace")).digest()
        if digest == self._last:
            return True
        self._last = digest
        return False

    def reset(self) -> None:
        self._last = None


def make_filter(strategy: DedupStrategy = "exact") -> DuplicateFilter:
    """Return a fresh filter for *strategy*."""
    if strategy == "digest":
        return DigestFilter()
    return ExactTextFilter()

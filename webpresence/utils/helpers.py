"""Small shared helpers: UTC timestamps, chunking and URL hashing."""

import hashlib
from datetime import datetime, timezone
from typing import Iterable, Iterator, Optional, Sequence, TypeVar

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return *value* as an aware UTC datetime.

    SQLite hands back naive datetimes even for ``DateTime(timezone=True)``
    columns; those are treated as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of *items* with at most *size* elements."""
    if size <= 0:
        raise ValueError(f"Chunk size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield items[start:start + size]


def unique(items: Iterable[T]) -> list[T]:
    """De-duplicate *items* keeping first-seen order."""
    seen: set = set()
    out: list[T] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


def url_hash(url: str, length: int = 16) -> str:
    """Stable short hash of a URL or query, used in blob paths."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:length]

"""Deterministic page slicing for feed listings."""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    """One window over an ordered collection."""

    items: tuple[T, ...]
    page_index: int
    page_size: int
    total_count: int

    @property
    def total_pages(self) -> int:
        return -(-self.total_count // self.page_size)

    @property
    def last_index(self) -> int:
        return max(self.total_pages - 1, 0)

    @property
    def has_previous(self) -> bool:
        return self.page_index > 0

    @property
    def has_next(self) -> bool:
        return self.page_index + 1 < self.total_pages

    @property
    def start_index(self) -> int:
        """1-based index of the first item, as OpenSearch reports it."""
        return max(self.page_index, 0) * self.page_size + 1


def paginate(items: Sequence[T], page_index: int, page_size: int) -> Page[T]:
    """
    Slice ``items`` into the 0-based page ``page_index``.

    Out-of-range indexes yield an empty page rather than an error, since reader
    apps request neighbouring pages speculatively.

    Raises:
        ValueError: If ``page_size`` is not positive.
    """
    if page_size <= 0:
        raise ValueError("page_size must be positive")

    total = len(items)
    start = page_index * page_size
    if page_index < 0 or start >= total:
        window: tuple[T, ...] = ()
    else:
        window = tuple(items[start:start + page_size])
    return Page(items=window, page_index=page_index, page_size=page_size, total_count=total)

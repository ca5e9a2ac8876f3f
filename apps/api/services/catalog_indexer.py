"""Build navigable groupings (authors, narrators, genres, series, cards) from library items."""

import logging
import unicodedata
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

from api.schemas import BookEntry, InternalUser, Library
from core.config import Settings
from services.errors import NotFound, UpstreamError
from services.upstream_client import UpstreamClient

logger = logging.getLogger(__name__)

CATCH_ALL_CARD = "#"


class NodeKind(str, Enum):
    """What a catalog node represents."""

    ROOT = "root"
    AUTHOR = "author"
    NARRATOR = "narrator"
    GENRE = "genre"
    SERIES = "series"
    CARD = "card"
    BOOK = "book"


class Axis(str, Enum):
    """Grouping axes exposed under a library."""

    AUTHORS = "authors"
    NARRATORS = "narrators"
    GENRES = "genres"
    SERIES = "series"

    @property
    def node_kind(self) -> NodeKind:
        return _AXIS_KINDS[self]

    def values_of(self, book: BookEntry) -> tuple[str, ...]:
        return _AXIS_VALUES[self](book)

    @classmethod
    def parse(cls, raw: str) -> "Axis":
        try:
            return cls(raw.lower())
        except ValueError:
            raise NotFound(f"unknown axis {raw!r}") from None


_AXIS_KINDS = {
    Axis.AUTHORS: NodeKind.AUTHOR,
    Axis.NARRATORS: NodeKind.NARRATOR,
    Axis.GENRES: NodeKind.GENRE,
    Axis.SERIES: NodeKind.SERIES,
}

_AXIS_VALUES: dict[Axis, Callable[[BookEntry], tuple[str, ...]]] = {
    Axis.AUTHORS: lambda book: book.authors,
    Axis.NARRATORS: lambda book: book.narrators,
    Axis.GENRES: lambda book: book.tags,
    Axis.SERIES: lambda book: book.series,
}


@dataclass(frozen=True)
class CatalogNode:
    """One navigable value on a grouping axis, or one alphabetical card."""

    kind: NodeKind
    key: str
    label: str
    item_count: int
    children_kind: NodeKind


@dataclass(frozen=True)
class CatalogLevel:
    """Result of browsing: either child nodes or leaf books, never both."""

    axis: Axis
    nodes: tuple[CatalogNode, ...] | None = None
    books: tuple[BookEntry, ...] | None = None
    value: str | None = None
    card: str | None = None

    @property
    def is_leaf(self) -> bool:
        return self.books is not None


def _strip_marks(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def sort_key(name: str) -> str:
    """Case-insensitive, accent-insensitive ordering key."""
    return _strip_marks(name).casefold()


def card_key(name: str) -> str:
    """Card a value belongs to: its uppercased leading letter, or the catch-all."""
    stripped = _strip_marks(name.strip())
    if stripped and stripped[0].isalpha():
        return stripped[0].upper()
    return CATCH_ALL_CARD


def group_by_axis(books: Iterable[BookEntry], axis: Axis) -> list[CatalogNode]:
    """
    Distinct axis values with their book counts.

    Values equal under ``casefold`` are one node labelled with the spelling seen
    first, matching ``books_with_value``. Sorted by ``sort_key``; equal keys keep
    the order they were first seen upstream.
    """
    labels: dict[str, str] = {}
    counts: dict[str, int] = {}
    for book in books:
        seen: set[str] = set()
        for raw in axis.values_of(book):
            value = raw.strip()
            folded = value.casefold()
            if not value or folded in seen:
                continue
            seen.add(folded)
            labels.setdefault(folded, value)
            counts[folded] = counts.get(folded, 0) + 1

    ordered = sorted(labels, key=lambda folded: sort_key(labels[folded]))
    return [
        CatalogNode(
            kind=axis.node_kind,
            key=labels[folded],
            label=labels[folded],
            item_count=counts[folded],
            children_kind=NodeKind.BOOK,
        )
        for folded in ordered
    ]


def build_cards(nodes: Sequence[CatalogNode]) -> list[CatalogNode]:
    """One card per leading letter present in ``nodes``, catch-all last."""
    if not nodes:
        return []
    children_kind = nodes[0].kind
    counts: dict[str, int] = {}
    for node in nodes:
        key = card_key(node.label)
        counts[key] = counts.get(key, 0) + 1

    letters = sorted((k for k in counts if k != CATCH_ALL_CARD), key=sort_key)
    if CATCH_ALL_CARD in counts:
        letters.append(CATCH_ALL_CARD)
    return [
        CatalogNode(
            kind=NodeKind.CARD,
            key=letter,
            label=letter,
            item_count=counts[letter],
            children_kind=children_kind,
        )
        for letter in letters
    ]


def nodes_in_card(nodes: Iterable[CatalogNode], card: str) -> list[CatalogNode]:
    wanted = card.strip().upper() or CATCH_ALL_CARD
    return [node for node in nodes if card_key(node.label) == wanted]


def books_with_value(books: Iterable[BookEntry], axis: Axis, value: str) -> list[BookEntry]:
    """Books carrying ``value`` on ``axis`` (case-insensitive exact match), upstream order."""
    wanted = value.strip().casefold()
    return [
        book for book in books
        if any(v.strip().casefold() == wanted for v in axis.values_of(book))
    ]


def _contains(haystack: Iterable[str | None], needle: str) -> bool:
    return any(needle in item.casefold() for item in haystack if item)


def search_books(
    books: Iterable[BookEntry],
    query: str | None,
    author: str | None = None,
    title: str | None = None,
) -> list[BookEntry]:
    """
    Case-insensitive substring search across title, authors and narrators.

    ``author`` and ``title`` narrow the result further; blank terms match everything.
    """
    q = (query or "").strip().casefold()
    author_q = (author or "").strip().casefold()
    title_q = (title or "").strip().casefold()

    matches: list[BookEntry] = []
    for book in books:
        if q and not _contains((book.title, *book.authors, *book.narrators), q):
            continue
        if author_q and not _contains(book.authors, author_q):
            continue
        if title_q and not _contains((book.title, book.subtitle), title_q):
            continue
        matches.append(book)
    return matches


class CatalogIndexer:
    """Fetches a library's items once per request and derives navigation levels from them."""

    def __init__(self, settings: Settings, upstream: UpstreamClient):
        self.settings = settings
        self.upstream = upstream

    async def list_libraries(self, user: InternalUser) -> list[Library]:
        return await self.upstream.get_libraries(user)

    async def get_library(self, user: InternalUser, library_id: str) -> Library:
        try:
            return await self.upstream.get_library(user, library_id)
        except UpstreamError as e:
            if e.status == 404:
                raise NotFound(f"library {library_id} not found") from e
            raise

    async def default_library(self, user: InternalUser) -> Library | None:
        """Configured default library, else the first one the user can see."""
        if self.settings.default_library_id:
            return await self.get_library(user, self.settings.default_library_id)
        libraries = await self.list_libraries(user)
        return libraries[0] if libraries else None

    def visible(self, books: Iterable[BookEntry]) -> list[BookEntry]:
        if self.settings.show_audiobooks:
            return list(books)
        return [book for book in books if not book.is_audiobook]

    async def load_books(self, user: InternalUser, library_id: str) -> list[BookEntry]:
        books = await self.upstream.get_items(user, library_id)
        visible = self.visible(books)
        logger.debug(
            "Loaded %d item(s) from library %s, %d visible",
            len(books),
            library_id,
            len(visible),
        )
        return visible

    def level(
        self,
        books: Sequence[BookEntry],
        axis: Axis,
        value: str | None = None,
        start: str | None = None,
    ) -> CatalogLevel:
        """Navigation level for already-loaded books."""
        if value is not None:
            return CatalogLevel(axis=axis, books=tuple(books_with_value(books, axis, value)), value=value)

        nodes = group_by_axis(books, axis)
        if start is not None:
            return CatalogLevel(axis=axis, nodes=tuple(nodes_in_card(nodes, start)), card=start)
        if self.settings.show_char_cards:
            return CatalogLevel(axis=axis, nodes=tuple(build_cards(nodes)))
        return CatalogLevel(axis=axis, nodes=tuple(nodes))

    async def browse(
        self,
        user: InternalUser,
        library_id: str,
        path: str,
        start: str | None = None,
    ) -> CatalogLevel:
        """
        Resolve a navigation path such as ``authors`` or ``authors/<value>/books``.

        Raises:
            NotFound: Unknown axis.
            UpstreamError: Item fetch failed.
            UpstreamUnreachable: Upstream could not be reached.
        """
        axis_name, _, rest = path.strip("/").partition("/")
        axis = Axis.parse(axis_name)
        value: str | None = None
        if rest:
            value = rest[: -len("/books")] if rest.endswith("/books") else rest
            if not value.strip():
                raise NotFound(f"empty value on axis {axis.value}")

        books = await self.load_books(user, library_id)
        return self.level(books, axis, value=value, start=start)

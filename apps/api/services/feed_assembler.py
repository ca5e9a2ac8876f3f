"""Render catalog levels and pages into OPDS 1.2 / Atom documents."""

import hashlib
from dataclasses import dataclass, field
from datetime import UTC, datetime
from urllib.parse import quote, urlencode

from lxml import etree

from api.schemas import BookEntry, InternalUser, Library
from core.config import Settings
from services.catalog_indexer import CatalogNode
from services.pagination import Page

ATOM_NS = "http://www.w3.org/2005/Atom"
OPDS_NS = "http://opds-spec.org/2010/catalog"
DC_NS = "http://purl.org/dc/terms/"
OPENSEARCH_NS = "http://a9.com/-/spec/opensearch/1.1/"

NSMAP = {None: ATOM_NS, "opds": OPDS_NS, "dcterms": DC_NS, "opensearch": OPENSEARCH_NS}

NAVIGATION_TYPE = "application/atom+xml;profile=opds-catalog;kind=navigation"
ACQUISITION_TYPE = "application/atom+xml;profile=opds-catalog;kind=acquisition"
OPENSEARCH_TYPE = "application/opensearchdescription+xml"

REL_ACQUISITION = "http://opds-spec.org/acquisition"
REL_IMAGE = "http://opds-spec.org/image"
REL_THUMBNAIL = "http://opds-spec.org/image/thumbnail"

EBOOK_MEDIA_TYPES = {
    "epub": "application/epub+zip",
    "pdf": "application/pdf",
    "mobi": "application/x-mobipocket-ebook",
    "azw3": "application/vnd.amazon.ebook",
    "cbz": "application/vnd.comicbook+zip",
    "cbr": "application/vnd.comicbook-rar",
}


@dataclass(frozen=True)
class FeedLink:
    rel: str
    href: str
    type: str | None = None
    title: str | None = None


@dataclass
class FeedEntry:
    """A navigation entry (subsection link) or an acquisition entry (book)."""

    id: str
    title: str
    updated: str
    links: list[FeedLink] = field(default_factory=list)
    subtitle: str | None = None
    content: str | None = None
    authors: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    publisher: str | None = None
    language: str | None = None
    issued: str | None = None
    identifier: str | None = None

    @property
    def is_navigation(self) -> bool:
        return any(link.rel == "subsection" for link in self.links)


@dataclass
class FeedDocument:
    id: str
    title: str
    updated: str
    links: list[FeedLink] = field(default_factory=list)
    entries: list[FeedEntry] = field(default_factory=list)
    total_results: int | None = None
    start_index: int | None = None
    items_per_page: int | None = None


def _now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


def _with_params(path: str, params: dict[str, str | int | None]) -> str:
    query = urlencode({k: v for k, v in params.items() if v is not None and v != ""})
    return f"{path}?{query}" if query else path


def _atom(tag: str) -> str:
    return f"{{{ATOM_NS}}}{tag}"


def _sub(parent: etree._Element, tag: str, text: str | None = None, **attrs: str) -> etree._Element:
    element = etree.SubElement(parent, tag, {k: v for k, v in attrs.items() if v is not None})
    if text is not None:
        element.text = text
    return element


def _add_link(parent: etree._Element, link: FeedLink) -> None:
    _sub(parent, _atom("link"), rel=link.rel, href=link.href, type=link.type, title=link.title)


def render(document: FeedDocument) -> bytes:
    """Serialize a FeedDocument as UTF-8 Atom XML."""
    feed = etree.Element(_atom("feed"), nsmap=NSMAP)
    _sub(feed, _atom("id"), document.id)
    _sub(feed, _atom("title"), document.title)
    _sub(feed, _atom("updated"), document.updated)
    author = _sub(feed, _atom("author"))
    _sub(author, _atom("name"), "ABS OPDS Bridge")

    for link in document.links:
        _add_link(feed, link)

    if document.total_results is not None:
        _sub(feed, f"{{{OPENSEARCH_NS}}}totalResults", str(document.total_results))
        _sub(feed, f"{{{OPENSEARCH_NS}}}startIndex", str(document.start_index or 1))
        _sub(feed, f"{{{OPENSEARCH_NS}}}itemsPerPage", str(document.items_per_page or 0))

    for entry in document.entries:
        node = _sub(feed, _atom("entry"))
        _sub(node, _atom("id"), entry.id)
        _sub(node, _atom("title"), entry.title)
        _sub(node, _atom("updated"), entry.updated)
        if entry.subtitle:
            _sub(node, f"{{{DC_NS}}}alternative", entry.subtitle)
        for name in entry.authors:
            author = _sub(node, _atom("author"))
            _sub(author, _atom("name"), name)
        if entry.publisher:
            _sub(node, f"{{{DC_NS}}}publisher", entry.publisher)
        if entry.language:
            _sub(node, f"{{{DC_NS}}}language", entry.language)
        if entry.issued:
            _sub(node, f"{{{DC_NS}}}issued", entry.issued)
        if entry.identifier:
            _sub(node, f"{{{DC_NS}}}identifier", entry.identifier)
        for term in entry.categories:
            _sub(node, _atom("category"), term=term, label=term)
        if entry.content:
            _sub(node, _atom("content"), entry.content, type="text")
        for link in entry.links:
            _add_link(node, link)

    return etree.tostring(feed, xml_declaration=True, encoding="UTF-8", pretty_print=True)


def search_description(library_id: str) -> bytes:
    """OpenSearch description document for one library."""
    root = etree.Element(
        f"{{{OPENSEARCH_NS}}}OpenSearchDescription",
        nsmap={None: OPENSEARCH_NS, "atom": ATOM_NS},
    )
    _sub(root, f"{{{OPENSEARCH_NS}}}ShortName", "ABS")
    _sub(root, f"{{{OPENSEARCH_NS}}}LongName", "Audiobookshelf")
    _sub(root, f"{{{OPENSEARCH_NS}}}Description", "Search for books in Audiobookshelf")
    _sub(root, f"{{{OPENSEARCH_NS}}}InputEncoding", "UTF-8")
    _sub(root, f"{{{OPENSEARCH_NS}}}OutputEncoding", "UTF-8")
    _sub(
        root,
        f"{{{OPENSEARCH_NS}}}Url",
        type=ACQUISITION_TYPE,
        template=(
            f"/opds/libraries/{library_id}"
            "?q={searchTerms}&author={atom:author}&title={atom:title}"
        ),
    )
    return etree.tostring(root, xml_declaration=True, encoding="UTF-8", pretty_print=True)


class FeedAssembler:
    """Builds FeedDocuments for navigation and acquisition levels."""

    def __init__(self, settings: Settings):
        self.settings = settings

    # -- links ---------------------------------------------------------------

    def asset_href(self, relative_path: str, user: InternalUser) -> str:
        """Cover/content link: proxied without a token, or direct with one."""
        url = f"{self.settings.asset_base_url}{relative_path}"
        if self.settings.use_proxy:
            return url
        return f"{url}?{urlencode({'token': user.api_key})}"

    def library_links(self, library: Library) -> list[FeedLink]:
        base = f"/opds/libraries/{library.id}"
        return [
            FeedLink("start", "/opds", NAVIGATION_TYPE),
            FeedLink("alternate", f"{self.settings.abs_url}/library/{library.id}", "text/html", "Web Interface"),
            FeedLink("search", f"{base}/search-definition", OPENSEARCH_TYPE, "Search this library"),
            FeedLink("search", f"{base}?q={{searchTerms}}", ACQUISITION_TYPE, "Search this library"),
        ]

    def pagination_links(
        self,
        page: Page,
        path: str,
        params: dict[str, str | int | None],
        link_type: str,
    ) -> list[FeedLink]:
        """first/previous/next/last links; ``page`` is left out for page 0."""
        params = {k: v for k, v in params.items() if k != "page"}

        def href(index: int) -> str:
            return _with_params(path, {**params, "page": index if index > 0 else None})

        links = [FeedLink("first", href(0), link_type)]
        if page.has_previous:
            links.append(FeedLink("previous", href(min(page.page_index - 1, page.last_index)), link_type))
        if page.has_next:
            links.append(FeedLink("next", href(page.page_index + 1), link_type))
        if page.total_pages > 1:
            links.append(FeedLink("last", href(page.last_index), link_type))
        return links

    # -- entries -------------------------------------------------------------

    def navigation_entry(
        self,
        node: CatalogNode,
        href: str,
        updated: str,
        library: Library | None = None,
    ) -> FeedEntry:
        """Entry id is the exact node key, percent-encoded and scoped by library."""
        scope = f"{quote(library.id, safe='')}:" if library is not None else ""
        return FeedEntry(
            id=f"urn:{scope}{node.kind.value}:{quote(node.key, safe='')}",
            title=f"{node.label} ({node.item_count})",
            updated=updated,
            links=[FeedLink("subsection", href, NAVIGATION_TYPE)],
        )

    def book_entry(self, book: BookEntry, user: InternalUser, updated: str) -> FeedEntry:
        links = [
            FeedLink("alternate", f"{self.settings.abs_url}/item/{book.id}", "text/html", "Details"),
            FeedLink(REL_IMAGE, self.asset_href(book.cover_relative_path, user), "image/jpeg"),
            FeedLink(REL_THUMBNAIL, self.asset_href(book.cover_relative_path, user), "image/jpeg"),
        ]
        if book.ebook_format:
            media_type = EBOOK_MEDIA_TYPES.get(book.ebook_format.lower(), "application/octet-stream")
            links.append(
                FeedLink(REL_ACQUISITION, self.asset_href(book.ebook_relative_path, user), media_type)
            )
        elif self.settings.show_audiobooks:
            links.append(
                FeedLink(REL_ACQUISITION, self.asset_href(book.download_relative_path, user), "application/zip")
            )

        return FeedEntry(
            id=f"urn:uuid:{book.id}",
            title=book.title,
            updated=updated,
            links=links,
            subtitle=book.subtitle,
            content=book.description,
            authors=list(book.authors),
            categories=list(book.tags),
            publisher=book.publisher,
            language=book.language,
            issued=book.published_year,
            identifier=f"urn:isbn:{book.isbn}" if book.isbn else None,
        )

    # -- documents -----------------------------------------------------------

    def libraries_feed(self, user: InternalUser, libraries: list[Library], title: str) -> FeedDocument:
        updated = _now()
        user_hash = hashlib.sha1(user.username.encode("utf-8")).hexdigest()
        return FeedDocument(
            id=f"urn:sha1:{user_hash}",
            title=title,
            updated=updated,
            links=[
                FeedLink("self", "/opds", NAVIGATION_TYPE),
                FeedLink("start", "/opds", NAVIGATION_TYPE),
            ],
            entries=[
                FeedEntry(
                    id=f"urn:uuid:{library.id}",
                    title=library.name,
                    updated=updated,
                    links=[
                        FeedLink(
                            "subsection",
                            f"/opds/libraries/{library.id}?categories=true",
                            NAVIGATION_TYPE,
                        )
                    ],
                )
                for library in libraries
            ],
        )

    def categories_feed(
        self,
        library: Library,
        categories: list[tuple[str, str]],
        title: str,
    ) -> FeedDocument:
        """``categories`` is a list of (path segment or "" for all books, label)."""
        updated = _now()
        base = f"/opds/libraries/{library.id}"
        entries = []
        for segment, label in categories:
            href = f"{base}/{segment}" if segment else base
            entries.append(
                FeedEntry(
                    id=f"urn:category:{library.id}:{segment or 'all'}",
                    title=label,
                    updated=updated,
                    links=[
                        FeedLink(
                            "subsection",
                            href,
                            NAVIGATION_TYPE if segment else ACQUISITION_TYPE,
                        )
                    ],
                )
            )
        return FeedDocument(
            id=f"urn:uuid:{library.id}:categories",
            title=title,
            updated=updated,
            links=[FeedLink("self", f"{base}?categories=true", NAVIGATION_TYPE), *self.library_links(library)],
            entries=entries,
        )

    def navigation_feed(
        self,
        feed_id: str,
        title: str,
        page: Page[CatalogNode],
        path: str,
        params: dict[str, str | int | None],
        child_href,
        library: Library | None = None,
    ) -> FeedDocument:
        """
        Navigation level: one entry per node on ``page``.

        ``child_href`` maps a node to the URL of its drill-down level.
        """
        updated = _now()
        links = [FeedLink("self", _with_params(path, params), NAVIGATION_TYPE)]
        if library is not None:
            links.extend(self.library_links(library))
        links.extend(self.pagination_links(page, path, params, NAVIGATION_TYPE))
        return FeedDocument(
            id=feed_id,
            title=title,
            updated=updated,
            links=links,
            entries=[
                self.navigation_entry(node, child_href(node), updated, library)
                for node in page.items
            ],
            total_results=page.total_count,
            start_index=page.start_index,
            items_per_page=page.page_size,
        )

    def acquisition_feed(
        self,
        feed_id: str,
        title: str,
        page: Page[BookEntry],
        user: InternalUser,
        path: str,
        params: dict[str, str | int | None],
        library: Library | None = None,
    ) -> FeedDocument:
        updated = _now()
        links = [FeedLink("self", _with_params(path, params), ACQUISITION_TYPE)]
        if library is not None:
            links.extend(self.library_links(library))
        links.extend(self.pagination_links(page, path, params, ACQUISITION_TYPE))
        return FeedDocument(
            id=feed_id,
            title=title,
            updated=updated,
            links=links,
            entries=[self.book_entry(book, user, updated) for book in page.items],
            total_results=page.total_count,
            start_index=page.start_index,
            items_per_page=page.page_size,
        )

    def empty_feed(self, feed_id: str, title: str, path: str, kind: str = ACQUISITION_TYPE) -> FeedDocument:
        """Well-formed feed with no entries, served when a listing cannot be loaded."""
        return FeedDocument(
            id=feed_id,
            title=title,
            updated=_now(),
            links=[FeedLink("self", path, kind), FeedLink("start", "/opds", NAVIGATION_TYPE)],
            total_results=0,
            start_index=1,
            items_per_page=self.settings.opds_page_size,
        )


def value_path(base: str, value: str) -> str:
    """URL of an axis value's book list; the value is percent-encoded as one segment."""
    return f"{base}/{quote(value, safe='')}"

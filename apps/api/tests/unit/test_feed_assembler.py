"""Unit tests for OPDS feed assembly and rendering."""

from lxml import etree

from api.schemas import BookEntry, InternalUser, Library
from core.config import Settings
from services.catalog_indexer import CatalogNode, NodeKind
from services.feed_assembler import (
    ATOM_NS,
    OPENSEARCH_NS,
    REL_ACQUISITION,
    REL_IMAGE,
    FeedAssembler,
    render,
    search_description,
    value_path,
)
from services.pagination import paginate

NS = {"atom": ATOM_NS, "opensearch": OPENSEARCH_NS}
USER = InternalUser(username="reader", api_key="tok-reader")
LIBRARY = Library(id="lib1", name="Books")


def assembler(**overrides: object) -> FeedAssembler:
    return FeedAssembler(Settings(_env_file=None, abs_url="http://abs.test", **overrides))


def parse(document) -> etree._Element:
    return etree.fromstring(render(document))


def links(element: etree._Element) -> dict[str, str]:
    return {link.get("rel"): link.get("href") for link in element.findall("atom:link", NS)}


def test_navigation_feed_entries_and_counts() -> None:
    nodes = [
        CatalogNode(NodeKind.AUTHOR, "Ann", "Ann", 3, NodeKind.BOOK),
        CatalogNode(NodeKind.AUTHOR, "Zed", "Zed", 1, NodeKind.BOOK),
    ]
    document = assembler().navigation_feed(
        "urn:test",
        "Authors",
        paginate(nodes, 0, 10),
        "/opds/libraries/lib1/authors",
        {"page": 0},
        lambda node: value_path("/opds/libraries/lib1/authors", node.key),
        library=LIBRARY,
    )
    root = parse(document)

    titles = [e.findtext("atom:title", namespaces=NS) for e in root.findall("atom:entry", NS)]
    assert titles == ["Ann (3)", "Zed (1)"]
    first = root.find("atom:entry", NS)
    assert links(first)["subsection"] == "/opds/libraries/lib1/authors/Ann"
    assert root.findtext("opensearch:totalResults", namespaces=NS) == "2"
    assert all(e.is_navigation for e in document.entries)


def test_navigation_entry_ids_are_distinct_per_key() -> None:
    keys = ["Ann", "ann", "Mary Ann", "mary-ann", "AC/DC"]
    nodes = [CatalogNode(NodeKind.AUTHOR, key, key, 1, NodeKind.BOOK) for key in keys]
    document = assembler().navigation_feed(
        "urn:test",
        "Authors",
        paginate(nodes, 0, 10),
        "/opds/libraries/lib1/authors",
        {},
        lambda node: value_path("/opds/libraries/lib1/authors", node.key),
        library=LIBRARY,
    )
    ids = [e.findtext("atom:id", namespaces=NS) for e in parse(document).findall("atom:entry", NS)]

    assert len(set(ids)) == len(keys)
    assert ids[2] == "urn:lib1:author:Mary%20Ann"


def test_navigation_entry_ids_scoped_by_library() -> None:
    node = CatalogNode(NodeKind.GENRE, "Fantasy", "Fantasy", 2, NodeKind.BOOK)
    first = assembler().navigation_entry(node, "/a", "now", Library(id="lib1", name="A"))
    second = assembler().navigation_entry(node, "/b", "now", Library(id="lib2", name="B"))

    assert first.id != second.id


def test_pagination_links_middle_page() -> None:
    page = paginate(list(range(10)), 2, 3)
    result = {link.rel: link.href for link in assembler().pagination_links(page, "/opds/search", {"q": "x", "page": 2}, "t")}

    assert result == {
        "first": "/opds/search?q=x",
        "previous": "/opds/search?q=x&page=1",
        "next": "/opds/search?q=x&page=3",
        "last": "/opds/search?q=x&page=3",
    }


def test_pagination_links_boundaries() -> None:
    first_page = {l.rel for l in assembler().pagination_links(paginate([1, 2, 3], 0, 2), "/p", {}, "t")}
    last_page = {l.rel for l in assembler().pagination_links(paginate([1, 2, 3], 1, 2), "/p", {}, "t")}
    single = {l.rel for l in assembler().pagination_links(paginate([1], 0, 2), "/p", {}, "t")}

    assert first_page == {"first", "next", "last"}
    assert last_page == {"first", "previous", "last"}
    assert single == {"first"}


def test_pagination_previous_clamped_when_out_of_range() -> None:
    page = paginate([1, 2, 3], 9, 2)
    result = {link.rel: link.href for link in assembler().pagination_links(page, "/p", {}, "t")}

    assert result["previous"] == "/p?page=1"
    assert "next" not in result


def test_book_entry_direct_links_carry_token() -> None:
    book = BookEntry(id="b1", title="Dune", authors=("Frank Herbert",), tags=("Sci-Fi",), ebook_format="epub")
    entry = assembler().book_entry(book, USER, "2024-01-01T00:00:00+00:00")
    by_rel = {link.rel: link for link in entry.links}

    assert by_rel[REL_IMAGE].href == "http://abs.test/api/items/b1/cover?token=tok-reader"
    assert by_rel[REL_ACQUISITION].href == "http://abs.test/api/items/b1/ebook?token=tok-reader"
    assert by_rel[REL_ACQUISITION].type == "application/epub+zip"
    assert by_rel["alternate"].href == "http://abs.test/item/b1"
    assert entry.authors == ["Frank Herbert"]
    assert entry.categories == ["Sci-Fi"]


def test_book_entry_proxied_links_omit_token() -> None:
    book = BookEntry(id="b1", title="Dune", ebook_format="pdf")
    entry = assembler(use_proxy=True).book_entry(book, USER, "now")
    hrefs = [link.href for link in entry.links if link.rel != "alternate"]

    assert hrefs
    assert all(href.startswith("/opds/proxy/api/items/b1/") for href in hrefs)
    assert all("tok-reader" not in href for href in hrefs)


def test_audiobook_download_link_only_when_audiobooks_shown() -> None:
    audiobook = BookEntry(id="a1", title="Spoken", ebook_format=None)

    hidden = assembler().book_entry(audiobook, USER, "now")
    shown = assembler(show_audiobooks=True).book_entry(audiobook, USER, "now")

    assert REL_ACQUISITION not in {link.rel for link in hidden.links}
    assert REL_IMAGE in {link.rel for link in hidden.links}
    acquisition = [link for link in shown.links if link.rel == REL_ACQUISITION]
    assert acquisition[0].href.startswith("http://abs.test/api/items/a1/download")


def test_acquisition_feed_renders_well_formed_xml() -> None:
    books = [BookEntry(id=f"b{i}", title=f"Book <{i}> & more") for i in range(3)]
    document = assembler().acquisition_feed(
        "urn:uuid:lib1",
        "Books",
        paginate(books, 0, 2),
        USER,
        "/opds/libraries/lib1",
        {"page": 0},
        library=LIBRARY,
    )
    root = parse(document)

    assert root.tag == f"{{{ATOM_NS}}}feed"
    assert len(root.findall("atom:entry", NS)) == 2
    assert root.find("atom:entry/atom:title", NS).text == "Book <0> & more"
    assert links(root)["next"] == "/opds/libraries/lib1?page=1"
    assert root.findtext("atom:updated", namespaces=NS)


def test_empty_feed_is_well_formed() -> None:
    root = parse(assembler().empty_feed("urn:empty", "Nothing", "/opds/search"))

    assert root.findall("atom:entry", NS) == []
    assert root.findtext("opensearch:totalResults", namespaces=NS) == "0"


def test_libraries_feed_links_to_categories() -> None:
    libraries = [Library(id="l1", name="Books"), Library(id="l2", name="Comics")]
    root = parse(assembler().libraries_feed(USER, libraries, "reader's Libraries"))

    hrefs = [links(e)["subsection"] for e in root.findall("atom:entry", NS)]
    assert hrefs == ["/opds/libraries/l1?categories=true", "/opds/libraries/l2?categories=true"]


def test_search_description_template() -> None:
    root = etree.fromstring(search_description("lib1"))
    url = root.find(f"{{{OPENSEARCH_NS}}}Url")

    assert url.get("template").startswith("/opds/libraries/lib1?q={searchTerms}")


def test_value_path_encodes_segment() -> None:
    assert value_path("/opds/authors", "AC/DC & Friends") == "/opds/authors/AC%2FDC%20%26%20Friends"

"""OPDS catalog endpoints."""

import logging
from collections.abc import Awaitable, Callable
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse, Response

from api.deps import (
    accept_language,
    get_catalog_indexer,
    get_current_user,
    get_feed_assembler,
    get_i18n,
)
from api.schemas import BookEntry, InternalUser, Library
from core.config import Settings, get_settings
from core.i18n import Translator
from services.catalog_indexer import (
    Axis,
    CatalogIndexer,
    CatalogNode,
    NodeKind,
    search_books,
)
from services.errors import BadGateway
from services.feed_assembler import (
    ACQUISITION_TYPE,
    NAVIGATION_TYPE,
    FeedAssembler,
    FeedDocument,
    render,
    search_description,
    value_path,
)
from services.pagination import paginate

logger = logging.getLogger(__name__)

router = APIRouter()

CATEGORY_AXES = [
    ("", "category.all"),
    (Axis.AUTHORS.value, "category.authors"),
    (Axis.NARRATORS.value, "category.narrators"),
    (Axis.GENRES.value, "category.genres"),
    (Axis.SERIES.value, "category.series"),
]


def feed_response(document: FeedDocument, media_type: str) -> Response:
    return Response(content=render(document), media_type=media_type)


async def degrade_to_empty(
    build: Callable[[], Awaitable[Response]],
    assembler: FeedAssembler,
    feed_id: str,
    title: str,
    path: str,
    media_type: str = ACQUISITION_TYPE,
) -> Response:
    """Run ``build``; if the upstream fails, answer with a well-formed empty feed instead."""
    try:
        return await build()
    except BadGateway as e:
        logger.warning("Serving empty feed for %s: %s", path, e)
        return feed_response(assembler.empty_feed(feed_id, title, path, media_type), media_type)


async def _resolve_library(
    indexer: CatalogIndexer,
    user: InternalUser,
    library_id: str | None,
) -> Library | None:
    if library_id is None:
        return await indexer.default_library(user)
    return await indexer.get_library(user, library_id)


def _axis_base(library_id: str | None) -> str:
    return f"/opds/libraries/{library_id}" if library_id else "/opds"


async def _axis_feed(
    *,
    user: InternalUser,
    library_id: str | None,
    axis_name: str,
    value: str | None,
    start: str | None,
    page: int,
    indexer: CatalogIndexer,
    assembler: FeedAssembler,
    settings: Settings,
    i18n: Translator,
    language: str | None,
) -> Response:
    axis = Axis.parse(axis_name)
    base = _axis_base(library_id)
    axis_path = f"{base}/{axis.value}"
    path = value_path(axis_path, value) if value is not None else axis_path
    axis_label = i18n.localize(f"category.{axis.value}", language)
    title = value if value is not None else axis_label
    media_type = ACQUISITION_TYPE if value is not None else NAVIGATION_TYPE

    async def build() -> Response:
        library = await _resolve_library(indexer, user, library_id)
        if library is None:
            return feed_response(assembler.empty_feed(f"urn:{axis.value}", title, path, media_type), media_type)

        nav_path = f"{axis.value}/{value}/books" if value is not None else axis.value
        level = await indexer.browse(user, library.id, nav_path, start=start)
        feed_id = f"urn:uuid:{library.id}:{axis.value}"

        if level.is_leaf:
            book_page = paginate(level.books or (), page, settings.opds_page_size)
            document = assembler.acquisition_feed(
                f"{feed_id}:{value}",
                title,
                book_page,
                user,
                path,
                {"page": page},
                library=library,
            )
            return feed_response(document, ACQUISITION_TYPE)

        def child_href(node: CatalogNode) -> str:
            if node.kind is NodeKind.CARD:
                return f"{axis_path}?{urlencode({'start': node.key.lower()})}"
            return value_path(axis_path, node.key)

        node_page = paginate(level.nodes or (), page, settings.opds_page_size)
        nav_title = f"{axis_label}: {start.upper()}" if start else axis_label
        document = assembler.navigation_feed(
            feed_id if not start else f"{feed_id}:{start.lower()}",
            nav_title,
            node_page,
            axis_path,
            {"start": start, "page": page},
            child_href,
            library=library,
        )
        return feed_response(document, NAVIGATION_TYPE)

    return await degrade_to_empty(build, assembler, f"urn:{axis.value}", title, path, media_type)


async def _books_feed(
    *,
    user: InternalUser,
    library_id: str | None,
    page: int,
    q: str | None,
    author: str | None,
    title: str | None,
    type_: str | None,
    name: str | None,
    indexer: CatalogIndexer,
    assembler: FeedAssembler,
    settings: Settings,
    i18n: Translator,
    language: str | None,
) -> Response:
    path = f"/opds/libraries/{library_id}" if library_id else "/opds/search"
    params = {"q": q, "author": author, "title": title, "type": type_, "name": name, "page": page}
    feed_title = i18n.localize("feed.search", language)
    axis = Axis.parse(type_) if type_ else None

    async def build() -> Response:
        library = await _resolve_library(indexer, user, library_id)
        if library is None:
            return feed_response(assembler.empty_feed("urn:search", feed_title, path), ACQUISITION_TYPE)

        books: list[BookEntry] = await indexer.load_books(user, library.id)
        if axis is not None and name:
            books = indexer.level(books, axis, value=name).books or []
        books = search_books(books, q, author=author, title=title)
        document = assembler.acquisition_feed(
            f"urn:uuid:{library.id}",
            library.name if not (q or author or title) else feed_title,
            paginate(books, page, settings.opds_page_size),
            user,
            path,
            params,
            library=library,
        )
        return feed_response(document, ACQUISITION_TYPE)

    return await degrade_to_empty(build, assembler, "urn:search", feed_title, path)


@router.get("", response_model=None)
async def opds_root(
    user: InternalUser = Depends(get_current_user),
    indexer: CatalogIndexer = Depends(get_catalog_indexer),
    assembler: FeedAssembler = Depends(get_feed_assembler),
    i18n: Translator = Depends(get_i18n),
    language: str | None = Depends(accept_language),
) -> Response:
    """List the user's libraries; a single library redirects straight to its categories."""
    libraries = await indexer.list_libraries(user)
    if len(libraries) == 1:
        return RedirectResponse(
            url=f"/opds/libraries/{libraries[0].id}?categories=true",
            status_code=307,
        )
    title = i18n.localize("feed.libraries", language, username=user.username)
    return feed_response(assembler.libraries_feed(user, libraries, title), NAVIGATION_TYPE)


@router.get("/search", response_model=None)
async def search_default_library(
    q: str | None = Query(default=None),
    author: str | None = Query(default=None),
    title: str | None = Query(default=None),
    page: int = Query(default=0),
    user: InternalUser = Depends(get_current_user),
    indexer: CatalogIndexer = Depends(get_catalog_indexer),
    assembler: FeedAssembler = Depends(get_feed_assembler),
    settings: Settings = Depends(get_settings),
    i18n: Translator = Depends(get_i18n),
    language: str | None = Depends(accept_language),
) -> Response:
    """Search the default library across title, author and narrator."""
    return await _books_feed(
        user=user,
        library_id=None,
        page=page,
        q=q,
        author=author,
        title=title,
        type_=None,
        name=None,
        indexer=indexer,
        assembler=assembler,
        settings=settings,
        i18n=i18n,
        language=language,
    )


@router.get("/libraries/{library_id}", response_model=None)
async def library_feed(
    library_id: str,
    categories: str | None = Query(default=None),
    q: str | None = Query(default=None),
    author: str | None = Query(default=None),
    title: str | None = Query(default=None),
    type_: str | None = Query(default=None, alias="type"),
    name: str | None = Query(default=None),
    page: int = Query(default=0),
    user: InternalUser = Depends(get_current_user),
    indexer: CatalogIndexer = Depends(get_catalog_indexer),
    assembler: FeedAssembler = Depends(get_feed_assembler),
    settings: Settings = Depends(get_settings),
    i18n: Translator = Depends(get_i18n),
    language: str | None = Depends(accept_language),
) -> Response:
    """
    Categories navigation (``?categories=true``) or the library's paged book list.

    ``q``/``author``/``title`` search; ``type`` + ``name`` filter by one axis value.
    """
    if categories is not None:
        feed_title = i18n.localize("feed.categories", language)
        try:
            library = await indexer.get_library(user, library_id)
        except BadGateway as e:
            logger.warning("Library %s lookup failed, using its id as name: %s", library_id, e)
            library = Library(id=library_id, name=library_id)
        entries = [(segment, i18n.localize(key, language)) for segment, key in CATEGORY_AXES]
        return feed_response(assembler.categories_feed(library, entries, feed_title), NAVIGATION_TYPE)

    return await _books_feed(
        user=user,
        library_id=library_id,
        page=page,
        q=q,
        author=author,
        title=title,
        type_=type_,
        name=name,
        indexer=indexer,
        assembler=assembler,
        settings=settings,
        i18n=i18n,
        language=language,
    )


@router.get("/libraries/{library_id}/search-definition")
async def library_search_definition(
    library_id: str,
    user: InternalUser = Depends(get_current_user),
) -> Response:
    """OpenSearch description for the library's search template."""
    return Response(content=search_description(library_id), media_type="application/opensearchdescription+xml")


@router.get("/libraries/{library_id}/{axis}", response_model=None)
async def library_axis(
    library_id: str,
    axis: str,
    start: str | None = Query(default=None),
    page: int = Query(default=0),
    user: InternalUser = Depends(get_current_user),
    indexer: CatalogIndexer = Depends(get_catalog_indexer),
    assembler: FeedAssembler = Depends(get_feed_assembler),
    settings: Settings = Depends(get_settings),
    i18n: Translator = Depends(get_i18n),
    language: str | None = Depends(accept_language),
) -> Response:
    """Axis values (or alphabetical cards) of one library."""
    return await _axis_feed(
        user=user,
        library_id=library_id,
        axis_name=axis,
        value=None,
        start=start,
        page=page,
        indexer=indexer,
        assembler=assembler,
        settings=settings,
        i18n=i18n,
        language=language,
    )


@router.get("/libraries/{library_id}/{axis}/{value:path}", response_model=None)
async def library_axis_value(
    library_id: str,
    axis: str,
    value: str,
    page: int = Query(default=0),
    user: InternalUser = Depends(get_current_user),
    indexer: CatalogIndexer = Depends(get_catalog_indexer),
    assembler: FeedAssembler = Depends(get_feed_assembler),
    settings: Settings = Depends(get_settings),
    i18n: Translator = Depends(get_i18n),
    language: str | None = Depends(accept_language),
) -> Response:
    """Books carrying one axis value."""
    return await _axis_feed(
        user=user,
        library_id=library_id,
        axis_name=axis,
        value=_strip_books_suffix(value),
        start=None,
        page=page,
        indexer=indexer,
        assembler=assembler,
        settings=settings,
        i18n=i18n,
        language=language,
    )


@router.get("/{axis}", response_model=None)
async def default_axis(
    axis: str,
    start: str | None = Query(default=None),
    page: int = Query(default=0),
    user: InternalUser = Depends(get_current_user),
    indexer: CatalogIndexer = Depends(get_catalog_indexer),
    assembler: FeedAssembler = Depends(get_feed_assembler),
    settings: Settings = Depends(get_settings),
    i18n: Translator = Depends(get_i18n),
    language: str | None = Depends(accept_language),
) -> Response:
    """Axis values of the default library (``/opds/authors`` and friends)."""
    return await _axis_feed(
        user=user,
        library_id=None,
        axis_name=axis,
        value=None,
        start=start,
        page=page,
        indexer=indexer,
        assembler=assembler,
        settings=settings,
        i18n=i18n,
        language=language,
    )


@router.get("/{axis}/{value:path}", response_model=None)
async def default_axis_value(
    axis: str,
    value: str,
    page: int = Query(default=0),
    user: InternalUser = Depends(get_current_user),
    indexer: CatalogIndexer = Depends(get_catalog_indexer),
    assembler: FeedAssembler = Depends(get_feed_assembler),
    settings: Settings = Depends(get_settings),
    i18n: Translator = Depends(get_i18n),
    language: str | None = Depends(accept_language),
) -> Response:
    """Books carrying one axis value in the default library."""
    return await _axis_feed(
        user=user,
        library_id=None,
        axis_name=axis,
        value=_strip_books_suffix(value),
        start=None,
        page=page,
        indexer=indexer,
        assembler=assembler,
        settings=settings,
        i18n=i18n,
        language=language,
    )


def _strip_books_suffix(value: str) -> str:
    return value[: -len("/books")] if value.endswith("/books") else value

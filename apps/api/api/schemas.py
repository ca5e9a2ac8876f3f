import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Upstream payload shapes. Only the fields the catalog reads are declared;
# anything else the upstream sends is ignored.

class UpstreamModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

class AbsLibrary(UpstreamModel):
    id: str
    name: str
    icon: str | None = None

class AbsLibrariesResponse(UpstreamModel):
    libraries: list[AbsLibrary] = []

class AbsMetadata(UpstreamModel):
    title: str | None = None
    subtitle: str | None = None
    description: str | None = None
    genres: list[str] | None = None
    tags: list[str] | None = None
    publisher: str | None = None
    isbn: str | None = None
    language: str | None = None
    published_year: str | None = Field(default=None, alias="publishedYear")
    author_name: str | None = Field(default=None, alias="authorName")
    narrator_name: str | None = Field(default=None, alias="narratorName")
    series_name: str | None = Field(default=None, alias="seriesName")

    @field_validator("published_year", mode="before")
    @classmethod
    def _year_as_text(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        return value

class AbsMedia(UpstreamModel):
    metadata: AbsMetadata = Field(default_factory=AbsMetadata)
    ebook_format: str | None = Field(default=None, alias="ebookFormat")
    # Library-level tags live on the media object for some upstream versions
    tags: list[str] | None = None

class AbsItem(UpstreamModel):
    id: str
    media: AbsMedia = Field(default_factory=AbsMedia)

class AbsItemsResponse(UpstreamModel):
    results: list[AbsItem] = []

class AbsLoginUser(UpstreamModel):
    username: str
    access_token: str = Field(alias="accessToken")

class AbsLoginResponse(UpstreamModel):
    user: AbsLoginUser

# Normalized read-only projections handed to the rest of the service.

class InternalUser(BaseModel):
    """Identity resolved for one request: display name plus upstream bearer token."""
    model_config = ConfigDict(frozen=True)

    username: str
    api_key: str = Field(repr=False)

class Library(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    icon: str | None = None

class BookEntry(BaseModel):
    """Normalized upstream book or audiobook."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    subtitle: str | None = None
    description: str | None = None
    authors: tuple[str, ...] = ()
    narrators: tuple[str, ...] = ()
    series: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    publisher: str | None = None
    isbn: str | None = None
    language: str | None = None
    published_year: str | None = None
    ebook_format: str | None = None

    @property
    def is_audiobook(self) -> bool:
        return self.ebook_format is None

    @property
    def cover_relative_path(self) -> str:
        return f"/api/items/{self.id}/cover"

    @property
    def ebook_relative_path(self) -> str:
        return f"/api/items/{self.id}/ebook"

    @property
    def download_relative_path(self) -> str:
        return f"/api/items/{self.id}/download"


_SERIES_SEQUENCE = re.compile(r"#.*$")


def _split_names(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(name.strip() for name in raw.split(",") if name.strip())


def _unique(values: list[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for value in values:
        value = value.strip()
        if value and value not in seen:
            seen[value] = None
    return tuple(seen)


def library_from_upstream(library: AbsLibrary) -> Library:
    return Library(id=library.id, name=library.name, icon=library.icon)


def book_from_upstream(item: AbsItem) -> BookEntry:
    """Project an upstream library item onto a BookEntry."""
    meta = item.media.metadata
    series = tuple(
        name
        for name in (_SERIES_SEQUENCE.sub("", part).strip() for part in _split_names(meta.series_name))
        if name
    )
    return BookEntry(
        id=item.id,
        title=(meta.title or "").strip() or item.id,
        subtitle=meta.subtitle,
        description=meta.description,
        authors=_split_names(meta.author_name),
        narrators=_split_names(meta.narrator_name),
        series=series,
        tags=_unique([*(meta.genres or []), *(meta.tags or []), *(item.media.tags or [])]),
        publisher=meta.publisher,
        isbn=meta.isbn,
        language=meta.language,
        published_year=meta.published_year,
        ebook_format=item.media.ebook_format or None,
    )

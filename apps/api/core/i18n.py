"""Localized labels for catalog feeds."""

import json
import logging
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)

FALLBACK_LANGUAGE = "en"

DEFAULT_LABELS: dict[str, str] = {
    "category.all": "All books",
    "category.authors": "Authors",
    "category.narrators": "Narrators",
    "category.genres": "Genres",
    "category.series": "Series",
    "feed.libraries": "{username}'s Libraries",
    "feed.categories": "Categories",
    "feed.search": "Search results",
}


class Translator:
    """Looks up labels by key for the language requested by the client."""

    def __init__(self, languages: dict[str, dict[str, str]] | None = None):
        self.languages: dict[str, dict[str, str]] = {FALLBACK_LANGUAGE: dict(DEFAULT_LABELS)}
        for code, labels in (languages or {}).items():
            self.languages.setdefault(code.lower(), {}).update(labels)

    @classmethod
    def from_directory(cls, directory: Path) -> "Translator":
        """Load every ``<lang>.json`` file found in ``directory``."""
        languages: dict[str, dict[str, str]] = {}
        if not directory.is_dir():
            logger.debug("Languages directory %s not found, using built-in labels", directory)
            return cls()

        for path in sorted(directory.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Skipping language file %s: %s", path, e)
                continue
            if not isinstance(data, dict):
                logger.warning("Skipping language file %s: not a JSON object", path)
                continue
            languages[path.stem.lower()] = {
                str(key): str(value) for key, value in data.items() if isinstance(value, str)
            }
        logger.info("Loaded %d language file(s) from %s", len(languages), directory)
        return cls(languages)

    @staticmethod
    def language_from_header(accept_language: str | None) -> str:
        """Primary subtag of the first ``Accept-Language`` entry."""
        if not accept_language:
            return FALLBACK_LANGUAGE
        first = accept_language.split(",")[0].split(";")[0].strip()
        primary = first.split("-")[0].strip().lower()
        return primary or FALLBACK_LANGUAGE

    def localize(self, key: str, accept_language: str | None = None, **params: str) -> str:
        language = self.language_from_header(accept_language)
        text = self.languages.get(language, {}).get(key)
        if text is None:
            text = self.languages[FALLBACK_LANGUAGE].get(key, key)
        if params:
            try:
                return text.format(**params)
            except (KeyError, IndexError, ValueError):
                return text
        return text


@lru_cache
def get_translator(directory: Path) -> Translator:
    """Cached translator per languages directory."""
    return Translator.from_directory(directory)

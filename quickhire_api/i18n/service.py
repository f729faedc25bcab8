"""Key-value translation lookup.

Tables are configuration data (``translations.json``), not code. Lookups fall
back to the default language, then to the key itself, so a missing entry is
visible on the page instead of blank.
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Mapping, Optional

logger = logging.getLogger("api.i18n")

TRANSLATIONS_PATH = Path(__file__).parent / "translations.json"
DEFAULT_LANGUAGE = "english"

# Short codes the browser may send instead of our language names
LANGUAGE_ALIASES: Dict[str, str] = {
    "en": "english",
    "es": "spanish",
}


class TranslationService:
    def __init__(self, tables: Mapping[str, Mapping[str, str]], default_language: str = DEFAULT_LANGUAGE) -> None:
        if default_language not in tables:
            raise ValueError(f"Default language {default_language!r} has no translation table")
        self._tables: Dict[str, Dict[str, str]] = {lang: dict(table) for lang, table in tables.items()}
        self.default_language = default_language

    @classmethod
    def from_file(cls, path: Path = TRANSLATIONS_PATH) -> "TranslationService":
        with open(path, encoding="utf-8") as fh:
            payload = json.load(fh)
        languages = payload.get("languages") or {}
        default = payload.get("default") or DEFAULT_LANGUAGE
        logger.info("Loaded translations for %s from %s", ", ".join(sorted(languages)), path.name)
        return cls(languages, default)

    @property
    def languages(self) -> List[str]:
        return sorted(self._tables)

    def resolve_language(self, language: Optional[str]) -> str:
        """Map a requested language (name or short code) to a known one."""
        key = str(language or "").strip().lower()
        key = LANGUAGE_ALIASES.get(key.split("-", 1)[0], key)
        return key if key in self._tables else self.default_language

    def t(self, key: str, language: Optional[str] = None) -> str:
        lang = self.resolve_language(language)
        value = self._tables[lang].get(key)
        if value is None and lang != self.default_language:
            value = self._tables[self.default_language].get(key)
        return value if value is not None else key

    def table(self, language: Optional[str] = None) -> Dict[str, str]:
        """Full table for ``language`` with default-language entries filled in."""
        lang = self.resolve_language(language)
        merged = dict(self._tables[self.default_language])
        merged.update(self._tables[lang])
        return merged

    def missing_keys(self, language: str) -> List[str]:
        lang = self.resolve_language(language)
        return sorted(set(self._tables[self.default_language]) - set(self._tables[lang]))


@lru_cache(maxsize=1)
def get_translation_service() -> TranslationService:
    """Shared service loaded from the bundled table."""
    return TranslationService.from_file()

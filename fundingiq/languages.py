"""Response-language directives for the query prompt.

The table is loaded once from languages.yaml and exposed read-only.
"""
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional

import structlog
import yaml

from fundingiq import config

logger = structlog.get_logger()


@dataclass(frozen=True)
class Language:
    """A supported response language."""

    code: str
    name: str
    prompt: str


def load_languages(path: Path = None) -> Mapping[str, Language]:
    """Load the language table from YAML.

    Raises:
        ValueError: If the file lacks an entry for the default language
    """
    path = path or config.LANGUAGES_PATH
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}

    table = {
        code: Language(code=code, name=entry["name"], prompt=entry["prompt"])
        for code, entry in raw.items()
    }
    if config.DEFAULT_LANGUAGE not in table:
        raise ValueError(f"Language table {path} has no '{config.DEFAULT_LANGUAGE}' entry")

    logger.debug("languages_loaded", count=len(table), path=str(path))
    return MappingProxyType(table)


LANGUAGES: Mapping[str, Language] = load_languages()


def resolve_language(code: Optional[str], table: Mapping[str, Language] = None) -> Language:
    """Get the directive for a language code, falling back to the default."""
    table = table if table is not None else LANGUAGES
    return table.get((code or "").lower(), table[config.DEFAULT_LANGUAGE])

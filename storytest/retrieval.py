"""
Knowledge base of known UI locators and API routes, and keyword retrieval over it.

Matching is deliberately simple: an entry is relevant to a keyword when either
one contains the other after lower-casing and stripping punctuation. There is
no ranking.
"""

from __future__ import annotations
import json
import re
import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Union

from pydantic import BaseModel, Field, ValidationError

from .config import load_knowledge_base_config
from .exceptions import KnowledgeBaseError

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset([
    'the', 'a', 'an', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for',
    'of', 'with', 'by', 'user', 'should', 'can', 'will',
])

Catalog = Dict[str, Dict[str, str]]


class KnowledgeBase(BaseModel):
    """Locator and route catalogs, both category -> name -> string."""
    locators: Catalog = Field(default_factory=dict, description="category -> name -> locator expression")
    routes: Catalog = Field(default_factory=dict, description="category -> name -> route descriptor")

    @classmethod
    def load(cls, locators_path: Union[str, Path], routes_path: Union[str, Path]) -> "KnowledgeBase":
        """
        Read both catalogs from JSON files.

        Raises:
            KnowledgeBaseError: If a file is missing, not JSON, or not a two-level string mapping
        """
        return cls(
            locators=_read_catalog(Path(locators_path)),
            routes=_read_catalog(Path(routes_path)),
        )


class _CatalogDocument(BaseModel):
    entries: Catalog


def _read_catalog(path: Path) -> Catalog:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise KnowledgeBaseError(str(path), "file not found") from e
    except (OSError, json.JSONDecodeError) as e:
        raise KnowledgeBaseError(str(path), str(e)) from e

    try:
        return _CatalogDocument(entries=data).entries
    except ValidationError as e:
        raise KnowledgeBaseError(str(path), "expected an object of category -> name -> string") from e


@lru_cache(maxsize=1)
def default_knowledge_base() -> KnowledgeBase:
    """Process-wide knowledge base, loaded on first use from the configured paths."""
    kb_config = load_knowledge_base_config()
    logger.info(f"Loading knowledge base from {kb_config.locators_path} and {kb_config.routes_path}")
    return KnowledgeBase.load(kb_config.locators_path, kb_config.routes_path)


def _normalize(text: str) -> str:
    return re.sub(r'[^a-z0-9]', '', text.lower())


def _matches(keyword: str, category: str, name: str) -> bool:
    return (
        keyword in name
        or keyword in category
        or name in keyword
        or category in keyword
    )


class Retriever:
    """Keyword lookup over a knowledge base."""

    def __init__(self, knowledge_base: Optional[KnowledgeBase] = None):
        """
        Args:
            knowledge_base: Catalogs to search (the packaged default if None)
        """
        self._kb = knowledge_base if knowledge_base is not None else default_knowledge_base()

    @property
    def knowledge_base(self) -> KnowledgeBase:
        return self._kb

    def extract_keywords(self, text: str) -> Set[str]:
        """Lower-cased words longer than two characters, minus stop words."""
        words = re.sub(r'[^\w\s]', ' ', text.lower()).split()
        return {w for w in words if len(w) > 2 and w not in STOP_WORDS}

    def find_locators(self, keywords: Iterable[str]) -> Dict[str, str]:
        """Locators whose category or name overlaps any keyword, keyed "category.name"."""
        relevant: Dict[str, str] = {}
        for keyword in self._normalized(keywords):
            for category, entries in self._kb.locators.items():
                for name, locator in entries.items():
                    if _matches(keyword, _normalize(category), _normalize(name)):
                        relevant[f"{category}.{name}"] = locator
        return relevant

    def find_routes(self, keywords: Iterable[str]) -> List[str]:
        """Route descriptors "category.name: route" in first-match order, without duplicates."""
        relevant: List[str] = []
        seen: Set[str] = set()
        for keyword in self._normalized(keywords):
            for category, entries in self._kb.routes.items():
                for name, route in entries.items():
                    if not _matches(keyword, _normalize(category), _normalize(name)):
                        continue
                    descriptor = f"{category}.{name}: {route}"
                    if descriptor not in seen:
                        seen.add(descriptor)
                        relevant.append(descriptor)
        return relevant

    @staticmethod
    def _normalized(keywords: Iterable[str]) -> List[str]:
        # Sets are sorted so results do not depend on hash order
        ordered = sorted(keywords) if isinstance(keywords, (set, frozenset)) else list(keywords)
        return [k for k in (_normalize(k) for k in ordered) if k]

"""
Canonical category catalog.

The store is the single source of truth for which category strings may be
persisted. "Uncategorized" is implicit: it is represented by a NULL category
and never stored as a literal.
"""

from typing import Callable, Optional

import httpx
from sqlalchemy.orm import Session as DBSession

import config
from models import Category
from .cache import TTLCache
from .errors import CatalogUnavailable, InvalidCategory
from .observability import logger, metrics

UNCATEGORIZED = "Uncategorized"
CATALOG_CACHE_KEY = "categories"

# Shared across requests; invalidate after editing the catalog
catalog_cache = TTLCache(ttl_seconds=config.CATEGORY_CACHE_TTL_SECONDS, max_entries=1)


class DatabaseCategorySource:
    """Reads the catalog from the categories table, in display order."""

    def __init__(self, db: DBSession):
        self.db = db

    def __call__(self) -> list[str]:
        rows = self.db.query(Category).order_by(Category.sort_order, Category.name).all()
        return [c.name for c in rows]


class RemoteCategorySource:
    """Fetches the catalog from the classifier service (`GET /categories`)."""

    def __init__(self, base_url: str = None, timeout: float = None, transport: httpx.BaseTransport = None):
        self.base_url = (base_url or config.CLASSIFIER_URL).rstrip("/")
        self.timeout = timeout or config.CLASSIFIER_TIMEOUT_SECONDS
        self.transport = transport

    def __call__(self) -> list[str]:
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.get(f"{self.base_url}/categories")
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CatalogUnavailable(f"Category catalog fetch failed: {e}") from e

        names = payload.get("categories", payload) if isinstance(payload, dict) else payload
        if not isinstance(names, list):
            raise CatalogUnavailable("Category catalog response was not a list")
        return [str(n) for n in names]


class CategoryStore:
    """Ordered, validated view over a category source with read-through caching."""

    def __init__(self, source: Callable[[], list[str]], cache: Optional[TTLCache] = None):
        self.source = source
        self.cache = cache if cache is not None else catalog_cache

    def list_categories(self) -> list[str]:
        """Return the ordered, de-duplicated, non-empty catalog."""
        return list(self.cache.get_or_load(CATALOG_CACHE_KEY, self._load))

    def _load(self) -> tuple[str, ...]:
        raw = self.source()
        seen = set()
        ordered = []
        for name in raw:
            name = name.strip()
            # Sentinels and the implicit bucket never count as real categories
            if not name or name in seen or name == UNCATEGORIZED or name.startswith("Error:"):
                continue
            seen.add(name)
            ordered.append(name)

        if not ordered:
            metrics.increment("catalog.empty")
            raise CatalogUnavailable("Category catalog is empty")

        logger.debug("Category catalog loaded", count=len(ordered))
        metrics.gauge("catalog.size", len(ordered))
        return tuple(ordered)

    def is_valid(self, category: str) -> bool:
        return category in self.list_categories()

    def validate(self, category: str) -> str:
        """Return `category` unchanged if it is in the catalog, else raise InvalidCategory."""
        if category is None or not self.is_valid(category):
            raise InvalidCategory(category)
        return category

    def invalidate(self) -> None:
        self.cache.invalidate(CATALOG_CACHE_KEY)


def build_category_store(db: DBSession) -> CategoryStore:
    """Category store wired to the configured catalog source."""
    if config.CATEGORY_SOURCE == "remote":
        return CategoryStore(RemoteCategorySource())
    return CategoryStore(DatabaseCategorySource(db))

"""In-process catalog repository backed by a JSON file.

Used by the synchronous CLI mode and by tests.
"""

import asyncio
import json
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import structlog

from pricewatch.repositories.base import CatalogRepository
from pricewatch.scrapers.base import CatalogEntry, NormalizedProduct

logger = structlog.get_logger(__name__)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def entry_from_dict(data: Dict[str, Any]) -> CatalogEntry:
    return CatalogEntry(
        id=str(data["id"]),
        url=data["url"],
        platform=data.get("platform", ""),
        scrape_count=int(data.get("scrape_count", 0)),
        last_scraped_at=_parse_datetime(data.get("last_scraped_at")),
        is_active=bool(data.get("is_active", True)),
    )


def entry_to_dict(entry: CatalogEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "url": entry.url,
        "platform": entry.platform,
        "scrape_count": entry.scrape_count,
        "last_scraped_at": entry.last_scraped_at.isoformat() if entry.last_scraped_at else None,
        "is_active": entry.is_active,
    }


class InMemoryCatalogRepository(CatalogRepository):
    """Dictionary-backed catalog.

    save() records the product and bumps the matching entry's scrape count
    and timestamp. The entry is found by ``entry_id``, else by URL.
    """

    def __init__(self, entries: Iterable[CatalogEntry] = ()):
        self._entries: Dict[str, CatalogEntry] = {e.id: e for e in entries}
        self.products: Dict[str, NormalizedProduct] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "InMemoryCatalogRepository":
        """Load entries from a JSON array of catalog entry objects."""
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        entries = [entry_from_dict(item) for item in data]
        logger.info("catalog_loaded", path=str(path), count=len(entries))
        return cls(entries)

    def dump_json_file(self, path: Union[str, Path]) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump([entry_to_dict(e) for e in self._entries.values()], f, indent=2)

    @property
    def entries(self) -> List[CatalogEntry]:
        return list(self._entries.values())

    def get(self, entry_id: str) -> Optional[CatalogEntry]:
        return self._entries.get(entry_id)

    async def find_products_for_scraping(self, limit: int, max_age_hours: int) -> List[CatalogEntry]:
        return [e for e in self._entries.values() if e.is_active]

    async def save(self, product: NormalizedProduct, entry_id: Optional[str] = None) -> None:
        async with self._lock:
            self.products[product.id] = product

            entry = self._entries.get(entry_id) if entry_id else None
            if entry is None:
                entry = next((e for e in self._entries.values() if e.url == product.product_url), None)
            if entry is None:
                logger.debug("saved_product_without_entry", product_id=product.id)
                return

            self._entries[entry.id] = replace(
                entry,
                scrape_count=entry.scrape_count + 1,
                last_scraped_at=product.scraped_at or datetime.now(timezone.utc),
            )

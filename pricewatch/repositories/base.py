"""Storage contract the rescrape engine depends on."""

from abc import ABC, abstractmethod
from typing import List, Optional

from pricewatch.scrapers.base import CatalogEntry, NormalizedProduct


class CatalogRepository(ABC):
    """Product catalog persistence.

    The engine only reads rescrape candidates and writes back mapped
    products; storage layout is up to the implementation.
    """

    @abstractmethod
    async def find_products_for_scraping(self, limit: int, max_age_hours: int) -> List[CatalogEntry]:
        """Return catalog entries that may need rescraping.

        Implementations may pre-filter or over-fetch; final ordering and
        the limit are applied by PriorityScheduler.
        """
        pass

    @abstractmethod
    async def save(self, product: NormalizedProduct, entry_id: Optional[str] = None) -> None:
        """Persist a freshly scraped product and mark its entry as scraped."""
        pass

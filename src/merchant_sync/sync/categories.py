"""Product name to reporting category lookup."""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..cache import TTLCache, is_missing
from ..database.repository import ProductCategoryRepository

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "Uncategorized"
DEFAULT_CATEGORY_TTL = 300.0


class CategoryResolver:
    """
    Resolves a product's category from the active ``product_categories``
    mappings. Misses are cached as well as hits.

    Never raises: any lookup problem yields the default category.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: Optional[TTLCache] = None,
        default_category: str = DEFAULT_CATEGORY,
    ):
        self.session_factory = session_factory
        self.cache = cache if cache is not None else TTLCache(DEFAULT_CATEGORY_TTL)
        self.default_category = default_category

    async def resolve(self, merchant_id: Optional[str], product_name: Optional[str]) -> str:
        if not product_name or not merchant_id:
            return self.default_category

        key = (merchant_id, product_name)
        cached = self.cache.lookup(key)
        if not is_missing(cached):
            return cached

        try:
            async with self.session_factory() as session:
                mapping = await ProductCategoryRepository(session).find_active(merchant_id, product_name)
        except SQLAlchemyError as e:
            logger.warning(f"Category lookup failed for {product_name!r} (merchant {merchant_id}): {e}")
            return self.default_category

        category = mapping.category if mapping is not None else self.default_category
        self.cache.set(key, category)
        return category

    def invalidate(self, merchant_id: str, product_name: str) -> None:
        self.cache.invalidate((merchant_id, product_name))

    def clear(self) -> None:
        self.cache.clear()

"""Tests for product category resolution."""

from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from merchant_sync.cache import TTLCache
from merchant_sync.database import ProductCategoryRepository
from merchant_sync.sync.categories import CategoryResolver, DEFAULT_CATEGORY


async def add_mapping(session_factory, merchant_id, product_name, category, is_active=True):
    async with session_factory() as session, session.begin():
        await ProductCategoryRepository(session).create(merchant_id, product_name, category, is_active=is_active)


class TestCategoryResolver:
    """Tests for CategoryResolver."""

    async def test_active_mapping(self, session_factory, clock):
        await add_mapping(session_factory, "m1", "Widget Pro", "Hardware")
        resolver = CategoryResolver(session_factory, cache=TTLCache(300, clock=clock))

        assert await resolver.resolve("m1", "Widget Pro") == "Hardware"

    async def test_unmapped_product_gets_default(self, session_factory, clock):
        resolver = CategoryResolver(session_factory, cache=TTLCache(300, clock=clock))
        assert await resolver.resolve("m1", "Mystery Box") == DEFAULT_CATEGORY

    async def test_inactive_mapping_ignored(self, session_factory, clock):
        await add_mapping(session_factory, "m1", "Widget Pro", "Hardware", is_active=False)
        resolver = CategoryResolver(session_factory, cache=TTLCache(300, clock=clock))

        assert await resolver.resolve("m1", "Widget Pro") == DEFAULT_CATEGORY

    async def test_mapping_is_per_merchant(self, session_factory, clock):
        await add_mapping(session_factory, "m1", "Widget Pro", "Hardware")
        resolver = CategoryResolver(session_factory, cache=TTLCache(300, clock=clock))

        assert await resolver.resolve("m2", "Widget Pro") == DEFAULT_CATEGORY

    async def test_missing_inputs_get_default(self, session_factory):
        resolver = CategoryResolver(session_factory, default_category="Other")
        assert await resolver.resolve("m1", None) == "Other"
        assert await resolver.resolve(None, "Widget Pro") == "Other"

    async def test_misses_are_cached_until_expiry(self, session_factory, clock):
        resolver = CategoryResolver(session_factory, cache=TTLCache(300, clock=clock))
        assert await resolver.resolve("m1", "Widget Pro") == DEFAULT_CATEGORY

        await add_mapping(session_factory, "m1", "Widget Pro", "Hardware")
        assert await resolver.resolve("m1", "Widget Pro") == DEFAULT_CATEGORY

        clock.advance(300)
        assert await resolver.resolve("m1", "Widget Pro") == "Hardware"

    async def test_invalidate_picks_up_new_mapping(self, session_factory, clock):
        resolver = CategoryResolver(session_factory, cache=TTLCache(300, clock=clock))
        await resolver.resolve("m1", "Widget Pro")

        await add_mapping(session_factory, "m1", "Widget Pro", "Hardware")
        resolver.invalidate("m1", "Widget Pro")

        assert await resolver.resolve("m1", "Widget Pro") == "Hardware"

    async def test_lookup_failure_returns_default(self):
        failing_factory = MagicMock(side_effect=OperationalError("SELECT", {}, Exception("db down")))
        resolver = CategoryResolver(failing_factory)

        assert await resolver.resolve("m1", "Widget Pro") == DEFAULT_CATEGORY
        # Failures are not cached
        assert len(resolver.cache) == 0

"""Merchant credential lookup with a short-lived in-process cache."""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..cache import TTLCache
from ..client.models import MerchantCredential
from ..database.repository import MerchantConfigRepository
from ..errors import AuthError, PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_CREDENTIAL_TTL = 300.0


class DatabaseCredentialSource:
    """Reads credentials from the ``merchant_configs`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def fetch(self, merchant_id: str) -> Optional[MerchantCredential]:
        """
        Return the active credential for ``merchant_id``, or None.

        Raises:
            PersistenceError: If the lookup itself fails.
        """
        try:
            async with self.session_factory() as session:
                config = await MerchantConfigRepository(session).get_by_merchant_id(merchant_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load credentials for merchant {merchant_id}: {e}") from e

        if config is None or not config.is_active:
            return None
        return MerchantCredential(
            merchant_id=config.merchant_id,
            consumer_key=config.consumer_key,
            consumer_secret=config.consumer_secret,
            environment=config.environment,
            webhook_secret=config.webhook_secret,
        )


class CredentialResolver:
    """
    Resolves merchant credentials, caching hits for ``cache.ttl`` seconds.

    Only successful lookups are cached, so a merchant configured after a
    failed attempt is picked up on the next call.
    """

    def __init__(self, source, cache: Optional[TTLCache] = None):
        self.source = source
        self.cache = cache if cache is not None else TTLCache(DEFAULT_CREDENTIAL_TTL)

    async def resolve(self, merchant_id: str) -> MerchantCredential:
        """
        Get credentials for a merchant.

        Args:
            merchant_id: Merchant identifier.

        Returns:
            The merchant's credential.

        Raises:
            AuthError: If no active credential exists.
        """
        if not merchant_id:
            raise AuthError("merchant_id is required")

        cached = self.cache.get(merchant_id)
        if cached is not None:
            return cached

        credential = await self.source.fetch(merchant_id)
        if credential is None:
            logger.warning(f"No active MX Merchant credentials for merchant {merchant_id}")
            raise AuthError(f"No active credentials for merchant {merchant_id}", merchant_id=merchant_id)

        self.cache.set(merchant_id, credential)
        return credential

    def invalidate(self, merchant_id: str) -> None:
        self.cache.invalidate(merchant_id)
        logger.debug(f"Credential cache invalidated for merchant {merchant_id}")

    def clear(self) -> None:
        self.cache.clear()

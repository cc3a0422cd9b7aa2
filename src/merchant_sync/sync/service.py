"""Wiring of the sync components around one session factory."""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..cache import TTLCache
from ..config import SyncSettings, get_settings
from ..database.repository import MerchantConfigRepository
from ..database.models import MerchantConfig
from .audit import SyncAuditRecorder
from .categories import CategoryResolver
from .credentials import CredentialResolver, DatabaseCredentialSource
from .engine import ClientFactory, ReconciliationEngine
from .webhook import WebhookIngestor
from .writer import SyncWriter

logger = logging.getLogger(__name__)


class SyncService:
    """
    Owns the shared caches and builds the engine and webhook ingestor.

    One instance per process, so the credential and category caches are
    shared by every run and webhook delivery.

    Example:
        service = SyncService(get_async_session_factory())
        result = await service.engine.sync_transactions("1000123", count=50)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[SyncSettings] = None,
        client_factory: Optional[ClientFactory] = None,
        credential_source=None,
        credential_cache: Optional[TTLCache] = None,
        category_cache: Optional[TTLCache] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()

        self.credentials = CredentialResolver(
            credential_source or DatabaseCredentialSource(session_factory),
            cache=credential_cache if credential_cache is not None else TTLCache(self.settings.credential_cache_ttl),
        )
        self.categories = CategoryResolver(
            session_factory,
            cache=category_cache if category_cache is not None else TTLCache(self.settings.category_cache_ttl),
            default_category=self.settings.default_category,
        )
        self.audit = SyncAuditRecorder(session_factory)
        self.writer = SyncWriter(session_factory, self.categories)
        self.engine = ReconciliationEngine(
            session_factory,
            self.credentials,
            self.writer,
            self.audit,
            settings=self.settings,
            client_factory=client_factory,
        )
        self.webhooks = WebhookIngestor(
            self.credentials,
            self.writer,
            self.audit,
            settings=self.settings,
            client_factory=client_factory,
        )

    async def save_merchant_config(
        self,
        merchant_id: str,
        consumer_key: str,
        consumer_secret: str,
        webhook_secret: Optional[str] = None,
        environment: str = "production",
        is_active: bool = True,
    ) -> MerchantConfig:
        """Store merchant credentials and drop any cached copy."""
        async with self.session_factory() as session, session.begin():
            config = await MerchantConfigRepository(session).upsert(
                merchant_id=merchant_id,
                consumer_key=consumer_key,
                consumer_secret=consumer_secret,
                webhook_secret=webhook_secret,
                environment=environment,
                is_active=is_active,
            )
        self.credentials.invalidate(merchant_id)
        return config

"""
Orderdesk Core - Storefront Registry

Connected storefronts, one venue each. The Admin API access token is
Fernet-encrypted before it is stored and is only ever returned masked;
routers.dependencies decrypts it when a storefront client is built.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from database.order_models import ShopifyStoreDB, VenueDB
from ingestion.errors import StoreAlreadyRegistered, VenueNotFound
from ingestion.services.events import OrderAuditEvent, log_order_event
from utils.encryption import DecryptionError, decrypt_secret, encrypt_secret, mask_secret

logger = logging.getLogger(__name__)


@dataclass
class StoreSummary:
    id: int
    store_domain: str
    nickname: Optional[str]
    venue_id: int
    venue_name: Optional[str]
    access_token: str
    created_at: Optional[datetime] = None


def _summary(store: ShopifyStoreDB, venue_name: Optional[str], plaintext_token: Optional[str]) -> StoreSummary:
    return StoreSummary(
        id=store.id,
        store_domain=store.store_domain,
        nickname=store.nickname,
        venue_id=store.venue_id,
        venue_name=venue_name,
        access_token=mask_secret(plaintext_token or ""),
        created_at=store.created_at,
    )


class StoreRegistry:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def register(
        self,
        store_domain: str,
        access_token: str,
        venue_id: int,
        nickname: Optional[str] = None,
        owner_id: Optional[int] = None,
    ) -> StoreSummary:
        """
        Connect a storefront to a venue.

        Raises:
            VenueNotFound: no venue with venue_id
            StoreAlreadyRegistered: the domain is already connected
            KeyNotConfiguredError: no ENCRYPTION_KEY, the token is not stored
        """
        store_domain = store_domain.strip().lower()

        venue = await self.db.get(VenueDB, venue_id)
        if venue is None:
            raise VenueNotFound(venue_id)

        existing = await self.db.execute(
            select(ShopifyStoreDB.id).where(ShopifyStoreDB.store_domain == store_domain)
        )
        if existing.scalar_one_or_none() is not None:
            raise StoreAlreadyRegistered(store_domain)

        store = ShopifyStoreDB(
            store_domain=store_domain,
            access_token=encrypt_secret(access_token, "access_token"),
            nickname=nickname,
            venue_id=venue_id,
            owner_id=owner_id,
        )
        self.db.add(store)
        try:
            await self.db.commit()
        except Exception as e:
            logger.error(f"Failed to register store {store_domain}: {e}")
            await self.db.rollback()
            raise

        log_order_event(
            OrderAuditEvent.STORE_REGISTERED,
            store_domain,
            {"store_id": store.id, "venue_id": venue_id, "owner_id": owner_id}
        )
        return _summary(store, venue.name, access_token)

    async def list_stores(self) -> List[StoreSummary]:
        """Newest first, tokens masked."""
        result = await self.db.execute(
            select(ShopifyStoreDB)
            .options(selectinload(ShopifyStoreDB.venue))
            .order_by(ShopifyStoreDB.created_at.desc())
        )

        summaries = []
        for store in result.scalars().all():
            try:
                token = decrypt_secret(store.access_token, "access_token")
            except DecryptionError:
                logger.warning(f"Stored token for {store.store_domain} cannot be decrypted with the current key")
                token = None
            summaries.append(_summary(store, store.venue.name if store.venue else None, token))
        return summaries

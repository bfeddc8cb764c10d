"""
Unit Tests for the storefront registry

The session is an AsyncMock. Tokens go through real Fernet encryption
with a per-test key.

Run with: pytest tests/test_store_service.py -v
"""

import os
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from cryptography.fernet import Fernet

from ingestion.errors import StoreAlreadyRegistered, VenueNotFound
from services.store_service import StoreRegistry
from utils.encryption import KeyNotConfiguredError, decrypt_secret, encrypt_secret, reset_encryption_cache

TOKEN = "shpat_0123456789abcd"


@pytest.fixture(autouse=True)
def encryption_key():
    reset_encryption_cache()
    os.environ["ENCRYPTION_KEY"] = Fernet.generate_key().decode()
    yield
    os.environ.pop("ENCRYPTION_KEY", None)
    reset_encryption_cache()


@pytest.fixture
def db():
    session = AsyncMock()
    session.add = MagicMock()
    session.get.return_value = SimpleNamespace(id=2, name="Cairo Opera")
    lookup = MagicMock()
    lookup.scalar_one_or_none.return_value = None
    session.execute.return_value = lookup
    return session


class TestRegister:

    @pytest.mark.asyncio
    async def test_token_is_encrypted_at_rest(self, db):
        summary = await StoreRegistry(db).register(" Gala.myshopify.com ", TOKEN, venue_id=2, owner_id=9)

        added = db.add.call_args.args[0]
        assert added.store_domain == "gala.myshopify.com"
        assert added.access_token != TOKEN
        assert decrypt_secret(added.access_token) == TOKEN
        assert added.owner_id == 9
        db.commit.assert_awaited_once()

        assert summary.access_token == "****************abcd"
        assert summary.venue_name == "Cairo Opera"

    @pytest.mark.asyncio
    async def test_unknown_venue(self, db):
        db.get.return_value = None

        with pytest.raises(VenueNotFound):
            await StoreRegistry(db).register("gala.myshopify.com", TOKEN, venue_id=404)
        db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_domain_already_connected(self, db):
        db.execute.return_value.scalar_one_or_none.return_value = 3

        with pytest.raises(StoreAlreadyRegistered):
            await StoreRegistry(db).register("gala.myshopify.com", TOKEN, venue_id=2)
        db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_refuses_plaintext_without_key(self, db):
        os.environ.pop("ENCRYPTION_KEY")
        reset_encryption_cache()

        with pytest.raises(KeyNotConfiguredError):
            await StoreRegistry(db).register("gala.myshopify.com", TOKEN, venue_id=2)
        db.commit.assert_not_awaited()


class TestListStores:

    @pytest.mark.asyncio
    async def test_tokens_are_masked(self, db):
        def stored(store_id, token):
            return SimpleNamespace(
                id=store_id, store_domain=f"s{store_id}.myshopify.com", access_token=token,
                nickname=None, venue_id=2, venue=SimpleNamespace(name="Cairo Opera"), created_at=None,
            )

        rows = MagicMock()
        rows.scalars.return_value.all.return_value = [stored(1, encrypt_secret(TOKEN)), stored(2, "not-a-fernet-token")]
        db.execute.return_value = rows

        stores = await StoreRegistry(db).list_stores()

        assert [s.access_token for s in stores] == ["****************abcd", ""]
        assert stores[0].venue_name == "Cairo Opera"

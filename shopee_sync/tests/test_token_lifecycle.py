"""
Tests for TokenLifecycleManager.

CRITICAL: These tests verify that:
1. No refresh happens while the token is outside the safety margin
2. Exactly one refresh happens when it is inside the margin
3. A failed refresh raises AuthError and leaves the stored tokens in place
4. Concurrent callers for the same shop share one refresh
"""

import asyncio
import json
from datetime import timedelta

import httpx
import pytest

from shopee_sync.credentials.refresh import (
    RefreshResultStatus,
    TokenLifecycleManager,
)
from shopee_sync.models.base import utcnow
from shopee_sync.platform.errors import AuthError, IntegrityError, NotConnectedError
from shopee_sync.tests.conftest import SHOP_ID, connect_shop

REFRESH_ROUTE = "auth/access_token/get"


class TestValidToken:

    @pytest.mark.asyncio
    async def test_no_refresh_when_far_from_expiry(self, token_manager, fake_api, connected_shop):
        token = await token_manager.get_valid_access_token(SHOP_ID)

        assert token == "access-initial"
        assert fake_api.calls == []

    @pytest.mark.asyncio
    async def test_no_refresh_just_outside_margin(self, token_manager, fake_api, db_session, cipher):
        connect_shop(db_session, cipher, expires_in=timedelta(minutes=6))

        assert await token_manager.get_valid_access_token(SHOP_ID) == "access-initial"
        assert fake_api.calls_to(REFRESH_ROUTE) == []

    @pytest.mark.asyncio
    async def test_refresh_inside_margin(self, token_manager, fake_api, store, db_session, cipher):
        connect_shop(db_session, cipher, expires_in=timedelta(minutes=4))

        token = await token_manager.get_valid_access_token(SHOP_ID)

        assert token == "access-1"
        assert len(fake_api.calls_to(REFRESH_ROUTE)) == 1
        assert await store.get_refresh_token(SHOP_ID) == "refresh-1"
        connection = store.get_connection(SHOP_ID)
        assert connection.expires_at_utc > utcnow() + timedelta(hours=3)

    @pytest.mark.asyncio
    async def test_refresh_sends_current_refresh_token(self, token_manager, fake_api, db_session, cipher):
        connect_shop(db_session, cipher, expires_in=timedelta(minutes=1))

        await token_manager.get_valid_access_token(SHOP_ID)

        call = fake_api.calls_to(REFRESH_ROUTE)[0]
        assert call.method == "POST"
        assert call.body == {
            "refresh_token": "refresh-initial",
            "shop_id": int(SHOP_ID),
            "partner_id": 2001234,
        }
        assert "access_token" not in call.params

    @pytest.mark.asyncio
    async def test_expired_token_refreshed(self, token_manager, fake_api, db_session, cipher):
        connect_shop(db_session, cipher, expires_in=timedelta(hours=-1))

        assert await token_manager.get_valid_access_token(SHOP_ID) == "access-1"

    @pytest.mark.asyncio
    async def test_second_call_reuses_refreshed_token(self, token_manager, fake_api, db_session, cipher):
        connect_shop(db_session, cipher, expires_in=timedelta(minutes=2))

        first = await token_manager.get_valid_access_token(SHOP_ID)
        second = await token_manager.get_valid_access_token(SHOP_ID)

        assert first == second == "access-1"
        assert len(fake_api.calls_to(REFRESH_ROUTE)) == 1


class TestNotConnected:

    @pytest.mark.asyncio
    async def test_missing_record(self, token_manager):
        with pytest.raises(NotConnectedError):
            await token_manager.get_valid_access_token(SHOP_ID)

    @pytest.mark.asyncio
    async def test_disconnected_shop(self, token_manager, store, connected_shop):
        await store.disconnect(SHOP_ID)

        with pytest.raises(NotConnectedError):
            await token_manager.get_valid_access_token(SHOP_ID)

    @pytest.mark.asyncio
    async def test_disconnected_shop_lock_released(self, token_manager, store, connected_shop):
        await token_manager.refresh_now(SHOP_ID)
        assert SHOP_ID in token_manager._locks

        await store.disconnect(SHOP_ID)
        with pytest.raises(NotConnectedError):
            await token_manager.get_valid_access_token(SHOP_ID)

        assert SHOP_ID not in token_manager._locks

    @pytest.mark.asyncio
    async def test_unknown_shop_leaves_no_lock(self, token_manager):
        with pytest.raises(NotConnectedError):
            await token_manager.refresh_now("999")

        assert token_manager._locks == {}


class TestRefreshFailure:

    @pytest.mark.asyncio
    async def test_logical_error_keeps_tokens(self, token_manager, fake_api, store, db_session, cipher):
        connection = connect_shop(db_session, cipher, expires_in=timedelta(minutes=2))
        access_before = connection.access_token_encrypted
        refresh_before = connection.refresh_token_encrypted
        fake_api.overrides[REFRESH_ROUTE] = (
            403, {"error": "error_auth", "message": "Invalid refresh_token", "request_id": "r1"}
        )

        with pytest.raises(AuthError) as exc_info:
            await token_manager.get_valid_access_token(SHOP_ID)

        assert "error_auth" in exc_info.value.message
        db_session.refresh(connection)
        assert connection.access_token_encrypted == access_before
        assert connection.refresh_token_encrypted == refresh_before
        assert connection.refresh_error_count == 1
        assert connection.connected is True

    @pytest.mark.asyncio
    async def test_network_error_is_auth_error(self, token_manager, fake_api, db_session, cipher):
        connect_shop(db_session, cipher, expires_in=timedelta(minutes=2))
        fake_api.overrides[REFRESH_ROUTE] = httpx.ConnectError("connection refused")

        with pytest.raises(AuthError):
            await token_manager.get_valid_access_token(SHOP_ID)

    @pytest.mark.asyncio
    async def test_malformed_response_is_auth_error(self, token_manager, fake_api, store, db_session, cipher):
        connect_shop(db_session, cipher, expires_in=timedelta(minutes=2))
        fake_api.overrides[REFRESH_ROUTE] = (200, {"error": "", "access_token": "only-access"})

        with pytest.raises(AuthError):
            await token_manager.get_valid_access_token(SHOP_ID)

        assert await store.get_refresh_token(SHOP_ID) == "refresh-initial"

    @pytest.mark.asyncio
    async def test_corrupt_refresh_token_propagates_integrity_error(
        self, token_manager, fake_api, db_session, cipher
    ):
        connection = connect_shop(db_session, cipher, expires_in=timedelta(minutes=2))
        connection.refresh_token_encrypted = "not:a:secret"
        db_session.commit()

        with pytest.raises(IntegrityError):
            await token_manager.get_valid_access_token(SHOP_ID)

        assert fake_api.calls_to(REFRESH_ROUTE) == []


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self, store, fake_api, client, db_session, cipher):
        connect_shop(db_session, cipher, expires_in=timedelta(minutes=2))
        original_refresh = client.refresh_access_token

        async def yielding_refresh(refresh_token, shop_id):
            # Let the other callers reach the lock before the refresh lands
            await asyncio.sleep(0)
            return await original_refresh(refresh_token, shop_id)

        client.refresh_access_token = yielding_refresh
        manager = TokenLifecycleManager(store, client)

        tokens = await asyncio.gather(
            manager.get_valid_access_token(SHOP_ID),
            manager.get_valid_access_token(SHOP_ID),
            manager.get_valid_access_token(SHOP_ID),
        )

        assert tokens == ["access-1", "access-1", "access-1"]
        assert len(fake_api.calls_to(REFRESH_ROUTE)) == 1


class TestForcedAndScheduledRefresh:

    @pytest.mark.asyncio
    async def test_refresh_now_ignores_expiry(self, token_manager, fake_api, connected_shop):
        assert await token_manager.refresh_now(SHOP_ID) == "access-1"
        assert len(fake_api.calls_to(REFRESH_ROUTE)) == 1

    @pytest.mark.asyncio
    async def test_refresh_expiring_connections(self, token_manager, fake_api, db_session, cipher):
        connect_shop(db_session, cipher, shop_id="1", expires_in=timedelta(minutes=10))
        connect_shop(db_session, cipher, shop_id="2", expires_in=timedelta(hours=3))

        results = await token_manager.refresh_expiring_connections(within=timedelta(minutes=30))

        assert [(r.shop_id, r.status) for r in results] == [("1", RefreshResultStatus.SUCCESS)]
        assert results[0].new_expires_at is not None

    @pytest.mark.asyncio
    async def test_scheduled_refresh_continues_after_failure(self, token_manager, fake_api, db_session, cipher):
        connect_shop(db_session, cipher, shop_id="1", expires_in=timedelta(minutes=10))
        connect_shop(db_session, cipher, shop_id="2", expires_in=timedelta(minutes=10))

        def fail_first_shop(request):
            if json.loads(request.content)["shop_id"] == 1:
                return httpx.Response(200, json={"error": "error_auth", "message": "expired"})
            return httpx.Response(200, json=fake_api._issue_tokens())

        fake_api.overrides[REFRESH_ROUTE] = fail_first_shop

        results = await token_manager.refresh_expiring_connections(within=timedelta(minutes=30))

        statuses = {r.shop_id: r.status for r in results}
        assert statuses == {"1": RefreshResultStatus.FAILED, "2": RefreshResultStatus.SUCCESS}

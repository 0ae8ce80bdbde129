"""
Redis backend tests against a mocked client.
"""

import json
import time
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import RedisError

from wopi_broker.domain.exceptions import (
    ExpiredTokenError,
    InvalidTokenError,
    SessionCredentialNotFoundError,
)
from wopi_broker.domain.models import SessionCredential, TokenType
from wopi_broker.infrastructure.cache import RedisCache
from wopi_broker.infrastructure.redis_store import (
    RedisSessionCredentialProvider,
    RedisTemplateMappingStore,
    RedisWopiTokenStore,
)


@pytest.fixture
def redis_client():
    return AsyncMock()


class TestRedisWopiTokenStore:

    @pytest.mark.asyncio
    async def test_create_writes_record_and_expiry_index(self, redis_client, make_token):
        redis_client.set.return_value = True
        store = RedisWopiTokenStore(redis_client, grace_seconds=60)
        wopi = make_token(token_type=TokenType.INITIATOR)

        assert await store.create(wopi) == wopi.token

        args, kwargs = redis_client.set.call_args
        assert args[0] == f"wopi:token:{wopi.token}"
        assert json.loads(args[1])["token_type"] == "initiator"
        assert kwargs["nx"] is True
        assert kwargs["ex"] > 60
        redis_client.zadd.assert_awaited_once_with("wopi:token-expiry", {wopi.token: wopi.expiry})

    @pytest.mark.asyncio
    async def test_duplicate_token_is_rejected(self, redis_client, make_token):
        redis_client.set.return_value = None
        store = RedisWopiTokenStore(redis_client)

        with pytest.raises(ValueError):
            await store.create(make_token())

    @pytest.mark.asyncio
    async def test_update_of_missing_token(self, redis_client, make_token):
        redis_client.set.return_value = None
        store = RedisWopiTokenStore(redis_client)

        with pytest.raises(InvalidTokenError):
            await store.update(make_token())

        assert redis_client.set.call_args.kwargs["xx"] is True

    @pytest.mark.asyncio
    async def test_find_by_token_restores_record(self, redis_client, make_token):
        wopi = make_token(token_type=TokenType.REMOTE_GUEST, remote_server="https://remote.example.com")
        redis_client.get.return_value = json.dumps(wopi.to_dict())
        store = RedisWopiTokenStore(redis_client)

        assert await store.find_by_token(wopi.token) == wopi

    @pytest.mark.asyncio
    async def test_get_by_token_rejects_expired(self, redis_client, make_token):
        wopi = make_token(expiry=int(time.time()) - 1)
        redis_client.get.return_value = json.dumps(wopi.to_dict())
        store = RedisWopiTokenStore(redis_client)

        with pytest.raises(ExpiredTokenError):
            await store.get_by_token(wopi.token)

    @pytest.mark.asyncio
    async def test_expired_tokens_are_limited(self, redis_client):
        redis_client.zrangebyscore.return_value = [b"a", "b"]
        store = RedisWopiTokenStore(redis_client)

        assert await store.get_expired_tokens(1000) == ["a", "b"]
        assert redis_client.zrangebyscore.call_args.kwargs["num"] == 1000

    @pytest.mark.asyncio
    async def test_delete_by_tokens(self, redis_client):
        redis_client.delete.return_value = 2
        store = RedisWopiTokenStore(redis_client)

        assert await store.delete_by_tokens(["a", "b"]) == 2
        redis_client.delete.assert_awaited_once_with("wopi:token:a", "wopi:token:b")
        redis_client.zrem.assert_awaited_once_with("wopi:token-expiry", "a", "b")

    @pytest.mark.asyncio
    async def test_delete_nothing(self, redis_client):
        store = RedisWopiTokenStore(redis_client)

        assert await store.delete_by_tokens([]) == 0
        redis_client.delete.assert_not_awaited()


class TestRedisSessionCredentialProvider:

    @pytest.fixture
    def credential(self):
        return SessionCredential(
            id="c1",
            owner_id="token-1",
            login_name="alice",
            passphrase="correct-horse",
            secret="secret",
            label="wopi_token_token-1",
        )

    @pytest.mark.asyncio
    async def test_get_by_passphrase(self, redis_client, credential):
        redis_client.get.side_effect = [b"c1", json.dumps(credential.to_dict())]
        provider = RedisSessionCredentialProvider(redis_client)

        assert await provider.get_by_passphrase("correct-horse") == credential
        # The passphrase itself is never used as a key
        assert "correct-horse" not in redis_client.get.call_args_list[0].args[0]

    @pytest.mark.asyncio
    async def test_unknown_passphrase(self, redis_client):
        redis_client.get.return_value = None
        provider = RedisSessionCredentialProvider(redis_client)

        with pytest.raises(SessionCredentialNotFoundError):
            await provider.get_by_passphrase("phrase")

    @pytest.mark.asyncio
    async def test_generate_indexes_by_owner(self, redis_client):
        provider = RedisSessionCredentialProvider(redis_client)

        credential = await provider.generate("phrase", "token-1", "alice", "secret", "label")

        redis_client.sadd.assert_awaited_once_with("wopi:credential-owner:token-1", credential.id)

    @pytest.mark.asyncio
    async def test_invalidate_requires_matching_owner(self, redis_client, credential):
        redis_client.get.return_value = json.dumps(credential.to_dict())
        provider = RedisSessionCredentialProvider(redis_client)

        with pytest.raises(SessionCredentialNotFoundError):
            await provider.invalidate("token-2", "c1")

        await provider.invalidate("token-1", "c1")
        redis_client.srem.assert_awaited_once_with("wopi:credential-owner:token-1", "c1")


class TestRedisTemplateMappingStore:

    @pytest.mark.asyncio
    async def test_delete_older_than(self, redis_client):
        redis_client.zremrangebyscore.return_value = 3
        store = RedisTemplateMappingStore(redis_client)

        assert await store.delete_older_than(100) == 3
        redis_client.zremrangebyscore.assert_awaited_once_with("wopi:template-mapping", "-inf", 100)


class TestRedisCredentialScope:

    @pytest.mark.asyncio
    async def test_generate_indexes_scope_by_hash(self, redis_client):
        provider = RedisSessionCredentialProvider(redis_client)

        credential = await provider.generate("phrase@token-1", "token-1", "alice", "secret", "label")

        scope_calls = [
            call.args for call in redis_client.sadd.call_args_list
            if call.args[0].startswith("wopi:credential-scope:")
        ]
        assert len(scope_calls) == 1
        assert scope_calls[0][1] == credential.id
        assert "phrase" not in scope_calls[0][0]

    @pytest.mark.asyncio
    async def test_list_by_scope(self, redis_client):
        credential = SessionCredential(
            id="c1",
            owner_id="token-1",
            login_name="alice",
            passphrase="phrase@token-1",
            secret="secret",
            label="wopi_token_token-1",
        )
        redis_client.smembers.return_value = {b"c1"}
        redis_client.get.return_value = json.dumps(credential.to_dict())
        provider = RedisSessionCredentialProvider(redis_client)

        assert await provider.list_by_scope("phrase") == [credential]
        assert redis_client.smembers.call_args.args[0].startswith("wopi:credential-scope:")


class TestRedisCache:

    @pytest.mark.asyncio
    async def test_decoded_values_are_returned_as_bytes(self, redis_client):
        redis_client.get.return_value = "<xml/>"
        cache = RedisCache(redis_client)

        assert await cache.get("discovery") == b"<xml/>"
        redis_client.get.assert_awaited_once_with("richdocuments:discovery")

    @pytest.mark.asyncio
    async def test_read_errors_are_misses(self, redis_client):
        redis_client.get.side_effect = RedisError("down")
        cache = RedisCache(redis_client)

        assert await cache.get("discovery") is None

    @pytest.mark.asyncio
    async def test_set_uses_ttl(self, redis_client):
        cache = RedisCache(redis_client)

        await cache.set("discovery", b"<xml/>", 3600)

        redis_client.setex.assert_awaited_once_with("richdocuments:discovery", 3600, b"<xml/>")

    @pytest.mark.asyncio
    async def test_remove_errors_are_logged(self, redis_client):
        redis_client.delete.side_effect = RedisError("down")
        cache = RedisCache(redis_client)

        await cache.remove("discovery")

        redis_client.delete.assert_awaited_once_with("richdocuments:discovery")

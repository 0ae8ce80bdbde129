"""
Token record, session credential and template mapping storage using Redis.
Records are JSON documents; sorted sets index token expiry and mapping age for cleanup.
"""

import hashlib
import json
import logging
import secrets
import time
from typing import List, Optional

import redis.asyncio as redis

from ..domain.exceptions import InvalidTokenError, SessionCredentialNotFoundError
from ..domain.models import SessionCredential, WopiToken
from ..domain.services import SessionCredentialProvider, TemplateMappingStore, WopiTokenStore

logger = logging.getLogger(__name__)


class RedisWopiTokenStore(WopiTokenStore):
    """Redis-based implementation of WopiTokenStore."""

    def __init__(self, redis_client: redis.Redis, grace_seconds: int = 3600):
        self.redis_client = redis_client
        # Records outlive their expiry long enough for cleanup to see them
        self.grace_seconds = grace_seconds
        self.token_prefix = "wopi:token:"
        self.expiry_index = "wopi:token-expiry"

    def _key(self, token: str) -> str:
        return f"{self.token_prefix}{token}"

    def _ttl(self, wopi: WopiToken) -> int:
        return max(int(wopi.expiry - time.time()), 0) + self.grace_seconds

    async def create(self, wopi: WopiToken) -> str:
        created = await self.redis_client.set(
            self._key(wopi.token),
            json.dumps(wopi.to_dict()),
            ex=self._ttl(wopi),
            nx=True
        )
        if not created:
            raise ValueError(f"Token already exists: {wopi.token[:8]}...")
        await self.redis_client.zadd(self.expiry_index, {wopi.token: wopi.expiry})
        logger.info(f"Stored token for file {wopi.file_id}")
        return wopi.token

    async def update(self, wopi: WopiToken) -> WopiToken:
        updated = await self.redis_client.set(
            self._key(wopi.token),
            json.dumps(wopi.to_dict()),
            ex=self._ttl(wopi),
            xx=True
        )
        if not updated:
            raise InvalidTokenError(f"Could not find token: {wopi.token}")
        await self.redis_client.zadd(self.expiry_index, {wopi.token: wopi.expiry})
        return wopi

    async def find_by_token(self, token: str) -> Optional[WopiToken]:
        data = await self.redis_client.get(self._key(token))
        if not data:
            return None
        return WopiToken.from_dict(json.loads(data))

    async def get_expired_tokens(self, limit: int) -> List[str]:
        tokens = await self.redis_client.zrangebyscore(
            self.expiry_index, "-inf", f"({time.time()}", start=0, num=limit
        )
        return [t.decode("utf-8") if isinstance(t, bytes) else t for t in tokens]

    async def delete_by_tokens(self, tokens: List[str]) -> int:
        if not tokens:
            return 0
        deleted = await self.redis_client.delete(*[self._key(t) for t in tokens])
        await self.redis_client.zrem(self.expiry_index, *tokens)
        return deleted


class RedisSessionCredentialProvider(SessionCredentialProvider):
    """Session credentials in Redis, indexed by passphrase hash, scope hash and owner."""

    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client
        self.credential_prefix = "wopi:credential:"
        self.passphrase_prefix = "wopi:credential-passphrase:"
        self.owner_prefix = "wopi:credential-owner:"
        self.scope_prefix = "wopi:credential-scope:"

    def _passphrase_key(self, passphrase: str) -> str:
        # Passphrases are secrets; only their hash is used as a key
        digest = hashlib.sha256(passphrase.encode("utf-8")).hexdigest()
        return f"{self.passphrase_prefix}{digest}"

    def _scope_key(self, passphrase: str) -> Optional[str]:
        scope = passphrase.rpartition("@")[0]
        if not scope:
            return None
        digest = hashlib.sha256(scope.encode("utf-8")).hexdigest()
        return f"{self.scope_prefix}{digest}"

    async def _load(self, credential_id: str) -> Optional[SessionCredential]:
        data = await self.redis_client.get(f"{self.credential_prefix}{credential_id}")
        if not data:
            return None
        return SessionCredential.from_dict(json.loads(data))

    async def get_by_passphrase(self, passphrase: str) -> SessionCredential:
        credential_id = await self.redis_client.get(self._passphrase_key(passphrase))
        if isinstance(credential_id, bytes):
            credential_id = credential_id.decode("utf-8")
        credential = await self._load(credential_id) if credential_id else None
        if credential is None:
            raise SessionCredentialNotFoundError("No credential for passphrase")
        return credential

    async def generate(
        self,
        passphrase: str,
        owner_id: str,
        login_name: str,
        secret: Optional[str],
        label: str
    ) -> SessionCredential:
        credential = SessionCredential(
            id=secrets.token_hex(8),
            owner_id=owner_id,
            login_name=login_name,
            passphrase=passphrase,
            secret=secret,
            label=label,
        )
        await self.update(credential)
        await self.redis_client.set(self._passphrase_key(passphrase), credential.id)
        await self.redis_client.sadd(f"{self.owner_prefix}{owner_id}", credential.id)
        scope_key = self._scope_key(passphrase)
        if scope_key:
            await self.redis_client.sadd(scope_key, credential.id)
        return credential

    async def update(self, credential: SessionCredential) -> None:
        await self.redis_client.set(
            f"{self.credential_prefix}{credential.id}",
            json.dumps(credential.to_dict())
        )

    async def list_by_owner(self, owner_id: str) -> List[SessionCredential]:
        return await self._load_members(f"{self.owner_prefix}{owner_id}")

    async def list_by_scope(self, scope: str) -> List[SessionCredential]:
        scope_key = self._scope_key(f"{scope}@")
        if scope_key is None:
            return []
        return await self._load_members(scope_key)

    async def _load_members(self, set_key: str) -> List[SessionCredential]:
        ids = await self.redis_client.smembers(set_key)
        credentials = []
        for credential_id in ids:
            if isinstance(credential_id, bytes):
                credential_id = credential_id.decode("utf-8")
            credential = await self._load(credential_id)
            if credential is not None:
                credentials.append(credential)
        return credentials

    async def invalidate(self, owner_id: str, credential_id: str) -> None:
        credential = await self._load(credential_id)
        if credential is None or credential.owner_id != owner_id:
            raise SessionCredentialNotFoundError(
                f"No credential {credential_id} for owner",
                details={"credential_id": credential_id}
            )
        await self.redis_client.delete(
            f"{self.credential_prefix}{credential_id}",
            self._passphrase_key(credential.passphrase)
        )
        await self.redis_client.srem(f"{self.owner_prefix}{owner_id}", credential_id)
        scope_key = self._scope_key(credential.passphrase)
        if scope_key:
            await self.redis_client.srem(scope_key, credential_id)
        logger.info(f"Invalidated credential {credential_id}")


class RedisTemplateMappingStore(TemplateMappingStore):
    """Template mappings in a sorted set scored by creation time."""

    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client
        self.key = "wopi:template-mapping"

    async def add(self, template_id: str, file_id: str, timestamp: Optional[int] = None):
        score = int(timestamp if timestamp is not None else time.time())
        await self.redis_client.zadd(self.key, {f"{template_id}:{file_id}": score})

    async def delete_older_than(self, timestamp: int) -> int:
        return await self.redis_client.zremrangebyscore(self.key, "-inf", timestamp)

"""
In-memory collaborators for development.
In production, use the Redis stores and the host's own file and share services.
"""

import logging
import secrets
import time
from collections import defaultdict
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..domain.exceptions import (
    InvalidTokenError,
    SessionCredentialNotFoundError,
    ShareNotFoundError,
)
from ..domain.models import (
    BeforeNodeReadEvent,
    FileNode,
    SessionCredential,
    Share,
    WopiToken,
)
from ..domain.services import (
    EventDispatcher,
    FileSystem,
    PermissionManager,
    SessionCredentialProvider,
    ShareManager,
    TemplateMappingStore,
    WopiTokenStore,
)

logger = logging.getLogger(__name__)


class MemoryWopiTokenStore(WopiTokenStore):
    """Token records kept in a dictionary."""

    def __init__(self):
        self.tokens: Dict[str, WopiToken] = {}

    async def create(self, wopi: WopiToken) -> str:
        if wopi.token in self.tokens:
            raise ValueError(f"Token already exists: {wopi.token[:8]}...")
        self.tokens[wopi.token] = replace(wopi)
        logger.info(f"Stored token for file {wopi.file_id}")
        return wopi.token

    async def update(self, wopi: WopiToken) -> WopiToken:
        if wopi.token not in self.tokens:
            raise InvalidTokenError(f"Could not find token: {wopi.token}")
        self.tokens[wopi.token] = replace(wopi)
        return wopi

    async def find_by_token(self, token: str) -> Optional[WopiToken]:
        wopi = self.tokens.get(token)
        return replace(wopi) if wopi is not None else None

    async def get_expired_tokens(self, limit: int) -> List[str]:
        now = time.time()
        expired = sorted(
            (wopi for wopi in self.tokens.values() if wopi.expiry < now),
            key=lambda wopi: wopi.expiry
        )
        return [wopi.token for wopi in expired[:limit]]

    async def delete_by_tokens(self, tokens: List[str]) -> int:
        deleted = 0
        for token in tokens:
            if self.tokens.pop(token, None) is not None:
                deleted += 1
        return deleted


class MemorySessionCredentialProvider(SessionCredentialProvider):
    """Session credentials kept in a dictionary."""

    def __init__(self):
        self.credentials: Dict[str, SessionCredential] = {}

    async def get_by_passphrase(self, passphrase: str) -> SessionCredential:
        for credential in self.credentials.values():
            if credential.passphrase == passphrase:
                return credential
        raise SessionCredentialNotFoundError("No credential for passphrase")

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
        self.credentials[credential.id] = credential
        return credential

    async def update(self, credential: SessionCredential) -> None:
        self.credentials[credential.id] = credential

    async def list_by_owner(self, owner_id: str) -> List[SessionCredential]:
        return [c for c in self.credentials.values() if c.owner_id == owner_id]

    async def list_by_scope(self, scope: str) -> List[SessionCredential]:
        return [c for c in self.credentials.values() if c.passphrase.rpartition("@")[0] == scope]

    async def invalidate(self, owner_id: str, credential_id: str) -> None:
        credential = self.credentials.get(credential_id)
        if credential is None or credential.owner_id != owner_id:
            raise SessionCredentialNotFoundError(
                f"No credential {credential_id} for owner",
                details={"credential_id": credential_id}
            )
        del self.credentials[credential_id]


class MemoryTemplateMappingStore(TemplateMappingStore):
    """Template id to new file mappings with creation timestamps."""

    def __init__(self):
        self.mappings: Dict[Tuple[str, str], int] = {}

    def add(self, template_id: str, file_id: str, timestamp: Optional[int] = None):
        self.mappings[(template_id, file_id)] = int(timestamp if timestamp is not None else time.time())

    async def delete_older_than(self, timestamp: int) -> int:
        stale = [key for key, created in self.mappings.items() if created <= timestamp]
        for key in stale:
            del self.mappings[key]
        return len(stale)


class MemoryFileSystem(FileSystem):
    """Per-user file views registered up front."""

    def __init__(self):
        self.nodes: Dict[Optional[str], Dict[str, List[FileNode]]] = defaultdict(lambda: defaultdict(list))
        self.download_hidden: Set[Tuple[Optional[str], str]] = set()

    def add(self, uid: Optional[str], node: FileNode, download_hidden: bool = False):
        self.nodes[uid][node.file_id].append(node)
        # Files are also reachable from the root folder
        if uid is not None:
            self.nodes[None][node.file_id].append(node)
        if download_hidden:
            self.download_hidden.add((node.owner_uid, node.file_id))

    async def get_by_id(self, uid: Optional[str], file_id: str) -> List[FileNode]:
        return list(self.nodes[uid].get(str(file_id), []))

    async def is_download_hidden(self, node: FileNode) -> bool:
        return (node.owner_uid, node.file_id) in self.download_hidden


class MemoryShareManager(ShareManager):

    def __init__(self, shares: Iterable[Share] = ()):
        self.shares: Dict[str, Share] = {share.token: share for share in shares}

    async def get_share_by_token(self, share_token: str) -> Share:
        share = self.shares.get(share_token)
        if share is None:
            raise ShareNotFoundError(share_token)
        return share


class StaticPermissionManager(PermissionManager):
    """Everyone may edit unless listed; `enabled_users=None` enables everyone."""

    def __init__(
        self,
        enabled_users: Optional[Set[str]] = None,
        read_only_users: Optional[Set[str]] = None
    ):
        self.enabled_users = enabled_users
        self.read_only_users = read_only_users or set()

    async def user_can_edit(self, uid: Optional[str]) -> bool:
        return uid not in self.read_only_users

    async def is_enabled_for_user(self, uid: Optional[str]) -> bool:
        if self.enabled_users is None:
            return True
        return uid in self.enabled_users


class LoggingEventDispatcher(EventDispatcher):
    """Writes read events to the audit log."""

    def __init__(self):
        self.events: List[BeforeNodeReadEvent] = []

    async def dispatch(self, event: BeforeNodeReadEvent) -> None:
        self.events.append(event)
        logger.info(f"Before read: file {event.node.file_id}")

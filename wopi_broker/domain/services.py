"""
WOPI domain services - abstract interfaces for the broker's collaborators.
These define the contracts that infrastructure must implement.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from .exceptions import ExpiredTokenError, InvalidTokenError
from .models import BeforeNodeReadEvent, FileNode, SessionCredential, Share, WopiToken


class WopiTokenStore(ABC):
    """Durable storage for token records."""

    @abstractmethod
    async def create(self, wopi: WopiToken) -> str:
        """Persist a new token record and return its token."""

    @abstractmethod
    async def update(self, wopi: WopiToken) -> WopiToken:
        """Persist changes to an existing token record."""

    @abstractmethod
    async def find_by_token(self, token: str) -> Optional[WopiToken]:
        """Return the record for a token, or None."""

    @abstractmethod
    async def get_expired_tokens(self, limit: int) -> List[str]:
        """Return up to `limit` tokens whose expiry has passed."""

    @abstractmethod
    async def delete_by_tokens(self, tokens: List[str]) -> int:
        """Delete the given records and return how many were removed."""

    async def get_by_token(self, token: str) -> WopiToken:
        """Return the record for a token or raise if unknown or expired."""
        wopi = await self.find_by_token(token)
        if wopi is None:
            raise InvalidTokenError(f"Could not find token: {token}")
        if wopi.is_expired:
            raise ExpiredTokenError(
                f"Provided token is expired: {token}",
                details={"expiry": wopi.expiry}
            )
        return wopi


class SessionCredentialProvider(ABC):
    """Host-side store of revocable session credentials."""

    @abstractmethod
    async def get_by_passphrase(self, passphrase: str) -> SessionCredential:
        """Return the credential for a passphrase or raise SessionCredentialNotFoundError."""

    @abstractmethod
    async def generate(
        self,
        passphrase: str,
        owner_id: str,
        login_name: str,
        secret: Optional[str],
        label: str
    ) -> SessionCredential:
        """Mint a new credential."""

    @abstractmethod
    async def update(self, credential: SessionCredential) -> None:
        """Persist activity and expiry changes."""

    @abstractmethod
    async def list_by_owner(self, owner_id: str) -> List[SessionCredential]:
        """List all credentials of an owner."""

    @abstractmethod
    async def list_by_scope(self, scope: str) -> List[SessionCredential]:
        """List credentials whose passphrase is "<scope>@<token>"."""

    @abstractmethod
    async def invalidate(self, owner_id: str, credential_id: str) -> None:
        """Revoke one credential."""


class FileSystem(ABC):
    """Read-only view of the host's files and permissions."""

    @abstractmethod
    async def get_by_id(self, uid: Optional[str], file_id: str) -> List[FileNode]:
        """All nodes with this id visible from a user's folder (root when uid is None)."""

    @abstractmethod
    async def is_download_hidden(self, node: FileNode) -> bool:
        """Whether any storage wrapper of the node disables download."""


class ShareManager(ABC):

    @abstractmethod
    async def get_share_by_token(self, share_token: str) -> Share:
        """Return the share or raise ShareNotFoundError."""


class PermissionManager(ABC):

    @abstractmethod
    async def user_can_edit(self, uid: Optional[str]) -> bool:
        """Whether the user may edit documents at all."""

    @abstractmethod
    async def is_enabled_for_user(self, uid: Optional[str]) -> bool:
        """Whether the user is entitled to use the editor."""


class EventDispatcher(ABC):

    @abstractmethod
    async def dispatch(self, event: BeforeNodeReadEvent) -> None:
        """Deliver an audit event."""


class CookieJar(ABC):
    """Cookie transport; the broker only decides values."""

    @abstractmethod
    def get(self, name: str) -> Optional[str]:
        """Read an inbound cookie."""

    @abstractmethod
    def set(
        self,
        name: str,
        value: str,
        *,
        expires: int,
        path: str,
        secure: bool,
        httponly: bool = True,
        samesite: str = "lax"
    ) -> None:
        """Queue an outbound cookie."""


class DistributedCache(ABC):

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Return a cached value or None."""

    @abstractmethod
    async def set(self, key: str, value: bytes, ttl: int) -> None:
        """Store a value for `ttl` seconds."""

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Drop a key."""


class ProxyStatus(ABC):

    @abstractmethod
    async def is_proxy_starting(self, url: str) -> bool:
        """Whether the editor behind `url` is a managed instance still starting up."""


class TemplateMappingStore(ABC):

    @abstractmethod
    async def delete_older_than(self, timestamp: int) -> int:
        """Delete template-to-file mappings created at or before `timestamp`."""

"""
WOPI domain models.
Token records, session credentials and the file-system views the broker reasons about.
"""

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class TokenType(Enum):
    """Kinds of WOPI token; the broker matches on these exhaustively."""
    USER = "user"
    GUEST = "guest"
    INITIATOR = "initiator"
    REMOTE_USER = "remote_user"
    REMOTE_GUEST = "remote_guest"

    @property
    def is_guest(self) -> bool:
        return self in (TokenType.GUEST, TokenType.REMOTE_GUEST)

    @property
    def is_remote(self) -> bool:
        return self in (TokenType.REMOTE_USER, TokenType.REMOTE_GUEST)


class SharePermission:
    """Share permission bits."""
    READ = 1
    UPDATE = 2
    CREATE = 4
    DELETE = 8
    SHARE = 16


@dataclass
class WopiToken:
    """A single bearer capability for one file and editing session."""
    token: str
    file_id: str
    owner_uid: Optional[str]
    editor_uid: Optional[str]
    expiry: int
    version: str = "0"
    can_write: bool = False
    hide_download: bool = False
    server_host: str = ""
    guest_displayname: Optional[str] = None
    token_type: TokenType = TokenType.GUEST
    share: Optional[str] = None
    template_id: Optional[str] = None
    direct: bool = False
    remote_server: Optional[str] = None
    remote_server_token: Optional[str] = None

    @property
    def is_expired(self) -> bool:
        """Check if token is expired."""
        return time.time() > self.expiry

    @property
    def ttl_ms(self) -> int:
        """Get time to live in milliseconds."""
        if self.is_expired:
            return 0
        return int((self.expiry - time.time()) * 1000)

    @property
    def is_remote_token(self) -> bool:
        return self.remote_server is not None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["token_type"] = self.token_type.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WopiToken":
        values = dict(data)
        values["token_type"] = TokenType(values["token_type"])
        return cls(**values)

    def public_dict(self) -> Dict[str, Any]:
        """Fields safe to hand to the editing client."""
        return {
            "fileId": self.file_id,
            "version": self.version,
            "canWrite": self.can_write,
            "hideDownload": self.hide_download,
            "direct": self.direct,
            "tokenType": self.token_type.value,
            "guestDisplayname": self.guest_displayname,
            "userId": self.editor_uid,
            "ownerId": self.owner_uid,
            "serverHost": self.server_host,
        }


@dataclass
class SessionCredential:
    """Revocable session credential bound to a passphrase."""
    id: str
    owner_id: str
    login_name: str
    passphrase: str
    secret: Optional[str]
    label: str
    last_activity: int = field(default_factory=lambda: int(time.time()))
    expires: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionCredential":
        return cls(**data)


@dataclass
class LoginCredentials:
    """Credentials of the authenticated caller, passed explicitly."""
    uid: str
    login_name: str
    password: Optional[str]


@dataclass
class FileNode:
    """A file as seen from one user's folder."""
    file_id: str
    owner_uid: Optional[str]
    readable: bool = True
    updatable: bool = False
    requires_authentication: bool = False
    mime_type: str = "application/octet-stream"


@dataclass
class Share:
    """Public share a token may be derived from."""
    token: str
    owner_uid: str
    permissions: int
    hide_download: bool = False

    @property
    def can_read(self) -> bool:
        return bool(self.permissions & SharePermission.READ)

    @property
    def can_update(self) -> bool:
        return bool(self.permissions & SharePermission.UPDATE)


@dataclass
class DirectLink:
    """Server-to-server direct open link."""
    token: str
    initiator_host: str
    initiator_token: str


@dataclass
class BeforeNodeReadEvent:
    """Dispatched once access to a node is authorized, before the token is handed out."""
    node: FileNode

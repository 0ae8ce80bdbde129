"""
Domain exceptions for the WOPI token broker.
Each error carries a stable code so the API layer can map it to a response.
"""
from typing import Any, Dict, Optional


class WopiServiceError(Exception):
    """Base error for broker operations."""

    default_code = "WOPI_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class PermissionDeniedError(WopiServiceError):
    """File unreadable, or neither owner nor editor may use the service."""

    default_code = "PERMISSION_DENIED"


class NotFoundError(WopiServiceError):
    """A file, share or token could not be found."""

    default_code = "NOT_FOUND"


class ShareNotFoundError(NotFoundError):
    default_code = "SHARE_NOT_FOUND"

    def __init__(self, share_token: str):
        super().__init__(
            f"Share not found: {share_token}",
            details={"share_token": share_token}
        )


class FileNotFoundInStorageError(NotFoundError):
    default_code = "FILE_NOT_FOUND"

    def __init__(self, file_id: str):
        super().__init__(
            f"File not found: {file_id}",
            details={"file_id": file_id}
        )


class InvalidFileIdError(WopiServiceError):
    """File reference does not match <fileId>[_<instanceId>[_<version>]]."""

    default_code = "INVALID_FILE_ID"

    def __init__(self, file_ref: str):
        super().__init__(
            f"File id has not the expected format: {file_ref}",
            details={"file_id": file_ref}
        )


class InvalidTokenError(WopiServiceError):
    """Unknown access token."""

    default_code = "INVALID_TOKEN"


class ExpiredTokenError(WopiServiceError):
    """Access token exists but its expiry has passed."""

    default_code = "EXPIRED_TOKEN"


class CredentialProvisionError(WopiServiceError):
    """A session credential could not be minted for a token."""

    default_code = "CREDENTIAL_PROVISION_FAILED"


class SessionCredentialNotFoundError(NotFoundError):
    default_code = "CREDENTIAL_NOT_FOUND"


class StateDecodeError(WopiServiceError):
    """State blob is malformed, tampered with or encrypted under another key."""

    default_code = "STATE_DECODE_FAILED"


class DiscoveryFetchError(WopiServiceError):
    """Remote editor discovery document could not be fetched."""

    default_code = "DISCOVERY_FETCH_FAILED"

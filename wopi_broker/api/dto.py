"""
Data Transfer Objects for the WOPI broker API.
These are separate from domain models to maintain clean architecture.
"""

from typing import Optional

from pydantic import BaseModel, Field


class GenerateTokenRequest(BaseModel):
    """Request model for token generation."""

    file_id: str
    share_token: Optional[str] = None
    direct: bool = False
    guest_name: Optional[str] = Field(default=None, max_length=1024)


class GenerateTokenResponse(BaseModel):
    """Response model for token generation."""

    access_token: str
    access_token_ttl: int  # milliseconds until expiration
    token_type: str
    wopi_src: str  # WOPI source URL for the file


class GuestNameRequest(BaseModel):

    guest_name: str = Field(max_length=1024)


class GuestNameResponse(BaseModel):

    token_type: str
    guest_displayname: Optional[str] = None


class LogoutResponse(BaseModel):

    invalidated: bool


class RemoteUpgradeRequest(BaseModel):
    """The partner server's view of the token being federated."""

    share_token: str
    remote_server: str
    remote_server_token: str
    editor_uid: Optional[str] = None
    guest_displayname: Optional[str] = None
    can_write: bool = False
    hide_download: bool = False


class TokenStateResponse(BaseModel):

    token_type: str
    can_write: bool
    hide_download: bool
    guest_displayname: Optional[str] = None
    remote_server: Optional[str] = None

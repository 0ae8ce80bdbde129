"""
WOPI token broker.
Issues, upgrades and reconciles access tokens for an online document editor.
"""

from .domain.models import FileNode, LoginCredentials, SessionCredential, TokenType, WopiToken

__version__ = "1.0.0"

__all__ = [
    "FileNode",
    "LoginCredentials",
    "SessionCredential",
    "TokenType",
    "WopiToken",
]

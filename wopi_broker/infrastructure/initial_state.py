"""
Initial state for the document editor.

Bridges a browser session to the editing iframe: a passphrase cookie names a
session credential, and an encrypted state blob carries the passphrase back
through the unauthenticated WOPI request.
"""

import json
import logging
import secrets
import string
from typing import Any, Dict, Mapping, Optional

from ..domain.exceptions import (
    CredentialProvisionError,
    SessionCredentialNotFoundError,
    StateDecodeError,
)
from ..domain.models import LoginCredentials, SessionCredential, WopiToken
from ..domain.services import CookieJar, SessionCredentialProvider
from .config import WOPISettings
from .state_crypto import DELIMITER, StateCrypto
from .structured_logger import wopi_logger

logger = logging.getLogger(__name__)

PASSPHRASE_KEY = "passphrase"
TOKEN_KEY = "token"
PASSPHRASE_LENGTH = 128
PASSPHRASE_ALPHABET = string.ascii_letters + string.digits

# base64 characters that are unsafe in URLs and cookie values
_URL_SAFE = str.maketrans("+/=", "-_.")
_URL_UNSAFE = str.maketrans("-_.", "+/=")


def credential_passphrase(scope: str, token: str) -> str:
    """Key of the credential a token holds within a scope (a uid or a browser passphrase)."""
    return f"{scope}@{token}"


class InitialStateService:
    """Passphrase cookie, session credential and state blob handling."""

    def __init__(
        self,
        credential_provider: SessionCredentialProvider,
        settings: WOPISettings,
        crypto: Optional[StateCrypto] = None
    ):
        self.credential_provider = credential_provider
        self.settings = settings
        self.crypto = crypto or StateCrypto(settings.state_secret)

    @property
    def cookie_name(self) -> str:
        return self.settings.passphrase_cookie_name

    async def provide_document(
        self,
        wopi: WopiToken,
        cookies: CookieJar,
        *,
        secure: bool,
        authenticated: bool = False,
        credentials: Optional[LoginCredentials] = None
    ) -> Dict[str, Any]:
        """Build the state handed to the editor page for one token."""
        state: Dict[str, Any] = {
            "wopi": wopi.public_dict(),
            "theme": self.settings.theme,
            "uiDefaults": {"UIMode": self.settings.ui_mode},
        }

        if authenticated:
            # One cookie serves every document; each token gets its own credential
            passphrase = self.get_passphrase(cookies, wopi, secure)
            try:
                if credentials is None:
                    raise CredentialProvisionError("No login credentials for authenticated document")
                await self.provide_wopi_credentials(
                    wopi, credentials, credential_passphrase(passphrase, wopi.token)
                )
            except Exception as e:
                wopi_logger.log_credentials_skipped(
                    wopi.token,
                    reason="NO CREDENTIALS",
                    context={"error": str(e)}
                )
            state["wopiState"] = self.encode_state({
                PASSPHRASE_KEY: passphrase,
                TOKEN_KEY: wopi.token,
            })

        return state

    def get_passphrase(self, cookies: CookieJar, wopi: WopiToken, secure: bool) -> str:
        """Return the browser's passphrase, creating the cookie on first use."""
        passphrase = cookies.get(self.cookie_name)
        if passphrase:
            return passphrase

        passphrase = "".join(
            secrets.choice(PASSPHRASE_ALPHABET) for _ in range(PASSPHRASE_LENGTH)
        )
        cookies.set(
            self.cookie_name,
            passphrase,
            expires=wopi.expiry,
            path=self.settings.web_root or "/",
            secure=secure or self.settings.passphrase_cookie_secure,
            httponly=True,
            samesite="lax",
        )
        logger.debug("Issued new passphrase cookie")
        return passphrase

    async def provide_wopi_credentials(
        self,
        wopi: WopiToken,
        credentials: LoginCredentials,
        passphrase: Optional[str] = None
    ) -> SessionCredential:
        """
        Mint or refresh the session credential for a token.

        The credential is owned by the token string so that cleanup can find
        it once the token expires. Its activity and expiry are pinned to the
        token's expiry, which is never extended.
        """
        if not credentials.password:
            raise CredentialProvisionError(
                f"No login password available for {credentials.uid}",
                details={"uid": credentials.uid}
            )

        passphrase = passphrase or credential_passphrase(credentials.uid, wopi.token)
        try:
            credential = await self.credential_provider.get_by_passphrase(passphrase)
            if credential.owner_id != wopi.token:
                raise CredentialProvisionError(
                    "Passphrase names a credential owned by another token",
                    details={"owner_id": credential.owner_id}
                )
        except SessionCredentialNotFoundError:
            credential = await self.credential_provider.generate(
                passphrase,
                wopi.token,
                credentials.uid,
                credentials.password,
                f"wopi_token_{wopi.token}",
            )

        credential.last_activity = wopi.expiry
        credential.expires = wopi.expiry
        await self.credential_provider.update(credential)
        wopi_logger.log_credentials_provided(wopi.token, credentials.uid)
        return credential

    async def resolve_state_credential(self, blob: str) -> SessionCredential:
        """Recover the session credential named by a state blob."""
        state = self.decode_state(blob)
        passphrase = state.get(PASSPHRASE_KEY)
        token = state.get(TOKEN_KEY)
        if not isinstance(passphrase, str) or not passphrase:
            raise StateDecodeError("State carries no passphrase")
        if not isinstance(token, str) or not token:
            raise StateDecodeError("State carries no token")
        return await self.credential_provider.get_by_passphrase(
            credential_passphrase(passphrase, token)
        )

    def encode_state(self, state: Mapping[str, Any]) -> str:
        """Encrypt a key/value mapping into a URL-safe string."""
        payload = self.crypto.encrypt(json.dumps(dict(state), sort_keys=True))
        parts = payload.split(DELIMITER)
        encoded = [part.translate(_URL_SAFE) for part in parts[:-1]]
        return DELIMITER.join(encoded + parts[-1:])

    def decode_state(self, blob: str) -> Dict[str, Any]:
        """Reverse encode_state; raises StateDecodeError on any failure."""
        if not blob or DELIMITER not in blob:
            raise StateDecodeError("Malformed state blob")

        parts = blob.split(DELIMITER)
        decoded = [part.translate(_URL_UNSAFE) for part in parts[:-1]]
        plaintext = self.crypto.decrypt(DELIMITER.join(decoded + parts[-1:]))

        try:
            state = json.loads(plaintext)
        except json.JSONDecodeError as e:
            raise StateDecodeError("State payload is not JSON") from e
        if not isinstance(state, dict):
            raise StateDecodeError("State payload is not a mapping")
        return state

"""
Logout handling for WOPI passphrase cookies.
"""

import logging
import time

from ..domain.exceptions import SessionCredentialNotFoundError
from ..domain.services import CookieJar, SessionCredentialProvider
from .config import WOPISettings

logger = logging.getLogger(__name__)


class UserLoggedOutListener:
    """Drops the passphrase cookie and the credential it names."""

    def __init__(self, credential_provider: SessionCredentialProvider, settings: WOPISettings):
        self.credential_provider = credential_provider
        self.settings = settings

    async def handle(self, cookies: CookieJar, secure: bool) -> bool:
        """Return True when a credential was invalidated."""
        cookie_name = self.settings.passphrase_cookie_name
        passphrase = cookies.get(cookie_name)
        if passphrase is None:
            return False

        cookies.set(
            cookie_name,
            "",
            expires=int(time.time()) - 3600,
            path=self.settings.web_root or "/",
            secure=secure or self.settings.passphrase_cookie_secure,
            httponly=True,
        )

        # Per-document credentials opened under this cookie, plus one keyed
        # by the bare passphrase
        credentials = await self.credential_provider.list_by_scope(passphrase)
        try:
            credentials.append(await self.credential_provider.get_by_passphrase(passphrase))
        except SessionCredentialNotFoundError:
            pass

        invalidated = False
        for credential in credentials:
            try:
                await self.credential_provider.invalidate(credential.owner_id, credential.id)
                invalidated = True
            except SessionCredentialNotFoundError:
                logger.info(f"Credential {credential.id} already gone")

        if not invalidated:
            logger.info("No credential for passphrase cookie")
        return invalidated

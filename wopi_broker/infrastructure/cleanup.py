"""
Periodic cleanup of expired WOPI tokens.
Expired token records and the session credentials minted for them are removed together.
"""

import asyncio
import logging
import time
from typing import Optional

from ..domain.services import SessionCredentialProvider, TemplateMappingStore, WopiTokenStore
from .structured_logger import wopi_logger

logger = logging.getLogger(__name__)


class Cleanup:
    """Timed job; one sweep per interval, never two at once."""

    def __init__(
        self,
        token_store: WopiTokenStore,
        credential_provider: SessionCredentialProvider,
        template_store: TemplateMappingStore,
        interval_seconds: int = 600,
        batch_size: int = 1000,
        template_grace_seconds: int = 60
    ):
        self.token_store = token_store
        self.credential_provider = credential_provider
        self.template_store = template_store
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self.template_grace_seconds = template_grace_seconds

        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self.running = False

    async def run(self) -> int:
        """Run one sweep and return the number of expired tokens removed."""
        if self._lock.locked():
            logger.info("Cleanup already running, skipping")
            return 0

        async with self._lock:
            # Template mappings only live for the duration of file creation
            removed = await self.template_store.delete_older_than(
                int(time.time()) - self.template_grace_seconds
            )
            logger.debug(f"Removed {removed} template mappings")

            return await self._clean_up_wopi_tokens()

    async def _clean_up_wopi_tokens(self) -> int:
        tokens = await self.token_store.get_expired_tokens(self.batch_size)
        if not tokens:
            wopi_logger.log_cleanup(0, 0, 0)
            return 0

        await self.token_store.delete_by_tokens(tokens)
        logger.info(f"Expired tokens: {len(tokens)}")

        invalidated = 0
        failures = 0
        for token in tokens:
            try:
                credentials = await self.credential_provider.list_by_owner(token)
            except Exception as e:
                failures += 1
                wopi_logger.log_error(
                    error_type="cleanup_list_failed",
                    error_message=str(e),
                    context={"token": token[:8] + "..."}
                )
                continue

            for credential in credentials:
                try:
                    await self.credential_provider.invalidate(token, credential.id)
                    invalidated += 1
                except Exception as e:
                    failures += 1
                    wopi_logger.log_error(
                        error_type="cleanup_invalidate_failed",
                        error_message=str(e),
                        context={"token": token[:8] + "...", "credential_id": credential.id}
                    )

        wopi_logger.log_cleanup(len(tokens), invalidated, failures)
        return len(tokens)

    async def start(self):
        """Start the background loop."""
        if self.running:
            return

        self.running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Cleanup job started")

    async def stop(self):
        """Stop the background loop."""
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Cleanup job stopped")

    async def _loop(self):
        while self.running:
            try:
                await self.run()
            except Exception as e:
                logger.error(f"Cleanup run failed: {e}")
            await asyncio.sleep(self.interval_seconds)

"""
WOPI token broker.
Decides which kind of token a request deserves and how tokens change as
editing sessions federate across servers.
"""

import logging
import secrets
import time
from typing import List, Optional

from ..domain.exceptions import (
    FileNotFoundInStorageError,
    PermissionDeniedError,
    ShareNotFoundError,
)
from ..domain.models import (
    BeforeNodeReadEvent,
    DirectLink,
    FileNode,
    LoginCredentials,
    SessionCredential,
    SharePermission,
    TokenType,
    WopiToken,
)
from ..domain.services import (
    EventDispatcher,
    FileSystem,
    PermissionManager,
    ShareManager,
    WopiTokenStore,
)
from .config import WOPISettings
from .helper import parse_file_id, sanitize_html
from .initial_state import InitialStateService
from .structured_logger import wopi_logger

logger = logging.getLogger(__name__)

ANONYMOUS_GUEST = "Anonymous guest"
GUEST_NAME_TEMPLATE = "{} (Guest)"
GUEST_NAME_MAX_LENGTH = 64


class TokenManager:
    """Issues, upgrades and federates WOPI tokens."""

    def __init__(
        self,
        token_store: WopiTokenStore,
        file_system: FileSystem,
        share_manager: ShareManager,
        permission_manager: PermissionManager,
        event_dispatcher: EventDispatcher,
        initial_state: InitialStateService,
        settings: WOPISettings
    ):
        self.token_store = token_store
        self.file_system = file_system
        self.share_manager = share_manager
        self.permission_manager = permission_manager
        self.event_dispatcher = event_dispatcher
        self.initial_state = initial_state
        self.settings = settings

    async def generate_wopi_token(
        self,
        file_id: str,
        share_token: Optional[str] = None,
        editor_uid: Optional[str] = None,
        direct: bool = False,
        *,
        user_id: Optional[str] = None,
        credentials: Optional[LoginCredentials] = None,
        guest_name: Optional[str] = None
    ) -> WopiToken:
        """
        Issue a token for a file.

        `user_id` is the authenticated session user, if any. `editor_uid` is
        only consulted without a session, e.g. when the editor saves a copy
        of a document through the WOPI protocol itself.
        """
        ref = parse_file_id(file_id)
        owner_uid: Optional[str] = None
        hide_download = False

        if share_token is not None:
            share = await self.share_manager.get_share_by_token(share_token)
            if not share.can_read:
                raise ShareNotFoundError(share_token)

            owner_uid = share.owner_uid
            can_write = share.can_update and await self.permission_manager.user_can_edit(owner_uid)
            hide_download = share.hide_download
            nodes = await self.file_system.get_by_id(owner_uid, ref.file_id)
        elif user_id is not None:
            editor_uid = user_id
            nodes = await self.file_system.get_by_id(editor_uid, ref.file_id)
            can_write = _any_updatable(nodes) and await self.permission_manager.user_can_edit(editor_uid)
        elif editor_uid is None:
            # No session and no editor: the editor is creating a new file (save as)
            logger.warning("Generating token for SaveAs without editoruid")
            can_write = True
            nodes = await self.file_system.get_by_id(None, ref.file_id)
        else:
            nodes = await self.file_system.get_by_id(editor_uid, ref.file_id)
            can_write = _any_updatable(nodes)

        file = nodes[0] if nodes else None

        # Storage wrappers may hide a file that exists, e.g. terms of service
        if file is None or not file.readable:
            raise PermissionDeniedError(
                f"File is not readable: {ref.file_id}",
                details={"file_id": ref.file_id}
            )

        if not hide_download:
            for node in nodes:
                if await self.file_system.is_download_hidden(node):
                    hide_download = True
                    break

        if owner_uid is None:
            # Ownerless mounts such as group folders fall back to the editor
            owner_uid = file.owner_uid if file.owner_uid is not None else editor_uid

        if not await self.permission_manager.is_enabled_for_user(owner_uid) \
                and not await self.permission_manager.is_enabled_for_user(editor_uid):
            raise PermissionDeniedError(
                "Neither owner nor editor may use the document editor",
                details={"owner_uid": owner_uid, "editor_uid": editor_uid}
            )

        await self.event_dispatcher.dispatch(BeforeNodeReadEvent(file))

        token_type = TokenType.GUEST if editor_uid is None else TokenType.USER
        wopi = self._new_token(
            file_id=ref.file_id,
            version=ref.version,
            owner_uid=owner_uid,
            editor_uid=editor_uid,
            can_write=can_write,
            hide_download=hide_download,
            guest_displayname=self.prepare_guest_name(guest_name) if token_type is TokenType.GUEST else None,
            token_type=token_type,
            share=share_token,
            direct=direct,
        )
        await self.token_store.create(wopi)
        wopi_logger.log_token_generated(
            wopi.token, wopi.file_id, token_type.value, editor_uid, can_write
        )

        if file.requires_authentication:
            await self._provide_wopi_credentials(wopi, credentials)

        return wopi

    async def generate_wopi_token_for_template(
        self,
        template_id: str,
        target_file_id: str,
        owner_uid: str,
        is_guest: bool,
        direct: bool = False,
        share_permissions: Optional[int] = None,
        *,
        credentials: Optional[LoginCredentials] = None
    ) -> WopiToken:
        """Issue a token that fills a new file from a template."""
        editor_uid = None if is_guest else owner_uid

        nodes = await self.file_system.get_by_id(owner_uid, str(target_file_id))
        if not nodes:
            raise FileNotFoundInStorageError(str(target_file_id))
        target = nodes[0]
        if not target.readable:
            raise PermissionDeniedError(
                f"File is not readable: {target_file_id}",
                details={"file_id": str(target_file_id)}
            )

        can_write = target.updatable
        if share_permissions is not None:
            can_write = can_write and bool(share_permissions & SharePermission.UPDATE)

        wopi = self._new_token(
            file_id=target.file_id,
            version="0",
            owner_uid=owner_uid,
            editor_uid=editor_uid,
            can_write=can_write,
            hide_download=False,
            guest_displayname="" if is_guest else None,
            token_type=TokenType.GUEST if is_guest else TokenType.USER,
            template_id=str(template_id),
            direct=direct,
        )
        await self.token_store.create(wopi)
        wopi_logger.log_token_generated(
            wopi.token, wopi.file_id, wopi.token_type.value, editor_uid, can_write
        )

        if target.requires_authentication:
            await self._provide_wopi_credentials(wopi, credentials)

        return wopi

    async def upgrade_to_remote_token(
        self,
        wopi: WopiToken,
        remote_wopi: WopiToken,
        share_token: str,
        remote_server: str,
        remote_server_token: str
    ) -> WopiToken:
        """
        Turn an initiator token into a remote token once the partner server
        has answered. Any other token type is returned untouched, so repeated
        calls are safe.
        """
        if wopi.token_type is not TokenType.INITIATOR:
            return wopi

        if remote_wopi.editor_uid is not None:
            wopi.token_type = TokenType.REMOTE_USER
            wopi.guest_displayname = f"{remote_wopi.editor_uid}@{remote_server}"
        else:
            wopi.token_type = TokenType.REMOTE_GUEST
            wopi.guest_displayname = remote_wopi.guest_displayname

        wopi.share = share_token
        # Federation can only narrow access
        wopi.can_write = wopi.can_write and remote_wopi.can_write
        wopi.hide_download = wopi.hide_download or remote_wopi.hide_download
        wopi.remote_server = remote_server
        wopi.remote_server_token = remote_server_token
        await self.token_store.update(wopi)
        wopi_logger.log_token_upgraded(wopi.token, wopi.token_type.value, remote_server)
        return wopi

    async def upgrade_from_direct_initiator(self, direct: DirectLink, wopi: WopiToken) -> WopiToken:
        """Redeem a direct link opened by a guest of the receiving server."""
        wopi.token_type = TokenType.REMOTE_GUEST
        wopi.editor_uid = None
        wopi.remote_server = direct.initiator_host
        wopi.remote_server_token = direct.initiator_token
        await self.token_store.update(wopi)
        wopi_logger.log_token_upgraded(wopi.token, wopi.token_type.value, direct.initiator_host)
        return wopi

    async def new_initiator_token(
        self,
        source_server: str,
        node: Optional[FileNode] = None,
        share_token: Optional[str] = None,
        direct: bool = False,
        user_id: Optional[str] = None,
        *,
        credentials: Optional[LoginCredentials] = None
    ) -> WopiToken:
        """Token handed to a partner server that will upgrade it on its side."""
        if node is not None:
            wopi = await self.generate_wopi_token(
                node.file_id,
                share_token,
                user_id,
                direct,
                user_id=user_id,
                credentials=credentials,
            )
            wopi.server_host = source_server
            wopi.token_type = TokenType.INITIATOR
            await self.token_store.update(wopi)
            return wopi

        # Server-level handshake token, not bound to a file
        wopi = self._new_token(
            file_id="0",
            version="0",
            owner_uid=user_id,
            editor_uid=user_id,
            can_write=False,
            hide_download=False,
            guest_displayname=None,
            token_type=TokenType.INITIATOR,
            server_host=source_server,
        )
        await self.token_store.create(wopi)
        wopi_logger.log_token_generated(
            wopi.token, wopi.file_id, wopi.token_type.value, user_id, False
        )
        return wopi

    async def extend_with_initiator_user_token(
        self,
        wopi: WopiToken,
        initiator_user_host: str,
        initiator_user_token: str
    ) -> WopiToken:
        wopi.remote_server = initiator_user_host
        wopi.remote_server_token = initiator_user_token
        await self.token_store.update(wopi)
        return wopi

    async def get_wopi_for_token(self, access_token: str) -> WopiToken:
        """Load a token; raises InvalidTokenError or ExpiredTokenError."""
        return await self.token_store.get_by_token(access_token)

    async def set_guest_name(self, wopi: WopiToken, guest_name: Optional[str] = None) -> WopiToken:
        """Rename a guest; tokens of any other type are returned unchanged."""
        if not wopi.token_type.is_guest:
            return wopi

        wopi.guest_displayname = self.prepare_guest_name(guest_name)
        return await self.token_store.update(wopi)

    async def update_guest_name(self, access_token: str, guest_name: str) -> WopiToken:
        wopi = await self.get_wopi_for_token(access_token)
        return await self.set_guest_name(wopi, guest_name)

    @staticmethod
    def prepare_guest_name(guest_name: Optional[str] = None) -> str:
        """Escape a guest name and keep it under 64 characters."""
        if not guest_name:
            return ANONYMOUS_GUEST

        prepared = GUEST_NAME_TEMPLATE.format(sanitize_html(guest_name))
        cut = 56
        while len(prepared) >= GUEST_NAME_MAX_LENGTH:
            prepared = GUEST_NAME_TEMPLATE.format(sanitize_html(prepared[:max(cut, 0)]))
            cut -= 5

        return prepared

    async def _provide_wopi_credentials(
        self,
        wopi: WopiToken,
        credentials: Optional[LoginCredentials]
    ) -> Optional[SessionCredential]:
        """Mint a session credential for the token; failures never fail issuance."""
        if credentials is None:
            wopi_logger.log_credentials_skipped(wopi.token, reason="NO CREDENTIALS")
            return None

        if credentials.uid != wopi.editor_uid:
            wopi_logger.log_credentials_skipped(
                wopi.token,
                reason="UID MISMATCH",
                context={"login_uid": credentials.uid, "editor_uid": wopi.editor_uid}
            )
            return None

        try:
            return await self.initial_state.provide_wopi_credentials(wopi, credentials)
        except Exception as e:
            wopi_logger.log_credentials_skipped(
                wopi.token,
                reason="NO CREDENTIALS",
                context={"error": str(e), "error_type": type(e).__name__}
            )
            return None

    def _new_token(
        self,
        *,
        file_id: str,
        version: str,
        owner_uid: Optional[str],
        editor_uid: Optional[str],
        can_write: bool,
        hide_download: bool,
        guest_displayname: Optional[str],
        token_type: TokenType,
        share: Optional[str] = None,
        template_id: Optional[str] = None,
        direct: bool = False,
        server_host: Optional[str] = None
    ) -> WopiToken:
        return WopiToken(
            token=secrets.token_urlsafe(32),
            file_id=str(file_id),
            version=version,
            owner_uid=owner_uid,
            editor_uid=editor_uid,
            can_write=bool(can_write),
            hide_download=bool(hide_download),
            server_host=server_host or self.settings.wopi_base_url,
            guest_displayname=guest_displayname,
            token_type=token_type,
            share=share,
            template_id=template_id,
            direct=direct,
            expiry=int(time.time()) + self.settings.token_ttl_seconds,
        )


def _any_updatable(nodes: List[FileNode]) -> bool:
    return any(node.updatable for node in nodes)

"""
Token issuance, federation and credential provisioning tests.
"""

import time

import pytest

from wopi_broker.domain.exceptions import (
    ExpiredTokenError,
    FileNotFoundInStorageError,
    InvalidFileIdError,
    InvalidTokenError,
    PermissionDeniedError,
    ShareNotFoundError,
)
from wopi_broker.domain.models import (
    DirectLink,
    FileNode,
    LoginCredentials,
    Share,
    SharePermission,
    TokenType,
)
from wopi_broker.infrastructure.helper import parse_file_id


class TestGenerateWopiToken:
    """Issuance for session users, shares and the editor itself"""

    @pytest.mark.asyncio
    async def test_session_user_gets_writable_user_token(self, token_manager, file_system, token_store, settings):
        file_system.add("alice", FileNode("42", "alice", updatable=True))

        before = int(time.time())
        wopi = await token_manager.generate_wopi_token("42_oc123", user_id="alice")

        assert wopi.token_type is TokenType.USER
        assert wopi.file_id == "42"
        assert wopi.version == "0"
        assert wopi.owner_uid == "alice"
        assert wopi.editor_uid == "alice"
        assert wopi.can_write is True
        assert wopi.hide_download is False
        assert wopi.server_host == settings.wopi_base_url
        assert before + settings.token_ttl_seconds <= wopi.expiry <= int(time.time()) + settings.token_ttl_seconds

        stored = await token_store.find_by_token(wopi.token)
        assert stored == wopi

    @pytest.mark.asyncio
    async def test_version_is_taken_from_file_reference(self, token_manager, file_system):
        file_system.add("alice", FileNode("42", "alice"))

        wopi = await token_manager.generate_wopi_token("42_oc123_7", user_id="alice")

        assert wopi.file_id == "42"
        assert wopi.version == "7"

    @pytest.mark.asyncio
    async def test_read_only_user_cannot_write(self, token_manager, file_system, permission_manager):
        permission_manager.read_only_users = {"alice"}
        file_system.add("alice", FileNode("42", "alice", updatable=True))

        wopi = await token_manager.generate_wopi_token("42", user_id="alice")

        assert wopi.can_write is False

    @pytest.mark.asyncio
    async def test_read_only_share_gives_guest_token(self, token_manager, file_system, share_manager):
        share_manager.shares["s1"] = Share("s1", "bob", SharePermission.READ)
        file_system.add("bob", FileNode("42", "bob", updatable=True))

        wopi = await token_manager.generate_wopi_token("42", share_token="s1", guest_name="Eve")

        assert wopi.token_type is TokenType.GUEST
        assert wopi.editor_uid is None
        assert wopi.owner_uid == "bob"
        assert wopi.can_write is False
        assert wopi.share == "s1"
        assert wopi.guest_displayname == "Eve (Guest)"

    @pytest.mark.asyncio
    async def test_editable_share_respects_owner_edit_permission(
        self, token_manager, file_system, share_manager, permission_manager
    ):
        share_manager.shares["s1"] = Share("s1", "bob", SharePermission.READ | SharePermission.UPDATE)
        file_system.add("bob", FileNode("42", "bob", updatable=True))

        writable = await token_manager.generate_wopi_token("42", share_token="s1")
        permission_manager.read_only_users = {"bob"}
        read_only = await token_manager.generate_wopi_token("42", share_token="s1")

        assert writable.can_write is True
        assert read_only.can_write is False

    @pytest.mark.asyncio
    async def test_share_without_read_permission_is_rejected(self, token_manager, share_manager):
        share_manager.shares["s1"] = Share("s1", "bob", SharePermission.UPDATE)

        with pytest.raises(ShareNotFoundError):
            await token_manager.generate_wopi_token("42", share_token="s1")

    @pytest.mark.asyncio
    async def test_unknown_share_is_rejected(self, token_manager):
        with pytest.raises(ShareNotFoundError):
            await token_manager.generate_wopi_token("42", share_token="missing")

    @pytest.mark.asyncio
    async def test_share_hide_download_is_carried(self, token_manager, file_system, share_manager):
        share_manager.shares["s1"] = Share("s1", "bob", SharePermission.READ, hide_download=True)
        file_system.add("bob", FileNode("42", "bob"))

        wopi = await token_manager.generate_wopi_token("42", share_token="s1")

        assert wopi.hide_download is True

    @pytest.mark.asyncio
    async def test_hidden_download_on_any_node_hides_download(self, token_manager, file_system):
        file_system.add("alice", FileNode("42", "alice"))
        file_system.add("alice", FileNode("42", "bob"), download_hidden=True)

        wopi = await token_manager.generate_wopi_token("42", user_id="alice")

        assert wopi.hide_download is True

    @pytest.mark.asyncio
    async def test_unreadable_file_is_denied(self, token_manager, file_system, token_store, event_dispatcher):
        file_system.add("alice", FileNode("42", "alice", readable=False))

        with pytest.raises(PermissionDeniedError):
            await token_manager.generate_wopi_token("42", user_id="alice")

        assert token_store.tokens == {}
        assert event_dispatcher.events == []

    @pytest.mark.asyncio
    async def test_missing_file_is_denied(self, token_manager):
        with pytest.raises(PermissionDeniedError):
            await token_manager.generate_wopi_token("404", user_id="alice")

    @pytest.mark.asyncio
    async def test_denied_when_neither_owner_nor_editor_is_enabled(
        self, token_manager, file_system, permission_manager, token_store
    ):
        permission_manager.enabled_users = {"carol"}
        file_system.add("alice", FileNode("42", "bob"))

        with pytest.raises(PermissionDeniedError):
            await token_manager.generate_wopi_token("42", user_id="alice")

        assert token_store.tokens == {}

    @pytest.mark.asyncio
    async def test_enabled_editor_is_enough(self, token_manager, file_system, permission_manager):
        permission_manager.enabled_users = {"alice"}
        file_system.add("alice", FileNode("42", "bob"))

        wopi = await token_manager.generate_wopi_token("42", user_id="alice")

        assert wopi.owner_uid == "bob"
        assert wopi.editor_uid == "alice"

    @pytest.mark.asyncio
    async def test_ownerless_file_falls_back_to_editor(self, token_manager, file_system):
        file_system.add("alice", FileNode("42", None))

        wopi = await token_manager.generate_wopi_token("42", user_id="alice")

        assert wopi.owner_uid == "alice"

    @pytest.mark.asyncio
    async def test_explicit_editor_without_session(self, token_manager, file_system):
        file_system.add("alice", FileNode("42", "alice", updatable=True))

        wopi = await token_manager.generate_wopi_token("42", editor_uid="alice")

        assert wopi.token_type is TokenType.USER
        assert wopi.editor_uid == "alice"
        assert wopi.can_write is True

    @pytest.mark.asyncio
    async def test_session_user_takes_precedence_over_editor_uid(self, token_manager, file_system):
        file_system.add("alice", FileNode("42", "alice"))

        wopi = await token_manager.generate_wopi_token("42", editor_uid="mallory", user_id="alice")

        assert wopi.editor_uid == "alice"

    @pytest.mark.asyncio
    async def test_save_as_without_editor_is_writable_guest(self, token_manager, file_system):
        file_system.add(None, FileNode("42", "alice"))

        wopi = await token_manager.generate_wopi_token("42")

        assert wopi.token_type is TokenType.GUEST
        assert wopi.can_write is True
        assert wopi.guest_displayname == "Anonymous guest"

    @pytest.mark.asyncio
    async def test_read_event_is_dispatched_once(self, token_manager, file_system, event_dispatcher):
        node = FileNode("42", "alice")
        file_system.add("alice", node)

        await token_manager.generate_wopi_token("42", user_id="alice")

        assert len(event_dispatcher.events) == 1
        assert event_dispatcher.events[0].node == node

    @pytest.mark.asyncio
    async def test_concurrent_issuance_yields_distinct_tokens(self, token_manager, file_system, token_store):
        file_system.add("alice", FileNode("42", "alice"))

        first = await token_manager.generate_wopi_token("42", user_id="alice")
        second = await token_manager.generate_wopi_token("42", user_id="alice")

        assert first.token != second.token
        assert len(token_store.tokens) == 2

    @pytest.mark.asyncio
    async def test_malformed_file_reference(self, token_manager):
        with pytest.raises(InvalidFileIdError):
            await token_manager.generate_wopi_token("1_2_3_4", user_id="alice")


class TestCredentialProvisioning:
    """Session credentials minted for storages that need the user's login"""

    @pytest.fixture
    def protected_file(self, file_system):
        file_system.add("alice", FileNode("42", "alice", requires_authentication=True))

    @pytest.mark.asyncio
    async def test_credential_is_minted_and_pinned_to_token_expiry(
        self, token_manager, credential_provider, protected_file
    ):
        credentials = LoginCredentials("alice", "alice@example.com", "secret")

        wopi = await token_manager.generate_wopi_token("42", user_id="alice", credentials=credentials)

        minted = await credential_provider.list_by_owner(wopi.token)
        assert len(minted) == 1
        credential = minted[0]
        assert credential.login_name == "alice"
        assert credential.secret == "secret"
        assert credential.label == f"wopi_token_{wopi.token}"
        assert credential.passphrase == f"alice@{wopi.token}"
        assert credential.last_activity == wopi.expiry
        assert credential.expires == wopi.expiry

    @pytest.mark.asyncio
    async def test_uid_mismatch_is_skipped(self, token_manager, credential_provider, protected_file):
        credentials = LoginCredentials("mallory", "mallory", "secret")

        wopi = await token_manager.generate_wopi_token("42", user_id="alice", credentials=credentials)

        assert wopi.token
        assert credential_provider.credentials == {}

    @pytest.mark.asyncio
    async def test_missing_credentials_are_skipped(self, token_manager, credential_provider, protected_file):
        wopi = await token_manager.generate_wopi_token("42", user_id="alice")

        assert wopi.token
        assert credential_provider.credentials == {}

    @pytest.mark.asyncio
    async def test_missing_password_does_not_fail_issuance(
        self, token_manager, credential_provider, token_store, protected_file
    ):
        credentials = LoginCredentials("alice", "alice", None)

        wopi = await token_manager.generate_wopi_token("42", user_id="alice", credentials=credentials)

        assert await token_store.find_by_token(wopi.token) is not None
        assert credential_provider.credentials == {}

    @pytest.mark.asyncio
    async def test_unprotected_storage_needs_no_credential(self, token_manager, file_system, credential_provider):
        file_system.add("alice", FileNode("42", "alice"))
        credentials = LoginCredentials("alice", "alice", "secret")

        await token_manager.generate_wopi_token("42", user_id="alice", credentials=credentials)

        assert credential_provider.credentials == {}


class TestUpgradeToRemoteToken:
    """Federation narrows access and never widens it"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("local_write", [True, False])
    @pytest.mark.parametrize("remote_write", [True, False])
    @pytest.mark.parametrize("local_hidden", [True, False])
    @pytest.mark.parametrize("remote_hidden", [True, False])
    async def test_access_is_narrowed(
        self, token_manager, token_store, make_token,
        local_write, remote_write, local_hidden, remote_hidden
    ):
        local = make_token(token_type=TokenType.INITIATOR, can_write=local_write, hide_download=local_hidden)
        await token_store.create(local)
        remote = make_token(editor_uid="bob", can_write=remote_write, hide_download=remote_hidden)

        upgraded = await token_manager.upgrade_to_remote_token(
            local, remote, "s1", "https://remote.example.com", "remote-token"
        )

        assert upgraded.can_write == (local_write and remote_write)
        assert upgraded.hide_download == (local_hidden or remote_hidden)
        assert await token_store.find_by_token(local.token) == upgraded

    @pytest.mark.asyncio
    async def test_remote_user(self, token_manager, token_store, make_token):
        local = make_token(token_type=TokenType.INITIATOR)
        await token_store.create(local)
        remote = make_token(editor_uid="bob")

        upgraded = await token_manager.upgrade_to_remote_token(
            local, remote, "s1", "https://remote.example.com", "remote-token"
        )

        assert upgraded.token_type is TokenType.REMOTE_USER
        assert upgraded.guest_displayname == "bob@https://remote.example.com"
        assert upgraded.share == "s1"
        assert upgraded.remote_server == "https://remote.example.com"
        assert upgraded.remote_server_token == "remote-token"
        assert upgraded.is_remote_token

    @pytest.mark.asyncio
    async def test_remote_guest(self, token_manager, token_store, make_token):
        local = make_token(token_type=TokenType.INITIATOR)
        await token_store.create(local)
        remote = make_token(editor_uid=None, token_type=TokenType.GUEST, guest_displayname="Eve (Guest)")

        upgraded = await token_manager.upgrade_to_remote_token(
            local, remote, "s1", "https://remote.example.com", "remote-token"
        )

        assert upgraded.token_type is TokenType.REMOTE_GUEST
        assert upgraded.guest_displayname == "Eve (Guest)"

    @pytest.mark.asyncio
    async def test_non_initiator_is_left_alone(self, token_manager, token_store, make_token):
        local = make_token(token_type=TokenType.USER)
        await token_store.create(local)
        remote = make_token(editor_uid="bob", can_write=False)

        result = await token_manager.upgrade_to_remote_token(
            local, remote, "s1", "https://remote.example.com", "remote-token"
        )

        assert result.token_type is TokenType.USER
        assert result.can_write is True
        assert result.remote_server is None

    @pytest.mark.asyncio
    async def test_second_upgrade_is_a_no_op(self, token_manager, token_store, make_token):
        local = make_token(token_type=TokenType.INITIATOR)
        await token_store.create(local)

        await token_manager.upgrade_to_remote_token(
            local, make_token(editor_uid="bob"), "s1", "https://remote.example.com", "t1"
        )
        again = await token_manager.upgrade_to_remote_token(
            local, make_token(editor_uid="carol", can_write=False), "s2", "https://other.example.com", "t2"
        )

        assert again.token_type is TokenType.REMOTE_USER
        assert again.can_write is True
        assert again.remote_server == "https://remote.example.com"
        assert again.share == "s1"


class TestInitiatorTokens:
    """Tokens exchanged between federated servers"""

    @pytest.mark.asyncio
    async def test_direct_initiator_becomes_remote_guest(self, token_manager, token_store, make_token):
        wopi = make_token()
        await token_store.create(wopi)
        direct = DirectLink("direct-1", "https://initiator.example.com", "initiator-token")

        upgraded = await token_manager.upgrade_from_direct_initiator(direct, wopi)

        assert upgraded.token_type is TokenType.REMOTE_GUEST
        assert upgraded.editor_uid is None
        assert upgraded.remote_server == "https://initiator.example.com"
        assert upgraded.remote_server_token == "initiator-token"
        assert (await token_store.find_by_token(wopi.token)).token_type is TokenType.REMOTE_GUEST

    @pytest.mark.asyncio
    async def test_initiator_without_node_is_read_only_handshake(self, token_manager, token_store):
        wopi = await token_manager.new_initiator_token("https://partner.example.com", user_id="alice")

        assert wopi.token_type is TokenType.INITIATOR
        assert wopi.file_id == "0"
        assert wopi.can_write is False
        assert wopi.server_host == "https://partner.example.com"
        assert wopi.editor_uid == "alice"
        assert await token_store.find_by_token(wopi.token) == wopi

    @pytest.mark.asyncio
    async def test_initiator_for_node(self, token_manager, token_store, file_system):
        node = FileNode("42", "alice", updatable=True)
        file_system.add("alice", node)

        wopi = await token_manager.new_initiator_token("https://partner.example.com", node, user_id="alice")

        assert wopi.token_type is TokenType.INITIATOR
        assert wopi.file_id == "42"
        assert wopi.server_host == "https://partner.example.com"
        stored = await token_store.find_by_token(wopi.token)
        assert stored.token_type is TokenType.INITIATOR

    @pytest.mark.asyncio
    async def test_extend_with_initiator_user_token(self, token_manager, token_store, make_token):
        wopi = make_token()
        await token_store.create(wopi)

        await token_manager.extend_with_initiator_user_token(wopi, "https://initiator.example.com", "user-token")

        stored = await token_store.find_by_token(wopi.token)
        assert stored.remote_server == "https://initiator.example.com"
        assert stored.remote_server_token == "user-token"


class TestTemplateTokens:

    @pytest.mark.asyncio
    async def test_user_template_token(self, token_manager, file_system):
        file_system.add("alice", FileNode("99", "alice", updatable=True))

        wopi = await token_manager.generate_wopi_token_for_template("7", "99", "alice", is_guest=False)

        assert wopi.template_id == "7"
        assert wopi.file_id == "99"
        assert wopi.token_type is TokenType.USER
        assert wopi.editor_uid == "alice"
        assert wopi.can_write is True

    @pytest.mark.asyncio
    async def test_share_permissions_limit_writing(self, token_manager, file_system):
        file_system.add("alice", FileNode("99", "alice", updatable=True))

        wopi = await token_manager.generate_wopi_token_for_template(
            "7", "99", "alice", is_guest=True, share_permissions=SharePermission.READ
        )

        assert wopi.token_type is TokenType.GUEST
        assert wopi.editor_uid is None
        assert wopi.can_write is False

    @pytest.mark.asyncio
    async def test_missing_target(self, token_manager):
        with pytest.raises(FileNotFoundInStorageError):
            await token_manager.generate_wopi_token_for_template("7", "99", "alice", is_guest=False)


class TestTokenLookup:

    @pytest.mark.asyncio
    async def test_unknown_token(self, token_manager):
        with pytest.raises(InvalidTokenError):
            await token_manager.get_wopi_for_token("nope")

    @pytest.mark.asyncio
    async def test_expired_token(self, token_manager, token_store, make_token):
        wopi = make_token(expiry=int(time.time()) - 10)
        await token_store.create(wopi)

        with pytest.raises(ExpiredTokenError):
            await token_manager.get_wopi_for_token(wopi.token)


class TestParseFileId:

    def test_plain_id(self):
        assert parse_file_id("42") == ("42", "", "0")

    def test_instance_and_version(self):
        ref = parse_file_id("42_oc123_3")
        assert ref.file_id == "42"
        assert ref.instance_id == "oc123"
        assert ref.version == "3"

    def test_too_many_parts(self):
        with pytest.raises(InvalidFileIdError):
            parse_file_id("1_2_3_4")

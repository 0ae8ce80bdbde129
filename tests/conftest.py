"""
Shared fixtures for the WOPI broker tests.
All collaborators are the in-memory implementations.
"""

import time
from typing import Dict, List, Optional

import pytest

from wopi_broker.domain.models import TokenType, WopiToken
from wopi_broker.domain.services import CookieJar
from wopi_broker.infrastructure.config import WOPISettings
from wopi_broker.infrastructure.initial_state import InitialStateService
from wopi_broker.infrastructure.memory_store import (
    LoggingEventDispatcher,
    MemoryFileSystem,
    MemorySessionCredentialProvider,
    MemoryShareManager,
    MemoryTemplateMappingStore,
    MemoryWopiTokenStore,
    StaticPermissionManager,
)
from wopi_broker.infrastructure.token_manager import TokenManager


class FakeCookieJar(CookieJar):
    """Records cookies set during a request."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.values: Dict[str, str] = dict(initial or {})
        self.set_calls: List[dict] = []

    def get(self, name: str) -> Optional[str]:
        return self.values.get(name)

    def set(self, name, value, *, expires, path, secure, httponly=True, samesite="lax"):
        self.values[name] = value
        self.set_calls.append({
            "name": name,
            "value": value,
            "expires": expires,
            "path": path,
            "secure": secure,
            "httponly": httponly,
            "samesite": samesite,
        })


@pytest.fixture
def settings():
    return WOPISettings(
        environment="test",
        state_secret="test-secret",
        wopi_base_url="https://cloud.example.com",
        collabora_url="https://office.example.com",
        passphrase_cookie_secure=False,
    )


@pytest.fixture
def token_store():
    return MemoryWopiTokenStore()


@pytest.fixture
def credential_provider():
    return MemorySessionCredentialProvider()


@pytest.fixture
def template_store():
    return MemoryTemplateMappingStore()


@pytest.fixture
def file_system():
    return MemoryFileSystem()


@pytest.fixture
def share_manager():
    return MemoryShareManager()


@pytest.fixture
def permission_manager():
    return StaticPermissionManager()


@pytest.fixture
def event_dispatcher():
    return LoggingEventDispatcher()


@pytest.fixture
def initial_state(credential_provider, settings):
    return InitialStateService(credential_provider, settings)


@pytest.fixture
def token_manager(
    token_store,
    file_system,
    share_manager,
    permission_manager,
    event_dispatcher,
    initial_state,
    settings
):
    return TokenManager(
        token_store=token_store,
        file_system=file_system,
        share_manager=share_manager,
        permission_manager=permission_manager,
        event_dispatcher=event_dispatcher,
        initial_state=initial_state,
        settings=settings,
    )


@pytest.fixture
def cookies():
    return FakeCookieJar()


@pytest.fixture
def make_token():
    """Build a token record without going through issuance."""
    counter = {"n": 0}

    def _make(**overrides) -> WopiToken:
        counter["n"] += 1
        values = {
            "token": f"token-{counter['n']}",
            "file_id": "42",
            "owner_uid": "alice",
            "editor_uid": "alice",
            "expiry": int(time.time()) + 3600,
            "can_write": True,
            "token_type": TokenType.USER,
            "server_host": "https://cloud.example.com",
        }
        values.update(overrides)
        return WopiToken(**values)

    return _make

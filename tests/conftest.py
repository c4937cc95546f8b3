"""Pytest configuration and shared fixtures."""

import json
import logging
from collections.abc import AsyncGenerator, Generator
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio
from cryptography.fernet import Fernet

import safetrust.models  # noqa: F401
from safetrust.db.base import Base
from safetrust.db.session import Database
from safetrust.offline import ConnectivityMonitor, OfflineQueue, OfflineStore, RemoteAPI
from safetrust.services.mfa_service import MFAService
from safetrust.services.notifications import EmailProvider, Notifier, SMSProvider

API_BASE_URL = "http://api.test/api/v1"


class FakeClock:
    """Settable clock injected into services instead of datetime.now."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingEmailProvider(EmailProvider):
    def __init__(self):
        self.sent: list[dict] = []

    def send(self, to: str, subject: str, body_text: str, body_html: str | None = None) -> str:
        self.sent.append({"to": to, "subject": subject, "body_text": body_text})
        return f"test:{len(self.sent)}"


class RecordingSMSProvider(SMSProvider):
    def __init__(self):
        self.sent: list[dict] = []

    def send(self, to: str, body: str) -> str:
        self.sent.append({"to": to, "body": body})
        return f"test:{len(self.sent)}"


class FakeServer:
    """In-memory Safety Management API served through httpx.MockTransport."""

    def __init__(self):
        self.requests: list[tuple[str, str, dict | None]] = []
        self.fail_next = 0
        self.always_fail = False
        self.listings: dict[str, list[dict]] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api/v1")
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, path, body))

        if self.always_fail or self.fail_next > 0:
            self.fail_next = max(0, self.fail_next - 1)
            return httpx.Response(503, json={"success": False, "error": "unavailable"})

        if request.method == "GET":
            return httpx.Response(200, json={"success": True, "data": self.listings.get(path, [])})
        return httpx.Response(200, json={"success": True, "data": {"id": "srv-1"}})

    @property
    def writes(self) -> list[tuple[str, str, dict | None]]:
        return [r for r in self.requests if r[0] != "GET"]


@pytest.fixture(autouse=True)
def restore_root_logging() -> Generator[None, None, None]:
    """setup_logging() replaces root handlers; put pytest's back after each test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def encryption_key() -> bytes:
    return Fernet.generate_key()


@pytest_asyncio.fixture
async def mfa_db(tmp_path) -> AsyncGenerator[Database, None]:
    """Server-side MFA database on a temporary SQLite file."""
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'mfa.db'}", base=Base)
    await database.open(create_tables=True)
    yield database
    await database.close()


@pytest.fixture
def email_provider() -> RecordingEmailProvider:
    return RecordingEmailProvider()


@pytest.fixture
def sms_provider() -> RecordingSMSProvider:
    return RecordingSMSProvider()


@pytest.fixture
def notifier(email_provider, sms_provider) -> Notifier:
    return Notifier(email_provider=email_provider, sms_provider=sms_provider)


@pytest_asyncio.fixture
async def mfa_service(mfa_db, notifier, clock, encryption_key) -> AsyncGenerator[MFAService, None]:
    service = MFAService(
        mfa_db.session_factory,
        notifier=notifier,
        encryption_key=encryption_key,
        issuer="SMS Management System",
        valid_window=2,
        max_attempts=5,
        attempt_window_seconds=900,
        backup_code_count=10,
        backup_code_pepper="test-pepper",
        clock=clock,
    )
    yield service
    await service.close()


@pytest_asyncio.fixture
async def offline_store(tmp_path, clock) -> AsyncGenerator[OfflineStore, None]:
    store = OfflineStore(str(tmp_path / "device.db"), retry_backoff_seconds=0, clock=clock)
    await store.open()
    yield store
    await store.close()


@pytest.fixture
def fake_server() -> FakeServer:
    return FakeServer()


@pytest_asyncio.fixture
async def remote_api(fake_server) -> AsyncGenerator[RemoteAPI, None]:
    remote = RemoteAPI(
        base_url=API_BASE_URL,
        token="device-token",
        timeout=5.0,
        transport=httpx.MockTransport(fake_server.handler),
    )
    yield remote
    await remote.aclose()


@pytest.fixture
def connectivity() -> ConnectivityMonitor:
    return ConnectivityMonitor(online=False)


@pytest_asyncio.fixture
async def offline_queue(offline_store, remote_api, connectivity) -> AsyncGenerator[OfflineQueue, None]:
    queue = OfflineQueue(offline_store, remote_api, connectivity, max_retries=3, sync_interval=0)
    await queue.open()
    yield queue
    await queue.close()

"""
Shared pytest fixtures for the federation tests.

Remote fediverse servers are simulated with ``httpx.MockTransport``; every
delay is zeroed or recorded so nothing in the suite actually sleeps.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

import httpx
import pytest

from fedblog.core.activitypub.directory import ActorDirectory
from fedblog.core.activitypub.federation import DeliveryWorker
from fedblog.core.activitypub.keys import KeyStore
from fedblog.core.activitypub.service import FederationService
from fedblog.core.activitypub.state import FederationState
from fedblog.core.activitypub.utils import generate_key_pair
from fedblog.core.config import Settings
from fedblog.core.config_store import ConfigStore
from fedblog.core.content import InMemoryContentProvider
from fedblog.models.activitypub import ContentItem, ContentKind

BASE_URL = "https://blog.example.com"
FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================================
# Remote servers
# ============================================================================


class FakeFediverse:
    """Remote actors and inboxes behind an httpx.MockTransport."""

    def __init__(self):
        self.inboxes: Dict[str, str] = {}
        self.inbox_status: Dict[str, int] = {}
        self.inbox_body: Dict[str, str] = {}
        self.unreachable = set()
        self.fetches: List[str] = []
        self.deliveries: List[httpx.Request] = []

    def add_actor(self, actor_uri: str, inbox: Optional[str] = None, status: int = 202) -> str:
        inbox = inbox or f"{actor_uri}/inbox"
        self.inboxes[actor_uri] = inbox
        self.inbox_status[inbox] = status
        return inbox

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url in self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)

        if request.method == "GET":
            self.fetches.append(url)
            if url not in self.inboxes:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(200, json={"id": url, "type": "Person", "inbox": self.inboxes[url]})

        self.deliveries.append(request)
        return httpx.Response(self.inbox_status.get(url, 404), text=self.inbox_body.get(url, ""))

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def delivered(self, inbox: Optional[str] = None) -> List[httpx.Request]:
        return [r for r in self.deliveries if inbox is None or str(r.url) == inbox]


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# ============================================================================
# Settings and stores
# ============================================================================


@pytest.fixture(scope="session")
def key_pair():
    """One RSA pair for the whole session; generation is slow."""
    return generate_key_pair()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        BASE_URL=BASE_URL,
        FEDIVERSE_USERNAME="blog",
        FEDIVERSE_DISPLAY_NAME="Example Blog",
        DATA_DIR=str(tmp_path / "data"),
        ENV_FILE=str(tmp_path / ".env"),
        KEY_LOCK_TIMEOUT=2.0,
        BROADCAST_DELAY=0.1,
        FOLLOW_PUSH_DELAY=0.3,
        FOLLOW_PUSH_INITIAL_DELAY=1.0,
    )


@pytest.fixture
def config_store(settings: Settings) -> ConfigStore:
    return ConfigStore(Path(settings.ENV_FILE))


@pytest.fixture
def key_store(settings: Settings, config_store: ConfigStore, key_pair) -> KeyStore:
    store = KeyStore(Path(settings.DATA_DIR), config_store, lock_timeout=2.0, key_generator=lambda: key_pair)
    store.ensure_keys()
    return store


@pytest.fixture
def state(settings: Settings) -> FederationState:
    store = FederationState(Path(settings.DATA_DIR), clock=lambda: FIXED_NOW)
    store.load()
    return store


@pytest.fixture
def directory(settings: Settings, key_store: KeyStore, state: FederationState) -> ActorDirectory:
    return ActorDirectory(settings, key_store, state)


@pytest.fixture
def fediverse() -> FakeFediverse:
    return FakeFediverse()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def http_client(fediverse: FakeFediverse) -> httpx.AsyncClient:
    return fediverse.client()


@pytest.fixture
def delivery(settings, key_store, http_client, sleep) -> DeliveryWorker:
    return DeliveryWorker(settings, key_store, http_client, sleep=sleep)


# ============================================================================
# Content
# ============================================================================


def make_item(slug: str, days_ago: int = 0, kind: ContentKind = ContentKind.BLOG, **kwargs) -> ContentItem:
    fields = {
        "slug": slug,
        "title": slug.replace("-", " ").title(),
        "content_html": f"<p>{slug}</p>",
        "published": FIXED_NOW - timedelta(days=days_ago),
        "kind": kind,
    }
    fields.update(kwargs)
    return ContentItem(**fields)


@pytest.fixture
def sample_items() -> List[ContentItem]:
    return [
        make_item("first-post", days_ago=5, tags=["python"]),
        make_item("second-post", days_ago=3),
        make_item("third-post", days_ago=1),
        make_item("fourth-post", days_ago=0),
        make_item("home", days_ago=10, kind=ContentKind.WIKI),
        make_item("recipes", days_ago=2, kind=ContentKind.WIKI, category="cooking"),
        make_item("gardening", days_ago=4, kind=ContentKind.WIKI),
        make_item("tools", days_ago=6, kind=ContentKind.WIKI),
    ]


@pytest.fixture
def content_provider(sample_items) -> InMemoryContentProvider:
    return InMemoryContentProvider(sample_items)


@pytest.fixture
def service(settings, content_provider, http_client, config_store, key_store, state, sleep) -> FederationService:
    return FederationService(
        settings,
        content_provider,
        http_client,
        config_store=config_store,
        key_store=key_store,
        state=state,
        clock=lambda: FIXED_NOW,
        sleep=sleep,
    )

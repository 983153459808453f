"""
HTTP surface tests: discovery, actor, collections, inbox and feed endpoints
served by the app factory, with remote servers behind a mock transport.
"""

import orjson
import pytest
from fastapi.testclient import TestClient

from conftest import BASE_URL
from fedblog.core.activitypub.signature import compute_digest
from fedblog.core.errors import PersistenceFailure
from fedblog.main import create_app

ACTIVITY_JSON = "application/activity+json; charset=utf-8"
ALICE = "https://remote.example/users/alice"


@pytest.fixture
def app_settings(settings):
    return settings.model_copy(update={
        "BROADCAST_DELAY": 0.0,
        "FOLLOW_PUSH_DELAY": 0.0,
        "FOLLOW_PUSH_INITIAL_DELAY": 0.0,
    })


@pytest.fixture
def client(app_settings, content_provider, http_client):
    app = create_app(app_settings, content_provider, http_client)
    with TestClient(app) as test_client:
        yield test_client


def follow(actor=ALICE):
    return {"id": f"{actor}#follow", "type": "Follow", "actor": actor, "object": f"{BASE_URL}/actor.json"}


def test_root_and_health(client):
    assert client.get("/").status_code == 200

    health = client.get("/api/v1/health/").json()
    assert health["status"] == "ok"
    assert health["keys"] == "available"


def test_webfinger(client):
    response = client.get("/.well-known/webfinger", params={"resource": "acct:blog@blog.example.com"})

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/jrd+json; charset=utf-8"
    assert response.json()["links"][0]["href"] == f"{BASE_URL}/actor.json"


def test_webfinger_unknown_account(client):
    response = client.get("/.well-known/webfinger", params={"resource": "acct:nobody@blog.example.com"})

    assert response.status_code == 404
    assert response.json() == {"error": "Account not found"}


@pytest.mark.parametrize("path", ["/actor", "/actor.json"])
def test_actor(client, path):
    response = client.get(path)

    assert response.status_code == 200
    assert response.headers["content-type"] == ACTIVITY_JSON
    actor = response.json()
    assert actor["type"] == "Person"
    assert "BEGIN PUBLIC KEY" in actor["publicKey"]["publicKeyPem"]


def test_actor_unavailable_without_keys(client):
    client.app.state.federation.key_store.private_key_file.unlink()

    assert client.get("/actor.json").status_code == 503
    health = client.get("/api/v1/health/").json()
    assert (health["status"], health["keys"]) == ("degraded", "unavailable")


@pytest.mark.parametrize("path", ["/outbox", "/outbox.json"])
def test_outbox(client, path):
    outbox = client.get(path).json()

    assert outbox["type"] == "OrderedCollection"
    assert outbox["totalItems"] == 7
    assert outbox["orderedItems"][0]["type"] == "Create"


def test_follow_then_undo(client, fediverse):
    fediverse.add_actor(ALICE)

    response = client.post("/inbox", content=orjson.dumps(follow()),
                           headers={"Content-Type": "application/activity+json"})

    assert response.status_code == 202
    assert response.json()["acceptDelivered"] is True
    assert client.get("/followers.json").json()["orderedItems"] == [ALICE]

    response = client.post("/inbox.json", json={"type": "Undo", "actor": ALICE, "object": follow()})

    assert response.status_code == 200
    assert client.get("/followers").json()["totalItems"] == 0


def test_like_is_archived(client):
    response = client.post("/inbox", json={"type": "Like", "actor": ALICE, "object": f"{BASE_URL}/blog/x"})

    assert response.status_code == 200
    assert response.json()["message"] == "Like received"
    assert client.get("/inbox").json()["totalItems"] == 1


@pytest.mark.parametrize("body", [b"{not json", b"[]", b'{"actor": "x"}', b'{"type": "Follow"}'])
def test_malformed_inbox_posts_are_rejected(client, body):
    response = client.post("/inbox", content=body)

    assert response.status_code == 400
    assert client.get("/followers.json").json()["totalItems"] == 0


def test_digest_mismatch_is_tolerated(client, caplog):
    body = orjson.dumps({"type": "Like", "actor": ALICE})

    response = client.post("/inbox", content=body, headers={"Digest": compute_digest(b"other")})

    assert response.status_code == 200
    assert "Digest header does not match" in caplog.text


def test_persistence_failure_returns_500(client, monkeypatch):
    async def fail():
        raise PersistenceFailure("disk full")

    monkeypatch.setattr(client.app.state.federation.state, "save_data", fail)

    response = client.post("/inbox", json={"type": "Announce", "actor": ALICE})

    assert response.status_code == 500


def test_nodeinfo(client):
    discovery = client.get("/.well-known/nodeinfo").json()
    assert discovery["links"][0]["href"] == f"{BASE_URL}/.well-known/nodeinfo/2.0"

    nodeinfo = client.get("/.well-known/nodeinfo/2.0").json()
    assert nodeinfo["version"] == "2.0"
    assert nodeinfo["protocols"] == ["activitypub"]
    assert nodeinfo["usage"]["users"]["total"] == 1
    assert nodeinfo["usage"]["localPosts"] == 8


def test_feed(client):
    response = client.get("/feed.json")

    assert response.headers["content-type"] == "application/json"
    feed = response.json()
    assert feed["version"] == "https://jsonfeed.org/version/1.1"
    assert len(feed["items"]) == 7


def test_admin_snapshot(client):
    client.post("/inbox", json={"type": "Like", "actor": ALICE})

    snapshot = client.get("/api/v1/admin/activitypub").json()

    assert snapshot["server"]["username"] == "blog"
    assert snapshot["stats"]["activities"] == 1
    assert snapshot["recentActivities"][0]["type"] == "Like"

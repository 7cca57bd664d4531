from dataclasses import replace

import pytest

from refill_search.core.location_store import LocationStore
from refill_search.jobs import search_server
from refill_search.models import Pagination, QueryOutcome, StoreSummary
from refill_search.search.session import SearchSession


class FakeExecutor:
    def __init__(self):
        self.calls = []

    def execute(self, filters, page=1):
        self.calls.append((filters, page))
        items = [StoreSummary(id=f"{page}-{i}", name=f"store {i}") for i in range(20)]
        outcome = QueryOutcome(items=items, pagination=Pagination(page=page, has_more=page < 2))
        outcome.filters = filters
        return outcome


@pytest.fixture
def client(monkeypatch, settings):
    def create_session(url):
        return SearchSession(
            settings,
            url=url,
            location_store=LocationStore(settings.location_store_path),
            position_provider=lambda: (37.55, 126.99),
            executor=FakeExecutor(),
        )

    monkeypatch.setattr(search_server, "create_session", create_session)
    monkeypatch.setattr(search_server, "get_settings", lambda: settings)
    monkeypatch.setattr(search_server, "_sessions", {})
    search_server.app.config["TESTING"] = True
    with search_server.app.test_client() as test_client:
        yield test_client


def _open(client, url="/"):
    response = client.post("/sessions", json={"url": url})
    assert response.status_code == 201
    return response.get_json()["data"]


def test_healthcheck(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.get_json() == {"status": "ok", "store_api": "http://api.test", "sessions": 0}


def test_open_session_runs_first_search(client):
    data = _open(client, "/?lat=37.56&lng=126.97")

    assert data["session_id"]
    assert len(data["stores"]) == 20
    assert data["location"]["origin"] == "url"
    assert data["filters"]["latitude"] == 37.56


def test_update_filters(client):
    session_id = _open(client)["session_id"]

    response = client.patch(f"/sessions/{session_id}/filters", json={"min_rating": 4, "categories": ["한식"]})

    data = response.get_json()["data"]
    assert response.status_code == 200
    assert data["filters"]["min_rating"] == 4
    assert data["filters"]["categories"] == ["한식"]
    assert "rating=4" in data["url"]


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"latitude": None}, "latitude and longitude"),
        ({"min_rating": 9}, "min_rating"),
        ({"colour": "red"}, "unknown filter fields"),
        ({}, "no filter fields"),
    ],
)
def test_update_filters_rejects_invalid_payloads(client, payload, message):
    session_id = _open(client)["session_id"]

    response = client.patch(f"/sessions/{session_id}/filters", json=payload)

    assert response.status_code == 400
    assert message in response.get_json()["error"]


def test_reset_filters(client):
    session_id = _open(client, "/?rating=4")["session_id"]

    response = client.patch(f"/sessions/{session_id}/filters", json={"reset": True})

    assert response.get_json()["data"]["filters"]["min_rating"] == 0


def test_load_more_and_navigate(client):
    session_id = _open(client)["session_id"]

    data = client.post(f"/sessions/{session_id}/more").get_json()["data"]
    assert len(data["stores"]) == 40
    assert data["has_more"] is False

    data = client.get(
        f"/sessions/{session_id}/navigate", query_string={"q": "곱창", "lat": "37.5", "lng": "127"}
    ).get_json()["data"]
    assert data["filters"]["query"] == "곱창"
    assert len(data["stores"]) == 20


def test_set_manual_location(client):
    session_id = _open(client)["session_id"]

    response = client.post(f"/sessions/{session_id}/location", json={"lat": 37.4, "lng": 127.1, "radius": 2})

    data = response.get_json()["data"]
    assert response.status_code == 200
    assert data["location"]["source"] == "manual"
    assert data["filters"]["max_distance_km"] == 2


def test_use_live_location(client):
    session_id = _open(client)["session_id"]

    data = client.post(f"/sessions/{session_id}/location", json={}).get_json()["data"]

    assert data["location"]["source"] == "gps"
    assert "source=gps" in data["url"]


def test_set_location_rejects_bad_coordinates(client):
    session_id = _open(client)["session_id"]

    assert client.post(f"/sessions/{session_id}/location", json={"lat": "north"}).status_code == 400
    assert client.post(f"/sessions/{session_id}/location", json={"lat": 95, "lng": 0}).status_code == 400


def test_retry_and_close_session(client):
    session_id = _open(client)["session_id"]

    assert client.post(f"/sessions/{session_id}/retry").status_code == 200
    assert client.delete(f"/sessions/{session_id}").status_code == 204
    assert client.get(f"/sessions/{session_id}").status_code == 404


def test_idle_sessions_expire(client):
    session_id = _open(client)["session_id"]
    search_server._sessions[session_id].last_seen -= 31 * 60

    assert client.get(f"/sessions/{session_id}").status_code == 404
    assert session_id not in search_server._sessions


def test_session_cap_evicts_least_recently_used(client, monkeypatch, settings):
    monkeypatch.setattr(search_server, "get_settings", lambda: replace(settings, max_sessions=2))
    first = _open(client)["session_id"]
    second = _open(client)["session_id"]
    search_server._sessions[first].last_seen -= 10
    search_server._sessions[second].last_seen -= 5

    third = _open(client)["session_id"]

    assert set(search_server._sessions) == {second, third}
    assert client.get(f"/sessions/{first}").status_code == 404

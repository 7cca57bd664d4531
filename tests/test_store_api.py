import pytest
import requests

from refill_search.core.errors import NetworkTimeout, ServerError
from refill_search.vendors import store_api


class DummyResponse:
    def __init__(self, status_code=200, payload=None, json_error=False):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self._json_error = json_error

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self._json_error:
            raise ValueError("Expecting value")
        return self._payload


class DummySession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        return self.response


def test_search_stores_returns_payload(monkeypatch):
    payload = {"success": True, "data": {"stores": []}}
    session = DummySession(DummyResponse(payload=payload))
    monkeypatch.setattr(store_api, "_SESSION", session)

    result = store_api.search_stores(
        "http://api.test/api/stores/search", {"lat": "37.5", "lng": "127", "page": 1}, timeout=3
    )

    assert result == payload
    call = session.calls[0]
    assert call["url"] == "http://api.test/api/stores/search"
    assert call["params"] == {"lat": "37.5", "lng": "127", "page": 1}
    assert call["timeout"] == 3
    assert call["headers"]["Accept"] == "application/json"


def test_list_stores_sends_no_params_for_first_page(monkeypatch):
    session = DummySession(DummyResponse(payload=[]))
    monkeypatch.setattr(store_api, "_SESSION", session)

    store_api.list_stores("http://api.test/api/stores", timeout=5)

    assert session.calls[0]["params"] is None


def test_timeout_maps_to_network_timeout(monkeypatch):
    monkeypatch.setattr(store_api, "_SESSION", DummySession(exc=requests.Timeout("read timed out")))

    with pytest.raises(NetworkTimeout):
        store_api.search_stores("http://api.test/api/stores", {}, timeout=1)


def test_connection_error_maps_to_server_error(monkeypatch):
    monkeypatch.setattr(store_api, "_SESSION", DummySession(exc=requests.ConnectionError("refused")))

    with pytest.raises(ServerError) as excinfo:
        store_api.list_stores("http://api.test/api/stores", timeout=1)

    assert excinfo.value.status_code is None


def test_http_error_carries_status_code(monkeypatch, caplog):
    monkeypatch.setattr(store_api, "_SESSION", DummySession(DummyResponse(status_code=503)))

    with caplog.at_level("ERROR"), pytest.raises(ServerError) as excinfo:
        store_api.search_stores("http://api.test/api/stores", {}, timeout=1)

    assert excinfo.value.status_code == 503
    assert "status=503" in caplog.text


def test_invalid_json_is_server_error(monkeypatch):
    monkeypatch.setattr(store_api, "_SESSION", DummySession(DummyResponse(json_error=True)))

    with pytest.raises(ServerError):
        store_api.list_stores("http://api.test/api/stores", timeout=1)

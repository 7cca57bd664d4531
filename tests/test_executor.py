from refill_search.core.errors import NetworkTimeout, ServerError
from refill_search.models import EMPTY_RESULT, NETWORK_TIMEOUT, SERVER_ERROR, FilterState
from refill_search.search import executor as executor_module
from refill_search.search.executor import QueryExecutor, build_search_params


def _payload(count, start=0, has_more=False, page=1):
    stores = [{"id": i, "name": f"store {i}"} for i in range(start, start + count)]
    return {"success": True, "data": {"stores": stores}, "pagination": {"page": page, "hasMore": has_more}}


class Recorder:
    def __init__(self, payload=None, exc=None):
        self.payload = payload
        self.exc = exc
        self.calls = []

    def list_stores(self, url, timeout, params=None):
        self.calls.append(("list", url, params, timeout))
        return self._respond()

    def search_stores(self, url, params, timeout):
        self.calls.append(("search", url, params, timeout))
        return self._respond()

    def _respond(self):
        if self.exc is not None:
            raise self.exc
        return self.payload


def _install(monkeypatch, recorder):
    monkeypatch.setattr(executor_module.store_api, "list_stores", recorder.list_stores)
    monkeypatch.setattr(executor_module.store_api, "search_stores", recorder.search_stores)


def test_build_search_params_omits_defaults():
    params = build_search_params(FilterState(latitude=37.5, longitude=127.0), page=1, limit=20)

    assert params == {"lat": "37.5", "lng": "127", "page": 1, "limit": 20}


def test_build_search_params_includes_every_active_filter():
    filters = FilterState(
        categories=frozenset({"한식", "고기"}),
        max_distance_km=3,
        min_rating=4.5,
        latitude=37.5,
        longitude=127.03,
        query="무한리필",
        sort="rating",
    )

    params = build_search_params(filters, page=2, limit=20)

    assert params == {
        "lat": "37.5",
        "lng": "127.03",
        "radius": "3",
        "minRating": "4.5",
        "categories": "고기,한식",
        "query": "무한리필",
        "sort": "rating",
        "page": 2,
        "limit": 20,
    }


def test_unfiltered_state_uses_list_endpoint(monkeypatch, settings):
    recorder = Recorder(payload=_payload(3))
    _install(monkeypatch, recorder)

    outcome = QueryExecutor(settings).execute(FilterState())

    assert recorder.calls == [("list", "http://api.test/api/stores", {}, 10)]
    assert outcome.endpoint == "list"
    assert outcome.ok
    assert [item.id for item in outcome.items] == [0, 1, 2]


def test_bare_list_call_pages_with_limit(monkeypatch, settings):
    recorder = Recorder(payload=_payload(2, page=2))
    _install(monkeypatch, recorder)

    QueryExecutor(settings).execute(None, page=2)

    assert recorder.calls[0][2] == {"page": 2, "limit": 20}


def test_filtered_state_uses_search_endpoint(monkeypatch, settings):
    recorder = Recorder(payload=_payload(20, has_more=True))
    _install(monkeypatch, recorder)
    filters = FilterState(latitude=37.5, longitude=127.0, min_rating=3)

    outcome = QueryExecutor(settings).execute(filters)

    kind, url, params, _ = recorder.calls[0]
    assert kind == "search"
    assert url == "http://api.test/api/stores/search"
    assert params["minRating"] == "3"
    assert outcome.pagination.has_more is True
    assert outcome.filters == filters


def test_empty_first_page_is_empty_result(monkeypatch, settings):
    _install(monkeypatch, Recorder(payload=_payload(0)))

    outcome = QueryExecutor(settings).execute(FilterState(query="없는가게"))

    assert outcome.failure_reason == EMPTY_RESULT
    assert outcome.ok
    assert outcome.items == []


def test_empty_later_page_is_not_a_failure(monkeypatch, settings):
    _install(monkeypatch, Recorder(payload=_payload(0, page=3)))

    outcome = QueryExecutor(settings).execute(FilterState(query="고기", page=3), page=3)

    assert outcome.failure_reason is None


def test_timeout_becomes_failed_outcome(monkeypatch, settings, caplog):
    _install(monkeypatch, Recorder(exc=NetworkTimeout("slow")))

    with caplog.at_level("WARNING"):
        outcome = QueryExecutor(settings).execute(FilterState(query="고기"))

    assert outcome.failure_reason == NETWORK_TIMEOUT
    assert not outcome.ok
    assert isinstance(outcome.error, NetworkTimeout)
    assert "network_timeout" in caplog.text


def test_failure_envelope_becomes_server_error(monkeypatch, settings):
    _install(monkeypatch, Recorder(payload={"success": False, "message": "DB down"}))

    outcome = QueryExecutor(settings).execute(None)

    assert outcome.failure_reason == SERVER_ERROR
    assert isinstance(outcome.error, ServerError)
    assert outcome.pagination.has_more is False

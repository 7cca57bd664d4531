import json

import pytest

from refill_search.core.errors import InvalidFilterState
from refill_search.core.location_store import LocationStore
from refill_search.jobs import search_cli
from refill_search.models import NETWORK_TIMEOUT, Pagination, QueryOutcome, StoreSummary
from refill_search.search.filters import url_params
from refill_search.search.session import SearchSession


class FakeExecutor:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def execute(self, filters, page=1):
        self.calls.append((filters, page))
        if self.fail:
            outcome = QueryOutcome(failure_reason=NETWORK_TIMEOUT)
        else:
            items = [StoreSummary(id=(page - 1) * 20 + i, name=f"가게 {i}") for i in range(20)]
            outcome = QueryOutcome(items=items, pagination=Pagination(page=page, has_more=page < 3))
        outcome.filters = filters
        return outcome


def _make_session(settings, fail=False):
    def factory(_settings, url="/"):
        return SearchSession(
            settings,
            url=url,
            location_store=LocationStore(settings.location_store_path),
            position_provider=lambda: (37.55, 126.99),
            executor=FakeExecutor(fail=fail),
        )

    return factory


def test_run_search_job_applies_overrides_and_loads_pages(settings):
    session = _make_session(settings)(settings)

    result = search_cli.run_search_job(
        url="/?utm_source=cli",
        latitude=37.5,
        longitude=127.0,
        categories=["고기"],
        rating=4,
        pages=2,
        session=session,
    )

    snapshot = result.snapshot()
    assert len(snapshot.page.accumulated) == 40
    assert snapshot.page.current_page == 2
    first_filters, _ = session.executor.calls[0]
    assert first_filters.categories == frozenset({"고기"})
    assert first_filters.min_rating == 4
    params = url_params(snapshot.url)
    assert params["utm_source"] == "cli"
    assert params["lat"] == "37.5"


def test_run_search_job_requires_both_coordinates(settings):
    with pytest.raises(InvalidFilterState):
        search_cli.run_search_job(latitude=37.5, session=_make_session(settings)(settings))


def test_run_search_job_rejects_zero_pages(settings):
    with pytest.raises(ValueError):
        search_cli.run_search_job(pages=0, session=_make_session(settings)(settings))


def test_main_prints_json_lines(monkeypatch, settings, capsys):
    monkeypatch.setattr(search_cli, "get_settings", lambda: settings)
    monkeypatch.setattr(search_cli, "SearchSession", _make_session(settings))

    exit_code = search_cli.main(["--query", "고기", "--pages", "3"])

    lines = capsys.readouterr().out.strip().splitlines()
    assert exit_code == 0
    assert len(lines) == 60
    first = json.loads(lines[0])
    assert first["id"] == 0
    assert first["name"] == "가게 0"


def test_main_returns_error_code_on_terminal_failure(monkeypatch, settings, capsys):
    monkeypatch.setattr(search_cli, "get_settings", lambda: settings)
    monkeypatch.setattr(search_cli, "SearchSession", _make_session(settings, fail=True))

    assert search_cli.main([]) == 1
    assert capsys.readouterr().out == ""


def test_main_rejects_half_anchor():
    assert search_cli.main(["--lat", "37.5"]) == 2

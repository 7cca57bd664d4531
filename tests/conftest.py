import sys
from pathlib import Path

import pytest

# Ensure the `refill_search` package is importable when running pytest from the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from refill_search.core.config import Settings  # noqa: E402


@pytest.fixture
def settings(tmp_path):
    return Settings(
        store_api_base_url="http://api.test",
        store_list_path="/api/stores",
        store_search_path="/api/stores/search",
        request_timeout_seconds=10,
        page_size=20,
        location_store_path=tmp_path / "location.json",
        location_ttl_minutes=30,
        geolocation_url="http://geo.test/json/",
        geolocation_timeout_seconds=1,
    )

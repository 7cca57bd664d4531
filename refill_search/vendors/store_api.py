"""Client utilities for the refill store API."""

import logging
from typing import Any, Dict, Optional

import requests

from refill_search.core.errors import NetworkTimeout, ServerError

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_HEADERS = {"Accept": "application/json", "Cache-Control": "no-cache"}


def _get_json(url: str, params: Optional[Dict[str, Any]], timeout: float) -> Any:
    try:
        response = _SESSION.get(url, params=params or None, headers=_HEADERS, timeout=timeout)
    except requests.Timeout as exc:
        logger.warning("Store API timed out after %ss: %s", timeout, url)
        raise NetworkTimeout(f"request to {url} timed out after {timeout}s") from exc
    except requests.RequestException as exc:
        logger.error("Store API transport failure for %s: %s", url, exc)
        raise ServerError(f"request to {url} failed: {exc}") from exc

    try:
        response.raise_for_status()
    except requests.HTTPError as exc:
        logger.error("Store API returned status=%s for %s", response.status_code, url)
        raise ServerError(f"HTTP {response.status_code} from {url}", status_code=response.status_code) from exc

    try:
        return response.json()
    except ValueError as exc:
        logger.error("Store API returned a non-JSON body for %s", url)
        raise ServerError(f"invalid JSON from {url}", status_code=response.status_code) from exc


def list_stores(url: str, timeout: float, params: Optional[Dict[str, Any]] = None) -> Any:
    """Call the unfiltered store list endpoint and return the raw payload."""
    return _get_json(url, params, timeout)


def search_stores(url: str, params: Dict[str, Any], timeout: float) -> Any:
    """Call the filtered store search endpoint and return the raw payload."""
    return _get_json(url, params, timeout)

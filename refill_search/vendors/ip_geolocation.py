"""Client utilities for an IP-based position lookup service."""

import logging
from typing import Tuple

import requests

from refill_search.core.errors import GeolocationDenied, GeolocationTimeout, GeolocationUnavailable

logger = logging.getLogger(__name__)
_SESSION = requests.Session()


class IpGeolocationProvider:
    """Callable position provider returning (lat, lng) for the caller's public IP."""

    def __init__(self, url: str, timeout: float = 10.0) -> None:
        self.url = url
        self.timeout = timeout

    def __call__(self) -> Tuple[float, float]:
        try:
            response = _SESSION.get(self.url, timeout=self.timeout)
        except requests.Timeout as exc:
            raise GeolocationTimeout(f"position lookup timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise GeolocationUnavailable(f"position lookup failed: {exc}") from exc

        if response.status_code in (401, 403, 429):
            logger.error("Position lookup refused: status=%s", response.status_code)
            raise GeolocationDenied(f"position lookup refused with HTTP {response.status_code}")
        if response.status_code >= 400:
            raise GeolocationUnavailable(f"position lookup returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise GeolocationUnavailable("position lookup returned invalid JSON") from exc

        if not isinstance(payload, dict):
            raise GeolocationUnavailable("position lookup returned an unexpected payload")
        if payload.get("error"):
            logger.error("Position lookup error: %s", payload.get("reason") or payload.get("error"))
            raise GeolocationUnavailable(str(payload.get("reason") or "position lookup reported an error"))

        lat = payload.get("latitude", payload.get("lat"))
        lng = payload.get("longitude", payload.get("lon", payload.get("lng")))
        try:
            return float(lat), float(lng)
        except (TypeError, ValueError) as exc:
            raise GeolocationUnavailable("position lookup response has no coordinates") from exc

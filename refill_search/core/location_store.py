"""Durable storage for the last accepted anchor coordinate."""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Optional

from refill_search.models import LOCATION_SOURCES, StoredLocation, is_valid_coordinate

logger = logging.getLogger(__name__)


class LocationStore:
    """JSON file holding one {lat, lng, source, timestamp} record; last writer wins."""

    def __init__(self, path: Path, ttl_minutes: float = 30.0) -> None:
        self.path = Path(path)
        self.ttl_seconds = ttl_minutes * 60

    def save_user_location(self, lat: float, lng: float, source: str) -> StoredLocation:
        if source not in LOCATION_SOURCES:
            raise ValueError(f"unknown location source: {source!r}")
        location = StoredLocation(lat=float(lat), lng=float(lng), source=source, timestamp=time.time())
        payload = {"lat": location.lat, "lng": location.lng, "source": source, "timestamp": location.timestamp}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with tmp_path.open("w", encoding="utf-8") as fh:
                json.dump(payload, fh)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            logger.warning("Failed to persist user location to %s: %s", self.path, exc)
        return location

    def get_user_location(self) -> Optional[StoredLocation]:
        """Return the stored location, or None when missing, unreadable or expired."""
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read stored user location from %s: %s", self.path, exc)
            return None

        if not isinstance(data, dict):
            return None
        try:
            location = StoredLocation(
                lat=data["lat"],
                lng=data["lng"],
                source=data.get("source", "manual"),
                timestamp=float(data["timestamp"]),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("Stored user location at %s is malformed", self.path)
            return None

        if time.time() - location.timestamp > self.ttl_seconds:
            logger.info("Stored user location expired; clearing %s", self.path)
            self.clear_user_location()
            return None
        return location

    def clear_user_location(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to clear stored user location %s: %s", self.path, exc)


def is_location_valid(location: Optional[StoredLocation]) -> bool:
    if location is None:
        return False
    return is_valid_coordinate(location.lat, location.lng) and location.source in LOCATION_SOURCES

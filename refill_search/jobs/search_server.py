"""HTTP entrypoint that hosts store search sessions."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from flask import Flask, jsonify, request

from refill_search.core.config import get_settings
from refill_search.core.errors import InvalidFilterState
from refill_search.search.session import SearchSession

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & sessions ----------
app = Flask(__name__)


@dataclass
class _SessionEntry:
    session: SearchSession
    last_seen: float = field(default_factory=time.monotonic)


_sessions: Dict[str, _SessionEntry] = {}
_sessions_lock = threading.Lock()

_FILTER_FIELDS = ("categories", "max_distance_km", "min_rating", "latitude", "longitude", "query", "page", "sort")


def create_session(url: str) -> SearchSession:
    return SearchSession(get_settings(), url=url)


def _is_idle(entry: _SessionEntry, now: float) -> bool:
    return now - entry.last_seen > get_settings().session_idle_minutes * 60


def _get_session(session_id: str) -> Optional[SearchSession]:
    now = time.monotonic()
    with _sessions_lock:
        entry = _sessions.get(session_id)
        if entry is None:
            return None
        if _is_idle(entry, now):
            del _sessions[session_id]
            logger.info("Expired idle search session %s", session_id)
            return None
        entry.last_seen = now
        return entry.session


def _register_session(session: SearchSession) -> str:
    """Store `session` after evicting idle sessions and, past the cap, the least recently used ones."""
    now = time.monotonic()
    limit = get_settings().max_sessions
    session_id = uuid.uuid4().hex
    with _sessions_lock:
        for idle_id in [key for key, entry in _sessions.items() if _is_idle(entry, now)]:
            del _sessions[idle_id]
            logger.info("Expired idle search session %s", idle_id)
        while len(_sessions) >= limit:
            oldest = min(_sessions, key=lambda key: _sessions[key].last_seen)
            del _sessions[oldest]
            logger.warning("Evicted search session %s; %d sessions open", oldest, limit)
        _sessions[session_id] = _SessionEntry(session, last_seen=now)
    return session_id


def _not_found(session_id: str) -> Any:
    return jsonify({"error": f"unknown session: {session_id}"}), 404


def _session_payload(session_id: str, session: SearchSession) -> Dict[str, Any]:
    return {"session_id": session_id, **session.snapshot().to_dict()}


# ---------- Routes ----------


@app.get("/healthz")
def healthcheck() -> Any:
    settings = get_settings()
    with _sessions_lock:
        active = len(_sessions)
    return jsonify({"status": "ok", "store_api": settings.store_api_base_url, "sessions": active}), 200


@app.post("/sessions")
def open_session() -> Any:
    """Create a session and run its first search. Optional JSON: {"url": "/?lat=..&lng=.."}."""
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    url = str(payload.get("url") or "/")

    session = create_session(url)
    session.initialize(url)

    session_id = _register_session(session)
    logger.info("Opened search session %s url=%s", session_id, url)
    return jsonify({"data": _session_payload(session_id, session)}), 201


@app.get("/sessions/<session_id>")
def get_session(session_id: str) -> Any:
    session = _get_session(session_id)
    if session is None:
        return _not_found(session_id)
    return jsonify({"data": _session_payload(session_id, session)}), 200


@app.delete("/sessions/<session_id>")
def close_session(session_id: str) -> Any:
    with _sessions_lock:
        entry = _sessions.pop(session_id, None)
    if entry is None:
        return _not_found(session_id)
    return "", 204


@app.get("/sessions/<session_id>/navigate")
def navigate(session_id: str) -> Any:
    """Apply the request's query string as if the browser navigated to it."""
    session = _get_session(session_id)
    if session is None:
        return _not_found(session_id)
    query = urlencode(list(request.args.items(multi=True)))
    session.navigate(f"/?{query}" if query else "/")
    return jsonify({"data": _session_payload(session_id, session)}), 200


@app.patch("/sessions/<session_id>/filters")
def update_filters(session_id: str) -> Any:
    session = _get_session(session_id)
    if session is None:
        return _not_found(session_id)

    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    if payload.get("reset"):
        session.reset()
        return jsonify({"data": _session_payload(session_id, session)}), 200

    unknown = sorted(set(payload) - set(_FILTER_FIELDS))
    if unknown:
        return jsonify({"error": f"unknown filter fields: {', '.join(unknown)}"}), 400
    if not payload:
        return jsonify({"error": "no filter fields given"}), 400

    try:
        session.apply_filters(**payload)
    except InvalidFilterState as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify({"data": _session_payload(session_id, session)}), 200


@app.post("/sessions/<session_id>/more")
def load_more(session_id: str) -> Any:
    session = _get_session(session_id)
    if session is None:
        return _not_found(session_id)
    session.load_more()
    return jsonify({"data": _session_payload(session_id, session)}), 200


@app.post("/sessions/<session_id>/retry")
def retry(session_id: str) -> Any:
    session = _get_session(session_id)
    if session is None:
        return _not_found(session_id)
    session.retry()
    return jsonify({"data": _session_payload(session_id, session)}), 200


@app.post("/sessions/<session_id>/location")
def set_location(session_id: str) -> Any:
    """JSON {"lat", "lng", optional "radius"} sets a manual anchor; an empty body asks for the live position."""
    session = _get_session(session_id)
    if session is None:
        return _not_found(session_id)

    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    if "lat" not in payload and "lng" not in payload:
        session.use_current_location()
        return jsonify({"data": _session_payload(session_id, session)}), 200

    try:
        lat = float(payload["lat"])
        lng = float(payload["lng"])
        radius = float(payload["radius"]) if payload.get("radius") is not None else None
    except (KeyError, TypeError, ValueError):
        return jsonify({"error": "lat and lng must both be numeric"}), 400

    try:
        session.set_manual_location(lat, lng, radius)
    except InvalidFilterState as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify({"data": _session_payload(session_id, session)}), 200


def main() -> None:
    port = get_settings().server_port
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port, threaded=True)


if __name__ == "__main__":
    main()

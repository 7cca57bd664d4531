"""Utilities for turning store API payloads into StoreSummary rows and pagination."""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from refill_search.core.errors import ServerError
from refill_search.models import Pagination, StoreSummary

logger = logging.getLogger(__name__)

_PAGE_KEYS = ("page", "currentPage", "current_page")
_HAS_MORE_KEYS = ("hasMore", "has_more", "hasNextPage", "has_next_page")
_TOTAL_KEYS = ("total", "totalCount", "total_count", "count")


def _first_present(mapping: Dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if mapping.get(key) is not None:
            return mapping[key]
    return None


def _safe_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().lower().removesuffix("km").strip()
        if not value:
            return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _safe_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _clean_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (bool, dict, list, tuple)):
        return None
    text = str(value).strip()
    return text or None


def _safe_bool(value: Any) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "1", "yes"):
            return True
        if text in ("false", "0", "no", ""):
            return False
        return None
    if isinstance(value, (int, float)):
        return bool(value)
    return None


def _category_names(raw: Any) -> Tuple[str, ...]:
    """Categories arrive as plain labels, a comma-joined string, or joined {category: {name}} rows."""
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, (list, tuple)):
        return ()
    names: List[str] = []
    for item in raw:
        if isinstance(item, dict):
            nested = item.get("category") or item.get("categories") or item
            item = nested.get("name") if isinstance(nested, dict) else None
        name = _clean_text(item)
        if name:
            names.append(name)
    return tuple(names)


def _thumbnail(raw: Dict[str, Any]) -> Optional[str]:
    for key in ("thumbnailUrl", "thumbnail_url", "thumbnail"):
        if raw.get(key):
            return str(raw[key])
    images = raw.get("imageUrls") or raw.get("image_urls") or []
    if isinstance(images, list) and images:
        return str(images[0])
    return None


def to_store_summary(raw: Dict[str, Any]) -> Optional[StoreSummary]:
    """Build a StoreSummary from either the formatted API shape or a raw database row."""
    name = _clean_text(raw.get("name"))
    store_id = raw.get("id")
    if store_id is None or not name:
        logger.debug("Skipping store row without id or name: %s", str(raw)[:200])
        return None

    rating = raw.get("rating") if isinstance(raw.get("rating"), dict) else {}
    naver = _safe_float(rating.get("naver", raw.get("naver_rating"))) or 0.0
    kakao = _safe_float(rating.get("kakao", raw.get("kakao_rating"))) or 0.0

    position = raw.get("position") if isinstance(raw.get("position"), dict) else {}
    latitude = _safe_float(position.get("lat", raw.get("position_lat")))
    longitude = _safe_float(position.get("lng", raw.get("position_lng")))

    return StoreSummary(
        id=store_id,
        name=name,
        address=_clean_text(raw.get("address")),
        categories=_category_names(raw.get("categories")),
        naver_rating=naver,
        kakao_rating=kakao,
        distance_km=_safe_float(raw.get("distance")),
        thumbnail_url=_thumbnail(raw),
        latitude=latitude,
        longitude=longitude,
        raw_snapshot=raw,
    )


def _envelope_error(payload: Dict[str, Any]) -> Optional[str]:
    error = payload.get("error")
    if error:
        if isinstance(error, dict):
            return error.get("message") or error.get("code") or "store API reported an error"
        return str(error)
    if payload.get("success") is False:
        return payload.get("message") or "store API reported success=false"
    return None


def _extract_rows(payload: Dict[str, Any]) -> Any:
    for key in ("data", "stores", "results", "items"):
        rows = payload.get(key)
        if isinstance(rows, list):
            return rows
        if isinstance(rows, dict):
            nested = _extract_rows(rows)
            if nested is not None:
                return nested
    return None


def normalize_pagination(raw: Any, requested_page: int) -> Pagination:
    """Map whatever pagination metadata the backend sent onto Pagination.

    Missing `hasMore` means the server did not promise another page, so it is False.
    """
    if not isinstance(raw, dict):
        return Pagination(page=requested_page, has_more=False, total=None)

    page = _safe_int(_first_present(raw, _PAGE_KEYS)) or requested_page
    has_more = _safe_bool(_first_present(raw, _HAS_MORE_KEYS))
    total = _safe_int(_first_present(raw, _TOTAL_KEYS))
    if has_more is None:
        total_pages = _safe_int(raw.get("totalPages") or raw.get("total_pages"))
        has_more = total_pages is not None and page < total_pages
    return Pagination(page=page, has_more=has_more, total=total)


def normalize_response(payload: Any, requested_page: int = 1) -> Tuple[List[StoreSummary], Pagination]:
    """Turn any store API response shape into (items, pagination).

    Raises ServerError when the envelope itself reports failure or cannot be read.
    """
    if isinstance(payload, list):
        rows, raw_pagination = payload, None
    elif isinstance(payload, dict):
        message = _envelope_error(payload)
        if message:
            raise ServerError(message)
        rows = _extract_rows(payload)
        if rows is None:
            raise ServerError(f"store API response has no store list; keys={list(payload.keys())[:10]}")
        raw_pagination = payload.get("pagination") or payload.get("meta")
    else:
        raise ServerError(f"unexpected store API payload type: {type(payload).__name__}")

    items: List[StoreSummary] = []
    for raw in rows:
        if not isinstance(raw, dict):
            continue
        try:
            summary = to_store_summary(raw)
        except (TypeError, AttributeError, ValueError) as exc:
            logger.warning("Skipping unreadable store row id=%r: %s", raw.get("id"), exc)
            continue
        if summary is not None:
            items.append(summary)

    pagination = normalize_pagination(raw_pagination, requested_page)
    if pagination.total is None and raw_pagination is None:
        pagination = Pagination(page=pagination.page, has_more=False, total=len(items))
    return items, pagination

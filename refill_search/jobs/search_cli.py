"""CLI job to search refill stores and print the accumulated results."""

import argparse
import json
import logging
import sys
from dataclasses import replace
from typing import Any, Dict, List, Optional

from refill_search.core.config import get_settings
from refill_search.core.errors import ConfigError, InvalidFilterState
from refill_search.search.filters import apply_to_url, parse_filter_params, url_params
from refill_search.search.session import SearchSession, store_to_dict

logger = logging.getLogger(__name__)


def run_search_job(
    *,
    url: str = "/",
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    distance: Optional[float] = None,
    rating: Optional[float] = None,
    categories: Optional[List[str]] = None,
    query: Optional[str] = None,
    sort: Optional[str] = None,
    pages: int = 1,
    use_location: bool = False,
    session: Optional[SearchSession] = None,
) -> SearchSession:
    """Run one search session: initial load, optional overrides, then up to `pages` pages."""
    if pages < 1:
        raise ValueError("pages must be at least 1")
    if (latitude is None) != (longitude is None):
        raise InvalidFilterState("--lat and --lng must be given together")

    overrides: Dict[str, Any] = {}
    if latitude is not None:
        overrides["latitude"] = latitude
        overrides["longitude"] = longitude
    if distance is not None:
        overrides["max_distance_km"] = distance
    if rating is not None:
        overrides["min_rating"] = rating
    if categories:
        overrides["categories"] = frozenset(categories)
    if query is not None:
        overrides["query"] = query
    if sort is not None:
        overrides["sort"] = sort
    if overrides:
        url = apply_to_url(url, replace(parse_filter_params(url_params(url)), **overrides).validate())

    session = session or SearchSession(get_settings(), url=url)
    session.initialize(url)
    if use_location:
        session.use_current_location()

    snapshot = session.snapshot()
    while snapshot.page.current_page < pages and snapshot.page.has_more and snapshot.error is None:
        before = len(snapshot.page.accumulated)
        snapshot = session.load_more()
        if len(snapshot.page.accumulated) == before and snapshot.page.has_more:
            logger.warning("Stopping after page %s; the next page could not be loaded", snapshot.page.current_page)
            break

    logger.info(
        "Completed search: pages_loaded=%d stores=%d url=%s",
        snapshot.page.current_page,
        len(snapshot.page.accumulated),
        snapshot.url,
    )
    return session


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Search all-you-can-eat refill stores")
    parser.add_argument("--url", default="/", help="Search page URL whose query string seeds the filters")
    parser.add_argument("--lat", dest="latitude", type=float, help="Anchor latitude")
    parser.add_argument("--lng", dest="longitude", type=float, help="Anchor longitude")
    parser.add_argument("--distance", type=float, help="Maximum distance from the anchor in km")
    parser.add_argument("--rating", type=float, help="Minimum rating (0-5)")
    parser.add_argument(
        "--category", dest="categories", action="append", help="Category label; repeat for several"
    )
    parser.add_argument("--query", help="Free text matched against store name and address")
    parser.add_argument("--sort", choices=("default", "rating", "distance"), help="Result order")
    parser.add_argument("--pages", type=int, default=1, help="Number of result pages to load")
    parser.add_argument(
        "--use-location", action="store_true", help="Anchor the search on the live position"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args(argv)

    try:
        session = run_search_job(
            url=args.url,
            latitude=args.latitude,
            longitude=args.longitude,
            distance=args.distance,
            rating=args.rating,
            categories=args.categories,
            query=args.query,
            sort=args.sort,
            pages=args.pages,
            use_location=args.use_location,
        )
    except (ConfigError, InvalidFilterState, ValueError) as exc:
        logger.error("Invalid search request: %s", exc)
        return 2

    snapshot = session.snapshot()
    for notice in snapshot.notices:
        logger.info("Notice: %s", notice)
    if snapshot.error:
        logger.error("Search failed: %s", snapshot.error)
        return 1

    for store in snapshot.page.accumulated:
        sys.stdout.write(json.dumps(store_to_dict(store), ensure_ascii=False) + "\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

"""
Command line entry point: browse listings through the full client pipeline
and export what was loaded.
"""
import argparse
import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

import httpx

from .client import ListingClient
from .config import settings
from .errors import InstallError, PropviewError
from .export import save_listings
from .maps import MapsLoader
from .models import FEATURE_FLAGS, GeoPoint, SortKey
from .offline import ServiceWorker, ServiceWorkerRegistration
from .session import BrowseSession
from .storage import CacheStorage
from .utils import init_logger, now_iso

logger = logging.getLogger("propview")


def build_filters(args: argparse.Namespace) -> Dict[str, Any]:
    """Filter set from parsed arguments; unset options are left out."""
    filters: Dict[str, Any] = {}
    if args.search:
        filters["search"] = args.search
    if args.keyword:
        filters["keyword"] = args.keyword
    if args.type:
        filters["propertyType"] = list(args.type)
    for name in ("status", "city"):
        value = getattr(args, name)
        if value:
            filters[name] = value
    for name, attr in (("minPrice", "min_price"), ("maxPrice", "max_price"),
                       ("bedrooms", "bedrooms"), ("bathrooms", "bathrooms")):
        value = getattr(args, attr)
        if value is not None:
            filters[name] = value
    for flag in args.feature or []:
        filters[flag] = True
    if args.near:
        lat, lon = parse_point(args.near)
        filters["location"] = GeoPoint(latitude=lat, longitude=lon, radius_km=args.radius_km)
    return filters


def parse_point(text: str):
    try:
        lat_s, lon_s = text.split(",", 1)
        return float(lat_s), float(lon_s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"--near expects LAT,LON, got {text!r}") from None


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Browse property listings with debounced filters, paging and an offline cache")
    ap.add_argument("--base-url", default=settings.BASE_URL, help="Listing service URL")
    ap.add_argument("--search", default="", help="Free text matched against title, address and city")
    ap.add_argument("--keyword", default="", help="Free text matched against title and description")
    ap.add_argument("--type", action="append", help="Property type (repeatable), e.g. house, apartment")
    ap.add_argument("--status", default="", help="Listing status, e.g. for_sale, for_rent")
    ap.add_argument("--city", default="", help="City (partial match)")
    ap.add_argument("--min-price", type=float, default=None, help="Minimum price")
    ap.add_argument("--max-price", type=float, default=None, help="Maximum price")
    ap.add_argument("--bedrooms", type=int, default=None, help="Minimum bedrooms")
    ap.add_argument("--bathrooms", type=int, default=None, help="Minimum bathrooms")
    ap.add_argument("--feature", action="append", choices=FEATURE_FLAGS, help="Required feature (repeatable)")
    ap.add_argument("--near", default="", help="Search centre as LAT,LON")
    ap.add_argument("--radius-km", type=float, default=50.0, help="Radius around --near in km")
    ap.add_argument("--sort", choices=[k.value for k in SortKey], default=SortKey.NEWEST.value, help="Sort order")
    ap.add_argument("--pages", type=int, default=1, help="How many pages to load")
    ap.add_argument("--page-size", type=int, default=settings.PAGE_SIZE, help="Items per page")
    ap.add_argument("--cache-db", default=settings.CACHE_DB, help="SQLite file for the offline cache")
    ap.add_argument("--cache-version", default=settings.CACHE_VERSION, help="Offline cache generation")
    ap.add_argument("--no-offline", action="store_true", help="Skip the offline cache")
    ap.add_argument("--out", default="propview_export.csv", help="CSV/XLSX file for the loaded listings")
    ap.add_argument("--screenshot", default="", help="Also open the listing page in Chromium and save a screenshot")
    ap.add_argument("--headed", action="store_true", help="Show the browser window (with --screenshot)")
    # Logging
    lvl_choices = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    ap.add_argument("--log-level", choices=lvl_choices, default=None,
                    help="Global log level for both console and file (overrides --log-console/--log-file).")
    ap.add_argument("--log-console", choices=lvl_choices, default=os.getenv("LOG_CONSOLE", "INFO"),
                    help="Console log level (default from env LOG_CONSOLE or INFO).")
    ap.add_argument("--log-file", choices=lvl_choices, default=os.getenv("LOG_FILE", "DEBUG"),
                    help="File log level (default from env LOG_FILE or DEBUG).")
    ap.add_argument("--log-file-path", default=os.getenv("LOG_FILE_PATH", "propview.log"),
                    help="Path to log file (default from env LOG_FILE_PATH or propview.log).")
    ap.add_argument("--no-file-log", action="store_true",
                    help="Disable file logging (only console output).")
    return ap.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    filters = build_filters(args)
    network = httpx.AsyncHTTPTransport(retries=1)
    registration = ServiceWorkerRegistration(network)
    storage = None
    worker = None

    if not args.no_offline:
        storage = CacheStorage(args.cache_db)
        worker = ServiceWorker(storage, network, version=args.cache_version,
                               prefix=settings.CACHE_PREFIX, origin=args.base_url)
        try:
            await registration.register(worker)
        except InstallError as exc:
            logger.warning(f">>> Offline cache unavailable, continuing online only: {exc}")
            worker = None

    client = ListingClient(args.base_url, transport=registration)
    session = BrowseSession(client, filters=filters, sort=args.sort, page_size=args.page_size)
    exit_code = 0
    try:
        if worker is not None:
            try:
                config = await MapsLoader(client).load()
                worker.configure_maps(config)
            except PropviewError as exc:
                logger.warning(f">>> Maps configuration unavailable: {exc}")

        await session.start()
        loaded = await session.load_pages(args.pages)
        if session.is_error:
            logger.error(f">>> Loading stopped after {loaded} pages: {session.controller.error}")
            if not session.accumulated_items:
                exit_code = 1
        items = session.accumulated_items
        logger.info(f">>> Loaded {len(items)} listings in {loaded} pages (more available: {session.has_next_page})")
        save_listings(items, args.out)

        if args.screenshot:
            if worker is None:
                logger.warning(">>> --screenshot needs the offline cache, skipping")
            else:
                from .webview import open_listing_page
                title = await open_listing_page(args.base_url, worker, screenshot=args.screenshot,
                                                headless=not args.headed)
                logger.info(f">>> Rendered page: {title}")
    finally:
        await session.close()
        await client.aclose()
        if storage is not None:
            storage.close()

    return exit_code


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    settings.validate()
    eff_console = args.log_level or args.log_console
    eff_file = args.log_level or args.log_file
    init_logger(
        console_level=eff_console,
        file_level=eff_file,
        log_file=None if args.no_file_log else args.log_file_path
    )
    logger.info(
        f"Logger initialized: console={eff_console}, "
        f"file={'DISABLED' if args.no_file_log else eff_file}, "
        f"path={'N/A' if args.no_file_log else args.log_file_path}"
    )
    logger.info(f">>> Run started at {now_iso()}")
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())

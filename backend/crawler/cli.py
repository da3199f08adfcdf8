#!/usr/bin/env python3
"""
Run a crawl from the command line.

Usage:
    cd backend
    python -m crawler.cli [options]

Examples:
    python -m crawler.cli                          # Default profile, save to the database
    python -m crawler.cli --profile dev --no-db --csv listings.csv
    python -m crawler.cli --url https://www.airbnb.com/ --workers 4 --headful

Exit codes: 0 success, 1 crawl or save failure, 130 cancelled.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from api.config import settings as default_settings, configure_logging
from .base import Colors, CrawlCancelledError, CrawlError
from .config import PROFILES, config_from_settings, get_site_profile, list_sites
from .service import CrawlService
from .storage import CsvSink, MultiSink, ResultSink, SQLAlchemySink

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Crawl listings from a platform')
    parser.add_argument('--url', type=str, help="Landing page URL (defaults to the site's)")
    parser.add_argument('--profile', choices=sorted(PROFILES), help='Timing/concurrency preset')
    parser.add_argument('--site', choices=list_sites(), help='Target platform')
    parser.add_argument('--csv', type=str, metavar='PATH', help='Also write results to a CSV file')
    parser.add_argument('--no-db', action='store_true', help='Do not save to the database')
    parser.add_argument('--workers', type=int, help='Detail-page workers')
    parser.add_argument('--seed-workers', type=int, help='Seeds crawled concurrently')
    parser.add_argument('--timeout', type=float, metavar='SECONDS', help='Abort the whole run after this long')
    parser.add_argument('--headful', action='store_true', help='Show the browser window')
    parser.add_argument('--log-level', type=str, help='DEBUG, INFO, WARNING or ERROR')
    return parser


def settings_from_args(args: argparse.Namespace, base=default_settings):
    """Overlay command-line options on the environment settings."""
    overrides = {}
    if args.profile:
        overrides['crawl_profile'] = args.profile
    if args.site:
        overrides['site'] = args.site
    if args.csv:
        overrides['csv_path'] = args.csv
    if args.workers is not None:
        overrides['product_workers'] = args.workers
    if args.seed_workers is not None:
        overrides['seed_workers'] = args.seed_workers
    if args.timeout is not None:
        overrides['run_timeout'] = args.timeout
    if args.headful:
        overrides['headless'] = False
    if args.log_level:
        overrides['log_level'] = args.log_level
    return base.model_copy(update=overrides)


def build_sink(settings, use_db: bool = True) -> Optional[ResultSink]:
    """Database sink unless disabled, plus a CSV sink when a path is set."""
    sinks: List[ResultSink] = []
    if use_db:
        from api.database import SessionLocal, init_db
        init_db()
        sinks.append(SQLAlchemySink(SessionLocal))
    if settings.csv_path:
        sinks.append(CsvSink(settings.csv_path))
    if not sinks:
        return None
    return sinks[0] if len(sinks) == 1 else MultiSink(sinks)


async def run_crawl(service: CrawlService, url: Optional[str]) -> int:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, service.abort)
        loop.add_signal_handler(signal.SIGTERM, service.abort)
    except NotImplementedError:
        pass  # Windows: KeyboardInterrupt still applies

    try:
        records = await service.run(url)
    except CrawlCancelledError as e:
        logger.warning(f"{Colors.yellow('[CANCELLED]')} {e}")
        return EXIT_CANCELLED
    except CrawlError as e:
        logger.error(f"{Colors.red('[FAILED]')} {e}")
        return EXIT_FAILED

    logger.info(f"{Colors.green('[DONE]')} {len(records)} listings")
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings_from_args(args)
    configure_logging(settings)

    try:
        config = config_from_settings(settings)
        site = get_site_profile(settings.site)
    except ValueError as e:
        logger.error(str(e))
        return EXIT_FAILED

    service = CrawlService(config, site, build_sink(settings, use_db=not args.no_db))
    try:
        return asyncio.run(run_crawl(service, args.url))
    except KeyboardInterrupt:
        return EXIT_CANCELLED


if __name__ == '__main__':
    sys.exit(main())

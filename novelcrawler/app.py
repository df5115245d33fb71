import argparse
import functools
import sys
import time
from typing import Callable, List, Optional

from . import __version__
from .config import CrawlerConfig
from .errors import ConfigError, CrawlerError
from .fetcher import Fetcher
from .job import JobRunner, build_job_runner
from .library import sync_library
from .logger import get_logger
from .models import JobOutcome, JobRequest, ListingItem
from .normalize import slug_from_url
from .pool import WorkerPool
from .scrapers.freewebnovel import FreeWebNovelSource
from .storage import load_listing_cache, pending_items, save_listing_cache

logger = get_logger()

RULE = "=" * 50


def make_source(config: CrawlerConfig) -> FreeWebNovelSource:
    fetcher = Fetcher(
        retries=config.fetch_retries,
        retry_delay=config.fetch_retry_delay,
        timeout=config.fetch_timeout,
    )
    return FreeWebNovelSource(fetcher, base_url=config.base_url)


def crawl_listing(source, pages: int, delay: float,
                  sleep: Callable[[float], None] = time.sleep) -> List[ListingItem]:
    """Fetch listing pages 1..pages, pausing `delay` seconds between pages."""
    items: List[ListingItem] = []
    for page in range(1, pages + 1):
        novels = source.fetch_listing(page)
        items.extend(novels)
        logger.info(f"Page {page}/{pages}: {len(novels)} novels")
        if page < pages:
            sleep(delay)
    return items


def load_or_crawl_listing(config: CrawlerConfig, source,
                          sleep: Callable[[float], None] = time.sleep) -> List[ListingItem]:
    cache_path = config.listing_cache_path
    cached = None if config.refresh else load_listing_cache(cache_path)
    if cached:
        logger.info(f"Using cached novel list ({len(cached)} novels). Use --refresh to re-crawl.")
        return cached

    logger.info(f"Crawling {config.pages} listing page(s)...")
    items = crawl_listing(source, config.pages, config.delay, sleep=sleep)
    save_listing_cache(cache_path, items)
    logger.info(f"Cached {len(items)} novels to {cache_path}")
    return items


def run_crawl(
    config: CrawlerConfig,
    source=None,
    runner_factory: Optional[Callable[[], JobRunner]] = None,
    sync: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> dict:
    """
    List novels, download the missing ones with a worker pool, optionally sync the library.

    Returns a summary dict of counts.
    """
    source = source or make_source(config)
    runner_factory = runner_factory or functools.partial(build_job_runner, config)

    novels = load_or_crawl_listing(config, source, sleep=sleep)
    summary = {"discovered": len(novels), "pre_existing": 0, "succeeded": 0, "skipped": 0, "failed": 0}
    if not novels:
        logger.info("No novels found.")
        return summary

    to_download = pending_items(novels, config.output_dir)
    summary["pre_existing"] = len(novels) - len(to_download)
    logger.info(f"{len(to_download)} novels to download ({summary['pre_existing']} already exist).")

    if to_download:
        pool = WorkerPool(config.workers, runner_factory, start_timeout=config.worker_start_timeout)
        pool.start()
        try:
            pool.enqueue(to_download)
            pool.wait_until_done()
        finally:
            pool.shutdown()
        summary.update(succeeded=pool.stats.succeeded, skipped=pool.stats.skipped, failed=pool.stats.failed)

    if sync:
        sync_library(config.output_dir, config.library_dir, config.database_path)
    return summary


def print_summary(summary: dict) -> None:
    pre = summary["pre_existing"]
    print(RULE)
    print("  Crawl Complete!")
    print(f"  Succeeded:        {summary['succeeded']}")
    print(f"  Skipped:          {summary['skipped'] + pre} ({pre} pre-existing)")
    print(f"  Failed:           {summary['failed']}")
    print(f"  Total discovered: {summary['discovered']}")
    print(RULE)


def print_novel_table(novels: List[ListingItem]) -> None:
    print("-" * 90)
    print(f"{'Slug':<35}{'Title':<35}{'Chapters':<10}Genres")
    print("-" * 90)
    for novel in novels:
        print(
            f"{novel.id[:34]:<35}{novel.title[:34]:<35}"
            f"{novel.chapter_count:<10}{', '.join(novel.genres[:3])}"
        )
    print("-" * 90)
    print(f"Total: {len(novels)} novels found.")


def config_from_args(args: argparse.Namespace) -> CrawlerConfig:
    delay_ms = getattr(args, "delay", None)
    return CrawlerConfig.from_env().with_overrides(
        pages=getattr(args, "pages", None),
        workers=getattr(args, "workers", None),
        concurrency=getattr(args, "concurrency", None),
        delay=delay_ms / 1000.0 if delay_ms is not None else None,
        max_chapters=getattr(args, "max_chapters", None),
        refresh=True if getattr(args, "refresh", False) else None,
        output_dir=getattr(args, "output", None),
        library_dir=getattr(args, "library", None),
        log_level=getattr(args, "log_level", None),
    ).ensure_valid()


def cmd_list(args: argparse.Namespace, config: CrawlerConfig) -> None:
    novels = crawl_listing(make_source(config), config.pages, config.delay)
    if not novels:
        print("No novels found.")
        return
    print_novel_table(novels)


def cmd_download(args: argparse.Namespace, config: CrawlerConfig) -> None:
    slug = args.novel
    if not slug and args.url:
        slug = slug_from_url(args.url)
        if not slug:
            raise SystemExit(f"Invalid URL: {args.url}\nExpected format: {config.base_url}/novel/<slug>")
    if not slug:
        raise SystemExit("Provide --novel <slug> or --url <novel url>.")

    def progress(completed: int, total: int, title: str) -> None:
        if completed % 20 == 0 or completed == total:
            logger.info(f"{title}: {completed}/{total} chapters")

    result = build_job_runner(config)(JobRequest(id=slug), progress)
    if result.outcome is JobOutcome.SUCCESS:
        failed = f" ({result.failed_fragments} chapters failed)" if result.failed_fragments else ""
        print(f"Saved: {result.output_path} - {result.total_fragments} chapters{failed}")
        return
    print(f"{result.outcome.value}: {result.error}")
    raise SystemExit(1)


def cmd_crawl(args: argparse.Namespace, config: CrawlerConfig) -> None:
    print(RULE)
    print("  Worker-Based Novel Crawler")
    print(f"  Workers: {config.workers}  |  Pages: {config.pages}  |  Concurrency: {config.concurrency}/worker")
    print(RULE)
    summary = run_crawl(config, sync=args.sync)
    print_summary(summary)
    logger.log_metrics_summary()


def cmd_sync_library(args: argparse.Namespace, config: CrawlerConfig) -> None:
    entries = sync_library(config.output_dir, config.library_dir, config.database_path)
    print(f"Library: {len(entries)} bundles in {config.library_dir}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="novelcrawler", description="Download completed novels as EPUB bundles")
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR or CRITICAL")

    subparsers = parser.add_subparsers(dest="command")

    lst = subparsers.add_parser("list", help="List completed novels from the listing pages")
    lst.add_argument("--pages", "-p", type=int, help="Listing pages to fetch (~20 novels/page)")
    lst.add_argument("--delay", "-d", type=int, help="Delay between requests in ms (default: 1000)")
    lst.set_defaults(func=cmd_list)

    dl = subparsers.add_parser("download", help="Download a single novel and build its EPUB")
    target = dl.add_mutually_exclusive_group(required=True)
    target.add_argument("--novel", "-n", help="Novel slug (e.g. omegas-rebirth)")
    target.add_argument("--url", "-u", help="Full novel URL (https://freewebnovel.com/novel/<slug>)")
    dl.add_argument("--delay", "-d", type=int, help="Delay between requests in ms (default: 1000)")
    dl.add_argument("--concurrency", "-c", type=int, help="Parallel chapter downloads (default: 3)")
    dl.add_argument("--output", "-o", help="Output directory (default: output)")
    dl.set_defaults(func=cmd_download)

    crawl = subparsers.add_parser("crawl", help="Crawl listings and download novels with a worker pool")
    crawl.add_argument("--pages", "-p", type=int, help="Listing pages to crawl (default: 1)")
    crawl.add_argument("--workers", "-w", type=int, help="Parallel worker threads (default: 4)")
    crawl.add_argument("--delay", "-d", type=int, help="Delay between requests per worker in ms (default: 1000)")
    crawl.add_argument("--concurrency", "-c", type=int, help="Parallel chapter downloads per worker (default: 3)")
    crawl.add_argument("--max-chapters", "-m", type=int, help="Skip novels exceeding N chapters (default: 2000)")
    crawl.add_argument("--refresh", "-r", action="store_true", help="Force re-crawl of listing pages (ignore cache)")
    crawl.add_argument("--output", "-o", help="Output directory (default: output)")
    crawl.add_argument("--sync", action="store_true", help="Sync finished EPUBs to the library afterwards")
    crawl.add_argument("--library", help="Library directory (default: docs/epubs)")
    crawl.set_defaults(func=cmd_crawl)

    sync = subparsers.add_parser("sync-library", help="Copy EPUBs into the library and rewrite manifest.json")
    sync.add_argument("--output", "-o", help="Directory containing EPUBs (default: output)")
    sync.add_argument("--library", help="Library directory (default: docs/epubs)")
    sync.set_defaults(func=cmd_sync_library)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    if not hasattr(args, "func"):
        parser.print_help()
        return

    try:
        config = config_from_args(args)
    except ConfigError as e:
        raise SystemExit(f"Invalid configuration: {e}")

    logger.configure(level=config.log_level, log_dir=config.log_dir, enable_file=config.log_to_file)

    try:
        args.func(args, config)
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        raise SystemExit(130)
    except CrawlerError as e:
        logger.critical(f"Fatal error: {e}", error_type=type(e).__name__)
        raise SystemExit(1)
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main(sys.argv[1:])

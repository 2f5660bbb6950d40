"""Command-line interface for scraping supplier catalogs and syncing them to
the catalog API.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from catalog_sync.config import DB_PATH, INITIAL_IMAGE_COUNT, OUTPUT_DIR, PRODUCT_BATCH_SIZE
from catalog_sync.export import load_products, save_products_csv, save_products_json, timestamped_path
from catalog_sync.logging_config import get_logger, setup_logging
from catalog_sync.models import BatchSummary, ProductRecord
from catalog_sync.sites import SITES, get_site

__all__ = ["main", "parse_args", "show_stats", "print_summary"]

logger = get_logger("cli")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Supplier catalog scraper and catalog API uploader",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List configured supplier sites
  python -m catalog_sync.cli --list-sites

  # Scrape Spot Gifts and save the products locally
  python -m catalog_sync.cli --scrape spotgifts

  # Scrape the first 20 XBZ products and upload them right away
  python -m catalog_sync.cli --scrape xbzbrindes --limit 20 --upload

  # Upload a previously exported product file, one product per batch
  python -m catalog_sync.cli --upload-file output/spot_gifts_20250101_120000.json --batch-size 1

  # Check API credentials and connectivity
  python -m catalog_sync.cli --test-connection

  # Show upload history
  python -m catalog_sync.cli --stats
        """,
    )

    # Actions
    parser.add_argument(
        "--list-sites",
        action="store_true",
        help="List configured supplier sites and exit",
    )
    parser.add_argument(
        "--scrape",
        metavar="SITE",
        choices=list(SITES.keys()),
        help=f"Scrape a supplier catalog. Choices: {list(SITES.keys())}",
    )
    parser.add_argument(
        "--upload",
        action="store_true",
        help="Upload scraped products to the API (use with --scrape)",
    )
    parser.add_argument(
        "--upload-file",
        metavar="PATH",
        help="Upload products from an exported JSON file",
    )
    parser.add_argument(
        "--test-connection",
        action="store_true",
        help="Authenticate and query the statistics endpoint, then exit",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Show upload history statistics and exit",
    )

    # Upload pacing
    parser.add_argument(
        "--batch-size",
        type=int,
        default=PRODUCT_BATCH_SIZE,
        help=f"Products per upload batch (default: {PRODUCT_BATCH_SIZE})",
    )
    parser.add_argument(
        "--initial-images",
        type=int,
        default=INITIAL_IMAGE_COUNT,
        help=f"Images sent with the create/update request; the rest follow in "
             f"deferred batches (default: {INITIAL_IMAGE_COUNT})",
    )

    # Scraping options
    parser.add_argument(
        "--limit",
        type=int,
        help="Only scrape the first N products of the catalog",
    )
    parser.add_argument(
        "--show-browser",
        action="store_true",
        help="Run the browser with a visible window",
    )

    # Output
    parser.add_argument(
        "--export-csv",
        metavar="PATH",
        help="Also write the scraped or loaded products to a CSV file",
    )
    parser.add_argument(
        "--output-dir",
        default=OUTPUT_DIR,
        help=f"Directory for exported files (default: {OUTPUT_DIR})",
    )
    parser.add_argument(
        "--db",
        default=DB_PATH,
        help=f"SQLite database path (default: {DB_PATH})",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show debug output on the console",
    )

    args = parser.parse_args(argv)
    if args.upload and not args.scrape:
        parser.error("--upload requires --scrape")
    if args.batch_size < 1:
        parser.error("--batch-size must be at least 1")
    if args.initial_images < 1:
        parser.error("--initial-images must be at least 1")
    return args


def list_sites() -> None:
    print("Available sites:")
    for key, site in SITES.items():
        print(f"  {key}: {site.name} ({site.reference_prefix}) - {site.catalog_url}")


def show_stats(db_path: str) -> None:
    """Display upload history statistics."""
    from catalog_sync.db import get_sync_stats, init_db

    init_db(db_path)
    stats = get_sync_stats(db_path)

    print(f"\n{'='*50}")
    print(f"Database: {db_path}")
    print(f"{'='*50}")
    print(f"\nRuns: {stats['runs']}")
    print(f"Products processed: {stats['total']}")
    print(f"Uploaded: {stats['success']}")
    print(f"Errors: {stats['errors']}")
    print(f"Skipped: {stats['skipped']}")
    print(f"Success rate: {stats['success_rate']}%")
    print(f"Last sync: {stats['last_sync'] or 'never'}")

    if stats["products_by_status"]:
        print("\nCurrent product state:")
        for status, count in sorted(stats["products_by_status"].items()):
            print(f"  {status}: {count}")
    print()


def print_summary(summary: BatchSummary) -> None:
    print(f"\n{'='*50}")
    print(f"Uploaded: {summary.success}/{summary.total}  "
          f"Errors: {summary.errors}  Skipped: {summary.skipped}")
    for outcome in summary.details:
        if outcome.success:
            continue
        detail = outcome.reason.value if outcome.reason else outcome.error
        print(f"  {outcome.reference}: {outcome.status.value} ({detail})")
    deferred = summary.deferred_results
    if deferred:
        sent = sum(r.processed for r in deferred)
        failed = sum(r.errors for r in deferred)
        print(f"Deferred images: {sent} sent, {failed} failed")
    print(f"{'='*50}\n")


def _scrape(args: argparse.Namespace) -> List[ProductRecord]:
    from catalog_sync.browser import PlaywrightBrowser
    from catalog_sync.scraper import scrape_site

    site = get_site(args.scrape)
    with PlaywrightBrowser(headless=not args.show_browser) as browser:
        result = scrape_site(site, browser, limit=args.limit)

    print(f"{site.name}: {result.valid} valid, {result.invalid} invalid, {result.errors} errors "
          f"({result.links_found} product pages)")
    if result.products:
        path = save_products_json(
            result.products,
            timestamped_path(args.output_dir, site.name, ".json"),
            site=site.name,
        )
        print(f"Saved to {path}")
    return result.products


def _sync(args: argparse.Namespace):
    from catalog_sync.sync import SyncError, SyncManager

    manager = SyncManager(
        db_path=args.db,
        output_dir=args.output_dir,
        batch_size=args.batch_size,
        initial_image_count=args.initial_images,
    )
    try:
        manager.initialize()
    except SyncError as e:
        logger.error(str(e))
        return None
    return manager


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI. Returns the process exit code."""
    args = parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    if args.list_sites:
        list_sites()
        return 0

    if args.stats:
        show_stats(args.db)
        return 0

    if args.test_connection:
        from catalog_sync.api_client import ApiClient

        result = ApiClient().test_connection()
        if result["success"]:
            print(f"Connected. Token {result['token']} valid until {result['expires']}")
            return 0
        print(f"Connection failed: {result['error']}")
        return 1

    products: List[ProductRecord] = []
    source = ""
    if args.scrape:
        products = _scrape(args)
        source = args.scrape
    elif args.upload_file:
        products = load_products(args.upload_file)
        source = Path(args.upload_file).stem
    else:
        print("Nothing to do. Use --scrape, --upload-file, --test-connection or --stats (see --help).")
        return 2

    if args.export_csv:
        save_products_csv(products, args.export_csv)
        print(f"Exported {len(products)} products to {args.export_csv}")

    if args.scrape and not args.upload:
        return 0

    if not products:
        print("No products to upload")
        return 0

    manager = _sync(args)
    if manager is None:
        return 1
    summary = manager.sync_products(products, source=source)
    print_summary(summary)
    return 0 if summary.errors == 0 else 1


if __name__ == "__main__":
    sys.exit(main())

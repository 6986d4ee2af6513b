#!/usr/bin/env python3
"""
Redfin Scrape Command Line Tool

Runs the Redfin cascade scraper (JSON API, then HTML, then browser) for one
or more search URLs. Records are appended to a JSONL dataset and the run
summary is written to OUTPUT_SUMMARY.json in the output directory.

Exit codes: 0 success, 1 the run failed, 2 invalid input.
"""

import argparse
import asyncio
import logging
import sys
from typing import List

import shared.logger_factory as logger_factory

from crawler.redfin_cascade.browser import PlaywrightBrowserLauncher
from crawler.redfin_cascade.errors import FatalScrapeError, InvalidInputError
from crawler.redfin_cascade.http_client import RequestsHttpClient, create_proxy_provisioner
from crawler.redfin_cascade.orchestrator import RedfinCascadeScraper, RunSummary
from crawler.redfin_cascade.pipelines import JsonFileKeyValueStore, JsonlDatasetSink
from crawler.redfin_cascade.settings import ScrapeInput, load_input

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID_INPUT = 2


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Scrape Redfin search results with JSON API, HTML and browser fallbacks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scrape_tool.py --start-url "https://www.redfin.com/city/29470/IL/Chicago"
  python scrape_tool.py --input input.json --results-wanted 100 --output-dir ./output
  python scrape_tool.py --start-url "https://www.redfin.com/zipcode/98109" --no-details --use-playwright
        """
    )

    parser.add_argument(
        '--input',
        type=str,
        help='Path of a JSON run input file'
    )
    parser.add_argument(
        '--start-url',
        type=str,
        action='append',
        help='Redfin search URL, can be repeated (added to the input file start URLs)'
    )
    parser.add_argument(
        '--results-wanted',
        type=int,
        help='Number of properties to save'
    )
    parser.add_argument(
        '--max-pages',
        type=int,
        help='Maximum result pages per method'
    )
    parser.add_argument(
        '--max-concurrency',
        type=int,
        help='Maximum listings processed at the same time (1-10)'
    )
    parser.add_argument(
        '--no-details',
        action='store_true',
        help='Do not fetch the detail page of each listing'
    )
    parser.add_argument(
        '--use-playwright',
        action='store_true',
        help='Enable the headless browser fallback'
    )
    parser.add_argument(
        '--output-dir',
        type=str,
        default='output',
        help='Directory of the dataset and the run summary (default: output)'
    )
    parser.add_argument(
        '--log-dir',
        type=str,
        help='Directory of the log file (default: python/logs)'
    )
    parser.add_argument(
        '--log-level',
        type=str,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default='INFO',
        help='Log level (default: INFO)'
    )
    return parser


def resolve_input(args: argparse.Namespace) -> ScrapeInput:
    """Merge the input file (if any) with the command line flags."""
    scrape_input = load_input(args.input) if args.input else ScrapeInput()

    start_urls: List[str] = list(scrape_input.start_urls)
    for url in args.start_url or []:
        if url not in start_urls:
            start_urls.append(url)

    scrape_input = scrape_input.with_overrides(
        start_urls=start_urls,
        results_wanted=args.results_wanted,
        max_pages=args.max_pages,
        max_concurrency=args.max_concurrency,
        collect_details=False if args.no_details else None,
        use_playwright=True if args.use_playwright else None,
    )
    if not scrape_input.start_urls:
        raise InvalidInputError("Provide at least one start URL with --start-url or the input file")
    return scrape_input


async def run_scrape(scrape_input: ScrapeInput, output_dir: str) -> RunSummary:
    dataset = JsonlDatasetSink(output_dir)
    scraper = RedfinCascadeScraper(
        scrape_input,
        http_client=RequestsHttpClient(),
        dataset=dataset,
        key_value_store=JsonFileKeyValueStore(output_dir),
        browser_launcher=PlaywrightBrowserLauncher() if scrape_input.use_playwright else None,
        proxy_provisioner=create_proxy_provisioner(scrape_input.proxy_configuration),
    )
    try:
        return await scraper.run()
    finally:
        dataset.close()


def main() -> None:
    """Main function for the scrape tool."""
    args = build_arg_parser().parse_args()

    logger_factory.configure_logger(
        log_file_path=args.log_dir,
        log_file_prefix="redfin_cascade",
        log_level=logger_factory.parse_log_level(args.log_level, logging.INFO),
        enable_console_logging=True,
    )
    logger = logger_factory.get_logger(__name__)

    try:
        scrape_input = resolve_input(args)
        summary = asyncio.run(run_scrape(scrape_input, args.output_dir))
    except InvalidInputError as e:
        logger.error(f"Invalid input: {e}")
        sys.exit(EXIT_INVALID_INPUT)
    except FatalScrapeError as e:
        logger.error(f"Scrape failed: {e}")
        sys.exit(EXIT_FAILED)
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user")
        sys.exit(EXIT_FAILED)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        sys.exit(EXIT_FAILED)

    logger.info(
        f"Saved {summary.properties_saved} properties in {summary.runtime_seconds}s "
        f"using {', '.join(summary.methods_used)}"
    )
    if log_file := logger_factory.get_log_file_path():
        print(f"Log file: {log_file}")
    sys.exit(EXIT_OK)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Main orchestration module for the QT proxy command-line runner.

This module coordinates a single extraction run:
fetch → decode → extract → save

It reads its settings from the environment, sets up logging, and maps
the outcome onto process exit codes.
"""

import sys
from typing import Optional

from qt_proxy.encoding import InvalidInputError
from qt_proxy.fetch import validate_date
from qt_proxy.service import (
    FragmentNotFoundError,
    UpstreamFetchError,
    get_default_version,
    get_devotional,
    today_kst,
)
from qt_proxy.utils import (
    env_flag,
    get_env_var,
    get_logger,
    load_extractor_config,
    safe_write_json,
    setup_logging,
)


# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_ENV_ERROR = 2
EXIT_NOT_FOUND = 3

DEFAULT_OUTPUT_PATH = "data/today.json"


def get_target_date() -> Optional[str]:
    """
    Get the date to extract.

    Reads QT_DATE; returns today's date in the configured timezone when
    unset, or None when QT_DATE is malformed.
    """
    logger = get_logger("main")

    value = get_env_var("QT_DATE", required=False)
    if not value:
        return today_kst()

    if not validate_date(value):
        logger.error(f"Invalid QT_DATE '{value}', expected YYYY-MM-DD")
        return None

    return value


def get_output_filepath() -> str:
    """
    Get the filepath for storing the extracted payload.

    Checks for OUTPUT_PATH environment variable,
    falls back to default path if not set.
    """
    return get_env_var("OUTPUT_PATH", required=False, default=DEFAULT_OUTPUT_PATH)


def run_pipeline(dry_run: bool = False) -> int:
    """
    Execute one extraction run.

    Pipeline stages:
    1. Validate environment
    2. Fetch, decode and extract the devotional page
    3. Save the payload

    Args:
        dry_run: If True, log the payload instead of writing it.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    logger = get_logger("main")

    logger.info("=" * 60)
    logger.info("QT Proxy - Starting")
    logger.info("=" * 60)

    # Stage 1: Validate environment
    logger.info("[Stage 1/3] Validating environment...")
    date_str = get_target_date()
    if date_str is None:
        return EXIT_ENV_ERROR

    version = get_default_version()
    config = load_extractor_config()
    logger.info(f"Target: {date_str} (version {version})")

    # Stage 2: Fetch and extract
    logger.info("[Stage 2/3] Fetching and extracting devotional...")
    try:
        payload = get_devotional(date_str, version, config=config)
    except UpstreamFetchError as e:
        logger.error(f"Fetch failed: {e} (source: {e.source_url})")
        return EXIT_FAILURE
    except FragmentNotFoundError as e:
        logger.error(f"Content not found in {e.source_url}")
        return EXIT_NOT_FOUND
    except InvalidInputError as e:
        logger.error(f"Invalid response body: {e}")
        return EXIT_FAILURE

    logger.info(f"Extracted '{payload['title']}' ({len(payload['html'])} chars, {payload['encoding']})")

    # Stage 3: Save
    logger.info("[Stage 3/3] Saving payload...")
    if dry_run:
        logger.info(f"[DRY RUN] Would write payload for {date_str}")
    else:
        output_path = get_output_filepath()
        if not safe_write_json(output_path, payload):
            logger.error(f"Could not write {output_path}")
            return EXIT_FAILURE
        logger.info(f"Wrote {output_path}")

    logger.info("=" * 60)
    logger.info("QT Proxy - Complete")
    logger.info("=" * 60)

    return EXIT_SUCCESS


def main() -> int:
    """
    Main entry point for the command-line runner.

    Sets up logging and runs the pipeline with proper error handling.

    Returns:
        Exit code for the process.
    """
    log_level = get_env_var("LOG_LEVEL", required=False, default="INFO").upper()

    setup_logging(log_level)
    logger = get_logger("main")

    dry_run = env_flag("DRY_RUN")

    if dry_run:
        logger.info("Running in DRY RUN mode - output will not be written")

    try:
        return run_pipeline(dry_run=dry_run)

    except KeyboardInterrupt:
        logger.warning("Run interrupted by user")
        return EXIT_FAILURE

    except Exception as e:
        logger.exception(f"Unexpected error in pipeline: {e}")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())

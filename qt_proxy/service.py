"""
Service module for the QT proxy.

Glue between the fetch collaborator and the core: fetch the page for a
date, resolve its encoding, extract the fragment and shape the payload
served by the API and written by the command-line runner.
"""

from datetime import datetime
from typing import Any, Dict, Optional, Tuple
from zoneinfo import ZoneInfo

import requests

from qt_proxy.encoding import ResolvedEncoding, decode_bytes
from qt_proxy.extract import ExtractionResult, absolutize_links, extract
from qt_proxy.fetch import (
    DEFAULT_BASE_URL,
    DEFAULT_VERSION,
    fetch_devotional_page,
    normalize_version,
    validate_date,
)
from qt_proxy.utils import ExtractorConfig, env_flag, get_env_var, get_logger


# Module logger
logger = get_logger("service")

DEFAULT_TIMEZONE = "Asia/Seoul"


class UpstreamFetchError(Exception):
    """Raised when the devotional page could not be fetched."""

    def __init__(self, message: str, status_code: Optional[int] = None, source_url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.source_url = source_url


class FragmentNotFoundError(Exception):
    """Raised when a fetched page holds no recognisable devotional content."""

    def __init__(self, message: str, source_url: Optional[str] = None):
        super().__init__(message)
        self.source_url = source_url


class InvalidDateError(ValueError):
    """Raised for dates not in YYYY-MM-DD form."""


def get_base_url() -> str:
    """Page URL from QT_BASE_URL, falling back to the Duranno page."""
    return get_env_var("QT_BASE_URL", required=False, default=DEFAULT_BASE_URL)


def get_default_version() -> str:
    return normalize_version(get_env_var("QT_VERSION", required=False, default=DEFAULT_VERSION))


def get_timezone() -> str:
    return get_env_var("QT_TIMEZONE", required=False, default=DEFAULT_TIMEZONE)


def today_kst(tz_name: Optional[str] = None) -> str:
    """
    Today's date in the devotional's timezone.

    Args:
        tz_name: IANA timezone name, QT_TIMEZONE or Asia/Seoul when None.

    Returns:
        Date string in YYYY-MM-DD form.
    """
    return datetime.now(ZoneInfo(tz_name or get_timezone())).strftime("%Y-%m-%d")


def process_response(
    content_type: Optional[str],
    raw_content: bytes,
    config: Optional[ExtractorConfig] = None
) -> Tuple[ExtractionResult, ResolvedEncoding]:
    """
    Run the core on one response body.

    Args:
        content_type: Declared Content-Type header.
        raw_content: Raw response body.
        config: Extractor configuration.

    Returns:
        Tuple of (ExtractionResult, encoding used to decode the body).

    Raises:
        InvalidInputError: If raw_content is not a byte buffer.
    """
    text, encoding = decode_bytes(content_type, raw_content)
    logger.debug(f"Decoded {len(raw_content)} bytes as {encoding.codec}")
    return extract(text, config), encoding


def get_devotional(
    date_str: Optional[str] = None,
    version: Optional[str] = None,
    session: Optional[requests.Session] = None,
    config: Optional[ExtractorConfig] = None,
    base_url: Optional[str] = None,
    absolutize: Optional[bool] = None
) -> Dict[str, Any]:
    """
    Fetch and extract the devotional for a date.

    Args:
        date_str: Date as YYYY-MM-DD, today in the configured timezone if None.
        version: Bible version code ("k" or "w"), QT_VERSION if None.
        session: Optional requests session to reuse.
        config: Extractor configuration.
        base_url: Page URL without query string, QT_BASE_URL if None.
        absolutize: Rewrite relative links in the fragment, QT_ABSOLUTIZE_LINKS if None.

    Returns:
        Payload dict with date, version, book, range, subtitle, title,
        html, source and encoding keys.

    Raises:
        InvalidDateError: If date_str is malformed.
        UpstreamFetchError: If no candidate URL could be fetched.
        FragmentNotFoundError: If the page held no devotional content.
    """
    if date_str is not None and not validate_date(date_str):
        raise InvalidDateError(f"invalid date '{date_str}', expected YYYY-MM-DD")

    today = today_kst()
    date_key = date_str or today
    version = normalize_version(version) if version else get_default_version()
    if absolutize is None:
        absolutize = env_flag("QT_ABSOLUTIZE_LINKS")

    result = fetch_devotional_page(
        date_key,
        version,
        session=session,
        base_url=base_url or get_base_url(),
        allow_undated=(date_key == today)
    )
    if not result.success:
        raise UpstreamFetchError(
            f"Could not fetch devotional page: {result.error_message}",
            status_code=result.status_code,
            source_url=result.source_url
        )

    extraction, encoding = process_response(result.content_type, result.raw_content, config)
    if not extraction.found:
        raise FragmentNotFoundError("bible fragment not found", source_url=result.source_url)

    fragment = extraction.fragment
    if absolutize:
        fragment = absolutize_links(fragment, result.source_url)

    payload = extraction.to_dict()
    del payload["fragment"]
    payload.update({
        "date": date_key,
        "version": version,
        "html": fragment,
        "source": result.source_url,
        "encoding": encoding.codec,
    })

    logger.info(
        f"Devotional for {date_key}/{version}: {payload['title'] or 'untitled'} "
        f"({extraction.region_method} region, {result.source_url})"
    )
    return payload

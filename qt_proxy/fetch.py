"""
Fetch module for the QT proxy.

This module fetches the daily devotional page with proper error
handling and retries. The body is kept as raw bytes together with the
declared Content-Type, since the page's charset has to be resolved
before it can be decoded.
"""

import re
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urlencode, urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from qt_proxy.utils import get_logger


# Module logger
logger = get_logger("fetch")

# Default configuration
DEFAULT_TIMEOUT = 15  # seconds
DEFAULT_MAX_RETRIES = 2
DEFAULT_BACKOFF_FACTOR = 1.0  # exponential backoff multiplier
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

# Duranno daily bible page
DEFAULT_BASE_URL = "https://www.duranno.com/qt/view/bible.asp"

# k: 개역개정, w: 우리말성경
VERSIONS = ("k", "w")
DEFAULT_VERSION = "k"

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass
class FetchResult:
    """
    Represents the result of fetching a single URL.

    Attributes:
        source_url: The original URL that was fetched.
        raw_content: Raw response body if successful, None otherwise.
        content_type: Declared Content-Type header, None if absent.
        success: Whether the fetch was successful.
        error_message: Error description if fetch failed, None otherwise.
        status_code: HTTP status code if request was made, None otherwise.
    """
    source_url: str
    raw_content: Optional[bytes]
    success: bool
    content_type: Optional[str] = None
    error_message: Optional[str] = None
    status_code: Optional[int] = None


def create_session(
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR
) -> requests.Session:
    """
    Create a requests session with retry configuration.

    Args:
        max_retries: Maximum number of retry attempts.
        backoff_factor: Multiplier for exponential backoff between retries.

    Returns:
        Configured requests.Session instance.
    """
    session = requests.Session()

    retry_strategy = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET", "HEAD"],
        raise_on_status=False
    )

    # Mount adapter for both HTTP and HTTPS
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    session.headers.update({
        "User-Agent": DEFAULT_USER_AGENT,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "ko,ko-KR;q=0.9,en;q=0.8",
        "Accept-Encoding": "gzip, deflate",
        "Connection": "keep-alive",
    })

    return session


def validate_url(url: str) -> bool:
    """
    Validate that a URL is well-formed and uses HTTP/HTTPS.

    Args:
        url: URL string to validate.

    Returns:
        True if URL is valid, False otherwise.
    """
    try:
        parsed = urlparse(url)
        return parsed.scheme in ("http", "https") and bool(parsed.netloc)
    except ValueError:
        return False


def validate_date(date_str: Optional[str]) -> bool:
    """Check that a date string has the YYYY-MM-DD shape."""
    return bool(date_str) and bool(_DATE_RE.match(date_str))


def normalize_version(version: Optional[str]) -> str:
    """Map a requested bible version onto a supported one ("w" or "k")."""
    value = (version or "").strip().lower()
    return value if value in VERSIONS else DEFAULT_VERSION


def build_source_urls(
    date_str: Optional[str],
    version: str = DEFAULT_VERSION,
    base_url: str = DEFAULT_BASE_URL,
    allow_undated: bool = False
) -> List[str]:
    """
    Build the candidate page URLs for a date, most specific first.

    The undated base page always serves today's reading, so it is only a
    valid fallback when the requested date is today.

    Args:
        date_str: Date as YYYY-MM-DD, or None for today's page only.
        version: Bible version code.
        base_url: Page URL without query string.
        allow_undated: Add the undated page after the dated one.

    Returns:
        List of URLs to try in order.
    """
    version = normalize_version(version)
    urls = []

    if date_str:
        urls.append(f"{base_url}?{urlencode({'qtDate': date_str, 'd': version})}")

    if not date_str or allow_undated:
        urls.append(f"{base_url}?{urlencode({'d': version})}")

    return urls


def _failure(url: str, message: str, status_code: Optional[int] = None) -> FetchResult:
    return FetchResult(
        source_url=url,
        raw_content=None,
        success=False,
        error_message=message,
        status_code=status_code
    )


def fetch_single_url(
    url: str,
    session: requests.Session,
    timeout: int = DEFAULT_TIMEOUT
) -> FetchResult:
    """
    GET one candidate page and keep its body as bytes.

    A 200 response with an empty body counts as a failure, since there is
    nothing to decode.

    Args:
        url: Candidate page URL.
        session: Session carrying the retry adapter.
        timeout: Request timeout in seconds.

    Returns:
        FetchResult for this URL.
    """
    logger.debug(f"GET {url}")

    if not validate_url(url):
        logger.warning(f"Refusing malformed URL: {url}")
        return _failure(url, "Invalid URL format")

    try:
        response = session.get(url, timeout=timeout)
    except requests.exceptions.Timeout:
        logger.warning(f"Timed out after {timeout}s: {url}")
        return _failure(url, "Request timeout")
    except requests.exceptions.ConnectionError as e:
        logger.warning(f"Could not connect to {url}: {e}")
        return _failure(url, f"Connection error: {e}")
    except requests.exceptions.RequestException as e:
        logger.error(f"Request to {url} failed: {e}")
        return _failure(url, f"Request failed: {e}")

    status = response.status_code
    if status != 200:
        logger.warning(f"HTTP {status} for {url}")
        return _failure(url, f"HTTP {status}", status)

    if not response.content:
        logger.warning(f"Empty body for {url}")
        return _failure(url, "Empty response body", status)

    content_type = response.headers.get("Content-Type")
    logger.info(f"Fetched {url} ({len(response.content)} bytes, {content_type or 'no content-type'})")
    return FetchResult(
        source_url=url,
        raw_content=response.content,
        success=True,
        content_type=content_type,
        status_code=status
    )


def fetch_devotional_page(
    date_str: Optional[str] = None,
    version: str = DEFAULT_VERSION,
    session: Optional[requests.Session] = None,
    base_url: str = DEFAULT_BASE_URL,
    timeout: int = DEFAULT_TIMEOUT,
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    allow_undated: bool = False
) -> FetchResult:
    """
    Fetch the devotional page for a date, trying each candidate URL.

    Args:
        date_str: Date as YYYY-MM-DD, or None for today's page.
        version: Bible version code.
        session: Session to reuse. A temporary one is created if None.
        base_url: Page URL without query string.
        timeout: Request timeout in seconds per request.
        max_retries: Maximum retry attempts per URL (temporary session only).
        backoff_factor: Exponential backoff multiplier (temporary session only).
        allow_undated: Fall back to the undated page. Only correct for today.

    Returns:
        The first successful FetchResult, or the last failure.
    """
    urls = build_source_urls(date_str, version, base_url, allow_undated)
    logger.info(f"Fetching devotional page for {date_str or 'today'} ({len(urls)} candidate URL(s))")

    owns_session = session is None
    if owns_session:
        session = create_session(
            max_retries=max_retries,
            backoff_factor=backoff_factor
        )

    result: Optional[FetchResult] = None

    try:
        for url in urls:
            result = fetch_single_url(url, session, timeout)
            if result.success:
                break
            logger.info(f"Candidate failed ({result.error_message}), trying next")

    finally:
        if owns_session:
            session.close()

    if not result.success:
        logger.error(f"All {len(urls)} candidate URL(s) failed for {date_str or 'today'}")

    return result

"""
Extract module for the QT proxy.

This module parses a decoded devotional page and extracts:
- Heading metadata (book, verse range, subtitle, display title)
- The verse content fragment, with UI chrome removed

Region selection is layered: the canonical content wrapper first, then
the best-scoring container, otherwise nothing. A missing fragment is a
normal outcome reported as None, never an exception.
"""

import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Tuple

import soupsieve
from bs4 import BeautifulSoup, Tag

from qt_proxy.encoding import InvalidInputError
from qt_proxy.utils import ExtractorConfig, get_logger, normalize_url, sanitize_text


# Module logger
logger = get_logger("extract")

# "에스겔 22:17~22", "요한복음 3 : 16", "Genesis 1:1-5"
BOOK_RANGE_PATTERN = re.compile(
    r"([가-힣A-Za-z·]+)\s+(\d+\s*:\s*\d+(?:\s*[~–-]\s*\d+)?)"
)

RANGE_DASH = "–"

TITLE_SEPARATOR = " — "

# Elements that make up the verse content
VERSE_SELECTOR = "p.title, table"

# Always dropped from a sanitized region
SCRIPT_TAGS = ["script", "noscript"]

REGION_CANONICAL = "canonical"
REGION_SCORED = "scored"


@dataclass(frozen=True)
class HeadingMetadata:
    """
    Metadata derived from the page's primary heading.

    Attributes:
        book: Bible book name, empty when no reference was found.
        range: Verse range such as "22:17–22", empty when not found.
        subtitle: Emphasised subtitle of the heading, may be empty.
        title: Composite display label.
    """
    book: str = ""
    range: str = ""
    subtitle: str = ""
    title: str = ""


@dataclass(frozen=True)
class ExtractionResult:
    """
    Outcome of extracting one page.

    Attributes:
        metadata: Heading metadata.
        fragment: Serialized verse markup, or None when no region was found.
        region_method: How the region was chosen ("canonical", "scored" or None).
    """
    metadata: HeadingMetadata
    fragment: Optional[str]
    region_method: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.fragment is not None

    def to_dict(self) -> Dict[str, Any]:
        """Flatten into the response shape used by the API."""
        data = asdict(self.metadata)
        data["fragment"] = self.fragment
        return data


def find_book_range(text: Optional[str]) -> Tuple[str, str]:
    """
    Search text for a "book chapter:verse" reference.

    The range keeps no whitespace, and tildes and hyphens become en-dashes.

    Args:
        text: Text to search.

    Returns:
        Tuple of (book, range); both empty when nothing matched.
    """
    match = BOOK_RANGE_PATTERN.search(sanitize_text(text))
    if not match:
        return "", ""

    book = sanitize_text(match.group(1))
    verse_range = re.sub(r"\s+", "", match.group(2))
    verse_range = verse_range.replace("~", RANGE_DASH).replace("-", RANGE_DASH)
    return book, verse_range


def _normalize_reference(text: str) -> str:
    """Rewrite the first reference in text into its "book range" form."""
    def replace(match):
        book, verse_range = find_book_range(match.group(0))
        return f"{book} {verse_range}"

    return BOOK_RANGE_PATTERN.sub(replace, text, count=1)


def _text_of(element: Optional[Tag]) -> str:
    if element is None:
        return ""
    return sanitize_text(element.get_text(" "))


def _select_one(root: Tag, selector: str) -> Optional[Tag]:
    if not selector:
        return None
    try:
        return root.select_one(selector)
    except soupsieve.SelectorSyntaxError as e:
        logger.debug(f"Error with selector '{selector}': {e}")
        return None


def find_heading(soup: BeautifulSoup, config: ExtractorConfig) -> Optional[Tag]:
    """Return the primary h1, preferring one inside the typography wrapper."""
    if config.heading_wrapper_selector:
        heading = _select_one(soup, f"{config.heading_wrapper_selector} h1")
        if heading is not None:
            return heading
    return soup.find("h1")


def _fallback_scan_text(soup: BeautifulSoup, config: ExtractorConfig) -> str:
    wrapper = _select_one(soup, config.heading_wrapper_selector)
    if wrapper is not None:
        text = _text_of(wrapper)
        if text:
            return text
    if soup.body is not None:
        return _text_of(soup.body)
    return _text_of(soup)


def parse_heading(soup: BeautifulSoup, config: ExtractorConfig) -> HeadingMetadata:
    """
    Derive book, range, subtitle and title from the primary heading.

    The heading's first span is the label, its first em the subtitle. When
    the label (or the whole heading) has no reference, the wrapper or page
    text is scanned instead.

    Args:
        soup: Parsed document.
        config: Extractor configuration.

    Returns:
        HeadingMetadata with empty fields for anything not found.
    """
    heading = find_heading(soup, config)

    label = ""
    emphasis = ""
    heading_text = ""
    if heading is not None:
        label = _text_of(heading.find("span"))
        emphasis = _text_of(heading.find("em"))
        heading_text = _text_of(heading)

    book, verse_range = find_book_range(label or heading_text)

    if not book or not verse_range:
        scan_book, scan_range = find_book_range(_fallback_scan_text(soup, config))
        if scan_book and scan_range:
            book, verse_range = scan_book, scan_range

    if label:
        lead = _normalize_reference(label)
    elif book and verse_range:
        lead = f"{book} {verse_range}"
    else:
        lead = book

    title = TITLE_SEPARATOR.join(part for part in (lead, emphasis) if part)

    if not book:
        logger.debug("No scripture reference found in heading")

    return HeadingMetadata(
        book=book,
        range=verse_range,
        subtitle=emphasis,
        title=title or heading_text or ""
    )


def score_candidate(element: Tag) -> int:
    """Score a container: two points per table, one per verse-title paragraph."""
    tables = len(element.find_all("table"))
    titles = len(element.select("p.title"))
    return tables * 2 + titles


def select_region(
    soup: BeautifulSoup,
    config: ExtractorConfig
) -> Tuple[Optional[Tag], Optional[str]]:
    """
    Locate the element holding the devotional content.

    Uses multiple strategies:
    1. The canonical content wrapper, first match
    2. The best-scoring container among the candidate tags, first on ties

    Args:
        soup: Parsed document.
        config: Extractor configuration.

    Returns:
        Tuple of (region, method); (None, None) when nothing qualifies.
    """
    canonical = _select_one(soup, config.content_selector)
    if canonical is not None:
        return canonical, REGION_CANONICAL

    best: Optional[Tag] = None
    best_score = 0
    for candidate in soup.find_all(config.candidate_tags):
        score = score_candidate(candidate)
        if score < config.min_score:
            continue
        if best is None or score > best_score:
            best = candidate
            best_score = score

    if best is not None:
        logger.debug(f"Selected <{best.name}> candidate with score {best_score}")
        return best, REGION_SCORED

    return None, None


def sanitize_region(region: Tag, config: ExtractorConfig) -> int:
    """
    Remove noise elements and scripts from a region in place.

    Args:
        region: Region to clean.
        config: Extractor configuration holding the noise selectors.

    Returns:
        Number of elements removed.
    """
    removed = 0

    for selector in config.noise_selectors:
        try:
            elements = region.select(selector)
        except soupsieve.SelectorSyntaxError as e:
            logger.debug(f"Error with selector '{selector}': {e}")
            continue
        for element in elements:
            if element.decomposed:
                continue
            element.decompose()
            removed += 1

    for element in region.find_all(SCRIPT_TAGS):
        element.decompose()
        removed += 1

    return removed


def _verse_elements(region: Tag) -> List[Tag]:
    picked: List[Tag] = []
    picked_ids = set()
    for element in region.select(VERSE_SELECTOR):
        # Nested tables are serialized with their outer table
        if any(id(parent) in picked_ids for parent in element.parents):
            continue
        picked.append(element)
        picked_ids.add(id(element))
    return picked


def serialize_fragment(region: Tag) -> str:
    """
    Serialize the verse elements of a region in document order.

    Falls back to the whole region when it holds no verse elements.
    """
    elements = _verse_elements(region)
    if not elements:
        return str(region)
    return "".join(str(element) for element in elements)


def absolutize_links(fragment: str, base_url: str) -> str:
    """
    Resolve relative link and image URLs in a fragment.

    Anchor-only and javascript: links are left untouched.

    Args:
        fragment: Serialized markup.
        base_url: URL of the page the fragment came from.

    Returns:
        Markup with absolute href and src attributes.
    """
    if not fragment or not base_url:
        return fragment

    soup = BeautifulSoup(fragment, "html.parser")

    for link in soup.find_all("a", href=True):
        href = str(link["href"])
        if href.startswith("#") or href.startswith("javascript:"):
            continue
        link["href"] = normalize_url(href, base_url)

    for image in soup.find_all("img", src=True):
        image["src"] = normalize_url(str(image["src"]), base_url)

    return str(soup)


def extract(html: str, config: Optional[ExtractorConfig] = None) -> ExtractionResult:
    """
    Extract heading metadata and the verse fragment from a decoded page.

    Args:
        html: Decoded page markup.
        config: Extractor configuration, defaults when None.

    Returns:
        ExtractionResult; its fragment is None when no region was found.

    Raises:
        InvalidInputError: If html is not a string.
    """
    if not isinstance(html, str):
        raise InvalidInputError(
            f"Decoded page must be str, got {type(html).__name__}",
            received_type=type(html).__name__
        )

    if config is None:
        config = ExtractorConfig()

    soup = BeautifulSoup(html, "html.parser")
    metadata = parse_heading(soup, config)

    region, method = select_region(soup, config)
    if region is None:
        logger.warning("No content region found in page")
        return ExtractionResult(metadata=metadata, fragment=None)

    if method == REGION_SCORED or config.strip_noise_on_canonical:
        removed = sanitize_region(region, config)
        if removed:
            logger.debug(f"Removed {removed} noise element(s) from {method} region")

    fragment = serialize_fragment(region)
    logger.info(f"Extracted {len(fragment)} chars via {method} region ({metadata.title or 'untitled'})")

    return ExtractionResult(metadata=metadata, fragment=fragment, region_method=method)

"""
Encoding module for the QT proxy.

This module decides which character encoding applies to a fetched page
and decodes its raw bytes. The devotional site is not reliably
self-describing: pages are served as UTF-8 or as the legacy Korean
encoding (EUC-KR / CP949), sometimes with a wrong or missing charset.

Resolution order:
1. charset parameter of the Content-Type header
2. meta charset declaration in the first 4096 bytes
3. UTF-8 attempt re-validated for corruption, falling back to CP949
"""

import re
from enum import Enum
from typing import Optional, Tuple

from qt_proxy.utils import get_logger


# Module logger
logger = get_logger("encoding")

# Number of leading bytes probed for a meta charset declaration
SNIFF_LIMIT = 4096

# Python codec used for every legacy Korean alias (superset of EUC-KR)
LEGACY_KOREAN_CODEC = "cp949"

UTF8_ALIASES = {"utf-8", "utf8"}

LEGACY_KOREAN_ALIASES = {
    "euc-kr",
    "ks_c_5601-1987",
    "ks_c_5601",
    "x-windows-949",
    "cp949",
}

REPLACEMENT_CHAR = "\ufffd"

_HEADER_CHARSET_RE = re.compile(r"charset\s*=\s*([^;]+)", re.IGNORECASE)
_META_CHARSET_RE = re.compile(r"""charset=["']?(\w[\w-]*)""", re.IGNORECASE)


class ResolvedEncoding(Enum):
    """Encoding finally applied to a response body."""

    UTF8 = "utf-8"
    LEGACY_KOREAN = LEGACY_KOREAN_CODEC

    @property
    def codec(self) -> str:
        return self.value


class InvalidInputError(ValueError):
    """Raised when the body handed to the resolver is not a byte buffer."""

    def __init__(self, message: str, received_type: Optional[str] = None):
        super().__init__(message)
        self.received_type = received_type


def _ensure_bytes(data) -> bytes:
    if data is None:
        raise InvalidInputError("Response body is missing", received_type="NoneType")
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    raise InvalidInputError(
        f"Response body must be bytes, got {type(data).__name__}",
        received_type=type(data).__name__
    )


def sniff_charset(content_type: Optional[str], data: bytes) -> str:
    """
    Find the charset a response declares for itself.

    The header wins over the document. The document probe reads the first
    SNIFF_LIMIT bytes as latin-1 so that arbitrary bytes never raise.

    Args:
        content_type: Value of the Content-Type header, may be None or empty.
        data: Raw response body.

    Returns:
        Lowercased charset name, or "" when nothing is declared.
    """
    if content_type:
        match = _HEADER_CHARSET_RE.search(content_type)
        if match:
            charset = match.group(1).strip().strip("\"'").strip().lower()
            if charset:
                return charset

    head = data[:SNIFF_LIMIT].decode("latin-1")
    match = _META_CHARSET_RE.search(head)
    if match:
        return match.group(1).strip().lower()

    return ""


def classify_charset(charset: Optional[str]) -> Optional[ResolvedEncoding]:
    """
    Map a declared charset onto a known encoding.

    Returns:
        ResolvedEncoding, or None when the charset is unknown or absent.
    """
    name = (charset or "").strip().lower()
    if name in UTF8_ALIASES:
        return ResolvedEncoding.UTF8
    if name in LEGACY_KOREAN_ALIASES:
        return ResolvedEncoding.LEGACY_KOREAN
    return None


def looks_broken(text: str) -> bool:
    """
    Check a UTF-8 attempt for the corruption signature.

    Legacy-encoded bytes decode as UTF-8 without raising, so replacement
    characters and NUL code points are the only tell.
    """
    return REPLACEMENT_CHAR in text or "\x00" in text


def decode_bytes(content_type: Optional[str], data) -> Tuple[str, ResolvedEncoding]:
    """
    Decode a response body, returning the text and the encoding used.

    Args:
        content_type: Declared Content-Type header value, may be None.
        data: Raw response body.

    Returns:
        Tuple of (decoded text, ResolvedEncoding).

    Raises:
        InvalidInputError: If data is not a bytes-like object.
    """
    raw = _ensure_bytes(data)

    declared = sniff_charset(content_type, raw)
    encoding = classify_charset(declared)

    if encoding is not None:
        logger.debug(f"Declared charset '{declared}' resolved to {encoding.codec}")
        return raw.decode(encoding.codec, errors="replace"), encoding

    if declared:
        logger.debug(f"Unknown charset '{declared}', probing UTF-8")

    text = raw.decode("utf-8", errors="replace")
    if not text or looks_broken(text):
        logger.debug("UTF-8 attempt looks broken, decoding as legacy Korean")
        return raw.decode(LEGACY_KOREAN_CODEC, errors="replace"), ResolvedEncoding.LEGACY_KOREAN

    return text, ResolvedEncoding.UTF8


def resolve(content_type: Optional[str], data) -> str:
    """
    Decode a response body into text.

    Never fails on byte content; the worst case is a partially corrupted
    string.

    Args:
        content_type: Declared Content-Type header value, may be None.
        data: Raw response body.

    Returns:
        Decoded text.

    Raises:
        InvalidInputError: If data is not a bytes-like object.
    """
    text, _ = decode_bytes(content_type, data)
    return text

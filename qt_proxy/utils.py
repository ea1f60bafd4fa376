"""
Utility functions for the QT proxy.

This module provides:
- Central logging configuration
- Safe JSON read/write helpers
- Extractor configuration loading and validation
- Shared helper utilities used across modules
"""

import json
import logging
import os
import re
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import soupsieve


# Default configuration paths
DEFAULT_CONFIG_PATH = "config/extractor.json"

# Canonical wrapper of the verse content on the devotional page
DEFAULT_CONTENT_SELECTOR = ".bible"

# Typography wrapper that holds the page's primary heading
DEFAULT_HEADING_WRAPPER_SELECTOR = ".font-size"

# Non-content UI chrome observed inside the content region
DEFAULT_NOISE_SELECTORS = [
    ".song",        # today's song
    ".helper",      # meditation helper
    ".amen",        # amen counter
    ".copyright",
    ".btn-area",    # button bar
    ".bible-st",    # version switch bar
]

# Containers scored when the canonical wrapper is missing
DEFAULT_CANDIDATE_TAGS = ["main", "article", "section", "div", "body"]

DEFAULT_MIN_SCORE = 3


class ExtractorConfig:
    """Selectors and thresholds used by the fragment extractor."""

    def __init__(
        self,
        content_selector: str = DEFAULT_CONTENT_SELECTOR,
        heading_wrapper_selector: str = DEFAULT_HEADING_WRAPPER_SELECTOR,
        noise_selectors: Optional[List[str]] = None,
        candidate_tags: Optional[List[str]] = None,
        min_score: int = DEFAULT_MIN_SCORE,
        strip_noise_on_canonical: bool = True
    ):
        self.content_selector = content_selector.strip()
        self.heading_wrapper_selector = heading_wrapper_selector.strip()
        selectors = noise_selectors if noise_selectors is not None else DEFAULT_NOISE_SELECTORS
        self.noise_selectors = _unique([s.strip() for s in selectors if s and s.strip()])
        tags = candidate_tags if candidate_tags is not None else DEFAULT_CANDIDATE_TAGS
        self.candidate_tags = _unique([t.strip().lower() for t in tags if t and t.strip()])
        self.min_score = min_score
        self.strip_noise_on_canonical = strip_noise_on_canonical

    def __repr__(self) -> str:
        return (
            f"ExtractorConfig(content_selector={self.content_selector}, "
            f"noise_selectors={len(self.noise_selectors)}, min_score={self.min_score})"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "content_selector": self.content_selector,
            "heading_wrapper_selector": self.heading_wrapper_selector,
            "noise_selectors": list(self.noise_selectors),
            "candidate_tags": list(self.candidate_tags),
            "min_score": self.min_score,
            "strip_noise_on_canonical": self.strip_noise_on_canonical
        }


def _unique(items: List[str]) -> List[str]:
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def load_extractor_config(config_path: Optional[str] = None) -> ExtractorConfig:
    """
    Load the extractor configuration from JSON file or environment.

    Priority:
    1. EXTRACTOR_CONFIG environment variable (JSON string)
    2. EXTRACTOR_CONFIG_PATH environment variable (file path)
    3. Provided config_path parameter
    4. Default config file path

    Selectors listed in NOISE_SELECTORS (comma-separated) are appended
    to whatever noise selectors the configuration produced.

    Args:
        config_path: Optional path to the configuration file.

    Returns:
        ExtractorConfig object. Defaults are used when nothing valid is found.
    """
    logger = get_logger("utils")

    # Check for JSON config in environment variable
    env_config = os.environ.get("EXTRACTOR_CONFIG", "").strip()
    if env_config:
        try:
            data = json.loads(env_config)
            logger.info("Loaded extractor config from EXTRACTOR_CONFIG environment variable")
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON in EXTRACTOR_CONFIG: {e}")
            data = None
    else:
        data = None

    # If not in env, try file path
    if data is None:
        env_path = os.environ.get("EXTRACTOR_CONFIG_PATH", "").strip()
        file_path = env_path or config_path or DEFAULT_CONFIG_PATH

        data = safe_read_json(file_path, default={})
        if data:
            logger.info(f"Loaded extractor config from {file_path}")
        else:
            logger.debug(f"No extractor config at {file_path}, using defaults")

    config = None
    if isinstance(data, dict) and data:
        try:
            config = _parse_config_entry(data)
        except (TypeError, ValueError) as e:
            logger.warning(f"Invalid extractor config, using defaults: {e}")

    if config is None:
        config = ExtractorConfig()

    extra = os.environ.get("NOISE_SELECTORS", "")
    if extra.strip():
        extra_selectors = [s.strip() for s in extra.split(",") if s.strip()]
        config.noise_selectors = _unique(config.noise_selectors + extra_selectors)
        logger.info(f"Added {len(extra_selectors)} noise selector(s) from NOISE_SELECTORS")

    for warning in validate_extractor_config(config):
        logger.warning(f"Extractor config: {warning}")

    logger.debug(f"Using {config}")
    return config


def _parse_config_entry(entry: Dict[str, Any]) -> ExtractorConfig:
    """
    Build an ExtractorConfig from a parsed JSON object.

    Args:
        entry: Dictionary with extractor configuration.

    Returns:
        ExtractorConfig object.
    """
    noise = entry.get("noise_selectors", DEFAULT_NOISE_SELECTORS)
    if not isinstance(noise, list):
        noise = list(DEFAULT_NOISE_SELECTORS)

    extra = entry.get("extra_noise_selectors", [])
    if isinstance(extra, list):
        noise = list(noise) + [s for s in extra if isinstance(s, str)]

    tags = entry.get("candidate_tags", DEFAULT_CANDIDATE_TAGS)
    if not isinstance(tags, list):
        tags = list(DEFAULT_CANDIDATE_TAGS)

    strip_canonical = entry.get("strip_noise_on_canonical", True)
    if not isinstance(strip_canonical, bool):
        strip_canonical = str(strip_canonical).lower() in ("true", "1", "yes")

    return ExtractorConfig(
        content_selector=str(entry.get("content_selector", DEFAULT_CONTENT_SELECTOR)),
        heading_wrapper_selector=str(
            entry.get("heading_wrapper_selector", DEFAULT_HEADING_WRAPPER_SELECTOR)
        ),
        noise_selectors=[s for s in noise if isinstance(s, str)],
        candidate_tags=[t for t in tags if isinstance(t, str)],
        min_score=int(entry.get("min_score", DEFAULT_MIN_SCORE)),
        strip_noise_on_canonical=strip_canonical
    )


def validate_extractor_config(config: ExtractorConfig) -> List[str]:
    """
    Validate an extractor configuration and return any warnings.

    Args:
        config: ExtractorConfig to validate.

    Returns:
        List of warning messages (empty if valid).
    """
    warnings = []

    if not config.content_selector:
        warnings.append("content_selector is empty")

    if not config.candidate_tags:
        warnings.append("No candidate tags configured, scored fallback is disabled")

    if config.min_score <= 0:
        warnings.append(f"min_score {config.min_score} accepts every candidate")

    selectors = [config.content_selector, config.heading_wrapper_selector]
    selectors.extend(config.noise_selectors)
    for selector in selectors:
        if not selector:
            continue
        try:
            soupsieve.compile(selector)
        except soupsieve.SelectorSyntaxError:
            warnings.append(f"Invalid CSS selector: '{selector}'")

    return warnings


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure and return the root logger for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Defaults to INFO.

    Returns:
        Configured logger instance.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    logger = logging.getLogger("qt_proxy")
    logger.setLevel(log_level)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Name for the logger, typically the module name.

    Returns:
        Logger instance configured as a child of the main application logger.
    """
    return logging.getLogger(f"qt_proxy.{name}")


def safe_read_json(filepath: str, default: Optional[Any] = None) -> Any:
    """
    Safely read JSON data from a file.

    Args:
        filepath: Path to the JSON file.
        default: Default value to return if file doesn't exist or is invalid.

    Returns:
        Parsed JSON data or the default value on failure.
    """
    logger = get_logger("utils")

    try:
        path = Path(filepath)
        if not path.exists():
            logger.debug(f"File does not exist: {filepath}, returning default")
            return default

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
            logger.debug(f"Successfully read JSON from {filepath}")
            return data

    except json.JSONDecodeError as e:
        logger.warning(f"Invalid JSON in {filepath}: {e}")
        return default
    except OSError as e:
        logger.error(f"Could not read {filepath}: {e}")
        return default


def safe_write_json(filepath: str, data: Any, indent: int = 2) -> bool:
    """
    Safely write JSON data to a file using atomic write operation.

    Uses a temporary file and atomic rename to prevent data corruption
    if the write operation is interrupted.

    Args:
        filepath: Path to the JSON file.
        data: Data to serialize as JSON.
        indent: JSON indentation level. Defaults to 2.

    Returns:
        True if write was successful, False otherwise.
    """
    logger = get_logger("utils")

    try:
        path = Path(filepath)

        # Ensure parent directory exists
        path.parent.mkdir(parents=True, exist_ok=True)

        # Write to temporary file first (atomic write pattern)
        fd, temp_path = tempfile.mkstemp(
            suffix=".json",
            prefix="qt_",
            dir=path.parent
        )

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=indent, ensure_ascii=False)

            shutil.move(temp_path, filepath)
            logger.debug(f"Successfully wrote JSON to {filepath}")
            return True

        except Exception:
            # Clean up temp file on failure
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Failed writing {filepath}: {e}")
        return False


def get_env_var(name: str, required: bool = True, default: Optional[str] = None) -> Optional[str]:
    """
    Get an environment variable with optional requirement enforcement.

    Args:
        name: Name of the environment variable.
        required: If True, raises ValueError when variable is not set.
                  Defaults to True.
        default: Default value if variable is not set and not required.

    Returns:
        Value of the environment variable or default.

    Raises:
        ValueError: If required=True and the variable is not set.
    """
    value = os.environ.get(name)

    if value is None or value.strip() == "":
        if required:
            raise ValueError(f"Required environment variable '{name}' is not set")
        return default

    return value.strip()


def env_flag(name: str, default: bool = False) -> bool:
    """Read a boolean environment variable ("true", "1", "yes")."""
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("true", "1", "yes")


def normalize_url(url: str, base_url: str) -> str:
    """
    Normalize a potentially relative URL to an absolute URL.

    Args:
        url: The URL to normalize (may be relative or absolute).
        base_url: The base URL to use for resolving relative URLs.

    Returns:
        Absolute URL string.
    """
    from urllib.parse import urljoin, urlparse

    # If already absolute, return as-is
    parsed = urlparse(url)
    if parsed.scheme and parsed.netloc:
        return url

    return urljoin(base_url, url)


def sanitize_text(text: Optional[str]) -> str:
    """
    Clean and normalize text content.

    Non-breaking spaces become ordinary spaces, runs of whitespace
    collapse to a single space and the ends are trimmed.

    Args:
        text: Raw text to sanitize.

    Returns:
        Cleaned text string.
    """
    if not text:
        return ""

    cleaned = text.replace("\u00a0", " ")
    cleaned = re.sub(r"\s+", " ", cleaned)
    return cleaned.strip()

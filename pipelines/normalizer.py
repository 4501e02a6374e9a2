"""Content normalization and hashing for change detection.

Normalization strips the parts of a fetched page that change between
crawls without the content itself changing (markup, timestamps, ad
markers, tracking query strings, whitespace, case) so that the hash of
the normalized text is a stable fingerprint of the content.

The steps are applied in a fixed order and each is idempotent, so
``normalize(normalize(text)) == normalize(text)`` for every option set.
"""

import hashlib
import logging
import re
import unicodedata
from typing import Optional

from config.settings import NormalizationOptions, SUPPORTED_HASH_ALGORITHMS

from .errors import NormalizationError

logger = logging.getLogger(__name__)

DEFAULT_HASH_ALGORITHM = "sha256"
_MAX_PASSES = 16

_SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_TAG_RE = re.compile(r"<[^>]*>")

_ISO_TIMESTAMP_RE = re.compile(
    r"\b\d{4}-\d{2}-\d{2}"
    r"(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?"
)
_SLASH_DATE_RE = re.compile(r"\b\d{1,2}[/-]\d{1,2}[/-]\d{2,4}\b")
_CLOCK_TIME_RE = re.compile(r"\b\d{1,2}:\d{2}(?::\d{2})?(?:\s?[ap]\.?m\.?)?(?![\w:])", re.IGNORECASE)

_AD_MARKER_RE = re.compile(
    r"\b(?:advertisement|sponsored(?:\s+(?:content|by|post|link)s?)?|promoted\s+content|adchoices)\b",
    re.IGNORECASE,
)

_URL_RE = re.compile(r"https?://[^\s\"'<>]+", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


def _strip_tags(text: str) -> str:
    text = _SCRIPT_STYLE_RE.sub(" ", text)
    text = _COMMENT_RE.sub(" ", text)
    stripped = _TAG_RE.sub(" ", text)
    while stripped != text:
        text = stripped
        stripped = _TAG_RE.sub(" ", text)
    return stripped


def _strip_timestamps(text: str) -> str:
    text = _ISO_TIMESTAMP_RE.sub(" ", text)
    text = _SLASH_DATE_RE.sub(" ", text)
    return _CLOCK_TIME_RE.sub(" ", text)


def _canonical_url(match: re.Match) -> str:
    url = match.group(0)
    for sep in ("?", "#"):
        idx = url.find(sep)
        if idx != -1:
            url = url[:idx]
    return url


def normalize(raw: Optional[str], options: Optional[NormalizationOptions] = None) -> str:
    """Canonicalize raw page text according to ``options``.

    Args:
        raw: Fetched page content, markup or plain text. ``None`` is treated
            as empty content.
        options: Steps to apply; defaults to all steps enabled.

    Returns:
        The normalized text.

    Raises:
        NormalizationError: If ``options`` is not a NormalizationOptions.
    """
    if options is None:
        options = NormalizationOptions()
    elif not isinstance(options, NormalizationOptions):
        raise NormalizationError(f"Malformed normalization options: {options!r}")

    if raw is None:
        return ""
    if not isinstance(raw, str):
        raise NormalizationError(f"Cannot normalize content of type {type(raw).__name__}")

    # A removal can expose a new match for an earlier step ("<<a>b>"),
    # so the steps run until the text stops changing.
    text = raw
    for _ in range(_MAX_PASSES):
        result = _apply_steps(text, options)
        if result == text:
            break
        text = result
    else:
        logger.debug("Normalization did not settle after %d passes", _MAX_PASSES)

    return text


def _apply_steps(text: str, options: NormalizationOptions) -> str:
    text = unicodedata.normalize("NFC", text)

    if options.strip_html_tags:
        text = _strip_tags(text)
    if options.strip_timestamps:
        text = _strip_timestamps(text)
    if options.strip_ads:
        text = _AD_MARKER_RE.sub(" ", text)
    if options.normalize_urls:
        text = _URL_RE.sub(_canonical_url, text)
    if options.lowercase:
        # str.lower is locale independent
        text = text.lower()
    if options.collapse_whitespace:
        text = _WHITESPACE_RE.sub(" ", text).strip()

    return text


def hash_content(normalized_text: str, algorithm: str = DEFAULT_HASH_ALGORITHM) -> str:
    """Hex digest of the UTF-8 encoded text."""
    if algorithm not in SUPPORTED_HASH_ALGORITHMS:
        raise NormalizationError(f"Unsupported hash algorithm: {algorithm}")
    return hashlib.new(algorithm, normalized_text.encode("utf-8")).hexdigest()


def compute_content_hash(raw: Optional[str],
                         options: Optional[NormalizationOptions] = None,
                         algorithm: str = DEFAULT_HASH_ALGORITHM) -> str:
    """Normalize then hash raw content."""
    return hash_content(normalize(raw, options), algorithm)


def generate_url_hash(url: str) -> str:
    """Stable 16 character document id derived from the URL."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]


def url_to_key(url: str) -> str:
    """Store-safe key for a URL."""
    key = re.sub(r"[^a-zA-Z0-9]", "-", url)
    key = re.sub(r"-+", "-", key)
    return key.strip("-")

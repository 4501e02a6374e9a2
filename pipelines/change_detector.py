"""Change detection for fetched pages.

Classifies a page as new, unchanged or modified relative to the tracking
store, and summarises what changed for audit logging. Detection is a
pure read; the store is written only through ``mark_content_processed``,
``update_content_record`` and ``increment_error_count``.
"""

import difflib
import logging
import re
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from config.settings import NormalizationOptions
from services.shared.models import ContentRecord, ContentStatus, compute_ttl, utcnow
from services.shared.tracking import TrackingStore

from .normalizer import DEFAULT_HASH_ALGORITHM, hash_content, normalize

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 80
_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n|\n")


class ChangeType(str, Enum):
    NEW = "new"
    UNCHANGED = "unchanged"
    MODIFIED = "modified"


class ProcessingDecision(str, Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"


@dataclass
class DiffRegion:
    """A span of paragraphs (or the whole document) that changed."""
    kind: str  # 'added', 'removed', 'modified', 'document'
    start: int
    end: int
    preview: str = ""


@dataclass
class ContentDiff:
    """Lightweight summary of the difference between two versions."""
    significance: float
    added_regions: List[DiffRegion] = field(default_factory=list)
    removed_regions: List[DiffRegion] = field(default_factory=list)
    modified_regions: List[DiffRegion] = field(default_factory=list)
    word_count_delta: int = 0
    method: str = "sequence"  # 'sequence' or 'word-count'

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ChangeDetectionResult:
    has_changed: bool
    change_type: ChangeType
    current_hash: str
    previous_hash: Optional[str] = None
    last_modified: Optional[datetime] = None
    last_crawled: Optional[datetime] = None
    content_diff: Optional[ContentDiff] = None
    processing_decision: ProcessingDecision = ProcessingDecision.PROCESSED
    word_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'has_changed': self.has_changed,
            'change_type': self.change_type.value,
            'current_hash': self.current_hash,
            'previous_hash': self.previous_hash,
            'last_modified': self.last_modified.isoformat() if self.last_modified else None,
            'last_crawled': self.last_crawled.isoformat() if self.last_crawled else None,
            'content_diff': self.content_diff.to_dict() if self.content_diff else None,
            'processing_decision': self.processing_decision.value,
            'word_count': self.word_count,
        }


def _split_paragraphs(text: str) -> List[str]:
    paragraphs = []
    for part in _PARAGRAPH_SPLIT_RE.split(text):
        part = " ".join(part.split())
        if part:
            paragraphs.append(part)
    return paragraphs


def _preview(paragraphs: List[str]) -> str:
    return " ".join(paragraphs)[:PREVIEW_LENGTH]


class ChangeDetector:
    """Compares fetched content against the tracking store."""

    def __init__(self, store: TrackingStore,
                 options: Optional[NormalizationOptions] = None,
                 algorithm: str = DEFAULT_HASH_ALGORITHM,
                 force_reprocess: bool = False):
        self.store = store
        self.options = options or NormalizationOptions()
        self.algorithm = algorithm
        self.force_reprocess = force_reprocess

    def compute_hash(self, raw_content: Optional[str]) -> str:
        return hash_content(normalize(raw_content, self.options), self.algorithm)

    def detect_changes(self, url: str, raw_content: Optional[str],
                       last_modified: Optional[datetime] = None,
                       previous_content: Optional[str] = None) -> ChangeDetectionResult:
        """Classify ``raw_content`` for ``url`` as new, unchanged or modified.

        Args:
            url: Source URL, the tracking key.
            raw_content: Fetched markup or text.
            last_modified: Last-Modified value from the fetch, if any.
            previous_content: Earlier raw content, when the caller has it.
                Enables a paragraph level diff for modified pages.

        Raises:
            TrackingStoreError: If the store cannot be read.
        """
        normalized = normalize(raw_content, self.options)
        current_hash = hash_content(normalized, self.algorithm)
        word_count = len(normalized.split())

        existing = self.store.get_by_url(url)

        if existing is None:
            logger.info(f"New content detected for {url}")
            return ChangeDetectionResult(
                has_changed=True,
                change_type=ChangeType.NEW,
                current_hash=current_hash,
                last_modified=last_modified,
                processing_decision=ProcessingDecision.PROCESSED,
                word_count=word_count,
            )

        if existing.content_hash == current_hash:
            decision = ProcessingDecision.PROCESSED if self.force_reprocess else ProcessingDecision.SKIPPED
            logger.debug(f"Content unchanged for {url}")
            return ChangeDetectionResult(
                has_changed=False,
                change_type=ChangeType.UNCHANGED,
                current_hash=current_hash,
                previous_hash=existing.content_hash,
                last_modified=last_modified or existing.last_modified,
                last_crawled=existing.last_crawled,
                processing_decision=decision,
                word_count=word_count,
            )

        if previous_content is not None:
            diff = self.compute_diff(previous_content, raw_content or "")
        else:
            diff = self._word_count_diff(existing.word_count, normalized)

        logger.info(f"Content modified for {url} (significance {diff.significance:.2f}, {diff.method} diff)")
        return ChangeDetectionResult(
            has_changed=True,
            change_type=ChangeType.MODIFIED,
            current_hash=current_hash,
            previous_hash=existing.content_hash,
            last_modified=last_modified,
            last_crawled=existing.last_crawled,
            content_diff=diff,
            processing_decision=ProcessingDecision.PROCESSED,
            word_count=word_count,
        )

    def compute_diff(self, old_content: str, new_content: str) -> ContentDiff:
        """Paragraph level diff of two raw versions."""
        paragraph_options = self.options.model_copy(update={'collapse_whitespace': False})
        old_paragraphs = _split_paragraphs(normalize(old_content, paragraph_options))
        new_paragraphs = _split_paragraphs(normalize(new_content, paragraph_options))

        if not old_paragraphs and not new_paragraphs:
            return ContentDiff(significance=0.0)

        matcher = difflib.SequenceMatcher(None, old_paragraphs, new_paragraphs, autojunk=False)
        diff = ContentDiff(significance=round(1.0 - matcher.ratio(), 4))

        for tag, i1, i2, j1, j2 in matcher.get_opcodes():
            if tag == 'insert':
                diff.added_regions.append(DiffRegion('added', j1, j2, _preview(new_paragraphs[j1:j2])))
            elif tag == 'delete':
                diff.removed_regions.append(DiffRegion('removed', i1, i2, _preview(old_paragraphs[i1:i2])))
            elif tag == 'replace':
                diff.modified_regions.append(DiffRegion('modified', j1, j2, _preview(new_paragraphs[j1:j2])))

        old_words = sum(len(p.split()) for p in old_paragraphs)
        new_words = sum(len(p.split()) for p in new_paragraphs)
        diff.word_count_delta = new_words - old_words
        return diff

    def _word_count_diff(self, previous_word_count: int, normalized: str) -> ContentDiff:
        words = normalized.split()
        delta = len(words) - previous_word_count
        significance = min(1.0, abs(delta) / max(previous_word_count, 1))
        return ContentDiff(
            significance=round(significance, 4),
            modified_regions=[DiffRegion('document', 0, len(words), " ".join(words)[:PREVIEW_LENGTH])],
            word_count_delta=delta,
            method='word-count',
        )

    def get_last_crawl_timestamp(self, url: str) -> Optional[datetime]:
        record = self.store.get_by_url(url)
        return record.last_crawled if record else None

    def get_change_statistics(self, url_to_content: Dict[str, str]) -> Dict[str, int]:
        """Classify a batch of pages without writing anything."""
        stats = {'total': len(url_to_content), 'new': 0, 'modified': 0, 'unchanged': 0}
        for url, content in url_to_content.items():
            result = self.detect_changes(url, content)
            stats[result.change_type.value] += 1
        return stats

    def mark_content_processed(self, url: str, content_hash: str) -> ContentRecord:
        logger.info(f"Marking {url} as processed")
        return self.store.mark_processed(url, content_hash)

    def update_content_record(self, url: str, record: ContentRecord) -> ContentRecord:
        """Replace the tracked record for ``url``."""
        if record.url != url:
            raise ValueError(f"Record URL {record.url} does not match {url}")
        if record.ttl is None:
            record = replace(record, ttl=compute_ttl(record.last_crawled, self.store.ttl_days))
        return self.store.put(record)

    def increment_error_count(self, url: str, error_message: str) -> ContentRecord:
        return self.store.increment_error(url, error_message)

    def build_processed_record(self, url: str, detection: ChangeDetectionResult,
                               chunk_count: int, vector_ids: List[str],
                               metadata: Optional[Dict[str, Any]] = None) -> ContentRecord:
        """Record describing a successful processing pass."""
        now = utcnow()
        return ContentRecord(
            url=url,
            content_hash=detection.current_hash,
            last_crawled=now,
            last_modified=detection.last_modified,
            status=ContentStatus.ACTIVE,
            error_count=0,
            word_count=detection.word_count,
            chunk_count=chunk_count,
            vector_ids=list(vector_ids),
            ttl=compute_ttl(now, self.store.ttl_days),
            last_processed=now,
            metadata=dict(metadata or {}),
        )

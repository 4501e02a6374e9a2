"""Tracking store for content records, keyed by URL.

The store is the only shared resource of the pipeline. Reads never
mutate it; writes go through ``put``, ``mark_processed`` and
``increment_error``.
"""
import copy
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .models import Base, ContentRecord, ContentRecordRow, ContentStatus, compute_ttl, utcnow

logger = logging.getLogger(__name__)

DEFAULT_TTL_DAYS = 90
MAX_ERROR_MESSAGE_LENGTH = 2000


def _copy(record: ContentRecord) -> ContentRecord:
    """Copy of a record that shares no containers with the original."""
    return replace(record, vector_ids=list(record.vector_ids), metadata=copy.deepcopy(record.metadata))


class TrackingStoreError(Exception):
    """Raised when the tracking store cannot be read or written."""


class TrackingStore(ABC):
    """Narrow key-value interface over ContentRecords."""

    def __init__(self, ttl_days: int = DEFAULT_TTL_DAYS):
        self.ttl_days = ttl_days

    @abstractmethod
    def get_by_url(self, url: str) -> Optional[ContentRecord]:
        """Return the record for ``url`` or None."""

    @abstractmethod
    def put(self, record: ContentRecord) -> ContentRecord:
        """Insert or replace the record for ``record.url``."""

    @abstractmethod
    def query_by_status(self, status: ContentStatus, limit: int = 100) -> List[ContentRecord]:
        """Records with the given status, oldest crawl first."""

    def mark_processed(self, url: str, content_hash: str) -> ContentRecord:
        """Record a successful processing pass for ``url``."""
        now = utcnow()
        existing = self.get_by_url(url)
        if existing is None:
            record = ContentRecord(url=url, content_hash=content_hash, last_crawled=now)
        else:
            record = replace(_copy(existing), content_hash=content_hash, last_crawled=now)
        record.status = ContentStatus.ACTIVE
        record.last_processed = now
        record.ttl = compute_ttl(now, self.ttl_days)
        return self.put(record)

    def increment_error(self, url: str, message: str) -> ContentRecord:
        """Record a failed processing attempt for ``url``.

        Unknown URLs get an error record with an empty hash so the
        document is retried on the next crawl.
        """
        now = utcnow()
        existing = self.get_by_url(url)
        if existing is None:
            record = ContentRecord(url=url, content_hash='', last_crawled=now,
                                   ttl=compute_ttl(now, self.ttl_days))
        else:
            record = _copy(existing)
        record.status = ContentStatus.ERROR
        record.error_count += 1
        record.last_error = (message or '')[:MAX_ERROR_MESSAGE_LENGTH]
        logger.warning(f"Processing error #{record.error_count} for {url}: {record.last_error}")
        return self.put(record)


class InMemoryTrackingStore(TrackingStore):
    """Dictionary backed store for tests and single-process runs."""

    def __init__(self, ttl_days: int = DEFAULT_TTL_DAYS):
        super().__init__(ttl_days)
        self._records: Dict[str, ContentRecord] = {}
        self._lock = threading.Lock()

    def get_by_url(self, url: str) -> Optional[ContentRecord]:
        with self._lock:
            record = self._records.get(url)
            return _copy(record) if record else None

    def put(self, record: ContentRecord) -> ContentRecord:
        with self._lock:
            self._records[record.url] = _copy(record)
        return record

    def query_by_status(self, status: ContentStatus, limit: int = 100) -> List[ContentRecord]:
        with self._lock:
            matches = [r for r in self._records.values() if r.status == status]
        matches.sort(key=lambda r: r.last_crawled)
        return [_copy(r) for r in matches[:limit]]

    def __len__(self) -> int:
        return len(self._records)


class SQLTrackingStore(TrackingStore):
    """SQLAlchemy backed store (SQLite or PostgreSQL)."""

    def __init__(self, session_factory: sessionmaker, ttl_days: int = DEFAULT_TTL_DAYS,
                 create_tables: bool = True):
        super().__init__(ttl_days)
        self.session_factory = session_factory
        if create_tables:
            try:
                Base.metadata.create_all(bind=session_factory.kw['bind'])
            except SQLAlchemyError as e:
                raise TrackingStoreError(f"Failed to create tracking tables: {e}") from e

    def get_by_url(self, url: str) -> Optional[ContentRecord]:
        try:
            with self.session_factory() as session:
                row = session.query(ContentRecordRow).filter(ContentRecordRow.url == url).first()
                return row.to_record() if row else None
        except SQLAlchemyError as e:
            raise TrackingStoreError(f"Failed to read record for {url}: {e}") from e

    def put(self, record: ContentRecord) -> ContentRecord:
        try:
            with self.session_factory() as session:
                row = session.query(ContentRecordRow).filter(ContentRecordRow.url == record.url).first()
                if row is None:
                    row = ContentRecordRow(url=record.url)
                    session.add(row)
                row.update_from(record)
                session.commit()
            return record
        except SQLAlchemyError as e:
            raise TrackingStoreError(f"Failed to write record for {record.url}: {e}") from e

    def query_by_status(self, status: ContentStatus, limit: int = 100) -> List[ContentRecord]:
        try:
            with self.session_factory() as session:
                rows = (session.query(ContentRecordRow)
                        .filter(ContentRecordRow.status == ContentStatus(status).value)
                        .order_by(ContentRecordRow.last_crawled)
                        .limit(limit)
                        .all())
                return [row.to_record() for row in rows]
        except SQLAlchemyError as e:
            raise TrackingStoreError(f"Failed to query records with status {status}: {e}") from e

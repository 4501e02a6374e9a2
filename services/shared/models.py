"""Tracking store models for processed content."""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Dict, Any, List

from sqlalchemy import Column, Integer, String, DateTime, JSON, Index
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class ContentStatus(str, Enum):
    """Lifecycle of a tracked URL."""
    ACTIVE = "active"
    ERROR = "error"
    DELETED = "deleted"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def compute_ttl(last_crawled: datetime, ttl_days: int) -> int:
    """Expiry epoch seconds for a record crawled at ``last_crawled``."""
    return int((_as_utc(last_crawled) + timedelta(days=ttl_days)).timestamp())


@dataclass
class ContentRecord:
    """Tracking state for one URL."""
    url: str
    content_hash: str
    last_crawled: datetime = field(default_factory=utcnow)
    last_modified: Optional[datetime] = None
    status: ContentStatus = ContentStatus.ACTIVE
    error_count: int = 0
    word_count: int = 0
    chunk_count: int = 0
    vector_ids: List[str] = field(default_factory=list)
    ttl: Optional[int] = None
    last_processed: Optional[datetime] = None
    last_error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.url:
            raise ValueError("ContentRecord.url is required")
        if self.error_count < 0:
            raise ValueError("ContentRecord.error_count must be non-negative")
        if not isinstance(self.status, ContentStatus):
            self.status = ContentStatus(self.status)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value
        for key in ('last_crawled', 'last_modified', 'last_processed'):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


class ContentRecordRow(Base):
    """Persisted ContentRecord."""
    __tablename__ = 'content_records'

    id = Column(Integer, primary_key=True)
    url = Column(String(2048), nullable=False, unique=True)
    content_hash = Column(String(128), nullable=False, default='')
    last_crawled = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_modified = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(20), nullable=False, default=ContentStatus.ACTIVE.value)
    error_count = Column(Integer, nullable=False, default=0)
    word_count = Column(Integer, nullable=False, default=0)
    chunk_count = Column(Integer, nullable=False, default=0)
    vector_ids = Column(JSON, nullable=False, default=list)
    ttl = Column(Integer, nullable=True)
    last_processed = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(String(2000), nullable=True)
    record_metadata = Column('metadata', JSON, nullable=True)

    __table_args__ = (
        Index('idx_content_records_status', 'status'),
        Index('idx_content_records_hash', 'content_hash'),
        Index('idx_content_records_ttl', 'ttl'),
    )

    def to_record(self) -> ContentRecord:
        return ContentRecord(
            url=self.url,
            content_hash=self.content_hash or '',
            last_crawled=_as_utc(self.last_crawled),
            last_modified=_as_utc(self.last_modified),
            status=ContentStatus(self.status),
            error_count=self.error_count or 0,
            word_count=self.word_count or 0,
            chunk_count=self.chunk_count or 0,
            vector_ids=list(self.vector_ids or []),
            ttl=self.ttl,
            last_processed=_as_utc(self.last_processed),
            last_error=self.last_error,
            metadata=dict(self.record_metadata or {}),
        )

    def update_from(self, record: ContentRecord):
        self.content_hash = record.content_hash
        self.last_crawled = record.last_crawled
        self.last_modified = record.last_modified
        self.status = record.status.value
        self.error_count = record.error_count
        self.word_count = record.word_count
        self.chunk_count = record.chunk_count
        self.vector_ids = list(record.vector_ids)
        self.ttl = record.ttl
        self.last_processed = record.last_processed
        self.last_error = record.last_error
        self.record_metadata = dict(record.metadata)

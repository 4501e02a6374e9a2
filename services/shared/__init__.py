"""Tracking store and record models shared by the pipeline."""

from .models import ContentRecord, ContentRecordRow, ContentStatus, compute_ttl
from .tracking import (
    TrackingStore,
    TrackingStoreError,
    InMemoryTrackingStore,
    SQLTrackingStore,
)

__all__ = [
    'ContentRecord',
    'ContentRecordRow',
    'ContentStatus',
    'compute_ttl',
    'TrackingStore',
    'TrackingStoreError',
    'InMemoryTrackingStore',
    'SQLTrackingStore',
]

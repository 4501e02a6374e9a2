"""Exception types raised by the content pipeline."""


class PipelineError(Exception):
    """Base class for content pipeline failures."""


class NormalizationError(PipelineError):
    """Raised for a malformed normalization option set or digest algorithm.

    Fatal for the single document being processed; never retried.
    """


class ConsistencyError(PipelineError):
    """Raised when a content hash disagrees with one derived from the same text."""


class ExtractionError(PipelineError):
    """Raised inside the structure extractor; surfaced as a failed ExtractionResult."""

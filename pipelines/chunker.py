"""Intelligent chunking for medical content.

Turns a document (plain text plus the optional section tree from the
structure extractor) into bounded, overlap-linked, quality-scored chunks
ready for embedding.

Every run goes through the same stages: build drafts with the selected
strategy, validate them against the size and quality gates, number the
survivors, then link neighbours and compute run metrics.
"""

import hashlib
import logging
import re
import statistics
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from config.settings import ChunkingOptions, ChunkingStrategy, StrategyThresholds
from observability.logging import log_performance

from .medical_patterns import CONDITION_VARIANTS, MEDICAL_TERMS, Level
from .normalizer import generate_url_hash
from .strategy import (
    TOKENS_PER_WORD,
    ContentAnalysis,
    analyze_content,
    count_words,
    estimate_tokens,
    medical_term_density,
    select_strategy,
)

logger = logging.getLogger(__name__)

_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_TERMINAL_RE = re.compile(r"[.!?][\"')\]]?$")
_MARKDOWN_RE = re.compile(r"(^|\s)(?:#{1,6}|[-*•]|\d+\.)\s+|\*\*|__|`", re.MULTILINE)


@dataclass
class ContextPreservation:
    preceding_context: str = ""
    following_context: str = ""
    context_score: float = 0.0
    related_chunks: List[str] = field(default_factory=list)


@dataclass
class ChunkOverlap:
    previous_tokens: int = 0
    next_tokens: int = 0
    strategy: str = ""


@dataclass
class ChunkMetadata:
    source_url: str
    source_title: str
    source_section: str
    chunk_type: str
    medical_keywords: List[str] = field(default_factory=list)
    fact_count: int = 0
    quality_score: float = 0.0
    patient_relevance: Level = Level.LOW
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ContentChunk:
    """A bounded unit of text plus metadata, ready for embedding."""
    id: str
    content: str
    chunk_index: int
    total_chunks: int
    token_count: int
    word_count: int
    chunking_strategy: ChunkingStrategy
    medical_relevance: float
    context_preservation: ContextPreservation
    overlap: ChunkOverlap
    metadata: ChunkMetadata

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['chunking_strategy'] = self.chunking_strategy.value
        data['metadata']['patient_relevance'] = self.metadata.patient_relevance.value
        data['metadata']['created_at'] = self.metadata.created_at.isoformat()
        return data


@dataclass
class ChunkingMetrics:
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    token_efficiency: float = 0.0
    average_context_score: float = 0.0
    semantic_coherence: float = 0.0
    average_medical_relevance: float = 0.0
    chunk_size_variance: float = 0.0
    overlap_efficiency: float = 0.0


@dataclass
class ChunkingResult:
    success: bool
    chunks: List[ContentChunk] = field(default_factory=list)
    strategy: Optional[ChunkingStrategy] = None
    total_chunks: int = 0
    average_token_count: float = 0.0
    average_quality_score: float = 0.0
    processing_time: float = 0.0
    metrics: ChunkingMetrics = field(default_factory=ChunkingMetrics)
    analysis: Optional[ContentAnalysis] = None
    warnings: List[str] = field(default_factory=list)
    rejected: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class StructuredChunk:
    """Embedding oriented view of a ContentChunk."""
    id: str
    content: str
    embedding_text: str
    content_type: str
    patient_audience: List[str]
    section_path: List[str]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class _Unit:
    """Smallest piece a strategy accumulates."""
    text: str
    path: Tuple[str, ...] = ()
    chunk_type: str = "paragraph"
    group: str = ""


@dataclass
class _Draft:
    text: str
    paths: List[Tuple[str, ...]]
    chunk_type: str


def _split_paragraphs(text: str) -> List[str]:
    return [p.strip() for p in _PARAGRAPH_SPLIT_RE.split(text) if p.strip()]


def _split_sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]


def _words_for_tokens(tokens: int) -> int:
    """Largest word count whose estimated size stays within ``tokens``."""
    return max(1, int(tokens / TOKENS_PER_WORD))


def _fits(words: int, max_tokens: int) -> bool:
    return round(words * TOKENS_PER_WORD) <= max_tokens


class IntelligentChunker:
    """Builds chunks for one document at a time.

    Instances hold only configuration, so one instance per worker is
    enough for parallel runs.
    """

    def __init__(self, options: Optional[ChunkingOptions] = None,
                 thresholds: Optional[StrategyThresholds] = None):
        self.options = options or ChunkingOptions()
        self.thresholds = thresholds or StrategyThresholds()

    @log_performance(threshold_ms=2000.0)
    def chunk_content(self, content: Optional[str], url: str, title: str,
                      structured_content=None) -> ChunkingResult:
        """Chunk a document.

        Args:
            content: Plain text of the document, paragraphs separated by
                blank lines.
            url: Source URL; chunk ids derive from it.
            title: Source title copied into chunk metadata.
            structured_content: Optional StructuredContent from the extractor.

        Returns:
            A ChunkingResult. Empty or unusable input yields
            ``success=False`` rather than an exception.
        """
        start = time.perf_counter()
        warnings: List[str] = []

        if not content or not content.strip():
            return ChunkingResult(success=False, warnings=["Empty content provided"], error="Empty content")

        try:
            analysis = analyze_content(content, structured_content, self.thresholds)
            strategy = self._resolve_strategy(select_strategy(self.options, analysis), structured_content, warnings)
            drafts = self._build_drafts(strategy, content, structured_content, warnings)

            doc_id = generate_url_hash(url)
            rejected: Dict[str, int] = {}
            chunks: List[ContentChunk] = []
            for ordinal, draft in enumerate(drafts):
                chunk = self._make_chunk(draft, ordinal, doc_id, url, title, strategy, structured_content)
                reason = self._rejection_reason(chunk)
                if reason:
                    message = (f"Rejected chunk {chunk.id} ({reason}): {chunk.token_count} tokens, "
                               f"quality {chunk.metadata.quality_score:.2f}")
                    logger.warning(message)
                    warnings.append(message)
                    rejected[reason] = rejected.get(reason, 0) + 1
                    continue
                chunks.append(chunk)

            for index, chunk in enumerate(chunks):
                chunk.chunk_index = index
                chunk.total_chunks = len(chunks)
            self._link_context(chunks, strategy)
            metrics = self._calculate_metrics(chunks, analysis)
        except Exception as e:
            logger.exception(f"Chunking failed for {url}")
            return ChunkingResult(success=False, warnings=warnings, error=str(e) or type(e).__name__,
                                  processing_time=time.perf_counter() - start)

        if not chunks:
            warnings.append("No chunks passed validation")

        token_counts = [c.token_count for c in chunks]
        qualities = [c.metadata.quality_score for c in chunks]
        logger.info(f"Chunked {url} with {strategy.value} strategy into {len(chunks)} chunks "
                    f"({sum(rejected.values())} rejected)")
        return ChunkingResult(
            success=True,
            chunks=chunks,
            strategy=strategy,
            total_chunks=len(chunks),
            average_token_count=round(statistics.fmean(token_counts), 2) if chunks else 0.0,
            average_quality_score=round(statistics.fmean(qualities), 4) if chunks else 0.0,
            processing_time=time.perf_counter() - start,
            metrics=metrics,
            analysis=analysis,
            warnings=warnings,
            rejected=rejected,
        )

    # Strategy resolution

    def _resolve_strategy(self, strategy: ChunkingStrategy, structured_content,
                          warnings: List[str]) -> ChunkingStrategy:
        sections = structured_content.sections if structured_content is not None else []
        has_facts = any(s.medical_facts for s in sections)

        if strategy == ChunkingStrategy.FACTUAL and not (has_facts and self.options.medical_fact_grouping):
            warnings.append("No medical facts available; falling back to semantic chunking")
            strategy = ChunkingStrategy.SEMANTIC
        if strategy == ChunkingStrategy.SEMANTIC and not sections:
            warnings.append("No document structure available; falling back to paragraph chunking")
            strategy = ChunkingStrategy.PARAGRAPH
        if strategy == ChunkingStrategy.HIERARCHICAL and not sections:
            warnings.append("No document structure available; falling back to fixed-size chunking")
            strategy = ChunkingStrategy.FIXED_SIZE
        if strategy == ChunkingStrategy.HYBRID:
            strategy = ChunkingStrategy.PARAGRAPH
        return strategy

    def _build_drafts(self, strategy: ChunkingStrategy, content: str, structured_content,
                      warnings: List[str]) -> List[_Draft]:
        if strategy == ChunkingStrategy.SEMANTIC:
            return self._semantic_drafts(structured_content.sections)
        if strategy == ChunkingStrategy.HIERARCHICAL:
            return self._hierarchical_drafts(structured_content.sections, warnings)
        if strategy == ChunkingStrategy.FACTUAL:
            return self._factual_drafts(structured_content.sections)
        if strategy == ChunkingStrategy.SENTENCE:
            return self._sentence_drafts(content)
        if strategy == ChunkingStrategy.FIXED_SIZE:
            return self._fixed_size_drafts(content)
        return self._paragraph_drafts(content)

    # Strategies

    def _semantic_drafts(self, sections) -> List[_Draft]:
        units: List[_Unit] = []
        for section in sections:
            text = f"{section.heading}\n\n{section.content}"
            units.extend(self._fit_unit(_Unit(text, (section.heading,), "section", section.semantic_type.value)))
        return self._accumulate(units, "\n\n", split_groups=self.options.semantic_coherence)

    def _hierarchical_drafts(self, sections, warnings: List[str]) -> List[_Draft]:
        """One chunk per leaf section, plus one for each parent's lead text.

        Headings of all ancestors are repeated at the top of every chunk.
        """
        units: List[_Unit] = []
        for section in sections:
            self._hierarchy_units(section, (), units)

        drafts: List[_Draft] = []
        for unit in units:
            if not _fits(count_words(unit.text), self.options.max_token_count):
                message = f"Skipped oversized section '{' > '.join(unit.path)}' ({estimate_tokens(unit.text)} tokens)"
                logger.warning(message)
                warnings.append(message)
                continue
            drafts.append(_Draft(unit.text, [unit.path], unit.chunk_type))
        return drafts

    def _hierarchy_units(self, section, parent_path: Tuple[str, ...], units: List[_Unit]) -> None:
        path = parent_path + (section.heading,)
        header = "\n".join(path)
        chunk_type = "subsection" if parent_path else "section"
        if not section.subsections:
            units.append(_Unit(f"{header}\n\n{section.content}", path, chunk_type))
            return
        if section.lead_content:
            units.append(_Unit(f"{header}\n\n{section.lead_content}", path, chunk_type))
        for sub in section.subsections:
            self._hierarchy_units(sub, path, units)

    def _factual_drafts(self, sections) -> List[_Draft]:
        drafts: List[_Draft] = []
        loose: List[_Unit] = []
        max_facts = self.options.max_facts_per_chunk

        for section in sections:
            if not section.medical_facts:
                text = f"{section.heading}\n\n{section.content}"
                loose.extend(self._fit_unit(_Unit(text, (section.heading,), "section")))
                continue

            header_words = count_words(section.heading)
            batch: List[str] = []
            batch_words = header_words
            for fact in section.medical_facts:
                line = f"- {fact.statement}"
                words = count_words(line)
                if batch and (len(batch) >= max_facts or not _fits(batch_words + words, self.options.max_token_count)):
                    drafts.append(_Draft(section.heading + "\n\n" + "\n".join(batch), [(section.heading,)], "facts"))
                    batch, batch_words = [], header_words
                batch.append(line)
                batch_words += words
            if batch:
                drafts.append(_Draft(section.heading + "\n\n" + "\n".join(batch), [(section.heading,)], "facts"))

        return drafts + self._accumulate(loose, "\n\n")

    def _paragraph_drafts(self, content: str) -> List[_Draft]:
        units: List[_Unit] = []
        for paragraph in _split_paragraphs(content):
            units.extend(self._fit_unit(_Unit(paragraph)))
        return self._accumulate(units, "\n\n")

    def _sentence_drafts(self, content: str) -> List[_Draft]:
        units: List[_Unit] = []
        for n, paragraph in enumerate(_split_paragraphs(content)):
            # Paragraph number as group keeps sentences of different paragraphs apart
            group = str(n) if self.options.preserve_paragraphs else ""
            for sentence in _split_sentences(paragraph):
                units.extend(self._fit_unit(_Unit(sentence, (), "sentence", group)))
        return self._accumulate(units, " ", split_groups=self.options.preserve_paragraphs)

    def _fixed_size_drafts(self, content: str) -> List[_Draft]:
        words = content.split()
        window = _words_for_tokens(self.options.target_token_count)
        return [
            _Draft(" ".join(words[i:i + window]), [()], "fixed-size")
            for i in range(0, len(words), window)
        ]

    # Assembly helpers

    def _fit_unit(self, unit: _Unit) -> List[_Unit]:
        """Split a unit one level finer until every piece fits max_token_count."""
        max_tokens = self.options.max_token_count
        pending = [(unit.text, 0)]
        pieces: List[str] = []
        splitters = [_split_paragraphs]
        if self.options.preserve_sentences:
            splitters.append(_split_sentences)

        while pending:
            text, level = pending.pop(0)
            if _fits(count_words(text), max_tokens):
                pieces.append(text)
                continue
            parts: List[str] = []
            while level < len(splitters):
                parts = splitters[level](text)
                level += 1
                if len(parts) > 1:
                    break
            if len(parts) > 1:
                pending[0:0] = [(part, level) for part in parts]
            else:
                words = text.split()
                window = _words_for_tokens(max_tokens)
                pieces.extend(" ".join(words[i:i + window]) for i in range(0, len(words), window))

        return [_Unit(piece, unit.path, unit.chunk_type, unit.group) for piece in pieces]

    def _accumulate(self, units: Sequence[_Unit], separator: str,
                    split_groups: bool = False) -> List[_Draft]:
        """Greedily pack units into drafts no larger than max_token_count."""
        drafts: List[_Draft] = []
        buffer: List[_Unit] = []
        buffer_words = 0

        def flush():
            if buffer:
                paths: List[Tuple[str, ...]] = []
                for u in buffer:
                    if u.path not in paths:
                        paths.append(u.path)
                chunk_type = buffer[0].chunk_type
                drafts.append(_Draft(separator.join(u.text for u in buffer), paths, chunk_type))

        for unit in units:
            words = count_words(unit.text)
            overflow = not _fits(buffer_words + words, self.options.max_token_count)
            group_change = split_groups and buffer and buffer[-1].group != unit.group
            if buffer and (overflow or group_change):
                flush()
                buffer, buffer_words = [], 0
            buffer.append(unit)
            buffer_words += words
        flush()
        return drafts

    def _make_chunk(self, draft: _Draft, ordinal: int, doc_id: str, url: str, title: str,
                    strategy: ChunkingStrategy, structured_content) -> ContentChunk:
        content = draft.text
        relevance = round(min(1.0, medical_term_density(content) * 2), 4)
        primary_path = draft.paths[0] if draft.paths else ()
        sections = " | ".join(" > ".join(p) for p in draft.paths if p)

        chunk = ContentChunk(
            id=self._generate_stable_chunk_id(doc_id, primary_path, ordinal),
            content=content,
            chunk_index=ordinal,
            total_chunks=0,
            token_count=estimate_tokens(content),
            word_count=count_words(content),
            chunking_strategy=strategy,
            medical_relevance=relevance,
            context_preservation=ContextPreservation(),
            overlap=ChunkOverlap(strategy=strategy.value),
            metadata=ChunkMetadata(
                source_url=url,
                source_title=title,
                source_section=sections or title,
                chunk_type=draft.chunk_type,
                medical_keywords=self._medical_keywords(content),
                fact_count=self._count_facts(content, structured_content),
                patient_relevance=self._patient_relevance(relevance),
            ),
        )
        chunk.metadata.quality_score = self._quality_score(chunk)
        return chunk

    def _generate_stable_chunk_id(self, doc_id: str, path: Tuple[str, ...], offset: int) -> str:
        path_str = " > ".join(path) if path else "root"
        return hashlib.md5(f"{doc_id}#{path_str}#{offset}".encode()).hexdigest()[:12]

    def _medical_keywords(self, content: str) -> List[str]:
        lowered = content.lower()
        return [term for term in MEDICAL_TERMS + CONDITION_VARIANTS if term in lowered]

    def _count_facts(self, content: str, structured_content) -> int:
        if structured_content is None:
            return 0
        flat = " ".join(content.split())
        statements = {f.statement for s in structured_content.sections for f in s.medical_facts}
        return sum(1 for statement in statements if statement in flat)

    def _patient_relevance(self, relevance: float) -> Level:
        if relevance > 0.7:
            return Level.HIGH
        if relevance > 0.4:
            return Level.MEDIUM
        return Level.LOW

    def _quality_score(self, chunk: ContentChunk) -> float:
        score = 0.5
        if self.options.min_token_count <= chunk.token_count <= self.options.max_token_count:
            score += 0.2
        score += chunk.medical_relevance * 0.2
        text = chunk.content.rstrip()
        if not text.endswith("...") and _TERMINAL_RE.search(text):
            score += 0.1
        return round(min(score, 1.0), 4)

    # Validation and linking

    def _rejection_reason(self, chunk: ContentChunk) -> Optional[str]:
        if chunk.token_count < self.options.min_token_count:
            return "below_min_tokens"
        if chunk.token_count > self.options.max_token_count:
            return "above_max_tokens"
        if chunk.metadata.quality_score < self.options.quality_threshold:
            return "low_quality"
        return None

    def _link_context(self, chunks: List[ContentChunk], strategy: ChunkingStrategy) -> None:
        snippet_words = _words_for_tokens(self.options.overlap_tokens) if self.options.overlap_tokens else 0
        last = len(chunks) - 1

        for i, chunk in enumerate(chunks):
            context = chunk.context_preservation
            if self.options.preserve_context and snippet_words:
                if i > 0:
                    context.preceding_context = " ".join(chunks[i - 1].content.split()[-snippet_words:])
                if i < last:
                    context.following_context = " ".join(chunks[i + 1].content.split()[:snippet_words])

            chunk.overlap = ChunkOverlap(
                previous_tokens=estimate_tokens(context.preceding_context),
                next_tokens=estimate_tokens(context.following_context),
                strategy=strategy.value,
            )
            context.related_chunks = [chunks[j].id for j in (i - 1, i + 1) if 0 <= j <= last]

            score = 0.5
            if context.preceding_context:
                score += 0.2
            if context.following_context:
                score += 0.2
            if 0 < i < last:
                score += 0.1
            context.context_score = round(min(score, 1.0), 4)

    def _calculate_metrics(self, chunks: List[ContentChunk], analysis: ContentAnalysis) -> ChunkingMetrics:
        if not chunks:
            return ChunkingMetrics(total_input_tokens=analysis.total_tokens)

        token_counts = [c.token_count for c in chunks]
        output_tokens = sum(token_counts)

        overlap_budget = 2 * (len(chunks) - 1) * self.options.overlap_tokens
        overlap_used = sum(c.overlap.previous_tokens + c.overlap.next_tokens for c in chunks)

        return ChunkingMetrics(
            total_input_tokens=analysis.total_tokens,
            total_output_tokens=output_tokens,
            token_efficiency=round(output_tokens / analysis.total_tokens, 4) if analysis.total_tokens else 0.0,
            average_context_score=round(statistics.fmean(c.context_preservation.context_score for c in chunks), 4),
            semantic_coherence=round(statistics.fmean(c.metadata.quality_score for c in chunks), 4),
            average_medical_relevance=round(statistics.fmean(c.medical_relevance for c in chunks), 4),
            chunk_size_variance=round(statistics.pstdev(token_counts), 4),
            overlap_efficiency=round(min(1.0, overlap_used / overlap_budget), 4) if overlap_budget else 0.0,
        )


# Embedding oriented conversion

CONTENT_TYPE_RULES = [
    ("faq", re.compile(r"frequently asked|\bfaq\b|\bquestions?\b")),
    ("symptoms", re.compile(r"symptom|signs? of")),
    ("treatment", re.compile(r"treatment|therapy|medication|insulin")),
    ("definition", re.compile(r"what is|definition|\bis a\b|\bis an\b")),
    ("resource", re.compile(r"https?://|resources?|contact|call \d|learn more")),
]

AUDIENCE_RULES = [
    ("newly-diagnosed", re.compile(r"newly diagnosed|just diagnosed|new diagnosis")),
    ("parents/caregivers", re.compile(r"parent|caregiver|child")),
    ("healthcare-providers", re.compile(r"healthcare provider|clinician|physician|doctor")),
    ("type-1-patients", re.compile(r"type 1")),
    ("type-2-patients", re.compile(r"type 2")),
]

DEFAULT_AUDIENCE = {
    "definition": ["newly-diagnosed"],
    "symptoms": ["newly-diagnosed"],
    "treatment": ["type-1-patients", "type-2-patients"],
}


def embedding_text(content: str) -> str:
    """Content with markdown markers removed and whitespace collapsed."""
    return " ".join(_MARKDOWN_RE.sub(r"\1", content).split())


def detect_content_type(chunk: ContentChunk) -> str:
    if chunk.metadata.chunk_type == "facts":
        return "facts"
    lowered = chunk.content.lower()
    for content_type, pattern in CONTENT_TYPE_RULES:
        if pattern.search(lowered):
            return content_type
    return "general"


def detect_patient_audience(content: str, content_type: str) -> List[str]:
    lowered = content.lower()
    audience = [name for name, pattern in AUDIENCE_RULES if pattern.search(lowered)]
    return audience or list(DEFAULT_AUDIENCE.get(content_type, ["general-public"]))


def create_structured_chunks(chunks: List[ContentChunk]) -> List[StructuredChunk]:
    """Convert chunks for an embedding service."""
    structured = []
    for chunk in chunks:
        content_type = detect_content_type(chunk)
        section_path = [p.strip() for p in chunk.metadata.source_section.split(" > ") if p.strip()]
        structured.append(StructuredChunk(
            id=chunk.id,
            content=chunk.content,
            embedding_text=embedding_text(chunk.content),
            content_type=content_type,
            patient_audience=detect_patient_audience(chunk.content, content_type),
            section_path=section_path,
            metadata={
                'source_url': chunk.metadata.source_url,
                'source_title': chunk.metadata.source_title,
                'chunk_index': chunk.chunk_index,
                'total_chunks': chunk.total_chunks,
                'token_count': chunk.token_count,
                'quality_score': chunk.metadata.quality_score,
                'medical_keywords': list(chunk.metadata.medical_keywords),
                'chunking_strategy': chunk.chunking_strategy.value,
            },
        ))
    return structured


def chunk_content(content: Optional[str], url: str, title: str, structured_content=None,
                  options: Optional[ChunkingOptions] = None) -> ChunkingResult:
    """Convenience function using a fresh chunker."""
    return IntelligentChunker(options).chunk_content(content, url, title, structured_content)

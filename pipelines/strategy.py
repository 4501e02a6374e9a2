"""Chunking strategy selection.

``analyze_content`` measures a document; ``recommend_strategy`` maps the
measurements to a strategy. Both are pure functions.
"""

import logging
import re
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from config.settings import ChunkingOptions, ChunkingStrategy, StrategyThresholds

from .medical_patterns import MEDICAL_TERMS

logger = logging.getLogger(__name__)

TOKENS_PER_WORD = 1.3

_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")


def count_words(text: str) -> int:
    return len(text.split())


def estimate_tokens(text: str) -> int:
    """Approximate token count: words x 1.3, rounded."""
    return round(count_words(text) * TOKENS_PER_WORD)


def count_paragraphs(text: str) -> int:
    return sum(1 for p in _PARAGRAPH_SPLIT_RE.split(text) if p.strip())


def medical_term_density(text: str) -> float:
    """Medical vocabulary occurrences per word."""
    words = count_words(text)
    if words == 0:
        return 0.0
    lowered = text.lower()
    occurrences = sum(lowered.count(term) for term in MEDICAL_TERMS)
    return occurrences / words


@dataclass
class ContentAnalysis:
    total_tokens: int
    total_words: int
    heading_count: int
    fact_count: int
    paragraph_count: int
    medical_term_density: float
    structural_complexity: float
    recommended_strategy: ChunkingStrategy

    @property
    def facts_per_100_words(self) -> float:
        return self.fact_count / self.total_words * 100 if self.total_words else 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['recommended_strategy'] = self.recommended_strategy.value
        return data


def analyze_content(content: str, structured_content=None,
                    thresholds: Optional[StrategyThresholds] = None) -> ContentAnalysis:
    """Measure a document and recommend a strategy for it.

    Args:
        content: Plain text of the document.
        structured_content: Optional StructuredContent from the extractor;
            supplies heading and fact counts.
        thresholds: Decision thresholds, defaults if omitted.
    """
    thresholds = thresholds or StrategyThresholds()
    words = count_words(content)

    heading_count = 0
    fact_count = 0
    if structured_content is not None:
        for section in structured_content.sections:
            heading_count += 1 + len(section.subsections)
            fact_count += len(section.medical_facts)

    paragraph_count = count_paragraphs(content)

    if words:
        heading_density = heading_count / words * 100
        fact_density = fact_count / words * 100
        paragraph_density = paragraph_count / words * 100
        complexity = min(heading_density * 0.4 + fact_density * 0.4 + paragraph_density * 0.2, 1.0)
    else:
        complexity = 0.0

    analysis = ContentAnalysis(
        total_tokens=estimate_tokens(content),
        total_words=words,
        heading_count=heading_count,
        fact_count=fact_count,
        paragraph_count=paragraph_count,
        medical_term_density=round(medical_term_density(content), 4),
        structural_complexity=round(complexity, 4),
        recommended_strategy=ChunkingStrategy.PARAGRAPH,
    )
    analysis.recommended_strategy = recommend_strategy(analysis, thresholds)
    return analysis


def recommend_strategy(analysis: ContentAnalysis,
                       thresholds: Optional[StrategyThresholds] = None) -> ChunkingStrategy:
    thresholds = thresholds or StrategyThresholds()

    fact_dense = (analysis.medical_term_density > thresholds.factual_term_density
                  or analysis.facts_per_100_words > thresholds.factual_facts_per_100_words)
    if analysis.fact_count > thresholds.factual_min_facts and fact_dense:
        return ChunkingStrategy.FACTUAL
    if (analysis.heading_count > thresholds.hierarchical_min_headings
            and analysis.structural_complexity > thresholds.hierarchical_complexity):
        return ChunkingStrategy.HIERARCHICAL
    if analysis.structural_complexity > thresholds.semantic_complexity:
        return ChunkingStrategy.SEMANTIC
    return ChunkingStrategy.PARAGRAPH


def select_strategy(options: ChunkingOptions, analysis: ContentAnalysis) -> ChunkingStrategy:
    """The configured strategy, or the analysis recommendation for hybrid."""
    if options.strategy != ChunkingStrategy.HYBRID:
        return options.strategy
    logger.debug(f"Hybrid chunking resolved to {analysis.recommended_strategy.value}")
    return analysis.recommended_strategy

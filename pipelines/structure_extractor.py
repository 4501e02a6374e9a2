#!/usr/bin/env python3
"""
Semantic Structure Extractor

Turns cleaned page markup into a tree of heading-bounded sections, labels
each section with a semantic type, and pulls out sentence-level medical
facts with confidence and evidence scores.

Extraction never raises across its public boundary: malformed or empty
input produces an ``ExtractionResult`` with ``success=False``.
"""

import logging
import re
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bs4 import BeautifulSoup, Comment, Tag

from config.settings import ExtractionOptions
from observability.logging import log_performance

from .errors import ExtractionError
from .medical_patterns import (
    AUTHORITY_BOOST,
    AUTHORITY_PATTERNS,
    CONDITION_VARIANT_RE,
    DIABETES_KEYWORDS,
    FACT_BASE_CONFIDENCE,
    HEDGING_PATTERNS,
    HEDGING_PENALTY,
    KEYWORD_HIT_FACTOR,
    MEASUREMENT_RE,
    PROPER_NOUN_RE,
    RELEVANCE_SCORES,
    SEMANTIC_CONFIDENCE_BOOST,
    FactCategory,
    Level,
    SemanticType,
    categorize_fact,
    classify_semantic_type,
    evidence_level,
    keyword_hits,
    patient_relevance,
)

logger = logging.getLogger(__name__)

HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]
CONTENT_TAGS = ["p", "li", "blockquote", "pre", "td", "th", "dd", "dt", "figcaption"]
# A div only counts as content when none of these sit inside it
BLOCK_TAGS = HEADING_TAGS + CONTENT_TAGS + [
    "div", "ul", "ol", "dl", "table", "section", "article", "main", "aside", "header", "footer", "nav",
]

NOISE_TAGS = ["script", "style", "noscript", "nav", "header", "footer", "iframe", "form", "svg"]
NOISE_SELECTORS = [
    ".navigation", ".menu", ".sidebar", ".ad", ".advertisement", ".promo", ".banner",
    ".social", ".share", ".facebook", ".twitter", ".instagram", ".comments", ".comment-section",
]
FALLBACK_SELECTORS = ["main", ".content", ".main-content", "article", ".article-content", "#content"]
REVIEW_DATE_SELECTORS = [".medical-review-date", ".last-reviewed", ".review-date", "[data-review-date]"]
REVIEW_DATE_RE = re.compile(r"\d{1,2}/\d{1,2}/\d{4}|\d{4}-\d{2}-\d{2}")

FALLBACK_HEADING = "Main Content"
PREAMBLE_HEADING = "Introduction"
MIN_HEADING_LENGTH = 3
MAX_RELATED_TOPICS = 10

SUMMARY_MIN_LENGTH = 50
SUMMARY_MAX_LENGTH = 300

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+|\n\s*\n")
_WORD_RE = re.compile(r"[A-Za-z]+")
_WHITESPACE_RE = re.compile(r"\s+")
_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")

CATEGORY_BY_TYPE = {
    SemanticType.DEFINITION: "medical-information",
    SemanticType.SYMPTOMS: "symptom-guide",
    SemanticType.TREATMENT: "treatment-information",
    SemanticType.PREVENTION: "prevention-guide",
}


@dataclass
class MedicalFact:
    """A sentence judged likely to carry verifiable medical information."""
    id: str
    statement: str
    confidence: float
    category: FactCategory
    evidence_level: Level
    key_terms: List[str] = field(default_factory=list)
    related_facts: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SemanticSection:
    """A heading-bounded region of a document.

    ``content`` covers the whole region including subsections;
    ``lead_content`` is the text before the first subsection heading.
    """
    id: str
    heading: str
    content: str
    semantic_type: SemanticType
    depth: int
    position: int
    heading_level: int = 1
    lead_content: str = ""
    key_terms: List[str] = field(default_factory=list)
    medical_facts: List[MedicalFact] = field(default_factory=list)
    patient_relevance: Level = Level.LOW
    subsections: List["SemanticSection"] = field(default_factory=list)
    word_count: int = 0
    confidence: float = 0.5
    readability_score: Optional[float] = None

    def iter_sections(self):
        """This section and all descendants, depth first."""
        yield self
        for sub in self.subsections:
            yield from sub.iter_sections()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ContentMetadata:
    content_categories: List[str]
    related_topics: List[str]
    target_audience: List[str]
    medical_accuracy: str
    quality_score: float
    last_medical_review: Optional[str] = None


@dataclass
class StructuredContent:
    url: str
    title: str
    sections: List[SemanticSection]
    summary: str
    metadata: ContentMetadata
    hierarchy_depth: int
    total_facts: int
    total_sections: int
    extracted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def iter_sections(self):
        for section in self.sections:
            yield from section.iter_sections()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['extracted_at'] = self.extracted_at.isoformat()
        return data


@dataclass
class ExtractionMetrics:
    processing_time: float = 0.0
    sections_found: int = 0
    facts_extracted: int = 0
    key_terms_identified: int = 0
    average_relevance_score: float = 0.0
    quality_score: float = 0.0
    hierarchy_complexity: float = 0.0


@dataclass
class ExtractionResult:
    success: bool
    content: Optional[StructuredContent] = None
    warnings: List[str] = field(default_factory=list)
    metrics: ExtractionMetrics = field(default_factory=ExtractionMetrics)
    error: Optional[str] = None


@dataclass
class _Block:
    text: str
    level: int = 0  # heading level, 0 for content

    @property
    def is_heading(self) -> bool:
        return self.level > 0


def _clean_text(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def count_words(text: str) -> int:
    return len(text.split())


def count_syllables(word: str) -> int:
    word = word.lower()
    groups = re.findall(r"[aeiouy]+", word)
    count = len(groups)
    if word.endswith("e") and not word.endswith(("le", "ee")) and count > 1:
        count -= 1
    return max(count, 1)


def flesch_reading_ease(text: str) -> float:
    """Flesch reading ease clamped to 0..100."""
    sentences = [s for s in re.split(r"[.!?]+", text) if s.strip()]
    words = _WORD_RE.findall(text)
    if not sentences or not words:
        return 0.0
    syllables = sum(count_syllables(w) for w in words)
    score = 206.835 - 1.015 * (len(words) / len(sentences)) - 84.6 * (syllables / len(words))
    return round(max(0.0, min(100.0, score)), 1)


class SemanticStructureExtractor:
    """Builds a StructuredContent tree from page markup."""

    def __init__(self, options: Optional[ExtractionOptions] = None):
        self.options = options or ExtractionOptions()
        self._section_counter = 0

    # Public API

    @log_performance(threshold_ms=2000.0)
    def extract_structured_content(self, html: Optional[str], url: str, title: str) -> ExtractionResult:
        """Extract the section tree of a page.

        Returns a failed result (never raises) for empty or unparseable
        input.
        """
        start = time.perf_counter()
        warnings: List[str] = []

        if not html or not html.strip():
            warnings.append("Empty HTML content provided")
            return ExtractionResult(success=False, warnings=warnings, error="Empty HTML content")

        try:
            content = self._extract(html, url, title, warnings)
        except Exception as e:
            logger.exception(f"Structure extraction failed for {url}")
            return ExtractionResult(success=False, warnings=warnings, error=str(e) or type(e).__name__)

        metrics = self._calculate_metrics(content, time.perf_counter() - start)
        logger.info(
            f"Extracted {content.total_sections} sections and {content.total_facts} facts from {url} "
            f"(quality {content.metadata.quality_score:.2f})"
        )
        return ExtractionResult(success=True, content=content, warnings=warnings, metrics=metrics)

    def extract_text(self, html: Optional[str]) -> str:
        """Cleaned plain text of a page, one block per paragraph."""
        if not html or not html.strip():
            return ""
        soup = BeautifulSoup(html, "html.parser")
        self._clean_html(soup)
        root = soup.body or soup
        blocks = self._flatten(root)
        if blocks:
            return "\n\n".join(block.text for block in blocks)

        # Markup-free page: keep the blank-line paragraph breaks of the raw text
        paragraphs = (_clean_text(p) for p in _PARAGRAPH_BREAK_RE.split(root.get_text()))
        return "\n\n".join(p for p in paragraphs if p)

    # Extraction

    def _extract(self, html: str, url: str, title: str, warnings: List[str]) -> StructuredContent:
        self._section_counter = 0
        soup = BeautifulSoup(html, "html.parser")
        review_date = self._find_review_date(soup)

        self._clean_html(soup)
        root = soup.body or soup
        if root is None:
            raise ExtractionError("Document has no parseable root element")

        blocks = self._flatten(root, warnings)
        if any(block.is_heading for block in blocks):
            sections = self._build_document_sections(blocks, warnings)
        else:
            sections = self._fallback_sections(soup, root, warnings)

        if not sections:
            warnings.append("No semantic sections found")

        hierarchy_depth = max((s.depth for sec in sections for s in sec.iter_sections()), default=0)
        total_facts = sum(len(s.medical_facts) for s in sections)
        quality = self._calculate_quality(sections, total_facts)

        return StructuredContent(
            url=url,
            title=title,
            sections=sections,
            summary=self._summarize(soup, sections),
            metadata=self._build_metadata(sections, quality, review_date),
            hierarchy_depth=hierarchy_depth,
            total_facts=total_facts,
            total_sections=len(sections),
        )

    def _clean_html(self, soup: BeautifulSoup) -> None:
        for element in soup(NOISE_TAGS):
            element.decompose()
        for selector in NOISE_SELECTORS:
            for element in soup.select(selector):
                element.decompose()
        for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
            comment.extract()

    def _is_leaf_div(self, element: Tag) -> bool:
        return element.find(BLOCK_TAGS) is None

    def _flatten(self, root: Tag, warnings: Optional[List[str]] = None) -> List[_Block]:
        """Headings and content blocks in document order, each text once."""
        blocks: List[_Block] = []
        claimed = set()

        for element in root.find_all(HEADING_TAGS + CONTENT_TAGS + ["div"]):
            if any(id(parent) in claimed for parent in element.parents):
                continue
            if element.name == "div" and not self._is_leaf_div(element):
                continue
            claimed.add(id(element))

            text = _clean_text(element.get_text(" ", strip=True))
            if element.name in HEADING_TAGS:
                if len(text) < MIN_HEADING_LENGTH:
                    if text and warnings is not None:
                        warnings.append(f"Skipped heading shorter than {MIN_HEADING_LENGTH} characters: {text!r}")
                    continue
                blocks.append(_Block(text=text, level=int(element.name[1])))
            elif len(text) >= self.options.min_block_length:
                blocks.append(_Block(text=text))

        return blocks

    def _build_document_sections(self, blocks: List[_Block], warnings: List[str]) -> List[SemanticSection]:
        first_heading = next(i for i, b in enumerate(blocks) if b.is_heading)
        sections: List[SemanticSection] = []

        preamble = [b.text for b in blocks[:first_heading]]
        if preamble:
            content = "\n\n".join(preamble)
            if len(content) >= self.options.min_section_length:
                level = min(b.level for b in blocks if b.is_heading)
                sections.append(self._make_section(self._next_section_id(), PREAMBLE_HEADING, content, content,
                                                   level, 1, 0, []))
            else:
                warnings.append("Dropped introduction text shorter than minimum section length")

        sections.extend(self._build_sections(blocks, first_heading, len(blocks), 1, warnings,
                                             position_offset=len(sections)))
        return sections

    def _build_sections(self, blocks: List[_Block], start: int, end: int, depth: int,
                        warnings: List[str], position_offset: int = 0) -> List[SemanticSection]:
        """Sections for blocks[start:end] at tree depth ``depth``.

        A heading opens a sibling when it is no deeper than every heading
        before it in the range; its span runs to the next sibling.
        """
        siblings: List[int] = []
        running_min = None
        for i in range(start, end):
            block = blocks[i]
            if block.is_heading and (running_min is None or block.level <= running_min):
                siblings.append(i)
                running_min = block.level

        sections: List[SemanticSection] = []
        for n, index in enumerate(siblings):
            span_end = siblings[n + 1] if n + 1 < len(siblings) else end
            heading = blocks[index]
            body = blocks[index + 1:span_end]

            content = "\n\n".join(b.text for b in body if not b.is_heading)
            if len(content) < self.options.min_section_length:
                warnings.append(
                    f"Dropped section '{heading.text}' ({len(content)} chars < {self.options.min_section_length})"
                )
                continue

            section_id = self._next_section_id()
            first_sub = next((k for k, b in enumerate(body) if b.is_heading), len(body))
            lead = "\n\n".join(b.text for b in body[:first_sub])

            subsections: List[SemanticSection] = []
            if self.options.include_subsections and depth < self.options.max_depth and first_sub < len(body):
                subsections = self._build_sections(blocks, index + 1 + first_sub, span_end, depth + 1, warnings)

            position = position_offset + len(sections)
            sections.append(self._make_section(section_id, heading.text, content, lead, heading.level,
                                               depth, position, subsections))
        return sections

    def _fallback_sections(self, soup: BeautifulSoup, root: Tag, warnings: List[str]) -> List[SemanticSection]:
        """Single section from the largest content container."""
        best = None
        best_length = 0
        for selector in FALLBACK_SELECTORS:
            for element in soup.select(selector):
                length = len(element.get_text(" ", strip=True))
                if length > best_length:
                    best, best_length = element, length
        container = best or root

        blocks = self._flatten(container)
        if blocks:
            content = "\n\n".join(b.text for b in blocks)
        else:
            content = _clean_text(container.get_text(" ", strip=True))

        warnings.append("No headings found; using main content fallback")
        if len(content) < self.options.min_section_length:
            return []
        return [self._make_section(self._next_section_id(), FALLBACK_HEADING, content, content, 1, 1, 0, [])]

    def _next_section_id(self) -> str:
        self._section_counter += 1
        return f"section-{self._section_counter}"

    def _make_section(self, section_id: str, heading: str, content: str, lead: str, heading_level: int,
                      depth: int, position: int, subsections: List[SemanticSection]) -> SemanticSection:
        semantic_type, confidence = classify_semantic_type(heading, content)

        facts: List[MedicalFact] = []
        if self.options.extract_medical_facts:
            facts = self.extract_medical_facts(content, semantic_type, section_id)

        return SemanticSection(
            id=section_id,
            heading=heading,
            content=content,
            lead_content=lead,
            semantic_type=semantic_type,
            depth=depth,
            position=position,
            heading_level=heading_level,
            key_terms=self.extract_key_terms(f"{heading} {content}"),
            medical_facts=facts,
            patient_relevance=patient_relevance(f"{heading} {content}"),
            subsections=subsections,
            word_count=count_words(content),
            confidence=confidence,
            readability_score=flesch_reading_ease(content) if self.options.calculate_readability else None,
        )

    # Terms and facts

    def extract_key_terms(self, text: str) -> List[str]:
        """Dictionary, pattern and proper noun terms, deduplicated and capped."""
        candidates: List[str] = []
        for keyword_set, keyword in keyword_hits(text):
            candidates.append(keyword)
        for keyword_set in DIABETES_KEYWORDS:
            for pattern in keyword_set.patterns:
                candidates.extend(m.group(0) for m in pattern.finditer(text))
        candidates.extend(m.group(0) for m in MEASUREMENT_RE.finditer(text))
        candidates.extend(m.group(0) for m in CONDITION_VARIANT_RE.finditer(text))
        candidates.extend(m.group(0) for m in PROPER_NOUN_RE.finditer(text))

        terms: List[str] = []
        seen = set()
        for term in candidates:
            term = _clean_text(term)
            key = term.lower()
            if key in seen or not 3 < len(term) < 50:
                continue
            seen.add(key)
            terms.append(term)
            if len(terms) >= self.options.max_key_terms:
                break
        return terms

    def score_fact_confidence(self, sentence: str, semantic_type: SemanticType) -> Tuple[float, List[str]]:
        """Confidence in 0..1 and the dictionary terms that contributed."""
        confidence = FACT_BASE_CONFIDENCE + SEMANTIC_CONFIDENCE_BOOST.get(semantic_type, 0.1)

        terms: List[str] = []
        for keyword_set, keyword in keyword_hits(sentence):
            confidence += keyword_set.weight * KEYWORD_HIT_FACTOR
            if keyword not in terms:
                terms.append(keyword)

        if any(p.search(sentence) for p in AUTHORITY_PATTERNS):
            confidence += AUTHORITY_BOOST
        if any(p.search(sentence) for p in HEDGING_PATTERNS):
            confidence -= HEDGING_PENALTY

        return max(0.0, min(1.0, confidence)), terms

    def extract_medical_facts(self, content: str, semantic_type: SemanticType,
                              section_id: str) -> List[MedicalFact]:
        facts: List[MedicalFact] = []
        for raw in _SENTENCE_SPLIT_RE.split(content):
            sentence = _clean_text(raw)
            if not self.options.min_fact_length <= len(sentence) <= self.options.max_fact_length:
                continue

            confidence, terms = self.score_fact_confidence(sentence, semantic_type)
            if confidence < self.options.fact_confidence_threshold:
                continue

            facts.append(MedicalFact(
                id=f"{section_id}-fact-{len(facts) + 1}",
                statement=sentence,
                confidence=round(confidence, 4),
                category=categorize_fact(sentence, semantic_type),
                evidence_level=evidence_level(sentence),
                key_terms=terms,
            ))

        self._link_related_facts(facts)
        return facts

    def _link_related_facts(self, facts: List[MedicalFact]) -> None:
        for fact in facts:
            terms = {t.lower() for t in fact.key_terms}
            fact.related_facts = [
                other.id for other in facts
                if other is not fact and terms & {t.lower() for t in other.key_terms}
            ]

    # Document level scoring

    def _calculate_quality(self, sections: List[SemanticSection], total_facts: int) -> float:
        quality = 0.5
        if len(sections) > 1:
            quality += 0.1
        if len(sections) > 3:
            quality += 0.1
        if total_facts > 0:
            quality += 0.1
        if total_facts > 5:
            quality += 0.1
        if len({s.semantic_type for s in sections}) > 2:
            quality += 0.1
        if any(s.subsections for s in sections):
            quality += 0.1
        return round(min(quality, 1.0), 2)

    def _summarize(self, soup: BeautifulSoup, sections: List[SemanticSection]) -> str:
        for paragraph in soup.find_all("p"):
            text = _clean_text(paragraph.get_text(" ", strip=True))
            if SUMMARY_MIN_LENGTH < len(text) < SUMMARY_MAX_LENGTH:
                return text
        if not sections:
            return ""
        headings = ", ".join(s.heading for s in sections[:3])
        return f"Content covering: {headings}."

    def _find_review_date(self, soup: BeautifulSoup) -> Optional[str]:
        for selector in REVIEW_DATE_SELECTORS:
            for element in soup.select(selector):
                candidates = [element.get("data-review-date") or "", element.get_text(" ", strip=True)]
                for candidate in candidates:
                    match = REVIEW_DATE_RE.search(candidate)
                    if match:
                        return match.group(0)
        return None

    def _build_metadata(self, sections: List[SemanticSection], quality: float,
                        review_date: Optional[str]) -> ContentMetadata:
        categories: List[str] = []
        for section in sections:
            category = CATEGORY_BY_TYPE.get(section.semantic_type, "patient-education")
            if category not in categories:
                categories.append(category)
        categories.append("diabetes-information")

        topics: List[str] = []
        for section in sections:
            if RELEVANCE_SCORES[section.patient_relevance] < self.options.relevance_threshold:
                continue
            for term in section.key_terms:
                if len(term) > 3 and term not in topics:
                    topics.append(term)
        return ContentMetadata(
            content_categories=categories,
            related_topics=topics[:MAX_RELATED_TOPICS],
            target_audience=list(self.options.target_audience),
            medical_accuracy="medically-reviewed" if review_date else "unreviewed",
            quality_score=quality,
            last_medical_review=review_date,
        )

    def _calculate_metrics(self, content: StructuredContent, processing_time: float) -> ExtractionMetrics:
        all_sections = list(content.iter_sections())
        key_terms = {t.lower() for s in all_sections for t in s.key_terms}
        relevance = [RELEVANCE_SCORES[s.patient_relevance] for s in all_sections]
        return ExtractionMetrics(
            processing_time=processing_time,
            sections_found=len(all_sections),
            facts_extracted=content.total_facts,
            key_terms_identified=len(key_terms),
            average_relevance_score=round(sum(relevance) / len(relevance), 4) if relevance else 0.0,
            quality_score=content.metadata.quality_score,
            hierarchy_complexity=round(len(all_sections) / len(content.sections), 2) if content.sections else 0.0,
        )


def extract_structured_content(html: Optional[str], url: str, title: str,
                               options: Optional[ExtractionOptions] = None) -> ExtractionResult:
    """Convenience wrapper using a fresh extractor."""
    return SemanticStructureExtractor(options).extract_structured_content(html, url, title)

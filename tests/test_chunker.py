"""Tests for the intelligent chunker."""

import pytest
from hypothesis import given, settings, strategies as st

from config.settings import ChunkingOptions, ChunkingStrategy
from pipelines.chunker import (
    IntelligentChunker,
    chunk_content,
    create_structured_chunks,
    detect_patient_audience,
    embedding_text,
)
from pipelines.medical_patterns import FactCategory, Level, SemanticType
from pipelines.structure_extractor import (
    ContentMetadata,
    MedicalFact,
    SemanticSection,
    SemanticStructureExtractor,
    StructuredContent,
)

URL = "https://diabetes.example.org/guide"
TITLE = "Diabetes Guide"

MONITORING_SENTENCE = "Diabetes care involves regular monitoring of blood glucose levels. "


@pytest.fixture
def long_text():
    return " ".join(f"w{i}" for i in range(10000))


@pytest.fixture
def structured_sample(sample_html, sample_url, sample_title):
    extractor = SemanticStructureExtractor()
    structured = extractor.extract_structured_content(sample_html, sample_url, sample_title).content
    return extractor.extract_text(sample_html), structured


def fact_section(count):
    facts = [
        MedicalFact(
            id=f"section-1-fact-{i + 1}",
            statement=f"Insulin therapy lowers blood glucose in patient group {i}.",
            confidence=0.9,
            category=FactCategory.TREATMENT_OPTION,
            evidence_level=Level.MEDIUM,
        )
        for i in range(count)
    ]
    section = SemanticSection(
        id="section-1",
        heading="Insulin Therapy",
        content=" ".join(f.statement for f in facts),
        semantic_type=SemanticType.TREATMENT,
        depth=1,
        position=0,
        medical_facts=facts,
    )
    structured = StructuredContent(
        url=URL,
        title=TITLE,
        sections=[section],
        summary="",
        metadata=ContentMetadata(
            content_categories=["treatment-information", "diabetes-information"],
            related_topics=[],
            target_audience=["patients"],
            medical_accuracy="unreviewed",
            quality_score=0.7,
        ),
        hierarchy_depth=1,
        total_facts=count,
        total_sections=1,
    )
    return "\n\n".join(f.statement for f in facts), structured


class TestChunkBounds:
    """Size gates and numbering."""

    def test_fixed_size_chunks(self, long_text):
        result = chunk_content(long_text, URL, TITLE, options=ChunkingOptions(strategy=ChunkingStrategy.FIXED_SIZE))

        assert result.success is True
        assert result.strategy == ChunkingStrategy.FIXED_SIZE
        assert result.total_chunks == 18
        assert len(result.chunks) == 18
        assert result.chunks[-1].word_count == 208
        assert result.chunks[-1].token_count == 270
        for index, chunk in enumerate(result.chunks):
            assert 200 <= chunk.token_count <= 1000
            assert chunk.chunk_index == index
            assert chunk.total_chunks == 18

    def test_single_paragraph_is_one_chunk(self):
        text = MONITORING_SENTENCE * 20
        result = chunk_content(text, URL, TITLE)

        assert result.strategy == ChunkingStrategy.PARAGRAPH
        assert len(result.chunks) == 1
        chunk = result.chunks[0]
        assert chunk.content == text.strip()
        assert chunk.token_count == 234
        assert chunk.metadata.quality_score == pytest.approx(0.9333, abs=1e-4)
        assert chunk.metadata.patient_relevance == Level.MEDIUM
        assert "diabetes" in chunk.metadata.medical_keywords

    def test_empty_content(self):
        result = chunk_content("   ", URL, TITLE)
        assert result.success is False
        assert result.error == "Empty content"
        assert result.chunks == []

    def test_short_content_rejected(self):
        result = chunk_content("Short text here.", URL, TITLE)

        assert result.success is True
        assert result.chunks == []
        assert result.rejected == {"below_min_tokens": 1}
        assert any(w.startswith("Rejected chunk") for w in result.warnings)

    def test_quality_gate(self, long_text):
        options = ChunkingOptions(strategy=ChunkingStrategy.FIXED_SIZE, quality_threshold=0.95)
        result = chunk_content(long_text, URL, TITLE, options=options)

        assert result.chunks == []
        assert result.rejected == {"low_quality": 18}

    def test_oversized_paragraph_is_split(self):
        paragraph = MONITORING_SENTENCE * 120
        options = ChunkingOptions(strategy=ChunkingStrategy.PARAGRAPH, min_token_count=10)
        result = chunk_content(paragraph, URL, TITLE, options=options)

        assert len(result.chunks) > 1
        assert all(c.token_count <= 1000 for c in result.chunks)
        assert all(c.content.endswith("levels.") for c in result.chunks)

    def test_sentence_strategy_respects_paragraphs(self):
        text = "First paragraph sentence one. Sentence two.\n\nSecond paragraph sentence."
        options = ChunkingOptions(strategy=ChunkingStrategy.SENTENCE, min_token_count=1,
                                  preserve_paragraphs=True, quality_threshold=0.0)
        result = chunk_content(text, URL, TITLE, options=options)

        assert [c.content for c in result.chunks] == [
            "First paragraph sentence one. Sentence two.",
            "Second paragraph sentence.",
        ]

    def test_ids_are_deterministic(self, long_text):
        options = ChunkingOptions(strategy=ChunkingStrategy.FIXED_SIZE)
        first = [c.id for c in chunk_content(long_text, URL, TITLE, options=options).chunks]
        second = [c.id for c in chunk_content(long_text, URL, TITLE, options=options).chunks]
        other = [c.id for c in chunk_content(long_text, URL + "/other", TITLE, options=options).chunks]

        assert first == second
        assert len(set(first)) == len(first)
        assert first[0] != other[0]


class TestContextLinking:

    @pytest.fixture
    def result(self, long_text):
        return chunk_content(long_text, URL, TITLE, options=ChunkingOptions(strategy=ChunkingStrategy.FIXED_SIZE))

    def test_neighbour_snippets(self, result, long_text):
        words = long_text.split()
        first, second = result.chunks[:2]

        assert first.context_preservation.preceding_context == ""
        assert first.context_preservation.following_context == " ".join(words[576:614])
        assert second.context_preservation.preceding_context == " ".join(words[538:576])
        assert second.overlap.previous_tokens == 49
        assert second.overlap.previous_tokens <= 50

    def test_context_scores(self, result):
        scores = [c.context_preservation.context_score for c in result.chunks]
        assert scores[0] == 0.7
        assert scores[-1] == 0.7
        assert all(score == 1.0 for score in scores[1:-1])

    def test_related_chunks(self, result):
        chunks = result.chunks
        assert chunks[0].context_preservation.related_chunks == [chunks[1].id]
        assert chunks[5].context_preservation.related_chunks == [chunks[4].id, chunks[6].id]

    def test_metrics(self, result):
        metrics = result.metrics
        assert metrics.total_input_tokens == 13000
        assert metrics.overlap_efficiency == pytest.approx(0.98)
        assert metrics.chunk_size_variance > 0
        assert metrics.average_medical_relevance == 0.0

    def test_context_disabled(self, long_text):
        options = ChunkingOptions(strategy=ChunkingStrategy.FIXED_SIZE, preserve_context=False)
        chunk = chunk_content(long_text, URL, TITLE, options=options).chunks[1]
        assert chunk.context_preservation.preceding_context == ""
        assert chunk.context_preservation.context_score == 0.6


class TestStructuredStrategies:

    def test_semantic(self, structured_sample, sample_url, sample_title):
        text, structured = structured_sample
        options = ChunkingOptions(strategy=ChunkingStrategy.SEMANTIC, min_token_count=10)
        result = chunk_content(text, sample_url, sample_title, structured, options)

        assert result.strategy == ChunkingStrategy.SEMANTIC
        assert len(result.chunks) == 1
        assert result.chunks[0].metadata.source_section == "Understanding Type 2 Diabetes"
        assert result.chunks[0].metadata.fact_count > 0

    def test_semantic_without_structure_falls_back(self):
        options = ChunkingOptions(strategy=ChunkingStrategy.SEMANTIC, min_token_count=10)
        result = chunk_content(MONITORING_SENTENCE * 20, URL, TITLE, options=options)

        assert result.strategy == ChunkingStrategy.PARAGRAPH
        assert any("falling back to paragraph" in w for w in result.warnings)

    def test_hierarchical(self, structured_sample, sample_url, sample_title):
        text, structured = structured_sample
        options = ChunkingOptions(strategy=ChunkingStrategy.HIERARCHICAL, min_token_count=10)
        chunks = chunk_content(text, sample_url, sample_title, structured, options).chunks

        assert [c.metadata.source_section for c in chunks] == [
            "Understanding Type 2 Diabetes",
            "Understanding Type 2 Diabetes > Symptoms",
            "Understanding Type 2 Diabetes > Symptoms > Early warning signs",
            "Understanding Type 2 Diabetes > Treatment",
        ]
        assert chunks[1].content.startswith("Understanding Type 2 Diabetes\nSymptoms\n\nCommon symptoms")
        assert "Early signs" not in chunks[1].content
        assert chunks[1].metadata.chunk_type == "subsection"

    def test_hierarchical_keeps_every_ancestor_heading(self, structured_sample, sample_url, sample_title):
        text, structured = structured_sample
        options = ChunkingOptions(strategy=ChunkingStrategy.HIERARCHICAL, min_token_count=10)
        deepest = chunk_content(text, sample_url, sample_title, structured, options).chunks[2]

        assert deepest.content.startswith(
            "Understanding Type 2 Diabetes\nSymptoms\nEarly warning signs\n\nEarly signs are often mild")
        assert deepest.metadata.chunk_type == "subsection"

    def test_hierarchical_skips_oversized_sections(self, structured_sample, sample_url, sample_title):
        text, structured = structured_sample
        options = ChunkingOptions(strategy=ChunkingStrategy.HIERARCHICAL, min_token_count=1,
                                  target_token_count=20, max_token_count=30)
        result = chunk_content(text, sample_url, sample_title, structured, options)

        assert any("Skipped oversized section 'Understanding Type 2 Diabetes > Treatment'" in w
                   for w in result.warnings)
        assert all(c.token_count <= 30 for c in result.chunks)

    def test_hierarchical_without_structure_falls_back(self, long_text):
        options = ChunkingOptions(strategy=ChunkingStrategy.HIERARCHICAL)
        result = chunk_content(long_text, URL, TITLE, options=options)
        assert result.strategy == ChunkingStrategy.FIXED_SIZE

    def test_factual_caps_facts_per_chunk(self):
        text, structured = fact_section(25)
        options = ChunkingOptions(strategy=ChunkingStrategy.FACTUAL, min_token_count=1)
        chunks = chunk_content(text, URL, TITLE, structured, options).chunks

        fact_lines = [sum(1 for line in c.content.splitlines() if line.startswith("- ")) for c in chunks]
        assert fact_lines == [10, 10, 5]
        assert [c.metadata.fact_count for c in chunks] == [10, 10, 5]
        assert all(c.metadata.chunk_type == "facts" for c in chunks)

    def test_factual_without_facts_falls_back(self, structured_sample, sample_url, sample_title):
        text, structured = structured_sample
        options = ChunkingOptions(strategy=ChunkingStrategy.FACTUAL, min_token_count=10,
                                  medical_fact_grouping=False)
        result = chunk_content(text, sample_url, sample_title, structured, options)
        assert result.strategy == ChunkingStrategy.SEMANTIC

    def test_chunker_instance_is_reusable(self, structured_sample, sample_url, sample_title):
        text, structured = structured_sample
        chunker = IntelligentChunker(ChunkingOptions(strategy=ChunkingStrategy.HIERARCHICAL, min_token_count=10))
        first = chunker.chunk_content(text, sample_url, sample_title, structured)
        second = chunker.chunk_content(text, sample_url, sample_title, structured)
        assert [c.id for c in first.chunks] == [c.id for c in second.chunks]


class TestStructuredChunks:

    def test_embedding_text_strips_markdown(self):
        assert embedding_text("## Symptoms\n\n- Increased **thirst** and `urination`") == \
            "Symptoms Increased thirst and urination"

    def test_patient_audience(self):
        assert detect_patient_audience("Insulin therapy for type 2 adults", "treatment") == ["type-2-patients"]
        assert detect_patient_audience("General wellness advice.", "general") == ["general-public"]
        assert detect_patient_audience("Overview text.", "definition") == ["newly-diagnosed"]

    def test_create_structured_chunks(self, structured_sample, sample_url, sample_title):
        text, structured = structured_sample
        options = ChunkingOptions(strategy=ChunkingStrategy.HIERARCHICAL, min_token_count=10)
        chunks = chunk_content(text, sample_url, sample_title, structured, options).chunks

        converted = create_structured_chunks(chunks)

        symptoms = converted[1]
        assert symptoms.id == chunks[1].id
        assert symptoms.section_path == ["Understanding Type 2 Diabetes", "Symptoms"]
        assert symptoms.content_type == "symptoms"
        assert "type-2-patients" in symptoms.patient_audience
        assert symptoms.metadata['chunking_strategy'] == "hierarchical"
        assert "\n" not in symptoms.embedding_text

    def test_fact_chunks_have_facts_type(self):
        text, structured = fact_section(3)
        options = ChunkingOptions(strategy=ChunkingStrategy.FACTUAL, min_token_count=1)
        chunks = chunk_content(text, URL, TITLE, structured, options).chunks
        assert create_structured_chunks(chunks)[0].content_type == "facts"

    def test_chunk_serializes(self):
        chunk = chunk_content(MONITORING_SENTENCE * 20, URL, TITLE).chunks[0]
        data = chunk.to_dict()
        assert data['chunking_strategy'] == "paragraph"
        assert data['metadata']['patient_relevance'] == "medium"


VOCABULARY = ["insulin", "glucose", "diabetes", "patients", "daily", "blood", "sugar",
              "levels", "check", "often", "exercise", "doctor", "meals", "steady"]

sentences = st.lists(st.sampled_from(VOCABULARY), min_size=1, max_size=25).map(
    lambda words: " ".join(words).capitalize() + ".")
paragraphs = st.lists(sentences, min_size=1, max_size=8).map(" ".join)
documents = st.lists(paragraphs, min_size=1, max_size=12)

TEXT_STRATEGIES = [ChunkingStrategy.PARAGRAPH, ChunkingStrategy.SENTENCE,
                   ChunkingStrategy.FIXED_SIZE, ChunkingStrategy.HYBRID]
STRUCTURED_STRATEGIES = [ChunkingStrategy.SEMANTIC, ChunkingStrategy.HIERARCHICAL,
                         ChunkingStrategy.FACTUAL, ChunkingStrategy.HYBRID]


@st.composite
def chunking_options(draw, strategies):
    max_tokens = draw(st.integers(min_value=5, max_value=400))
    return ChunkingOptions(
        strategy=draw(st.sampled_from(strategies)),
        max_token_count=max_tokens,
        min_token_count=draw(st.integers(min_value=0, max_value=max_tokens)),
        target_token_count=draw(st.integers(min_value=1, max_value=max_tokens)),
        overlap_tokens=draw(st.integers(min_value=0, max_value=60)),
        preserve_sentences=draw(st.booleans()),
        preserve_paragraphs=draw(st.booleans()),
        semantic_coherence=draw(st.booleans()),
        quality_threshold=draw(st.floats(min_value=0.0, max_value=1.0)),
        max_facts_per_chunk=draw(st.integers(min_value=1, max_value=12)),
    )


def structure_for(paragraph_list, nested):
    """Sections built from paragraphs, each sentence recorded as a fact."""
    sections = []
    for i, paragraph in enumerate(paragraph_list):
        facts = [
            MedicalFact(id=f"section-{i + 1}-fact-{n + 1}", statement=sentence, confidence=0.8,
                        category=FactCategory.TREATMENT_OPTION, evidence_level=Level.MEDIUM)
            for n, sentence in enumerate(s for s in paragraph.split(". ") if s)
        ]
        sections.append(SemanticSection(
            id=f"section-{i + 1}", heading=f"Part {i + 1}", content=paragraph,
            semantic_type=SemanticType.GENERAL, depth=1, position=i,
            lead_content=paragraph, medical_facts=facts,
        ))
    if nested and len(sections) > 1:
        parent, children = sections[0], sections[1:]
        for child in children:
            child.depth = 2
        parent.subsections = children
        parent.content = "\n\n".join(paragraph_list)
        sections = [parent]
    return StructuredContent(
        url=URL, title=TITLE, sections=sections, summary="",
        metadata=ContentMetadata(content_categories=[], related_topics=[], target_audience=["patients"],
                                 medical_accuracy="unreviewed", quality_score=0.5),
        hierarchy_depth=2 if nested else 1,
        total_facts=sum(len(s.medical_facts) for s in sections),
        total_sections=len(sections),
    )


def assert_bounded_and_numbered(result, options):
    assert result.success is True
    assert result.total_chunks == len(result.chunks)
    for index, chunk in enumerate(result.chunks):
        assert options.min_token_count <= chunk.token_count <= options.max_token_count
        assert chunk.chunk_index == index
        assert chunk.total_chunks == len(result.chunks)


class TestChunkProperties:
    """Size bounds and numbering hold for any input and option set."""

    @settings(max_examples=60, deadline=None)
    @given(documents, chunking_options(TEXT_STRATEGIES))
    def test_plain_text_chunks(self, paragraph_list, options):
        result = chunk_content("\n\n".join(paragraph_list), URL, TITLE, options=options)
        assert_bounded_and_numbered(result, options)

    @settings(max_examples=60, deadline=None)
    @given(documents, chunking_options(STRUCTURED_STRATEGIES), st.booleans())
    def test_structured_chunks(self, paragraph_list, options, nested):
        structured = structure_for(paragraph_list, nested)
        result = chunk_content("\n\n".join(paragraph_list), URL, TITLE, structured, options)
        assert_bounded_and_numbered(result, options)

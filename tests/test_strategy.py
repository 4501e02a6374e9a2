"""Tests for content analysis and strategy selection."""

import pytest

from config.settings import ChunkingOptions, ChunkingStrategy, StrategyThresholds
from pipelines.strategy import (
    ContentAnalysis,
    analyze_content,
    count_paragraphs,
    estimate_tokens,
    medical_term_density,
    recommend_strategy,
    select_strategy,
)
from pipelines.structure_extractor import SemanticStructureExtractor


def make_analysis(**overrides):
    values = dict(
        total_tokens=260,
        total_words=200,
        heading_count=0,
        fact_count=0,
        paragraph_count=1,
        medical_term_density=0.0,
        structural_complexity=0.0,
        recommended_strategy=ChunkingStrategy.PARAGRAPH,
    )
    values.update(overrides)
    return ContentAnalysis(**values)


class TestMeasurements:

    def test_estimate_tokens(self):
        assert estimate_tokens("one two three") == 4
        assert estimate_tokens("") == 0

    def test_count_paragraphs(self):
        assert count_paragraphs("one\n\ntwo\n  \nthree") == 3
        assert count_paragraphs("") == 0

    def test_medical_term_density(self):
        assert medical_term_density("diabetes and insulin") == pytest.approx(2 / 3)
        assert medical_term_density("") == 0.0

    def test_facts_per_100_words(self):
        assert make_analysis(fact_count=4, total_words=200).facts_per_100_words == 2.0
        assert make_analysis(total_words=0).facts_per_100_words == 0.0


class TestRecommendStrategy:
    """Threshold rules, checked in order."""

    def test_fact_dense_content_is_factual(self):
        analysis = make_analysis(fact_count=8, total_words=200)
        assert recommend_strategy(analysis) == ChunkingStrategy.FACTUAL

    def test_term_density_alone_qualifies_as_fact_dense(self):
        analysis = make_analysis(fact_count=6, total_words=1000, medical_term_density=0.5)
        assert recommend_strategy(analysis) == ChunkingStrategy.FACTUAL

    def test_few_facts_are_not_factual(self):
        analysis = make_analysis(fact_count=5, total_words=100, medical_term_density=0.9)
        assert recommend_strategy(analysis) != ChunkingStrategy.FACTUAL

    def test_structured_content_is_hierarchical(self):
        analysis = make_analysis(heading_count=5, structural_complexity=0.7)
        assert recommend_strategy(analysis) == ChunkingStrategy.HIERARCHICAL

    def test_moderate_complexity_is_semantic(self):
        analysis = make_analysis(heading_count=2, structural_complexity=0.4)
        assert recommend_strategy(analysis) == ChunkingStrategy.SEMANTIC

    def test_plain_content_is_paragraph(self):
        assert recommend_strategy(make_analysis(structural_complexity=0.1)) == ChunkingStrategy.PARAGRAPH

    def test_custom_thresholds(self):
        thresholds = StrategyThresholds(semantic_complexity=0.05)
        analysis = make_analysis(structural_complexity=0.1)
        assert recommend_strategy(analysis, thresholds) == ChunkingStrategy.SEMANTIC


class TestSelectStrategy:

    def test_hybrid_uses_recommendation(self):
        analysis = make_analysis(recommended_strategy=ChunkingStrategy.SEMANTIC)
        assert select_strategy(ChunkingOptions(), analysis) == ChunkingStrategy.SEMANTIC

    @pytest.mark.parametrize("strategy", [
        ChunkingStrategy.FIXED_SIZE,
        ChunkingStrategy.SENTENCE,
        ChunkingStrategy.FACTUAL,
    ])
    def test_configured_strategy_wins(self, strategy):
        analysis = make_analysis(recommended_strategy=ChunkingStrategy.PARAGRAPH)
        assert select_strategy(ChunkingOptions(strategy=strategy), analysis) == strategy


class TestAnalyzeContent:

    def test_plain_text(self):
        analysis = analyze_content("word " * 100)

        assert analysis.total_words == 100
        assert analysis.total_tokens == 130
        assert analysis.heading_count == 0
        assert analysis.structural_complexity == pytest.approx(0.2)
        assert analysis.recommended_strategy == ChunkingStrategy.PARAGRAPH

    def test_empty_text(self):
        analysis = analyze_content("")
        assert analysis.structural_complexity == 0.0
        assert analysis.recommended_strategy == ChunkingStrategy.PARAGRAPH

    def test_counts_from_structure(self, sample_html, sample_url, sample_title):
        extractor = SemanticStructureExtractor()
        structured = extractor.extract_structured_content(sample_html, sample_url, sample_title).content

        analysis = analyze_content(extractor.extract_text(sample_html), structured)

        assert analysis.heading_count == 3
        assert analysis.fact_count == len(structured.sections[0].medical_facts)
        assert analysis.to_dict()['recommended_strategy'] == analysis.recommended_strategy.value

"""Ordered pattern tables for medical content classification.

All tables are compiled once at import time and read-only afterwards.
Order matters wherever a table is scanned with first-match-wins.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Pattern, Tuple


class SemanticType(str, Enum):
    DEFINITION = "medical-definition"
    SYMPTOMS = "symptoms"
    TREATMENT = "treatment"
    PREVENTION = "prevention"
    CAUSES = "causes"
    DIAGNOSIS = "diagnosis"
    COMPLICATIONS = "complications"
    LIFESTYLE = "lifestyle"
    NUTRITION = "nutrition"
    MEDICATION = "medication"
    MONITORING = "monitoring"
    STATISTICS = "statistics"
    FAQ = "faq"
    GENERAL = "general-info"
    OTHER = "other"


class FactCategory(str, Enum):
    DEFINITION = "definition"
    SYMPTOM = "symptom"
    TREATMENT_OPTION = "treatment-option"
    RISK_FACTOR = "risk-factor"
    COMPLICATION = "complication"
    PREVENTION_METHOD = "prevention-method"
    DIAGNOSTIC_CRITERIA = "diagnostic-criteria"
    MEDICATION_INFO = "medication-info"
    LIFESTYLE_RECOMMENDATION = "lifestyle-recommendation"
    MONITORING_GUIDELINE = "monitoring-guideline"
    STATISTICAL_DATA = "statistical-data"
    RESEARCH_FINDING = "research-finding"


class Level(str, Enum):
    """Shared high/medium/low scale for evidence and patient relevance."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


RELEVANCE_SCORES: Dict[Level, float] = {
    Level.HIGH: 1.0,
    Level.MEDIUM: 0.6,
    Level.LOW: 0.2,
}


@dataclass(frozen=True)
class SemanticRule:
    pattern: Pattern
    semantic_type: SemanticType
    confidence: float


@dataclass(frozen=True)
class KeywordSet:
    category: FactCategory
    keywords: Tuple[str, ...]
    patterns: Tuple[Pattern, ...]
    weight: float


def _rule(pattern: str, semantic_type: SemanticType, confidence: float) -> SemanticRule:
    return SemanticRule(re.compile(pattern, re.IGNORECASE), semantic_type, confidence)


# Scanned in order against lowercased heading + content; first match wins.
SEMANTIC_RULES: Tuple[SemanticRule, ...] = (
    _rule(r"(?:symptoms?|signs?|manifestations?)", SemanticType.SYMPTOMS, 0.95),
    _rule(r"(?:treatment|therapy|management|care)", SemanticType.TREATMENT, 0.95),
    _rule(r"(?:prevention|prevent|avoiding|reduce risk)", SemanticType.PREVENTION, 0.85),
    _rule(r"(?:causes?|etiology|risk factors?)", SemanticType.CAUSES, 0.85),
    _rule(r"(?:diagnosis|diagnostic|testing|screening)", SemanticType.DIAGNOSIS, 0.9),
    _rule(r"(?:complications?|risks?|problems)", SemanticType.COMPLICATIONS, 0.9),
    _rule(r"(?:lifestyle|living with|daily life|self-care)", SemanticType.LIFESTYLE, 0.8),
    _rule(r"(?:nutrition|diet|food|eating|meal)", SemanticType.NUTRITION, 0.85),
    _rule(r"(?:medication|medicine|drugs?|insulin|prescription)", SemanticType.MEDICATION, 0.95),
    _rule(r"(?:monitoring|tracking|checking|measuring)", SemanticType.MONITORING, 0.85),
    _rule(r"(?:what is|definition|about).*diabetes", SemanticType.DEFINITION, 0.85),
    _rule(r"(?:faq|frequently asked|questions)", SemanticType.FAQ, 0.8),
    _rule(r"(?:statistics|numbers|data|prevalence)", SemanticType.STATISTICS, 0.8),
)


def _keywords(category, keywords, patterns, weight) -> KeywordSet:
    return KeywordSet(
        category=category,
        keywords=tuple(keywords),
        patterns=tuple(re.compile(p, re.IGNORECASE) for p in patterns),
        weight=weight,
    )


DIABETES_KEYWORDS: Tuple[KeywordSet, ...] = (
    _keywords(FactCategory.DEFINITION,
              ["diabetes", "blood sugar", "glucose", "insulin", "pancreas", "hormone"],
              [r"diabetes\s+(?:mellitus|type)", r"blood\s+(?:sugar|glucose)"],
              1.0),
    _keywords(FactCategory.SYMPTOM,
              ["thirst", "urination", "fatigue", "blurred vision", "weight loss", "hunger"],
              [r"increased\s+(?:thirst|urination)", r"blurred\s+vision"],
              0.9),
    _keywords(FactCategory.TREATMENT_OPTION,
              ["insulin", "medication", "metformin", "therapy", "injection", "pump"],
              [r"insulin\s+(?:therapy|injection|pump)", r"oral\s+medication"],
              0.95),
    _keywords(FactCategory.COMPLICATION,
              ["neuropathy", "retinopathy", "nephropathy", "heart disease", "stroke"],
              [r"diabetic\s+(?:neuropathy|retinopathy|nephropathy)"],
              0.9),
    _keywords(FactCategory.MONITORING_GUIDELINE,
              ["A1C", "blood glucose", "monitoring", "testing", "meter", "strips"],
              [r"A1C\s+(?:test|level)", r"blood\s+glucose\s+(?:monitoring|testing)"],
              0.85),
    _keywords(FactCategory.LIFESTYLE_RECOMMENDATION,
              ["exercise", "diet", "nutrition", "weight", "activity", "lifestyle"],
              [r"healthy\s+(?:diet|eating|lifestyle)", r"regular\s+exercise"],
              0.8),
)

# Key term heuristics beyond the keyword dictionary
PROPER_NOUN_RE = re.compile(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\b")
MEASUREMENT_RE = re.compile(r"\b\d+(?:\.\d+)?\s*(?:mg|ml|units?|percent)\b|\b\d+(?:\.\d+)?\s*%", re.IGNORECASE)
CONDITION_VARIANT_RE = re.compile(r"\b(?:type\s+[12]|gestational|prediabetes)\b", re.IGNORECASE)

# Fact confidence
FACT_BASE_CONFIDENCE = 0.3
KEYWORD_HIT_FACTOR = 0.1

SEMANTIC_CONFIDENCE_BOOST: Dict[SemanticType, float] = {
    SemanticType.DEFINITION: 0.4,
    SemanticType.SYMPTOMS: 0.3,
    SemanticType.TREATMENT: 0.35,
    SemanticType.DIAGNOSIS: 0.35,
    SemanticType.MEDICATION: 0.4,
    SemanticType.COMPLICATIONS: 0.3,
    SemanticType.PREVENTION: 0.25,
    SemanticType.CAUSES: 0.25,
    SemanticType.MONITORING: 0.3,
    SemanticType.LIFESTYLE: 0.2,
    SemanticType.NUTRITION: 0.25,
    SemanticType.STATISTICS: 0.25,
    SemanticType.FAQ: 0.15,
    SemanticType.GENERAL: 0.1,
    SemanticType.OTHER: 0.1,
}

AUTHORITY_BOOST = 0.2
AUTHORITY_PATTERNS: Tuple[Pattern, ...] = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"\b(?:studies show|research indicates|according to)\b",
    r"\b(?:doctors recommend|physicians suggest)\b",
    r"\b(?:clinical trials?|evidence shows)\b",
    r"\b(?:american diabetes association|ada recommends)\b",
))

HEDGING_PENALTY = 0.1
HEDGING_PATTERNS: Tuple[Pattern, ...] = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"\b(?:may|might|could|possibly|perhaps)\b",
    r"\b(?:some people|in some cases)\b",
))

# Fact categorisation
SEMANTIC_TO_CATEGORY: Dict[SemanticType, FactCategory] = {
    SemanticType.DEFINITION: FactCategory.DEFINITION,
    SemanticType.SYMPTOMS: FactCategory.SYMPTOM,
    SemanticType.TREATMENT: FactCategory.TREATMENT_OPTION,
    SemanticType.DIAGNOSIS: FactCategory.DIAGNOSTIC_CRITERIA,
    SemanticType.MEDICATION: FactCategory.MEDICATION_INFO,
    SemanticType.COMPLICATIONS: FactCategory.COMPLICATION,
    SemanticType.PREVENTION: FactCategory.PREVENTION_METHOD,
    SemanticType.MONITORING: FactCategory.MONITORING_GUIDELINE,
    SemanticType.LIFESTYLE: FactCategory.LIFESTYLE_RECOMMENDATION,
    SemanticType.STATISTICS: FactCategory.STATISTICAL_DATA,
}

CATEGORY_FALLBACK_RULES: Tuple[Tuple[Pattern, FactCategory], ...] = tuple(
    (re.compile(p, re.IGNORECASE), category) for p, category in (
        (r"risk factor|increases risk|causes", FactCategory.RISK_FACTOR),
        (r"prevent|avoid|reduce risk", FactCategory.PREVENTION_METHOD),
        (r"symptom|sign|experience|feel", FactCategory.SYMPTOM),
        (r"treatment|therapy|medication|insulin", FactCategory.TREATMENT_OPTION),
        (r"studies show|research indicates|clinical trials?", FactCategory.RESEARCH_FINDING),
    )
)
DEFAULT_FACT_CATEGORY = FactCategory.DEFINITION

EVIDENCE_RULES: Tuple[Tuple[Level, Tuple[Pattern, ...]], ...] = (
    (Level.HIGH, tuple(re.compile(p, re.IGNORECASE) for p in (
        r"clinical trial|randomized|peer-reviewed|meta-analysis",
        r"american diabetes association|\bada\b|medical association",
        r"\b(?:proven|established|demonstrated)\b",
    ))),
    (Level.MEDIUM, tuple(re.compile(p, re.IGNORECASE) for p in (
        r"\bstudy\b|\bresearch\b|studies show",
        r"\bdoctors\b|\bphysicians\b|\bexperts\b",
        r"evidence suggests|data shows",
    ))),
)

PATIENT_RELEVANCE_RULES: Tuple[Tuple[Level, Tuple[Pattern, ...]], ...] = (
    (Level.HIGH, (re.compile(r"symptoms|treatment|management|daily care", re.IGNORECASE),)),
    (Level.MEDIUM, (re.compile(r"causes|prevention|diagnosis", re.IGNORECASE),)),
)

# Chunk level medical vocabulary
MEDICAL_TERMS: Tuple[str, ...] = (
    "diabetes", "insulin", "glucose", "blood sugar", "a1c", "hemoglobin",
    "pancreas", "beta cells", "carbohydrates", "medication", "treatment",
    "symptoms", "diagnosis", "management", "monitoring", "complications",
)
CONDITION_VARIANTS: Tuple[str, ...] = ("type 1", "type 2", "gestational", "prediabetes")


def classify_semantic_type(heading: str, content: str) -> Tuple[SemanticType, float]:
    """Semantic type and rule confidence for a section."""
    text = f"{heading} {content}".lower()
    for rule in SEMANTIC_RULES:
        if rule.pattern.search(text):
            return rule.semantic_type, rule.confidence
    return SemanticType.GENERAL, 0.5


def match_level(text: str, rules: Tuple[Tuple[Level, Tuple[Pattern, ...]], ...]) -> Level:
    """First level whose patterns match, else LOW."""
    for level, patterns in rules:
        if any(p.search(text) for p in patterns):
            return level
    return Level.LOW


def evidence_level(text: str) -> Level:
    return match_level(text, EVIDENCE_RULES)


def patient_relevance(text: str) -> Level:
    return match_level(text, PATIENT_RELEVANCE_RULES)


def categorize_fact(sentence: str, semantic_type: SemanticType) -> FactCategory:
    category = SEMANTIC_TO_CATEGORY.get(semantic_type)
    if category is not None:
        return category
    for pattern, fallback in CATEGORY_FALLBACK_RULES:
        if pattern.search(sentence):
            return fallback
    return DEFAULT_FACT_CATEGORY


def keyword_hits(text: str) -> List[Tuple[KeywordSet, str]]:
    """Every (keyword set, keyword) pair whose keyword occurs in ``text``."""
    lowered = text.lower()
    return [
        (keyword_set, keyword)
        for keyword_set in DIABETES_KEYWORDS
        for keyword in keyword_set.keywords
        if keyword.lower() in lowered
    ]

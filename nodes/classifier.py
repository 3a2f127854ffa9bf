"""
Inspection Classifier Node - Inspection Type Classification

Scores report text against four keyword families (storm, annual, due
diligence, survey) plus contextual clues and returns a primary type, a
confidence value and the indicators that drove the decision.

Scoring:
- A phrase found in the report-type label scores 2x its weight.
- A phrase found in the body scores its weight, plus a quarter of the weight
  for each repetition (repetitions counted up to a small cap). When the label
  was read from the body, its own occurrence is not counted again.
- Contextual clues ("insurance adjuster", "closing date") add a fixed
  confidence bonus whichever family wins.

Confidence is the winning score divided by an assumed maximum score (30),
squashed as s / (1 + s) so one strong hit never saturates it. It is a
heuristic ranking value, not a probability. A plain score / 30 is not used:
it reaches 1.0 on a single labelled hit, after which further evidence could
no longer raise confidence.
"""

import re
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Any, Optional, Pattern, Tuple

from state import ReportState
from nodes.field_extractor import extract_field

# Configure logger
logger = logging.getLogger(__name__)


# ============================================================================
# Types
# ============================================================================

class InspectionType(str, Enum):
    """Inspection categories recognized by the classifier."""
    ANNUAL = "annual"
    STORM = "storm"
    DUE_DILIGENCE = "due_diligence"
    SURVEY = "survey"
    UNKNOWN = "unknown"


class Urgency(str, Enum):
    """How soon the report's findings need attention."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


URGENCY_RANK = {Urgency.LOW: 0, Urgency.MEDIUM: 1, Urgency.HIGH: 2, Urgency.CRITICAL: 3}

DEFAULT_URGENCY: Dict[InspectionType, Urgency] = {
    InspectionType.STORM: Urgency.HIGH,
    InspectionType.ANNUAL: Urgency.LOW,
    InspectionType.DUE_DILIGENCE: Urgency.MEDIUM,
    InspectionType.SURVEY: Urgency.LOW,
    InspectionType.UNKNOWN: Urgency.MEDIUM,
}


@dataclass
class ClassifierConfig:
    """Configuration for inspection-type classification."""

    min_score_threshold: float = 15.0  # Winning family must reach this raw score
    assumed_max_score: float = 30.0  # Empirical normalizer, not derived from the weights
    label_weight_multiplier: float = 2.0  # Report-type label hits count double
    repetition_weight_fraction: float = 0.25  # Extra weight per repeated body hit
    max_counted_repetitions: int = 3
    context_clue_bonus: float = 0.05  # Added to confidence per clue found
    low_confidence_threshold: float = 0.30  # Below this, try the label fallback
    emergency_confidence_floor: float = 0.70  # Unknown + emergency language => storm
    max_indicators: int = 10


@dataclass(frozen=True)
class InspectionClassification:
    """Result of classifying one report."""
    primary_type: InspectionType = InspectionType.UNKNOWN
    confidence: float = 0.0
    indicators: Tuple[str, ...] = ()
    urgency: Urgency = Urgency.MEDIUM

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary_type": self.primary_type.value,
            "confidence": round(self.confidence, 4),
            "indicators": list(self.indicators),
            "urgency": self.urgency.value,
        }


# ============================================================================
# Keyword Families
# ============================================================================

# Iteration order doubles as the tie-break priority
CLASSIFICATION_KEYWORDS: Dict[InspectionType, List[Tuple[str, float]]] = {
    InspectionType.STORM: [
        ("storm damage", 20), ("hail damage", 15), ("wind damage", 15), ("hurricane", 15),
        ("tornado", 15), ("insurance claim", 15), ("claim inspection", 15),
        ("storm assessment", 20), ("weather damage", 15), ("emergency repair", 15),
        ("immediate repair", 15), ("storm report", 20), ("damage assessment", 15),
    ],
    InspectionType.ANNUAL: [
        ("annual inspection", 15), ("yearly inspection", 15), ("routine inspection", 15),
        ("scheduled inspection", 15), ("maintenance inspection", 15), ("annual report", 15),
        ("yearly assessment", 15), ("periodic inspection", 15), ("regular inspection", 15),
    ],
    InspectionType.DUE_DILIGENCE: [
        ("due diligence", 15), ("property acquisition", 15), ("purchase inspection", 15),
        ("pre-purchase", 15), ("acquisition report", 15), ("property assessment", 15),
        ("investment analysis", 15), ("property evaluation", 15), ("buyer inspection", 15),
    ],
    InspectionType.SURVEY: [
        ("roof survey", 10), ("condition survey", 10), ("property survey", 10),
        ("baseline inspection", 10), ("roof assessment", 10), ("condition assessment", 10),
        ("survey report", 10), ("comprehensive survey", 10),
    ],
}

CONTEXT_CLUES: Dict[InspectionType, List[str]] = {
    InspectionType.STORM: [
        "recent storm", "after storm", "post storm", "claim adjuster",
        "insurance adjuster", "adjuster", "claim number", "policy number",
    ],
    InspectionType.ANNUAL: [
        "annual contract", "maintenance contract", "service agreement",
        "yearly service", "scheduled maintenance", "routine maintenance",
    ],
    InspectionType.DUE_DILIGENCE: [
        "potential buyer", "prospective purchase", "closing date",
        "transaction", "sale", "purchase price", "investment",
    ],
}

# Report-type label fallback: (pattern, type, confidence floor)
LABEL_FALLBACKS: List[Tuple[Pattern[str], InspectionType, float]] = [
    (re.compile(r"storm|damage|claim|emergency", re.IGNORECASE), InspectionType.STORM, 0.60),
    (re.compile(r"annual|yearly|routine", re.IGNORECASE), InspectionType.ANNUAL, 0.60),
    (re.compile(r"due[\s-]*diligence|pre-?purchase|acquisition", re.IGNORECASE), InspectionType.DUE_DILIGENCE, 0.50),
    (re.compile(r"survey|assessment|condition", re.IGNORECASE), InspectionType.SURVEY, 0.50),
]

EMERGENCY_RE = re.compile(r"\b(?:immediate|emergency|critical)", re.IGNORECASE)


def _phrase_pattern(phrase: str) -> Pattern[str]:
    body = r"\s+".join(re.escape(word) for word in phrase.split())
    return re.compile(rf"\b{body}\b", re.IGNORECASE)


_KEYWORD_RES: Dict[InspectionType, List[Tuple[str, float, Pattern[str]]]] = {
    kind: [(phrase, weight, _phrase_pattern(phrase)) for phrase, weight in phrases]
    for kind, phrases in CLASSIFICATION_KEYWORDS.items()
}

_CLUE_RES: List[Tuple[str, Pattern[str]]] = [
    (clue, _phrase_pattern(clue)) for clues in CONTEXT_CLUES.values() for clue in clues
]


# ============================================================================
# Classification
# ============================================================================

@dataclass
class _Evidence:
    scores: Dict[InspectionType, float] = field(default_factory=dict)
    indicators: List[str] = field(default_factory=list)
    clue_count: int = 0

    def note(self, indicator: str) -> None:
        if indicator not in self.indicators:
            self.indicators.append(indicator)


def score_keywords(text: str, report_type: str, config: ClassifierConfig) -> _Evidence:
    """Accumulate per-family scores and indicators for a report."""
    evidence = _Evidence()

    for kind, phrases in _KEYWORD_RES.items():
        total = 0.0
        for phrase, weight, pattern in phrases:
            hits = len(pattern.findall(text)) if text else 0
            if report_type and pattern.search(report_type):
                total += weight * config.label_weight_multiplier
                evidence.note(f"{phrase} (report type)")
                # The label's own line in the body is not a second hit
                if report_type in text:
                    hits -= len(pattern.findall(report_type))

            if hits > 0:
                repeats = min(hits - 1, config.max_counted_repetitions)
                total += weight + repeats * weight * config.repetition_weight_fraction
                evidence.note(phrase)
        evidence.scores[kind] = total

    for clue, pattern in _CLUE_RES:
        if text and pattern.search(text):
            evidence.clue_count += 1
            evidence.note(clue)

    return evidence


def squash_score(score: float, config: ClassifierConfig) -> float:
    """Map a raw score onto [0, 1) using the assumed maximum score."""
    if score <= 0:
        return 0.0
    scaled = score / config.assumed_max_score
    return scaled / (1.0 + scaled)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def classify_inspection(text: Optional[str], report_type: Optional[str] = "",
                        config: Optional[ClassifierConfig] = None) -> InspectionClassification:
    """
    Classify a report into an inspection type.

    Args:
        text: Raw report text
        report_type: Free-text report-type label (from the field extractor)
        config: Scoring constants (defaults when omitted)

    Returns:
        InspectionClassification with type, confidence, indicators and urgency
    """
    config = config or ClassifierConfig()
    text = text or ""
    report_type = report_type or ""

    evidence = score_keywords(text, report_type, config)
    bonus = evidence.clue_count * config.context_clue_bonus

    primary_type = InspectionType.UNKNOWN
    best_score = 0.0
    for kind, score in evidence.scores.items():
        if score > best_score:
            primary_type, best_score = kind, score

    if best_score >= config.min_score_threshold:
        confidence = _clamp(squash_score(best_score, config) + bonus)
    else:
        primary_type = InspectionType.UNKNOWN
        confidence = 0.0

    if primary_type == InspectionType.UNKNOWN or confidence < config.low_confidence_threshold:
        for pattern, kind, floor in LABEL_FALLBACKS:
            if report_type and pattern.search(report_type):
                primary_type = kind
                confidence = max(confidence, floor)
                evidence.note(f"report type indicates {kind.value}")
                break

    if primary_type == InspectionType.UNKNOWN:
        confidence = _clamp(squash_score(best_score, config) + bonus)

    urgency = DEFAULT_URGENCY[primary_type]
    if EMERGENCY_RE.search(text):
        if URGENCY_RANK[urgency] < URGENCY_RANK[Urgency.HIGH]:
            urgency = Urgency.HIGH
        if primary_type == InspectionType.UNKNOWN:
            primary_type = InspectionType.STORM
            confidence = max(confidence, config.emergency_confidence_floor)
            evidence.note("emergency language")

    result = InspectionClassification(
        primary_type=primary_type,
        confidence=_clamp(confidence),
        indicators=tuple(evidence.indicators[:config.max_indicators]),
        urgency=urgency,
    )
    scores = {kind.value: score for kind, score in evidence.scores.items()}
    logger.debug(f"Classification scores: {scores}")
    return result


# ============================================================================
# LangGraph Node
# ============================================================================

def inspection_classifier_node(state: ReportState,
                               classifier_config: Optional[ClassifierConfig] = None) -> dict:
    """
    Node: Inspection Classifier

    Runs independently of the field extractor, so it reads the report-type
    label from the text itself.

    Returns:
        dict with "classification"
    """
    print("--- NODE: Inspection Classifier ---")

    text = state.get("raw_text", "")
    report_type = extract_field(text, "report_type")
    classification = classify_inspection(text, report_type, classifier_config)

    logger.info(
        f"Classified {state.get('filename', 'document')} as {classification.primary_type.value} "
        f"(confidence {classification.confidence:.2f}, urgency {classification.urgency.value})"
    )
    return {"classification": classification}

"""
Issue Extractor Node - Deficiencies from Inspection Report Text

Produces a de-duplicated, capped list of Issue records from raw report text.

Layers (applied in order, each skipping candidates that duplicate an issue
already recovered):
1. Section scanning: bulleted/numbered lines under EXECUTIVE SUMMARY,
   DEFICIENCIES, FINDINGS and RECOMMENDATIONS style headers.
2. Whole-document structured patterns ("Issue: desc - location - HIGH - $cost")
   and location-anchored lines ("NORTH CORNER: ...", "HVAC 3: ...").
3. Legacy single-keyword patterns ("ponding water", "membrane damage").

A layer that finds nothing is not an error.
"""

import re
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Any, Optional, Pattern, Tuple, Iterable

from state import ReportState

# Configure logger
logger = logging.getLogger(__name__)


# ============================================================================
# Types
# ============================================================================

class Severity(str, Enum):
    """Issue severity tiers."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


DEFAULT_LOCATION = "General roof area"


@dataclass(frozen=True)
class Issue:
    """A single deficiency found in a report."""
    type: str
    severity: Severity
    location: str
    description: str
    recommendation: str
    estimated_cost: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity.value,
            "location": self.location,
            "description": self.description,
            "recommendation": self.recommendation,
            "estimated_cost": round(self.estimated_cost, 2),
        }


@dataclass
class IssueExtractorConfig:
    """Configuration for issue extraction."""

    max_issues: int = 25  # Hard cap per report, discovery order preserved
    min_description_length: int = 10  # Descriptions must be strictly longer
    min_line_length: int = 15  # Section lines shorter than this are skipped
    dedup_prefix_length: int = 20  # Description prefix compared for duplicates

    # Default cost per severity when no explicit amount is found
    severity_costs: Dict[Severity, float] = field(default_factory=lambda: {
        Severity.CRITICAL: 5000.0,
        Severity.HIGH: 2500.0,
        Severity.MEDIUM: 1200.0,
        Severity.LOW: 500.0,
    })
    fallback_cost: float = 1000.0

    def cost_for(self, severity: Optional[Severity]) -> float:
        if severity is None:
            return self.fallback_cost
        return self.severity_costs.get(severity, self.fallback_cost)


# ============================================================================
# Severity, Type and Location Inference
# ============================================================================

# Checked in order; first family with a hit wins, otherwise MEDIUM
SEVERITY_KEYWORDS: List[Tuple[Severity, Tuple[str, ...]]] = [
    (Severity.CRITICAL, (
        r"\bimmediate", r"\bemergenc", r"\bcritical", r"\bfail", r"\bcollaps", r"\bdanger",
        r"\bactive(?:ly)?\b[^.\n]*\bleak", r"\bleak[^.\n]*\bactive",
    )),
    (Severity.HIGH, (
        r"\bsevere", r"\bmajor", r"\bsignificant", r"damage", r"deteriorat", r"\bwear",
        r"crack", r"\btear", r"\btorn\b", r"\bmissing",
    )),
    (Severity.LOW, (
        r"\bminor", r"\bcosmetic", r"\bclean", r"\bmaintain", r"\bmonitor", r"\bobserve",
    )),
]

_SEVERITY_RES: List[Tuple[Severity, List[Pattern[str]]]] = [
    (severity, [re.compile(p, re.IGNORECASE) for p in patterns])
    for severity, patterns in SEVERITY_KEYWORDS
]

# Ordered (predicate keywords, type label); first hit wins
ISSUE_TYPE_RULES: List[Tuple[Tuple[str, ...], str]] = [
    (("membrane", "surface"), "membrane issues"),
    (("flash",), "flashing issues"),
    (("drain",), "drainage issues"),
    (("ponding",), "ponding water"),
    (("penetrat",), "penetration issues"),
    (("equipment", "hvac"), "equipment issues"),
    (("gutter",), "gutter issues"),
    (("debris",), "debris"),
    (("structural", "support"), "structural issues"),
    (("curb",), "curb issues"),
]

LOCATION_KEYWORDS = [
    "north", "south", "east", "west", "northwest", "northeast", "southwest", "southeast",
    "corner", "edge", "center", "middle", "perimeter", "roof", "equipment", "hvac",
    "drain", "gutter", "flashing", "membrane", "surface",
]


def infer_severity(description: str) -> Severity:
    """Infer severity from the wording of a description."""
    for severity, patterns in _SEVERITY_RES:
        if any(p.search(description) for p in patterns):
            return severity
    return Severity.MEDIUM


def normalize_severity(label: Optional[str]) -> Severity:
    """Map an explicit severity label ("HIGH", "Urgent", ...) to a Severity."""
    value = (label or "").lower()
    if any(word in value for word in ("critical", "emergency", "immediate")):
        return Severity.CRITICAL
    if any(word in value for word in ("high", "urgent", "serious")):
        return Severity.HIGH
    if any(word in value for word in ("low", "minor")):
        return Severity.LOW
    return Severity.MEDIUM


def infer_issue_type(description: str) -> str:
    """Categorize a description into an issue type label."""
    lower = description.lower()
    for keywords, label in ISSUE_TYPE_RULES:
        if any(k in lower for k in keywords):
            return label
        # Standing water without the word "ponding" is a drainage problem
        if label == "drainage issues" and "water" in lower and "ponding" not in lower:
            return label
    return "general maintenance"


def infer_location(description: str) -> str:
    """Pull the words around the first location keyword, or the default location."""
    lower = description.lower()
    words = description.split()
    for keyword in LOCATION_KEYWORDS:
        if keyword not in lower:
            continue
        for index, word in enumerate(words):
            if keyword in word.lower():
                start = max(0, index - 1)
                return " ".join(words[start:index + 2])
        return keyword
    return DEFAULT_LOCATION


_COST_RE = re.compile(r"\$[ \t]*(\d[\d,]*(?:\.\d+)?)")


def parse_cost(value: Optional[str]) -> Optional[float]:
    """Parse "3,500" / "$3,500.00" into a float; None when absent or malformed."""
    if not value:
        return None
    digits = value.replace("$", "").replace(",", "").strip()
    try:
        return float(digits)
    except ValueError:
        return None


# ============================================================================
# Section Scanner (state machine)
# ============================================================================

class ScanState(Enum):
    """Section scanner states."""
    OUTSIDE = "outside"
    HEADER_SEEN = "header_seen"  # Header matched, no content line yet
    IN_SECTION = "in_section"


SECTION_HEADERS: List[Tuple[str, str]] = [
    ("Executive Summary", r"EXECUTIVE[ \t]+SUMMARY|SUMMARY[ \t]+OF[ \t]+FINDINGS|KEY[ \t]+FINDINGS"),
    ("Deficiencies", r"DEFICIENCIES|ISSUES[ \t]+IDENTIFIED|PROBLEMS[ \t]+FOUND|REPAIRS[ \t]+NEEDED"),
    ("Findings", r"FINDINGS|OBSERVATIONS|INSPECTION[ \t]+RESULTS"),
    ("Recommendations", r"RECOMMENDATIONS|IMMEDIATE[ \t]+ACTIONS?|PRIORITY[ \t]+REPAIRS?"),
]

_HEADER_RES: List[Tuple[str, Pattern[str]]] = [
    (name, re.compile(rf"^(?:{pattern})\b(?P<rest>.*)$", re.IGNORECASE))
    for name, pattern in SECTION_HEADERS
]

# A line made only of capitals (optionally colon-terminated) closes a section
_ALL_CAPS_LINE_RE = re.compile(r"^[A-Z][A-Z0-9\s&/\-]{2,}:?$")


@dataclass
class Section:
    """Lines collected under one section header."""
    name: str
    lines: List[str] = field(default_factory=list)


def match_section_header(line: str) -> Optional[Tuple[str, str]]:
    """
    Recognize a section header line.

    A header starts with a section keyword and is either written in capitals
    or followed by a colon. Text after the colon is returned as inline content.

    Returns:
        (section name, inline content) or None
    """
    stripped = line.strip()
    for name, pattern in _HEADER_RES:
        match = pattern.match(stripped)
        if not match:
            continue
        rest = match.group("rest").strip()
        if rest.startswith(":"):
            return name, rest[1:].strip()
        if stripped.upper() == stripped and any(c.isalpha() for c in stripped):
            return name, ""
    return None


class SectionScanner:
    """
    Line-driven scanner that collects section bodies.

    OUTSIDE --header--> HEADER_SEEN --content--> IN_SECTION
    IN_SECTION --blank line / all-caps line--> OUTSIDE
    any state --header--> HEADER_SEEN (new section)
    """

    def __init__(self):
        self.state = ScanState.OUTSIDE
        self.sections: List[Section] = []
        self._current: Optional[Section] = None

    def _open(self, name: str, inline: str) -> None:
        self._current = Section(name=name)
        self.sections.append(self._current)
        if inline:
            self._current.lines.append(inline)
            self.state = ScanState.IN_SECTION
        else:
            self.state = ScanState.HEADER_SEEN

    def _close(self) -> None:
        self._current = None
        self.state = ScanState.OUTSIDE

    def feed(self, line: str) -> ScanState:
        """Consume one line and return the resulting state."""
        stripped = line.strip()

        header = match_section_header(stripped) if stripped else None
        if header:
            self._open(*header)
            return self.state

        if self.state == ScanState.OUTSIDE:
            return self.state

        if not stripped:
            if self.state == ScanState.IN_SECTION:
                self._close()
            return self.state

        if _ALL_CAPS_LINE_RE.match(stripped):
            self._close()
            return self.state

        self._current.lines.append(stripped)
        self.state = ScanState.IN_SECTION
        return self.state

    def scan(self, text: str) -> List[Section]:
        for line in text.splitlines():
            self.feed(line)
        self._close()
        return self.sections


def find_sections(text: str) -> List[Section]:
    """Return the named sections of a report in document order."""
    return SectionScanner().scan(text or "")


# ============================================================================
# Whole-Document Patterns
# ============================================================================

_SEP = r"[ \t]+[-–—][ \t]+"
_SEVERITY_WORD = r"(LOW|MEDIUM|HIGH|CRITICAL)"
_AMOUNT = r"(\d[\d,]*(?:\.\d+)?)"
# Free-text fields are bounded so long single-line inputs match in linear time
_FIELD = r"([^\n]{1,200}?)"


@dataclass(frozen=True)
class StructuredPattern:
    """A whole-document pattern and the group index for each issue field."""
    name: str
    pattern: Pattern[str]
    description: int
    location: int
    severity: Optional[int] = None
    cost: Optional[int] = None


STRUCTURED_PATTERNS: List[StructuredPattern] = [
    # "Issue: description - location - HIGH - $2,500"
    StructuredPattern(
        name="labelled_tuple",
        pattern=re.compile(
            rf"(?:ISSUE|DEFICIENCY|PROBLEM|CONCERN)[ \t]*[:\-][ \t]*{_FIELD}{_SEP}{_FIELD}{_SEP}{_SEVERITY_WORD}\b"
            rf"(?:[ \t]*[-–—]?[ \t]*\$?{_AMOUNT})?",
            re.IGNORECASE,
        ),
        description=1, location=2, severity=3, cost=4,
    ),
    # "Location: description (HIGH) $2,500"
    StructuredPattern(
        name="location_with_severity",
        pattern=re.compile(
            rf"^[ \t]*([^\n:]{{3,40}}?):[ \t]*{_FIELD}[ \t]*\({_SEVERITY_WORD}\)(?:[ \t]*\${_AMOUNT})?",
            re.IGNORECASE | re.MULTILINE,
        ),
        description=2, location=1, severity=3, cost=4,
    ),
    # "• location - description (HIGH)"
    StructuredPattern(
        name="bullet_with_severity",
        pattern=re.compile(
            rf"^[ \t]*[•·][ \t]*{_FIELD}{_SEP}{_FIELD}[ \t]*\(?{_SEVERITY_WORD}\)?[ \t]*$",
            re.IGNORECASE | re.MULTILINE,
        ),
        description=2, location=1, severity=3,
    ),
    # "1. location - description $1,200"
    StructuredPattern(
        name="numbered_with_location",
        pattern=re.compile(
            rf"^[ \t]*\d+\.[ \t]*{_FIELD}{_SEP}{_FIELD}(?:[ \t]+\${_AMOUNT})?[ \t]*$",
            re.MULTILINE,
        ),
        description=2, location=1, cost=3,
    ),
]

LOCATION_PATTERNS: List[Pattern[str]] = [
    re.compile(
        r"^[ \t]*((?:NORTHWEST|NORTHEAST|SOUTHWEST|SOUTHEAST|NORTH|SOUTH|EAST|WEST)[ \t]+"
        r"(?:CORNER|SIDE|SECTION|AREA|WALL|ELEVATION))[ \t]*:?[ \t]*([^\n]+)",
        re.IGNORECASE | re.MULTILINE,
    ),
    re.compile(
        r"^[ \t]*((?:ROOF[ \t]+)?(?:PERIMETER|EDGE|CENTER|MIDDLE))[ \t]*:[ \t]*([^\n]+)",
        re.IGNORECASE | re.MULTILINE,
    ),
    re.compile(
        r"^[ \t]*((?:HVAC|EQUIPMENT|RTU|UNIT)(?:[ \t]*(?:UNIT[ \t]*)?#?\d+)?)[ \t]*:[ \t]*([^\n]+)",
        re.IGNORECASE | re.MULTILINE,
    ),
]

# Legacy fallback: (pattern, type, severity, location)
LEGACY_PATTERNS: List[Tuple[Pattern[str], str, Severity, str]] = [
    (re.compile(r"(?:ponding|standing)[ \t]+water", re.IGNORECASE), "ponding water", Severity.HIGH, "Roof surface"),
    (re.compile(r"membrane[ \t]+damage", re.IGNORECASE), "membrane damage", Severity.HIGH, "Roof membrane"),
    (re.compile(r"flashing[ \t]+issues?", re.IGNORECASE), "flashing issues", Severity.MEDIUM, "Perimeter flashing"),
    (re.compile(r"drain(?:age)?[ \t]+problems?", re.IGNORECASE), "drainage problems", Severity.MEDIUM, "Roof drains"),
    (re.compile(r"loose[ \t]+materials?", re.IGNORECASE), "loose materials", Severity.MEDIUM, "Roof surface"),
]

_BULLET_RE = re.compile(r"^(?:[•·\-\*–]|\d+[.)])[ \t]*(.+)$")
_EXPLICIT_SEVERITY_RE = re.compile(r"\((LOW|MEDIUM|HIGH|CRITICAL)\)", re.IGNORECASE)


# ============================================================================
# Extraction
# ============================================================================

class _IssueCollector:
    """Accumulates issues while enforcing de-duplication and the cap."""

    def __init__(self, config: IssueExtractorConfig):
        self.config = config
        self.issues: List[Issue] = []

    @property
    def full(self) -> bool:
        return len(self.issues) >= self.config.max_issues

    def is_duplicate(self, description: str, location: str, issue_type: str) -> bool:
        prefix_length = self.config.dedup_prefix_length
        candidate = description.lower()
        candidate_location = location.lower()
        check_location = location != DEFAULT_LOCATION

        for existing in self.issues:
            existing_desc = existing.description.lower()
            if candidate[:prefix_length] in existing_desc or existing_desc[:prefix_length] in candidate:
                return True
            if (
                check_location
                and existing.location != DEFAULT_LOCATION
                and existing.type == issue_type
            ):
                existing_location = existing.location.lower()
                if candidate_location in existing_location or existing_location in candidate_location:
                    return True
        return False

    def add(self, description: str, location: str, severity: Severity,
            recommendation: str, cost: Optional[float] = None,
            issue_type: Optional[str] = None) -> bool:
        description = description.strip()
        location = location.strip() or DEFAULT_LOCATION
        if self.full or len(description) <= self.config.min_description_length:
            return False

        issue_type = issue_type or infer_issue_type(description)
        if self.is_duplicate(description, location, issue_type):
            return False

        self.issues.append(Issue(
            type=issue_type,
            severity=severity,
            location=location,
            description=description,
            recommendation=recommendation,
            estimated_cost=cost if cost is not None else self.config.cost_for(severity),
        ))
        return True


def _collect_from_sections(collector: _IssueCollector, sections: Iterable[Section]) -> None:
    for section in sections:
        for line in section.lines:
            if collector.full:
                return
            if len(line) < collector.config.min_line_length:
                continue
            bullet = _BULLET_RE.match(line)
            if not bullet:
                continue

            description = bullet.group(1).strip()
            explicit = _EXPLICIT_SEVERITY_RE.search(description)
            severity = normalize_severity(explicit.group(1)) if explicit else infer_severity(description)
            cost_match = _COST_RE.search(description)

            collector.add(
                description=description,
                location=infer_location(description),
                severity=severity,
                recommendation=f"Address issue identified in {section.name.lower()}",
                cost=parse_cost(cost_match.group(1)) if cost_match else None,
            )


def _collect_from_structured(collector: _IssueCollector, text: str) -> None:
    for structured in STRUCTURED_PATTERNS:
        for match in structured.pattern.finditer(text):
            if collector.full:
                return
            description = (match.group(structured.description) or "").strip()
            location = (match.group(structured.location) or "").strip()
            if not description or not location:
                continue

            if structured.severity is not None and match.group(structured.severity):
                severity = normalize_severity(match.group(structured.severity))
            else:
                severity = infer_severity(description)
            cost = parse_cost(match.group(structured.cost)) if structured.cost is not None else None

            collector.add(
                description=description,
                location=location,
                severity=severity,
                recommendation=f"Address {description.lower()} during maintenance",
                cost=cost,
            )


def _collect_from_locations(collector: _IssueCollector, text: str) -> None:
    for pattern in LOCATION_PATTERNS:
        for match in pattern.finditer(text):
            if collector.full:
                return
            location = " ".join(match.group(1).split())
            description = match.group(2).strip()
            collector.add(
                description=description,
                location=location,
                severity=infer_severity(description),
                recommendation=f"Inspect and repair {location.lower()}",
            )


def _collect_from_legacy(collector: _IssueCollector, text: str) -> None:
    for pattern, issue_type, severity, location in LEGACY_PATTERNS:
        for match in pattern.finditer(text):
            if collector.full:
                return
            phrase = match.group(0)
            if any(issue_type in existing.type or phrase.lower() in existing.description.lower()
                   for existing in collector.issues):
                continue
            collector.add(
                description=phrase,
                location=location,
                severity=severity,
                recommendation=f"Address {issue_type} during next maintenance cycle",
                issue_type=issue_type,
            )


def extract_issues(text: Optional[str], config: Optional[IssueExtractorConfig] = None) -> List[Issue]:
    """
    Extract a de-duplicated, capped list of issues from report text.

    Args:
        text: Raw report text
        config: Extraction settings (defaults when omitted)

    Returns:
        Issues in discovery order, at most config.max_issues long
    """
    config = config or IssueExtractorConfig()
    if not text or not text.strip():
        return []

    collector = _IssueCollector(config)
    _collect_from_sections(collector, find_sections(text))
    _collect_from_structured(collector, text)
    _collect_from_locations(collector, text)
    _collect_from_legacy(collector, text)

    if collector.full:
        logger.info(f"Issue cap reached ({config.max_issues}); remaining matches ignored")
    return collector.issues


# ============================================================================
# LangGraph Node
# ============================================================================

def issue_extraction_node(state: ReportState,
                          issue_config: Optional[IssueExtractorConfig] = None) -> dict:
    """
    Node: Issue Extractor

    Returns:
        dict with "issues"
    """
    print("--- NODE: Issue Extractor ---")

    issues = extract_issues(state.get("raw_text", ""), issue_config)
    logger.info(f"Extracted {len(issues)} issue(s) from {state.get('filename', 'document')}")
    return {"issues": issues}

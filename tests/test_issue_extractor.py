"""
Tests for the Issue Extractor Node

- Section scanning (headers, bullets, section boundaries)
- Structured and location-anchored patterns
- Legacy keyword fallback
- Severity / type / location inference
- De-duplication and the per-report cap

Run with: pytest tests/test_issue_extractor.py -v
"""

import time

import pytest

from nodes.issue_extractor import (
    DEFAULT_LOCATION,
    Issue,
    IssueExtractorConfig,
    ScanState,
    SectionScanner,
    Severity,
    extract_issues,
    find_sections,
    infer_issue_type,
    infer_location,
    infer_severity,
    issue_extraction_node,
    match_section_header,
    normalize_severity,
    parse_cost,
)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def deficiencies_text():
    return """DEFICIENCIES
- Membrane blistering across the east section
- Flashing separated at the parapet wall
- Cracked skylight lens above the warehouse
"""


@pytest.fixture
def many_deficiencies_text():
    bullets = "\n".join(
        f"- Deficiency {n:02d} noted: cracked skylight lens needs replacement"
        for n in range(1, 46)
    )
    return f"DEFICIENCIES\n{bullets}\n"


@pytest.fixture
def mixed_layers_text():
    structured = [
        f"Issue: Split seam number {n:02d} in lap - Bay {n:02d} - HIGH - $1,000"
        for n in range(1, 11)
    ]
    walls = [
        "NORTH WALL", "SOUTH SIDE", "EAST SECTION", "WEST ELEVATION",
        "NORTHEAST CORNER", "NORTHWEST AREA", "SOUTHEAST WALL", "SOUTHWEST SIDE",
    ]
    anchored = [
        f"{wall}: Wall panel {n:02d} shows open lap seams"
        for n, wall in enumerate(walls, start=1)
    ]
    equipment = [
        f"RTU {n:02d}: Unit {n:02d} condensate staining on deck"
        for n in range(1, 11)
    ]
    legacy = "Also noted: ponding water, membrane damage, flashing issues, drainage problems and loose materials."
    return "\n".join(structured + anchored + equipment + [legacy]) + "\n"


# ============================================================================
# Section Scanning Tests
# ============================================================================

class TestSectionHeaders:
    """Tests for match_section_header()."""

    def test_all_caps_header(self):
        assert match_section_header("DEFICIENCIES") == ("Deficiencies", "")

    def test_colon_header_with_inline_content(self):
        assert match_section_header("Findings: ponding at drain") == ("Findings", "ponding at drain")

    def test_mixed_case_sentence_is_not_header(self):
        assert match_section_header("Findings indicate the roof is sound") is None

    def test_plain_line(self):
        assert match_section_header("- Loose coping cap at north wall") is None


class TestSectionScanner:
    """Tests for the section scanner state machine."""

    def test_state_transitions(self):
        scanner = SectionScanner()
        assert scanner.feed("Intro text") == ScanState.OUTSIDE
        assert scanner.feed("DEFICIENCIES") == ScanState.HEADER_SEEN
        assert scanner.feed("") == ScanState.HEADER_SEEN
        assert scanner.feed("- Something broke here") == ScanState.IN_SECTION
        assert scanner.feed("") == ScanState.OUTSIDE

    def test_multiple_sections(self):
        text = (
            "EXECUTIVE SUMMARY\n"
            "\n"
            "- Roof is aging\n"
            "\n"
            "FINDINGS:\n"
            "- x\n"
            "RECOMMENDATIONS: Replace sealant\n"
        )
        sections = find_sections(text)
        assert [s.name for s in sections] == ["Executive Summary", "Findings", "Recommendations"]
        assert sections[0].lines == ["- Roof is aging"]
        assert sections[1].lines == ["- x"]
        assert sections[2].lines == ["Replace sealant"]

    def test_all_caps_line_closes_section(self):
        text = (
            "DEFICIENCIES\n"
            "- Loose coping cap at north wall\n"
            "PHOTO LOG\n"
            "- Photo 1 shows the north wall\n"
        )
        sections = find_sections(text)
        assert len(sections) == 1
        assert sections[0].lines == ["- Loose coping cap at north wall"]

    def test_no_sections(self):
        assert find_sections("Just a paragraph of text.") == []


# ============================================================================
# Inference Tests
# ============================================================================

class TestSeverityInference:
    """Tests for infer_severity() and normalize_severity()."""

    @pytest.mark.parametrize("description,expected", [
        ("Active leak at the north drain", Severity.CRITICAL),
        ("Requires immediate attention", Severity.CRITICAL),
        ("Severe ponding near the drain", Severity.HIGH),
        ("Cracked skylight lens", Severity.HIGH),
        ("Minor debris accumulation", Severity.LOW),
        ("Sealant joints need attention", Severity.MEDIUM),
    ])
    def test_infer_severity(self, description, expected):
        assert infer_severity(description) == expected

    @pytest.mark.parametrize("label,expected", [
        ("Emergency", Severity.CRITICAL),
        ("URGENT", Severity.HIGH),
        ("minor", Severity.LOW),
        ("", Severity.MEDIUM),
        (None, Severity.MEDIUM),
    ])
    def test_normalize_severity(self, label, expected):
        assert normalize_severity(label) == expected


class TestTypeInference:
    """Tests for infer_issue_type()."""

    @pytest.mark.parametrize("description,expected", [
        ("Membrane shrinkage at seams", "membrane issues"),
        ("Flashing separated at the parapet", "flashing issues"),
        ("Ponding water near drain", "drainage issues"),
        ("Standing water at low spot", "drainage issues"),
        ("Ponding at low spot", "ponding water"),
        ("Debris around rooftop unit", "debris"),
        ("Loose fastener on coping", "general maintenance"),
    ])
    def test_infer_issue_type(self, description, expected):
        assert infer_issue_type(description) == expected


class TestLocationInference:
    """Tests for infer_location()."""

    def test_words_around_keyword(self):
        assert infer_location("Water intrusion at the northwest corner of building") == "the northwest corner"

    def test_keyword_at_start(self):
        assert infer_location("Flashing separated at the parapet wall") == "Flashing separated"

    def test_default_location(self):
        assert infer_location("Loose fastener") == DEFAULT_LOCATION


class TestParseCost:
    """Tests for parse_cost()."""

    def test_parses_currency(self):
        assert parse_cost("$3,500.00") == 3500.0

    def test_missing_or_malformed(self):
        assert parse_cost(None) is None
        assert parse_cost("n/a") is None


# ============================================================================
# Extraction Tests
# ============================================================================

class TestSectionExtraction:
    """Tests for issues recovered from report sections."""

    def test_three_bullets_three_issues(self, deficiencies_text):
        issues = extract_issues(deficiencies_text)
        assert len(issues) == 3
        assert len({issue.type for issue in issues}) == 3

    def test_issue_attributes(self, deficiencies_text):
        membrane, flashing, skylight = extract_issues(deficiencies_text)

        assert membrane.type == "membrane issues"
        assert membrane.location == "the east section"
        assert membrane.severity == Severity.MEDIUM
        assert membrane.estimated_cost == 1200.0

        assert flashing.type == "flashing issues"

        assert skylight.type == "general maintenance"
        assert skylight.severity == Severity.HIGH
        assert skylight.location == DEFAULT_LOCATION
        assert skylight.estimated_cost == 2500.0

    def test_recommendation_names_section(self, deficiencies_text):
        issues = extract_issues(deficiencies_text)
        assert issues[0].recommendation == "Address issue identified in deficiencies"

    def test_explicit_severity_and_cost_in_bullet(self):
        text = "FINDINGS:\n- Split seam along the north wall (CRITICAL) $4,000\n"
        issues = extract_issues(text)
        assert issues[0].severity == Severity.CRITICAL
        assert issues[0].estimated_cost == 4000.0

    def test_short_lines_skipped(self):
        assert extract_issues("DEFICIENCIES\n- Leak\n") == []


class TestPatternExtraction:
    """Tests for whole-document structured and location patterns."""

    def test_labelled_tuple(self):
        text = "Issue: Split seam in membrane lap - South elevation - HIGH - $3,500"
        issues = extract_issues(text)
        assert len(issues) == 1
        issue = issues[0]
        assert issue.description == "Split seam in membrane lap"
        assert issue.location == "South elevation"
        assert issue.severity == Severity.HIGH
        assert issue.estimated_cost == 3500.0
        assert issue.type == "membrane issues"

    def test_location_with_severity(self):
        text = "North parapet: Open seam at corner flashing (CRITICAL) $4,200"
        issues = extract_issues(text)
        assert len(issues) == 1
        assert issues[0].location == "North parapet"
        assert issues[0].description == "Open seam at corner flashing"
        assert issues[0].severity == Severity.CRITICAL
        assert issues[0].estimated_cost == 4200.0

    def test_location_anchored_line(self):
        text = "NORTHEAST CORNER: Membrane shrinkage pulling at the parapet"
        issues = extract_issues(text)
        assert len(issues) == 1
        assert issues[0].location == "NORTHEAST CORNER"
        assert issues[0].description == "Membrane shrinkage pulling at the parapet"
        assert issues[0].recommendation == "Inspect and repair northeast corner"

    def test_equipment_anchored_line(self):
        issues = extract_issues("HVAC 3: Condensate line discharging onto the membrane")
        assert len(issues) == 1
        assert issues[0].location == "HVAC 3"


class TestLongSingleLine:
    """Extracted PDF text can arrive as one very long line."""

    @pytest.mark.parametrize("prefix", ["Issue: ", "• ", "1. "])
    def test_long_line_finishes_quickly(self, prefix):
        text = prefix + "a - " * 6000

        start = time.perf_counter()
        issues = extract_issues(text)
        elapsed = time.perf_counter() - start

        assert issues == []
        assert elapsed < 2.0

    def test_labelled_tuple_still_found_after_long_line(self):
        text = "a - " * 6000 + "\nIssue: Split seam in membrane lap - South elevation - HIGH - $3,500\n"
        issues = extract_issues(text)
        assert len(issues) == 1
        assert issues[0].location == "South elevation"


class TestLegacyExtraction:
    """Tests for the single-keyword fallback layer."""

    def test_ponding_water_phrase(self):
        issues = extract_issues("Evidence of ponding water was noted.")
        assert len(issues) == 1
        issue = issues[0]
        assert issue.type == "ponding water"
        assert issue.location == "Roof surface"
        assert issue.severity == Severity.HIGH
        assert issue.estimated_cost == 2500.0

    def test_legacy_skips_covered_issue(self):
        text = (
            "DEFICIENCIES\n"
            "- Ponding water observed near the center of the roof\n"
            "\n"
            "The inspector noted ponding water at several drains.\n"
        )
        issues = extract_issues(text)
        assert len(issues) == 1
        assert issues[0].type == "ponding water"


class TestDeduplicationAndCap:
    """Tests for duplicate suppression and the issue cap."""

    def test_same_prefix_is_duplicate(self):
        text = (
            "DEFICIENCIES\n"
            "- Cracked skylight lens above the warehouse\n"
            "- Cracked skylight lens above the warehouse office\n"
        )
        assert len(extract_issues(text)) == 1

    def test_default_cap(self, many_deficiencies_text):
        issues = extract_issues(many_deficiencies_text)
        assert len(issues) == 25
        assert issues[0].description.startswith("Deficiency 01")

    def test_custom_cap(self, many_deficiencies_text):
        issues = extract_issues(many_deficiencies_text, IssueExtractorConfig(max_issues=5))
        assert len(issues) == 5

    def test_never_exceeds_cap_with_all_layers(self, many_deficiencies_text):
        text = many_deficiencies_text + "\nNORTH WALL: Open lap seam along the coping\nponding water\n"
        assert len(extract_issues(text)) <= 25

    def test_pattern_layers_together_reach_cap(self, mixed_layers_text):
        uncapped = extract_issues(mixed_layers_text, IssueExtractorConfig(max_issues=50))
        assert len(uncapped) == 33
        assert {issue.type for issue in uncapped[-5:]} == {
            "ponding water", "membrane damage", "flashing issues", "drainage problems", "loose materials",
        }

        issues = extract_issues(mixed_layers_text)
        assert len(issues) == 25
        locations = [issue.location for issue in issues]
        assert sum(loc.startswith("Bay") for loc in locations) == 10
        assert sum(loc.endswith(("WALL", "SIDE", "SECTION", "ELEVATION", "CORNER", "AREA")) for loc in locations) == 8
        assert sum(loc.startswith("RTU") for loc in locations) == 7

    def test_no_two_issues_share_prefix(self, many_deficiencies_text):
        issues = extract_issues(many_deficiencies_text)
        prefixes = [issue.description.lower()[:20] for issue in issues]
        assert len(prefixes) == len(set(prefixes))


class TestEmptyInput:
    """Tests for empty and issue-free text."""

    @pytest.mark.parametrize("text", ["", "   \n  ", None])
    def test_empty_text(self, text):
        assert extract_issues(text) == []

    def test_text_without_issues(self):
        assert extract_issues("The roof was inspected on a sunny day.") == []


class TestIssueExtractionNode:
    """Tests for the LangGraph node wrapper."""

    def test_node_returns_issues(self, deficiencies_text):
        result = issue_extraction_node({"raw_text": deficiencies_text})
        assert len(result["issues"]) == 3
        assert all(isinstance(issue, Issue) for issue in result["issues"])

    def test_node_respects_config(self, many_deficiencies_text):
        result = issue_extraction_node({"raw_text": many_deficiencies_text}, IssueExtractorConfig(max_issues=3))
        assert len(result["issues"]) == 3

    def test_issue_to_dict(self, deficiencies_text):
        data = extract_issues(deficiencies_text)[0].to_dict()
        assert data["severity"] == "medium"
        assert data["estimated_cost"] == 1200.0

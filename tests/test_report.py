"""
Tests for the Report Builder Node

- Report assembly and the filename fallback report
- Condition assessment (condition, actions, timeframe, cost)
- Persistence helpers (store type, priority, ISO dates, findings text)

Run with: pytest tests/test_report.py -v
"""

import pytest
from datetime import date

from nodes.classifier import InspectionClassification, InspectionType, Urgency
from nodes.field_extractor import ExtractedFields
from nodes.issue_extractor import Issue, Severity
from nodes.report import (
    ExtractedReport,
    OverallCondition,
    assess_condition,
    build_fallback_report,
    build_report,
    determine_priority_level,
    extract_report,
    generate_findings,
    generate_recommendations,
    normalize_inspection_type,
    parse_inspection_date,
    report_builder_node,
)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def report_text():
    return """STORM DAMAGE INSPECTION REPORT
Property: Dallas Corporate Center
Client: Prologis
Roof Area: 125,000 sq ft
Installing Contractor: Acme Roofing

DEFICIENCIES
- Active leak at northeast drain requires immediate repair
- Membrane punctures from hail across the south section
"""


def make_issue(severity: Severity, cost: float = 1000.0) -> Issue:
    return Issue(
        type="general maintenance",
        severity=severity,
        location="General roof area",
        description="Something needs repair on the roof",
        recommendation="Repair it",
        estimated_cost=cost,
    )


# ============================================================================
# Assembly Tests
# ============================================================================

class TestExtractReport:
    """Tests for sequential report extraction."""

    def test_full_report(self, report_text):
        report = extract_report(report_text, page_count=4)
        assert report.property_name == "Dallas Corporate Center"
        assert report.client == "Prologis"
        assert report.classification.primary_type == InspectionType.STORM
        assert len(report.issues) == 2
        assert report.page_count == 4
        assert report.source == "text"

    def test_empty_text(self):
        report = extract_report("")
        assert report.property_name == ""
        assert report.roof_area == 0
        assert report.issues == ()
        assert report.classification.primary_type == InspectionType.UNKNOWN
        assert report.classification.confidence == 0.0
        assert report.overall_condition == OverallCondition.FAIR
        assert report.priority_actions == ()
        assert report.estimated_repair_cost == 0.0
        assert report.recommended_timeframe == ""

    def test_build_report_copies_fields(self):
        fields = ExtractedFields(property_name="Warehouse Complex A", roof_area=5000)
        report = build_report(fields, [], InspectionClassification(), "Roof in good condition overall.")
        assert report.property_name == "Warehouse Complex A"
        assert report.roof_area == 5000
        assert report.overall_condition == OverallCondition.GOOD

    def test_to_dict(self, report_text):
        data = extract_report(report_text).to_dict()
        assert data["property_name"] == "Dallas Corporate Center"
        assert data["classification"]["primary_type"] == "storm"
        assert len(data["issues"]) == 2
        assert data["source"] == "text"
        assert data["roof_type"] == data["roof_system"]


class TestFallbackReport:
    """Tests for the filename-only fallback report."""

    def test_fallback_fields(self):
        report = build_fallback_report("Dallas_Corporate_Center_STORM_DAMAGE_Report.pdf")
        assert report.property_name == "Dallas Corporate Center"
        assert report.source == "filename"
        assert report.issues == ()
        assert report.client == ""
        assert report.classification.primary_type == InspectionType.UNKNOWN
        assert report.classification.confidence == 0.0

    def test_node_uses_fallback(self):
        result = report_builder_node({
            "filename": "Warehouse_Complex_A_Annual_Inspection_2024.pdf",
            "extraction_status": "filename_fallback",
            "raw_text": "",
        })
        assert result["report"].property_name == "Warehouse Complex A"
        assert result["report"].source == "filename"

    def test_node_joins_branches(self):
        fields = ExtractedFields(property_name="Dallas Corporate Center")
        classification = InspectionClassification(primary_type=InspectionType.ANNUAL, confidence=0.8)
        result = report_builder_node({
            "extraction_status": "extracted",
            "raw_text": "Roof in good condition.",
            "page_count": 2,
            "fields": fields,
            "issues": [make_issue(Severity.LOW, 500.0)],
            "classification": classification,
        })
        report = result["report"]
        assert report.property_name == "Dallas Corporate Center"
        assert report.classification == classification
        assert len(report.issues) == 1
        assert report.page_count == 2


# ============================================================================
# Condition Assessment Tests
# ============================================================================

class TestAssessCondition:
    """Tests for assess_condition()."""

    def test_good_condition_no_issues(self):
        result = assess_condition("Roof is in good condition overall.", [], InspectionClassification())
        assert result.overall_condition == OverallCondition.GOOD
        assert result.priority_actions == ()
        assert result.recommended_timeframe == "6-12 months"
        assert result.estimated_repair_cost == 0.0

    def test_default_condition_is_fair(self):
        result = assess_condition("The roof was inspected.", [], InspectionClassification())
        assert result.overall_condition == OverallCondition.FAIR

    def test_poor_condition(self):
        result = assess_condition("Membrane is deteriorated throughout.", [], InspectionClassification())
        assert result.overall_condition == OverallCondition.POOR

    def test_leak_action(self):
        result = assess_condition("Possible leak near the drain.", [], InspectionClassification())
        assert "Investigate potential leaks" in result.priority_actions

    def test_critical_issue_is_immediate(self):
        issues = [make_issue(Severity.CRITICAL, 5000.0), make_issue(Severity.LOW, 500.0)]
        result = assess_condition("Findings listed below.", issues, InspectionClassification())
        assert result.recommended_timeframe == "Immediate"
        assert result.priority_actions == (
            "Address identified issues",
            "Schedule immediate repairs for critical deficiencies",
        )
        assert result.estimated_repair_cost == 5500.0

    def test_high_urgency_timeframe(self):
        classification = InspectionClassification(primary_type=InspectionType.STORM, urgency=Urgency.HIGH)
        result = assess_condition("Hail damage observed.", [], classification)
        assert result.recommended_timeframe == "1-3 months"


# ============================================================================
# Persistence Helper Tests
# ============================================================================

class TestNormalizeInspectionType:
    """Tests for normalize_inspection_type()."""

    @pytest.mark.parametrize("primary_type,expected", [
        (InspectionType.STORM, "storm_damage"),
        (InspectionType.ANNUAL, "annual"),
        (InspectionType.DUE_DILIGENCE, "pre_purchase"),
        (InspectionType.SURVEY, "routine"),
    ])
    def test_confident_classification(self, primary_type, expected):
        classification = InspectionClassification(primary_type=primary_type, confidence=0.8)
        assert normalize_inspection_type("", classification) == expected

    def test_low_confidence_uses_label(self):
        classification = InspectionClassification(primary_type=InspectionType.STORM, confidence=0.2)
        assert normalize_inspection_type("Quarterly Inspection", classification) == "quarterly"

    def test_label_only(self):
        assert normalize_inspection_type("Storm report") == "storm_damage"

    def test_default(self):
        assert normalize_inspection_type("") == "annual"


class TestPriorityLevel:
    """Tests for determine_priority_level()."""

    @pytest.mark.parametrize("report_type,expected", [
        ("STORM DAMAGE INSPECTION REPORT", "high"),
        ("Emergency Inspection", "high"),
        ("Hail Damage Report", "medium"),
        ("Annual Inspection", "low"),
        ("", "low"),
    ])
    def test_priority(self, report_type, expected):
        assert determine_priority_level(report_type) == expected


class TestParseInspectionDate:
    """Tests for parse_inspection_date()."""

    @pytest.mark.parametrize("value,expected", [
        ("MARCH 14, 2025", "2025-03-14"),
        ("March 14 2025", "2025-03-14"),
        ("Mar 14, 2025", "2025-03-14"),
        ("3/14/2025", "2025-03-14"),
        ("2025-03-14", "2025-03-14"),
        ("14 March 2025", "2025-03-14"),
    ])
    def test_formats(self, value, expected):
        assert parse_inspection_date(value) == expected

    def test_invalid_uses_default(self):
        assert parse_inspection_date("sometime last spring", date(2024, 1, 2)) == "2024-01-02"

    def test_empty_uses_default(self):
        assert parse_inspection_date("", date(2024, 1, 2)) == "2024-01-02"


class TestGeneratedText:
    """Tests for findings and recommendations text."""

    def test_findings(self, report_text):
        findings = generate_findings(extract_report(report_text))
        assert "• Property: Dallas Corporate Center" in findings
        assert "• Roof Area: 125,000 sq ft" in findings
        assert "DEFICIENCIES:" in findings
        assert "• [CRITICAL]" in findings

    def test_storm_recommendations(self, report_text):
        recommendations = generate_recommendations(extract_report(report_text))
        assert "• Assess storm damage thoroughly and prioritize critical repairs" in recommendations
        assert "• Contact installing contractor for warranty information: Acme Roofing" in recommendations

    def test_minimal_recommendations(self):
        recommendations = generate_recommendations(ExtractedReport())
        assert recommendations.startswith("RECOMMENDATIONS:")
        assert "storm" not in recommendations.lower()

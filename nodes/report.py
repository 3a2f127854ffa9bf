"""
Report Builder Node - Assemble the ExtractedReport

Joins the three extraction branches (fields, issues, classification) into a
single immutable ExtractedReport, adds the overall condition assessment, and
provides the helpers a persistence layer needs to store the result
(inspection-type vocabulary, priority level, ISO dates, findings and
recommendation text).
"""

import re
import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import List, Dict, Any, Optional, Sequence, Tuple

from state import ReportState
from nodes.field_extractor import ExtractedFields, extract_fields, property_name_from_filename
from nodes.issue_extractor import Issue, Severity, extract_issues
from nodes.classifier import InspectionClassification, InspectionType, Urgency, classify_inspection

# Configure logger
logger = logging.getLogger(__name__)


class OverallCondition(str, Enum):
    """Overall roof condition stated or implied by a report."""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    CRITICAL = "critical"


# Checked in order; first hit wins, otherwise FAIR
CONDITION_PATTERNS: List[Tuple[re.Pattern, OverallCondition]] = [
    (re.compile(r"\bexcellent\b|\blike\s+new\b", re.IGNORECASE), OverallCondition.EXCELLENT),
    (re.compile(r"\bgood\s+condition\b", re.IGNORECASE), OverallCondition.GOOD),
    (re.compile(r"\bpoor\b|\bdeteriorated\b", re.IGNORECASE), OverallCondition.POOR),
    (re.compile(r"\bcritical\b|\bimmediate\b", re.IGNORECASE), OverallCondition.CRITICAL),
]

LEAK_RE = re.compile(r"\bleak", re.IGNORECASE)


@dataclass(frozen=True)
class ConditionAssessment:
    overall_condition: OverallCondition = OverallCondition.FAIR
    priority_actions: Tuple[str, ...] = ()
    estimated_repair_cost: float = 0.0
    recommended_timeframe: str = ""


@dataclass(frozen=True)
class ExtractedReport(ExtractedFields):
    """
    Structured record produced for one inspection report.

    Inherits the scalar fields; "" / 0 mean the field was not found.
    """
    classification: InspectionClassification = InspectionClassification()
    issues: Tuple[Issue, ...] = ()
    overall_condition: OverallCondition = OverallCondition.FAIR
    priority_actions: Tuple[str, ...] = ()
    estimated_repair_cost: float = 0.0
    recommended_timeframe: str = ""
    page_count: int = 0
    source: str = "text"  # 'text' or 'filename' (fallback report)

    def to_dict(self) -> Dict[str, Any]:
        data = {name: getattr(self, name) for name in ExtractedFields.__dataclass_fields__}
        data["roof_type"] = self.roof_system
        data.update({
            "classification": self.classification.to_dict(),
            "issues": [issue.to_dict() for issue in self.issues],
            "overall_condition": self.overall_condition.value,
            "priority_actions": list(self.priority_actions),
            "estimated_repair_cost": round(self.estimated_repair_cost, 2),
            "recommended_timeframe": self.recommended_timeframe,
            "page_count": self.page_count,
            "source": self.source,
        })
        return data


# ============================================================================
# Condition Assessment
# ============================================================================

def assess_condition(text: str, issues: Sequence[Issue],
                     classification: InspectionClassification) -> ConditionAssessment:
    """
    Derive overall condition, priority actions, repair cost and timeframe.

    Args:
        text: Raw report text
        issues: Extracted issues
        classification: Inspection classification (urgency drives the timeframe)

    Returns:
        ConditionAssessment (neutral values for empty text)
    """
    if not text or not text.strip():
        return ConditionAssessment()

    condition = OverallCondition.FAIR
    for pattern, candidate in CONDITION_PATTERNS:
        if pattern.search(text):
            condition = candidate
            break

    actions: List[str] = []
    if issues:
        actions.append("Address identified issues")
    if LEAK_RE.search(text):
        actions.append("Investigate potential leaks")
    has_critical = any(issue.severity == Severity.CRITICAL for issue in issues)
    if has_critical:
        actions.append("Schedule immediate repairs for critical deficiencies")

    if has_critical or classification.urgency == Urgency.CRITICAL:
        timeframe = "Immediate"
    elif classification.urgency == Urgency.HIGH:
        timeframe = "1-3 months"
    else:
        timeframe = "6-12 months"

    return ConditionAssessment(
        overall_condition=condition,
        priority_actions=tuple(actions),
        estimated_repair_cost=sum(issue.estimated_cost for issue in issues),
        recommended_timeframe=timeframe,
    )


def build_report(fields: ExtractedFields, issues: Sequence[Issue],
                 classification: InspectionClassification, text: str,
                 page_count: int = 0) -> ExtractedReport:
    """Combine extraction results into an ExtractedReport."""
    assessment = assess_condition(text, issues, classification)
    scalar_values = {name: getattr(fields, name) for name in ExtractedFields.__dataclass_fields__}
    return ExtractedReport(
        **scalar_values,
        classification=classification,
        issues=tuple(issues),
        overall_condition=assessment.overall_condition,
        priority_actions=assessment.priority_actions,
        estimated_repair_cost=assessment.estimated_repair_cost,
        recommended_timeframe=assessment.recommended_timeframe,
        page_count=page_count,
        source="text",
    )


def build_fallback_report(filename: str) -> ExtractedReport:
    """Minimal report when no text could be extracted: property name from the filename only."""
    return ExtractedReport(
        property_name=property_name_from_filename(filename),
        classification=InspectionClassification(),
        source="filename",
    )


def extract_report(text: str, page_count: int = 0) -> ExtractedReport:
    """Run every extractor over `text` sequentially (no graph)."""
    fields = extract_fields(text)
    return build_report(
        fields,
        extract_issues(text),
        classify_inspection(text, fields.report_type),
        text,
        page_count,
    )


# ============================================================================
# Persistence Helpers
# ============================================================================

CLASSIFICATION_TO_STORE_TYPE: Dict[InspectionType, str] = {
    InspectionType.STORM: "storm_damage",
    InspectionType.ANNUAL: "annual",
    InspectionType.DUE_DILIGENCE: "pre_purchase",
    InspectionType.SURVEY: "routine",
}

# Report-type label keywords, checked in order
LABEL_TO_STORE_TYPE: List[Tuple[Tuple[str, ...], str]] = [
    (("storm", "damage"), "storm_damage"),
    (("annual",), "annual"),
    (("quarterly",), "quarterly"),
    (("monthly",), "monthly"),
    (("emergency",), "emergency"),
    (("routine",), "routine"),
]

DEFAULT_STORE_TYPE = "annual"

DATE_FORMATS = [
    "%B %d, %Y",     # March 14, 2025
    "%B %d %Y",      # March 14 2025
    "%b %d, %Y",     # Mar 14, 2025
    "%b %d %Y",      # Mar 14 2025
    "%b. %d, %Y",    # Mar. 14, 2025
    "%m/%d/%Y",      # 03/14/2025
    "%m-%d-%Y",      # 03-14-2025
    "%m/%d/%y",      # 03/14/25
    "%Y-%m-%d",      # 2025-03-14 (ISO)
    "%d %B %Y",      # 14 March 2025
]


def normalize_inspection_type(report_type: str,
                              classification: Optional[InspectionClassification] = None,
                              min_confidence: float = 0.3) -> str:
    """
    Map a report to the store's inspection-type vocabulary.

    A confident classification wins; otherwise the free-text report type is
    inspected for known keywords.
    """
    if classification and classification.confidence > min_confidence:
        mapped = CLASSIFICATION_TO_STORE_TYPE.get(classification.primary_type)
        if mapped:
            return mapped

    label = (report_type or "").lower()
    for keywords, store_type in LABEL_TO_STORE_TYPE:
        if any(keyword in label for keyword in keywords):
            return store_type
    return DEFAULT_STORE_TYPE


def determine_priority_level(report_type: str) -> str:
    """Priority for the stored report: storm/emergency high, other damage medium, else low."""
    label = (report_type or "").lower()
    if "storm" in label or "emergency" in label:
        return "high"
    if "damage" in label:
        return "medium"
    return "low"


def parse_inspection_date(date_string: Optional[str], default: Optional[date] = None) -> str:
    """
    Parse a free-text report date into ISO format (YYYY-MM-DD).

    Args:
        date_string: Date as written in the report ("MARCH 14, 2025", "3/14/2025")
        default: Date used when parsing fails (today when omitted)

    Returns:
        ISO date string
    """
    fallback = (default or date.today()).isoformat()
    if not date_string:
        return fallback

    cleaned = " ".join(date_string.strip().split()).title()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date().isoformat()
        except ValueError:
            continue

    logger.warning(f"Invalid date format: {date_string}")
    return fallback


def _bullet(label: str, value: Any) -> str:
    return f"• {label}: {value}"


def generate_findings(report: ExtractedReport) -> str:
    """Human-readable findings block for the stored inspection report."""
    lines = ["INSPECTION DETAILS:", _bullet("Report Type", report.report_type)]
    classification = report.classification
    if classification.primary_type != InspectionType.UNKNOWN:
        lines.append(_bullet(
            "Inspection Classification",
            f"{classification.primary_type.value} ({round(classification.confidence * 100)}% confidence)",
        ))
    lines.append(_bullet("Report Date", report.report_date))
    lines.append(_bullet("Inspection Company", report.inspection_company))
    lines.append(_bullet("Property", report.property_name))
    if report.address:
        lines.append(_bullet("Address", report.address))

    lines.extend(["", "ROOF SPECIFICATIONS:"])
    if report.roof_area > 0:
        lines.append(_bullet("Roof Area", f"{report.roof_area:,} sq ft"))
    for label, value in (
        ("Roof System", report.roof_system),
        ("System Description", report.system_description),
        ("Manufacturer", report.manufacturer),
        ("Drainage System", report.drainage_system),
        ("Flashing Detail", report.flashing_detail),
        ("Perimeter Detail", report.perimeter_detail),
        ("Warranty Status", report.warranty),
        ("Warranty Expiration", report.warranty_expiration),
    ):
        if value:
            lines.append(_bullet(label, value))

    lines.extend(["", "CONTRACTOR INFORMATION:"])
    for label, value in (
        ("Installing Contractor", report.installing_contractor),
        ("Repairing Contractor", report.repairing_contractor),
        ("Client", report.client),
    ):
        if value:
            lines.append(_bullet(label, value))
    if report.property_manager:
        lines.append(_bullet("Property Manager", report.property_manager))
        if report.property_manager_phone:
            lines.append(_bullet("PM Phone", report.property_manager_phone))

    if report.issues:
        lines.extend(["", "DEFICIENCIES:"])
        for issue in report.issues:
            lines.append(f"• [{issue.severity.value.upper()}] {issue.location}: {issue.description}")

    return "\n".join(lines)


def generate_recommendations(report: ExtractedReport) -> str:
    """Human-readable recommendations block for the stored inspection report."""
    lines = [
        "RECOMMENDATIONS:",
        "• Review complete PDF report for detailed findings and photos",
    ]
    inspection_type = report.classification.primary_type

    if inspection_type == InspectionType.STORM or "storm" in report.report_type.lower():
        lines.append("• Assess storm damage thoroughly and prioritize critical repairs")
        lines.append("• Document all damage with photos for insurance claims if applicable")
        lines.append("• Consider emergency repairs for any active leaks or safety hazards")
    if inspection_type == InspectionType.DUE_DILIGENCE:
        lines.append("• Review findings carefully for property acquisition decision")
        lines.append("• Obtain cost estimates for all identified repairs")
        lines.append("• Consider warranty implications for upcoming transaction")
    if inspection_type == InspectionType.SURVEY:
        lines.append("• Document current roof condition for baseline comparison")
        lines.append("• Plan maintenance schedule based on survey findings")
        lines.append("• Budget for identified future repair needs")

    if report.installing_contractor:
        lines.append(f"• Contact installing contractor for warranty information: {report.installing_contractor}")
    if report.repairing_contractor:
        lines.append(f"• Contact repairing contractor for maintenance: {report.repairing_contractor}")
    if report.warranty and report.warranty.lower() != "no":
        lines.append("• Verify warranty coverage for any identified issues")

    lines.append("• Schedule follow-up inspection as needed based on findings")
    lines.append("• Update maintenance records with inspection findings")
    if report.roof_area > 0:
        lines.append(f"• Confirm roof area measurement: {report.roof_area:,} sq ft")

    return "\n".join(lines)


# ============================================================================
# LangGraph Node
# ============================================================================

def report_builder_node(state: ReportState) -> dict:
    """
    Node: Report Builder

    Joins the parallel extraction branches. A document whose text could not
    be extracted gets the filename-only fallback report.

    Returns:
        dict with "report"
    """
    print("--- NODE: Report Builder ---")

    if state.get("extraction_status") == "filename_fallback":
        report = build_fallback_report(state.get("filename", ""))
        logger.info(f"Built fallback report for {state.get('filename', 'document')}")
        return {"report": report}

    report = build_report(
        state.get("fields") or ExtractedFields(),
        state.get("issues") or [],
        state.get("classification") or InspectionClassification(),
        state.get("raw_text", ""),
        state.get("page_count", 0),
    )
    logger.info(
        f"Report for '{report.property_name}': {len(report.issues)} issue(s), "
        f"condition {report.overall_condition.value}, est. cost ${report.estimated_repair_cost:,.0f}"
    )
    return {"report": report}

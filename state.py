from typing import TypedDict, List, Dict, Optional, Any

# ============================================================================
# Registry Records
# ============================================================================

class PropertyRecord(TypedDict, total=False):
    """
    A property as supplied by the external registry.

    Only non-deleted records are considered for matching. Some stores name
    the field "property_name"; the resolver accepts either.
    """
    id: str
    name: str
    property_name: Optional[str]
    address: str
    city: str
    state: str
    is_deleted: bool


# ============================================================================
# Graph State
# ============================================================================

class ReportState(TypedDict, total=False):
    """
    The state of one document as it moves through the pipeline.
    Each node reads what it needs and returns only the keys it writes.
    """
    # Input
    document_id: str
    filename: str
    file_bytes: bytes
    registry: Any  # Registry snapshot (tuple of PropertyRecord)

    # Text extraction
    raw_text: str
    page_count: int
    extraction_status: str  # 'extracted', 'filename_fallback'
    extraction_error: Optional[str]
    extraction_time_ms: float

    # Parallel extraction branches (disjoint keys)
    fields: Any  # nodes.field_extractor.ExtractedFields
    issues: List[Any]  # List[nodes.issue_extractor.Issue]
    classification: Any  # nodes.classifier.InspectionClassification

    # Assembled output
    report: Any  # nodes.report.ExtractedReport

    # Property resolution
    property_match: Optional[Any]  # nodes.resolver.PropertyMatch
    potential_matches: List[Any]
    needs_manual_match: bool
    match_message: str

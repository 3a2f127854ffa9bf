import os
import sys
import json
import time
import uuid
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Any, Optional, Sequence, Tuple

from langgraph.graph import StateGraph, START, END
from dotenv import load_dotenv

# Import State
from state import ReportState
from config import PipelineConfig, load_pipeline_config

# Import Nodes
from nodes.text_source import TextExtractor, StaticTextExtractor, default_extractor, text_extraction_node
from nodes.field_extractor import field_extraction_node
from nodes.issue_extractor import issue_extraction_node
from nodes.classifier import inspection_classifier_node
from nodes.report import ExtractedReport, report_builder_node
from nodes.resolver import PropertyMatch, RegistrySource, snapshot_registry, property_resolver_node

# Load Env
load_dotenv()

# Configure logger
logger = logging.getLogger(__name__)

EXTRACTION_BRANCHES = ["field_extractor", "issue_extractor", "classifier"]


def build_graph(extractor: Optional[TextExtractor] = None,
                config: Optional[PipelineConfig] = None):
    """
    Constructs the LangGraph state machine.

    text_extraction fans out to the three extraction branches, which run
    in the same step and write disjoint keys; report_builder joins them.
    """
    config = config or PipelineConfig()
    extractor = extractor or default_extractor()
    builder = StateGraph(ReportState)

    # 1. Add Nodes (dependencies bound here, no module-level singletons)
    builder.add_node("text_extraction", lambda state: text_extraction_node(state, extractor))
    builder.add_node("field_extractor", field_extraction_node)
    builder.add_node("issue_extractor", lambda state: issue_extraction_node(state, config.issues))
    builder.add_node("classifier", lambda state: inspection_classifier_node(state, config.classifier))
    builder.add_node("report_builder", report_builder_node)
    builder.add_node(
        "property_resolver",
        lambda state: property_resolver_node(state, config.resolver, config.manual_match_shortlist_limit),
    )

    # 2. Add Edges (The Flow)
    builder.add_edge(START, "text_extraction")
    for branch in EXTRACTION_BRANCHES:
        builder.add_edge("text_extraction", branch)
    builder.add_edge(EXTRACTION_BRANCHES, "report_builder")
    builder.add_edge("report_builder", "property_resolver")
    builder.add_edge("property_resolver", END)

    # 3. Compile
    return builder.compile()


# ============================================================================
# Metrics
# ============================================================================

@dataclass
class PipelineMetrics:
    """Per-document processing metrics."""

    filename: str = ""
    document_id: str = ""

    # Timing (milliseconds)
    total_processing_time_ms: float = 0.0
    extraction_time_ms: float = 0.0

    # Document
    extraction_status: str = ""
    page_count: int = 0
    text_length: int = 0
    issue_count: int = 0

    # Outcome
    inspection_type: str = "unknown"
    classification_confidence: float = 0.0
    match_type: Optional[str] = None
    needs_manual_match: bool = False

    is_slow: bool = False
    slow_threshold_ms: float = 5000.0
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary for logging/serialization."""
        return {
            "filename": self.filename,
            "document_id": self.document_id,
            "total_processing_time_ms": round(self.total_processing_time_ms, 2),
            "extraction_time_ms": round(self.extraction_time_ms, 2),
            "extraction_status": self.extraction_status,
            "page_count": self.page_count,
            "text_length": self.text_length,
            "issue_count": self.issue_count,
            "inspection_type": self.inspection_type,
            "classification_confidence": round(self.classification_confidence, 4),
            "match_type": self.match_type,
            "needs_manual_match": self.needs_manual_match,
            "is_slow": self.is_slow,
            "timestamp": self.timestamp,
        }

    def log_summary(self) -> str:
        """Generate a human-readable summary for logging."""
        lines = [
            f"📊 Pipeline Metrics Summary",
            f"   File: {self.filename or 'N/A'}",
            f"   Total Time: {self.total_processing_time_ms:.1f}ms (extraction {self.extraction_time_ms:.1f}ms)",
            f"   Text: {self.text_length} chars from {self.page_count} page(s) [{self.extraction_status}]",
            f"   Issues: {self.issue_count}",
            f"   Inspection Type: {self.inspection_type} ({self.classification_confidence:.0%})",
            f"   Property Match: {self.match_type or 'none'}"
            + (" → manual match needed" if self.needs_manual_match else ""),
        ]
        if self.is_slow:
            lines.append(f"   ⚠️ SLOW: exceeded {self.slow_threshold_ms:.0f}ms threshold")
        return "\n".join(lines)


def log_pipeline_metrics(metrics: PipelineMetrics) -> None:
    """Log pipeline metrics at the appropriate level."""
    if metrics.is_slow:
        logger.warning(metrics.log_summary())
    else:
        logger.info(metrics.log_summary())
    logger.debug(f"Pipeline metrics: {json.dumps(metrics.to_dict())}")


# ============================================================================
# Processing Entry Points
# ============================================================================

@dataclass
class ProcessedReport:
    """Pipeline output for one document."""
    filename: str
    report: ExtractedReport
    property_match: Optional[PropertyMatch] = None
    potential_matches: List[PropertyMatch] = field(default_factory=list)
    needs_manual_match: bool = False
    message: str = ""
    metrics: Optional[PipelineMetrics] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "report": self.report.to_dict(),
            "property_match": self.property_match.to_dict() if self.property_match else None,
            "potential_matches": [m.to_dict() for m in self.potential_matches],
            "needs_manual_match": self.needs_manual_match,
            "message": self.message,
            "metrics": self.metrics.to_dict() if self.metrics else None,
        }


def process_document(content: bytes, filename: str,
                     registry: RegistrySource = None,
                     extractor: Optional[TextExtractor] = None,
                     config: Optional[PipelineConfig] = None,
                     graph=None) -> ProcessedReport:
    """
    Run one document through the pipeline.

    Args:
        content: Document bytes
        filename: Declared filename (fallback source for the property name)
        registry: Property records, a reader with list_properties(), or a callable
        extractor: Text extraction capability (Docling when omitted)
        config: Pipeline configuration
        graph: Pre-compiled graph (built from extractor/config when omitted)

    Returns:
        ProcessedReport; never raises for extraction or registry failures
    """
    config = config or PipelineConfig()
    if graph is None:
        graph = build_graph(extractor, config)
    start_time = time.time()

    initial_state: ReportState = {
        "document_id": str(uuid.uuid4()),
        "filename": filename,
        "file_bytes": content or b"",
        "registry": snapshot_registry(registry),
    }
    final_state = graph.invoke(initial_state)

    report: ExtractedReport = final_state["report"]
    match: Optional[PropertyMatch] = final_state.get("property_match")

    metrics = PipelineMetrics(
        filename=filename,
        document_id=initial_state["document_id"],
        total_processing_time_ms=(time.time() - start_time) * 1000,
        extraction_time_ms=final_state.get("extraction_time_ms", 0.0),
        extraction_status=final_state.get("extraction_status", ""),
        page_count=final_state.get("page_count", 0),
        text_length=len(final_state.get("raw_text", "")),
        issue_count=len(report.issues),
        inspection_type=report.classification.primary_type.value,
        classification_confidence=report.classification.confidence,
        match_type=match.match_type.value if match else None,
        needs_manual_match=final_state.get("needs_manual_match", False),
        slow_threshold_ms=config.slow_document_threshold_ms,
    )
    metrics.is_slow = metrics.total_processing_time_ms > metrics.slow_threshold_ms
    log_pipeline_metrics(metrics)

    return ProcessedReport(
        filename=filename,
        report=report,
        property_match=match,
        potential_matches=list(final_state.get("potential_matches", [])),
        needs_manual_match=final_state.get("needs_manual_match", False),
        message=final_state.get("match_message", ""),
        metrics=metrics,
    )


def process_text(text: str, filename: str = "",
                 registry: RegistrySource = None,
                 config: Optional[PipelineConfig] = None,
                 page_count: int = 1) -> ProcessedReport:
    """Run already-extracted text through the pipeline."""
    return process_document(
        b"",
        filename,
        registry=registry,
        extractor=StaticTextExtractor(text, page_count),
        config=config,
    )


def process_documents(documents: Sequence[Tuple[bytes, str]],
                      registry: RegistrySource = None,
                      extractor: Optional[TextExtractor] = None,
                      config: Optional[PipelineConfig] = None) -> List[ProcessedReport]:
    """
    Process many documents in parallel, one worker per document.

    The registry is snapshotted once and shared read-only by every worker.
    Results are returned in input order.
    """
    config = config or PipelineConfig()
    if not documents:
        return []

    graph = build_graph(extractor, config)
    records = snapshot_registry(registry)
    logger.info(f"Processing {len(documents)} document(s) with {config.max_workers} worker(s)")

    with ThreadPoolExecutor(max_workers=config.max_workers) as pool:
        futures = [
            pool.submit(process_document, content, filename, records, extractor, config, graph)
            for content, filename in documents
        ]
        return [future.result() for future in futures]


SAMPLE_REPORT = """STORM DAMAGE INSPECTION REPORT
Property: Dallas Corporate Center
Address: 1200 Commerce Street, Dallas, TX 75202
Client: Prologis
Report Date: MARCH 14, 2025
Roof Area: 125,000 sq ft
Roof System: TPO

Insurance adjuster requested documentation of hail damage after the recent storm.

DEFICIENCIES
- Active leak at northeast drain requires immediate repair
- Membrane punctures from hail across the south section
- Flashing separated at the west parapet wall
"""


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    # Simulate an initial run
    print("Starting Inspection Report Pipeline...")
    registry = [
        {"id": "1", "name": "Dallas Corporate Center", "address": "1200 Commerce Street", "city": "Dallas", "state": "TX"},
        {"id": "2", "name": "Warehouse Complex A", "address": "55 Industrial Blvd", "city": "Fort Worth", "state": "TX"},
    ]

    if len(sys.argv) > 1:
        path = sys.argv[1]
        with open(path, "rb") as f:
            result = process_document(f.read(), os.path.basename(path), registry, config=load_pipeline_config())
    else:
        result = process_text(SAMPLE_REPORT, "Dallas_Corporate_Center_STORM_DAMAGE_Report.pdf", registry,
                              config=load_pipeline_config())

    print(json.dumps(result.to_dict(), indent=2))

"""
FastAPI Server for the Inspection Report API

Provides endpoints for:
- Extracting a structured report from an uploaded document (or its text)
- Matching an extracted property against a registry snapshot
- Listing candidate properties for manual matching

The registry is owned by the caller and sent with each request; the server
keeps no property data of its own.
"""

import base64
import binascii
import logging
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from typing import Dict, Any, List, Optional

from config import load_pipeline_config
from main import process_document, process_text
from nodes.resolver import find_best_match, get_potential_matches

# Configure logger
logger = logging.getLogger(__name__)

# Loaded once at startup (.env overrides applied)
pipeline_config = load_pipeline_config()

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Inspection Report API",
    description="Structured extraction and property matching for roof inspection reports",
    version="0.1.0",
)

# CORS for React frontend (dev server typically on 5173)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Pydantic Models for API
# ============================================================================

class PropertyRecordModel(BaseModel):
    """A registry entry supplied by the caller."""
    id: str
    name: str
    address: str = ""
    city: str = ""
    state: str = ""
    is_deleted: bool = False


class ExtractReportRequest(BaseModel):
    """Document to process: base64 bytes or pre-extracted text."""
    filename: str
    content_base64: Optional[str] = None
    text: Optional[str] = None
    page_count: int = 1
    registry: List[PropertyRecordModel] = []


class PropertyMatchRequest(BaseModel):
    """Extracted property identity to resolve."""
    name: str
    address: Optional[str] = None
    registry: List[PropertyRecordModel] = []
    limit: Optional[int] = None


def _registry_records(models: List[PropertyRecordModel]) -> List[Dict[str, Any]]:
    return [model.model_dump() for model in models]


# ============================================================================
# API Endpoints
# ============================================================================

@app.get("/api/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "inspection-report-api"}


@app.post("/api/reports/extract")
def extract_report(request: ExtractReportRequest):
    """
    Run a document through the extraction pipeline.

    Exactly one of `text` or `content_base64` should be provided; when both
    are present the text wins.
    """
    registry = _registry_records(request.registry)

    if request.text is not None:
        result = process_text(request.text, request.filename, registry, pipeline_config, request.page_count)
        return result.to_dict()

    if request.content_base64 is None:
        raise HTTPException(status_code=400, detail="Provide either text or content_base64")

    try:
        content = base64.b64decode(request.content_base64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="content_base64 is not valid base64")

    result = process_document(content, request.filename, registry, config=pipeline_config)
    return result.to_dict()


@app.post("/api/properties/match")
def match_property(request: PropertyMatchRequest):
    """Best registry match for an extracted property, or null."""
    match = find_best_match(
        request.name,
        request.address,
        _registry_records(request.registry),
        pipeline_config.resolver,
    )
    return {"match": match.to_dict() if match else None}


@app.post("/api/properties/candidates")
def property_candidates(request: PropertyMatchRequest):
    """Ranked shortlist for manual property matching."""
    matches = get_potential_matches(
        request.name,
        request.address,
        _registry_records(request.registry),
        request.limit,
        pipeline_config.resolver,
    )
    return {"candidates": [m.to_dict() for m in matches]}


# ============================================================================
# Run with: uvicorn server:app --reload
# ============================================================================

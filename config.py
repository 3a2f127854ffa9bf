"""
Pipeline configuration.

Every tuned constant lives in one of the stage configs below; defaults are
the values the behavioral tests are pinned to. Environment variables (loaded
from .env) may override a few of them for deployment.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from dotenv import load_dotenv

from nodes.issue_extractor import IssueExtractorConfig
from nodes.classifier import ClassifierConfig
from nodes.resolver import ResolverConfig

# Configure logger
logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PipelineConfig:
    """Configuration for the report-processing pipeline."""

    issues: IssueExtractorConfig = field(default_factory=IssueExtractorConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)

    # Batch processing
    max_workers: int = 4  # One document per worker
    manual_match_shortlist_limit: int = 3  # Candidates attached when no match is found
    slow_document_threshold_ms: float = 5000.0  # Log a warning above this


def _env(name: str, default: T, cast: Callable[[str], T]) -> T:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid value for {name}: {raw!r}")
        return default


def load_pipeline_config(env_file: Optional[str] = None) -> PipelineConfig:
    """
    Build a PipelineConfig from defaults plus environment overrides.

    Args:
        env_file: Optional .env path (default search when omitted)

    Returns:
        PipelineConfig
    """
    load_dotenv(env_file)

    config = PipelineConfig()
    config.issues.max_issues = _env("ISSUE_MAX_COUNT", config.issues.max_issues, int)
    config.classifier.min_score_threshold = _env(
        "CLASSIFIER_MIN_SCORE", config.classifier.min_score_threshold, float)
    config.classifier.assumed_max_score = _env(
        "CLASSIFIER_ASSUMED_MAX_SCORE", config.classifier.assumed_max_score, float)
    config.resolver.fuzzy_min_confidence = _env(
        "RESOLVER_FUZZY_THRESHOLD", config.resolver.fuzzy_min_confidence, float)
    config.resolver.partial_min_confidence = _env(
        "RESOLVER_PARTIAL_THRESHOLD", config.resolver.partial_min_confidence, float)
    config.resolver.shortlist_min_confidence = _env(
        "RESOLVER_SHORTLIST_THRESHOLD", config.resolver.shortlist_min_confidence, float)
    config.max_workers = max(1, _env("PIPELINE_MAX_WORKERS", config.max_workers, int))
    return config

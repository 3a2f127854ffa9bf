"""
Property Resolver Node - Entity Resolution Against the Property Registry

Given an extracted property name (and optionally an address), find the
existing registry entry it refers to. Tiers are tried in order and the first
tier that produces a match wins:

1. exact    normalized names equal                         (1.0)
2. address  normalized addresses contain one another        (0.9)
3. fuzzy    best edit-distance similarity >= 0.7            (similarity)
4. partial  word overlap ratio >= 0.6                       (ratio)

Within a tier, ties keep the first entry in registry order.

The registry is owned by the caller. It is snapshotted (copied) once per
call and never written to. A failing or empty registry yields no match.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Dict, Any, Optional, Sequence, Tuple, Union, Callable, Iterable

from state import ReportState, PropertyRecord
from nodes.normalizer import normalize_text, significant_words
from nodes.similarity import similarity

# Configure logger
logger = logging.getLogger(__name__)


class RegistryUnavailable(Exception):
    """The property registry could not be read."""
    pass


class MatchType(str, Enum):
    """Tier that produced a property match."""
    EXACT = "exact"
    ADDRESS = "address"
    FUZZY = "fuzzy"
    PARTIAL = "partial"


@dataclass
class ResolverConfig:
    """Confidence constants for property resolution."""

    exact_confidence: float = 1.0
    address_confidence: float = 0.9
    fuzzy_min_confidence: float = 0.7  # Best-match fuzzy tier
    partial_min_confidence: float = 0.6
    shortlist_min_confidence: float = 0.3  # Shortlist keeps anything above this
    shortlist_fuzzy_label_threshold: float = 0.8  # Above: "fuzzy", else "partial"
    shortlist_limit: int = 5
    min_word_length: int = 3  # Partial tier ignores words of 2 chars or fewer


@dataclass(frozen=True)
class PropertyMatch:
    """A registry entry matched to an extracted property."""
    id: str
    name: str
    address: str
    city: str
    state: str
    confidence: float
    match_type: MatchType

    @classmethod
    def from_record(cls, record: PropertyRecord, confidence: float,
                    match_type: MatchType) -> "PropertyMatch":
        return cls(
            id=str(record.get("id", "")),
            name=record.get("name", ""),
            address=record.get("address", "") or "",
            city=record.get("city", "") or "",
            state=record.get("state", "") or "",
            confidence=confidence,
            match_type=match_type,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "confidence": round(self.confidence, 4),
            "match_type": self.match_type.value,
        }


# ============================================================================
# Registry Snapshot
# ============================================================================

RegistrySource = Union[None, Iterable[Dict[str, Any]], Callable[[], Iterable[Dict[str, Any]]], Any]


def read_registry(registry: RegistrySource) -> List[Dict[str, Any]]:
    """
    Read all records from a registry source.

    Raises:
        RegistryUnavailable: If the source fails or is not a record collection
    """
    if registry is None:
        return []
    try:
        if hasattr(registry, "list_properties"):
            records = registry.list_properties()
        elif callable(registry):
            records = registry()
        else:
            records = registry
        return list(records or [])
    except RegistryUnavailable:
        raise
    except Exception as e:
        raise RegistryUnavailable(f"Failed to read property registry: {e}") from e


def snapshot_registry(registry: RegistrySource) -> Tuple[PropertyRecord, ...]:
    """
    Take a read-only copy of the registry.

    Accepts a sequence of records, a reader object exposing list_properties(),
    or a zero-argument callable. Deleted records are dropped, and a record
    carrying "property_name" instead of "name" is accepted.

    Returns:
        Tuple of copied records; empty if the registry cannot be read
    """
    try:
        records = read_registry(registry)
    except RegistryUnavailable as e:
        logger.error(f"Property registry unavailable, treating as empty: {e}")
        return ()

    snapshot: List[PropertyRecord] = []
    for record in records:
        if not record or record.get("is_deleted"):
            continue
        copied = dict(record)
        if not copied.get("name") and copied.get("property_name"):
            copied["name"] = copied["property_name"]
        snapshot.append(copied)  # type: ignore[arg-type]
    return tuple(snapshot)


# ============================================================================
# Matching Tiers
# ============================================================================

def find_exact_match(name: str, records: Sequence[PropertyRecord],
                     config: ResolverConfig) -> Optional[PropertyMatch]:
    target = normalize_text(name)
    if not target:
        return None
    for record in records:
        if normalize_text(record.get("name")) == target:
            return PropertyMatch.from_record(record, config.exact_confidence, MatchType.EXACT)
    return None


def addresses_match(extracted_address: str, registry_address: str) -> bool:
    """True when either normalized address contains the other (both non-empty)."""
    extracted = normalize_text(extracted_address)
    candidate = normalize_text(registry_address)
    if not extracted or not candidate:
        return False
    return extracted in candidate or candidate in extracted


def find_address_match(address: str, records: Sequence[PropertyRecord],
                       config: ResolverConfig) -> Optional[PropertyMatch]:
    for record in records:
        if addresses_match(address, record.get("address", "")):
            return PropertyMatch.from_record(record, config.address_confidence, MatchType.ADDRESS)
    return None


def find_fuzzy_match(name: str, records: Sequence[PropertyRecord],
                     config: ResolverConfig,
                     min_confidence: Optional[float] = None) -> Optional[PropertyMatch]:
    threshold = config.fuzzy_min_confidence if min_confidence is None else min_confidence
    target = normalize_text(name)
    if not target:
        return None

    best: Optional[PropertyMatch] = None
    best_score = 0.0
    for record in records:
        score = similarity(target, normalize_text(record.get("name")), normalize=False)
        if score > best_score and score >= threshold:
            best_score = score
            best = PropertyMatch.from_record(record, score, MatchType.FUZZY)
    return best


def word_overlap(extracted_words: Sequence[str], registry_words: Sequence[str]) -> float:
    """
    Share of matching words between two word lists.

    A pair matches when one word equals or contains the other. Each registry
    word can satisfy at most one extracted word.

    Returns:
        matched / max(len(extracted_words), len(registry_words))
    """
    if not extracted_words or not registry_words:
        return 0.0

    available = list(registry_words)
    matched = 0
    for word in extracted_words:
        for index, candidate in enumerate(available):
            if word == candidate or word in candidate or candidate in word:
                matched += 1
                del available[index]
                break
    return matched / max(len(extracted_words), len(registry_words))


def find_partial_match(name: str, records: Sequence[PropertyRecord],
                       config: ResolverConfig) -> Optional[PropertyMatch]:
    extracted_words = significant_words(name, config.min_word_length)
    if not extracted_words:
        return None

    best: Optional[PropertyMatch] = None
    best_score = 0.0
    for record in records:
        score = word_overlap(extracted_words, significant_words(record.get("name"), config.min_word_length))
        if score > best_score and score >= config.partial_min_confidence:
            best_score = score
            best = PropertyMatch.from_record(record, score, MatchType.PARTIAL)
    return best


# ============================================================================
# Public API
# ============================================================================

def find_best_match(name: Optional[str], address: Optional[str] = None,
                    registry: RegistrySource = None,
                    config: Optional[ResolverConfig] = None) -> Optional[PropertyMatch]:
    """
    Resolve an extracted property to a registry entry.

    Args:
        name: Extracted property name
        address: Extracted address (address tier skipped when empty)
        registry: Records, a reader with list_properties(), or a callable
        config: Confidence constants (defaults when omitted)

    Returns:
        The best PropertyMatch, or None when nothing clears its tier threshold
    """
    config = config or ResolverConfig()
    records = snapshot_registry(registry)
    if not records:
        logger.info("Property registry is empty; no match possible")
        return None

    name = name or ""
    match = find_exact_match(name, records, config)
    if not match and address:
        match = find_address_match(address, records, config)
    if not match:
        match = find_fuzzy_match(name, records, config)
    if not match:
        match = find_partial_match(name, records, config)

    if match:
        logger.info(
            f"Matched '{name}' to '{match.name}' ({match.match_type.value}, "
            f"confidence {match.confidence:.2f})"
        )
    else:
        logger.info(f"No property match for '{name}' among {len(records)} properties")
    return match


def get_potential_matches(name: Optional[str], address: Optional[str] = None,
                          registry: RegistrySource = None,
                          limit: Optional[int] = None,
                          config: Optional[ResolverConfig] = None) -> List[PropertyMatch]:
    """
    Ranked shortlist of candidate properties for manual disambiguation.

    Every entry is scored by name similarity alone and kept when above the
    shortlist threshold. `address` is accepted so callers can pass the same
    arguments as find_best_match, but it does not affect ranking.

    Returns:
        Up to `limit` matches, highest confidence first (stable for ties)
    """
    config = config or ResolverConfig()
    limit = config.shortlist_limit if limit is None else limit
    records = snapshot_registry(registry)
    if not records or limit <= 0:
        return []

    target = normalize_text(name)
    candidates: List[PropertyMatch] = []
    for record in records:
        score = similarity(target, normalize_text(record.get("name")), normalize=False) if target else 0.0
        match_type = MatchType.FUZZY if score > config.shortlist_fuzzy_label_threshold else MatchType.PARTIAL
        if score > config.shortlist_min_confidence:
            candidates.append(PropertyMatch.from_record(record, score, match_type))

    candidates.sort(key=lambda m: m.confidence, reverse=True)
    return candidates[:limit]


def format_match_summary(matches: Sequence[PropertyMatch]) -> str:
    """'Name A (87%), Name B (64%)' for user-facing messages."""
    return ", ".join(f"{m.name} ({round(m.confidence * 100)}%)" for m in matches)


# ============================================================================
# LangGraph Node
# ============================================================================

def property_resolver_node(state: ReportState,
                           resolver_config: Optional[ResolverConfig] = None,
                           shortlist_limit: int = 3) -> dict:
    """
    Node: Property Resolver

    Matches the report's property against the registry snapshot in state.
    When no match is found, a shortlist is attached and the report is
    flagged for manual matching.

    Returns:
        dict with property_match, potential_matches, needs_manual_match, match_message
    """
    print("--- NODE: Property Resolver ---")

    report = state.get("report")
    registry = state.get("registry", ())
    name = report.property_name if report else ""
    address = report.address if report else ""

    match = find_best_match(name, address, registry, resolver_config)
    if match:
        return {
            "property_match": match,
            "potential_matches": [],
            "needs_manual_match": False,
            "match_message": f"Matched to {match.name} ({match.match_type.value}, {round(match.confidence * 100)}%)",
        }

    shortlist = get_potential_matches(name, address, registry, shortlist_limit, resolver_config)
    message = f"Could not match property '{name}'."
    if shortlist:
        message += f" Closest matches: {format_match_summary(shortlist)}"
    logger.warning(message)

    return {
        "property_match": None,
        "potential_matches": shortlist,
        "needs_manual_match": True,
        "match_message": message,
    }

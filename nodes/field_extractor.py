"""
Field Extractor Node - Scalar Fields from Inspection Report Text

Pulls discrete fields (property name, address, client, market, report date,
roof area, manufacturer, warranty, contractors, ...) out of raw report text.

Each field owns an ordered tuple of FieldRule objects. Labelled rules
("Property Manager: X") come before bare heuristics (a known manufacturer
name anywhere in the text); the first rule that yields a non-empty value
wins. Absent fields resolve to "" (or 0 for roof area). Extraction is a pure
function of the input text.
"""

import re
import logging
from dataclasses import dataclass, asdict, replace
from typing import Callable, Dict, Any, Optional, Pattern, Tuple

from state import ReportState

# Configure logger
logger = logging.getLogger(__name__)


# ============================================================================
# Rule Building Blocks
# ============================================================================

DEFAULT_FLAGS = re.IGNORECASE | re.MULTILINE

# A labelled value runs to the end of the line, or to a run of 2+ spaces
# (PDF text often packs several "Label: value" pairs onto one line).
_VALUE = r"(\S(?:[^\n]*?\S)?)(?=[ \t]{2,}|[ \t]*$)"


def _label(*names: str) -> str:
    """Build a 'Label: value' pattern; spaces inside a label match spaces or tabs."""
    alternatives = "|".join(name.replace(" ", r"[ \t]+") for name in names)
    return rf"\b(?:{alternatives})[ \t]*:[ \t]*{_VALUE}"


def _to_int(value: str) -> int:
    digits = value.replace(",", "")
    return int(digits) if digits.isdigit() else 0


@dataclass(frozen=True)
class FieldRule:
    """
    One extraction rule for a field.

    The rule matches when `pattern` finds a hit whose `group` is non-empty
    after stripping; `transform` converts the captured text to the field value.
    """
    name: str
    pattern: Pattern[str]
    group: int = 1
    transform: Optional[Callable[[str], Any]] = None

    def apply(self, text: str) -> Any:
        """Return the extracted value, or None if the rule does not match."""
        match = self.pattern.search(text)
        if not match:
            return None
        captured = (match.group(self.group) or "").strip()
        if not captured:
            return None
        value = self.transform(captured) if self.transform else captured
        return value or None


def _rule(name: str, pattern: str, group: int = 1,
          transform: Optional[Callable[[str], Any]] = None,
          flags: int = DEFAULT_FLAGS) -> FieldRule:
    return FieldRule(name=name, pattern=re.compile(pattern, flags), group=group, transform=transform)


# ============================================================================
# Field Rules (ordered: labelled first, heuristics last)
# ============================================================================

_MONTHS = (
    r"(?:January|February|March|April|May|June|July|August|September|October|November|December"
    r"|Jan|Feb|Mar|Apr|Jun|Jul|Aug|Sept?|Oct|Nov|Dec)\.?"
)
_DATE_VALUE = rf"({_MONTHS}[ \t]+\d{{1,2}},?[ \t]+\d{{4}}|\d{{1,2}}[-/]\d{{1,2}}[-/]\d{{2,4}}|\d{{4}}-\d{{2}}-\d{{2}})"
_STREET_SUFFIX = (
    r"(?:Drive|Dr|Street|St|Avenue|Ave|Boulevard|Blvd|Road|Rd|Lane|Ln|Parkway|Pkwy"
    r"|Highway|Hwy|Freeway|Fwy|Circle|Cir|Court|Ct|Plaza|Place|Pl|Way|Trail|Trl)"
)
_REPORT_KINDS = (
    r"(?:STORM[ \t]+DAMAGE|HAIL[ \t]+DAMAGE|WIND[ \t]+DAMAGE|ANNUAL|QUARTERLY|MONTHLY|EMERGENCY|ROUTINE"
    r"|DUE[ \t]+DILIGENCE|PRE-PURCHASE|BASELINE|ROOF[ \t]+CONDITION|CONDITION|ROOF)"
)

FIELD_RULES: Dict[str, Tuple[FieldRule, ...]] = {
    "property_name": (
        _rule("property_name_label", _label("Property Name", "Building Name", "Facility Name")),
        _rule("property_label", _label("Property", "Building", "Facility", "Site")),
        _rule(
            "property_name_heuristic",
            r"\b((?:[A-Z][\w'&.-]*[ \t]+){0,4}"
            r"(?:Corporate|Commerce|Distribution|Logistics|Business|Industrial|Data|Technology|Office|Trade)"
            r"[ \t]+(?:Center|Centre|Park|Complex|Plaza|Campus)(?:[ \t]+(?:\d+|[A-Z])\b)?)",
            flags=re.MULTILINE,
        ),
    ),
    "address": (
        _rule("address_label", _label("Property Address", "Site Address", "Address")),
        _rule(
            "street_address",
            rf"(\d+[ \t]+[A-Za-z0-9. ]{{1,60}}?[ \t]+{_STREET_SUFFIX}\.?,?(?:[ \t]+[A-Za-z. ]{{1,40}}?)?,?[ \t]+[A-Z]{{2}}[ \t]+\d{{5}}(?:-\d{{4}})?)",
            flags=re.MULTILINE,
        ),
    ),
    "client": (
        _rule("client_label", _label("Client", "Property Owner", "Owner", "Prepared For")),
        _rule(
            "client_heuristic",
            r"\b(Prologis|CBRE|Cushman[ \t]*&[ \t]*Wakefield|Cushman|JLL|Colliers|Transwestern|Lincoln Property Company)\b",
            flags=re.MULTILINE,
        ),
    ),
    "property_manager": (
        _rule("property_manager_label", _label("Property Manager", "Building Manager", "Facility Manager", "PM")),
    ),
    "property_manager_phone": (
        _rule(
            "phone_label",
            r"\b(?:Property Manager Phone|PM Phone|Phone|Office|Tel|Telephone)[ \t]*:?[ \t]*"
            r"(\(?\d{3}\)?[ \t.-]?\d{3}[.-]\d{4})",
        ),
        _rule("phone_heuristic", r"(\(\d{3}\)[ \t]?\d{3}-\d{4}|\b\d{3}[.-]\d{3}[.-]\d{4}\b)"),
    ),
    "market": (
        _rule("market_label", _label("Market", "Region", "Submarket")),
        _rule(
            "market_heuristic",
            r"\b(Dallas|Fort Worth|Houston|Austin|San Antonio|Atlanta|Phoenix|Denver|Chicago|New York"
            r"|Los Angeles|Inland Empire|Nashville|Charlotte|Orlando|Miami|Las Vegas|Salt Lake City)\b",
            flags=re.MULTILINE,
        ),
    ),
    "report_type": (
        _rule("report_type_label", _label("Report Type", "Inspection Type", "Type of Inspection")),
        _rule(
            "report_title",
            rf"\b({_REPORT_KINDS}[ \t]+(?:DAMAGE[ \t]+)?(?:INSPECTION|ASSESSMENT|SURVEY)[ \t]+REPORT)\b",
        ),
        _rule("report_survey_title", r"\b((?:ROOF|CONDITION|PROPERTY)[ \t]+SURVEY(?:[ \t]+REPORT)?)\b", flags=re.MULTILINE),
    ),
    "report_date": (
        _rule("report_date_label", _label("Report Date", "Inspection Date", "Date of Inspection", "Date Inspected")),
        _rule("date_label", rf"(?<!\w[ \t])\bDate[ \t]*:[ \t]*{_VALUE}"),
        _rule("date_heuristic", _DATE_VALUE),
    ),
    "inspection_company": (
        _rule("inspection_company_label", _label("Inspection Company", "Inspected By", "Inspection Firm", "Prepared By", "Inspector")),
        _rule("inspection_company_heuristic", r"\b(Roof[ \t]?Controller)\b"),
    ),
    "roof_area": (
        _rule(
            "roof_area_label",
            r"\b(?:Roof Area|Total Roof Area|Roof Size|Square Footage)[ \t]*:?[ \t]*(?:approx(?:imately|\.)?[ \t]*)?(\d[\d,]*)",
            transform=_to_int,
        ),
        _rule(
            "roof_area_units",
            r"\b(\d[\d,]*)[ \t]*(?:sq\.?[ \t]*ft\.?|square[ \t]+feet|SF\b|ft²|ft2\b)",
            transform=_to_int,
        ),
    ),
    "roof_system": (
        _rule("roof_system_label", _label("Roof System", "Roofing System", "Roof Type", "Membrane Type")),
        _rule("roof_system_acronym", r"\b(TPO|EPDM|PVC|BUR|SBS|APP)\b", flags=re.MULTILINE),
        _rule("roof_system_heuristic", r"\b(modified bitumen|built-up roof(?:ing)?|standing seam metal|spray foam)\b"),
    ),
    "manufacturer": (
        _rule("manufacturer_label", _label("Manufacturer", "Membrane Manufacturer", "Roof Manufacturer")),
        _rule(
            "manufacturer_heuristic",
            r"\b(Firestone|Carlisle|GAF|Johns Manville|Sika Sarnafil|Sarnafil|Versico|Mule-Hide"
            r"|Duro-Last|Tremco|Garland|IB Roof Systems|Elevate)\b",
        ),
    ),
    "warranty": (
        _rule("warranty_label", _label("Warranty", "Warranty Type", "Warranty Information")),
        _rule("warranty_heuristic", r"\b(\d{1,2}[ \t-]*(?:year|yr)[ \t-]+[^\n]{0,40}?warranty)\b"),
    ),
    "warranty_expiration": (
        _rule("warranty_expiration_label", _label("Warranty Expiration Date", "Warranty Expiration", "Warranty Expires", "Expiration Date")),
        _rule(
            "warranty_expiration_heuristic",
            rf"\bwarranty[^\n]{{0,40}}?expir(?:es|ation|ing)?[ \t]*(?:on|date)?[ \t]*:?[ \t]*{_DATE_VALUE}",
        ),
    ),
    "installing_contractor": (
        _rule("installing_contractor_label", _label("Installing Contractor", "Installer", "Installed By", "Original Contractor")),
    ),
    "repairing_contractor": (
        _rule("repairing_contractor_label", _label("Repairing Contractor", "Repair Contractor", "Repaired By", "Service Contractor")),
    ),
    "system_description": (
        _rule("system_description_label", _label("System Description", "Roof Description")),
    ),
    "drainage_system": (
        _rule("drainage_system_label", _label("Drainage System", "Drainage")),
    ),
    "flashing_detail": (
        _rule("flashing_detail_label", _label("Flashing Detail", "Flashing Details")),
    ),
    "perimeter_detail": (
        _rule("perimeter_detail_label", _label("Perimeter Detail", "Perimeter Details", "Edge Detail")),
    ),
    "estimated_lttr_value": (
        _rule("lttr_label", _label("Estimated LTTR Value", "Estimated LTTR", "LTTR Value", "LTTR")),
    ),
}


# ============================================================================
# Extracted Fields
# ============================================================================

@dataclass(frozen=True)
class ExtractedFields:
    """Scalar fields recovered from a report; "" / 0 mean "not found"."""
    property_name: str = ""
    address: str = ""
    client: str = ""
    property_manager: str = ""
    property_manager_phone: str = ""
    market: str = ""
    report_type: str = ""
    report_date: str = ""
    inspection_company: str = ""
    roof_area: int = 0
    roof_system: str = ""
    manufacturer: str = ""
    warranty: str = ""
    warranty_expiration: str = ""
    installing_contractor: str = ""
    repairing_contractor: str = ""
    system_description: str = ""
    drainage_system: str = ""
    flashing_detail: str = ""
    perimeter_detail: str = ""
    estimated_lttr_value: str = ""

    @property
    def roof_type(self) -> str:
        """Alias kept for stores that call the roof system 'roof type'."""
        return self.roof_system

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["roof_type"] = self.roof_system
        return data


def extract_field(text: str, field_name: str) -> Any:
    """
    Run the ordered rules for one field.

    Args:
        text: Raw report text
        field_name: Key into FIELD_RULES

    Returns:
        The first non-empty rule value, or the field's empty default
    """
    default = 0 if field_name == "roof_area" else ""
    if not text:
        return default

    for rule in FIELD_RULES[field_name]:
        value = rule.apply(text)
        if value is not None:
            logger.debug(f"Field {field_name} matched rule {rule.name}")
            return value
    return default


def extract_fields(text: Optional[str]) -> ExtractedFields:
    """Extract every scalar field from report text. Never raises on odd input."""
    text = text or ""
    values = {name: extract_field(text, name) for name in FIELD_RULES}
    return ExtractedFields(**values)


# ============================================================================
# Filename Fallback
# ============================================================================

_EXTENSION_RE = re.compile(r"\.[A-Za-z0-9]{1,5}$")
_REPORT_SUFFIX_RE = re.compile(
    r"[\s_-]*(?:(?:storm[\s_-]*damage|hail[\s_-]*damage|annual|quarterly|monthly|emergency|routine"
    r"|due[\s_-]*diligence|condition|roof|final|draft)[\s_-]*)*"
    r"(?:inspection|report|survey|assessment)(?:[\s_-]*(?:report|inspection))?(?![A-Za-z])[\s_-]*$",
    re.IGNORECASE,
)
_TRAILING_DATE_RE = re.compile(
    r"[\s_-]+(?:\d{4}[_-]\d{1,2}[_-]\d{1,2}|\d{1,2}[_-]\d{1,2}[_-]\d{2,4}|(?:19|20)\d{2})$"
)
_SEPARATOR_RE = re.compile(r"[_-]+")
_SPACES_RE = re.compile(r"\s+")


def property_name_from_filename(filename: Optional[str]) -> str:
    """
    Derive a property name from an uploaded file's name.

    "Dallas_Corporate_Center_STORM_DAMAGE_Report.pdf" -> "Dallas Corporate Center"

    Args:
        filename: Declared filename (may include a directory)

    Returns:
        Cleaned property name ("" if nothing usable remains)
    """
    if not filename:
        return ""

    name = re.split(r"[\\/]", filename)[-1]
    name = _EXTENSION_RE.sub("", name)

    previous = None
    while previous != name:
        previous = name
        name = _TRAILING_DATE_RE.sub("", name)
        stripped = _REPORT_SUFFIX_RE.sub("", name)
        # A name that is nothing but a report suffix is still better than nothing
        if stripped.strip(" _-"):
            name = stripped

    name = _SEPARATOR_RE.sub(" ", name)
    return _SPACES_RE.sub(" ", name).strip()


# ============================================================================
# LangGraph Node
# ============================================================================

def field_extraction_node(state: ReportState) -> dict:
    """
    Node: Field Extractor

    Reads raw_text and writes the scalar fields. When text extraction fell
    back to the filename, only the property name is populated.

    Returns:
        dict with "fields"
    """
    print("--- NODE: Field Extractor ---")

    fields = extract_fields(state.get("raw_text", ""))
    if not fields.property_name:
        fallback_name = property_name_from_filename(state.get("filename", ""))
        if fallback_name:
            fields = replace(fields, property_name=fallback_name)

    logger.info(
        f"Extracted fields for {state.get('filename', 'document')}: "
        f"property='{fields.property_name}', report_type='{fields.report_type}'"
    )
    return {"fields": fields}

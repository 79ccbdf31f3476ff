"""
Pattern library for deterministic DME extraction.

Device categories are checked in DEVICE_PATTERNS order and the first
satisfied category wins, so respiratory devices resolve before generic
"bed" or "monitor" terms. Attribute patterns are likewise tried in order,
first match wins. Every pattern is case-insensitive.
"""
import re
from dataclasses import dataclass
from typing import Optional, Pattern, Tuple

from dme_orders.extraction.models import UNKNOWN_DEVICE, UNKNOWN_PROVIDER

FLAGS = re.IGNORECASE


def _phrase(text: str) -> Pattern:
    """Compile a literal phrase."""
    return re.compile(re.escape(text), FLAGS)


def _word(text: str) -> Pattern:
    """Compile a literal token that must stand alone (e.g. 'O2', 'TENS')."""
    return re.compile(r"\b" + re.escape(text) + r"\b", FLAGS)


@dataclass(frozen=True)
class DevicePattern:
    """
    A device category and the cues that identify it.

    The category matches when any pattern in `any_of` matches and every
    pattern in `all_of` matches.
    """
    device: str
    any_of: Tuple[Pattern, ...]
    all_of: Tuple[Pattern, ...] = ()

    def matches(self, text: str) -> bool:
        if not any(p.search(text) for p in self.any_of):
            return False
        return all(p.search(text) for p in self.all_of)


@dataclass(frozen=True)
class LabeledPattern:
    """A pattern and the normalized value reported when it matches."""
    value: str
    pattern: Pattern


# ============================================================================
# Device Classification
# ============================================================================

DEVICE_PATTERNS: Tuple[DevicePattern, ...] = (
    DevicePattern("CPAP", (_word("CPAP"), _phrase("continuous positive airway pressure"))),
    DevicePattern("BiPAP", (_word("BiPAP"), _word("BPAP"), _phrase("bilevel"), _phrase("bi-level"))),
    DevicePattern("Oxygen Tank", (_phrase("oxygen"), _word("O2"))),
    DevicePattern("Wheelchair", (_phrase("wheelchair"),)),
    DevicePattern("Walker", (_word("walker"), _phrase("rollator"))),
    DevicePattern("Nebulizer", (_phrase("nebulizer"),)),
    DevicePattern("Hospital Bed", (_phrase("hospital bed"), _phrase("adjustable bed"))),
    DevicePattern("Pressure Relief Mattress", (_phrase("mattress"), _phrase("pressure relieving"))),
    DevicePattern("Crutches", (_phrase("crutches"),)),
    DevicePattern("Cane", (_word("cane"), _phrase("walking stick"))),
    DevicePattern("Mobility Scooter", (_word("scooter"),)),
    DevicePattern("Suction Machine", (_word("suction"), _phrase("aspirator"))),
    DevicePattern("Ventilator", (_phrase("ventilator"), _word("respirator"))),
    DevicePattern("Pulse Oximeter", (_phrase("pulse oximeter"), _word("oximeter"))),
    DevicePattern("TENS Unit", (_word("TENS"), _phrase("electrical stimulation"))),
    DevicePattern("Compression Pump", (_phrase("compression pump"), _phrase("lymphedema pump"))),
    DevicePattern("Commode", (_word("commode"), _phrase("bedside toilet"))),
    DevicePattern("Shower Chair", (_phrase("shower chair"), _phrase("bath bench"))),
    DevicePattern("Raised Toilet Seat", (_phrase("toilet seat"),), (_word("raised"),)),
    DevicePattern("Blood Glucose Monitor", (_phrase("blood glucose"), _phrase("glucometer"), _phrase("glucose monitor"))),
    DevicePattern("Blood Pressure Monitor", (_phrase("blood pressure"),), (_word("monitor"),)),
)

PAP_DEVICES = frozenset({"CPAP", "BiPAP"})


def classify_device(text: str) -> str:
    """Return the first device category whose cues appear in `text`."""
    for device_pattern in DEVICE_PATTERNS:
        if device_pattern.matches(text):
            return device_pattern.device
    return UNKNOWN_DEVICE


def first_label(text: str, patterns: Tuple[LabeledPattern, ...]) -> Optional[str]:
    """Value of the first labeled pattern found in `text`."""
    for labeled in patterns:
        if labeled.pattern.search(text):
            return labeled.value
    return None


def all_labels(text: str, patterns: Tuple[LabeledPattern, ...]) -> Tuple[str, ...]:
    """Values of every labeled pattern found in `text`, in pattern order."""
    return tuple(labeled.value for labeled in patterns if labeled.pattern.search(text))


# ============================================================================
# CPAP / BiPAP Attributes
# ============================================================================

MASK_TYPE_PATTERNS: Tuple[LabeledPattern, ...] = (
    LabeledPattern("full face", _phrase("full face")),
    LabeledPattern("nasal pillow", re.compile(r"nasal\s+pillows?", FLAGS)),
    LabeledPattern("nasal", re.compile(r"nasal\s+mask", FLAGS)),
)

CPAP_ADD_ON_PATTERNS: Tuple[LabeledPattern, ...] = (
    LabeledPattern("humidifier", _phrase("humidifier")),
    LabeledPattern("heated tubing", re.compile(r"heated\s+tub(?:e|ing)", FLAGS)),
    LabeledPattern("chin strap", _phrase("chin strap")),
)

# Exact clinical phrase; "AHI > 25" deliberately does not match.
AHI_QUALIFIER = "AHI > 20"
AHI_QUALIFIER_PATTERN = _phrase(AHI_QUALIFIER)

PAP_PRESSURE_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*cm\s*H2O", FLAGS)


# ============================================================================
# Oxygen Attributes
# ============================================================================

FLOW_RATE_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*(?:L|LPM|liters?|litres?)\b", FLAGS)

USAGE_TERMS: Tuple[LabeledPattern, ...] = (
    LabeledPattern("sleep", _phrase("sleep")),
    LabeledPattern("exertion", _phrase("exertion")),
)

OXYGEN_DELIVERY_PATTERNS: Tuple[LabeledPattern, ...] = (
    LabeledPattern("nasal cannula", _phrase("cannula")),
    LabeledPattern("oxygen mask", _word("mask")),
)


# ============================================================================
# Other Device Specifications
# ============================================================================

NEBULIZER_MEDICATION_PATTERNS: Tuple[LabeledPattern, ...] = (
    LabeledPattern("albuterol", _phrase("albuterol")),
    LabeledPattern("ipratropium", _phrase("ipratropium")),
    LabeledPattern("budesonide", _phrase("budesonide")),
)

TIMES_PER_DAY_PATTERN = re.compile(r"(\d+)\s*(?:x|times?)\s*(?:per|a|/)\s*day", FLAGS)
DAILY_PATTERN = _word("daily")

WHEELCHAIR_TYPE_PATTERNS: Tuple[LabeledPattern, ...] = (
    LabeledPattern("manual", _word("manual")),
    LabeledPattern("electric", re.compile(r"\b(?:electric|power(?:ed)?)\b", FLAGS)),
)
TRANSPORT_PATTERN = _word("transport")

WALKER_TYPE_PATTERNS: Tuple[LabeledPattern, ...] = (
    LabeledPattern("wheeled", re.compile(r"\b(?:wheeled|rollator)\b", FLAGS)),
    LabeledPattern("standard", _word("standard")),
)

HOSPITAL_BED_TYPE_PATTERN = re.compile(r"\b(?:electric|adjustable|semi-electric)\b", FLAGS)
MATTRESS_PATTERN = _word("mattress")

HOSPITAL_BED_ADD_ON_PATTERNS: Tuple[LabeledPattern, ...] = (
    LabeledPattern("side rails", re.compile(r"side\s*rails?", FLAGS)),
    LabeledPattern("trapeze bar", _word("trapeze")),
    LabeledPattern("pressure relief", re.compile(r"pressure\s+(?:relief|relieving)", FLAGS)),
)

HOSPITAL_BED_QUALIFIER_PATTERNS: Tuple[LabeledPattern, ...] = (
    LabeledPattern("pressure sore risk", re.compile(r"pressure\s+(?:sore|ulcer|injury)", FLAGS)),
    LabeledPattern("fall risk", _phrase("fall risk")),
)

GLUCOSE_QUALIFIER_PATTERNS: Tuple[LabeledPattern, ...] = (
    LabeledPattern("insulin dependent", re.compile(r"insulin[\s-]+dependent|on\s+insulin", FLAGS)),
)

TENS_BODY_SITE_PATTERNS: Tuple[LabeledPattern, ...] = (
    LabeledPattern("lower back", re.compile(r"lower\s+back|lumbar", FLAGS)),
    LabeledPattern("knee", _word("knee")),
    LabeledPattern("neck", re.compile(r"\bneck\b|cervical", FLAGS)),
)


# ============================================================================
# Generic Fields
# ============================================================================

# Horizontal whitespace only after the label so an empty label never
# captures the following line.
PATIENT_NAME_PATTERN = re.compile(r"Patient\s*Name:[ \t]*(\S.*)", FLAGS)
DOB_PATTERN = re.compile(r"(?:DOB|Date\s+of\s+Birth):[ \t]*(\S.*)", FLAGS)
DIAGNOSIS_PATTERN = re.compile(r"Diagnosis:[ \t]*(\S.*)", FLAGS)

PROVIDER_PATTERNS: Tuple[Pattern, ...] = (
    re.compile(r"Ordering\s+Physician:[ \t]*(\S.*?)[ \t]*$", FLAGS | re.MULTILINE),
    re.compile(r"Ordered\s+by[ \t]+((?:Dr(?:\.[ \t]*|[ \t]+))?[^.\r\n]+)", FLAGS),
    re.compile(r"\b(Dr(?:\.[ \t]*|[ \t]+)[A-Z][\w'-]*(?:[ \t]+[A-Z][\w'-]*)?)"),
    re.compile(r"Provider:[ \t]*(\S.*?)[ \t]*$", FLAGS | re.MULTILINE),
)

DOCTOR_PREFIX_PATTERN = re.compile(r"^dr(?:\.\s*|\s+|$)", FLAGS)
TRAILING_PUNCTUATION = " \t\r.,;:"


def normalize_provider(raw: Optional[str]) -> str:
    """Trim trailing punctuation and ensure exactly one leading 'Dr. '."""
    if not raw:
        return UNKNOWN_PROVIDER
    name = raw.strip().rstrip(TRAILING_PUNCTUATION).strip()
    name = DOCTOR_PREFIX_PATTERN.sub("", name).strip()
    if not name:
        return UNKNOWN_PROVIDER
    return f"Dr. {name}"


def match_provider(text: str) -> str:
    """Ordering provider from the first provider pattern that matches."""
    for pattern in PROVIDER_PATTERNS:
        match = pattern.search(text)
        if match:
            provider = normalize_provider(match.group(1))
            if provider != UNKNOWN_PROVIDER:
                return provider
    return UNKNOWN_PROVIDER


def match_labeled_line(text: str, pattern: Pattern) -> Optional[str]:
    """Value following a 'Label:' on a single line, stripped, or None."""
    match = pattern.search(text)
    if not match:
        return None
    value = match.group(1).strip()
    return value or None

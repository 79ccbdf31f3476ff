"""
Deterministic Extractor - pattern-based DME order extraction.

Applies the pattern library to note text. No network, no randomness, no
clock: the same text always yields the same DeviceOrder. This is the
terminal fallback for every other strategy, so `extract` never raises.
"""
import logging
from typing import Any, Callable, Dict, Optional

from dme_orders.extraction import patterns as p
from dme_orders.extraction.models import DeviceOrder

logger = logging.getLogger(__name__)

OrderBuilder = Callable[[str, DeviceOrder], DeviceOrder]


# ============================================================================
# Device-specific builders (pure: text + order in, new order out)
# ============================================================================

def _with_specs(order: DeviceOrder, specs: Dict[str, Any]) -> DeviceOrder:
    if not specs:
        return order
    merged = dict(order.specifications or {})
    merged.update(specs)
    return order.model_copy(update={"specifications": merged})


def _times_per_day(text: str) -> Optional[str]:
    match = p.TIMES_PER_DAY_PATTERN.search(text)
    if match:
        return f"{match.group(1)} times per day"
    if p.DAILY_PATTERN.search(text):
        return "daily"
    return None


def apply_pap_details(text: str, order: DeviceOrder) -> DeviceOrder:
    """Mask type, add-ons, AHI qualifier and pressure for CPAP/BiPAP."""
    update: Dict[str, Any] = {}

    mask_type = p.first_label(text, p.MASK_TYPE_PATTERNS)
    if mask_type:
        update["mask_type"] = mask_type

    add_ons = p.all_labels(text, p.CPAP_ADD_ON_PATTERNS)
    if add_ons:
        update["add_ons"] = add_ons

    if p.AHI_QUALIFIER_PATTERN.search(text):
        update["qualifier"] = p.AHI_QUALIFIER

    order = order.model_copy(update=update) if update else order

    pressure = p.PAP_PRESSURE_PATTERN.search(text)
    if pressure:
        order = _with_specs(order, {"pressure": f"{pressure.group(1)} cmH2O"})
    return order


def apply_oxygen_details(text: str, order: DeviceOrder) -> DeviceOrder:
    """Flow rate as '<n> L' and usage from sleep/exertion cues."""
    update: Dict[str, Any] = {}

    flow = p.FLOW_RATE_PATTERN.search(text)
    if flow:
        update["liters"] = f"{flow.group(1)} L"

    usage = p.all_labels(text, p.USAGE_TERMS)
    if usage:
        update["usage"] = " and ".join(usage)

    order = order.model_copy(update=update) if update else order

    delivery = p.first_label(text, p.OXYGEN_DELIVERY_PATTERNS)
    if delivery:
        order = _with_specs(order, {"delivery_method": delivery})
    return order


def apply_nebulizer_details(text: str, order: DeviceOrder) -> DeviceOrder:
    specs: Dict[str, Any] = {}
    medication = p.first_label(text, p.NEBULIZER_MEDICATION_PATTERNS)
    if medication:
        specs["medication"] = medication
    frequency = _times_per_day(text)
    if frequency:
        specs["frequency"] = frequency
    return _with_specs(order, specs)


def apply_wheelchair_details(text: str, order: DeviceOrder) -> DeviceOrder:
    specs: Dict[str, Any] = {}
    chair_type = p.first_label(text, p.WHEELCHAIR_TYPE_PATTERNS)
    if chair_type:
        specs["type"] = chair_type
    if p.TRANSPORT_PATTERN.search(text):
        specs["category"] = "transport"
    return _with_specs(order, specs)


def apply_walker_details(text: str, order: DeviceOrder) -> DeviceOrder:
    walker_type = p.first_label(text, p.WALKER_TYPE_PATTERNS)
    return _with_specs(order, {"type": walker_type} if walker_type else {})


def apply_hospital_bed_details(text: str, order: DeviceOrder) -> DeviceOrder:
    update: Dict[str, Any] = {}
    add_ons = p.all_labels(text, p.HOSPITAL_BED_ADD_ON_PATTERNS)
    if add_ons:
        update["add_ons"] = add_ons
    qualifier = p.first_label(text, p.HOSPITAL_BED_QUALIFIER_PATTERNS)
    if qualifier:
        update["qualifier"] = qualifier
    order = order.model_copy(update=update) if update else order

    specs: Dict[str, Any] = {}
    if p.HOSPITAL_BED_TYPE_PATTERN.search(text):
        specs["type"] = "electric adjustable"
    if p.MATTRESS_PATTERN.search(text):
        specs["includes_mattress"] = True
    return _with_specs(order, specs)


def apply_glucose_monitor_details(text: str, order: DeviceOrder) -> DeviceOrder:
    qualifier = p.first_label(text, p.GLUCOSE_QUALIFIER_PATTERNS)
    if qualifier:
        order = order.model_copy(update={"qualifier": qualifier})
    frequency = _times_per_day(text)
    return _with_specs(order, {"testing_frequency": frequency} if frequency else {})


def apply_tens_details(text: str, order: DeviceOrder) -> DeviceOrder:
    site = p.first_label(text, p.TENS_BODY_SITE_PATTERNS)
    return _with_specs(order, {"body_site": site} if site else {})


DEVICE_BUILDERS: Dict[str, OrderBuilder] = {
    "CPAP": apply_pap_details,
    "BiPAP": apply_pap_details,
    "Oxygen Tank": apply_oxygen_details,
    "Nebulizer": apply_nebulizer_details,
    "Wheelchair": apply_wheelchair_details,
    "Walker": apply_walker_details,
    "Hospital Bed": apply_hospital_bed_details,
    "Blood Glucose Monitor": apply_glucose_monitor_details,
    "TENS Unit": apply_tens_details,
}


# ============================================================================
# Extractor
# ============================================================================

class DeterministicExtractor:
    """
    Pattern-based extractor. Pure function of its input.

    Pipeline:
    1. Classify the device (first category in priority order)
    2. Extract generic fields (patient, DOB, diagnosis, provider)
    3. Dispatch to the device-specific builder, if any
    """

    name = "deterministic"

    def extract(self, note_text: str) -> DeviceOrder:
        """Extract a DeviceOrder. Unrecognized text yields device 'Unknown'."""
        text = note_text if isinstance(note_text, str) else ""
        try:
            return self._extract(text)
        except Exception as e:
            # Patterns are static and builders pure; reaching here is a bug.
            logger.exception("Deterministic extraction failed: %s", e)
            return DeviceOrder()

    def _extract(self, text: str) -> DeviceOrder:
        order = DeviceOrder(
            device=p.classify_device(text),
            ordering_provider=p.match_provider(text),
            patient_name=p.match_labeled_line(text, p.PATIENT_NAME_PATTERN),
            dob=p.match_labeled_line(text, p.DOB_PATTERN),
            diagnosis=p.match_labeled_line(text, p.DIAGNOSIS_PATTERN),
        )
        builder = DEVICE_BUILDERS.get(order.device)
        return builder(text, order) if builder else order

"""
Helpers for reading JSON out of LLM responses.

Model output is not trusted even when it is valid JSON: responses may be
wrapped in markdown fences, carry prose around the object, or put stray
quotes and trailing commas inside string values.
"""
import json
import re
from typing import Any, Dict, List, Mapping, Optional

from dme_orders.extraction.models import DeviceOrder
from dme_orders.extraction.patterns import normalize_provider

ORDER_STRING_FIELDS = (
    "device",
    "patient_name",
    "dob",
    "diagnosis",
    "ordering_provider",
    "liters",
    "usage",
    "mask_type",
    "qualifier",
)

# Alternative keys seen in model output, tried after the canonical key.
FIELD_ALIASES: Dict[str, tuple] = {
    "device": ("device_type",),
    "dob": ("date_of_birth",),
    "diagnosis": ("diagnosis_or_medical_justification",),
    "ordering_provider": ("provider",),
    "patient_name": ("patient",),
    "add_ons": ("accessories", "additional_features"),
}


def strip_code_fences(response: Optional[str]) -> str:
    """Remove a surrounding ```json ... ``` (or bare ```) fence."""
    if not response:
        return ""
    cleaned = response.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned[3:]
        if cleaned[:4].lower() == "json":
            cleaned = cleaned[4:]
        end = cleaned.rfind("```")
        if end != -1:
            cleaned = cleaned[:end]
    elif cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_json_object(response: Optional[str]) -> Dict[str, Any]:
    """
    Parse the JSON object in an LLM response.

    Raises:
        json.JSONDecodeError: If no JSON object can be decoded
        ValueError: If the decoded value is not an object
    """
    cleaned = strip_code_fences(response)

    # Look for { ... } pattern when prose surrounds the object
    if not cleaned.startswith("{"):
        match = re.search(r"\{[\s\S]*\}", cleaned)
        if match:
            cleaned = match.group(0)

    data = json.loads(cleaned)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def clean_string(value: Any) -> Optional[str]:
    """Trim whitespace, stray quotes and trailing commas; non-strings and blanks become None."""
    if not isinstance(value, str):
        return None
    cleaned = value.strip().rstrip(",").strip().strip('"').strip("'").strip()
    return cleaned or None


def clean_string_list(value: Any) -> List[str]:
    """Keep the usable string items of a JSON array (a bare string counts as one item)."""
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    items = []
    for item in value:
        cleaned = clean_string(item)
        if cleaned:
            items.append(cleaned)
    return items


def _lookup(data: Mapping[str, Any], key: str) -> Any:
    if key in data:
        return data[key]
    for alias in FIELD_ALIASES.get(key, ()):
        if alias in data:
            return data[alias]
    return None


def has_order_fields(data: Any) -> bool:
    """True when a decoded object carries at least one device-order key."""
    if not isinstance(data, Mapping):
        return False
    keys = set(ORDER_STRING_FIELDS) | {"add_ons", "device_order", "medical_specifications"}
    for aliases in FIELD_ALIASES.values():
        keys.update(aliases)
    return any(key in data for key in keys)


def order_from_json(data: Mapping[str, Any]) -> DeviceOrder:
    """
    Build a DeviceOrder from a decoded JSON object.

    Accepts the flat layout ({"device": ...}), the wrapped layout
    ({"device_order": {...}}) and a nested "medical_specifications" block.
    Fields that are missing, empty or of a non-string JSON kind are absent.
    """
    wrapped = data.get("device_order")
    if isinstance(wrapped, str):
        try:
            wrapped = parse_json_object(wrapped)
        except ValueError:
            wrapped = None
    if isinstance(wrapped, Mapping):
        data = wrapped

    nested = data.get("medical_specifications")
    nested = nested if isinstance(nested, Mapping) else {}

    fields: Dict[str, Any] = {}
    for key in ORDER_STRING_FIELDS:
        value = clean_string(_lookup(data, key))
        if value is None and nested:
            value = clean_string(_lookup(nested, key))
        if value is not None:
            fields[key] = value

    add_ons = clean_string_list(_lookup(data, "add_ons"))
    if not add_ons and nested:
        add_ons = clean_string_list(_lookup(nested, "add_ons"))
    if add_ons:
        fields["add_ons"] = add_ons

    if "ordering_provider" in fields:
        fields["ordering_provider"] = normalize_provider(fields["ordering_provider"])

    specifications = data.get("specifications")
    if isinstance(specifications, Mapping) and specifications:
        fields["specifications"] = dict(specifications)

    return DeviceOrder(**fields)

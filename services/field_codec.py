"""
Field Codec
Maps Bundle models to and from the flat ``[{key, value}]`` field list a
Shopify metaobject stores.

Composite attributes are written as versioned JSON blobs::

    {"schemaVersion": 2, "data": [...]}

Records written before versioning hold the bare JSON value (treated as
schema version 1). Decoding never raises: malformed stored data degrades to
defaults so a single corrupt record cannot break a listing.
"""
from __future__ import annotations

import copy
import json
import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Union

from schemas.bundle_schemas import (
    BUNDLE_STATUSES,
    DISCOUNT_TYPES,
    LAYOUT_TYPES,
    SELECTION_TYPES,
    Bundle,
    BundleFields,
    BundleProduct,
    BundleStep,
)

logger = logging.getLogger(__name__)

BLOB_SCHEMA_VERSION = 2

DEFAULT_MOBILE_COLUMNS = 2
DEFAULT_DESKTOP_COLUMNS = 4
MIN_COLUMNS = 1
MAX_MOBILE_COLUMNS = 4
MAX_DESKTOP_COLUMNS = 6

# (attribute, field key, kind)
BUNDLE_FIELD_SPECS = (
    ("title", "title", "text"),
    ("status", "status", "text"),
    ("discount_type", "discount_type", "text"),
    ("discount_value", "discount_value", "number"),
    ("layout_type", "layout_type", "text"),
    ("mobile_columns", "mobile_columns", "number"),
    ("desktop_columns", "desktop_columns", "number"),
    ("steps", "steps", "blob"),
    ("layout_settings", "layout_settings", "blob"),
    ("combination_images", "combination_images", "blob"),
)

_DEFAULT_LAYOUT_SETTINGS: Dict[str, Dict[str, Any]] = {
    "grid": {
        "gridSettings": {
            "productsPerRow": {"mobile": 2, "tablet": 3, "desktop": 4},
            "enableQuickAdd": True,
            "imagePosition": "top",
        }
    },
    "slider": {
        "sliderSettings": {
            "slidesToShow": {"mobile": 1, "tablet": 2, "desktop": 4},
            "slidesToScroll": 1,
            "infiniteLoop": True,
            "autoplay": False,
            "autoplaySpeed": 5000,
            "enableThumbnails": False,
        }
    },
    "modal": {
        "modalSettings": {
            "triggerType": "button",
            "modalBehavior": "stayOpen",
            "blockPageScroll": True,
            "modalSize": "fixed",
        }
    },
    "selection": {
        "selectionSettings": {
            "selectionMode": "click",
            "emptySlotBehavior": "show",
            "progressTracking": "counter",
            "selectionLimit": 10,
        }
    },
}


def default_layout_settings(layout_type: str) -> Dict[str, Any]:
    """Fresh copy of the default settings record for ``layout_type``."""
    return copy.deepcopy(_DEFAULT_LAYOUT_SETTINGS.get(layout_type, _DEFAULT_LAYOUT_SETTINGS["grid"]))


# ---------------------------------------------------------------------------
# Field-level helpers (shared with the combination store)
# ---------------------------------------------------------------------------

def parse_field_value(value: Optional[str]) -> Any:
    """Structured-decode a stored value, falling back to the raw string."""
    if value is None:
        return None
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return value


def fields_to_dict(fields: Optional[Iterable[Dict[str, Any]]]) -> Dict[str, Dict[str, Any]]:
    """Index a metaobject's fields by key, keeping both raw and parsed values."""
    indexed: Dict[str, Dict[str, Any]] = {}
    for field in fields or []:
        if not isinstance(field, dict) or "key" not in field:
            continue
        raw = field.get("value")
        indexed[field["key"]] = {"raw": raw, "parsed": parse_field_value(raw)}
    return indexed


def encode_blob(data: Any) -> str:
    return json.dumps({"schemaVersion": BLOB_SCHEMA_VERSION, "data": data}, separators=(",", ":"))


def decode_blob(parsed: Any) -> Any:
    """Unwrap a versioned blob; bare values are schema version 1."""
    if isinstance(parsed, dict) and "schemaVersion" in parsed and "data" in parsed:
        return parsed["data"]
    return parsed


def format_number(value: Union[int, float]) -> str:
    number = float(value)
    if number.is_integer():
        return str(int(number))
    return repr(number)


def _text(entry: Optional[Dict[str, Any]]) -> Optional[str]:
    if entry is None:
        return None
    parsed = entry["parsed"]
    if isinstance(parsed, str):
        return parsed
    raw = entry["raw"]
    return None if raw is None else str(raw)


def _to_float(value: Any, default: float) -> float:
    if isinstance(value, bool) or value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def _to_int(value: Any, default: int) -> int:
    number = _to_float(value, float(default))
    return int(number)


def _to_optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return int(number)


def _to_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no"):
            return False
    if isinstance(value, (int, float)):
        return bool(value)
    return default


def _choice(value: Optional[str], allowed: Iterable[str], default: str) -> str:
    return value if value in allowed else default


# ---------------------------------------------------------------------------
# Encode
# ---------------------------------------------------------------------------

def encode_bundle_fields(bundle: Union[Bundle, BundleFields]) -> List[Dict[str, str]]:
    """Emit one field per populated attribute; ``None`` attributes emit nothing."""
    fields: List[Dict[str, str]] = []
    for attr, key, kind in BUNDLE_FIELD_SPECS:
        value = getattr(bundle, attr, None)
        if value is None:
            continue
        if kind == "text":
            encoded = str(value)
        elif kind == "number":
            encoded = format_number(value)
        elif attr == "steps":
            encoded = encode_blob([step.model_dump(by_alias=True, exclude_none=True) for step in value])
        else:
            encoded = encode_blob(value)
        fields.append({"key": key, "value": encoded})
    return fields


# ---------------------------------------------------------------------------
# Decode
# ---------------------------------------------------------------------------

def _decode_product(item: Any, index: int) -> Optional[BundleProduct]:
    if isinstance(item, str) and item:
        return BundleProduct(id=item, position=index + 1)
    if not isinstance(item, dict) or not item.get("id"):
        return None
    return BundleProduct(
        id=str(item["id"]),
        position=_to_int(item.get("position"), index + 1),
    )


def _decode_step(item: Any, index: int) -> Optional[BundleStep]:
    if not isinstance(item, dict):
        return None
    products_raw = item.get("products")
    products: List[BundleProduct] = []
    if isinstance(products_raw, list):
        for product_index, product_item in enumerate(products_raw):
            product = _decode_product(product_item, product_index)
            if product is not None:
                products.append(product)

    description = item.get("description")
    return BundleStep(
        id=str(item.get("id") or f"step_legacy_{index + 1}"),
        title=str(item.get("title") or ""),
        description=None if description is None else str(description),
        position=_to_int(item.get("position"), index + 1),
        min_selections=max(0, _to_int(item.get("minSelections"), 0)),
        max_selections=_to_optional_int(item.get("maxSelections")),
        required=_to_bool(item.get("required"), True),
        # Steps stored before variant selection existed have no selectionType.
        selection_type=_choice(item.get("selectionType"), SELECTION_TYPES, "product"),
        products=products,
    )


def decode_steps(parsed: Any) -> List[BundleStep]:
    data = decode_blob(parsed)
    if not isinstance(data, list):
        return []
    steps: List[BundleStep] = []
    for index, item in enumerate(data):
        step = _decode_step(item, index)
        if step is not None:
            steps.append(step)
    return steps


def decode_bundle(node: Dict[str, Any]) -> Bundle:
    """Build a Bundle from a metaobject node ``{id, handle, fields}``."""
    fields = fields_to_dict(node.get("fields"))

    def parsed(key: str) -> Any:
        entry = fields.get(key)
        return None if entry is None else entry["parsed"]

    layout_type = _choice(_text(fields.get("layout_type")), LAYOUT_TYPES, "grid")

    mobile_columns = _to_int(parsed("mobile_columns"), DEFAULT_MOBILE_COLUMNS)
    if not MIN_COLUMNS <= mobile_columns <= MAX_MOBILE_COLUMNS:
        mobile_columns = DEFAULT_MOBILE_COLUMNS
    desktop_columns = _to_int(parsed("desktop_columns"), DEFAULT_DESKTOP_COLUMNS)
    if not MIN_COLUMNS <= desktop_columns <= MAX_DESKTOP_COLUMNS:
        desktop_columns = DEFAULT_DESKTOP_COLUMNS

    layout_settings = decode_blob(parsed("layout_settings"))
    if not isinstance(layout_settings, dict) or not layout_settings:
        layout_settings = default_layout_settings(layout_type)

    combination_images = decode_blob(parsed("combination_images"))
    if isinstance(combination_images, list):
        combination_images = [str(item) for item in combination_images if item]
    elif isinstance(combination_images, str) and combination_images:
        combination_images = [combination_images]
    else:
        combination_images = []

    return Bundle(
        id=str(node.get("id") or ""),
        handle=str(node.get("handle") or ""),
        title=_text(fields.get("title")) or "",
        status=_choice(_text(fields.get("status")), BUNDLE_STATUSES, "draft"),
        discount_type=_choice(_text(fields.get("discount_type")), DISCOUNT_TYPES, "percentage"),
        discount_value=_to_float(parsed("discount_value"), 0.0),
        layout_type=layout_type,
        mobile_columns=mobile_columns,
        desktop_columns=desktop_columns,
        layout_settings=layout_settings,
        steps=decode_steps(parsed("steps")),
        combination_images=combination_images,
    )

"""
Bundle Schemas
==============

Canonical data structures for merchant-defined bundles, their steps, the
combination images that decorate them, and the denormalized snapshot read by
the checkout-time cart function.

WIRE FORMAT:
------------
All models serialize with camelCase aliases (``minSelections``,
``discountValue``...) because both the admin UI and the cart function speak
camelCase; Python code uses snake_case attribute names.

LAYOUT TYPES:
-------------
- grid:      products laid out in rows (``gridSettings``)
- slider:    carousel (``sliderSettings``)
- modal:     picker opened in a modal (``modalSettings``)
- selection: build-your-box slots (``selectionSettings``)
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, TypedDict

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


BundleStatus = Literal["draft", "active", "inactive"]
DiscountType = Literal["percentage", "fixed", "total"]
LayoutType = Literal["grid", "slider", "modal", "selection"]
SelectionType = Literal["product", "variant"]

BUNDLE_STATUSES = ("draft", "active", "inactive")
DISCOUNT_TYPES = ("percentage", "fixed", "total")
LAYOUT_TYPES = ("grid", "slider", "modal", "selection")
SELECTION_TYPES = ("product", "variant")

LAYOUT_SETTINGS_KEYS: Dict[str, str] = {
    "grid": "gridSettings",
    "slider": "sliderSettings",
    "modal": "modalSettings",
    "selection": "selectionSettings",
}


class ErrorCode(str, Enum):
    BUNDLE_NOT_FOUND = "BUNDLE_NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    DUPLICATE_BUNDLE = "DUPLICATE_BUNDLE"
    LIMIT_EXCEEDED = "LIMIT_EXCEEDED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"


class ChangeKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


# =============================================================================
# DOMAIN MODELS
# =============================================================================

class BundleProduct(CamelModel):
    """Reference to a catalog product; title/image/price are fetched live."""

    id: str
    position: int = 1


class BundleStep(CamelModel):
    id: str = ""
    title: str = ""
    description: Optional[str] = None
    position: int = 1
    min_selections: int = 0
    max_selections: Optional[int] = None  # None = unlimited
    required: bool = True
    selection_type: SelectionType = "product"
    products: List[BundleProduct] = Field(default_factory=list)


class Bundle(CamelModel):
    id: str
    handle: str = ""
    title: str = ""
    status: BundleStatus = "draft"
    discount_type: DiscountType = "percentage"
    discount_value: float = 0.0
    layout_type: LayoutType = "grid"
    mobile_columns: int = 2
    desktop_columns: int = 4
    layout_settings: Dict[str, Any] = Field(default_factory=dict)
    steps: List[BundleStep] = Field(default_factory=list)
    combination_images: List[str] = Field(default_factory=list)


class BundleFields(CamelModel):
    """Partial bundle: ``None`` means "leave the stored field untouched"."""

    title: Optional[str] = None
    status: Optional[BundleStatus] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = None
    layout_type: Optional[LayoutType] = None
    mobile_columns: Optional[int] = None
    desktop_columns: Optional[int] = None
    layout_settings: Optional[Dict[str, Any]] = None
    steps: Optional[List[BundleStep]] = None
    combination_images: Optional[List[str]] = None

    @classmethod
    def from_bundle(cls, bundle: Bundle) -> "BundleFields":
        data = bundle.model_dump(exclude={"id", "handle"})
        return cls.model_validate(data)


class BundlePage(CamelModel):
    items: List[Bundle]
    total: int
    has_next: bool


class DeleteResult(CamelModel):
    success: bool
    errors: List[str] = Field(default_factory=list)


class Combination(CamelModel):
    id: str
    products: List[str] = Field(default_factory=list)
    image_id: str = ""
    image_url: str = ""
    title: Optional[str] = None


# =============================================================================
# BULK + SYNC RESULTS
# =============================================================================

class BulkItemResult(CamelModel):
    id: str
    success: bool
    error: Optional[str] = None


class BulkSummary(CamelModel):
    total: int
    succeeded: int
    failed: int


class BulkOperationResult(CamelModel):
    success: bool
    per_item: List[BulkItemResult]
    summary: BulkSummary


class SyncResult(CamelModel):
    success: bool
    error: Optional[str] = None
    bundle_count: int = 0


# =============================================================================
# CART TRANSFORM SNAPSHOT (consumed by the checkout-time function)
# =============================================================================

class SnapshotProductDict(TypedDict):
    id: str


class SnapshotStepDict(TypedDict):
    id: str
    products: List[SnapshotProductDict]


class SnapshotBundleDict(TypedDict):
    id: str
    title: str
    discountType: str
    discountValue: float
    steps: List[SnapshotStepDict]


class CartTransformSnapshotDict(TypedDict):
    bundles: List[SnapshotBundleDict]


# =============================================================================
# PRICING
# =============================================================================

class SelectedItem(CamelModel):
    product_id: str
    variant_id: Optional[str] = None


class StepSelection(CamelModel):
    step_id: str
    selections: List[SelectedItem] = Field(default_factory=list)


class PriceSavings(CamelModel):
    amount: float
    percentage: float


class PriceBreakdown(CamelModel):
    original_price: float
    discount_amount: float
    final_price: float
    savings: PriceSavings


# =============================================================================
# LAYOUT SETTINGS VALIDATION
# =============================================================================

def validate_layout_settings(layout_settings: Optional[Dict[str, Any]], layout_type: str) -> List[str]:
    """Return human-readable problems with ``layout_settings`` for ``layout_type``."""
    errors: List[str] = []
    if not layout_settings:
        return errors
    if not isinstance(layout_settings, dict):
        return ["Layout settings must be an object"]

    for other_type, setting_key in LAYOUT_SETTINGS_KEYS.items():
        if other_type != layout_type and layout_settings.get(setting_key):
            errors.append(f"{setting_key} is not allowed for layout type '{layout_type}'")

    settings = layout_settings.get(LAYOUT_SETTINGS_KEYS.get(layout_type, ""))
    if not isinstance(settings, dict):
        return errors

    if layout_type == "grid":
        per_row = settings.get("productsPerRow")
        if per_row and not isinstance(per_row, dict):
            errors.append("Grid products per row must be an object")
        elif per_row:
            if per_row.get("mobile") not in (1, 2):
                errors.append("Grid mobile products per row must be 1 or 2")
            if per_row.get("tablet") not in (2, 3, 4):
                errors.append("Grid tablet products per row must be 2, 3, or 4")
            if per_row.get("desktop") not in (3, 4, 5, 6):
                errors.append("Grid desktop products per row must be 3, 4, 5, or 6")
        if settings.get("imagePosition") not in ("top", "left"):
            errors.append('Grid image position must be "top" or "left"')

    elif layout_type == "slider":
        slides = settings.get("slidesToShow")
        if slides and not isinstance(slides, dict):
            errors.append("Slider slides to show must be an object")
        elif slides:
            if slides.get("mobile") not in (1, 2):
                errors.append("Slider mobile slides to show must be 1 or 2")
            if slides.get("tablet") not in (2, 3):
                errors.append("Slider tablet slides to show must be 2 or 3")
            if slides.get("desktop") not in (3, 4, 5):
                errors.append("Slider desktop slides to show must be 3, 4, or 5")
        to_scroll = settings.get("slidesToScroll")
        if not _is_number(to_scroll) or to_scroll < 1:
            errors.append("Slider slides to scroll must be a positive number")
        speed = settings.get("autoplaySpeed")
        if not _is_number(speed) or speed < 1000:
            errors.append("Slider autoplay speed must be at least 1000 milliseconds")

    elif layout_type == "modal":
        if settings.get("triggerType") not in ("button", "auto", "exit-intent"):
            errors.append('Modal trigger type must be "button", "auto", or "exit-intent"')
        if settings.get("modalBehavior") not in ("closeOnAdd", "stayOpen", "redirectToCart"):
            errors.append('Modal behavior must be "closeOnAdd", "stayOpen", or "redirectToCart"')
        if settings.get("modalSize") not in ("productCount", "fixed"):
            errors.append('Modal size must be "productCount" or "fixed"')

    elif layout_type == "selection":
        if settings.get("selectionMode") not in ("click", "drag", "both"):
            errors.append('Selection mode must be "click", "drag", or "both"')
        if settings.get("emptySlotBehavior") not in ("hide", "show", "showGhost"):
            errors.append('Empty slot behavior must be "hide", "show", or "showGhost"')
        if settings.get("progressTracking") not in ("counter", "percentage", "visual"):
            errors.append('Progress tracking must be "counter", "percentage", or "visual"')
        limit = settings.get("selectionLimit")
        if not _is_number(limit) or limit < 1:
            errors.append("Selection limit must be a positive number")

    return errors


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)

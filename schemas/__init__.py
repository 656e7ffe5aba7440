"""
Bundle Schemas Package
Provides the canonical data structures for bundles, combinations and the cart transform snapshot.
"""

from .bundle_schemas import (
    # Enums and literals
    BUNDLE_STATUSES,
    DISCOUNT_TYPES,
    LAYOUT_TYPES,
    LAYOUT_SETTINGS_KEYS,
    SELECTION_TYPES,
    BundleStatus,
    ChangeKind,
    DiscountType,
    ErrorCode,
    LayoutType,
    SelectionType,

    # Domain models
    Bundle,
    BundleFields,
    BundlePage,
    BundleProduct,
    BundleStep,
    Combination,
    DeleteResult,

    # Results
    BulkItemResult,
    BulkOperationResult,
    BulkSummary,
    SyncResult,

    # Snapshot
    SnapshotProductDict,
    CartTransformSnapshotDict,
    SnapshotBundleDict,
    SnapshotStepDict,

    # Pricing
    SelectedItem,
    StepSelection,
    PriceBreakdown,
    PriceSavings,

    # Validation
    validate_layout_settings,
)

__all__ = [
    "BUNDLE_STATUSES",
    "DISCOUNT_TYPES",
    "LAYOUT_TYPES",
    "LAYOUT_SETTINGS_KEYS",
    "SELECTION_TYPES",
    "BundleStatus",
    "ChangeKind",
    "DiscountType",
    "ErrorCode",
    "LayoutType",
    "SelectionType",
    "Bundle",
    "BundleFields",
    "BundlePage",
    "BundleProduct",
    "BundleStep",
    "Combination",
    "DeleteResult",
    "BulkItemResult",
    "BulkOperationResult",
    "BulkSummary",
    "SyncResult",
    "CartTransformSnapshotDict",
    "SnapshotBundleDict",
    "SnapshotStepDict",
    "SnapshotProductDict",
    "PriceBreakdown",
    "PriceSavings",
    "SelectedItem",
    "StepSelection",
    "validate_layout_settings",
]

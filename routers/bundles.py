"""
Bundles Router
Bundle CRUD and duplication. Every mutation resyncs the cart transform
snapshot and reports the outcome in the ``sync`` field.
"""
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any
import logging

from schemas.bundle_schemas import (
    BundleFields,
    BundleStatus,
    BundleStep,
    ChangeKind,
    DiscountType,
    LayoutType,
    SelectionType,
    validate_layout_settings,
)
from services.bundle_store import BundleStore
from services.cart_transform_sync import CartTransformSynchronizer
from services.errors import (
    BundleNotFoundError,
    InternalServiceError,
    LimitExceededError,
    mentions_not_found,
)
from routers.deps import ShopContext, get_bundle_store, get_shop_context, get_synchronizer, to_metaobject_gid
from settings import DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT

logger = logging.getLogger(__name__)
router = APIRouter()


class StepProductIn(BaseModel):
    id: str = Field(min_length=1)
    position: Optional[int] = None


class StepIn(BaseModel):
    id: Optional[str] = None
    title: str = Field(min_length=1)
    description: Optional[str] = None
    position: Optional[int] = None
    minSelections: int = Field(default=0, ge=0)
    maxSelections: Optional[int] = Field(default=None, ge=0)
    required: bool = True
    selectionType: SelectionType = "product"
    products: List[StepProductIn] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_selection_bounds(self):
        if self.maxSelections is not None and self.maxSelections < self.minSelections:
            raise ValueError(f"Step '{self.title}': max selections must be >= min selections")
        return self


def steps_to_models(steps: List[StepIn]) -> List[BundleStep]:
    """Fill in 1-based positions the client left out."""
    models: List[BundleStep] = []
    for index, step in enumerate(steps, start=1):
        data = step.model_dump()
        data["id"] = data["id"] or ""
        data["position"] = data["position"] or index
        data["products"] = [
            {"id": product["id"], "position": product["position"] or product_index}
            for product_index, product in enumerate(data["products"], start=1)
        ]
        models.append(BundleStep.model_validate(data))
    return models


class _BundleBody(BaseModel):
    @field_validator("title", check_fields=False)
    @classmethod
    def _strip_title(cls, value):
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("Title is required and must be a non-empty string")
        return value

    @model_validator(mode="after")
    def _check_discount_and_layout(self):
        if self.discountType == "percentage" and self.discountValue is not None and self.discountValue > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        if self.layoutSettings:
            errors = validate_layout_settings(self.layoutSettings, self.layoutType or "grid")
            if errors:
                raise ValueError("; ".join(errors))
        return self


class CreateBundleRequest(_BundleBody):
    title: str
    status: BundleStatus = "draft"
    discountType: DiscountType = "percentage"
    discountValue: float = Field(default=0, ge=0)
    layoutType: LayoutType = "grid"
    mobileColumns: int = Field(default=2, ge=1, le=4)
    desktopColumns: int = Field(default=4, ge=1, le=6)
    layoutSettings: Optional[Dict[str, Any]] = None
    steps: List[StepIn] = Field(min_length=1)
    combinationImages: Optional[List[str]] = None

    def to_fields(self) -> BundleFields:
        data = self.model_dump(exclude={"steps"}, exclude_none=True)
        fields = BundleFields.model_validate(data)
        return fields.model_copy(update={"steps": steps_to_models(self.steps)})


class UpdateBundleRequest(_BundleBody):
    title: Optional[str] = None
    status: Optional[BundleStatus] = None
    discountType: Optional[DiscountType] = None
    discountValue: Optional[float] = Field(default=None, ge=0)
    layoutType: Optional[LayoutType] = None
    mobileColumns: Optional[int] = Field(default=None, ge=1, le=4)
    desktopColumns: Optional[int] = Field(default=None, ge=1, le=6)
    layoutSettings: Optional[Dict[str, Any]] = None
    steps: Optional[List[StepIn]] = Field(default=None, min_length=1)
    combinationImages: Optional[List[str]] = None

    def to_fields(self) -> BundleFields:
        data = self.model_dump(exclude={"steps"}, exclude_none=True)
        fields = BundleFields.model_validate(data)
        if self.steps is not None:
            fields = fields.model_copy(update={"steps": steps_to_models(self.steps)})
        return fields


class DuplicateBundleRequest(BaseModel):
    title: str
    status: BundleStatus = "draft"

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title is required and must be a non-empty string")
        return value


def bundle_json(bundle) -> Dict[str, Any]:
    return bundle.model_dump(by_alias=True)


@router.get("/bundles")
async def list_bundles(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1),
    status: Optional[str] = Query(None, pattern="^(active|inactive|draft|all)$"),
    store: BundleStore = Depends(get_bundle_store),
):
    """List bundles with in-memory status filtering and pagination"""
    if limit > MAX_LIST_LIMIT:
        raise LimitExceededError(f"Limit cannot exceed {MAX_LIST_LIMIT}")

    result = await store.list(page=page, limit=limit, status=status)
    return {
        "bundles": [bundle_json(bundle) for bundle in result.items],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": result.total,
            "hasNext": result.has_next,
        },
    }


@router.get("/bundles/{bundle_id}")
async def get_bundle(bundle_id: str, store: BundleStore = Depends(get_bundle_store)):
    bundle = await store.get(to_metaobject_gid(bundle_id))
    if bundle is None:
        raise BundleNotFoundError("Bundle not found")
    return {"bundle": bundle_json(bundle)}


@router.post("/bundles", status_code=201)
async def create_bundle(
    request: CreateBundleRequest,
    ctx: ShopContext = Depends(get_shop_context),
    store: BundleStore = Depends(get_bundle_store),
    synchronizer: CartTransformSynchronizer = Depends(get_synchronizer),
):
    bundle = await store.create(request.to_fields())
    sync = await synchronizer.on_bundle_changed(ctx.shop, ChangeKind.CREATE, bundle.id)
    return {"bundle": bundle_json(bundle), "sync": sync.model_dump(by_alias=True)}


@router.put("/bundles/{bundle_id}")
async def update_bundle(
    bundle_id: str,
    request: UpdateBundleRequest,
    ctx: ShopContext = Depends(get_shop_context),
    store: BundleStore = Depends(get_bundle_store),
    synchronizer: CartTransformSynchronizer = Depends(get_synchronizer),
):
    bundle = await store.update(to_metaobject_gid(bundle_id), request.to_fields())
    sync = await synchronizer.on_bundle_changed(ctx.shop, ChangeKind.UPDATE, bundle.id)
    return {"bundle": bundle_json(bundle), "sync": sync.model_dump(by_alias=True)}


@router.delete("/bundles/{bundle_id}")
async def delete_bundle(
    bundle_id: str,
    ctx: ShopContext = Depends(get_shop_context),
    store: BundleStore = Depends(get_bundle_store),
    synchronizer: CartTransformSynchronizer = Depends(get_synchronizer),
):
    gid = to_metaobject_gid(bundle_id)
    result = await store.delete(gid)
    if not result.success:
        if mentions_not_found(result.errors):
            raise BundleNotFoundError("Bundle not found", details={"errors": result.errors})
        raise InternalServiceError(", ".join(result.errors) or "Failed to delete bundle", details={"errors": result.errors})

    sync = await synchronizer.on_bundle_changed(ctx.shop, ChangeKind.DELETE, gid)
    return {"success": True, "sync": sync.model_dump(by_alias=True)}


@router.post("/bundles/{bundle_id}/duplicate", status_code=201)
async def duplicate_bundle(
    bundle_id: str,
    request: DuplicateBundleRequest,
    ctx: ShopContext = Depends(get_shop_context),
    store: BundleStore = Depends(get_bundle_store),
    synchronizer: CartTransformSynchronizer = Depends(get_synchronizer),
):
    bundle = await store.duplicate(to_metaobject_gid(bundle_id), request.title, request.status)
    sync = await synchronizer.on_bundle_changed(ctx.shop, ChangeKind.CREATE, bundle.id)
    return {"bundle": bundle_json(bundle), "sync": sync.model_dump(by_alias=True)}

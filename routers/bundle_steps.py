"""
Bundle Steps Router
Add, edit, remove and reorder the steps of one bundle.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from typing import Optional, List
import logging

from schemas.bundle_schemas import BundleStep, ChangeKind, SelectionType
from services.cart_transform_sync import CartTransformSynchronizer
from services.step_manager import StepManager
from routers.bundles import StepIn, StepProductIn
from routers.deps import ShopContext, get_shop_context, get_step_manager, get_synchronizer, to_metaobject_gid

logger = logging.getLogger(__name__)
router = APIRouter()


class UpdateStepRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    minSelections: Optional[int] = Field(default=None, ge=0)
    maxSelections: Optional[int] = Field(default=None, ge=0)
    required: Optional[bool] = None
    selectionType: Optional[SelectionType] = None
    products: Optional[List[StepProductIn]] = None


class StepOrderItem(BaseModel):
    stepId: str
    position: int = Field(ge=1)


class ReorderStepsRequest(BaseModel):
    stepOrder: List[StepOrderItem] = Field(min_length=1)


_STEP_FIELD_NAMES = {
    "minSelections": "min_selections",
    "maxSelections": "max_selections",
    "selectionType": "selection_type",
}


@router.post("/bundles/{bundle_id}/steps", status_code=201)
async def add_step(
    bundle_id: str,
    request: StepIn,
    ctx: ShopContext = Depends(get_shop_context),
    steps: StepManager = Depends(get_step_manager),
    synchronizer: CartTransformSynchronizer = Depends(get_synchronizer),
):
    gid = to_metaobject_gid(bundle_id)
    data = request.model_dump(exclude={"id"}, exclude_none=True)
    data["products"] = [
        {"id": product["id"], "position": product.get("position") or index}
        for index, product in enumerate(data.get("products") or [], start=1)
    ]
    step = await steps.add_step(gid, BundleStep.model_validate(data))
    sync = await synchronizer.on_bundle_changed(ctx.shop, ChangeKind.UPDATE, gid)
    return {"step": step.model_dump(by_alias=True), "sync": sync.model_dump(by_alias=True)}


@router.put("/bundles/{bundle_id}/steps/{step_id}")
async def update_step(
    bundle_id: str,
    step_id: str,
    request: UpdateStepRequest,
    ctx: ShopContext = Depends(get_shop_context),
    steps: StepManager = Depends(get_step_manager),
    synchronizer: CartTransformSynchronizer = Depends(get_synchronizer),
):
    gid = to_metaobject_gid(bundle_id)
    # Explicit nulls (e.g. maxSelections: null = unlimited) are kept.
    changes = {
        _STEP_FIELD_NAMES.get(key, key): value
        for key, value in request.model_dump(exclude_unset=True).items()
    }
    if "products" in changes and changes["products"] is not None:
        changes["products"] = [
            {"id": product["id"], "position": product.get("position") or index}
            for index, product in enumerate(changes["products"], start=1)
        ]
    step = await steps.update_step(gid, step_id, changes)
    sync = await synchronizer.on_bundle_changed(ctx.shop, ChangeKind.UPDATE, gid)
    return {"step": step.model_dump(by_alias=True), "sync": sync.model_dump(by_alias=True)}


@router.delete("/bundles/{bundle_id}/steps/{step_id}")
async def remove_step(
    bundle_id: str,
    step_id: str,
    ctx: ShopContext = Depends(get_shop_context),
    steps: StepManager = Depends(get_step_manager),
    synchronizer: CartTransformSynchronizer = Depends(get_synchronizer),
):
    gid = to_metaobject_gid(bundle_id)
    await steps.remove_step(gid, step_id)
    sync = await synchronizer.on_bundle_changed(ctx.shop, ChangeKind.UPDATE, gid)
    return {"success": True, "sync": sync.model_dump(by_alias=True)}


@router.post("/bundles/{bundle_id}/steps/reorder")
async def reorder_steps(
    bundle_id: str,
    request: ReorderStepsRequest,
    ctx: ShopContext = Depends(get_shop_context),
    steps: StepManager = Depends(get_step_manager),
    synchronizer: CartTransformSynchronizer = Depends(get_synchronizer),
):
    gid = to_metaobject_gid(bundle_id)
    ordered = await steps.reorder_steps(gid, [(item.stepId, item.position) for item in request.stepOrder])
    sync = await synchronizer.on_bundle_changed(ctx.shop, ChangeKind.UPDATE, gid)
    return {
        "steps": [step.model_dump(by_alias=True) for step in ordered],
        "sync": sync.model_dump(by_alias=True),
    }

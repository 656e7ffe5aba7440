"""
Combinations Router
Combination images attached to a bundle. Images arrive base64-encoded.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
import base64
import binascii
import logging

from schemas.bundle_schemas import Bundle, BundleFields, ChangeKind
from services.bundle_store import BundleStore
from services.cart_transform_sync import CartTransformSynchronizer
from services.combination_store import CombinationStore, validate_product_ids
from services.errors import (
    BundleNotFoundError,
    BundleValidationError,
    DuplicateBundleError,
    InternalServiceError,
    mentions_not_found,
)
from services.product_catalog import ProductCatalog
from routers.deps import (
    ShopContext,
    get_bundle_store,
    get_catalog,
    get_combination_store,
    get_shop_context,
    get_synchronizer,
    to_metaobject_gid,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def decode_image(image_base64: str) -> bytes:
    # Accept data URLs as produced by FileReader.readAsDataURL.
    if image_base64.startswith("data:") and "," in image_base64:
        image_base64 = image_base64.split(",", 1)[1]
    try:
        content = base64.b64decode(image_base64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise BundleValidationError("Image data is not valid base64") from exc
    if not content:
        raise BundleValidationError("Base64 image data is required")
    return content


class CreateCombinationRequest(BaseModel):
    productIds: List[str]
    imageBase64: str = Field(min_length=1)
    title: Optional[str] = None

    @field_validator("productIds")
    @classmethod
    def _check_products(cls, value: List[str]) -> List[str]:
        if len(value) < 2:
            raise ValueError("At least 2 product IDs are required")
        return value


class UpdateCombinationRequest(BaseModel):
    title: Optional[str] = None
    imageBase64: Optional[str] = None


class DeleteCombinationsRequest(BaseModel):
    combinationIds: List[str] = Field(min_length=1)


async def _load_bundle(store: BundleStore, bundle_id: str) -> Bundle:
    bundle = await store.get(to_metaobject_gid(bundle_id))
    if bundle is None:
        raise BundleNotFoundError("Bundle not found")
    return bundle


@router.get("/bundles/{bundle_id}/combinations")
async def list_combinations(
    bundle_id: str,
    store: BundleStore = Depends(get_bundle_store),
    combinations: CombinationStore = Depends(get_combination_store),
    catalog: ProductCatalog = Depends(get_catalog),
):
    bundle = await _load_bundle(store, bundle_id)
    await combinations.ensure_schema_exists()
    enriched = await combinations.list_for_bundle(bundle.combination_images, catalog)

    available_products = [
        {
            "id": product.id,
            "stepTitle": step.title,
            "stepPosition": step.position,
        }
        for step in bundle.steps
        for product in step.products
    ]
    return {"combinations": enriched, "availableProducts": available_products}


@router.post("/bundles/{bundle_id}/combinations", status_code=201)
async def create_combination(
    bundle_id: str,
    request: CreateCombinationRequest,
    ctx: ShopContext = Depends(get_shop_context),
    store: BundleStore = Depends(get_bundle_store),
    combinations: CombinationStore = Depends(get_combination_store),
    synchronizer: CartTransformSynchronizer = Depends(get_synchronizer),
):
    bundle = await _load_bundle(store, bundle_id)
    product_ids = validate_product_ids(request.productIds)
    image = decode_image(request.imageBase64)

    existing = await combinations.find_by_product_set(product_ids, within=bundle.combination_images)
    if existing is not None:
        raise DuplicateBundleError(
            "A combination with these products already exists",
            details={"combinationId": existing.id},
        )

    combination = await combinations.create(product_ids, image, request.title)
    await store.update(bundle.id, BundleFields(combination_images=[*bundle.combination_images, combination.id]))
    sync = await synchronizer.on_bundle_changed(ctx.shop, ChangeKind.UPDATE, bundle.id)
    return {"combination": combination.model_dump(by_alias=True), "sync": sync.model_dump(by_alias=True)}


@router.delete("/bundles/{bundle_id}/combinations")
async def delete_combinations(
    bundle_id: str,
    request: DeleteCombinationsRequest,
    ctx: ShopContext = Depends(get_shop_context),
    store: BundleStore = Depends(get_bundle_store),
    combinations: CombinationStore = Depends(get_combination_store),
    synchronizer: CartTransformSynchronizer = Depends(get_synchronizer),
):
    bundle = await _load_bundle(store, bundle_id)
    ids = [to_metaobject_gid(item) for item in request.combinationIds]

    results = []
    deleted_ids = []
    for combination_id in ids:
        result = await combinations.delete(combination_id)
        if result.success:
            deleted_ids.append(combination_id)
            results.append({"combinationId": combination_id, "success": True})
        else:
            results.append({
                "combinationId": combination_id,
                "success": False,
                "error": ", ".join(result.errors) or "Failed to delete combination",
            })

    sync = None
    if deleted_ids:
        remaining = [item for item in bundle.combination_images if item not in deleted_ids]
        await store.update(bundle.id, BundleFields(combination_images=remaining))
        sync = await synchronizer.on_bundle_changed(ctx.shop, ChangeKind.UPDATE, bundle.id)

    failed = len(ids) - len(deleted_ids)
    return {
        "success": failed == 0,
        "results": results,
        "summary": {"total": len(ids), "deleted": len(deleted_ids), "failed": failed},
        "sync": sync.model_dump(by_alias=True) if sync else None,
    }


@router.put("/bundles/{bundle_id}/combinations/{combination_id}")
async def update_combination(
    bundle_id: str,
    combination_id: str,
    request: UpdateCombinationRequest,
    store: BundleStore = Depends(get_bundle_store),
    combinations: CombinationStore = Depends(get_combination_store),
):
    await _load_bundle(store, bundle_id)
    image = decode_image(request.imageBase64) if request.imageBase64 else None
    combination = await combinations.update(to_metaobject_gid(combination_id), title=request.title, image_bytes=image)
    return {"combination": combination.model_dump(by_alias=True)}


@router.delete("/bundles/{bundle_id}/combinations/{combination_id}")
async def delete_combination(
    bundle_id: str,
    combination_id: str,
    ctx: ShopContext = Depends(get_shop_context),
    store: BundleStore = Depends(get_bundle_store),
    combinations: CombinationStore = Depends(get_combination_store),
    synchronizer: CartTransformSynchronizer = Depends(get_synchronizer),
):
    bundle = await _load_bundle(store, bundle_id)
    gid = to_metaobject_gid(combination_id)
    result = await combinations.delete(gid)
    if not result.success:
        if not result.errors or mentions_not_found(result.errors):
            raise BundleNotFoundError("Combination not found", details={"errors": result.errors})
        raise InternalServiceError(", ".join(result.errors), details={"errors": result.errors})

    if gid in bundle.combination_images:
        remaining = [item for item in bundle.combination_images if item != gid]
        await store.update(bundle.id, BundleFields(combination_images=remaining))
    sync = await synchronizer.on_bundle_changed(ctx.shop, ChangeKind.UPDATE, bundle.id)
    return {"success": True, "sync": sync.model_dump(by_alias=True)}

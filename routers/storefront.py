"""
Storefront Router
Price calculation for a shopper's selections and the public bundle view.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from typing import List
import logging

from schemas.bundle_schemas import StepSelection
from services.bundle_store import BundleStore
from services.combination_store import CombinationStore
from services.errors import BundleNotFoundError
from services.pricing import calculate_bundle_price, example_savings
from services.product_catalog import ProductCatalog
from routers.deps import get_bundle_store, get_catalog, get_combination_store, to_metaobject_gid

logger = logging.getLogger(__name__)
router = APIRouter()


class CalculatePriceRequest(BaseModel):
    bundleId: str = Field(min_length=1)
    selectedProducts: List[StepSelection] = Field(min_length=1)


@router.post("/bundles/calculate-price")
async def calculate_price(
    request: CalculatePriceRequest,
    store: BundleStore = Depends(get_bundle_store),
    catalog: ProductCatalog = Depends(get_catalog),
):
    bundle = await store.get(to_metaobject_gid(request.bundleId))
    if bundle is None:
        raise BundleNotFoundError("Bundle not found")
    breakdown = await calculate_bundle_price(bundle, request.selectedProducts, catalog)
    return breakdown.model_dump(by_alias=True)


@router.get("/bundles/storefront/{handle}")
async def storefront_bundle(
    handle: str,
    store: BundleStore = Depends(get_bundle_store),
    combinations: CombinationStore = Depends(get_combination_store),
    catalog: ProductCatalog = Depends(get_catalog),
):
    """Active bundle by handle with live product details"""
    bundle = await store.get_by_handle(handle, status="active")
    if bundle is None:
        raise BundleNotFoundError("Bundle not found")

    product_ids = [product.id for step in bundle.steps for product in step.products]
    products = await catalog.get_products(product_ids)

    steps = []
    for step in bundle.steps:
        step_json = step.model_dump(by_alias=True)
        step_json["products"] = [
            products[product.id].to_storefront(product.position)
            for product in step.products
            if product.id in products
        ]
        steps.append(step_json)

    combos = [
        {"products": combo.products, "imageUrl": combo.image_url, "title": combo.title}
        for combo in await combinations.list_by_ids(bundle.combination_images)
    ]

    return {
        "bundle": {
            "id": bundle.id,
            "handle": bundle.handle,
            "title": bundle.title,
            "discountType": bundle.discount_type,
            "discountValue": bundle.discount_value,
            "layoutType": bundle.layout_type,
            "layoutSettings": bundle.layout_settings,
            "mobileColumns": bundle.mobile_columns,
            "desktopColumns": bundle.desktop_columns,
            "steps": steps,
            "exampleSavings": example_savings(bundle, steps),
            "combinations": combos,
        }
    }

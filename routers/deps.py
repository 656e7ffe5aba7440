"""
Shared FastAPI dependencies: shop credentials, the per-request Admin client
and the stores built on top of it.
"""
from dataclasses import dataclass
from typing import AsyncGenerator

from fastapi import Depends, Request

from services.bulk_operations import BulkOperationExecutor
from services.bundle_store import BundleStore
from services.cart_transform_sync import CartTransformRegistry, CartTransformSynchronizer
from services.combination_store import CombinationStore
from services.errors import UnauthorizedError
from services.product_catalog import ProductCatalog
from services.shopify_admin import ShopifyAdminClient
from services.step_manager import StepManager
from settings import sanitize_shop_id

METAOBJECT_GID_PREFIX = "gid://shopify/Metaobject/"


@dataclass
class ShopContext:
    shop: str
    access_token: str


def to_metaobject_gid(value: str) -> str:
    """Path segments carry the numeric tail; full GIDs are accepted as-is."""
    value = value.strip()
    if value.startswith("gid://"):
        return value
    return f"{METAOBJECT_GID_PREFIX}{value}"


def get_shop_context(request: Request) -> ShopContext:
    shop = sanitize_shop_id(request.headers.get("X-Shopify-Shop-Domain"))
    token = (request.headers.get("X-Shopify-Access-Token") or "").strip()
    if not shop or not token:
        raise UnauthorizedError("Missing shop credentials")
    return ShopContext(shop=shop, access_token=token)


async def get_admin(ctx: ShopContext = Depends(get_shop_context)) -> AsyncGenerator[ShopifyAdminClient, None]:
    client = ShopifyAdminClient(ctx.shop, ctx.access_token)
    try:
        yield client
    finally:
        await client.aclose()


def get_bundle_store(admin=Depends(get_admin)) -> BundleStore:
    return BundleStore(admin)


def get_combination_store(admin=Depends(get_admin)) -> CombinationStore:
    return CombinationStore(admin)


def get_catalog(admin=Depends(get_admin)) -> ProductCatalog:
    return ProductCatalog(admin)


def get_registry() -> CartTransformRegistry:
    return CartTransformRegistry()


def get_synchronizer(
    admin=Depends(get_admin),
    store: BundleStore = Depends(get_bundle_store),
    registry: CartTransformRegistry = Depends(get_registry),
) -> CartTransformSynchronizer:
    return CartTransformSynchronizer(admin, store, registry)


def get_bulk_executor(store: BundleStore = Depends(get_bundle_store)) -> BulkOperationExecutor:
    return BulkOperationExecutor(store)


def get_step_manager(store: BundleStore = Depends(get_bundle_store)) -> StepManager:
    return StepManager(store)

"""
Setup Router
Installs the shop's cart transform and seeds its snapshot.
"""
from fastapi import APIRouter, Depends
import logging

from schemas.bundle_schemas import ChangeKind
from services.cart_transform_sync import (
    CartTransformRegistry,
    CartTransformSynchronizer,
    ensure_cart_transform_for_shop,
)
from services.errors import InternalServiceError
from routers.deps import ShopContext, get_admin, get_registry, get_shop_context, get_synchronizer

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/setup/cart-transform")
async def setup_cart_transform(
    ctx: ShopContext = Depends(get_shop_context),
    admin=Depends(get_admin),
    registry: CartTransformRegistry = Depends(get_registry),
    synchronizer: CartTransformSynchronizer = Depends(get_synchronizer),
):
    record = await ensure_cart_transform_for_shop(admin, ctx.shop, registry)
    if record is None:
        raise InternalServiceError("Cart transform function id is not configured")

    sync = await synchronizer.on_bundle_changed(ctx.shop, ChangeKind.UPDATE)
    return {
        "cartTransformId": record.cart_transform_id,
        "functionId": record.function_id,
        "sync": sync.model_dump(by_alias=True),
    }

"""
Bulk Router
Batch delete and batch status change. The cart transform is resynced once
after the whole batch, not per item.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from typing import List
import logging

from schemas.bundle_schemas import BundleStatus, ChangeKind
from services.bulk_operations import BulkOperationExecutor
from services.cart_transform_sync import CartTransformSynchronizer
from services.errors import LimitExceededError
from routers.deps import ShopContext, get_bulk_executor, get_shop_context, get_synchronizer, to_metaobject_gid
from settings import MAX_BULK_IDS

logger = logging.getLogger(__name__)
router = APIRouter()


class _BulkRequest(BaseModel):
    bundleIds: List[str]

    @field_validator("bundleIds")
    @classmethod
    def _check_ids(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("Bundle IDs array is required")
        ids = [item.strip() for item in value]
        if any(not item for item in ids):
            raise ValueError("All bundle IDs must be non-empty strings")
        return ids


class BulkDeleteRequest(_BulkRequest):
    pass


class BulkStatusRequest(_BulkRequest):
    status: BundleStatus


def _check_batch_size(ids: List[str], verb: str) -> List[str]:
    if len(ids) > MAX_BULK_IDS:
        raise LimitExceededError(f"Cannot {verb} more than {MAX_BULK_IDS} bundles at once")
    return [to_metaobject_gid(item) for item in ids]


@router.post("/bundles/bulk-delete")
async def bulk_delete(
    request: BulkDeleteRequest,
    ctx: ShopContext = Depends(get_shop_context),
    executor: BulkOperationExecutor = Depends(get_bulk_executor),
    synchronizer: CartTransformSynchronizer = Depends(get_synchronizer),
):
    ids = _check_batch_size(request.bundleIds, "delete")
    result = await executor.bulk_delete(ids)
    sync = await synchronizer.on_bundle_changed(ctx.shop, ChangeKind.DELETE)
    # 200 even on partial failure; callers inspect perItem.
    return {**result.model_dump(by_alias=True), "sync": sync.model_dump(by_alias=True)}


@router.post("/bundles/bulk-status")
async def bulk_status(
    request: BulkStatusRequest,
    ctx: ShopContext = Depends(get_shop_context),
    executor: BulkOperationExecutor = Depends(get_bulk_executor),
    synchronizer: CartTransformSynchronizer = Depends(get_synchronizer),
):
    ids = _check_batch_size(request.bundleIds, "update")
    result = await executor.bulk_set_status(ids, request.status)
    sync = await synchronizer.on_bundle_changed(ctx.shop, ChangeKind.UPDATE)
    return {**result.model_dump(by_alias=True), "sync": sync.model_dump(by_alias=True)}

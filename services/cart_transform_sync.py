"""
Cart Transform Synchronizer
Keeps the derived snapshot read by the checkout-time cart function in step
with the bundle store.

The snapshot is rebuilt from the full set of active bundles on every change,
so its content depends only on store state at sync time. There is no rollback:
a bundle mutation that succeeded stays committed even when the sync fails, and
the failure is reported to the caller through ``SyncResult``.
"""
from __future__ import annotations

import json
import logging
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database import AsyncSessionLocal, CartTransform
from schemas.bundle_schemas import (
    Bundle,
    CartTransformSnapshotDict,
    ChangeKind,
    SnapshotBundleDict,
    SyncResult,
)
from services.bundle_store import BundleStore
from services.errors import InternalServiceError
from services.shopify_admin import user_error_messages
from settings import CART_TRANSFORM_FUNCTION_ID, CART_TRANSFORM_KEY, CART_TRANSFORM_NAMESPACE

logger = logging.getLogger(__name__)

METAFIELDS_SET_MUTATION = """
mutation SetCartTransformSnapshot($metafields: [MetafieldsSetInput!]!) {
  metafieldsSet(metafields: $metafields) {
    metafields { id namespace key }
    userErrors { field message }
  }
}
"""

CART_TRANSFORM_CREATE_MUTATION = """
mutation CreateCartTransform($functionId: String!) {
  cartTransformCreate(functionId: $functionId) {
    cartTransform { id functionId }
    userErrors { field message }
  }
}
"""


# ---------------------------------------------------------------------------
# Snapshot (pure)
# ---------------------------------------------------------------------------

def build_cart_transform_snapshot(bundles: Iterable[Bundle]) -> CartTransformSnapshotDict:
    """Project active bundles to the minimal shape the cart function reads, ordered by id."""
    active = sorted((bundle for bundle in bundles if bundle.status == "active"), key=lambda bundle: bundle.id)
    entries: List[SnapshotBundleDict] = [
        {
            "id": bundle.id,
            "title": bundle.title,
            "discountType": bundle.discount_type,
            "discountValue": bundle.discount_value,
            "steps": [
                {"id": step.id, "products": [{"id": product.id} for product in step.products]}
                for step in bundle.steps
            ],
        }
        for bundle in active
    ]
    return {"bundles": entries}


def serialize_snapshot(snapshot: CartTransformSnapshotDict) -> str:
    """Canonical compact JSON; equal snapshots always produce identical bytes."""
    return json.dumps(snapshot, separators=(",", ":"), sort_keys=True, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Registry (local SQL)
# ---------------------------------------------------------------------------

class CartTransformRegistry:
    """Shop -> installed cart transform id, persisted in ``cart_transforms``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal):
        self.session_factory = session_factory

    async def get(self, shop: str) -> Optional[CartTransform]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(CartTransform)
                .where(CartTransform.shop == shop)
                .order_by(CartTransform.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def get_cart_transform_id(self, shop: str) -> Optional[str]:
        record = await self.get(shop)
        return record.cart_transform_id if record else None

    async def register(self, shop: str, function_id: str, cart_transform_id: str) -> CartTransform:
        async with self.session_factory() as session:
            record = CartTransform(shop=shop, function_id=function_id, cart_transform_id=cart_transform_id)
            session.add(record)
            await session.commit()
            await session.refresh(record)
            return record


async def ensure_cart_transform_for_shop(
    admin,
    shop: str,
    registry: CartTransformRegistry,
    function_id: Optional[str] = None,
) -> Optional[CartTransform]:
    """
    Install the cart transform for ``shop`` unless one is already registered.

    Returns ``None`` when no function id is configured.
    """
    function_id = function_id or CART_TRANSFORM_FUNCTION_ID
    if not function_id:
        logger.error("[cart_transform] CART_TRANSFORM_FUNCTION_ID is not set")
        return None

    existing = await registry.get(shop)
    if existing is not None:
        logger.info("[cart_transform] already installed for shop %s", shop)
        return existing

    data = await admin.graphql(CART_TRANSFORM_CREATE_MUTATION, {"functionId": function_id})
    payload = data.get("cartTransformCreate") or {}
    cart_transform = payload.get("cartTransform")
    if not cart_transform:
        messages = user_error_messages(payload)
        logger.error("[cart_transform] install failed for shop %s: %s", shop, messages)
        raise InternalServiceError(
            "Could not install cart transform",
            details={"errors": messages},
        )

    logger.info("[cart_transform] installed %s for shop %s", cart_transform["id"], shop)
    return await registry.register(shop, function_id, cart_transform["id"])


# ---------------------------------------------------------------------------
# Synchronizer
# ---------------------------------------------------------------------------

class CartTransformSynchronizer:
    def __init__(self, admin, store: BundleStore, registry: CartTransformRegistry):
        self.admin = admin
        self.store = store
        self.registry = registry

    async def sync(self, shop: str) -> SyncResult:
        """Rebuild and overwrite the snapshot. Never raises."""
        try:
            cart_transform_id = await self.registry.get_cart_transform_id(shop)
            if not cart_transform_id:
                logger.error("[cart_transform] no cart transform registered for shop %s", shop)
                return SyncResult(success=False, error="Cart transform not configured")

            bundles = await self.store.list_all("active")
            snapshot = build_cart_transform_snapshot(bundles)
            variables = {
                "metafields": [
                    {
                        "ownerId": cart_transform_id,
                        "namespace": CART_TRANSFORM_NAMESPACE,
                        "key": CART_TRANSFORM_KEY,
                        "type": "json",
                        "value": serialize_snapshot(snapshot),
                    }
                ]
            }
            data = await self.admin.graphql(METAFIELDS_SET_MUTATION, variables)
            messages = user_error_messages(data.get("metafieldsSet"))
            if messages:
                logger.error("[cart_transform] snapshot write rejected for shop %s: %s", shop, messages)
                return SyncResult(success=False, error=messages[0])

            count = len(snapshot["bundles"])
            logger.info("[cart_transform] synced %d active bundles for shop %s", count, shop)
            return SyncResult(success=True, bundle_count=count)
        except Exception as e:
            logger.exception("[cart_transform] sync failed for shop %s: %s", shop, e)
            return SyncResult(success=False, error=str(e) or type(e).__name__)

    async def on_bundle_changed(self, shop: str, change_kind: ChangeKind, bundle_id: Optional[str] = None) -> SyncResult:
        """Any create, update or delete triggers a full rebuild of the snapshot."""
        logger.debug("[cart_transform] %s of %s for shop %s", ChangeKind(change_kind).value, bundle_id, shop)
        return await self.sync(shop)

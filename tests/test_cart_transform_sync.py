import json

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from database import Base
from fakes import InMemoryRegistry, snapshot_bundles
from schemas.bundle_schemas import Bundle, BundleFields, BundleProduct, BundleStep, ChangeKind
from services.cart_transform_sync import (
    CartTransformRegistry,
    CartTransformSynchronizer,
    build_cart_transform_snapshot,
    ensure_cart_transform_for_shop,
    serialize_snapshot,
)
from services.errors import InternalServiceError
from services.shopify_admin import ShopifyAdminError

SHOP = "demo-shop.myshopify.com"
OWNER = "gid://shopify/CartTransform/1"


def _fields(title, status="active", discount_value=10):
    return BundleFields(
        title=title,
        status=status,
        discount_type="percentage",
        discount_value=discount_value,
        steps=[
            BundleStep(
                id=f"step_{title.lower()}",
                title="Pick",
                products=[BundleProduct(id="gid://shopify/Product/1"), BundleProduct(id="gid://shopify/Product/2", position=2)],
            )
        ],
    )


def test_snapshot_is_ordered_and_only_active():
    bundles = [
        Bundle(id="gid://shopify/Metaobject/9", title="B", status="active"),
        Bundle(id="gid://shopify/Metaobject/3", title="A", status="active", discount_type="fixed", discount_value=5),
        Bundle(id="gid://shopify/Metaobject/4", title="Draft", status="draft"),
    ]
    snapshot = build_cart_transform_snapshot(bundles)
    assert [b["id"] for b in snapshot["bundles"]] == ["gid://shopify/Metaobject/3", "gid://shopify/Metaobject/9"]
    assert snapshot["bundles"][0] == {
        "id": "gid://shopify/Metaobject/3",
        "title": "A",
        "discountType": "fixed",
        "discountValue": 5.0,
        "steps": [],
    }


def test_serialized_snapshot_is_independent_of_input_order():
    first = Bundle(id="gid://shopify/Metaobject/1", title="One", status="active")
    second = Bundle(id="gid://shopify/Metaobject/2", title="Two", status="active")
    assert serialize_snapshot(build_cart_transform_snapshot([first, second])) == serialize_snapshot(
        build_cart_transform_snapshot([second, first])
    )


@pytest.mark.asyncio
async def test_sync_writes_active_bundles(store, admin, registry):
    await store.create(_fields("Live"))
    await store.create(_fields("Hidden", status="draft"))

    result = await CartTransformSynchronizer(admin, store, registry).sync(SHOP)

    assert result.success is True
    assert result.bundle_count == 1
    bundles = snapshot_bundles(admin, OWNER)
    assert [b["title"] for b in bundles] == ["Live"]
    assert bundles[0]["steps"] == [
        {"id": "step_live", "products": [{"id": "gid://shopify/Product/1"}, {"id": "gid://shopify/Product/2"}]}
    ]
    write = admin.metafield_writes[0]
    assert (write["namespace"], write["key"], write["type"]) == ("mergely", "merge-configurations", "json")


@pytest.mark.asyncio
async def test_sync_is_idempotent(store, admin, registry):
    await store.create(_fields("Live"))
    synchronizer = CartTransformSynchronizer(admin, store, registry)

    await synchronizer.sync(SHOP)
    await synchronizer.sync(SHOP)

    assert len(admin.metafield_writes) == 2
    assert admin.metafield_writes[0]["value"] == admin.metafield_writes[1]["value"]


@pytest.mark.asyncio
async def test_deactivating_a_bundle_removes_it(store, admin, registry):
    bundle = await store.create(_fields("Live"))
    synchronizer = CartTransformSynchronizer(admin, store, registry)
    await synchronizer.sync(SHOP)

    await store.update(bundle.id, BundleFields(status="inactive"))
    result = await synchronizer.on_bundle_changed(SHOP, ChangeKind.UPDATE, bundle.id)

    assert result.success is True
    assert json.loads(admin.snapshot_for(OWNER)) == {"bundles": []}


@pytest.mark.asyncio
async def test_sync_without_cart_transform(store, admin):
    result = await CartTransformSynchronizer(admin, store, InMemoryRegistry()).sync(SHOP)
    assert result.success is False
    assert result.error == "Cart transform not configured"
    assert admin.metafield_writes == []


@pytest.mark.asyncio
async def test_sync_reports_rejected_write(store, admin, registry):
    admin.queue_user_errors("metafieldsSet", ["Value is too long"])
    result = await CartTransformSynchronizer(admin, store, registry).sync(SHOP)
    assert result.success is False
    assert result.error == "Value is too long"


@pytest.mark.asyncio
async def test_sync_never_raises(store, admin, registry, caplog):
    admin.failing_operations["ListMetaobjects"] = ShopifyAdminError("connection reset by peer")
    result = await CartTransformSynchronizer(admin, store, registry).sync(SHOP)
    assert result.success is False
    assert "connection reset" in result.error
    logged = [r for r in caplog.records if r.name == "services.cart_transform_sync" and r.exc_info]
    assert logged[0].getMessage() == f"[cart_transform] sync failed for shop {SHOP}: connection reset by peer"


@pytest_asyncio.fixture
async def sql_registry():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield CartTransformRegistry(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))
    await engine.dispose()


@pytest.mark.asyncio
async def test_install_registers_once(admin, sql_registry):
    first = await ensure_cart_transform_for_shop(admin, SHOP, sql_registry, function_id="fn-123")
    second = await ensure_cart_transform_for_shop(admin, SHOP, sql_registry, function_id="fn-123")

    assert first.cart_transform_id.startswith("gid://shopify/CartTransform/")
    assert second.cart_transform_id == first.cart_transform_id
    assert admin.operation_count("CreateCartTransform") == 1
    assert await sql_registry.get_cart_transform_id(SHOP) == first.cart_transform_id
    assert await sql_registry.get_cart_transform_id("other-shop.myshopify.com") is None


@pytest.mark.asyncio
async def test_install_without_function_id(admin, sql_registry, monkeypatch):
    monkeypatch.setattr("services.cart_transform_sync.CART_TRANSFORM_FUNCTION_ID", None)
    assert await ensure_cart_transform_for_shop(admin, SHOP, sql_registry) is None
    assert admin.operation_count("CreateCartTransform") == 0


@pytest.mark.asyncio
async def test_install_failure_is_internal_error(admin, sql_registry):
    admin.queue_user_errors("cartTransformCreate", ["Function not found"])
    with pytest.raises(InternalServiceError):
        await ensure_cart_transform_for_shop(admin, SHOP, sql_registry, function_id="fn-404")
    assert await sql_registry.get(SHOP) is None

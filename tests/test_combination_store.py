import pytest

from fakes import FakeShopifyAdmin, no_sleep
from services.combination_store import CombinationStore, combination_key, validate_product_ids
from services.errors import BundleNotFoundError, BundleValidationError, MediaUploadError
from services.listing import FullScanLister
from services.media_upload import MediaUploadPipeline
from services.product_catalog import ProductCatalog

PNG = b"\x89PNG\r\n\x1a\n" + b"\x01" * 16
P1, P2, P3 = "gid://shopify/Product/1", "gid://shopify/Product/2", "gid://shopify/Product/3"


def _store(admin, max_polls=5):
    return CombinationStore(
        admin,
        media=MediaUploadPipeline(admin, sleep=no_sleep, max_polls=max_polls),
        lister=FullScanLister(admin, page_size=2),
    )


@pytest.mark.asyncio
async def test_create_uploads_then_persists(admin):
    combinations = _store(admin)
    combo = await combinations.create([P1, P2], PNG, title="Duo")

    assert combo.products == [P1, P2]
    assert combo.image_id.startswith("gid://shopify/MediaImage/")
    assert combo.image_url
    node = admin.metaobjects[combo.id]
    assert node["type"] == "bundle_combination"
    assert {f["key"] for f in node["fields"]} == {"products", "image", "title"}


@pytest.mark.asyncio
async def test_upload_timeout_creates_no_record():
    admin = FakeShopifyAdmin(file_ready_after_polls=100)
    combinations = _store(admin, max_polls=3)

    with pytest.raises(MediaUploadError):
        await combinations.create([P1, P2], PNG)

    assert admin.operation_count("CreateMetaobject") == 0
    assert admin.metaobjects == {}


@pytest.mark.asyncio
async def test_find_by_product_set_ignores_order(admin):
    combinations = _store(admin)
    await combinations.create([P1, P2], PNG)
    target = await combinations.create([P1, P2, P3], PNG)
    await combinations.create([P2, P3], PNG)

    found = await combinations.find_by_product_set([P3, P1, P2])
    assert found is not None and found.id == target.id
    assert await combinations.find_by_product_set([P1, P3]) is None


@pytest.mark.asyncio
async def test_find_within_a_bundles_own_combinations(admin):
    combinations = _store(admin)
    own = await combinations.create([P1, P2], PNG)
    await combinations.create([P2, P3], PNG)

    assert (await combinations.find_by_product_set([P2, P1], within=[own.id])).id == own.id
    assert await combinations.find_by_product_set([P3, P2], within=[own.id]) is None
    assert await combinations.find_by_product_set([P1, P2], within=[]) is None


@pytest.mark.asyncio
async def test_list_by_ids_resolves_image_urls(admin):
    combinations = _store(admin)
    first = await combinations.create([P1, P2], PNG, title="One")
    second = await combinations.create([P2, P3], PNG)

    listed = await combinations.list_by_ids([second.id, "gid://shopify/Metaobject/404", first.id])
    assert [c.id for c in listed] == [second.id, first.id]
    assert listed[1].title == "One"
    assert listed[0].image_url == second.image_url


@pytest.mark.asyncio
async def test_list_for_bundle_expands_products(admin):
    admin.add_product(P1, "Shirt", "20.00", image="https://cdn.example.com/shirt.png")
    admin.add_product(P2, "Hat", "15.00")
    combinations = _store(admin)
    combo = await combinations.create([P1, P2], PNG)

    enriched = await combinations.list_for_bundle([combo.id], ProductCatalog(admin))
    assert enriched[0]["products"] == [
        {"id": P1, "title": "Shirt", "featuredImage": "https://cdn.example.com/shirt.png"},
        {"id": P2, "title": "Hat", "featuredImage": None},
    ]


@pytest.mark.asyncio
async def test_update_and_delete(admin):
    combinations = _store(admin)
    combo = await combinations.create([P1, P2], PNG)

    updated = await combinations.update(combo.id, title="Renamed")
    assert updated.title == "Renamed"
    assert updated.products == [P1, P2]

    assert (await combinations.delete(combo.id)).success is True
    assert (await combinations.delete(combo.id)).success is False
    with pytest.raises(BundleNotFoundError):
        await combinations.update(combo.id, title="Again")


def test_product_id_validation():
    assert validate_product_ids([P1, P2]) == [P1, P2]
    with pytest.raises(BundleValidationError):
        validate_product_ids([P1])
    with pytest.raises(BundleValidationError):
        validate_product_ids([P1, P1])
    with pytest.raises(BundleValidationError):
        validate_product_ids([P1, P2, P3, "a", "b"])
    with pytest.raises(BundleValidationError):
        validate_product_ids([P1, ""])


def test_combination_key_is_order_independent():
    assert combination_key([P2, P1]) == combination_key([P1, P2])

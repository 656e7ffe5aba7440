import pytest

from schemas.bundle_schemas import BundleFields, BundleProduct, BundleStep
from services.errors import BundleNotFoundError, BundleValidationError, DuplicateBundleError


def _fields(title, status="active", **extra):
    return BundleFields(
        title=title,
        status=status,
        discount_type="percentage",
        discount_value=10,
        steps=[BundleStep(title="Step 1", min_selections=1, products=[BundleProduct(id="gid://shopify/Product/1")])],
        **extra,
    )


async def _seed(store, active=12, draft=3):
    for i in range(1, active + 1):
        await store.create(_fields(f"Active {i}"))
    for i in range(1, draft + 1):
        await store.create(_fields(f"Draft {i}", status="draft"))


@pytest.mark.asyncio
async def test_list_windows_the_filtered_set(store):
    await _seed(store)

    page = await store.list(page=2, limit=5, status="active")
    assert [b.title for b in page.items] == [f"Active {i}" for i in range(6, 11)]
    assert page.total == 12
    assert page.has_next is True

    last = await store.list(page=3, limit=5, status="active")
    assert [b.title for b in last.items] == ["Active 11", "Active 12"]
    assert last.has_next is False


@pytest.mark.asyncio
async def test_list_without_status_counts_everything(store, admin):
    await _seed(store)

    page = await store.list(page=1, limit=20)
    assert page.total == 15
    assert page.has_next is False
    # 15 records over pages of 4
    assert admin.operation_count("ListMetaobjects") == 4


@pytest.mark.asyncio
async def test_list_past_the_end_is_empty(store):
    await _seed(store, active=2, draft=0)

    page = await store.list(page=5, limit=10, status="active")
    assert page.items == []
    assert page.total == 2
    assert page.has_next is False


@pytest.mark.asyncio
async def test_list_rejects_non_positive_page(store):
    with pytest.raises(BundleValidationError):
        await store.list(page=0, limit=5)


@pytest.mark.asyncio
async def test_create_assigns_step_ids_and_defines_schema_once(store, admin):
    first = await store.create(_fields("First"))
    await store.create(_fields("Second"))

    assert first.steps[0].id.startswith("step_")
    assert first.handle == "first"
    assert admin.operation_count("CreateDefinition") == 1
    assert admin.operation_count("DefinitionByType") == 1


@pytest.mark.asyncio
async def test_create_keeps_client_step_ids(store):
    fields = _fields("Keeps ids")
    fields.steps[0].id = "step_custom"
    bundle = await store.create(fields)
    assert bundle.steps[0].id == "step_custom"


@pytest.mark.asyncio
async def test_definition_created_concurrently_is_not_an_error(store, admin):
    admin.queue_user_errors("metaobjectDefinitionCreate", ["Type has already been taken"])
    bundle = await store.create(_fields("Race"))
    assert bundle.title == "Race"


@pytest.mark.asyncio
async def test_duplicate_handle_maps_to_duplicate_error(store, admin):
    admin.queue_user_errors("metaobjectCreate", ["Handle has already been taken"])
    with pytest.raises(DuplicateBundleError):
        await store.create(_fields("Taken"))


@pytest.mark.asyncio
async def test_other_create_rejections_are_validation_errors(store, admin):
    admin.queue_user_errors("metaobjectCreate", ["Value is invalid"])
    with pytest.raises(BundleValidationError) as exc_info:
        await store.create(_fields("Invalid"))
    assert exc_info.value.details == {"errors": ["Value is invalid"]}


@pytest.mark.asyncio
async def test_get_missing_bundle_returns_none(store):
    assert await store.get("gid://shopify/Metaobject/404") is None


@pytest.mark.asyncio
async def test_update_merges_partial_fields(store):
    bundle = await store.create(_fields("Original"))

    updated = await store.update(bundle.id, BundleFields(status="inactive"))
    assert updated.status == "inactive"
    assert updated.title == "Original"
    assert updated.steps == bundle.steps


@pytest.mark.asyncio
async def test_update_missing_bundle_raises_not_found(store):
    with pytest.raises(BundleNotFoundError):
        await store.update("gid://shopify/Metaobject/404", BundleFields(title="Nope"))


@pytest.mark.asyncio
async def test_update_not_found_after_pre_read(store, admin):
    bundle = await store.create(_fields("Vanishing"))
    admin.queue_user_errors("metaobjectUpdate", ["Metaobject does not exist"])
    with pytest.raises(BundleNotFoundError):
        await store.update(bundle.id, BundleFields(title="Gone"))


@pytest.mark.asyncio
async def test_delete_reports_outcome(store):
    bundle = await store.create(_fields("Doomed"))

    assert (await store.delete(bundle.id)).success is True
    second = await store.delete(bundle.id)
    assert second.success is False
    assert second.errors == ["Record not found"]


@pytest.mark.asyncio
async def test_get_by_handle_only_sees_active(store):
    await store.create(_fields("Live Box"))
    await store.create(_fields("Hidden Box", status="draft"))

    assert (await store.get_by_handle("live-box")).title == "Live Box"
    assert await store.get_by_handle("hidden-box") is None
    assert (await store.get_by_handle("hidden-box", status=None)).title == "Hidden Box"


@pytest.mark.asyncio
async def test_duplicate_copies_fields_under_new_identity(store):
    source = await store.create(_fields("Source", combination_images=["gid://shopify/Metaobject/77"]))

    copy = await store.duplicate(source.id, "Source (Copy)")
    assert copy.id != source.id
    assert copy.title == "Source (Copy)"
    assert copy.status == "draft"
    assert copy.steps == source.steps
    assert copy.discount_value == source.discount_value
    assert copy.combination_images == []


@pytest.mark.asyncio
async def test_duplicate_missing_source(store):
    with pytest.raises(BundleNotFoundError):
        await store.duplicate("gid://shopify/Metaobject/404", "Copy")


@pytest.mark.asyncio
async def test_mutating_a_duplicate_leaves_the_source_alone(store):
    source = await store.create(_fields("Source"))
    copy = await store.duplicate(source.id, "Copy")

    await store.update(copy.id, BundleFields(title="Changed", discount_value=50, steps=[]))

    reloaded = await store.get(source.id)
    assert reloaded.title == "Source"
    assert reloaded.discount_value == 10
    assert reloaded.steps == source.steps


@pytest.mark.asyncio
async def test_update_checks_discount_against_stored_type(store):
    bundle = await store.create(_fields("Percent"))

    with pytest.raises(BundleValidationError):
        await store.update(bundle.id, BundleFields(discount_value=150))
    assert (await store.get(bundle.id)).discount_value == 10

    updated = await store.update(bundle.id, BundleFields(discount_type="fixed", discount_value=150))
    assert updated.discount_value == 150

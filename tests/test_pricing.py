from decimal import Decimal

import pytest

from fakes import FakeShopifyAdmin
from schemas.bundle_schemas import Bundle, BundleStep, SelectedItem, StepSelection
from services.errors import BundleValidationError
from services.pricing import apply_discount, calculate_bundle_price, example_savings
from services.product_catalog import ProductCatalog


def _bundle(discount_type="percentage", discount_value=10.0, selection_type="product"):
    return Bundle(
        id="gid://shopify/Metaobject/1",
        title="Pricing",
        status="active",
        discount_type=discount_type,
        discount_value=discount_value,
        steps=[
            BundleStep(id="s1", title="Tops", min_selections=1, max_selections=2, selection_type=selection_type),
            BundleStep(id="s2", title="Bottoms", min_selections=0),
        ],
    )


def _catalog():
    admin = FakeShopifyAdmin()
    admin.add_product("gid://shopify/Product/1", "Shirt", "20.00", variant_id="gid://shopify/ProductVariant/11")
    admin.add_product("gid://shopify/Product/2", "Pants", "30.00")
    admin.add_variant("gid://shopify/ProductVariant/12", "25.00")
    return ProductCatalog(admin)


def _select(step_id, *product_ids, variant_id=None):
    return StepSelection(
        step_id=step_id,
        selections=[SelectedItem(product_id=pid, variant_id=variant_id) for pid in product_ids],
    )


def test_discount_rules():
    original = Decimal("100")
    assert apply_discount(original, "percentage", 15) == (Decimal("15"), Decimal("85"))
    assert apply_discount(original, "fixed", 120) == (Decimal("100"), Decimal("0"))
    assert apply_discount(original, "total", 80) == (Decimal("20"), Decimal("80"))
    assert apply_discount(original, "total", 150) == (Decimal("0"), Decimal("100"))


def test_percentage_discount_never_exceeds_the_original():
    assert apply_discount(Decimal("35"), "percentage", 150) == (Decimal("35"), Decimal("0"))


@pytest.mark.asyncio
async def test_percentage_bundle_price():
    breakdown = await calculate_bundle_price(
        _bundle(),
        [_select("s1", "gid://shopify/Product/1"), _select("s2", "gid://shopify/Product/2")],
        _catalog(),
    )
    assert breakdown.original_price == 50.0
    assert breakdown.discount_amount == 5.0
    assert breakdown.final_price == 45.0
    assert breakdown.savings.percentage == 10.0


@pytest.mark.asyncio
async def test_fixed_discount_rounds_half_up():
    breakdown = await calculate_bundle_price(
        _bundle(discount_type="fixed", discount_value=3.335),
        [_select("s1", "gid://shopify/Product/1")],
        _catalog(),
    )
    assert breakdown.discount_amount == 3.34
    assert breakdown.final_price == 16.67


@pytest.mark.asyncio
async def test_variant_steps_price_the_variant():
    breakdown = await calculate_bundle_price(
        _bundle(discount_type="total", discount_value=20, selection_type="variant"),
        [_select("s1", "gid://shopify/Product/1", variant_id="gid://shopify/ProductVariant/12")],
        _catalog(),
    )
    assert breakdown.original_price == 25.0
    assert breakdown.final_price == 20.0


@pytest.mark.asyncio
async def test_variant_step_requires_variant_id():
    with pytest.raises(BundleValidationError, match="Variant ID required"):
        await calculate_bundle_price(
            _bundle(selection_type="variant"),
            [_select("s1", "gid://shopify/Product/1")],
            _catalog(),
        )


@pytest.mark.asyncio
async def test_selection_bounds_are_enforced():
    with pytest.raises(BundleValidationError, match="allows maximum 2"):
        await calculate_bundle_price(
            _bundle(),
            [_select("s1", "gid://shopify/Product/1", "gid://shopify/Product/2", "gid://shopify/Product/3")],
            _catalog(),
        )
    with pytest.raises(BundleValidationError, match="requires at least 1"):
        await calculate_bundle_price(_bundle(), [_select("s1")], _catalog())
    with pytest.raises(BundleValidationError, match="not found in bundle"):
        await calculate_bundle_price(_bundle(), [_select("s9", "gid://shopify/Product/1")], _catalog())


@pytest.mark.asyncio
async def test_unpriced_products_are_skipped():
    breakdown = await calculate_bundle_price(
        _bundle(discount_type="fixed", discount_value=5),
        [_select("s1", "gid://shopify/Product/1", "gid://shopify/Product/404")],
        _catalog(),
    )
    assert breakdown.original_price == 20.0
    assert breakdown.final_price == 15.0


def test_example_savings():
    steps = [
        {"minSelections": 2, "products": [{"priceRange": {"min": "10.00"}}, {"priceRange": {"min": "8.00"}}]},
        {"minSelections": 1, "products": [{"priceRange": {"min": "24.00"}}]},
    ]
    assert example_savings(_bundle(discount_value=25), steps) == {"amount": "10.00", "percentage": 25}
    assert example_savings(_bundle(discount_type="fixed", discount_value=4), steps) == {"amount": "4.00", "percentage": 10}
    assert example_savings(_bundle(discount_type="total", discount_value=30), steps) is None

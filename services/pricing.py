"""
Bundle Pricing Service
Prices a shopper's selections against a bundle's discount rule, plus the
"example savings" teaser shown on the storefront.
"""
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging
from decimal import Decimal, ROUND_HALF_UP

from schemas.bundle_schemas import Bundle, PriceBreakdown, PriceSavings, StepSelection
from services.errors import BundleValidationError

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal('0.01')
HUNDRED = Decimal('100')


def round_money(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def apply_discount(original: Decimal, discount_type: str, discount_value: Any) -> Tuple[Decimal, Decimal]:
    """
    Return ``(discount_amount, final_price)`` before rounding.

    - percentage: ``original * value / 100``, value capped at 100
    - fixed: ``value`` off, never more than the original
    - total: the bundle sells for ``value`` when the original exceeds it
    """
    value = Decimal(str(discount_value))
    if discount_type == "percentage":
        discount = original * min(value, HUNDRED) / HUNDRED
    elif discount_type == "fixed":
        discount = min(value, original)
    elif discount_type == "total":
        discount = original - value if original > value else Decimal('0')
    else:
        discount = Decimal('0')
    return discount, original - discount


def build_breakdown(original: Decimal, discount: Decimal, final: Decimal) -> PriceBreakdown:
    percentage = (discount / original * HUNDRED) if original > 0 else Decimal('0')
    return PriceBreakdown(
        original_price=float(round_money(original)),
        discount_amount=float(round_money(discount)),
        final_price=float(round_money(final)),
        savings=PriceSavings(
            amount=float(round_money(discount)),
            percentage=float(round_money(percentage)),
        ),
    )


def collect_priced_items(bundle: Bundle, selections: Sequence[StepSelection]) -> List[Tuple[str, str]]:
    """
    Validate selections against the bundle's steps.

    Returns ``(kind, id)`` pairs where kind is ``product`` (priced by its
    cheapest variant) or ``variant`` (priced directly).
    """
    if not selections:
        raise BundleValidationError("Selected products are required")

    steps = {step.id: step for step in bundle.steps}
    items: List[Tuple[str, str]] = []
    for selection in selections:
        step = steps.get(selection.step_id)
        if step is None:
            raise BundleValidationError(f"Step {selection.step_id} not found in bundle")

        count = len(selection.selections)
        if count < step.min_selections:
            raise BundleValidationError(
                f'Step "{step.title}" requires at least {step.min_selections} selections'
            )
        if step.max_selections is not None and count > step.max_selections:
            raise BundleValidationError(
                f'Step "{step.title}" allows maximum {step.max_selections} selections'
            )

        for item in selection.selections:
            if step.selection_type == "variant":
                if not item.variant_id:
                    raise BundleValidationError(
                        f'Variant ID required for step "{step.title}" with variant selection type'
                    )
                items.append(("variant", item.variant_id))
            else:
                items.append(("product", item.product_id))

    if not items:
        raise BundleValidationError("No products selected")
    return items


async def calculate_bundle_price(bundle: Bundle, selections: Sequence[StepSelection], catalog) -> PriceBreakdown:
    items = collect_priced_items(bundle, selections)

    product_prices = await catalog.get_product_prices([item_id for kind, item_id in items if kind == "product"])
    variant_prices = await catalog.get_variant_prices([item_id for kind, item_id in items if kind == "variant"])

    original = Decimal('0')
    missing: List[str] = []
    for kind, item_id in items:
        price = (product_prices if kind == "product" else variant_prices).get(item_id)
        if price is None:
            missing.append(item_id)
            continue
        original += price
    if missing:
        logger.warning(f"[pricing] no price found for {missing} in bundle {bundle.id}")

    discount, final = apply_discount(original, bundle.discount_type, bundle.discount_value)
    return build_breakdown(original, discount, final)


def example_savings(bundle: Bundle, steps_with_products: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Savings for the cheapest valid selection: the lowest product price of each
    step times its minimum selections. Not shown for ``total`` bundles.
    """
    if bundle.discount_type == "total":
        return None

    min_total = Decimal('0')
    for step in steps_with_products:
        prices = [
            Decimal(product["priceRange"]["min"])
            for product in step.get("products") or []
            if (product.get("priceRange") or {}).get("min") is not None
        ]
        if prices:
            min_total += min(prices) * int(step.get("minSelections") or 0)

    if bundle.discount_type == "percentage":
        discount = min_total * min(Decimal(str(bundle.discount_value)), HUNDRED) / HUNDRED
    else:
        discount = Decimal(str(bundle.discount_value))

    percentage = (discount / min_total * HUNDRED) if min_total > 0 else Decimal('0')
    return {
        "amount": str(round_money(discount)),
        "percentage": int(percentage.quantize(Decimal('1'), rounding=ROUND_HALF_UP)),
    }

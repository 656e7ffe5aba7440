"""
Read-only product lookups against the Admin API.

Bundles store only product GIDs; titles, images and prices are resolved live
through the ``nodes`` query whenever a view needs them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = """
      id
      title
      handle
      vendor
      productType
      availableForSale
      featuredImage { url }
      priceRange {
        minVariantPrice { amount currencyCode }
        maxVariantPrice { amount currencyCode }
      }
      variants(first: 1, sortKey: PRICE) {
        nodes {
          id
          availableForSale
          price { amount currencyCode }
          compareAtPrice { amount currencyCode }
        }
      }
"""

PRODUCT_DETAILS_QUERY = f"""
query GetProducts($ids: [ID!]!) {{
  nodes(ids: $ids) {{
    ... on Product {{{PRODUCT_FIELDS}    }}
  }}
}}
"""

SEARCH_PRODUCTS_QUERY = f"""
query SearchProducts($first: Int!, $query: String) {{
  products(first: $first, query: $query) {{
    nodes {{{PRODUCT_FIELDS}    }}
  }}
}}
"""

# Fields a text search is matched against.
SEARCHABLE_ATTRIBUTES = ("title", "vendor", "product_type")

VARIANT_PRICES_QUERY = """
query GetVariantPrices($ids: [ID!]!) {
  nodes(ids: $ids) {
    ... on ProductVariant {
      id
      price { amount currencyCode }
      compareAtPrice { amount currencyCode }
    }
  }
}
"""


def to_decimal(value: Any) -> Optional[Decimal]:
    """Parse an amount; Shopify money values may arrive as strings or objects."""
    if isinstance(value, dict):
        value = value.get("amount")
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


@dataclass
class VariantPrice:
    id: str
    price: Decimal
    compare_at_price: Optional[Decimal] = None
    available_for_sale: bool = True


@dataclass
class ProductDetails:
    id: str
    title: str
    handle: str = ""
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    featured_image: Optional[str] = None
    available_for_sale: bool = True
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    cheapest_variant: Optional[VariantPrice] = None

    def to_storefront(self, position: int) -> Dict[str, Any]:
        variant = self.cheapest_variant
        return {
            "id": self.id,
            "position": position,
            "title": self.title,
            "handle": self.handle,
            "featuredImage": self.featured_image,
            "vendor": self.vendor,
            "priceRange": {
                "min": _money(self.min_price),
                "max": _money(self.max_price),
            },
            "availableForSale": self.available_for_sale,
            "defaultVariant": (
                {
                    "id": variant.id,
                    "price": _money(variant.price),
                    "compareAtPrice": _money(variant.compare_at_price),
                    "availableForSale": variant.available_for_sale,
                }
                if variant
                else None
            ),
        }

    def to_summary(self) -> Dict[str, Any]:
        """Picker row used by the admin product lookup and search routes."""
        return {
            "id": self.id,
            "title": self.title,
            "handle": self.handle,
            "featuredImage": self.featured_image,
            "vendor": self.vendor or "",
            "productType": self.product_type or "",
            "availableForSale": self.available_for_sale,
            "priceRange": {
                "min": _money(self.min_price),
                "max": _money(self.max_price),
            },
        }

    def matches(self, text: str) -> bool:
        needle = text.strip().lower()
        return any(needle in (getattr(self, attr) or "").lower() for attr in SEARCHABLE_ATTRIBUTES)


def parse_product_node(node: Dict[str, Any]) -> ProductDetails:
    price_range = node.get("priceRange") or {}
    variants = (node.get("variants") or {}).get("nodes") or []
    cheapest = None
    if variants and to_decimal(variants[0].get("price")) is not None:
        first = variants[0]
        cheapest = VariantPrice(
            id=first["id"],
            price=to_decimal(first.get("price")),
            compare_at_price=to_decimal(first.get("compareAtPrice")),
            available_for_sale=bool(first.get("availableForSale", True)),
        )
    return ProductDetails(
        id=node["id"],
        title=node.get("title") or "",
        handle=node.get("handle") or "",
        vendor=node.get("vendor"),
        product_type=node.get("productType"),
        featured_image=(node.get("featuredImage") or {}).get("url"),
        available_for_sale=bool(node.get("availableForSale", True)),
        min_price=to_decimal(price_range.get("minVariantPrice")),
        max_price=to_decimal(price_range.get("maxVariantPrice")),
        cheapest_variant=cheapest,
    )


def _money(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _unique(ids: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(ids))


class ProductCatalog:
    def __init__(self, admin):
        self.admin = admin

    async def get_products(self, product_ids: Iterable[str]) -> Dict[str, ProductDetails]:
        """Product details keyed by GID; unknown ids are simply absent."""
        ids = _unique(product_ids)
        if not ids:
            return {}
        data = await self.admin.graphql(PRODUCT_DETAILS_QUERY, {"ids": ids})
        products: Dict[str, ProductDetails] = {}
        for node in data.get("nodes") or []:
            if not node or not node.get("id"):
                continue
            products[node["id"]] = parse_product_node(node)
        return products

    async def search_products(self, text: str = "", limit: int = 50) -> List[ProductDetails]:
        """
        Products whose title, vendor or product type contains ``text``.

        Shopify's default search also matches tags and SKUs, so results are
        narrowed again locally. An empty text lists the first ``limit``
        products.
        """
        text = text.strip()
        data = await self.admin.graphql(SEARCH_PRODUCTS_QUERY, {"first": limit, "query": text or None})
        nodes = (data.get("products") or {}).get("nodes") or []
        results = [parse_product_node(node) for node in nodes if node and node.get("id")]
        if text:
            results = [product for product in results if product.matches(text)]
        logger.info("[product_catalog] search %r matched %d product(s)", text, len(results))
        return results[:limit]

    async def get_product_prices(self, product_ids: Iterable[str]) -> Dict[str, Decimal]:
        """Cheapest variant price per product."""
        products = await self.get_products(product_ids)
        return {
            product_id: details.cheapest_variant.price
            for product_id, details in products.items()
            if details.cheapest_variant is not None
        }

    async def get_variant_prices(self, variant_ids: Iterable[str]) -> Dict[str, Decimal]:
        ids = _unique(variant_ids)
        if not ids:
            return {}
        data = await self.admin.graphql(VARIANT_PRICES_QUERY, {"ids": ids})
        prices: Dict[str, Decimal] = {}
        for node in data.get("nodes") or []:
            if not node or not node.get("id"):
                continue
            price = to_decimal(node.get("price"))
            if price is not None:
                prices[node["id"]] = price
        return prices

"""
Products Router
Product picker lookups for the bundle editor: fetch by id and text search.
"""
from fastapi import APIRouter, Depends, Query
from typing import List
import logging

from services.product_catalog import ProductCatalog
from routers.deps import get_catalog

logger = logging.getLogger(__name__)
router = APIRouter()

PRODUCT_GID_PREFIX = "gid://shopify/Product/"
MAX_SEARCH_LIMIT = 250


def to_product_gid(value: str) -> str:
    value = value.strip()
    if value.startswith("gid://"):
        return value
    return f"{PRODUCT_GID_PREFIX}{value}"


def parse_ids(raw: str) -> List[str]:
    return list(dict.fromkeys(to_product_gid(part) for part in raw.split(",") if part.strip()))


@router.get("/products/by-ids")
async def products_by_ids(
    ids: str = Query(""),
    catalog: ProductCatalog = Depends(get_catalog),
):
    """Products in the order requested; unknown ids are left out"""
    product_ids = parse_ids(ids)
    if not product_ids:
        return {"products": []}

    found = await catalog.get_products(product_ids)
    missing = [product_id for product_id in product_ids if product_id not in found]
    if missing:
        logger.info("[products] %d requested product(s) not found: %s", len(missing), missing)
    return {"products": [found[product_id].to_summary() for product_id in product_ids if product_id in found]}


@router.get("/products/search")
async def search_products(
    query: str = Query("", max_length=255),
    limit: int = Query(50, ge=1, le=MAX_SEARCH_LIMIT),
    catalog: ProductCatalog = Depends(get_catalog),
):
    products = await catalog.search_products(query, limit=limit)
    return {"products": [product.to_summary() for product in products]}

"""
Combination Store
Combination records (a product set plus the image shown when a shopper picks
exactly that set) persisted as ``bundle_combination`` metaobjects.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from schemas.bundle_schemas import Combination, DeleteResult
from services.bundle_store import (
    CREATE_METAOBJECT_MUTATION,
    DELETE_METAOBJECT_MUTATION,
    UPDATE_METAOBJECT_MUTATION,
    ensure_metaobject_definition,
)
from services.errors import (
    BundleNotFoundError,
    BundleValidationError,
    mentions_not_found,
)
from services.field_codec import fields_to_dict
from services.listing import FullScanLister, Lister
from services.media_upload import MediaUploadPipeline
from services.shopify_admin import user_error_messages
from settings import COMBINATION_METAOBJECT_TYPE, MAX_COMBINATION_PRODUCTS, MIN_COMBINATION_PRODUCTS

logger = logging.getLogger(__name__)

COMBINATION_DEFINITION_FIELDS = [
    {"key": "products", "name": "Products", "type": "list.product_reference", "required": True},
    {
        "key": "image",
        "name": "Image",
        "type": "file_reference",
        "required": True,
        "validations": [
            {"name": "file_type_allow_list", "value": '["image/jpeg", "image/png", "image/gif", "image/webp"]'}
        ],
    },
    {"key": "title", "name": "Title", "type": "single_line_text_field", "required": False},
]

NODES_QUERY = """
query GetCombinations($ids: [ID!]!) {
  nodes(ids: $ids) {
    ... on Metaobject {
      id
      handle
      fields { key value }
    }
  }
}
"""

IMAGE_URL_QUERY = """
query GetFile($id: ID!) {
  node(id: $id) {
    ... on MediaImage {
      id
      image { url }
    }
  }
}
"""


def combination_key(product_ids: Iterable[str]) -> Tuple[str, ...]:
    """Order-independent identity of a product set."""
    return tuple(sorted(product_ids))


def validate_product_ids(product_ids: Sequence[str]) -> List[str]:
    ids = [str(product_id) for product_id in product_ids if product_id]
    if len(ids) != len(product_ids):
        raise BundleValidationError("Product ids must be non-empty strings")
    if len(set(ids)) != len(ids):
        raise BundleValidationError("Product ids in a combination must be distinct")
    if not MIN_COMBINATION_PRODUCTS <= len(ids) <= MAX_COMBINATION_PRODUCTS:
        raise BundleValidationError(
            f"Combinations must contain between {MIN_COMBINATION_PRODUCTS} and "
            f"{MAX_COMBINATION_PRODUCTS} products"
        )
    return ids


class CombinationStore:
    def __init__(
        self,
        admin,
        media: Optional[MediaUploadPipeline] = None,
        lister: Optional[Lister] = None,
        metaobject_type: str = COMBINATION_METAOBJECT_TYPE,
    ):
        self.admin = admin
        self.media = media or MediaUploadPipeline(admin)
        self.lister = lister or FullScanLister(admin)
        self.metaobject_type = metaobject_type
        self._schema_ready = False

    async def ensure_schema_exists(self) -> None:
        if self._schema_ready:
            return
        await ensure_metaobject_definition(self.admin, self.metaobject_type, COMBINATION_DEFINITION_FIELDS)
        self._schema_ready = True

    async def _image_url(self, image_id: str) -> str:
        if not image_id:
            return ""
        data = await self.admin.graphql(IMAGE_URL_QUERY, {"id": image_id})
        return ((data.get("node") or {}).get("image") or {}).get("url") or ""

    async def _to_combination(self, node: Dict[str, Any], image_url: Optional[str] = None) -> Combination:
        fields = fields_to_dict(node.get("fields"))
        products = (fields.get("products") or {}).get("parsed")
        if not isinstance(products, list):
            products = []
        image_id = (fields.get("image") or {}).get("raw") or ""
        title_entry = fields.get("title")
        if image_url is None:
            image_url = await self._image_url(image_id)
        return Combination(
            id=node["id"],
            products=[str(product_id) for product_id in products],
            image_id=image_id,
            image_url=image_url,
            title=title_entry["raw"] if title_entry else None,
        )

    async def create(self, product_ids: Sequence[str], image_bytes: bytes, title: Optional[str] = None) -> Combination:
        """Upload the image, then persist the record; nothing is written if the upload fails."""
        ids = validate_product_ids(product_ids)
        await self.ensure_schema_exists()

        image = await self.media.upload(image_bytes)

        fields = [
            {"key": "products", "value": json.dumps(ids)},
            {"key": "image", "value": image.image_id},
        ]
        if title:
            fields.append({"key": "title", "value": title})

        data = await self.admin.graphql(
            CREATE_METAOBJECT_MUTATION,
            {"metaobject": {"type": self.metaobject_type, "fields": fields}},
        )
        payload = data.get("metaobjectCreate") or {}
        messages = user_error_messages(payload)
        if messages or not payload.get("metaobject"):
            raise BundleValidationError(
                "Combination was rejected by the store",
                details={"errors": messages or ["Failed to create combination"]},
            )
        node = payload["metaobject"]
        logger.info("[combinations] created %s for %s", node["id"], ids)
        return Combination(id=node["id"], products=ids, image_id=image.image_id, image_url=image.image_url, title=title)

    async def update(
        self,
        combination_id: str,
        title: Optional[str] = None,
        image_bytes: Optional[bytes] = None,
    ) -> Combination:
        fields: List[Dict[str, str]] = []
        image_url: Optional[str] = None
        if title is not None:
            fields.append({"key": "title", "value": title})
        if image_bytes:
            image = await self.media.upload(image_bytes)
            image_url = image.image_url
            fields.append({"key": "image", "value": image.image_id})

        data = await self.admin.graphql(
            UPDATE_METAOBJECT_MUTATION,
            {"id": combination_id, "metaobject": {"fields": fields}},
        )
        payload = data.get("metaobjectUpdate") or {}
        messages = user_error_messages(payload)
        if messages:
            if mentions_not_found(messages):
                raise BundleNotFoundError("Combination not found", details={"errors": messages})
            raise BundleValidationError("Combination update was rejected", details={"errors": messages})
        node = payload.get("metaobject")
        if not node:
            raise BundleNotFoundError("Combination not found")
        return await self._to_combination(node, image_url=image_url)

    async def delete(self, combination_id: str) -> DeleteResult:
        """Remove the record only; the uploaded media file stays in the shop's files."""
        data = await self.admin.graphql(DELETE_METAOBJECT_MUTATION, {"id": combination_id})
        payload = data.get("metaobjectDelete") or {}
        messages = user_error_messages(payload)
        if messages:
            return DeleteResult(success=False, errors=messages)
        return DeleteResult(success=bool(payload.get("deletedId")))

    async def list_by_ids(self, combination_ids: Sequence[str]) -> List[Combination]:
        """Resolve records in the given order; each image URL costs one remote fetch."""
        if not combination_ids:
            return []
        data = await self.admin.graphql(NODES_QUERY, {"ids": list(combination_ids)})
        combinations: List[Combination] = []
        for node in data.get("nodes") or []:
            if node and node.get("id"):
                combinations.append(await self._to_combination(node))
        return combinations

    async def list_all(self) -> List[Combination]:
        nodes = await self.lister.fetch_all(self.metaobject_type)
        return [await self._to_combination(node) for node in nodes]

    async def find_by_product_set(
        self,
        product_ids: Sequence[str],
        within: Optional[Sequence[str]] = None,
    ) -> Optional[Combination]:
        """
        First combination whose product set equals ``product_ids`` in any order.

        ``within`` restricts the search to those combination ids (a bundle's
        own images); otherwise the whole collection is scanned.
        """
        wanted = combination_key(product_ids)
        if within is not None:
            nodes = []
            if within:
                data = await self.admin.graphql(NODES_QUERY, {"ids": list(within)})
                nodes = [node for node in data.get("nodes") or [] if node and node.get("id")]
        else:
            nodes = await self.lister.fetch_all(self.metaobject_type)

        for node in nodes:
            products = (fields_to_dict(node.get("fields")).get("products") or {}).get("parsed")
            if isinstance(products, list) and combination_key(str(p) for p in products) == wanted:
                return await self._to_combination(node)
        return None

    async def list_for_bundle(self, combination_ids: Sequence[str], catalog) -> List[Dict[str, Any]]:
        """Combinations with their products expanded to ``{id, title, featuredImage}``."""
        combinations = await self.list_by_ids(combination_ids)
        product_ids = sorted({product_id for combo in combinations for product_id in combo.products})
        products = await catalog.get_products(product_ids) if product_ids else {}

        enriched: List[Dict[str, Any]] = []
        for combo in combinations:
            enriched.append(
                {
                    "id": combo.id,
                    "products": [
                        {
                            "id": products[product_id].id,
                            "title": products[product_id].title,
                            "featuredImage": products[product_id].featured_image,
                        }
                        for product_id in combo.products
                        if product_id in products
                    ],
                    "imageUrl": combo.image_url,
                    "imageId": combo.image_id,
                    "title": combo.title,
                }
            )
        return enriched



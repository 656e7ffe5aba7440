"""
Bundle Store
CRUD over bundle records persisted as Shopify metaobjects of type
``mergely_bundle``. Listing is a full scan through ``services.listing``.
"""
from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Dict, List, Optional

from schemas.bundle_schemas import Bundle, BundleFields, BundlePage, BundleStep, DeleteResult
from services.errors import (
    BundleNotFoundError,
    BundleValidationError,
    DuplicateBundleError,
    mentions_duplicate,
    mentions_not_found,
)
from services.field_codec import decode_bundle, encode_bundle_fields
from services.listing import FullScanLister, Lister, filter_items, window
from services.shopify_admin import user_error_messages
from settings import BUNDLE_METAOBJECT_TYPE, DEFAULT_LIST_LIMIT

logger = logging.getLogger(__name__)

_METAOBJECT_NODE = """
  id
  handle
  fields { key value }
"""

DEFINITION_BY_TYPE_QUERY = """
query DefinitionByType($type: String!) {
  metaobjectDefinitionByType(type: $type) { id type }
}
"""

DEFINITION_CREATE_MUTATION = """
mutation CreateDefinition($definition: MetaobjectDefinitionCreateInput!) {
  metaobjectDefinitionCreate(definition: $definition) {
    metaobjectDefinition { id type }
    userErrors { field message }
  }
}
"""

GET_METAOBJECT_QUERY = f"""
query GetMetaobject($id: ID!) {{
  metaobject(id: $id) {{{_METAOBJECT_NODE}}}
}}
"""

CREATE_METAOBJECT_MUTATION = f"""
mutation CreateMetaobject($metaobject: MetaobjectCreateInput!) {{
  metaobjectCreate(metaobject: $metaobject) {{
    metaobject {{{_METAOBJECT_NODE}}}
    userErrors {{ field message }}
  }}
}}
"""

UPDATE_METAOBJECT_MUTATION = f"""
mutation UpdateMetaobject($id: ID!, $metaobject: MetaobjectUpdateInput!) {{
  metaobjectUpdate(id: $id, metaobject: $metaobject) {{
    metaobject {{{_METAOBJECT_NODE}}}
    userErrors {{ field message }}
  }}
}}
"""

DELETE_METAOBJECT_MUTATION = """
mutation DeleteMetaobject($id: ID!) {
  metaobjectDelete(id: $id) {
    deletedId
    userErrors { field message }
  }
}
"""


def _text_field(key: str, name: str, required: bool = True) -> Dict[str, Any]:
    return {"key": key, "name": name, "type": "single_line_text_field", "required": required}


def _json_field(key: str, name: str, required: bool = True) -> Dict[str, Any]:
    return {"key": key, "name": name, "type": "json", "required": required}


BUNDLE_DEFINITION_FIELDS = [
    _text_field("title", "Title"),
    _text_field("status", "Status"),
    _text_field("discount_type", "Discount Type"),
    _text_field("discount_value", "Discount Value"),
    _text_field("layout_type", "Layout Type"),
    _text_field("mobile_columns", "Mobile Columns"),
    _text_field("desktop_columns", "Desktop Columns"),
    _json_field("steps", "Steps"),
    _json_field("layout_settings", "Layout Settings", required=False),
    _json_field("combination_images", "Combination Images", required=False),
]


def generate_step_id() -> str:
    return f"step_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def assign_step_ids(steps: List[BundleStep]) -> List[BundleStep]:
    """Give an id to every step lacking one; existing ids are never touched."""
    return [step if step.id else step.model_copy(update={"id": generate_step_id()}) for step in steps]


async def ensure_metaobject_definition(admin, metaobject_type: str, fields: List[Dict[str, Any]]) -> None:
    """Check-then-create a metaobject definition; a concurrent create is benign."""
    data = await admin.graphql(DEFINITION_BY_TYPE_QUERY, {"type": metaobject_type})
    if data.get("metaobjectDefinitionByType"):
        return

    definition = {
        "name": metaobject_type.replace("_", " ").title(),
        "type": metaobject_type,
        "displayNameKey": "title",
        "fieldDefinitions": fields,
    }
    data = await admin.graphql(DEFINITION_CREATE_MUTATION, {"definition": definition})
    messages = user_error_messages(data.get("metaobjectDefinitionCreate"))
    if not messages:
        logger.info("[bundle_store] created metaobject definition %s", metaobject_type)
        return
    if mentions_duplicate(messages):
        logger.info("[bundle_store] definition %s created concurrently", metaobject_type)
        return
    raise BundleValidationError(
        f"Failed to create metaobject definition {metaobject_type}",
        details={"errors": messages},
    )


class BundleStore:
    """Bundle CRUD bound to one shop's admin client."""

    def __init__(self, admin, lister: Optional[Lister] = None, metaobject_type: str = BUNDLE_METAOBJECT_TYPE):
        self.admin = admin
        self.metaobject_type = metaobject_type
        self.lister = lister or FullScanLister(admin)
        self._schema_ready = False

    async def ensure_schema_exists(self) -> None:
        if self._schema_ready:
            return
        await ensure_metaobject_definition(self.admin, self.metaobject_type, BUNDLE_DEFINITION_FIELDS)
        self._schema_ready = True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_all(self, status: Optional[str] = None) -> List[Bundle]:
        """Every bundle matching ``status`` (``None`` or ``"all"`` = no filter)."""
        nodes = await self.lister.fetch_all(self.metaobject_type)
        bundles = [decode_bundle(node) for node in nodes]
        if status in (None, "all"):
            return bundles
        return filter_items(bundles, lambda bundle: bundle.status == status)

    async def list(self, page: int = 1, limit: int = DEFAULT_LIST_LIMIT, status: Optional[str] = None) -> BundlePage:
        """
        One window of the filtered bundle set.

        ``total`` counts the filtered set, not the raw collection.
        """
        if page < 1 or limit < 1:
            raise BundleValidationError("page and limit must be positive integers")
        matching = await self.list_all(status)
        items, has_next = window(matching, page, limit)
        return BundlePage(items=items, total=len(matching), has_next=has_next)

    async def get(self, bundle_id: str) -> Optional[Bundle]:
        data = await self.admin.graphql(GET_METAOBJECT_QUERY, {"id": bundle_id})
        node = data.get("metaobject")
        if not node:
            return None
        return decode_bundle(node)

    async def get_by_handle(self, handle: str, status: Optional[str] = "active") -> Optional[Bundle]:
        for bundle in await self.list_all(status):
            if bundle.handle == handle:
                return bundle
        return None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, data: BundleFields) -> Bundle:
        await self.ensure_schema_exists()

        if data.steps is not None:
            data = data.model_copy(update={"steps": assign_step_ids(data.steps)})

        variables = {
            "metaobject": {
                "type": self.metaobject_type,
                "fields": encode_bundle_fields(data),
            }
        }
        result = await self.admin.graphql(CREATE_METAOBJECT_MUTATION, variables)
        payload = result.get("metaobjectCreate") or {}
        messages = user_error_messages(payload)
        if messages:
            logger.warning("[bundle_store] create rejected: %s", messages)
            if mentions_duplicate(messages):
                raise DuplicateBundleError("A bundle with this handle already exists", details={"errors": messages})
            raise BundleValidationError("Bundle was rejected by the store", details={"errors": messages})

        node = payload.get("metaobject")
        if not node:
            raise BundleValidationError("Bundle was not created", details={"errors": ["Empty create response"]})
        bundle = decode_bundle(node)
        logger.info("[bundle_store] created bundle %s (%s)", bundle.id, bundle.title)
        return bundle

    async def update(self, bundle_id: str, data: BundleFields) -> Bundle:
        existing = await self.get(bundle_id)
        if existing is None:
            raise BundleNotFoundError(f"Bundle {bundle_id} not found")

        # Either half of the discount may come from the stored record.
        touches_discount = data.discount_type is not None or data.discount_value is not None
        discount_type = data.discount_type or existing.discount_type
        discount_value = existing.discount_value if data.discount_value is None else data.discount_value
        if touches_discount and discount_type == "percentage" and discount_value > 100:
            raise BundleValidationError(
                "Percentage discount cannot exceed 100",
                details={"discountType": discount_type, "discountValue": discount_value},
            )

        if data.steps is not None:
            data = data.model_copy(update={"steps": assign_step_ids(data.steps)})

        variables = {"id": bundle_id, "metaobject": {"fields": encode_bundle_fields(data)}}
        result = await self.admin.graphql(UPDATE_METAOBJECT_MUTATION, variables)
        payload = result.get("metaobjectUpdate") or {}
        messages = user_error_messages(payload)
        if messages:
            logger.warning("[bundle_store] update of %s rejected: %s", bundle_id, messages)
            # Deleted between the pre-read and the write.
            if mentions_not_found(messages):
                raise BundleNotFoundError(f"Bundle {bundle_id} not found", details={"errors": messages})
            raise BundleValidationError("Bundle update was rejected by the store", details={"errors": messages})

        node = payload.get("metaobject")
        if not node:
            raise BundleNotFoundError(f"Bundle {bundle_id} not found")
        return decode_bundle(node)

    async def delete(self, bundle_id: str) -> DeleteResult:
        result = await self.admin.graphql(DELETE_METAOBJECT_MUTATION, {"id": bundle_id})
        payload = result.get("metaobjectDelete") or {}
        messages = user_error_messages(payload)
        if messages:
            logger.warning("[bundle_store] delete of %s rejected: %s", bundle_id, messages)
            return DeleteResult(success=False, errors=messages)
        if not payload.get("deletedId"):
            return DeleteResult(success=False, errors=[f"Bundle {bundle_id} not found"])
        return DeleteResult(success=True)

    async def duplicate(self, bundle_id: str, new_title: str, new_status: str = "draft") -> Bundle:
        """
        Copy a bundle under a fresh identity.

        Step ids are carried over unchanged; combination images are not shared
        between the copy and the source.
        """
        source = await self.get(bundle_id)
        if source is None:
            raise BundleNotFoundError(f"Bundle {bundle_id} not found")

        fields = BundleFields.from_bundle(source).model_copy(
            update={
                "title": new_title,
                "status": new_status,
                "combination_images": [],
            },
            deep=True,
        )
        return await self.create(fields)

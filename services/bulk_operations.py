"""
Bulk Operation Executor
Runs one store operation per id through a bounded worker pool and reports a
per-item outcome. Items are independent: a failure never aborts the batch and
successful items are never rolled back.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from schemas.bundle_schemas import BulkItemResult, BulkOperationResult, BulkSummary, BundleFields
from services.bundle_store import BundleStore
from services.errors import BundleServiceError
from settings import BULK_MAX_CONCURRENCY

logger = logging.getLogger(__name__)

ItemOperation = Callable[[str], Awaitable[Optional[str]]]


class BulkOperationExecutor:
    def __init__(self, store: BundleStore, max_concurrency: int = BULK_MAX_CONCURRENCY):
        self.store = store
        self.max_concurrency = max(1, max_concurrency)

    async def run(self, ids: Sequence[str], operation: ItemOperation) -> BulkOperationResult:
        """
        Apply ``operation`` to each id.

        ``operation`` returns ``None`` on success or an error message; raised
        exceptions are captured as that item's error. ``per_item`` keeps the
        input order whatever order the workers finish in.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _one(item_id: str) -> BulkItemResult:
            async with semaphore:
                try:
                    error = await operation(item_id)
                except BundleServiceError as exc:
                    error = exc.message
                except Exception as exc:
                    logger.error("[bulk] item %s failed: %s: %s", item_id, type(exc).__name__, exc)
                    error = str(exc) or type(exc).__name__
            return BulkItemResult(id=item_id, success=error is None, error=error)

        per_item: List[BulkItemResult] = list(await asyncio.gather(*(_one(item_id) for item_id in ids)))
        succeeded = sum(1 for item in per_item if item.success)
        summary = BulkSummary(total=len(per_item), succeeded=succeeded, failed=len(per_item) - succeeded)
        logger.info("[bulk] %d/%d items succeeded", summary.succeeded, summary.total)
        return BulkOperationResult(success=summary.failed == 0, per_item=per_item, summary=summary)

    async def bulk_delete(self, ids: Sequence[str]) -> BulkOperationResult:
        async def _delete(bundle_id: str) -> Optional[str]:
            result = await self.store.delete(bundle_id)
            if result.success:
                return None
            return ", ".join(result.errors) or "Failed to delete bundle"

        return await self.run(ids, _delete)

    async def bulk_set_status(self, ids: Sequence[str], status: str) -> BulkOperationResult:
        fields = BundleFields(status=status)

        async def _set_status(bundle_id: str) -> Optional[str]:
            await self.store.update(bundle_id, fields)
            return None

        return await self.run(ids, _set_status)

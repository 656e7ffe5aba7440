"""
Step management for a single bundle.

Steps live inside the bundle's ``steps`` blob, so every operation here is a
read-modify-write of the whole list through ``BundleStore.update``.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence, Tuple

from pydantic import ValidationError

from schemas.bundle_schemas import Bundle, BundleFields, BundleStep
from services.bundle_store import BundleStore, generate_step_id
from services.errors import BundleNotFoundError, BundleValidationError

logger = logging.getLogger(__name__)

# Attributes a step update may change; id and position are managed here.
_MUTABLE_STEP_FIELDS = ("title", "description", "min_selections", "max_selections", "required", "selection_type", "products")


class StepManager:
    def __init__(self, store: BundleStore):
        self.store = store

    async def _load(self, bundle_id: str) -> Bundle:
        bundle = await self.store.get(bundle_id)
        if bundle is None:
            raise BundleNotFoundError(f"Bundle {bundle_id} not found")
        return bundle

    @staticmethod
    def _index_of(bundle: Bundle, step_id: str) -> int:
        for index, step in enumerate(bundle.steps):
            if step.id == step_id:
                return index
        raise BundleNotFoundError("Step not found", details={"stepId": step_id})

    async def _save(self, bundle_id: str, steps: List[BundleStep]) -> Bundle:
        return await self.store.update(bundle_id, BundleFields(steps=steps))

    async def add_step(self, bundle_id: str, step: BundleStep) -> BundleStep:
        """Append ``step`` (or insert at its explicit position) with a fresh id."""
        bundle = await self._load(bundle_id)
        explicit_position = "position" in step.model_fields_set
        new_step = step.model_copy(
            update={
                "id": generate_step_id(),
                "position": step.position if explicit_position else len(bundle.steps) + 1,
            }
        )
        steps = [*bundle.steps, new_step]
        if explicit_position and new_step.position <= len(bundle.steps):
            steps.sort(key=lambda item: item.position)

        updated = await self._save(bundle_id, steps)
        logger.info("[steps] added step %s to bundle %s", new_step.id, bundle_id)
        return next((item for item in updated.steps if item.id == new_step.id), new_step)

    async def update_step(self, bundle_id: str, step_id: str, changes: Dict[str, Any]) -> BundleStep:
        """Merge ``changes`` (snake_case keys) into one step; id and position are kept."""
        bundle = await self._load(bundle_id)
        index = self._index_of(bundle, step_id)

        allowed = {key: value for key, value in changes.items() if key in _MUTABLE_STEP_FIELDS}
        merged = bundle.steps[index].model_dump()
        merged.update(allowed)
        try:
            updated_step = BundleStep.model_validate(merged)
        except ValidationError as exc:
            fields = sorted({".".join(str(part) for part in error["loc"]) for error in exc.errors()})
            raise BundleValidationError(
                f"Invalid value for step field(s): {', '.join(fields)}",
                details={"fields": fields},
            ) from exc
        if updated_step.max_selections is not None and updated_step.max_selections < updated_step.min_selections:
            raise BundleValidationError("Max selections must be greater than or equal to min selections")

        steps = list(bundle.steps)
        steps[index] = updated_step
        updated = await self._save(bundle_id, steps)
        return next(item for item in updated.steps if item.id == step_id)

    async def remove_step(self, bundle_id: str, step_id: str) -> Bundle:
        bundle = await self._load(bundle_id)
        index = self._index_of(bundle, step_id)
        remaining = [step for position, step in enumerate(bundle.steps) if position != index]
        # Keep positions contiguous after a removal.
        remaining = [step.model_copy(update={"position": position}) for position, step in enumerate(remaining, start=1)]
        return await self._save(bundle_id, remaining)

    async def reorder_steps(self, bundle_id: str, step_order: Sequence[Tuple[str, int]]) -> List[BundleStep]:
        """Apply ``(step_id, position)`` pairs; they must name exactly the bundle's steps."""
        if not step_order:
            raise BundleValidationError("Step order array is required")

        bundle = await self._load(bundle_id)
        by_id = {step.id: step for step in bundle.steps}
        requested = [step_id for step_id, _ in step_order]
        if len(set(requested)) != len(requested) or len(requested) != len(by_id):
            raise BundleValidationError("Step count mismatch")
        for step_id in requested:
            if step_id not in by_id:
                raise BundleValidationError(f"Step ID {step_id} not found in bundle")

        ordered = sorted(step_order, key=lambda pair: pair[1])
        steps = [by_id[step_id].model_copy(update={"position": position}) for step_id, position in ordered]
        updated = await self._save(bundle_id, steps)
        return updated.steps

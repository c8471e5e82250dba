"""Step state machine for the bulk flow.

Owns the SessionState, guards forward transitions, persists a snapshot after
every mutation and runs the target step's initializer.
"""

import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from config import (
    FIRST_STEP,
    LAST_STEP,
    STEP_GENERATION,
    STEP_NAMES,
    STEP_PLACEMENTS,
)
from events import EventBus
from session_state import (
    CatalogProduct,
    MemorySnapshotStore,
    PlacementSelection,
    SessionState,
    SnapshotError,
)

logger = logging.getLogger(__name__)

StepInitializer = Callable[[], Awaitable[None]]


class StepValidationError(ValueError):
    """A forward transition precondition is not met."""

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message)
        self.missing = list(missing or [])


class WorkflowController:
    def __init__(self, store=None, events: Optional[EventBus] = None):
        self.store = store if store is not None else MemorySnapshotStore()
        self.events = events or EventBus()
        self.state = SessionState()
        self.catalog: Dict[str, CatalogProduct] = {}
        self._initializers: Dict[int, StepInitializer] = {}

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self):
        try:
            self.store.save(self.state.to_json())
        except OSError as e:
            logger.warning("Could not save session snapshot: %s", e)

    async def load(self) -> SessionState:
        """Restore the snapshot if there is a usable one, then re-enter the current step."""
        try:
            raw = self.store.load()
            if raw:
                self.state = SessionState.from_json(raw)
                logger.info("Restored session at step %d", self.state.current_step)
        except (SnapshotError, OSError, UnicodeDecodeError) as e:
            logger.warning("Discarding unreadable session snapshot: %s", e)
            self.state = SessionState()
            try:
                self.store.clear()
            except OSError as clear_error:
                logger.warning("Could not remove session snapshot: %s", clear_error)
        await self._run_initializer(self.state.current_step)
        return self.state

    def _changed(self, **data):
        self.save()
        self.events.emit("state_changed", step=self.state.current_step, **data)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def register_initializer(self, step: int, initializer: StepInitializer):
        self._initializers[step] = initializer

    def missing_placements(self) -> List[str]:
        """Selected products with no placement chosen, in stable order."""
        return [
            pid for pid in sorted(self.state.selected_products)
            if not self.state.product_designs.get(pid)
        ]

    def validate_transition(self, step: int):
        if step <= self.state.current_step:
            return
        if step >= STEP_PLACEMENTS and not self.state.selected_products:
            raise StepValidationError("Please select at least one product to continue.")
        if step >= STEP_GENERATION:
            missing = self.missing_placements()
            if missing:
                names = "\n".join(f"  - {self._product_label(pid)}" for pid in missing)
                raise StepValidationError(
                    f"Please select at least one print area for the following products:\n{names}",
                    missing=missing,
                )

    async def navigate_to_step(self, step: int) -> bool:
        """Move to a step. Out-of-range steps are ignored; failed guards raise StepValidationError."""
        if not isinstance(step, int) or step < FIRST_STEP or step > LAST_STEP:
            return False

        self.validate_transition(step)

        previous = self.state.current_step
        if step > previous:
            self.state.completed_steps.add(step - 1)
        self.state.current_step = step
        self.save()
        logger.info("Step %d -> %d (%s)", previous, step, STEP_NAMES.get(step, step))
        self.events.emit("step_changed", previous=previous, step=step)

        await self._run_initializer(step)
        return True

    async def _run_initializer(self, step: int):
        initializer = self._initializers.get(step)
        if initializer is not None:
            await initializer()

    # ------------------------------------------------------------------
    # Selections
    # ------------------------------------------------------------------

    def register_catalog(self, products: Iterable[CatalogProduct]):
        for product in products:
            self.catalog[str(product.id)] = product

    def select_products(self, product_ids: Iterable):
        self.state.selected_products = {str(pid) for pid in product_ids}
        # Drop placements for products no longer selected
        for pid in list(self.state.product_designs):
            if pid not in self.state.selected_products:
                del self.state.product_designs[pid]
        self._changed(selected=len(self.state.selected_products))

    def toggle_product(self, product_id, selected: bool):
        pid = str(product_id)
        if selected:
            self.state.selected_products.add(pid)
        else:
            self.state.selected_products.discard(pid)
            self.state.product_designs.pop(pid, None)
        self._changed(selected=len(self.state.selected_products))

    def set_placements(self, product_id, placements: List[dict]) -> List[PlacementSelection]:
        """Record the chosen print areas for one product (replaces previous picks)."""
        pid = str(product_id)
        catalog = self.catalog.get(pid)
        default_technique = catalog.default_technique if catalog else None

        selections = []
        seen = set()
        for p in placements:
            selection = PlacementSelection.create(
                position=p.get("position"),
                width=p.get("width"),
                height=p.get("height"),
                technique=p.get("technique"),
                catalog_default=default_technique,
                dpi=p.get("dpi"),
            )
            if selection.position in seen:
                continue
            seen.add(selection.position)
            selections.append(selection)

        if selections:
            self.state.product_designs[pid] = selections
        else:
            self.state.product_designs.pop(pid, None)
        self._changed(product_id=pid, placements=len(selections))
        return selections

    def set_store(self, store_id: Optional[str], selling_region: Optional[str] = None):
        self.state.store_id = store_id or None
        if selling_region:
            self.state.selling_region = selling_region
        self._changed(store_id=self.state.store_id)

    def reset(self):
        """Start over at product selection."""
        self.state = SessionState()
        self.store.clear()
        self.save()
        logger.info("Session reset")
        self.events.emit("step_changed", previous=None, step=self.state.current_step)
        self.events.emit("state_changed", step=self.state.current_step, reset=True)

    def _product_label(self, product_id: str) -> str:
        product = self.catalog.get(product_id)
        if product and product.title:
            return product.title
        return f"Product ID {product_id}"

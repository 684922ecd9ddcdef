"""
controller.py — Cell Interaction Controller

View-model around the allocation engine for one displayed week.

Expanded cell:
  A single optional ShiftSlot. Opening a cell replaces whatever was open;
  close / validate / outside click clear it. Closing never cancels commits
  already in flight.

Actions (increment / decrement one identity in one cell):
  1. refuse if (slot, identity) is already loading
  2. check against the cell as currently loaded
       → CapacityExceeded / LeaveConflict, nothing committed
  3. loading[(slot, identity)] = True
  4. under the cell lock: re-fetch the week, re-check the same rule on the
     fresh cell (→ StaleStateConflict), commit through the store (+1 / -1)
       → PersistenceFailure on error
  5. actions on other identities of the same cell wait for the lock, so
     each re-check sees the previous commit
  6. re-fetch the week (success or failure)
  7. keep loading for hold_seconds more, then clear it

No cell is modified locally ahead of the commit; what is shown after an
action is whatever the store returns on the re-fetch.
"""

import asyncio
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from rad_planning.allocation import (
    build_cells,
    capacity_label,
    cell_for,
    check_increment,
    find,
    menu_options,
    refusal_reason,
)
from rad_planning.exception_overlay import DisplayToken, ExceptionOverlay
from rad_planning.exceptions import PersistenceFailure, StaleStateConflict
from rad_planning.models import Cell, Doctor, LeaveSet, Machine, ShiftSlot, sort_doctors
from rad_planning.schedule_config import LOADING_HOLD_SECONDS
from rad_planning.weeks import dates_by_day, get_week_dates, leave_set_for_week

logger = logging.getLogger(__name__)


class CellInteractionController:

    def __init__(
        self,
        store,
        doctors: List[Doctor],
        machines: List[Machine],
        week_dates: List[date],
        week_id: Optional[str],
        leave_set: Optional[LeaveSet] = None,
        hold_seconds: float = LOADING_HOLD_SECONDS,
    ):
        self.store = store
        self.doctors = sort_doctors(doctors)
        self.doctors_by_id: Dict[str, Doctor] = {d.id: d for d in self.doctors}
        self.machines = list(machines)
        self.week_dates = list(week_dates)
        self.dates = dates_by_day(self.week_dates)
        self.week_id = week_id
        self.leave_set = leave_set or {}
        self.hold_seconds = hold_seconds

        self.expanded_cell: Optional[ShiftSlot] = None
        self.cells: Dict[ShiftSlot, Cell] = {}
        self.loading: Dict[Tuple[ShiftSlot, str], bool] = {}
        self.overlays: Dict[ShiftSlot, ExceptionOverlay] = {}
        self._cell_locks: Dict[ShiftSlot, asyncio.Lock] = {}
        self._locks_loop: Optional[asyncio.AbstractEventLoop] = None

    @classmethod
    def load_week(cls, store, year: int, week: int, **kwargs) -> "CellInteractionController":
        """Build a controller for one week from the store's reference data."""
        week_dates = get_week_dates(year, week)
        try:
            doctors = store.fetch_active_doctors()
            machines = store.fetch_active_machines()
            leave = store.fetch_leave_set(year)
            week_id = store.get_week_id(year, week)
        except PersistenceFailure as e:
            logger.error(f"Error loading reference data for {year}-W{week}: {e}")
            doctors, machines, leave, week_id = [], [], {}, None
        controller = cls(
            store,
            doctors=doctors,
            machines=machines,
            week_dates=week_dates,
            week_id=week_id,
            leave_set=leave_set_for_week(leave, week_dates),
            **kwargs,
        )
        controller.refresh()
        return controller

    # -----------------------------------------------------------------------
    # Expanded cell
    # -----------------------------------------------------------------------

    def open_cell(self, slot: ShiftSlot) -> None:
        if self.expanded_cell is not None and self.expanded_cell != slot:
            logger.debug(f"Collapsing {self.expanded_cell}")
        logger.debug(f"Opening allocation menu for {slot}")
        self.expanded_cell = slot

    def close(self) -> None:
        self.expanded_cell = None

    def validate(self) -> None:
        logger.debug("Allocation menu validated")
        self.expanded_cell = None

    def outside_click(self) -> None:
        self.expanded_cell = None

    def is_expanded(self, slot: ShiftSlot) -> bool:
        return self.expanded_cell == slot

    # -----------------------------------------------------------------------
    # State
    # -----------------------------------------------------------------------

    def _fetch_cells(self) -> Dict[ShiftSlot, Cell]:
        if self.week_id is None or not self.week_dates:
            logger.warning("No week id for the selected week; grid is empty")
            return {}
        rows = self.store.fetch_shift_assignments(
            self.week_id, self.week_dates[0], self.week_dates[-1]
        )
        return build_cells(rows)

    def refresh(self) -> Dict[ShiftSlot, Cell]:
        """Re-fetch the week. A failed read shows an empty grid."""
        try:
            self.cells = self._fetch_cells()
        except PersistenceFailure as e:
            logger.error(f"Error fetching assignments: {e}")
            self.cells = {}
        return self.cells

    def cell(self, slot: ShiftSlot) -> Cell:
        return cell_for(self.cells, slot)

    def is_loading(self, slot: ShiftSlot, identity: str) -> bool:
        return self.loading.get((slot, identity), False)

    def menu(self, slot: ShiftSlot) -> Dict[str, Any]:
        """Allocation menu state for the expanded cell."""
        cell = self.cell(slot)
        options = menu_options(cell, self.doctors, self.leave_set)
        for option in options:
            option["loading"] = self.is_loading(slot, option["identity"])
        return {"slot": slot, "options": options, "status": capacity_label(cell)}

    def overlay(self, slot: ShiftSlot) -> ExceptionOverlay:
        """Exception hours for the cell at slot, loaded on first use."""
        if slot not in self.overlays:
            overlay = ExceptionOverlay(self.store)
            overlay.load_for_cell(self.cell(slot))
            self.overlays[slot] = overlay
        return self.overlays[slot]

    def display_tokens(self, slot: ShiftSlot) -> List[DisplayToken]:
        return self.overlay(slot).annotate(self.cell(slot), self.doctors_by_id)

    # -----------------------------------------------------------------------
    # Actions
    # -----------------------------------------------------------------------

    async def increment(self, slot: ShiftSlot, identity: str) -> bool:
        """
        Add one share for identity. Returns False when refused because the
        identity is already busy; raises CapacityExceeded / LeaveConflict
        before any commit when the loaded cell forbids it.
        """
        if self.is_loading(slot, identity):
            logger.warning(f"{identity} is busy in {slot}; increment ignored")
            return False
        check_increment(self.cell(slot), identity, self.leave_set, self.doctors_by_id)
        return await self._commit(slot, identity, 1)

    async def decrement(self, slot: ShiftSlot, identity: str) -> bool:
        """Remove one share for identity. Absent or busy identities return False."""
        if self.is_loading(slot, identity):
            logger.warning(f"{identity} is busy in {slot}; decrement ignored")
            return False
        if find(self.cell(slot), identity) is None:
            logger.info(f"{identity} is not in {slot}; decrement ignored")
            return False
        return await self._commit(slot, identity, -1)

    def _still_allowed(self, cell: Cell, identity: str, delta: int) -> bool:
        if delta > 0:
            return refusal_reason(cell, identity, self.leave_set, self.doctors_by_id) is None
        return find(cell, identity) is not None

    def _cell_lock(self, slot: ShiftSlot) -> asyncio.Lock:
        # asyncio locks belong to one event loop
        loop = asyncio.get_running_loop()
        if loop is not self._locks_loop:
            self._cell_locks = {}
            self._locks_loop = loop
        if slot not in self._cell_locks:
            self._cell_locks[slot] = asyncio.Lock()
        return self._cell_locks[slot]

    async def _commit(self, slot: ShiftSlot, identity: str, delta: int) -> bool:
        key = (slot, identity)
        self.loading[key] = True
        try:
            # re-check and commit as one step per cell
            async with self._cell_lock(slot):
                fresh = await asyncio.to_thread(self._fetch_cells)
                if not self._still_allowed(cell_for(fresh, slot), identity, delta):
                    self.cells = fresh
                    raise StaleStateConflict(
                        f"{slot} changed before {identity} {delta:+d} could be committed",
                        slot=slot, identity=identity,
                    )
                await asyncio.to_thread(
                    self.store.commit_assignment,
                    slot.day, slot.slot, slot.machine_id, identity, delta, self.dates.get(slot.day),
                )
            return True
        finally:
            await asyncio.to_thread(self.refresh)
            self.overlays.pop(slot, None)
            await asyncio.sleep(self.hold_seconds)
            self.loading.pop(key, None)

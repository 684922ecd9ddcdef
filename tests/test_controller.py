"""
tests/test_controller.py — Cell Interaction Controller

  1. Expanded cell is a single optional slot
  2. Increment / decrement commit through the store and re-fetch
  3. Loading flags: set during the commit, held afterwards, busy refusal
  4. Stale state: the re-check before commit refuses a cell that changed
  5. Failures: commit error clears loading, read error shows an empty grid

Run with:
  python -m pytest tests/test_controller.py -v
"""

import asyncio
import sys
import threading
import time
from datetime import date
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from rad_planning.allocation import total_shares
from rad_planning.controller import CellInteractionController
from rad_planning.exceptions import (
    CapacityExceeded,
    LeaveConflict,
    PersistenceFailure,
    StaleStateConflict,
)
from rad_planning.memory_store import InMemoryPlanningStore
from rad_planning.models import Doctor, Machine, PersistedAssignment, ShiftSlot
from rad_planning.schedule_config import LABEL_SINGLE_OCCUPANT, MAINT_TOKEN

MONDAY = date(2025, 6, 2)     # ISO 2025-W23
HOLD = 0.05


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

DOCTORS = [
    Doctor(id="d-a", initials="AB", type="associé"),
    Doctor(id="d-b", initials="CD", type="remplaçant"),
    Doctor(id="d-c", initials="EF", type="associé"),
    Doctor(id="d-d", initials="GH", type="associé"),
    Doctor(id="d-e", initials="IJ", type="associé"),
]
MACHINES = [Machine(id="m1", name="IRM 1"), Machine(id="m2", name="Scanner")]


def row(doctor_id, day=MONDAY, shift_type="Matin", machine_id="m1", **kwargs):
    return PersistedAssignment(
        doctor_id=doctor_id, date=day, shift_type=shift_type, machine_id=machine_id, **kwargs
    )


def make_store(rows=(), leave=None, cls=InMemoryPlanningStore):
    return cls(
        doctors=DOCTORS,
        machines=MACHINES,
        leave=leave or {},
        rows=list(rows),
        weeks={(2025, 23): True},
    )


def load(store, hold=HOLD):
    return CellInteractionController.load_week(store, 2025, 23, hold_seconds=hold)


@pytest.fixture
def slot():
    return ShiftSlot(day="Lundi", slot="Matin", machine_id="m1")


def shares(controller, slot):
    return {a.identity: a.share for a in controller.cell(slot).assignments}


class RecordingStore(InMemoryPlanningStore):
    """Records the controller's loading flag seen while committing."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.controller = None
        self.seen_loading = []
        self.committed = threading.Event()

    def commit_assignment(self, day, slot, machine_id, identity, delta, cell_date=None):
        key = ShiftSlot(day=day, slot=slot, machine_id=machine_id)
        self.seen_loading.append(self.controller.is_loading(key, identity))
        result = super().commit_assignment(day, slot, machine_id, identity, delta, cell_date)
        self.committed.set()
        return result


class ChangingStore(InMemoryPlanningStore):
    """Another writer fills Monday morning on m1 right after the first read."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fetches = 0
        self.commits = 0

    def fetch_shift_assignments(self, week_id, start_date, end_date):
        self.fetches += 1
        if self.fetches == 2:
            for doctor_id in ("d-b", "d-c", "d-d", "d-e"):
                self.add_row(row(doctor_id))
        return super().fetch_shift_assignments(week_id, start_date, end_date)

    def commit_assignment(self, *args, **kwargs):
        self.commits += 1
        return super().commit_assignment(*args, **kwargs)


class FailingCommitStore(InMemoryPlanningStore):
    def commit_assignment(self, *args, **kwargs):
        raise PersistenceFailure("connection reset")


class FailingReadStore(InMemoryPlanningStore):
    def fetch_shift_assignments(self, week_id, start_date, end_date):
        raise PersistenceFailure("timeout")


# ---------------------------------------------------------------------------
# Loading a week
# ---------------------------------------------------------------------------

class TestLoadWeek:

    def test_builds_cells_from_rows(self, slot):
        controller = load(make_store([row("d-a"), row("d-a"), row("d-b")]))
        assert shares(controller, slot) == {"d-a": 2, "d-b": 1}
        assert controller.week_id == "2025-W23"
        assert controller.week_dates[0] == MONDAY
        assert len(controller.week_dates) == 6

    def test_leave_rekeyed_by_day(self):
        controller = load(make_store(leave={"2025-06-03": {"AB"}, "2025-07-01": {"CD"}}))
        assert controller.leave_set["Mardi"] == {"AB"}
        assert controller.leave_set["Lundi"] == set()
        assert "CD" not in set().union(*controller.leave_set.values())

    def test_unknown_week_shows_empty_grid(self):
        store = make_store([row("d-a")])
        controller = CellInteractionController.load_week(store, 2025, 30, hold_seconds=HOLD)
        assert controller.week_id is None
        assert controller.cells == {}

    def test_read_failure_shows_empty_grid(self):
        controller = load(make_store([row("d-a")], cls=FailingReadStore))
        assert controller.cells == {}
        assert controller.refresh() == {}

    def test_doctors_sorted_associes_first(self):
        controller = load(make_store())
        types = [d.type for d in controller.doctors]
        assert types.index("remplaçant") > max(i for i, t in enumerate(types) if t == "associé")


# ---------------------------------------------------------------------------
# Expanded cell
# ---------------------------------------------------------------------------

class TestExpandedCell:

    def test_opening_replaces_previous(self, slot):
        controller = load(make_store())
        other = ShiftSlot(day="Mardi", slot="Soir", machine_id="m2")
        controller.open_cell(slot)
        controller.open_cell(other)
        assert controller.expanded_cell == other
        assert not controller.is_expanded(slot)

    @pytest.mark.parametrize("action", ["close", "validate", "outside_click"])
    def test_every_exit_clears(self, slot, action):
        controller = load(make_store())
        controller.open_cell(slot)
        getattr(controller, action)()
        assert controller.expanded_cell is None

    def test_menu_status_and_options(self, slot):
        controller = load(make_store([row("d-a")]))
        menu = controller.menu(slot)
        assert menu["status"] == LABEL_SINGLE_OCCUPANT
        by_identity = {o["identity"]: o for o in menu["options"]}
        assert by_identity["d-a"]["assigned"]
        assert not by_identity["d-a"]["can_increment"]
        assert by_identity["d-b"]["can_increment"]
        assert MAINT_TOKEN in by_identity
        assert not any(o["loading"] for o in menu["options"])


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

class TestActions:

    def test_increment_commits_and_refetches(self, slot):
        store = make_store()
        controller = load(store)
        assert asyncio.run(controller.increment(slot, "d-a")) is True
        assert shares(controller, slot) == {"d-a": 1}
        assert len(store.rows) == 1
        assert store.rows[0].date == MONDAY

    def test_increment_second_identity_then_grow(self, slot):
        controller = load(make_store([row("d-a")]))
        asyncio.run(controller.increment(slot, "d-b"))
        asyncio.run(controller.increment(slot, "d-a"))
        assert shares(controller, slot) == {"d-a": 2, "d-b": 1}

    def test_capacity_refused_before_commit(self, slot):
        store = make_store([row("d-a"), row("d-a"), row("d-b"), row("d-b")])
        controller = load(store)
        with pytest.raises(CapacityExceeded):
            asyncio.run(controller.increment(slot, "d-c"))
        assert len(store.rows) == 4
        assert controller.loading == {}

    def test_single_occupant_refused(self, slot):
        controller = load(make_store([row("d-a")]))
        with pytest.raises(CapacityExceeded):
            asyncio.run(controller.increment(slot, "d-a"))

    def test_leave_refused(self, slot):
        controller = load(make_store(leave={"2025-06-02": {"AB"}}))
        with pytest.raises(LeaveConflict):
            asyncio.run(controller.increment(slot, "d-a"))
        assert controller.cell(slot).is_empty

    def test_decrement_on_leave_allowed(self, slot):
        store = make_store([row("d-a"), row("d-b")], leave={"2025-06-02": {"AB"}})
        controller = load(store)
        assert asyncio.run(controller.decrement(slot, "d-a")) is True
        assert shares(controller, slot) == {"d-b": 1}

    def test_decrement_absent_returns_false(self, slot):
        store = make_store([row("d-a")])
        controller = load(store)
        assert asyncio.run(controller.decrement(slot, "d-b")) is False
        assert len(store.rows) == 1

    def test_decrement_last_share_empties_cell(self, slot):
        controller = load(make_store([row("d-a")]))
        asyncio.run(controller.decrement(slot, "d-a"))
        assert controller.cell(slot).is_empty

    def test_marker_commit(self):
        saturday = ShiftSlot(day="Samedi", slot="Matin", machine_id="m2")
        store = make_store()
        controller = load(store)
        asyncio.run(controller.increment(saturday, MAINT_TOKEN))
        assert store.rows[0].doctor_id == MAINT_TOKEN
        assert store.rows[0].date == date(2025, 6, 7)


# ---------------------------------------------------------------------------
# Loading flags
# ---------------------------------------------------------------------------

class TestLoading:

    def test_loading_during_commit_and_cleared_after(self, slot):
        store = make_store(cls=RecordingStore)
        controller = load(store)
        store.controller = controller
        asyncio.run(controller.increment(slot, "d-a"))
        assert store.seen_loading == [True]
        assert not controller.is_loading(slot, "d-a")

    def test_loading_held_after_commit(self, slot):
        controller = load(make_store(), hold=0.2)
        start = time.monotonic()
        asyncio.run(controller.increment(slot, "d-a"))
        assert time.monotonic() - start >= 0.19

    def test_flag_visible_after_commit_returns(self, slot):
        store = make_store(cls=RecordingStore)
        controller = load(store, hold=0.3)
        store.controller = controller

        async def scenario():
            task = asyncio.create_task(controller.increment(slot, "d-a"))
            await asyncio.to_thread(store.committed.wait, 2)
            held = controller.is_loading(slot, "d-a")
            await task
            return held

        assert asyncio.run(scenario()) is True
        assert controller.loading == {}

    def test_busy_identity_is_refused(self, slot):
        store = make_store()
        controller = load(store, hold=0.1)

        async def scenario():
            first = asyncio.create_task(controller.increment(slot, "d-a"))
            await asyncio.sleep(0)
            assert controller.is_loading(slot, "d-a")
            second = await controller.decrement(slot, "d-a")
            return await first, second

        assert asyncio.run(scenario()) == (True, False)
        assert len(store.rows) == 1

    def test_other_identity_not_blocked(self, slot):
        store = make_store([row("d-a")])
        controller = load(store, hold=0.1)

        async def scenario():
            first = asyncio.create_task(controller.increment(slot, "d-b"))
            await asyncio.sleep(0)
            loading_a = controller.is_loading(slot, "d-a")
            await first
            return loading_a

        assert asyncio.run(scenario()) is False

    def test_menu_reports_loading(self, slot):
        controller = load(make_store(), hold=0.1)

        async def scenario():
            task = asyncio.create_task(controller.increment(slot, "d-a"))
            await asyncio.sleep(0)
            options = {o["identity"]: o for o in controller.menu(slot)["options"]}
            await task
            return options

        options = asyncio.run(scenario())
        assert options["d-a"]["loading"] is True
        assert options["d-b"]["loading"] is False


# ---------------------------------------------------------------------------
# Stale state and failures
# ---------------------------------------------------------------------------

class TestConflictsAndFailures:

    def test_concurrent_increments_keep_capacity(self, slot):
        store = make_store([row("d-a"), row("d-b"), row("d-c")])
        controller = load(store)

        async def scenario():
            return await asyncio.gather(
                controller.increment(slot, "d-d"),
                controller.increment(slot, "d-a"),
                return_exceptions=True,
            )

        first, second = asyncio.run(scenario())
        assert first is True
        assert isinstance(second, StaleStateConflict)
        assert second.identity == "d-a"
        assert total_shares(controller.cell(slot)) == 4
        assert len(store.rows) == 4
        assert shares(controller, slot) == {"d-a": 1, "d-b": 1, "d-c": 1, "d-d": 1}
        assert controller.loading == {}

    def test_concurrent_actions_on_other_cells_both_commit(self, slot):
        other = ShiftSlot(day="Lundi", slot="Matin", machine_id="m2")
        store = make_store()
        controller = load(store)

        async def scenario():
            return await asyncio.gather(
                controller.increment(slot, "d-a"),
                controller.increment(other, "d-a"),
            )

        assert asyncio.run(scenario()) == [True, True]
        assert len(store.rows) == 2

    def test_stale_cell_is_refused(self, slot):
        store = make_store(cls=ChangingStore)
        controller = load(store)
        assert controller.cell(slot).is_empty
        with pytest.raises(StaleStateConflict) as excinfo:
            asyncio.run(controller.increment(slot, "d-a"))
        assert excinfo.value.slot == slot
        assert excinfo.value.identity == "d-a"
        assert store.commits == 0
        assert total_shares(controller.cell(slot)) == 4
        assert controller.loading == {}

    def test_commit_failure_clears_loading(self, slot):
        controller = load(make_store([row("d-a")], cls=FailingCommitStore))
        with pytest.raises(PersistenceFailure):
            asyncio.run(controller.increment(slot, "d-b"))
        assert controller.loading == {}
        assert shares(controller, slot) == {"d-a": 1}

    def test_state_after_commit_comes_from_store(self, slot):
        store = make_store()
        controller = load(store)
        asyncio.run(controller.increment(slot, "d-a"))
        store.add_row(row("d-b"))
        controller.refresh()
        assert shares(controller, slot) == {"d-a": 1, "d-b": 1}


# ---------------------------------------------------------------------------
# Exception overlay through the controller
# ---------------------------------------------------------------------------

class TestDisplayTokens:

    def test_tokens_carry_exception_hours(self, slot):
        store = make_store([row("d-a", exception_horaire=2.0), row("d-b")])
        controller = load(store)
        tokens = {t.identity: t for t in controller.display_tokens(slot)}
        assert tokens["d-a"].text == "AB*"
        assert tokens["d-a"].exception_hours == 2.0
        assert tokens["d-b"].text == "CD"
        assert tokens["d-a"].width_pct == pytest.approx(50.0)

    def test_overlay_reloaded_after_commit(self, slot):
        store = make_store([row("d-a")])
        controller = load(store)
        assert controller.overlay(slot).hours == {"d-a": None}
        asyncio.run(controller.increment(slot, "d-b"))
        assert slot not in controller.overlays
        assert controller.overlay(slot).hours == {"d-a": None, "d-b": None}

"""
allocation.py — Shift-Cell Allocation Engine

Pure functions over one cell (day, slot, machine). Nothing here touches the
store; every operation takes a Cell and returns a value or a new Cell.

Capacity rules:
  - sum(share)          ≤ MAX_SHARES_PER_CELL     (4)
  - distinct identities ≤ MAX_IDENTITIES_PER_CELL (4)
  - a lone identity holds exactly one share; an identity already in the
    cell may only grow once a second identity is present
  - MAINT / NO_DOCTOR count like doctors toward both limits

Leave:
  A doctor whose initials are in leave_set[day] cannot be added or grown on
  that day. Decrement ignores leave.

Algorithm (can_increment):
  on leave                                   → refuse
  absent  and total < 4 and distinct < 4     → allow (share = 1)
  present and distinct > 1 and total < 4     → allow (share + 1)
  otherwise                                  → refuse
"""

import logging
from dataclasses import replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from rad_planning.exceptions import CapacityExceeded, LeaveConflict
from rad_planning.models import (
    Cell,
    Doctor,
    DoctorAssignment,
    LeaveSet,
    Machine,
    PersistedAssignment,
    ShiftSlot,
    is_marker,
)
from rad_planning.schedule_config import (
    DAYS,
    LABEL_FULL,
    LABEL_SINGLE_OCCUPANT,
    LABEL_TOTAL,
    MARKER_TOKENS,
    MAX_IDENTITIES_PER_CELL,
    MAX_SHARES_PER_CELL,
    PCT_NORMALIZATION,
    SHIFTS_BY_DAY,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Counting
# ---------------------------------------------------------------------------

def total_shares(cell: Cell) -> int:
    return sum(a.share for a in cell.assignments)


def distinct_identities(cell: Cell) -> int:
    return len({a.identity for a in cell.assignments})


def find(cell: Cell, identity: str) -> Optional[DoctorAssignment]:
    for a in cell.assignments:
        if a.identity == identity:
            return a
    return None


def is_full(cell: Cell) -> bool:
    return (
        total_shares(cell) >= MAX_SHARES_PER_CELL
        or distinct_identities(cell) >= MAX_IDENTITIES_PER_CELL
    )


def can_add_more(cell: Cell) -> bool:
    """True when the cell still offers the '+' path to a new identity."""
    return not is_full(cell)


# ---------------------------------------------------------------------------
# Leave
# ---------------------------------------------------------------------------

def is_on_leave(
    identity: str,
    day: str,
    leave_set: Optional[LeaveSet],
    doctors_by_id: Optional[Mapping[str, Doctor]] = None,
) -> bool:
    """
    Leave sets hold initials; identity is a doctor id. When the doctor is not
    in doctors_by_id the identity itself is compared against the set.
    Markers are never on leave.
    """
    if not leave_set or is_marker(identity):
        return False
    on_leave = leave_set.get(day) or set()
    doctor = (doctors_by_id or {}).get(identity)
    initials = doctor.initials if doctor is not None else identity
    return initials in on_leave


# ---------------------------------------------------------------------------
# Increment / decrement
# ---------------------------------------------------------------------------

def refusal_reason(
    cell: Cell,
    identity: str,
    leave_set: Optional[LeaveSet] = None,
    doctors_by_id: Optional[Mapping[str, Doctor]] = None,
) -> Optional[str]:
    """Return why an increment would be refused, or None if it is allowed."""
    if is_on_leave(identity, cell.slot.day, leave_set, doctors_by_id):
        return "leave"
    total = total_shares(cell)
    distinct = distinct_identities(cell)
    present = find(cell, identity) is not None
    if not present:
        if total < MAX_SHARES_PER_CELL and distinct < MAX_IDENTITIES_PER_CELL:
            return None
        return "full"
    if distinct <= 1:
        return "single_occupant"
    if total < MAX_SHARES_PER_CELL:
        return None
    return "full"


def can_increment(
    cell: Cell,
    identity: str,
    leave_set: Optional[LeaveSet] = None,
    doctors_by_id: Optional[Mapping[str, Doctor]] = None,
) -> bool:
    return refusal_reason(cell, identity, leave_set, doctors_by_id) is None


def check_increment(
    cell: Cell,
    identity: str,
    leave_set: Optional[LeaveSet] = None,
    doctors_by_id: Optional[Mapping[str, Doctor]] = None,
) -> None:
    """Raise LeaveConflict / CapacityExceeded when the increment is refused."""
    reason = refusal_reason(cell, identity, leave_set, doctors_by_id)
    if reason is None:
        return
    if reason == "leave":
        raise LeaveConflict(
            f"{identity} is on leave on {cell.slot.day}", slot=cell.slot, identity=identity
        )
    if reason == "single_occupant":
        raise CapacityExceeded(
            f"{identity} is the only occupant of {cell.slot}; max 1 share",
            slot=cell.slot, identity=identity,
        )
    raise CapacityExceeded(
        f"{cell.slot} is full: {total_shares(cell)}/{MAX_SHARES_PER_CELL} shares, "
        f"{distinct_identities(cell)}/{MAX_IDENTITIES_PER_CELL} occupants",
        slot=cell.slot, identity=identity,
    )


def increment(
    cell: Cell,
    identity: str,
    leave_set: Optional[LeaveSet] = None,
    doctors_by_id: Optional[Mapping[str, Doctor]] = None,
) -> Cell:
    """Add one share for identity (creating it at share 1 if absent)."""
    check_increment(cell, identity, leave_set, doctors_by_id)
    current = find(cell, identity)
    if current is None:
        return replace(cell, assignments=cell.assignments + (DoctorAssignment(identity=identity),))
    grown = replace(current, share=current.share + 1)
    return replace(
        cell,
        assignments=tuple(grown if a.identity == identity else a for a in cell.assignments),
    )


def decrement(cell: Cell, identity: str) -> Cell:
    """
    Remove one share for identity; at share 1 the identity leaves the cell.
    An absent identity is a no-op and the same cell is returned.
    """
    current = find(cell, identity)
    if current is None:
        logger.debug(f"Decrement of absent {identity} in {cell.slot} ignored")
        return cell
    if current.share > 1:
        shrunk = replace(current, share=current.share - 1)
        assignments = tuple(shrunk if a.identity == identity else a for a in cell.assignments)
    else:
        assignments = tuple(a for a in cell.assignments if a.identity != identity)
    return replace(cell, assignments=assignments)


# ---------------------------------------------------------------------------
# Display values
# ---------------------------------------------------------------------------

def width_share(cell: Cell, identity: str) -> float:
    """
    Percentage of the cell width drawn for identity: share / total * 100.
    An empty cell (total 0) returns 100 for any identity, present or not,
    so the first occupant is drawn full width before the re-fetch.
    """
    total = total_shares(cell)
    if total <= 0:
        return 100.0
    current = find(cell, identity)
    share = current.share if current is not None else 0
    return share / total * 100


def normalize_mutualisation_pct(pct: Any) -> Any:
    """33/34 → 33, 66/67 → 66; everything else unchanged."""
    return PCT_NORMALIZATION.get(pct, pct)


def capacity_label(cell: Cell) -> str:
    total = total_shares(cell)
    if distinct_identities(cell) == 1:
        return LABEL_SINGLE_OCCUPANT
    if total < MAX_SHARES_PER_CELL:
        return LABEL_TOTAL.format(total=total, max=MAX_SHARES_PER_CELL)
    return LABEL_FULL.format(max=MAX_SHARES_PER_CELL)


class AssignmentClass(Enum):
    COMPLETE = "complete"
    MUTUALISED = "mutualised"
    DEFERRED = "deferred"
    MUTUALISED_DEFERRED = "mutualised-deferred"


def classify_assignment(persisted: PersistedAssignment) -> AssignmentClass:
    if persisted.mutualise and persisted.en_differe:
        return AssignmentClass.MUTUALISED_DEFERRED
    if persisted.mutualise:
        return AssignmentClass.MUTUALISED
    if persisted.en_differe:
        return AssignmentClass.DEFERRED
    return AssignmentClass.COMPLETE


# ---------------------------------------------------------------------------
# Allocation menu
# ---------------------------------------------------------------------------

def menu_options(
    cell: Cell,
    doctors: Iterable[Doctor],
    leave_set: Optional[LeaveSet] = None,
) -> List[Dict[str, Any]]:
    """
    One entry per selectable identity (every doctor, then MAINT and NO_DOCTOR):
      identity, assigned, share, can_increment, can_decrement, on_leave
    """
    doctors = list(doctors)
    doctors_by_id = {d.id: d for d in doctors}
    options: List[Dict[str, Any]] = []
    for identity in [d.id for d in doctors] + list(MARKER_TOKENS):
        current = find(cell, identity)
        options.append({
            "identity":      identity,
            "assigned":      current is not None,
            "share":         current.share if current is not None else 0,
            "can_increment": can_increment(cell, identity, leave_set, doctors_by_id),
            "can_decrement": current is not None,
            "on_leave":      is_on_leave(identity, cell.slot.day, leave_set, doctors_by_id),
        })
    return options


# ---------------------------------------------------------------------------
# Reconstruction from persisted rows
# ---------------------------------------------------------------------------

def build_cells(rows: Iterable[PersistedAssignment]) -> Dict[ShiftSlot, Cell]:
    """
    Rebuild cells from store rows. Each row is one share for its identity
    (doctor id, or the MAINT / NO_DOCTOR token stored in doctor_id); flags
    are OR-ed across the rows of one identity. Identity order follows the
    first row seen.
    """
    grouped: Dict[ShiftSlot, Dict[str, DoctorAssignment]] = {}
    shift_ids: Dict[ShiftSlot, Optional[str]] = {}
    for row in rows:
        try:
            key = ShiftSlot(day=row.day, slot=row.slot, machine_id=row.machine_id)
        except ValueError as e:
            logger.warning(f"Skipping assignment outside the week grid: {e}")
            continue
        per_identity = grouped.setdefault(key, {})
        if shift_ids.get(key) is None:
            shift_ids[key] = row.shift_id
        existing = per_identity.get(row.doctor_id)
        if existing is None:
            per_identity[row.doctor_id] = DoctorAssignment(
                identity=row.doctor_id,
                share=1,
                teleradiologie=row.teleradiologie,
                differe=row.en_differe,
                plus_differe=row.lecture_differee,
            )
        else:
            per_identity[row.doctor_id] = replace(
                existing,
                share=existing.share + 1,
                teleradiologie=existing.teleradiologie or row.teleradiologie,
                differe=existing.differe or row.en_differe,
                plus_differe=existing.plus_differe or row.lecture_differee,
            )

    cells = {
        key: Cell(slot=key, assignments=tuple(per_identity.values()), shift_id=shift_ids.get(key))
        for key, per_identity in grouped.items()
    }
    logger.debug(f"Rebuilt {len(cells)} cells")
    return cells


def cell_for(cells: Mapping[ShiftSlot, Cell], slot: ShiftSlot) -> Cell:
    """The cell at slot, or an empty one."""
    return cells.get(slot) or Cell(slot=slot)


def empty_grid(machines: Iterable[Machine]) -> List[Tuple[str, str, Machine]]:
    """All (day, slot, machine) positions of the week grid in display order."""
    machines = list(machines)
    return [
        (day, slot, machine)
        for day in DAYS
        for slot in SHIFTS_BY_DAY[day]
        for machine in machines
    ]

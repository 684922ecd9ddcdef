"""
memory_store.py — In-process planning store (dry runs, tests)

Same interface as PlanningClient, backed by lists and dicts. One stored row
is one share: committing +1 appends a row for the identity, -1 removes one.
Shift ids are synthesized as "<date>:<slot>:<machine_id>".
"""

import logging
import threading
from dataclasses import replace
from datetime import date
from typing import Dict, Iterable, List, Optional, Set, Tuple

from rad_planning.exceptions import PersistenceFailure
from rad_planning.models import Doctor, Machine, PersistedAssignment, normalize_slot

logger = logging.getLogger(__name__)


def make_shift_id(cell_date: date, slot: str, machine_id: str) -> str:
    return f"{cell_date.isoformat()}:{slot}:{machine_id}"


class InMemoryPlanningStore:

    def __init__(
        self,
        doctors: Optional[List[Doctor]] = None,
        machines: Optional[List[Machine]] = None,
        leave: Optional[Dict[str, Set[str]]] = None,
        rows: Optional[List[PersistedAssignment]] = None,
        weeks: Optional[Dict[Tuple[int, int], bool]] = None,
    ):
        self.doctors = list(doctors or [])
        self.machines = list(machines or [])
        self.leave = {k: set(v) for k, v in (leave or {}).items()}
        self.weeks: Dict[Tuple[int, int], bool] = dict(weeks or {})   # (year, week) → validated
        self.rows: List[PersistedAssignment] = []
        self._lock = threading.Lock()
        for row in rows or []:
            self.add_row(row)

    def add_row(self, row: PersistedAssignment) -> None:
        if row.shift_id is None:
            row = replace(row, shift_id=make_shift_id(row.date, row.slot, row.machine_id))
        with self._lock:
            self.rows.append(row)

    # -----------------------------------------------------------------------
    # Reference data
    # -----------------------------------------------------------------------

    def fetch_active_doctors(self) -> List[Doctor]:
        return list(self.doctors)

    def fetch_active_machines(self) -> List[Machine]:
        return list(self.machines)

    def fetch_leave_set(self, year: int) -> Dict[str, Set[str]]:
        return {d: set(v) for d, v in self.leave.items() if d.startswith(f"{year}-")}

    def get_week_id(self, year: int, week: int) -> Optional[str]:
        if (year, week) not in self.weeks:
            return None
        return f"{year}-W{week:02d}"

    def get_validated_weeks(self, year: int) -> List[int]:
        return sorted(w for (y, w), ok in self.weeks.items() if y == year and ok)

    # -----------------------------------------------------------------------
    # Assignments
    # -----------------------------------------------------------------------

    def fetch_shift_assignments(
        self,
        week_id: str,
        start_date: date,
        end_date: date,
    ) -> List[PersistedAssignment]:
        with self._lock:
            return [replace(r) for r in self.rows if start_date <= r.date <= end_date]

    def fetch_exception_hours(self, shift_id: str, doctor_ids: Iterable[str]) -> List[Dict]:
        wanted = set(doctor_ids)
        found: Dict[str, Optional[float]] = {}
        with self._lock:
            for r in self.rows:
                if r.shift_id != shift_id or r.doctor_id not in wanted:
                    continue
                if found.get(r.doctor_id) is None:
                    found[r.doctor_id] = r.exception_horaire
        return [{"doctor_id": d, "exception_horaire": h} for d, h in found.items()]

    def commit_assignment(
        self,
        day: str,
        slot: str,
        machine_id: str,
        identity: str,
        delta: int,
        cell_date: Optional[date] = None,
    ) -> Dict:
        if delta not in (1, -1):
            raise ValueError(f"delta must be +1 or -1, got {delta}")
        if cell_date is None:
            raise PersistenceFailure(f"No date for {day} {slot} {machine_id}")

        slot = normalize_slot(slot)
        shift_id = make_shift_id(cell_date, slot, machine_id)
        with self._lock:
            if delta == 1:
                self.rows.append(PersistedAssignment(
                    doctor_id=identity,
                    date=cell_date,
                    shift_type=slot,
                    machine_id=machine_id,
                    shift_id=shift_id,
                ))
            else:
                matches = [
                    i for i, r in enumerate(self.rows)
                    if r.shift_id == shift_id and r.doctor_id == identity
                ]
                if not matches:
                    raise PersistenceFailure(f"{identity} has no share in {shift_id}")
                del self.rows[matches[-1]]

        logger.info(f"Committed {delta:+d} for {identity} on {shift_id}")
        return {"shift_id": shift_id, "identity": identity, "delta": delta}

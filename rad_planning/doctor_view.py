"""
doctor_view.py — Per-doctor weekly summary

For one doctor and one (date, shift) the stored rows are split by
classify_assignment into four buckets:

  complete             machine name
  mutualised           "name - pct%"
  deferred             "(name)"
  mutualised-deferred  "(name - pct%)"

Percentages are rounded and passed through normalize_mutualisation_pct so
three-way splits always read 33 / 66. TELERADIOLOGIE and "+ différés" are
shown when any row of the shift carries the flag.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from rad_planning.allocation import AssignmentClass, classify_assignment, normalize_mutualisation_pct
from rad_planning.models import Doctor, Machine, PersistedAssignment, day_name, normalize_slot
from rad_planning.schedule_config import SHIFTS_BY_DAY

logger = logging.getLogger(__name__)


@dataclass
class DoctorShiftSummary:
    teleradiologie: bool = False
    lecture_differee: bool = False
    complete: List[str] = field(default_factory=list)
    mutualised: List[Tuple[str, int]] = field(default_factory=list)
    deferred: List[str] = field(default_factory=list)
    mutualised_deferred: List[Tuple[str, int]] = field(default_factory=list)


def _row_slot(row: PersistedAssignment) -> Optional[str]:
    try:
        return row.slot
    except ValueError as e:
        logger.warning(f"Skipping assignment with unknown shift type: {e}")
        return None


def _round_pct(pct: float) -> int:
    return int(math.floor(pct + 0.5))     # half-up, not banker's rounding


def summarize_doctor_shift(
    doctor_id: str,
    day: date,
    shift_type: str,
    rows: Iterable[PersistedAssignment],
    machines: Iterable[Machine],
) -> Optional[DoctorShiftSummary]:
    """
    Summary of doctor_id's machines on (day, shift_type); None if unassigned.
    Stored shift types are matched on their grid slot, as build_cells does.
    """
    slot = normalize_slot(shift_type)
    mine = [
        r for r in rows
        if r.doctor_id == doctor_id and r.date == day and _row_slot(r) == slot
    ]
    if not mine:
        return None

    names: Dict[str, str] = {m.id: m.name for m in machines}
    summary = DoctorShiftSummary(
        teleradiologie=any(r.teleradiologie for r in mine),
        lecture_differee=any(r.lecture_differee for r in mine),
    )
    for r in mine:
        name = names.get(r.machine_id, "")
        pct = normalize_mutualisation_pct(_round_pct(r.pct_mutualisation))
        kind = classify_assignment(r)
        if kind is AssignmentClass.COMPLETE:
            summary.complete.append(name)
        elif kind is AssignmentClass.MUTUALISED:
            summary.mutualised.append((name, pct))
        elif kind is AssignmentClass.DEFERRED:
            summary.deferred.append(name)
        else:
            summary.mutualised_deferred.append((name, pct))
    return summary


def summary_lines(summary: Optional[DoctorShiftSummary]) -> List[str]:
    """Text lines in display order."""
    if summary is None:
        return []
    lines: List[str] = []
    if summary.teleradiologie:
        lines.append("TELERADIOLOGIE")
    lines.extend(summary.complete)
    lines.extend(f"{name} - {pct}%" for name, pct in summary.mutualised)
    if summary.lecture_differee:
        lines.append("+ différés")
    lines.extend(f"({name})" for name in summary.deferred)
    lines.extend(f"({name} - {pct}%)" for name, pct in summary.mutualised_deferred)
    return lines


def build_doctor_week(
    doctors: Iterable[Doctor],
    machines: Iterable[Machine],
    rows: Iterable[PersistedAssignment],
    week_dates: Iterable[date],
) -> Dict[str, Dict[date, Dict[str, Optional[DoctorShiftSummary]]]]:
    """doctor_id → date → slot → summary, for every grid slot of the week."""
    rows = list(rows)
    machines = list(machines)
    week_dates = list(week_dates)
    week: Dict[str, Dict[date, Dict[str, Optional[DoctorShiftSummary]]]] = {}
    for doctor in doctors:
        per_date: Dict[date, Dict[str, Optional[DoctorShiftSummary]]] = {}
        for d in week_dates:
            per_date[d] = {
                slot: summarize_doctor_shift(doctor.id, d, slot, rows, machines)
                for slot in SHIFTS_BY_DAY[day_name(d)]
            }
        week[doctor.id] = per_date
    logger.debug(f"Built weekly view for {len(week)} doctors")
    return week

"""
constraints.py — Cell audit for loaded planning weeks

Hard constraints (must NOT be violated by stored data):
  - SHARE_CAPACITY:       more than 4 shares in one cell
  - IDENTITY_CAPACITY:    more than 4 distinct occupants in one cell
Soft constraints (reported, allowed):
  - SINGLE_OCCUPANT_CAP:  a lone occupant holding more than one share
                          (left behind when the other occupants were removed)
  - LEAVE_CONFLICT:  doctor assigned on a day they are on leave
                     (leave blocks new growth only; nothing is auto-removed)
  - UNKNOWN_DOCTOR:  doctor id missing from the active doctor list

Usage:
  checker = CellConstraintChecker(doctors, leave_set)
  hard, soft = checker.check_all(cells)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from rad_planning.allocation import distinct_identities, total_shares
from rad_planning.models import Cell, Doctor, LeaveSet, is_marker
from rad_planning.schedule_config import MAX_IDENTITIES_PER_CELL, MAX_SHARES_PER_CELL

logger = logging.getLogger(__name__)


class ConstraintSeverity(Enum):
    HARD = "hard"
    SOFT = "soft"


@dataclass
class ConstraintViolation:
    severity: ConstraintSeverity
    constraint_type: str
    description: str
    cell: Optional[str] = None
    identity: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        parts = [f"[{self.severity.value.upper()}] {self.constraint_type}"]
        if self.cell:
            parts.append(f"cell={self.cell}")
        if self.identity:
            parts.append(f"identity={self.identity}")
        parts.append(f"→ {self.description}")
        return " | ".join(parts)


class CellConstraintChecker:
    """Validates rebuilt cells against capacity and leave rules."""

    def __init__(
        self,
        doctors: Iterable[Doctor],
        leave_set: Optional[LeaveSet] = None,
    ):
        self.doctors_by_id: Dict[str, Doctor] = {d.id: d for d in doctors}
        self.leave_set = leave_set or {}

    def _label(self, identity: str) -> str:
        doctor = self.doctors_by_id.get(identity)
        return doctor.initials if doctor else identity

    # -----------------------------------------------------------------------
    # HARD: capacity / SOFT: lone occupant
    # -----------------------------------------------------------------------

    def check_capacity(self, cells: Iterable[Cell]) -> List[ConstraintViolation]:
        violations = []
        for cell in cells:
            total = total_shares(cell)
            distinct = distinct_identities(cell)
            if total > MAX_SHARES_PER_CELL:
                violations.append(ConstraintViolation(
                    severity=ConstraintSeverity.HARD,
                    constraint_type="SHARE_CAPACITY",
                    description=f"{total} shares exceed the limit of {MAX_SHARES_PER_CELL}",
                    cell=str(cell.slot),
                    details={"total": total},
                ))
            if distinct > MAX_IDENTITIES_PER_CELL:
                violations.append(ConstraintViolation(
                    severity=ConstraintSeverity.HARD,
                    constraint_type="IDENTITY_CAPACITY",
                    description=f"{distinct} occupants exceed the limit of {MAX_IDENTITIES_PER_CELL}",
                    cell=str(cell.slot),
                    details={"distinct": distinct},
                ))
        return violations

    def check_single_occupant(self, cells: Iterable[Cell]) -> List[ConstraintViolation]:
        violations = []
        for cell in cells:
            if distinct_identities(cell) != 1:
                continue
            only = cell.assignments[0]
            if only.share > 1:
                violations.append(ConstraintViolation(
                    severity=ConstraintSeverity.SOFT,
                    constraint_type="SINGLE_OCCUPANT_CAP",
                    description=f"{self._label(only.identity)} holds {only.share} shares alone",
                    cell=str(cell.slot),
                    identity=only.identity,
                    details={"share": only.share},
                ))
        return violations

    # -----------------------------------------------------------------------
    # SOFT: leave / reference data
    # -----------------------------------------------------------------------

    def check_leave(self, cells: Iterable[Cell]) -> List[ConstraintViolation]:
        violations = []
        for cell in cells:
            on_leave = self.leave_set.get(cell.slot.day) or set()
            for a in cell.assignments:
                if is_marker(a.identity):
                    continue
                if self._label(a.identity) in on_leave:
                    violations.append(ConstraintViolation(
                        severity=ConstraintSeverity.SOFT,
                        constraint_type="LEAVE_CONFLICT",
                        description=f"{self._label(a.identity)} is on leave but assigned",
                        cell=str(cell.slot),
                        identity=a.identity,
                    ))
        return violations

    def check_unknown_doctors(self, cells: Iterable[Cell]) -> List[ConstraintViolation]:
        violations = []
        for cell in cells:
            for a in cell.assignments:
                if is_marker(a.identity) or a.identity in self.doctors_by_id:
                    continue
                violations.append(ConstraintViolation(
                    severity=ConstraintSeverity.SOFT,
                    constraint_type="UNKNOWN_DOCTOR",
                    description=f"doctor id {a.identity} is not an active doctor",
                    cell=str(cell.slot),
                    identity=a.identity,
                ))
        return violations

    # -----------------------------------------------------------------------
    # Run all checks
    # -----------------------------------------------------------------------

    def check_all(
        self,
        cells: Iterable[Cell],
    ) -> Tuple[List[ConstraintViolation], List[ConstraintViolation]]:
        """
        Run all hard and soft checks.

        Returns:
            (hard_violations, soft_violations)
        """
        cells = list(cells)
        hard: List[ConstraintViolation] = []
        soft: List[ConstraintViolation] = []

        hard.extend(self.check_capacity(cells))
        soft.extend(self.check_single_occupant(cells))
        soft.extend(self.check_leave(cells))
        soft.extend(self.check_unknown_doctors(cells))

        if hard:
            logger.warning(f"{len(hard)} hard violations across {len(cells)} cells")
        return hard, soft

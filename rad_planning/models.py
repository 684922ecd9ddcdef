"""
models.py — Domain model for the shift-cell allocation engine

Reference data (read-only):  Doctor, Machine, leave set
Grid key:                    ShiftSlot  (day, slot, machine_id)
Per-cell state:              DoctorAssignment, Cell
Store record:                PersistedAssignment

A cell is rebuilt from persisted rows on every fetch; cells are immutable
and the allocation engine returns new cells rather than mutating them.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from rad_planning.schedule_config import (
    DAYS,
    DOCTOR_TYPE_ASSOCIE,
    DOCTOR_TYPES,
    DOCTOR_TYPE_OTHER,
    MAINT_TOKEN,
    MARKER_TOKENS,
    NO_DOCTOR_TOKEN,
    SHIFTS_BY_DAY,
    SLOTS,
)

logger = logging.getLogger(__name__)

LeaveSet = Mapping[str, Set[str]]   # day → initials on leave


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Doctor:
    id: str
    initials: str
    color: str = "#ffffff"
    type: str = DOCTOR_TYPE_OTHER

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Doctor":
        return cls(
            id=str(record["id"]),
            initials=str(record.get("initials") or "").strip(),
            color=str(record.get("color") or "#ffffff"),
            type=str(record.get("type") or DOCTOR_TYPE_OTHER).strip(),
        )


@dataclass(frozen=True)
class Machine:
    id: str
    name: str

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Machine":
        return cls(id=str(record["id"]), name=str(record.get("name") or "").strip())


def group_doctors_by_type(doctors: List[Doctor]) -> Dict[str, List[Doctor]]:
    """Group doctors for the allocation menu columns; unknown types go to 'autre'."""
    groups: Dict[str, List[Doctor]] = {t: [] for t in DOCTOR_TYPES}
    for doctor in doctors:
        key = doctor.type if doctor.type in groups else DOCTOR_TYPE_OTHER
        groups[key].append(doctor)
    return groups


def sort_doctors(doctors: List[Doctor]) -> List[Doctor]:
    """Associés first, input order otherwise."""
    return sorted(doctors, key=lambda d: 0 if d.type == DOCTOR_TYPE_ASSOCIE else 1)


# ---------------------------------------------------------------------------
# Grid key
# ---------------------------------------------------------------------------

def normalize_slot(raw: str) -> str:
    """Map a stored shift_type ('matin', 'Après-midi', ...) to its slot name."""
    s = str(raw).strip().lower().replace("è", "e").replace(" ", "-")
    for slot in SLOTS:
        if slot.lower() == s:
            return slot
    raise ValueError(f"Unknown slot: {raw!r}")


def day_name(d: date) -> str:
    """Grid day for a calendar date (Lundi..Samedi). Sundays are not on the grid."""
    idx = d.weekday()
    if idx >= len(DAYS):
        raise ValueError(f"{d.isoformat()} is a Sunday; no planning column")
    return DAYS[idx]


@dataclass(frozen=True)
class ShiftSlot:
    day: str
    slot: str
    machine_id: str

    def __post_init__(self):
        if self.day not in SHIFTS_BY_DAY:
            raise ValueError(f"Unknown day: {self.day!r}")
        if self.slot not in SHIFTS_BY_DAY[self.day]:
            raise ValueError(f"{self.day} has no {self.slot!r} slot")

    def __str__(self) -> str:
        return f"{self.day} {self.slot} {self.machine_id}"


# ---------------------------------------------------------------------------
# Per-cell state
# ---------------------------------------------------------------------------

def is_marker(identity: Optional[str]) -> bool:
    return identity in MARKER_TOKENS


@dataclass(frozen=True)
class DoctorAssignment:
    identity: str                   # doctor id, MAINT or NO_DOCTOR
    share: int = 1
    teleradiologie: bool = False
    differe: bool = False
    plus_differe: bool = False

    def __post_init__(self):
        if self.share < 1:
            raise ValueError(f"share must be >= 1, got {self.share}")

    @property
    def is_maintenance(self) -> bool:
        return self.identity == MAINT_TOKEN

    @property
    def is_no_doctor(self) -> bool:
        return self.identity == NO_DOCTOR_TOKEN

    @property
    def doctor_id(self) -> Optional[str]:
        return None if is_marker(self.identity) else self.identity


@dataclass(frozen=True)
class Cell:
    slot: ShiftSlot
    assignments: Tuple[DoctorAssignment, ...] = ()
    shift_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.assignments


# ---------------------------------------------------------------------------
# Store record
# ---------------------------------------------------------------------------

def _parse_date(raw: Any) -> Optional[date]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    return datetime.strptime(str(raw)[:10], "%Y-%m-%d").date()


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("yes", "true", "1", "y", "t")


def _parse_optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    result = float(value)
    if result != result:        # NaN from pandas
        return None
    return result


@dataclass
class PersistedAssignment:
    doctor_id: str
    date: date
    shift_type: str
    machine_id: str
    shift_id: Optional[str] = None
    teleradiologie: bool = False
    en_differe: bool = False
    lecture_differee: bool = False
    mutualise: bool = False
    pct_mutualisation: float = 0.0
    exception_horaire: Optional[float] = None

    @property
    def day(self) -> str:
        return day_name(self.date)

    @property
    def slot(self) -> str:
        return normalize_slot(self.shift_type)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> Optional["PersistedAssignment"]:
        """
        Build from a store row, flat or nested:
          {doctor_id, date, shift_type, machine_id, ...}
          {doctor_id, shifts: {date, shift_type, machine_id}, ...}
        Rows without date, shift_type or machine_id are dropped (None).
        """
        shift = record.get("shifts") or {}
        raw_date = shift.get("date", record.get("date"))
        shift_type = shift.get("shift_type", record.get("shift_type"))
        machine_id = shift.get("machine_id", record.get("machine_id"))
        shift_id = shift.get("id", record.get("shift_id"))
        if not raw_date or not shift_type or not machine_id or not record.get("doctor_id"):
            logger.debug(f"Dropping incomplete assignment row: {dict(record)}")
            return None
        pct = _parse_optional_float(record.get("pct_mutualisation"))
        return cls(
            doctor_id=str(record["doctor_id"]),
            date=_parse_date(raw_date),
            shift_type=str(shift_type),
            machine_id=str(machine_id),
            shift_id=str(shift_id) if shift_id is not None else None,
            teleradiologie=parse_bool(record.get("teleradiologie")),
            en_differe=parse_bool(record.get("en_differe")),
            lecture_differee=parse_bool(record.get("lecture_differee")),
            mutualise=parse_bool(record.get("mutualise")),
            pct_mutualisation=pct if pct is not None else 0.0,
            exception_horaire=_parse_optional_float(record.get("exception_horaire")),
        )


# ---------------------------------------------------------------------------
# Auth gate result
# ---------------------------------------------------------------------------

@dataclass
class AccessResult:
    loading: bool = True
    error: Optional[str] = None
    role: Optional[str] = None

    @property
    def granted(self) -> bool:
        return not self.loading and self.error is None and self.role is not None

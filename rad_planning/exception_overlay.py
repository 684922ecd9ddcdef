"""
exception_overlay.py — Per-doctor exception hours on a persisted shift

The overlay keeps one {doctor_id: hours | None} map for the shift of one
cell. It is loaded from the store, can be overridden locally before a
commit, and is merged with the cell's assignments into display tokens.

An exception is active when its value is non-null and > 0; active tokens
carry a '*' and a tooltip "Exception horaire : <h>h".
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

from rad_planning.allocation import width_share
from rad_planning.exceptions import PersistenceFailure
from rad_planning.models import Cell, Doctor
from rad_planning.schedule_config import MARKER_COLOR, MARKER_LABELS

logger = logging.getLogger(__name__)


@dataclass
class DisplayToken:
    identity: str
    label: str
    color: str
    width_pct: float
    teleradiologie: bool = False
    differe: bool = False
    plus_differe: bool = False
    exception_hours: Optional[float] = None
    exception_active: bool = False

    @property
    def text(self) -> str:
        return f"{self.label}*" if self.exception_active else self.label


def _format_hours(hours: float) -> str:
    return f"{hours:g}"


class ExceptionOverlay:
    """Exception hours for the doctors of one shift."""

    def __init__(self, store):
        self.store = store
        self.hours: Dict[str, Optional[float]] = {}

    def load(self, shift_id: Optional[str], doctor_ids: Iterable[str]) -> Dict[str, Optional[float]]:
        """
        Fetch exception hours for doctor_ids on shift_id. Doctors without a
        row map to None. A failed read leaves the overlay empty.
        """
        doctor_ids = [d for d in doctor_ids if d]
        if not shift_id or not doctor_ids:
            self.hours = {}
            return self.hours

        try:
            rows = self.store.fetch_exception_hours(shift_id, doctor_ids)
        except PersistenceFailure as e:
            logger.error(f"Error loading exception hours for shift {shift_id}: {e}")
            self.hours = {}
            return self.hours

        loaded: Dict[str, Optional[float]] = {d: None for d in doctor_ids}
        for row in rows:
            value = row.get("exception_horaire")
            loaded[str(row["doctor_id"])] = float(value) if value is not None else None
        self.hours = loaded
        logger.debug(f"Loaded exception hours for shift {shift_id}: {self.hours}")
        return self.hours

    def set(self, doctor_id: str, hours: Optional[float]) -> None:
        """Local override; range checks belong to the store."""
        logger.info(f"Exception hours override: {doctor_id} → {hours}")
        self.hours[doctor_id] = hours

    def get(self, doctor_id: Optional[str]) -> Optional[float]:
        if doctor_id is None:
            return None
        return self.hours.get(doctor_id)

    def is_active(self, doctor_id: Optional[str]) -> bool:
        hours = self.get(doctor_id)
        return hours is not None and hours > 0

    def active_exceptions(self) -> Dict[str, float]:
        return {d: h for d, h in self.hours.items() if h is not None and h > 0}

    def tooltip(self, doctor_id: Optional[str]) -> Optional[str]:
        if not self.is_active(doctor_id):
            return None
        return f"Exception horaire : {_format_hours(self.get(doctor_id))}h"

    # -----------------------------------------------------------------------
    # Merge with cell
    # -----------------------------------------------------------------------

    def annotate(self, cell: Cell, doctors: Mapping[str, Doctor]) -> List[DisplayToken]:
        """
        One token per occupant, in cell order. Assignments whose doctor is
        not in `doctors` are skipped.
        """
        tokens: List[DisplayToken] = []
        for a in cell.assignments:
            width = width_share(cell, a.identity)
            if a.doctor_id is None:
                tokens.append(DisplayToken(
                    identity=a.identity,
                    label=MARKER_LABELS[a.identity],
                    color=MARKER_COLOR,
                    width_pct=width,
                ))
                continue
            doctor = doctors.get(a.doctor_id)
            if doctor is None:
                logger.warning(f"Unknown doctor {a.doctor_id} in {cell.slot}")
                continue
            tokens.append(DisplayToken(
                identity=a.identity,
                label=doctor.initials,
                color=doctor.color,
                width_pct=width,
                teleradiologie=a.teleradiologie,
                differe=a.differe,
                plus_differe=a.plus_differe,
                exception_hours=self.get(a.doctor_id),
                exception_active=self.is_active(a.doctor_id),
            ))
        return tokens

    def load_for_cell(self, cell: Cell) -> Dict[str, Optional[float]]:
        return self.load(cell.shift_id, [a.doctor_id for a in cell.assignments if a.doctor_id])

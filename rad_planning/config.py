"""
config.py — Configuration Module for the radiology planning engine

Loads reference data exported from the planning database (doctors,
machines, congés, weeks, assignments) and the REST client settings.

CSV layout (config/):
  doctors.csv      id, initials, color, type, is_active
  machines.csv     id, name, is_active
  conges.csv       date, unavailable_initials   (semicolon-separated)
  weeks.csv        year, week_number, is_validated
  assignments.csv  doctor_id, date, shift_type, machine_id, teleradiologie,
                   en_differe, lecture_differee, mutualise,
                   pct_mutualisation, exception_horaire
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from rad_planning.models import Doctor, Machine, PersistedAssignment, parse_bool
from rad_planning.schedule_config import (
    ALLOWED_ROLES,
    DAYS,
    LOADING_HOLD_SECONDS,
    MAX_IDENTITIES_PER_CELL,
    MAX_SHARES_PER_CELL,
    PCT_NORMALIZATION,
    SHIFTS_BY_DAY,
)

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_DIR       = PROJECT_ROOT / "config"
DEFAULT_DOCTORS_PATH     = DEFAULT_CONFIG_DIR / "doctors.csv"
DEFAULT_MACHINES_PATH    = DEFAULT_CONFIG_DIR / "machines.csv"
DEFAULT_LEAVE_PATH       = DEFAULT_CONFIG_DIR / "conges.csv"
DEFAULT_WEEKS_PATH       = DEFAULT_CONFIG_DIR / "weeks.csv"
DEFAULT_ASSIGNMENTS_PATH = DEFAULT_CONFIG_DIR / "assignments.csv"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _read_records(path: Path) -> List[Dict[str, Any]]:
    """CSV rows as dicts, empty cells as None, every column read as text."""
    import pandas as pd

    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    return [
        {k: (v if v != "" else None) for k, v in row.items()}
        for row in df.to_dict(orient="records")
    ]


def _is_active(record: Dict[str, Any]) -> bool:
    value = record.get("is_active")
    return True if value is None else parse_bool(value)


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------

def load_doctors(doctors_path: Optional[Path] = None) -> List[Doctor]:
    """
    Load active doctors from doctors.csv.

    Expected columns: id, initials, color, type, is_active (optional)
    """
    path = doctors_path or DEFAULT_DOCTORS_PATH
    if not path.exists():
        raise FileNotFoundError(f"Doctors file not found: {path}")

    doctors = [Doctor.from_record(r) for r in _read_records(path) if _is_active(r)]

    ids = [d.id for d in doctors]
    dupes = {i for i in ids if ids.count(i) > 1}
    if dupes:
        raise ValueError(f"Duplicate doctor ids in {path}: {sorted(dupes)}")

    logger.info(f"Loaded {len(doctors)} doctors from {path}")
    return doctors


def load_machines(machines_path: Optional[Path] = None) -> List[Machine]:
    path = machines_path or DEFAULT_MACHINES_PATH
    if not path.exists():
        raise FileNotFoundError(f"Machines file not found: {path}")
    machines = [Machine.from_record(r) for r in _read_records(path) if _is_active(r)]
    logger.info(f"Loaded {len(machines)} machines from {path}")
    return machines


def load_leave_set(leave_path: Optional[Path] = None) -> Dict[str, Set[str]]:
    """
    Load congés from conges.csv.

    Returns: {date_str: {initials on leave}}
    """
    path = leave_path or DEFAULT_LEAVE_PATH
    if not path.exists():
        logger.warning(f"Leave file not found: {path}. Returning empty map.")
        return {}

    leave: Dict[str, Set[str]] = {}
    for row in _read_records(path):
        date_str = str(row["date"]).strip()[:10]
        raw = row.get("unavailable_initials") or ""
        leave.setdefault(date_str, set()).update(
            i.strip() for i in raw.split(";") if i.strip()
        )

    logger.info(f"Loaded leave: {len(leave)} dates from {path}")
    return leave


def load_weeks(weeks_path: Optional[Path] = None) -> Dict[Tuple[int, int], bool]:
    """Load weeks.csv as {(year, week_number): is_validated}."""
    path = weeks_path or DEFAULT_WEEKS_PATH
    if not path.exists():
        logger.warning(f"Weeks file not found: {path}. No week is known.")
        return {}
    weeks = {
        (int(r["year"]), int(r["week_number"])): parse_bool(r.get("is_validated"))
        for r in _read_records(path)
    }
    logger.info(f"Loaded {len(weeks)} weeks from {path}")
    return weeks


def load_assignments(assignments_path: Optional[Path] = None) -> List[PersistedAssignment]:
    """Load stored assignments; rows without a complete shift reference are dropped."""
    path = assignments_path or DEFAULT_ASSIGNMENTS_PATH
    if not path.exists():
        logger.warning(f"Assignments file not found: {path}. Returning no assignments.")
        return []
    records = _read_records(path)
    rows = [PersistedAssignment.from_record(r) for r in records]
    kept = [r for r in rows if r is not None]
    if len(kept) < len(records):
        logger.warning(f"Dropped {len(records) - len(kept)} incomplete assignment rows")
    logger.info(f"Loaded {len(kept)} assignments from {path}")
    return kept


# ---------------------------------------------------------------------------
# REST client settings
# ---------------------------------------------------------------------------

def get_client_settings() -> Dict[str, Any]:
    """
    Settings for PlanningClient from the environment:
      RAD_PLANNING_API_URL, RAD_PLANNING_API_KEY, RAD_PLANNING_TIMEOUT (s)
    """
    url = os.environ.get("RAD_PLANNING_API_URL", "")
    key = os.environ.get("RAD_PLANNING_API_KEY", "")
    if not url or not key:
        logger.warning("RAD_PLANNING_API_URL / RAD_PLANNING_API_KEY not set")
    return {
        "base_url": url,
        "api_key":  key,
        "timeout":  float(os.environ.get("RAD_PLANNING_TIMEOUT", "30")),
    }


# ---------------------------------------------------------------------------
# Full config dict
# ---------------------------------------------------------------------------

def get_config() -> Dict[str, Any]:
    return {
        "days":                    list(DAYS),
        "shifts_by_day":           {k: list(v) for k, v in SHIFTS_BY_DAY.items()},
        "max_shares_per_cell":     MAX_SHARES_PER_CELL,
        "max_identities_per_cell": MAX_IDENTITIES_PER_CELL,
        "pct_normalization":       PCT_NORMALIZATION.copy(),
        "loading_hold_seconds":    LOADING_HOLD_SECONDS,
        "allowed_roles":           list(ALLOWED_ROLES),
    }

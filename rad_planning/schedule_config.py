"""
schedule_config.py — Week Grid & Cell Capacity Configuration

Derived from the planning tables (doctors, machines, shifts, shift_assignments).

WEEK GRID
─────────
  Days:   Lundi .. Samedi   (no Sunday column)
  Slots:  Matin, apres-midi, Soir
  Samedi: Matin only        (no afternoon / evening activity)

CELL CAPACITY
─────────────
  One cell = (day, slot, machine).
  ≤ 4 shares in total, ≤ 4 distinct occupants.
  Occupants are doctors, or the MAINT / NO_DOCTOR markers, which count
  exactly like doctors toward both caps.
  A lone occupant holds exactly 1 share; extra shares are only granted
  once a second occupant sits in the cell.

MUTUALISATION
─────────────
  pct_mutualisation is stored 0–100. Three-way splits come back from the
  store as 33 or 34 (and 66 or 67) depending on upstream rounding; both are
  displayed as 33 (resp. 66).
"""

from typing import Dict, List, Tuple

# ---------------------------------------------------------------------------
# Week grid
# ---------------------------------------------------------------------------
DAYS: List[str] = ["Lundi", "Mardi", "Mercredi", "Jeudi", "Vendredi", "Samedi"]

SLOT_MORNING   = "Matin"
SLOT_AFTERNOON = "apres-midi"
SLOT_EVENING   = "Soir"

SLOTS: List[str] = [SLOT_MORNING, SLOT_AFTERNOON, SLOT_EVENING]

SHIFTS_BY_DAY: Dict[str, List[str]] = {
    "Lundi":    [SLOT_MORNING, SLOT_AFTERNOON, SLOT_EVENING],
    "Mardi":    [SLOT_MORNING, SLOT_AFTERNOON, SLOT_EVENING],
    "Mercredi": [SLOT_MORNING, SLOT_AFTERNOON, SLOT_EVENING],
    "Jeudi":    [SLOT_MORNING, SLOT_AFTERNOON, SLOT_EVENING],
    "Vendredi": [SLOT_MORNING, SLOT_AFTERNOON, SLOT_EVENING],
    "Samedi":   [SLOT_MORNING],
}

SLOT_LABELS: Dict[str, str] = {
    SLOT_MORNING:   "Matin",
    SLOT_AFTERNOON: "Après-midi",
    SLOT_EVENING:   "Soir",
}

# ---------------------------------------------------------------------------
# Cell capacity
# ---------------------------------------------------------------------------
MAX_SHARES_PER_CELL     = 4
MAX_IDENTITIES_PER_CELL = 4

MAINT_TOKEN     = "MAINT"
NO_DOCTOR_TOKEN = "NO_DOCTOR"
MARKER_TOKENS: Tuple[str, str] = (MAINT_TOKEN, NO_DOCTOR_TOKEN)

MARKER_LABELS: Dict[str, str] = {
    MAINT_TOKEN:     "MAINT",
    NO_DOCTOR_TOKEN: "",            # no-doctor cells show an empty grey block
}
MARKER_MENU_LABELS: Dict[str, str] = {
    MAINT_TOKEN:     "MAINT",
    NO_DOCTOR_TOKEN: "Sans Médecin",
}
MARKER_COLOR = "#d1d5db"

# ---------------------------------------------------------------------------
# Doctors
# ---------------------------------------------------------------------------
DOCTOR_TYPE_ASSOCIE    = "associé"
DOCTOR_TYPE_REMPLACANT = "remplaçant"
DOCTOR_TYPE_OTHER      = "autre"
DOCTOR_TYPES: List[str] = [DOCTOR_TYPE_ASSOCIE, DOCTOR_TYPE_REMPLACANT, DOCTOR_TYPE_OTHER]

# ---------------------------------------------------------------------------
# Mutualisation rounding correction: raw pct → displayed pct
# ---------------------------------------------------------------------------
PCT_NORMALIZATION: Dict[int, int] = {
    33: 33,
    34: 33,
    66: 66,
    67: 66,
}

# ---------------------------------------------------------------------------
# Interaction
# ---------------------------------------------------------------------------
LOADING_HOLD_SECONDS = 0.3          # busy indicator stays visible this long after a commit
ALLOWED_ROLES: List[str] = ["admin", "gestion", "user"]

# Capacity footer shown under the allocation menu
LABEL_SINGLE_OCCUPANT = "Un seul médecin assigné (max 1 part)"
LABEL_TOTAL           = "Total: {total}/{max} parts"
LABEL_FULL            = "Maximum {max} parts par case atteint"
LABEL_ON_LEAVE        = "En congés"

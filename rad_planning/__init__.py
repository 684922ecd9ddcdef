"""
Radiology Planning — Shift-Cell Allocation Engine

Modules:
- models: Doctor, Machine, ShiftSlot, Cell, PersistedAssignment
- allocation: Capacity, lone-occupant and leave rules per (day, slot, machine) cell
- constraints: Audit of loaded cells (hard / soft)
- exception_overlay: Per-doctor exception hours on a shift
- controller: Expanded-cell and busy-flag handling around store commits
- planning_client: REST planning store
- memory_store: In-process planning store (dry runs)
- doctor_view, weeks: Per-doctor week summary, week navigation
- config, exporter, dry_run: CSV loaders, CSV/Excel export, offline check
"""

from .allocation import (
    can_increment,
    increment,
    decrement,
    width_share,
    normalize_mutualisation_pct,
    classify_assignment,
    build_cells,
    AssignmentClass,
)

from .exceptions import (
    CapacityExceeded,
    LeaveConflict,
    StaleStateConflict,
    PersistenceFailure,
)

from .models import (
    Doctor,
    Machine,
    ShiftSlot,
    DoctorAssignment,
    Cell,
    PersistedAssignment,
)

__all__ = [
    "can_increment",
    "increment",
    "decrement",
    "width_share",
    "normalize_mutualisation_pct",
    "classify_assignment",
    "build_cells",
    "AssignmentClass",
    "CapacityExceeded",
    "LeaveConflict",
    "StaleStateConflict",
    "PersistenceFailure",
    "Doctor",
    "Machine",
    "ShiftSlot",
    "DoctorAssignment",
    "Cell",
    "PersistedAssignment",
]

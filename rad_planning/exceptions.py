"""
exceptions.py — Error taxonomy for shift-cell allocation

  CapacityExceeded    cell full (shares or occupants) or lone-occupant cap
  LeaveConflict       doctor on leave that day
  StaleStateConflict  precondition no longer holds after re-fetch
  PersistenceFailure  store read/write failed
"""

from typing import Any, Optional


class PlanningError(Exception):
    """Base class for all planning errors."""


class AllocationRefused(PlanningError):
    """An increment was refused by a cell rule."""

    def __init__(self, message: str, slot: Any = None, identity: Optional[str] = None):
        super().__init__(message)
        self.slot = slot
        self.identity = identity


class CapacityExceeded(AllocationRefused):
    pass


class LeaveConflict(AllocationRefused):
    pass


class StaleStateConflict(AllocationRefused):
    """The cell changed between the user's action and the commit; refetch and retry."""


class PersistenceFailure(PlanningError):
    """Read or write against the planning store failed."""

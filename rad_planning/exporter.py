"""
exporter.py — Export Layer for the planning grid

Outputs:
  - CSV: flat (day, slot, machine, identity, initials, share, width_pct)
  - Excel (.xlsx): machine × (day, slot) grid, cells like "AB×2 / CD"
  - Excel (.xlsx): per-doctor week, cells are the doctor_view summary lines
  - Violations report (.txt): hard / soft cell violations

Usage:
  from rad_planning.exporter import export_cells_to_csv, export_grid_to_excel
"""

import csv
import logging
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from rad_planning.allocation import width_share
from rad_planning.constraints import ConstraintViolation
from rad_planning.doctor_view import DoctorShiftSummary, summary_lines
from rad_planning.models import Cell, Doctor, Machine, ShiftSlot
from rad_planning.schedule_config import DAYS, MARKER_MENU_LABELS, SHIFTS_BY_DAY, SLOT_LABELS

logger = logging.getLogger(__name__)

_DAY_ORDER = {d: i for i, d in enumerate(DAYS)}


def _sorted_cells(cells: Mapping[ShiftSlot, Cell]) -> List[Cell]:
    def key(cell: Cell):
        slots = SHIFTS_BY_DAY[cell.slot.day]
        return (_DAY_ORDER[cell.slot.day], slots.index(cell.slot.slot), cell.slot.machine_id)
    return sorted(cells.values(), key=key)


def _label(identity: str, doctors: Mapping[str, Doctor]) -> str:
    if identity in MARKER_MENU_LABELS:
        return MARKER_MENU_LABELS[identity]
    doctor = doctors.get(identity)
    return doctor.initials if doctor else identity


def cell_text(cell: Cell, doctors: Mapping[str, Doctor]) -> str:
    """'AB×2 / CD' — initials with the share count when above 1."""
    parts = []
    for a in cell.assignments:
        label = _label(a.identity, doctors)
        parts.append(f"{label}×{a.share}" if a.share > 1 else label)
    return " / ".join(parts)


# ---------------------------------------------------------------------------
# CSV Export
# ---------------------------------------------------------------------------

def export_cells_to_csv(
    cells: Mapping[ShiftSlot, Cell],
    doctors: Iterable[Doctor],
    output_path: Path,
) -> None:
    """
    Export cells to flat CSV, one row per occupant.

    Args:
        cells:        {ShiftSlot: Cell}
        doctors:      Reference doctors (for initials)
        output_path:  .csv file path
    """
    by_id = {d.id: d for d in doctors}
    output_path.parent.mkdir(parents=True, exist_ok=True)

    fields = ["day", "slot", "machine_id", "identity", "initials", "share", "width_pct"]
    with open(output_path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=fields)
        writer.writeheader()
        for cell in _sorted_cells(cells):
            for a in cell.assignments:
                writer.writerow({
                    "day":        cell.slot.day,
                    "slot":       cell.slot.slot,
                    "machine_id": cell.slot.machine_id,
                    "identity":   a.identity,
                    "initials":   _label(a.identity, by_id),
                    "share":      a.share,
                    "width_pct":  round(width_share(cell, a.identity), 1),
                })

    logger.info(f"CSV exported → {output_path}")


# ---------------------------------------------------------------------------
# Excel Export
# ---------------------------------------------------------------------------

def export_grid_to_excel(
    cells: Mapping[ShiftSlot, Cell],
    doctors: Iterable[Doctor],
    machines: Iterable[Machine],
    output_path: Path,
) -> None:
    """
    Export the week grid: rows = machines, columns = (day, slot).
    Empty cells stay blank.
    """
    import pandas as pd

    output_path.parent.mkdir(parents=True, exist_ok=True)
    by_id = {d.id: d for d in doctors}
    columns = [(day, SLOT_LABELS[slot]) for day in DAYS for slot in SHIFTS_BY_DAY[day]]

    data: Dict[str, List[str]] = {}
    for machine in machines:
        row = []
        for day in DAYS:
            for slot in SHIFTS_BY_DAY[day]:
                cell = cells.get(ShiftSlot(day=day, slot=slot, machine_id=machine.id))
                row.append(cell_text(cell, by_id) if cell else "")
        data[machine.name] = row

    grid = pd.DataFrame.from_dict(data, orient="index", columns=pd.MultiIndex.from_tuples(columns))

    with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
        grid.to_excel(writer, sheet_name="Planning")
        _format_excel_grid(writer, "Planning")

    logger.info(f"Excel exported → {output_path}")


def export_doctor_week_to_excel(
    week: Mapping[str, Mapping[date, Mapping[str, Optional[DoctorShiftSummary]]]],
    doctors: Iterable[Doctor],
    output_path: Path,
) -> None:
    """Export build_doctor_week() output: rows = doctors, columns = (date, slot)."""
    import pandas as pd

    output_path.parent.mkdir(parents=True, exist_ok=True)
    records: Dict[str, Dict[Any, str]] = {}
    for doctor in doctors:
        per_date = week.get(doctor.id, {})
        records[doctor.initials] = {
            (d.strftime("%d/%m"), SLOT_LABELS[slot]): "\n".join(summary_lines(summary))
            for d, slots in per_date.items()
            for slot, summary in slots.items()
        }

    grid = pd.DataFrame.from_dict(records, orient="index")
    with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
        grid.to_excel(writer, sheet_name="Par médecin")
        _format_excel_grid(writer, "Par médecin")

    logger.info(f"Doctor week exported → {output_path}")


def _format_excel_grid(writer: Any, sheet_name: str) -> None:
    """Header rows bold on dark fill, column widths fitted to content."""
    from openpyxl.styles import Alignment, Font, PatternFill
    from openpyxl.utils import get_column_letter

    ws = writer.sheets[sheet_name]
    header_fill = PatternFill("solid", fgColor="1F4E79")
    header_font = Font(bold=True, color="FFFFFF")

    for row in ws.iter_rows(min_row=1, max_row=2):
        for cell in row:
            if cell.value is None:
                continue
            cell.fill = header_fill
            cell.font = header_font
            cell.alignment = Alignment(horizontal="center", wrap_text=True)

    for col in ws.columns:
        max_len = max((len(str(c.value)) for c in col if c.value), default=8)
        ws.column_dimensions[get_column_letter(col[0].column)].width = min(max_len + 2, 30)


# ---------------------------------------------------------------------------
# Violations Report
# ---------------------------------------------------------------------------

def export_violations_report(
    hard: List[ConstraintViolation],
    soft: List[ConstraintViolation],
    output_path: Path,
    title: str = "",
) -> str:
    """Write hard and soft violations as a text report and return its text."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    sep = "=" * 70

    lines = [
        sep,
        f"  CELL VIOLATIONS REPORT{(' — ' + title) if title else ''}",
        sep,
        "",
        f"  Hard violations: {len(hard)}",
        f"  Soft violations: {len(soft)}",
        "",
    ]
    for label, violations in (("Hard", hard), ("Soft", soft)):
        lines += ["─" * 70, f"  {label}", "─" * 70]
        if violations:
            lines.extend(f"  {v}" for v in violations)
        else:
            lines.append("  (none)")
        lines.append("")
    lines.append(sep)

    report_text = "\n".join(lines)
    with open(output_path, "w") as f:
        f.write(report_text)

    logger.info(f"Violations report exported → {output_path}")
    return report_text

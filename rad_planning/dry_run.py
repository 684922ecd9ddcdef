"""
dry_run.py — Offline planning check (no write to the planning database)

Full orchestration:
  1. Load doctors, machines, congés, weeks and assignments from CSV
  2. Resolve the week to show (closest validated week if not validated)
  3. Rebuild the allocation cells of that week
  4. Check cells (hard + soft)
  5. Export CSV, Excel grid, per-doctor Excel, violations report
  6. Print summary to console

Usage:
  python -m rad_planning.dry_run --year 2025 --week 23
  python -m rad_planning.dry_run --config-dir config --year 2025 --week 23 --output outputs
"""

import argparse
import logging
from datetime import date
from pathlib import Path
from typing import Optional

from rad_planning.allocation import is_full, total_shares
from rad_planning.config import (
    DEFAULT_CONFIG_DIR,
    PROJECT_ROOT,
    load_assignments,
    load_doctors,
    load_leave_set,
    load_machines,
    load_weeks,
)
from rad_planning.constraints import CellConstraintChecker
from rad_planning.controller import CellInteractionController
from rad_planning.doctor_view import build_doctor_week
from rad_planning.exporter import (
    export_cells_to_csv,
    export_doctor_week_to_excel,
    export_grid_to_excel,
    export_violations_report,
)
from rad_planning.memory_store import InMemoryPlanningStore
from rad_planning.weeks import find_closest_validated_week, get_week_number

logger = logging.getLogger(__name__)

OUTPUTS_DIR = PROJECT_ROOT / "outputs"


def run_dry_run(
    config_dir: Path,
    year: int,
    week: int,
    output_dir: Path = OUTPUTS_DIR,
) -> dict:
    """Run the offline check for one week and return a summary dict."""
    store = InMemoryPlanningStore(
        doctors=load_doctors(config_dir / "doctors.csv"),
        machines=load_machines(config_dir / "machines.csv"),
        leave=load_leave_set(config_dir / "conges.csv"),
        rows=load_assignments(config_dir / "assignments.csv"),
        weeks=load_weeks(config_dir / "weeks.csv"),
    )

    validated = store.get_validated_weeks(year)
    shown_week, shown_year = find_closest_validated_week(week, year, validated)
    if shown_week != week:
        logger.info(f"Week {week} not validated; showing week {shown_week}")

    controller = CellInteractionController.load_week(store, shown_year, shown_week)
    cells = controller.cells

    checker = CellConstraintChecker(controller.doctors, controller.leave_set)
    hard, soft = checker.check_all(cells.values())

    prefix = f"planning_{shown_year}_W{shown_week:02d}"
    output_dir.mkdir(parents=True, exist_ok=True)
    export_cells_to_csv(cells, controller.doctors, output_dir / f"{prefix}.csv")
    export_grid_to_excel(cells, controller.doctors, controller.machines, output_dir / f"{prefix}.xlsx")

    rows = store.fetch_shift_assignments(
        controller.week_id, controller.week_dates[0], controller.week_dates[-1]
    ) if controller.week_id else []
    doctor_week = build_doctor_week(controller.doctors, controller.machines, rows, controller.week_dates)
    export_doctor_week_to_excel(doctor_week, controller.doctors, output_dir / f"{prefix}_par_medecin.xlsx")
    export_violations_report(hard, soft, output_dir / f"{prefix}_violations.txt", title=prefix)

    return {
        "year":       shown_year,
        "week":       shown_week,
        "cells":      len(cells),
        "shares":     sum(total_shares(c) for c in cells.values()),
        "full_cells": sum(1 for c in cells.values() if is_full(c)),
        "hard":       len(hard),
        "soft":       len(soft),
        "prefix":     prefix,
    }


def main(argv: Optional[list] = None) -> int:
    today_week, today_year = get_week_number(date.today())

    parser = argparse.ArgumentParser(description="Offline planning check for one week")
    parser.add_argument("--config-dir", type=Path, default=DEFAULT_CONFIG_DIR)
    parser.add_argument("--year", type=int, default=today_year)
    parser.add_argument("--week", type=int, default=today_week)
    parser.add_argument("--output", type=Path, default=OUTPUTS_DIR)
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    summary = run_dry_run(args.config_dir, args.year, args.week, args.output)

    print()
    print("=" * 60)
    print(f"  DRY RUN — {summary['year']} week {summary['week']}")
    print("=" * 60)
    print(f"  Cells filled:   {summary['cells']}")
    print(f"  Shares placed:  {summary['shares']}")
    print(f"  Full cells:     {summary['full_cells']}")
    print(f"  Hard violations: {summary['hard']}")
    print(f"  Soft violations: {summary['soft']}")
    print(f"  Outputs → {args.output}/{summary['prefix']}*")
    print("=" * 60)
    return 1 if summary["hard"] else 0


if __name__ == "__main__":
    raise SystemExit(main())

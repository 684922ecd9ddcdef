#!/usr/bin/env python3
"""
Dry Run - Check one planning week offline (no write to the planning database)

Usage:
  python scripts/run_dry_run.py --year 2025 --week 23

Outputs to outputs/ directory.
"""

import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from rad_planning.dry_run import main

if __name__ == "__main__":
    sys.exit(main())

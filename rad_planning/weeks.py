"""
weeks.py — Week navigation helpers

ISO weeks; the planning grid shows Monday..Saturday of one week.
"""

import logging
from datetime import date, timedelta
from typing import Dict, Iterable, List, Mapping, Set, Tuple

from rad_planning.models import day_name

logger = logging.getLogger(__name__)


def get_week_dates(year: int, week: int) -> List[date]:
    """Monday..Saturday of ISO week `week` of `year`."""
    monday = date.fromisocalendar(year, week, 1)
    return [monday + timedelta(days=i) for i in range(6)]


def get_week_number(d: date) -> Tuple[int, int]:
    """(week, year) of d in the ISO calendar."""
    iso = d.isocalendar()
    return iso[1], iso[0]


def find_closest_validated_week(
    week: int,
    year: int,
    validated: Iterable[int],
) -> Tuple[int, int]:
    """
    The week itself if validated, else the nearest validated week of the
    same year (ties → the earlier week). Week 1 when nothing is validated.
    """
    weeks = sorted(set(validated))
    if week in weeks:
        return week, year
    if not weeks:
        logger.warning(f"No validated week in {year}; falling back to week 1")
        return 1, year
    closest = min(weeks, key=lambda w: (abs(w - week), w))
    return closest, year


def leave_set_for_week(
    leave_by_date: Mapping[str, Set[str]],
    week_dates: Iterable[date],
) -> Dict[str, Set[str]]:
    """Re-key a date-keyed leave set ({YYYY-MM-DD: initials}) by grid day."""
    return {
        day_name(d): set(leave_by_date.get(d.isoformat(), set()))
        for d in week_dates
    }


def dates_by_day(week_dates: Iterable[date]) -> Dict[str, date]:
    return {day_name(d): d for d in week_dates}

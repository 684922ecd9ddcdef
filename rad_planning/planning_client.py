"""
Planning store REST client
Reads reference data and assignments, commits share changes.

Talks to a PostgREST-style API (tables: doctors, machines, weeks, shifts,
shift_assignments, conges, profiles; RPC: adjust_assignment_share).

Store interface shared with InMemoryPlanningStore:
  fetch_active_doctors()                       -> [Doctor]
  fetch_active_machines()                      -> [Machine]
  fetch_leave_set(year)                        -> {YYYY-MM-DD: {initials}}
  get_week_id(year, week)                      -> id | None
  get_validated_weeks(year)                    -> [week_number]
  fetch_shift_assignments(week_id, start, end) -> [PersistedAssignment]
  fetch_exception_hours(shift_id, doctor_ids)  -> [{doctor_id, exception_horaire}]
  commit_assignment(day, slot, machine_id, identity, delta, cell_date=None)
"""

import requests
import logging
from collections import defaultdict
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Set

from rad_planning.exceptions import PersistenceFailure
from rad_planning.models import AccessResult, Doctor, Machine, PersistedAssignment

logger = logging.getLogger(__name__)

ASSIGNMENT_SELECT = (
    "doctor_id,"
    "shifts!inner(id,date,shift_type,machine_id,week_id),"
    "teleradiologie,en_differe,lecture_differee,mutualise,pct_mutualisation,exception_horaire"
)


class PlanningClient:
    """
    Client for the planning REST API
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: Optional[str] = None,
        timeout: float = 30,
    ):
        """
        Initialize planning client

        Args:
            base_url: Base URL of the API (without /rest/v1)
            api_key: Project API key
            access_token: User session token; defaults to the API key
            timeout: Request timeout (seconds)
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update({
            'apikey': api_key,
            'Authorization': f'Bearer {access_token or api_key}',
            'Content-Type': 'application/json'
        })

    def _get(self, table: str, params: Any, what: str) -> List[Dict]:
        endpoint = f"{self.base_url}/rest/v1/{table}"
        try:
            response = self.session.get(endpoint, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Error fetching {what}: {e}")
            raise PersistenceFailure(f"Error fetching {what}: {e}") from e

    # -----------------------------------------------------------------------
    # Reference data
    # -----------------------------------------------------------------------

    def fetch_active_doctors(self) -> List[Doctor]:
        logger.info("Fetching active doctors")
        data = self._get(
            "doctors",
            {'select': 'id,initials,color,type', 'is_active': 'eq.true'},
            "doctors",
        )
        logger.info(f"Retrieved {len(data)} doctors")
        return [Doctor.from_record(row) for row in data]

    def fetch_active_machines(self) -> List[Machine]:
        logger.info("Fetching active machines")
        data = self._get(
            "machines",
            {'select': 'id,name', 'is_active': 'eq.true'},
            "machines",
        )
        logger.info(f"Retrieved {len(data)} machines")
        return [Machine.from_record(row) for row in data]

    def fetch_leave_set(self, year: int) -> Dict[str, Set[str]]:
        """
        Retrieve leave (congés) for a year

        Returns:
            {date_str: {initials on leave}}
        """
        logger.info(f"Fetching leave for {year}")
        data = self._get(
            "conges",
            [
                ('select', 'date,initials'),
                ('date', f'gte.{year}-01-01'),
                ('date', f'lte.{year}-12-31'),
            ],
            "leave",
        )
        leave: Dict[str, Set[str]] = defaultdict(set)
        for row in data:
            leave[str(row['date'])[:10]].add(str(row['initials']).strip())
        logger.info(f"Retrieved leave for {len(leave)} dates")
        return dict(leave)

    def get_week_id(self, year: int, week: int) -> Optional[str]:
        data = self._get(
            "weeks",
            {'select': 'id', 'year': f'eq.{year}', 'week_number': f'eq.{week}'},
            f"week {year}-W{week}",
        )
        if not data:
            logger.warning(f"No week id for {year}-W{week}")
            return None
        return str(data[0]['id'])

    def get_validated_weeks(self, year: int) -> List[int]:
        data = self._get(
            "weeks",
            {'select': 'week_number', 'year': f'eq.{year}', 'is_validated': 'eq.true'},
            f"validated weeks {year}",
        )
        return sorted(int(row['week_number']) for row in data)

    # -----------------------------------------------------------------------
    # Assignments
    # -----------------------------------------------------------------------

    def fetch_shift_assignments(
        self,
        week_id: str,
        start_date: date,
        end_date: date,
    ) -> List[PersistedAssignment]:
        """
        Retrieve assignments of one week between two dates (inclusive)

        Returns:
            Rows with a complete shift reference; incomplete rows are dropped
        """
        logger.info(f"Fetching assignments for week {week_id} ({start_date} → {end_date})")
        data = self._get(
            "shift_assignments",
            [
                ('select', ASSIGNMENT_SELECT),
                ('shifts.week_id', f'eq.{week_id}'),
                ('shifts.date', f'gte.{start_date.isoformat()}'),
                ('shifts.date', f'lte.{end_date.isoformat()}'),
            ],
            "assignments",
        )
        rows = [PersistedAssignment.from_record(row) for row in data]
        rows = [r for r in rows if r is not None]
        logger.info(f"Retrieved {len(rows)} assignments")
        return rows

    def fetch_exception_hours(self, shift_id: str, doctor_ids: Iterable[str]) -> List[Dict]:
        ids = ",".join(doctor_ids)
        return self._get(
            "shift_assignments",
            {
                'select': 'doctor_id,exception_horaire',
                'shift_id': f'eq.{shift_id}',
                'doctor_id': f'in.({ids})',
            },
            "exception hours",
        )

    def commit_assignment(
        self,
        day: str,
        slot: str,
        machine_id: str,
        identity: str,
        delta: int,
        cell_date: Optional[date] = None,
    ) -> Dict:
        """
        Add (+1) or remove (-1) one share for identity in a cell

        Args:
            day: Grid day (Lundi..Samedi)
            slot: Matin / apres-midi / Soir
            machine_id: Machine id
            identity: Doctor id, MAINT or NO_DOCTOR
            delta: +1 or -1
            cell_date: Calendar date of the cell

        Returns:
            RPC response
        """
        if delta not in (1, -1):
            raise ValueError(f"delta must be +1 or -1, got {delta}")

        endpoint = f"{self.base_url}/rest/v1/rpc/adjust_assignment_share"
        payload = {
            'p_day': day,
            'p_slot': slot,
            'p_machine_id': machine_id,
            'p_identity': identity,
            'p_delta': delta,
            'p_date': cell_date.isoformat() if cell_date else None,
        }

        logger.info(f"Committing {delta:+d} for {identity} on {day} {slot} {machine_id}")

        try:
            response = self.session.post(endpoint, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return response.json() if response.content else {}
        except requests.exceptions.RequestException as e:
            logger.error(f"Error committing assignment: {e}")
            raise PersistenceFailure(f"Error committing assignment: {e}") from e

    # -----------------------------------------------------------------------
    # Auth gate
    # -----------------------------------------------------------------------

    def check_access(self, allowed_roles: Iterable[str]) -> AccessResult:
        """
        Resolve the session user's role and check it against allowed_roles

        Returns:
            AccessResult with role set on success, error set otherwise
        """
        allowed = list(allowed_roles)
        try:
            response = self.session.get(f"{self.base_url}/auth/v1/user", timeout=self.timeout)
            response.raise_for_status()
            user_id = response.json().get('id')
        except requests.exceptions.RequestException as e:
            logger.info(f"No session: {e}")
            return AccessResult(loading=False, error="no_session")

        if not user_id:
            return AccessResult(loading=False, error="no_session")

        try:
            profiles = self._get("profiles", {'select': 'role', 'id': f'eq.{user_id}'}, "profile")
        except PersistenceFailure:
            return AccessResult(loading=False, error="profile_unavailable")
        if not profiles:
            return AccessResult(loading=False, error="profile_unavailable")

        role = profiles[0].get('role')
        if role not in allowed:
            logger.info(f"Role not allowed: {role}")
            return AccessResult(loading=False, error="unauthorized", role=None)
        return AccessResult(loading=False, error=None, role=role)

"""Assemble a SchedulingRequest from a person type CSV and a people CSV.

Roles CSV: name, min_per_cohort, max_per_cohort, max_assignments
People CSV: role, id, name, availability, max_assignments, blocked

Availability and blocked times are comma-separated "start-end" minute offsets
from Monday 00:00, e.g. "540-600, 2040-2160". A blank max_assignments on a
role means each person's own max_assignments column is used instead.
"""

import csv
import logging
import os
from collections import defaultdict
from pathlib import Path

import requests
from dotenv import load_dotenv

from scheduler.cohort.errors import (
    ConfigurationError,
    PersonDataError,
    SchedulingError,
)
from scheduler.cohort.intervals import Interval, subtract
from scheduler.cohort.time_units import (
    DEFAULT_UNIT_MINUTES,
    clamp_to_week,
    minutes_to_units,
    units_per_week,
)
from scheduler.cohort.utils import Person, PersonType, SchedulingRequest

logger = logging.getLogger(__name__)

DEFAULT_MEETING_MINUTES = 90

Record = dict[str, str]


def read_csv_source(source: str) -> list[Record]:
    """Read a CSV from a local path or an http(s) URL, skipping blank rows."""
    if source.startswith(("http://", "https://")):
        r = requests.get(source, timeout=30)
        r.raise_for_status()
        r.encoding = r.apparent_encoding
        text = r.text
    else:
        text = Path(source).read_text(encoding="utf-8")
    lines = [ln for ln in text.splitlines() if ln.replace(",", "").strip()]
    return [
        {k.strip(): (v or "").strip() for k, v in row.items() if k is not None}
        for row in csv.DictReader(lines)
    ]


def parse_minute_intervals(text: str, week_minutes: int) -> list[Interval]:
    intervals = []
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            start_str, end_str = part.split("-")
            start, end = int(start_str), int(end_str)
        except ValueError:
            raise ValueError(f"Could not parse interval {part!r}, expected 'start-end'") from None
        intervals.append(clamp_to_week(start, end, week_minutes))
    return intervals


def parse_count(value: str, what: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise ValueError(f"Expected an integer {what}, got {value!r}") from None
    if n < 0:
        raise ValueError(f"Expected a non-negative {what}, got {n}")
    return n


def build_role(row: Record) -> tuple[PersonType, int | None]:
    """Returns the (empty) person type and its fixed cap, if it has one."""
    name = row.get("name", "")
    if not name:
        raise ConfigurationError("<unnamed>", "missing name")
    bounds = []
    for field_name in ("min_per_cohort", "max_per_cohort"):
        if not row.get(field_name):
            raise ConfigurationError(name, f"missing {field_name}")
        try:
            bounds.append(parse_count(row[field_name], field_name))
        except ValueError as e:
            raise ConfigurationError(name, str(e)) from e
    fixed_cap = None
    if row.get("max_assignments"):
        try:
            fixed_cap = parse_count(row["max_assignments"], "max_assignments")
        except ValueError as e:
            raise ConfigurationError(name, str(e)) from e
    return PersonType(name=name, min_per_cohort=bounds[0], max_per_cohort=bounds[1]), fixed_cap


def build_person(
    row: Record, fixed_cap: int | None, unit_minutes: int = DEFAULT_UNIT_MINUTES
) -> Person:
    name, person_id = row.get("name", ""), row.get("id", "")
    week_minutes = units_per_week(unit_minutes) * unit_minutes
    try:
        if not person_id:
            raise ValueError("missing id")
        available = parse_minute_intervals(row.get("availability", ""), week_minutes)
        blocked = parse_minute_intervals(row.get("blocked", ""), week_minutes)
        available = subtract(available, blocked)
        availability = [
            Interval(
                minutes_to_units(start, unit_minutes),
                minutes_to_units(end, unit_minutes),
            )
            for start, end in available
        ]
        if fixed_cap is not None:
            max_assignments = fixed_cap
        else:
            max_assignments = parse_count(
                row.get("max_assignments", ""), "max_assignments"
            )
    except ValueError as e:
        raise PersonDataError(name, person_id, str(e), row) from e
    return Person(
        id=person_id,
        name=name,
        availability=availability,
        max_assignments=max_assignments,
    )


def get_scheduling_request(
    role_rows: list[Record],
    people_rows: list[Record],
    meeting_minutes: int = DEFAULT_MEETING_MINUTES,
    unit_minutes: int = DEFAULT_UNIT_MINUTES,
) -> SchedulingRequest:
    roles: dict[str, PersonType] = {}
    fixed_caps: dict[str, int | None] = {}
    for row in role_rows:
        role, fixed_cap = build_role(row)
        if role.name in roles:
            raise ConfigurationError(role.name, "duplicate person type name")
        roles[role.name] = role
        fixed_caps[role.name] = fixed_cap

    people_by_role = defaultdict(list)
    for row in people_rows:
        role_name = row.get("role", "")
        if role_name not in roles:
            raise ConfigurationError(role_name, "unknown person type in people data")
        people_by_role[role_name].append(
            build_person(row, fixed_caps[role_name], unit_minutes)
        )
    for role_name, role in roles.items():
        role.people = people_by_role[role_name]
        logger.info("Loaded %d %s people", len(role.people), role_name)

    request = SchedulingRequest(
        meeting_duration_units=minutes_to_units(meeting_minutes, unit_minutes),
        roles=list(roles.values()),
    )
    request.validate()
    return request


def get_request_data(
    roles_path: str | None = None,
    people_path: str | None = None,
    meeting_minutes: int | None = None,
    unit_minutes: int | None = None,
) -> tuple[SchedulingRequest, int]:
    """Load the request from the given sources, falling back to the environment."""
    load_dotenv()
    roles_path = roles_path or os.getenv("ROLES_CSV_PATH")
    people_path = people_path or os.getenv("PEOPLE_CSV_PATH")
    if not roles_path or not people_path:
        raise SchedulingError(
            "Set ROLES_CSV_PATH and PEOPLE_CSV_PATH or pass --roles/--people"
        )
    unit_minutes = unit_minutes or int(os.getenv("UNIT_MINUTES", DEFAULT_UNIT_MINUTES))
    meeting_minutes = meeting_minutes or int(
        os.getenv("MEETING_LENGTH_MINUTES", DEFAULT_MEETING_MINUTES)
    )
    request = get_scheduling_request(
        read_csv_source(roles_path),
        read_csv_source(people_path),
        meeting_minutes=meeting_minutes,
        unit_minutes=unit_minutes,
    )
    return request, unit_minutes

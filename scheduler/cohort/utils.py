import csv
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from scheduler.cohort.errors import ConfigurationError
from scheduler.cohort.intervals import Interval
from scheduler.cohort.time_units import (
    DEFAULT_UNIT_MINUTES,
    format_day_time,
    unit_to_datetime,
)


@dataclass
class Person:
    id: str
    name: str
    availability: list[Interval]
    max_assignments: int


@dataclass
class PersonType:
    name: str
    min_per_cohort: int
    max_per_cohort: int
    people: list[Person] = field(default_factory=list)

    @property
    def effective_min(self) -> int:
        """The per-cohort minimum, capped at the size of the pool.

        A pool smaller than its minimum still forms cohorts with everyone it
        has. An empty pool keeps a positive minimum, so no cohort can form
        without that role.
        """
        if self.min_per_cohort == 0:
            return 0
        return min(self.min_per_cohort, max(1, len(self.people)))


@dataclass
class SchedulingRequest:
    meeting_duration_units: int
    roles: list[PersonType]

    def validate(self) -> None:
        duplicates = [
            name for name, n in Counter(r.name for r in self.roles).items() if n > 1
        ]
        if duplicates:
            raise ConfigurationError(duplicates[0], "duplicate person type name")
        if self.meeting_duration_units <= 0:
            raise ValueError(
                f"Meeting duration must be positive, got {self.meeting_duration_units} units"
            )
        for role in self.roles:
            if role.min_per_cohort < 0:
                raise ConfigurationError(role.name, "minimum per cohort is negative")
            if role.max_per_cohort < role.min_per_cohort:
                raise ConfigurationError(
                    role.name,
                    f"maximum per cohort ({role.max_per_cohort}) is below the"
                    f" minimum ({role.min_per_cohort})",
                )
            for person in role.people:
                if person.max_assignments < 0:
                    raise ConfigurationError(
                        role.name, f'person "{person.name}" has a negative cap'
                    )

    @property
    def total_people(self) -> int:
        return sum(len(r.people) for r in self.roles)

    def get_role(self, name: str) -> PersonType | None:
        return next((r for r in self.roles if r.name == name), None)


@dataclass(frozen=True)
class Cohort:
    start_time: int
    end_time: int
    members: dict[str, list[str]]


Schedule = list[Cohort]


def _people_by_id(request: SchedulingRequest) -> dict[str, Person]:
    return {p.id: p for r in request.roles for p in r.people}


def pretty_print_schedule(
    schedule: Schedule,
    request: SchedulingRequest,
    unit_minutes: int = DEFAULT_UNIT_MINUTES,
) -> str:
    people = _people_by_id(request)
    output = "Schedule\n--------\n"
    for i, cohort in enumerate(schedule, start=1):
        start = format_day_time(cohort.start_time, unit_minutes)
        end = format_day_time(cohort.end_time, unit_minutes)
        output += f"Cohort {i} ({start}–{end})\n"
        for role_name, member_ids in cohort.members.items():
            names = ", ".join(people[pid].name for pid in member_ids) or "NONE"
            output += f"\t{role_name}: {names}\n"
    return output


def write_schedule_to_csv(
    schedule: Schedule,
    request: SchedulingRequest,
    output_path: Path,
    anchor: datetime,
    unit_minutes: int = DEFAULT_UNIT_MINUTES,
) -> None:
    people = _people_by_id(request)
    with output_path.open("w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["Cohort", "Start", "End", "Role", "ID", "Name"])
        for i, cohort in enumerate(schedule, start=1):
            start = unit_to_datetime(cohort.start_time, anchor, unit_minutes)
            end = unit_to_datetime(cohort.end_time, anchor, unit_minutes)
            for role_name, member_ids in cohort.members.items():
                for pid in member_ids:
                    writer.writerow(
                        [
                            i,
                            start.isoformat(),
                            end.isoformat(),
                            role_name,
                            pid,
                            people[pid].name,
                        ]
                    )

from collections import defaultdict

from scheduler.cohort.intervals import Interval, contains
from scheduler.cohort.utils import Schedule, SchedulingRequest


def _availability_violations(
    request: SchedulingRequest, schedule: Schedule
) -> list[str]:
    duration = request.meeting_duration_units
    violations = []
    for i, cohort in enumerate(schedule):
        meeting = Interval(cohort.start_time, cohort.start_time + duration)
        if cohort.end_time != meeting.end:
            violations.append(
                f"Cohort {i} spans [{cohort.start_time}, {cohort.end_time}),"
                f" expected a meeting of {duration} units"
            )
        for role_name, member_ids in cohort.members.items():
            role = request.get_role(role_name)
            if role is None:
                violations.append(f"Cohort {i} has unknown person type {role_name!r}")
                continue
            people = {p.id: p for p in role.people}
            for pid in member_ids:
                person = people.get(pid)
                if person is None:
                    violations.append(f"Cohort {i} has unknown {role_name} {pid!r}")
                elif not any(contains(av, meeting) for av in person.availability):
                    violations.append(
                        f"Cohort {i}: {person.name} is not available for"
                        f" [{meeting.start}, {meeting.end})"
                    )
    return violations


def verify_schedule(request: SchedulingRequest, schedule: Schedule) -> bool:
    """Check that every member of every cohort is available for the whole meeting."""
    return not _availability_violations(request, schedule)


def find_violations(request: SchedulingRequest, schedule: Schedule) -> list[str]:
    """List every broken constraint: availability, role sizes, caps and double-booking."""
    violations = _availability_violations(request, schedule)
    duration = request.meeting_duration_units

    meetings_by_person = defaultdict(list)
    for i, cohort in enumerate(schedule):
        for role in request.roles:
            n = len(cohort.members.get(role.name, []))
            if not role.effective_min <= n <= role.max_per_cohort:
                violations.append(
                    f"Cohort {i} has {n} {role.name} people, expected between"
                    f" {role.effective_min} and {role.max_per_cohort}"
                )
        for role_name, member_ids in cohort.members.items():
            for pid in member_ids:
                meetings_by_person[(role_name, pid)].append(cohort.start_time)

    for role in request.roles:
        for person in role.people:
            starts = sorted(meetings_by_person.get((role.name, person.id), []))
            if len(starts) > person.max_assignments:
                violations.append(
                    f"{person.name} is in {len(starts)} cohorts, more than their"
                    f" cap of {person.max_assignments}"
                )
            for a, b in zip(starts, starts[1:]):
                if b - a < duration:
                    violations.append(
                        f"{person.name} is double-booked at units {a} and {b}"
                    )
    return violations

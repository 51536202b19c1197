"""Split each solved timeslot ("mega-group") into individually sized cohorts."""

from collections.abc import Mapping, Sequence

from scheduler.cohort.errors import ModelInvariantError
from scheduler.cohort.utils import Cohort, Schedule


def bucket_sizes(n: int, count: int) -> list[int]:
    """Split n people into `count` buckets whose sizes differ by at most one.

    Smaller buckets come first; the last n % count buckets take the remainder.
    """
    if count < 1:
        raise ValueError(f"Bucket count must be at least 1, got {count}")
    size, remainder = divmod(n, count)
    return [size] * (count - remainder) + [size + 1] * remainder


def split_mega_group(
    time: int,
    meeting_duration: int,
    people_by_role: Mapping[str, Sequence[str]],
    group_count: int,
    role_names: Sequence[str],
) -> list[Cohort]:
    if group_count < 1:
        if any(people_by_role.get(r) for r in role_names):
            raise ModelInvariantError(
                f"{sum(len(p) for p in people_by_role.values())} people assigned at"
                f" unit {time} but the model formed {group_count} cohorts"
            )
        return []

    slices: dict[str, list[list[str]]] = {}
    for role_name in role_names:
        people = list(people_by_role.get(role_name, []))
        offset = 0
        slices[role_name] = []
        for size in bucket_sizes(len(people), group_count):
            slices[role_name].append(people[offset : offset + size])
            offset += size

    return [
        Cohort(
            start_time=time,
            end_time=time + meeting_duration,
            members={role_name: slices[role_name][i] for role_name in role_names},
        )
        for i in range(group_count)
    ]


def decompose(
    assignments: Mapping[int, Mapping[str, Sequence[str]]],
    group_counts: Mapping[int, int],
    meeting_duration: int,
    role_names: Sequence[str],
) -> Schedule:
    """Turn per-time assignments into cohorts, ordered by start time.

    :param assignments: start time -> role name -> ids of the people assigned there
    :param group_counts: start time -> number of cohorts the model formed there
    """
    schedule: Schedule = []
    for time in sorted(assignments):
        schedule.extend(
            split_mega_group(
                time,
                meeting_duration,
                assignments[time],
                group_counts.get(time, 0),
                role_names,
            )
        )
    return schedule

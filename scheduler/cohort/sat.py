import logging
import os
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import NamedTuple

import click
from dotenv import load_dotenv
from ortools.sat.python import cp_model

from scheduler.cohort.decompose import decompose
from scheduler.cohort.errors import SchedulingError
from scheduler.cohort.load_data import get_request_data
from scheduler.cohort.time_units import this_monday_utc
from scheduler.cohort.utils import (
    Person,
    Schedule,
    SchedulingRequest,
    pretty_print_schedule,
    write_schedule_to_csv,
)
from scheduler.cohort.verify import find_violations, verify_schedule

logger = logging.getLogger(__name__)


class VarKey(NamedTuple):
    """Identifies one decision variable: does person `person` of role `role` start a meeting at `time`?"""

    role: int
    person: int
    time: int


@dataclass
class SolverConfig:
    min_time_seconds: float = 5.0
    max_time_seconds: float = 120.0
    seconds_per_person: float = 1.0
    num_workers: int = 8
    log_progress: bool = False

    def time_limit_for(self, total_people: int) -> float:
        return min(
            self.max_time_seconds,
            max(self.min_time_seconds, total_people * self.seconds_per_person),
        )


def solver_config_from_env() -> SolverConfig:
    load_dotenv()
    defaults = SolverConfig()
    return SolverConfig(
        min_time_seconds=float(
            os.getenv("COHORT_MIN_TIME_SECONDS", defaults.min_time_seconds)
        ),
        max_time_seconds=float(
            os.getenv("COHORT_MAX_TIME_SECONDS", defaults.max_time_seconds)
        ),
        seconds_per_person=float(
            os.getenv("COHORT_SECONDS_PER_PERSON", defaults.seconds_per_person)
        ),
        num_workers=int(os.getenv("COHORT_NUM_WORKERS", defaults.num_workers)),
        log_progress=os.getenv("COHORT_LOG_PROGRESS", "").lower() in ("1", "true", "yes"),
    )


@dataclass
class CohortModel:
    model: cp_model.CpModel
    times: range
    person_vars: dict[VarKey, cp_model.IntVar]
    group_count_vars: dict[int, cp_model.IntVar]


class SolvedModel(NamedTuple):
    # start time -> role name -> person ids, in the request's person order
    assignments: dict[int, dict[str, list[str]]]
    group_counts: dict[int, int]
    objective: float


class SolutionProgressLogger(cp_model.CpSolverSolutionCallback):
    """Log intermediate solutions."""

    def __init__(self):
        cp_model.CpSolverSolutionCallback.__init__(self)
        self.__solution_count = 0

    def on_solution_callback(self):
        self.__solution_count += 1
        logger.debug(
            "Solution #%d: %s assignments (bound %s, %.1fs)",
            self.__solution_count,
            self.ObjectiveValue(),
            self.BestObjectiveBound(),
            self.WallTime(),
        )

    def solution_count(self):
        return self.__solution_count


def max_observed_unit(request: SchedulingRequest) -> int:
    return max(
        (
            t
            for role in request.roles
            for person in role.people
            for interval in person.availability
            for t in interval
        ),
        default=-1,
    )


def can_start_at(person: Person, t: int, meeting_duration: int) -> bool:
    return any(b <= t <= e - meeting_duration for b, e in person.availability)


def build_model(request: SchedulingRequest) -> CohortModel:
    model = cp_model.CpModel()
    duration = request.meeting_duration_units
    times = range(max_observed_unit(request) + 1)
    person_vars: dict[VarKey, cp_model.IntVar] = {}

    for r, role in enumerate(request.roles):
        for p, person in enumerate(role.people):
            for t in times:
                curr_var = model.NewBoolVar(f"{role.name} {person.id} at {t}")
                # The whole meeting has to fit inside one availability window.
                if not can_start_at(person, t, duration):
                    model.Add(curr_var == 0)
                person_vars[VarKey(r, p, t)] = curr_var
            # A person attends at most one meeting at any moment.
            for t in times:
                model.AddAtMostOne(
                    [
                        person_vars[VarKey(r, p, u)]
                        for u in range(t, min(t + duration, times.stop))
                    ]
                )
            if times:
                model.Add(
                    sum(person_vars[VarKey(r, p, t)] for t in times)
                    <= person.max_assignments
                )

    group_count_vars = {
        t: model.NewIntVar(0, request.total_people, f"cohort count at {t}")
        for t in times
    }
    for t in times:
        group_count = group_count_vars[t]
        slot_vars = []
        for r, role in enumerate(request.roles):
            role_vars = [person_vars[VarKey(r, p, t)] for p in range(len(role.people))]
            slot_vars.extend(role_vars)
            if role_vars:
                model.Add(sum(role_vars) <= role.max_per_cohort * group_count)
                model.Add(sum(role_vars) >= role.effective_min * group_count)
            elif role.effective_min > 0:
                model.Add(group_count == 0)
        # No cohort without anyone in it.
        if slot_vars:
            model.Add(group_count <= sum(slot_vars))
        else:
            model.Add(group_count == 0)

    model.Maximize(sum(person_vars.values()))
    return CohortModel(
        model=model,
        times=times,
        person_vars=person_vars,
        group_count_vars=group_count_vars,
    )


def solve_model(
    cohort_model: CohortModel,
    request: SchedulingRequest,
    config: SolverConfig,
) -> SolvedModel | None:
    solver = cp_model.CpSolver()
    solver.parameters.max_time_in_seconds = config.time_limit_for(request.total_people)
    if config.num_workers > 0:
        solver.parameters.num_workers = config.num_workers
    solver.parameters.log_search_progress = config.log_progress

    logger.info(
        "Solving: %d people, %d candidate start times, %d variables, time limit %.0fs",
        request.total_people,
        len(cohort_model.times),
        len(cohort_model.person_vars),
        solver.parameters.max_time_in_seconds,
    )
    progress = SolutionProgressLogger()
    try:
        status = solver.Solve(cohort_model.model, progress)
    except Exception:
        logger.exception("Solver failed")
        return None

    if status not in (cp_model.OPTIMAL, cp_model.FEASIBLE):
        logger.info("No schedule found (%s)", solver.StatusName(status))
        return None
    logger.info(
        "Schedule found! Objective value: %s (%s after %d solutions)",
        solver.ObjectiveValue(),
        solver.StatusName(status),
        progress.solution_count(),
    )

    assignments: dict[int, dict[str, list[str]]] = defaultdict(lambda: defaultdict(list))
    for key, var in cohort_model.person_vars.items():
        if solver.Value(var):
            role = request.roles[key.role]
            assignments[key.time][role.name].append(role.people[key.person].id)
    group_counts = {
        t: solver.Value(var) for t, var in cohort_model.group_count_vars.items()
    }
    return SolvedModel(
        assignments={t: dict(by_role) for t, by_role in assignments.items()},
        group_counts=group_counts,
        objective=solver.ObjectiveValue(),
    )


def create_schedule(
    request: SchedulingRequest, config: SolverConfig | None = None
) -> Schedule | None:
    """Schedule everyone we can into cohorts, or return None if nobody fits."""
    request.validate()
    config = config or SolverConfig()
    cohort_model = build_model(request)
    if not cohort_model.person_vars:
        logger.info("Nothing to schedule: no people or no availability")
        return None
    solved = solve_model(cohort_model, request, config)
    if solved is None:
        return None
    if not solved.assignments:
        logger.info("No schedule found: nobody could be assigned")
        return None
    return decompose(
        solved.assignments,
        solved.group_counts,
        request.meeting_duration_units,
        [role.name for role in request.roles],
    )


@click.command()
@click.option("--roles", "roles_path", help="Person type CSV (path or URL)")
@click.option("--people", "people_path", help="People CSV (path or URL)")
@click.option(
    "--meeting-minutes", type=int, help="Length of each meeting, in minutes"
)
@click.option("--unit-minutes", type=int, help="Length of one time unit, in minutes")
@click.option(
    "--max-time",
    type=float,
    help="Upper bound (in seconds) on the time spent solving",
)
@click.option(
    "--anchor",
    type=click.DateTime(),
    help="Date in the week the cohorts should be written out for (default: this week)",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default="cohorts.csv",
    show_default=True,
)
@click.option("--verbose", "-v", is_flag=True)
def main(
    roles_path, people_path, meeting_minutes, unit_minutes, max_time, anchor, output, verbose
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        request, unit_minutes = get_request_data(
            roles_path, people_path, meeting_minutes, unit_minutes
        )
    except (SchedulingError, ValueError) as e:
        raise click.ClickException(str(e)) from e

    config = solver_config_from_env()
    config.log_progress = config.log_progress or verbose
    if max_time is not None:
        config.max_time_seconds = max_time
        config.min_time_seconds = min(config.min_time_seconds, max_time)

    schedule = create_schedule(request, config)
    if schedule is None:
        print("No schedule found :(")
        return

    print(pretty_print_schedule(schedule, request, unit_minutes))
    if verify_schedule(request, schedule):
        print("Solution checked.")
    else:
        print("Solution check failed:")
    for violation in find_violations(request, schedule):
        print(f"\t{violation}")

    anchor = this_monday_utc(anchor or datetime.now(timezone.utc))
    write_schedule_to_csv(schedule, request, output, anchor, unit_minutes)
    print(f"Wrote {len(schedule)} cohorts to {output}")


if __name__ == "__main__":
    main()

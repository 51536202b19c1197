import logging
from collections import Counter

import pytest
from click.testing import CliRunner
from ortools.sat.python import cp_model

from scheduler.cohort import sat
from scheduler.cohort.errors import ConfigurationError
from scheduler.cohort.sat import (
    SolverConfig,
    VarKey,
    build_model,
    can_start_at,
    create_schedule,
    max_observed_unit,
    solver_config_from_env,
)
from scheduler.cohort.utils import Person, PersonType, SchedulingRequest
from scheduler.cohort.verify import find_violations, verify_schedule

_CONFIG = SolverConfig(min_time_seconds=10, max_time_seconds=10, num_workers=1)


def people(prefix: str, n: int, availability, cap: int = 1) -> list[Person]:
    return [
        Person(f"{prefix}{i}", f"{prefix.upper()} {i}", list(availability), cap)
        for i in range(n)
    ]


def assert_valid(request, schedule):
    assert verify_schedule(request, schedule)
    assert find_violations(request, schedule) == []


class TestModel:
    def test_max_observed_unit(self):
        request = SchedulingRequest(
            2, [PersonType("A", 1, 1, [Person("a", "A", [(3, 7), (1, 12)], 1)])]
        )
        assert max_observed_unit(request) == 12
        assert max_observed_unit(SchedulingRequest(2, [PersonType("A", 1, 1, [])])) == -1

    def test_can_start_at(self):
        person = Person("a", "A", [(0, 4), (6, 10)], 1)
        assert [t for t in range(12) if can_start_at(person, t, 2)] == [0, 1, 2, 6, 7, 8]

    def test_one_variable_per_role_person_time(self):
        request = SchedulingRequest(
            2,
            [
                PersonType("Participant", 1, 2, people("p", 3, [(0, 5)])),
                PersonType("Facilitator", 1, 1, people("f", 1, [(2, 9)])),
            ],
        )
        cohort_model = build_model(request)
        assert cohort_model.times == range(10)
        assert len(cohort_model.person_vars) == 4 * 10
        assert VarKey(role=1, person=0, time=9) in cohort_model.person_vars
        assert set(cohort_model.group_count_vars) == set(range(10))
        assert cohort_model.model.Validate() == ""

    def test_time_limit_scales_with_people(self):
        config = SolverConfig(min_time_seconds=5, max_time_seconds=60, seconds_per_person=0.5)
        assert config.time_limit_for(2) == 5
        assert config.time_limit_for(40) == 20
        assert config.time_limit_for(1000) == 60

    def test_effective_min(self):
        assert PersonType("A", 3, 4, people("a", 2, [])).effective_min == 2
        assert PersonType("A", 3, 4, people("a", 5, [])).effective_min == 3
        assert PersonType("A", 3, 4, []).effective_min == 1
        assert PersonType("A", 0, 4, []).effective_min == 0


class TestCreateSchedule:
    def test_two_participants_and_a_facilitator(self, caplog):
        caplog.set_level(logging.INFO, logger="scheduler.cohort.sat")
        request = SchedulingRequest(
            meeting_duration_units=2,
            roles=[
                PersonType("Participant", 3, 4, people("p", 2, [(0, 10)])),
                PersonType("Facilitator", 1, 1, people("f", 1, [(0, 10)])),
            ],
        )
        schedule = create_schedule(request, _CONFIG)
        assert schedule is not None
        assert len(schedule) == 1
        cohort = schedule[0]
        assert sorted(cohort.members["Participant"]) == ["p0", "p1"]
        assert cohort.members["Facilitator"] == ["f0"]
        assert 0 <= cohort.start_time <= 8
        assert cohort.end_time == cohort.start_time + 2
        assert_valid(request, schedule)
        assert "Solver failed" not in caplog.text
        assert "Schedule found!" in caplog.text
        assert "solutions)" in caplog.text

    def test_nobody_available(self):
        request = SchedulingRequest(
            2, [PersonType("Participant", 1, 4, [Person("p", "P", [], 1)])]
        )
        assert create_schedule(request, _CONFIG) is None

    def test_required_role_unavailable(self):
        request = SchedulingRequest(
            meeting_duration_units=2,
            roles=[
                PersonType("Participant", 1, 4, people("p", 4, [(0, 10)])),
                PersonType("Facilitator", 1, 1, [Person("f", "F", [], 3)]),
            ],
        )
        assert create_schedule(request, _CONFIG) is None

    def test_empty_required_role(self):
        request = SchedulingRequest(
            meeting_duration_units=2,
            roles=[
                PersonType("Participant", 1, 4, people("p", 4, [(0, 10)])),
                PersonType("Facilitator", 1, 1, []),
            ],
        )
        assert create_schedule(request, _CONFIG) is None

    def test_several_cohorts_in_one_slot(self):
        request = SchedulingRequest(
            meeting_duration_units=4,
            roles=[
                PersonType("Participant", 2, 4, people("p", 9, [(0, 8), (20, 28)])),
                PersonType("Facilitator", 1, 1, people("f", 3, [(0, 8), (20, 28)])),
            ],
        )
        schedule = create_schedule(request, _CONFIG)
        assert schedule is not None
        assert_valid(request, schedule)
        # Everybody fits, one facilitator per cohort.
        assert len(schedule) == 3
        assert sum(len(c.members["Participant"]) for c in schedule) == 9
        for cohort in schedule:
            assert 2 <= len(cohort.members["Participant"]) <= 4
            assert len(cohort.members["Facilitator"]) == 1

    def test_person_in_several_cohorts_up_to_cap(self):
        request = SchedulingRequest(
            meeting_duration_units=2,
            roles=[
                PersonType("Participant", 1, 1, people("p", 1, [(0, 2), (5, 7), (9, 11)], cap=2)),
                PersonType("Facilitator", 1, 1, people("f", 1, [(0, 11)], cap=5)),
            ],
        )
        schedule = create_schedule(request, _CONFIG)
        assert schedule is not None
        assert_valid(request, schedule)
        assert len(schedule) == 2
        counts = Counter(pid for c in schedule for pid in c.members["Participant"])
        assert counts["p0"] == 2

    def test_meetings_do_not_overlap(self):
        request = SchedulingRequest(
            meeting_duration_units=2,
            roles=[
                PersonType("Participant", 1, 1, people("p", 1, [(0, 5)], cap=5)),
                PersonType("Facilitator", 1, 1, people("f", 1, [(0, 5)], cap=5)),
            ],
        )
        schedule = create_schedule(request, _CONFIG)
        assert schedule is not None
        assert_valid(request, schedule)
        assert len(schedule) == 2
        starts = sorted(c.start_time for c in schedule)
        assert starts[1] - starts[0] >= 2

    def test_caps_and_bounds_on_mixed_availability(self):
        request = SchedulingRequest(
            meeting_duration_units=3,
            roles=[
                PersonType(
                    "Participant",
                    2,
                    3,
                    people("a", 4, [(0, 6)])
                    + people("b", 3, [(4, 12)], cap=2)
                    + people("c", 2, [(10, 16)]),
                ),
                PersonType(
                    "Facilitator",
                    1,
                    1,
                    people("f", 2, [(0, 16)], cap=2) + people("g", 1, [(3, 9)]),
                ),
            ],
        )
        schedule = create_schedule(request, _CONFIG)
        assert schedule is not None
        assert_valid(request, schedule)

    def test_duplicate_role_names_rejected(self):
        request = SchedulingRequest(
            2,
            [
                PersonType("Participant", 1, 2, people("p", 2, [(0, 4)])),
                PersonType("Participant", 1, 2, people("q", 2, [(0, 4)])),
            ],
        )
        with pytest.raises(ConfigurationError, match="Participant"):
            create_schedule(request, _CONFIG)

    def test_inverted_bounds_rejected(self):
        request = SchedulingRequest(
            2, [PersonType("Facilitator", 3, 2, people("f", 2, [(0, 4)]))]
        )
        with pytest.raises(ConfigurationError, match="Facilitator"):
            create_schedule(request, _CONFIG)

    def test_solver_fault_is_no_solution(self, monkeypatch, caplog):
        def broken_solve(self, *args, **kwargs):
            raise RuntimeError("solver crashed")

        monkeypatch.setattr(cp_model.CpSolver, "Solve", broken_solve)
        request = SchedulingRequest(
            2,
            [
                PersonType("Participant", 1, 2, people("p", 2, [(0, 4)])),
                PersonType("Facilitator", 1, 1, people("f", 1, [(0, 4)])),
            ],
        )
        assert create_schedule(request, _CONFIG) is None
        assert "Solver failed" in caplog.text

    def test_stopped_without_solution_is_no_solution(self, monkeypatch, caplog):
        def stopped_solve(self, *args, **kwargs):
            return cp_model.UNKNOWN

        monkeypatch.setattr(cp_model.CpSolver, "Solve", stopped_solve)
        caplog.set_level(logging.INFO, logger="scheduler.cohort.sat")
        request = SchedulingRequest(
            2,
            [
                PersonType("Participant", 1, 2, people("p", 2, [(0, 4)])),
                PersonType("Facilitator", 1, 1, people("f", 1, [(0, 4)])),
            ],
        )
        assert create_schedule(request, _CONFIG) is None
        assert "No schedule found" in caplog.text
        assert "Solver failed" not in caplog.text


class TestSolverConfig:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("COHORT_MAX_TIME_SECONDS", "30")
        monkeypatch.setenv("COHORT_NUM_WORKERS", "2")
        monkeypatch.setenv("COHORT_LOG_PROGRESS", "true")
        config = solver_config_from_env()
        assert config.max_time_seconds == 30
        assert config.num_workers == 2
        assert config.log_progress

    def test_log_progress_off_by_default(self, monkeypatch):
        monkeypatch.delenv("COHORT_LOG_PROGRESS", raising=False)
        assert not solver_config_from_env().log_progress

    @pytest.mark.parametrize("flags,expected", [([], False), (["--verbose"], True)])
    def test_verbose_turns_on_search_logging(self, tmp_path, monkeypatch, flags, expected):
        monkeypatch.delenv("COHORT_LOG_PROGRESS", raising=False)
        roles = tmp_path / "roles.csv"
        roles.write_text(
            "name,min_per_cohort,max_per_cohort,max_assignments\nParticipant,1,2,1\n"
        )
        people_csv = tmp_path / "people.csv"
        people_csv.write_text(
            "role,id,name,availability,max_assignments,blocked\nParticipant,p1,Ada,540-720,,\n"
        )
        configs = []

        def fake_create_schedule(request, config):
            configs.append(config)
            return None

        monkeypatch.setattr(sat, "create_schedule", fake_create_schedule)
        result = CliRunner().invoke(
            sat.main, ["--roles", str(roles), "--people", str(people_csv)] + flags
        )
        assert result.exit_code == 0, result.output
        assert "No schedule found" in result.output
        assert configs[0].log_progress is expected

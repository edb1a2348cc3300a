import datetime as dt

import pytest

from phase_planner.errors import PhaseNotFoundError, ProjectValidationError, StaleStateError
from phase_planner.project_models import Phase, PhaseSpec, Project, RecurringConfig
from phase_planner.repository import (
    InMemoryPhaseRepository,
    apply_mode_switch,
    commit_overlap_repairs,
    phase_from_record,
    phase_to_record,
)
from phase_planner.scheduling import ModeSwitchPlan, plan_mode_switch


def _project():
    return Project(
        id="p1",
        name="January",
        start_date=dt.date(2026, 1, 1),
        end_date=dt.date(2026, 1, 31),
        estimated_hours=80,
    )


def _seeded_repo():
    return InMemoryPhaseRepository(
        [
            Phase(name="Phase 1", project_id="p1", start_date=dt.date(2026, 1, 1), end_date=dt.date(2026, 1, 16)),
            Phase(name="Phase 2", project_id="p1", start_date=dt.date(2026, 1, 17), end_date=dt.date(2026, 1, 31)),
            Phase(name="Elsewhere", project_id="p2", start_date=dt.date(2026, 1, 1), end_date=dt.date(2026, 1, 9)),
        ]
    )


def test_in_memory_repository_crud():
    repo = _seeded_repo()

    phases = repo.list_by_project("p1")
    assert [p.id for p in phases] == ["phase-1", "phase-2"]

    repo.update("phase-1", {"time_allocation_hours": 12.0})
    assert repo.list_by_project("p1")[0].time_allocation_hours == 12.0

    repo.delete("phase-2")
    assert [p.id for p in repo.list_by_project("p1")] == ["phase-1"]

    with pytest.raises(PhaseNotFoundError):
        repo.delete("phase-2")
    with pytest.raises(PhaseNotFoundError):
        repo.update("missing", {"name": "x"})
    with pytest.raises(ProjectValidationError):
        repo.update("phase-1", {"colour": "red"})


def test_generated_ids_skip_ids_already_stored():
    repo = InMemoryPhaseRepository([Phase(name="Seeded", id="phase-1", project_id="p1")])

    created = repo.create(Phase(name="New", project_id="p1"))

    assert created.id == "phase-2"
    assert [p.id for p in repo.list_by_project("p1")] == ["phase-1", "phase-2"]


def test_repository_returns_copies():
    repo = _seeded_repo()

    repo.list_by_project("p1")[0].name = "Changed"

    assert repo.list_by_project("p1")[0].name == "Phase 1"


def test_find_recurring_template():
    repo = _seeded_repo()
    assert repo.find_recurring_template("p1") is None

    repo.create(Phase(name="Weekly", project_id="p3", is_recurring=True, recurring_config=RecurringConfig("daily")))

    assert repo.find_recurring_template("p3").name == "Weekly"


def test_apply_mode_switch_replaces_split_phases_with_template():
    repo = _seeded_repo()
    plan = plan_mode_switch(
        _project(), repo.list_by_project("p1"), "recurring", RecurringConfig("weekly", weekly_day_of_week=1), 2
    )

    created = apply_mode_switch(repo, plan)

    assert len(created) == 1
    assert repo.find_recurring_template("p1").id == created[0].id
    assert [p.is_recurring for p in repo.list_by_project("p1")] == [True]
    assert len(repo.list_by_project("p2")) == 1


def test_apply_mode_switch_rejects_stale_plan():
    repo = _seeded_repo()
    plan = plan_mode_switch(_project(), repo.list_by_project("p1"), "recurring", RecurringConfig("daily"), 1)
    repo.create(Phase(name="Phase 3", project_id="p1", start_date=dt.date(2026, 1, 20), end_date=dt.date(2026, 1, 25)))

    with pytest.raises(StaleStateError):
        apply_mode_switch(repo, plan)
    assert len(repo.list_by_project("p1")) == 3


def test_commit_overlap_repairs_writes_start_dates():
    repo = InMemoryPhaseRepository(
        [
            Phase(name="A", id="a", project_id="p1", start_date=dt.date(2026, 1, 1), end_date=dt.date(2026, 1, 15)),
            Phase(name="B", id="b", project_id="p1", start_date=dt.date(2026, 1, 15), end_date=dt.date(2026, 1, 31)),
        ]
    )

    repairs = commit_overlap_repairs(repo, "p1")

    assert len(repairs) == 1
    assert repo.list_by_project("p1")[1].start_date == dt.date(2026, 1, 16)
    assert commit_overlap_repairs(repo, "p1") == []


def test_phase_from_record_reads_legacy_and_camel_case_names():
    phase = phase_from_record(
        {
            "id": 7,
            "projectId": "p1",
            "name": "Design",
            "startDate": "2026-01-01T00:00:00Z",
            "dueDate": "2026-01-16T00:00:00.000Z",
            "timeAllocation": 40,
        }
    )

    assert phase.id == "7"
    assert phase.project_id == "p1"
    assert phase.start_date == dt.date(2026, 1, 1)
    assert phase.end_date == dt.date(2026, 1, 16)
    assert phase.time_allocation_hours == 40.0


def test_canonical_field_wins_over_legacy_alias():
    phase = phase_from_record(
        {"name": "Build", "end_date": "2026-01-31", "dueDate": "2026-01-20", "time_allocation_hours": 8, "timeAllocation": 3}
    )

    assert phase.end_date == dt.date(2026, 1, 31)
    assert phase.time_allocation_hours == 8


def test_recurring_record_drops_start_date():
    phase = phase_from_record(
        {
            "name": "Standup",
            "isRecurring": True,
            "startDate": "2026-01-01",
            "timeAllocationHours": 1,
            "recurringConfig": {"type": "weekly", "interval": 1, "weeklyDayOfWeek": 3},
        }
    )

    assert phase.start_date is None
    assert phase.recurring_config == RecurringConfig(type="weekly", interval=1, weekly_day_of_week=3)


def test_phase_from_record_rejects_bad_values():
    with pytest.raises(ProjectValidationError):
        phase_from_record({"name": "", "end_date": "2026-01-01"})
    with pytest.raises(ProjectValidationError):
        phase_from_record({"name": "x", "end_date": "next tuesday"})
    with pytest.raises(ProjectValidationError):
        phase_from_record({"name": "x", "time_allocation_hours": "lots"})


def test_phase_to_record_keeps_legacy_aliases_in_sync():
    record = phase_to_record(
        Phase(name="Design", id="a", start_date=dt.date(2026, 1, 1), end_date=dt.date(2026, 1, 16), time_allocation_hours=40)
    )

    assert record["end_date"] == record["due_date"] == "2026-01-16"
    assert record["time_allocation_hours"] == record["time_allocation"] == 40
    assert phase_from_record(record).end_date == dt.date(2026, 1, 16)


def test_apply_mode_switch_checks_exclusivity_before_deleting():
    repo = InMemoryPhaseRepository(
        [
            Phase(name="A", id="a", project_id="p1", start_date=dt.date(2026, 1, 1), end_date=dt.date(2026, 1, 16)),
            Phase(name="B", id="b", project_id="p1", start_date=dt.date(2026, 1, 17), end_date=dt.date(2026, 1, 31)),
        ]
    )
    plan = ModeSwitchPlan(
        project_id="p1",
        source="split",
        target="recurring",
        to_delete=["a", "b"],
        to_create=[
            PhaseSpec("Recurring Phase", None, dt.date(2026, 1, 31), 2, True, RecurringConfig("daily")),
            PhaseSpec("Extra", dt.date(2026, 1, 1), dt.date(2026, 1, 5), 0),
        ],
    )

    with pytest.raises(StaleStateError):
        apply_mode_switch(repo, plan)
    assert [p.id for p in repo.list_by_project("p1")] == ["a", "b"]

from __future__ import annotations

import datetime as _dt
import itertools
import logging
from dataclasses import fields, replace
from typing import Any, Mapping, Protocol

from dateutil import parser as _date_parser

from .date_math import normalize_to_midnight
from .errors import PhaseNotFoundError, ProjectValidationError, StaleStateError
from .project_models import Phase, RecurringConfig
from .scheduling import ModeSwitchPlan, PhaseRepair, detect_mode, repair_overlaps
from .validation import check_exclusivity

logger = logging.getLogger(__name__)

_PHASE_FIELDS = {f.name for f in fields(Phase)}

# canonical name -> accepted record keys, in priority order
_PHASE_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("id",),
    "project_id": ("project_id", "projectId"),
    "name": ("name",),
    "start_date": ("start_date", "startDate"),
    "end_date": ("end_date", "endDate", "due_date", "dueDate"),
    "time_allocation_hours": ("time_allocation_hours", "timeAllocationHours", "time_allocation", "timeAllocation"),
    "is_recurring": ("is_recurring", "isRecurring"),
    "recurring_config": ("recurring_config", "recurringConfig"),
}

_CONFIG_ALIASES: dict[str, tuple[str, ...]] = {
    "type": ("type", "recurringType"),
    "interval": ("interval", "recurringInterval"),
    "weekly_day_of_week": ("weekly_day_of_week", "weeklyDayOfWeek"),
    "monthly_pattern": ("monthly_pattern", "monthlyPattern"),
    "monthly_date": ("monthly_date", "monthlyDate"),
    "monthly_week_of_month": ("monthly_week_of_month", "monthlyWeekOfMonth"),
    "monthly_day_of_week": ("monthly_day_of_week", "monthlyDayOfWeek"),
    "rrule": ("rrule",),
}


class PhaseRepository(Protocol):
    """Storage for a project's phases. Implementations own ids and persistence."""

    def create(self, phase: Phase) -> Phase:
        ...

    def update(self, phase_id: str, changes: Mapping[str, Any]) -> None:
        ...

    def delete(self, phase_id: str) -> None:
        ...

    def list_by_project(self, project_id: str) -> list[Phase]:
        ...

    def find_recurring_template(self, project_id: str) -> Phase | None:
        ...


class InMemoryPhaseRepository:
    """Dict-backed PhaseRepository. Hands out copies so callers cannot mutate stored phases."""

    def __init__(self, phases: list[Phase] | None = None) -> None:
        self._phases: dict[str, Phase] = {}
        self._ids = itertools.count(1)
        for phase in phases or []:
            self.create(phase)

    def create(self, phase: Phase) -> Phase:
        phase_id = phase.id or self._next_free_id()
        if phase_id in self._phases:
            raise ProjectValidationError(f"Duplicate phase id '{phase_id}'")
        stored = replace(phase, id=phase_id)
        self._phases[phase_id] = stored
        return replace(stored)

    def _next_free_id(self) -> str:
        while True:
            candidate = f"phase-{next(self._ids)}"
            if candidate not in self._phases:
                return candidate

    def update(self, phase_id: str, changes: Mapping[str, Any]) -> None:
        if phase_id not in self._phases:
            raise PhaseNotFoundError(phase_id)
        unknown = sorted(set(changes) - _PHASE_FIELDS)
        if unknown or "id" in changes:
            raise ProjectValidationError(f"Cannot update phase '{phase_id}': unexpected fields {unknown or ['id']}")
        self._phases[phase_id] = replace(self._phases[phase_id], **changes)

    def delete(self, phase_id: str) -> None:
        if self._phases.pop(phase_id, None) is None:
            raise PhaseNotFoundError(phase_id)

    def list_by_project(self, project_id: str) -> list[Phase]:
        return [replace(phase) for phase in self._phases.values() if phase.project_id == project_id]

    def find_recurring_template(self, project_id: str) -> Phase | None:
        for phase in self._phases.values():
            if phase.project_id == project_id and phase.is_recurring:
                return replace(phase)
        return None


def apply_mode_switch(repository: PhaseRepository, plan: ModeSwitchPlan) -> list[Phase]:
    """
    Execute a mode switch plan against the current stored phases.

    The stored state is re-read first. StaleStateError is raised before
    anything is deleted when it no longer matches what the plan was computed
    from, or when the phases left behind would mix with the created ones.
    """

    current = repository.list_by_project(plan.project_id)
    current_ids = {phase.id for phase in current if phase.is_phase or phase.is_recurring}
    if detect_mode(current) != plan.source or current_ids != set(plan.to_delete):
        raise StaleStateError(f"Phases of project {plan.project_id} changed since the mode switch was planned")

    kept = [phase for phase in current if phase.id not in current_ids]
    exclusivity = check_exclusivity(kept + [spec.to_phase(plan.project_id) for spec in plan.to_create])
    if not exclusivity.is_valid:
        raise StaleStateError(exclusivity.error)

    for phase_id in plan.to_delete:
        repository.delete(phase_id)
    created = [repository.create(spec.to_phase(plan.project_id)) for spec in plan.to_create]
    logger.info("Project %s switched from %s to %s", plan.project_id, plan.source, plan.target)
    return created


def commit_overlap_repairs(repository: PhaseRepository, project_id: str) -> list[PhaseRepair]:
    """Recompute overlap repairs from the stored phases and write them back."""

    repairs = repair_overlaps(repository.list_by_project(project_id))
    for repair in repairs:
        if repair.phase_id is None:
            continue
        repository.update(repair.phase_id, repair.updates)
    return repairs


# --------------------------------------------------------------------------- #
# Record adapter
# --------------------------------------------------------------------------- #


def phase_from_record(record: Mapping[str, Any], where: str = "phase") -> Phase:
    """
    Build a Phase from a stored record or API payload.

    Reads snake_case and camelCase keys as well as the legacy ``dueDate`` and
    ``timeAllocation`` names; the canonical name wins when both are set.
    Recurring templates never keep a start date.
    """

    if not isinstance(record, Mapping):
        raise ProjectValidationError(f"{where}: expected mapping for phase")
    values = _pick(record, _PHASE_ALIASES)

    name = values.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ProjectValidationError(f"{where}.name: expected non-empty string")

    hours = values.get("time_allocation_hours", 0)
    if isinstance(hours, bool) or not isinstance(hours, (int, float)):
        raise ProjectValidationError(f"{where}.time_allocation_hours: expected number")

    is_recurring = bool(values.get("is_recurring", False))
    config = None
    if values.get("recurring_config") is not None:
        config = config_from_record(values["recurring_config"], f"{where}.recurring_config")

    start_date = parse_record_date(values.get("start_date"), f"{where}.start_date")
    if is_recurring:
        start_date = None

    return Phase(
        id=None if values.get("id") is None else str(values["id"]),
        project_id=None if values.get("project_id") is None else str(values["project_id"]),
        name=name,
        start_date=start_date,
        end_date=parse_record_date(values.get("end_date"), f"{where}.end_date"),
        time_allocation_hours=float(hours),
        is_recurring=is_recurring,
        recurring_config=config,
    )


def config_from_record(record: Mapping[str, Any], where: str = "recurring_config") -> RecurringConfig:
    if not isinstance(record, Mapping):
        raise ProjectValidationError(f"{where}: expected mapping")
    values = _pick(record, _CONFIG_ALIASES)
    if not isinstance(values.get("type"), str):
        raise ProjectValidationError(f"{where}.type: expected one of daily, weekly, monthly")
    for key in ("interval", "weekly_day_of_week", "monthly_date", "monthly_week_of_month", "monthly_day_of_week"):
        value = values.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            raise ProjectValidationError(f"{where}.{key}: expected integer")
    return RecurringConfig(**values)


def phase_to_record(phase: Phase) -> dict[str, Any]:
    """Canonical snake_case record, plus the legacy aliases older readers still expect."""

    record: dict[str, Any] = {
        "id": phase.id,
        "project_id": phase.project_id,
        "name": phase.name,
        "start_date": _iso(phase.start_date),
        "end_date": _iso(phase.end_date),
        "time_allocation_hours": phase.time_allocation_hours,
        "is_recurring": phase.is_recurring,
        "recurring_config": None,
        "due_date": _iso(phase.end_date),
        "time_allocation": phase.time_allocation_hours,
    }
    if phase.recurring_config is not None:
        record["recurring_config"] = {
            key: value for key, value in vars(phase.recurring_config).items() if value is not None
        }
    return record


def parse_record_date(value: Any, where: str) -> _dt.date | None:
    """Accept a date, a datetime, or an ISO-8601 date / date-time string."""

    if value is None:
        return None
    if isinstance(value, (_dt.date, _dt.datetime)):
        return normalize_to_midnight(value)
    if not isinstance(value, str):
        raise ProjectValidationError(f"{where}: expected ISO-8601 date")
    try:
        return normalize_to_midnight(_date_parser.isoparse(value.strip()))
    except ValueError as exc:
        raise ProjectValidationError(f"{where}: expected ISO-8601 date, got '{value}'") from exc


def _pick(record: Mapping[str, Any], aliases: dict[str, tuple[str, ...]]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for canonical, keys in aliases.items():
        for key in keys:
            if record.get(key) is not None:
                values[canonical] = record[key]
                break
    return values


def _iso(value: _dt.date | None) -> str | None:
    return value.isoformat() if value is not None else None

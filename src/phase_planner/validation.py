from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass, field
from typing import Iterable

from . import budget, recurrence
from .date_math import add_days, normalize_to_midnight, span_days
from .project_models import PHASE_NAME_MAX_LENGTH, Phase, Project, ValidationResult

EXCLUSIVITY_ERROR = "Project cannot have both split phases and recurring template. These are mutually exclusive."

MIN_PHASE_SPACING_DAYS = 1


@dataclass(frozen=True)
class ExclusivityCheck:
    """Whether a phase set mixes date-range phases with a recurring template."""

    has_split_phases: bool
    has_recurring_template: bool
    error: str | None = None

    @property
    def is_valid(self) -> bool:
        return self.error is None


@dataclass
class PositionCheck:
    """Result of checking a dragged marker's date, with the range it may move in."""

    min_allowed_date: _dt.date
    max_allowed_date: _dt.date
    errors: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def check_exclusivity(phases: Iterable[Phase]) -> ExclusivityCheck:
    """
    A project holds either date-range phases or one recurring template.

    Evaluated over the set passed in every time; nothing is cached.
    """

    phases = list(phases)
    has_split = any(phase.start_date is not None for phase in phases)
    has_recurring = any(phase.is_recurring for phase in phases)
    return ExclusivityCheck(
        has_split_phases=has_split,
        has_recurring_template=has_recurring,
        error=EXCLUSIVITY_ERROR if has_split and has_recurring else None,
    )


def validate_continuity(
    phases: Iterable[Phase],
    project_start: _dt.date,
    project_end: _dt.date | None,
) -> ValidationResult:
    """
    Check that phases run back to back across the whole project.

    The first phase must start on the project start and the last must end on
    the project end (skipped for continuous projects). Adjacent phases sharing
    a day are an error. Any later start only produces a gap warning, counted
    as the days from one end to the next start.
    """

    result = ValidationResult()
    ordered = sort_by_start(_dated(phases))
    if not ordered:
        return result

    if ordered[0].start_date != normalize_to_midnight(project_start):
        result.errors.append("First phase should start at project start date")
    if project_end is not None and ordered[-1].end_date != normalize_to_midnight(project_end):
        result.errors.append("Last phase should end at project end date")

    for current, following in zip(ordered, ordered[1:]):
        if current.end_date >= following.start_date:
            result.errors.append(
                f'Overlap between "{current.name}" and "{following.name}" - phases must be on different days'
            )
            continue
        gap_days = span_days(current.end_date, following.start_date)
        result.warnings.append(
            f'{gap_days}-day gap between "{current.name}" and "{following.name}" (pause time with no estimate)'
        )
    return result


def validate_budgets(phases: Iterable[Phase], estimated_hours: float) -> budget.BudgetCheck:
    """Budget totals for the set. Always computed; the caller decides whether to block."""
    return budget.check_budget_constraint(phases, estimated_hours)


def validate_end_date_not_in_past(phase: Phase, today: _dt.date) -> ValidationResult:
    """A phase with hours still to spend must not end before ``today``."""

    result = ValidationResult()
    if phase.start_date is None or phase.end_date is None:
        return result
    if (phase.time_allocation_hours or 0) <= 0:
        return result
    if normalize_to_midnight(phase.end_date) < normalize_to_midnight(today):
        result.errors.append(f'Phase "{phase.name}" with estimated time cannot end in the past')
    return result


def minimum_phase_end_date(phase: Phase, today: _dt.date) -> _dt.date | None:
    """Earliest end date a phase may be given: today when it still has hours, else its current end."""

    if phase.end_date is None:
        return None
    current_end = normalize_to_midnight(phase.end_date)
    if (phase.time_allocation_hours or 0) <= 0:
        return current_end
    return max(current_end, normalize_to_midnight(today))


def validate_spacing(phases: Iterable[Phase]) -> ValidationResult:
    """Every phase but the last must leave at least one day before the next phase starts."""

    result = ValidationResult()
    ordered = sort_by_end([phase for phase in phases if phase.end_date is not None])
    for current, following in zip(ordered, ordered[1:]):
        next_start = following.start_date or current.end_date
        if next_start < add_days(current.end_date, MIN_PHASE_SPACING_DAYS):
            result.errors.append(
                f'Phase "{following.name}" must start at least 1 day after "{current.name}" ends'
            )
    return result


def validate_position(
    candidate: _dt.date,
    project_start: _dt.date,
    project_end: _dt.date,
    other_dates: Iterable[_dt.date],
    original_date: _dt.date | None = None,
) -> PositionCheck:
    """
    Check a marker being dragged to ``candidate``.

    It must stay strictly inside the project and must not land on another
    marker's date. ``original_date`` is ignored among ``other_dates`` so the
    marker can be dropped back where it started.
    """

    day = normalize_to_midnight(candidate)
    check = PositionCheck(
        min_allowed_date=add_days(project_start, 1),
        max_allowed_date=add_days(project_end, -1),
    )
    if day < check.min_allowed_date:
        check.errors.append("Phase marker must be at least 1 day after project start")
    if day > check.max_allowed_date:
        check.errors.append("Phase marker must be at least 1 day before project end")

    original = normalize_to_midnight(original_date) if original_date is not None else None
    for other in other_dates:
        other_day = normalize_to_midnight(other)
        if original is not None and other_day == original:
            continue
        if other_day == day:
            check.errors.append("Phase marker cannot overlap with another phase marker")
            break
    return check


def validate_time_allocation(hours: float) -> bool:
    """Zero is allowed (a placeholder phase); negative hours are not."""
    return hours >= 0


def validate_name(name: str | None) -> ValidationResult:
    result = ValidationResult()
    if name is None or not name.strip():
        result.errors.append("Phase name is required")
    elif len(name) > PHASE_NAME_MAX_LENGTH:
        result.errors.append(f"Phase name must be {PHASE_NAME_MAX_LENGTH} characters or less")
    return result


def validate_date_within_project(
    end_date: _dt.date,
    project_start: _dt.date,
    project_end: _dt.date | None,
    continuous: bool = False,
) -> ValidationResult:
    result = ValidationResult()
    if end_date < project_start:
        result.errors.append("Phase date cannot be before project start date")
    if not continuous and project_end is not None and end_date > project_end:
        result.errors.append("Phase date cannot be after project end date")
    return result


def validate_date_range(start_date: _dt.date | None, end_date: _dt.date) -> ValidationResult:
    """A phase may be a single day, but may not start after it ends."""

    result = ValidationResult()
    if start_date is not None and start_date > end_date:
        result.errors.append("Phase start date must not be after end date")
    return result


def validate_phase_within_project(phase: Phase, project: Project) -> ValidationResult:
    result = ValidationResult()
    if phase.project_id is not None and phase.project_id != project.id:
        result.errors.append(f'Phase "{phase.name}" belongs to project {phase.project_id}, not {project.id}')
    if phase.start_date is not None and phase.start_date < project.start_date:
        result.errors.append(
            f'Phase "{phase.name}" starts on {phase.start_date}, before project start {project.start_date}'
        )
    if (
        phase.end_date is not None
        and not project.continuous
        and project.end_date is not None
        and phase.end_date > project.end_date
    ):
        result.errors.append(f'Phase "{phase.name}" ends on {phase.end_date}, after project end {project.end_date}')
    return result


def validate_phase(phase: Phase, project: Project, today: _dt.date | None = None) -> ValidationResult:
    """All single-phase rules: name, hours, dates and, for templates, the recurrence pattern."""

    result = ValidationResult()
    _merge(result, validate_name(phase.name))
    if not validate_time_allocation(phase.time_allocation_hours):
        result.errors.append(f'Phase "{phase.name}" time allocation cannot be negative')

    if phase.is_recurring:
        _merge(result, recurrence.validate_config(True, phase.recurring_config, phase.time_allocation_hours))
        return result

    if phase.end_date is None:
        result.errors.append(f'Phase "{phase.name}" has no end date')
        return result
    _merge(
        result,
        validate_date_within_project(phase.end_date, project.start_date, project.end_date, project.continuous),
    )
    _merge(result, validate_date_range(phase.start_date, phase.end_date))
    if today is not None:
        _merge(result, validate_end_date_not_in_past(phase, today))
    return result


def validate_project(project: Project, today: _dt.date | None = None) -> ValidationResult:
    """
    Validate a project's whole phase set.

    Combines exclusivity, per-phase rules, continuity of split
    phases, and the budget ceiling. Templates are exempt from the budget
    check because their hours are per occurrence.
    """

    result = ValidationResult()
    phases = project.phases
    exclusivity = check_exclusivity(phases)
    if exclusivity.error:
        result.errors.append(exclusivity.error)

    templates = [phase for phase in phases if phase.is_recurring]
    if len(templates) > 1:
        result.errors.append("Project can have only one recurring template")

    for phase in phases:
        _merge(result, validate_phase(phase, project, today))

    split = [phase for phase in phases if phase.is_phase and not phase.is_recurring]
    if split:
        project_end = None if project.continuous else project.end_date
        _merge(result, validate_continuity(split, project.start_date, project_end))

    dated = [phase for phase in phases if not phase.is_recurring]
    check = validate_budgets(dated, project.estimated_hours)
    if not check.is_valid:
        result.errors.append(
            f"Phase allocations exceed project budget by {check.overage:g}h "
            f"({check.total_allocated:g}h of {check.project_budget:g}h)"
        )
    elif check.utilization_percentage >= budget.HIGH_UTILIZATION_THRESHOLD * 100 and check.remaining > 0:
        result.warnings.append(f"Phases use {check.utilization_percentage:.1f}% of project budget")
    return result


def sort_by_start(phases: Iterable[Phase]) -> list[Phase]:
    return sorted(phases, key=lambda phase: phase.start_date)


def sort_by_end(phases: Iterable[Phase]) -> list[Phase]:
    return sorted(phases, key=lambda phase: phase.end_date)


def _dated(phases: Iterable[Phase]) -> list[Phase]:
    return [phase for phase in phases if phase.start_date is not None and phase.end_date is not None]


def _merge(target: ValidationResult, other: ValidationResult) -> None:
    target.errors.extend(other.errors)
    target.warnings.extend(other.warnings)

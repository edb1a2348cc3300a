from __future__ import annotations

import datetime as _dt
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Literal

from . import recurrence
from .date_math import add_days, midpoint, normalize_to_midnight, span_days
from .errors import SchedulingError
from .project_models import Phase, PhaseSpec, Project, RecurringConfig
from .validation import MIN_PHASE_SPACING_DAYS, sort_by_end, sort_by_start

logger = logging.getLogger(__name__)

SHORT_PHASE_THRESHOLD_DAYS = 21
SHORT_APPEND_DAYS = 1
LONG_APPEND_DAYS = 6

PhaseMode = Literal["none", "split", "recurring"]
"""How a project's budget is laid out: not at all, as dated phases, or as one recurring template."""

PHASE_MODES: tuple[str, ...] = ("none", "split", "recurring")


@dataclass(frozen=True)
class SplitResult:
    """The two halves produced by splitting a project's timeline and budget."""

    phase1: PhaseSpec
    phase2: PhaseSpec

    @property
    def phases(self) -> list[PhaseSpec]:
        return [self.phase1, self.phase2]


@dataclass(frozen=True)
class NewPhaseDates:
    """Where an appended phase goes and where the previous last phase now ends."""

    new_phase_start: _dt.date
    new_phase_end: _dt.date
    last_phase_new_end: _dt.date


@dataclass(frozen=True)
class PhaseRepair:
    """A proposed update for one phase. Only the fields in ``updates`` change."""

    phase_id: str | None
    phase_name: str
    updates: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DateSyncResult:
    """Project dates widened to cover every phase, with one notification per change."""

    start_date: _dt.date
    end_date: _dt.date | None
    notifications: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.notifications)


@dataclass(frozen=True)
class ModeSwitchPlan:
    """
    A destructive mode switch as two explicit steps.

    The caller deletes every id in ``to_delete`` and then creates every spec
    in ``to_create``. Nothing is carried over between the two structures.
    """

    project_id: str
    source: PhaseMode
    target: PhaseMode
    to_delete: list[str] = field(default_factory=list)
    to_create: list[PhaseSpec] = field(default_factory=list)


def split_budget(
    project_start: _dt.date,
    project_end: _dt.date | None,
    estimated_hours: float,
) -> SplitResult:
    """
    Split a project's timeline and budget into two back-to-back halves.

    The split falls on the day holding the midpoint of the elapsed time.
    Phase 1 runs from the project start through that day, Phase 2 from the
    next day through the project end. Each half gets exactly half the hours.
    """

    if project_end is None:
        raise SchedulingError("Cannot split a project without an end date")
    start = normalize_to_midnight(project_start)
    end = normalize_to_midnight(project_end)
    if end <= start:
        raise SchedulingError(f"Cannot split project: end {end} must be after start {start}")

    middle = midpoint(start, end)
    half = estimated_hours / 2
    return SplitResult(
        phase1=PhaseSpec(name="Phase 1", start_date=start, end_date=middle, time_allocation_hours=half),
        phase2=PhaseSpec(name="Phase 2", start_date=add_days(middle, 1), end_date=end, time_allocation_hours=half),
    )


def append_phase(existing_phases: Iterable[Phase], project_end: _dt.date) -> NewPhaseDates:
    """
    Compute dates for a new phase appended at the end of the project.

    The chronologically last phase gives up its tail: one day when it spans
    SHORT_PHASE_THRESHOLD_DAYS or fewer, six days otherwise. The new phase
    ends on the project end and the last phase now ends the day before the
    new one starts.
    """

    dated = [phase for phase in existing_phases if phase.start_date is not None and phase.end_date is not None]
    if not dated:
        raise SchedulingError("Cannot add phase: no existing phases")

    last = sort_by_start(dated)[-1]
    last_span = span_days(last.start_date, last.end_date)
    new_span = SHORT_APPEND_DAYS if last_span <= SHORT_PHASE_THRESHOLD_DAYS else LONG_APPEND_DAYS

    end = normalize_to_midnight(project_end)
    new_start = add_days(end, -(new_span - 1))
    return NewPhaseDates(
        new_phase_start=new_start,
        new_phase_end=end,
        last_phase_new_end=add_days(new_start, -1),
    )


def build_appended_phases(
    existing_phases: Iterable[Phase],
    project_end: _dt.date,
    name: str | None = None,
) -> list[Phase]:
    """
    The proposed phase list after appending: the last phase shortened and a new zero-hour phase at the end.

    Input phases are not modified.
    """

    phases = [replace(phase) for phase in existing_phases]
    dates = append_phase(phases, project_end)
    dated = [phase for phase in phases if phase.start_date is not None and phase.end_date is not None]
    last = sort_by_start(dated)[-1]
    last.end_date = dates.last_phase_new_end

    phases.append(
        Phase(
            name=name or f"Phase {len(dated) + 1}",
            start_date=dates.new_phase_start,
            end_date=dates.new_phase_end,
            time_allocation_hours=0.0,
            project_id=last.project_id,
        )
    )
    return phases


def repair_overlaps(phases: Iterable[Phase]) -> list[PhaseRepair]:
    """
    Propose start-date moves that make phases strictly sequential.

    Whenever a phase starts on or before the end of the one before it, it is
    moved to start the day after. Moves are applied to a working copy so they
    compound along a run of overlapping phases. End dates are never touched.
    """

    working = sort_by_start(
        [replace(phase) for phase in phases if phase.start_date is not None and phase.end_date is not None]
    )
    repairs: list[PhaseRepair] = []
    for index in range(len(working) - 1):
        current = working[index]
        following = working[index + 1]
        # A start moved past its own end still occupies that day. The next phase
        # must clear it too, otherwise repairing the result would move it again.
        current_end = max(current.end_date, current.start_date)
        if current_end >= following.start_date:
            fixed_start = add_days(current_end, 1)
            repairs.append(PhaseRepair(following.id, following.name, {"start_date": fixed_start}))
            following.start_date = fixed_start

    if repairs:
        logger.debug("Proposed %d overlap repair(s)", len(repairs))
    return repairs


def apply_repairs(phases: Iterable[Phase], repairs: Iterable[PhaseRepair]) -> list[Phase]:
    """Copies of ``phases`` with each repair's updates applied (matched by phase id)."""

    updates: dict[str, dict[str, Any]] = {}
    for repair in repairs:
        if repair.phase_id is not None:
            updates.setdefault(repair.phase_id, {}).update(repair.updates)
    return [replace(phase, **updates.get(phase.id, {})) if phase.id is not None else replace(phase) for phase in phases]


def cascade_adjustment(
    phases: Iterable[Phase],
    adjusted_phase_id: str,
    new_end_date: _dt.date,
) -> list[Phase]:
    """
    Move one phase's end and push later phases forward to keep one day between phases.

    Phases are walked in end-date order after the adjusted one. Each phase
    that now starts too early is shifted (start and end together) by just
    enough days; the walk stops at the first phase that already fits. Returns
    copies sorted by end date, leaving out phases without an end date. An
    unknown ``adjusted_phase_id`` changes nothing.
    """

    ordered = sort_by_end([replace(phase) for phase in phases if phase.end_date is not None])
    index = next((i for i, phase in enumerate(ordered) if phase.id == adjusted_phase_id), None)
    if index is None:
        logger.debug("Cascade skipped: phase %s not found", adjusted_phase_id)
        return ordered

    previous_end = normalize_to_midnight(new_end_date)
    ordered[index].end_date = previous_end

    for phase in ordered[index + 1 :]:
        min_start = add_days(previous_end, MIN_PHASE_SPACING_DAYS)
        start = phase.start_date or previous_end
        if start >= min_start:
            break
        shift = span_days(start, min_start)
        if phase.start_date is not None:
            phase.start_date = add_days(phase.start_date, shift)
        phase.end_date = add_days(phase.end_date, shift)
        logger.debug("Cascade shifted phase %s by %d day(s)", phase.id or phase.name, shift)
        previous_end = phase.end_date
    return ordered


def sync_project_dates(project: Project, phases: Iterable[Phase] | None = None) -> DateSyncResult:
    """
    Widen the project's dates so every phase fits inside them.

    Phases are never shrunk to fit the project; the project grows instead.
    Continuous projects have no end to extend.
    """

    phases = list(project.phases if phases is None else phases)
    starts = [phase.start_date for phase in phases if phase.start_date is not None and not phase.is_recurring]
    ends = [phase.end_date for phase in phases if phase.end_date is not None and not phase.is_recurring]

    start = project.start_date
    end = project.end_date
    notifications: list[str] = []
    if starts and min(starts) < start:
        start = min(starts)
        notifications.append(f"Project start date adjusted to {start.isoformat()} to encompass earliest phase")
    if not project.continuous and end is not None and ends and max(ends) > end:
        end = max(ends)
        notifications.append(f"Project end date adjusted to {end.isoformat()} to encompass latest phase")
    return DateSyncResult(start_date=start, end_date=end, notifications=notifications)


def detect_mode(phases: Iterable[Phase]) -> PhaseMode:
    """Current layout of a phase set. Mixed sets report ``recurring``; validation flags them."""

    phases = list(phases)
    if any(phase.is_recurring for phase in phases):
        return "recurring"
    if any(phase.is_phase for phase in phases):
        return "split"
    return "none"


def plan_mode_switch(
    project: Project,
    phases: Iterable[Phase],
    target: PhaseMode,
    config: RecurringConfig | None = None,
    hours_per_occurrence: float = 0.0,
) -> ModeSwitchPlan:
    """
    Plan the delete-then-create sequence that moves a project to ``target`` mode.

    Split phases and the recurring template are deleted; bare milestones are
    kept. Switching to ``split`` creates the two halves of ``split_budget``;
    switching to ``recurring`` creates one template from ``config``.
    """

    if target not in PHASE_MODES:
        raise SchedulingError(f"Unknown phase mode '{target}', expected one of {list(PHASE_MODES)}")
    phases = list(phases)
    source = detect_mode(phases)
    if source == target:
        raise SchedulingError(f"Project {project.id} is already in '{target}' mode")

    to_delete = [phase.id for phase in phases if phase.id is not None and (phase.is_phase or phase.is_recurring)]

    to_create: list[PhaseSpec] = []
    if target == "split":
        if project.continuous:
            raise SchedulingError("Continuous projects cannot be split into phases")
        to_create = split_budget(project.start_date, project.end_date, project.estimated_hours).phases
    elif target == "recurring":
        check = recurrence.validate_config(True, config, hours_per_occurrence)
        if not check.is_valid:
            raise SchedulingError("Invalid recurring template: " + "; ".join(check.errors))
        rule = recurrence.build_rule(config, project.start_date, project.last_day, project.continuous)
        to_create = [
            PhaseSpec(
                name="Recurring Phase",
                start_date=None,
                end_date=None if project.continuous else project.end_date,
                time_allocation_hours=hours_per_occurrence,
                is_recurring=True,
                recurring_config=replace(config, rrule=rule),
            )
        ]

    logger.info(
        "Planned %s -> %s switch for project %s: delete %d, create %d",
        source,
        target,
        project.id,
        len(to_delete),
        len(to_create),
    )
    return ModeSwitchPlan(
        project_id=project.id,
        source=source,
        target=target,
        to_delete=to_delete,
        to_create=to_create,
    )

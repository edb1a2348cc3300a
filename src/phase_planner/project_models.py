from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Literal


RecurrenceType = Literal["daily", "weekly", "monthly"]
"""Allowed recurrence frequencies."""

MonthlyPattern = Literal["date", "dayOfWeek"]
"""Monthly recurrences repeat on a day of the month or an ordinal weekday (2nd Monday)."""

PHASE_NAME_MAX_LENGTH = 100


@dataclass
class RecurringConfig:
    """
    Declarative recurrence pattern carried by a recurring template.

    Weekdays are numbered 0 (Sunday) through 6 (Saturday). ``rrule`` holds a
    previously generated rule string; it is reused as-is when still valid.
    """

    type: RecurrenceType | str
    interval: int = 1
    weekly_day_of_week: int | None = None
    monthly_pattern: MonthlyPattern | str | None = None
    monthly_date: int | None = None
    monthly_week_of_month: int | None = None
    monthly_day_of_week: int | None = None
    rrule: str | None = None


@dataclass
class Phase:
    """
    A time-bounded slice of a project's budget.

    Phases carry both dates. A record with only ``end_date`` is a milestone,
    and a recurring template carries a pattern instead of a date range.
    """

    name: str
    end_date: date | None = None
    start_date: date | None = None
    time_allocation_hours: float = 0.0
    id: str | None = None
    project_id: str | None = None
    is_recurring: bool = False
    recurring_config: RecurringConfig | None = None

    @property
    def is_phase(self) -> bool:
        """True for date-range phases, False for milestones and templates."""
        return self.start_date is not None

    @property
    def duration_days(self) -> int | None:
        """Inclusive day count of the phase, None when a date is missing."""
        if self.start_date is None or self.end_date is None:
            return None
        return (self.end_date - self.start_date).days + 1

    def contains(self, day: date) -> bool:
        """Whether ``day`` falls inside the phase's inclusive range."""
        if self.start_date is None or self.end_date is None:
            return False
        return self.start_date <= day <= self.end_date


@dataclass
class Project:
    """Root container: timeframe, hour budget and the project's phases."""

    id: str
    name: str
    start_date: date
    end_date: date | None = None
    continuous: bool = False
    estimated_hours: float = 0.0
    phases: list[Phase] = field(default_factory=list)

    @property
    def recurring_template(self) -> Phase | None:
        """The project's recurring template, if it has one."""
        for phase in self.phases:
            if phase.is_recurring:
                return phase
        return None

    @property
    def last_day(self) -> date | None:
        """Last day recurring occurrences may fall on (the day before the end)."""
        if self.continuous or self.end_date is None:
            return None
        return self.end_date - timedelta(days=1)


@dataclass(frozen=True)
class RecurrenceOccurrence:
    """One concrete date generated from a recurrence pattern (numbered from 1)."""

    date: date
    occurrence_number: int


@dataclass(frozen=True)
class PhaseSpec:
    """A phase that has been computed but not yet persisted."""

    name: str
    start_date: date | None
    end_date: date | None
    time_allocation_hours: float
    is_recurring: bool = False
    recurring_config: RecurringConfig | None = None

    def to_phase(self, project_id: str | None = None) -> Phase:
        return Phase(
            name=self.name,
            start_date=self.start_date,
            end_date=self.end_date,
            time_allocation_hours=self.time_allocation_hours,
            project_id=project_id,
            is_recurring=self.is_recurring,
            recurring_config=self.recurring_config,
        )


@dataclass
class ValidationResult:
    """Outcome of a validation check. Failures are reported here, never raised."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

from __future__ import annotations


class PhasePlannerError(Exception):
    """Base class for errors raised by phase_planner."""


class ProjectValidationError(PhasePlannerError):
    """Raised when a project file or record is structurally invalid (bad fields, bad dates)."""


class SchedulingError(PhasePlannerError):
    """Raised when a scheduling operation is called without its preconditions (no phases to shrink, same-mode switch)."""


class RecurrenceRuleError(PhasePlannerError, ValueError):
    """Raised when a recurrence rule string cannot be decoded."""


class PhaseNotFoundError(PhasePlannerError, KeyError):
    """Raised when a repository is asked to change a phase it does not hold."""


class StaleStateError(PhasePlannerError):
    """Raised when a computed plan no longer matches the persisted phases."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable

from .project_models import Phase, ValidationResult

HIGH_UTILIZATION_THRESHOLD = 0.9
SINGLE_PHASE_DOMINANCE_THRESHOLD = 0.5
UNALLOCATED_THRESHOLD = 0.3
HEALTHY_UTILIZATION_RANGE = (70.0, 95.0)


@dataclass(frozen=True)
class BudgetCheck:
    """Allocated hours measured against a project budget."""

    total_allocated: float
    project_budget: float
    remaining: float
    overage: float
    utilization_percentage: float

    @property
    def is_valid(self) -> bool:
        """Exactly-at-budget is allowed; only strict excess is invalid."""
        return self.total_allocated <= self.project_budget


@dataclass(frozen=True)
class ScheduleCheck:
    """Whether another phase's hours fit into the remaining budget."""

    can_schedule: bool
    current_allocation: float
    new_allocation: float
    budget_conflicts: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class BudgetAnalysis:
    """Full budget picture for display: totals, shape of the allocation and advice."""

    total_allocated: float
    project_budget: float
    remaining: float
    overage: float
    utilization_percentage: float
    average_phase_allocation: float
    phase_count: int
    recommendations: list[str] = field(default_factory=list)

    @property
    def is_over_budget(self) -> bool:
        return self.total_allocated > self.project_budget


def total_allocation(phases: Iterable[Phase]) -> float:
    return sum(phase.time_allocation_hours or 0 for phase in phases)


def utilization(allocated: float, budget: float) -> float:
    """Allocated hours as a percentage of ``budget``; 0 for a zero budget, unbounded above 100."""
    if budget == 0:
        return 0.0
    return allocated / budget * 100


def remaining(allocated: float, budget: float) -> float:
    """Budget left over. Negative when over budget."""
    return budget - allocated


def overage(allocated: float, budget: float) -> float:
    return max(0.0, allocated - budget)


def available_budget(phases: Iterable[Phase], budget: float) -> float:
    """Remaining budget clamped at zero."""
    return max(0.0, remaining(total_allocation(phases), budget))


def average_allocation(phases: list[Phase]) -> float:
    if not phases:
        return 0.0
    return total_allocation(phases) / len(phases)


def check_budget_constraint(
    phases: Iterable[Phase],
    budget: float,
    exclude_phase_id: str | None = None,
) -> BudgetCheck:
    """
    Measure ``phases`` against ``budget``.

    ``exclude_phase_id`` leaves one phase out, for checking an edit of that
    phase against the rest of the set.
    """

    relevant = [phase for phase in phases if exclude_phase_id is None or phase.id != exclude_phase_id]
    allocated = total_allocation(relevant)
    return BudgetCheck(
        total_allocated=allocated,
        project_budget=budget,
        remaining=remaining(allocated, budget),
        overage=overage(allocated, budget),
        utilization_percentage=utilization(allocated, budget),
    )


def can_schedule_additional(
    existing_phases: Iterable[Phase],
    new_allocation: float,
    budget: float,
    exclude_phase_id: str | None = None,
) -> ScheduleCheck:
    """Check whether ``new_allocation`` more hours still fit into ``budget``."""

    current = check_budget_constraint(existing_phases, budget, exclude_phase_id).total_allocated
    projected = current + new_allocation
    conflicts: list[str] = []
    if projected > budget:
        conflicts.append(
            f"Adding {_hours(new_allocation)} would exceed the project budget by {_hours(projected - budget)} "
            f"(allocated {_hours(current)} of {_hours(budget)})"
        )
    return ScheduleCheck(
        can_schedule=not conflicts,
        current_allocation=current,
        new_allocation=new_allocation,
        budget_conflicts=conflicts,
    )


def validate_phase_time(hours: float, budget: float) -> ValidationResult:
    """Check one phase's hours on their own against the project budget."""

    result = ValidationResult()
    if hours < 0:
        result.errors.append("Phase time allocation cannot be negative")
    elif hours == 0:
        result.warnings.append("Phase has 0h allocated, work will not be distributed until hours are set")

    if hours > budget:
        result.errors.append(f"Phase allocation ({_hours(hours)}) exceeds project budget ({_hours(budget)})")
    elif hours > budget * SINGLE_PHASE_DOMINANCE_THRESHOLD:
        result.warnings.append("Phase allocation is over 50% of project budget")
    return result


def validate_phase_against_budget(
    existing_phases: Iterable[Phase],
    hours: float,
    budget: float,
    is_recurring: bool = False,
    exclude_phase_id: str | None = None,
) -> ValidationResult:
    """
    Check adding (or editing) a phase of ``hours`` against the rest of the set.

    Recurring templates are exempt: their hours are per occurrence.
    """

    result = ValidationResult()
    if is_recurring:
        return result

    schedule = can_schedule_additional(existing_phases, hours, budget, exclude_phase_id)
    result.errors.extend(schedule.budget_conflicts)

    projected = utilization(schedule.current_allocation + hours, budget) / 100
    if HIGH_UTILIZATION_THRESHOLD <= projected < 1:
        result.warnings.append(f"Adding this phase will use {projected * 100:.1f}% of project budget")
    return result


def generate_recommendations(phases: list[Phase], budget: float) -> list[str]:
    recommendations: list[str] = []
    check = check_budget_constraint(phases, budget)

    if not check.is_valid:
        recommendations.append(
            f"Budget exceeded by {check.overage:.1f}h. "
            "Consider reducing phase allocations or increasing project budget."
        )

    if HIGH_UTILIZATION_THRESHOLD * 100 <= check.utilization_percentage < 100:
        recommendations.append(
            f"Budget utilization is {check.utilization_percentage:.1f}%. "
            "Consider leaving buffer for unexpected work."
        )

    if phases and check.remaining > budget * UNALLOCATED_THRESHOLD:
        recommendations.append(
            f"{check.remaining:.1f}h unallocated. "
            "Consider distributing remaining budget to phases or reducing project scope."
        )

    if not phases and budget > 0:
        recommendations.append(f"No phases defined. Create phases to allocate the {_hours(budget)} budget.")

    allocations = [phase.time_allocation_hours or 0 for phase in phases]
    if len(phases) > 1 and max(allocations) > budget * SINGLE_PHASE_DOMINANCE_THRESHOLD:
        recommendations.append("One phase uses over 50% of budget. Consider breaking down into smaller phases.")

    if len(phases) >= 3:
        avg = average_allocation(phases)
        std_dev = math.sqrt(sum((value - avg) ** 2 for value in allocations) / len(allocations))
        if avg > 0 and std_dev > avg * 0.5:
            recommendations.append(
                "Phase allocations vary significantly. Consider more balanced distribution for predictable workflow."
            )

    return recommendations


def analyze_budget(phases: list[Phase], budget: float) -> BudgetAnalysis:
    check = check_budget_constraint(phases, budget)
    return BudgetAnalysis(
        total_allocated=check.total_allocated,
        project_budget=budget,
        remaining=check.remaining,
        overage=check.overage,
        utilization_percentage=check.utilization_percentage,
        average_phase_allocation=average_allocation(phases),
        phase_count=len(phases),
        recommendations=generate_recommendations(phases, budget),
    )


def suggest_phase_allocation(phases: list[Phase], budget: float) -> float:
    """Remaining budget spread evenly over the existing phases."""
    if not phases:
        return 0.0
    return available_budget(phases, budget) / len(phases)


def is_budget_well_distributed(phases: list[Phase], budget: float) -> bool:
    """Utilization within 70-95% and no single phase above half the budget."""
    if not phases:
        return False
    low, high = HEALTHY_UTILIZATION_RANGE
    check = check_budget_constraint(phases, budget)
    largest = max(phase.time_allocation_hours or 0 for phase in phases)
    return low <= check.utilization_percentage <= high and largest <= budget * SINGLE_PHASE_DOMINANCE_THRESHOLD


def _hours(value: float) -> str:
    return f"{value:g}h"

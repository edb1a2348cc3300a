from __future__ import annotations

import argparse
import datetime as dt
import logging
import os
import sys
from pathlib import Path
from typing import Any

import yaml

from . import budget, recurrence
from .errors import ProjectValidationError, RecurrenceRuleError, SchedulingError
from .parse_project import load_project
from .project_models import Project
from .repository import phase_to_record
from .scheduling import build_appended_phases, detect_mode, repair_overlaps, split_budget
from .validation import validate_project

LOG_LEVEL_ENV = "PHASE_PLANNER_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger("phase_planner")


def _parse_date(value: str) -> dt.date:
    try:
        return dt.date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date '{value}', expected YYYY-MM-DD") from exc


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="phase-planner",
        description="Plan, check and repair project phases and recurring templates",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get(LOG_LEVEL_ENV, "WARNING"),
        help=f"Logging level (DEBUG/INFO/WARNING/ERROR); also read from {LOG_LEVEL_ENV}",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    check = commands.add_parser("check", help="Validate phases, continuity and budget")
    check.add_argument("project", help="Path to project YAML")
    check.add_argument("--today", type=_parse_date, help="Reference date for past-end checks (YYYY-MM-DD)")

    split = commands.add_parser("split", help="Propose an even two-phase split of the project")
    split.add_argument("project", help="Path to project YAML")

    append = commands.add_parser("append", help="Propose the phase list after adding a phase at the end")
    append.add_argument("project", help="Path to project YAML")
    append.add_argument("--name", help="Name for the new phase; defaults to 'Phase N'")

    repair = commands.add_parser("repair", help="Propose start-date fixes for overlapping phases")
    repair.add_argument("project", help="Path to project YAML")

    occurrences = commands.add_parser("occurrences", help="List the recurring template's occurrences")
    occurrences.add_argument("project", help="Path to project YAML")
    occurrences.add_argument("--max", dest="max_occurrences", type=int, help="Maximum number of occurrences")
    occurrences.add_argument("--from", dest="window_start", type=_parse_date, help="Window start (YYYY-MM-DD)")
    occurrences.add_argument("--to", dest="window_end", type=_parse_date, help="Window end (YYYY-MM-DD)")
    occurrences.add_argument("--today", type=_parse_date, help="Reference date for continuous projects")
    return parser


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.WARNING)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATEFMT))
    logger.handlers[:] = [handler]
    logger.setLevel(level)
    logger.propagate = False


def _dump(data: Any) -> None:
    sys.stdout.write(yaml.safe_dump(data, sort_keys=False, allow_unicode=True))


def _run_check(project: Project, args: argparse.Namespace) -> int:
    result = validate_project(project, today=args.today)
    dated = [phase for phase in project.phases if not phase.is_recurring]
    analysis = budget.analyze_budget(dated, project.estimated_hours)

    print(f"Project: {project.name} ({detect_mode(project.phases)} mode, {len(project.phases)} phase(s))")
    print(
        f"Budget: {analysis.total_allocated:g}h of {analysis.project_budget:g}h allocated "
        f"({analysis.utilization_percentage:.1f}%)"
    )
    for recommendation in analysis.recommendations:
        print(f"Recommendation: {recommendation}")
    for warning in result.warnings:
        print(f"Warning: {warning}")
    for error in result.errors:
        print(f"Error: {error}")
    if not result.is_valid:
        return 2
    print("OK")
    return 0


def _run_split(project: Project, args: argparse.Namespace) -> int:
    result = split_budget(project.start_date, project.end_date, project.estimated_hours)
    _dump(
        [
            {
                "name": spec.name,
                "start_date": spec.start_date.isoformat(),
                "end_date": spec.end_date.isoformat(),
                "time_allocation_hours": spec.time_allocation_hours,
            }
            for spec in result.phases
        ]
    )
    return 0


def _run_append(project: Project, args: argparse.Namespace) -> int:
    if project.end_date is None:
        raise SchedulingError("Cannot append a phase to a continuous project")
    phases = build_appended_phases(project.phases, project.end_date, name=args.name)
    _dump([phase_to_record(phase) for phase in phases])
    return 0


def _run_repair(project: Project, args: argparse.Namespace) -> int:
    repairs = repair_overlaps(project.phases)
    _dump(
        [
            {
                "phase_id": repair.phase_id,
                "name": repair.phase_name,
                "start_date": repair.updates["start_date"].isoformat(),
            }
            for repair in repairs
        ]
    )
    return 0


def _run_occurrences(project: Project, args: argparse.Namespace) -> int:
    template = project.recurring_template
    if template is None or template.recurring_config is None:
        raise SchedulingError(f"Project {project.id} has no recurring template")
    config = template.recurring_config
    check = recurrence.validate_config(True, config, template.time_allocation_hours)
    if not check.is_valid:
        raise SchedulingError(f'Invalid recurring template "{template.name}": ' + "; ".join(check.errors))
    found = recurrence.project_occurrences(
        project,
        config,
        max_occurrences=args.max_occurrences,
        window_start=args.window_start,
        window_end=args.window_end,
        today=args.today,
    )
    _dump(
        {
            "description": recurrence.describe(config),
            "hours_per_occurrence": template.time_allocation_hours,
            "occurrences": [
                {"number": occurrence.occurrence_number, "date": occurrence.date.isoformat()} for occurrence in found
            ],
        }
    )
    return 0


_COMMANDS = {
    "check": _run_check,
    "split": _run_split,
    "append": _run_append,
    "repair": _run_repair,
    "occurrences": _run_occurrences,
}


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)
    project_path = Path(args.project)

    try:
        project: Project = load_project(str(project_path))
    except (yaml.YAMLError, ProjectValidationError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    except FileNotFoundError:
        print(f"Error: project file not found: {project_path}", file=sys.stderr)
        return 1
    except Exception as exc:  # Unexpected
        print(f"Unexpected error while loading project: {exc}", file=sys.stderr)
        return 1

    logger.debug("Loaded project %s with %d phase(s)", project.id, len(project.phases))
    try:
        return _COMMANDS[args.command](project, args)
    except (ProjectValidationError, RecurrenceRuleError, SchedulingError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    except Exception as exc:
        print(f"Unexpected error while running {args.command}: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

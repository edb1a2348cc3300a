from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import yaml

from .errors import ProjectValidationError
from .project_models import Phase, Project
from .repository import parse_record_date, phase_from_record

_PROJECT_KEYS = {"id", "name", "start_date", "end_date", "continuous", "estimated_hours"}
_PHASE_KEYS = {
    "id",
    "project_id",
    "name",
    "start_date",
    "end_date",
    "due_date",
    "time_allocation_hours",
    "time_allocation",
    "is_recurring",
    "recurring_config",
}


@dataclass(frozen=True)
class _Path:
    """Helper to produce readable YAML path strings like phases[0].end_date."""

    parts: tuple[str, ...] = ()

    def child(self, segment: str) -> "_Path":
        return _Path(self.parts + (segment,))

    def __str__(self) -> str:  # pragma: no cover - trivial
        return ".".join(self.parts) if self.parts else "root"


def load_project(path: str) -> Project:
    """Load a Project and its phases from a YAML file at the given path."""

    with open(path, "r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)

    return parse_project(raw)


def parse_project(data: Any) -> Project:
    """Build a Project from already-loaded YAML data (a mapping with ``project`` and ``phases``)."""

    path = _Path()
    if not isinstance(data, dict):
        raise ProjectValidationError(f"{path}: expected mapping at top level")
    _assert_allowed_keys(data, {"project", "phases"}, path)

    project_raw = data.get("project")
    project_path = path.child("project")
    if not isinstance(project_raw, dict):
        raise ProjectValidationError(f"{path}: missing required mapping 'project'")
    _assert_allowed_keys(project_raw, _PROJECT_KEYS, project_path)

    project_id = str(_require_value(project_raw, "id", project_path))
    name = _require_str(project_raw, "name", project_path)
    continuous = project_raw.get("continuous", False)
    if not isinstance(continuous, bool):
        raise ProjectValidationError(f"{project_path.child('continuous')}: expected boolean")

    start_date = parse_record_date(
        _require_value(project_raw, "start_date", project_path), str(project_path.child("start_date"))
    )
    end_date = None
    if not continuous:
        end_date = parse_record_date(
            _require_value(project_raw, "end_date", project_path), str(project_path.child("end_date"))
        )
        if end_date <= start_date:
            raise ProjectValidationError(f"{project_path.child('end_date')}: must be after start_date {start_date}")

    estimated_hours = project_raw.get("estimated_hours", 0)
    if isinstance(estimated_hours, bool) or not isinstance(estimated_hours, (int, float)) or estimated_hours < 0:
        raise ProjectValidationError(f"{project_path.child('estimated_hours')}: expected non-negative number")

    phases_raw = data.get("phases")
    if phases_raw is None:
        phases_raw = []
    if not isinstance(phases_raw, list):
        raise ProjectValidationError(f"{path.child('phases')}: expected list")

    ids: set[str] = set()
    phases: list[Phase] = []
    for idx, phase_raw in enumerate(phases_raw):
        phases.append(_parse_phase(phase_raw, path.child(f"phases[{idx}]"), ids, project_id))

    return Project(
        id=project_id,
        name=name,
        start_date=start_date,
        end_date=end_date,
        continuous=continuous,
        estimated_hours=float(estimated_hours),
        phases=phases,
    )


def _parse_phase(data: Any, path: _Path, ids: set[str], project_id: str) -> Phase:
    if not isinstance(data, dict):
        raise ProjectValidationError(f"{path}: expected mapping for phase")
    _assert_allowed_keys(data, _PHASE_KEYS, path)

    phase = phase_from_record(data, str(path))
    if phase.project_id is None:
        phase.project_id = project_id
    if phase.id is not None:
        if phase.id in ids:
            raise ProjectValidationError(f"{path.child('id')}: duplicate phase id '{phase.id}'")
        ids.add(phase.id)
    if not phase.is_recurring and phase.end_date is None:
        raise ProjectValidationError(f"{path}: missing required field 'end_date'")
    return phase


def _assert_allowed_keys(data: dict[str, Any], allowed: set[str], path: _Path) -> None:
    extras = sorted(set(data.keys()) - allowed)
    if extras:
        raise ProjectValidationError(f"{path}: unexpected fields {extras}")


def _require_str(data: dict[str, Any], key: str, path: _Path) -> str:
    value = _require_value(data, key, path)
    if not isinstance(value, str) or not value.strip():
        raise ProjectValidationError(f"{path.child(key)}: expected non-empty string")
    return value


def _require_value(data: dict[str, Any], key: str, path: _Path) -> Any:
    if key not in data or data[key] is None:
        raise ProjectValidationError(f"{path}: missing required field '{key}'")
    return data[key]

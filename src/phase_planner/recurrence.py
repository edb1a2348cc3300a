from __future__ import annotations

import datetime as _dt
import logging
import re
from dataclasses import dataclass
from itertools import islice
from typing import Iterator

from dateutil import rrule as _rrule

from .date_math import add_days, normalize_to_midnight
from .errors import RecurrenceRuleError
from .project_models import Project, RecurrenceOccurrence, RecurringConfig, ValidationResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_OCCURRENCES = 365
CONTINUOUS_WINDOW_BACK_DAYS = 30
CONTINUOUS_WINDOW_FORWARD_DAYS = 90
CONTINUOUS_FALLBACK_LIMIT = 100
EXCESSIVE_OCCURRENCE_THRESHOLD = 50

VALID_TYPES = ("daily", "weekly", "monthly")

WEEKDAY_CODES = ("SU", "MO", "TU", "WE", "TH", "FR", "SA")
"""Two-letter weekday codes indexed by weekday number (0 = Sunday)."""

WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")

_DATEUTIL_WEEKDAYS = {
    "MO": _rrule.MO,
    "TU": _rrule.TU,
    "WE": _rrule.WE,
    "TH": _rrule.TH,
    "FR": _rrule.FR,
    "SA": _rrule.SA,
    "SU": _rrule.SU,
}

_RULE_KEYS = {"FREQ", "INTERVAL", "BYDAY", "BYMONTHDAY", "UNTIL", "COUNT"}
_ORDINAL_BYDAY = re.compile(r"^\+?([1-5])(SU|MO|TU|WE|TH|FR|SA)$")
_UNTIL = re.compile(r"^(\d{8})(T\d{6}Z?)?$")


@dataclass(frozen=True)
class DailyRule:
    """Every ``interval`` days."""

    interval: int = 1
    until: _dt.date | None = None
    count: int | None = None


@dataclass(frozen=True)
class WeeklyRule:
    """Every ``interval`` weeks, on ``weekday`` (0 = Sunday) or the start's weekday."""

    interval: int = 1
    weekday: int | None = None
    until: _dt.date | None = None
    count: int | None = None


@dataclass(frozen=True)
class MonthlyDateRule:
    """
    Every ``interval`` months on day ``day`` of the month.

    Months without that day (the 31st in April) produce no occurrence. With
    ``day`` unset the start date's day of month is used.
    """

    day: int | None = None
    interval: int = 1
    until: _dt.date | None = None
    count: int | None = None


@dataclass(frozen=True)
class MonthlyOrdinalRule:
    """Every ``interval`` months on the ``week``-th ``weekday`` (2nd Monday)."""

    week: int
    weekday: int
    interval: int = 1
    until: _dt.date | None = None
    count: int | None = None


Rule = DailyRule | WeeklyRule | MonthlyDateRule | MonthlyOrdinalRule
"""Decoded form of a recurrence rule string."""


# --------------------------------------------------------------------------- #
# Rule string encoding
# --------------------------------------------------------------------------- #


def encode_rule(rule: Rule) -> str:
    """Serialize ``rule`` as an RRULE value (``FREQ=WEEKLY;INTERVAL=1;BYDAY=MO``)."""

    if isinstance(rule, DailyRule):
        parts = ["FREQ=DAILY", f"INTERVAL={rule.interval}"]
    elif isinstance(rule, WeeklyRule):
        parts = ["FREQ=WEEKLY", f"INTERVAL={rule.interval}"]
        if rule.weekday is not None:
            parts.append(f"BYDAY={WEEKDAY_CODES[rule.weekday]}")
    elif isinstance(rule, MonthlyDateRule):
        parts = ["FREQ=MONTHLY", f"INTERVAL={rule.interval}"]
        if rule.day is not None:
            parts.append(f"BYMONTHDAY={rule.day}")
    elif isinstance(rule, MonthlyOrdinalRule):
        parts = [
            "FREQ=MONTHLY",
            f"INTERVAL={rule.interval}",
            f"BYDAY={rule.week}{WEEKDAY_CODES[rule.weekday]}",
        ]
    else:
        raise TypeError(f"Unsupported rule type {type(rule).__name__}")

    if rule.until is not None:
        parts.append(f"UNTIL={rule.until.strftime('%Y%m%d')}")
    if rule.count is not None:
        parts.append(f"COUNT={rule.count}")
    return ";".join(parts)


def decode_rule(text: str) -> Rule:
    """
    Parse an RRULE value into a typed rule.

    Accepts an optional ``RRULE:`` prefix and ignores a ``DTSTART`` line, since
    expansion always starts from the caller's start date. Raises
    RecurrenceRuleError for anything outside the supported subset.
    """

    if not isinstance(text, str) or not text.strip():
        raise RecurrenceRuleError("empty recurrence rule")

    body: str | None = None
    for raw_line in text.strip().splitlines():
        line = raw_line.strip()
        if not line or line.upper().startswith("DTSTART"):
            continue
        if line.upper().startswith("RRULE:"):
            line = line[len("RRULE:") :]
        if body is not None:
            raise RecurrenceRuleError("multiple RRULE lines are not supported")
        body = line
    if body is None:
        raise RecurrenceRuleError("missing RRULE line")

    fields = _split_fields(body)
    freq = fields.get("FREQ")
    if freq is None:
        raise RecurrenceRuleError("missing FREQ")

    interval = _parse_positive_int(fields.get("INTERVAL", "1"), "INTERVAL")
    until = _parse_until(fields["UNTIL"]) if "UNTIL" in fields else None
    count = _parse_positive_int(fields["COUNT"], "COUNT") if "COUNT" in fields else None
    if until is not None and count is not None:
        raise RecurrenceRuleError("UNTIL and COUNT are mutually exclusive")

    byday = fields.get("BYDAY")
    bymonthday = fields.get("BYMONTHDAY")

    if freq == "DAILY":
        if byday is not None or bymonthday is not None:
            raise RecurrenceRuleError("DAILY rules do not accept BYDAY or BYMONTHDAY")
        return DailyRule(interval=interval, until=until, count=count)

    if freq == "WEEKLY":
        if bymonthday is not None:
            raise RecurrenceRuleError("WEEKLY rules do not accept BYMONTHDAY")
        weekday = _parse_weekday_code(byday) if byday is not None else None
        return WeeklyRule(interval=interval, weekday=weekday, until=until, count=count)

    if freq == "MONTHLY":
        if byday is not None and bymonthday is not None:
            raise RecurrenceRuleError("MONTHLY rules accept BYDAY or BYMONTHDAY, not both")
        if byday is not None:
            match = _ORDINAL_BYDAY.match(byday)
            if match is None:
                raise RecurrenceRuleError(f"invalid monthly BYDAY '{byday}', expected e.g. 2MO")
            return MonthlyOrdinalRule(
                week=int(match.group(1)),
                weekday=WEEKDAY_CODES.index(match.group(2)),
                interval=interval,
                until=until,
                count=count,
            )
        day = None
        if bymonthday is not None:
            day = _parse_positive_int(bymonthday, "BYMONTHDAY")
            if day > 31:
                raise RecurrenceRuleError(f"BYMONTHDAY must be between 1 and 31, got {day}")
        return MonthlyDateRule(day=day, interval=interval, until=until, count=count)

    raise RecurrenceRuleError(f"unsupported FREQ '{freq}'")


def _split_fields(body: str) -> dict[str, str]:
    fields: dict[str, str] = {}
    for part in body.split(";"):
        if not part.strip():
            continue
        key, sep, value = part.partition("=")
        key = key.strip().upper()
        value = value.strip().upper()
        if not sep or not key or not value:
            raise RecurrenceRuleError(f"malformed rule part '{part}'")
        if key not in _RULE_KEYS:
            raise RecurrenceRuleError(f"unsupported rule part '{key}'")
        if key in fields:
            raise RecurrenceRuleError(f"duplicate rule part '{key}'")
        fields[key] = value
    return fields


def _parse_positive_int(value: str, name: str) -> int:
    if not value.isdigit() or int(value) < 1:
        raise RecurrenceRuleError(f"{name} must be a positive integer, got '{value}'")
    return int(value)


def _parse_until(value: str) -> _dt.date:
    match = _UNTIL.match(value)
    if match is None:
        raise RecurrenceRuleError(f"invalid UNTIL '{value}', expected YYYYMMDD")
    try:
        return _dt.datetime.strptime(match.group(1), "%Y%m%d").date()
    except ValueError as exc:
        raise RecurrenceRuleError(f"invalid UNTIL '{value}': {exc}") from exc


def _parse_weekday_code(value: str) -> int:
    if value not in WEEKDAY_CODES:
        raise RecurrenceRuleError(f"invalid weekly BYDAY '{value}', expected one of {list(WEEKDAY_CODES)}")
    return WEEKDAY_CODES.index(value)


# --------------------------------------------------------------------------- #
# Building rules from configs
# --------------------------------------------------------------------------- #


def rule_from_config(config: RecurringConfig, until: _dt.date | None = None) -> Rule:
    """
    Translate a recurrence config into a typed rule.

    Missing optional fields are left open (a weekly rule without a weekday
    follows the start date). Unknown types and out-of-range fields raise
    RecurrenceRuleError.
    """

    interval = config.interval if config.interval and config.interval > 0 else 1
    for name, value, low, high in (
        ("weekly_day_of_week", config.weekly_day_of_week, 0, 6),
        ("monthly_date", config.monthly_date, 1, 31),
        ("monthly_week_of_month", config.monthly_week_of_month, 1, 5),
        ("monthly_day_of_week", config.monthly_day_of_week, 0, 6),
    ):
        if value is not None and not low <= value <= high:
            raise RecurrenceRuleError(f"{name} must be between {low} and {high}, got {value}")

    if config.type == "daily":
        return DailyRule(interval=interval, until=until)
    if config.type == "weekly":
        return WeeklyRule(interval=interval, weekday=config.weekly_day_of_week, until=until)
    if config.type == "monthly":
        if (
            config.monthly_pattern == "dayOfWeek"
            and config.monthly_week_of_month is not None
            and config.monthly_day_of_week is not None
        ):
            return MonthlyOrdinalRule(
                week=config.monthly_week_of_month,
                weekday=config.monthly_day_of_week,
                interval=interval,
                until=until,
            )
        day = config.monthly_date if config.monthly_pattern == "date" else None
        return MonthlyDateRule(day=day, interval=interval, until=until)
    raise RecurrenceRuleError(f"unsupported recurrence type '{config.type}'")


def build_rule(
    config: RecurringConfig,
    start_date: _dt.date,
    end_date: _dt.date | None = None,
    continuous: bool = False,
) -> str:
    """
    Return the rule string for ``config``.

    A structurally valid ``config.rrule`` is returned verbatim, unless its
    upper bound disagrees with ``continuous`` (a project that was toggled
    between continuous and fixed-end), in which case the rule is rebuilt.
    ``start_date`` is not encoded; expansion takes it as an argument.
    """

    wants_until = not continuous and end_date is not None
    if config.rrule and validate_rule(config.rrule).is_valid:
        if (decode_rule(config.rrule).until is not None) == wants_until:
            return config.rrule
        logger.debug("Rebuilding rule %r: bound no longer matches continuous=%s", config.rrule, continuous)

    until = normalize_to_midnight(end_date) if wants_until else None
    return encode_rule(rule_from_config(config, until=until))


# --------------------------------------------------------------------------- #
# Expansion
# --------------------------------------------------------------------------- #


def expand(
    rule: str | Rule,
    start_date: _dt.date,
    end_date: _dt.date | None = None,
    max_occurrences: int | None = None,
) -> list[RecurrenceOccurrence]:
    """
    Expand ``rule`` into numbered occurrences beginning at ``start_date``.

    Stops after ``end_date`` (inclusive) and after ``max_occurrences`` results,
    whichever comes first. A rule with no bound at all is capped at
    CONTINUOUS_FALLBACK_LIMIT. Unparseable rules yield an empty list.
    """

    if isinstance(rule, str):
        try:
            decoded = decode_rule(rule)
        except RecurrenceRuleError as exc:
            logger.debug("Ignoring unparseable recurrence rule %r: %s", rule, exc)
            return []
    else:
        decoded = rule

    start = normalize_to_midnight(start_date)
    end = normalize_to_midnight(end_date) if end_date is not None else None

    limit = max_occurrences
    if end is None and limit is None and decoded.until is None and decoded.count is None:
        logger.warning(
            "Open-ended rule %s expanded without bounds, capping at %d occurrences",
            encode_rule(decoded),
            CONTINUOUS_FALLBACK_LIMIT,
        )
        limit = CONTINUOUS_FALLBACK_LIMIT
    if limit is not None and limit <= 0:
        return []

    occurrences: list[RecurrenceOccurrence] = []
    for day in islice(_iter_dates(decoded, start), limit):
        if end is not None and day > end:
            break
        occurrences.append(RecurrenceOccurrence(date=day, occurrence_number=len(occurrences) + 1))
    return occurrences


def _iter_dates(rule: Rule, start: _dt.date) -> Iterator[_dt.date]:
    dtstart = _dt.datetime.combine(start, _dt.time.min)
    until = _dt.datetime.combine(rule.until, _dt.time.min) if rule.until is not None else None
    common = {"dtstart": dtstart, "interval": rule.interval, "until": until, "count": rule.count}

    if isinstance(rule, DailyRule):
        recurrence = _rrule.rrule(_rrule.DAILY, **common)
    elif isinstance(rule, WeeklyRule):
        byweekday = _DATEUTIL_WEEKDAYS[WEEKDAY_CODES[rule.weekday]] if rule.weekday is not None else None
        recurrence = _rrule.rrule(_rrule.WEEKLY, byweekday=byweekday, **common)
    elif isinstance(rule, MonthlyDateRule):
        recurrence = _rrule.rrule(_rrule.MONTHLY, bymonthday=rule.day, **common)
    else:
        weekday = _DATEUTIL_WEEKDAYS[WEEKDAY_CODES[rule.weekday]](rule.week)
        recurrence = _rrule.rrule(_rrule.MONTHLY, byweekday=weekday, **common)

    for occurrence in recurrence:
        yield occurrence.date()


# --------------------------------------------------------------------------- #
# Validation
# --------------------------------------------------------------------------- #


def validate_rule(text: str) -> ValidationResult:
    """Syntax-only check of a rule string."""

    result = ValidationResult()
    try:
        decode_rule(text)
    except RecurrenceRuleError as exc:
        result.errors.append(f"Invalid recurrence rule: {exc}")
    return result


def validate_config(
    is_recurring: bool,
    config: RecurringConfig | None,
    time_allocation_hours: float,
) -> ValidationResult:
    """
    Business check of a recurring template's pattern and per-occurrence hours.

    Non-recurring phases always pass. When the config carries a rule string
    its syntax is checked instead of the individual pattern fields.
    """

    result = ValidationResult()
    if not is_recurring:
        return result
    if config is None:
        result.errors.append("Recurring phase must have recurrence configuration")
        return result

    if config.rrule:
        result.errors.extend(validate_rule(config.rrule).errors)
    else:
        result.errors.extend(_config_field_errors(config))

    if time_allocation_hours is None or time_allocation_hours <= 0:
        result.errors.append("Recurring phase must have positive time allocation per occurrence")
    return result


def _config_field_errors(config: RecurringConfig) -> list[str]:
    errors: list[str] = []
    if config.type not in VALID_TYPES:
        errors.append(f"Invalid recurrence type: {config.type}. Must be daily, weekly, or monthly")
    if not isinstance(config.interval, int) or config.interval < 1:
        errors.append("Recurrence interval must be at least 1")

    if config.type == "weekly":
        if config.weekly_day_of_week is None:
            errors.append("Weekly recurrence must specify day of week (0-6)")
        elif not 0 <= config.weekly_day_of_week <= 6:
            errors.append("Weekly day of week must be between 0 (Sunday) and 6 (Saturday)")

    if config.type == "monthly":
        if not config.monthly_pattern:
            errors.append("Monthly recurrence must specify pattern (date or dayOfWeek)")
        elif config.monthly_pattern == "date":
            if config.monthly_date is None:
                errors.append("Monthly date pattern must specify date (1-31)")
            elif not 1 <= config.monthly_date <= 31:
                errors.append("Monthly date must be between 1 and 31")
        elif config.monthly_pattern == "dayOfWeek":
            if config.monthly_week_of_month is None or config.monthly_day_of_week is None:
                errors.append("Monthly dayOfWeek pattern must specify week of month and day of week")
            else:
                if not 1 <= config.monthly_week_of_month <= 5:
                    errors.append("Monthly week of month must be between 1 and 5")
                if not 0 <= config.monthly_day_of_week <= 6:
                    errors.append("Monthly day of week must be between 0 (Sunday) and 6 (Saturday)")
        else:
            errors.append(f"Invalid monthly pattern: {config.monthly_pattern}. Must be date or dayOfWeek")
    return errors


# --------------------------------------------------------------------------- #
# Project-bounded helpers
# --------------------------------------------------------------------------- #


def project_occurrences(
    project: Project,
    config: RecurringConfig,
    max_occurrences: int | None = None,
    window_start: _dt.date | None = None,
    window_end: _dt.date | None = None,
    today: _dt.date | None = None,
) -> list[RecurrenceOccurrence]:
    """
    Occurrences of a recurring template within its project's timeframe.

    Fixed-end projects run from the project start to the day before the
    project end, capped at DEFAULT_MAX_OCCURRENCES. Continuous projects have
    no end, so occurrences are generated for a window: the one given, or
    CONTINUOUS_WINDOW_BACK_DAYS before ``today`` through
    CONTINUOUS_WINDOW_FORWARD_DAYS after it, never earlier than the project
    start.
    """

    start = project.start_date
    if not project.continuous:
        end = project.last_day
        rule = build_rule(config, start, end, continuous=False)
        limit = DEFAULT_MAX_OCCURRENCES if max_occurrences is None else max_occurrences
        occurrences = expand(rule, start, end, limit)
    else:
        rule = build_rule(config, start, None, continuous=True)
        reference = today or _dt.date.today()
        lower = window_start or add_days(reference, -CONTINUOUS_WINDOW_BACK_DAYS)
        upper = window_end or add_days(reference, CONTINUOUS_WINDOW_FORWARD_DAYS)
        # Numbering starts at the project start even when the window opens later.
        occurrences = [
            occurrence
            for occurrence in expand(rule, start, upper, None)
            if occurrence.date >= normalize_to_midnight(lower)
        ]
        limit = CONTINUOUS_FALLBACK_LIMIT if max_occurrences is None else max(max_occurrences, 0)
        occurrences = occurrences[:limit]

    if window_start is not None or window_end is not None:
        occurrences = [
            occurrence
            for occurrence in occurrences
            if (window_start is None or occurrence.date >= window_start)
            and (window_end is None or occurrence.date <= window_end)
        ]
    return occurrences


def occurrence_count(project: Project, config: RecurringConfig, **kwargs) -> int:
    """Number of occurrences a template produces within its project."""
    return len(project_occurrences(project, config, **kwargs))


def recurring_total_allocation(project: Project, config: RecurringConfig, hours_per_occurrence: float, **kwargs) -> float:
    """Hours across all occurrences: occurrence count times hours per occurrence."""
    return occurrence_count(project, config, **kwargs) * hours_per_occurrence


def has_excessive_occurrences(
    project: Project,
    config: RecurringConfig,
    threshold: int = EXCESSIVE_OCCURRENCE_THRESHOLD,
    **kwargs,
) -> bool:
    return occurrence_count(project, config, **kwargs) >= threshold


def estimate_occurrence_count(config: RecurringConfig, duration_days: int) -> int:
    """Rough count without expanding the rule (months are taken as 30 days)."""

    interval = config.interval if config.interval and config.interval > 0 else 1
    if config.type == "daily":
        return duration_days // interval
    if config.type == "weekly":
        return duration_days // (7 * interval)
    if config.type == "monthly":
        return duration_days // (30 * interval)
    return 0


def describe(config: RecurringConfig) -> str:
    """Human-readable pattern, e.g. ``Every 2 weeks on Monday``."""

    interval = config.interval or 1
    every = "Every " if interval == 1 else f"Every {interval} "
    plural = "s" if interval > 1 else ""

    if config.type == "daily":
        return f"{every}day{plural}"
    if config.type == "weekly":
        day_name = _weekday_name(config.weekly_day_of_week) or "week"
        return f"{every}week{plural} on {day_name}"
    if config.type == "monthly":
        if config.monthly_pattern == "date" and config.monthly_date:
            return f"{every}month{plural} on the {_ordinal(config.monthly_date)}"
        day_name = _weekday_name(config.monthly_day_of_week)
        if config.monthly_pattern == "dayOfWeek" and config.monthly_week_of_month and day_name:
            return f"{every}month{plural} on the {_ordinal(config.monthly_week_of_month)} {day_name}"
        return f"{every}month{plural}"
    return "Unknown recurrence pattern"


def _weekday_name(value: int | None) -> str | None:
    if value is None or not 0 <= value <= 6:
        return None
    return WEEKDAY_NAMES[value]


def _ordinal(value: int) -> str:
    suffix = "th"
    if value % 100 not in (11, 12, 13):
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(value % 10, "th")
    return f"{value}{suffix}"

import datetime as dt

import pytest

from phase_planner import recurrence
from phase_planner.errors import RecurrenceRuleError
from phase_planner.project_models import Project, RecurringConfig
from phase_planner.recurrence import (
    CONTINUOUS_FALLBACK_LIMIT,
    DailyRule,
    MonthlyDateRule,
    MonthlyOrdinalRule,
    WeeklyRule,
    build_rule,
    decode_rule,
    encode_rule,
    expand,
    validate_config,
    validate_rule,
)


def _dates(occurrences):
    return [occurrence.date for occurrence in occurrences]


def _weekly_monday(**overrides):
    values = {"type": "weekly", "interval": 1, "weekly_day_of_week": 1}
    values.update(overrides)
    return RecurringConfig(**values)


def test_weekly_monday_occurrences_within_january():
    rule = build_rule(_weekly_monday(), dt.date(2026, 1, 5), dt.date(2026, 1, 31))

    occurrences = expand(rule, dt.date(2026, 1, 5), dt.date(2026, 1, 31))

    assert _dates(occurrences) == [dt.date(2026, 1, d) for d in (5, 12, 19, 26)]
    assert [o.occurrence_number for o in occurrences] == [1, 2, 3, 4]


def test_monthly_31st_skips_short_months():
    config = RecurringConfig(type="monthly", monthly_pattern="date", monthly_date=31)
    rule = build_rule(config, dt.date(2026, 1, 1), dt.date(2026, 6, 30))

    occurrences = expand(rule, dt.date(2026, 1, 1), dt.date(2026, 6, 30))

    assert _dates(occurrences) == [dt.date(2026, 1, 31), dt.date(2026, 3, 31), dt.date(2026, 5, 31)]


def test_monthly_29th_only_lands_in_february_in_leap_years():
    leap = expand(MonthlyDateRule(day=29), dt.date(2024, 1, 1), dt.date(2024, 4, 30))
    common = expand(MonthlyDateRule(day=29), dt.date(2025, 1, 1), dt.date(2025, 4, 30))

    assert dt.date(2024, 2, 29) in _dates(leap)
    assert len(leap) == 4
    assert _dates(common) == [dt.date(2025, 1, 29), dt.date(2025, 3, 29), dt.date(2025, 4, 29)]


def test_second_monday_of_each_month():
    config = RecurringConfig(
        type="monthly", monthly_pattern="dayOfWeek", monthly_week_of_month=2, monthly_day_of_week=1
    )
    rule = build_rule(config, dt.date(2026, 1, 1), dt.date(2026, 3, 31))

    assert "BYDAY=2MO" in rule
    assert _dates(expand(rule, dt.date(2026, 1, 1), dt.date(2026, 3, 31))) == [
        dt.date(2026, 1, 12),
        dt.date(2026, 2, 9),
        dt.date(2026, 3, 9),
    ]


def test_weekly_expansion_crosses_year_boundary():
    occurrences = expand("FREQ=WEEKLY;INTERVAL=1;BYDAY=MO", dt.date(2025, 12, 22), dt.date(2026, 1, 12))

    assert _dates(occurrences) == [
        dt.date(2025, 12, 22),
        dt.date(2025, 12, 29),
        dt.date(2026, 1, 5),
        dt.date(2026, 1, 12),
    ]


def test_daily_interval_and_inclusive_until():
    assert _dates(expand("FREQ=DAILY;INTERVAL=2", dt.date(2026, 1, 1), dt.date(2026, 1, 10))) == [
        dt.date(2026, 1, d) for d in (1, 3, 5, 7, 9)
    ]
    assert len(expand("FREQ=DAILY;INTERVAL=1;UNTIL=20260105", dt.date(2026, 1, 1))) == 5


def test_max_occurrences_and_count_cap_expansion():
    assert len(expand("FREQ=DAILY;INTERVAL=1", dt.date(2026, 1, 1), max_occurrences=5)) == 5
    assert len(expand("FREQ=DAILY;INTERVAL=1;COUNT=3", dt.date(2026, 1, 1), dt.date(2026, 12, 31))) == 3
    assert expand("FREQ=DAILY;INTERVAL=1", dt.date(2026, 1, 1), max_occurrences=0) == []


def test_open_ended_rule_falls_back_to_limit():
    occurrences = expand("FREQ=DAILY;INTERVAL=1", dt.date(2026, 1, 1))

    assert len(occurrences) == CONTINUOUS_FALLBACK_LIMIT
    assert occurrences[-1].occurrence_number == CONTINUOUS_FALLBACK_LIMIT


def test_expansion_respects_both_bounds():
    end = dt.date(2026, 2, 10)
    occurrences = expand("FREQ=DAILY;INTERVAL=1", dt.date(2026, 1, 1), end, max_occurrences=20)

    assert len(occurrences) <= 20
    assert all(o.date <= end for o in occurrences)


@pytest.mark.parametrize(
    "text",
    ["", "garbage", "FREQ=HOURLY", "FREQ=WEEKLY;BYDAY=XX", "FREQ=DAILY;INTERVAL=0", "FREQ=MONTHLY;BYMONTHDAY=32"],
)
def test_malformed_rules_expand_to_nothing(text):
    assert expand(text, dt.date(2026, 1, 1), dt.date(2026, 12, 31)) == []
    assert not validate_rule(text).is_valid


def test_decode_accepts_prefix_dtstart_and_datetime_until():
    text = "DTSTART:20260105T000000Z\nRRULE:FREQ=WEEKLY;INTERVAL=1;BYDAY=MO;UNTIL=20260131T000000Z"

    assert decode_rule(text) == WeeklyRule(interval=1, weekday=1, until=dt.date(2026, 1, 31))


def test_decode_typed_variants():
    assert decode_rule("FREQ=DAILY;INTERVAL=3") == DailyRule(interval=3)
    assert decode_rule("FREQ=MONTHLY;INTERVAL=1;BYDAY=2MO") == MonthlyOrdinalRule(week=2, weekday=1)
    assert decode_rule("freq=monthly;bymonthday=15") == MonthlyDateRule(day=15)
    assert decode_rule("FREQ=MONTHLY") == MonthlyDateRule(day=None)


def test_decode_rejects_until_with_count():
    with pytest.raises(RecurrenceRuleError):
        decode_rule("FREQ=DAILY;UNTIL=20260105;COUNT=3")


def test_encode_writes_date_only_until():
    rule = MonthlyOrdinalRule(week=1, weekday=5, interval=2, until=dt.date(2026, 6, 30))

    assert encode_rule(rule) == "FREQ=MONTHLY;INTERVAL=2;BYDAY=1FR;UNTIL=20260630"


def test_build_rule_attaches_until_only_for_fixed_end():
    config = _weekly_monday()

    bounded = build_rule(config, dt.date(2026, 1, 1), dt.date(2026, 1, 30))
    open_ended = build_rule(config, dt.date(2026, 1, 1), dt.date(2026, 1, 30), continuous=True)

    assert bounded == "FREQ=WEEKLY;INTERVAL=1;BYDAY=MO;UNTIL=20260130"
    assert open_ended == "FREQ=WEEKLY;INTERVAL=1;BYDAY=MO"


def test_build_rule_reuses_existing_rule_verbatim():
    config = _weekly_monday(rrule="RRULE:FREQ=WEEKLY;INTERVAL=2;BYDAY=MO")

    first = build_rule(config, dt.date(2026, 1, 1), None, continuous=True)
    second = build_rule(config, dt.date(2026, 1, 1), None, continuous=True)

    assert first == second == "RRULE:FREQ=WEEKLY;INTERVAL=2;BYDAY=MO"


def test_build_rule_rebuilds_when_bound_no_longer_matches():
    config = _weekly_monday(rrule="FREQ=WEEKLY;INTERVAL=1;BYDAY=MO;UNTIL=20260130")

    assert build_rule(config, dt.date(2026, 1, 1), None, continuous=True) == "FREQ=WEEKLY;INTERVAL=1;BYDAY=MO"


def test_build_rule_replaces_invalid_stored_rule():
    config = _weekly_monday(rrule="not a rule")

    assert build_rule(config, dt.date(2026, 1, 1), None, continuous=True) == "FREQ=WEEKLY;INTERVAL=1;BYDAY=MO"


def test_build_rule_rejects_out_of_range_weekday():
    with pytest.raises(RecurrenceRuleError):
        build_rule(_weekly_monday(weekly_day_of_week=7), dt.date(2026, 1, 1))


def test_validate_config_passes_non_recurring_phases():
    assert validate_config(False, None, 0).is_valid


def test_validate_config_reports_missing_fields():
    assert validate_config(True, None, 5).errors == ["Recurring phase must have recurrence configuration"]

    result = validate_config(True, RecurringConfig(type="weekly", interval=0), 0)

    assert "Recurrence interval must be at least 1" in result.errors
    assert "Weekly recurrence must specify day of week (0-6)" in result.errors
    assert "Recurring phase must have positive time allocation per occurrence" in result.errors


def test_validate_config_monthly_patterns():
    missing_pattern = validate_config(True, RecurringConfig(type="monthly"), 2)
    missing_ordinal = validate_config(
        True, RecurringConfig(type="monthly", monthly_pattern="dayOfWeek", monthly_week_of_month=2), 2
    )
    valid = validate_config(True, RecurringConfig(type="monthly", monthly_pattern="date", monthly_date=31), 2)

    assert missing_pattern.errors == ["Monthly recurrence must specify pattern (date or dayOfWeek)"]
    assert missing_ordinal.errors == ["Monthly dayOfWeek pattern must specify week of month and day of week"]
    assert valid.is_valid


def test_validate_config_checks_rule_syntax_instead_of_fields():
    config = RecurringConfig(type="bogus", interval=0, rrule="FREQ=DAILY;INTERVAL=1")

    assert validate_config(True, config, 3).is_valid
    assert not validate_config(True, RecurringConfig(type="daily", rrule="FREQ=NEVER"), 3).is_valid
    assert not validate_config(True, config, 0).is_valid


def test_project_occurrences_end_the_day_before_project_end():
    project = Project(id="p", name="P", start_date=dt.date(2026, 1, 1), end_date=dt.date(2026, 2, 2))

    occurrences = recurrence.project_occurrences(project, _weekly_monday())

    assert _dates(occurrences)[-1] == dt.date(2026, 1, 26)
    assert len(occurrences) == 4


def test_continuous_project_window_keeps_numbering_from_project_start():
    project = Project(id="p", name="P", start_date=dt.date(2026, 1, 1), continuous=True)

    occurrences = recurrence.project_occurrences(
        project, _weekly_monday(), window_start=dt.date(2026, 2, 1), window_end=dt.date(2026, 2, 28)
    )

    assert _dates(occurrences) == [dt.date(2026, 2, d) for d in (2, 9, 16, 23)]
    assert [o.occurrence_number for o in occurrences] == [5, 6, 7, 8]


def test_continuous_project_default_window_around_today():
    project = Project(id="p", name="P", start_date=dt.date(2026, 1, 1), continuous=True)

    occurrences = recurrence.project_occurrences(
        project, RecurringConfig(type="daily"), today=dt.date(2026, 3, 1)
    )

    assert occurrences[0].date == dt.date(2026, 1, 30)
    assert occurrences[0].occurrence_number == 30
    assert len(occurrences) == recurrence.CONTINUOUS_FALLBACK_LIMIT


def test_totals_and_excessive_occurrences():
    project = Project(id="p", name="P", start_date=dt.date(2026, 1, 1), end_date=dt.date(2026, 3, 1))
    daily = RecurringConfig(type="daily")

    assert recurrence.occurrence_count(project, daily) == 59
    assert recurrence.recurring_total_allocation(project, daily, 2) == 118
    assert recurrence.has_excessive_occurrences(project, daily)
    assert not recurrence.has_excessive_occurrences(project, _weekly_monday())


def test_estimate_occurrence_count():
    assert recurrence.estimate_occurrence_count(_weekly_monday(), 30) == 4
    assert recurrence.estimate_occurrence_count(RecurringConfig(type="daily", interval=2), 30) == 15
    assert recurrence.estimate_occurrence_count(RecurringConfig(type="monthly"), 90) == 3


def test_describe_patterns():
    assert recurrence.describe(RecurringConfig(type="daily")) == "Every day"
    assert recurrence.describe(_weekly_monday(interval=2)) == "Every 2 weeks on Monday"
    assert (
        recurrence.describe(RecurringConfig(type="monthly", interval=3, monthly_pattern="date", monthly_date=22))
        == "Every 3 months on the 22nd"
    )
    assert (
        recurrence.describe(
            RecurringConfig(type="monthly", monthly_pattern="dayOfWeek", monthly_week_of_month=2, monthly_day_of_week=1)
        )
        == "Every month on the 2nd Monday"
    )


def test_project_occurrences_honour_an_explicit_zero_limit():
    finite = Project(id="p", name="P", start_date=dt.date(2026, 1, 1), end_date=dt.date(2026, 3, 1))
    continuous = Project(id="c", name="C", start_date=dt.date(2026, 1, 1), continuous=True)
    daily = RecurringConfig(type="daily")

    assert recurrence.project_occurrences(finite, daily, max_occurrences=0) == []
    assert recurrence.project_occurrences(continuous, daily, max_occurrences=0, today=dt.date(2026, 3, 1)) == []
    assert len(recurrence.project_occurrences(finite, daily, max_occurrences=3)) == 3

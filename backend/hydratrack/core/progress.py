"""Progress Calculations - Pure functions for goal progress.

All functions are pure: same input always produces same output, no side effects.
"""

from datetime import date

from .models import GoalSettings, IntakeTotals, MealEntry, Progress, TrackerSnapshot


def calculate_percentage(current: int, target: int) -> float:
    """Calculate how much of a target has been reached.

    Args:
        current: Amount consumed so far
        target: Daily goal

    Returns:
        Percentage rounded to one decimal, uncapped
    """
    if target <= 0:
        return 0.0
    return round(current / target * 100, 1)


def calculate_progress(current: int, target: int) -> Progress:
    """Calculate progress toward a goal.

    Args:
        current: Amount consumed so far
        target: Daily goal

    Returns:
        Progress with capped and uncapped percentages
    """
    raw = calculate_percentage(current, target)
    return Progress(
        current=current,
        target=target,
        percentage=min(raw, 100.0),
        raw_percentage=raw,
        goal_met=current >= target,
    )


def build_snapshot(
    log_date: date,
    totals: IntakeTotals,
    goals: GoalSettings,
    recent_meals: list[MealEntry] | None = None,
) -> TrackerSnapshot:
    """Combine today's totals and goals into the progress view."""
    return TrackerSnapshot(
        log_date=log_date,
        totals=totals,
        goals=goals,
        water=calculate_progress(totals.water_intake, goals.water_goal),
        calories=calculate_progress(totals.calorie_intake, goals.calorie_goal),
        recent_meals=list(recent_meals or []),
    )

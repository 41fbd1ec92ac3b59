"""
LiftLog progress calculations - dashboard statistics and weight suggestions
Pure functions shared by the REST server and the MCP server
"""
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Optional


TIMEFRAME_DAYS = {
    "week": 7,
    "month": 30,
    "quarter": 90,
    "year": 365,
}
DEFAULT_TIMEFRAME = "month"
WEIGHT_INCREMENT = 2.5
RECENT_ACTIVITY_LIMIT = 5


def round_half_up(value: float, digits: int = 0) -> float:
    """Round ties toward positive infinity: 2.5 -> 3, -2.5 -> -2."""
    scaled = Decimal(str(value)).scaleb(digits) + Decimal("0.5")
    return float(scaled.to_integral_value(rounding=ROUND_FLOOR).scaleb(-digits))


def suggest_weight(current_weight: Optional[float]) -> float:
    """Next weight to try: previous weight plus 2.5, snapped to 0.5."""
    if current_weight is None:
        return 0
    return round_half_up((current_weight + WEIGHT_INCREMENT) * 2) / 2


def format_timestamp(value: datetime) -> str:
    """Format a datetime as a sortable UTC ISO-8601 string."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def get_utc_today() -> date:
    """Current calendar day in UTC, the zone all timestamps are stored in."""
    return datetime.now(timezone.utc).date()


def get_utc_now() -> str:
    """Return current UTC time as ISO-8601 string."""
    return format_timestamp(datetime.now(timezone.utc))


def day_start(day: date) -> str:
    return format_timestamp(datetime.combine(day, time.min))


def day_end(day: date) -> str:
    return format_timestamp(datetime.combine(day, time.max))


def resolve_date_range(
    timeframe: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    today: Optional[date] = None,
) -> tuple[Optional[date], date]:
    """
    Turn a timeframe preset or an explicit range into (start, end) days.

    A start of None means "from the beginning". Raises ValueError for an
    unknown timeframe, a custom range without a start, or start > end.
    """
    today = today or get_utc_today()
    timeframe = timeframe or ("custom" if start else DEFAULT_TIMEFRAME)

    if timeframe == "custom":
        if start is None:
            raise ValueError("A custom timeframe needs a start date")
        end = end or today
    elif timeframe == "all":
        end = end or today
        start = None
    elif timeframe in TIMEFRAME_DAYS:
        end = end or today
        start = end - timedelta(days=TIMEFRAME_DAYS[timeframe] - 1)
    else:
        raise ValueError(
            f"Unknown timeframe: {timeframe}. "
            f"Allowed: {sorted([*TIMEFRAME_DAYS, 'all', 'custom'])}"
        )

    if start is not None and start > end:
        raise ValueError(f"Start date {start} is after end date {end}")
    return start, end


def previous_period(start: date, end: date) -> tuple[date, date]:
    """The period of equal length immediately before [start, end]."""
    length = (end - start).days + 1
    prev_end = start - timedelta(days=1)
    return prev_end - timedelta(days=length - 1), prev_end


def workout_volume(exercises: list[dict[str, Any]]) -> float:
    """Sum of weight x sets x reps over a workout's exercises."""
    total = 0.0
    for ex in exercises:
        total += (ex.get("weight") or 0) * (ex.get("sets") or 0) * (ex.get("reps") or 0)
    return total


def percent_change(current: float, previous: float) -> Optional[float]:
    if not previous:
        return None
    return round_half_up((current - previous) / previous * 100, 1)


def summarize_workouts(workouts: list[dict[str, Any]]) -> dict[str, Any]:
    """
    Headline numbers for a list of archived workouts.

    Each workout is a dict with "score" and an "exercises" list of
    {"weight", "sets", "reps"} snapshots.
    """
    total_workouts = len(workouts)
    total_weight = sum(workout_volume(w["exercises"]) for w in workouts)
    if total_workouts:
        avg_score = sum(w.get("score") or 0 for w in workouts) / total_workouts
    else:
        avg_score = 0

    return {
        "total_workouts": total_workouts,
        "total_weight": int(round_half_up(total_weight)),
        "avg_score": round_half_up(avg_score, 1),
    }


def build_dashboard(
    workouts: list[dict[str, Any]],
    exercises: list[dict[str, Any]],
    previous: Optional[list[dict[str, Any]]] = None,
) -> dict[str, Any]:
    """
    Assemble dashboard statistics from archived workouts sorted by date.

    `previous` holds the workouts of the preceding period; when given, the
    *_change fields carry percent changes against it.
    """
    stats = summarize_workouts(workouts)

    performance_data = [
        {"date": w["date"], "total_weight": workout_volume(w["exercises"])}
        for w in workouts
    ]

    # One chart row per calendar day; later workouts overwrite earlier ones
    progress_by_day: dict[str, dict[str, Any]] = {}
    for w in workouts:
        day = w["date"][:10]
        entry = progress_by_day.setdefault(day, {"date": day})
        for ex in w["exercises"]:
            if ex.get("exercise_id") is not None:
                entry[str(ex["exercise_id"])] = ex.get("weight")

    recent_activity = [
        {"id": w["id"], "name": w["name"], "date": w["date"], "score": w.get("score")}
        for w in reversed(workouts[-RECENT_ACTIVITY_LIMIT:])
    ]

    changes = {"workout_change": None, "weight_change": None, "score_change": None}
    if previous is not None:
        prev_stats = summarize_workouts(previous)
        changes = {
            "workout_change": percent_change(stats["total_workouts"], prev_stats["total_workouts"]),
            "weight_change": percent_change(stats["total_weight"], prev_stats["total_weight"]),
            "score_change": percent_change(stats["avg_score"], prev_stats["avg_score"]),
        }

    return {
        **stats,
        **changes,
        "performance_data": performance_data,
        "exercise_progress_data": list(progress_by_day.values()),
        "exercises": exercises,
        "recent_activity": recent_activity,
    }


def array_move(items: list, old_index: int, new_index: int) -> list:
    """Return a copy of items with the element at old_index moved to new_index."""
    if not 0 <= old_index < len(items):
        raise IndexError(f"Index {old_index} out of range")
    new_index = max(0, min(new_index, len(items) - 1))
    moved = list(items)
    moved.insert(new_index, moved.pop(old_index))
    return moved

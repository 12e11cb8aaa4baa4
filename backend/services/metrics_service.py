"""Reduce a rolling window of daily logs into normalized weekly metrics.

Metrics are recomputed on every call from whatever logs exist at that moment;
nothing here is cached or written back.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from statistics import mean
from typing import Any, Iterable

from sqlalchemy.orm import Session

from db.models import FATIGUE_ENERGY_LEVELS, DailyLog, Profile
from services.errors import ProfileNotFoundError
from services.plan_store import diet_document, latest_diet_plan, latest_workout_plan, split_type, total_sets, workout_document
from utils.datetime_utils import today_utc
from utils.units import macro_percentages, round_half_up

WEEK_BUCKETS = 4
DAYS_PER_BUCKET = 7
FATIGUE_WINDOW_DAYS = 7
WORKOUT_WEIGHT = 0.60
DIET_WEIGHT = 0.40
DEFAULT_MACRO_PERCENTAGES = {"protein": 30, "carbs": 40, "fat": 30}


@dataclass
class WeeklyMetrics:
    week_weights: list[float]
    avg_weekly_change: float
    workout_adherence_pct: int
    diet_adherence_pct: int
    habit_score: int
    fatigue_count_7d: int
    avg_calories: int
    current_macro_split: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_MACRO_PERCENTAGES))
    current_workout_volume: int = 0
    current_calories: int = 0
    split_type: str = "Full Body"
    log_count: int = 0

    @property
    def combined_adherence(self) -> float:
        return (self.workout_adherence_pct + self.diet_adherence_pct) / 2

    @property
    def calorie_baseline(self) -> int:
        """Calories that percentage adjustments are applied to."""
        return self.avg_calories or self.current_calories

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["combined_adherence"] = self.combined_adherence
        return payload


def _days_ago(log: DailyLog, today: date) -> int:
    return (today - log.log_date).days


def weekly_average_weights(logs: Iterable[DailyLog], today: date) -> list[float]:
    buckets: list[list[float]] = [[] for _ in range(WEEK_BUCKETS)]
    for log in logs:
        if not log.weight_kg or log.weight_kg <= 0:
            continue
        week_index = _days_ago(log, today) // DAYS_PER_BUCKET
        if 0 <= week_index < WEEK_BUCKETS:
            # Oldest bucket first, most recent at the last index.
            buckets[WEEK_BUCKETS - 1 - week_index].append(float(log.weight_kg))
    return [mean(bucket) if bucket else 0.0 for bucket in buckets]


def average_weekly_change(week_weights: list[float]) -> float:
    valid = [w for w in week_weights if w > 0]
    if len(valid) < 2:
        return 0.0
    return (valid[-1] - valid[0]) / (len(valid) - 1)


def adherence_pct(logs: list[DailyLog], attribute: str) -> int:
    if not logs:
        return 0
    done = sum(1 for log in logs if getattr(log, attribute))
    return round_half_up(done / len(logs) * 100)


def habit_score(workout_adherence: float, diet_adherence: float) -> int:
    return round_half_up(workout_adherence * WORKOUT_WEIGHT + diet_adherence * DIET_WEIGHT)


def fatigue_count(logs: Iterable[DailyLog], today: date) -> int:
    return sum(
        1
        for log in logs
        if _days_ago(log, today) < FATIGUE_WINDOW_DAYS and log.energy_level in FATIGUE_ENERGY_LEVELS
    )


def average_calories(logs: Iterable[DailyLog]) -> int:
    values = [float(log.calories_consumed) for log in logs if log.calories_consumed and log.calories_consumed > 0]
    if not values:
        return 0
    return round_half_up(mean(values))


def window_logs(db: Session, user_id: int, window_days: int, today: date) -> list[DailyLog]:
    start = today - timedelta(days=max(int(window_days), 1) - 1)
    return (
        db.query(DailyLog)
        .filter(
            DailyLog.user_id == user_id,
            DailyLog.log_date >= start,
            DailyLog.log_date <= today,
        )
        .order_by(DailyLog.log_date.asc())
        .all()
    )


def get_profile(db: Session, user_id: int) -> Profile:
    profile = db.query(Profile).filter(Profile.user_id == user_id).first()
    if profile is None:
        raise ProfileNotFoundError()
    return profile


def compute_weekly_metrics(
    db: Session,
    user_id: int,
    window_days: int = 28,
    today: date | None = None,
) -> WeeklyMetrics:
    get_profile(db, user_id)
    anchor = today or today_utc()
    logs = window_logs(db, user_id, window_days, anchor)

    week_weights = weekly_average_weights(logs, anchor)
    workout_adherence = adherence_pct(logs, "workout_completed")
    diet_adherence = adherence_pct(logs, "diet_followed")
    avg_calories = average_calories(logs)

    macro_split = dict(DEFAULT_MACRO_PERCENTAGES)
    current_calories = avg_calories
    diet_row = latest_diet_plan(db, user_id)
    if diet_row is not None:
        diet = diet_document(diet_row)
        current_calories = round_half_up(diet["daily_calories"] or 0) or avg_calories
        macro_split = macro_percentages(
            diet["daily_calories"],
            diet["protein_grams"],
            diet["carbs_grams"],
            diet["fat_grams"],
        ) or macro_split

    volume = 0
    split = "Full Body"
    workout_row = latest_workout_plan(db, user_id)
    if workout_row is not None:
        workouts = workout_document(workout_row)["workouts"]
        volume = total_sets(workouts)
        split = split_type(workouts)

    return WeeklyMetrics(
        week_weights=week_weights,
        avg_weekly_change=average_weekly_change(week_weights),
        workout_adherence_pct=workout_adherence,
        diet_adherence_pct=diet_adherence,
        habit_score=habit_score(workout_adherence, diet_adherence),
        fatigue_count_7d=fatigue_count(logs, anchor),
        avg_calories=avg_calories,
        current_macro_split=macro_split,
        current_workout_volume=volume,
        current_calories=current_calories,
        split_type=split,
        log_count=len(logs),
    )

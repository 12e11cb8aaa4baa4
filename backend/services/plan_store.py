from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from db.models import DietPlan, WorkoutPlan
from services.errors import PlanNotFoundError


def _safe_json_loads(raw: str | None, fallback: Any) -> Any:
    if not raw:
        return fallback
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return fallback


def dump_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def latest_workout_plan(db: Session, user_id: int) -> WorkoutPlan | None:
    return (
        db.query(WorkoutPlan)
        .filter(WorkoutPlan.user_id == user_id)
        .order_by(WorkoutPlan.created_at.desc(), WorkoutPlan.id.desc())
        .first()
    )


def latest_diet_plan(db: Session, user_id: int) -> DietPlan | None:
    return (
        db.query(DietPlan)
        .filter(DietPlan.user_id == user_id)
        .order_by(DietPlan.created_at.desc(), DietPlan.id.desc())
        .first()
    )


def require_workout_plan(db: Session, user_id: int) -> WorkoutPlan:
    row = latest_workout_plan(db, user_id)
    if row is None:
        raise PlanNotFoundError("workout")
    return row


def require_diet_plan(db: Session, user_id: int) -> DietPlan:
    row = latest_diet_plan(db, user_id)
    if row is None:
        raise PlanNotFoundError("diet")
    return row


def workout_document(row: WorkoutPlan) -> dict[str, Any]:
    return {
        "id": row.id,
        "week_number": row.week_number,
        "week_summary": row.week_summary,
        "workouts": _safe_json_loads(row.workouts, []),
        "progression_notes": row.progression_notes,
        "recovery_tips": row.recovery_tips,
        "adjusted": bool(row.adjusted),
        "adjustment_reason": row.adjustment_reason,
        "adjustment_date": _iso(row.adjustment_date),
    }


def diet_document(row: DietPlan) -> dict[str, Any]:
    return {
        "id": row.id,
        "week_number": row.week_number,
        "week_summary": row.week_summary,
        "daily_calories": row.daily_calories,
        "protein_grams": row.protein_grams,
        "carbs_grams": row.carbs_grams,
        "fat_grams": row.fat_grams,
        "meals": _safe_json_loads(row.meals, []),
        "hydration_goal": row.hydration_goal,
        "adjusted": bool(row.adjusted),
        "adjustment_reason": row.adjustment_reason,
        "adjustment_date": _iso(row.adjustment_date),
    }


def _parse_adjustment_date(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value)
    return None


def store_workout_document(row: WorkoutPlan, document: dict[str, Any], adjustment_id: int | None = None) -> WorkoutPlan:
    row.workouts = dump_json(document.get("workouts") or [])
    row.adjusted = bool(document.get("adjusted"))
    row.adjustment_reason = document.get("adjustment_reason")
    row.adjustment_date = _parse_adjustment_date(document.get("adjustment_date"))
    if adjustment_id is not None:
        row.adjustment_id = adjustment_id
    return row


def store_diet_document(row: DietPlan, document: dict[str, Any], adjustment_id: int | None = None) -> DietPlan:
    row.daily_calories = float(document.get("daily_calories") or 0)
    row.protein_grams = float(document.get("protein_grams") or 0)
    row.carbs_grams = float(document.get("carbs_grams") or 0)
    row.fat_grams = float(document.get("fat_grams") or 0)
    row.meals = dump_json(document.get("meals") or [])
    row.adjusted = bool(document.get("adjusted"))
    row.adjustment_reason = document.get("adjustment_reason")
    row.adjustment_date = _parse_adjustment_date(document.get("adjustment_date"))
    if adjustment_id is not None:
        row.adjustment_id = adjustment_id
    return row


def total_sets(workouts: list[dict[str, Any]]) -> int:
    total = 0
    for day in workouts or []:
        if day.get("rest_day"):
            continue
        for exercise in day.get("exercises") or []:
            try:
                total += int(exercise.get("sets") or 0)
            except (TypeError, ValueError):
                continue
    return total


def split_type(workouts: list[dict[str, Any]]) -> str:
    for day in workouts or []:
        if not day.get("rest_day") and day.get("type"):
            return str(day["type"])
    return "Full Body"

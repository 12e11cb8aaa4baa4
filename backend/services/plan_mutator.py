"""Pure transforms that apply an adjustment decision to plan documents.

Every function takes plain plan dicts (as produced by ``plan_store``) and returns
new dicts; inputs are never modified. Persisting the result is the caller's job.
"""
from __future__ import annotations

import copy
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from services.adjustment_models import (
    AI_ACTION,
    DEFAULT_MACRO_SPLIT,
    DIET_ACTIONS,
    WORKOUT_ACTIONS,
    AdjustmentDecision,
    MacroSplit,
    Recommendation,
)
from utils.datetime_utils import utcnow
from utils.units import macro_grams, round_half_up

BEGINNER_DAYS = ("Monday", "Wednesday", "Friday")
SIMPLIFIED_EXERCISE_LIMIT = 4
RESET_EXERCISE_LIMIT = 3

SIMPLIFY_NOTE = "Simplified plan for better adherence - focus on key compound movements"
RESET_NOTE = "Beginner-friendly reset - 3 exercises per session"
REST_NOTE = "Rest day for recovery"
AI_VOLUME_REASON = "ai_volume_adjustment"

MEAL_MACRO_KEYS = (
    ("protein_g", "protein_grams"),
    ("carbs_g", "carbs_grams"),
    ("fat_g", "fat_grams"),
)


@dataclass
class MutationOutcome:
    workout: dict[str, Any] | None = None
    diet: dict[str, Any] | None = None
    workout_adjusted: bool = False
    diet_adjusted: bool = False
    changes: list[dict[str, Any]] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def _stamp(document: dict[str, Any], reason: str, now: datetime) -> None:
    document["adjusted"] = True
    document["adjustment_reason"] = reason
    document["adjustment_date"] = now.isoformat()


def _as_number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _usable_pct(value: float | None) -> bool:
    return value is not None and math.isfinite(value) and value != 0


def _scale(value: Any, ratio: float) -> int:
    return round_half_up(_as_number(value) * ratio)


def _redistribute_meals(meals: list[dict[str, Any]], old: dict[str, float], new: dict[str, float]) -> list[dict[str, Any]]:
    if not meals:
        return meals
    count = len(meals)
    for meal in meals:
        for meal_key, plan_key in (("calories", "daily_calories"),) + MEAL_MACRO_KEYS:
            if old[plan_key] > 0:
                meal[meal_key] = _scale(meal.get(meal_key), new[plan_key] / old[plan_key])
            else:
                meal[meal_key] = round_half_up(new[plan_key] / count)
    return meals


def adjust_diet_document(
    document: dict[str, Any],
    new_calories: float,
    reason: str,
    macros: MacroSplit | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    adjusted = copy.deepcopy(document)
    split = macros or DEFAULT_MACRO_SPLIT
    grams = macro_grams(new_calories, split.protein, split.carbs, split.fat)

    old = {
        "daily_calories": _as_number(document.get("daily_calories")),
        "protein_grams": _as_number(document.get("protein_grams")),
        "carbs_grams": _as_number(document.get("carbs_grams")),
        "fat_grams": _as_number(document.get("fat_grams")),
    }
    new = {
        "daily_calories": float(round_half_up(new_calories)),
        "protein_grams": float(grams["protein_g"]),
        "carbs_grams": float(grams["carbs_g"]),
        "fat_grams": float(grams["fat_g"]),
    }
    adjusted.update(new)
    adjusted["meals"] = _redistribute_meals(adjusted.get("meals") or [], old, new)
    _stamp(adjusted, reason, now or utcnow())
    return adjusted


def _training_days(workouts: list[dict[str, Any]]):
    for day in workouts:
        if not day.get("rest_day") and day.get("exercises"):
            yield day


def scale_workout_volume(
    document: dict[str, Any],
    pct: float,
    note: str,
    reason: str,
    now: datetime | None = None,
) -> dict[str, Any]:
    adjusted = copy.deepcopy(document)
    multiplier = 1 + float(pct) / 100.0
    for day in _training_days(adjusted.get("workouts") or []):
        for exercise in day["exercises"]:
            exercise["sets"] = max(1, round_half_up(_as_number(exercise.get("sets")) * multiplier))
            guidance = str(exercise.get("guidance") or "").strip()
            exercise["guidance"] = f"{guidance} | {note}" if guidance else note
    _stamp(adjusted, reason, now or utcnow())
    return adjusted


def simplify_workout(document: dict[str, Any], reason: str = "simplify_plan", now: datetime | None = None) -> dict[str, Any]:
    adjusted = copy.deepcopy(document)
    for day in _training_days(adjusted.get("workouts") or []):
        if len(day["exercises"]) > SIMPLIFIED_EXERCISE_LIMIT:
            day["exercises"] = day["exercises"][:SIMPLIFIED_EXERCISE_LIMIT]
            day["notes"] = SIMPLIFY_NOTE
    _stamp(adjusted, reason, now or utcnow())
    return adjusted


def reset_workout(document: dict[str, Any], reason: str = "reset_plan", now: datetime | None = None) -> dict[str, Any]:
    adjusted = copy.deepcopy(document)
    reset_days = []
    for day in adjusted.get("workouts") or []:
        if day.get("day_name") in BEGINNER_DAYS:
            day["rest_day"] = False
            day["exercises"] = list(day.get("exercises") or [])[:RESET_EXERCISE_LIMIT]
            day["notes"] = RESET_NOTE
        else:
            day["rest_day"] = True
            day["exercises"] = []
            day["notes"] = REST_NOTE
        reset_days.append(day)
    adjusted["workouts"] = reset_days
    _stamp(adjusted, reason, now or utcnow())
    return adjusted


def _apply_ai_recommendation(
    outcome: MutationOutcome,
    rec: Recommendation,
    current_calories: float | None,
    now: datetime,
) -> None:
    if rec.new_calories:
        if outcome.diet is None:
            outcome.skipped.append("diet")
        else:
            outcome.diet = adjust_diet_document(outcome.diet, rec.new_calories, AI_ACTION, rec.new_macros, now)
            outcome.diet_adjusted = True
            outcome.changes.append({
                "type": "diet",
                "action": AI_ACTION,
                "description": rec.description,
                "old_calories": current_calories,
                "new_calories": rec.new_calories,
                "new_macros": rec.new_macros.model_dump() if rec.new_macros else None,
            })

    if _usable_pct(rec.volume_change_pct):
        if outcome.workout is None:
            outcome.skipped.append("workout")
        else:
            description = rec.workout_structure or rec.description
            outcome.workout = scale_workout_volume(
                outcome.workout,
                rec.volume_change_pct,
                note=f"AI ADJUSTED: {description}",
                reason=AI_VOLUME_REASON,
                now=now,
            )
            outcome.workout_adjusted = True
            outcome.changes.append({
                "type": "workout",
                "action": AI_ACTION,
                "description": description,
                "volume_change": rec.volume_change_pct,
            })


def _apply_workout_recommendation(outcome: MutationOutcome, rec: Recommendation, now: datetime) -> None:
    if outcome.workout is None:
        outcome.skipped.append("workout")
        return
    if rec.action == "increase_volume":
        pct = rec.volume_change_pct if _usable_pct(rec.volume_change_pct) else 0
        outcome.workout = scale_workout_volume(
            outcome.workout,
            pct,
            note=f"VOLUME INCREASED: {pct:g}% more sets for progressive overload",
            reason=rec.action,
            now=now,
        )
    elif rec.action == "simplify_plan":
        outcome.workout = simplify_workout(outcome.workout, rec.action, now)
    else:
        outcome.workout = reset_workout(outcome.workout, rec.action, now)
    outcome.workout_adjusted = True
    outcome.changes.append({"type": "workout", "action": rec.action, "description": rec.description})


def _apply_diet_recommendation(
    outcome: MutationOutcome,
    rec: Recommendation,
    current_calories: float | None,
    now: datetime,
) -> None:
    if outcome.diet is None:
        outcome.skipped.append("diet")
        return
    if not rec.new_calories or rec.new_calories <= 0:
        return
    outcome.diet = adjust_diet_document(outcome.diet, rec.new_calories, rec.action, now=now)
    outcome.diet_adjusted = True
    outcome.changes.append({
        "type": "diet",
        "action": rec.action,
        "description": rec.description,
        "old_calories": current_calories,
        "new_calories": rec.new_calories,
    })


def apply_decision_to_documents(
    decision: AdjustmentDecision,
    workout: dict[str, Any] | None,
    diet: dict[str, Any] | None,
    current_calories: float | None = None,
    now: datetime | None = None,
) -> MutationOutcome:
    """Fold every recommendation of ``decision`` over the plan documents, in order.

    A missing document (``None``) is listed in ``skipped`` instead of raising.
    """
    outcome = MutationOutcome(workout=workout, diet=diet)
    if not decision.needs_adjustment:
        return outcome

    stamp = now or utcnow()
    for rec in decision.recommendations:
        if rec.action == AI_ACTION:
            _apply_ai_recommendation(outcome, rec, current_calories, stamp)
        elif rec.action in WORKOUT_ACTIONS:
            _apply_workout_recommendation(outcome, rec, stamp)
        elif rec.action in DIET_ACTIONS:
            _apply_diet_recommendation(outcome, rec, current_calories, stamp)

    outcome.skipped = sorted(set(outcome.skipped))
    return outcome

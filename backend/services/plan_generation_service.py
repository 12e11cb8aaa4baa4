"""Weekly plan generation used when a biometric cycle calls for fresh plans.

``PlanGenerator`` is the seam the biometric analyzer depends on; the default
implementation asks the inference service for a plan and stores it as a new
row with the requested week number.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from sqlalchemy.orm import Session

from ai.client_pool import InferenceCategory, InferenceClientPool
from ai.response_parsing import extract_json_object
from ai.usage_tracker import record_usage
from config import settings as app_settings
from db.models import DietPlan, Profile, WorkoutPlan
from services.errors import InferenceMalformedError, InferenceRequestError
from services.metrics_service import get_profile
from services.plan_store import dump_json
from utils.units import round_half_up

logger = logging.getLogger(__name__)

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

WORKOUT_SYSTEM_PROMPT = (
    "You are an expert strength coach. Return a weekly workout plan as strict JSON only, no extra text."
)
DIET_SYSTEM_PROMPT = (
    "You are an expert sports nutritionist. Return a daily diet plan as strict JSON only, no extra text."
)

WORKOUT_PROMPT = """Create week {week_number} of a workout plan.

User: {age}-year-old {gender}, goal {goal}, experience {experience_level},
{available_days} training days per week, limitations: {injuries}.

Return JSON:
{{
  "week_summary": "...",
  "workouts": [
    {{"day_name": "Monday", "type": "Upper Body", "rest_day": false,
      "exercises": [{{"name": "...", "sets": 3, "reps": "8-10", "rest_seconds": 90, "guidance": "..."}}]}}
  ],
  "progression_notes": "...",
  "recovery_tips": "..."
}}
Include all seven days; non-training days have "rest_day": true and no exercises."""

DIET_PROMPT = """Create week {week_number} of a diet plan.

User: {age}-year-old {gender}, {weight_kg} kg, target {target_weight_kg} kg, goal {goal},
activity {activity_level}, preferences: {preferences}, allergies: {allergies}.
Daily calorie target: {calories} kcal.

Return JSON:
{{
  "week_summary": "...",
  "daily_calories": 0,
  "protein_grams": 0,
  "carbs_grams": 0,
  "fat_grams": 0,
  "meals": [{{"name": "Breakfast", "calories": 0, "protein_g": 0, "carbs_g": 0, "fat_g": 0, "foods": ["..."]}}],
  "hydration_goal": "..."
}}"""


class PlanGenerator(Protocol):
    async def generate_workout_plan(self, db: Session, user_id: int, week_number: int) -> WorkoutPlan: ...

    async def generate_diet_plan(self, db: Session, user_id: int, week_number: int) -> DietPlan: ...


def _positive_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def normalize_workout_payload(payload: dict[str, Any]) -> dict[str, Any]:
    workouts = payload.get("workouts")
    if not isinstance(workouts, list) or not workouts:
        raise InferenceMalformedError("Workout plan has no workouts")

    days = []
    for index, raw in enumerate(workouts):
        if not isinstance(raw, dict):
            continue
        exercises = []
        for exercise in raw.get("exercises") or []:
            if not isinstance(exercise, dict) or not exercise.get("name"):
                continue
            sets = _positive_number(exercise.get("sets")) or 3
            exercises.append({**exercise, "sets": round_half_up(sets)})
        rest_day = bool(raw.get("rest_day")) or not exercises
        days.append({
            **raw,
            "day_name": raw.get("day_name") or WEEKDAYS[index % len(WEEKDAYS)],
            "rest_day": rest_day,
            "exercises": [] if rest_day else exercises,
        })
    if not any(not day["rest_day"] for day in days):
        raise InferenceMalformedError("Workout plan has no training days")
    return {
        "week_summary": str(payload.get("week_summary") or ""),
        "workouts": days,
        "progression_notes": str(payload.get("progression_notes") or ""),
        "recovery_tips": str(payload.get("recovery_tips") or ""),
    }


def normalize_diet_payload(payload: dict[str, Any]) -> dict[str, Any]:
    calories = _positive_number(payload.get("daily_calories"))
    if calories is None:
        raise InferenceMalformedError("Diet plan has no daily calorie target")
    meals = [meal for meal in payload.get("meals") or [] if isinstance(meal, dict)]
    return {
        "week_summary": str(payload.get("week_summary") or ""),
        "daily_calories": float(round_half_up(calories)),
        "protein_grams": _positive_number(payload.get("protein_grams")) or 0.0,
        "carbs_grams": _positive_number(payload.get("carbs_grams")) or 0.0,
        "fat_grams": _positive_number(payload.get("fat_grams")) or 0.0,
        "meals": meals,
        "hydration_goal": str(payload.get("hydration_goal") or ""),
    }


class AIPlanGenerator:
    def __init__(self, pool: InferenceClientPool, model: str | None = None, timeout_seconds: float | None = None):
        self.pool = pool
        self.model = model or app_settings.UTILITY_MODEL
        self.timeout_seconds = float(timeout_seconds or app_settings.INFERENCE_TIMEOUT_SECONDS)

    async def _request_json(
        self,
        db: Session,
        user_id: int,
        category: InferenceCategory,
        system: str,
        prompt: str,
        operation: str,
    ) -> dict[str, Any]:
        client = self.pool.get_client(category)
        if client is None:
            raise InferenceRequestError(f"No inference key available for {category.value}")
        try:
            result = await asyncio.wait_for(
                client.complete(
                    messages=[{"role": "user", "content": prompt}],
                    model=self.model,
                    system=system,
                    temperature=0.7,
                    max_tokens=3000,
                ),
                timeout=self.timeout_seconds,
            )
            record_usage(db, user_id, client, result, operation, self.model)
            return extract_json_object(str(result.get("content") or ""))
        except Exception:
            self.pool.record_error(client.category)
            raise

    async def generate_workout_plan(self, db: Session, user_id: int, week_number: int) -> WorkoutPlan:
        profile = get_profile(db, user_id)
        payload = await self._request_json(
            db,
            user_id,
            InferenceCategory.WORKOUT,
            WORKOUT_SYSTEM_PROMPT,
            WORKOUT_PROMPT.format(
                week_number=week_number,
                age=profile.age,
                gender=profile.gender,
                goal=profile.goal,
                experience_level=profile.experience_level,
                available_days=profile.available_days_per_week,
                injuries=profile.injuries_limitations or "none",
            ),
            "workout_plan_generation",
        )
        plan = normalize_workout_payload(payload)
        row = WorkoutPlan(
            user_id=user_id,
            week_number=week_number,
            week_summary=plan["week_summary"],
            workouts=dump_json(plan["workouts"]),
            progression_notes=plan["progression_notes"],
            recovery_tips=plan["recovery_tips"],
            source="ai",
        )
        db.add(row)
        db.commit()
        db.refresh(row)
        logger.info("Generated week %s workout plan for user %s", week_number, user_id)
        return row

    async def generate_diet_plan(self, db: Session, user_id: int, week_number: int) -> DietPlan:
        profile = get_profile(db, user_id)
        payload = await self._request_json(
            db,
            user_id,
            InferenceCategory.DIET,
            DIET_SYSTEM_PROMPT,
            DIET_PROMPT.format(
                week_number=week_number,
                age=profile.age,
                gender=profile.gender,
                weight_kg=profile.weight_kg,
                target_weight_kg=profile.target_weight_kg,
                goal=profile.goal,
                activity_level=profile.activity_level,
                preferences=profile.dietary_preferences or "none",
                allergies=profile.allergies or "none",
                calories=_calorie_hint(profile),
            ),
            "diet_plan_generation",
        )
        plan = normalize_diet_payload(payload)
        row = DietPlan(
            user_id=user_id,
            week_number=week_number,
            week_summary=plan["week_summary"],
            daily_calories=plan["daily_calories"],
            protein_grams=plan["protein_grams"],
            carbs_grams=plan["carbs_grams"],
            fat_grams=plan["fat_grams"],
            meals=dump_json(plan["meals"]),
            hydration_goal=plan["hydration_goal"],
            source="ai",
        )
        db.add(row)
        profile.daily_calorie_target = plan["daily_calories"]
        db.commit()
        db.refresh(row)
        logger.info("Generated week %s diet plan for user %s", week_number, user_id)
        return row


def _calorie_hint(profile: Profile) -> str:
    if profile.daily_calorie_target:
        return str(round_half_up(profile.daily_calorie_target))
    return "choose an appropriate target"

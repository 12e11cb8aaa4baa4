"""Decide whether a user's plan needs adjusting.

An evaluation moves through three states. TRY_AI asks the inference service for
a structured decision; any unavailability, request failure, timeout or parse
failure moves to FALLBACK, which runs the deterministic rule table. Both paths
end in DONE with the same ``AdjustmentDecision`` shape, tagged with the branch
that produced it.
"""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from ai.client_pool import InferenceCategory, InferenceClientPool
from ai.response_parsing import extract_json_object
from ai.usage_tracker import record_usage
from config import settings as app_settings
from db.models import Profile
from services.adjustment_models import (
    AI_ACTION,
    AdjustmentDecision,
    DecisionParseFailure,
    DecisionParsed,
    MacroSplit,
    ParsedDecision,
    Recommendation,
    Trigger,
)
from services.errors import InferenceMalformedError
from services.metrics_service import WeeklyMetrics, compute_weekly_metrics, get_profile
from utils.units import round_half_up

logger = logging.getLogger(__name__)

SLOW_LOSS_KG = 0.3
RAPID_LOSS_KG = 1.0
STAGNANT_GAIN_KG = 0.2
NO_PROGRESS_KG = 0.1
LOW_ADHERENCE_PCT = 60
NO_PROGRESS_ADHERENCE_PCT = 70

DEFICIT_MULTIPLIER = 0.90
SAFETY_MULTIPLIER = 1.15
SURPLUS_MULTIPLIER = 1.10
VOLUME_INCREASE_PCT = 20

ON_TRACK_NOTIFICATION = "No adjustments needed - progress is on track!"

ADJUSTMENT_SYSTEM_PROMPT = (
    "You are a professional fitness AI that analyzes user data and provides plan adjustments "
    "in strict JSON format. Always return valid JSON only, no extra text."
)

ADJUSTMENT_PROMPT = """You are FitAI Smart Plan Adjustment Engine.
Analyze the past 4 weeks of user fitness data and decide whether the plan needs adjusting.
Protect user health and safety, avoid extreme calorie reductions and unsafe workout overload,
and prioritize sustainability and adherence.

Return JSON only:
{{
  "adjustmentRequired": true,
  "reason": "...",
  "newCalorieTarget": 0,
  "newMacroSplit": {{"protein": 0, "carbs": 0, "fat": 0}},
  "workoutChanges": {{"volumeChangePercent": 0, "newWorkoutStructure": "description"}},
  "dashboardNotification": "message for user",
  "explanation": "clear short explanation"
}}

User Profile:
Age: {age}
Gender: {gender}
Goal: {goal}
Current Weight: {current_weight} kg
Target Weight: {target_weight} kg
Activity Level: {activity_level}
Experience Level: {experience_level}

Past 4 Weeks Data:
Weekly Average Weights: {week_weights}
Average Weekly Change: {avg_weekly_change} kg
Workout Adherence: {workout_adherence}%
Diet Adherence: {diet_adherence}%
Habit Score: {habit_score}
Fatigue Reports (last 7 days): {fatigue_count}

Current Plan:
Calorie Target: {current_calories} kcal
Macro Split: {protein}% protein, {carbs}% carbs, {fat}% fat
Workout Volume: {sets_per_week} sets per week
Workout Structure: {split_type}"""


class EvaluationState(str, Enum):
    TRY_AI = "try_ai"
    FALLBACK = "fallback"
    DONE = "done"


@dataclass
class Evaluation:
    decision: AdjustmentDecision
    metrics: WeeklyMetrics
    states: list[EvaluationState] = field(default_factory=list)
    fallback_reason: str | None = None

    def context(self) -> dict[str, Any]:
        return {
            "weight_change_kg": self.metrics.avg_weekly_change,
            "adherence_rate": self.metrics.combined_adherence,
            "current_calories": self.metrics.avg_calories,
            "week_weights": self.metrics.week_weights,
            "states": [state.value for state in self.states],
            "fallback_reason": self.fallback_reason,
        }


# ---------------------------------------------------------------------------
# Rule branch
# ---------------------------------------------------------------------------

def _rate(value: float) -> str:
    return f"{value:.2f}"


def evaluate_rules(metrics: WeeklyMetrics, goal: str) -> AdjustmentDecision:
    """Deterministic rule table; every matching trigger contributes its recommendations."""
    weekly_change = metrics.avg_weekly_change
    # Weight-loss thresholds are expressed as kg lost per week.
    weekly_loss = -weekly_change
    adherence = metrics.combined_adherence
    baseline = metrics.calorie_baseline
    triggers: list[Trigger] = []
    recommendations: list[Recommendation] = []

    if goal == "Weight Loss" and 0 <= weekly_loss < SLOW_LOSS_KG:
        triggers.append(Trigger(
            type="slow_weight_loss",
            message=f"Weight loss slower than target (< 0.3 kg/week), current rate {_rate(weekly_loss)} kg/week",
            severity="medium",
        ))
        recommendations.append(Recommendation(
            action="increase_deficit",
            description="Slightly increase calorie deficit by 10%",
            new_calories=round_half_up(baseline * DEFICIT_MULTIPLIER),
        ))

    if goal == "Weight Loss" and weekly_loss > RAPID_LOSS_KG:
        triggers.append(Trigger(
            type="rapid_weight_loss",
            message=f"Weight loss too rapid (> 1 kg/week), current rate {_rate(weekly_loss)} kg/week - safety concern",
            severity="high",
        ))
        recommendations.append(Recommendation(
            action="reduce_deficit",
            description="Increase calorie intake by 15% for safety",
            new_calories=round_half_up(baseline * SAFETY_MULTIPLIER),
        ))

    if goal == "Muscle Gain" and abs(weekly_change) < STAGNANT_GAIN_KG:
        triggers.append(Trigger(
            type="stagnant_muscle_gain",
            message=f"Muscle gain progress stagnant (< 0.2 kg/week), current rate {_rate(weekly_change)} kg/week",
            severity="medium",
        ))
        recommendations.append(Recommendation(
            action="increase_volume",
            description="Increase workout volume by 20% (more sets)",
            volume_change_pct=VOLUME_INCREASE_PCT,
        ))
        recommendations.append(Recommendation(
            action="increase_calories",
            description="Increase calorie intake by 10% (caloric surplus)",
            new_calories=round_half_up(baseline * SURPLUS_MULTIPLIER),
        ))

    if adherence < LOW_ADHERENCE_PCT:
        triggers.append(Trigger(
            type="low_adherence",
            message=f"Low adherence rate (< 60%), current {adherence:.1f}%",
            severity="medium",
        ))
        recommendations.append(Recommendation(
            action="simplify_plan",
            description="Simplify workout and diet plan for better adherence",
        ))

    if abs(weekly_change) < NO_PROGRESS_KG and adherence < NO_PROGRESS_ADHERENCE_PCT:
        triggers.append(Trigger(
            type="no_progress_low_adherence",
            message="No progress with low adherence",
            severity="high",
        ))
        recommendations.append(Recommendation(
            action="reset_plan",
            description="Reset to beginner-friendly plan with easier goals",
        ))

    if triggers:
        notification = "Your plan was reviewed: " + "; ".join(t.message for t in triggers)
    else:
        notification = ON_TRACK_NOTIFICATION
    return AdjustmentDecision(
        needs_adjustment=bool(triggers),
        source="rule",
        triggers=triggers,
        recommendations=recommendations,
        notification_text=notification,
    )


# ---------------------------------------------------------------------------
# AI branch
# ---------------------------------------------------------------------------

def build_adjustment_messages(profile: Profile, metrics: WeeklyMetrics) -> list[dict]:
    macros = metrics.current_macro_split
    current_weight = next((w for w in reversed(metrics.week_weights) if w > 0), 0.0) or profile.weight_kg
    prompt = ADJUSTMENT_PROMPT.format(
        age=profile.age,
        gender=profile.gender,
        goal=profile.goal,
        current_weight=round(float(current_weight), 1),
        target_weight=profile.target_weight_kg,
        activity_level=profile.activity_level,
        experience_level=profile.experience_level,
        week_weights=", ".join(f"{w:.1f}" for w in metrics.week_weights),
        avg_weekly_change=f"{metrics.avg_weekly_change:.2f}",
        workout_adherence=metrics.workout_adherence_pct,
        diet_adherence=metrics.diet_adherence_pct,
        habit_score=metrics.habit_score,
        fatigue_count=metrics.fatigue_count_7d,
        current_calories=metrics.current_calories or metrics.avg_calories,
        protein=macros.get("protein"),
        carbs=macros.get("carbs"),
        fat=macros.get("fat"),
        sets_per_week=metrics.current_workout_volume,
        split_type=metrics.split_type,
    )
    return [{"role": "user", "content": prompt}]


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip().rstrip("%"))
        except ValueError:
            return None
    else:
        return None
    # json.loads accepts NaN and Infinity literals
    return number if math.isfinite(number) else None


def _macro_split(raw: Any) -> MacroSplit | None:
    if not isinstance(raw, dict):
        return None
    values = {key: _to_number(raw.get(key)) for key in ("protein", "carbs", "fat")}
    if any(v is None or v < 0 for v in values.values()):
        return None
    split = MacroSplit(**values)
    if not split.is_balanced():
        logger.warning("Macro split from model sums to %.1f%%, expected 100%%", split.total())
    return split


def parse_adjustment_response(text: str) -> ParsedDecision:
    try:
        payload = extract_json_object(text)
    except InferenceMalformedError as exc:
        return DecisionParseFailure(raw_text=text or "", error=str(exc))

    required = payload.get("adjustmentRequired")
    if not isinstance(required, bool):
        return DecisionParseFailure(raw_text=text or "", error="Missing adjustmentRequired field")

    reason = str(payload.get("reason") or "").strip()
    explanation = str(payload.get("explanation") or "").strip()
    notification = str(payload.get("dashboardNotification") or "").strip()
    if not required:
        return DecisionParsed(AdjustmentDecision(
            needs_adjustment=False,
            source="ai",
            notification_text=notification or explanation or ON_TRACK_NOTIFICATION,
        ))

    calories = _to_number(payload.get("newCalorieTarget"))
    workout_changes = payload.get("workoutChanges") if isinstance(payload.get("workoutChanges"), dict) else {}
    volume_pct = _to_number(workout_changes.get("volumeChangePercent"))
    structure = str(workout_changes.get("newWorkoutStructure") or "").strip() or None

    recommendation = Recommendation(
        action=AI_ACTION,
        description=explanation or reason or "AI recommended plan adjustment",
        new_calories=round_half_up(calories) if calories and calories > 0 else None,
        new_macros=_macro_split(payload.get("newMacroSplit")),
        volume_change_pct=volume_pct if volume_pct else None,
        workout_structure=structure,
    )
    return DecisionParsed(AdjustmentDecision(
        needs_adjustment=True,
        source="ai",
        triggers=[Trigger(type="ai_recommendation", message=reason or "AI recommended adjustment", severity="medium")],
        recommendations=[recommendation],
        notification_text=notification or reason,
    ))


class DecisionEngine:
    def __init__(
        self,
        pool: InferenceClientPool,
        timeout_seconds: float | None = None,
        model: str | None = None,
        window_days: int | None = None,
    ) -> None:
        self.pool = pool
        self.timeout_seconds = float(timeout_seconds or app_settings.INFERENCE_TIMEOUT_SECONDS)
        self.model = model or app_settings.PLAN_ADJUSTMENT_MODEL
        self.window_days = int(window_days or app_settings.EVALUATION_WINDOW_DAYS)

    async def evaluate(self, db: Session, user_id: int, today: date | None = None) -> AdjustmentDecision:
        evaluation = await self.evaluate_with_context(db, user_id, today=today)
        return evaluation.decision

    async def evaluate_with_context(self, db: Session, user_id: int, today: date | None = None) -> Evaluation:
        profile = get_profile(db, user_id)
        metrics = compute_weekly_metrics(db, user_id, window_days=self.window_days, today=today)

        states: list[EvaluationState] = []
        decision: AdjustmentDecision | None = None
        fallback_reason: str | None = None
        if self.pool.is_available(InferenceCategory.PLAN_ADJUSTMENT):
            state = EvaluationState.TRY_AI
        else:
            state = EvaluationState.FALLBACK
            fallback_reason = "inference unavailable"

        while state is not EvaluationState.DONE:
            states.append(state)
            if state is EvaluationState.TRY_AI:
                parsed = await self._try_ai(db, user_id, profile, metrics)
                if isinstance(parsed, DecisionParsed):
                    decision = parsed.decision
                    state = EvaluationState.DONE
                else:
                    fallback_reason = parsed.error
                    state = EvaluationState.FALLBACK
            elif state is EvaluationState.FALLBACK:
                logger.info("Using rule-based plan evaluation for user %s (%s)", user_id, fallback_reason)
                decision = evaluate_rules(metrics, profile.goal)
                state = EvaluationState.DONE
        states.append(EvaluationState.DONE)

        return Evaluation(decision=decision, metrics=metrics, states=states, fallback_reason=fallback_reason)

    async def _try_ai(self, db: Session, user_id: int, profile: Profile, metrics: WeeklyMetrics) -> ParsedDecision:
        client = self.pool.get_client(InferenceCategory.PLAN_ADJUSTMENT)
        if client is None:
            return DecisionParseFailure(raw_text="", error="inference unavailable")

        try:
            result = await asyncio.wait_for(
                client.complete(
                    messages=build_adjustment_messages(profile, metrics),
                    model=self.model,
                    system=ADJUSTMENT_SYSTEM_PROMPT,
                    temperature=0.3,
                    max_tokens=1000,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            self.pool.record_error(client.category)
            logger.warning("AI plan evaluation timed out after %.1fs, falling back to rules", self.timeout_seconds)
            return DecisionParseFailure(raw_text="", error="inference timeout")
        except Exception as exc:
            self.pool.record_error(client.category)
            logger.warning("AI plan evaluation failed, falling back to rules: %s", exc)
            return DecisionParseFailure(raw_text="", error=f"inference request failed: {exc}")

        record_usage(db, user_id, client, result, "plan_adjustment", self.model)
        raw = str(result.get("content") or "")
        try:
            parsed = parse_adjustment_response(raw)
        except Exception as exc:
            parsed = DecisionParseFailure(raw_text=raw, error=f"unusable decision: {exc}")
        if isinstance(parsed, DecisionParseFailure):
            self.pool.record_error(client.category)
            logger.warning("AI plan evaluation returned malformed output: %s", parsed.error)
        return parsed

"""Four-week body measurement cycle: reminders, progress analysis and plan regeneration."""
from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timedelta
from statistics import mean
from typing import Any

from sqlalchemy.orm import Session

from ai.client_pool import InferenceCategory, InferenceClientPool
from ai.usage_tracker import record_usage
from config import settings as app_settings
from db.models import MEASUREMENT_SITES, Profile
from services.adjustment_models import BiometricVerdict, NarrativeVerdict, RegenerationResult
from services.errors import InferenceMalformedError, MeasurementNotFoundError, ProfileNotFoundError
from services.measurement_service import require_latest_measurement
from services.metrics_service import get_profile
from services.plan_generation_service import PlanGenerator
from services.plan_store import latest_diet_plan, latest_workout_plan
from utils.datetime_utils import days_since, utcnow
from utils.units import round_half_up

logger = logging.getLogger(__name__)

ANALYSIS_SYSTEM_PROMPT = (
    "You are an expert fitness coach analyzing body measurements. Provide detailed, actionable insights."
)
DEFAULT_INSIGHT = "Analysis completed. Review your measurements for progress."
NO_REGENERATION_MESSAGE = "No plan adjustments needed. Continue with current plans."
MAX_FALLBACK_INSIGHT_CHARS = 500

_KEYS = ("PROGRESS", "INSIGHTS", "DIET_ADJUSTMENT", "WORKOUT_ADJUSTMENT", "RECOMMENDATIONS")


def _key(name: str) -> str:
    # Tolerates markdown decoration such as "**PROGRESS:**" or "- PROGRESS:".
    return rf"^[ \t*#>-]*{name}[ \t*]*:[ \t*]*"


_NEXT_KEY = r"(?=^[ \t*#>-]*(?:" + "|".join(_KEYS) + r")[ \t*]*:|\Z)"
PROGRESS_RE = re.compile(_key("PROGRESS") + r"(excellent|good|moderate|poor)\b", re.IGNORECASE | re.MULTILINE)
INSIGHTS_RE = re.compile(_key("INSIGHTS") + r"(.*?)" + _NEXT_KEY, re.IGNORECASE | re.MULTILINE | re.DOTALL)
DIET_RE = re.compile(_key("DIET_ADJUSTMENT") + r"(yes|no)\b[ \t*]*(?:[-:,][ \t]*)?(.*)$", re.IGNORECASE | re.MULTILINE)
WORKOUT_RE = re.compile(_key("WORKOUT_ADJUSTMENT") + r"(yes|no)\b[ \t*]*(?:[-:,][ \t]*)?(.*)$", re.IGNORECASE | re.MULTILINE)
RECOMMENDATIONS_RE = re.compile(
    _key("RECOMMENDATIONS") + r"(.*?)" + _NEXT_KEY,
    re.IGNORECASE | re.MULTILINE | re.DOTALL,
)
_BULLET_RE = re.compile(r"^[ \t]*(?:[-*•]+|\d+[.)])(?=[ \t])[ \t]*")

ANALYSIS_PROMPT = """Analyze these body measurement changes for a {age}-year-old {gender} with goal: {goal}

INITIAL MEASUREMENTS (4 weeks ago):
- Waist: {initial[waist_cm]}cm
- Chest: {initial[chest_cm]}cm
- Hips: {initial[hips_cm]}cm
- Arms: {initial[left_arm_cm]}cm / {initial[right_arm_cm]}cm
- Thighs: {initial[left_thigh_cm]}cm / {initial[right_thigh_cm]}cm

CURRENT MEASUREMENTS:
- Waist: {current[waist_cm]}cm ({delta[waist]})
- Chest: {current[chest_cm]}cm ({delta[chest]})
- Hips: {current[hips_cm]}cm ({delta[hips]})
- Arms: {current[left_arm_cm]}cm / {current[right_arm_cm]}cm ({delta[left_arm]} / {delta[right_arm]})
- Thighs: {current[left_thigh_cm]}cm / {current[right_thigh_cm]}cm ({delta[left_thigh]} / {delta[right_thigh]})

USER PROFILE:
- Goal: {goal}
- Activity Level: {activity_level}
- Experience Level: {experience_level}
- Current Weight: {weight_kg}kg
- Target Weight: {target_weight_kg}kg

Provide a detailed analysis including:
1. Overall progress assessment (excellent/good/moderate/poor)
2. Specific insights about each measurement change
3. Whether diet plan needs adjustment (yes/no with reason)
4. Whether workout plan needs adjustment (yes/no with reason)
5. Specific recommendations for next 4 weeks

Format your response as:
PROGRESS: [excellent/good/moderate/poor]
INSIGHTS: [detailed analysis]
DIET_ADJUSTMENT: [yes/no] - [reason]
WORKOUT_ADJUSTMENT: [yes/no] - [reason]
RECOMMENDATIONS: [specific actionable recommendations]"""


# ---------------------------------------------------------------------------
# Reminder
# ---------------------------------------------------------------------------

def check_measurement_reminder(
    db: Session,
    user_id: int,
    now: datetime | None = None,
    cadence_days: int | None = None,
) -> dict[str, Any]:
    cadence = int(cadence_days or app_settings.MEASUREMENT_REMINDER_DAYS)
    try:
        profile = get_profile(db, user_id)
    except ProfileNotFoundError:
        return {"reminder_due": False, "days_until_next": cadence, "last_measurement_date": None, "next_due_date": None}

    last = profile.last_measurement_reminder or profile.initial_measured_at
    if last is None:
        return {"reminder_due": False, "days_until_next": cadence, "last_measurement_date": None, "next_due_date": None}

    elapsed = days_since(last, now or utcnow())
    return {
        "reminder_due": elapsed >= cadence,
        "days_until_next": max(0, cadence - elapsed),
        "days_since_last": elapsed,
        "last_measurement_date": last.isoformat(),
        "next_due_date": (last + timedelta(days=cadence)).isoformat(),
    }


# ---------------------------------------------------------------------------
# Deltas and rule table
# ---------------------------------------------------------------------------

def _round1(value: float) -> float:
    return round_half_up(value * 10) / 10


def compute_deltas(initial: dict[str, float | None], current: dict[str, float | None]) -> dict[str, float | None]:
    """Per-site change (current minus initial) in cm, keyed without the ``_cm`` suffix."""
    deltas: dict[str, float | None] = {}
    for site in MEASUREMENT_SITES:
        before = initial.get(site)
        after = current.get(site)
        name = site[:-3]
        deltas[name] = _round1(after - before) if before is not None and after is not None else None
    return deltas


def _pair(deltas: dict[str, float | None], left: str, right: str) -> float | None:
    values = [v for v in (deltas.get(left), deltas.get(right)) if v is not None]
    return mean(values) if values else None


def _gt(value: float | None, threshold: float) -> bool:
    return value is not None and value > threshold


def _lt(value: float | None, threshold: float) -> bool:
    return value is not None and value < threshold


def rule_based_verdict(goal: str, deltas: dict[str, float | None]) -> NarrativeVerdict:
    waist = deltas.get("waist")
    hips = deltas.get("hips")
    chest = deltas.get("chest")
    arms = _pair(deltas, "left_arm", "right_arm")
    thighs = _pair(deltas, "left_thigh", "right_thigh")
    positives: list[str] = []
    concerns: list[str] = []
    progress = "moderate"

    if goal == "Weight Loss":
        if _lt(waist, -2):
            positives.append("Significant waist reduction - excellent progress!")
        elif _gt(waist, 0):
            concerns.append("Waist measurement increased - may need diet adjustment")
        if _lt(hips, -2):
            positives.append("Hip measurement decreased - good fat loss")
        progress = "good" if len(positives) > len(concerns) else "needs_improvement"
    elif goal == "Muscle Gain":
        if _gt(chest, 2):
            positives.append("Chest measurement increased - muscle growth detected!")
        if _gt(arms, 1):
            positives.append("Arm measurement increased - good muscle development")
        if _gt(thighs, 2):
            positives.append("Leg muscles growing - excellent lower body progress")
        if _gt(waist, 3):
            concerns.append("Waist increased significantly - may be gaining excess fat")
        progress = "excellent" if len(positives) >= 2 else "moderate"
    elif goal == "Maintenance":
        changes = [abs(v) for v in (waist, chest, hips, arms, thighs) if v is not None]
        if changes:
            average = mean(changes)
            if average < 1:
                positives.append("Measurements stable - excellent maintenance!")
                progress = "excellent"
            elif average > 2:
                concerns.append("Significant measurement changes - may need plan adjustment")
                progress = "needs_adjustment"

    if concerns:
        recommendations = [
            "Consider regenerating your workout and diet plans",
            "Consult with AI coach for personalized adjustments",
        ]
    elif positives:
        recommendations = [
            "Keep up the excellent work!",
            "Continue with current plan for another 4 weeks",
        ]
    else:
        recommendations = []

    reason = "; ".join(concerns)
    return NarrativeVerdict(
        progress_level=progress,
        insights=positives + concerns,
        diet_adjustment_needed=bool(concerns),
        diet_adjustment_reason=reason,
        workout_adjustment_needed=bool(concerns),
        workout_adjustment_reason=reason,
        recommendations=recommendations,
        positive_indicators=positives,
        concerns=concerns,
    )


# ---------------------------------------------------------------------------
# Narrative parsing
# ---------------------------------------------------------------------------

def _lines(block: str) -> list[str]:
    lines = []
    for raw in block.splitlines():
        line = _BULLET_RE.sub("", raw).strip().strip("*").strip()
        if line:
            lines.append(line)
    return lines


def _yes_no(pattern: re.Pattern, text: str) -> tuple[bool, str]:
    match = pattern.search(text)
    if not match:
        return False, ""
    return match.group(1).lower() == "yes", (match.group(2) or "").strip()


def parse_narrative(text: str | None) -> NarrativeVerdict:
    """Parse the PROGRESS/INSIGHTS/.../RECOMMENDATIONS template; never raises."""
    body = (text or "").replace("\r\n", "\n")
    verdict = NarrativeVerdict()

    progress = PROGRESS_RE.search(body)
    if progress:
        verdict.progress_level = progress.group(1).lower()

    insights = INSIGHTS_RE.search(body)
    if insights:
        verdict.insights = _lines(insights.group(1))

    verdict.diet_adjustment_needed, verdict.diet_adjustment_reason = _yes_no(DIET_RE, body)
    verdict.workout_adjustment_needed, verdict.workout_adjustment_reason = _yes_no(WORKOUT_RE, body)

    recommendations = RECOMMENDATIONS_RE.search(body)
    if recommendations:
        verdict.recommendations = _lines(recommendations.group(1))

    if not verdict.insights:
        snippet = body.strip()[:MAX_FALLBACK_INSIGHT_CHARS]
        verdict.insights = [snippet] if snippet else [DEFAULT_INSIGHT]
    return verdict


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

def _signed(value: float | None) -> str:
    if value is None:
        return "n/a"
    return f"{value:+.1f}cm"


def build_analysis_messages(
    profile: Profile,
    initial: dict[str, float | None],
    current: dict[str, float | None],
    deltas: dict[str, float | None],
) -> list[dict]:
    prompt = ANALYSIS_PROMPT.format(
        age=profile.age,
        gender=profile.gender,
        goal=profile.goal,
        activity_level=profile.activity_level,
        experience_level=profile.experience_level,
        weight_kg=profile.weight_kg,
        target_weight_kg=profile.target_weight_kg,
        initial={site: "n/a" if v is None else v for site, v in initial.items()},
        current={site: "n/a" if v is None else v for site, v in current.items()},
        delta={name: _signed(v) for name, v in deltas.items()},
    )
    return [{"role": "user", "content": prompt}]


def _measurement_pair(db: Session, user_id: int) -> tuple[Profile, dict, Any]:
    profile = get_profile(db, user_id)
    initial = profile.initial_measurements()
    if initial is None:
        raise MeasurementNotFoundError("No initial measurements found")
    latest = require_latest_measurement(db, user_id)
    return profile, initial, latest


def compare_measurements(db: Session, user_id: int) -> dict[str, Any]:
    profile, initial, latest = _measurement_pair(db, user_id)
    current = latest.sites()
    deltas = compute_deltas(initial, current)
    return {
        "initial_measurements": initial,
        "current_measurements": current,
        "changes": deltas,
        "analysis": rule_based_verdict(profile.goal, deltas).model_dump(),
        "measurement_date": latest.measured_at.isoformat() if latest.measured_at else None,
    }


async def analyze_measurements(
    db: Session,
    user_id: int,
    pool: InferenceClientPool,
    timeout_seconds: float | None = None,
    model: str | None = None,
) -> BiometricVerdict:
    profile, initial, latest = _measurement_pair(db, user_id)
    current = latest.sites()
    deltas = compute_deltas(initial, current)
    model_name = model or app_settings.UTILITY_MODEL
    timeout = float(timeout_seconds or app_settings.INFERENCE_TIMEOUT_SECONDS)

    client = pool.get_client(InferenceCategory.MEASUREMENT)
    if client is not None:
        try:
            result = await asyncio.wait_for(
                client.complete(
                    messages=build_analysis_messages(profile, initial, current, deltas),
                    model=model_name,
                    system=ANALYSIS_SYSTEM_PROMPT,
                    temperature=0.7,
                    max_tokens=1000,
                ),
                timeout=timeout,
            )
            raw = str(result.get("content") or "").strip()
            if not raw:
                raise InferenceMalformedError("Empty measurement analysis")
            record_usage(db, user_id, client, result, "measurement_analysis", model_name)
            db.commit()
            verdict = parse_narrative(raw)
            return BiometricVerdict(
                source="ai",
                deltas=deltas,
                analysis=verdict,
                needs_diet_adjustment=verdict.diet_adjustment_needed,
                needs_workout_adjustment=verdict.workout_adjustment_needed,
                raw_response=raw,
            )
        except asyncio.TimeoutError:
            pool.record_error(client.category)
            logger.warning("Measurement analysis timed out after %.1fs, using rule table", timeout)
        except Exception as exc:
            pool.record_error(client.category)
            logger.warning("Measurement analysis failed, using rule table: %s", exc)

    verdict = rule_based_verdict(profile.goal, deltas)
    return BiometricVerdict(
        source="rule",
        deltas=deltas,
        analysis=verdict,
        needs_diet_adjustment=verdict.diet_adjustment_needed,
        needs_workout_adjustment=verdict.workout_adjustment_needed,
    )


# ---------------------------------------------------------------------------
# Regeneration
# ---------------------------------------------------------------------------

def _next_week(row) -> int:
    return (row.week_number or 0) + 1 if row is not None else 1


async def regenerate_plans(
    db: Session,
    user_id: int,
    verdict: BiometricVerdict,
    generator: PlanGenerator,
) -> RegenerationResult:
    """Generate next-week plans for whichever side the verdict flags; failures are reported per plan."""
    result = RegenerationResult()

    if verdict.needs_diet_adjustment:
        week = _next_week(latest_diet_plan(db, user_id))
        try:
            await generator.generate_diet_plan(db, user_id, week)
        except Exception as exc:
            db.rollback()
            logger.warning("Diet plan regeneration failed for user %s: %s", user_id, exc)
            result.messages.append("Failed to regenerate diet plan. Please generate manually.")
        else:
            result.diet_regenerated = True
            result.diet_week_number = week
            result.messages.append(f"Diet plan regenerated (Week {week}): {verdict.analysis.diet_adjustment_reason}")

    if verdict.needs_workout_adjustment:
        week = _next_week(latest_workout_plan(db, user_id))
        try:
            await generator.generate_workout_plan(db, user_id, week)
        except Exception as exc:
            db.rollback()
            logger.warning("Workout plan regeneration failed for user %s: %s", user_id, exc)
            result.messages.append("Failed to regenerate workout plan. Please generate manually.")
        else:
            result.workout_regenerated = True
            result.workout_week_number = week
            result.messages.append(
                f"Workout plan regenerated (Week {week}): {verdict.analysis.workout_adjustment_reason}"
            )

    if not result.diet_regenerated and not result.workout_regenerated:
        result.messages.append(NO_REGENERATION_MESSAGE)
    return result

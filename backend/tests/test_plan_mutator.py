from __future__ import annotations

import copy
import sys
from datetime import datetime
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.adjustment_models import AdjustmentDecision, MacroSplit, Recommendation, Trigger  # noqa: E402
from services.plan_mutator import (  # noqa: E402
    REST_NOTE,
    RESET_NOTE,
    SIMPLIFY_NOTE,
    adjust_diet_document,
    apply_decision_to_documents,
    reset_workout,
    scale_workout_volume,
    simplify_workout,
)
from utils.units import calories_from_grams  # noqa: E402

NOW = datetime(2026, 3, 29, 12, 0)


def _exercise(name: str, sets: int = 3) -> dict:
    return {"name": name, "sets": sets, "reps": "8-10", "guidance": f"Control the {name.lower()}"}


def _workout_doc() -> dict:
    return {
        "id": 1,
        "week_number": 2,
        "workouts": [
            {"day_name": "Monday", "type": "Full Body", "rest_day": False,
             "exercises": [_exercise(n) for n in ("Squat", "Bench", "Row", "Press", "Curl", "Plank")]},
            {"day_name": "Tuesday", "type": "Conditioning", "rest_day": False,
             "exercises": [_exercise("Bike", 1), _exercise("Sled", 5)]},
            {"day_name": "Wednesday", "rest_day": True, "exercises": []},
            {"day_name": "Friday", "type": "Full Body", "rest_day": False,
             "exercises": [_exercise(n) for n in ("Deadlift", "Dip", "Chin")]},
        ],
        "adjusted": False,
        "adjustment_reason": None,
        "adjustment_date": None,
    }


def _diet_doc() -> dict:
    return {
        "id": 1,
        "week_number": 2,
        "daily_calories": 2500,
        "protein_grams": 100,
        "carbs_grams": 300,
        "fat_grams": 100,
        "meals": [
            {"name": "Breakfast", "calories": 1000, "protein_g": 40, "carbs_g": 120, "fat_g": 40},
            {"name": "Dinner", "calories": 1500, "protein_g": 60, "carbs_g": 180, "fat_g": 60},
        ],
        "adjusted": False,
        "adjustment_reason": None,
        "adjustment_date": None,
    }


def test_default_macro_split_round_trips_within_tolerance():
    diet = adjust_diet_document(_diet_doc(), 2000, "increase_deficit", now=NOW)

    assert diet["protein_grams"] == 150
    assert diet["carbs_grams"] == 200
    assert diet["fat_grams"] == 67
    total = calories_from_grams(diet["protein_grams"], diet["carbs_grams"], diet["fat_grams"])
    assert abs(total - 2000) <= 20
    assert diet["adjusted"] is True
    assert diet["adjustment_reason"] == "increase_deficit"
    assert diet["adjustment_date"] == NOW.isoformat()


def test_meals_are_redistributed_proportionally():
    diet = adjust_diet_document(_diet_doc(), 2000, "ai_adjustment", MacroSplit(protein=30, carbs=40, fat=30), now=NOW)

    breakfast, dinner = diet["meals"]
    assert (breakfast["calories"], dinner["calories"]) == (800, 1200)
    assert (breakfast["protein_g"], dinner["protein_g"]) == (60, 90)
    assert (breakfast["carbs_g"], dinner["carbs_g"]) == (80, 120)


def test_meals_without_prior_totals_split_evenly():
    source = _diet_doc()
    source.update({"daily_calories": 0, "protein_grams": 0, "carbs_grams": 0, "fat_grams": 0})

    diet = adjust_diet_document(source, 2000, "increase_calories", now=NOW)

    assert [meal["calories"] for meal in diet["meals"]] == [1000, 1000]
    assert [meal["protein_g"] for meal in diet["meals"]] == [75, 75]


def test_transforms_do_not_modify_their_input():
    workout = _workout_doc()
    diet = _diet_doc()
    workout_before = copy.deepcopy(workout)
    diet_before = copy.deepcopy(diet)

    scale_workout_volume(workout, 20, "note", "increase_volume", now=NOW)
    simplify_workout(workout, now=NOW)
    reset_workout(workout, now=NOW)
    adjust_diet_document(diet, 1800, "increase_deficit", now=NOW)

    assert workout == workout_before
    assert diet == diet_before


def test_volume_scaling_rounds_half_up_with_floor_of_one_set():
    doc = _workout_doc()
    up = scale_workout_volume(doc, 10, "VOLUME INCREASED", "increase_volume", now=NOW)
    down = scale_workout_volume(doc, -60, "AI ADJUSTED: deload", "ai_volume_adjustment", now=NOW)

    tuesday_up = up["workouts"][1]["exercises"]
    assert [e["sets"] for e in tuesday_up] == [1, 6]
    assert [e["sets"] for e in up["workouts"][0]["exercises"]] == [3] * 6
    assert tuesday_up[0]["guidance"] == "Control the bike | VOLUME INCREASED"
    assert [e["sets"] for e in down["workouts"][1]["exercises"]] == [1, 2]
    assert up["workouts"][2] == doc["workouts"][2]
    assert down["adjustment_reason"] == "ai_volume_adjustment"


def test_simplify_keeps_first_four_exercises():
    simplified = simplify_workout(_workout_doc(), now=NOW)

    monday, tuesday = simplified["workouts"][0], simplified["workouts"][1]
    assert [e["name"] for e in monday["exercises"]] == ["Squat", "Bench", "Row", "Press"]
    assert monday["notes"] == SIMPLIFY_NOTE
    assert len(tuesday["exercises"]) == 2
    assert "notes" not in tuesday


def test_reset_builds_three_day_beginner_template():
    reset = reset_workout(_workout_doc(), now=NOW)
    by_day = {day["day_name"]: day for day in reset["workouts"]}

    assert [e["name"] for e in by_day["Monday"]["exercises"]] == ["Squat", "Bench", "Row"]
    assert by_day["Monday"]["notes"] == RESET_NOTE
    assert by_day["Tuesday"]["rest_day"] is True
    assert by_day["Tuesday"]["exercises"] == []
    assert by_day["Tuesday"]["notes"] == REST_NOTE
    assert by_day["Wednesday"]["rest_day"] is False
    assert by_day["Friday"]["exercises"][0]["name"] == "Deadlift"


def test_no_adjustment_decision_leaves_documents_untouched():
    workout = _workout_doc()
    diet = _diet_doc()
    decision = AdjustmentDecision(
        needs_adjustment=False,
        source="rule",
        recommendations=[Recommendation(action="increase_deficit", description="x", new_calories=1500)],
    )

    outcome = apply_decision_to_documents(decision, workout, diet, now=NOW)

    assert outcome.workout is workout
    assert outcome.diet is diet
    assert outcome.workout == _workout_doc()
    assert outcome.diet == _diet_doc()
    assert outcome.workout_adjusted is False
    assert outcome.diet_adjusted is False
    assert outcome.changes == []


def test_ai_decision_adjusts_diet_and_volume():
    decision = AdjustmentDecision(
        needs_adjustment=True,
        source="ai",
        triggers=[Trigger(type="ai_recommendation", message="Stalled")],
        recommendations=[Recommendation(
            action="ai_adjustment",
            description="Tighten intake",
            new_calories=2000,
            new_macros=MacroSplit(protein=35, carbs=35, fat=30),
            volume_change_pct=20,
            workout_structure="Add finisher",
        )],
    )

    outcome = apply_decision_to_documents(decision, _workout_doc(), _diet_doc(), current_calories=2500, now=NOW)

    assert outcome.diet_adjusted and outcome.workout_adjusted
    assert outcome.diet["daily_calories"] == 2000
    assert outcome.diet["protein_grams"] == 175
    assert outcome.diet["adjustment_reason"] == "ai_adjustment"
    assert outcome.workout["workouts"][0]["exercises"][0]["sets"] == 4
    assert outcome.workout["workouts"][0]["exercises"][0]["guidance"].endswith("AI ADJUSTED: Add finisher")
    assert [change["type"] for change in outcome.changes] == ["diet", "workout"]
    assert outcome.changes[0]["old_calories"] == 2500


def test_missing_plan_is_reported_as_skipped():
    decision = AdjustmentDecision(
        needs_adjustment=True,
        source="rule",
        triggers=[Trigger(type="stagnant_muscle_gain", message="x")],
        recommendations=[
            Recommendation(action="increase_volume", description="x", volume_change_pct=20),
            Recommendation(action="increase_calories", description="y", new_calories=2750),
        ],
    )

    outcome = apply_decision_to_documents(decision, None, _diet_doc(), now=NOW)

    assert outcome.workout is None
    assert outcome.workout_adjusted is False
    assert outcome.diet_adjusted is True
    assert outcome.skipped == ["workout"]


def test_non_finite_volume_percentages_leave_workout_untouched():
    decision = AdjustmentDecision(
        needs_adjustment=True,
        source="ai",
        triggers=[Trigger(type="ai_recommendation", message="x")],
        recommendations=[
            Recommendation(action="ai_adjustment", description="x", volume_change_pct=float("nan")),
            Recommendation(action="ai_adjustment", description="y", volume_change_pct=float("inf")),
        ],
    )

    outcome = apply_decision_to_documents(decision, _workout_doc(), _diet_doc(), now=NOW)

    assert outcome.workout_adjusted is False
    assert outcome.workout == _workout_doc()
    assert outcome.changes == []

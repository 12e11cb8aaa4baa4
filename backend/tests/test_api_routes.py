from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ai.client_pool import InferenceClientPool  # noqa: E402
from api.dependencies import get_inference_pool, get_plan_generator  # noqa: E402
from auth.utils import create_token  # noqa: E402
from db.database import Base, get_db  # noqa: E402
from db.models import DietPlan, InferenceUsageEvent, PlanAdjustment, Profile, WorkoutPlan  # noqa: E402
from main import app  # noqa: E402

FULL = {
    "waist_cm": 90,
    "chest_cm": 100,
    "hips_cm": 98,
    "left_arm_cm": 33,
    "right_arm_cm": 33,
    "left_thigh_cm": 56,
    "right_thigh_cm": 56,
}


class _FakeGenerator:
    def __init__(self):
        self.calls: list[tuple[str, int]] = []

    async def generate_workout_plan(self, db, user_id, week_number):
        self.calls.append(("workout", week_number))
        return {"week_number": week_number}

    async def generate_diet_plan(self, db, user_id, week_number):
        self.calls.append(("diet", week_number))
        return {"week_number": week_number}


@pytest.fixture
def api():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    pool = InferenceClientPool({})
    generator = _FakeGenerator()

    def _get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_inference_pool] = lambda: pool
    app.dependency_overrides[get_plan_generator] = lambda: generator
    try:
        yield {
            "client": TestClient(app),
            "session": TestingSession,
            "pool": pool,
            "generator": generator,
            "headers": {"Authorization": f"Bearer {create_token(7)}"},
        }
    finally:
        app.dependency_overrides.clear()


def _seed_profile(session_factory, goal: str = "Muscle Gain", with_plans: bool = True) -> None:
    db = session_factory()
    db.add(Profile(
        user_id=7,
        age=26,
        gender="Male",
        height_cm=180,
        weight_kg=70,
        target_weight_kg=76,
        goal=goal,
        daily_calorie_target=2600,
    ))
    if with_plans:
        db.add(WorkoutPlan(
            user_id=7,
            week_number=1,
            workouts=json.dumps([
                {"day_name": "Monday", "rest_day": False, "exercises": [{"name": "Squat", "sets": 3}]},
            ]),
        ))
        db.add(DietPlan(user_id=7, week_number=1, daily_calories=2600, meals=json.dumps([])))
    db.commit()
    db.close()


def test_health_check(api):
    resp = api["client"].get("/api/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"


def test_routes_require_bearer_token(api):
    client = api["client"]

    assert client.get("/api/adjustments/evaluation").status_code == 401
    assert client.get("/api/inference/stats").status_code == 401
    bad = client.get("/api/measurements", headers={"Authorization": "Bearer not-a-jwt"})
    assert bad.status_code == 401


def test_evaluation_without_profile_is_not_found(api):
    resp = api["client"].get("/api/adjustments/evaluation", headers=api["headers"])

    assert resp.status_code == 404
    assert resp.json()["detail"] == "Profile not found"


def test_evaluation_falls_back_to_rules_without_credentials(api):
    _seed_profile(api["session"])

    resp = api["client"].get("/api/adjustments/evaluation", headers=api["headers"])

    assert resp.status_code == 200
    body = resp.json()
    assert body["decision"]["source"] == "rule"
    assert body["decision"]["needs_adjustment"] is True
    assert body["context"]["states"] == ["fallback"]
    assert body["context"]["fallback_reason"] == "inference unavailable"
    assert body["metrics"]["log_count"] == 0


def test_apply_with_same_idempotency_key_is_replayed(api):
    _seed_profile(api["session"])
    client = api["client"]
    headers = {**api["headers"], "Idempotency-Key": "week-14"}

    first = client.post("/api/adjustments/apply", headers=headers)
    second = client.post("/api/adjustments/apply", headers=headers)

    assert first.status_code == 200
    assert first.json()["result"]["adjusted"] is True
    assert first.json()["result"]["replayed"] is False
    assert second.json()["result"]["replayed"] is True
    assert second.json()["decision"] is None
    assert second.json()["result"]["adjustment_id"] == first.json()["result"]["adjustment_id"]
    db = api["session"]()
    assert db.query(PlanAdjustment).count() == 1
    assert db.query(DietPlan).one().daily_calories == 2860
    db.close()


def test_invalid_measurements_return_field_errors(api):
    _seed_profile(api["session"], with_plans=False)

    resp = api["client"].post(
        "/api/measurements",
        json={"measurements": {"waist_cm": -3}},
        headers=api["headers"],
    )

    assert resp.status_code == 422
    assert resp.json()["fields"] == {"waist_cm": "must be greater than 0"}


def test_measurement_cycle_endpoints(api):
    _seed_profile(api["session"], goal="Weight Loss", with_plans=False)
    client = api["client"]
    headers = api["headers"]

    initial = client.post("/api/measurements/initial", json={"measurements": FULL}, headers=headers)
    assert initial.status_code == 201

    reminder = client.get("/api/measurements/reminder", headers=headers)
    assert reminder.json()["reminder_due"] is False
    assert reminder.json()["days_until_next"] == 28

    latest = client.post(
        "/api/measurements",
        json={"measurements": dict(FULL, waist_cm=92)},
        headers=headers,
    )
    assert latest.status_code == 201

    comparison = client.get("/api/measurements/comparison", headers=headers).json()
    assert comparison["changes"]["waist"] == 2.0
    assert comparison["analysis"]["diet_adjustment_needed"] is True

    history = client.get("/api/measurements/history", headers=headers).json()
    assert len(history) == 2
    assert len(client.get("/api/measurements", headers=headers).json()) == 2


def test_analysis_with_auto_regeneration(api):
    _seed_profile(api["session"], goal="Weight Loss")
    client = api["client"]
    headers = api["headers"]
    client.post("/api/measurements/initial", json={"measurements": FULL}, headers=headers)
    client.post("/api/measurements", json={"measurements": dict(FULL, waist_cm=93)}, headers=headers)

    resp = client.post("/api/measurements/analysis?auto_regenerate=true", headers=headers)

    assert resp.status_code == 200
    body = resp.json()
    assert body["source"] == "rule"
    assert body["needs_diet_adjustment"] is True
    assert body["regeneration_results"]["diet_week_number"] == 2
    assert api["generator"].calls == [("diet", 2), ("workout", 2)]


def test_analysis_without_measurements_is_not_found(api):
    _seed_profile(api["session"], with_plans=False)

    resp = api["client"].post("/api/measurements/analysis", headers=api["headers"])

    assert resp.status_code == 404


def test_inference_stats_shape(api):
    resp = api["client"].get("/api/inference/stats", headers=api["headers"])

    assert resp.status_code == 200
    body = resp.json()
    assert set(body) == {"stats", "available_keys"}
    assert body["available_keys"]["fallback"] is False


def test_inference_usage_is_scoped_to_caller(api):
    with api["session"]() as db:
        db.add(InferenceUsageEvent(user_id=7, category="FALLBACK", operation="plan_adjustment", model_used="m", tokens_in=11, tokens_out=22))
        db.add(InferenceUsageEvent(user_id=8, category="FALLBACK", operation="plan_adjustment", model_used="m", tokens_in=99, tokens_out=99))
        db.commit()

    resp = api["client"].get("/api/inference/usage", headers=api["headers"])

    assert resp.status_code == 200
    assert resp.json()["totals"] == {"calls": 1, "tokens_in": 11, "tokens_out": 22}
    assert api["client"].get("/api/inference/usage").status_code == 401

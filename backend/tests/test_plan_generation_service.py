from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ai.client_pool import InferenceClientPool  # noqa: E402
from ai.providers import groq as groq_module  # noqa: E402
from ai.providers.groq import GroqProvider  # noqa: E402
from db.database import Base  # noqa: E402
from db.models import DietPlan, InferenceUsageEvent, Profile, WorkoutPlan  # noqa: E402
from services.errors import InferenceMalformedError, InferenceRequestError  # noqa: E402
from services.plan_generation_service import (  # noqa: E402
    AIPlanGenerator,
    normalize_diet_payload,
    normalize_workout_payload,
)

WORKOUT_JSON = json.dumps({
    "week_summary": "Base building",
    "workouts": [
        {"day_name": "Monday", "type": "Upper Body", "exercises": [{"name": "Bench", "sets": "4"}]},
        {"day_name": "Tuesday", "rest_day": True, "exercises": [{"name": "Walk"}]},
        {"type": "Lower Body", "exercises": [{"name": "Squat", "sets": 0}, {"reps": "10"}]},
    ],
})

DIET_JSON = "```json\n" + json.dumps({
    "daily_calories": 2349.6,
    "protein_grams": 170,
    "carbs_grams": 250,
    "fat_grams": 70,
    "meals": [{"name": "Lunch", "calories": 800}, "snack"],
}) + "\n```"


def _new_db():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


def _seed(db) -> None:
    db.add(Profile(
        user_id=4,
        age=38,
        gender="Female",
        height_cm=165,
        weight_kg=68,
        target_weight_kg=62,
        goal="Weight Loss",
        daily_calorie_target=1900,
    ))
    db.commit()


class _ScriptedProvider:
    def __init__(self, content: str = "", error: Exception | None = None):
        self.content = content
        self.error = error
        self.prompts: list[str] = []

    async def chat(self, messages, model, system="", temperature=0.7, max_tokens=1000):
        self.prompts.append(messages[-1]["content"])
        if self.error is not None:
            raise self.error
        return {"content": self.content, "tokens_in": 400, "tokens_out": 900, "model": model}


def _generator(provider: _ScriptedProvider, keys: dict | None = None) -> tuple[AIPlanGenerator, InferenceClientPool]:
    if keys is None:
        keys = {"FALLBACK": "gsk_shared"}
    pool = InferenceClientPool(keys, provider_factory=lambda api_key: provider)
    return AIPlanGenerator(pool, model="test-model", timeout_seconds=2), pool


def test_workout_payload_is_normalized():
    plan = normalize_workout_payload(json.loads(WORKOUT_JSON))

    monday, tuesday, third = plan["workouts"]
    assert monday["exercises"][0]["sets"] == 4
    assert monday["rest_day"] is False
    assert tuesday["exercises"] == []
    assert third["day_name"] == "Wednesday"
    assert third["exercises"] == [{"name": "Squat", "sets": 3}]


@pytest.mark.parametrize(
    "payload",
    [{}, {"workouts": []}, {"workouts": [{"day_name": "Monday", "rest_day": True}]}],
)
def test_workout_payload_without_training_days_is_malformed(payload):
    with pytest.raises(InferenceMalformedError):
        normalize_workout_payload(payload)


def test_diet_payload_requires_positive_calories():
    with pytest.raises(InferenceMalformedError):
        normalize_diet_payload({"daily_calories": -5})

    plan = normalize_diet_payload({"daily_calories": "2100", "protein_grams": True})
    assert plan["daily_calories"] == 2100.0
    assert plan["protein_grams"] == 0.0


def test_generated_workout_plan_is_stored_with_week_number():
    db = _new_db()
    _seed(db)
    provider = _ScriptedProvider(WORKOUT_JSON)
    generator, _ = _generator(provider, keys={"WORKOUT": "gsk_workout"})

    row = asyncio.run(generator.generate_workout_plan(db, 4, 5))

    assert row.week_number == 5
    assert row.source == "ai"
    assert json.loads(row.workouts)[0]["day_name"] == "Monday"
    assert "Create week 5 of a workout plan" in provider.prompts[0]
    event = db.query(InferenceUsageEvent).one()
    assert event.category == "WORKOUT"
    assert event.operation == "workout_plan_generation"


def test_generated_diet_plan_updates_calorie_target():
    db = _new_db()
    _seed(db)
    provider = _ScriptedProvider(DIET_JSON)
    generator, _ = _generator(provider)

    row = asyncio.run(generator.generate_diet_plan(db, 4, 2))

    assert row.daily_calories == 2350.0
    assert json.loads(row.meals) == [{"name": "Lunch", "calories": 800}]
    assert "Daily calorie target: 1900 kcal" in provider.prompts[0]
    assert db.query(Profile).one().daily_calorie_target == 2350.0


def test_generation_failure_is_counted_and_raised():
    db = _new_db()
    _seed(db)
    generator, pool = _generator(_ScriptedProvider("Sorry, I cannot help with that."))

    with pytest.raises(InferenceMalformedError):
        asyncio.run(generator.generate_diet_plan(db, 4, 2))

    assert pool.get_usage_stats()["stats"]["FALLBACK"]["errors"] == 1
    assert db.query(DietPlan).count() == 0


def test_generation_without_credentials_raises_request_error():
    db = _new_db()
    _seed(db)
    generator = AIPlanGenerator(InferenceClientPool({}))

    with pytest.raises(InferenceRequestError):
        asyncio.run(generator.generate_workout_plan(db, 4, 1))
    assert db.query(WorkoutPlan).count() == 0


def _patch_transport(monkeypatch, handler) -> None:
    real_client = httpx.AsyncClient

    def _client(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return real_client(*args, **kwargs)

    monkeypatch.setattr(groq_module.httpx, "AsyncClient", _client)


def test_groq_provider_sends_system_prompt_and_reads_usage(monkeypatch):
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "model": "llama-3.1-8b-instant",
            "choices": [{"message": {"content": "{\"ok\": true}"}}],
            "usage": {"prompt_tokens": 12, "completion_tokens": 4},
        })

    _patch_transport(monkeypatch, handler)
    provider = GroqProvider(api_key="gsk_test")

    result = asyncio.run(provider.chat([{"role": "user", "content": "hi"}], model="", system="Be brief"))

    assert seen["auth"] == "Bearer gsk_test"
    assert seen["body"]["messages"][0] == {"role": "system", "content": "Be brief"}
    assert seen["body"]["model"] == "llama-3.1-8b-instant"
    assert result == {"content": "{\"ok\": true}", "tokens_in": 12, "tokens_out": 4, "model": "llama-3.1-8b-instant"}


def test_groq_provider_raises_on_error_status(monkeypatch):
    _patch_transport(monkeypatch, lambda request: httpx.Response(429, text="rate limited"))
    provider = GroqProvider(api_key="gsk_test")

    with pytest.raises(InferenceRequestError) as exc:
        asyncio.run(provider.chat([{"role": "user", "content": "hi"}], model="m"))

    assert exc.value.status_code == 429

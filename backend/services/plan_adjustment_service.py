from __future__ import annotations

import json
import logging
from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models import PlanAdjustment, Profile
from services.adjustment_models import AdjustmentDecision
from services.decision_engine import ON_TRACK_NOTIFICATION, DecisionEngine
from services.errors import PlanNotFoundError
from services.plan_mutator import apply_decision_to_documents
from services.plan_store import (
    diet_document,
    require_diet_plan,
    require_workout_plan,
    store_diet_document,
    store_workout_document,
    workout_document,
)
from utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


class AdjustmentResult(BaseModel):
    adjusted: bool = False
    source: Optional[str] = None
    workout_adjusted: bool = False
    diet_adjusted: bool = False
    adjusted_workout: Optional[dict[str, Any]] = None
    adjusted_diet: Optional[dict[str, Any]] = None
    changes: list[dict[str, Any]] = Field(default_factory=list)
    not_found: list[str] = Field(default_factory=list)
    notification: str = ""
    adjustment_id: Optional[int] = None
    replayed: bool = False


def _find_by_key(db: Session, user_id: int, idempotency_key: str | None) -> PlanAdjustment | None:
    if not idempotency_key:
        return None
    return (
        db.query(PlanAdjustment)
        .filter(PlanAdjustment.user_id == user_id, PlanAdjustment.idempotency_key == idempotency_key)
        .first()
    )


def _replay(row: PlanAdjustment) -> AdjustmentResult:
    payload = json.loads(row.result_json or "{}")
    result = AdjustmentResult.model_validate(payload)
    result.adjustment_id = row.id
    result.replayed = True
    return result


def _load_plan(db: Session, user_id: int, kind: str) -> tuple[Any, dict[str, Any] | None]:
    try:
        if kind == "workout":
            row = require_workout_plan(db, user_id)
            return row, workout_document(row)
        row = require_diet_plan(db, user_id)
        return row, diet_document(row)
    except PlanNotFoundError as exc:
        logger.info("Skipping %s adjustment for user %s: %s", kind, user_id, exc)
        return None, None


def find_replay(db: Session, user_id: int, idempotency_key: str | None) -> AdjustmentResult | None:
    row = _find_by_key(db, user_id, idempotency_key)
    return _replay(row) if row is not None else None


def apply_decision(
    db: Session,
    user_id: int,
    decision: AdjustmentDecision,
    idempotency_key: str | None = None,
    now: datetime | None = None,
) -> AdjustmentResult:
    """Apply ``decision`` to the user's latest plans and persist the outcome.

    A decision that needs no adjustment returns without touching any plan. When
    ``idempotency_key`` matches an earlier application for this user, the stored
    result is returned and nothing is re-applied.
    """
    replay = find_replay(db, user_id, idempotency_key)
    if replay is not None:
        return replay

    if not decision.needs_adjustment:
        return AdjustmentResult(
            source=decision.source,
            notification=decision.notification_text or ON_TRACK_NOTIFICATION,
        )

    workout_row, workout_doc = _load_plan(db, user_id, "workout")
    diet_row, diet_doc = _load_plan(db, user_id, "diet")
    current_calories = diet_doc["daily_calories"] if diet_doc else None

    outcome = apply_decision_to_documents(
        decision,
        workout_doc,
        diet_doc,
        current_calories=current_calories,
        now=now or utcnow(),
    )
    result = AdjustmentResult(
        adjusted=outcome.workout_adjusted or outcome.diet_adjusted,
        source=decision.source,
        workout_adjusted=outcome.workout_adjusted,
        diet_adjusted=outcome.diet_adjusted,
        adjusted_workout=outcome.workout if outcome.workout_adjusted else None,
        adjusted_diet=outcome.diet if outcome.diet_adjusted else None,
        changes=outcome.changes,
        not_found=outcome.skipped,
        notification=decision.notification_text,
    )

    ledger = PlanAdjustment(
        user_id=user_id,
        source=decision.source,
        decision_json=decision.model_dump_json(),
        idempotency_key=idempotency_key or None,
        workout_adjusted=outcome.workout_adjusted,
        diet_adjusted=outcome.diet_adjusted,
    )
    db.add(ledger)
    try:
        db.flush()
    except IntegrityError:
        # Another request stored the same key first.
        db.rollback()
        existing = _find_by_key(db, user_id, idempotency_key)
        if existing is not None:
            return _replay(existing)
        raise

    if outcome.workout_adjusted and workout_row is not None:
        store_workout_document(workout_row, outcome.workout, adjustment_id=ledger.id)
    if outcome.diet_adjusted and diet_row is not None:
        store_diet_document(diet_row, outcome.diet, adjustment_id=ledger.id)
        profile = db.query(Profile).filter(Profile.user_id == user_id).first()
        if profile is not None:
            profile.daily_calorie_target = outcome.diet["daily_calories"]

    result.adjustment_id = ledger.id
    ledger.result_json = result.model_dump_json()
    db.commit()

    logger.info(
        "Applied %s plan adjustment %s for user %s (workout=%s, diet=%s)",
        decision.source,
        ledger.id,
        user_id,
        outcome.workout_adjusted,
        outcome.diet_adjusted,
    )
    return result


async def auto_adjust_plans(
    db: Session,
    user_id: int,
    engine: DecisionEngine,
    idempotency_key: str | None = None,
    today: date | None = None,
) -> dict[str, Any]:
    """Evaluate the user's recent progress and apply whatever the engine decides."""
    replay = find_replay(db, user_id, idempotency_key)
    if replay is not None:
        return {"evaluation": None, "result": replay}

    evaluation = await engine.evaluate_with_context(db, user_id, today=today)
    result = apply_decision(db, user_id, evaluation.decision, idempotency_key=idempotency_key)
    # Usage events recorded during evaluation are flushed even when nothing was applied.
    db.commit()
    return {"evaluation": evaluation, "result": result}

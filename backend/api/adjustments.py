from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from api.dependencies import get_decision_engine
from auth.utils import get_current_user_id
from db.database import get_db
from services.decision_engine import DecisionEngine
from services.plan_adjustment_service import auto_adjust_plans


router = APIRouter(prefix="/adjustments", tags=["adjustments"])


@router.get("/evaluation")
async def get_evaluation(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    engine: DecisionEngine = Depends(get_decision_engine),
):
    evaluation = await engine.evaluate_with_context(db, user_id)
    db.commit()
    return {
        "decision": evaluation.decision.model_dump(),
        "metrics": evaluation.metrics.to_dict(),
        "context": evaluation.context(),
    }


@router.post("/apply")
async def apply_adjustments(
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    engine: DecisionEngine = Depends(get_decision_engine),
):
    outcome = await auto_adjust_plans(db, user_id, engine, idempotency_key=(idempotency_key or "").strip() or None)
    evaluation = outcome["evaluation"]
    return {
        "decision": evaluation.decision.model_dump() if evaluation else None,
        "context": evaluation.context() if evaluation else None,
        "result": outcome["result"].model_dump(),
    }

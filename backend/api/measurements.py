from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ai.client_pool import InferenceClientPool
from api.dependencies import get_inference_pool, get_plan_generator
from auth.utils import get_current_user_id
from db.database import get_db
from services.biometric_service import (
    analyze_measurements,
    check_measurement_reminder,
    compare_measurements,
    regenerate_plans,
)
from services.measurement_service import (
    add_measurement,
    list_measurements,
    measurement_history,
    measurement_to_dict,
    save_initial_measurements,
)
from services.plan_generation_service import PlanGenerator


router = APIRouter(prefix="/measurements", tags=["measurements"])


class MeasurementCreate(BaseModel):
    measurements: Optional[dict[str, Any]] = None
    notes: Optional[str] = ""


class InitialMeasurementCreate(BaseModel):
    measurements: Optional[dict[str, Any]] = None


@router.get("")
def get_measurements(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return [measurement_to_dict(row) for row in list_measurements(db, user_id)]


@router.post("", status_code=201)
def create_measurement(
    payload: MeasurementCreate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    row = add_measurement(db, user_id, payload.measurements, notes=payload.notes or "")
    return measurement_to_dict(row)


@router.post("/initial", status_code=201)
def create_initial_measurements(
    payload: InitialMeasurementCreate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return save_initial_measurements(db, user_id, payload.measurements)


@router.get("/history")
def get_history(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return measurement_history(db, user_id)


@router.get("/reminder")
def get_reminder(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return check_measurement_reminder(db, user_id)


@router.get("/comparison")
def get_comparison(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return compare_measurements(db, user_id)


@router.post("/analysis")
async def run_analysis(
    auto_regenerate: bool = False,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    pool: InferenceClientPool = Depends(get_inference_pool),
    generator: PlanGenerator = Depends(get_plan_generator),
):
    verdict = await analyze_measurements(db, user_id, pool)
    regeneration = None
    if auto_regenerate and (verdict.needs_diet_adjustment or verdict.needs_workout_adjustment):
        regeneration = (await regenerate_plans(db, user_id, verdict, generator)).model_dump()
    return {**verdict.model_dump(), "regeneration_results": regeneration}


@router.post("/regenerate")
async def run_regeneration(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    pool: InferenceClientPool = Depends(get_inference_pool),
    generator: PlanGenerator = Depends(get_plan_generator),
):
    verdict = await analyze_measurements(db, user_id, pool)
    results = await regenerate_plans(db, user_id, verdict, generator)
    return {
        "success": True,
        "analysis": verdict.analysis.model_dump(),
        "regeneration_results": results.model_dump(),
    }

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ai.client_pool import InferenceClientPool
from ai.usage_tracker import usage_summary
from api.dependencies import get_inference_pool
from auth.utils import get_current_user_id
from db.database import get_db


router = APIRouter(prefix="/inference", tags=["inference"], dependencies=[Depends(get_current_user_id)])


@router.get("/stats")
def get_inference_stats(pool: InferenceClientPool = Depends(get_inference_pool)):
    return pool.get_usage_stats()


@router.get("/usage")
def get_inference_usage(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return usage_summary(db, user_id)

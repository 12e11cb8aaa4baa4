from fastapi import Depends, Request

from ai.client_pool import InferenceClientPool
from services.decision_engine import DecisionEngine
from services.plan_generation_service import AIPlanGenerator, PlanGenerator


def get_inference_pool(request: Request) -> InferenceClientPool:
    return request.app.state.inference_pool


def get_decision_engine(pool: InferenceClientPool = Depends(get_inference_pool)) -> DecisionEngine:
    return DecisionEngine(pool)


def get_plan_generator(pool: InferenceClientPool = Depends(get_inference_pool)) -> PlanGenerator:
    return AIPlanGenerator(pool)

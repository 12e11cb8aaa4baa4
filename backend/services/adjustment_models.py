from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field


DecisionSource = Literal["ai", "rule"]
Severity = Literal["low", "medium", "high"]

WORKOUT_ACTIONS = {"increase_volume", "simplify_plan", "reset_plan"}
DIET_ACTIONS = {"increase_deficit", "reduce_deficit", "increase_calories"}
AI_ACTION = "ai_adjustment"


class MacroSplit(BaseModel):
    protein: float
    carbs: float
    fat: float

    def total(self) -> float:
        return float(self.protein) + float(self.carbs) + float(self.fat)

    def is_balanced(self, tolerance: float = 1.0) -> bool:
        return abs(self.total() - 100.0) <= tolerance


DEFAULT_MACRO_SPLIT = MacroSplit(protein=30, carbs=40, fat=30)


class Trigger(BaseModel):
    type: str
    message: str
    severity: Severity = "medium"


class Recommendation(BaseModel):
    action: str
    description: str
    new_calories: Optional[int] = None
    new_macros: Optional[MacroSplit] = None
    volume_change_pct: Optional[float] = None
    workout_structure: Optional[str] = None


class AdjustmentDecision(BaseModel):
    needs_adjustment: bool
    source: DecisionSource
    triggers: list[Trigger] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)
    notification_text: str = ""


@dataclass(frozen=True)
class DecisionParsed:
    decision: AdjustmentDecision


@dataclass(frozen=True)
class DecisionParseFailure:
    raw_text: str
    error: str


ParsedDecision = Union[DecisionParsed, DecisionParseFailure]


class NarrativeVerdict(BaseModel):
    progress_level: str = "moderate"  # excellent | good | moderate | poor | needs_improvement | needs_adjustment
    insights: list[str] = Field(default_factory=list)
    diet_adjustment_needed: bool = False
    diet_adjustment_reason: str = ""
    workout_adjustment_needed: bool = False
    workout_adjustment_reason: str = ""
    recommendations: list[str] = Field(default_factory=list)
    positive_indicators: list[str] = Field(default_factory=list)
    concerns: list[str] = Field(default_factory=list)


class BiometricVerdict(BaseModel):
    source: DecisionSource
    deltas: dict[str, Optional[float]]
    analysis: NarrativeVerdict
    needs_diet_adjustment: bool
    needs_workout_adjustment: bool
    raw_response: Optional[str] = None


class RegenerationResult(BaseModel):
    diet_regenerated: bool = False
    workout_regenerated: bool = False
    diet_week_number: Optional[int] = None
    workout_week_number: Optional[int] = None
    messages: list[str] = Field(default_factory=list)

from datetime import datetime
from sqlalchemy import (
    Column, Integer, Text, Float, Boolean, Date, ForeignKey, Index, UniqueConstraint,
    DateTime,
)
from sqlalchemy.orm import relationship
from db.database import Base


FATIGUE_ENERGY_LEVELS = frozenset({"Slightly Fatigued", "Very Tired"})
MEASUREMENT_SITES = (
    "waist_cm",
    "chest_cm",
    "hips_cm",
    "left_arm_cm",
    "right_arm_cm",
    "left_thigh_cm",
    "right_thigh_cm",
)


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, unique=True)
    age = Column(Integer, nullable=False)
    gender = Column(Text, nullable=False)  # Male | Female | Other
    height_cm = Column(Float, nullable=False)
    weight_kg = Column(Float, nullable=False)
    target_weight_kg = Column(Float, nullable=False)
    goal = Column(Text, nullable=False)  # Weight Loss | Muscle Gain | Maintenance
    activity_level = Column(Text, nullable=False, default="Moderate")  # Sedentary | Light | Moderate | Active
    experience_level = Column(Text, nullable=False, default="Beginner")  # Beginner | Intermediate | Advanced
    available_days_per_week = Column(Integer, nullable=False, default=4)
    dietary_preferences = Column(Text, default="")
    allergies = Column(Text, default="")
    injuries_limitations = Column(Text, default="")
    daily_calorie_target = Column(Float)
    initial_waist_cm = Column(Float)
    initial_chest_cm = Column(Float)
    initial_hips_cm = Column(Float)
    initial_left_arm_cm = Column(Float)
    initial_right_arm_cm = Column(Float)
    initial_left_thigh_cm = Column(Float)
    initial_right_thigh_cm = Column(Float)
    initial_measured_at = Column(DateTime)
    last_measurement_reminder = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def initial_measurements(self) -> dict[str, float | None] | None:
        if self.initial_measured_at is None:
            return None
        return {site: getattr(self, f"initial_{site}") for site in MEASUREMENT_SITES}


class DailyLog(Base):
    __tablename__ = "daily_logs"
    __table_args__ = (
        UniqueConstraint("user_id", "log_date", name="uq_daily_logs_user_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    log_date = Column(Date, nullable=False)
    workout_completed = Column(Boolean, nullable=False, default=False)
    diet_followed = Column(Boolean, nullable=False, default=False)
    weight_kg = Column(Float)
    sleep_hours = Column(Float)
    water_intake_liters = Column(Float)
    calories_consumed = Column(Float)
    energy_level = Column(Text)  # Very Tired | Slightly Fatigued | Normal | Energized
    mood = Column(Text)  # Poor | Fair | Good | Great | Excellent
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)


class BodyMeasurement(Base):
    __tablename__ = "body_measurements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    measured_at = Column(DateTime, nullable=False)
    waist_cm = Column(Float)
    chest_cm = Column(Float)
    hips_cm = Column(Float)
    left_arm_cm = Column(Float)
    right_arm_cm = Column(Float)
    left_thigh_cm = Column(Float)
    right_thigh_cm = Column(Float)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)

    def sites(self) -> dict[str, float | None]:
        return {site: getattr(self, site) for site in MEASUREMENT_SITES}


class WorkoutPlan(Base):
    __tablename__ = "workout_plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    week_number = Column(Integer, nullable=False, default=1)
    week_summary = Column(Text)
    workouts = Column(Text, nullable=False)  # JSON array of day objects
    progression_notes = Column(Text)
    recovery_tips = Column(Text)
    source = Column(Text, nullable=False, default="ai")  # ai | template
    adjusted = Column(Boolean, nullable=False, default=False)
    adjustment_reason = Column(Text)
    adjustment_date = Column(DateTime)
    adjustment_id = Column(Integer, ForeignKey("plan_adjustments.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    adjustment = relationship("PlanAdjustment", foreign_keys=[adjustment_id])


class DietPlan(Base):
    __tablename__ = "diet_plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    week_number = Column(Integer, nullable=False, default=1)
    week_summary = Column(Text)
    daily_calories = Column(Float, nullable=False)
    protein_grams = Column(Float, nullable=False, default=0)
    carbs_grams = Column(Float, nullable=False, default=0)
    fat_grams = Column(Float, nullable=False, default=0)
    meals = Column(Text, nullable=False)  # JSON array of meal objects
    hydration_goal = Column(Text)
    source = Column(Text, nullable=False, default="ai")
    adjusted = Column(Boolean, nullable=False, default=False)
    adjustment_reason = Column(Text)
    adjustment_date = Column(DateTime)
    adjustment_id = Column(Integer, ForeignKey("plan_adjustments.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    adjustment = relationship("PlanAdjustment", foreign_keys=[adjustment_id])


class PlanAdjustment(Base):
    __tablename__ = "plan_adjustments"
    __table_args__ = (
        UniqueConstraint("user_id", "idempotency_key", name="uq_plan_adjustments_idempotency"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    source = Column(Text, nullable=False)  # ai | rule
    decision_json = Column(Text, nullable=False)
    result_json = Column(Text)
    idempotency_key = Column(Text)
    workout_adjusted = Column(Boolean, nullable=False, default=False)
    diet_adjusted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class InferenceUsageEvent(Base):
    __tablename__ = "inference_usage_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    category = Column(Text, nullable=False)  # resolved credential category
    operation = Column(Text, nullable=False)
    model_used = Column(Text, nullable=False)
    tokens_in = Column(Integer, nullable=False, default=0)
    tokens_out = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)


Index("idx_workout_plans_user_created", WorkoutPlan.user_id, WorkoutPlan.created_at)
Index("idx_diet_plans_user_created", DietPlan.user_id, DietPlan.created_at)
Index("idx_inference_usage_user_created", InferenceUsageEvent.user_id, InferenceUsageEvent.created_at)
Index("idx_daily_logs_user_date", DailyLog.user_id, DailyLog.log_date)
Index("idx_body_measurements_user_time", BodyMeasurement.user_id, BodyMeasurement.measured_at)

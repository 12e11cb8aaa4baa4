from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from db.models import MEASUREMENT_SITES, BodyMeasurement
from services.errors import MeasurementNotFoundError, ValidationError
from services.metrics_service import get_profile
from utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

INITIAL_NOTE = "Initial measurements"
MAX_SITE_CM = 400.0


def _coerce_site(name: str, raw: Any, errors: dict[str, str]) -> float | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        errors[name] = "must be a number"
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        errors[name] = "must be a number"
        return None
    if not math.isfinite(value):
        errors[name] = "must be a number"
        return None
    if value <= 0:
        errors[name] = "must be greater than 0"
        return None
    if value > MAX_SITE_CM:
        errors[name] = f"must be at most {MAX_SITE_CM:g} cm"
        return None
    return value


def validate_sites(measurements: dict[str, Any] | None, require_all: bool = False) -> dict[str, float | None]:
    """Normalize a site payload, raising ``ValidationError`` with per-field messages."""
    if not isinstance(measurements, dict):
        raise ValidationError({"measurements": "Measurements are required"})

    errors: dict[str, str] = {}
    values = {site: _coerce_site(site, measurements.get(site), errors) for site in MEASUREMENT_SITES}
    if require_all:
        for site in MEASUREMENT_SITES:
            if values[site] is None and site not in errors:
                errors[site] = "is required"
    elif not errors and all(value is None for value in values.values()):
        errors["measurements"] = "At least one measurement is required"
    if errors:
        raise ValidationError(errors)
    return values


def measurement_to_dict(row: BodyMeasurement) -> dict[str, Any]:
    return {
        "id": row.id,
        "measured_at": row.measured_at.isoformat() if row.measured_at else None,
        "measurements": row.sites(),
        "notes": row.notes or "",
    }


def save_initial_measurements(
    db: Session,
    user_id: int,
    measurements: dict[str, Any],
    now: datetime | None = None,
) -> dict[str, Any]:
    profile = get_profile(db, user_id)
    values = validate_sites(measurements, require_all=True)
    stamp = now or utcnow()

    for site, value in values.items():
        setattr(profile, f"initial_{site}", value)
    profile.initial_measured_at = stamp
    profile.last_measurement_reminder = stamp

    row = BodyMeasurement(user_id=user_id, measured_at=stamp, notes=INITIAL_NOTE, **values)
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("Initial measurements saved for user %s", user_id)
    return {
        "profile_measurements": {**profile.initial_measurements(), "measured_at": stamp.isoformat()},
        "body_measurement": measurement_to_dict(row),
    }


def add_measurement(
    db: Session,
    user_id: int,
    measurements: dict[str, Any],
    notes: str = "",
    now: datetime | None = None,
) -> BodyMeasurement:
    profile = get_profile(db, user_id)
    values = validate_sites(measurements)
    stamp = now or utcnow()

    row = BodyMeasurement(user_id=user_id, measured_at=stamp, notes=(notes or "").strip(), **values)
    db.add(row)
    profile.last_measurement_reminder = stamp
    db.commit()
    db.refresh(row)
    return row


def list_measurements(db: Session, user_id: int) -> list[BodyMeasurement]:
    return (
        db.query(BodyMeasurement)
        .filter(BodyMeasurement.user_id == user_id)
        .order_by(BodyMeasurement.measured_at.asc(), BodyMeasurement.id.asc())
        .all()
    )


def latest_measurement(db: Session, user_id: int) -> BodyMeasurement | None:
    return (
        db.query(BodyMeasurement)
        .filter(BodyMeasurement.user_id == user_id)
        .order_by(BodyMeasurement.measured_at.desc(), BodyMeasurement.id.desc())
        .first()
    )


def require_latest_measurement(db: Session, user_id: int) -> BodyMeasurement:
    row = latest_measurement(db, user_id)
    if row is None:
        raise MeasurementNotFoundError("No current measurements found")
    return row


def _pair_average(left: float | None, right: float | None) -> float | None:
    values = [v for v in (left, right) if v is not None]
    if not values:
        return None
    return sum(values) / len(values)


def measurement_history(db: Session, user_id: int) -> list[dict[str, Any]]:
    return [
        {
            "date": row.measured_at.isoformat() if row.measured_at else None,
            "waist": row.waist_cm,
            "chest": row.chest_cm,
            "hips": row.hips_cm,
            "arms": _pair_average(row.left_arm_cm, row.right_arm_cm),
            "thighs": _pair_average(row.left_thigh_cm, row.right_thigh_cm),
        }
        for row in list_measurements(db, user_id)
    ]

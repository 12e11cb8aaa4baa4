from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from ai.client_pool import InferenceClient
from db.models import InferenceUsageEvent


def _tokens(result: dict, key: str) -> int:
    try:
        return max(int(result.get(key) or 0), 0)
    except (TypeError, ValueError):
        return 0


def record_usage(
    db: Session,
    user_id: int,
    client: InferenceClient,
    result: dict | None,
    operation: str,
    model: str | None = None,
) -> InferenceUsageEvent | None:
    """Queue a usage event for a completed call; the caller's commit persists it.

    The event is attributed to the credential category that actually served the
    call, so fallback traffic is visible separately from dedicated keys.
    """
    if not isinstance(result, dict) or not user_id:
        return None
    model_used = str(result.get("model") or model or "")
    if not model_used:
        return None
    event = InferenceUsageEvent(
        user_id=user_id,
        category=client.category.value,
        operation=operation,
        model_used=model_used,
        tokens_in=_tokens(result, "tokens_in"),
        tokens_out=_tokens(result, "tokens_out"),
    )
    db.add(event)
    return event


def usage_summary(db: Session, user_id: int, since: datetime | None = None) -> dict[str, Any]:
    """Per-operation call and token totals for one user."""
    query = (
        db.query(
            InferenceUsageEvent.operation,
            InferenceUsageEvent.category,
            func.count(InferenceUsageEvent.id),
            func.coalesce(func.sum(InferenceUsageEvent.tokens_in), 0),
            func.coalesce(func.sum(InferenceUsageEvent.tokens_out), 0),
        )
        .filter(InferenceUsageEvent.user_id == user_id)
    )
    if since is not None:
        query = query.filter(InferenceUsageEvent.created_at >= since)
    rows = query.group_by(InferenceUsageEvent.operation, InferenceUsageEvent.category).all()

    operations: dict[str, dict[str, Any]] = {}
    totals = {"calls": 0, "tokens_in": 0, "tokens_out": 0}
    for operation, category, calls, tokens_in, tokens_out in rows:
        entry = operations.setdefault(operation, {"calls": 0, "tokens_in": 0, "tokens_out": 0, "categories": []})
        entry["calls"] += int(calls)
        entry["tokens_in"] += int(tokens_in)
        entry["tokens_out"] += int(tokens_out)
        entry["categories"].append(category)
        totals["calls"] += int(calls)
        totals["tokens_in"] += int(tokens_in)
        totals["tokens_out"] += int(tokens_out)
    for entry in operations.values():
        entry["categories"].sort()
    return {"operations": operations, "totals": totals}

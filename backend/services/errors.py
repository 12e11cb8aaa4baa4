from __future__ import annotations


class NotFoundError(Exception):
    """An expected record (profile, plan, measurement) does not exist yet."""

    resource = "record"

    def __init__(self, message: str | None = None):
        super().__init__(message or f"{self.resource.capitalize()} not found")


class ProfileNotFoundError(NotFoundError):
    resource = "profile"


class PlanNotFoundError(NotFoundError):
    resource = "plan"

    def __init__(self, plan_kind: str):
        self.plan_kind = plan_kind
        super().__init__(f"No {plan_kind} plan found")


class MeasurementNotFoundError(NotFoundError):
    resource = "measurement"


class ValidationError(Exception):
    """Input is missing required fields or carries out-of-range values."""

    def __init__(self, field_errors: dict[str, str]):
        self.field_errors = dict(field_errors)
        joined = "; ".join(f"{name}: {msg}" for name, msg in self.field_errors.items())
        super().__init__(joined or "Invalid input")


class InferenceRequestError(Exception):
    """The inference service rejected the request or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class InferenceMalformedError(Exception):
    """The inference response could not be parsed into the expected shape."""

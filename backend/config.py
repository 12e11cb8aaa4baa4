from pydantic_settings import BaseSettings
from pathlib import Path


PLACEHOLDER_KEY_PREFIX = "your_groq_api_key"


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"  # development | test | staging | production
    APP_NAME: str = "FitAI Adjustment Engine"
    SECRET_KEY: str = "change-me-in-production"
    DATABASE_URL: str = "sqlite:///data/fitai.db"
    DATA_DIR: Path = Path("data")
    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_HOURS: int = 24
    SECURITY_HEADERS_ENABLED: bool = True
    SECURITY_CSP: str = "default-src 'none'; frame-ancestors 'none'"

    # Inference credentials, one per task category plus a shared fallback.
    GROQ_API_KEY: str | None = None
    GROQ_API_KEY_WORKOUT: str | None = None
    GROQ_API_KEY_DIET: str | None = None
    GROQ_API_KEY_ASSISTANT: str | None = None
    GROQ_API_KEY_PLAN_ADJUSTMENT: str | None = None
    GROQ_API_KEY_MEASUREMENT: str | None = None
    GROQ_BASE_URL: str = "https://api.groq.com/openai/v1/chat/completions"
    PLAN_ADJUSTMENT_MODEL: str = "llama-3.3-70b-versatile"
    UTILITY_MODEL: str = "llama-3.1-8b-instant"
    INFERENCE_TIMEOUT_SECONDS: float = 20.0

    EVALUATION_WINDOW_DAYS: int = 28
    MEASUREMENT_REMINDER_DAYS: int = 28

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def is_production_like(self) -> bool:
        return (self.ENVIRONMENT or "").strip().lower() in {"production", "prod", "staging"}

    def inference_keys(self) -> dict[str, str | None]:
        return {
            "WORKOUT": self.GROQ_API_KEY_WORKOUT,
            "DIET": self.GROQ_API_KEY_DIET,
            "ASSISTANT": self.GROQ_API_KEY_ASSISTANT,
            "PLAN_ADJUSTMENT": self.GROQ_API_KEY_PLAN_ADJUSTMENT,
            "MEASUREMENT": self.GROQ_API_KEY_MEASUREMENT,
            "FALLBACK": self.GROQ_API_KEY,
        }

    def validate_security_configuration(self) -> None:
        if not self.is_production_like:
            return

        errors: list[str] = []
        if self.SECRET_KEY == "change-me-in-production":
            errors.append("SECRET_KEY must be changed from the default value")
        if len((self.SECRET_KEY or "").strip()) < 16:
            errors.append("SECRET_KEY must be at least 16 characters")
        if self.EVALUATION_WINDOW_DAYS < 7:
            errors.append("EVALUATION_WINDOW_DAYS must cover at least one week")
        if self.INFERENCE_TIMEOUT_SECONDS <= 0:
            errors.append("INFERENCE_TIMEOUT_SECONDS must be positive")
        if errors:
            joined = "; ".join(errors)
            raise RuntimeError(f"Insecure production configuration: {joined}")


settings = Settings()
settings.DATA_DIR.mkdir(parents=True, exist_ok=True)

"""Multiplexed inference credentials with per-category usage tracking.

Each task category prefers a dedicated key. When that key is missing or still a
placeholder, the shared FALLBACK key is used instead and the resulting client is
tagged with the FALLBACK identity so calls and errors are counted against the
credential that actually served them.
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from ai.providers import get_provider
from ai.providers.base import AIProvider
from config import PLACEHOLDER_KEY_PREFIX, Settings
from utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


class InferenceCategory(str, Enum):
    WORKOUT = "WORKOUT"
    DIET = "DIET"
    ASSISTANT = "ASSISTANT"
    PLAN_ADJUSTMENT = "PLAN_ADJUSTMENT"
    MEASUREMENT = "MEASUREMENT"
    FALLBACK = "FALLBACK"


ProviderFactory = Callable[[str], AIProvider]


def _usable_key(raw: str | None) -> str | None:
    key = (raw or "").strip()
    if not key or key.lower().startswith(PLACEHOLDER_KEY_PREFIX):
        return None
    return key


def _coerce_category(category: InferenceCategory | str) -> InferenceCategory:
    if isinstance(category, InferenceCategory):
        return category
    try:
        return InferenceCategory(str(category or "").strip().upper())
    except ValueError:
        return InferenceCategory.FALLBACK


@dataclass
class InferenceCredential:
    category: InferenceCategory
    api_key: str | None
    calls: int = 0
    errors: int = 0
    last_used: datetime | None = None

    @property
    def configured(self) -> bool:
        return self.api_key is not None


class InferenceClient:
    """A provider bound to the credential category that serves it."""

    def __init__(self, provider: AIProvider, category: InferenceCategory):
        self.provider = provider
        self.category = category

    async def complete(
        self,
        messages: list[dict],
        model: str,
        system: str = "",
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> dict:
        return await self.provider.chat(
            messages=messages,
            model=model,
            system=system,
            temperature=temperature,
            max_tokens=max_tokens,
        )


class InferenceClientPool:
    def __init__(
        self,
        keys: Mapping[str, str | None],
        provider_factory: ProviderFactory | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._credentials: dict[InferenceCategory, InferenceCredential] = {
            category: InferenceCredential(category=category, api_key=_usable_key(keys.get(category.value)))
            for category in InferenceCategory
        }
        self._provider_factory = provider_factory or (lambda api_key: get_provider("groq", api_key))
        self._clock = clock
        self._clients: dict[InferenceCategory, InferenceClient] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, app_settings: Settings) -> "InferenceClientPool":
        def _factory(api_key: str) -> AIProvider:
            return get_provider(
                "groq",
                api_key,
                base_url=app_settings.GROQ_BASE_URL,
                timeout=max(float(app_settings.INFERENCE_TIMEOUT_SECONDS), 1.0) + 10.0,
            )

        return cls(app_settings.inference_keys(), provider_factory=_factory)

    def _resolve(self, category: InferenceCategory) -> InferenceCredential | None:
        preferred = self._credentials[category]
        if preferred.configured:
            return preferred
        fallback = self._credentials[InferenceCategory.FALLBACK]
        if fallback.configured:
            return fallback
        return None

    def is_available(self, category: InferenceCategory | str = InferenceCategory.FALLBACK) -> bool:
        return self._resolve(_coerce_category(category)) is not None

    def get_client(self, category: InferenceCategory | str = InferenceCategory.FALLBACK) -> InferenceClient | None:
        requested = _coerce_category(category)
        credential = self._resolve(requested)
        if credential is None:
            logger.info("No inference key available for %s", requested.value)
            return None
        if credential.category is not requested:
            logger.debug("Dedicated key for %s not configured, using %s", requested.value, credential.category.value)

        with self._lock:
            client = self._clients.get(credential.category)
            if client is None:
                client = InferenceClient(self._provider_factory(credential.api_key), credential.category)
                self._clients[credential.category] = client
                logger.info("Inference client initialized for %s", credential.category.value)
            credential.calls += 1
            credential.last_used = self._clock()
        return client

    def record_error(self, category: InferenceCategory | str) -> None:
        resolved = _coerce_category(category)
        with self._lock:
            self._credentials[resolved].errors += 1

    def get_usage_stats(self) -> dict:
        with self._lock:
            stats = {
                category.value: {
                    "calls": cred.calls,
                    "errors": cred.errors,
                    "last_used": cred.last_used.isoformat() if cred.last_used else None,
                }
                for category, cred in self._credentials.items()
            }
        return {
            "stats": stats,
            "available_keys": {
                category.value.lower(): cred.configured
                for category, cred in self._credentials.items()
            },
        }

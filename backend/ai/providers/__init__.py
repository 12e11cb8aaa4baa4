from ai.providers.base import AIProvider
from ai.providers.groq import GroqProvider


def get_provider(
    provider_name: str,
    api_key: str,
    base_url: str | None = None,
    timeout: float = 120.0,
) -> AIProvider:
    providers = {
        "groq": GroqProvider,
    }
    cls = providers.get(provider_name)
    if not cls:
        raise ValueError(f"Unknown provider: {provider_name}")
    return cls(api_key=api_key, base_url=base_url, timeout=timeout)

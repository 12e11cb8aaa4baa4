from abc import ABC, abstractmethod


class AIProvider(ABC):
    """Abstract base class for chat-completion inference providers."""

    DEFAULT_MODEL: str = ""

    def __init__(self, api_key: str, base_url: str | None = None, timeout: float = 120.0):
        self.api_key = api_key
        self._base_url = base_url
        self._timeout = timeout

    @abstractmethod
    async def chat(
        self,
        messages: list[dict],
        model: str,
        system: str = "",
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> dict:
        """Send a non-streaming chat request to the provider.

        Args:
            messages: List of message dicts with role and content.
            model: Model identifier to use.
            system: Optional system prompt, prepended as a system message.
            temperature: Sampling temperature.
            max_tokens: Upper bound on generated tokens.

        Returns:
            dict with content, tokens_in, tokens_out, model.

        Raises:
            InferenceRequestError if the provider rejects the request.
        """
        ...

    def get_default_model(self) -> str:
        return self.DEFAULT_MODEL

"""Streaming completion providers."""

from typing import AsyncIterator, Dict, List, Optional

from chatcollab.core.errors import UpstreamFailure
from chatcollab.core.logging import get_logger

logger = get_logger(__name__)

# Friendly model names accepted from clients, mapped to provider model ids.
SUPPORTED_MODELS: Dict[str, str] = {
    "gpt-4-turbo": "openai/gpt-4-turbo",
    "gpt-4": "openai/gpt-4",
    "gpt-3.5-turbo": "openai/gpt-3.5-turbo",
    "claude-3-opus": "anthropic/claude-3-opus",
    "claude-3-sonnet": "anthropic/claude-3-sonnet",
    "claude-3-haiku": "anthropic/claude-3-haiku",
    "gemini-pro": "google/gemini-pro",
    "llama-3-70b": "meta-llama/llama-3-70b-instruct",
    "mistral-7b": "mistralai/mistral-7b-instruct",
    "mixtral-8x7b": "mistralai/mixtral-8x7b-instruct",
}


def resolve_model(name: Optional[str], default: str = "gpt-4-turbo") -> str:
    if name and name in SUPPORTED_MODELS:
        return SUPPORTED_MODELS[name]
    return SUPPORTED_MODELS.get(default, default)


class CompletionProvider:
    """Streams assistant text for an ordered list of role/content dicts.

    Implementations yield content deltas and return normally only after the
    provider's end-of-stream marker; any other ending raises UpstreamFailure.
    """

    async def stream(self, messages: List[dict], model: str) -> AsyncIterator[str]:
        raise NotImplementedError
        yield  # pragma: no cover


class OpenAICompletionProvider(CompletionProvider):
    def __init__(
        self,
        api_key: Optional[str],
        base_url: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 4000,
        timeout: float = 120.0,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._client = None

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def stream(self, messages: List[dict], model: str) -> AsyncIterator[str]:
        if not self.api_key:
            raise UpstreamFailure("Completion provider is not configured")

        import openai

        finished = False
        try:
            stream = await self._get_client().chat.completions.create(
                model=model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                stream=True,
            )
            async for chunk in stream:
                choice = chunk.choices[0] if chunk.choices else None
                if not choice:
                    continue
                if choice.delta and choice.delta.content:
                    yield choice.delta.content
                if choice.finish_reason:
                    finished = True
        except openai.APIError as exc:
            logger.warning("completion_upstream_error", model=model, error=str(exc))
            raise UpstreamFailure("Completion provider error", details={"model": model}) from exc

        if not finished:
            raise UpstreamFailure("Completion stream ended without a finish marker", details={"model": model})

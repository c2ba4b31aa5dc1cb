"""
Story Chain - LLM Client

OpenAI-compatible chat client with retry logic. Used for both the OpenAI
script writer and the OpenRouter prompt optimizer.
"""

from typing import Any, Optional

from openai import APIConnectionError, APITimeoutError, AsyncOpenAI, OpenAIError, RateLimitError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.logging import get_logger
from core.models import LLMConfig

logger = get_logger(__name__)

# Only transport-level failures are retried
RETRYABLE_ERRORS = (APIConnectionError, APITimeoutError, RateLimitError)


class LLMClient:
    """
    OpenAI-compatible LLM client.

    Supports any OpenAI-compatible API by configuring base_url.
    Transient transport errors are retried with exponential backoff.
    """

    def __init__(
        self,
        base_url: str = "https://api.openai.com/v1",
        api_key: str = "",
        model: str = "gpt-4o",
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout: int = 60,
        default_headers: Optional[dict[str, str]] = None,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.default_headers = default_headers or {}

        self._client: Optional[AsyncOpenAI] = None

    @classmethod
    def from_config(cls, llm_config: LLMConfig) -> "LLMClient":
        """Create client from an LLMConfig."""
        return cls(
            base_url=llm_config.base_url,
            api_key=llm_config.api_key,
            model=llm_config.model,
            temperature=llm_config.temperature,
            max_tokens=llm_config.max_tokens,
            timeout=llm_config.timeout,
            default_headers=llm_config.default_headers,
        )

    @property
    def client(self) -> AsyncOpenAI:
        """Get or create async OpenAI client."""
        if self._client is None:
            self._client = AsyncOpenAI(
                base_url=self.base_url,
                api_key=self.api_key,
                timeout=self.timeout,
                default_headers=self.default_headers or None,
            )
        return self._client

    def is_configured(self) -> bool:
        """Check if API key is configured."""
        return bool(self.api_key and self.api_key != "YOUR_API_KEY")

    @retry(
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """
        Send chat completion request.

        Args:
            messages: List of message dicts with 'role' and 'content'.
                Content may be a string or a list of typed parts.
            model: Override default model
            temperature: Override default temperature
            max_tokens: Override default max_tokens

        Returns:
            Response content string
        """
        if not self.is_configured():
            logger.warning("LLM not configured, returning empty response")
            return ""

        try:
            response = await self.client.chat.completions.create(
                model=model or self.model,
                messages=messages,
                temperature=self.temperature if temperature is None else temperature,
                max_tokens=max_tokens or self.max_tokens,
            )

            content = response.choices[0].message.content or ""
            logger.debug(f"LLM response: {content[:100]}...")
            return content

        except OpenAIError as e:
            logger.error(f"LLM API error: {e}")
            raise

    async def close(self) -> None:
        """Close the client."""
        if self._client:
            await self._client.close()
            self._client = None


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code block, if any."""
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    if cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()

"""
OpenAI Provider - Chat completions and embeddings through the OpenAI API.

Also works with any OpenAI-compatible endpoint by setting ``api_base``.
"""

import json
import logging
import os
import time
from typing import List

from .base import (
    LLMProvider,
    LLMConfig,
    LLMResponse,
    LLMMessage,
    LLMUsage,
    LLMError,
    LLMRateLimitError,
    LLMAuthenticationError,
)


logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """OpenAI API provider implementation."""

    def __init__(self, config: LLMConfig):
        """
        Initialize the OpenAI provider.

        Args:
            config: Configuration for the provider.
        """
        super().__init__(config)

        # Get API key from config or environment
        self.api_key = config.api_key or os.environ.get("OPENAI_API_KEY")
        if not self.api_key:
            logger.warning("No OpenAI API key provided. Set OPENAI_API_KEY environment variable.")

        self.api_base = config.api_base or "https://api.openai.com/v1"
        self._client = None

    def _get_client(self):
        """Get or create the OpenAI client."""
        if self._client is None:
            if not self.api_key:
                raise LLMAuthenticationError("No OpenAI API key configured")
            import openai
            self._client = openai.OpenAI(
                api_key=self.api_key,
                base_url=self.api_base,
                timeout=self.config.timeout,
            )
        return self._client

    def _with_retries(self, operation, description: str):
        """Run an API call with exponential backoff on failure."""
        last_error = None
        for attempt in range(self.config.max_retries):
            try:
                return operation()
            except Exception as e:
                last_error = self._handle_error(e)
                if isinstance(last_error, LLMAuthenticationError):
                    raise last_error
                if attempt >= self.config.max_retries - 1:
                    break
                if isinstance(last_error, LLMRateLimitError):
                    wait_time = last_error.retry_after or (self.config.retry_delay * (2 ** attempt))
                    logger.warning(f"Rate limited during {description}. Waiting {wait_time}s before retry...")
                else:
                    wait_time = self.config.retry_delay * (2 ** attempt)
                    logger.debug(f"{description} failed ({last_error}), retrying in {wait_time}s")
                time.sleep(wait_time)

        raise last_error or LLMError("Max retries exceeded")

    def complete(
        self,
        messages: List[LLMMessage],
        **kwargs,
    ) -> LLMResponse:
        """
        Generate a completion using OpenAI.

        Args:
            messages: List of messages in the conversation.
            **kwargs: Overrides for model, temperature and max_tokens.

        Returns:
            LLMResponse with the generated content.
        """
        client = self._get_client()

        request_params = {
            "model": kwargs.get("model") or self.config.model,
            "messages": [msg.to_dict() for msg in messages],
            "temperature": kwargs.get("temperature", self.config.temperature),
            "max_tokens": kwargs.get("max_tokens", self.config.max_tokens),
        }

        response = self._with_retries(
            lambda: client.chat.completions.create(**request_params),
            "chat completion",
        )

        usage_data = response.usage
        prompt_tokens = usage_data.prompt_tokens if usage_data else 0
        completion_tokens = usage_data.completion_tokens if usage_data else 0
        usage = LLMUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=usage_data.total_tokens if usage_data else 0,
            estimated_cost=self._calculate_cost(
                prompt_tokens,
                completion_tokens,
                request_params["model"],
            ),
        )
        self._record_usage(usage)

        choice = response.choices[0] if response.choices else None
        message = choice.message if choice else None
        content = (message.content or "") if message else ""
        # OpenAI-compatible reasoning models expose their trace separately
        thinking = getattr(message, "reasoning_content", None) if message else None

        return LLMResponse(
            content=content,
            model=response.model,
            usage=usage,
            finish_reason=choice.finish_reason if choice else None,
            thinking=thinking,
        )

    def embed(self, text: str) -> List[float]:
        """
        Get an embedding for text from the embeddings endpoint.

        Sends ``{model, input}`` and reads ``data[0].embedding``.
        """
        client = self._get_client()
        model = self.config.embedding_model

        response = self._with_retries(
            lambda: client.embeddings.create(model=model, input=text),
            "embedding",
        )

        if not response.data:
            raise LLMError("Embedding API returned no data")

        usage_data = getattr(response, "usage", None)
        if usage_data:
            prompt_tokens = usage_data.prompt_tokens or 0
            self._record_usage(LLMUsage(
                prompt_tokens=prompt_tokens,
                total_tokens=prompt_tokens,
                estimated_cost=self._calculate_cost(prompt_tokens, 0, model),
            ))

        return list(response.data[0].embedding)

    def _handle_error(self, error: Exception) -> LLMError:
        """Convert OpenAI errors to LLM errors."""
        if isinstance(error, LLMError):
            return error

        error_message = str(error)

        # Try to parse error details
        if hasattr(error, "response"):
            try:
                response_json = error.response.json()
                error_message = response_json.get("error", {}).get("message", error_message)
            except (json.JSONDecodeError, AttributeError, ValueError):
                pass

        status_code = getattr(error, "status_code", None)

        if status_code == 429 or "rate_limit" in error_message.lower():
            retry_after = None
            headers = getattr(getattr(error, "response", None), "headers", None)
            if headers:
                retry_after_str = headers.get("Retry-After")
                if retry_after_str:
                    try:
                        retry_after = float(retry_after_str)
                    except ValueError:
                        pass
            return LLMRateLimitError(error_message, retry_after)

        if status_code == 401 or "authentication" in error_message.lower() or "api_key" in error_message.lower():
            return LLMAuthenticationError(error_message)

        return LLMError(error_message)

# shared/llm_client.py
"""
LLM client with retry logic for the fortune service.
Talks to the OpenAI Chat Completions API over httpx with error handling and usage logging.
"""

import asyncio
import logging
import os
import random
import time
from typing import Optional

import httpx

from shared.llm_pricing import calculate_llm_cost

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"


class LLMError(Exception):
    """Base exception for LLM client errors"""

    def __init__(
        self, message: str, provider: str = None, status_code: int = None, retry_after: int = None
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.retry_after = retry_after


class LLMClient:
    """
    OpenAI chat completion client with automatic retry logic.

    Handles transient errors (408, 429, 5xx, network failures) with exponential
    backoff. The API key is read at construction time but only required when a
    completion is requested, so a service can start without one.
    """

    provider = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_id: Optional[str] = None,
        base_url: Optional[str] = None,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else os.getenv("OPENAI_API_KEY")
        self.model_id = model_id or os.getenv("OPENAI_MODEL", DEFAULT_MODEL)
        self.base_url = (base_url or os.getenv("OPENAI_BASE_URL", DEFAULT_BASE_URL)).rstrip("/")
        self.max_attempts = max(1, max_attempts or int(os.getenv("LLM_MAX_ATTEMPTS", "2")))
        self.timeout = timeout or float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))
        self.transport = transport

    @property
    def has_key(self) -> bool:
        return bool(self.api_key)

    async def generate_completion(
        self,
        prompt: str,
        parameters: Optional[dict] = None,
        user_tag: str = "",
    ) -> tuple[str, dict]:
        """
        Generate completion with automatic retry logic.

        Args:
            prompt: The prompt to send to the LLM
            parameters: Generation parameters (max_tokens, temperature)
            user_tag: Short user identifier for logging

        Returns:
            Tuple[str, Dict]: (completion_text, generation_metadata)

        Raises:
            LLMError: When the key is missing or all attempts are exhausted
        """
        if not self.api_key:
            raise LLMError("OPENAI_API_KEY is not set", provider=self.provider)

        parameters = parameters or {}
        start_time = time.time()
        last_error = None

        for attempt_num in range(self.max_attempts):
            try:
                logger.debug(
                    f"🤖 LLM_CLIENT: Attempt {attempt_num + 1}/{self.max_attempts} - "
                    f"{self.provider}/{self.model_id}"
                )

                completion, usage_data = await self._make_api_call(prompt, parameters)

                generation_time_ms = int((time.time() - start_time) * 1000)
                cost_usd = calculate_llm_cost(
                    self.provider,
                    self.model_id,
                    usage_data["prompt_tokens"],
                    usage_data["completion_tokens"],
                )

                logger.info(
                    f"✅ LLM_CLIENT: {self.provider}/{self.model_id} user={user_tag} "
                    f"tokens={usage_data['total_tokens']} cost=${cost_usd:.6f} "
                    f"latency={generation_time_ms}ms attempt={attempt_num + 1}"
                )

                return completion, {
                    "provider": self.provider,
                    "model_id": self.model_id,
                    "tokens_used": usage_data,
                    "cost_usd": cost_usd,
                    "generation_time_ms": generation_time_ms,
                    "attempt_number": attempt_num + 1,
                }

            except LLMError as e:
                last_error = e
                logger.warning(f"❌ LLM_CLIENT: {self.provider}/{self.model_id} failed: {e}")

                if self._is_retryable_error(e) and attempt_num < self.max_attempts - 1:
                    retry_delay = self._calculate_retry_delay(attempt_num, e.retry_after)
                    if retry_delay > 0:
                        logger.info(
                            f"⏳ LLM_CLIENT: Waiting {retry_delay:.1f}s before next attempt..."
                        )
                        await asyncio.sleep(retry_delay)
                    continue

                break

        raise LLMError(
            f"LLM request failed after {attempt_num + 1} attempt(s). Last error: {last_error}",
            provider=self.provider,
            status_code=last_error.status_code if last_error else None,
        )

    async def _make_api_call(self, prompt: str, parameters: dict) -> tuple[str, dict]:
        """Make the actual API call"""
        max_tokens = parameters.get("max_tokens", 80)
        temperature = parameters.get("temperature", 0.8)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                return await self._call_openai(client, prompt, max_tokens, temperature)

        except httpx.TimeoutException:
            raise LLMError(
                f"Timeout calling {self.provider} API", provider=self.provider, status_code=408
            )
        except httpx.ConnectError:
            raise LLMError(
                f"Connection error to {self.provider} API", provider=self.provider, status_code=503
            )
        except httpx.HTTPError as e:
            raise LLMError(f"HTTP error calling {self.provider} API: {e}", provider=self.provider)

    async def _call_openai(
        self,
        client: httpx.AsyncClient,
        prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> tuple[str, dict]:
        """Make API call to OpenAI"""
        response = await client.post(
            f"{self.base_url}/chat/completions",
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
            json={
                "model": self.model_id,
                "max_completion_tokens": max_tokens,
                "temperature": temperature,
                "messages": [{"role": "user", "content": prompt}],
            },
        )

        if response.status_code == 200:
            try:
                result = response.json()
            except ValueError as e:
                raise LLMError(f"Invalid OpenAI response body: {e}", provider="openai")

            if not isinstance(result, dict):
                raise LLMError("Invalid OpenAI response structure", provider="openai")

            # A response without a first message is treated as empty output
            choices = result.get("choices") or []
            message = (choices[0] or {}).get("message") if choices else None
            content = (message or {}).get("content") or ""

            usage = result.get("usage") or {}
            usage_data = {
                "prompt_tokens": usage.get("prompt_tokens", 0),
                "completion_tokens": usage.get("completion_tokens", 0),
                "total_tokens": usage.get("total_tokens", 0),
            }

            return str(content).strip(), usage_data

        try:
            error_data = response.json()
            error_message = error_data.get("error", {}).get("message", response.text)
        except (ValueError, KeyError, TypeError, AttributeError):
            error_message = f"Failed to parse error response: {response.text}"

        retry_after = None
        if response.status_code == 429:
            try:
                retry_after = int(response.headers.get("retry-after", 60))
            except (ValueError, TypeError):
                retry_after = 60

        raise LLMError(
            f"OpenAI API error {response.status_code}: {error_message}",
            provider="openai",
            status_code=response.status_code,
            retry_after=retry_after,
        )

    def _is_retryable_error(self, error: LLMError) -> bool:
        """Determine if an error should trigger a retry"""
        if not error.status_code:
            return True  # Network errors

        retryable_codes = {
            408,  # Request timeout
            429,  # Rate limit
            500,  # Internal server error
            502,  # Bad gateway
            503,  # Service unavailable
            504,  # Gateway timeout
        }

        return error.status_code in retryable_codes

    def _calculate_retry_delay(self, attempt_num: int, retry_after: Optional[int] = None) -> float:
        """Calculate delay before next retry using exponential backoff"""
        if retry_after:
            # Cap well below the request timeout of a browser fetch
            return min(retry_after, 10)

        # Exponential backoff: 0.5s, 1s, 2s, ...
        base_delay = min(0.5 * 2**attempt_num, 8)
        jitter = random.uniform(0.1, 0.3) * base_delay

        return base_delay + jitter


# Global instance
llm_client = LLMClient()

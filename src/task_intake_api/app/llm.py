from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import httpx

from .errors import LLMCallError, TransientProviderError
from .prompts import CONNECTION_PROBE_PROMPT, build_prompt

logger = logging.getLogger(__name__)

# HTTP status the Gemini API uses for "model is overloaded, try again later".
OVERLOADED_STATUS = 503


class LLMClient(Protocol):
    """Interface for the task classification call."""

    provider: str

    async def generate(self, task_description: str, model: str) -> str: ...


class GeminiClient:
    """Small Gemini adapter using the ``generateContent`` REST endpoint."""

    provider = "google"

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        max_attempts: int = 3,
        retry_delay_s: float = 30.0,
        timeout_s: float | None = None,
        probe_model: str = "gemini-2.5-flash",
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not api_key:
            logger.warning("llm event=missing_api_key provider=%s", self.provider)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max(1, max_attempts)
        self.retry_delay_s = max(0.0, retry_delay_s)
        self.timeout_s = timeout_s
        self.probe_model = probe_model
        self._transport = transport
        self._sleep = sleep

    async def generate(self, task_description: str, model: str) -> str:
        """Return raw model text for one task. Retries only on overload."""
        prompt = build_prompt(task_description)
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self._request(prompt, model)
            except TransientProviderError as exc:
                if attempt >= self.max_attempts:
                    logger.error(
                        "llm event=retries_exhausted model=%s attempts=%d reason=%s",
                        model,
                        attempt,
                        exc,
                    )
                    raise LLMCallError(f"Failed to call Gemini API: {exc}") from exc
                logger.warning(
                    "llm event=overloaded attempt=%d/%d model=%s retry_in_s=%s",
                    attempt,
                    self.max_attempts,
                    model,
                    self.retry_delay_s,
                )
                await self._sleep(self.retry_delay_s)
        raise LLMCallError("Failed to call Gemini API: no attempts made")

    async def check_connection(self) -> dict[str, Any]:
        """Send a tiny probe prompt and report whether Gemini answered."""
        if not self.api_key:
            return {"gemini": False, "error": "API key not configured"}
        try:
            await self._request(CONNECTION_PROBE_PROMPT, self.probe_model)
        except (LLMCallError, TransientProviderError) as exc:
            logger.info("llm event=probe_failed model=%s reason=%s", self.probe_model, exc)
            return {"gemini": False, "error": str(exc)}
        return {"gemini": True, "model": self.probe_model}

    async def _request(self, prompt: str, model: str) -> str:
        if not self.api_key:
            raise LLMCallError("Failed to call Gemini API: GEMINI_API_KEY is not configured")

        url = f"{self.base_url}/models/{model}:generateContent"
        payload = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_s, transport=self._transport
            ) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={"x-goog-api-key": self.api_key},
                )
        except httpx.HTTPError as exc:
            raise LLMCallError(f"Failed to call Gemini API: {exc}") from exc

        if response.status_code == OVERLOADED_STATUS:
            raise TransientProviderError(
                f"Gemini API overloaded: {response.text[:400]}",
                status_code=response.status_code,
            )
        if response.is_error:
            raise LLMCallError(
                f"Failed to call Gemini API: status {response.status_code}: "
                f"{response.text[:400]}"
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise LLMCallError("Failed to call Gemini API: response was not JSON") from exc
        return self._extract_text(body)

    @staticmethod
    def _extract_text(response_json: dict[str, Any]) -> str:
        candidates = response_json.get("candidates") or []
        if not candidates:
            feedback = response_json.get("promptFeedback", {})
            raise LLMCallError(
                f"Failed to call Gemini API: response did not contain candidates {feedback}"
            )

        content = candidates[0].get("content") or {}
        parts = content.get("parts") or []
        text_segments: list[str] = []
        for part in parts:
            if isinstance(part, dict):
                text = part.get("text")
                if isinstance(text, str):
                    text_segments.append(text)
        merged = "".join(text_segments)
        if not merged.strip():
            raise LLMCallError("Failed to call Gemini API: response content was empty")
        return merged


def build_llm_client(
    *,
    api_key: str,
    base_url: str,
    max_attempts: int,
    retry_delay_s: float,
    timeout_s: float | None,
    probe_model: str,
    provider: str = "google",
) -> LLMClient:
    if provider.lower() != "google":
        raise RuntimeError(f"Unsupported LLM provider: {provider!r}")
    return GeminiClient(
        api_key=api_key,
        base_url=base_url,
        max_attempts=max_attempts,
        retry_delay_s=retry_delay_s,
        timeout_s=timeout_s,
        probe_model=probe_model,
    )

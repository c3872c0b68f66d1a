# izamed/services/ai/groq.py
import logging
import time
from typing import Callable

import httpx
from pydantic import BaseModel

from izamed.services.ai.base import AiBackend, AiRequest, BackendError, RawResponse, RequestKind
from izamed.services.ai.prompts import system_prompt, user_prompt

logger = logging.getLogger(__name__)


class GroqConfig(BaseModel):
    api_key: str = ""
    base_url: str = "https://api.groq.com/openai/v1"
    model: str = "llama-3.1-70b-versatile"
    timeout: int = 60
    max_tokens: int = 2000
    requests_per_minute: int = 30   # free tier


class GroqBackend(AiBackend):
    """Groq (API compatible con OpenAI). Sin modelos de visión."""

    id = "groq"
    confidence_baseline = 0.75

    def __init__(
        self,
        config: GroqConfig,
        language: str = "Romanian",
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.language = language
        self.transport = transport
        self.clock = clock
        self._window = -1
        self._requests_in_window = 0

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.config.api_key}"}

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=timeout)

    # --- cuota por minuto ---
    def _roll_window(self) -> None:
        window = int(self.clock() // 60)
        if window != self._window:
            self._window = window
            self._requests_in_window = 0

    def remaining_quota(self) -> int | None:
        self._roll_window()
        return max(0, self.config.requests_per_minute - self._requests_in_window)

    def _count_request(self) -> None:
        self._roll_window()
        self._requests_in_window += 1

    async def is_available(self) -> bool:
        try:
            async with self._client(5.0) as cx:
                r = await cx.get(f"{self.config.base_url}/models", headers=self._headers())
            return r.status_code == 200
        except httpx.HTTPError as e:
            logger.info("Groq availability check failed: %s", e)
            return False

    async def send(self, request: AiRequest) -> RawResponse:
        if request.kind == RequestKind.images:
            # Groq no tiene modelos de visión todavía
            return RawResponse(
                text="",
                model=self.config.model,
                error="Vision models not supported by Groq API",
            )

        is_diagnosis = request.kind == RequestKind.diagnosis
        payload = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system_prompt(request.kind, self.language)},
                {"role": "user", "content": user_prompt(request, self.language)},
            ],
            "temperature": 0.2 if is_diagnosis else 0.3,
            "max_tokens": 1500 if is_diagnosis else self.config.max_tokens,
            "top_p": 0.9,
            "stream": False,
        }

        self._count_request()
        async with self._client(self.config.timeout) as cx:
            r = await cx.post(
                f"{self.config.base_url}/chat/completions",
                json=payload,
                headers={**self._headers(), "Content-Type": "application/json"},
            )
        if r.status_code != 200:
            raise BackendError(f"Groq API request failed: HTTP {r.status_code}")

        data = r.json()
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise BackendError("Malformed Groq response")

        return RawResponse(text=content or "", raw=data, model=self.config.model)

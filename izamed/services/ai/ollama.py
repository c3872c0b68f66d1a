# izamed/services/ai/ollama.py
import base64
import logging
from pathlib import Path

import httpx
from pydantic import BaseModel, Field

from izamed.services.ai.base import AiBackend, AiRequest, BackendError, RawResponse, RequestKind
from izamed.services.ai.prompts import system_prompt, user_prompt

logger = logging.getLogger(__name__)


class OllamaConfig(BaseModel):
    base_url: str = "http://localhost:11434"
    model: str = "llama3.1:8b"
    timeout: int = 120
    vision_models: list[str] = Field(default_factory=lambda: ["llava:latest", "bakllava:latest"])


class OllamaBackend(AiBackend):
    """Ollama local: procesa los datos sin salir del servidor, sin cuota."""

    id = "ollama"
    confidence_baseline = 0.70

    def __init__(
        self,
        config: OllamaConfig,
        language: str = "Romanian",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.language = language
        self.transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=timeout)

    async def installed_models(self) -> list[str]:
        try:
            async with self._client(10.0) as cx:
                r = await cx.get(f"{self.config.base_url}/api/tags")
        except httpx.HTTPError as e:
            logger.info("Ollama /api/tags failed: %s", e)
            return []
        if r.status_code != 200:
            return []
        return [m.get("name", "") for m in r.json().get("models", [])]

    async def is_available(self) -> bool:
        try:
            async with self._client(5.0) as cx:
                r = await cx.get(f"{self.config.base_url}/api/tags")
            return r.status_code == 200
        except httpx.HTTPError as e:
            logger.info("Ollama availability check failed: %s", e)
            return False

    async def _vision_model(self) -> str | None:
        installed = await self.installed_models()
        return next((m for m in self.config.vision_models if m in installed), None)

    async def _chat(self, payload: dict, timeout: float) -> RawResponse:
        async with self._client(timeout) as cx:
            r = await cx.post(f"{self.config.base_url}/api/chat", json=payload)
        if r.status_code != 200:
            raise BackendError(f"Ollama API request failed: HTTP {r.status_code}")
        data = r.json()
        content = (data.get("message") or {}).get("content") or ""
        return RawResponse(text=content, raw=data, model=payload["model"])

    async def send(self, request: AiRequest) -> RawResponse:
        if request.kind == RequestKind.images:
            return await self._send_images(request)

        is_diagnosis = request.kind == RequestKind.diagnosis
        payload = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system_prompt(request.kind, self.language)},
                {"role": "user", "content": user_prompt(request, self.language)},
            ],
            "stream": False,
            "options": {
                "temperature": 0.2 if is_diagnosis else 0.3,
                "top_p": 0.9,
                "num_predict": 1500 if is_diagnosis else 2000,
            },
        }
        return await self._chat(payload, self.config.timeout)

    async def _send_images(self, request: AiRequest) -> RawResponse:
        model = await self._vision_model()
        if not model:
            return RawResponse(text="", error="Vision model not available")

        # por ahora sólo la primera imagen
        image_path = Path(request.image_paths[0]) if request.image_paths else None
        if not image_path or not image_path.is_file():
            raise BackendError("Image file not found or invalid")
        image_data = base64.b64encode(image_path.read_bytes()).decode("ascii")

        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt(RequestKind.images, self.language)},
                {
                    "role": "user",
                    "content": user_prompt(request, self.language),
                    "images": [image_data],
                },
            ],
            "stream": False,
            "options": {"temperature": 0.1, "num_predict": 1000},
        }
        # las imágenes tardan más: doble timeout
        return await self._chat(payload, self.config.timeout * 2)

    async def models(self) -> list[str] | None:
        return await self.installed_models()

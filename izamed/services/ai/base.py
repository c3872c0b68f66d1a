# izamed/services/ai/base.py
import abc
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class RequestKind(str, Enum):
    chat = "chat"
    images = "images"
    diagnosis = "diagnosis"


class AiRequest(BaseModel):
    kind: RequestKind = RequestKind.chat
    message: str = ""
    context: dict[str, Any] = Field(default_factory=dict)
    image_paths: list[str] = Field(default_factory=list)
    symptoms: list[str] = Field(default_factory=list)
    age: int | None = None
    gender: str | None = None


class RawResponse(BaseModel):
    text: str = ""
    raw: dict[str, Any] = Field(default_factory=dict)
    model: str | None = None
    # el backend contestó pero con un error adentro (ej: no soporta visión)
    error: str | None = None


class BackendError(Exception):
    pass


class AiBackend(abc.ABC):
    """
    Adapter para un proveedor de AI.

    Para sumar un proveedor alcanza con implementar esta interfaz; el
    coordinator no conoce los tipos concretos.
    """

    id: str
    confidence_baseline: float = 0.75

    @abc.abstractmethod
    async def is_available(self) -> bool: ...

    @abc.abstractmethod
    async def send(self, request: AiRequest) -> RawResponse: ...

    def remaining_quota(self) -> int | None:
        # None = el backend no lleva cuota
        return None

    async def models(self) -> list[str] | None:
        # None = el backend no lista modelos
        return None

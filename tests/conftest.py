from __future__ import annotations

import asyncio
import os

# antes de importar izamed: el engine del módulo db se crea al importar
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest

from izamed.schemas.auth import TwoFactorCredential
from izamed.services.ai.base import AiBackend, AiRequest, RawResponse
from izamed.services.ai.heuristics import ResponseAnalyzer, load_locale
from izamed.services.two_factor import CredentialNotFound

LONG_TEXT_RO = (
    "Hipertensiunea arterială este o afecțiune cronică ce necesită monitorizare "
    "regulată a tensiunii și evaluare de către medicul de familie."
)


class InMemoryTwoFactorStore:
    def __init__(self) -> None:
        self.credentials: dict[str, TwoFactorCredential] = {}
        self.saves = 0

    def add_user(self, user_id: str) -> None:
        self.credentials[user_id] = TwoFactorCredential()

    async def load(self, user_id: str) -> TwoFactorCredential:
        if user_id not in self.credentials:
            raise CredentialNotFound(user_id)
        return self.credentials[user_id].model_copy(deep=True)

    async def save(self, user_id: str, credential: TwoFactorCredential) -> None:
        self.saves += 1
        self.credentials[user_id] = credential.model_copy(deep=True)


class FakeBackend(AiBackend):
    def __init__(
        self,
        backend_id: str,
        reply: str | RawResponse | None = LONG_TEXT_RO,
        error: Exception | None = None,
        available: bool = True,
        quota: int | None = None,
        baseline: float = 0.75,
        delay: float = 0.0,
    ) -> None:
        self.id = backend_id
        self.reply = reply
        self.error = error
        self.available = available
        self.quota = quota
        self.confidence_baseline = baseline
        self.delay = delay
        self.sent: list[AiRequest] = []
        self.availability_checks = 0

    async def is_available(self) -> bool:
        self.availability_checks += 1
        return self.available

    async def send(self, request: AiRequest) -> RawResponse:
        self.sent.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        if isinstance(self.reply, RawResponse):
            return self.reply
        return RawResponse(text=self.reply or "", model=f"{self.id}-model")

    def remaining_quota(self) -> int | None:
        return self.quota


@pytest.fixture
def store() -> InMemoryTwoFactorStore:
    s = InMemoryTwoFactorStore()
    s.add_user("u1")
    return s


@pytest.fixture
def ro_analyzer() -> ResponseAnalyzer:
    return ResponseAnalyzer(load_locale("ro"))


@pytest.fixture
def en_analyzer() -> ResponseAnalyzer:
    return ResponseAnalyzer(load_locale("en"))


@pytest.fixture
def db_path(tmp_path):
    from sqlalchemy import create_engine

    from izamed.core.db import Base
    import izamed.models  # noqa: F401  registra las tablas

    path = tmp_path / "izamed-test.db"
    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    engine.dispose()
    return path


@pytest.fixture
def session_factory(db_path):
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
    from sqlalchemy.pool import NullPool

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

from functools import lru_cache

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from izamed.core.config import settings
from izamed.core.db import get_db
from izamed.models.user import User
from izamed.services.two_factor import TwoFactorService
from izamed.services.two_factor_store import SqlTwoFactorStore
from izamed.services.ai.coordinator import AiFallbackCoordinator, AvailabilityCache
from izamed.services.ai.groq import GroqBackend
from izamed.services.ai.heuristics import ResponseAnalyzer, load_locale
from izamed.services.ai.ollama import OllamaBackend


bearer = HTTPBearer(auto_error=True)

async def get_current_user(
    creds: HTTPAuthorizationCredentials = Depends(bearer),
    db: AsyncSession = Depends(get_db),
) -> User:
    token = creds.credentials
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        sub: str | None = payload.get("sub")
        if not sub:
            raise HTTPException(status_code=401, detail="Token inválido")
    except JWTError:
        raise HTTPException(status_code=401, detail="Token inválido")

    result = await db.execute(select(User).where(User.id == sub))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=401, detail="Usuario no encontrado")

    if not user.is_active:
        raise HTTPException(status_code=403, detail="Usuario inactivo")

    return user

# --- 2FA ---
def get_two_factor_service(db: AsyncSession = Depends(get_db)) -> TwoFactorService:
    return TwoFactorService(
        SqlTwoFactorStore(db),
        issuer=settings.totp_issuer,
        recovery_code_count=settings.RECOVERY_CODE_COUNT,
    )

# --- AI assistant ---
# singleton: el cache de disponibilidad y la cuota de Groq se comparten entre requests
@lru_cache
def get_ai_coordinator() -> AiFallbackCoordinator:
    tables = load_locale(settings.AI_LOCALE, settings.AI_LOCALE_FILE)
    groq = GroqBackend(settings.groq_config(), language=tables.language)
    ollama = OllamaBackend(settings.ollama_config(), language=tables.language)
    return AiFallbackCoordinator(
        backends=[groq, ollama],
        analyzer=ResponseAnalyzer(tables),
        vision_order=[ollama.id, groq.id],   # ollama tiene modelos de visión
        availability=AvailabilityCache(ttl=settings.AI_AVAILABILITY_TTL),
        backend_timeout=settings.AI_BACKEND_TIMEOUT,
    )

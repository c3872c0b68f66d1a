import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from izamed.core.config import settings
from izamed.api.v1.auth import router as auth_router
from izamed.api.v1.ai_assistant import router as ai_assistant_router
from izamed.services.two_factor import CredentialNotFound

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title=f"{settings.APP_NAME} API", version="0.1.0")

# ajustá origins con la URL del frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(ai_assistant_router)


@app.exception_handler(CredentialNotFound)
async def credential_not_found(request: Request, exc: CredentialNotFound):
    return JSONResponse(status_code=404, content={"detail": "Usuario no encontrado"})


@app.get("/health")
async def health():
    return {"status": "ok"}

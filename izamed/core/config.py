# izamed/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

from izamed.services.ai.groq import GroqConfig
from izamed.services.ai.ollama import OllamaConfig


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore")

    APP_NAME: str = "IzaMed"
    LOG_LEVEL: str = "INFO"

    JWT_SECRET: str = Field("change-me")   # setealo en .env en prod
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # si viene DATABASE_URL gana sobre los DB_*
    DATABASE_URL: str | None = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_USER: str = "izamed"
    DB_PASSWORD: str = ""
    DB_NAME: str = "izamed"

    # --- 2FA ---
    TOTP_ISSUER: str | None = None     # default: APP_NAME
    RECOVERY_CODE_COUNT: int = 8

    # --- AI assistant ---
    GROQ_API_KEY: str = ""
    GROQ_BASE_URL: str = "https://api.groq.com/openai/v1"
    GROQ_DEFAULT_MODEL: str = "llama-3.1-70b-versatile"
    GROQ_TIMEOUT: int = 60
    GROQ_MAX_TOKENS: int = 2000
    GROQ_REQUESTS_PER_MINUTE: int = 30

    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_DEFAULT_MODEL: str = "llama3.1:8b"
    OLLAMA_TIMEOUT: int = 120
    OLLAMA_VISION_MODELS: list[str] = ["llava:latest", "bakllava:latest"]

    AI_LOCALE: str = "ro"
    AI_LOCALE_FILE: str | None = None   # JSON propio con las tablas de keywords
    AI_AVAILABILITY_TTL: int = 60
    AI_BACKEND_TIMEOUT: int = 300   # tope por backend, incluye imágenes

    MAX_UPLOAD_MB: int = 5

    @property
    def async_database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (f"mysql+aiomysql://{self.DB_USER}:{self.DB_PASSWORD}"
                f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}?charset=utf8mb4")

    @property
    def totp_issuer(self) -> str:
        return self.TOTP_ISSUER or self.APP_NAME

    def groq_config(self) -> GroqConfig:
        return GroqConfig(
            api_key=self.GROQ_API_KEY,
            base_url=self.GROQ_BASE_URL,
            model=self.GROQ_DEFAULT_MODEL,
            timeout=self.GROQ_TIMEOUT,
            max_tokens=self.GROQ_MAX_TOKENS,
            requests_per_minute=self.GROQ_REQUESTS_PER_MINUTE,
        )

    def ollama_config(self) -> OllamaConfig:
        return OllamaConfig(
            base_url=self.OLLAMA_BASE_URL,
            model=self.OLLAMA_DEFAULT_MODEL,
            timeout=self.OLLAMA_TIMEOUT,
            vision_models=self.OLLAMA_VISION_MODELS,
        )


settings = Settings()  # type: ignore[call-arg]

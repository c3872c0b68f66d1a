import enum
import uuid
from datetime import datetime
from sqlalchemy import String, Enum, Boolean, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column
from izamed.core.db import Base

class RoleEnum(str, enum.Enum):
    student = "student"
    doctor = "doctor"
    author = "author"
    admin = "admin"

class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    full_name: Mapped[str] = mapped_column(String(255))
    role: Mapped[RoleEnum] = mapped_column(Enum(RoleEnum), default=RoleEnum.student)
    hashed_password: Mapped[str] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # 2FA: secret + codes + confirmed_at se limpian siempre juntos
    twofa_secret: Mapped[str | None] = mapped_column(String(64), nullable=True)
    twofa_recovery_codes: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    twofa_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def two_factor_enabled(self) -> bool:
        # activo = secreto + confirmación; sólo secreto = pendiente
        return bool(self.twofa_secret and self.twofa_confirmed_at)

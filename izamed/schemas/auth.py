from datetime import datetime
from pydantic import BaseModel, EmailStr, Field
from enum import Enum

class Role(str, Enum):
    student = "student"
    doctor = "doctor"
    author = "author"
    admin = "admin"

class RegisterIn(BaseModel):
    full_name: str = Field(..., min_length=2)
    email: EmailStr
    password: str = Field(..., min_length=8)
    role: Role = Role.student

class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    otp: str | None = None   # <-- OTP o recovery code, requerido si 2FA activo

class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"

class UserOut(BaseModel):
    id: str
    full_name: str
    email: EmailStr
    role: Role
    is_active: bool
    two_factor_enabled: bool = False

    class Config:
        from_attributes = True

# --- 2FA ---
class TwoFactorCredential(BaseModel):
    secret: str | None = None
    confirmed_at: datetime | None = None
    recovery_codes: list[str] = Field(default_factory=list)

class TwoFASetupOut(BaseModel):
    secret: str
    otpauth_url: str
    qr_base64_png: str | None = None
    recovery_codes: list[str]

class TwoFAVerifyIn(BaseModel):
    otp: str = Field(..., min_length=1, max_length=32)

class TwoFADisableIn(BaseModel):
    otp: str | None = None

class RecoveryCodesOut(BaseModel):
    recovery_codes: list[str]

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from izamed.core.db import get_db
from izamed.core.security import hash_password, verify_password, create_access_token
from izamed.models.user import User, RoleEnum
from izamed.schemas.auth import (
    RegisterIn, LoginIn, TokenOut, UserOut,
    TwoFASetupOut, TwoFAVerifyIn, TwoFADisableIn, RecoveryCodesOut,
)
from izamed.api.deps import get_current_user, get_two_factor_service
from izamed.services.two_factor import TwoFactorService, qr_png_base64_from_text

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

@router.post("/register", response_model=UserOut, status_code=201)
async def register(payload: RegisterIn, db: AsyncSession = Depends(get_db)):
    exists = await db.execute(select(User).where(User.email == payload.email.lower()))
    if exists.scalar_one_or_none():
        raise HTTPException(status_code=400, detail="El email ya está registrado.")

    user = User(
        email=payload.email.lower(),
        full_name=payload.full_name,
        role=RoleEnum(payload.role.value),
        hashed_password=hash_password(payload.password),
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user

@router.post("/login", response_model=TokenOut)
async def login(
    payload: LoginIn,
    db: AsyncSession = Depends(get_db),
    twofa: TwoFactorService = Depends(get_two_factor_service),
):
    result = await db.execute(select(User).where(User.email == payload.email.lower()))
    user = result.scalar_one_or_none()
    if not user or not verify_password(payload.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Credenciales inválidas")

    if not user.is_active:
        raise HTTPException(status_code=403, detail="Usuario inactivo")

    # si 2FA está activo, requerimos OTP (o recovery code)
    if user.two_factor_enabled:
        if not payload.otp:
            raise HTTPException(status_code=401, detail="Se requiere OTP (2FA) para este usuario")
        if not await twofa.verify(user.id, payload.otp):
            raise HTTPException(status_code=401, detail="OTP inválido")

    token = create_access_token(subject=user.id, extra={"role": user.role.value})
    return TokenOut(access_token=token)

# ---------- 2FA FLOW ----------
@router.post("/2fa/setup", response_model=TwoFASetupOut)
async def twofa_setup(
    current_user: User = Depends(get_current_user),
    twofa: TwoFactorService = Depends(get_two_factor_service),
):
    if current_user.two_factor_enabled:
        raise HTTPException(status_code=400, detail="2FA ya está activo. Deshabilitalo primero.")

    # secreto nuevo: reemplaza cualquier secreto pendiente sin confirmar
    secret = await twofa.generate_secret(current_user.id)
    codes = await twofa.generate_recovery_codes(current_user.id)

    otpauth = twofa.build_enrollment_uri(current_user.email, secret)
    return TwoFASetupOut(
        secret=secret,
        otpauth_url=otpauth,
        qr_base64_png=qr_png_base64_from_text(otpauth),
        recovery_codes=codes,
    )

@router.post("/2fa/confirm")
async def twofa_confirm(
    body: TwoFAVerifyIn,
    current_user: User = Depends(get_current_user),
    twofa: TwoFactorService = Depends(get_two_factor_service),
):
    if not current_user.twofa_secret:
        raise HTTPException(status_code=400, detail="No hay secreto 2FA configurado. Ejecutá /auth/2fa/setup")
    if not await twofa.verify(current_user.id, body.otp):
        raise HTTPException(status_code=400, detail="OTP inválido")
    await twofa.confirm(current_user.id)
    logger.info("2FA enabled for user %s", current_user.id)
    return {"ok": True}

@router.post("/2fa/disable")
async def twofa_disable(
    body: TwoFADisableIn,
    current_user: User = Depends(get_current_user),
    twofa: TwoFactorService = Depends(get_two_factor_service),
):
    if current_user.two_factor_enabled:
        if not body.otp or not await twofa.verify(current_user.id, body.otp):
            raise HTTPException(status_code=400, detail="OTP inválido")

    # secreto, codes y confirmación se limpian juntos
    await twofa.disable(current_user.id)
    logger.info("2FA disabled for user %s", current_user.id)
    return {"ok": True}

@router.post("/2fa/recovery-codes", response_model=RecoveryCodesOut)
async def twofa_recovery_codes(
    body: TwoFAVerifyIn,
    current_user: User = Depends(get_current_user),
    twofa: TwoFactorService = Depends(get_two_factor_service),
):
    if not current_user.twofa_secret:
        raise HTTPException(status_code=400, detail="No hay secreto 2FA configurado. Ejecutá /auth/2fa/setup")
    if not await twofa.verify(current_user.id, body.otp):
        raise HTTPException(status_code=400, detail="OTP inválido")
    codes = await twofa.generate_recovery_codes(current_user.id)
    return RecoveryCodesOut(recovery_codes=codes)


@router.get("/me", response_model=UserOut)
async def me(current_user: User = Depends(get_current_user)):
    return current_user

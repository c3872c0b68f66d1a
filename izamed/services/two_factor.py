# izamed/services/two_factor.py
"""
TOTP (RFC 6238) + recovery codes.

- secret: 32 chars base32 (160 bits)
- codes: 6 digits, step 30s, HMAC-SHA1, +-1 step de tolerancia
- recovery codes: 10 chars A-Z0-9, uso único
"""
import base64
import logging
import secrets
import string
import time
from datetime import datetime, timezone
from io import BytesIO
from typing import Callable, Protocol
from urllib.parse import quote

import pyotp
from pyotp.utils import strings_equal

from izamed.schemas.auth import TwoFactorCredential

logger = logging.getLogger(__name__)

TOTP_DIGITS = 6
TOTP_PERIOD = 30
DRIFT_OFFSETS = (-TOTP_PERIOD, 0, TOTP_PERIOD)
RECOVERY_CODE_LENGTH = 10


class CredentialNotFound(LookupError):
    pass


class TwoFactorStore(Protocol):
    async def load(self, user_id: str) -> TwoFactorCredential: ...

    async def save(self, user_id: str, credential: TwoFactorCredential) -> None: ...


def gen_code(n: int = RECOVERY_CODE_LENGTH) -> str:
    alphabet = string.ascii_uppercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(n))


def totp_at(secret: str, for_time: float) -> str:
    return pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_PERIOD).at(int(for_time))


def totp_matches(secret: str, code: str, now: float) -> bool:
    """
    Chequea el código contra T-30, T y T+30.
    Nunca levanta excepción: un secreto corrupto simplemente no matchea.
    """
    if len(code) != TOTP_DIGITS or not code.isdigit():
        return False
    try:
        return any(
            strings_equal(totp_at(secret, now + offset), code)
            for offset in DRIFT_OFFSETS
        )
    except Exception:
        logger.warning("TOTP secret could not be decoded")
        return False


def is_enabled(credential: TwoFactorCredential) -> bool:
    return bool(credential.secret and credential.confirmed_at)


def qr_png_base64_from_text(text: str) -> str | None:
    # el QR es opcional: si qrcode/PIL fallan devolvemos None
    try:
        import qrcode
        img = qrcode.make(text)
        buf = BytesIO()
        img.save(buf, "PNG")
        return base64.b64encode(buf.getvalue()).decode("ascii")
    except Exception:
        logger.exception("QR rendering failed")
        return None


class TwoFactorService:
    def __init__(
        self,
        store: TwoFactorStore,
        issuer: str,
        recovery_code_count: int = 8,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.issuer = issuer
        self.recovery_code_count = recovery_code_count
        self.clock = clock

    async def generate_secret(self, user_id: str) -> str:
        """Genera y guarda un secreto nuevo; queda pendiente hasta confirm()."""
        secret = pyotp.random_base32(length=32)
        credential = await self.store.load(user_id)
        credential.secret = secret
        credential.confirmed_at = None
        await self.store.save(user_id, credential)
        return secret

    def build_enrollment_uri(self, account_label: str, secret: str) -> str:
        issuer = quote(self.issuer, safe="")
        label = quote(account_label, safe="")
        return (
            f"otpauth://totp/{issuer}:{label}?secret={secret}&issuer={issuer}"
            f"&algorithm=SHA1&digits={TOTP_DIGITS}&period={TOTP_PERIOD}"
        )

    async def generate_recovery_codes(self, user_id: str, count: int | None = None) -> list[str]:
        """Reemplaza (no agrega) los recovery codes guardados."""
        count = self.recovery_code_count if count is None else count
        codes: list[str] = []
        while len(codes) < count:
            code = gen_code()
            if code not in codes:
                codes.append(code)

        credential = await self.store.load(user_id)
        credential.recovery_codes = codes
        await self.store.save(user_id, credential)
        return codes

    async def verify(self, user_id: str, submitted_code: str) -> bool:
        credential = await self.store.load(user_id)
        code = (submitted_code or "").strip()

        if credential.secret and totp_matches(credential.secret, code, self.clock()):
            return True

        # fallback: recovery codes (alfanuméricos, no importa el shape)
        candidate = code.upper()
        if candidate and candidate in credential.recovery_codes:
            credential.recovery_codes = [c for c in credential.recovery_codes if c != candidate]
            await self.store.save(user_id, credential)
            logger.info("Recovery code consumed for user %s (%d left)",
                        user_id, len(credential.recovery_codes))
            return True

        return False

    async def confirm(self, user_id: str) -> None:
        credential = await self.store.load(user_id)
        credential.confirmed_at = datetime.now(tz=timezone.utc)
        await self.store.save(user_id, credential)

    async def disable(self, user_id: str) -> None:
        credential = await self.store.load(user_id)
        credential.secret = None
        credential.recovery_codes = []
        credential.confirmed_at = None
        await self.store.save(user_id, credential)

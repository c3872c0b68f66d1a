# izamed/services/two_factor_store.py
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from izamed.models.user import User
from izamed.schemas.auth import TwoFactorCredential
from izamed.services.two_factor import CredentialNotFound


class SqlTwoFactorStore:
    """
    Guarda la credencial 2FA en la fila del usuario.

    load() toma la fila con SELECT ... FOR UPDATE: el lock dura hasta el
    commit de save(), así dos requests no consumen el mismo recovery code.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _get_user(self, user_id: str) -> User:
        # populate_existing: el User ya cargado por la request (current_user,
        # login) se pisa con lo leído bajo el lock, no con su copia vieja
        res = await self.db.execute(
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        user = res.scalar_one_or_none()
        if not user:
            raise CredentialNotFound(user_id)
        return user

    async def load(self, user_id: str) -> TwoFactorCredential:
        user = await self._get_user(user_id)
        return TwoFactorCredential(
            secret=user.twofa_secret,
            confirmed_at=user.twofa_confirmed_at,
            recovery_codes=list(user.twofa_recovery_codes or []),
        )

    async def save(self, user_id: str, credential: TwoFactorCredential) -> None:
        user = await self._get_user(user_id)
        user.twofa_secret = credential.secret
        user.twofa_confirmed_at = credential.confirmed_at
        # lista nueva para que el JSON column detecte el cambio
        user.twofa_recovery_codes = list(credential.recovery_codes) or None
        await self.db.commit()

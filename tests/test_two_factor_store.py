import asyncio
from datetime import datetime, timezone

import pytest

from izamed.models.user import User
from izamed.schemas.auth import TwoFactorCredential
from izamed.services.two_factor import CredentialNotFound, TwoFactorService, totp_at
from izamed.services.two_factor_store import SqlTwoFactorStore

NOW = 1_700_000_000


async def _add_user(session_factory) -> str:
    async with session_factory() as db:
        user = User(email="ana@example.com", full_name="Ana Pop", hashed_password="x")
        db.add(user)
        await db.commit()
        return user.id


def test_new_user_has_empty_credential(session_factory):
    async def scenario():
        user_id = await _add_user(session_factory)
        async with session_factory() as db:
            return await SqlTwoFactorStore(db).load(user_id)

    cred = asyncio.run(scenario())
    assert cred.secret is None
    assert cred.confirmed_at is None
    assert cred.recovery_codes == []


def test_save_then_load_in_new_session(session_factory):
    confirmed = datetime(2024, 1, 1, tzinfo=timezone.utc)

    async def scenario():
        user_id = await _add_user(session_factory)
        async with session_factory() as db:
            await SqlTwoFactorStore(db).save(
                user_id,
                TwoFactorCredential(secret="JBSWY3DPEHPK3PXP", confirmed_at=confirmed,
                                    recovery_codes=["AAAAAAAAAA", "BBBBBBBBBB"]),
            )
        async with session_factory() as db:
            return await SqlTwoFactorStore(db).load(user_id)

    cred = asyncio.run(scenario())
    assert cred.secret == "JBSWY3DPEHPK3PXP"
    assert cred.confirmed_at is not None
    assert cred.recovery_codes == ["AAAAAAAAAA", "BBBBBBBBBB"]


def test_unknown_user_raises(session_factory):
    async def scenario():
        async with session_factory() as db:
            await SqlTwoFactorStore(db).load("missing-id")

    with pytest.raises(CredentialNotFound):
        asyncio.run(scenario())


def test_service_over_sql_store_consumes_recovery_code(session_factory):
    async def scenario():
        user_id = await _add_user(session_factory)
        async with session_factory() as db:
            svc = TwoFactorService(SqlTwoFactorStore(db), issuer="IzaMed", clock=lambda: NOW)
            secret = await svc.generate_secret(user_id)
            codes = await svc.generate_recovery_codes(user_id)
            await svc.confirm(user_id)
            totp_ok = await svc.verify(user_id, totp_at(secret, NOW))
            first = await svc.verify(user_id, codes[0])
            second = await svc.verify(user_id, codes[0])
        async with session_factory() as db:
            user = await db.get(User, user_id)
            return totp_ok, first, second, user, codes

    totp_ok, first, second, user, codes = asyncio.run(scenario())
    assert totp_ok and first and not second
    assert user.two_factor_enabled
    assert user.twofa_recovery_codes == codes[1:]


def test_recovery_code_not_reused_by_session_holding_stale_user(session_factory):
    async def scenario():
        user_id = await _add_user(session_factory)
        async with session_factory() as db:
            svc = TwoFactorService(SqlTwoFactorStore(db), issuer="IzaMed")
            codes = await svc.generate_recovery_codes(user_id)

        # como en los handlers: cada sesión ya tiene el User cargado
        async with session_factory() as db_a, session_factory() as db_b:
            await db_a.get(User, user_id)
            stale = await db_b.get(User, user_id)
            assert codes[0] in stale.twofa_recovery_codes

            svc_a = TwoFactorService(SqlTwoFactorStore(db_a), issuer="IzaMed")
            svc_b = TwoFactorService(SqlTwoFactorStore(db_b), issuer="IzaMed")
            first = await svc_a.verify(user_id, codes[0])
            second = await svc_b.verify(user_id, codes[0])
            return first, second, stale.twofa_recovery_codes, codes

    first, second, remaining, codes = asyncio.run(scenario())
    assert first is True
    assert second is False
    assert remaining == codes[1:]


def test_disable_clears_columns(session_factory):
    async def scenario():
        user_id = await _add_user(session_factory)
        async with session_factory() as db:
            svc = TwoFactorService(SqlTwoFactorStore(db), issuer="IzaMed")
            await svc.generate_secret(user_id)
            await svc.generate_recovery_codes(user_id)
            await svc.confirm(user_id)
            await svc.disable(user_id)
        async with session_factory() as db:
            return await db.get(User, user_id)

    user = asyncio.run(scenario())
    assert user.twofa_secret is None
    assert user.twofa_recovery_codes is None
    assert user.twofa_confirmed_at is None
    assert not user.two_factor_enabled

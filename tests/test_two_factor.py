import asyncio
import re

import pytest

from izamed.services.two_factor import (
    CredentialNotFound,
    TwoFactorService,
    gen_code,
    is_enabled,
    totp_at,
    totp_matches,
)

NOW = 1_700_000_000


def make_service(store, now=NOW, count=8):
    return TwoFactorService(store, issuer="IzaMed", recovery_code_count=count, clock=lambda: now)


def test_generate_secret_is_32_char_base32(store):
    svc = make_service(store)
    secret = asyncio.run(svc.generate_secret("u1"))

    assert re.fullmatch(r"[A-Z2-7]{32}", secret)
    cred = store.credentials["u1"]
    assert cred.secret == secret
    assert cred.confirmed_at is None
    assert not is_enabled(cred)


def test_current_code_verifies(store):
    svc = make_service(store)
    secret = asyncio.run(svc.generate_secret("u1"))

    assert asyncio.run(svc.verify("u1", totp_at(secret, NOW))) is True


@pytest.mark.parametrize("offset", [-30, 30])
def test_adjacent_step_is_accepted(store, offset):
    svc = make_service(store)
    secret = asyncio.run(svc.generate_secret("u1"))

    assert asyncio.run(svc.verify("u1", totp_at(secret, NOW + offset))) is True


@pytest.mark.parametrize("offset", [-60, 60, 90])
def test_code_two_steps_away_is_rejected(store, offset):
    svc = make_service(store)
    secret = asyncio.run(svc.generate_secret("u1"))
    code = totp_at(secret, NOW + offset)
    # puede coincidir por azar con la ventana válida (1 en 10^6)
    if any(code == totp_at(secret, NOW + o) for o in (-30, 0, 30)):
        pytest.skip("collision with a valid window")

    assert asyncio.run(svc.verify("u1", code)) is False


def test_code_with_surrounding_whitespace_verifies(store):
    svc = make_service(store)
    secret = asyncio.run(svc.generate_secret("u1"))

    assert asyncio.run(svc.verify("u1", f"  {totp_at(secret, NOW)}\n")) is True


@pytest.mark.parametrize("code", ["", "12345", "1234567", "12a456", "abcdef", "      "])
def test_malformed_codes_are_rejected(store, code):
    svc = make_service(store)
    asyncio.run(svc.generate_secret("u1"))

    assert asyncio.run(svc.verify("u1", code)) is False


def test_totp_matches_with_corrupt_secret_returns_false():
    assert totp_matches("not-base32!!", "123456", NOW) is False


def test_verify_without_secret_or_codes_is_false(store):
    svc = make_service(store)
    assert asyncio.run(svc.verify("u1", "123456")) is False


def test_unknown_user_raises_not_found(store):
    svc = make_service(store)
    with pytest.raises(CredentialNotFound):
        asyncio.run(svc.verify("nobody", "123456"))


def test_enrollment_uri_format():
    svc = TwoFactorService(store=None, issuer="IzaMed Clinic")
    uri = svc.build_enrollment_uri("ana@example.com", "JBSWY3DPEHPK3PXP")

    assert uri == (
        "otpauth://totp/IzaMed%20Clinic:ana%40example.com"
        "?secret=JBSWY3DPEHPK3PXP&issuer=IzaMed%20Clinic"
        "&algorithm=SHA1&digits=6&period=30"
    )


def test_recovery_codes_shape_and_count(store):
    svc = make_service(store, count=8)
    codes = asyncio.run(svc.generate_recovery_codes("u1"))

    assert len(codes) == 8
    assert len(set(codes)) == 8
    assert all(re.fullmatch(r"[A-Z0-9]{10}", c) for c in codes)
    assert store.credentials["u1"].recovery_codes == codes


def test_recovery_code_count_override(store):
    svc = make_service(store)
    assert len(asyncio.run(svc.generate_recovery_codes("u1", count=3))) == 3


def test_recovery_code_is_single_use(store):
    svc = make_service(store)
    codes = asyncio.run(svc.generate_recovery_codes("u1"))
    used = codes[2]

    assert asyncio.run(svc.verify("u1", used)) is True
    assert asyncio.run(svc.verify("u1", used)) is False
    remaining = store.credentials["u1"].recovery_codes
    assert used not in remaining
    assert len(remaining) == len(codes) - 1


def test_recovery_code_is_case_insensitive(store):
    svc = make_service(store)
    codes = asyncio.run(svc.generate_recovery_codes("u1"))

    assert asyncio.run(svc.verify("u1", codes[0].lower())) is True


def test_recovery_code_works_alongside_secret(store):
    svc = make_service(store)
    asyncio.run(svc.generate_secret("u1"))
    codes = asyncio.run(svc.generate_recovery_codes("u1"))

    assert asyncio.run(svc.verify("u1", codes[0])) is True


def test_new_batch_replaces_old_codes(store):
    svc = make_service(store)
    old = asyncio.run(svc.generate_recovery_codes("u1"))
    new = asyncio.run(svc.generate_recovery_codes("u1"))

    assert store.credentials["u1"].recovery_codes == new
    for code in set(old) - set(new):
        assert asyncio.run(svc.verify("u1", code)) is False


def test_confirm_enables(store):
    svc = make_service(store)
    asyncio.run(svc.generate_secret("u1"))
    asyncio.run(svc.confirm("u1"))

    assert is_enabled(store.credentials["u1"])


def test_regenerating_secret_resets_confirmation(store):
    svc = make_service(store)
    asyncio.run(svc.generate_secret("u1"))
    asyncio.run(svc.confirm("u1"))
    asyncio.run(svc.generate_secret("u1"))

    assert not is_enabled(store.credentials["u1"])


def test_disable_clears_everything_in_one_save(store):
    svc = make_service(store)
    secret = asyncio.run(svc.generate_secret("u1"))
    codes = asyncio.run(svc.generate_recovery_codes("u1"))
    asyncio.run(svc.confirm("u1"))
    saves_before = store.saves

    asyncio.run(svc.disable("u1"))

    assert store.saves == saves_before + 1
    cred = store.credentials["u1"]
    assert cred.secret is None
    assert cred.recovery_codes == []
    assert cred.confirmed_at is None
    assert asyncio.run(svc.verify("u1", totp_at(secret, NOW))) is False
    assert asyncio.run(svc.verify("u1", codes[0])) is False


def test_gen_code_alphabet():
    code = gen_code(40)
    assert len(code) == 40
    assert re.fullmatch(r"[A-Z0-9]+", code)


# RFC 6238 apéndice B, SHA1: secreto ASCII "12345678901234567890" en base32.
# El vector de 8 dígitos para T=59 es 94287082; con 6 dígitos, 287082.
RFC_SECRET = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"


def test_rfc6238_known_answer():
    assert totp_at(RFC_SECRET, 59) == "287082"
    assert totp_matches(RFC_SECRET, "287082", 59) is True


def test_rfc6238_known_answer_through_service(store):
    store.credentials["u1"].secret = RFC_SECRET
    svc = make_service(store, now=59)

    assert asyncio.run(svc.verify("u1", "287082")) is True
    # el vector de 8 dígitos no es un código válido para esta configuración
    assert asyncio.run(svc.verify("u1", "94287082")) is False

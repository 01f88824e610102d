"""Tests for the TOTP engine: code computation, drift window, replay, URIs."""

import re

import pytest

from backend.app.core.errors import InvalidConfigurationError, NotEnrolledError
from backend.app.security.totp import (
    DEFAULT_SECRET_LENGTH,
    SECRET_REGEX,
    TotpEngine,
    generate_qr_code_base64,
    generate_secret,
)

TEST_SECRET = "JDDK4U6G3BJLEZ7Y"
EPOCH = 319690800
VALID_OTP = "762124"
INVALID_OTP = "621254"
# Codes for the steps either side of EPOCH's step
PREVIOUS_OTP = "197915"
NEXT_OTP = "244854"

# RFC 6238 Appendix B seeds, base32 encoded
RFC_SHA1 = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"
RFC_SHA256 = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQGEZA"
RFC_SHA512 = (
    "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"
    "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQGEZDGNA"
)


def make_engine(**kwargs) -> TotpEngine:
    kwargs.setdefault("secret", TEST_SECRET)
    return TotpEngine(**kwargs)


class TestSecretGeneration:

    def test_create_defaults(self):
        engine = TotpEngine.create()
        assert engine.digest == "sha1"
        assert engine.digits == 6
        assert engine.period == 30
        assert engine.leeway == 2
        assert engine.last_code == ""
        assert len(engine.secret) == DEFAULT_SECRET_LENGTH
        assert SECRET_REGEX.fullmatch(engine.secret)

    @pytest.mark.parametrize("length", [16, 32, 64])
    def test_secret_length(self, length):
        secret = generate_secret(length)
        assert len(secret) == length
        assert re.fullmatch(r"[A-Z2-7]+", secret)

    def test_secrets_are_random(self):
        assert generate_secret(32) != generate_secret(32)

    @pytest.mark.parametrize("length", [0, -8, 12])
    def test_invalid_secret_length(self, length):
        with pytest.raises(InvalidConfigurationError):
            generate_secret(length)


class TestParameters:

    @pytest.mark.parametrize("kwargs", [
        {"digest": "md5"},
        {"digits": 5},
        {"digits": 11},
        {"period": 0},
        {"leeway": -1},
        {"leeway": 30},
        {"period": 10, "leeway": 15},
    ])
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(InvalidConfigurationError):
            TotpEngine(**kwargs)

    def test_invalid_configuration_is_value_error(self):
        with pytest.raises(ValueError):
            TotpEngine(leeway=30)

    @pytest.mark.parametrize("secret", ["JDDK4U6G3BJLEZ01", "JDDK4U6G3BJLEZ89", "jddk4u6g3bjlez7y", ""])
    def test_non_base32_secret_rejected(self, secret):
        with pytest.raises(InvalidConfigurationError):
            TotpEngine(secret=secret)


class TestCodes:

    def test_code_at_epoch(self):
        assert make_engine().at(EPOCH) == VALID_OTP

    def test_adjacent_codes(self):
        engine = make_engine()
        assert engine.at(EPOCH - 1) == PREVIOUS_OTP
        assert engine.at(EPOCH + 30) == NEXT_OTP

    @pytest.mark.parametrize("digest,secret,for_time,expected", [
        ("sha1", RFC_SHA1, 59, "94287082"),
        ("sha1", RFC_SHA1, 1111111109, "07081804"),
        ("sha256", RFC_SHA256, 59, "46119246"),
        ("sha256", RFC_SHA256, 1111111109, "68084774"),
        ("sha512", RFC_SHA512, 59, "90693936"),
        ("sha512", RFC_SHA512, 1111111109, "25091201"),
    ])
    def test_rfc6238_vectors(self, digest, secret, for_time, expected):
        engine = TotpEngine(digest=digest, digits=8, secret=secret)
        assert engine.at(for_time) == expected
        assert engine.verify(expected, for_time)

    def test_zero_padded(self):
        engine = TotpEngine(digits=8, secret=RFC_SHA1)
        code = engine.at(1111111109)
        assert code.startswith("0")
        assert len(code) == 8


class TestVerify:

    def test_verify_once(self):
        engine = make_engine()
        assert engine.verify(INVALID_OTP, EPOCH) is False
        assert engine.verify(VALID_OTP, EPOCH) is True
        # Same code can not be valid twice
        assert engine.verify(VALID_OTP, EPOCH) is False
        assert engine.last_code == VALID_OTP

    def test_failed_verify_keeps_last_code(self):
        engine = make_engine(last_code="000000")
        assert engine.verify(INVALID_OTP, EPOCH) is False
        assert engine.last_code == "000000"

    def test_replay_blocked_in_later_window(self):
        engine = make_engine()
        assert engine.verify(PREVIOUS_OTP, EPOCH)
        # EPOCH - 1 is still inside the previous step, so only last_code blocks it
        assert engine.verify(PREVIOUS_OTP, EPOCH - 1) is False

    def test_new_code_replaces_last_code(self):
        engine = make_engine()
        assert engine.verify(PREVIOUS_OTP, EPOCH)
        assert engine.verify(VALID_OTP, EPOCH)
        assert engine.last_code == VALID_OTP

    def test_previous_step_within_leeway(self):
        # EPOCH is a step boundary; EPOCH - 2 falls in the previous step
        assert make_engine().verify(PREVIOUS_OTP, EPOCH)
        assert make_engine().verify(PREVIOUS_OTP, EPOCH + 1)

    def test_next_step_within_leeway(self):
        assert make_engine().verify(NEXT_OTP, EPOCH + 28)
        assert make_engine().verify(NEXT_OTP, EPOCH + 29)

    def test_outside_leeway(self):
        assert make_engine().verify(PREVIOUS_OTP, EPOCH + 3) is False
        assert make_engine().verify(NEXT_OTP, EPOCH + 27) is False
        assert make_engine().verify(VALID_OTP, EPOCH + 32) is False
        assert make_engine().verify(VALID_OTP, EPOCH - 3) is False

    def test_zero_leeway(self):
        engine = make_engine(leeway=0)
        assert engine.verify(PREVIOUS_OTP, EPOCH) is False
        assert engine.verify(VALID_OTP, EPOCH)

    def test_wrong_length_code(self):
        assert make_engine().verify(VALID_OTP[:5], EPOCH) is False
        assert make_engine().verify("", EPOCH) is False

    def test_not_enrolled(self):
        engine = TotpEngine()
        with pytest.raises(NotEnrolledError):
            engine.verify(VALID_OTP, EPOCH)
        with pytest.raises(NotEnrolledError):
            engine.at(EPOCH)


class TestProvisioningUri:

    @pytest.mark.parametrize("label,issuer,params,pattern", [
        (
            "Totp Label", None, {},
            r"otpauth://totp/Totp%20Label\?secret=[A-Z2-7]{48}",
        ),
        (
            "Totp Label", "Totp Issuer", {},
            r"otpauth://totp/Totp%20Issuer%3ATotp%20Label"
            r"\?issuer=Totp%20Issuer&secret=[A-Z2-7]{48}",
        ),
        (
            "Totp Label", None, {"p1": "v1", "p2": "v2"},
            r"otpauth://totp/Totp%20Label\?p1=v1&p2=v2&secret=[A-Z2-7]{48}",
        ),
        (
            "Totp Label", "Totp Issuer", {"p2": "v2", "p1": "v1"},
            r"otpauth://totp/Totp%20Issuer%3ATotp%20Label"
            r"\?issuer=Totp%20Issuer&p1=v1&p2=v2&secret=[A-Z2-7]{48}",
        ),
    ])
    def test_provisioning_uri(self, label, issuer, params, pattern):
        engine = TotpEngine.create()
        assert re.fullmatch(pattern, engine.provisioning_uri(label, issuer, params))

    def test_non_default_parameters(self):
        engine = TotpEngine(digest="sha256", digits=8, period=60, secret=TEST_SECRET)
        assert engine.provisioning_uri("alice@example.com") == (
            "otpauth://totp/alice%40example.com"
            "?algorithm=SHA256&digits=8&period=60&secret=" + TEST_SECRET
        )

    def test_parameter_values_are_encoded(self):
        engine = make_engine()
        uri = engine.provisioning_uri("a", parameters={"image": "https://x.test/a b.png"})
        assert "image=https%3A%2F%2Fx.test%2Fa%20b.png" in uri

    def test_colon_rejected(self):
        with pytest.raises(ValueError):
            make_engine().provisioning_uri("bad:label")
        with pytest.raises(ValueError):
            make_engine().provisioning_uri("label", "bad:issuer")

    def test_reserved_parameters_ignored(self):
        engine = make_engine()
        uri = engine.provisioning_uri("a", parameters={
            "algorithm": "SHA256",
            "digits": "8",
            "period": "60",
            "secret": "AAAAAAAAAAAAAAAA",
            "issuer": "Other",
            "image": "x",
        })
        assert uri == f"otpauth://totp/a?image=x&secret={TEST_SECRET}"

    def test_not_enrolled(self):
        with pytest.raises(NotEnrolledError):
            TotpEngine().provisioning_uri("Totp Label")


def test_qr_code_data_uri():
    uri = make_engine().provisioning_uri("Totp Label", "Totp Issuer")
    qr = generate_qr_code_base64(uri)
    assert qr.startswith("data:image/png;base64,")
    assert len(qr) > len("data:image/png;base64,") + 100

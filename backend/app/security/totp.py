# backend/app/security/totp.py
"""
TOTP (Time-based One-Time Password) engine
RFC 6238 compliant - Compatible with Google Authenticator, Authy, Aegis

Key points:
- HMAC-SHA1 / SHA256 / SHA512
- 6 to 10 digit codes, configurable time step
- Leeway (seconds) for clock drift between client and server
- Replay protection: the last accepted code is never accepted again

The engine is a plain value. It never touches the database; the
account store rebuilds it from a stored record on every call.
"""
import base64
import hashlib
import io
import re
import secrets
from dataclasses import dataclass
from typing import Dict, List, Optional
from urllib.parse import quote

import pyotp
import qrcode
from pyotp.utils import strings_equal

from backend.app.core.errors import (
    GenerationError,
    InvalidConfigurationError,
    NotEnrolledError,
)

# Only digits and uppercase letters
SECRET_REGEX = re.compile(r"^[0-9A-Z]+$")

# RFC 4648 base32 alphabet, a subset of SECRET_REGEX that authenticators can decode
BASE32_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"

# Secrets the engine accepts; pyotp base32-decodes them
BASE32_SECRET_REGEX = re.compile(r"^[A-Z2-7]+$")

# Set from the engine itself, never from caller parameters
RESERVED_URI_PARAMETERS = frozenset({"secret", "issuer", "algorithm", "digits", "period"})

DIGESTS = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
    "sha512": hashlib.sha512,
}

DEFAULT_DIGEST = "sha1"
DEFAULT_DIGITS = 6
DEFAULT_PERIOD = 30
DEFAULT_LEEWAY = 2
DEFAULT_SECRET_LENGTH = 48

MIN_DIGITS = 6
MAX_DIGITS = 10

MAX_GENERATION_ATTEMPTS = 100


def validate_parameters(digest: str, digits: int, period: int, leeway: int) -> None:
    """
    Reject parameter combinations the engine cannot honour.

    Raises:
        InvalidConfigurationError: on the first invalid value
    """
    if digest not in DIGESTS:
        raise InvalidConfigurationError(
            f"Unsupported digest '{digest}'. Expected one of: {', '.join(DIGESTS)}"
        )
    if not MIN_DIGITS <= digits <= MAX_DIGITS:
        raise InvalidConfigurationError(
            f"digits must be between {MIN_DIGITS} and {MAX_DIGITS}, got {digits}"
        )
    if period <= 0:
        raise InvalidConfigurationError(f"period must be positive, got {period}")
    if leeway < 0 or leeway >= period:
        raise InvalidConfigurationError(
            f"leeway must be >= 0 and strictly less than period ({period}), got {leeway}"
        )


def generate_secret(length: int) -> str:
    """
    Generate a random secret of exactly `length` characters.

    Candidates not matching SECRET_REGEX are discarded and regenerated.
    """
    if length <= 0 or length % 8:
        raise InvalidConfigurationError(
            f"secret length must be a positive multiple of 8, got {length}"
        )

    # BASE32_ALPHABET is a subset of SECRET_REGEX, so the check below only guards a changed alphabet
    for _ in range(MAX_GENERATION_ATTEMPTS):
        candidate = "".join(secrets.choice(BASE32_ALPHABET) for _ in range(length))
        if SECRET_REGEX.fullmatch(candidate):
            return candidate

    raise GenerationError(
        f"Could not generate a valid secret after {MAX_GENERATION_ATTEMPTS} attempts"
    )


@dataclass
class TotpEngine:
    """
    TOTP parameters plus the (possibly absent) secret and the last
    accepted code.

    Usage:
        engine = TotpEngine.create(secret_length=48)
        uri = engine.provisioning_uri("alice@example.com", "Example")
        engine.verify("123456", time.time())
    """
    digest: str = DEFAULT_DIGEST
    digits: int = DEFAULT_DIGITS
    period: int = DEFAULT_PERIOD
    leeway: int = DEFAULT_LEEWAY
    secret: Optional[str] = None
    last_code: str = ""

    def __post_init__(self) -> None:
        validate_parameters(self.digest, self.digits, self.period, self.leeway)
        if self.secret is not None and not BASE32_SECRET_REGEX.fullmatch(self.secret):
            raise InvalidConfigurationError("secret must only contain base32 characters A-Z and 2-7")

    @classmethod
    def create(
        cls,
        secret_length: int = DEFAULT_SECRET_LENGTH,
        digest: str = DEFAULT_DIGEST,
        digits: int = DEFAULT_DIGITS,
        period: int = DEFAULT_PERIOD,
        leeway: int = DEFAULT_LEEWAY,
    ) -> "TotpEngine":
        """Build an engine with a freshly generated secret."""
        return cls(
            digest=digest,
            digits=digits,
            period=period,
            leeway=leeway,
            secret=generate_secret(secret_length),
        )

    def provisioning_uri(
        self,
        label: str,
        issuer: Optional[str] = None,
        parameters: Optional[Dict[str, str]] = None,
    ) -> str:
        """
        Generate the otpauth:// URI for QR code encoding.

        Format: otpauth://totp/{issuer}:{label}?{query}

        Query parameters are sorted by name: caller parameters, issuer,
        secret, plus algorithm/digits/period when they differ from the
        authenticator defaults (sha1, 6, 30). Caller parameters cannot
        override the engine's own secret, issuer, algorithm, digits or period.
        """
        secret = self._require_secret()

        if ":" in label or (issuer is not None and ":" in issuer):
            raise ValueError("label and issuer must not contain ':'")

        query: Dict[str, str] = {
            key: value
            for key, value in (parameters or {}).items()
            if key not in RESERVED_URI_PARAMETERS
        }
        query["secret"] = secret
        if issuer is not None:
            query["issuer"] = issuer
        if self.digest != DEFAULT_DIGEST:
            query["algorithm"] = self.digest.upper()
        if self.digits != DEFAULT_DIGITS:
            query["digits"] = str(self.digits)
        if self.period != DEFAULT_PERIOD:
            query["period"] = str(self.period)

        path = label if issuer is None else f"{issuer}:{label}"
        encoded = "&".join(
            f"{quote(str(key), safe='')}={quote(str(value), safe='')}"
            for key, value in sorted(query.items())
        )

        return f"otpauth://totp/{quote(path, safe='')}?{encoded}"

    def at(self, for_time: float) -> str:
        """Code for the time step containing `for_time` (unix seconds)."""
        return self._hotp().at(self._counter(for_time))

    def verify(self, code: str, for_time: float) -> bool:
        """
        Verify a code at `for_time` (unix seconds).

        The current step and the steps containing for_time +/- leeway are
        checked. Returns False without touching state for the last accepted
        code or a code matching none of the candidate steps.
        """
        self._require_secret()

        if code == self.last_code:
            return False

        hotp = self._hotp()
        for counter in self._candidate_counters(for_time):
            if strings_equal(code, hotp.at(counter)):
                self.last_code = code
                return True

        return False

    def _candidate_counters(self, for_time: float) -> List[int]:
        now = int(for_time)
        counters: List[int] = []
        for timestamp in (now - self.leeway, now, now + self.leeway):
            counter = self._counter(max(0, timestamp))
            if counter not in counters:
                counters.append(counter)
        return counters

    def _counter(self, for_time: float) -> int:
        return int(for_time) // self.period

    def _hotp(self) -> pyotp.HOTP:
        return pyotp.HOTP(
            self._require_secret(),
            digits=self.digits,
            digest=DIGESTS[self.digest],
        )

    def _require_secret(self) -> str:
        if self.secret is None:
            raise NotEnrolledError("OTP not enabled")
        return self.secret


def generate_qr_code_base64(uri: str) -> str:
    """
    Generate a QR code image for a provisioning URI.

    Returns a data URI the frontend can use directly:
        <img src="{result}">
    """
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(uri)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")

    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("utf-8")

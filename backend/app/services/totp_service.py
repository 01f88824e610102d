# backend/app/services/totp_service.py
"""
TOTP account store.

Maps a user id to its encrypted TOTP record and its backup code hashes,
and runs the enroll / verify / backup code / disable flows.

Security:
- Secrets are decrypted only for the duration of a single call
- Verification failures (wrong code, replay, not enrolled) all look
  the same to the caller: False
- Verify paths lock the rows they read (SELECT ... FOR UPDATE) so a
  backup code cannot be consumed twice and a replay cannot race the
  last_code update on backends with row locking
"""
import logging
import re
import secrets
import string
import time
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import Settings, settings as default_settings
from backend.app.core.errors import (
    DecryptionError,
    GenerationError,
    InvalidConfigurationError,
    NotEnrolledError,
)
from backend.app.models.backup_code import BackupCode
from backend.app.models.totp import Totp
from backend.app.security.crypt import Crypt
from backend.app.security.hashing import CodeHasher
from backend.app.security.totp import MAX_GENERATION_ATTEMPTS, TotpEngine

logger = logging.getLogger(__name__)

# Numeric OTP codes: digits only
OTP_CODE_REGEX = re.compile(r"^\d+$", re.ASCII)

# Backup codes: at least one digit, one lowercase and one uppercase letter;
# no underscore, no other non-word character, no space.
# Always contains letters, so it never overlaps OTP_CODE_REGEX.
BACKUP_CODE_REGEX = re.compile(
    r"^(?=.*[0-9])(?=.*[a-z])(?=.*[A-Z])(?!.*_)(?!.*\W)(?!.* ).+$",
    re.ASCII,
)

BACKUP_CODE_ALPHABET = string.ascii_letters + string.digits

Clock = Callable[[], float]


class TotpService:
    """
    Usage:
        async with AsyncSessionLocal() as db:
            service = TotpService(db)
            uri, secret = await service.enroll(user_id, "alice@example.com", "Example")
            ...
            ok = await service.verify(submitted_code, user_id)
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings = default_settings,
        clock: Clock = time.time,
        crypt: Optional[Crypt] = None,
        hasher: Optional[CodeHasher] = None,
    ):
        if settings.BACKUP_CODE_COUNT <= 0 or settings.BACKUP_CODE_LENGTH <= 0:
            raise InvalidConfigurationError("Backup code count and length must be positive")

        self.session = session
        self.settings = settings
        self.clock = clock
        self.crypt = crypt or Crypt(
            cipher=settings.CRYPT_CIPHER,
            iterations=settings.CRYPT_ITERATIONS,
            kdf_algorithm=settings.CRYPT_KDF_ALGORITHM,
            authorization_key_info=settings.CRYPT_AUTHORIZATION_KEY_INFO,
        )
        self.hasher = hasher or CodeHasher([settings.BACKUP_CODE_HASH_SCHEME])

        if settings.is_production and settings.uses_insecure_crypt_key:
            logger.warning("CRYPT_KEY is the development default; stored TOTP secrets are not protected")

    # ─────────────────────────────────────────────────────────────
    # Enrollment
    # ─────────────────────────────────────────────────────────────

    async def is_enrolled(self, user_id: int) -> bool:
        result = await self.session.execute(
            select(Totp.user_id).where(Totp.user_id == user_id)
        )
        return result.scalar_one_or_none() is not None

    async def enroll(
        self,
        user_id: int,
        label: str,
        issuer: Optional[str] = None,
        parameters: Optional[Dict[str, str]] = None,
    ) -> Tuple[str, str]:
        """
        Create a fresh secret for the user, replacing any previous one.

        The caller must still confirm the user can produce a valid code
        before treating 2FA as active.

        Returns:
            (provisioning URI, plaintext secret) for QR rendering / manual entry
        """
        engine = TotpEngine.create(
            secret_length=self.settings.TOTP_SECRET_LENGTH,
            digest=self.settings.TOTP_DIGEST,
            digits=self.settings.TOTP_DIGITS,
            period=self.settings.TOTP_PERIOD,
            leeway=self.settings.TOTP_LEEWAY,
        )
        uri = engine.provisioning_uri(label, issuer, parameters)

        await self.save_totp(engine, user_id)
        logger.info(f"TOTP enrolled for user {user_id}")

        return uri, engine.secret

    async def get_provisioning_uri(
        self,
        user_id: int,
        label: str,
        issuer: Optional[str] = None,
        parameters: Optional[Dict[str, str]] = None,
    ) -> str:
        """
        Provisioning URI for an existing enrollment.

        Raises:
            NotEnrolledError: user has no TOTP record
        """
        engine = await self.get_totp(user_id)
        if engine is None:
            raise NotEnrolledError(f"User {user_id} is not enrolled")
        return engine.provisioning_uri(label, issuer, parameters)

    async def get_totp(self, user_id: int) -> Optional[TotpEngine]:
        record = await self._get_record(user_id)
        return None if record is None else self._hydrate(record)

    async def save_totp(self, engine: TotpEngine, user_id: int) -> None:
        """Encrypt the engine's secret and upsert the user's record."""
        if engine.secret is None:
            raise NotEnrolledError("OTP not enabled")

        await self.session.merge(
            Totp(
                user_id=user_id,
                secret=self.crypt.encrypt_by_key(engine.secret, self.settings.CRYPT_KEY, str(user_id)),
                digest=engine.digest,
                digits=engine.digits,
                leeway=engine.leeway,
                period=engine.period,
                last_code=engine.last_code,
            )
        )
        await self.session.commit()

    async def disable(self, user_id: int) -> None:
        """Remove the TOTP record and all backup codes. No-op if not enrolled."""
        await self.session.execute(delete(Totp).where(Totp.user_id == user_id))
        await self.session.execute(delete(BackupCode).where(BackupCode.user_id == user_id))
        await self.session.commit()
        logger.info(f"TOTP disabled for user {user_id}")

    # ─────────────────────────────────────────────────────────────
    # Backup codes
    # ─────────────────────────────────────────────────────────────

    async def count_backup_codes(self, user_id: int) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(BackupCode).where(BackupCode.user_id == user_id)
        )
        return result.scalar_one()

    async def generate_backup_codes(self, user_id: int) -> List[str]:
        """
        Replace the user's backup codes with a new batch.

        The plaintext codes are returned once and cannot be retrieved again.
        Previously issued codes stop working.
        """
        count = self.settings.BACKUP_CODE_COUNT
        codes: List[str] = []
        for _ in range(MAX_GENERATION_ATTEMPTS * count):
            code = self._generate_backup_code()
            if code not in codes:
                codes.append(code)
            if len(codes) == count:
                break
        else:
            raise GenerationError(f"Could not generate {count} distinct backup codes")

        await self.session.execute(delete(BackupCode).where(BackupCode.user_id == user_id))
        self.session.add_all(
            [BackupCode(user_id=user_id, code=self.hasher.hash(code)) for code in codes]
        )
        await self.session.commit()
        logger.info(f"Generated {len(codes)} backup codes for user {user_id}")

        return codes

    def _generate_backup_code(self) -> str:
        length = self.settings.BACKUP_CODE_LENGTH
        for _ in range(MAX_GENERATION_ATTEMPTS):
            candidate = "".join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(length))
            if BACKUP_CODE_REGEX.fullmatch(candidate):
                return candidate

        raise GenerationError(
            f"Could not generate a valid backup code after {MAX_GENERATION_ATTEMPTS} attempts"
        )

    # ─────────────────────────────────────────────────────────────
    # Verification
    # ─────────────────────────────────────────────────────────────

    async def verify(self, code: str, user_id: int) -> bool:
        """
        Verify a submitted TOTP or backup code.

        Backup-code-shaped input is checked against the stored hashes
        and consumed on success. Anything else is treated as a TOTP code.

        Raises:
            DecryptionError: the stored secret could not be decrypted
            InvalidConfigurationError: the stored record holds a non-base32
                secret or unsupported parameters
        """
        if BACKUP_CODE_REGEX.fullmatch(code):
            return await self._verify_backup_code(code, user_id)

        if OTP_CODE_REGEX.fullmatch(code):
            return await self._verify_otp(code, user_id)

        return False

    async def _verify_otp(self, code: str, user_id: int) -> bool:
        record = await self._get_record(user_id, for_update=True)
        if record is None:
            await self.session.rollback()
            return False

        try:
            engine = self._hydrate(record)
        except DecryptionError:
            await self.session.rollback()
            logger.error(f"Stored TOTP secret for user {user_id} failed to decrypt")
            raise
        except InvalidConfigurationError:
            await self.session.rollback()
            logger.error(f"Stored TOTP record for user {user_id} is not usable")
            raise

        if not engine.verify(code, self.clock()):
            await self.session.rollback()
            return False

        record.last_code = engine.last_code
        await self.session.commit()
        return True

    async def _verify_backup_code(self, code: str, user_id: int) -> bool:
        result = await self.session.execute(
            select(BackupCode)
            .where(BackupCode.user_id == user_id)
            .order_by(BackupCode.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )

        for backup_code in result.scalars().all():
            if self.hasher.verify(code, backup_code.code):
                await self.session.delete(backup_code)
                await self.session.commit()
                logger.info(f"Backup code used by user {user_id}")
                return True

        await self.session.rollback()
        return False

    # ─────────────────────────────────────────────────────────────
    # Record <-> engine
    # ─────────────────────────────────────────────────────────────

    async def _get_record(self, user_id: int, for_update: bool = False) -> Optional[Totp]:
        query = select(Totp).where(Totp.user_id == user_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalars().first()

    def _hydrate(self, record: Totp) -> TotpEngine:
        secret = self.crypt.decrypt_by_key(
            record.secret,
            self.settings.CRYPT_KEY,
            str(record.user_id),
        )
        return TotpEngine(
            digest=record.digest,
            digits=record.digits,
            period=record.period,
            leeway=record.leeway,
            secret=secret.decode("utf-8"),
            last_code=record.last_code,
        )

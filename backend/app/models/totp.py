# backend/app/models/totp.py
"""
ORM model for a user's TOTP enrollment.

Security: the secret column holds ciphertext only (see security/crypt.py).
The plaintext secret is never persisted.
"""
from sqlalchemy import Column, Integer, String, LargeBinary

from backend.app.core.config import settings
from backend.app.db.base import Base
from backend.app.security.totp import MAX_DIGITS


class Totp(Base):
    """
    One row per enrolled user. Re-enrollment overwrites the row;
    disabling 2FA deletes it.
    """
    __tablename__ = settings.TOTP_TABLE

    user_id = Column(Integer, primary_key=True, autoincrement=False)

    # salt || HMAC tag || IV || AES-CBC ciphertext, bound to user_id
    secret = Column(LargeBinary, nullable=False)

    # TOTP parameters, stored per user so a config change
    # does not break existing authenticator entries
    digest = Column(String(255), nullable=False)
    digits = Column(Integer, nullable=False)
    leeway = Column(Integer, nullable=False)
    period = Column(Integer, nullable=False)

    # Last accepted code, empty until the first successful verification
    last_code = Column(String(MAX_DIGITS), nullable=False, default="")

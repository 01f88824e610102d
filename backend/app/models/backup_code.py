# backend/app/models/backup_code.py
"""
ORM model for single-use backup codes.

Security: only a salted one-way hash is stored. The plaintext code is
shown to the user once, at generation time.
"""
from sqlalchemy import Column, Integer, String

from backend.app.core.config import settings
from backend.app.db.base import Base


class BackupCode(Base):
    __tablename__ = settings.BACKUP_CODE_TABLE

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Refers to the user, not to the totp row: codes may outlive an enrollment
    user_id = Column(Integer, nullable=False, index=True)

    # Self-describing hash (scheme, salt, rounds)
    code = Column(String(255), nullable=False)

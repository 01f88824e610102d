# backend/app/api/deps.py
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.base import get_db
from backend.app.services.totp_service import TotpService


async def get_totp_service(db: AsyncSession = Depends(get_db)) -> TotpService:
    return TotpService(db)

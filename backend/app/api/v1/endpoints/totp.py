# backend/app/api/v1/endpoints/totp.py
"""
API endpoints for TOTP two-factor authentication.

Endpoints:
- GET    /totp/{user_id}              - Enrollment status and remaining backup codes
- POST   /totp/{user_id}/enroll       - Create (or replace) the user's TOTP secret
- GET    /totp/{user_id}/provisioning-uri - Re-issue the URI / QR code
- POST   /totp/{user_id}/verify       - Verify a TOTP or backup code
- POST   /totp/{user_id}/backup-codes - Regenerate backup codes
- DELETE /totp/{user_id}              - Disable 2FA for the user

This is an internal API: the calling identity service has already
authenticated the user and passes its id in the path.

Security:
- Verification failures are indistinguishable (verified=false)
- Secrets and backup codes are returned only at generation time
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from backend.app.api import deps
from backend.app.core.errors import (
    DecryptionError,
    GenerationError,
    InvalidConfigurationError,
    NotEnrolledError,
)
from backend.app.schemas.totp import (
    BackupCodesResponse,
    TotpDisableResponse,
    TotpEnrollRequest,
    TotpEnrollResponse,
    TotpProvisioningResponse,
    TotpStatusResponse,
    TotpVerifyRequest,
    TotpVerifyResponse,
)
from backend.app.security.totp import generate_qr_code_base64
from backend.app.services.totp_service import TotpService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{user_id}", response_model=TotpStatusResponse)
async def get_totp_status(
    user_id: int,
    service: TotpService = Depends(deps.get_totp_service)
):
    return TotpStatusResponse(
        enrolled=await service.is_enrolled(user_id),
        backup_codes_remaining=await service.count_backup_codes(user_id),
    )


@router.post("/{user_id}/enroll", response_model=TotpEnrollResponse)
async def enroll_totp(
    user_id: int,
    request: TotpEnrollRequest,
    service: TotpService = Depends(deps.get_totp_service)
):
    """
    Enroll the user and return what the authenticator app needs.

    The caller should ask the user for a valid code (POST /verify)
    before treating 2FA as active.
    """
    try:
        uri, secret = await service.enroll(
            user_id,
            request.label,
            request.issuer,
            request.parameters,
        )
    except GenerationError:
        logger.exception(f"Secret generation failed for user {user_id}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not generate a TOTP secret"
        )

    return TotpEnrollResponse(
        provisioning_uri=uri,
        secret=secret,
        qrcode=generate_qr_code_base64(uri),
    )


@router.get("/{user_id}/provisioning-uri", response_model=TotpProvisioningResponse)
async def get_provisioning_uri(
    user_id: int,
    label: str,
    issuer: Optional[str] = None,
    service: TotpService = Depends(deps.get_totp_service)
):
    """Re-issue the provisioning URI and QR code for an existing enrollment."""
    try:
        uri = await service.get_provisioning_uri(user_id, label, issuer)
    except NotEnrolledError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="TOTP not enabled for this user"
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return TotpProvisioningResponse(
        provisioning_uri=uri,
        qrcode=generate_qr_code_base64(uri),
    )


@router.post("/{user_id}/verify", response_model=TotpVerifyResponse)
async def verify_totp(
    user_id: int,
    request: TotpVerifyRequest,
    service: TotpService = Depends(deps.get_totp_service)
):
    """
    Verify a TOTP code or consume a backup code.

    Wrong, replayed and unknown-user codes all return verified=false.
    """
    try:
        verified = await service.verify(request.code, user_id)
    except (DecryptionError, InvalidConfigurationError):
        # Already logged by the service; the user only sees a failed check
        verified = False

    return TotpVerifyResponse(verified=verified)


@router.post("/{user_id}/backup-codes", response_model=BackupCodesResponse)
async def regenerate_backup_codes(
    user_id: int,
    service: TotpService = Depends(deps.get_totp_service)
):
    """Replace all backup codes. Previously issued codes stop working."""
    try:
        codes = await service.generate_backup_codes(user_id)
    except GenerationError:
        logger.exception(f"Backup code generation failed for user {user_id}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not generate backup codes"
        )

    return BackupCodesResponse(codes=codes)


@router.delete("/{user_id}", response_model=TotpDisableResponse)
async def disable_totp(
    user_id: int,
    service: TotpService = Depends(deps.get_totp_service)
):
    """Disable 2FA. Safe to call for users that never enrolled."""
    await service.disable(user_id)

    return TotpDisableResponse(
        success=True,
        message="Two-factor authentication has been disabled."
    )

# backend/app/schemas/totp.py
"""
Pydantic schemas for the TOTP endpoints.

Plaintext secrets and backup codes only ever appear in responses,
exactly once, at the moment they are generated.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class TotpEnrollRequest(BaseModel):
    """
    Request to enroll a user in TOTP.

    - label: shown in the authenticator app, usually the account name
    - issuer: usually the organisation or application name
    - parameters: extra otpauth:// query parameters (e.g. image)
    """
    label: str = Field(..., min_length=1, max_length=255)
    issuer: Optional[str] = Field(default=None, min_length=1, max_length=255)
    parameters: Dict[str, str] = Field(default_factory=dict)

    @field_validator("label", "issuer")
    @classmethod
    def reject_colon(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and ":" in v:
            raise ValueError("must not contain ':'")
        return v


class TotpEnrollResponse(BaseModel):
    provisioning_uri: str
    secret: str
    # data:image/png;base64,... for an <img> tag
    qrcode: str


class TotpProvisioningResponse(BaseModel):
    provisioning_uri: str
    qrcode: str


class TotpVerifyRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)

    @field_validator("code")
    @classmethod
    def strip_spaces(cls, v: str) -> str:
        """Authenticator apps often display codes as '123 456'."""
        return v.replace(" ", "")


class TotpVerifyResponse(BaseModel):
    verified: bool


class TotpStatusResponse(BaseModel):
    enrolled: bool
    backup_codes_remaining: int


class BackupCodesResponse(BaseModel):
    """Plaintext backup codes. Shown once, never retrievable again."""
    codes: List[str]


class TotpDisableResponse(BaseModel):
    success: bool
    message: str

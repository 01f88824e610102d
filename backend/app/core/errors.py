# backend/app/core/errors.py
"""
Domain exceptions for the TOTP service.

End users never see these directly: verification failures are reported
as a plain boolean. These exist so operators and callers can tell
configuration, storage and crypto problems apart.
"""


class TotpError(Exception):
    """Base class for all TOTP service errors."""


class NotEnrolledError(TotpError):
    """Operation requires a TOTP secret/record that does not exist."""


class DecryptionError(TotpError):
    """Stored secret could not be authenticated or decrypted."""


class InvalidConfigurationError(TotpError, ValueError):
    """Rejected parameter combination (e.g. leeway >= period)."""


class GenerationError(TotpError):
    """Random generation exhausted its retry budget."""

"""Exception hierarchy for sealedlicense.

Only issuance-side and serialization-layer failures are raised to callers.
Verification never raises; its failures are reported as a
:class:`~sealedlicense.signing.LicenseStatus`.
"""

from __future__ import annotations


class LicenseError(Exception):
    """Base class for licensing errors."""

    pass


class MalformedDocument(LicenseError):
    """Raised when a license document cannot be serialized or parsed."""

    pass


class SigningError(LicenseError):
    """Raised when a license cannot be issued (bad key, bad document)."""

    pass


class KeyLoadError(LicenseError):
    """Raised when key material cannot be read or decoded."""

    pass


class SignatureFormatError(LicenseError):
    """Raised when an embedded signature is structurally unacceptable.

    Internal to the verification path, where it is reported as
    ``LicenseStatus.INVALID``.
    """

    pass

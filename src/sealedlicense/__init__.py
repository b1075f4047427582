"""sealedlicense - tamper-evident offline licenses.

An issuer signs a :class:`LicenseEntity` with a private key and hands out
the resulting portable string; applications verify it with the public key
alone::

    from sealedlicense import LicenseEntity, LicenseStatus, issue_license, verify_license

    token = issue_license(LicenseEntity(date(2027, 1, 31)), private_key)
    license, status = verify_license(token, public_key)
"""

from __future__ import annotations

from sealedlicense.document import FORMAT_VERSION, LicenseEntity, deserialize, serialize
from sealedlicense.errors import (
    KeyLoadError,
    LicenseError,
    MalformedDocument,
    SigningError,
)
from sealedlicense.hardware import device_fingerprint, hardware_matches
from sealedlicense.keys import (
    KeyPair,
    generate_key_pair,
    load_private_key,
    load_private_key_file,
    load_public_key,
    load_public_key_file,
)
from sealedlicense.signing import (
    LicenseIssuer,
    LicenseStatus,
    LicenseVerifier,
    VerificationResult,
    issue_license,
    verify_license,
)

__all__ = [
    "FORMAT_VERSION",
    "KeyLoadError",
    "KeyPair",
    "LicenseEntity",
    "LicenseError",
    "LicenseIssuer",
    "LicenseStatus",
    "LicenseVerifier",
    "MalformedDocument",
    "SigningError",
    "VerificationResult",
    "deserialize",
    "device_fingerprint",
    "generate_key_pair",
    "hardware_matches",
    "issue_license",
    "load_private_key",
    "load_private_key_file",
    "load_public_key",
    "load_public_key_file",
    "serialize",
    "verify_license",
]

"""Issue and verify signed license tokens.

Issuing (administrative, raises on failure)::

    from sealedlicense.signing import issue_license

    token = issue_license(entity, private_key)

Verifying (end-user facing, never raises)::

    from sealedlicense.signing import LicenseStatus, verify_license

    license, status = verify_license(token, public_key)
    if status is LicenseStatus.VALID:
        ...

A token is the signed license document (see :mod:`sealedlicense.document`
and :mod:`sealedlicense.xmldsig`), base64 encoded over its UTF-8 bytes.

Verification collapses every outcome into a :class:`LicenseStatus`:

- ``VALID`` / ``EXPIRED``: the signature checks out; the license is
  returned either way.
- ``INVALID``: a well-formed document whose signature is missing,
  duplicated, malformed, or does not verify under the given key.  Any
  byte that differs from the issued canonical rendering also lands here,
  including whitespace the XML parser would normalize away.
- ``CRACKED``: anything that is not a well-formed, honestly structured
  license (bad encoding, unparsable XML, unusable key, provider errors).

The reason for a rejection is logged, never returned, so the status alone
gives an attacker nothing to iterate against.
"""

from __future__ import annotations

import base64
import binascii
import enum
import hmac
import logging
import xml.etree.ElementTree as ET
from datetime import date
from typing import NamedTuple

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm

from sealedlicense.document import CLOSING_TAG, LicenseEntity, deserialize, serialize
from sealedlicense.errors import (
    KeyLoadError,
    MalformedDocument,
    SignatureFormatError,
    SigningError,
)
from sealedlicense.keys import public_key_from
from sealedlicense.xmldsig import (
    PrivateKey,
    build_signature,
    canonicalize_dsig,
    check_enveloped_signature,
    find_signatures,
)

logger = logging.getLogger(__name__)

# Failures that mean "not a well-formed license at all".  Listed rather than
# caught wholesale so programming errors still surface in tests.
_CRACKED_ERRORS = (
    ValueError,
    TypeError,
    UnicodeError,
    ET.ParseError,
    UnsupportedAlgorithm,
    MalformedDocument,
    KeyLoadError,
    RecursionError,
)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


class LicenseStatus(enum.Enum):
    """Outcome of :func:`verify_license`.

    ``UNDEFINED`` is never returned; it marks "not checked yet" for callers
    that stage verification.
    """

    UNDEFINED = "undefined"
    VALID = "valid"
    INVALID = "invalid"
    EXPIRED = "expired"
    CRACKED = "cracked"


class VerificationResult(NamedTuple):
    """``(license, status)`` pair; ``license`` is set only for VALID/EXPIRED."""

    license: LicenseEntity | None
    status: LicenseStatus

    @property
    def is_valid(self) -> bool:
        return self.status is LicenseStatus.VALID


def _rejected(status: LicenseStatus) -> VerificationResult:
    return VerificationResult(None, status)


def _envelop(canonical: bytes, signature: bytes) -> bytes:
    """Splice *signature* in as the last child of a canonical document."""
    # Canonical documents always end with the root's closing tag.
    return canonical[: -len(CLOSING_TAG)] + signature + CLOSING_TAG


# ---------------------------------------------------------------------------
# Issue
# ---------------------------------------------------------------------------


def issue_license(entity: LicenseEntity, private_key: PrivateKey) -> str:
    """Sign *entity* and return the portable token.

    :raises SigningError: If the key is missing, unsupported or rejected by
        the crypto backend, or the entity cannot be serialized.
    """
    try:
        canonical = serialize(entity)
    except MalformedDocument as exc:
        raise SigningError(f"License cannot be serialized: {exc}") from exc

    try:
        signature = build_signature(canonical, private_key)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise SigningError(f"Signing failed: {exc}") from exc

    signed = _envelop(canonical, signature)
    logger.info(
        "Issued license expiring %s (bound=%s, fields=%d)",
        entity.expiry_date.isoformat(),
        entity.is_bound,
        len(entity.fields),
    )
    return base64.b64encode(signed).decode("ascii")


# ---------------------------------------------------------------------------
# Verify
# ---------------------------------------------------------------------------


def _decode_token(token: str) -> str | None:
    """Return the document text, or ``None`` if *token* is not decodable."""
    if not isinstance(token, str):
        return None
    compact = "".join(token.split())
    if not compact:
        return None
    try:
        return base64.b64decode(compact, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return None


def _check(token: str, public_key: object, today: date) -> VerificationResult:
    document = _decode_token(token)
    if document is None:
        logger.warning("License token is empty or not valid base64/UTF-8")
        return _rejected(LicenseStatus.CRACKED)

    root = ET.fromstring(document)

    signatures = find_signatures(root)
    if len(signatures) != 1:
        logger.warning("License verification failed: %d signature elements found", len(signatures))
        return _rejected(LicenseStatus.INVALID)

    verification_key = public_key_from(public_key)
    try:
        remainder = check_enveloped_signature(root, signatures[0], verification_key)
    except (SignatureFormatError, InvalidSignature) as exc:
        logger.warning("License signature verification failed: %s", str(exc) or type(exc).__name__)
        return _rejected(LicenseStatus.INVALID)

    entity = deserialize(remainder)
    # The received bytes must be the canonical rendering, byte for byte.
    issued = _envelop(remainder, canonicalize_dsig(signatures[0]))
    if not hmac.compare_digest(document.encode("utf-8"), issued):
        logger.warning("License verification failed: document is not in canonical form")
        return _rejected(LicenseStatus.INVALID)

    if entity.expiry_date >= today:
        return VerificationResult(entity, LicenseStatus.VALID)
    logger.info("License expired on %s", entity.expiry_date.isoformat())
    return VerificationResult(entity, LicenseStatus.EXPIRED)


def verify_license(
    token: str,
    public_key: object,
    *,
    today: date | None = None,
) -> VerificationResult:
    """Verify *token* against *public_key* and classify the result.

    :param token: Portable license string produced by :func:`issue_license`.
        Whitespace (e.g. line wrapping) is ignored.
    :param public_key: Verification key or X.509 certificate.
    :param today: Reference date for the expiry check (default: local date).
    :returns: ``(license, status)``; never raises for any string input.
    """
    try:
        return _check(token, public_key, today or date.today())
    except _CRACKED_ERRORS as exc:
        logger.warning("License rejected as malformed: %s", type(exc).__name__)
        logger.debug("Malformed license detail: %s", exc)
        return _rejected(LicenseStatus.CRACKED)


# ---------------------------------------------------------------------------
# Key-bound helpers
# ---------------------------------------------------------------------------


class LicenseIssuer:
    """Binds a private key to :func:`issue_license`."""

    def __init__(self, private_key: PrivateKey) -> None:
        self._private_key = private_key

    def issue(self, entity: LicenseEntity) -> str:
        return issue_license(entity, self._private_key)


class LicenseVerifier:
    """Binds a public key (or certificate) to :func:`verify_license`.

    Holds no other state; concurrent use from several threads is safe.
    """

    def __init__(self, public_key: object) -> None:
        self._public_key = public_key

    def verify(self, token: str, *, today: date | None = None) -> VerificationResult:
        return verify_license(token, self._public_key, today=today)

"""Shared fixtures for the sealedlicense test suite.

Key generation is the slow part of these tests, so key pairs are
session-scoped.  Verification always gets an explicit ``today`` so results
do not depend on the wall clock.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from cryptography.x509.oid import NameOID

from sealedlicense.document import LicenseEntity

# ---------------------------------------------------------------------------
# Constants reused across tests
# ---------------------------------------------------------------------------

TODAY = date(2026, 10, 19)
FUTURE = date(2027, 1, 31)
PAST = date(2026, 10, 18)

SAMPLE_FIELDS = {
    "product": "Atlas Designer",
    "licensee": "ACME Corp",
    "features": "export,batch",
}


def make_certificate(private_key: rsa.RSAPrivateKey) -> x509.Certificate:
    """Self-signed certificate wrapping *private_key*'s public half."""
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "sealedlicense test issuer")])
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365))
        .sign(private_key, hashes.SHA256())
    )


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_rsa_key() -> rsa.RSAPrivateKey:
    """An unrelated RSA key, for wrong-key checks."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ec_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def ed25519_key() -> ed25519.Ed25519PrivateKey:
    return ed25519.Ed25519PrivateKey.generate()


@pytest.fixture(scope="session")
def rsa_certificate(rsa_key: rsa.RSAPrivateKey) -> x509.Certificate:
    return make_certificate(rsa_key)


# ---------------------------------------------------------------------------
# Licenses
# ---------------------------------------------------------------------------


@pytest.fixture()
def today() -> date:
    return TODAY


@pytest.fixture()
def entity() -> LicenseEntity:
    """Unbound license valid on TODAY."""
    return LicenseEntity(expiry_date=FUTURE, fields=dict(SAMPLE_FIELDS))


@pytest.fixture()
def bound_entity() -> LicenseEntity:
    return LicenseEntity(expiry_date=FUTURE, hardware_id="a" * 64, fields=dict(SAMPLE_FIELDS))


@pytest.fixture()
def expired_entity() -> LicenseEntity:
    return LicenseEntity(expiry_date=PAST, fields={"licensee": "ACME Corp"})


# ---------------------------------------------------------------------------
# Environment isolation
# ---------------------------------------------------------------------------


@pytest.fixture()
def env_clean(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove every SEALEDLICENSE_* variable for the duration of a test."""
    for var in (
        "SEALEDLICENSE_CONFIG",
        "SEALEDLICENSE_PRIVATE_KEY",
        "SEALEDLICENSE_PUBLIC_KEY",
        "SEALEDLICENSE_KEY_PASSWORD",
        "SEALEDLICENSE_LOG_LEVEL",
        "SEALEDLICENSE_LOG_DIR",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def _reset_package_logger():
    """Drop handlers that configure_logging() attached during a test."""
    logger = logging.getLogger("sealedlicense")
    before = list(logger.handlers)
    level = logger.level
    yield
    for handler in logger.handlers[:]:
        if handler not in before:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)

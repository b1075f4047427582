"""Loading and generating license signing keys.

The issuer keeps the private key; applications ship only the public key
(or an X.509 certificate wrapping it).  Supported key types match
:mod:`sealedlicense.xmldsig`: RSA, EC (NIST curves) and Ed25519.

Accepted encodings:

- private keys: PEM or DER (PKCS#8 or traditional), optionally
  password-protected, or a PKCS#12 (``.pfx`` / ``.p12``) bundle
- public keys: PEM or DER SubjectPublicKeyInfo, or a PEM/DER X.509
  certificate

Example::

    from sealedlicense.keys import generate_key_pair, load_private_key, load_public_key

    pair = generate_key_pair("ed25519")
    private_key = load_private_key(pair.private_pem)
    public_key = load_public_key(pair.public_pem)
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from cryptography.hazmat.primitives.serialization import pkcs12

from sealedlicense.errors import KeyLoadError
from sealedlicense.xmldsig import PrivateKey, PublicKey

logger = logging.getLogger(__name__)

#: Key generation defaults per algorithm name.
KEY_ALGORITHMS = ("rsa", "ecdsa", "ed25519")
_RSA_KEY_SIZE = 3072
_RSA_PUBLIC_EXPONENT = 65537

_PRIVATE_TYPES = (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey, ed25519.Ed25519PrivateKey)
_PUBLIC_TYPES = (rsa.RSAPublicKey, ec.EllipticCurvePublicKey, ed25519.Ed25519PublicKey)

_LOAD_ERRORS = (ValueError, TypeError, UnsupportedAlgorithm)


@dataclass(frozen=True)
class KeyPair:
    """PEM-encoded key pair.  ``private_pem`` must be kept secret."""

    private_pem: bytes
    public_pem: bytes


def _password_bytes(password: str | bytes | None) -> bytes | None:
    if password is None or password == "" or password == b"":
        return None
    if isinstance(password, str):
        return password.encode("utf-8")
    return password


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def public_key_from(obj: object) -> PublicKey:
    """Return the verification key held by *obj*.

    *obj* may be a supported public key or an X.509 certificate.

    :raises KeyLoadError: For anything else, including private keys.
    """
    if isinstance(obj, x509.Certificate):
        try:
            obj = obj.public_key()
        except _LOAD_ERRORS as exc:
            raise KeyLoadError(f"Certificate public key is unusable: {exc}") from exc
    if isinstance(obj, _PUBLIC_TYPES):
        return obj
    if isinstance(obj, _PRIVATE_TYPES):
        raise KeyLoadError("A private key was supplied where a public key is expected")
    raise KeyLoadError(f"Unsupported public key type: {type(obj).__name__}")


def load_private_key(data: bytes, password: str | bytes | None = None) -> PrivateKey:
    """Load a signing key from PEM, DER or PKCS#12 bytes.

    :raises KeyLoadError: If the data cannot be decoded, the password is
        wrong or missing, or the key type is unsupported.
    """
    secret = _password_bytes(password)
    try:
        if b"-----BEGIN" in data:
            key = serialization.load_pem_private_key(data, password=secret)
        else:
            try:
                key = serialization.load_der_private_key(data, password=secret)
            except ValueError:
                key, _cert, _extra = pkcs12.load_key_and_certificates(data, secret)
    except _LOAD_ERRORS as exc:
        raise KeyLoadError(f"Could not load private key: {exc}") from exc

    if not isinstance(key, _PRIVATE_TYPES):
        raise KeyLoadError(f"Unsupported private key type: {type(key).__name__}")
    return key


def load_public_key(data: bytes) -> PublicKey:
    """Load a verification key from a public key or certificate (PEM or DER).

    :raises KeyLoadError: If the data is neither.
    """
    try:
        if b"-----BEGIN CERTIFICATE" in data:
            obj: object = x509.load_pem_x509_certificate(data)
        elif b"-----BEGIN" in data:
            obj = serialization.load_pem_public_key(data)
        else:
            try:
                obj = serialization.load_der_public_key(data)
            except ValueError:
                obj = x509.load_der_x509_certificate(data)
    except _LOAD_ERRORS as exc:
        raise KeyLoadError(f"Could not load public key: {exc}") from exc
    return public_key_from(obj)


def _read(path: str | Path) -> bytes:
    try:
        return Path(path).expanduser().read_bytes()
    except OSError as exc:
        raise KeyLoadError(f"Could not read key file {path}: {exc}") from exc


def load_private_key_file(path: str | Path, password: str | bytes | None = None) -> PrivateKey:
    """Read and load a private key file (see :func:`load_private_key`)."""
    key = load_private_key(_read(path), password)
    logger.debug("Loaded %s signing key from %s", type(key).__name__, path)
    return key


def load_public_key_file(path: str | Path) -> PublicKey:
    """Read and load a public key or certificate file."""
    return load_public_key(_read(path))


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


def generate_key_pair(algorithm: str = "rsa", *, password: str | bytes | None = None) -> KeyPair:
    """Generate a new signing key pair.

    :param algorithm: ``"rsa"`` (3072 bits), ``"ecdsa"`` (P-256) or
        ``"ed25519"``.
    :param password: Encrypts the private key PEM when given.
    :raises ValueError: If *algorithm* is unknown.
    """
    algorithm = algorithm.lower()
    if algorithm == "rsa":
        private_key: PrivateKey = rsa.generate_private_key(
            public_exponent=_RSA_PUBLIC_EXPONENT, key_size=_RSA_KEY_SIZE
        )
    elif algorithm == "ecdsa":
        private_key = ec.generate_private_key(ec.SECP256R1())
    elif algorithm == "ed25519":
        private_key = ed25519.Ed25519PrivateKey.generate()
    else:
        raise ValueError(f"Unknown key algorithm {algorithm!r}; expected one of {', '.join(KEY_ALGORITHMS)}")

    secret = _password_bytes(password)
    encryption: serialization.KeySerializationEncryption = (
        serialization.BestAvailableEncryption(secret) if secret else serialization.NoEncryption()
    )
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption,
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return KeyPair(private_pem=private_pem, public_pem=public_pem)


def write_key_pair(pair: KeyPair, private_path: str | Path, public_path: str | Path) -> None:
    """Write *pair* to disk, restricting the private key to the owner."""
    private_path = Path(private_path).expanduser()
    public_path = Path(public_path).expanduser()
    private_path.parent.mkdir(parents=True, exist_ok=True)
    public_path.parent.mkdir(parents=True, exist_ok=True)

    private_path.write_bytes(pair.private_pem)
    if sys.platform != "win32":
        private_path.chmod(0o600)
    public_path.write_bytes(pair.public_pem)
    logger.info("Wrote key pair: private=%s public=%s", private_path, public_path)

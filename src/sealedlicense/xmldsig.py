"""Enveloped XML signatures over license documents.

Implements the subset of XML-DSig the license format needs: one
``<Signature>`` element, appended as the last child of the document root,
holding a single ``Reference URI=""`` (the whole document) with the
enveloped-signature transform.  Everything that influences the signed
bytes is pinned here:

- canonicalization: XML Canonicalization 2.0 (:data:`CANONICALIZATION_METHOD`)
- digest: SHA-256
- signature: RSASSA-PKCS1-v1_5/SHA-256, ECDSA/SHA-256 (raw ``r || s``)
  or Ed25519, chosen from the signing key type

The signature block is always serialized with the XML-DSig namespace as
the default namespace on ``<Signature>``, so the canonical bytes do not
depend on any prefix registry.  Verification rebuilds ``SignedInfo`` the
same way before checking the signature value.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import xml.etree.ElementTree as ET
from typing import NamedTuple, Union

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)

from sealedlicense.errors import SignatureFormatError, SigningError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Algorithm identifiers
# ---------------------------------------------------------------------------

DSIG_NAMESPACE = "http://www.w3.org/2000/09/xmldsig#"
SIGNATURE_TAG = f"{{{DSIG_NAMESPACE}}}Signature"

CANONICALIZATION_METHOD = "http://www.w3.org/2010/xml-c14n2"
ENVELOPED_SIGNATURE_TRANSFORM = DSIG_NAMESPACE + "enveloped-signature"
DIGEST_SHA256 = "http://www.w3.org/2001/04/xmlenc#sha256"

RSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256"
ECDSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha256"
ED25519 = "http://www.w3.org/2021/04/xmldsig-more#eddsa-ed25519"

SIGNATURE_METHODS = (RSA_SHA256, ECDSA_SHA256, ED25519)

#: Transform chain every reference must carry, in order.
TRANSFORMS = (ENVELOPED_SIGNATURE_TRANSFORM, CANONICALIZATION_METHOD)

MIN_RSA_KEY_SIZE = 2048

PrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey, ed25519.Ed25519PrivateKey]
PublicKey = Union[rsa.RSAPublicKey, ec.EllipticCurvePublicKey, ed25519.Ed25519PublicKey]


def _q(local: str) -> str:
    return f"{{{DSIG_NAMESPACE}}}{local}"


# ---------------------------------------------------------------------------
# Canonicalization
# ---------------------------------------------------------------------------


def canonicalize(element: ET.Element) -> bytes:
    """Return the C14N 2.0 form of an un-namespaced *element* as UTF-8.

    Carriage returns are written as character references so the
    intermediate parse keeps them; C14N then emits them as ``&#xD;``.
    """
    text = ET.tostring(element, encoding="unicode").replace("\r", "&#13;")
    return ET.canonicalize(text).encode("utf-8")


def _unqualified_copy(element: ET.Element) -> ET.Element:
    """Copy a signature subtree with local tag names.

    Every element must live in the XML-DSig namespace and every attribute
    must be unqualified; anything else is a structural error.
    """
    if not element.tag.startswith(f"{{{DSIG_NAMESPACE}}}"):
        raise SignatureFormatError(f"Foreign element inside signature: {element.tag}")
    if any(key.startswith("{") for key in element.attrib):
        raise SignatureFormatError("Qualified attributes are not allowed in signatures")
    copy = ET.Element(element.tag[len(DSIG_NAMESPACE) + 2:], dict(element.attrib))
    copy.text = element.text
    copy.tail = element.tail
    for child in element:
        copy.append(_unqualified_copy(child))
    return copy


def canonicalize_dsig(element: ET.Element) -> bytes:
    """Canonicalize a signature-namespace subtree.

    The namespace is declared as the default namespace on *element*, which
    is how both ``SignedInfo`` (for signing) and ``Signature`` (for
    embedding) are rendered.
    """
    plain = _unqualified_copy(element)
    plain.tail = None
    plain.set("xmlns", DSIG_NAMESPACE)
    return canonicalize(plain)


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------


def signature_method_for(private_key: object) -> str:
    """Return the signature algorithm URI for *private_key*.

    :raises SigningError: If the key type is unsupported or too weak.
    """
    if isinstance(private_key, rsa.RSAPrivateKey):
        if private_key.key_size < MIN_RSA_KEY_SIZE:
            raise SigningError(
                f"RSA signing keys must be at least {MIN_RSA_KEY_SIZE} bits "
                f"(got {private_key.key_size})"
            )
        return RSA_SHA256
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        return ECDSA_SHA256
    if isinstance(private_key, ed25519.Ed25519PrivateKey):
        return ED25519
    if private_key is None:
        raise SigningError("A private key is required to issue a license")
    raise SigningError(f"Unsupported private key type: {type(private_key).__name__}")


def _ec_coordinate_size(key: ec.EllipticCurvePrivateKey | ec.EllipticCurvePublicKey) -> int:
    return (key.curve.key_size + 7) // 8


def _sign(private_key: PrivateKey, method: str, data: bytes) -> bytes:
    if method == RSA_SHA256:
        return private_key.sign(data, padding.PKCS1v15(), hashes.SHA256())  # type: ignore[call-arg, union-attr]
    if method == ECDSA_SHA256:
        der = private_key.sign(data, ec.ECDSA(hashes.SHA256()))  # type: ignore[call-arg, arg-type]
        r, s = decode_dss_signature(der)
        size = _ec_coordinate_size(private_key)  # type: ignore[arg-type]
        return r.to_bytes(size, "big") + s.to_bytes(size, "big")
    return private_key.sign(data)  # type: ignore[call-arg]


def _signed_info(method: str, digest: bytes) -> ET.Element:
    signed_info = ET.Element(_q("SignedInfo"))
    ET.SubElement(signed_info, _q("CanonicalizationMethod"), {"Algorithm": CANONICALIZATION_METHOD})
    ET.SubElement(signed_info, _q("SignatureMethod"), {"Algorithm": method})
    reference = ET.SubElement(signed_info, _q("Reference"), {"URI": ""})
    transforms = ET.SubElement(reference, _q("Transforms"))
    for algorithm in TRANSFORMS:
        ET.SubElement(transforms, _q("Transform"), {"Algorithm": algorithm})
    ET.SubElement(reference, _q("DigestMethod"), {"Algorithm": DIGEST_SHA256})
    ET.SubElement(reference, _q("DigestValue")).text = base64.b64encode(digest).decode("ascii")
    return signed_info


def build_signature(canonical_document: bytes, private_key: PrivateKey) -> bytes:
    """Sign *canonical_document* and return the canonical ``<Signature>`` bytes.

    The caller splices the result in as the last child of the document
    root; the digest covers the document exactly as it reads without it.
    """
    method = signature_method_for(private_key)
    signed_info = _signed_info(method, hashlib.sha256(canonical_document).digest())
    signature_value = _sign(private_key, method, canonicalize_dsig(signed_info))

    signature = ET.Element(_q("Signature"))
    signature.append(signed_info)
    ET.SubElement(signature, _q("SignatureValue")).text = base64.b64encode(signature_value).decode("ascii")
    return canonicalize_dsig(signature)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class SignatureParts(NamedTuple):
    """The pieces of a ``<Signature>`` element needed to check it."""

    method: str
    digest: bytes
    signature_value: bytes
    signed_info: ET.Element


def find_signatures(root: ET.Element) -> list[ET.Element]:
    """Return every XML-DSig ``Signature`` element in the tree, at any depth."""
    return list(root.iter(SIGNATURE_TAG))


def _children(element: ET.Element, *expected: str) -> list[ET.Element]:
    names = [child.tag for child in element]
    if names != [_q(name) for name in expected]:
        raise SignatureFormatError(
            f"Unexpected children in {element.tag}: {names!r}"
        )
    if element.text and element.text.strip():
        raise SignatureFormatError(f"Unexpected text in {element.tag}")
    return list(element)


def _algorithm(element: ET.Element, allowed: tuple[str, ...]) -> str:
    if len(element) or set(element.attrib) != {"Algorithm"}:
        raise SignatureFormatError(f"Malformed {element.tag}")
    algorithm = element.get("Algorithm", "")
    if algorithm not in allowed:
        raise SignatureFormatError(f"Unsupported algorithm: {algorithm!r}")
    return algorithm


def _b64(element: ET.Element) -> bytes:
    if len(element) or element.attrib:
        raise SignatureFormatError(f"Malformed {element.tag}")
    try:
        value = base64.b64decode(element.text or "", validate=True)
    except (binascii.Error, ValueError) as exc:
        raise SignatureFormatError(f"{element.tag} is not valid base64") from exc
    if not value:
        raise SignatureFormatError(f"{element.tag} is empty")
    if base64.b64encode(value).decode("ascii") != element.text:
        raise SignatureFormatError(f"{element.tag} is not canonically encoded")
    return value


def parse_signature(signature: ET.Element) -> SignatureParts:
    """Check the structure of *signature* against the fixed profile.

    :raises SignatureFormatError: On any deviation (unexpected elements,
        algorithms, reference URI, transform chain, or undecodable values).
    """
    if signature.attrib:
        raise SignatureFormatError("Signature takes no attributes")
    signed_info, signature_value_el = _children(signature, "SignedInfo", "SignatureValue")
    if signed_info.attrib:
        raise SignatureFormatError("SignedInfo takes no attributes")
    c14n_el, method_el, reference = _children(
        signed_info, "CanonicalizationMethod", "SignatureMethod", "Reference"
    )
    _algorithm(c14n_el, (CANONICALIZATION_METHOD,))
    method = _algorithm(method_el, SIGNATURE_METHODS)

    if reference.attrib != {"URI": ""}:
        raise SignatureFormatError("Reference must cover the whole document (URI=\"\")")
    transforms_el, digest_method_el, digest_value_el = _children(
        reference, "Transforms", "DigestMethod", "DigestValue"
    )
    if transforms_el.attrib:
        raise SignatureFormatError("Transforms takes no attributes")
    transforms = _children(transforms_el, *(["Transform"] * len(TRANSFORMS)))
    for transform, expected in zip(transforms, TRANSFORMS):
        _algorithm(transform, (expected,))
    _algorithm(digest_method_el, (DIGEST_SHA256,))

    return SignatureParts(
        method=method,
        digest=_b64(digest_value_el),
        signature_value=_b64(signature_value_el),
        signed_info=signed_info,
    )


def _verify(public_key: PublicKey, method: str, signature_value: bytes, data: bytes) -> None:
    """Raise ``InvalidSignature`` unless *signature_value* signs *data*."""
    if method == RSA_SHA256:
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise SignatureFormatError("Verification key does not match RSA signature method")
        public_key.verify(signature_value, data, padding.PKCS1v15(), hashes.SHA256())
    elif method == ECDSA_SHA256:
        if not isinstance(public_key, ec.EllipticCurvePublicKey):
            raise SignatureFormatError("Verification key does not match ECDSA signature method")
        size = _ec_coordinate_size(public_key)
        if len(signature_value) != 2 * size:
            raise SignatureFormatError("ECDSA signature value has the wrong length")
        r = int.from_bytes(signature_value[:size], "big")
        s = int.from_bytes(signature_value[size:], "big")
        public_key.verify(encode_dss_signature(r, s), data, ec.ECDSA(hashes.SHA256()))
    else:
        if not isinstance(public_key, ed25519.Ed25519PublicKey):
            raise SignatureFormatError("Verification key does not match Ed25519 signature method")
        public_key.verify(signature_value, data)


def _detach(parent: ET.Element, child: ET.Element) -> None:
    """Remove *child* but keep the text that followed it."""
    index = list(parent).index(child)
    if child.tail:
        if index:
            previous = parent[index - 1]
            previous.tail = (previous.tail or "") + child.tail
        else:
            parent.text = (parent.text or "") + child.tail
    parent.remove(child)


def check_enveloped_signature(
    root: ET.Element,
    signature: ET.Element,
    public_key: PublicKey,
) -> bytes:
    """Verify the enveloped *signature* of the document rooted at *root*.

    On success the signature element has been removed from *root* and the
    canonical bytes of the remaining document are returned.

    :raises SignatureFormatError: If the signature is misplaced, does not
        follow the profile, its digest does not match, or the key type does
        not fit the signature method.
    :raises cryptography.exceptions.InvalidSignature: If the signature
        value does not verify under *public_key*.
    """
    if not any(child is signature for child in root):
        raise SignatureFormatError("Signature must be a direct child of the document root")
    parts = parse_signature(signature)

    _detach(root, signature)
    remainder = canonicalize(root)
    if not hmac.compare_digest(hashlib.sha256(remainder).digest(), parts.digest):
        raise SignatureFormatError("Document digest does not match the signed reference")

    _verify(public_key, parts.method, parts.signature_value, canonicalize_dsig(parts.signed_info))
    logger.debug("Enveloped signature verified (%s)", parts.method)
    return remainder

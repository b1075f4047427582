"""License document model and its canonical XML form.

A license is a small XML document::

    <License version="1">
      <ExpiryDate>2027-01-31</ExpiryDate>
      <HardwareId>3f9a...</HardwareId>
      <Fields><Field name="licensee">ACME Corp</Field></Fields>
    </License>

(shown indented for reading; the canonical form has no whitespace between
elements).  The bytes produced by :func:`serialize` are exactly what gets
signed, so the layout is fixed by the format rather than by the order of
any Python container:

- ``HardwareId`` is omitted for unbound licenses.
- ``Fields`` is always present and its ``Field`` children are sorted by
  name.
- The output is XML Canonicalization 2.0 (:data:`CANONICALIZATION_METHOD`)
  encoded as UTF-8, so it never contains self-closing tags and always
  ends with ``</License>``.

Example::

    from datetime import date
    from sealedlicense.document import LicenseEntity, deserialize, serialize

    entity = LicenseEntity(date(2027, 1, 31), fields={"product": "Atlas"})
    assert deserialize(serialize(entity)) == entity
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from sealedlicense.errors import MalformedDocument
from sealedlicense.xmldsig import CANONICALIZATION_METHOD, SIGNATURE_TAG, canonicalize

# ---------------------------------------------------------------------------
# Format constants
# ---------------------------------------------------------------------------

#: Version of the document layout.  Bump when element names, ordering or
#: the canonicalization method change; old verifiers reject new versions.
FORMAT_VERSION = "1"

ROOT_TAG = "License"
CLOSING_TAG = b"</" + ROOT_TAG.encode("ascii") + b">"

_EXPIRY_TAG = "ExpiryDate"
_HARDWARE_TAG = "HardwareId"
_FIELDS_TAG = "Fields"
_FIELD_TAG = "Field"

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

__all__ = [
    "CANONICALIZATION_METHOD",
    "CLOSING_TAG",
    "FORMAT_VERSION",
    "LicenseEntity",
    "deserialize",
    "entity_from_tree",
    "serialize",
]


# ---------------------------------------------------------------------------
# Entity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LicenseEntity:
    """A license as issued: expiry date, optional device binding, payload.

    :param expiry_date: Last calendar day on which the license is valid.
        A :class:`~datetime.datetime` is accepted and reduced to its date.
    :param hardware_id: Device fingerprint the license is bound to, or
        ``None`` for an unbound license.
    :param fields: Free-form string fields (product, licensee, feature
        flags).  Carried verbatim and never interpreted.
    """

    expiry_date: date
    hardware_id: str | None = None
    fields: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if isinstance(self.expiry_date, datetime):
            object.__setattr__(self, "expiry_date", self.expiry_date.date())
        # Detach from the caller's mapping so later edits cannot leak in.
        object.__setattr__(self, "fields", dict(self.fields))

    @property
    def is_bound(self) -> bool:
        """Whether the license is tied to a device fingerprint."""
        return self.hardware_id is not None

    def is_expired(self, today: date | None = None) -> bool:
        """Whether *today* (default: the local date) is past the expiry date."""
        return self.expiry_date < (today or date.today())

    def to_dict(self) -> dict[str, Any]:
        return {
            "expiry_date": self.expiry_date.isoformat(),
            "hardware_id": self.hardware_id,
            "fields": dict(sorted(self.fields.items())),
        }


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _check_serializable(entity: LicenseEntity) -> None:
    if not isinstance(entity, LicenseEntity):
        raise MalformedDocument(f"Expected a LicenseEntity, got {type(entity).__name__}")
    if not isinstance(entity.expiry_date, date):
        raise MalformedDocument("expiry_date must be a date")
    if entity.hardware_id is not None and not isinstance(entity.hardware_id, str):
        raise MalformedDocument("hardware_id must be a string or None")
    for name, value in entity.fields.items():
        if not isinstance(name, str) or not name:
            raise MalformedDocument(f"Field names must be non-empty strings: {name!r}")
        if not isinstance(value, str):
            raise MalformedDocument(f"Field {name!r} must have a string value")


def _build_tree(entity: LicenseEntity) -> ET.Element:
    root = ET.Element(ROOT_TAG, {"version": FORMAT_VERSION})
    ET.SubElement(root, _EXPIRY_TAG).text = entity.expiry_date.isoformat()
    if entity.hardware_id is not None:
        ET.SubElement(root, _HARDWARE_TAG).text = entity.hardware_id
    fields_el = ET.SubElement(root, _FIELDS_TAG)
    for name in sorted(entity.fields):
        ET.SubElement(fields_el, _FIELD_TAG, {"name": name}).text = entity.fields[name]
    return root


def serialize(entity: LicenseEntity) -> bytes:
    """Serialize *entity* to its canonical bytes.

    :raises MalformedDocument: If the entity holds values the format cannot
        carry, including characters that do not survive an XML parse.
    """
    _check_serializable(entity)
    try:
        canonical = canonicalize(_build_tree(entity))
    except (ET.ParseError, ValueError) as exc:
        raise MalformedDocument(f"License cannot be serialized: {exc}") from exc

    # Refuse anything whose canonical form would read back as a different license.
    if deserialize(canonical) != entity:
        raise MalformedDocument("License contains values that cannot be represented canonically")
    return canonical


# ---------------------------------------------------------------------------
# Deserialization
# ---------------------------------------------------------------------------


def _check_no_text(element: ET.Element, what: str) -> None:
    if element.text and element.text.strip():
        raise MalformedDocument(f"Unexpected text inside {what}")
    for child in element:
        if child.tail and child.tail.strip():
            raise MalformedDocument(f"Unexpected text inside {what}")


def _leaf_text(element: ET.Element) -> str:
    if element.attrib or len(element):
        raise MalformedDocument(f"<{element.tag}> must be a plain text element")
    return element.text or ""


def _parse_date(text: str) -> date:
    if not _DATE_RE.match(text):
        raise MalformedDocument(f"ExpiryDate is not a YYYY-MM-DD date: {text!r}")
    try:
        return date.fromisoformat(text)
    except ValueError as exc:
        raise MalformedDocument(f"ExpiryDate is not a valid date: {text!r}") from exc


def _parse_fields(fields_el: ET.Element) -> dict[str, str]:
    if set(fields_el.attrib):
        raise MalformedDocument("Fields takes no attributes")
    _check_no_text(fields_el, _FIELDS_TAG)
    fields: dict[str, str] = {}
    for child in fields_el:
        if child.tag != _FIELD_TAG or len(child):
            raise MalformedDocument(f"Unexpected element in Fields: {child.tag}")
        name = child.get("name", "")
        if set(child.attrib) != {"name"} or not name:
            raise MalformedDocument("Field requires exactly one non-empty 'name' attribute")
        if name in fields:
            raise MalformedDocument(f"Duplicate field: {name!r}")
        fields[name] = child.text or ""
    return fields


def entity_from_tree(root: ET.Element) -> LicenseEntity:
    """Build a :class:`LicenseEntity` from an already parsed document.

    A single enveloped signature element directly under the root is
    tolerated and ignored.
    """
    if root.tag != ROOT_TAG:
        raise MalformedDocument(f"Root element must be <{ROOT_TAG}>, got <{root.tag}>")
    if root.attrib != {"version": FORMAT_VERSION}:
        raise MalformedDocument(
            f"Unsupported license format version: {root.get('version')!r}"
        )
    _check_no_text(root, ROOT_TAG)

    expiry: date | None = None
    hardware_id: str | None = None
    fields: dict[str, str] | None = None
    signatures = 0

    for child in root:
        if child.tag == _EXPIRY_TAG:
            if expiry is not None:
                raise MalformedDocument("Duplicate ExpiryDate")
            expiry = _parse_date(_leaf_text(child))
        elif child.tag == _HARDWARE_TAG:
            if hardware_id is not None:
                raise MalformedDocument("Duplicate HardwareId")
            hardware_id = _leaf_text(child)
        elif child.tag == _FIELDS_TAG:
            if fields is not None:
                raise MalformedDocument("Duplicate Fields")
            fields = _parse_fields(child)
        elif child.tag == SIGNATURE_TAG:
            signatures += 1
            if signatures > 1:
                raise MalformedDocument("More than one signature element")
        else:
            raise MalformedDocument(f"Unexpected element: <{child.tag}>")

    if expiry is None:
        raise MalformedDocument("Missing ExpiryDate")
    return LicenseEntity(expiry_date=expiry, hardware_id=hardware_id, fields=fields or {})


def deserialize(data: bytes | str) -> LicenseEntity:
    """Parse a license document.

    :raises MalformedDocument: If *data* is not well-formed XML or does not
        follow the license layout.
    """
    if not isinstance(data, (bytes, str)):
        raise MalformedDocument(f"Expected bytes or str, got {type(data).__name__}")
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise MalformedDocument(f"License document is not well-formed XML: {exc}") from exc
    return entity_from_tree(root)

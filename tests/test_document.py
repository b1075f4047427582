"""Tests for sealedlicense.document -- license model and canonical XML."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from sealedlicense.document import (
    CLOSING_TAG,
    FORMAT_VERSION,
    LicenseEntity,
    deserialize,
    serialize,
)
from sealedlicense.errors import MalformedDocument

_SIG = '<Signature xmlns="http://www.w3.org/2000/09/xmldsig#"><SignedInfo></SignedInfo></Signature>'


def _doc(body: str, version: str = FORMAT_VERSION) -> str:
    return f'<License version="{version}">{body}</License>'


# ---------------------------------------------------------------------------
# 1. LicenseEntity
# ---------------------------------------------------------------------------


class TestLicenseEntity:
    def test_defaults(self):
        entity = LicenseEntity(date(2027, 1, 31))
        assert entity.hardware_id is None
        assert entity.fields == {}
        assert entity.is_bound is False

    def test_bound(self):
        assert LicenseEntity(date(2027, 1, 31), hardware_id="abc").is_bound is True

    def test_empty_hardware_id_is_still_bound(self):
        assert LicenseEntity(date(2027, 1, 31), hardware_id="").is_bound is True

    def test_datetime_reduced_to_date(self):
        entity = LicenseEntity(datetime(2027, 1, 31, 23, 59, 59))
        assert entity.expiry_date == date(2027, 1, 31)
        assert type(entity.expiry_date) is date

    def test_fields_are_copied(self):
        fields = {"licensee": "ACME"}
        entity = LicenseEntity(date(2027, 1, 31), fields=fields)
        fields["licensee"] = "Mallory"
        assert entity.fields == {"licensee": "ACME"}

    def test_frozen(self):
        entity = LicenseEntity(date(2027, 1, 31))
        with pytest.raises(AttributeError):
            entity.expiry_date = date(2099, 1, 1)  # type: ignore[misc]

    def test_equality_ignores_field_order(self):
        a = LicenseEntity(date(2027, 1, 31), fields={"a": "1", "b": "2"})
        b = LicenseEntity(date(2027, 1, 31), fields={"b": "2", "a": "1"})
        assert a == b

    def test_is_expired(self):
        entity = LicenseEntity(date(2027, 1, 31))
        assert entity.is_expired(date(2027, 1, 30)) is False
        assert entity.is_expired(date(2027, 1, 31)) is False
        assert entity.is_expired(date(2027, 2, 1)) is True

    def test_to_dict(self, bound_entity):
        data = bound_entity.to_dict()
        assert data["expiry_date"] == "2027-01-31"
        assert data["hardware_id"] == "a" * 64
        assert list(data["fields"]) == sorted(bound_entity.fields)


# ---------------------------------------------------------------------------
# 2. serialize
# ---------------------------------------------------------------------------


class TestSerialize:
    def test_exact_canonical_bytes(self):
        entity = LicenseEntity(date(2027, 1, 31), fields={"product": "Atlas"})
        assert serialize(entity) == (
            b'<License version="1"><ExpiryDate>2027-01-31</ExpiryDate>'
            b'<Fields><Field name="product">Atlas</Field></Fields></License>'
        )

    def test_hardware_id_element(self):
        entity = LicenseEntity(date(2027, 1, 31), hardware_id="dev-1")
        assert serialize(entity) == (
            b'<License version="1"><ExpiryDate>2027-01-31</ExpiryDate>'
            b"<HardwareId>dev-1</HardwareId><Fields></Fields></License>"
        )

    def test_ends_with_closing_tag(self, entity):
        assert serialize(entity).endswith(CLOSING_TAG)

    def test_field_order_does_not_matter(self):
        a = LicenseEntity(date(2027, 1, 31), fields={"zeta": "1", "alpha": "2", "mid": "3"})
        b = LicenseEntity(date(2027, 1, 31), fields={"mid": "3", "zeta": "1", "alpha": "2"})
        assert serialize(a) == serialize(b)

    def test_deterministic(self, entity):
        assert serialize(entity) == serialize(entity)

    def test_escapes_markup(self):
        entity = LicenseEntity(date(2027, 1, 31), fields={'na"me<': 'a<b>&"c\''})
        data = serialize(entity)
        assert b"&lt;b&gt;&amp;" in data
        assert b"<b>" not in data

    def test_non_ascii_is_utf8(self):
        entity = LicenseEntity(date(2027, 1, 31), fields={"licensee": "Müller GmbH"})
        assert "Müller GmbH".encode("utf-8") in serialize(entity)

    def test_rejects_non_string_value(self):
        entity = LicenseEntity(date(2027, 1, 31), fields={"seats": 5})  # type: ignore[dict-item]
        with pytest.raises(MalformedDocument):
            serialize(entity)

    def test_rejects_empty_field_name(self):
        with pytest.raises(MalformedDocument):
            serialize(LicenseEntity(date(2027, 1, 31), fields={"": "x"}))

    def test_rejects_control_characters(self):
        with pytest.raises(MalformedDocument):
            serialize(LicenseEntity(date(2027, 1, 31), fields={"note": "bell\x01"}))

    def test_carriage_returns_round_trip(self):
        entity = LicenseEntity(date(2027, 1, 31), fields={"licensee": "ACME\r\nCorp", "a\rb": "x"})
        canonical = serialize(entity)
        assert b"ACME&#xD;\nCorp" in canonical
        assert b'name="a&#xD;b"' in canonical
        assert deserialize(canonical) == entity

    def test_rejects_non_entity(self):
        with pytest.raises(MalformedDocument):
            serialize({"expiry_date": "2027-01-31"})  # type: ignore[arg-type]

    def test_rejects_non_string_hardware_id(self):
        with pytest.raises(MalformedDocument):
            serialize(LicenseEntity(date(2027, 1, 31), hardware_id=1234))  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# 3. deserialize
# ---------------------------------------------------------------------------


class TestDeserialize:
    @pytest.mark.parametrize(
        "entity",
        [
            LicenseEntity(date(2027, 1, 31)),
            LicenseEntity(date(2027, 1, 31), hardware_id="f" * 64),
            LicenseEntity(date(2027, 1, 31), hardware_id=""),
            LicenseEntity(date(9999, 12, 31), fields={"empty": ""}),
            LicenseEntity(
                date(2027, 1, 31),
                fields={
                    "licensee": "Müller & Söhne <GmbH>",
                    "quote": 'say "hi"',
                    "multi": "line one\nline two\ttabbed",
                    "padded": "  spaced  ",
                },
            ),
        ],
    )
    def test_round_trip(self, entity):
        assert deserialize(serialize(entity)) == entity

    def test_accepts_str(self, entity):
        assert deserialize(serialize(entity).decode("utf-8")) == entity

    def test_tolerates_one_signature(self):
        entity = deserialize(_doc("<ExpiryDate>2027-01-31</ExpiryDate><Fields></Fields>" + _SIG))
        assert entity == LicenseEntity(date(2027, 1, 31))

    def test_rejects_two_signatures(self):
        with pytest.raises(MalformedDocument):
            deserialize(_doc("<ExpiryDate>2027-01-31</ExpiryDate>" + _SIG + _SIG))

    def test_missing_fields_element_means_no_fields(self):
        assert deserialize(_doc("<ExpiryDate>2027-01-31</ExpiryDate>")).fields == {}

    def test_indentation_whitespace_ignored(self):
        text = (
            '<License version="1">\n'
            "  <ExpiryDate>2027-01-31</ExpiryDate>\n"
            '  <Fields>\n    <Field name="a">1</Field>\n  </Fields>\n'
            "</License>"
        )
        assert deserialize(text) == LicenseEntity(date(2027, 1, 31), fields={"a": "1"})

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "not xml",
            "<License",
            "<Other version=\"1\"><ExpiryDate>2027-01-31</ExpiryDate></Other>",
            _doc("<ExpiryDate>2027-01-31</ExpiryDate>", version="2"),
            "<License><ExpiryDate>2027-01-31</ExpiryDate></License>",
            '<License version="1" extra="x"><ExpiryDate>2027-01-31</ExpiryDate></License>',
            _doc("<Fields></Fields>"),
            _doc("<ExpiryDate>2027-13-01</ExpiryDate>"),
            _doc("<ExpiryDate>2027-1-1</ExpiryDate>"),
            _doc("<ExpiryDate>20270131</ExpiryDate>"),
            _doc("<ExpiryDate> 2027-01-31</ExpiryDate>"),
            _doc("<ExpiryDate>2027-01-31</ExpiryDate><ExpiryDate>2028-01-31</ExpiryDate>"),
            _doc('<ExpiryDate kind="x">2027-01-31</ExpiryDate>'),
            _doc("<ExpiryDate>2027-01-31</ExpiryDate><HardwareId>a</HardwareId><HardwareId>b</HardwareId>"),
            _doc("<ExpiryDate>2027-01-31</ExpiryDate><HardwareId><x/></HardwareId>"),
            _doc("<ExpiryDate>2027-01-31</ExpiryDate><Fields></Fields><Fields></Fields>"),
            _doc("<ExpiryDate>2027-01-31</ExpiryDate><Unknown/>"),
            _doc("stray<ExpiryDate>2027-01-31</ExpiryDate>"),
            _doc("<ExpiryDate>2027-01-31</ExpiryDate>stray"),
            _doc('<ExpiryDate>2027-01-31</ExpiryDate><Fields><Field>x</Field></Fields>'),
            _doc('<ExpiryDate>2027-01-31</ExpiryDate><Fields><Field name="">x</Field></Fields>'),
            _doc('<ExpiryDate>2027-01-31</ExpiryDate><Fields><Field name="a" b="c">x</Field></Fields>'),
            _doc('<ExpiryDate>2027-01-31</ExpiryDate><Fields><Field name="a">1</Field>'
                 '<Field name="a">2</Field></Fields>'),
            _doc('<ExpiryDate>2027-01-31</ExpiryDate><Fields><Item name="a">1</Item></Fields>'),
            _doc('<ExpiryDate>2027-01-31</ExpiryDate><Fields kind="x"></Fields>'),
            _doc('<ExpiryDate>2027-01-31</ExpiryDate><Fields>text</Fields>'),
        ],
    )
    def test_rejects_malformed(self, text):
        with pytest.raises(MalformedDocument):
            deserialize(text)

    def test_rejects_non_text_input(self):
        with pytest.raises(MalformedDocument):
            deserialize(12345)  # type: ignore[arg-type]

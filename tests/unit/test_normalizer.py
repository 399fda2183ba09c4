"""Unit tests for identifier normalization."""

from __future__ import annotations

import pytest

from scamreg.errors import InvalidIdentifierError, ValidationError
from scamreg.models import IdentifierType
from scamreg.normalization import build_identifier, normalize_identifier, resolve_identifier_type


def test_nepal_phone_variants_share_one_canonical_form():
    assert normalize_identifier("phone", "+977-9841234567") == "+9779841234567"
    assert normalize_identifier("phone", "9841234567", default_country="NP") == "+9779841234567"
    assert normalize_identifier("phone", "00977 984 123 4567") == "+9779841234567"
    assert normalize_identifier("phone", "(0)9841234567", country_code="np") == "+9779841234567"


def test_phone_without_country_keeps_digits_only():
    assert normalize_identifier("phone", "984-123-4567") == "9841234567"


def test_phone_rejects_letters_and_bad_lengths():
    with pytest.raises(InvalidIdentifierError) as excinfo:
        normalize_identifier("phone", "98412abc67")
    assert excinfo.value.kind == "invalid_identifier"
    assert "identifierValue" in excinfo.value.field_errors

    with pytest.raises(InvalidIdentifierError):
        normalize_identifier("phone", "+123")
    with pytest.raises(InvalidIdentifierError):
        normalize_identifier("phone", "+1234567890123456")


def test_email_is_lowercased_and_mailto_stripped():
    assert normalize_identifier("email", "  Scammer@Example.COM ") == "scammer@example.com"
    assert normalize_identifier("email", "mailto:Help@Bank-Secure.net") == "help@bank-secure.net"
    with pytest.raises(InvalidIdentifierError):
        normalize_identifier("email", "not-an-email")


@pytest.mark.parametrize(
    "raw",
    ["a@b.c", "x..y@example.com", "user@-bad-.com", "<script>@x.io", "two@@example.com", "user@localhost"],
)
def test_email_rejects_malformed_addresses(raw):
    with pytest.raises(InvalidIdentifierError) as excinfo:
        normalize_identifier("email", raw)
    assert excinfo.value.kind == "invalid_identifier"


def test_handle_strips_at_sign_and_profile_links():
    assert normalize_identifier("handle", "@Crypto_Guru.NP") == "crypto_guru.np"
    assert normalize_identifier("handle", "https://www.facebook.com/Fake.Lottery/") == "fake.lottery"
    with pytest.raises(InvalidIdentifierError):
        normalize_identifier("handle", "@bad handle")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("https://www.Shop.Example.com.np/checkout?id=1", "example.com.np"),
        ("login.secure-bank.com:8443/verify", "secure-bank.com"),
        ("WWW.DEALS.CO.UK", "deals.co.uk"),
        ("http://203.0.113.7/pay", "203.0.113.7"),
        ("http://[::1]/path", "::1"),
        ("https://[2001:DB8::1]:8443/x", "2001:db8::1"),
    ],
)
def test_url_reduces_to_registrable_domain(raw, expected):
    assert normalize_identifier("url", raw) == expected


def test_url_rejects_bare_public_suffix_and_garbage():
    with pytest.raises(InvalidIdentifierError):
        normalize_identifier("url", "com.np")
    with pytest.raises(InvalidIdentifierError):
        normalize_identifier("url", "http://")


def test_other_collapses_whitespace():
    assert normalize_identifier("other", "  Bank   Account\t123 ") == "bank account 123"


def test_empty_value_is_invalid():
    with pytest.raises(InvalidIdentifierError):
        normalize_identifier("email", "   ")


@pytest.mark.parametrize(
    "identifier_type, raw",
    [
        ("phone", "+977-9841234567"),
        ("phone", "9841234567"),
        ("phone", "555 0100 22"),
        ("email", "Mailto:Someone@Example.org"),
        ("handle", "@Some.Body"),
        ("url", "https://a.b.example.com.np/path"),
        ("url", "example.org"),
        ("url", "http://203.0.113.7/pay"),
        ("url", "http://[::1]/path"),
        ("url", "https://[2001:db8::1]:8443/x"),
        ("other", "  Mixed   CASE  "),
    ],
)
def test_normalization_is_idempotent(identifier_type, raw):
    once = normalize_identifier(identifier_type, raw, default_country="NP")
    twice = normalize_identifier(identifier_type, once, default_country="NP")
    assert once == twice


def test_unknown_identifier_type_is_validation_error():
    with pytest.raises(ValidationError) as excinfo:
        resolve_identifier_type("carrier-pigeon")
    assert "identifierType" in excinfo.value.field_errors
    assert not isinstance(excinfo.value, InvalidIdentifierError)


def test_build_identifier_keeps_raw_and_detects_country():
    identifier = build_identifier("phone", " 9841234567 ", default_country="NP")
    assert identifier.type is IdentifierType.PHONE
    assert identifier.raw_value == "9841234567"
    assert identifier.normalized_value == "+9779841234567"
    assert identifier.country_code == "NP"


@pytest.mark.parametrize(
    "alias, expected",
    [("WhatsApp", IdentifierType.PHONE), ("website", IdentifierType.URL), ("instagram", IdentifierType.HANDLE)],
)
def test_client_type_aliases_resolve(alias, expected):
    assert resolve_identifier_type(alias) is expected

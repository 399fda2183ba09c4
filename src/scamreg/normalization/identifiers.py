"""Identifier normalization for scam report subjects.

Turns a raw, user-typed identifier into the canonical string used as the
entity key. Rules are per type and deterministic, so that
``normalize(normalize(x)) == normalize(x)`` for every accepted value:

* phone numbers lose decorative punctuation and become ``+<cc><national>``
  when a country code is present or inferable, digits only otherwise;
* emails are checked with ``email-validator`` (through pydantic) and, like
  handles and urls, lowercased;
* urls collapse to their registrable domain (``https://www.shop.example.com.np/x``
  becomes ``example.com.np``), IP hosts to the bare address.
"""

from __future__ import annotations

import ipaddress
import re
from typing import Optional, Tuple
from urllib.parse import urlsplit

from pydantic.networks import validate_email

from scamreg.errors import InvalidIdentifierError, ValidationError
from scamreg.models import Identifier, IdentifierType
from scamreg.normalization.reference_data import (
    COUNTRY_DIALING_CODES,
    DIALING_CODE_COUNTRIES,
    IDENTIFIER_TYPE_ALIASES,
    MULTI_PART_SUFFIXES,
)

MIN_PHONE_DIGITS = 6
MAX_PHONE_DIGITS = 15

_PHONE_DECORATION_RE = re.compile(r"[\s\-.()/]")
_DIGITS_RE = re.compile(r"[0-9]+")
_HANDLE_RE = re.compile(r"[a-z0-9._-]{1,64}")
_LABEL_RE = re.compile(r"[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?")
_WHITESPACE_RE = re.compile(r"\s+")


def resolve_identifier_type(value: str | IdentifierType) -> IdentifierType:
    """Map a declared type (including client aliases) to :class:`IdentifierType`.

    Raises:
        ValidationError: If the type is unknown.
    """

    if isinstance(value, IdentifierType):
        return value
    key = (value or "").strip().lower()
    canonical = IDENTIFIER_TYPE_ALIASES.get(key)
    if canonical is None:
        raise ValidationError(
            "Unsupported identifier type",
            field_errors={"identifierType": f"'{value}' is not a supported identifier type"},
        )
    return IdentifierType(canonical)


def dialing_code_for(country_code: str | None) -> Optional[str]:
    """Return the international dialing code for an ISO country, if known."""

    if not country_code:
        return None
    return COUNTRY_DIALING_CODES.get(country_code.strip().upper())


def country_for_number(digits: str) -> Optional[str]:
    """Return the country whose dialing code prefixes ``digits`` (longest match)."""

    for length in (3, 2, 1):
        country = DIALING_CODE_COUNTRIES.get(digits[:length])
        if country:
            return country
    return None


def normalize_identifier(
    identifier_type: str | IdentifierType,
    raw_value: str,
    *,
    country_code: str | None = None,
    default_country: str | None = None,
) -> str:
    """Return the canonical form of ``raw_value`` for its declared type.

    Args:
        identifier_type: Declared type (``phone``, ``email``, ``handle``, ``url``,
            ``other`` or a client alias such as ``whatsapp``).
        raw_value: Value as typed by the reporter.
        country_code: ISO country supplied with the submission, used to infer the
            dialing code of national phone numbers.
        default_country: Fallback ISO country when ``country_code`` is absent.

    Returns:
        The normalized value.

    Raises:
        InvalidIdentifierError: If the value cannot be parsed for the type.
    """

    resolved = resolve_identifier_type(identifier_type)
    normalized, _ = _normalize(resolved, raw_value, country_code, default_country)
    return normalized


def build_identifier(
    identifier_type: str | IdentifierType,
    raw_value: str,
    *,
    country_code: str | None = None,
    default_country: str | None = None,
) -> Identifier:
    """Return an :class:`Identifier` carrying both raw and canonical values."""

    resolved = resolve_identifier_type(identifier_type)
    normalized, detected_country = _normalize(resolved, raw_value, country_code, default_country)
    explicit_country = country_code.strip().upper() if country_code and country_code.strip() else None
    return Identifier(
        type=resolved,
        raw_value=(raw_value or "").strip(),
        normalized_value=normalized,
        country_code=detected_country or explicit_country,
    )


def _normalize(
    identifier_type: IdentifierType,
    raw_value: str,
    country_code: str | None,
    default_country: str | None,
) -> Tuple[str, Optional[str]]:
    if raw_value is None or not str(raw_value).strip():
        raise InvalidIdentifierError(identifier_type.value, raw_value or "", "Identifier value is empty")
    value = str(raw_value)
    if identifier_type is IdentifierType.PHONE:
        return _normalize_phone(value, country_code or default_country)
    if identifier_type is IdentifierType.EMAIL:
        return _normalize_email(value), None
    if identifier_type is IdentifierType.HANDLE:
        return _normalize_handle(value), None
    if identifier_type is IdentifierType.URL:
        return _normalize_url(value), None
    return _WHITESPACE_RE.sub(" ", value.strip()).lower(), None


def _normalize_phone(raw_value: str, country_code: str | None) -> Tuple[str, Optional[str]]:
    compact = _PHONE_DECORATION_RE.sub("", raw_value.strip())
    international = False
    if compact.startswith("+"):
        international = True
        compact = compact[1:]
    elif compact.startswith("00"):
        international = True
        compact = compact[2:]

    if not _DIGITS_RE.fullmatch(compact):
        raise InvalidIdentifierError("phone", raw_value, "Phone numbers may only contain digits")

    if international:
        _check_phone_length(raw_value, compact)
        return f"+{compact}", country_for_number(compact)

    dialing_code = dialing_code_for(country_code)
    if dialing_code is None:
        _check_phone_length(raw_value, compact)
        return compact, None

    # National trunk prefix
    if compact.startswith("0"):
        compact = compact[1:]
    digits = f"{dialing_code}{compact}"
    _check_phone_length(raw_value, digits)
    return f"+{digits}", country_for_number(digits)


def _check_phone_length(raw_value: str, digits: str) -> None:
    if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
        raise InvalidIdentifierError(
            "phone",
            raw_value,
            f"Phone numbers must have between {MIN_PHONE_DIGITS} and {MAX_PHONE_DIGITS} digits",
        )


def _normalize_email(raw_value: str) -> str:
    value = raw_value.strip().lower()
    if value.startswith("mailto:"):
        value = value[len("mailto:") :]
    try:
        _, email = validate_email(value)
    except ValueError as exc:
        raise InvalidIdentifierError("email", raw_value, "Email address is malformed") from exc
    # email-validator accepts one-letter top-level domains.
    if len(email.rpartition(".")[2]) < 2:
        raise InvalidIdentifierError("email", raw_value, "Email domain has no valid top-level domain")
    return email.lower()


def _normalize_handle(raw_value: str) -> str:
    value = raw_value.strip().lower()
    if "://" in value or value.startswith("www."):
        # Profile links keep only the last path segment.
        candidate = value if "://" in value else f"https://{value}"
        segments = [segment for segment in urlsplit(candidate).path.split("/") if segment]
        value = segments[-1] if segments else ""
    value = value.lstrip("@")
    if not _HANDLE_RE.fullmatch(value):
        raise InvalidIdentifierError("handle", raw_value, "Handles may only contain letters, digits, '.', '_' and '-'")
    return value


def _normalize_url(raw_value: str) -> str:
    value = raw_value.strip().lower()
    # Bare addresses, including the unbracketed IPv6 form this function emits.
    try:
        return str(ipaddress.ip_address(value.strip("[]")))
    except ValueError:
        pass

    candidate = value if "://" in value else f"http://{value}"
    try:
        host = urlsplit(candidate).hostname
    except ValueError as exc:
        raise InvalidIdentifierError("url", raw_value, "URL could not be parsed") from exc
    if not host:
        raise InvalidIdentifierError("url", raw_value, "URL has no host")
    host = host.rstrip(".")

    try:
        return str(ipaddress.ip_address(host))
    except ValueError:
        pass

    labels = host.split(".")
    if len(labels) < 2 or not all(_LABEL_RE.fullmatch(label) for label in labels):
        raise InvalidIdentifierError("url", raw_value, "URL host is not a valid domain name")

    suffix = ".".join(labels[-2:])
    if suffix in MULTI_PART_SUFFIXES:
        if len(labels) < 3:
            raise InvalidIdentifierError("url", raw_value, "URL host is a public suffix")
        return ".".join(labels[-3:])
    return suffix


__all__ = [
    "build_identifier",
    "country_for_number",
    "dialing_code_for",
    "normalize_identifier",
    "resolve_identifier_type",
]

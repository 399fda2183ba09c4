"""Identifier normalization helpers."""

from scamreg.normalization.identifiers import build_identifier, normalize_identifier, resolve_identifier_type

__all__ = ["build_identifier", "normalize_identifier", "resolve_identifier_type"]

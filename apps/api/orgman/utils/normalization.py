"""Normalization helpers for emails, slugs and header labels."""

import hashlib
import re

from pydantic import EmailStr, TypeAdapter, ValidationError

_email_adapter = TypeAdapter(EmailStr)
_SLUG_STRIP_RE = re.compile(r"[^a-z0-9_\-]")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: str | None) -> bool:
    value = (email or "").strip()
    if not value:
        return False
    try:
        _email_adapter.validate_python(value)
    except ValidationError:
        return False
    return True


def sanitize_key(value: str | None) -> str:
    """Lowercase slug keeping only [a-z0-9_-]."""
    return _SLUG_STRIP_RE.sub("", (value or "").lower())


def normalize_label(value: str | None) -> str:
    """Lowercase, treat '_' and '-' as spaces, collapse whitespace."""
    text = (value or "").strip().lower().replace("_", " ").replace("-", " ")
    return _WHITESPACE_RE.sub(" ", text).strip()


def hash_email(email: str) -> str:
    """Hash email for logs (prefix + SHA256 suffix for debugging)."""
    if not email:
        return ""
    prefix = email.split("@")[0][:3] if "@" in email else email[:3]
    suffix = hashlib.sha256(email.lower().encode()).hexdigest()[:12]
    return f"{prefix}...@[hash:{suffix}]"


def mask_email(email: str | None) -> str:
    if not email:
        return ""
    return hash_email(email)

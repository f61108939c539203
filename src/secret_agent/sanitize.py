"""
Output sanitization.

Replaces secret values in command output with [REDACTED:NAME] markers. Each
value is also searched for in its standard base64, URL-safe base64 and
percent-encoded forms, which are marked [REDACTED:NAME:<encoding>].

Matching is plain substring replacement; values are never treated as
patterns. Empty values are skipped, otherwise everything would match.
"""

import base64
from typing import Iterable, Mapping, Optional, Union
from urllib.parse import quote

Secrets = Union[Mapping[str, str], Iterable[tuple[str, str]]]


def encoded_forms(value: str) -> list[tuple[Optional[str], str]]:
    """
    Return the (encoding label, text) forms searched for a value.

    The raw value comes first with label None. URL-safe base64 is only
    included when it differs from standard base64, and percent-encoding only
    when it differs from the raw value.
    """
    if not value:
        return []

    raw = value.encode("utf-8")
    forms: list[tuple[Optional[str], str]] = [(None, value)]

    b64_standard = base64.b64encode(raw).decode("ascii")
    forms.append(("base64", b64_standard))

    b64_url = base64.urlsafe_b64encode(raw).decode("ascii")
    if b64_url != b64_standard:
        forms.append(("base64url", b64_url))

    # Unreserved characters (A-Za-z0-9-_.~) are left as-is
    url_encoded = quote(value, safe="")
    if url_encoded != value:
        forms.append(("urlencoded", url_encoded))

    return forms


def redaction_marker(name: str, encoding: Optional[str] = None) -> str:
    if encoding:
        return f"[REDACTED:{name}:{encoding}]"
    return f"[REDACTED:{name}]"


def sanitize(text: str, secrets: Secrets) -> str:
    """
    Replace every occurrence of every secret value (and its encodings) in text.

    `secrets` is a name -> value mapping or an iterable of (name, value) pairs.
    Pairs may repeat a name with different values; each value is redacted.
    """
    pairs = secrets.items() if isinstance(secrets, Mapping) else secrets

    replacements = []
    for name, value in pairs:
        for encoding, needle in encoded_forms(value):
            replacements.append((needle, redaction_marker(name, encoding)))

    # Longest needles first, so a value containing another secret's value is
    # redacted whole. sort() is stable, keeping raw before encodings per secret.
    replacements.sort(key=lambda item: len(item[0]), reverse=True)

    for needle, marker in replacements:
        text = text.replace(needle, marker)
    return text


def sanitize_bytes(data: bytes, secrets: Secrets) -> str:
    """Decode output (invalid UTF-8 replaced, never fatal) and sanitize it."""
    return sanitize(data.decode("utf-8", errors="replace"), secrets)

"""
PII redaction for query results.

Applied to result rows when a profile sets ``removePII``. Credentials in
URLs are redacted before e-mail addresses so ``user:pass@host`` is not
half-eaten by the e-mail pattern.
"""

from __future__ import annotations

import re
from typing import Any

_URL_CREDENTIALS = re.compile(r"\b(https?://)([^:/\s]+):([^@\s]+)@")
_EMAIL = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
_IPV4 = re.compile(r"\b(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})\b")
_GUID = re.compile(
    r"\b([0-9a-f]{8})-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b",
    re.IGNORECASE,
)
_PHONE = re.compile(r"\b(?:\+?1[-.]?)?\(?([0-9]{3})\)?[-.]?([0-9]{3})[-.]?([0-9]{4})\b")


def redact_url_credentials(text: str) -> str:
    return _URL_CREDENTIALS.sub(r"\1[USER_REDACTED]:[PASS_REDACTED]@", text)


def redact_emails(text: str) -> str:
    return _EMAIL.sub("[EMAIL_REDACTED]", text)


def mask_ips(text: str) -> str:
    """Keep the first two octets."""
    return _IPV4.sub(r"\1.\2.xxx.xxx", text)


def mask_guids(text: str) -> str:
    """Keep the first 8 characters."""
    return _GUID.sub(r"\1-xxxx-xxxx-xxxx-xxxxxxxxxxxx", text)


def redact_phones(text: str) -> str:
    return _PHONE.sub("[PHONE_REDACTED]", text)


def sanitize(text: str) -> str:
    if not text:
        return text
    for rule in (redact_url_credentials, redact_emails, mask_ips, mask_guids, redact_phones):
        text = rule(text)
    return text


def sanitize_object(obj: Any) -> Any:
    """Apply sanitize() to every string inside nested lists/tuples/dicts."""
    if isinstance(obj, str):
        return sanitize(obj)
    if isinstance(obj, (list, tuple)):
        return [sanitize_object(item) for item in obj]
    if isinstance(obj, dict):
        return {key: sanitize_object(value) for key, value in obj.items()}
    return obj

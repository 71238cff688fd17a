"""
Owner contact validation and E.164 phone normalization
"""
import re
from typing import Optional

from storage.errors import ValidationError

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Values staff type into contact fields when the real value is unknown
PLACEHOLDER_VALUES = {
    "unknown", "none", "null", "n/a", "na", "-", "--", "tbd", "no phone", "no email",
    "noemail@noemail.com", "none@none.com", "test@test.com",
}


def normalize_to_e164(phone: Optional[str]) -> Optional[str]:
    """
    Normalize a phone number to E.164

    10 digits are treated as a US number, 11 digits starting with 1 as a US
    number with country code. Numbers already written with a leading ``+`` are
    kept if they are valid E.164.

    Returns:
        E.164 string, or None if the input cannot be normalized
    """
    if not phone:
        return None

    raw = phone.strip()
    digits = re.sub(r"\D", "", raw)

    if raw.startswith("+"):
        candidate = f"+{digits}"
    elif len(digits) == 10:
        candidate = f"+1{digits}"
    elif len(digits) == 11 and digits.startswith("1"):
        candidate = f"+{digits}"
    else:
        return None

    return candidate if E164_PATTERN.match(candidate) else None


def is_placeholder(value: Optional[str]) -> bool:
    if value is None:
        return True
    stripped = value.strip().lower()
    if not stripped or stripped in PLACEHOLDER_VALUES:
        return True
    digits = re.sub(r"\D", "", stripped)
    # 000-000-0000 style fillers
    return bool(digits) and set(digits) == {"0"} and "@" not in stripped


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and not is_placeholder(email) and bool(EMAIL_PATTERN.match(email.strip()))


def has_valid_contact(value: Optional[str]) -> bool:
    """True if ``value`` is a usable email address or E.164-normalizable phone"""
    if is_placeholder(value):
        return False
    if "@" in value:
        return is_valid_email(value)
    return normalize_to_e164(value) is not None


def require_e164(phone: str) -> str:
    """Normalize or raise ValidationError"""
    normalized = normalize_to_e164(phone)
    if normalized is None or is_placeholder(phone):
        raise ValidationError(f"Invalid phone number: {phone!r}")
    return normalized


def require_email(email: str) -> str:
    """Validate and lowercase an email or raise ValidationError"""
    if not is_valid_email(email):
        raise ValidationError(f"Invalid email address: {email!r}")
    return email.strip().lower()

"""
Input validators for onboarding.

All checks run on the digit-stripped form of the input, and that stripped
form is what callers store. Nothing here holds state.
"""

import re
from enum import Enum
from typing import Iterable

from services.errors import UnknownService

NON_DIGIT_RE = re.compile(r"\D")
EMAIL_RE = re.compile(r"^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$")

PHONE_LENGTH = 10
NATIONAL_ID_LENGTH = 12


class ServiceCategory(str, Enum):
    PLUMBING = "plumbing"
    ELECTRICAL = "electrical"
    CARPENTRY = "carpentry"
    PAINTING = "painting"
    CLEANING = "cleaning"
    AC_REPAIR = "ac_repair"


# Verhoeff dihedral-group tables (Aadhaar check digit)
_VERHOEFF_D = (
    (0, 1, 2, 3, 4, 5, 6, 7, 8, 9),
    (1, 2, 3, 4, 0, 6, 7, 8, 9, 5),
    (2, 3, 4, 0, 1, 7, 8, 9, 5, 6),
    (3, 4, 0, 1, 2, 8, 9, 5, 6, 7),
    (4, 0, 1, 2, 3, 9, 5, 6, 7, 8),
    (5, 9, 8, 7, 6, 0, 4, 3, 2, 1),
    (6, 5, 9, 8, 7, 1, 0, 4, 3, 2),
    (7, 6, 5, 9, 8, 2, 1, 0, 4, 3),
    (8, 7, 6, 5, 9, 3, 2, 1, 0, 4),
    (9, 8, 7, 6, 5, 4, 3, 2, 1, 0),
)
_VERHOEFF_P = (
    (0, 1, 2, 3, 4, 5, 6, 7, 8, 9),
    (1, 5, 7, 6, 2, 8, 3, 0, 9, 4),
    (5, 8, 0, 3, 7, 9, 6, 1, 4, 2),
    (8, 9, 1, 6, 0, 4, 3, 5, 2, 7),
    (9, 4, 5, 3, 1, 2, 6, 8, 7, 0),
    (4, 2, 8, 6, 5, 7, 3, 9, 0, 1),
    (2, 7, 9, 3, 8, 0, 6, 4, 1, 5),
    (7, 0, 4, 6, 9, 1, 3, 2, 5, 8),
)


def digits_only(raw: str | None) -> str:
    """Strip every non-digit character."""
    return NON_DIGIT_RE.sub("", raw or "")


def is_valid_phone_number(raw: str | None) -> bool:
    """10 digits after sanitizing, not starting with 0."""
    phone = digits_only(raw)
    return len(phone) == PHONE_LENGTH and not phone.startswith("0")


def verhoeff_valid(number: str) -> bool:
    check = 0
    for i, ch in enumerate(reversed(number)):
        check = _VERHOEFF_D[check][_VERHOEFF_P[i % 8][int(ch)]]
    return check == 0


def is_valid_national_id(raw: str | None, checksum: bool = False) -> bool:
    """
    12 digits after sanitizing.

    Args:
        raw: Aadhaar number as typed (spaces/dashes allowed)
        checksum: also require a valid Verhoeff check digit

    Returns:
        True if the number passes the enabled checks
    """
    aadhaar = digits_only(raw)
    if len(aadhaar) != NATIONAL_ID_LENGTH:
        return False
    if checksum:
        return verhoeff_valid(aadhaar)
    return True


def is_valid_email(raw: str | None) -> bool:
    email = (raw or "").strip()
    return bool(EMAIL_RE.match(email)) and len(email) <= 255


def parse_services(values: Iterable[str]) -> list[ServiceCategory]:
    """Normalize category identifiers, keeping first-seen order without duplicates."""
    categories: list[ServiceCategory] = []
    unknown: list[str] = []
    for value in values:
        key = str(value).strip().lower().replace(" ", "_")
        if not key:
            continue
        try:
            category = ServiceCategory(key)
        except ValueError:
            unknown.append(str(value))
            continue
        if category not in categories:
            categories.append(category)

    if unknown:
        raise UnknownService(f"Unknown service category: {', '.join(unknown)}")
    return categories


def mask_phone(phone: str) -> str:
    """Log-safe phone: ******3210."""
    return "*" * max(len(phone) - 4, 0) + phone[-4:]


def mask_national_id(national_id: str) -> str:
    """Log-safe Aadhaar: XXXX-XXXX-9012."""
    return f"XXXX-XXXX-{digits_only(national_id)[-4:]}"

"""
Phone number normalization for mobile-money rails.

Rails want the bare international form without "+": 254712345678.
"""

from __future__ import annotations

import re

from django.conf import settings

_NON_DIGITS = re.compile(r"\D+")


def normalize_phone(phone: str, country_code: str | None = None) -> str:
    """
    Normalize a phone number to country-code-prefixed digits.

    Examples:
        >>> normalize_phone("0712345678")
        '254712345678'
        >>> normalize_phone("+254 712 345 678")
        '254712345678'
        >>> normalize_phone("712345678")
        '254712345678'

    Raises:
        ValueError: If no digits remain
    """
    country_code = country_code or settings.PHONE_COUNTRY_CODE
    digits = _NON_DIGITS.sub("", phone or "")
    if not digits:
        raise ValueError("Phone number has no digits")

    if digits.startswith(country_code):
        return digits
    if digits.startswith("0"):
        return country_code + digits[1:]
    return country_code + digits

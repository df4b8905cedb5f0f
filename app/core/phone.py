"""
Kenyan mobile number normalization for M-Pesa.

The provider expects ``254`` followed by a 9-digit subscriber number that
starts with 7 (Safaricom 07xx) or 1 (01xx range).
"""
import re
from typing import Optional

from app.core.errors import ValidationError

COUNTRY_CODE = "254"
SUBSCRIBER_NUMBER = re.compile(r"^[71]\d{8}$")


def format_kenyan_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize a Kenyan phone number to the provider format.
    
    Accepts ``+254XXXXXXXXX``, ``254XXXXXXXXX``, ``07XXXXXXXX`` and
    ``01XXXXXXXX``, ignoring spaces, dashes and brackets.
    
    Returns:
        ``254XXXXXXXXX`` or None if the number is not a valid mobile number
    """
    if not phone:
        return None
    
    cleaned = re.sub(r"[^\d+]", "", str(phone))
    
    if cleaned.startswith("+" + COUNTRY_CODE):
        number = cleaned[4:]
    elif cleaned.startswith(COUNTRY_CODE):
        number = cleaned[3:]
    elif cleaned.startswith("0"):
        number = cleaned[1:]
    else:
        return None
    
    if not SUBSCRIBER_NUMBER.match(number):
        return None
    return f"{COUNTRY_CODE}{number}"


def normalize_phone(phone: Optional[str]) -> str:
    """Same as format_kenyan_phone() but raises ValidationError on bad input."""
    formatted = format_kenyan_phone(phone)
    if not formatted:
        raise ValidationError(
            "Invalid Kenyan phone number format. Use +254XXXXXXXXX or 07XXXXXXXX/01XXXXXXXX"
        )
    return formatted

import random
import string
import time
from typing import Optional

from randomcall.db.models import Gender

_BASE36 = string.digits + string.ascii_lowercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_call_id() -> str:
    """call_<milliseconds in base36>_<9 random base36 chars>"""
    timestamp = _to_base36(int(time.time() * 1000))
    suffix = "".join(random.choices(_BASE36, k=9))
    return f"call_{timestamp}_{suffix}"


def normalize_gender(value) -> Optional[Gender]:
    """Map free-form gender input onto Gender; empty means unset."""
    if value is None:
        return None
    if isinstance(value, Gender):
        return value
    text = str(value).strip().lower()
    if not text:
        return None
    try:
        return Gender(text)
    except ValueError:
        return Gender.OTHER


def candidate_tiers(gender: Optional[Gender]) -> list[Optional[Gender]]:
    """
    Gender filters to search, in priority order.

    Opposite gender first (only for male/female), then same gender (any set
    gender), then anyone (None).
    """
    tiers: list[Optional[Gender]] = []
    if gender == Gender.MALE:
        tiers.append(Gender.FEMALE)
    elif gender == Gender.FEMALE:
        tiers.append(Gender.MALE)
    if gender is not None:
        tiers.append(gender)
    tiers.append(None)
    return tiers

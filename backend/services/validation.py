"""
Input validation helpers shared by the account and study routes
"""
import re
from typing import Optional, Any

from models import UserRole

VALID_ROLES = tuple(role.value for role in UserRole)
VALID_CATEGORIES = ("technology", "healthcare", "financial", "education", "b2b", "vehicle")
VALID_TARGET_CATEGORIES = VALID_CATEGORIES + ("all",)

MIN_PASSWORD_LENGTH = 6

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
UUID_REGEX = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

# Checked in order; first keyword hit wins
CATEGORY_KEYWORDS = (
    ("technology", ("technology", "developer", "tech")),
    ("healthcare", ("healthcare", "health", "medical")),
    ("financial", ("financial", "finance")),
    ("education", ("education", "teacher")),
    ("b2b", ("b2b", "decision maker")),
    ("vehicle", ("vehicle", "automotive", "car")),
)


def is_valid_uuid(value: Any) -> bool:
    return isinstance(value, str) and bool(UUID_REGEX.match(value))


def is_valid_email(value: Any) -> bool:
    return isinstance(value, str) and bool(EMAIL_REGEX.match(value))


def is_valid_role(value: Any) -> bool:
    return value in VALID_ROLES


def is_valid_category(value: Any) -> bool:
    return value in VALID_CATEGORIES


def is_valid_target_category(value: Any) -> bool:
    return value in VALID_TARGET_CATEGORIES


def determine_target_category(audience: str, explicit_category: Optional[str] = None) -> str:
    """Explicit category if given, otherwise inferred from audience keywords ("all" if none)"""
    if explicit_category:
        return explicit_category

    text = (audience or "").lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return category
    return "all"

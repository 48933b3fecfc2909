# input validation helpers shared by the services; all raise ValidationError
from __future__ import annotations

import math
import re
from typing import Any, Dict, Optional, Tuple

from utils.errors import ValidationError

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 50
PASSWORD_MIN_LENGTH = 4
# bcrypt only reads this many bytes of the secret
PASSWORD_MAX_BYTES = 72
PRODUCT_NAME_MAX_LENGTH = 150
DESCRIPTION_MAX_LENGTH = 500
CATEGORY_NAME_MAX_LENGTH = 100
MAX_STOCK = 999_999
MAX_PRICE = 999_999.99
MAX_PAGE_SIZE = 1000
DEFAULT_PAGE_SIZE = 100

ROLES = ("admin", "standard")
PAYMENT_METHODS = ("cash", "card", "transfer", "mixed")

_USERNAME_RE = re.compile(r"^[A-Za-z0-9_]+$")


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def required(value: Any, field: str) -> Any:
    if _blank(value) or (isinstance(value, (list, tuple)) and not value):
        raise ValidationError(f"{field} is required", code="REQUIRED_FIELD", field=field)
    return value


def text(
    value: Any, field: str, min_length: int = 0, max_length: Optional[int] = None
) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be text", field=field)
    value = value.strip()
    if len(value) < min_length:
        raise ValidationError(
            f"{field} must be at least {min_length} characters", field=field
        )
    if max_length is not None and len(value) > max_length:
        raise ValidationError(
            f"{field} cannot be longer than {max_length} characters", field=field
        )
    return value


def optional_text(value: Any, field: str, max_length: int) -> Optional[str]:
    if _blank(value):
        return None
    return text(value, field, 0, max_length)


def number(
    value: Any,
    field: str,
    minimum: float = -math.inf,
    maximum: float = math.inf,
) -> float:
    if isinstance(value, bool) or _blank(value):
        raise ValidationError(f"{field} must be a valid number", code="INVALID_NUMBER", field=field)
    try:
        num = float(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(
            f"{field} must be a valid number", code="INVALID_NUMBER", field=field
        ) from None
    if not math.isfinite(num):
        raise ValidationError(f"{field} must be a valid number", code="INVALID_NUMBER", field=field)
    if num < minimum:
        raise ValidationError(f"{field} must be greater than or equal to {minimum:g}", field=field)
    if num > maximum:
        raise ValidationError(f"{field} must be less than or equal to {maximum:g}", field=field)
    return num


def integer(
    value: Any,
    field: str,
    minimum: float = -math.inf,
    maximum: float = math.inf,
) -> int:
    num = number(value, field, minimum, maximum)
    if not num.is_integer():
        raise ValidationError(f"{field} must be a whole number", field=field)
    return int(num)


def price(value: Any, field: str = "Price") -> float:
    return number(value, field, 0, MAX_PRICE)


def stock(value: Any, field: str = "Stock") -> int:
    return integer(value, field, 0, MAX_STOCK)


def record_id(value: Any, field: str = "ID") -> int:
    return integer(value, field, 1)


def optional_id(value: Any, field: str) -> Optional[int]:
    if _blank(value) or value == 0:
        return None
    return record_id(value, field)


def username(value: Any, field: str = "Username") -> str:
    required(value, field)
    value = text(value, field, USERNAME_MIN_LENGTH, USERNAME_MAX_LENGTH)
    if not _USERNAME_RE.match(value):
        raise ValidationError(
            f"{field} may only contain letters, numbers and underscores", field=field
        )
    return value


def password(value: Any, field: str = "Password") -> str:
    required(value, field)
    if not isinstance(value, str) or len(value) < PASSWORD_MIN_LENGTH:
        raise ValidationError(
            f"{field} must be at least {PASSWORD_MIN_LENGTH} characters", field=field
        )
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValidationError(
            f"{field} cannot be longer than {PASSWORD_MAX_BYTES} bytes", field=field
        )
    return value


def role(value: Any) -> str:
    required(value, "Role")
    if value not in ROLES:
        raise ValidationError(f"Role must be one of: {', '.join(ROLES)}", field="role")
    return value


def payment_method(value: Any) -> str:
    if _blank(value):
        return "cash"
    if value not in PAYMENT_METHODS:
        raise ValidationError(
            f"Payment method must be one of: {', '.join(PAYMENT_METHODS)}",
            field="payment_method",
        )
    return value


def product_name(value: Any) -> str:
    required(value, "Product name")
    return text(value, "Product name", 1, PRODUCT_NAME_MAX_LENGTH)


def category_name(value: Any, field: str = "Category name") -> str:
    required(value, field)
    return text(value, field, 1, CATEGORY_NAME_MAX_LENGTH)


def pagination(page: Any, limit: Any) -> Tuple[int, int]:
    page = integer(1 if _blank(page) else page, "Page", 1)
    limit = integer(DEFAULT_PAGE_SIZE if _blank(limit) else limit, "Limit", 1, MAX_PAGE_SIZE)
    return page, limit


# legacy coercions: invalid input silently falls back instead of failing


def lenient_int(value: Any, floor: int = 0) -> int:
    try:
        num = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return floor
    return num if num >= floor else floor


def lenient_float(value: Any) -> float:
    try:
        num = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    return num if math.isfinite(num) and num >= 0 else 0.0


def lenient_id(value: Any) -> Optional[int]:
    num = lenient_int(value, 0)
    return num or None


def search_filters(filters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    filters = filters or {}
    validated: Dict[str, Any] = {}
    search = filters.get("search")
    if isinstance(search, str) and search.strip():
        validated["search"] = search.strip().replace("<", "").replace(">", "")[:200]
    if not _blank(filters.get("category_id")):
        validated["category_id"] = record_id(filters["category_id"], "Category")
    if not _blank(filters.get("subcategory_id")):
        validated["subcategory_id"] = record_id(filters["subcategory_id"], "Subcategory")
    validated["show_out_of_stock"] = bool(filters.get("show_out_of_stock", True))
    return validated

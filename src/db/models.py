# provide dataclass models

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


def as_dict(obj) -> Dict[str, Any]:
    """asdict() with datetimes rendered as ISO strings, for bridge responses."""
    out = {}
    for key, value in dataclasses.asdict(obj).items():
        if isinstance(value, datetime):
            value = value.replace(microsecond=0).isoformat().replace("+00:00", "Z")
        out[key] = value
    return out


@dataclass(frozen=True)
class User:
    id: int
    username: str
    role: str  # "admin" or "standard"
    password_hash: str = field(default="", repr=False, compare=False)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def public(self) -> Dict[str, Any]:
        return {"id": self.id, "username": self.username, "role": self.role}


@dataclass(frozen=True)
class Session:
    id: int
    user_id: int
    token: str  # plaintext; only known to the issuing process
    created_at: datetime
    expires_at: datetime
    active: bool = True


@dataclass(frozen=True)
class Category:
    id: int
    name: str


@dataclass(frozen=True)
class Subcategory:
    id: int
    name: str
    category_id: int


@dataclass(frozen=True)
class Product:
    id: int
    name: str
    description: Optional[str]
    price_usd: float
    price_cup: float
    oprice_cup: float
    pxg_cup: float
    stock: int
    quantity: int
    extractions: int
    defectives: int
    category_id: int
    subcategory_id: Optional[int]
    barcode: Optional[str]
    supplier: Optional[str]
    created_at: datetime
    updated_at: datetime
    category_name: Optional[str] = None
    subcategory_name: Optional[str] = None


@dataclass(frozen=True)
class StockMovement:
    id: int
    product_id: int
    type: str  # "entry", "exit" or "adjustment"
    quantity: int
    stock_before: int
    stock_after: int
    reason: Optional[str]
    created_at: datetime

    @property
    def signed_quantity(self) -> int:
        return self.stock_after - self.stock_before


@dataclass(frozen=True)
class SaleLine:
    id: int
    ticket: str
    product_id: int
    quantity: int
    unit_price: float
    total_price: float
    payment_method: str
    user_id: int
    discount: float
    created_at: datetime
    product_name: Optional[str] = None
    seller: Optional[str] = None


@dataclass(frozen=True)
class Service:
    id: int
    name: str
    description: Optional[str]
    price: float
    estimated_minutes: Optional[int]
    category_id: Optional[int]
    active: bool
    created_at: datetime
    category_name: Optional[str] = None

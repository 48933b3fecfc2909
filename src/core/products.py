# products and the stock ledger: every stock change is written with its movement
from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import aiosqlite

import db.crud as crud
import utils.validators as v
from db.database import Database
from db.models import Product, as_dict
from utils.config import Settings
from utils.errors import BusinessError, NotFoundError, ValidationError, returns_result
from utils.logger import get_logger
from utils.time_utils import utcnow

_logger = get_logger(__name__)

UPDATABLE_FIELDS = crud.PRODUCT_COLUMNS

PRICE_FIELDS = ("price_usd", "price_cup", "oprice_cup", "pxg_cup")
COUNTER_FIELDS = ("extractions", "defectives")
TEXT_LIMITS = {
    "description": v.DESCRIPTION_MAX_LENGTH,
    "barcode": 50,
    "supplier": 100,
}

FIELD_LABELS = {
    "name": "Product name",
    "description": "Description",
    "price_usd": "USD price",
    "price_cup": "CUP price",
    "oprice_cup": "Original CUP price",
    "pxg_cup": "Wholesale CUP price",
    "stock": "Stock",
    "quantity": "Quantity",
    "extractions": "Extractions",
    "defectives": "Defectives",
    "category_id": "Category",
    "subcategory_id": "Subcategory",
    "barcode": "Barcode",
    "supplier": "Supplier",
}


def stock_status(stock: int, low: int = 5, medium: int = 20) -> str:
    if stock <= 0:
        return "empty"
    if stock <= low:
        return "low"
    if stock <= medium:
        return "medium"
    return "high"


def insufficient_stock(product: Product, requested: int) -> BusinessError:
    return BusinessError(
        f"Insufficient stock for '{product.name}': "
        f"available {product.stock}, requested {requested}",
        code="INSUFFICIENT_STOCK",
        product_id=product.id,
    )


class ProductService:
    def __init__(
        self,
        database: Database,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = database
        self.settings = settings
        self._clock = clock

    # ---------- coercion ----------

    def _coerce(self, field: str, value: Any) -> Any:
        """Validate one product field. Text rules are always strict."""
        label = FIELD_LABELS[field]
        if field == "name":
            return v.product_name(value)
        if field in TEXT_LIMITS:
            return v.optional_text(value, label, TEXT_LIMITS[field])
        if self.settings.lenient_numeric_fields:
            return self._coerce_lenient(field, value)

        if field == "stock":
            return v.stock(value, label)
        if field == "quantity":
            return v.integer(value, label, 1, v.MAX_STOCK)
        if field in COUNTER_FIELDS:
            return v.integer(value, label, 0, v.MAX_STOCK)
        if field in PRICE_FIELDS:
            return v.price(value, label)
        if field == "category_id":
            return v.record_id(value, label)
        return v.optional_id(value, label)

    def _coerce_lenient(self, field: str, value: Any) -> Any:
        # invalid or negative numbers fall back to a default instead of failing
        if field in ("stock",) + COUNTER_FIELDS:
            return v.lenient_int(value, 0)
        if field == "quantity":
            return v.lenient_int(value, 1)
        if field in PRICE_FIELDS:
            return v.lenient_float(value)
        num = v.lenient_id(value)
        if field == "category_id" and num is None:
            raise ValidationError("Category is required", code="REQUIRED_FIELD")
        return num

    async def _check_category(
        self,
        conn: aiosqlite.Connection,
        category_id: int,
        subcategory_id: Optional[int],
    ) -> None:
        if await crud.get_category(conn, category_id) is None:
            raise NotFoundError("Category")
        if subcategory_id is None:
            return
        subcategory = await crud.get_subcategory(conn, subcategory_id)
        if subcategory is None:
            raise NotFoundError("Subcategory")
        if subcategory.category_id != category_id:
            raise ValidationError(
                "Subcategory does not belong to the selected category",
                code="CATEGORY_MISMATCH",
            )

    def _present(self, product: Product) -> Dict[str, Any]:
        data = as_dict(product)
        data["stock_status"] = stock_status(
            product.stock,
            self.settings.low_stock_threshold,
            self.settings.medium_stock_threshold,
        )
        return data

    async def _load(self, conn: aiosqlite.Connection, product_id: int) -> Product:
        product = await crud.get_product(conn, product_id)
        if product is None:
            raise NotFoundError("Product", product_id=product_id)
        return product

    # ---------- ledger ----------

    async def apply_stock_change(
        self,
        conn: aiosqlite.Connection,
        product: Product,
        new_stock: int,
        reason: str,
        kind: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Optional[int]:
        """
        Set a product's stock and append the matching movement, on the caller's
        connection and inside the caller's transaction.

        ``product`` must have been read inside that same transaction. ``kind``
        defaults to entry/exit by the sign of the change. Returns the movement
        id, or None when the stock is unchanged.
        """
        if new_stock < 0:
            raise insufficient_stock(product, product.stock - new_stock)
        delta = new_stock - product.stock
        now = self._clock()
        await crud.update_product(conn, product.id, {"stock": new_stock, **(extra or {})}, now)
        if delta == 0:
            return None
        if kind is None:
            kind = "entry" if delta > 0 else "exit"
        movement_id = await crud.insert_movement(
            conn, product.id, kind, abs(delta), product.stock, new_stock, reason, now
        )
        _logger.debug(
            f"Stock of product {product.id}: {product.stock} -> {new_stock} ({kind}, {reason})"
        )
        return movement_id

    # ---------- operations ----------

    @returns_result
    async def create_product(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise ValidationError("Product data must be an object")
        v.required(data.get("name"), "Product name")
        v.required(data.get("category_id"), "Category")

        values: Dict[str, Any] = {"stock": 0, "quantity": 1}
        for field in UPDATABLE_FIELDS:
            if field in data and data[field] is not None:
                values[field] = self._coerce(field, data[field])
        if not values.get("price_cup"):
            values["price_cup"] = round(
                values.get("price_usd", 0.0) * self.settings.usd_to_cup_rate, 2
            )

        async with self._db.transaction() as conn:
            await self._check_category(
                conn, values["category_id"], values.get("subcategory_id")
            )
            now = self._clock()
            product_id = await crud.insert_product(conn, values, now)
            initial = values["stock"]
            if initial > 0:
                await crud.insert_movement(
                    conn, product_id, "entry", initial, 0, initial, "initial stock", now
                )

        _logger.info(f"Product created: {values['name']} (id={product_id})")
        return {"success": True, "id": product_id}

    @returns_result
    async def update_product(self, product_id: Any, patch: Dict[str, Any]) -> Dict[str, Any]:
        product_id = v.record_id(product_id, "Product ID")
        if not isinstance(patch, dict):
            raise ValidationError("Product data must be an object")
        changes = {
            field: self._coerce(field, value)
            for field, value in patch.items()
            if field in UPDATABLE_FIELDS
        }
        if not changes:
            raise ValidationError("No valid fields to update", code="NO_FIELDS")

        async with self._db.transaction() as conn:
            product = await self._load(conn, product_id)
            if "category_id" in changes or "subcategory_id" in changes:
                await self._check_category(
                    conn,
                    changes.get("category_id", product.category_id),
                    changes.get("subcategory_id", product.subcategory_id),
                )
            new_stock = changes.pop("stock", None)
            if changes:
                await crud.update_product(conn, product_id, changes, self._clock())
            if new_stock is not None and new_stock != product.stock:
                await self.apply_stock_change(conn, product, new_stock, "manual adjustment")

        fields = ", ".join(sorted(k for k in patch if k in UPDATABLE_FIELDS))
        _logger.info(f"Product {product_id} updated: {fields}")
        return {"success": True}

    @returns_result
    async def update_product_field(self, product_id: Any, field: Any, value: Any) -> Dict[str, Any]:
        if field not in UPDATABLE_FIELDS:
            raise ValidationError(f"Field '{field}' cannot be updated", code="INVALID_FIELD")
        return await self.update_product(product_id, {field: value})

    @returns_result
    async def adjust_stock(self, product_id: Any, delta: Any, reason: Any = None) -> Dict[str, Any]:
        """Relative stock change recorded as an ``adjustment`` movement."""
        product_id = v.record_id(product_id, "Product ID")
        delta = v.integer(delta, "Quantity", -v.MAX_STOCK, v.MAX_STOCK)
        if delta == 0:
            raise ValidationError("Quantity cannot be zero")
        reason = v.optional_text(reason, "Reason", 200) or "stock adjustment"

        async with self._db.transaction() as conn:
            product = await self._load(conn, product_id)
            new_stock = product.stock + delta
            if new_stock < 0:
                raise insufficient_stock(product, -delta)
            await self.apply_stock_change(conn, product, new_stock, reason, "adjustment")

        return {"success": True, "stock": new_stock}

    async def _withdraw(
        self, product_id: Any, quantity: Any, reason: Any, counter: str
    ) -> Dict[str, Any]:
        product_id = v.record_id(product_id, "Product ID")
        quantity = v.integer(quantity, "Quantity", 1, v.MAX_STOCK)
        reason = v.optional_text(reason, "Reason", 200) or counter[:-1]

        async with self._db.transaction() as conn:
            product = await self._load(conn, product_id)
            if quantity > product.stock:
                raise insufficient_stock(product, quantity)
            await self.apply_stock_change(
                conn,
                product,
                product.stock - quantity,
                reason,
                "exit",
                extra={counter: getattr(product, counter) + quantity},
            )

        _logger.info(f"{quantity} unit(s) of product {product_id} moved to {counter}")
        return {
            "success": True,
            "stock": product.stock - quantity,
            counter: getattr(product, counter) + quantity,
        }

    @returns_result
    async def record_extraction(self, product_id: Any, quantity: Any, reason: Any = None) -> Dict[str, Any]:
        """Take units out of stock for internal use, counting them as extractions."""
        return await self._withdraw(product_id, quantity, reason, "extractions")

    @returns_result
    async def record_defectives(self, product_id: Any, quantity: Any, reason: Any = None) -> Dict[str, Any]:
        """Take damaged units out of stock, counting them as defectives."""
        return await self._withdraw(product_id, quantity, reason, "defectives")

    @returns_result
    async def delete_product(self, product_id: Any) -> Dict[str, Any]:
        product_id = v.record_id(product_id, "Product ID")
        async with self._db.transaction() as conn:
            product = await self._load(conn, product_id)
            if await crud.count_sales_for_product(conn, product_id):
                raise BusinessError(
                    f"Product '{product.name}' has recorded sales and cannot be deleted",
                    code="HAS_DEPENDENTS",
                )
            if product.stock > 0:
                await self.apply_stock_change(conn, product, 0, "product deleted")
            await crud.delete_product(conn, product_id)

        _logger.info(f"Product deleted: {product.name} (id={product_id})")
        return {"success": True}

    @returns_result
    async def get_product(self, product_id: Any) -> Dict[str, Any]:
        product_id = v.record_id(product_id, "Product ID")
        async with self._db.connection() as conn:
            product = await self._load(conn, product_id)
        return {"success": True, "product": self._present(product)}

    @returns_result
    async def list_products(
        self, page: Any = 1, limit: Any = v.DEFAULT_PAGE_SIZE, filters: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        page, limit = v.pagination(page, limit)
        filters = v.search_filters(filters)
        async with self._db.connection() as conn:
            products, total = await crud.search_products(
                conn, filters, limit, (page - 1) * limit
            )
        return {
            "success": True,
            "items": [self._present(p) for p in products],
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit),
        }

    @returns_result
    async def list_movements(self, product_id: Any) -> Dict[str, Any]:
        product_id = v.record_id(product_id, "Product ID")
        async with self._db.connection() as conn:
            movements = await crud.list_movements(conn, product_id)
        items = []
        for m in movements:
            item = as_dict(m)
            item["signed_quantity"] = m.signed_quantity
            items.append(item)
        return {"success": True, "items": items}

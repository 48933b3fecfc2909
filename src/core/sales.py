# multi-line sales applied atomically against the stock ledger, plus the service catalog
from __future__ import annotations

import math
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiosqlite

import db.crud as crud
import utils.validators as v
from core.products import ProductService, insufficient_stock
from db.database import Database
from db.models import as_dict
from utils.errors import BusinessError, NotFoundError, ValidationError, returns_result
from utils.logger import get_logger
from utils.time_utils import parse_date_filter, utcnow

_logger = get_logger(__name__)

SERVICE_NAME_MAX_LENGTH = 150
MAX_ESTIMATED_MINUTES = 7 * 24 * 60
MAX_TOP_PRODUCTS = 100


def _new_ticket(now: datetime) -> str:
    return f"{now:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"


def _date_range(date_from: Any, date_to: Any) -> Tuple[Optional[str], Optional[str]]:
    try:
        return (
            parse_date_filter(date_from),
            parse_date_filter(date_to, end_of_day=True),
        )
    except (TypeError, ValueError):
        raise ValidationError("Dates must be in YYYY-MM-DD or ISO-8601 format") from None


class SalesService:
    def __init__(
        self,
        database: Database,
        products: ProductService,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = database
        self.products = products
        self._clock = clock

    # ---------- sales ----------

    @staticmethod
    def _parse_lines(lines: Any) -> List[Dict[str, Any]]:
        if not isinstance(lines, (list, tuple)) or not lines:
            raise ValidationError("A sale needs at least one line item", code="EMPTY_SALE")
        parsed = []
        for n, line in enumerate(lines, start=1):
            if not isinstance(line, dict):
                raise ValidationError(f"Line {n} must be an object")
            unit_price = line.get("unit_price")
            parsed.append(
                {
                    "product_id": v.record_id(line.get("product_id"), f"Line {n} product"),
                    "quantity": v.integer(
                        line.get("quantity"), f"Line {n} quantity", 1, v.MAX_STOCK
                    ),
                    "unit_price": None
                    if unit_price is None or unit_price == ""
                    else v.price(unit_price, f"Line {n} unit price"),
                }
            )
        return parsed

    @returns_result
    async def register_sale(
        self,
        lines: Any,
        payment_method: Any = None,
        discount: Any = 0,
        user_id: Any = None,
    ) -> Dict[str, Any]:
        """
        Record a sale of one or more lines as a single atomic unit.

        Lines are processed in order; each one checks stock, inserts its sale
        row and decrements stock through the ledger. Any failure, including a
        discount larger than the total, rolls the whole sale back.
        """
        parsed = self._parse_lines(lines)
        payment_method = v.payment_method(payment_method)
        discount = 0.0 if discount in (None, "") else v.number(discount, "Discount", 0, v.MAX_PRICE)
        user_id = v.record_id(user_id, "User ID")

        now = self._clock()
        ticket = _new_ticket(now)
        line_items: List[Dict[str, Any]] = []
        total_before_discount = 0.0

        async with self._db.transaction() as conn:
            for index, line in enumerate(parsed):
                line_items.append(
                    await self._apply_line(
                        conn, ticket, line, payment_method, user_id,
                        discount if index == 0 else 0.0, now,
                    )
                )
                total_before_discount += line_items[-1]["total_price"]

            total_before_discount = round(total_before_discount, 2)
            if discount > total_before_discount:
                raise BusinessError(
                    f"Discount {discount:.2f} exceeds the sale total {total_before_discount:.2f}",
                    code="DISCOUNT_EXCEEDS_TOTAL",
                )

        total = round(total_before_discount - discount, 2)
        _logger.info(
            f"Sale {ticket} registered: {len(line_items)} line(s), total {total:.2f} "
            f"({payment_method}) by user id={user_id}"
        )
        return {
            "success": True,
            "ticket": ticket,
            "line_items": line_items,
            "total": total,
            "total_before_discount": total_before_discount,
            "discount": discount,
        }

    async def _apply_line(
        self,
        conn: aiosqlite.Connection,
        ticket: str,
        line: Dict[str, Any],
        payment_method: str,
        user_id: int,
        discount: float,
        now: datetime,
    ) -> Dict[str, Any]:
        product = await crud.get_product(conn, line["product_id"])
        if product is None:
            raise NotFoundError("Product", product_id=line["product_id"])
        quantity = line["quantity"]
        if quantity > product.stock:
            raise insufficient_stock(product, quantity)

        unit_price = line["unit_price"] if line["unit_price"] is not None else product.price_cup
        subtotal = round(quantity * unit_price, 2)
        sale_id = await crud.insert_sale_line(
            conn, ticket, product.id, quantity, unit_price, subtotal,
            payment_method, user_id, discount, now,
        )
        await self.products.apply_stock_change(
            conn, product, product.stock - quantity, f"sale {ticket}", "exit"
        )
        return {
            "id": sale_id,
            "product_id": product.id,
            "product_name": product.name,
            "quantity": quantity,
            "unit_price": unit_price,
            "total_price": subtotal,
        }

    @returns_result
    async def list_sales(self, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        filters = filters or {}
        page, limit = v.pagination(filters.get("page"), filters.get("limit"))
        date_from, date_to = _date_range(filters.get("date_from"), filters.get("date_to"))
        user_id = v.optional_id(filters.get("user_id"), "User ID")

        async with self._db.connection() as conn:
            sales, total = await crud.list_sales(
                conn, date_from, date_to, user_id, limit, (page - 1) * limit
            )
        return {
            "success": True,
            "items": [as_dict(s) for s in sales],
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit),
        }

    @returns_result
    async def get_sale(self, sale_id: Any) -> Dict[str, Any]:
        sale_id = v.record_id(sale_id, "Sale ID")
        async with self._db.connection() as conn:
            sale = await crud.get_sale(conn, sale_id)
            if sale is None:
                raise NotFoundError("Sale")
            ticket_lines = await crud.list_ticket_lines(conn, sale.ticket)
        return {
            "success": True,
            "sale": as_dict(sale),
            "ticket_lines": [as_dict(s) for s in ticket_lines],
        }

    @returns_result
    async def sales_statistics(self, date_from: Any = None, date_to: Any = None) -> Dict[str, Any]:
        date_from, date_to = _date_range(date_from, date_to)
        async with self._db.connection() as conn:
            stats = await crud.sales_statistics(conn, date_from, date_to)
        stats["revenue"] = round(stats["revenue"], 2)
        stats["average_sale"] = round(stats["average_sale"], 2)
        return {"success": True, "statistics": stats}

    @returns_result
    async def top_products(
        self, limit: Any = 10, date_from: Any = None, date_to: Any = None
    ) -> Dict[str, Any]:
        limit = v.integer(10 if limit in (None, "") else limit, "Limit", 1, MAX_TOP_PRODUCTS)
        date_from, date_to = _date_range(date_from, date_to)
        async with self._db.connection() as conn:
            items = await crud.top_products(conn, limit, date_from, date_to)
        return {"success": True, "items": items}

    # ---------- services ----------

    async def _service_values(self, conn: aiosqlite.Connection, data: Any) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise ValidationError("Service data must be an object")
        v.required(data.get("name"), "Service name")
        values = {
            "name": v.text(data["name"], "Service name", 1, SERVICE_NAME_MAX_LENGTH),
            "description": v.optional_text(
                data.get("description"), "Description", v.DESCRIPTION_MAX_LENGTH
            ),
            "price": v.price(data.get("price", 0), "Service price"),
            "estimated_minutes": None,
            "category_id": v.optional_id(data.get("category_id"), "Category"),
        }
        if data.get("estimated_minutes") not in (None, ""):
            values["estimated_minutes"] = v.integer(
                data["estimated_minutes"], "Estimated time", 0, MAX_ESTIMATED_MINUTES
            )
        if values["category_id"] is not None:
            if await crud.get_category(conn, values["category_id"]) is None:
                raise NotFoundError("Category")
        return values

    @returns_result
    async def list_services(self) -> Dict[str, Any]:
        async with self._db.connection() as conn:
            services = await crud.list_services(conn)
        return {"success": True, "items": [as_dict(s) for s in services]}

    @returns_result
    async def get_service(self, service_id: Any) -> Dict[str, Any]:
        service_id = v.record_id(service_id, "Service ID")
        async with self._db.connection() as conn:
            service = await crud.get_service(conn, service_id)
        if service is None or not service.active:
            raise NotFoundError("Service")
        return {"success": True, "service": as_dict(service)}

    @returns_result
    async def add_service(self, data: Any) -> Dict[str, Any]:
        async with self._db.transaction() as conn:
            values = await self._service_values(conn, data)
            service_id = await crud.insert_service(conn, created_at=self._clock(), **values)
        _logger.info(f"Service created: {values['name']} (id={service_id})")
        return {"success": True, "id": service_id}

    @returns_result
    async def edit_service(self, service_id: Any, data: Any) -> Dict[str, Any]:
        service_id = v.record_id(service_id, "Service ID")
        async with self._db.transaction() as conn:
            service = await crud.get_service(conn, service_id)
            if service is None or not service.active:
                raise NotFoundError("Service")
            values = await self._service_values(conn, data)
            await crud.update_service(conn, service_id, **values)
        return {"success": True}

    @returns_result
    async def delete_service(self, service_id: Any) -> Dict[str, Any]:
        """Soft delete: the row stays, flagged inactive."""
        service_id = v.record_id(service_id, "Service ID")
        async with self._db.transaction() as conn:
            if not await crud.deactivate_service(conn, service_id):
                raise NotFoundError("Service")
        _logger.info(f"Service deactivated (id={service_id})")
        return {"success": True}

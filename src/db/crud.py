# src/db/crud.py
# SQL for every table; each coroutine runs on a connection owned by the caller,
# so several of them can share one transaction.
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiosqlite

from db import models
from utils.time_utils import from_db, to_db


def _to_int(val) -> Optional[int]:
    try:
        return int(val)
    except (TypeError, ValueError):
        return None


async def _fetchone(conn: aiosqlite.Connection, sql: str, params: Sequence = ()):
    cur = await conn.execute(sql, tuple(params))
    row = await cur.fetchone()
    await cur.close()
    return row


async def _fetchall(conn: aiosqlite.Connection, sql: str, params: Sequence = ()):
    cur = await conn.execute(sql, tuple(params))
    rows = await cur.fetchall()
    await cur.close()
    return rows


async def _insert(conn: aiosqlite.Connection, sql: str, params: Sequence) -> int:
    cur = await conn.execute(sql, tuple(params))
    new_id = cur.lastrowid
    await cur.close()
    return int(new_id)


async def _execute(conn: aiosqlite.Connection, sql: str, params: Sequence = ()) -> int:
    cur = await conn.execute(sql, tuple(params))
    count = cur.rowcount
    await cur.close()
    return count


# ---------------------------
# Users
# ---------------------------


def _row_to_user(row) -> models.User:
    return models.User(
        id=int(row["id"]),
        username=row["username"],
        role=row["role"],
        password_hash=row["password_hash"] if "password_hash" in row.keys() else "",
    )


async def get_user_by_username(
    conn: aiosqlite.Connection, username: str
) -> Optional[models.User]:
    """User with password hash, or None."""
    row = await _fetchone(
        conn,
        "SELECT id, username, role, password_hash FROM users WHERE username = ?;",
        (username,),
    )
    return _row_to_user(row) if row else None


async def get_user(conn: aiosqlite.Connection, user_id: int) -> Optional[models.User]:
    row = await _fetchone(
        conn,
        "SELECT id, username, role, password_hash FROM users WHERE id = ?;",
        (user_id,),
    )
    return _row_to_user(row) if row else None


async def list_users(conn: aiosqlite.Connection) -> List[models.User]:
    rows = await _fetchall(
        conn, "SELECT id, username, role FROM users ORDER BY username;"
    )
    return [_row_to_user(row) for row in rows]


async def insert_user(
    conn: aiosqlite.Connection,
    username: str,
    password_hash: str,
    role: str,
    created_at: datetime,
) -> int:
    return await _insert(
        conn,
        "INSERT INTO users(username, password_hash, role, created_at) VALUES (?, ?, ?, ?);",
        (username, password_hash, role, to_db(created_at)),
    )


async def update_user(
    conn: aiosqlite.Connection,
    user_id: int,
    username: str,
    role: str,
    password_hash: Optional[str] = None,
) -> int:
    if password_hash is None:
        return await _execute(
            conn,
            "UPDATE users SET username = ?, role = ? WHERE id = ?;",
            (username, role, user_id),
        )
    return await _execute(
        conn,
        "UPDATE users SET username = ?, role = ?, password_hash = ? WHERE id = ?;",
        (username, role, password_hash, user_id),
    )


async def set_password_hash(
    conn: aiosqlite.Connection, user_id: int, password_hash: str
) -> int:
    return await _execute(
        conn,
        "UPDATE users SET password_hash = ? WHERE id = ?;",
        (password_hash, user_id),
    )


async def delete_user(conn: aiosqlite.Connection, user_id: int) -> int:
    return await _execute(conn, "DELETE FROM users WHERE id = ?;", (user_id,))


async def count_admins(conn: aiosqlite.Connection) -> int:
    row = await _fetchone(conn, "SELECT COUNT(*) FROM users WHERE role = 'admin';")
    return int(row[0])


async def user_statistics(conn: aiosqlite.Connection) -> Dict[str, int]:
    row = await _fetchone(
        conn,
        """
        SELECT COUNT(*)                                          AS total_users,
               COALESCE(SUM(CASE WHEN role = 'admin' THEN 1 END), 0)    AS total_admins,
               COALESCE(SUM(CASE WHEN role = 'standard' THEN 1 END), 0) AS total_standard
        FROM users;
        """,
    )
    return {
        "total_users": int(row["total_users"]),
        "total_admins": int(row["total_admins"]),
        "total_standard": int(row["total_standard"]),
    }


# ---------------------------
# Sessions
# ---------------------------


async def insert_session(
    conn: aiosqlite.Connection,
    user_id: int,
    token_hash: str,
    created_at: datetime,
    expires_at: datetime,
) -> int:
    return await _insert(
        conn,
        """
        INSERT INTO sessions(user_id, token_hash, created_at, expires_at, active)
        VALUES (?, ?, ?, ?, 1);
        """,
        (user_id, token_hash, to_db(created_at), to_db(expires_at)),
    )


async def get_session(
    conn: aiosqlite.Connection, token_hash: str
) -> Optional[Tuple[models.Session, models.User]]:
    """Durable session row joined with its user, regardless of state."""
    row = await _fetchone(
        conn,
        """
        SELECT s.id, s.user_id, s.created_at, s.expires_at, s.active,
               u.username, u.role
        FROM sessions s
        JOIN users u ON u.id = s.user_id
        WHERE s.token_hash = ?;
        """,
        (token_hash,),
    )
    if not row:
        return None
    session = models.Session(
        id=int(row["id"]),
        user_id=int(row["user_id"]),
        token="",
        created_at=from_db(row["created_at"]),
        expires_at=from_db(row["expires_at"]),
        active=bool(row["active"]),
    )
    user = models.User(id=int(row["user_id"]), username=row["username"], role=row["role"])
    return session, user


async def deactivate_session(conn: aiosqlite.Connection, token_hash: str) -> int:
    return await _execute(
        conn,
        "UPDATE sessions SET active = 0 WHERE token_hash = ? AND active = 1;",
        (token_hash,),
    )


async def deactivate_user_sessions(
    conn: aiosqlite.Connection, user_id: int, keep_token_hash: Optional[str] = None
) -> int:
    return await _execute(
        conn,
        """
        UPDATE sessions SET active = 0
        WHERE user_id = ? AND active = 1 AND token_hash IS NOT ?;
        """,
        (user_id, keep_token_hash),
    )


async def delete_expired_sessions(conn: aiosqlite.Connection, now: datetime) -> int:
    return await _execute(
        conn, "DELETE FROM sessions WHERE expires_at < ?;", (to_db(now),)
    )


async def list_users_with_activity(
    conn: aiosqlite.Connection, now: datetime, limit: int
) -> List[Dict[str, Any]]:
    """Users with their live session count, most recently signed-in first."""
    rows = await _fetchall(
        conn,
        """
        SELECT u.id, u.username, u.role,
               COUNT(s.id)       AS active_sessions,
               MAX(s.created_at) AS last_session
        FROM users u
        LEFT JOIN sessions s
               ON s.user_id = u.id AND s.active = 1 AND s.expires_at > ?
        GROUP BY u.id, u.username, u.role
        ORDER BY last_session IS NULL, last_session DESC, u.id
        LIMIT ?;
        """,
        (to_db(now), limit),
    )
    return [
        {
            "id": int(row["id"]),
            "username": row["username"],
            "role": row["role"],
            "active_sessions": int(row["active_sessions"]),
            "last_session": row["last_session"],
        }
        for row in rows
    ]


# ---------------------------
# Categories & subcategories
# ---------------------------


async def list_categories(conn: aiosqlite.Connection) -> List[models.Category]:
    rows = await _fetchall(conn, "SELECT id, name FROM categories ORDER BY name;")
    return [models.Category(id=row["id"], name=row["name"]) for row in rows]


async def get_category(
    conn: aiosqlite.Connection, category_id: int
) -> Optional[models.Category]:
    row = await _fetchone(
        conn, "SELECT id, name FROM categories WHERE id = ?;", (category_id,)
    )
    return models.Category(id=row["id"], name=row["name"]) if row else None


async def insert_category(conn: aiosqlite.Connection, name: str) -> int:
    return await _insert(conn, "INSERT INTO categories(name) VALUES (?);", (name,))


async def update_category(conn: aiosqlite.Connection, category_id: int, name: str) -> int:
    return await _execute(
        conn, "UPDATE categories SET name = ? WHERE id = ?;", (name, category_id)
    )


async def delete_category(conn: aiosqlite.Connection, category_id: int) -> int:
    return await _execute(conn, "DELETE FROM categories WHERE id = ?;", (category_id,))


async def list_subcategories(
    conn: aiosqlite.Connection, category_id: Optional[int] = None
) -> List[models.Subcategory]:
    if category_id is None:
        rows = await _fetchall(
            conn, "SELECT id, name, category_id FROM subcategories ORDER BY name;"
        )
    else:
        rows = await _fetchall(
            conn,
            "SELECT id, name, category_id FROM subcategories WHERE category_id = ? ORDER BY name;",
            (category_id,),
        )
    return [
        models.Subcategory(id=row["id"], name=row["name"], category_id=row["category_id"])
        for row in rows
    ]


async def get_subcategory(
    conn: aiosqlite.Connection, subcategory_id: int
) -> Optional[models.Subcategory]:
    row = await _fetchone(
        conn,
        "SELECT id, name, category_id FROM subcategories WHERE id = ?;",
        (subcategory_id,),
    )
    if not row:
        return None
    return models.Subcategory(id=row["id"], name=row["name"], category_id=row["category_id"])


async def insert_subcategory(
    conn: aiosqlite.Connection, name: str, category_id: int
) -> int:
    return await _insert(
        conn,
        "INSERT INTO subcategories(name, category_id) VALUES (?, ?);",
        (name, category_id),
    )


async def update_subcategory(
    conn: aiosqlite.Connection, subcategory_id: int, name: str
) -> int:
    return await _execute(
        conn, "UPDATE subcategories SET name = ? WHERE id = ?;", (name, subcategory_id)
    )


async def delete_subcategory(conn: aiosqlite.Connection, subcategory_id: int) -> int:
    return await _execute(
        conn, "DELETE FROM subcategories WHERE id = ?;", (subcategory_id,)
    )


async def delete_subcategories_of(conn: aiosqlite.Connection, category_id: int) -> int:
    return await _execute(
        conn, "DELETE FROM subcategories WHERE category_id = ?;", (category_id,)
    )


async def count_products_in_category(conn: aiosqlite.Connection, category_id: int) -> int:
    """Products filed under the category directly or under one of its subcategories."""
    row = await _fetchone(
        conn,
        """
        SELECT COUNT(*)
        FROM products
        WHERE category_id = ?
           OR subcategory_id IN (SELECT id FROM subcategories WHERE category_id = ?);
        """,
        (category_id, category_id),
    )
    return int(row[0])


async def count_products_in_subcategory(
    conn: aiosqlite.Connection, subcategory_id: int
) -> int:
    row = await _fetchone(
        conn,
        "SELECT COUNT(*) FROM products WHERE subcategory_id = ?;",
        (subcategory_id,),
    )
    return int(row[0])


async def count_services_in_category(conn: aiosqlite.Connection, category_id: int) -> int:
    row = await _fetchone(
        conn, "SELECT COUNT(*) FROM services WHERE category_id = ?;", (category_id,)
    )
    return int(row[0])


# ---------------------------
# Products
# ---------------------------

PRODUCT_COLUMNS = (
    "name",
    "description",
    "price_usd",
    "price_cup",
    "oprice_cup",
    "pxg_cup",
    "stock",
    "quantity",
    "extractions",
    "defectives",
    "category_id",
    "subcategory_id",
    "barcode",
    "supplier",
)

_PRODUCT_SELECT = """
    SELECT p.id, p.name, p.description, p.price_usd, p.price_cup, p.oprice_cup,
           p.pxg_cup, p.stock, p.quantity, p.extractions, p.defectives,
           p.category_id, p.subcategory_id, p.barcode, p.supplier,
           p.created_at, p.updated_at,
           c.name AS category_name,
           s.name AS subcategory_name
    FROM products p
    LEFT JOIN categories c ON p.category_id = c.id
    LEFT JOIN subcategories s ON p.subcategory_id = s.id
"""


def _row_to_product(row) -> models.Product:
    return models.Product(
        id=int(row["id"]),
        name=row["name"],
        description=row["description"],
        price_usd=float(row["price_usd"]),
        price_cup=float(row["price_cup"]),
        oprice_cup=float(row["oprice_cup"]),
        pxg_cup=float(row["pxg_cup"]),
        stock=int(row["stock"]),
        quantity=int(row["quantity"]),
        extractions=int(row["extractions"]),
        defectives=int(row["defectives"]),
        category_id=row["category_id"],
        subcategory_id=row["subcategory_id"],
        barcode=row["barcode"],
        supplier=row["supplier"],
        created_at=from_db(row["created_at"]),
        updated_at=from_db(row["updated_at"]),
        category_name=row["category_name"],
        subcategory_name=row["subcategory_name"],
    )


async def get_product(
    conn: aiosqlite.Connection, product_id: int
) -> Optional[models.Product]:
    """Fetch a product by id, with category and subcategory names."""
    row = await _fetchone(conn, _PRODUCT_SELECT + " WHERE p.id = ?;", (product_id,))
    return _row_to_product(row) if row else None


async def insert_product(
    conn: aiosqlite.Connection, values: Dict[str, Any], now: datetime
) -> int:
    columns = [c for c in PRODUCT_COLUMNS if c in values]
    placeholders = ", ".join("?" for _ in columns)
    return await _insert(
        conn,
        f"""
        INSERT INTO products({", ".join(columns)}, created_at, updated_at)
        VALUES ({placeholders}, ?, ?);
        """,
        [values[c] for c in columns] + [to_db(now), to_db(now)],
    )


async def update_product(
    conn: aiosqlite.Connection, product_id: int, values: Dict[str, Any], now: datetime
) -> int:
    """Update only the given columns. Column names come from PRODUCT_COLUMNS."""
    columns = [c for c in PRODUCT_COLUMNS if c in values]
    if not columns:
        return 0
    assignments = ", ".join(f"{c} = ?" for c in columns)
    return await _execute(
        conn,
        f"UPDATE products SET {assignments}, updated_at = ? WHERE id = ?;",
        [values[c] for c in columns] + [to_db(now), product_id],
    )


async def delete_product(conn: aiosqlite.Connection, product_id: int) -> int:
    return await _execute(conn, "DELETE FROM products WHERE id = ?;", (product_id,))


async def search_products(
    conn: aiosqlite.Connection,
    filters: Dict[str, Any],
    limit: int,
    offset: int,
) -> Tuple[List[models.Product], int]:
    """
    Filtered, paginated product listing ordered by name.
    Filters: category_id, subcategory_id, search (name/description,
    case-insensitive), show_out_of_stock.
    Returns (products for page, total_count).
    """
    conditions: List[str] = []
    params: List[Any] = []

    if not filters.get("show_out_of_stock", True):
        conditions.append("p.stock > 0")
    if filters.get("category_id"):
        conditions.append("p.category_id = ?")
        params.append(filters["category_id"])
    if filters.get("subcategory_id"):
        conditions.append("p.subcategory_id = ?")
        params.append(filters["subcategory_id"])
    if filters.get("search"):
        like = f"%{filters['search'].lower()}%"
        conditions.append("(LOWER(p.name) LIKE ? OR LOWER(COALESCE(p.description, '')) LIKE ?)")
        params.extend([like, like])

    where_clause = ("WHERE " + " AND ".join(conditions)) if conditions else ""

    row = await _fetchone(
        conn, f"SELECT COUNT(*) FROM products p {where_clause};", params
    )
    total = int(row[0])

    rows = await _fetchall(
        conn,
        f"{_PRODUCT_SELECT} {where_clause} ORDER BY p.name, p.id LIMIT ? OFFSET ?;",
        params + [limit, offset],
    )
    return [_row_to_product(r) for r in rows], total


async def count_sales_for_product(conn: aiosqlite.Connection, product_id: int) -> int:
    row = await _fetchone(
        conn, "SELECT COUNT(*) FROM sales WHERE product_id = ?;", (product_id,)
    )
    return int(row[0])


async def count_sales_for_user(conn: aiosqlite.Connection, user_id: int) -> int:
    row = await _fetchone(
        conn, "SELECT COUNT(*) FROM sales WHERE user_id = ?;", (user_id,)
    )
    return int(row[0])


# ---------------------------
# Stock movements
# ---------------------------


def _row_to_movement(row) -> models.StockMovement:
    return models.StockMovement(
        id=int(row["id"]),
        product_id=int(row["product_id"]),
        type=row["type"],
        quantity=int(row["quantity"]),
        stock_before=int(row["stock_before"]),
        stock_after=int(row["stock_after"]),
        reason=row["reason"],
        created_at=from_db(row["created_at"]),
    )


async def insert_movement(
    conn: aiosqlite.Connection,
    product_id: int,
    movement_type: str,
    quantity: int,
    stock_before: int,
    stock_after: int,
    reason: str,
    created_at: datetime,
) -> int:
    return await _insert(
        conn,
        """
        INSERT INTO stock_movements(product_id, type, quantity, stock_before,
                                    stock_after, reason, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?);
        """,
        (
            product_id,
            movement_type,
            quantity,
            stock_before,
            stock_after,
            reason,
            to_db(created_at),
        ),
    )


async def list_movements(
    conn: aiosqlite.Connection, product_id: int
) -> List[models.StockMovement]:
    rows = await _fetchall(
        conn,
        """
        SELECT id, product_id, type, quantity, stock_before, stock_after, reason, created_at
        FROM stock_movements
        WHERE product_id = ?
        ORDER BY id;
        """,
        (product_id,),
    )
    return [_row_to_movement(r) for r in rows]


# ---------------------------
# Sales
# ---------------------------

_SALE_SELECT = """
    SELECT v.id, v.ticket, v.product_id, v.quantity, v.unit_price, v.total_price,
           v.payment_method, v.user_id, v.discount, v.created_at,
           p.name AS product_name,
           u.username AS seller
    FROM sales v
    LEFT JOIN products p ON v.product_id = p.id
    LEFT JOIN users u ON v.user_id = u.id
"""


def _row_to_sale(row) -> models.SaleLine:
    return models.SaleLine(
        id=int(row["id"]),
        ticket=row["ticket"],
        product_id=int(row["product_id"]),
        quantity=int(row["quantity"]),
        unit_price=float(row["unit_price"]),
        total_price=float(row["total_price"]),
        payment_method=row["payment_method"],
        user_id=int(row["user_id"]),
        discount=float(row["discount"]),
        created_at=from_db(row["created_at"]),
        product_name=row["product_name"],
        seller=row["seller"],
    )


async def insert_sale_line(
    conn: aiosqlite.Connection,
    ticket: str,
    product_id: int,
    quantity: int,
    unit_price: float,
    total_price: float,
    payment_method: str,
    user_id: int,
    discount: float,
    created_at: datetime,
) -> int:
    return await _insert(
        conn,
        """
        INSERT INTO sales(ticket, product_id, quantity, unit_price, total_price,
                          payment_method, user_id, discount, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
        """,
        (
            ticket,
            product_id,
            quantity,
            unit_price,
            total_price,
            payment_method,
            user_id,
            discount,
            to_db(created_at),
        ),
    )


def _sale_conditions(
    date_from: Optional[str], date_to: Optional[str], user_id: Optional[int] = None
) -> Tuple[str, List[Any]]:
    conditions: List[str] = []
    params: List[Any] = []
    if date_from:
        conditions.append("v.created_at >= ?")
        params.append(date_from)
    if date_to:
        conditions.append("v.created_at <= ?")
        params.append(date_to)
    if user_id:
        conditions.append("v.user_id = ?")
        params.append(user_id)
    return (("WHERE " + " AND ".join(conditions)) if conditions else ""), params


async def list_sales(
    conn: aiosqlite.Connection,
    date_from: Optional[str],
    date_to: Optional[str],
    user_id: Optional[int],
    limit: int,
    offset: int,
) -> Tuple[List[models.SaleLine], int]:
    """Sale lines newest first. Returns (lines for page, total_count)."""
    where_clause, params = _sale_conditions(date_from, date_to, user_id)
    row = await _fetchone(conn, f"SELECT COUNT(*) FROM sales v {where_clause};", params)
    total = int(row[0])
    rows = await _fetchall(
        conn,
        f"{_SALE_SELECT} {where_clause} ORDER BY v.created_at DESC, v.id DESC LIMIT ? OFFSET ?;",
        params + [limit, offset],
    )
    return [_row_to_sale(r) for r in rows], total


async def get_sale(conn: aiosqlite.Connection, sale_id: int) -> Optional[models.SaleLine]:
    row = await _fetchone(conn, _SALE_SELECT + " WHERE v.id = ?;", (sale_id,))
    return _row_to_sale(row) if row else None


async def list_ticket_lines(
    conn: aiosqlite.Connection, ticket: str
) -> List[models.SaleLine]:
    rows = await _fetchall(
        conn, _SALE_SELECT + " WHERE v.ticket = ? ORDER BY v.id;", (ticket,)
    )
    return [_row_to_sale(r) for r in rows]


async def sales_statistics(
    conn: aiosqlite.Connection, date_from: Optional[str], date_to: Optional[str]
) -> Dict[str, Any]:
    where_clause, params = _sale_conditions(date_from, date_to)
    row = await _fetchone(
        conn,
        f"""
        SELECT COUNT(DISTINCT v.ticket)                   AS total_sales,
               COUNT(*)                                   AS total_lines,
               COALESCE(SUM(v.total_price - v.discount), 0) AS revenue,
               COUNT(DISTINCT v.product_id)               AS products_sold,
               COUNT(DISTINCT v.user_id)                  AS active_sellers
        FROM sales v
        {where_clause};
        """,
        params,
    )
    by_method = await _fetchall(
        conn,
        f"""
        SELECT v.payment_method, COALESCE(SUM(v.total_price - v.discount), 0) AS revenue
        FROM sales v
        {where_clause}
        GROUP BY v.payment_method
        ORDER BY v.payment_method;
        """,
        params,
    )
    total_sales = int(row["total_sales"])
    revenue = float(row["revenue"])
    return {
        "total_sales": total_sales,
        "total_lines": int(row["total_lines"]),
        "revenue": revenue,
        "average_sale": revenue / total_sales if total_sales else 0.0,
        "products_sold": int(row["products_sold"]),
        "active_sellers": int(row["active_sellers"]),
        "by_payment_method": {r["payment_method"]: float(r["revenue"]) for r in by_method},
    }


async def top_products(
    conn: aiosqlite.Connection,
    limit: int,
    date_from: Optional[str],
    date_to: Optional[str],
) -> List[Dict[str, Any]]:
    where_clause, params = _sale_conditions(date_from, date_to)
    rows = await _fetchall(
        conn,
        f"""
        SELECT p.id, p.name,
               SUM(v.quantity)                  AS units_sold,
               SUM(v.total_price - v.discount)  AS revenue,
               COUNT(v.id)                      AS sale_count,
               c.name                           AS category
        FROM sales v
        JOIN products p ON v.product_id = p.id
        LEFT JOIN categories c ON p.category_id = c.id
        {where_clause}
        GROUP BY p.id, p.name, c.name
        ORDER BY units_sold DESC, p.id
        LIMIT ?;
        """,
        params + [limit],
    )
    return [
        {
            "product_id": int(r["id"]),
            "name": r["name"],
            "units_sold": int(r["units_sold"]),
            "revenue": float(r["revenue"]),
            "sale_count": int(r["sale_count"]),
            "category": r["category"],
        }
        for r in rows
    ]


# ---------------------------
# Services (repair/labour offerings)
# ---------------------------

_SERVICE_SELECT = """
    SELECT s.id, s.name, s.description, s.price, s.estimated_minutes, s.category_id,
           s.active, s.created_at, c.name AS category_name
    FROM services s
    LEFT JOIN categories c ON s.category_id = c.id
"""


def _row_to_service(row) -> models.Service:
    return models.Service(
        id=int(row["id"]),
        name=row["name"],
        description=row["description"],
        price=float(row["price"]),
        estimated_minutes=_to_int(row["estimated_minutes"]),
        category_id=row["category_id"],
        active=bool(row["active"]),
        created_at=from_db(row["created_at"]),
        category_name=row["category_name"],
    )


async def list_services(conn: aiosqlite.Connection) -> List[models.Service]:
    rows = await _fetchall(conn, _SERVICE_SELECT + " WHERE s.active = 1 ORDER BY s.name;")
    return [_row_to_service(r) for r in rows]


async def get_service(
    conn: aiosqlite.Connection, service_id: int
) -> Optional[models.Service]:
    row = await _fetchone(conn, _SERVICE_SELECT + " WHERE s.id = ?;", (service_id,))
    return _row_to_service(row) if row else None


async def insert_service(
    conn: aiosqlite.Connection,
    name: str,
    description: Optional[str],
    price: float,
    estimated_minutes: Optional[int],
    category_id: Optional[int],
    created_at: datetime,
) -> int:
    return await _insert(
        conn,
        """
        INSERT INTO services(name, description, price, estimated_minutes, category_id, created_at)
        VALUES (?, ?, ?, ?, ?, ?);
        """,
        (name, description, price, estimated_minutes, category_id, to_db(created_at)),
    )


async def update_service(
    conn: aiosqlite.Connection,
    service_id: int,
    name: str,
    description: Optional[str],
    price: float,
    estimated_minutes: Optional[int],
    category_id: Optional[int],
) -> int:
    return await _execute(
        conn,
        """
        UPDATE services
        SET name = ?, description = ?, price = ?, estimated_minutes = ?, category_id = ?
        WHERE id = ?;
        """,
        (name, description, price, estimated_minutes, category_id, service_id),
    )


async def deactivate_service(conn: aiosqlite.Connection, service_id: int) -> int:
    return await _execute(
        conn, "UPDATE services SET active = 0 WHERE id = ? AND active = 1;", (service_id,)
    )


# ---------------------------
# Reports
# ---------------------------


async def inventory_summary(
    conn: aiosqlite.Connection, low_threshold: int, medium_threshold: int
) -> Dict[str, Any]:
    row = await _fetchone(
        conn,
        """
        SELECT COUNT(*)                                                   AS products,
               COALESCE(SUM(stock), 0)                                    AS units,
               COALESCE(SUM(stock * price_usd), 0)                        AS value_usd,
               COALESCE(SUM(stock * price_cup), 0)                        AS value_cup,
               COALESCE(SUM(CASE WHEN stock = 0 THEN 1 END), 0)           AS empty,
               COALESCE(SUM(CASE WHEN stock > 0 AND stock <= ? THEN 1 END), 0) AS low,
               COALESCE(SUM(CASE WHEN stock > ? AND stock <= ? THEN 1 END), 0) AS medium,
               COALESCE(SUM(CASE WHEN stock > ? THEN 1 END), 0)           AS high
        FROM products;
        """,
        (low_threshold, low_threshold, medium_threshold, medium_threshold),
    )
    return {
        "products": int(row["products"]),
        "units": int(row["units"]),
        "value_usd": round(float(row["value_usd"]), 2),
        "value_cup": round(float(row["value_cup"]), 2),
        "stock_status": {
            "empty": int(row["empty"]),
            "low": int(row["low"]),
            "medium": int(row["medium"]),
            "high": int(row["high"]),
        },
    }


async def low_stock_products(
    conn: aiosqlite.Connection, threshold: int
) -> List[models.Product]:
    rows = await _fetchall(
        conn,
        _PRODUCT_SELECT + " WHERE p.stock <= ? ORDER BY p.stock, p.name;",
        (threshold,),
    )
    return [_row_to_product(r) for r in rows]

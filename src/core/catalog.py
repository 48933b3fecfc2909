# categories and subcategories, with the delete guard against referencing products
from __future__ import annotations

from typing import Any, Dict

import db.crud as crud
import utils.validators as v
from db.database import Database
from db.models import as_dict
from utils.errors import BusinessError, NotFoundError, returns_result
from utils.logger import get_logger

_logger = get_logger(__name__)


class CatalogService:
    def __init__(self, database: Database) -> None:
        self._db = database

    # ---------- categories ----------

    @returns_result
    async def list_categories(self) -> Dict[str, Any]:
        async with self._db.connection() as conn:
            categories = await crud.list_categories(conn)
        return {"success": True, "items": [as_dict(c) for c in categories]}

    @returns_result
    async def list_categories_with_subcategories(self) -> Dict[str, Any]:
        async with self._db.connection() as conn:
            categories = await crud.list_categories(conn)
            subcategories = await crud.list_subcategories(conn)

        by_category: Dict[int, list] = {c.id: [] for c in categories}
        for sub in subcategories:
            by_category.setdefault(sub.category_id, []).append(as_dict(sub))
        items = []
        for category in categories:
            item = as_dict(category)
            item["subcategories"] = by_category[category.id]
            items.append(item)
        return {"success": True, "items": items}

    @returns_result
    async def add_category(self, name: Any) -> Dict[str, Any]:
        name = v.category_name(name)
        async with self._db.transaction() as conn:
            category_id = await crud.insert_category(conn, name)
        _logger.info(f"Category created: {name} (id={category_id})")
        return {"success": True, "id": category_id}

    @returns_result
    async def update_category(self, category_id: Any, name: Any) -> Dict[str, Any]:
        category_id = v.record_id(category_id, "Category ID")
        name = v.category_name(name)
        async with self._db.transaction() as conn:
            if not await crud.update_category(conn, category_id, name):
                raise NotFoundError("Category")
        return {"success": True}

    @returns_result
    async def delete_category(self, category_id: Any) -> Dict[str, Any]:
        """Delete a category and its subcategories, unless products or services use them."""
        category_id = v.record_id(category_id, "Category ID")
        async with self._db.transaction() as conn:
            category = await crud.get_category(conn, category_id)
            if category is None:
                raise NotFoundError("Category")
            products = await crud.count_products_in_category(conn, category_id)
            if products:
                raise BusinessError(
                    f"Category '{category.name}' is used by {products} product(s)",
                    code="HAS_DEPENDENTS",
                )
            services = await crud.count_services_in_category(conn, category_id)
            if services:
                raise BusinessError(
                    f"Category '{category.name}' is used by {services} service(s)",
                    code="HAS_DEPENDENTS",
                )
            removed = await crud.delete_subcategories_of(conn, category_id)
            await crud.delete_category(conn, category_id)
        _logger.info(
            f"Category deleted: {category.name} (id={category_id}, "
            f"{removed} subcategories)"
        )
        return {"success": True}

    # ---------- subcategories ----------

    @returns_result
    async def list_subcategories(self, category_id: Any = None) -> Dict[str, Any]:
        category_id = v.optional_id(category_id, "Category ID")
        async with self._db.connection() as conn:
            subcategories = await crud.list_subcategories(conn, category_id)
        return {"success": True, "items": [as_dict(s) for s in subcategories]}

    @returns_result
    async def add_subcategory(self, name: Any, category_id: Any) -> Dict[str, Any]:
        name = v.category_name(name, "Subcategory name")
        category_id = v.record_id(category_id, "Category ID")
        async with self._db.transaction() as conn:
            if await crud.get_category(conn, category_id) is None:
                raise NotFoundError("Category")
            subcategory_id = await crud.insert_subcategory(conn, name, category_id)
        _logger.info(f"Subcategory created: {name} (id={subcategory_id})")
        return {"success": True, "id": subcategory_id}

    @returns_result
    async def update_subcategory(self, subcategory_id: Any, name: Any) -> Dict[str, Any]:
        subcategory_id = v.record_id(subcategory_id, "Subcategory ID")
        name = v.category_name(name, "Subcategory name")
        async with self._db.transaction() as conn:
            if not await crud.update_subcategory(conn, subcategory_id, name):
                raise NotFoundError("Subcategory")
        return {"success": True}

    @returns_result
    async def delete_subcategory(self, subcategory_id: Any) -> Dict[str, Any]:
        subcategory_id = v.record_id(subcategory_id, "Subcategory ID")
        async with self._db.transaction() as conn:
            subcategory = await crud.get_subcategory(conn, subcategory_id)
            if subcategory is None:
                raise NotFoundError("Subcategory")
            products = await crud.count_products_in_subcategory(conn, subcategory_id)
            if products:
                raise BusinessError(
                    f"Subcategory '{subcategory.name}' is used by {products} product(s)",
                    code="HAS_DEPENDENTS",
                )
            await crud.delete_subcategory(conn, subcategory_id)
        _logger.info(f"Subcategory deleted: {subcategory.name} (id={subcategory_id})")
        return {"success": True}

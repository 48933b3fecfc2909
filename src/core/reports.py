# read-only inventory reporting
from __future__ import annotations

from typing import Any, Dict

import db.crud as crud
from core.products import stock_status
from db.database import Database
from utils.config import Settings
from utils.errors import returns_result
from utils.time_utils import utcnow


class ReportService:
    def __init__(self, database: Database, settings: Settings) -> None:
        self._db = database
        self.settings = settings

    @returns_result
    async def inventory_report(self) -> Dict[str, Any]:
        low = self.settings.low_stock_threshold
        medium = self.settings.medium_stock_threshold
        async with self._db.connection() as conn:
            summary = await crud.inventory_summary(conn, low, medium)
            low_stock = await crud.low_stock_products(conn, low)

        summary["low_stock"] = [
            {
                "id": p.id,
                "name": p.name,
                "stock": p.stock,
                "category": p.category_name,
                "stock_status": stock_status(p.stock, low, medium),
            }
            for p in low_stock
        ]
        summary["generated_at"] = utcnow().replace(microsecond=0).isoformat().replace(
            "+00:00", "Z"
        )
        return {"success": True, "report": summary}

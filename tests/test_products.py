import asyncio
import unittest

from support import AppTestCase

from core.products import stock_status


def chain_is_consistent(movements) -> bool:
    return all(
        prev["stock_after"] == cur["stock_before"]
        for prev, cur in zip(movements, movements[1:])
    )


class StockStatusTestCase(unittest.TestCase):
    def test_thresholds(self):
        self.assertEqual(stock_status(0), "empty")
        self.assertEqual(stock_status(5), "low")
        self.assertEqual(stock_status(6), "medium")
        self.assertEqual(stock_status(20), "medium")
        self.assertEqual(stock_status(21), "high")
        self.assertEqual(stock_status(3, low=2, medium=3), "medium")


class ProductServiceTestCase(AppTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.products = self.ctx.products
        self.category_id = await self.make_category()

    # ---------- create ----------

    async def test_create_records_initial_entry(self):
        product_id = await self.make_product(self.category_id, stock=10, price_usd=2.5)

        product = self.assertOk(await self.products.get_product(product_id))["product"]
        self.assertEqual(product["stock"], 10)
        self.assertEqual(product["price_cup"], 987.5)
        self.assertEqual(product["quantity"], 1)
        self.assertEqual(product["category_name"], "Phones")
        self.assertEqual(product["stock_status"], "medium")

        (movement,) = await self.movements(product_id)
        self.assertEqual(
            (movement["type"], movement["quantity"], movement["stock_before"], movement["stock_after"]),
            ("entry", 10, 0, 10),
        )
        self.assertEqual(movement["reason"], "initial stock")

    async def test_create_rolls_back_when_movement_fails(self):
        async with self.ctx.database.transaction() as conn:
            await conn.execute(
                """
                CREATE TRIGGER refuse_movements BEFORE INSERT ON stock_movements
                BEGIN
                    SELECT RAISE(ABORT, 'movement log unavailable');
                END;
                """
            )
        result = await self.products.create_product(
            {"name": "Orphan", "category_id": self.category_id, "stock": 4}
        )
        self.assertFailed(result, "CONSTRAINT_VIOLATION")
        self.assertEqual(await self.count("products"), 0)
        self.assertEqual(await self.count("stock_movements"), 0)

    async def test_create_keeps_explicit_cup_price(self):
        product_id = await self.make_product(self.category_id, price_usd=1, price_cup=300)
        product = self.assertOk(await self.products.get_product(product_id))["product"]
        self.assertEqual(product["price_cup"], 300)

    async def test_create_without_stock_has_no_movement(self):
        product_id = await self.make_product(self.category_id, stock=0)
        self.assertEqual(await self.movements(product_id), [])

    async def test_create_validation(self):
        create = self.products.create_product
        self.assertFailed(await create({"category_id": self.category_id}), "REQUIRED_FIELD")
        self.assertFailed(await create({"name": "X"}), "REQUIRED_FIELD")
        self.assertFailed(await create({"name": "X" * 151, "category_id": self.category_id}), "VALIDATION_ERROR")
        self.assertFailed(await create({"name": "X", "category_id": 999}), "NOT_FOUND")
        self.assertFailed(
            await create({"name": "X", "category_id": self.category_id, "stock": -1}),
            "VALIDATION_ERROR",
        )
        self.assertFailed(
            await create({"name": "X", "category_id": self.category_id, "price_usd": "abc"}),
            "INVALID_NUMBER",
        )
        self.assertFailed(await create("not a dict"), "VALIDATION_ERROR")
        self.assertEqual(await self.count("products"), 0)
        self.assertEqual(await self.count("stock_movements"), 0)

    async def test_create_checks_subcategory_belongs_to_category(self):
        other = await self.make_category("Tablets")
        sub_id = self.assertOk(await self.ctx.catalog.add_subcategory("Cases", other))["id"]
        result = await self.products.create_product(
            {"name": "Case", "category_id": self.category_id, "subcategory_id": sub_id}
        )
        self.assertFailed(result, "CATEGORY_MISMATCH")

    # ---------- update ----------

    async def test_stock_update_writes_signed_movements(self):
        product_id = await self.make_product(self.category_id, stock=10)

        self.assertOk(await self.products.update_product(product_id, {"stock": 4}))
        self.assertOk(await self.products.update_product(product_id, {"stock": "12"}))

        moves = await self.movements(product_id)
        self.assertEqual([m["type"] for m in moves], ["entry", "exit", "entry"])
        self.assertEqual([m["quantity"] for m in moves], [10, 6, 8])
        self.assertEqual(moves[1]["reason"], "manual adjustment")
        self.assertTrue(chain_is_consistent(moves))
        self.assertEqual(sum(m["signed_quantity"] for m in moves), await self.stock_of(product_id))

    async def test_update_without_stock_change_adds_no_movement(self):
        product_id = await self.make_product(self.category_id, stock=5)
        self.assertOk(await self.products.update_product(product_id, {"stock": 5, "name": "Renamed"}))
        self.assertEqual(len(await self.movements(product_id)), 1)
        product = self.assertOk(await self.products.get_product(product_id))["product"]
        self.assertEqual(product["name"], "Renamed")

    async def test_update_rejects_invalid_numbers(self):
        product_id = await self.make_product(self.category_id, stock=5)
        self.assertFailed(await self.products.update_product(product_id, {"stock": -3}), "VALIDATION_ERROR")
        self.assertFailed(await self.products.update_product(product_id, {"stock": "many"}), "INVALID_NUMBER")
        self.assertFailed(await self.products.update_product(product_id, {"stock": 2.5}), "VALIDATION_ERROR")
        self.assertFailed(await self.products.update_product(product_id, {"quantity": 0}), "VALIDATION_ERROR")
        self.assertEqual(await self.stock_of(product_id), 5)

    async def test_failed_update_changes_nothing(self):
        product_id = await self.make_product(self.category_id, stock=5)
        result = await self.products.update_product(
            product_id, {"name": "New name", "stock": 1, "category_id": 999}
        )
        self.assertFailed(result, "NOT_FOUND")
        product = self.assertOk(await self.products.get_product(product_id))["product"]
        self.assertEqual((product["name"], product["stock"]), ("Widget", 5))
        self.assertEqual(len(await self.movements(product_id)), 1)

    async def test_update_needs_known_fields_and_product(self):
        product_id = await self.make_product(self.category_id)
        self.assertFailed(await self.products.update_product(product_id, {"colour": "red"}), "NO_FIELDS")
        self.assertFailed(await self.products.update_product(product_id, {}), "NO_FIELDS")
        self.assertFailed(await self.products.update_product(4242, {"stock": 1}), "NOT_FOUND")
        self.assertFailed(await self.products.update_product("abc", {"stock": 1}), "INVALID_NUMBER")

    async def test_update_product_field(self):
        product_id = await self.make_product(self.category_id, stock=3)
        self.assertOk(await self.products.update_product_field(product_id, "stock", 8))
        self.assertOk(await self.products.update_product_field(product_id, "supplier", "ACME"))
        self.assertFailed(
            await self.products.update_product_field(product_id, "created_at", "x"), "INVALID_FIELD"
        )
        product = self.assertOk(await self.products.get_product(product_id))["product"]
        self.assertEqual((product["stock"], product["supplier"]), (8, "ACME"))

    async def test_concurrent_updates_keep_movement_chain(self):
        product_id = await self.make_product(self.category_id, stock=10)

        results = await asyncio.gather(
            *(self.products.update_product(product_id, {"stock": s}) for s in (3, 17, 8, 25, 1))
        )
        for result in results:
            self.assertOk(result)

        moves = await self.movements(product_id)
        self.assertTrue(chain_is_consistent(moves), moves)
        self.assertEqual(moves[-1]["stock_after"], await self.stock_of(product_id))
        self.assertEqual(sum(m["signed_quantity"] for m in moves), await self.stock_of(product_id))

    # ---------- adjustments and withdrawals ----------

    async def test_adjust_stock(self):
        product_id = await self.make_product(self.category_id, stock=4)

        result = self.assertOk(await self.products.adjust_stock(product_id, -3, "inventory count"))
        self.assertEqual(result["stock"], 1)
        self.assertFailed(await self.products.adjust_stock(product_id, -2), "INSUFFICIENT_STOCK")
        self.assertFailed(await self.products.adjust_stock(product_id, 0), "VALIDATION_ERROR")
        self.assertOk(await self.products.adjust_stock(product_id, 5))

        moves = await self.movements(product_id)
        self.assertEqual([m["type"] for m in moves], ["entry", "adjustment", "adjustment"])
        self.assertEqual([m["signed_quantity"] for m in moves], [4, -3, 5])
        self.assertEqual(moves[1]["reason"], "inventory count")
        self.assertEqual(moves[2]["reason"], "stock adjustment")

    async def test_extractions_and_defectives(self):
        product_id = await self.make_product(self.category_id, stock=10)

        result = self.assertOk(await self.products.record_extraction(product_id, 2, "display unit"))
        self.assertEqual((result["stock"], result["extractions"]), (8, 2))
        result = self.assertOk(await self.products.record_defectives(product_id, 3))
        self.assertEqual((result["stock"], result["defectives"]), (5, 3))
        self.assertFailed(await self.products.record_defectives(product_id, 6), "INSUFFICIENT_STOCK")

        product = self.assertOk(await self.products.get_product(product_id))["product"]
        self.assertEqual((product["stock"], product["extractions"], product["defectives"]), (5, 2, 3))
        moves = await self.movements(product_id)
        self.assertEqual([m["reason"] for m in moves[1:]], ["display unit", "defective"])

    # ---------- delete ----------

    async def test_delete_records_closing_exit(self):
        product_id = await self.make_product(self.category_id, stock=7)
        self.assertOk(await self.products.delete_product(product_id))

        self.assertFailed(await self.products.get_product(product_id), "NOT_FOUND")
        moves = await self.movements(product_id)
        self.assertEqual(
            (moves[-1]["type"], moves[-1]["quantity"], moves[-1]["stock_after"], moves[-1]["reason"]),
            ("exit", 7, 0, "product deleted"),
        )
        self.assertEqual(sum(m["signed_quantity"] for m in moves), 0)
        self.assertFailed(await self.products.delete_product(product_id), "NOT_FOUND")

    async def test_delete_blocked_by_sales(self):
        user_id = await self.make_user()
        product_id = await self.make_product(self.category_id, stock=7)
        self.assertOk(
            await self.ctx.sales.register_sale([{"product_id": product_id, "quantity": 1}], user_id=user_id)
        )
        self.assertFailed(await self.products.delete_product(product_id), "HAS_DEPENDENTS")
        self.assertEqual(await self.stock_of(product_id), 6)

    async def test_movements_are_append_only(self):
        product_id = await self.make_product(self.category_id, stock=7)
        with self.assertRaises(Exception):
            async with self.ctx.database.transaction() as conn:
                await conn.execute("UPDATE stock_movements SET quantity = 1;")
        with self.assertRaises(Exception):
            async with self.ctx.database.transaction() as conn:
                await conn.execute("DELETE FROM stock_movements;")
        self.assertEqual(len(await self.movements(product_id)), 1)

    # ---------- listing ----------

    async def test_list_products_filters_and_pages(self):
        other = await self.make_category("Chargers")
        await self.make_product(self.category_id, "Alpha phone", stock=0)
        await self.make_product(self.category_id, "Beta phone", stock=3, description="refurbished")
        await self.make_product(other, "USB charger", stock=50)

        page = self.assertOk(await self.products.list_products(1, 2))
        self.assertEqual((page["total"], page["total_pages"], len(page["items"])), (3, 2, 2))
        self.assertEqual([p["name"] for p in page["items"]], ["Alpha phone", "Beta phone"])
        page = self.assertOk(await self.products.list_products(2, 2))
        self.assertEqual([p["name"] for p in page["items"]], ["USB charger"])
        self.assertEqual(page["items"][0]["stock_status"], "high")

        def names(result):
            return [p["name"] for p in self.assertOk(result)["items"]]

        self.assertEqual(names(await self.products.list_products(filters={"search": "PHONE"})), ["Alpha phone", "Beta phone"])
        self.assertEqual(names(await self.products.list_products(filters={"search": "refurb"})), ["Beta phone"])
        self.assertEqual(names(await self.products.list_products(filters={"category_id": other})), ["USB charger"])
        self.assertEqual(
            names(await self.products.list_products(filters={"show_out_of_stock": False})),
            ["Beta phone", "USB charger"],
        )

    async def test_list_products_pagination_bounds(self):
        self.assertFailed(await self.products.list_products(0, 10), "VALIDATION_ERROR")
        self.assertFailed(await self.products.list_products(1, 1001), "VALIDATION_ERROR")
        empty = self.assertOk(await self.products.list_products())
        self.assertEqual((empty["items"], empty["total"], empty["total_pages"]), ([], 0, 0))


class LenientProductServiceTestCase(AppTestCase):
    settings_overrides = {"lenient_numeric_fields": True}

    async def test_invalid_numbers_fall_back(self):
        category_id = await self.make_category()
        product_id = await self.make_product(category_id, stock=6)
        products = self.ctx.products

        self.assertOk(await products.update_product(product_id, {"stock": "many", "quantity": -4, "price_usd": "x"}))
        product = self.assertOk(await products.get_product(product_id))["product"]
        self.assertEqual((product["stock"], product["quantity"], product["price_usd"]), (0, 1, 0.0))

        (_, closing) = await self.movements(product_id)
        self.assertEqual((closing["type"], closing["quantity"]), ("exit", 6))

        self.assertOk(await products.update_product(product_id, {"stock": -9}))
        self.assertEqual(await self.stock_of(product_id), 0)


if __name__ == "__main__":
    unittest.main()

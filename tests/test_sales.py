import unittest

from support import AppTestCase


class SalesServiceTestCase(AppTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.sales = self.ctx.sales
        self.user_id = await self.make_user()
        self.category_id = await self.make_category()

    async def sale_count(self) -> int:
        return await self.count("sales")

    # ---------- register ----------

    async def test_sale_decrements_stock_with_exit_movement(self):
        product_id = await self.make_product(self.category_id, stock=10, price_cup=100)

        result = self.assertOk(
            await self.sales.register_sale(
                [{"product_id": product_id, "quantity": 3}], "cash", 0, self.user_id
            )
        )
        self.assertEqual(await self.stock_of(product_id), 7)
        exit_move = (await self.movements(product_id))[-1]
        self.assertEqual(
            (exit_move["type"], exit_move["quantity"], exit_move["stock_before"], exit_move["stock_after"]),
            ("exit", 3, 10, 7),
        )
        self.assertEqual(exit_move["reason"], f"sale {result['ticket']}")

        self.assertEqual(result["total"], 300.0)
        self.assertEqual(result["total_before_discount"], 300.0)
        (line,) = result["line_items"]
        self.assertEqual((line["unit_price"], line["total_price"], line["product_name"]), (100, 300.0, "Widget"))

    async def test_insufficient_stock_inserts_nothing(self):
        product_id = await self.make_product(self.category_id, stock=2)
        result = await self.sales.register_sale(
            [{"product_id": product_id, "quantity": 5}], user_id=self.user_id
        )
        self.assertFailed(result, "INSUFFICIENT_STOCK")
        self.assertIn("Widget", result["error"])
        self.assertEqual(await self.sale_count(), 0)
        self.assertEqual(len(await self.movements(product_id)), 1)
        self.assertEqual(await self.stock_of(product_id), 2)

    async def test_failure_on_later_line_rolls_back_earlier_lines(self):
        first = await self.make_product(self.category_id, "First", stock=10)
        second = await self.make_product(self.category_id, "Second", stock=10)
        third = await self.make_product(self.category_id, "Third", stock=1)

        result = await self.sales.register_sale(
            [
                {"product_id": first, "quantity": 2, "unit_price": 5},
                {"product_id": second, "quantity": 4, "unit_price": 5},
                {"product_id": third, "quantity": 3, "unit_price": 5},
            ],
            user_id=self.user_id,
        )
        self.assertFailed(result, "INSUFFICIENT_STOCK")
        self.assertIn("Third", result["error"])
        self.assertEqual(await self.sale_count(), 0)
        for product_id in (first, second):
            self.assertEqual(await self.stock_of(product_id), 10)
            self.assertEqual(len(await self.movements(product_id)), 1)

    async def test_unknown_product_on_later_line_rolls_back(self):
        product_id = await self.make_product(self.category_id, stock=10)
        result = await self.sales.register_sale(
            [{"product_id": product_id, "quantity": 1}, {"product_id": 999, "quantity": 1}],
            user_id=self.user_id,
        )
        self.assertFailed(result, "NOT_FOUND")
        self.assertEqual(await self.stock_of(product_id), 10)
        self.assertEqual(await self.sale_count(), 0)

    async def test_same_product_on_two_lines(self):
        product_id = await self.make_product(self.category_id, stock=5)
        lines = [{"product_id": product_id, "quantity": 3}, {"product_id": product_id, "quantity": 3}]
        self.assertFailed(await self.sales.register_sale(lines, user_id=self.user_id), "INSUFFICIENT_STOCK")
        self.assertEqual(await self.stock_of(product_id), 5)

        lines[1]["quantity"] = 2
        self.assertOk(await self.sales.register_sale(lines, user_id=self.user_id))
        moves = await self.movements(product_id)
        self.assertEqual([(m["stock_before"], m["stock_after"]) for m in moves[1:]], [(5, 2), (2, 0)])

    async def test_discount_applies_to_total_and_first_line(self):
        a = await self.make_product(self.category_id, "A", stock=5, price_cup=40)
        b = await self.make_product(self.category_id, "B", stock=5, price_cup=10)

        result = self.assertOk(
            await self.sales.register_sale(
                [{"product_id": a, "quantity": 2}, {"product_id": b, "quantity": 1}],
                "card",
                15,
                self.user_id,
            )
        )
        self.assertEqual((result["total_before_discount"], result["discount"], result["total"]), (90.0, 15.0, 75.0))

        listed = self.assertOk(await self.sales.list_sales())["items"]
        discounts = sorted(s["discount"] for s in listed)
        self.assertEqual(discounts, [0.0, 15.0])
        self.assertEqual({s["payment_method"] for s in listed}, {"card"})
        self.assertEqual({s["ticket"] for s in listed}, {result["ticket"]})

    async def test_discount_larger_than_total_is_rejected(self):
        product_id = await self.make_product(self.category_id, stock=5, price_cup=10)
        result = await self.sales.register_sale(
            [{"product_id": product_id, "quantity": 1}], discount=10.01, user_id=self.user_id
        )
        self.assertFailed(result, "DISCOUNT_EXCEEDS_TOTAL")
        self.assertEqual(await self.stock_of(product_id), 5)
        self.assertEqual(await self.sale_count(), 0)

    async def test_input_validation(self):
        product_id = await self.make_product(self.category_id, stock=5)
        register = self.sales.register_sale
        line = {"product_id": product_id, "quantity": 1}

        self.assertFailed(await register([], user_id=self.user_id), "EMPTY_SALE")
        self.assertFailed(await register(None, user_id=self.user_id), "EMPTY_SALE")
        self.assertFailed(await register([{"product_id": product_id, "quantity": 0}], user_id=self.user_id), "VALIDATION_ERROR")
        self.assertFailed(await register([{"product_id": product_id, "quantity": 1.5}], user_id=self.user_id), "VALIDATION_ERROR")
        self.assertFailed(await register([{"quantity": 1}], user_id=self.user_id), "INVALID_NUMBER")
        self.assertFailed(await register([line], "bitcoin", user_id=self.user_id), "VALIDATION_ERROR")
        self.assertFailed(await register([line], discount=-1, user_id=self.user_id), "VALIDATION_ERROR")
        self.assertFailed(await register([line], discount=10**400, user_id=self.user_id), "INVALID_NUMBER")
        self.assertFailed(await register([{**line, "unit_price": -2}], user_id=self.user_id), "VALIDATION_ERROR")
        self.assertFailed(await register([line]), "INVALID_NUMBER")
        self.assertEqual(await self.sale_count(), 0)

    # ---------- queries ----------

    async def test_list_get_and_statistics(self):
        a = await self.make_product(self.category_id, "A", stock=50, price_cup=10)
        b = await self.make_product(self.category_id, "B", stock=50, price_cup=20)
        other_user = await self.make_user("seller2", "pw_pw")

        first = self.assertOk(await self.sales.register_sale([{"product_id": a, "quantity": 5}], user_id=self.user_id))
        self.clock.advance(days=1)
        self.assertOk(
            await self.sales.register_sale(
                [{"product_id": a, "quantity": 1}, {"product_id": b, "quantity": 2}],
                "transfer",
                5,
                other_user,
            )
        )

        listed = self.assertOk(await self.sales.list_sales({"limit": 2}))
        self.assertEqual((listed["total"], listed["total_pages"]), (3, 2))
        self.assertEqual(listed["items"][0]["seller"], "seller2")  # newest first

        mine = self.assertOk(await self.sales.list_sales({"user_id": self.user_id}))["items"]
        self.assertEqual([s["product_name"] for s in mine], ["A"])

        first_day = self.assertOk(await self.sales.list_sales({"date_to": "2025-03-01"}))
        self.assertEqual(first_day["total"], 1)
        self.assertFailed(await self.sales.list_sales({"date_from": "yesterday"}), "VALIDATION_ERROR")

        sale = self.assertOk(await self.sales.get_sale(first["line_items"][0]["id"]))
        self.assertEqual(sale["sale"]["ticket"], first["ticket"])
        self.assertEqual(len(sale["ticket_lines"]), 1)
        self.assertFailed(await self.sales.get_sale(999), "NOT_FOUND")

        stats = self.assertOk(await self.sales.sales_statistics())["statistics"]
        self.assertEqual(stats["total_sales"], 2)
        self.assertEqual(stats["total_lines"], 3)
        self.assertEqual(stats["revenue"], 50 + 10 + 40 - 5)
        self.assertEqual(stats["average_sale"], 47.5)
        self.assertEqual(stats["active_sellers"], 2)
        self.assertEqual(stats["by_payment_method"], {"cash": 50.0, "transfer": 45.0})

        top = self.assertOk(await self.sales.top_products(1))["items"]
        self.assertEqual((top[0]["name"], top[0]["units_sold"], top[0]["sale_count"]), ("A", 6, 2))
        self.assertFailed(await self.sales.top_products(0), "VALIDATION_ERROR")


class ServiceCatalogTestCase(AppTestCase):
    async def test_service_lifecycle(self):
        sales = self.ctx.sales
        category_id = await self.make_category("Repairs")

        service_id = self.assertOk(
            await sales.add_service(
                {"name": "Screen swap", "price": 25, "estimated_minutes": 45, "category_id": category_id}
            )
        )["id"]
        service = self.assertOk(await sales.get_service(service_id))["service"]
        self.assertEqual((service["price"], service["category_name"], service["active"]), (25.0, "Repairs", True))

        self.assertOk(await sales.edit_service(service_id, {"name": "Screen replacement", "price": 30}))
        items = self.assertOk(await sales.list_services())["items"]
        self.assertEqual([(s["name"], s["price"], s["estimated_minutes"]) for s in items], [("Screen replacement", 30.0, None)])

        self.assertOk(await sales.delete_service(service_id))
        self.assertEqual(self.assertOk(await sales.list_services())["items"], [])
        self.assertFailed(await sales.get_service(service_id), "NOT_FOUND")
        self.assertFailed(await sales.delete_service(service_id), "NOT_FOUND")
        self.assertFailed(await sales.edit_service(service_id, {"name": "x"}), "NOT_FOUND")
        # soft delete keeps the row
        self.assertEqual(await self.count("services"), 1)

    async def test_service_validation(self):
        sales = self.ctx.sales
        self.assertFailed(await sales.add_service({"price": 3}), "REQUIRED_FIELD")
        self.assertFailed(await sales.add_service({"name": "X", "price": -3}), "VALIDATION_ERROR")
        self.assertFailed(await sales.add_service({"name": "X", "category_id": 77}), "NOT_FOUND")
        self.assertFailed(await sales.add_service({"name": "X", "estimated_minutes": "soon"}), "INVALID_NUMBER")


if __name__ == "__main__":
    unittest.main()

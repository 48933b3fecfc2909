import asyncio

from textual import on, work
from textual.app import ComposeResult
from textual.containers import Vertical
from textual.events import ScreenResume
from textual.widgets import MarkdownViewer

from utils.messages import ModeSwitchedMessage, StockChangedMessage
from utils.pure import markdown_table, money
from views.base_screen import BaseScreen


class ReportScreen(BaseScreen):
    """
    Sales statistics, best sellers and the inventory summary.
    """

    def __init__(self) -> None:
        super().__init__(sub_title="Reports")

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical():
            yield MarkdownViewer(id="md-report", show_table_of_contents=False)

    def on_mount(self) -> None:
        self.handle_reload()

    @on(StockChangedMessage)
    @on(ScreenResume)
    @on(ModeSwitchedMessage)
    @work(exclusive=True)
    async def handle_reload(self) -> None:
        state = self.app.state
        stats, top, inventory = await asyncio.gather(
            state.call("sales-statistics"),
            state.call("top-products", limit=5),
            state.call("inventory-report"),
        )
        for result in (stats, top, inventory):
            if self.report_failure(result):
                return

        s = stats["statistics"]
        r = inventory["report"]
        md = (
            "### Sales\n\n"
            f"- Sales: {s['total_sales']} ({s['total_lines']} lines)\n"
            f"- Revenue: {money(s['revenue'])}\n"
            f"- Average sale: {money(s['average_sale'])}\n"
            f"- Sellers: {s['active_sellers']}\n\n"
            "### Top Products\n\n"
            + (
                markdown_table(
                    ["Product", "Category", "Units", "Revenue"],
                    [
                        [t["name"], t["category"], t["units_sold"], money(t["revenue"])]
                        for t in top["items"]
                    ],
                    ["l", "l", "r", "r"],
                )
                or "_No sales yet._"
            )
            + "\n\n### Inventory\n\n"
            f"- Products: {r['products']} ({r['units']} units)\n"
            f"- Value: {money(r['value_usd'], 'USD')} / {money(r['value_cup'])}\n"
            f"- Out of stock: {r['stock_status']['empty']}, low: {r['stock_status']['low']}\n\n"
            + markdown_table(
                ["ID", "Product", "Category", "Stock"],
                [[p["id"], p["name"], p["category"], p["stock"]] for p in r["low_stock"]],
                ["r", "l", "l", "r"],
            )
        )
        await self.query_one("#md-report", MarkdownViewer).document.update(md)

from __future__ import annotations

from typing import Any, Dict, Optional

from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.validation import Number
from textual.widgets import Button, Input, Label, MarkdownViewer, OptionList
from textual.widgets.option_list import Option

from utils.messages import StockChangedMessage
from utils.pure import markdown_table, money, product_markdown
from views.base_screen import BaseScreen
from views.modal_dialog import DialogModal


class InventoryScreen(BaseScreen):
    """
    Search products, inspect one with its movement history, and change its
    CUP price or stock.
    """

    current: Optional[Dict[str, Any]] = None

    def __init__(self) -> None:
        super().__init__(sub_title="Inventory")

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical():
            yield Input(id="input-search", placeholder="Search by name or description...")
            yield OptionList(id="optlist-prods")
            yield MarkdownViewer(id="md-prod", show_table_of_contents=False)
            with Horizontal(id="hort-controls"):
                with Horizontal(id="div-new-inputs"):
                    with Vertical():
                        yield Label("New price (CUP):")
                        yield Input(
                            placeholder="leave blank to keep",
                            id="input-price",
                            type="number",
                            validators=[Number(minimum=0.0)],
                        )
                    with Vertical():
                        yield Label("New stock:")
                        yield Input(
                            placeholder="leave blank to keep",
                            id="input-stock",
                            type="integer",
                            validators=[Number(minimum=0)],
                        )
                with Horizontal(id="div-button"):
                    yield Button("Update", id="btn-update", variant="success")
                    yield Button("Delete", id="btn-delete", variant="error")

    def on_mount(self) -> None:
        self.query_one("#input-search", Input).focus()
        self.query_one("#md-prod").add_class("hidden")
        self.query_one("#hort-controls").add_class("hidden")
        self.update_optlist("")

    def on_input_changed(self, message: Input.Changed) -> None:
        if message.input.id == "input-search":
            self.query_one("#optlist-prods").remove_class("hidden")
            self.update_optlist(message.value)

    def on_option_list_option_selected(self, message: OptionList.OptionSelected) -> None:
        self.render_product(int(message.option.id))
        self.query_one("#optlist-prods").add_class("hidden")
        self.query_one("#md-prod").remove_class("hidden")
        self.query_one("#hort-controls").remove_class("hidden")

    @work(exclusive=True, group="search")
    async def update_optlist(self, query: str) -> None:
        """
        fill option list with search results
        """
        result = await self.app.state.call(
            "list-products", page=1, limit=50, filters={"search": query}
        )
        if self.report_failure(result):
            return
        opt_list = self.query_one("#optlist-prods", OptionList)
        opt_list.clear_options()
        opt_list.add_options(
            [
                Option(f"{p['name']}  [{p['stock']} in stock, {money(p['price_cup'])}]", id=str(p["id"]))
                for p in result["items"]
            ]
        )

    @work(exclusive=True, group="detail")
    async def render_product(self, product_id: int) -> None:
        result = await self.app.state.call("get-product", id=product_id)
        if self.report_failure(result):
            return
        movements = await self.app.state.call("list-stock-movements", id=product_id)
        if self.report_failure(movements):
            return

        self.current = result["product"]
        await self.query_one("#md-prod", MarkdownViewer).document.update(
            product_markdown(self.current, movements["items"])
        )
        # prefill inputs with current values for convenience
        self.query_one("#input-price", Input).value = f"{self.current['price_cup']:.2f}"
        self.query_one("#input-stock", Input).value = str(self.current["stock"])

    @on(Button.Pressed, "#btn-update")
    @work(exclusive=True, group="mutate")
    async def handle_update(self) -> None:
        if self.current is None:
            return
        price_input = self.query_one("#input-price", Input)
        stock_input = self.query_one("#input-stock", Input)

        patch: Dict[str, Any] = {}
        for field, widget, current, cast in (
            ("price_cup", price_input, self.current["price_cup"], float),
            ("stock", stock_input, self.current["stock"], int),
        ):
            if not widget.value:
                continue
            if not widget.is_valid:
                widget.focus()
                widget.add_class("-invalid")
                return
            if cast(widget.value) != current:
                patch[field] = cast(widget.value)

        if not patch:
            self.notify("Nothing to update.", severity="warning")
            return

        if "stock" in patch and patch["stock"] < self.current["stock"]:
            confirmed = await self.app.push_screen_wait(
                DialogModal(
                    f"Lower stock of '{self.current['name']}'?",
                    confirm_text="Lower",
                    cancel_text="Cancel",
                    tone="warning",
                    detail=markdown_table(
                        ["Current", "New"], [[self.current["stock"], patch["stock"]]]
                    ),
                )
            )
            if not confirmed:
                return

        result = await self.app.state.call("update-product", id=self.current["id"], **patch)
        if self.report_failure(result):
            return
        self.notify("Product updated successfully.")
        self.app.post_message(StockChangedMessage(self.current["id"]))
        self.render_product(self.current["id"])

    @on(Button.Pressed, "#btn-delete")
    @work(exclusive=True, group="mutate")
    async def handle_delete(self) -> None:
        if self.current is None:
            return
        if not await self.app.push_screen_wait(
            DialogModal(
                f"Delete '{self.current['name']}'? This cannot be undone.",
                confirm_text="Delete",
                cancel_text="Keep",
                tone="error",
            )
        ):
            return

        product_id = self.current["id"]
        result = await self.app.state.call("delete-product", id=product_id)
        if self.report_failure(result):
            return
        self.notify("Product deleted.")
        self.current = None
        self.query_one("#md-prod").add_class("hidden")
        self.query_one("#hort-controls").add_class("hidden")
        self.app.post_message(StockChangedMessage(product_id))
        self.update_optlist(self.query_one("#input-search", Input).value)

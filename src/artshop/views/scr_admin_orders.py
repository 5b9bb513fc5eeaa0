from typing import List, Optional, Tuple

from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.events import ScreenResume
from textual.widgets import Button, DataTable, Label, MarkdownViewer, Select

from artshop.db import crud
from artshop.db.models import ORDER_STATUSES, Artwork, Forbidden, Invalid, NotFound, Order
from artshop.utils.messages import ModeSwitchedMessage, NewOrderMessage
from artshop.utils.pure import format_price, order_detail_markdown
from artshop.views.base_screen import BaseScreen


class AdminOrdersScreen(BaseScreen):
    """
    All orders, newest first; the highlighted order's status can be changed.
    """

    def __init__(self) -> None:
        super().__init__()
        self._orders: List[Tuple[Order, Optional[Artwork]]] = []

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical():
            yield MarkdownViewer(id="md-order-detail", show_table_of_contents=False)
            yield DataTable(id="table-orders")
        with Horizontal(id="hort-table-control"):
            yield Button("Refresh", id="btn-refresh")
            yield Label("Status", id="label-status")
            yield Select(
                [(s.capitalize(), s) for s in ORDER_STATUSES],
                allow_blank=False,
                id="select-status",
            )
            yield Button("Apply", id="btn-apply-status", variant="primary")

    def on_mount(self) -> None:
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_columns(
            "Order No", "Date", "Artwork", "Buyer", "Phone", "Qty", "Total", "Status"
        )
        self._load_orders()

    @on(Button.Pressed, "#btn-refresh")
    @on(ModeSwitchedMessage)
    @on(ScreenResume)
    @on(NewOrderMessage)
    def handle_refresh(self):
        self._load_orders()

    def _highlighted(self) -> Optional[Tuple[Order, Optional[Artwork]]]:
        row = self.query_one(DataTable).cursor_row
        if 0 <= row < len(self._orders):
            return self._orders[row]
        return None

    @on(DataTable.RowHighlighted)
    def handle_row_highlight(self) -> None:
        picked = self._highlighted()
        if picked is None:
            return
        order, artwork = picked
        self.query_one("#select-status", Select).value = order.status
        self.query_one("#md-order-detail", MarkdownViewer).document.update(
            order_detail_markdown(order, artwork)
        )

    @work(exclusive=True, group="orders")
    async def _load_orders(self) -> None:
        result = await crud.list_orders(self.app.state.session)
        if isinstance(result, Forbidden):
            self.notify(result.message, severity="error")
            return

        table = self.query_one(DataTable)
        cursor_row = table.cursor_row
        self._orders = result
        table.clear()
        for order, artwork in self._orders:
            title = order.artwork_title if artwork else f"{order.artwork_title} (deleted)"
            table.add_row(
                order.id,
                order.created_at,
                title,
                order.buyer_name,
                order.phone,
                order.quantity,
                format_price(order.total),
                order.status,
            )

        if self._orders:
            table.move_cursor(row=min(cursor_row, len(self._orders) - 1))
            self.handle_row_highlight()
        else:
            self.query_one("#md-order-detail", MarkdownViewer).document.update(
                "### No orders yet."
            )

    @on(Button.Pressed, "#btn-apply-status")
    @work(exclusive=True, group="status")
    async def handle_apply_status(self) -> None:
        picked = self._highlighted()
        if picked is None:
            self.notify("Select an order first.", severity="warning")
            return
        order, _ = picked
        new_status = self.query_one("#select-status", Select).value
        if new_status == order.status:
            self.notify("Nothing to update.", severity="warning")
            return

        result = await crud.set_order_status(
            self.app.state.session, order.id, new_status
        )
        if isinstance(result, Invalid):
            self.notify("\n".join(result.messages), severity="error")
            return
        if isinstance(result, NotFound):
            self.notify(f"Order #{order.id} no longer exists.", severity="error")
        elif isinstance(result, Forbidden):
            self.notify(result.message, severity="error")
            return
        else:
            self.notify(f"Order #{order.id} is now {result.status}.")
        self.post_message(NewOrderMessage())

from typing import List, Optional, Tuple

from textual import on, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.events import ScreenResume
from textual.widgets import Button, DataTable, Label, MarkdownViewer

from artshop.db import crud
from artshop.db.models import Artwork, Order
from artshop.utils.messages import ModeSwitchedMessage, NewOrderMessage
from artshop.utils.pure import format_price, order_detail_markdown
from artshop.views.base_screen import BaseScreen


class MyOrdersScreen(BaseScreen):
    """
    Customers browse the orders placed with their account email.

    Layout:
    - Markdown detail view at the top, showing the highlighted order.
    - Orders table below, newest first.
    """

    BINDINGS = [
        Binding("enter", "noop", "View Order Detail", show=True, key_display="⏎"),
    ]

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
            yield Label("", id="label-order-cnt")

    def on_mount(self) -> None:
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_columns("Order No", "Date", "Artwork", "Qty", "Total", "Status")

        self._load_orders()

    @on(Button.Pressed, "#btn-refresh")
    @on(ModeSwitchedMessage)
    @on(ScreenResume)
    @on(NewOrderMessage)
    def handle_refresh(self):
        self._load_orders()

    @on(DataTable.RowHighlighted)
    def handle_row_highlight(self, event: DataTable.RowHighlighted) -> None:
        if 0 <= event.cursor_row < len(self._orders):
            self._render_detail(*self._orders[event.cursor_row])

    @work(exclusive=True, group="orders")
    async def _load_orders(self) -> None:
        session = self.app.state.session
        if session is None:
            return
        self._orders = await crud.list_orders_for_buyer(session.email)

        table = self.query_one(DataTable)
        table.clear()
        for order, _ in self._orders:
            table.add_row(
                order.id,
                order.created_at,
                order.artwork_title,
                order.quantity,
                format_price(order.total),
                order.status,
            )
        self.query_one("#label-order-cnt", Label).update(
            f" {len(self._orders)} order(s)"
        )
        if self._orders:
            table.move_cursor(row=0)
            self._render_detail(*self._orders[0])
        else:
            self._render_detail(None, None)

    def _render_detail(self, order: Optional[Order], artwork: Optional[Artwork]) -> None:
        if order is None:
            md = (
                "### No orders yet.\n\n"
                "Orders you place with your account email show up here."
            )
        else:
            md = order_detail_markdown(order, artwork)
        self.query_one("#md-order-detail", MarkdownViewer).document.update(md)

import asyncio
from collections import Counter

from textual import on, work
from textual.app import ComposeResult
from textual.containers import Vertical
from textual.events import ScreenResume
from textual.widgets import MarkdownViewer

from artshop.db import crud
from artshop.db.models import ORDER_STATUSES, Forbidden
from artshop.utils.messages import (
    CatalogChangedMessage,
    ModeSwitchedMessage,
    NewOrderMessage,
)
from artshop.utils.pure import format_price, generate_markdown_table
from artshop.views.base_screen import BaseScreen


class AdminOverviewScreen(BaseScreen):
    """
    Store summary: catalog size, orders by status, users and support inbox.
    """

    def __init__(self) -> None:
        super().__init__()

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical():
            yield MarkdownViewer(id="md-overview", show_table_of_contents=False)

    def on_mount(self) -> None:
        self.handle_reload()

    @on(NewOrderMessage)
    @on(CatalogChangedMessage)
    @on(ScreenResume)
    @on(ModeSwitchedMessage)
    @work(exclusive=True)
    async def handle_reload(self) -> None:
        session = self.app.state.session
        artworks, orders, users, messages = await asyncio.gather(
            crud.list_artworks(),
            crud.list_orders(session),
            crud.list_users(session),
            crud.list_support_messages(session),
        )
        if any(isinstance(r, Forbidden) for r in (orders, users, messages)):
            self.query_one("#md-overview", MarkdownViewer).document.update(
                "### Administrator access required."
            )
            return

        by_status = Counter(order.status for order, _ in orders)
        revenue = sum(
            order.total for order, _ in orders if order.status == "delivered"
        )
        summary_md = (
            "### Store Summary\n\n"
            f"- Artworks listed: {len(artworks)}\n"
            f"- Orders: {len(orders)}\n"
            f"- Delivered revenue: {format_price(revenue)}\n"
            f"- Registered users: {len(users)}\n"
            f"- Support messages: {len(messages)}\n\n"
        )
        status_md = "#### Orders by Status\n\n" + generate_markdown_table(
            ["Status", "Count"],
            [[s, by_status.get(s, 0)] for s in ORDER_STATUSES],
            ["l", "r"],
        )

        if messages:
            inbox_md = "\n\n### Support Inbox\n\n" + generate_markdown_table(
                ["Date", "From", "Subject", "Message", "Status"],
                [
                    [m.created_at, f"{m.user_name} <{m.user_email}>", m.subject, m.message, m.status]
                    for m in messages
                ],
                ["l", "l", "l", "l", "c"],
            )
        else:
            inbox_md = "\n\n### Support Inbox\n\n_No messages._"

        users_md = "\n\n### Users\n\n" + generate_markdown_table(
            ["ID", "Email", "Name", "Joined"],
            [[u.id, u.email, u.name or "-", u.created_at] for u in users],
            ["r", "l", "l", "l"],
        )

        self.query_one("#md-overview", MarkdownViewer).document.update(
            summary_md + status_md + inbox_md + users_md
        )

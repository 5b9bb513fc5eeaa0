from textual import events, on, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal
from textual.events import ScreenResume
from textual.reactive import reactive
from textual.widgets import DataTable, Input, Label, Switch

from artshop.db import crud
from artshop.db.models import NotFound
from artshop.utils.messages import (
    CatalogChangedMessage,
    NewOrderMessage,
    WishlistChangedMessage,
)
from artshop.utils.pure import format_price
from artshop.views.base_screen import BaseScreen
from artshop.views.modal_art_detail import ArtDetailModal

HEART = "♥"


class GalleryScreen(BaseScreen):
    """
    artwork browsing for customers, with search and a wishlist filter
    """

    BINDINGS = [
        Binding("fn+shift+1", "abs(1)", "View Artwork", show=True, key_display="⏎"),
        Binding("w", "toggle_wishlist", "Wishlist ♥", show=True),
    ]

    query_str = reactive("")
    wishlist_only = reactive(False)

    def __init__(self):
        super().__init__()

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Horizontal(id="div-gallery-filters"):
            yield Input(id="input-search", placeholder="Search title or description...")
            yield Label("Wishlist only", id="label-wishlist-only")
            yield Switch(id="switch-wishlist-only")
        yield DataTable(id="table-gallery")
        yield Label("", id="label-gallery-count")

    def on_mount(self):
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_column("ID", key="id")
        table.add_column(HEART, key="wish")
        table.add_column("Title", key="title")
        table.add_column("Price", key="price")
        table.add_column("Description", key="description")

        self.query_one("#input-search").focus()
        self.update_gallery()

    @on(Input.Changed, "#input-search")
    def handle_search_changed(self, message: Input.Changed) -> None:
        self.query_str = message.value

    @on(Switch.Changed, "#switch-wishlist-only")
    def handle_filter_changed(self, message: Switch.Changed) -> None:
        self.wishlist_only = message.value

    def watch_query_str(self, _old, _new) -> None:
        self.update_gallery()

    def watch_wishlist_only(self, _old, _new) -> None:
        self.update_gallery()

    @on(ScreenResume)
    @on(WishlistChangedMessage)
    @on(CatalogChangedMessage)
    @on(NewOrderMessage)
    def handle_refresh(self) -> None:
        self.update_gallery()

    def _selected_artwork_id(self):
        table = self.query_one(DataTable)
        if table.row_count == 0:
            return None
        return int(table.get_row_at(table.cursor_row)[0])

    async def on_key(self, event: events.Key) -> None:
        table = self.query_one(DataTable)
        if event.key == "enter" and self.focused == table:
            artwork_id = self._selected_artwork_id()
            if artwork_id is not None:
                self.open_detail(artwork_id)

    @work
    async def open_detail(self, artwork_id: int) -> None:
        await self.app.push_screen_wait(ArtDetailModal(artwork_id))
        self.update_gallery()

    @work(exclusive=True, group="wishlist")
    async def action_toggle_wishlist(self) -> None:
        if self.focused != self.query_one(DataTable):
            return
        artwork_id = self._selected_artwork_id()
        if artwork_id is None:
            return
        result = await crud.toggle_wishlist(self.app.state.user_id, artwork_id)
        if isinstance(result, NotFound):
            self.notify(f"Could not update wishlist: {result.entity} not found.", severity="error")
        elif result:
            self.notify("Added to wishlist.")
        else:
            self.notify("Removed from wishlist.")
        self.post_message(WishlistChangedMessage())

    @work(exclusive=True)
    async def update_gallery(self) -> None:
        user_id = self.app.state.user_id
        if user_id is None:
            return
        artworks = await crud.list_artworks(self.query_str)
        wished = await crud.wishlist_ids(user_id)
        if self.wishlist_only:
            artworks = [a for a in artworks if a.id in wished]

        table = self.query_one(DataTable)
        cursor_row = table.cursor_row
        table.clear()
        table.add_rows(
            [
                a.id,
                HEART if a.id in wished else "",
                a.title,
                format_price(a.price),
                a.description.splitlines()[0] if a.description else "",
            ]
            for a in artworks
        )
        if artworks:
            table.move_cursor(row=min(cursor_row, len(artworks) - 1))

        if artworks:
            count = f"{len(artworks)} artwork{'s' if len(artworks) != 1 else ''}"
        elif self.wishlist_only:
            count = "Your wishlist is empty."
        else:
            count = "No artworks found."
        self.query_one("#label-gallery-count", Label).update(count)

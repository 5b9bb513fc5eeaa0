from textual import events, on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.reactive import reactive
from textual.screen import ModalScreen
from textual.validation import Number
from textual.widgets import Button, Input, Label, Markdown, MarkdownViewer

from artshop.db import crud
from artshop.db.models import Artwork, Invalid, LikeState, NotFound
from artshop.utils.messages import WishlistChangedMessage
from artshop.utils.pure import (
    MAX_COMMENT_LENGTH,
    MAX_QTY,
    MIN_QTY,
    format_price,
    generate_markdown_table,
)
from artshop.views.modal_checkout import CheckoutModal


class ArtDetailModal(ModalScreen[bool]):
    """
    artwork detail with likes, comments and the buy button.
    Returns True if an order was placed.
    """

    order_qty = reactive(MIN_QTY)

    def __init__(self, artwork_id: int) -> None:
        super().__init__()

        self._artwork_id = artwork_id
        self._artwork: Artwork = None

    def compose(self) -> ComposeResult:
        with Horizontal(id="hort-art-detail"):
            with Vertical(id="div-art-info"):
                yield MarkdownViewer("", show_table_of_contents=False)
                with Horizontal(id="div-art-social"):
                    yield Button("♡ Like", id="btn-like")
                    yield Button("Wishlist", id="btn-wishlist")
            with Vertical(id="div-art-side"):
                yield Label("Quantity")
                with Horizontal():
                    yield Button("-", id="btn-sub-qty")
                    yield Input(value=str(MIN_QTY), id="input-order-qty", type="integer")
                    yield Button("+", id="btn-add-qty")
                with Horizontal():
                    yield Button("Go Back", id="btn-quit")
                    yield Button("Buy Now", id="btn-buy", variant="primary")
                yield Label("Comments", id="label-comments")
                yield Input(
                    placeholder="Write a comment...",
                    max_length=MAX_COMMENT_LENGTH,
                    id="input-comment",
                )
                yield Button("Post Comment", id="btn-comment")
                with VerticalScroll(id="scroll-comments"):
                    yield Markdown("", id="md-comments")

    async def on_mount(self):
        self._artwork = await crud.get_artwork(self._artwork_id)
        if self._artwork is None:
            self.app.notify("This artwork is no longer available.", severity="error")
            self.dismiss(False)
            return

        art = self._artwork
        table_rows = [
            ["Title", art.title],
            ["Price", format_price(art.price)],
            ["Image", art.image_ref],
            ["Listed", art.created_at],
        ]
        md_table_str = generate_markdown_table(["Attribute", "Value"], table_rows, ["l", "l"])
        header_md = f"### {art.title}\n\n"
        body_md = f"\n\n{art.description}" if art.description else ""
        await self.query_one(MarkdownViewer).document.update(
            header_md + md_table_str + body_md
        )

        self.query_one("#input-order-qty").validators = [
            Number(minimum=MIN_QTY, maximum=MAX_QTY)
        ]
        self.watch_order_qty(self.order_qty)

        user_id = self.app.state.user_id
        self._show_like(
            LikeState(
                liked=await crud.has_liked(user_id, art.id),
                like_count=await crud.like_count(art.id),
            )
        )
        self._show_wishlisted(art.id in await crud.wishlist_ids(user_id))
        await self.refresh_comments()

        self.query_one("#btn-buy").focus()

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self.dismiss(False)

    def _show_like(self, state: LikeState) -> None:
        btn = self.query_one("#btn-like", Button)
        btn.label = f"{'♥' if state.liked else '♡'} {state.like_count}"
        btn.variant = "error" if state.liked else "default"

    def _show_wishlisted(self, wished: bool) -> None:
        btn = self.query_one("#btn-wishlist", Button)
        btn.label = "In Wishlist" if wished else "Add to Wishlist"
        btn.variant = "warning" if wished else "default"

    async def refresh_comments(self) -> None:
        comments = await crud.list_comments(self._artwork_id)
        if not comments:
            md = "_No comments yet._"
        else:
            md = "\n\n".join(
                f"**{c.user_name}** · {c.created_at}\n\n{c.comment}" for c in comments
            )
        await self.query_one("#md-comments", Markdown).update(md)

    async def on_input_changed(self, message: Input.Changed) -> None:
        if (
            message.input.id == "input-order-qty"
            and message.input.is_valid
            and self.focused == message.input
        ):
            self.order_qty = int(message.value)

    def watch_order_qty(self, qty: int):
        self.query_one("#btn-sub-qty").disabled = qty <= MIN_QTY
        self.query_one("#btn-add-qty").disabled = qty >= MAX_QTY
        self.query_one("#input-order-qty", Input).value = str(qty)

    @on(Button.Pressed, "#btn-add-qty")
    def handle_add_qty(self):
        self.order_qty = min(self.order_qty + 1, MAX_QTY)

    @on(Button.Pressed, "#btn-sub-qty")
    def handle_sub_qty(self):
        self.order_qty = max(self.order_qty - 1, MIN_QTY)

    @on(Button.Pressed, "#btn-like")
    @work(exclusive=True, group="like")
    async def handle_like(self):
        result = await crud.toggle_like(self.app.state.user_id, self._artwork_id)
        if isinstance(result, NotFound):
            self.app.notify(f"Could not like: {result.entity} not found.", severity="error")
            self.dismiss(False)
            return
        self._show_like(result)

    @on(Button.Pressed, "#btn-wishlist")
    @work(exclusive=True, group="wishlist")
    async def handle_wishlist(self):
        result = await crud.toggle_wishlist(self.app.state.user_id, self._artwork_id)
        if isinstance(result, NotFound):
            self.app.notify(f"Could not update wishlist: {result.entity} not found.", severity="error")
            self.dismiss(False)
            return
        self._show_wishlisted(result)
        self.app.post_message(WishlistChangedMessage())

    @on(Button.Pressed, "#btn-comment")
    @work(exclusive=True, group="comment")
    async def handle_comment(self):
        input_comment = self.query_one("#input-comment", Input)
        result = await crud.add_comment(
            self.app.state.user_id, self._artwork_id, input_comment.value
        )
        if isinstance(result, Invalid):
            input_comment.add_class("-invalid")
            self.notify(result.messages[0], severity="error")
            return
        if isinstance(result, NotFound):
            self.notify(f"Could not post: {result.entity} not found.", severity="error")
            return

        input_comment.value = ""
        input_comment.remove_class("-invalid")
        self.notify("Comment posted.")
        await self.refresh_comments()

    @on(Button.Pressed, "#btn-quit")
    def handle_quit(self):
        self.dismiss(False)

    @on(Button.Pressed, "#btn-buy")
    @work(exclusive=True)
    async def handle_buy(self):
        if await self.app.push_screen_wait(
            CheckoutModal(self._artwork, self.order_qty)
        ):
            self.dismiss(True)

from __future__ import annotations

import asyncio
from typing import Optional

from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.widgets import Button, Input, Label, MarkdownViewer, OptionList, TextArea
from textual.widgets.option_list import Option

from artshop.db import crud
from artshop.db.images import ImageStoreError, read_image_file
from artshop.db.models import Artwork, Forbidden, ImageUpload, Invalid, NotFound
from artshop.utils.messages import CatalogChangedMessage
from artshop.utils.pure import format_price, generate_markdown_table
from artshop.views.base_screen import BaseScreen
from artshop.views.modal_dialog import DialogModal, ErrorListModal

FIELD_INPUTS = {
    "title": "#input-title",
    "price": "#input-price",
    "image": "#input-image",
}


class AdminArtworksScreen(BaseScreen):
    """
    Admins search artworks, then add, edit or remove them.
    Leaving the image path blank on save keeps the current image.
    """

    current_id: Optional[int] = None

    def __init__(self) -> None:
        super().__init__()

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical():
            with Horizontal(id="div-art-search"):
                yield Input(id="input-search", placeholder="Search for artwork...")
                yield Button("New Artwork", id="btn-new", variant="primary")
            yield OptionList(id="optlist-arts")
            yield MarkdownViewer(id="md-art", show_table_of_contents=False)
            with Vertical(id="div-art-form"):
                with Horizontal():
                    with Vertical():
                        yield Label("Title")
                        yield Input(id="input-title")
                    with Vertical():
                        yield Label("Price")
                        yield Input(id="input-price", type="number")
                yield Label("Description")
                yield TextArea(id="text-description")
                yield Label("Image file", id="label-image")
                yield Input(placeholder="/path/to/picture.jpg", id="input-image")
                with Horizontal(id="div-button"):
                    yield Button("Delete", id="btn-delete", variant="error")
                    yield Button("Save", id="btn-save", variant="success")

    def on_mount(self) -> None:
        self.query_one("#input-search", Input).focus()
        self.query_one("#md-art").add_class("hidden")
        self.query_one("#div-art-form").add_class("hidden")
        self.update_optlist("")

    def on_input_changed(self, message: Input.Changed) -> None:
        if message.input.id == "input-search":
            self.query_one("#optlist-arts").remove_class("hidden")
            self.update_optlist(message.value)

    def on_option_list_option_selected(self, message: OptionList.OptionSelected):
        self.current_id = int(message.option.id)
        self.render_artwork()

        self.query_one("#optlist-arts").add_class("hidden")
        self.query_one("#md-art").remove_class("hidden")
        self.query_one("#div-art-form").remove_class("hidden")

    @on(CatalogChangedMessage)
    def handle_catalog_changed(self) -> None:
        self.update_optlist(self.query_one("#input-search", Input).value)

    @work(exclusive=True, group="search")
    async def update_optlist(self, query: str):
        """
        fill option list with search results
        """
        artworks = await crud.list_artworks(query)

        opt_list = self.query_one("#optlist-arts", OptionList)
        opt_list.clear_options()
        opt_list.add_options(
            [
                Option(f"{a.id} {a.title} ({format_price(a.price)})", id=str(a.id))
                for a in artworks
            ]
        )

    def _fill_form(self, artwork: Optional[Artwork]) -> None:
        self.query_one("#input-title", Input).value = artwork.title if artwork else ""
        self.query_one("#input-price", Input).value = (
            f"{artwork.price:.2f}" if artwork else ""
        )
        self.query_one("#text-description", TextArea).text = (
            artwork.description if artwork else ""
        )
        self.query_one("#input-image", Input).value = ""
        self.query_one("#label-image", Label).update(
            "Image file (blank keeps current)" if artwork else "Image file (required)"
        )
        self.query_one("#btn-delete", Button).disabled = artwork is None
        for selector in FIELD_INPUTS.values():
            self.query_one(selector, Input).remove_class("-invalid")

    @work(exclusive=True)
    async def render_artwork(self) -> None:
        artwork = await crud.get_artwork(self.current_id)
        if artwork is None:
            self.notify("Artwork no longer exists.", severity="warning")
            self.action_new()
            return

        rows = [
            ["ID", artwork.id],
            ["Title", artwork.title],
            ["Price", format_price(artwork.price)],
            ["Image", artwork.image_ref],
            ["Listed", artwork.created_at],
            ["Likes", await crud.like_count(artwork.id)],
        ]
        md_table = generate_markdown_table(["Attribute", "Value"], rows, ["l", "l"])
        await self.query_one("#md-art", MarkdownViewer).document.update(
            f"### Artwork: {artwork.title}\n\n" + md_table
        )
        self._fill_form(artwork)

    @on(Button.Pressed, "#btn-new")
    def action_new(self) -> None:
        self.current_id = None
        self._fill_form(None)
        self.query_one("#optlist-arts").add_class("hidden")
        self.query_one("#md-art").add_class("hidden")
        self.query_one("#div-art-form").remove_class("hidden")
        self.query_one("#input-title", Input).focus()

    async def _load_image(self) -> Optional[ImageUpload] | bool:
        """The picked image, None when the path is blank, False if unreadable."""
        path = self.query_one("#input-image", Input).value.strip()
        if not path:
            return None
        try:
            return await asyncio.to_thread(read_image_file, path)
        except (ImageStoreError, OSError) as exc:
            self.query_one("#input-image", Input).add_class("-invalid")
            self.notify(str(exc), severity="error")
            return False

    def _mark_invalid(self, result: Invalid) -> None:
        for field, selector in FIELD_INPUTS.items():
            widget = self.query_one(selector, Input)
            if result.has_field(field):
                widget.add_class("-invalid")
            else:
                widget.remove_class("-invalid")

    @on(Button.Pressed, "#btn-save")
    @work(exclusive=True)
    async def handle_save(self) -> None:
        image = await self._load_image()
        if image is False:
            return

        session = self.app.state.session
        title = self.query_one("#input-title", Input).value
        price = self.query_one("#input-price", Input).value
        description = self.query_one("#text-description", TextArea).text

        try:
            if self.current_id is None:
                result = await crud.create_artwork(
                    session, title, description, price, image
                )
            else:
                result = await crud.update_artwork(
                    session, self.current_id, title, description, price, image
                )
        except ImageStoreError as exc:
            hint = " Please try again." if exc.retryable else ""
            self.notify(f"{exc}.{hint}", severity="error")
            return

        if isinstance(result, Invalid):
            self._mark_invalid(result)
            await self.app.push_screen_wait(
                ErrorListModal("Artwork not saved:", result.messages)
            )
            return
        if isinstance(result, (Forbidden, NotFound)):
            message = result.message if isinstance(result, Forbidden) else "Artwork no longer exists."
            self.notify(message, severity="error")
            return

        self.notify(f"Saved '{result.title}'.")
        self.current_id = result.id
        self.query_one("#md-art").remove_class("hidden")
        self.render_artwork()
        self.post_message(CatalogChangedMessage())

    @on(Button.Pressed, "#btn-delete")
    @work(exclusive=True)
    async def handle_delete(self) -> None:
        if self.current_id is None:
            return
        if not await self.app.push_screen_wait(
            DialogModal(
                "Delete this artwork? Existing orders are kept.",
                primary_text="Delete",
                secondary_text="Cancel",
                tone="error",
            )
        ):
            return

        result = await crud.delete_artwork(self.app.state.session, self.current_id)
        if isinstance(result, Forbidden):
            self.notify(result.message, severity="error")
            return
        if result:
            self.notify("Artwork deleted.")
        else:
            self.notify("Artwork was already gone.", severity="warning")

        self.current_id = None
        self.query_one("#md-art").add_class("hidden")
        self.query_one("#div-art-form").add_class("hidden")
        self.query_one("#optlist-arts").remove_class("hidden")
        self.post_message(CatalogChangedMessage())

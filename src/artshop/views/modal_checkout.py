from textual import events, on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, MarkdownViewer, Select

from artshop.db import crud
from artshop.db.models import Artwork, Invalid, NotFound
from artshop.utils.messages import NewOrderMessage
from artshop.utils.pure import format_price, generate_markdown_table, parse_quantity
from artshop.views.modal_dialog import DialogModal, ErrorListModal

PAYMENT_CHOICES = [("Cash on Delivery", "cod"), ("Online Payment", "online")]

# form field -> input widget, for highlighting rejected fields
FIELD_INPUTS = {
    "buyer_name": "#input-buyer-name",
    "phone": "#input-phone",
    "address_line1": "#input-address-1",
    "postal_code": "#input-postal",
    "quantity": "#input-checkout-qty",
}


class CheckoutModal(ModalScreen[bool]):
    """
    Cash-on-delivery checkout for a single artwork.
    Returns True once an order has been placed, False if the user backed out.
    """

    def __init__(self, artwork: Artwork, quantity: int = 1):
        super().__init__()
        self._artwork = artwork
        self._quantity = quantity

    def compose(self) -> ComposeResult:
        with Vertical(id="div-checkout"):
            yield MarkdownViewer("", show_table_of_contents=False, id="md-checkout")
            with VerticalScroll(id="div-checkout-form"):
                yield Label("Full Name")
                yield Input(placeholder="Jane Doe", id="input-buyer-name")
                yield Label("Email (optional, to find your order later)")
                yield Input(placeholder="user@example.com", id="input-buyer-email")
                yield Label("Phone")
                yield Input(placeholder="9876543210", id="input-phone")
                yield Label("Address Line 1")
                yield Input(placeholder="12 Main Street", id="input-address-1")
                yield Label("Address Line 2 (optional)")
                yield Input(placeholder="Apartment, landmark", id="input-address-2")
                yield Label("Pin Code")
                yield Input(placeholder="560001", id="input-postal")
                yield Label("Payment Method")
                yield Select(
                    PAYMENT_CHOICES, value="cod", allow_blank=False, id="select-payment"
                )
                yield Label("Quantity")
                yield Input(
                    str(self._quantity), type="integer", id="input-checkout-qty"
                )
            with Horizontal():
                yield Button("Go Back", id="btn-quit")
                yield Button("Place Order", id="btn-submit", variant="primary")

    async def on_mount(self):
        session = self.app.state.session
        if session is not None:
            self.query_one("#input-buyer-name", Input).value = session.name or ""
            self.query_one("#input-buyer-email", Input).value = session.email
        await self.update_summary(self._artwork.price * self._quantity)
        self.query_one("#input-buyer-name").focus()

    async def update_summary(self, total: float) -> None:
        art = self._artwork
        qty = parse_quantity(self.query_one("#input-checkout-qty", Input).value)
        headers = ["Artwork", "Unit Price", "Quantity", "Total Price"]
        rows = [[art.title, format_price(art.price), qty, format_price(total)]]
        md = "### Order Summary\n\n"
        md += generate_markdown_table(headers, rows, ["l", "c", "c", "c"])
        md += f"\n\n**Total:** {format_price(total)}"
        await self.query_one(MarkdownViewer).document.update(md)

    async def on_input_changed(self, message: Input.Changed) -> None:
        if message.input.id == "input-checkout-qty":
            qty = parse_quantity(message.value)
            await self.update_summary(self._artwork.price * qty)

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self.dismiss(False)

    def _mark_invalid(self, result: Invalid) -> None:
        for field, selector in FIELD_INPUTS.items():
            widget = self.query_one(selector, Input)
            if result.has_field(field):
                widget.add_class("-invalid")
            else:
                widget.remove_class("-invalid")

    @on(Button.Pressed, "#btn-submit")
    @work(exclusive=True)
    async def handle_submit(self):
        if not await self.app.push_screen_wait(
            DialogModal(
                "Place order? This cannot be undone.",
                primary_text="Yes",
                secondary_text="No",
                tone="positive",
            )
        ):
            return

        result = await crud.place_order(
            self._artwork.id,
            buyer_name=self.query_one("#input-buyer-name", Input).value,
            buyer_email=self.query_one("#input-buyer-email", Input).value,
            phone=self.query_one("#input-phone", Input).value,
            address_line1=self.query_one("#input-address-1", Input).value,
            address_line2=self.query_one("#input-address-2", Input).value,
            postal_code=self.query_one("#input-postal", Input).value,
            payment_method=self.query_one("#select-payment", Select).value,
            quantity=self.query_one("#input-checkout-qty", Input).value,
        )

        if isinstance(result, NotFound):
            self.app.notify("This artwork is no longer available.", severity="error")
            self.dismiss(False)
            return
        if isinstance(result, Invalid):
            self._mark_invalid(result)
            await self.update_summary(result.total)
            await self.app.push_screen_wait(
                ErrorListModal("Please fix the following:", result.messages)
            )
            return

        order = result.order
        self.app.post_message(NewOrderMessage())
        await self.app.push_screen_wait(
            DialogModal(
                f"Order #{order.id} placed!\n\n"
                f"{order.quantity} x {order.artwork_title}, "
                f"total {format_price(order.total)}.\n"
                f"Status: {order.status}",
                tone="positive",
            )
        )
        self.dismiss(True)

    @on(Button.Pressed, "#btn-quit")
    def handle_quit(self):
        self.dismiss(False)

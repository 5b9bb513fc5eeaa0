from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.widgets import Button, Input, Label, Markdown, TextArea

from artshop.db import crud
from artshop.db.models import Invalid
from artshop.views.base_screen import BaseScreen

HELP_MD = """\
### Help & Support

- **Ordering:** open an artwork from the gallery, pick a quantity (1 to 5) and press *Buy Now*.
  Orders are paid on delivery unless you choose online payment.
- **Wishlist:** press `w` on a gallery row, or use the button in the artwork view.
- **Order status:** *My Orders* lists every order placed with your account email.

Still stuck? Send us a message below.
"""


class HelpScreen(BaseScreen):
    """
    FAQ and the support form for signed-in customers
    """

    def __init__(self) -> None:
        super().__init__()

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical(id="div-help"):
            yield Markdown(HELP_MD)
            yield Label("Subject")
            yield Input(placeholder="Where is my order?", id="input-subject")
            yield Label("Message")
            yield TextArea(id="text-message")
            with Horizontal(id="div-help-btns"):
                yield Button("Send", id="btn-send", variant="primary")

    @on(Button.Pressed, "#btn-send")
    @work(exclusive=True)
    async def handle_send(self) -> None:
        input_subject = self.query_one("#input-subject", Input)
        text_message = self.query_one("#text-message", TextArea)

        result = await crud.create_support_message(
            self.app.state.session, input_subject.value, text_message.text
        )
        if isinstance(result, Invalid):
            self.notify("\n".join(result.messages), severity="error")
            if result.has_field("subject"):
                input_subject.add_class("-invalid")
            else:
                input_subject.remove_class("-invalid")
            return

        input_subject.value = ""
        input_subject.remove_class("-invalid")
        text_message.clear()
        self.notify("Message sent. We will get back to you soon.")

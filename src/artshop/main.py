from dotenv import load_dotenv
from textual import on, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import LoadingIndicator

from artshop.utils.messages import (
    ModeSwitchedMessage,
    QuitRequestedMessage,
    UserLogoutMessage,
)
from artshop.utils.state import GlobalState
from artshop.views.scr_admin_artworks import AdminArtworksScreen
from artshop.views.scr_admin_orders import AdminOrdersScreen
from artshop.views.scr_admin_overview import AdminOverviewScreen
from artshop.views.scr_gallery import GalleryScreen
from artshop.views.scr_help import HelpScreen
from artshop.views.scr_login import LoginScreen
from artshop.views.scr_my_orders import MyOrdersScreen


class ArtShopApp(App):
    BINDINGS = [
        Binding("ctrl+t", "switch_light", "Toggle Theme", show=True),
    ]

    MODES = {
        "gallery": GalleryScreen,
        "my_orders": MyOrdersScreen,
        "help": HelpScreen,
        "adm_overview": AdminOverviewScreen,
        "adm_artworks": AdminArtworksScreen,
        "adm_orders": AdminOrdersScreen,
    }

    ADMIN_MODES = {
        "adm_overview": "Overview",
        "adm_artworks": "Artworks",
        "adm_orders": "Orders",
    }
    CUSTOMER_MODES = {
        "gallery": "Gallery",
        "my_orders": "My Orders",
        "help": "Help & Support",
    }

    CSS_PATH = [
        "styles/index.tcss",
        "styles/login.tcss",
        "styles/gallery.tcss",
        "styles/orders.tcss",
        "styles/admin.tcss",
    ]

    state: GlobalState

    def __init__(self):
        super().__init__()
        self.state = GlobalState()

    def compose(self) -> ComposeResult:
        yield LoadingIndicator()

    async def on_mount(self) -> None:
        self.main_flow()

    def action_switch_light(self):
        if self.theme == "textual-dark":
            self.theme = "solarized-light"
        else:
            self.theme = "textual-dark"
        self.notify(f"Theme changed to {self.theme}")

    @on(UserLogoutMessage)
    @work
    async def handle_user_logout(self):
        self.state.sign_out()
        self.notify("Logout successful.")
        self.main_flow()

    @on(QuitRequestedMessage)
    def handle_quit(self):
        self.state.sign_out()
        self.exit()

    @work
    async def main_flow(self):
        await self.push_screen_wait(LoginScreen())
        new_mode = "adm_overview" if self.state.is_admin else "gallery"
        self.post_message(ModeSwitchedMessage(self.current_mode, new_mode))
        await self.switch_mode(new_mode)


def run() -> None:
    load_dotenv()
    ArtShopApp().run()


if __name__ == "__main__":
    run()

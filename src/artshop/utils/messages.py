from textual.message import Message


class QuitRequestedMessage(Message):
    """
    broadcasted when the app is about to quit
    """

    bubble = True


class UserLogoutMessage(Message):
    """
    broadcasted when the user logs out
    """

    bubble = True


class UserLoginMessage(Message):
    """
    Fired when a user signed in, so the screen can refresh
    """

    bubble = True


class WishlistChangedMessage(Message):
    """
    Fired after a wishlist toggle, the gallery refreshes its heart column.
    Post at App level when sent from a modal.
    """

    bubble = True


class CatalogChangedMessage(Message):
    """
    Fired when the admin adds, edits or removes an artwork
    """

    bubble = True


class NewOrderMessage(Message):
    """
    Fired when an order is placed or its status changes.
    Listened to by My Orders and the admin order screens.
    """

    bubble = True


class ModeSwitchedMessage(Message):
    """
    fired whenever switch_mode is called
    must be fired from app level
    """

    bubble = True

    def __init__(self, old_mode: str, new_mode: str) -> None:
        super().__init__()
        self.old_mode = old_mode
        self.new_mode = new_mode

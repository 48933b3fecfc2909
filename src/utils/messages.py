from textual.message import Message


class QuitRequestedMessage(Message):
    """
    Posted by the quit dialog; the app logs out, closes the pool and exits.
    """

    bubble = True


class UserLogoutMessage(Message):
    """
    Posted by the sidebar logout button, or by a screen whose bridge call
    found the session gone. The app drops the token and shows the login screen.
    """

    bubble = True


class UserLoginMessage(Message):
    """
    Posted after the bridge accepted the credentials, so screens redraw the sidebar.
    """

    bubble = True


class StockChangedMessage(Message):
    """
    Posted at App level by the inventory screen after a product's stock or
    price changed, or after a delete. The report screen reloads on it.
    """

    bubble = True

    def __init__(self, product_id: int) -> None:
        super().__init__()
        self.product_id = product_id


class ModeSwitchedMessage(Message):
    """
    Posted at App level right before switch_mode, carrying both mode names.
    """

    bubble = True

    def __init__(self, old_mode: str, new_mode: str) -> None:
        super().__init__()
        self.previous = old_mode
        self.target = new_mode

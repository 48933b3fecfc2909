from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.events import Key
from textual.widgets import Button, Input, Label

from utils.messages import UserLoginMessage
from views.base_screen import BaseScreen
from views.modal_dialog import QuitDialogModal


class LoginScreen(BaseScreen):
    """
    Dismissed once the bridge accepted the credentials; the token is then in app.state.
    Accounts are created by an administrator, so there is no sign-up form.
    """

    def __init__(self):
        super().__init__(sub_title="Login", show_sidebar=False)

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical(id="div-login"):
            yield Label("Username")
            yield Input(placeholder="username", id="input-login-user", max_length=50)
            yield Label("Password")
            yield Input(placeholder="*********", password=True, id="input-login-pwd")
            with Horizontal(id="div-login-btns"):
                yield Button("Quit", id="btn-quit")
                yield Button("Login", id="btn-login", variant="primary")

    def on_mount(self) -> None:
        self.query_one("#input-login-user").focus()

    def on_key(self, event: Key) -> None:
        if event.key == "enter" and self.focused == self.query_one("#input-login-pwd"):
            self.handle_login_submit()

    @on(Button.Pressed, "#btn-login")
    @work(exclusive=True)
    async def handle_login_submit(self) -> None:
        username = self.query_one("#input-login-user", Input).value.strip()
        pwd_input = self.query_one("#input-login-pwd", Input)

        if not username or not pwd_input.value:
            self.notify("Username or password cannot be empty!", severity="error")
            return

        result = await self.app.state.login(username, pwd_input.value)
        if result.get("success"):
            self.notify(f"Hello {self.app.state.username}!")
            self.app.post_message(UserLoginMessage())
            self.dismiss()
            return

        self.notify(result.get("error", "Login failed"), severity="error")
        pwd_input.value = ""
        pwd_input.focus()
        pwd_input.add_class("-invalid")

    @on(Button.Pressed, "#btn-quit")
    def handle_quit_(self) -> None:
        self.app.push_screen(QuitDialogModal())

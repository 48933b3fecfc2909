from textual import on, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.screen import Screen
from textual.widgets import Button, Footer, Header, Label, ListItem, ListView, Markdown

from utils.messages import ModeSwitchedMessage, UserLoginMessage, UserLogoutMessage
from utils.pure import markdown_table
from views.modal_dialog import DialogModal, QuitDialogModal


class Sidebar(Container):
    init_mode = ""

    def compose(self) -> ComposeResult:
        yield Label("Signed in as", id="label-info-1")
        yield Markdown("", id="md-userinfo")
        yield Button("Log out", id="btn-logout", variant="error")
        yield Label("Menu", id="label-info-2")
        yield ListView(id="list-menu")

    async def on_mount(self) -> None:
        self.init_mode = self.app.current_mode
        state = self.app.state
        if not state.logged_in:
            return

        role_label = "Administrator" if state.role == "admin" else "Staff"
        await self.query_one(Markdown).update(
            markdown_table(
                ["", ""],
                [["User", state.username], ["Role", role_label]],
            )
        )

        list_menu = self.query_one("#list-menu", ListView)
        await list_menu.clear()
        await list_menu.extend(
            [
                ListItem(Label(title), id="list-menu-item-" + mode)
                for mode, title in self.app.MODE_TITLES.items()
            ]
        )
        self.highlight_item(self.init_mode)

    async def on_list_view_selected(self, event: ListView.Selected) -> None:
        selected_mode = event.item.id.removeprefix("list-menu-item-")
        self.highlight_item(self.init_mode)
        if self.app.current_mode != selected_mode:
            self.post_message(ModeSwitchedMessage(self.app.current_mode, selected_mode))
            await self.app.switch_mode(selected_mode)

    @on(Button.Pressed, "#btn-logout")
    @work
    async def handle_logout(self) -> None:
        if not await self.app.push_screen_wait(
            DialogModal(
                "Are you sure you want to log out?",
                confirm_text="Yes",
                cancel_text="No",
                tone="warning",
            )
        ):
            return
        self.post_message(UserLogoutMessage())

    def highlight_item(self, mode: str) -> None:
        for item in self.query_one("#list-menu", ListView).children:
            item.highlighted = item.id == "list-menu-item-" + mode


class BaseScreen(Screen):
    """
    Inherited by all screens, contains common elements like
    headers, footers, sidebar, and keybindings.
    """

    BINDINGS = [
        Binding("ctrl+z", "quit", "Quit App", show=True),
    ]

    def __init__(self, sub_title: str = "", show_sidebar: bool = True):
        super().__init__()
        self.sub_title = sub_title
        self._show_sidebar = show_sidebar

    def compose(self) -> ComposeResult:
        if self._show_sidebar:
            yield Sidebar()
        yield Header()
        yield Footer(show_command_palette=False)

    def report_failure(self, result: dict) -> bool:
        """Notify the user about a failed bridge call. Returns True on failure."""
        if result.get("success"):
            return False
        self.notify(result.get("error", "Request failed"), severity="error")
        if not self.app.state.logged_in:
            self.post_message(UserLogoutMessage())
        return True

    @on(UserLoginMessage)
    def handle_user_login(self) -> None:
        self.refresh()

    @work()
    async def action_quit(self) -> None:
        await self.app.push_screen_wait(QuitDialogModal())

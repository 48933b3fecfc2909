from textual import on, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import LoadingIndicator

from core.bridge import AppContext, build_app
from utils.config import APP_NAME, get_settings
from utils.logger import get_logger
from utils.messages import ModeSwitchedMessage, QuitRequestedMessage, UserLogoutMessage
from utils.state import GlobalState
from views.scr_inventory import InventoryScreen
from views.scr_login import LoginScreen
from views.scr_report import ReportScreen

_logger = get_logger(__name__)


class StockDeskApp(App):
    BINDINGS = [
        Binding("ctrl+t", "switch_light", "Toggle Theme", show=True),
    ]

    MODES = {
        "inventory": InventoryScreen,
        "reports": ReportScreen,
    }

    MODE_TITLES = {"inventory": "Inventory", "reports": "Reports"}

    CSS_PATH = "styles/stockdesk.tcss"

    state: GlobalState

    def __init__(self, ctx: AppContext):
        super().__init__()
        self.title = APP_NAME
        self.ctx = ctx
        self.state = GlobalState(bridge=ctx.bridge)

    def compose(self) -> ComposeResult:
        yield LoadingIndicator()

    async def on_mount(self) -> None:
        await self.ctx.start()
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
        await self.state.logout()
        self.notify("Logged out.")
        self.main_flow()

    @on(QuitRequestedMessage)
    @work
    async def handle_quit(self):
        await self.state.logout()
        await self.ctx.close()
        self.exit()

    @work
    async def main_flow(self):
        await self.push_screen_wait(LoginScreen())
        self.post_message(ModeSwitchedMessage(self.current_mode, "inventory"))
        await self.switch_mode("inventory")


def main() -> None:
    ctx = build_app(get_settings())
    _logger.info(f"Database: {ctx.settings.db_path}")
    StockDeskApp(ctx).run()


if __name__ == "__main__":
    main()

from typing import Dict, Literal, Tuple, override

from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal
from textual.screen import ModalScreen
from textual.widgets import Button, Label, Static

from utils.messages import QuitRequestedMessage

Tone = Literal["default", "positive", "warning", "error"]
Variant = Literal["primary", "default", "success", "warning", "error"]


class DialogModal(ModalScreen[bool]):
    """
    Confirmation box. Dismisses with True on confirm, False on cancel or escape.
    """

    BINDINGS = [Binding("escape", "cancel", "Cancel", show=False)]

    # tone -> (confirm variant, cancel variant)
    VARIANT_MAP: Dict[str, Tuple[Variant, Variant]] = {
        "default": ("primary", "default"),
        "positive": ("success", "default"),
        "warning": ("warning", "default"),
        "error": ("error", "primary"),
    }

    def __init__(
        self,
        caption: str,
        confirm_text: str = "OK",
        cancel_text: str = "",
        tone: Tone = "default",
        detail: str = "",
    ):
        super().__init__()
        self.caption = caption
        self.confirm_text = confirm_text
        self.cancel_text = cancel_text
        self.tone = tone
        self.detail = detail

    def compose(self) -> ComposeResult:
        confirm_variant, cancel_variant = self.VARIANT_MAP[self.tone]
        with Container(id="div-dialog"):
            yield Label(self.caption, id="caption")
            if self.detail:
                yield Static(self.detail, id="dialog-detail")
            with Horizontal(id="dialog-buttons"):
                if self.cancel_text:
                    yield Button(self.cancel_text, variant=cancel_variant, id="btn-cancel")
                yield Button(self.confirm_text, variant=confirm_variant, id="btn-confirm")

    def on_mount(self) -> None:
        # destructive prompts default to the safe choice
        if self.cancel_text and self.tone == "error":
            self.query_one("#btn-cancel").focus()
        else:
            self.query_one("#btn-confirm").focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "btn-confirm")

    def action_cancel(self) -> None:
        self.dismiss(False)


class QuitDialogModal(DialogModal):
    def __init__(self):
        super().__init__("Are you sure you want to quit?", "Yes", "No", "error")

    @override
    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "btn-confirm":
            self.post_message(QuitRequestedMessage())
        super().on_button_pressed(event)

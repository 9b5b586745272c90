"""
Full-screen chat UI built on a prompt_toolkit Application.

One loop owns the terminal. It merges key and mouse input (handled by
prompt_toolkit), transcript-changed notifications from the session
controller and a periodic spinner tick, and redraws at most once per
iteration. Drawing reads a snapshot of the transcript, never the live one.
"""

import asyncio
from typing import List, Optional

from loguru import logger
from prompt_toolkit import Application
from prompt_toolkit.filters import Condition
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.keys import Keys
from prompt_toolkit.layout.containers import ConditionalContainer, HSplit, Window
from prompt_toolkit.layout.controls import FormattedTextControl, UIContent, UIControl
from prompt_toolkit.layout.layout import Layout
from prompt_toolkit.mouse_events import MouseEvent, MouseEventType
from prompt_toolkit.styles import Style
from prompt_toolkit.utils import get_cwidth

from agnt.core.errors import SessionActiveError
from agnt.core.render import (
    Line,
    help_lines,
    input_lines,
    input_title,
    suggestion_lines,
    title_text,
    transcript_lines,
)
from agnt.core.session import SessionController
from agnt.core.ui_state import PAGE_SCROLL, TICK_INTERVAL, WHEEL_SCROLL, UIState, parse_command

MAX_INPUT_HEIGHT = 8

# Theme colors
border_color = "#555555"
accent_color = "#cc66cc"
dim_color = "#666666"

STYLE = Style.from_dict({
    "title": "bold",
    "frame": "#666666",
    "user-header": "ansicyan bold",
    "assistant-header": "ansiyellow bold",
    "text": "#d0d0d0",
    "code-title": "ansigreen bold",
    "code": "ansiblue",
    "code-raw": "#888888 italic",
    "output-title": "ansigreen bold",
    "output-error": "ansired bold",
    "output": "#ffffff",
    "stderr": "ansired",
    "files-title": "ansicyan bold",
    "file": "ansiblue",
    "error": "ansired",
    "cancelled": "#888888 italic",
    "spinner": "ansiyellow bold",
    "status": "#888888 italic",
    "border": f"fg:{border_color}",
    "border-code": "ansimagenta",
    "border-waiting": "#444444",
    "border-selection": "ansiyellow",
    "prompt": "#00ffff",
    "input": "#ffffff",
    "cursor": "reverse",
    "notice": "ansiyellow",
    "command-selected": f"fg:{accent_color}",
    "command-normal": f"fg:{dim_color}",
    "help-title": "ansiblue bold",
    "help-section": "ansiblue bold",
    "help-key": "ansimagenta",
    "help-text": "",
})


class TranscriptControl(UIControl):
    """Draws the visible slice of the transcript and handles wheel scrolling."""

    def __init__(self, chat: "ChatApp"):
        self.chat = chat

    def create_content(self, width: int, height: int) -> UIContent:
        lines = self.chat.visible_transcript(width, height)
        return UIContent(get_line=lambda i: lines[i], line_count=len(lines), show_cursor=False)

    def mouse_handler(self, mouse_event: MouseEvent):
        if mouse_event.event_type == MouseEventType.SCROLL_UP:
            self.chat.state.scroll_up(WHEEL_SCROLL)
            return None
        if mouse_event.event_type == MouseEventType.SCROLL_DOWN:
            self.chat.state.scroll_down(WHEEL_SCROLL)
            return None
        return NotImplemented

    def is_focusable(self) -> bool:
        return False


class ChatApp:
    """
    Interactive chat screen.

    Args:
        controller: Session controller that owns the transcript
    """

    def __init__(self, controller: SessionController):
        self.controller = controller
        self.state = UIState(code_execution=controller.config.code_execution)
        self.app = self._create_application()

    # --- Drawing ---

    def visible_transcript(self, width: int, height: int) -> List[Line]:
        if self.state.show_help:
            return help_lines()[:height]
        turns = self.controller.transcript.snapshot()
        lines = transcript_lines(turns, width, spinner=self.state.spinner, status=self.controller.status)
        offset = self.state.update_scroll_bounds(len(lines), height)
        return lines[offset:offset + height]

    def _width(self) -> int:
        return self.app.output.get_size().columns

    def _border(self, title: str, style: str) -> Line:
        width = self._width()
        label = f"─ {title} "
        fill = max(0, width - get_cwidth(label))
        return [(style, label + "─" * fill)]

    def _title(self):
        return self._border(title_text(self.state, self.controller.container), "class:title")

    def _input_border(self):
        title, style = input_title(self.state, self.controller.is_active())
        return self._border(title, style)

    def _input_lines(self) -> List[Line]:
        return input_lines(self.state.input, self._width())

    def _input_text(self):
        fragments = []
        lines = self._input_lines()
        for idx, line in enumerate(lines):
            fragments.extend(line)
            if idx < len(lines) - 1:
                fragments.append(("", "\n"))
        if not self.state.selection_mode:
            fragments.append(("class:cursor", " "))
        return fragments

    def _input_height(self) -> int:
        return min(MAX_INPUT_HEIGHT, max(1, len(self._input_lines())))

    def _bottom_text(self):
        if self.state.notice:
            return [("class:notice", f"  {self.state.notice}")]
        return [("class:border", "─" * self._width())]

    def _suggestion_text(self):
        fragments = []
        lines = suggestion_lines(self.state.suggestions, self.state.selected_suggestion)
        for idx, line in enumerate(lines):
            fragments.extend(line)
            if idx < len(lines) - 1:
                fragments.append(("", "\n"))
        return fragments

    # --- Layout & keys ---

    def _create_application(self) -> Application:
        state = self.state
        normal = Condition(lambda: not state.selection_mode)
        suggesting = Condition(lambda: state.show_suggestions)

        body = HSplit([
            Window(content=FormattedTextControl(self._title), height=1, always_hide_cursor=True),
            Window(content=TranscriptControl(self), wrap_lines=False, always_hide_cursor=True),
            Window(content=FormattedTextControl(self._input_border), height=1, always_hide_cursor=True),
            Window(
                content=FormattedTextControl(self._input_text, focusable=True),
                height=self._input_height,
                dont_extend_height=True,
                always_hide_cursor=True,
            ),
            Window(content=FormattedTextControl(self._bottom_text), height=1, always_hide_cursor=True),
            ConditionalContainer(
                content=Window(
                    content=FormattedTextControl(self._suggestion_text),
                    height=lambda: len(state.suggestions),
                    always_hide_cursor=True,
                ),
                filter=suggesting,
            ),
        ])

        kb = KeyBindings()

        @kb.add("c-c")
        def _(event):
            """Quit."""
            event.app.exit()

        @kb.add("c-s")
        def _(event):
            """Toggle selection mode; mouse capture follows it."""
            state.toggle_selection_mode()
            logger.debug(f"Selection mode: {state.selection_mode}")

        @kb.add("escape", filter=normal)
        def _(event):
            """Close help or suggestions, otherwise cancel the stream."""
            if state.show_help:
                state.toggle_help()
            elif state.show_suggestions:
                state.cancel_suggestions()
            elif self.controller.is_active():
                self.controller.cancel()

        @kb.add("escape", "enter", filter=normal)
        def _(event):
            """Insert newline."""
            state.newline()

        @kb.add("enter", filter=normal)
        def _(event):
            """Submit input or run the selected command."""
            if state.show_suggestions:
                state.complete_suggestion()
            self.submit()

        @kb.add("tab", filter=normal & suggesting)
        def _(event):
            state.complete_suggestion()

        @kb.add("up", filter=normal & suggesting)
        def _(event):
            state.prev_suggestion()

        @kb.add("down", filter=normal & suggesting)
        def _(event):
            state.next_suggestion()

        @kb.add("c-x", filter=normal)
        def _(event):
            """Toggle code execution for the next request."""
            state.toggle_code_execution()

        @kb.add("pageup", filter=normal)
        def _(event):
            state.scroll_up(PAGE_SCROLL)

        @kb.add("pagedown", filter=normal)
        def _(event):
            state.scroll_down(PAGE_SCROLL)

        @kb.add("f1", filter=normal)
        def _(event):
            state.toggle_help()

        @kb.add("backspace", filter=normal)
        def _(event):
            state.backspace()

        @kb.add(Keys.BracketedPaste, filter=normal)
        def _(event):
            state.insert(event.data)

        @kb.add(Keys.Any, filter=normal)
        def _(event):
            # Printable characters only; unbound control keys are ignored
            if event.data and event.data.isprintable():
                state.insert(event.data)

        app = Application(
            layout=Layout(body),
            key_bindings=kb,
            style=STYLE,
            full_screen=True,
            mouse_support=normal,
            refresh_interval=None,
        )
        # Esc must not wait long to be told apart from Alt+<key>
        app.ttimeoutlen = 0.05
        app.timeoutlen = 0.3
        return app

    # --- Actions ---

    def submit(self) -> None:
        """Handle Enter: run a slash command or start a new session."""
        state = self.state
        text = state.input
        if not text.strip():
            return

        command = parse_command(text)
        if command == "help":
            state.take_input()
            state.toggle_help()
            return
        if command == "clear":
            try:
                self.controller.clear()
            except SessionActiveError:
                state.notice = "Cannot clear while a response is streaming (Esc to cancel)"
                return
            state.take_input()
            state.follow()
            logger.info("Conversation cleared")
            return

        if self.controller.is_active():
            return
        state.take_input()
        state.follow()
        self.controller.start(text, tool_enabled=state.code_execution)

    async def _pump(self) -> None:
        """Merge change notifications and spinner ticks into redraws."""
        while True:
            changed = await self.controller.signal.wait(TICK_INTERVAL)
            ticked = self.controller.is_active() and self.state.tick()
            if changed or ticked:
                self.app.invalidate()

    async def run(self) -> None:
        pump = asyncio.ensure_future(self._pump())
        try:
            await self.app.run_async()
        finally:
            pump.cancel()
            self.controller.cancel()
            await self.controller.client.aclose()
            logger.info("UI closed")


async def run_tui(controller: SessionController, initial_message: Optional[str] = None) -> None:
    """Run the chat screen until the user quits."""
    chat = ChatApp(controller)
    if initial_message:
        chat.state.insert(initial_message)
        chat.submit()
    await chat.run()

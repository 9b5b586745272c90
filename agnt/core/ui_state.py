"""
Local UI state for the chat screen.

Everything here is owned by the UI loop and mutated only by key handling
and the periodic tick. The transcript itself lives in the session
controller; this module never touches it.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

# Braille "dots" frames
SPINNER_FRAMES = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]
SPINNER_INTERVAL = 0.3
TICK_INTERVAL = 0.1

PAGE_SCROLL = 10
WHEEL_SCROLL = 3

# Slash command definitions
COMMANDS = [
    {"name": "/clear", "meta": "", "description": "Clear the conversation history"},
    {"name": "/help", "meta": "", "description": "Show all keyboard shortcuts and commands"},
]


@dataclass
class UIState:
    """Scroll offset, input buffer and mode flags."""

    input: str = ""
    scroll_position: int = 0
    auto_scroll: bool = True
    total_lines: int = 0
    selection_mode: bool = False
    code_execution: bool = False
    show_help: bool = False
    notice: Optional[str] = None

    spinner_frame: int = 0
    last_spinner_update: float = field(default_factory=time.monotonic)

    suggestions: List[Dict[str, str]] = field(default_factory=list)
    selected_suggestion: int = 0

    # --- Input buffer ---

    def insert(self, text: str) -> None:
        self.input += text.replace("\r\n", "\n").replace("\r", "\n")
        self.notice = None
        self._update_suggestions()

    def newline(self) -> None:
        self.insert("\n")

    def backspace(self) -> None:
        self.input = self.input[:-1]
        self._update_suggestions()

    def take_input(self) -> str:
        """Return the buffer contents and clear it."""
        text, self.input = self.input, ""
        self._update_suggestions()
        return text

    # --- Scrolling ---

    def scroll_up(self, amount: int) -> None:
        self.scroll_position = max(0, self.scroll_position - amount)
        self.auto_scroll = False

    def scroll_down(self, amount: int) -> None:
        # Clamped by the next update_scroll_bounds(); reaching the bottom
        # turns auto-scroll back on there.
        self.scroll_position += amount
        self.auto_scroll = False

    def follow(self) -> None:
        """Jump to the bottom and keep following new content."""
        self.auto_scroll = True

    def update_scroll_bounds(self, total_lines: int, visible_lines: int) -> int:
        """
        Clamp the scroll offset to the rendered content.

        Args:
            total_lines: Number of wrapped transcript lines
            visible_lines: Height of the transcript area

        Returns:
            The offset of the first visible line
        """
        self.total_lines = total_lines
        max_scroll = max(0, total_lines - visible_lines)
        if self.auto_scroll:
            self.scroll_position = max_scroll
        self.scroll_position = min(self.scroll_position, max_scroll)
        if self.scroll_position == max_scroll:
            self.auto_scroll = True
        return self.scroll_position

    # --- Modes ---

    def toggle_selection_mode(self) -> None:
        self.selection_mode = not self.selection_mode

    def toggle_code_execution(self) -> None:
        self.code_execution = not self.code_execution

    def toggle_help(self) -> None:
        self.show_help = not self.show_help

    # --- Spinner ---

    def tick(self, now: Optional[float] = None) -> bool:
        """
        Advance the spinner if its frame interval has elapsed.

        Returns:
            True if the frame changed
        """
        now = time.monotonic() if now is None else now
        if now - self.last_spinner_update < SPINNER_INTERVAL:
            return False
        self.spinner_frame = (self.spinner_frame + 1) % len(SPINNER_FRAMES)
        self.last_spinner_update = now
        return True

    @property
    def spinner(self) -> str:
        return SPINNER_FRAMES[self.spinner_frame]

    # --- Slash commands ---

    @property
    def show_suggestions(self) -> bool:
        return bool(self.suggestions)

    def _update_suggestions(self) -> None:
        text = self.input
        if text.startswith("/") and "\n" not in text and " " not in text:
            query = text[1:].lower()
            self.suggestions = [cmd for cmd in COMMANDS if cmd["name"][1:].startswith(query)]
        else:
            self.suggestions = []
        if self.selected_suggestion >= len(self.suggestions):
            self.selected_suggestion = 0

    def next_suggestion(self) -> None:
        if self.suggestions:
            self.selected_suggestion = (self.selected_suggestion + 1) % len(self.suggestions)

    def prev_suggestion(self) -> None:
        if self.suggestions:
            self.selected_suggestion = (self.selected_suggestion - 1) % len(self.suggestions)

    def complete_suggestion(self) -> bool:
        """Replace the input with the selected command. True if there was one."""
        if not self.suggestions:
            return False
        self.input = self.suggestions[self.selected_suggestion]["name"]
        self._update_suggestions()
        return True

    def cancel_suggestions(self) -> None:
        self.suggestions = []
        self.selected_suggestion = 0


def parse_command(text: str) -> Optional[str]:
    """Name of the slash command in ``text`` (without the slash), or None."""
    stripped = text.strip()
    if not stripped.startswith("/"):
        return None
    name = stripped[1:].split(maxsplit=1)[0].lower() if len(stripped) > 1 else ""
    known = {cmd["name"][1:] for cmd in COMMANDS}
    return name if name in known else None

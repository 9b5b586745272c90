"""
Render sink: turns a transcript snapshot plus UI state into wrapped,
styled lines for prompt_toolkit.

Pure functions only. Each line is a list of ``(style, text)`` fragments
already wrapped to the target width, so the caller can count lines for
scrolling and slice the visible window directly.
"""

from typing import Dict, List, Optional, Tuple

from prompt_toolkit.utils import get_cwidth

from agnt.core.transcript import (
    Role,
    TextBlock,
    ToolInvocationBlock,
    ToolResultBlock,
    Turn,
    TurnOutcome,
)
from agnt.core.ui_state import UIState

Fragment = Tuple[str, str]
Line = List[Fragment]

INDENT: Line = [("", "  ")]
FRAME: Line = INDENT + [("class:frame", "│ ")]

HELP_SECTIONS = [
    ("Message Input", [
        ("Enter", "Send message"),
        ("Alt+Enter", "Insert newline"),
        ("Esc", "Cancel streaming response"),
    ]),
    ("Navigation", [
        ("PageUp/PageDown", "Scroll 10 lines"),
        ("Mouse wheel", "Scroll 3 lines"),
    ]),
    ("Modes", [
        ("Ctrl+S", "Toggle selection mode (native text selection)"),
        ("Ctrl+X", "Toggle code execution"),
        ("F1", "Toggle this help"),
        ("Ctrl+C", "Exit"),
    ]),
    ("Commands", [
        ("/clear", "Clear the conversation history"),
        ("/help", "Toggle this help"),
    ]),
]


def wrap_line(text: str, width: int) -> List[str]:
    """Split one logical line into rows of at most ``width`` cells."""
    text = text.replace("\t", "    ")
    if width <= 0 or not text:
        return [text]
    rows: List[str] = []
    current = ""
    current_width = 0
    for char in text:
        char_width = get_cwidth(char)
        if current and current_width + char_width > width:
            rows.append(current)
            current, current_width = "", 0
        current += char
        current_width += char_width
    rows.append(current)
    return rows


def line_width(line: Line) -> int:
    return sum(get_cwidth(text) for _, text in line)


def _emit(lines: List[Line], prefix: Line, style: str, text: str, width: int) -> None:
    """Append ``text`` (possibly multi-line) wrapped under ``prefix``."""
    available = max(1, width - line_width(prefix))
    for logical in text.split("\n"):
        for row in wrap_line(logical, available):
            lines.append(list(prefix) + [(style, row)])


def _text_lines(lines: List[Line], text: str, width: int) -> None:
    # A trailing newline would only add an empty row
    _emit(lines, INDENT, "class:text", text.rstrip("\n"), width)


def _invocation_lines(lines: List[Line], block: ToolInvocationBlock, width: int) -> None:
    lines.append(INDENT + [("class:frame", "┌─ "), ("class:code-title", "Python Code")])
    code = block.code
    if code is None:
        # Still streaming, or arguments that never parsed: show them raw
        if block.buffer:
            _emit(lines, FRAME, "class:code-raw", block.buffer, width)
    else:
        for number, code_line in enumerate(code.split("\n"), start=1):
            prefix = FRAME + [("class:frame", f"{number:3} ")]
            _emit(lines, prefix, "class:code", code_line, width)
    if block.error:
        _emit(lines, INDENT, "class:error", f"⚠ Tool argument error: {block.error}", width)
    lines.append(INDENT + [("class:frame", "└─")])


def _result_lines(lines: List[Line], block: ToolResultBlock, width: int) -> None:
    if block.error and not block.text and not block.stderr and not block.files:
        _emit(lines, INDENT, "class:error", f"⚠ Code Execution Error: {block.error}", width)
        return

    failed = block.return_code not in (None, 0)
    title = "Output (Error)" if failed else "Output"
    lines.append(INDENT + [("class:frame", "┌─ "), ("class:output-error" if failed else "class:output-title", title)])
    if block.text:
        _emit(lines, FRAME, "class:output", block.text.rstrip("\n"), width)
    if block.stderr:
        _emit(lines, FRAME, "class:stderr", block.stderr.rstrip("\n"), width)
    if failed:
        _emit(lines, FRAME, "class:stderr", f"Exit code: {block.return_code}", width)
    if block.error:
        _emit(lines, FRAME, "class:error", block.error, width)

    if block.files:
        lines.append(FRAME + [("class:files-title", "Created files:")])
        for artifact in block.files:
            bullet = FRAME + [("class:frame", "  • ")]
            if artifact.error:
                name = artifact.filename or artifact.file_id
                _emit(lines, bullet, "class:error", f"{name}: {artifact.error}", width)
            else:
                _emit(lines, bullet, "class:file", f"{artifact.filename} → {artifact.path}", width)
    lines.append(INDENT + [("class:frame", "└─")])


def _has_content(turn: Turn) -> bool:
    for block in turn.blocks:
        if not isinstance(block, TextBlock) or block.text:
            return True
    return False


def transcript_lines(
    turns: List[Turn],
    width: int,
    spinner: str = "",
    status: Optional[str] = None,
) -> List[Line]:
    """
    Render a transcript snapshot.

    Args:
        turns: Snapshot of the conversation
        width: Target width in terminal cells
        spinner: Current spinner frame, shown while an open turn is empty
        status: Connection status shown next to the spinner

    Returns:
        Wrapped lines, each a list of (style, text) fragments
    """
    lines: List[Line] = []
    for turn in turns:
        if turn.role is Role.USER:
            lines.append([("class:user-header", "▶ You")])
        else:
            lines.append([("class:assistant-header", "◆ Claude")])

        if turn.is_open and not _has_content(turn):
            lines.append(INDENT + [("class:spinner", spinner), ("class:status", f" {status or 'Thinking...'}")])

        for block in turn.blocks:
            if isinstance(block, TextBlock):
                if block.text:
                    _text_lines(lines, block.text, width)
            elif isinstance(block, ToolInvocationBlock):
                _invocation_lines(lines, block, width)
            elif isinstance(block, ToolResultBlock):
                _result_lines(lines, block, width)

        if turn.is_open and _has_content(turn) and status:
            lines.append(INDENT + [("class:spinner", spinner), ("class:status", f" {status}")])
        if turn.outcome is TurnOutcome.FAILED:
            _emit(lines, INDENT, "class:error", f"❌ Error: {turn.failure}", width)
        elif turn.outcome is TurnOutcome.CANCELLED:
            lines.append(INDENT + [("class:cancelled", "⏹ Cancelled")])
        lines.append([])

    while lines and not lines[-1]:
        lines.pop()
    return lines


def title_text(state: UIState, container: Optional[tuple] = None) -> str:
    """Header line of the transcript area."""
    if state.selection_mode:
        return "agnt (SELECTION MODE - Press Ctrl+S to exit)"
    parts = ["agnt"]
    if state.code_execution:
        parts.append("(CODE EXECUTION - Ctrl+X to toggle)")
    if container:
        parts.append(f"[Container: {container[0][:8]}]")
    if not state.auto_scroll:
        parts.append(f"(Line {state.scroll_position + 1}/{state.total_lines})")
    return " ".join(parts)


def input_title(state: UIState, streaming: bool) -> Tuple[str, str]:
    """(title, style) for the input box border."""
    if state.selection_mode:
        return "Input (SELECTION MODE - text can be selected)", "class:border-selection"
    if streaming:
        tools = " with code execution" if state.code_execution else ""
        return f"Input (waiting for response{tools}... Esc: cancel)", "class:border-waiting"
    if state.code_execution:
        return "Input (F1: help, Ctrl+C: exit)", "class:border-code"
    return "Input (F1: help, Ctrl+C: exit)", "class:border"


def input_lines(text: str, width: int) -> List[Line]:
    """Input buffer wrapped under a ``> `` prompt."""
    lines: List[Line] = []
    for number, logical in enumerate(text.split("\n")):
        prompt = "> " if number == 0 else "  "
        for row_number, row in enumerate(wrap_line(logical, max(1, width - 2))):
            lead = prompt if row_number == 0 else "  "
            lines.append([("class:prompt", lead), ("class:input", row)])
    return lines


def suggestion_lines(suggestions: List[Dict[str, str]], selected: int) -> List[Line]:
    if not suggestions:
        return []
    name_width = max(len(cmd["name"]) for cmd in suggestions) + 2
    lines: List[Line] = []
    for idx, cmd in enumerate(suggestions):
        style = "class:command-selected" if idx == selected else "class:command-normal"
        lines.append([(style, f"  {cmd['name'].ljust(name_width)}"), (style, cmd["description"])])
    return lines


def help_lines() -> List[Line]:
    lines: List[Line] = [[("class:help-title", "agnt Help")], []]
    for section, entries in HELP_SECTIONS:
        lines.append([("class:help-section", section)])
        for key, description in entries:
            lines.append([("class:help-key", f"  {key:<16}"), ("class:help-text", description)])
        lines.append([])
    lines.append([("class:help-text", "Press F1 or Esc to close")])
    return lines

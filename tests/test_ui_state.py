"""
Tests for local UI state: scrolling, input editing, modes and slash commands.
"""

import pytest

from agnt.core.ui_state import SPINNER_FRAMES, SPINNER_INTERVAL, UIState, parse_command


@pytest.fixture
def state():
    return UIState()


class TestScrolling:
    def test_follows_bottom(self, state):
        assert state.update_scroll_bounds(total_lines=50, visible_lines=20) == 30
        assert state.update_scroll_bounds(total_lines=60, visible_lines=20) == 40
        assert state.auto_scroll

    def test_scroll_up_stops_following(self, state):
        state.update_scroll_bounds(50, 20)
        state.scroll_up(10)
        assert not state.auto_scroll
        assert state.update_scroll_bounds(80, 20) == 20

    def test_scroll_up_clamps_at_top(self, state):
        state.update_scroll_bounds(50, 20)
        state.scroll_up(100)
        assert state.scroll_position == 0

    def test_returning_to_bottom_resumes_following(self, state):
        state.update_scroll_bounds(50, 20)
        state.scroll_up(3)
        state.update_scroll_bounds(50, 20)
        state.scroll_down(10)
        assert state.update_scroll_bounds(50, 20) == 30
        assert state.auto_scroll

    def test_short_content(self, state):
        state.scroll_down(5)
        assert state.update_scroll_bounds(5, 20) == 0
        assert state.auto_scroll


class TestInput:
    def test_insert_and_take(self, state):
        state.insert("hello")
        state.newline()
        state.insert("world")
        state.backspace()
        assert state.take_input() == "hello\nworl"
        assert state.input == ""

    def test_paste_normalizes_newlines(self, state):
        state.insert("a\r\nb\rc")
        assert state.input == "a\nb\nc"

    def test_modes_toggle(self, state):
        state.toggle_selection_mode()
        state.toggle_code_execution()
        state.toggle_help()
        assert state.selection_mode and state.code_execution and state.show_help
        state.toggle_selection_mode()
        assert not state.selection_mode


class TestSpinner:
    def test_advances_on_interval(self):
        state = UIState(last_spinner_update=0.0)
        assert state.tick(SPINNER_INTERVAL / 3) is False
        assert state.spinner == SPINNER_FRAMES[0]
        assert state.tick(SPINNER_INTERVAL * 2) is True
        assert state.spinner == SPINNER_FRAMES[1]

    def test_wraps_around(self):
        state = UIState(last_spinner_update=0.0)
        for step in range(len(SPINNER_FRAMES)):
            state.tick(float(step + 1))
        assert state.spinner == SPINNER_FRAMES[0]


class TestSlashCommands:
    def test_suggestions_follow_input(self, state):
        state.insert("/")
        assert [c["name"] for c in state.suggestions] == ["/clear", "/help"]
        state.insert("h")
        assert [c["name"] for c in state.suggestions] == ["/help"]
        state.insert("x")
        assert not state.show_suggestions

    def test_cycle_and_complete(self, state):
        state.insert("/")
        state.next_suggestion()
        assert state.selected_suggestion == 1
        state.next_suggestion()
        assert state.selected_suggestion == 0
        state.prev_suggestion()
        assert state.complete_suggestion() is True
        assert state.input == "/help"

    def test_no_suggestions_for_plain_text(self, state):
        state.insert("hello /clear")
        assert not state.show_suggestions
        assert state.complete_suggestion() is False

    @pytest.mark.parametrize("text, expected", [
        ("/clear", "clear"),
        ("  /HELP  ", "help"),
        ("/clear now", "clear"),
        ("/unknown", None),
        ("/", None),
        ("clear", None),
    ])
    def test_parse_command(self, text, expected):
        assert parse_command(text) == expected

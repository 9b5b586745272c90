"""
Tests for the transcript model.
"""

import pytest

from agnt.core.errors import ProtocolError, ToolArgumentError
from agnt.core.transcript import (
    BlockState,
    Role,
    TextBlock,
    ToolInvocationBlock,
    Transcript,
    TurnOutcome,
    parse_arguments,
)


@pytest.fixture
def transcript():
    return Transcript()


class TestTurns:
    def test_one_open_assistant_turn(self, transcript):
        transcript.add_user_turn("hi")
        transcript.open_assistant_turn(session_id=1)
        with pytest.raises(ProtocolError):
            transcript.open_assistant_turn(session_id=2)

    def test_close_freezes_open_blocks(self, transcript):
        turn = transcript.open_assistant_turn(session_id=1)
        turn.blocks.append(TextBlock(text="partial"))
        invocation = ToolInvocationBlock(tool_id="toolu_1", buffer='{"code": "pri')
        turn.blocks.append(invocation)

        turn.close(TurnOutcome.CANCELLED, "Cancelled by user")

        assert turn.outcome is TurnOutcome.CANCELLED
        assert turn.text == "partial"
        assert all(b.state is BlockState.CLOSED for b in turn.blocks)
        assert invocation.error is not None
        with pytest.raises(ProtocolError):
            turn.close(TurnOutcome.COMPLETED)

    def test_snapshot_is_independent(self, transcript):
        turn = transcript.open_assistant_turn(session_id=1)
        turn.blocks.append(TextBlock(text="a"))
        snapshot = transcript.snapshot()
        turn.blocks[0].append("b")

        assert snapshot[0].blocks[0].text == "a"
        assert transcript.turns[0].blocks[0].text == "ab"

    def test_clear(self, transcript):
        transcript.add_user_turn("hi")
        transcript.clear()
        assert len(transcript) == 0


class TestInvocationArguments:
    @pytest.mark.parametrize("buffer", ["", "   ", "[1, 2]", '{"code": '])
    def test_unusable_arguments(self, buffer):
        block = ToolInvocationBlock(tool_id="toolu_1", buffer=buffer)
        block.close()
        assert block.error
        assert block.arguments is None
        assert not block.usable

    def test_parse_arguments_raises(self):
        with pytest.raises(ToolArgumentError):
            parse_arguments("[1, 2]")
        assert parse_arguments('{"code": "x"}') == {"code": "x"}

    def test_code_must_be_a_string(self):
        block = ToolInvocationBlock(tool_id="toolu_1", buffer='{"code": 4}')
        block.close()
        assert block.usable
        assert block.code is None

    def test_resolve_requires_closed(self):
        block = ToolInvocationBlock(tool_id="toolu_1")
        with pytest.raises(ProtocolError):
            block.resolve()


class TestHistory:
    def test_text_only_and_alternating(self, transcript):
        transcript.add_user_turn("first")
        failed = transcript.open_assistant_turn(session_id=1)
        failed.close(TurnOutcome.FAILED, "Rate limit exceeded")
        transcript.add_user_turn("second")
        answer = transcript.open_assistant_turn(session_id=2)
        answer.blocks.append(TextBlock(text="Let me run "))
        answer.blocks.append(ToolInvocationBlock(tool_id="toolu_1", buffer='{"code": "1"}'))
        answer.blocks.append(TextBlock(text="that."))
        answer.close(TurnOutcome.COMPLETED)

        assert transcript.history_messages() == [
            {"role": "user", "content": "first\n\nsecond"},
            {"role": "assistant", "content": "Let me run that."},
        ]

    def test_whitespace_only_turns_skipped(self, transcript):
        transcript.add_user_turn("   ")
        transcript.add_user_turn("hello")
        assert transcript.history_messages() == [{"role": "user", "content": "hello"}]
        assert transcript.turns[1].role is Role.USER

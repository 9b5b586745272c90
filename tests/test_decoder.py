"""
Tests for the server-sent-events decoder.
"""

import asyncio

from agnt.core.decoder import (
    BlockDelta,
    BlockStart,
    BlockStop,
    DecodeError,
    EventDecoder,
    MessageDelta,
    MessageStart,
    MessageStop,
    StreamError,
    aiter_events,
    iter_events,
)
from agnt.llm.mock_client import message_end, message_start, sse_record, text_block, tool_result_block, tool_use_block


class TestRecords:
    def test_text_block_sequence(self):
        lines = message_start() + text_block(0, ["Hel", "lo"]) + message_end(output_tokens=3)
        events = list(iter_events(lines))

        assert events == [
            MessageStart(model="mock-llm"),
            BlockStart(index=0, kind="text"),
            BlockDelta(index=0, kind="text", fragment="Hel"),
            BlockDelta(index=0, kind="text", fragment="lo"),
            BlockStop(index=0),
            MessageDelta(stop_reason="end_turn", output_tokens=3),
            MessageStop(),
        ]

    def test_container_info(self):
        events = list(iter_events(message_start(container_id="container_abc") + message_end()))
        assert events[0].container_id == "container_abc"
        assert events[0].container_expires_at == "2099-01-01T00:00:00Z"

    def test_server_tool_blocks(self):
        lines = tool_use_block(1, "srvtoolu_1", ['{"co', 'de": "1"}']) + tool_result_block(2, "srvtoolu_1", stdout="1\n")
        events = list(iter_events(lines + message_end()))

        assert events[0] == BlockStart(index=1, kind="tool_use", tool_id="srvtoolu_1", name="code_execution")
        assert events[1] == BlockDelta(index=1, kind="arguments", fragment='{"co')
        result = events[4]
        assert result.kind == "tool_result"
        assert result.tool_id == "srvtoolu_1"
        assert result.payload["stdout"] == "1\n"

    def test_unknown_kinds_pass_through(self):
        lines = sse_record("content_block_start", {"index": 0, "content_block": {"type": "thinking"}})
        lines += sse_record("content_block_delta", {"index": 0, "delta": {"type": "signature_delta"}})
        events = list(iter_events(lines + message_end()))
        assert events[0] == BlockStart(index=0, kind="thinking")
        assert events[1] == BlockDelta(index=0, kind="signature_delta")


class TestKeepalive:
    def test_ping_and_comments_are_dropped(self):
        lines = [": keep-alive", ""] + sse_record("ping", {}) + text_block(0, ["x"]) + message_end()
        events = list(iter_events(lines))
        assert not any(isinstance(e, DecodeError) for e in events)
        assert events[0] == BlockStart(index=0, kind="text")

    def test_blank_lines_between_records(self):
        decoder = EventDecoder()
        assert decoder.feed_line("") is None
        assert decoder.feed_line("") is None

    def test_unknown_event_type_skipped(self):
        lines = sse_record("brand_new_event", {"x": 1}) + message_end()
        events = list(iter_events(lines))
        assert isinstance(events[0], MessageDelta)


class TestMalformed:
    def test_invalid_json_becomes_decode_error(self):
        lines = ["event: content_block_delta", "data: {not json", ""] + message_end()
        events = list(iter_events(lines))

        assert isinstance(events[0], DecodeError)
        assert events[0].raw == "{not json"
        # The sequence continues; the caller decides whether to abort
        assert isinstance(events[-1], MessageStop)

    def test_missing_fields_become_decode_error(self):
        lines = sse_record("content_block_delta", {"delta": {"type": "text_delta", "text": "x"}})
        events = list(iter_events(lines + message_end()))
        assert isinstance(events[0], DecodeError)

    def test_record_without_data(self):
        events = list(iter_events(["event: message_stop", ""]))
        assert isinstance(events[0], DecodeError)

    def test_data_without_space_after_colon(self):
        events = list(iter_events(["event: message_stop", 'data:{"type": "message_stop"}', ""]))
        assert events == [MessageStop()]


class TestTermination:
    def test_stops_after_message_stop(self):
        lines = message_end() + text_block(0, ["ignored"])
        events = list(iter_events(lines))
        assert events[-1] == MessageStop()
        assert len(events) == 2

    def test_error_event_is_terminal(self):
        lines = sse_record("error", {"error": {"type": "overloaded_error", "message": "Overloaded"}})
        events = list(iter_events(lines + text_block(0, ["late"])))
        assert events == [StreamError(message="Overloaded", error_type="overloaded_error")]

    def test_premature_end(self):
        events = list(iter_events(text_block(0, ["partial"])))
        assert isinstance(events[-1], StreamError)
        assert events[-1].error_type == "incomplete"

    def test_trailing_record_without_blank_line(self):
        events = list(iter_events(["event: message_stop", 'data: {"type": "message_stop"}']))
        assert events == [MessageStop()]

    def test_async_source(self):
        async def source():
            for line in text_block(0, ["a", "b"]) + message_end():
                yield line

        async def collect():
            return [event async for event in aiter_events(source())]

        events = asyncio.run(collect())
        assert [e.fragment for e in events if isinstance(e, BlockDelta)] == ["a", "b"]
        assert events[-1] == MessageStop()

"""
Stream event decoder.

Turns the raw line stream of a server-sent-events response into typed
protocol events. A record is an ``event:`` line plus a ``data:`` line with a
JSON payload, terminated by a blank line. Keep-alives (``ping`` events and
``:`` comment lines) are dropped. Malformed records become ``DecodeError``
events instead of breaking the sequence; the caller decides whether to abort.

The sequence always ends with ``MessageStop`` or ``StreamError``; a source
that runs dry before either produces a synthetic ``StreamError``.
"""

import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncIterator, Dict, Iterable, Iterator, List, Optional, Union

from loguru import logger

KEEPALIVE_EVENTS = {"ping"}


@dataclass(frozen=True)
class MessageStart:
    model: Optional[str] = None
    container_id: Optional[str] = None
    container_expires_at: Optional[str] = None


@dataclass(frozen=True)
class BlockStart:
    """
    A content block begins at ``index``.

    ``kind`` is ``text``, ``tool_use``, ``tool_result`` or the raw server
    block type for anything this client does not render.
    """
    index: int
    kind: str
    text: str = ""
    tool_id: str = ""
    name: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BlockDelta:
    """``kind`` is ``text``, ``arguments`` or the raw delta type."""
    index: int
    kind: str
    fragment: str = ""


@dataclass(frozen=True)
class BlockStop:
    index: int


@dataclass(frozen=True)
class MessageDelta:
    stop_reason: Optional[str] = None
    output_tokens: Optional[int] = None


@dataclass(frozen=True)
class MessageStop:
    pass


@dataclass(frozen=True)
class StreamError:
    message: str
    error_type: str = "error"


@dataclass(frozen=True)
class DecodeError:
    message: str
    raw: str = ""


StreamEvent = Union[MessageStart, BlockStart, BlockDelta, BlockStop, MessageDelta, MessageStop, StreamError, DecodeError]

TERMINAL_EVENTS = (MessageStop, StreamError)

_BLOCK_KINDS = {
    "text": "text",
    "server_tool_use": "tool_use",
    "tool_use": "tool_use",
    "code_execution_tool_result": "tool_result",
}

_DELTA_KINDS = {
    "text_delta": "text",
    "input_json_delta": "arguments",
}


def _block_start(payload: Dict[str, Any]) -> BlockStart:
    index = int(payload["index"])
    block = payload["content_block"]
    block_type = block["type"]
    kind = _BLOCK_KINDS.get(block_type, block_type)
    if kind == "text":
        return BlockStart(index=index, kind=kind, text=block.get("text") or "")
    if kind == "tool_use":
        return BlockStart(index=index, kind=kind, tool_id=block["id"], name=block["name"])
    if kind == "tool_result":
        return BlockStart(
            index=index,
            kind=kind,
            tool_id=block.get("tool_use_id", ""),
            payload=block.get("content") or {},
        )
    return BlockStart(index=index, kind=kind)


def _block_delta(payload: Dict[str, Any]) -> BlockDelta:
    index = int(payload["index"])
    delta = payload["delta"]
    delta_type = delta["type"]
    kind = _DELTA_KINDS.get(delta_type, delta_type)
    if kind == "text":
        return BlockDelta(index=index, kind=kind, fragment=delta["text"])
    if kind == "arguments":
        return BlockDelta(index=index, kind=kind, fragment=delta["partial_json"])
    return BlockDelta(index=index, kind=kind)


def _message_start(payload: Dict[str, Any]) -> MessageStart:
    message = payload.get("message") or {}
    container = message.get("container") or {}
    return MessageStart(
        model=message.get("model"),
        container_id=container.get("id"),
        container_expires_at=container.get("expires_at"),
    )


def _message_delta(payload: Dict[str, Any]) -> MessageDelta:
    delta = payload.get("delta") or {}
    usage = payload.get("usage") or {}
    return MessageDelta(stop_reason=delta.get("stop_reason"), output_tokens=usage.get("output_tokens"))


def _stream_error(payload: Dict[str, Any]) -> StreamError:
    error = payload.get("error") or {}
    return StreamError(
        message=error.get("message") or "Server reported an error",
        error_type=error.get("type") or "error",
    )


_BUILDERS = {
    "message_start": _message_start,
    "content_block_start": _block_start,
    "content_block_delta": _block_delta,
    "content_block_stop": lambda p: BlockStop(index=int(p["index"])),
    "message_delta": _message_delta,
    "message_stop": lambda p: MessageStop(),
    "error": _stream_error,
}


class EventDecoder:
    """Incremental record parser. Feed it lines, get events back."""

    def __init__(self):
        self._event_type: Optional[str] = None
        self._data: List[str] = []

    def feed_line(self, line: str) -> Optional[StreamEvent]:
        """
        Consume one line of the stream.

        Returns an event when the line completes a record, otherwise None.
        """
        line = line.rstrip("\r\n")
        if not line:
            return self._flush()
        if line.startswith(":"):
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event_type = value
        elif name == "data":
            self._data.append(value)
        return None

    def finish(self) -> Optional[StreamEvent]:
        """Flush a trailing record that was not followed by a blank line."""
        return self._flush()

    def _flush(self) -> Optional[StreamEvent]:
        event_type, data = self._event_type, "\n".join(self._data)
        self._event_type, self._data = None, []

        if event_type in KEEPALIVE_EVENTS or (event_type is None and not data):
            return None
        if not data:
            return DecodeError(f"record '{event_type}' has no data")

        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            logger.warning(f"Malformed stream record ({e}): {data[:200]}")
            return DecodeError(f"invalid JSON: {e}", raw=data)
        if not isinstance(payload, dict):
            return DecodeError("record payload is not an object", raw=data)

        event_type = event_type or payload.get("type")
        if event_type in KEEPALIVE_EVENTS:
            return None
        builder = _BUILDERS.get(event_type)
        if builder is None:
            logger.debug(f"Skipping unknown stream event type: {event_type}")
            return None
        try:
            return builder(payload)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Stream record '{event_type}' is missing fields ({e!r}): {data[:200]}")
            return DecodeError(f"incomplete '{event_type}' record: {e!r}", raw=data)


def _premature_end() -> StreamError:
    return StreamError(message="Connection closed before the response completed", error_type="incomplete")


def iter_events(lines: Iterable[str]) -> Iterator[StreamEvent]:
    """Decode a synchronous line source."""
    decoder = EventDecoder()
    for line in lines:
        event = decoder.feed_line(line)
        if event is None:
            continue
        yield event
        if isinstance(event, TERMINAL_EVENTS):
            return
    event = decoder.finish()
    if event is not None:
        yield event
        if isinstance(event, TERMINAL_EVENTS):
            return
    yield _premature_end()


async def aiter_events(lines: AsyncIterable[str]) -> AsyncIterator[StreamEvent]:
    """Decode an asynchronous line source, such as ``httpx.Response.aiter_lines()``."""
    decoder = EventDecoder()
    async for line in lines:
        event = decoder.feed_line(line)
        if event is None:
            continue
        yield event
        if isinstance(event, TERMINAL_EVENTS):
            return
    event = decoder.finish()
    if event is not None:
        yield event
        if isinstance(event, TERMINAL_EVENTS):
            return
    yield _premature_end()

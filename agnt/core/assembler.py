"""
Stream assembler: the per-block state machine that builds an assistant turn.

Each server block index moves Absent -> Open -> Closed, never backward.
Indices are keys in an arena rather than list offsets because the server
assigns them and they need not start at zero or be contiguous. An index is
never reused within a turn; a second block-start for a known index is a
protocol error.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from loguru import logger

from agnt.core.decoder import (
    BlockDelta,
    BlockStart,
    BlockStop,
    DecodeError,
    MessageDelta,
    MessageStart,
    MessageStop,
    StreamError,
    StreamEvent,
)
from agnt.core.errors import ProtocolError, StreamDecodeError
from agnt.core.transcript import (
    BlockState,
    TextBlock,
    ToolInvocationBlock,
    ToolResultBlock,
    Turn,
    TurnOutcome,
)

ToolReadyCallback = Callable[[int, ToolInvocationBlock], None]
ServerResultCallback = Callable[[str, Dict[str, Any]], None]


@dataclass
class _Slot:
    kind: str
    state: BlockState = BlockState.OPEN
    # Offset into turn.blocks, or None for blocks that never become
    # transcript content (server-side results, unsupported kinds).
    position: Optional[int] = None


def _call_now(callback: Callable[[], None]) -> None:
    callback()


class StreamAssembler:
    """
    Applies decoded events to one assistant turn.

    Args:
        turn: The open assistant turn to fill
        on_change: Called after every accepted transition
        on_tool_ready: Called with (position, block) once an invocation block
            closes with parseable arguments
        on_server_result: Called with (tool_use_id, payload) when the server
            streams the result of a tool it executed itself
        schedule: Defers a callback to the next scheduling tick; used to
            coalesce bursts of text deltas into one change notification
    """

    def __init__(
        self,
        turn: Turn,
        on_change: Optional[Callable[[], None]] = None,
        on_tool_ready: Optional[ToolReadyCallback] = None,
        on_server_result: Optional[ServerResultCallback] = None,
        schedule: Callable[[Callable[[], None]], Any] = _call_now,
    ):
        self.turn = turn
        self.container_id: Optional[str] = None
        self.container_expires_at: Optional[str] = None
        self._slots: Dict[int, _Slot] = {}
        self._on_change = on_change or (lambda: None)
        self._on_tool_ready = on_tool_ready
        self._on_server_result = on_server_result
        self._schedule = schedule
        self._batch_pending = False

    @property
    def finished(self) -> bool:
        return not self.turn.is_open

    def apply(self, event: StreamEvent) -> bool:
        """
        Apply one event.

        Returns:
            True once the turn has reached a terminal state

        Raises:
            ProtocolError: the event violates the block state machine
            StreamDecodeError: the event is a decode error
        """
        if self.finished:
            raise ProtocolError(f"event after the turn closed: {type(event).__name__}")

        if isinstance(event, BlockDelta):
            self._delta(event)
        elif isinstance(event, BlockStart):
            self._start(event)
        elif isinstance(event, BlockStop):
            self._stop(event)
        elif isinstance(event, MessageStart):
            self.container_id = event.container_id
            self.container_expires_at = event.container_expires_at
        elif isinstance(event, MessageDelta):
            self.turn.stop_reason = event.stop_reason or self.turn.stop_reason
            if event.output_tokens is not None:
                self.turn.output_tokens = event.output_tokens
            self._changed()
        elif isinstance(event, MessageStop):
            self.close(TurnOutcome.COMPLETED)
            return True
        elif isinstance(event, StreamError):
            self.close(TurnOutcome.FAILED, f"{event.error_type}: {event.message}")
            return True
        elif isinstance(event, DecodeError):
            raise StreamDecodeError(event.message, raw=event.raw)
        else:
            raise ProtocolError(f"unknown event {event!r}")
        return False

    def append_result(self, result: ToolResultBlock) -> int:
        """
        Append a tool result at the next position and resolve its invocation.

        Results never travel through the delta state machine; the tool
        coordinator calls this once execution finishes.
        """
        if self.finished:
            raise ProtocolError("tool result for a closed turn")
        position = result.invocation_position
        if not 0 <= position < len(self.turn.blocks):
            raise ProtocolError(f"tool result for unknown block position {position}")
        invocation = self.turn.blocks[position]
        if not isinstance(invocation, ToolInvocationBlock):
            raise ProtocolError(f"block at position {position} is not a tool invocation")
        invocation.resolve()
        self.turn.blocks.append(result)
        self._changed()
        return len(self.turn.blocks) - 1

    def close(self, outcome: TurnOutcome, failure: Optional[str] = None) -> None:
        """Finalize the turn as it stands; partial content is kept."""
        self.turn.close(outcome, failure)
        for slot in self._slots.values():
            slot.state = BlockState.CLOSED
        logger.debug(f"Turn closed: {outcome.value}" + (f" ({failure})" if failure else ""))
        self._changed()

    def _start(self, event: BlockStart) -> None:
        if event.index in self._slots:
            state = self._slots[event.index].state.value
            raise ProtocolError(f"block-start for index {event.index} which is already {state}")

        slot = _Slot(kind=event.kind)
        if event.kind == "text":
            self.turn.blocks.append(TextBlock(text=event.text))
            slot.position = len(self.turn.blocks) - 1
        elif event.kind == "tool_use":
            self.turn.blocks.append(ToolInvocationBlock(tool_id=event.tool_id, name=event.name))
            slot.position = len(self.turn.blocks) - 1
        elif event.kind == "tool_result":
            if self._on_server_result is None:
                raise ProtocolError("server-side tool result without a tool coordinator")
            self._on_server_result(event.tool_id, event.payload)
        else:
            logger.debug(f"Ignoring unsupported block kind '{event.kind}' at index {event.index}")

        self._slots[event.index] = slot
        self._changed()

    def _delta(self, event: BlockDelta) -> None:
        slot = self._open_slot(event.index, "delta")
        block = self.turn.blocks[slot.position] if slot.position is not None else None

        if event.kind == "text":
            if not isinstance(block, TextBlock):
                raise ProtocolError(f"text delta for {slot.kind} block at index {event.index}")
            block.append(event.fragment)
            self._changed(batch=True)
        elif event.kind == "arguments":
            if not isinstance(block, ToolInvocationBlock):
                raise ProtocolError(f"argument delta for {slot.kind} block at index {event.index}")
            block.append(event.fragment)
            self._changed(batch=True)
        else:
            logger.debug(f"Ignoring '{event.kind}' delta at index {event.index}")

    def _stop(self, event: BlockStop) -> None:
        slot = self._open_slot(event.index, "block-stop")
        slot.state = BlockState.CLOSED
        if slot.position is None:
            return

        block = self.turn.blocks[slot.position]
        block.close()
        if isinstance(block, ToolInvocationBlock):
            if block.error:
                logger.warning(f"Tool argument error for {block.tool_id}: {block.error}")
            elif self._on_tool_ready is not None:
                self._on_tool_ready(slot.position, block)
        self._changed()

    def _open_slot(self, index: int, what: str) -> _Slot:
        slot = self._slots.get(index)
        if slot is None:
            raise ProtocolError(f"{what} for absent block index {index}")
        if slot.state is not BlockState.OPEN:
            raise ProtocolError(f"{what} for closed block index {index}")
        return slot

    def _changed(self, batch: bool = False) -> None:
        if not batch:
            self._on_change()
            return
        if self._batch_pending:
            return
        self._batch_pending = True
        self._schedule(self._flush_batch)

    def _flush_batch(self) -> None:
        self._batch_pending = False
        self._on_change()

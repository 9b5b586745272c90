"""
Transcript model: the conversation as ordered turns of content blocks.

Pure data, no I/O. Mutation happens only through the session controller,
which holds ``Transcript.lock`` for every write; readers take a deep-copied
``snapshot()`` under the same lock.
"""

import copy
import json
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from agnt.core.errors import ProtocolError, ToolArgumentError

CODE_EXECUTION_TOOL = "code_execution"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class BlockState(str, Enum):
    """Lifecycle of a content block. Transitions only move forward."""
    OPEN = "open"
    CLOSED = "closed"
    RESOLVED = "resolved"


class TurnOutcome(str, Enum):
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ResultStatus(str, Enum):
    OK = "ok"
    ERROR = "error"


@dataclass
class TextBlock:
    """Accumulated assistant (or user) text, append-only while open."""
    text: str = ""
    state: BlockState = BlockState.OPEN

    kind = "text"

    def append(self, text: str) -> None:
        if self.state is not BlockState.OPEN:
            raise ProtocolError(f"text delta for a {self.state.value} block")
        self.text += text

    def close(self) -> None:
        if self.state is not BlockState.OPEN:
            raise ProtocolError(f"block-stop for a {self.state.value} block")
        self.state = BlockState.CLOSED


def parse_arguments(buffer: str) -> Dict[str, Any]:
    """
    Parse a complete tool-argument buffer.

    Raises:
        ToolArgumentError: the buffer is empty, not JSON, or not an object
    """
    if not buffer.strip():
        raise ToolArgumentError("empty tool arguments")
    try:
        parsed = json.loads(buffer)
    except json.JSONDecodeError as e:
        raise ToolArgumentError(f"invalid tool arguments: {e}")
    if not isinstance(parsed, dict):
        raise ToolArgumentError("tool arguments must be a JSON object")
    return parsed


@dataclass
class ToolInvocationBlock:
    """
    A request to run code.

    Argument fragments are concatenated verbatim into ``buffer`` and parsed
    only when the block closes; fragments may split JSON tokens.
    """
    tool_id: str
    name: str = CODE_EXECUTION_TOOL
    buffer: str = ""
    arguments: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    state: BlockState = BlockState.OPEN

    kind = "tool_use"

    def append(self, fragment: str) -> None:
        if self.state is not BlockState.OPEN:
            raise ProtocolError(f"argument delta for a {self.state.value} block")
        self.buffer += fragment

    def close(self) -> None:
        """Freeze the buffer and parse it. Parse failures are recorded, not raised."""
        if self.state is not BlockState.OPEN:
            raise ProtocolError(f"block-stop for a {self.state.value} block")
        self.state = BlockState.CLOSED
        try:
            self.arguments = parse_arguments(self.buffer)
        except ToolArgumentError as e:
            self.error = str(e)

    def resolve(self) -> None:
        if self.state is not BlockState.CLOSED:
            raise ProtocolError(f"cannot resolve a {self.state.value} invocation")
        self.state = BlockState.RESOLVED

    @property
    def usable(self) -> bool:
        return self.state is not BlockState.OPEN and self.arguments is not None

    @property
    def code(self) -> Optional[str]:
        if not self.arguments:
            return None
        value = self.arguments.get("code")
        return value if isinstance(value, str) else None


@dataclass
class FileArtifact:
    """A file produced by code execution and where it ended up locally."""
    file_id: str
    filename: str = ""
    path: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ToolResultBlock:
    """Outcome of a tool invocation, linked to it by block position."""
    invocation_position: int
    status: ResultStatus
    text: str = ""
    stderr: str = ""
    return_code: Optional[int] = None
    files: List[FileArtifact] = field(default_factory=list)
    error: Optional[str] = None
    state: BlockState = BlockState.CLOSED

    kind = "tool_result"


Block = Union[TextBlock, ToolInvocationBlock, ToolResultBlock]


@dataclass
class Turn:
    role: Role
    blocks: List[Block] = field(default_factory=list)
    outcome: TurnOutcome = TurnOutcome.COMPLETED
    failure: Optional[str] = None
    session_id: Optional[int] = None
    stop_reason: Optional[str] = None
    output_tokens: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.outcome is TurnOutcome.STREAMING

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.blocks if isinstance(b, TextBlock))

    def close(self, outcome: TurnOutcome, failure: Optional[str] = None) -> None:
        """
        Finalize the turn in its current state.

        Blocks still open are frozen as they are; nothing accumulated so far
        is discarded.
        """
        if not self.is_open:
            raise ProtocolError("turn is already closed")
        for block in self.blocks:
            if block.state is BlockState.OPEN:
                block.close()
        self.outcome = outcome
        self.failure = failure


class Transcript:
    """Ordered list of turns guarded by a single lock."""

    def __init__(self):
        self.lock = threading.RLock()
        self._turns: List[Turn] = []

    def __len__(self) -> int:
        return len(self._turns)

    @property
    def turns(self) -> List[Turn]:
        return self._turns

    def add_user_turn(self, text: str) -> Turn:
        with self.lock:
            turn = Turn(role=Role.USER, blocks=[TextBlock(text=text, state=BlockState.CLOSED)])
            self._turns.append(turn)
            return turn

    def open_assistant_turn(self, session_id: int) -> Turn:
        with self.lock:
            if any(t.is_open for t in self._turns):
                raise ProtocolError("an assistant turn is already open")
            turn = Turn(role=Role.ASSISTANT, outcome=TurnOutcome.STREAMING, session_id=session_id)
            self._turns.append(turn)
            return turn

    def clear(self) -> None:
        with self.lock:
            self._turns.clear()

    def snapshot(self) -> List[Turn]:
        """Deep copy of all turns, safe to read without holding the lock."""
        with self.lock:
            return copy.deepcopy(self._turns)

    def history_messages(self) -> List[Dict[str, str]]:
        """
        Convert the transcript into API messages.

        Only text is sent back. Empty turns are skipped and consecutive
        messages with the same role are merged so roles alternate.
        """
        messages: List[Dict[str, str]] = []
        with self.lock:
            for turn in self._turns:
                text = turn.text
                if not text.strip():
                    continue
                if messages and messages[-1]["role"] == turn.role.value:
                    messages[-1]["content"] += "\n\n" + text
                else:
                    messages.append({"role": turn.role.value, "content": text})
        return messages

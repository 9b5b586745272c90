"""
Session controller: owns the transcript and the single in-flight stream.

Every transcript write goes through here, one at a time under
``Transcript.lock``. The stream and tool tasks run on the same asyncio loop
as the UI; they reach the UI only through ``ChangeSignal`` and snapshots.

Each session gets a strictly increasing id. Anything that arrives tagged
with an id other than the active session's (stream events, tool results,
status updates) is stale and dropped without touching the transcript.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Optional

from loguru import logger

from agnt.core.assembler import StreamAssembler
from agnt.core.config import Config
from agnt.core.decoder import MessageStart, MessageStop, StreamError, StreamEvent, aiter_events
from agnt.core.errors import (
    INTERNAL_ERROR_MESSAGE,
    ProtocolError,
    SessionActiveError,
    StreamDecodeError,
    TransportError,
    user_message,
)
from agnt.core.file_store import ArtifactStore
from agnt.core.tool_coordinator import CodeExecutor, ServerCodeExecutor, ToolCoordinator
from agnt.core.transcript import ToolResultBlock, Transcript, Turn, TurnOutcome
from agnt.llm.base_client import BaseStreamClient


class ChangeSignal:
    """
    Coalescing "transcript changed" notification.

    Any number of ``set()`` calls between two waits produce one wake-up.
    Observers re-read state on wake-up rather than trusting a payload, so
    duplicate or merged notifications are harmless.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.version = 0

    def set(self) -> None:
        self.version += 1
        self._event.set()

    def consume(self) -> bool:
        """Clear the signal; True if it was set."""
        was_set = self._event.is_set()
        self._event.clear()
        return was_set

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait up to ``timeout`` seconds for a change. True if one happened."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return self.consume()


@dataclass
class SessionHandle:
    session_id: int
    turn: Turn
    task: Optional[asyncio.Task] = None


@dataclass
class StreamSession:
    session_id: int
    turn: Turn
    assembler: StreamAssembler
    coordinator: ToolCoordinator
    cancelled: bool = False
    task: Optional[asyncio.Task] = field(default=None, repr=False)


class SessionController:
    """
    Starts, cancels and feeds the one active stream.

    Args:
        config: Immutable configuration value set
        client: Stream source and file transport
        transcript: Conversation to extend (a new one by default)
        executor_factory: Builds the code executor for each session
    """

    def __init__(
        self,
        config: Config,
        client: BaseStreamClient,
        transcript: Optional[Transcript] = None,
        executor_factory: Optional[Callable[[], CodeExecutor]] = None,
    ):
        self.config = config
        self.client = client
        self.transcript = transcript or Transcript()
        self.signal = ChangeSignal()
        self.store = ArtifactStore(config.output_dir)
        self.status: Optional[str] = None
        self.container: Optional[tuple] = None
        self._executor_factory = executor_factory or (lambda: ServerCodeExecutor(client))
        self._last_id = 0
        self._active: Optional[StreamSession] = None

    def is_active(self) -> bool:
        return self._active is not None

    @property
    def active_session_id(self) -> Optional[int]:
        return self._active.session_id if self._active else None

    def start(self, new_user_text: str, tool_enabled: Optional[bool] = None) -> SessionHandle:
        """
        Begin streaming a reply to ``new_user_text``.

        The turns so far are the ones already in ``self.transcript``.

        Args:
            new_user_text: What the user submitted
            tool_enabled: Offer code execution; defaults to the configured value

        Raises:
            SessionActiveError: a session is already in flight
        """
        if self._active is not None:
            raise SessionActiveError(f"session {self._active.session_id} is still active")
        if tool_enabled is None:
            tool_enabled = self.config.code_execution

        self._last_id += 1
        session_id = self._last_id
        loop = asyncio.get_running_loop()

        with self.transcript.lock:
            self.transcript.add_user_turn(new_user_text)
            messages = self.transcript.history_messages()
            turn = self.transcript.open_assistant_turn(session_id)

        coordinator = ToolCoordinator(
            executor=self._executor_factory(),
            store=self.store,
            deliver=lambda result: self.deliver_result(session_id, result),
        )
        assembler = StreamAssembler(
            turn,
            on_change=self.signal.set,
            on_tool_ready=coordinator.submit,
            on_server_result=coordinator.server_result,
            schedule=loop.call_soon,
        )
        session = StreamSession(session_id=session_id, turn=turn, assembler=assembler, coordinator=coordinator)
        self._active = session
        self.status = "Connecting..."
        self.container = None

        session.task = asyncio.ensure_future(self._run(session, messages, tool_enabled))
        logger.info(f"Session {session_id} started (tools={tool_enabled}, history={len(messages)} messages)")
        self.signal.set()
        return SessionHandle(session_id=session_id, turn=turn, task=session.task)

    def cancel(self) -> bool:
        """
        Cancel the active session.

        The assistant turn is closed at once in its partial state. The stream
        task is torn down at its current suspension point; pending tool work
        is abandoned and its late results are dropped as stale.

        Returns:
            True if a session was cancelled
        """
        session = self._active
        if session is None:
            return False
        session.cancelled = True
        self._active = None
        with self.transcript.lock:
            if session.turn.is_open:
                session.assembler.close(TurnOutcome.CANCELLED, "Cancelled by user")
        session.coordinator.abandon()
        if session.task is not None and not session.task.done():
            session.task.cancel()
        self.status = None
        logger.info(f"Session {session.session_id} cancelled")
        self.signal.set()
        return True

    def clear(self) -> None:
        """Forget the conversation. Refused while streaming."""
        if self._active is not None:
            raise SessionActiveError("cannot clear while a response is streaming")
        self.transcript.clear()
        self.container = None
        self.signal.set()

    async def join(self) -> None:
        """Wait for the active session, if any, to finish."""
        session = self._active
        if session is None or session.task is None:
            return
        try:
            await session.task
        except asyncio.CancelledError:
            pass

    def deliver(self, session_id: int, event: StreamEvent) -> bool:
        """
        Apply a stream event tagged with ``session_id``.

        Returns:
            True if the session should keep streaming
        """
        session = self._current(session_id)
        if session is None:
            logger.debug(f"Dropping stale {type(event).__name__} for session {session_id}")
            return False

        with self.transcript.lock:
            try:
                done = session.assembler.apply(event)
            except (ProtocolError, StreamDecodeError) as e:
                self._fail(session, e)
                return False

        if isinstance(event, MessageStart) and event.container_id:
            self.container = (event.container_id, event.container_expires_at)
        if isinstance(event, StreamError):
            logger.error(f"Session {session_id} stream error: {event.error_type}: {event.message}")
        if done:
            self._finish(session)
        return not done

    def deliver_result(self, session_id: int, result: ToolResultBlock) -> bool:
        """Append a finished tool result unless its session is stale."""
        session = self._current(session_id)
        if session is None:
            logger.debug(f"Dropping late tool result for session {session_id}")
            return False
        with self.transcript.lock:
            try:
                session.assembler.append_result(result)
            except ProtocolError as e:
                self._fail(session, e)
                return False
        logger.info(f"Session {session_id}: tool result {result.status.value} for block {result.invocation_position}")
        return True

    def set_status(self, session_id: int, status: Optional[str]) -> None:
        if self._current(session_id) is None:
            return
        self.status = status
        self.signal.set()

    def _current(self, session_id: int) -> Optional[StreamSession]:
        session = self._active
        if session is None or session.session_id != session_id or session.cancelled:
            return None
        return session

    async def _run(self, session: StreamSession, messages: list, tool_enabled: bool) -> None:
        session_id = session.session_id
        try:
            async with self.client.stream_lines(
                messages,
                system=self.config.render_system_prompt(),
                code_execution=tool_enabled,
                on_status=lambda status: self.set_status(session_id, status),
            ) as lines:
                self.set_status(session_id, "Receiving response...")
                async for event in aiter_events(lines):
                    if isinstance(event, MessageStop):
                        # Tool results belong to this turn; let them land before it closes
                        session.coordinator.end_of_stream()
                        if session.coordinator.pending:
                            self.set_status(session_id, "Waiting for tool results...")
                        await session.coordinator.drain()
                    if not self.deliver(session_id, event):
                        break
        except TransportError as e:
            logger.error(f"Session {session_id} transport error: {e}")
            self._fail(session, e)
        except Exception as e:
            logger.exception(f"Session {session_id} crashed")
            self._fail(session, e, internal=True)

    def _fail(self, session: StreamSession, error: Exception, internal: bool = False) -> None:
        if self._current(session.session_id) is None:
            return
        if isinstance(error, ProtocolError):
            logger.error(f"Session {session.session_id} internal-consistency failure: {error}")
        elif isinstance(error, StreamDecodeError):
            logger.error(f"Session {session.session_id} decode error: {error} (raw: {error.raw[:200]})")
        message = INTERNAL_ERROR_MESSAGE if internal else user_message(error)
        with self.transcript.lock:
            if session.turn.is_open:
                session.assembler.close(TurnOutcome.FAILED, message)
        self._finish(session)

    def _finish(self, session: StreamSession) -> None:
        if self._active is session:
            self._active = None
        session.coordinator.abandon()
        self.status = None
        logger.info(
            f"Session {session.session_id} finished: {session.turn.outcome.value}"
            + (f" ({session.turn.failure})" if session.turn.failure else "")
        )
        self.signal.set()

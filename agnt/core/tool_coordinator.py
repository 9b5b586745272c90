"""
Tool Coordinator
Turns closed code-execution invocations into asynchronous executions and
their outcomes into tool-result blocks, saving produced files on the way.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from loguru import logger

from agnt.core.errors import ArtifactWriteError, ProtocolError, ToolExecutionError, TransportError
from agnt.core.file_store import ArtifactStore
from agnt.core.transcript import (
    CODE_EXECUTION_TOOL,
    FileArtifact,
    ResultStatus,
    ToolInvocationBlock,
    ToolResultBlock,
)
from agnt.llm.base_client import BaseStreamClient

METADATA_ATTEMPTS = 2
METADATA_RETRY_DELAY = 0.5


@dataclass
class ExecutionOutcome:
    """What a code execution produced."""
    ok: bool
    stdout: str = ""
    stderr: str = ""
    return_code: Optional[int] = None
    file_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None


def outcome_from_payload(payload: Dict[str, Any]) -> ExecutionOutcome:
    """Parse the content of a ``code_execution_tool_result`` block."""
    result_type = payload.get("type")
    if result_type == "code_execution_result":
        return ExecutionOutcome(
            ok=True,
            stdout=payload.get("stdout") or "",
            stderr=payload.get("stderr") or "",
            return_code=payload.get("return_code"),
            file_ids=[
                item["file_id"]
                for item in payload.get("content") or []
                if item.get("type") == "code_execution_output" and item.get("file_id")
            ],
        )
    if result_type == "code_execution_tool_result_error":
        return ExecutionOutcome(ok=False, error=f"Code execution error: {payload.get('error_code', 'unknown')}")
    return ExecutionOutcome(ok=False, error=f"Unrecognized code execution result: {result_type}")


class CodeExecutor(ABC):
    """Runs code and fetches the files it produces."""

    @abstractmethod
    async def run(self, tool_id: str, code: str) -> ExecutionOutcome:
        """
        Execute ``code`` for the invocation ``tool_id``.

        Raises:
            ToolExecutionError: execution could not be carried out
        """

    @abstractmethod
    async def fetch_file(self, file_id: str) -> Tuple[str, bytes]:
        """
        Returns:
            (server-provided filename, content)

        Raises:
            TransportError: the file could not be downloaded
        """

    def deliver(self, tool_id: str, payload: Dict[str, Any]) -> None:
        """Accept a result the server executed and streamed itself."""
        raise ProtocolError(f"{type(self).__name__} does not accept server-side results ({tool_id})")

    def end_of_stream(self) -> None:
        """The stream is over; no further server-side results will arrive."""

    def abandon(self) -> None:
        """The session was cancelled; stop waiting for anything in flight."""


class ServerCodeExecutor(CodeExecutor):
    """
    Executor for server-side code execution.

    The code runs remotely as part of the response; its result arrives later
    in the same stream and is handed over through ``deliver()``. Results can
    arrive before ``run()`` is awaited, so they are buffered by tool id.
    """

    def __init__(self, client: BaseStreamClient):
        self._client = client
        self._waiting: Dict[str, asyncio.Future] = {}
        self._arrived: Dict[str, Dict[str, Any]] = {}
        self._closed_reason: Optional[str] = None

    async def run(self, tool_id: str, code: str) -> ExecutionOutcome:
        if tool_id in self._arrived:
            return outcome_from_payload(self._arrived.pop(tool_id))
        if self._closed_reason:
            raise ToolExecutionError(self._closed_reason)
        future = asyncio.get_running_loop().create_future()
        self._waiting[tool_id] = future
        payload = await future
        return outcome_from_payload(payload)

    def deliver(self, tool_id: str, payload: Dict[str, Any]) -> None:
        future = self._waiting.pop(tool_id, None)
        if future is None:
            self._arrived[tool_id] = payload
        elif not future.done():
            future.set_result(payload)

    def _fail_waiting(self, reason: str) -> None:
        self._closed_reason = reason
        waiting, self._waiting = self._waiting, {}
        for tool_id, future in waiting.items():
            if not future.done():
                future.set_exception(ToolExecutionError(f"{reason} ({tool_id})"))

    def end_of_stream(self) -> None:
        self._fail_waiting("No result received from the server")

    def abandon(self) -> None:
        self._fail_waiting("Session cancelled")

    async def fetch_file(self, file_id: str) -> Tuple[str, bytes]:
        filename = f"{file_id}.bin"
        for attempt in range(METADATA_ATTEMPTS):
            try:
                filename = (await self._client.get_file_metadata(file_id)).filename
                break
            except TransportError as e:
                logger.warning(f"Could not fetch metadata for {file_id} (attempt {attempt + 1}): {e}")
                if attempt + 1 < METADATA_ATTEMPTS:
                    # The file may not be registered yet
                    await asyncio.sleep(METADATA_RETRY_DELAY)
        content = await self._client.download_file(file_id)
        return filename, content


class ToolCoordinator:
    """
    Dispatches closed tool invocations for one session.

    Each execution is its own task. Results are handed to ``deliver``, which
    the session controller guards with its staleness check, so results that
    finish after a cancellation are dropped there rather than here.
    """

    def __init__(
        self,
        executor: CodeExecutor,
        store: ArtifactStore,
        deliver: Callable[[ToolResultBlock], None],
    ):
        """
        Args:
            executor: Runs code and fetches files
            store: Where produced files are written
            deliver: Receives finished tool-result blocks
        """
        self.executor = executor
        self.store = store
        self._deliver = deliver
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, position: int, block: ToolInvocationBlock) -> None:
        """
        Start executing a closed, parsed invocation.

        Raises:
            ProtocolError: the tool is not the code execution tool
        """
        if block.name != CODE_EXECUTION_TOOL:
            raise ProtocolError(f"unsupported tool '{block.name}'")

        task = asyncio.ensure_future(self._execute(position, block.tool_id, block.code))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"Submitted code execution {block.tool_id} (block {position})")

    def server_result(self, tool_id: str, payload: Dict[str, Any]) -> None:
        self.executor.deliver(tool_id, payload)

    async def drain(self) -> None:
        """
        Wait until every submitted execution has delivered its result.

        Cancelling the waiter leaves the executions running.
        """
        while self._tasks:
            await asyncio.wait(set(self._tasks))

    def end_of_stream(self) -> None:
        self.executor.end_of_stream()

    def abandon(self) -> None:
        """Stop waiting on in-flight work. Remote execution itself is not interrupted."""
        self.executor.abandon()

    async def _execute(self, position: int, tool_id: str, code: Optional[str]) -> None:
        if code is None:
            outcome = ExecutionOutcome(ok=False, error="Tool arguments have no 'code' string")
        else:
            try:
                outcome = await self.executor.run(tool_id, code)
            except (ToolExecutionError, TransportError) as e:
                logger.warning(f"Code execution {tool_id} failed: {e}")
                outcome = ExecutionOutcome(ok=False, error=str(e))
            except Exception as e:
                logger.exception(f"Unexpected error executing {tool_id}")
                outcome = ExecutionOutcome(ok=False, error=f"Unexpected error: {e}")

        result = ToolResultBlock(
            invocation_position=position,
            status=ResultStatus.OK if outcome.ok else ResultStatus.ERROR,
            text=outcome.stdout,
            stderr=outcome.stderr,
            return_code=outcome.return_code,
            error=outcome.error,
        )
        for file_id in outcome.file_ids:
            result.files.append(await self._save_file(file_id))
        self._deliver(result)

    async def _save_file(self, file_id: str) -> FileArtifact:
        try:
            filename, content = await self.executor.fetch_file(file_id)
        except TransportError as e:
            logger.error(f"Error downloading file {file_id}: {e}")
            return FileArtifact(file_id=file_id, error=f"download failed: {e}")

        try:
            path = await asyncio.to_thread(self.store.save, filename, content)
        except ArtifactWriteError as e:
            return FileArtifact(file_id=file_id, filename=filename, error=str(e))
        return FileArtifact(file_id=file_id, filename=filename, path=str(path))

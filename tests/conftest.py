"""
Shared fixtures and helpers for AGNT tests.
"""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional

import pytest
from loguru import logger

from agnt.core.config import Config
from agnt.core.errors import TransportError
from agnt.core.tool_coordinator import CodeExecutor, ExecutionOutcome
from agnt.llm.base_client import BaseStreamClient, FileMetadata, StatusCallback


@pytest.fixture(autouse=True)
def quiet_logger():
    """Keep loguru from writing to stderr during tests."""
    logger.remove()
    yield
    logger.remove()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        api_key="sk-test",
        model="test-model",
        output_dir=tmp_path / "output",
        log_file=tmp_path / "agnt-log.txt",
    )


async def settle(rounds: int = 20) -> None:
    """Let every ready task and callback on the loop run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class QueueStreamClient(BaseStreamClient):
    """
    Stream source fed by the test.

    Every ``stream_lines`` call gets its own queue; push lines into the
    latest one with ``push()`` and end it with ``close()``.
    """

    def __init__(self):
        super().__init__(api_key="sk-test", model="test-model")
        self.queues: List[asyncio.Queue] = []
        self.requests: List[Dict] = []

    @asynccontextmanager
    async def stream_lines(
        self,
        messages,
        system: Optional[str] = None,
        code_execution: bool = False,
        on_status: Optional[StatusCallback] = None,
    ) -> AsyncIterator[AsyncIterator[str]]:
        self.requests.append(self.build_request(messages, system=system, code_execution=code_execution))
        queue: asyncio.Queue = asyncio.Queue()
        self.queues.append(queue)

        async def _lines():
            while True:
                line = await queue.get()
                if line is None:
                    return
                yield line

        yield _lines()

    def push(self, lines: List[str], stream: int = -1) -> None:
        for line in lines:
            self.queues[stream].put_nowait(line)

    def close(self, stream: int = -1) -> None:
        self.queues[stream].put_nowait(None)

    async def get_file_metadata(self, file_id: str) -> FileMetadata:
        raise TransportError(f"File not found: {file_id}", status=404)

    async def download_file(self, file_id: str) -> bytes:
        raise TransportError(f"File not found: {file_id}", status=404)


class FakeExecutor(CodeExecutor):
    """Client-side executor returning canned outcomes."""

    def __init__(self, outcome: Optional[ExecutionOutcome] = None, error: Optional[Exception] = None,
                 files: Optional[Dict[str, tuple]] = None):
        self.outcome = outcome or ExecutionOutcome(ok=True)
        self.error = error
        self.files = files or {}
        self.calls: List[tuple] = []

    async def run(self, tool_id: str, code: str) -> ExecutionOutcome:
        self.calls.append((tool_id, code))
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.outcome

    async def fetch_file(self, file_id: str):
        if file_id not in self.files:
            raise TransportError(f"File not found: {file_id}", status=404)
        return self.files[file_id]

"""
Tests for the tool coordinator and the server-side executor.
"""

import asyncio

import pytest

from conftest import FakeExecutor
from agnt.core import tool_coordinator
from agnt.core.errors import ProtocolError, ToolExecutionError, TransportError
from agnt.core.file_store import ArtifactStore
from agnt.core.tool_coordinator import (
    ExecutionOutcome,
    ServerCodeExecutor,
    ToolCoordinator,
    outcome_from_payload,
)
from agnt.core.transcript import ResultStatus, ToolInvocationBlock
from agnt.llm.mock_client import MockStreamClient

RESULT_PAYLOAD = {
    "type": "code_execution_result",
    "stdout": "4\n",
    "stderr": "",
    "return_code": 0,
    "content": [{"type": "code_execution_output", "file_id": "file_1"}],
}


def closed_invocation(buffer='{"code": "print(4)"}', name="code_execution", tool_id="toolu_1"):
    block = ToolInvocationBlock(tool_id=tool_id, name=name, buffer=buffer)
    block.close()
    return block


class TestPayloads:
    def test_result_payload(self):
        outcome = outcome_from_payload(RESULT_PAYLOAD)
        assert outcome.ok
        assert outcome.stdout == "4\n"
        assert outcome.return_code == 0
        assert outcome.file_ids == ["file_1"]

    def test_error_payload(self):
        outcome = outcome_from_payload({"type": "code_execution_tool_result_error", "error_code": "unavailable"})
        assert not outcome.ok
        assert "unavailable" in outcome.error

    def test_unknown_payload(self):
        assert not outcome_from_payload({"type": "surprise"}).ok


class TestServerExecutor:
    def test_result_before_run(self):
        async def scenario():
            executor = ServerCodeExecutor(MockStreamClient())
            executor.deliver("toolu_1", RESULT_PAYLOAD)
            return await executor.run("toolu_1", "print(4)")

        assert asyncio.run(scenario()).stdout == "4\n"

    def test_result_after_run(self):
        async def scenario():
            executor = ServerCodeExecutor(MockStreamClient())
            task = asyncio.ensure_future(executor.run("toolu_1", "print(4)"))
            await asyncio.sleep(0)
            assert not task.done()
            executor.deliver("toolu_1", RESULT_PAYLOAD)
            return await task

        assert asyncio.run(scenario()).ok

    def test_end_of_stream_fails_waiting(self):
        async def scenario():
            executor = ServerCodeExecutor(MockStreamClient())
            task = asyncio.ensure_future(executor.run("toolu_1", "print(4)"))
            await asyncio.sleep(0)
            executor.end_of_stream()
            with pytest.raises(ToolExecutionError):
                await task
            # Later runs fail at once
            with pytest.raises(ToolExecutionError):
                await executor.run("toolu_2", "print(5)")

        asyncio.run(scenario())

    def test_fetch_file_uses_server_filename(self):
        client = MockStreamClient(files={"file_1": ("plot.png", b"png")})
        filename, content = asyncio.run(ServerCodeExecutor(client).fetch_file("file_1"))
        assert (filename, content) == ("plot.png", b"png")

    def test_fetch_file_falls_back_to_id(self, monkeypatch):
        monkeypatch.setattr(tool_coordinator, "METADATA_RETRY_DELAY", 0)

        class NoMetadataClient(MockStreamClient):
            metadata_calls = 0

            async def get_file_metadata(self, file_id):
                NoMetadataClient.metadata_calls += 1
                raise TransportError("not ready", status=404)

        client = NoMetadataClient(files={"file_1": ("ignored.png", b"png")})
        filename, content = asyncio.run(ServerCodeExecutor(client).fetch_file("file_1"))

        assert filename == "file_1.bin"
        assert content == b"png"
        assert NoMetadataClient.metadata_calls == tool_coordinator.METADATA_ATTEMPTS


class TestCoordinator:
    def _run(self, executor, block, tmp_path):
        delivered = []

        async def scenario():
            coordinator = ToolCoordinator(executor, ArtifactStore(tmp_path), delivered.append)
            coordinator.submit(3, block)
            assert coordinator.pending == 1
            await coordinator.drain()
            assert coordinator.pending == 0

        asyncio.run(scenario())
        return delivered

    def test_success(self, tmp_path):
        executor = FakeExecutor(ExecutionOutcome(ok=True, stdout="4\n", return_code=0))
        delivered = self._run(executor, closed_invocation(), tmp_path)

        assert executor.calls == [("toolu_1", "print(4)")]
        result = delivered[0]
        assert result.invocation_position == 3
        assert result.status is ResultStatus.OK
        assert result.text == "4\n"
        assert result.files == []

    def test_nonzero_exit_is_still_ok(self, tmp_path):
        executor = FakeExecutor(ExecutionOutcome(ok=True, stderr="Traceback", return_code=1))
        result = self._run(executor, closed_invocation(), tmp_path)[0]
        assert result.status is ResultStatus.OK
        assert result.return_code == 1

    def test_execution_failure_becomes_error_result(self, tmp_path):
        executor = FakeExecutor(error=ToolExecutionError("sandbox unavailable"))
        result = self._run(executor, closed_invocation(), tmp_path)[0]
        assert result.status is ResultStatus.ERROR
        assert "sandbox unavailable" in result.error

    def test_unexpected_failure_becomes_error_result(self, tmp_path):
        executor = FakeExecutor(error=RuntimeError("boom"))
        result = self._run(executor, closed_invocation(), tmp_path)[0]
        assert result.status is ResultStatus.ERROR
        assert "boom" in result.error

    def test_missing_code(self, tmp_path):
        executor = FakeExecutor()
        result = self._run(executor, closed_invocation(buffer='{"language": "python"}'), tmp_path)[0]
        assert result.status is ResultStatus.ERROR
        assert executor.calls == []

    def test_files_are_saved(self, tmp_path):
        executor = FakeExecutor(
            ExecutionOutcome(ok=True, file_ids=["file_1", "file_2"]),
            files={"file_1": ("../plot.png", b"png")},
        )
        result = self._run(executor, closed_invocation(), tmp_path / "out")[0]

        saved, missing = result.files
        assert saved.filename == "../plot.png"
        assert saved.error is None
        assert (tmp_path / "out" / "plot.png").read_bytes() == b"png"
        assert missing.file_id == "file_2"
        assert missing.path is None
        assert "download failed" in missing.error

    def test_unsupported_tool_is_protocol_error(self, tmp_path):
        async def scenario():
            coordinator = ToolCoordinator(FakeExecutor(), ArtifactStore(tmp_path), lambda r: None)
            with pytest.raises(ProtocolError):
                coordinator.submit(0, closed_invocation(name="web_search"))
            assert coordinator.pending == 0

        asyncio.run(scenario())

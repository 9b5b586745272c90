"""
Mock stream client used for offline/demo mode.
Generates deterministic event streams to exercise the client without network access.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from agnt.core.errors import TransportError
from agnt.llm.base_client import BaseStreamClient, FileMetadata, StatusCallback

CODE_KEYWORDS = ("code", "python", "run", "compute", "calculate", "plot", "file")


def sse_record(event_type: str, payload: Dict[str, Any]) -> List[str]:
    """Lines of one server-sent event, including the terminating blank line."""
    body = dict(payload)
    body.setdefault("type", event_type)
    return [f"event: {event_type}", f"data: {json.dumps(body)}", ""]


def text_block(index: int, fragments: List[str]) -> List[str]:
    lines = sse_record("content_block_start", {"index": index, "content_block": {"type": "text", "text": ""}})
    for fragment in fragments:
        lines += sse_record(
            "content_block_delta",
            {"index": index, "delta": {"type": "text_delta", "text": fragment}},
        )
    lines += sse_record("content_block_stop", {"index": index})
    return lines


def tool_use_block(index: int, tool_id: str, fragments: List[str], name: str = "code_execution") -> List[str]:
    lines = sse_record(
        "content_block_start",
        {"index": index, "content_block": {"type": "server_tool_use", "id": tool_id, "name": name, "input": {}}},
    )
    for fragment in fragments:
        lines += sse_record(
            "content_block_delta",
            {"index": index, "delta": {"type": "input_json_delta", "partial_json": fragment}},
        )
    lines += sse_record("content_block_stop", {"index": index})
    return lines


def tool_result_block(
    index: int,
    tool_id: str,
    stdout: str = "",
    stderr: str = "",
    return_code: int = 0,
    file_ids: Optional[List[str]] = None,
    error_code: Optional[str] = None,
) -> List[str]:
    if error_code:
        content: Dict[str, Any] = {"type": "code_execution_tool_result_error", "error_code": error_code}
    else:
        content = {
            "type": "code_execution_result",
            "stdout": stdout,
            "stderr": stderr,
            "return_code": return_code,
            "content": [{"type": "code_execution_output", "file_id": f} for f in file_ids or []],
        }
    lines = sse_record(
        "content_block_start",
        {
            "index": index,
            "content_block": {"type": "code_execution_tool_result", "tool_use_id": tool_id, "content": content},
        },
    )
    lines += sse_record("content_block_stop", {"index": index})
    return lines


def message_start(container_id: Optional[str] = None) -> List[str]:
    message: Dict[str, Any] = {"id": "msg_mock", "model": "mock-llm", "role": "assistant", "content": []}
    if container_id:
        message["container"] = {"id": container_id, "expires_at": "2099-01-01T00:00:00Z"}
    return sse_record("message_start", {"message": message})


def message_end(output_tokens: int = 10, stop_reason: str = "end_turn") -> List[str]:
    lines = sse_record("message_delta", {"delta": {"stop_reason": stop_reason}, "usage": {"output_tokens": output_tokens}})
    lines += sse_record("message_stop", {})
    return lines


def split_fragments(text: str, size: int) -> List[str]:
    return [text[i:i + size] for i in range(0, len(text), size)] or [""]


class MockStreamClient(BaseStreamClient):
    """
    Offline stream source.

    With a ``script`` it replays those lines verbatim on every request;
    otherwise it builds a small scripted answer from the last user message.
    """

    def __init__(
        self,
        script: Optional[List[str]] = None,
        files: Optional[Dict[str, Tuple[str, bytes]]] = None,
        delay: float = 0.02,
        model: str = "mock-llm",
        fail_with: Optional[TransportError] = None,
    ):
        """
        Args:
            script: Raw event-stream lines to replay
            files: file_id -> (filename, content) served by the files endpoints
            delay: Seconds to sleep between lines
            model: Reported model name
            fail_with: Error raised when a stream is opened
        """
        super().__init__(api_key=None, model=model)
        self.script = script
        self.files = dict(files or {})
        self.delay = delay
        self.fail_with = fail_with
        self.requests: List[Dict] = []

    def _generate(self, messages: List[Dict[str, str]], code_execution: bool) -> List[str]:
        prompt = next((m["content"] for m in reversed(messages) if m["role"] == "user"), "")
        lines = message_start(container_id="container_mock" if code_execution else None)
        wants_code = code_execution and any(word in prompt.lower() for word in CODE_KEYWORDS)
        if not wants_code:
            words = f"(mock) You said: {prompt.strip()}".split(" ")
            lines += text_block(0, [w + " " for w in words[:-1]] + words[-1:])
            return lines + message_end(output_tokens=len(words))

        arguments = json.dumps({"code": 'print("hello from the sandbox")'})
        file_ids = []
        if "plot" in prompt.lower() or "file" in prompt.lower():
            file_ids = ["file_mock_1"]
            self.files.setdefault("file_mock_1", ("mock_output.txt", b"mock file contents\n"))
        lines += text_block(0, ["Let me ", "run that."])
        lines += tool_use_block(1, "srvtoolu_mock", split_fragments(arguments, 7))
        lines += tool_result_block(2, "srvtoolu_mock", stdout="hello from the sandbox\n", file_ids=file_ids)
        lines += text_block(3, ["Done."])
        return lines + message_end()

    @asynccontextmanager
    async def stream_lines(
        self,
        messages: List[Dict[str, str]],
        system: Optional[str] = None,
        code_execution: bool = False,
        on_status: Optional[StatusCallback] = None,
    ) -> AsyncIterator[AsyncIterator[str]]:
        self.requests.append(self.build_request(messages, system=system, code_execution=code_execution))
        if on_status:
            on_status("Connecting to mock server...")
        if self.fail_with is not None:
            raise self.fail_with
        lines = list(self.script) if self.script is not None else self._generate(messages, code_execution)

        async def _replay() -> AsyncIterator[str]:
            for line in lines:
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield line

        yield _replay()

    async def get_file_metadata(self, file_id: str) -> FileMetadata:
        if file_id not in self.files:
            raise TransportError(f"File not found: {file_id}", status=404)
        filename, content = self.files[file_id]
        return FileMetadata(file_id=file_id, filename=filename, size=len(content))

    async def download_file(self, file_id: str) -> bytes:
        if file_id not in self.files:
            raise TransportError(f"File not found: {file_id}", status=404)
        return self.files[file_id][1]

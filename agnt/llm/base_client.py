"""
Base stream client interface.
All transports for the conversation stream must implement this interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncContextManager, AsyncIterator, Callable, Dict, List, Optional

StatusCallback = Callable[[str], None]

CODE_EXECUTION_TOOL_TYPE = "code_execution_20250522"
CODE_EXECUTION_BETA = "code-execution-2025-05-22"
FILES_API_BETA = "files-api-2025-04-14"


@dataclass
class FileMetadata:
    """Metadata for a file produced by remote code execution."""
    file_id: str
    filename: str
    size: Optional[int] = None
    mime_type: Optional[str] = None


class BaseStreamClient(ABC):
    """Abstract base class for stream sources."""

    def __init__(self, api_key: Optional[str], model: str, max_tokens: int = 4096):
        """
        Initialize the client.

        Args:
            api_key: API key for the provider
            model: Model identifier
            max_tokens: Maximum tokens per response
        """
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens

    def build_request(
        self,
        messages: List[Dict[str, str]],
        system: Optional[str] = None,
        code_execution: bool = False,
    ) -> Dict:
        """Request body for one streamed response."""
        body: Dict = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "stream": True,
        }
        if system:
            body["system"] = system
        if code_execution:
            body["tools"] = [{"type": CODE_EXECUTION_TOOL_TYPE, "name": "code_execution"}]
        return body

    @abstractmethod
    def stream_lines(
        self,
        messages: List[Dict[str, str]],
        system: Optional[str] = None,
        code_execution: bool = False,
        on_status: Optional[StatusCallback] = None,
    ) -> AsyncContextManager[AsyncIterator[str]]:
        """
        Open a streamed response.

        Args:
            messages: List of message dicts with 'role' and 'content'
            system: Optional system prompt
            code_execution: Offer the code execution tool
            on_status: Receives human-readable connection progress

        Returns:
            Async context manager yielding the raw lines of the event stream.
            Leaving the context tears the connection down.

        Raises:
            TransportError: connection failure or error status
        """

    @abstractmethod
    async def get_file_metadata(self, file_id: str) -> FileMetadata:
        """Look up the server-side filename of a produced file."""

    @abstractmethod
    async def download_file(self, file_id: str) -> bytes:
        """Fetch the bytes of a produced file."""

    async def aclose(self) -> None:
        """Release network resources."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model={self.model})"

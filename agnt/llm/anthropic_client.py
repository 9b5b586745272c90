"""
Anthropic Messages API client.

Streams responses as server-sent events over httpx and talks to the Files
API for artifacts produced by server-side code execution.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

import httpx
from loguru import logger

from agnt.core.errors import TransportError
from agnt.llm.base_client import (
    CODE_EXECUTION_BETA,
    FILES_API_BETA,
    BaseStreamClient,
    FileMetadata,
    StatusCallback,
)

API_VERSION = "2023-06-01"


def describe_http_error(status: int, body: str) -> str:
    """Human-readable message for an error response."""
    if status == 401:
        return f"Invalid or missing API key: {body}"
    if status == 400:
        if "model" in body:
            return f"Invalid model name: {body}"
        return f"Bad request: {body}"
    if status == 429:
        return f"Rate limit exceeded: {body}"
    if status >= 500:
        return f"Anthropic server error: {body}"
    return f"API error ({status}): {body}"


class AnthropicClient(BaseStreamClient):
    """
    Client for the Anthropic Messages API.

    One ``httpx.AsyncClient`` is shared by the conversation stream and the
    file downloads.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int = 4096,
        base_url: str = "https://api.anthropic.com",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            api_key: Anthropic API key
            model: Model identifier
            max_tokens: Maximum tokens per response
            base_url: API root
            timeout: Default timeout in seconds; streaming reads allow longer gaps
            transport: Custom httpx transport (tests)
        """
        super().__init__(api_key=api_key, model=model, max_tokens=max_tokens)
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout, connect=30.0, read=300.0),
            transport=transport,
        )

    def _headers(self, betas: List[str]) -> Dict[str, str]:
        headers = {
            "x-api-key": self.api_key or "",
            "anthropic-version": API_VERSION,
            "content-type": "application/json",
        }
        if betas:
            headers["anthropic-beta"] = ",".join(betas)
        return headers

    @asynccontextmanager
    async def stream_lines(
        self,
        messages: List[Dict[str, str]],
        system: Optional[str] = None,
        code_execution: bool = False,
        on_status: Optional[StatusCallback] = None,
    ) -> AsyncIterator[AsyncIterator[str]]:
        report = on_status or (lambda status: None)
        body = self.build_request(messages, system=system, code_execution=code_execution)
        betas = [CODE_EXECUTION_BETA, FILES_API_BETA] if code_execution else []

        report("Connecting to Claude API...")
        logger.debug(f"POST /v1/messages model={self.model} messages={len(messages)} tools={code_execution}")
        try:
            async with self._http.stream("POST", "/v1/messages", json=body, headers=self._headers(betas)) as response:
                if response.status_code >= 400:
                    error_body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error(f"API error response (status {response.status_code}): {error_body}")
                    raise TransportError(
                        describe_http_error(response.status_code, error_body),
                        status=response.status_code,
                    )
                report("Receiving response...")
                yield response.aiter_lines()
        except httpx.TimeoutException as e:
            logger.error(f"Request timeout: {e!r}")
            raise TransportError(f"Request to Anthropic API timed out: {e}") from e
        except httpx.HTTPError as e:
            logger.error(f"Network error talking to Messages API: {e!r}")
            raise TransportError(f"Failed to connect to Anthropic API: {e}") from e

    async def _get(self, path: str) -> httpx.Response:
        try:
            response = await self._http.get(path, headers=self._headers([FILES_API_BETA]))
        except httpx.HTTPError as e:
            logger.error(f"GET {path} failed: {e!r}")
            raise TransportError(f"Request failed: {e}") from e
        if response.status_code >= 400:
            logger.error(f"GET {path} returned {response.status_code}: {response.text}")
            raise TransportError(
                describe_http_error(response.status_code, response.text),
                status=response.status_code,
            )
        return response

    async def get_file_metadata(self, file_id: str) -> FileMetadata:
        logger.debug(f"Fetching metadata for file: {file_id}")
        response = await self._get(f"/v1/files/{file_id}")
        try:
            data = response.json()
            metadata = FileMetadata(
                file_id=data.get("id", file_id),
                filename=data["filename"],
                size=data.get("size_bytes"),
                mime_type=data.get("mime_type"),
            )
        except (ValueError, KeyError) as e:
            logger.error(f"Failed to parse file metadata: {e!r} (raw: {response.text[:500]})")
            raise TransportError(f"Failed to parse file metadata: {e}") from e
        logger.debug(f"File metadata: {metadata.filename} ({metadata.mime_type}, {metadata.size} bytes)")
        return metadata

    async def download_file(self, file_id: str) -> bytes:
        logger.debug(f"Downloading file: {file_id}")
        response = await self._get(f"/v1/files/{file_id}/content")
        logger.debug(f"Downloaded {len(response.content)} bytes for {file_id}")
        return response.content

    async def aclose(self) -> None:
        await self._http.aclose()

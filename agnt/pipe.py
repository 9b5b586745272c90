"""
Pipe mode: send one message and stream the answer to stdout.

The session runs exactly as in the TUI; this module only watches the
assistant turn and prints whatever has been added since the last change.
"""

import asyncio
from typing import Dict, Optional, Set

from loguru import logger
from rich.console import Console

from agnt.core.session import SessionController
from agnt.core.transcript import (
    BlockState,
    TextBlock,
    ToolInvocationBlock,
    ToolResultBlock,
    Turn,
    TurnOutcome,
)
from agnt.core.ui_state import TICK_INTERVAL


def build_pipe_message(message: Optional[str], stdin_text: str) -> str:
    """Prepend the optional command-line message to the piped input."""
    if message:
        return f"{message} {stdin_text}" if stdin_text else message
    return stdin_text


class PipePrinter:
    """
    Incremental printer for one assistant turn.

    Text is written as it grows. Code, output and files are written once
    their block is complete, in block order.
    """

    def __init__(self, out: Optional[Console] = None, err: Optional[Console] = None):
        self.out = out or Console(soft_wrap=True, highlight=False)
        self.err = err or Console(stderr=True, soft_wrap=True, highlight=False)
        self._text_printed: Dict[int, int] = {}
        self._done: Set[int] = set()
        self._finished = False

    def _write(self, text: str, error: bool = False) -> None:
        console = self.err if error else self.out
        console.print(text, end="", markup=False, emoji=False)

    def update(self, turn: Turn) -> None:
        """Print everything in ``turn`` that has not been printed yet."""
        for position, block in enumerate(turn.blocks):
            if isinstance(block, TextBlock):
                printed = self._text_printed.get(position, 0)
                if len(block.text) > printed:
                    self._write(block.text[printed:])
                    self._text_printed[position] = len(block.text)
                if block.state is BlockState.OPEN:
                    break
                continue
            if position in self._done:
                continue
            if isinstance(block, ToolInvocationBlock):
                if block.state is BlockState.OPEN:
                    break
                self._print_invocation(block)
            elif isinstance(block, ToolResultBlock):
                self._print_result(block)
            self._done.add(position)

        if not turn.is_open and not self._finished:
            self._finished = True
            if turn.outcome is TurnOutcome.FAILED:
                self._write(f"\nError: {turn.failure}\n", error=True)
            elif turn.outcome is TurnOutcome.CANCELLED:
                self._write("\n(cancelled)\n", error=True)
            self._write("\n")

    def _print_invocation(self, block: ToolInvocationBlock) -> None:
        if block.code is not None:
            self._write(f"\n```python\n{block.code}\n```\n")
        elif block.error:
            self._write(f"\nTool argument error: {block.error}\n", error=True)
        else:
            self._write("\nTool arguments have no 'code' string\n", error=True)

    def _print_result(self, block: ToolResultBlock) -> None:
        if block.text:
            self._write(f"\nOutput:\n{block.text}\n")
        if block.stderr:
            self._write(f"\nError:\n{block.stderr}\n", error=True)
        if block.return_code not in (None, 0):
            self._write(f"(Exit code: {block.return_code})\n", error=True)
        if block.error:
            self._write(f"\nCode execution error: {block.error}\n", error=True)
        if block.files:
            self._write("\nCreated files:\n")
            for artifact in block.files:
                if artifact.error:
                    name = artifact.filename or artifact.file_id
                    self._write(f"  - {name} (ID: {artifact.file_id}): {artifact.error}\n", error=True)
                else:
                    self._write(f"  - {artifact.filename} (ID: {artifact.file_id}) saved to {artifact.path}\n")


async def run_pipe(controller: SessionController, message: str, printer: Optional[PipePrinter] = None) -> int:
    """
    Stream one answer to stdout.

    Returns:
        Process exit code: 0 when the turn completed, 1 otherwise
    """
    printer = printer or PipePrinter()
    handle = controller.start(message)
    try:
        while True:
            await controller.signal.wait(TICK_INTERVAL)
            with controller.transcript.lock:
                printer.update(handle.turn)
                if not handle.turn.is_open:
                    break
        if handle.task is not None:
            try:
                await handle.task
            except asyncio.CancelledError:
                pass
    finally:
        controller.cancel()
        await controller.client.aclose()

    logger.info(f"Pipe mode finished: {handle.turn.outcome.value}")
    return 0 if handle.turn.outcome is TurnOutcome.COMPLETED else 1

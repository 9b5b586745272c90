"""
Core modules for AGNT: transcript model, stream decoding and assembly,
tool coordination and session control.
"""

from agnt.core.assembler import StreamAssembler
from agnt.core.config import Config
from agnt.core.decoder import EventDecoder
from agnt.core.file_store import ArtifactStore
from agnt.core.session import ChangeSignal, SessionController
from agnt.core.tool_coordinator import ToolCoordinator
from agnt.core.transcript import Transcript

__all__ = [
    "StreamAssembler",
    "Config",
    "EventDecoder",
    "ArtifactStore",
    "ChangeSignal",
    "SessionController",
    "ToolCoordinator",
    "Transcript",
]

"""
AGNT - terminal chat client for Claude

Streams answers as they are generated and runs code remotely through
Anthropic's code execution tool, saving the files it produces.
"""

__version__ = "0.3.0"

from agnt.core.config import Config
from agnt.core.session import SessionController
from agnt.core.transcript import Transcript

__all__ = [
    "Config",
    "SessionController",
    "Transcript",
]

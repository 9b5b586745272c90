"""
Stream sources for AGNT.
Provides a unified interface over the Anthropic API and the offline mock.
"""

from agnt.llm.base_client import BaseStreamClient
from agnt.llm.anthropic_client import AnthropicClient
from agnt.llm.mock_client import MockStreamClient

__all__ = [
    "BaseStreamClient",
    "AnthropicClient",
    "MockStreamClient",
]

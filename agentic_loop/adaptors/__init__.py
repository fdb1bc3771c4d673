"""Model adaptors for agentic-loop.

This module provides implementations of ModelAdaptor for various LLM providers.
"""

from agentic_loop.adaptors.openai import OpenAIAdaptor, OpenAIStreamingAdaptor

__all__ = ["OpenAIAdaptor", "OpenAIStreamingAdaptor"]

# Conditional import for the optional SDK-based adaptor
try:
    from agentic_loop.adaptors.anthropic import AnthropicAdaptor

    __all__.append("AnthropicAdaptor")
except ImportError:
    pass

"""Model-completion adapters."""

from taskcore.llm.anthropic_client import AnthropicModelClient

__all__ = ["AnthropicModelClient"]

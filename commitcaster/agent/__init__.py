"""LLM access and prompt text for the two AI stages."""

from commitcaster.agent.llm_client import LLMClient, LLMResponse

__all__ = ["LLMClient", "LLMResponse"]

from pagebot.services.llm.base import LLMError, LLMProvider, LLMResponse
from pagebot.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMError", "LLMProvider", "LLMResponse", "OpenAIProvider"]

from .base import BaseLLMProvider
from .openai import OpenAIProvider
from .anthropic import AnthropicProvider
from .gemini import GeminiProvider
from .vertex import GeminiVertexProvider
from .deepseek import DeepSeekProvider

__all__ = [
    "BaseLLMProvider",
    "OpenAIProvider",
    "AnthropicProvider",
    "GeminiProvider",
    "GeminiVertexProvider",
    "DeepSeekProvider",
]

from .errors import ProviderConfigError, ProviderError
from .gemini_client import GeminiClient
from .llm import LLMRouter
from .ollama_client import OllamaClient

__all__ = ["GeminiClient", "LLMRouter", "OllamaClient", "ProviderConfigError", "ProviderError"]

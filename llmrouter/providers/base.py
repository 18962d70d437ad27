from abc import ABC, abstractmethod
from typing import Dict, Any, List, AsyncIterator, Optional, FrozenSet

from ..errors import EmbeddingNotSupportedError, VendorAPIError
from ..observability import get_logger
from ..types import ChatMessage, CostPerToken, StreamChunk, StreamOptions, TokenUsage

DEFAULT_TEMPERATURE = 0.7


class BaseLLMProvider(ABC):
    """
    Abstract base class for provider adapters.

    Subclasses declare their capability record as class attributes and
    implement `stream` and `convert_messages`. Adapters are immutable after
    construction; the API key is bound in `__init__`.
    """

    name: str = ""
    display_name: str = ""
    models: FrozenSet[str] = frozenset()
    default_model: str = ""
    cost_per_token: CostPerToken = {"input": 0.0, "output": 0.0}
    max_tokens: int = 4096
    supports_functions: bool = False
    supports_vision: bool = False

    def __init__(self, api_key: Optional[str] = None, timeout: Optional[float] = None):
        self.api_key = api_key
        self.timeout = timeout

    @abstractmethod
    def stream(
        self,
        messages: List[ChatMessage],
        options: Optional[StreamOptions] = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream a chat response from the provider.

        Args:
            messages (List[ChatMessage]): Conversation messages.
            options (StreamOptions, optional): Per-request options.

        Yields:
            StreamChunk: Content, thinking, and exactly one terminal chunk.

        Raises:
            VendorAPIError: On any failure opening or reading the vendor stream.
        """

    @abstractmethod
    async def convert_messages(
        self,
        messages: List[ChatMessage],
        options: Optional[StreamOptions] = None,
    ) -> Any:
        """
        Convert messages to the vendor's request shape.
        """

    async def embed(self, text: str) -> List[float]:
        """
        Embed a text. Only adapters with an embeddings endpoint override this.

        Raises:
            EmbeddingNotSupportedError: Always, for the base implementation.
        """
        raise EmbeddingNotSupportedError(
            f"{self.display_name} does not support embeddings. Use OpenAI for embeddings.",
            provider=self.name,
        )

    # ==========================================================================
    # Option resolution
    # ==========================================================================

    def resolve_model(self, options: StreamOptions) -> str:
        return options.get("model") or self.default_model

    def resolve_max_tokens(self, options: StreamOptions) -> int:
        """
        Requested max tokens, clamped at the adapter ceiling.

        Missing, zero and negative values mean "use the ceiling".
        """
        requested = options.get("max_tokens")
        if requested is None or requested <= 0:
            return self.max_tokens
        return min(requested, self.max_tokens)

    @staticmethod
    def resolve_temperature(options: StreamOptions) -> float:
        temperature = options.get("temperature")
        return DEFAULT_TEMPERATURE if temperature is None else temperature

    def get_logger(self, options: StreamOptions) -> Any:
        """The logger threaded through options, or a fresh one bound to this provider."""
        logger = options.get("logger")
        if logger is None:
            logger = get_logger(provider=self.name)
        return logger

    def vendor_error(self, error: Exception) -> VendorAPIError:
        detail = getattr(error, "message", None) or str(error) or type(error).__name__
        return VendorAPIError(f"{self.display_name} API error: {detail}", provider=self.name)

    @staticmethod
    def normalize_usage(
        *,
        prompt_tokens: Optional[int],
        completion_tokens: Optional[int],
        total_tokens: Optional[int] = None,
    ) -> TokenUsage:
        """
        Normalize token usage information across providers.

        Missing counts become 0; the total is computed when the vendor omits it.
        """
        prompt_tokens = prompt_tokens or 0
        completion_tokens = completion_tokens or 0
        if total_tokens is None:
            total_tokens = prompt_tokens + completion_tokens

        return {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": total_tokens,
        }

    @staticmethod
    def terminal_chunk(usage: Optional[TokenUsage] = None) -> StreamChunk:
        chunk: StreamChunk = {"content": "", "done": True}
        if usage is not None:
            chunk["usage"] = usage
        return chunk

    def describe(self) -> Dict[str, Any]:
        """Capability record as a plain dict."""
        return {
            "name": self.name,
            "models": sorted(self.models),
            "cost_per_token": dict(self.cost_per_token),
            "max_tokens": self.max_tokens,
            "supports_functions": self.supports_functions,
            "supports_vision": self.supports_vision,
        }

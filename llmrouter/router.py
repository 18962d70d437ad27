from typing import Optional, Dict, List, AsyncIterator

from .config import Settings, load_settings
from .errors import ModelNotSupportedError, ProviderNotConfiguredError
from .observability import get_logger
from .providers.base import BaseLLMProvider
from .providers.openai import OpenAIProvider
from .providers.anthropic import AnthropicProvider
from .providers.gemini import GeminiProvider
from .providers.vertex import GeminiVertexProvider
from .providers.deepseek import DeepSeekProvider
from .storage import FileStore
from .types import ChatMessage, StreamChunk, StreamOptions

# Alternate names accepted for registry keys
PROVIDER_ALIASES = {
    "claude": "anthropic",
    "gemini": "google",
    "vertex": "google-vertex",
}


class LLMRouter:
    """
    Routes chat requests to a fixed set of provider adapters.

    Providers are registered once at construction from the supplied
    credentials; a provider without credentials is "not configured".
    The registry is read-only afterwards, so one router can serve
    concurrent requests.
    """

    def __init__(
        self,
        openai_api_key: Optional[str] = None,
        anthropic_api_key: Optional[str] = None,
        google_api_key: Optional[str] = None,
        deepseek_api_key: Optional[str] = None,
        vertex_project: Optional[str] = None,
        vertex_location: str = "us-central1",
        vertex_key_file: Optional[str] = None,
        file_store: Optional[FileStore] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize the router with API keys.

        Args:
            openai_api_key: API key for OpenAI.
            anthropic_api_key: API key for Anthropic (Claude).
            google_api_key: API key for the Gemini API.
            deepseek_api_key: API key for DeepSeek.
            vertex_project: Google Cloud project; enables the Vertex AI adapter.
            vertex_location: Vertex AI region.
            vertex_key_file: Service-account key file for Vertex AI.
            file_store: Storage lookup used to resolve Anthropic file ids.
            timeout: Vendor request timeout in seconds.
        """
        providers: Dict[str, BaseLLMProvider] = {}

        if openai_api_key:
            providers["openai"] = OpenAIProvider(api_key=openai_api_key, timeout=timeout)

        if anthropic_api_key:
            providers["anthropic"] = AnthropicProvider(
                api_key=anthropic_api_key,
                timeout=timeout,
                file_store=file_store,
            )

        if google_api_key:
            providers["google"] = GeminiProvider(api_key=google_api_key, timeout=timeout)

        if vertex_project:
            providers["google-vertex"] = GeminiVertexProvider(
                project=vertex_project,
                location=vertex_location,
                key_file=vertex_key_file,
                timeout=timeout,
            )

        if deepseek_api_key:
            providers["deepseek"] = DeepSeekProvider(api_key=deepseek_api_key, timeout=timeout)

        self._providers = providers

    @classmethod
    def from_env(
        cls,
        settings: Optional[Settings] = None,
        file_store: Optional[FileStore] = None,
    ) -> "LLMRouter":
        """Build a router from `.env` / environment settings."""
        settings = settings or load_settings()
        return cls(
            openai_api_key=settings.openai_api_key,
            anthropic_api_key=settings.anthropic_api_key,
            google_api_key=settings.google_api_key,
            deepseek_api_key=settings.deepseek_api_key,
            vertex_project=settings.vertex_project,
            vertex_location=settings.vertex_location,
            vertex_key_file=settings.vertex_key_file,
            file_store=file_store,
            timeout=settings.timeout,
        )

    @staticmethod
    def _normalize_name(provider: str) -> str:
        provider = provider.lower()
        return PROVIDER_ALIASES.get(provider, provider)

    def get_provider(self, provider: str) -> BaseLLMProvider:
        """
        Look up a registered adapter.

        Raises:
            ProviderNotConfiguredError: If no adapter is registered under that name.
        """
        name = self._normalize_name(provider)
        adapter = self._providers.get(name)
        if adapter is None:
            raise ProviderNotConfiguredError(
                f"Provider {provider} not configured or not found", provider=name
            )
        return adapter

    def stream(
        self,
        messages: List[ChatMessage],
        provider: str,
        model: str,
        user_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        options: Optional[StreamOptions] = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream a chat response from the given provider.

        Validation happens here, before any network call. The returned
        iterator is lazy and single-pass: the vendor connection opens on the
        first pull, and calling `stream` again opens an independent one.

        Args:
            messages (List[ChatMessage]): Conversation messages.
            provider (str): Registry key (aliases like 'claude' accepted).
            model (str): Model identifier; must belong to the provider.
            user_id (str, optional): Requesting user, used for file ownership checks.
            conversation_id (str, optional): Bound into log events.
            options (StreamOptions, optional): Per-request options.

        Returns:
            AsyncIterator[StreamChunk]: Chunks ending with exactly one `done=True`.

        Raises:
            ProviderNotConfiguredError: Unknown or unconfigured provider.
            ModelNotSupportedError: Model not offered by the provider.
        """
        adapter = self.get_provider(provider)

        if model not in adapter.models:
            raise ModelNotSupportedError(
                f"Model {model} not supported by provider {adapter.name}",
                model=model,
                provider=adapter.name,
            )

        merged: StreamOptions = dict(options or {})
        merged["model"] = model
        if user_id is not None:
            merged["user_id"] = user_id
        if conversation_id is not None:
            merged["conversation_id"] = conversation_id

        logger = merged.get("logger") or get_logger()
        merged["logger"] = logger.bind(
            provider=adapter.name,
            model=model,
            conversation_id=conversation_id,
            user_id=user_id,
        )

        return adapter.stream(messages, merged)

    async def embed(self, text: str, provider: str = "openai") -> List[float]:
        """
        Embed a text.

        Raises:
            ProviderNotConfiguredError: Unknown or unconfigured provider.
            EmbeddingNotSupportedError: Provider has no embeddings endpoint.
        """
        return await self.get_provider(provider).embed(text)

    def calculate_cost(self, provider: str, input_tokens: int, output_tokens: int) -> float:
        """
        Linear cost in cents from the provider's per-1K-token rates.
        """
        cost = self.get_provider(provider).cost_per_token
        input_cost = (input_tokens / 1000) * cost["input"]
        output_cost = (output_tokens / 1000) * cost["output"]
        return input_cost + output_cost

    def get_available_providers(self) -> List[str]:
        return list(self._providers.keys())

    def get_provider_models(self, provider: str) -> List[str]:
        """Models of a provider, or an empty list if it is not configured."""
        adapter = self._providers.get(self._normalize_name(provider))
        return sorted(adapter.models) if adapter else []

import time
from typing import Dict, Any, List, AsyncIterator, Optional

import httpx
from openai import APIError

from .base import BaseLLMProvider
from .openai import OpenAIProvider
from ..types import ChatMessage, StreamChunk, StreamOptions

DEFAULT_BASE_URL = "https://api.deepseek.com"

UNSUPPORTED_CONTENT = "[Image content - not supported by DeepSeek R1]"

# Model names accepted by the router that the vendor knows under another id
VENDOR_MODEL_IDS = {"deepseek-r1": "deepseek-reasoner"}


def _extra_field(obj: Any, field: str) -> Optional[str]:
    value = getattr(obj, field, None)
    if value is None:
        value = (getattr(obj, "model_extra", None) or {}).get(field)
    return value or None


def extract_reasoning(choice: Any) -> Optional[str]:
    """
    Reasoning text of one streamed choice.

    DeepSeek has been observed sending `reasoning_content` both inside the
    delta and directly on the choice; both are checked, delta first. The
    field is not part of the OpenAI schema, so it may only be present in
    the SDK model's extra fields.
    """
    delta = getattr(choice, "delta", None)
    if delta is not None:
        reasoning = _extra_field(delta, "reasoning_content")
        if reasoning:
            return reasoning
    return _extra_field(choice, "reasoning_content")


class DeepSeekProvider(OpenAIProvider):
    """
    Provider for DeepSeek R1 through its OpenAI-compatible API.

    Reuses the OpenAI client with DeepSeek's base URL. Reasoning tokens are
    streamed as thinking chunks, separately from the answer. The model is
    text-only.
    """

    name = "deepseek"
    display_name = "DeepSeek"
    models = frozenset({"deepseek-r1", "deepseek-reasoner"})
    default_model = "deepseek-reasoner"
    cost_per_token = {"input": 0.014, "output": 0.28}
    max_tokens = 64000
    supports_functions = False
    supports_vision = False

    def __init__(
        self,
        api_key: Optional[str],
        timeout: Optional[float] = None,
        base_url: str = DEFAULT_BASE_URL,
    ):
        super().__init__(api_key, timeout=timeout, base_url=base_url)

    def _client_timeout(self) -> httpx.Timeout:
        # R1 can think for a long time before the first token
        read_timeout = self.timeout if self.timeout is not None else 60.0
        return httpx.Timeout(read_timeout, connect=10.0)

    def resolve_model(self, options: StreamOptions) -> str:
        model = super().resolve_model(options)
        return VENDOR_MODEL_IDS.get(model, model)

    async def stream(
        self,
        messages: List[ChatMessage],
        options: Optional[StreamOptions] = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream a chat response from DeepSeek.

        The terminal chunk follows the end of the vendor stream, or the
        first event carrying a finish reason and no content or reasoning.

        Args:
            messages (List[ChatMessage]): Conversation messages.
            options (StreamOptions, optional): Per-request options.

        Yields:
            StreamChunk: Thinking/content chunks, then one terminal chunk.
        """
        options = options or {}
        log = self.get_logger(options)
        if options.get("functions"):
            log.warning("functions_ignored", reason="DeepSeek R1 does not support function calling")

        converted_messages = await self.convert_messages(messages, options)
        request_kwargs = self._request_kwargs(converted_messages, options)

        log.info("stream_start", model=request_kwargs["model"], max_tokens=request_kwargs["max_tokens"])

        start = time.perf_counter()
        content_chunks = 0
        thinking_chunks = 0
        usage = None

        stream = await self._open_stream(request_kwargs, log)

        try:
            async for chunk in stream:
                usage = self._usage_of(chunk) or usage

                if not chunk.choices:
                    continue
                choice = chunk.choices[0]

                reasoning = extract_reasoning(choice)
                content = choice.delta.content if choice.delta else None

                if reasoning:
                    thinking_chunks += 1
                    yield {"content": "", "done": False, "thinking": reasoning, "is_thinking": True}
                if content:
                    content_chunks += 1
                    yield {"content": content, "done": False}

                if choice.finish_reason and not reasoning and not content:
                    break
        except (APIError, httpx.HTTPError) as e:
            log.error("vendor_error", error=str(e), chunks=content_chunks)
            raise self.vendor_error(e) from e
        finally:
            await stream.close()

        log.info(
            "stream_complete",
            chunks=content_chunks,
            thinking_chunks=thinking_chunks,
            usage=usage,
            latency_ms=(time.perf_counter() - start) * 1000.0,
        )
        yield self.terminal_chunk(usage)

    async def convert_messages(
        self,
        messages: List[ChatMessage],
        options: Optional[StreamOptions] = None,
    ) -> List[Dict[str, str]]:
        """
        Flatten each message to a single text blob.

        Text parts are kept, extracted PDF text is kept, every other part
        becomes a placeholder. System messages stay inline.
        """
        converted = []
        for msg in messages:
            content = msg.get("content", "")
            if not isinstance(content, str):
                pieces = []
                for part in content:
                    match part.get("type"):
                        case "text":
                            pieces.append(part.get("text", ""))
                        case "pdf":
                            pieces.append(part.get("extracted_text", ""))
                        case _:
                            pieces.append(UNSUPPORTED_CONTENT)
                content = "\n".join(pieces)
            converted.append({"role": msg.get("role", "user"), "content": content})
        return converted

    async def embed(self, text: str) -> List[float]:
        # DeepSeek has no embeddings endpoint
        return await BaseLLMProvider.embed(self, text)

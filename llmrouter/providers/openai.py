import time
from typing import Dict, Any, List, AsyncIterator, Optional, Union

import httpx
from openai import AsyncOpenAI, AsyncStream, APIError

from .base import BaseLLMProvider
from ..types import ChatMessage, ContentPart, StreamChunk, StreamOptions, TokenUsage
from ..utils import image_data_uri

EMBEDDING_MODEL = "text-embedding-3-small"

# Finish reasons that end generation normally
TERMINAL_FINISH_REASONS = ("stop", "length")


class OpenAIProvider(BaseLLMProvider):
    """
    Provider for the OpenAI Chat Completions API (GPT-4o mini).
    """

    name = "openai"
    display_name = "OpenAI"
    models = frozenset({"gpt-4o-mini", "gpt-4o"})
    default_model = "gpt-4o-mini"
    cost_per_token = {"input": 0.015, "output": 0.06}
    max_tokens = 16384
    supports_functions = True
    supports_vision = True

    def __init__(
        self,
        api_key: Optional[str],
        timeout: Optional[float] = None,
        base_url: Optional[str] = None,
    ):
        super().__init__(api_key, timeout)
        client_kwargs: Dict[str, Any] = {"api_key": api_key, "base_url": base_url}
        client_timeout = self._client_timeout()
        if client_timeout is not None:
            client_kwargs["timeout"] = client_timeout
        self.client = AsyncOpenAI(**client_kwargs) if api_key else None

    def _client_timeout(self) -> Optional[Union[float, httpx.Timeout]]:
        return self.timeout

    def _request_kwargs(
        self,
        converted_messages: List[Dict[str, Any]],
        options: StreamOptions,
    ) -> Dict[str, Any]:
        request_kwargs: Dict[str, Any] = {
            "model": self.resolve_model(options),
            "messages": converted_messages,
            "max_tokens": self.resolve_max_tokens(options),
            "temperature": self.resolve_temperature(options),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if options.get("functions") and self.supports_functions:
            request_kwargs["tools"] = options["functions"]
        return request_kwargs

    async def _open_stream(self, request_kwargs: Dict[str, Any], log: Any) -> AsyncStream:
        if not self.client:
            raise self.vendor_error(RuntimeError("client not configured"))
        try:
            return await self.client.chat.completions.create(**request_kwargs)
        except (APIError, httpx.HTTPError) as e:
            log.error("vendor_error", error=str(e))
            raise self.vendor_error(e) from e

    def _usage_of(self, chunk: Any) -> Optional[TokenUsage]:
        if getattr(chunk, "usage", None) is None:
            return None
        return self.normalize_usage(
            prompt_tokens=chunk.usage.prompt_tokens,
            completion_tokens=chunk.usage.completion_tokens,
            total_tokens=chunk.usage.total_tokens,
        )

    async def stream(
        self,
        messages: List[ChatMessage],
        options: Optional[StreamOptions] = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream a chat response using the OpenAI Chat Completions API.

        Content deltas are yielded as they arrive. Usage is requested with
        `stream_options.include_usage` and arrives on a trailing chunk after
        the finish reason, so it is attached to the terminal chunk.

        Args:
            messages (List[ChatMessage]): Conversation messages.
            options (StreamOptions, optional): Per-request options.

        Yields:
            StreamChunk: Content chunks, then one terminal chunk.
        """
        options = options or {}
        log = self.get_logger(options)
        converted_messages = await self.convert_messages(messages, options)
        request_kwargs = self._request_kwargs(converted_messages, options)

        log.info(
            "stream_start",
            model=request_kwargs["model"],
            max_tokens=request_kwargs["max_tokens"],
        )

        start = time.perf_counter()
        chunk_count = 0
        usage = None
        finish_reason = None

        stream = await self._open_stream(request_kwargs, log)

        try:
            async for chunk in stream:
                usage = self._usage_of(chunk) or usage

                if not chunk.choices:
                    continue

                choice = chunk.choices[0]
                content = choice.delta.content if choice.delta else None
                if content:
                    chunk_count += 1
                    yield {"content": content, "done": False}

                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        except (APIError, httpx.HTTPError) as e:
            log.error("vendor_error", error=str(e), chunks=chunk_count)
            raise self.vendor_error(e) from e
        finally:
            await stream.close()

        if finish_reason not in TERMINAL_FINISH_REASONS:
            log.warning("stream_unexpected_finish", finish_reason=finish_reason)

        log.info(
            "stream_complete",
            chunks=chunk_count,
            finish_reason=finish_reason,
            usage=usage,
            latency_ms=(time.perf_counter() - start) * 1000.0,
        )
        yield self.terminal_chunk(usage)

    async def convert_messages(
        self,
        messages: List[ChatMessage],
        options: Optional[StreamOptions] = None,
    ) -> List[Dict[str, Any]]:
        """
        Convert messages to OpenAI's format.

        System messages stay inline. Content part lists map one-to-one and
        keep their order; parts OpenAI cannot take become empty text parts.

        Args:
            messages (List[ChatMessage]): Internal message list.

        Returns:
            List[Dict]: OpenAI-compatible message list.
        """
        converted = []
        for msg in messages:
            role = msg.get("role", "user")
            content = msg.get("content", "")

            if isinstance(content, str):
                converted.append({"role": role, "content": content})
            else:
                converted.append({
                    "role": role,
                    "content": [self._convert_part(part) for part in content],
                })

        return converted

    @staticmethod
    def _convert_part(part: ContentPart) -> Dict[str, Any]:
        match part.get("type"):
            case "text":
                return {"type": "text", "text": part.get("text", "")}
            case "image":
                image = part.get("image", {})
                # Remote URLs are fetched by OpenAI itself
                url = image.get("url") or image_data_uri(image)
                if url:
                    return {"type": "image_url", "image_url": {"url": url}}
            case "file_id":
                return {"type": "file", "file": {"file_id": part.get("file_id", "")}}
            case "pdf":
                return {"type": "text", "text": part.get("extracted_text", "")}
        return {"type": "text", "text": ""}

    async def embed(self, text: str) -> List[float]:
        """
        Embed a text with `text-embedding-3-small`.

        Raises:
            VendorAPIError: If the embeddings call fails.
        """
        if not self.client:
            raise self.vendor_error(RuntimeError("client not configured"))

        try:
            response = await self.client.embeddings.create(model=EMBEDDING_MODEL, input=text)
        except (APIError, httpx.HTTPError) as e:
            raise self.vendor_error(e) from e

        return list(response.data[0].embedding)

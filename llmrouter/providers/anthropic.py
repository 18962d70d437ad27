import base64
import time
from typing import Dict, Any, List, AsyncIterator, Optional, Tuple

import httpx
from anthropic import AsyncAnthropic, APIError

from .base import BaseLLMProvider
from ..errors import AttachmentResolutionError
from ..storage import FileStore
from ..types import ChatMessage, ContentPart, StreamChunk, StreamOptions, ToolDefinition
from ..utils import resolve_image_to_base64, message_text

FILES_BETA_HEADER = "files-api-2025-04-14"

IMAGE_UNAVAILABLE = "[Image could not be loaded]"
FILE_URI_UNAVAILABLE = "[PDF file content - not available for Claude 3.5 Haiku]"
PDF_UNAVAILABLE = "[PDF file could not be loaded]"


class AnthropicProvider(BaseLLMProvider):
    """
    Provider for the Anthropic Messages API (Claude Haiku).

    Vendor file ids are resolved through a `FileStore`: the stored PDF is
    downloaded and sent inline as a base64 document block.
    """

    name = "anthropic"
    display_name = "Claude"
    models = frozenset({"claude-3-haiku-20240307", "claude-3-5-haiku-20241022"})
    default_model = "claude-3-5-haiku-20241022"
    cost_per_token = {"input": 0.08, "output": 0.40}
    max_tokens = 8192
    supports_functions = True
    supports_vision = True

    def __init__(
        self,
        api_key: Optional[str],
        timeout: Optional[float] = None,
        file_store: Optional[FileStore] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key, timeout)
        client_kwargs: Dict[str, Any] = {"api_key": api_key}
        if timeout is not None:
            client_kwargs["timeout"] = timeout
        self.client = AsyncAnthropic(**client_kwargs) if api_key else None
        self.file_store = file_store
        self.http_transport = http_transport

    async def stream(
        self,
        messages: List[ChatMessage],
        options: Optional[StreamOptions] = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream a chat response from Claude.

        Text deltas become content chunks and thinking deltas become
        thinking chunks. The terminal chunk is emitted on `message_stop`
        with the usage reported by `message_start` and `message_delta`.

        Args:
            messages (List[ChatMessage]): Conversation messages.
            options (StreamOptions, optional): Per-request options.

        Yields:
            StreamChunk: Content/thinking chunks, then one terminal chunk.
        """
        options = options or {}
        if not self.client:
            raise self.vendor_error(RuntimeError("client not configured"))

        log = self.get_logger(options)
        system_text, converted_messages = await self.convert_messages(messages, options)

        request_kwargs: Dict[str, Any] = {
            "model": self.resolve_model(options),
            "messages": converted_messages,
            "max_tokens": self.resolve_max_tokens(options),
            "temperature": self.resolve_temperature(options),
        }
        if system_text:
            request_kwargs["system"] = system_text
        if options.get("functions"):
            request_kwargs["tools"] = self._convert_tools(options["functions"])
        if self.has_document_blocks(converted_messages):
            request_kwargs["extra_headers"] = {"anthropic-beta": FILES_BETA_HEADER}

        log.info(
            "stream_start",
            model=request_kwargs["model"],
            max_tokens=request_kwargs["max_tokens"],
            files_beta="extra_headers" in request_kwargs,
        )

        start = time.perf_counter()
        chunk_count = 0
        input_tokens = output_tokens = None

        try:
            async with self.client.messages.stream(**request_kwargs) as stream:
                async for event in stream:
                    if event.type == "message_start":
                        usage = getattr(event.message, "usage", None)
                        if usage is not None:
                            input_tokens = usage.input_tokens
                            output_tokens = usage.output_tokens
                    elif event.type == "content_block_delta":
                        delta_type = getattr(event.delta, "type", None)
                        if delta_type == "text_delta" and event.delta.text:
                            chunk_count += 1
                            yield {"content": event.delta.text, "done": False}
                        elif delta_type == "thinking_delta" and event.delta.thinking:
                            yield {
                                "content": "",
                                "done": False,
                                "thinking": event.delta.thinking,
                                "is_thinking": True,
                            }
                    elif event.type == "message_delta":
                        usage = getattr(event, "usage", None)
                        if usage is not None:
                            output_tokens = usage.output_tokens
                    elif event.type == "message_stop":
                        usage = None
                        if input_tokens is not None or output_tokens is not None:
                            usage = self.normalize_usage(
                                prompt_tokens=input_tokens,
                                completion_tokens=output_tokens,
                            )
                        log.info(
                            "stream_complete",
                            chunks=chunk_count,
                            usage=usage,
                            latency_ms=(time.perf_counter() - start) * 1000.0,
                        )
                        yield self.terminal_chunk(usage)
                        return
        except (APIError, httpx.HTTPError) as e:
            log.error("vendor_error", error=str(e), chunks=chunk_count)
            raise self.vendor_error(e) from e

        log.warning("stream_ended_without_message_stop", chunks=chunk_count)
        yield self.terminal_chunk()

    async def convert_messages(
        self,
        messages: List[ChatMessage],
        options: Optional[StreamOptions] = None,
    ) -> Tuple[Optional[str], List[Dict[str, Any]]]:
        """
        Convert messages to Claude format.

        System messages are pulled out into the separate `system` parameter.
        Remote images are downloaded and sent as base64, and vendor file ids
        are resolved through the file store. Any attachment that cannot be
        resolved is replaced with a placeholder text block.

        Args:
            messages (List[ChatMessage]): Internal message list.
            options (StreamOptions, optional): Supplies `user_id` for file
                ownership checks and the logger.

        Returns:
            Tuple containing:
            - system_text: Extracted system prompt string (or None)
            - converted: List of message dicts suitable for the API
        """
        options = options or {}
        log = self.get_logger(options)
        system_parts = []
        converted = []

        for msg in messages:
            role = msg.get("role", "user")
            content = msg.get("content", "")

            if role == "system":
                system_parts.append(message_text(content))
                continue

            if isinstance(content, str):
                converted.append({"role": role, "content": content})
                continue

            claude_content = []
            for part in content:
                try:
                    block = await self._convert_part(part, options.get("user_id"))
                except AttachmentResolutionError as e:
                    log.warning("attachment_degraded", part_type=part.get("type"), error=str(e))
                    block = {"type": "text", "text": self._placeholder_for(part)}
                if block is not None:
                    claude_content.append(block)

            if claude_content:
                converted.append({"role": role, "content": claude_content})

        system_text = "\n\n".join(system_parts) if system_parts else None
        return system_text, converted

    async def _convert_part(
        self,
        part: ContentPart,
        user_id: Optional[str],
    ) -> Optional[Dict[str, Any]]:
        match part.get("type"):
            case "text":
                return {"type": "text", "text": part.get("text", "")}
            case "image":
                b64_data, media_type = await self._resolve_image(part.get("image", {}))
                return {
                    "type": "image",
                    "source": {"type": "base64", "media_type": media_type, "data": b64_data},
                }
            case "file_uri":
                return {"type": "text", "text": FILE_URI_UNAVAILABLE}
            case "file_id":
                data = await self._download_file(part.get("file_id", ""), user_id)
                return {
                    "type": "document",
                    "source": {
                        "type": "base64",
                        "media_type": "application/pdf",
                        "data": base64.b64encode(data).decode("utf-8"),
                    },
                }
            case "pdf":
                return {"type": "text", "text": part.get("extracted_text", "")}
        return None

    async def _resolve_image(self, image: Dict[str, Any]) -> Tuple[str, str]:
        if image.get("base64"):
            return image["base64"], image.get("mime_type") or "image/jpeg"

        url = image.get("url")
        if not url:
            raise AttachmentResolutionError("Image part has neither url nor base64", provider=self.name)
        try:
            return await resolve_image_to_base64(url, transport=self.http_transport)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            raise AttachmentResolutionError(f"Failed to fetch image {url}: {e}", provider=self.name) from e

    async def _download_file(self, vendor_id: str, user_id: Optional[str]) -> bytes:
        """
        Resolve an Anthropic file id to the stored PDF bytes.

        Ownership is checked when a user id is supplied.
        """
        if self.file_store is None:
            raise AttachmentResolutionError("No file store configured", provider=self.name)

        try:
            stored = await self.file_store.lookup_file_by_vendor_id(vendor_id)
        except Exception as e:
            raise AttachmentResolutionError(f"Lookup failed for {vendor_id}: {e}", provider=self.name) from e

        if not stored:
            raise AttachmentResolutionError(f"File {vendor_id} not found", provider=self.name)
        if user_id is not None and stored.get("owning_user_id") != user_id:
            raise AttachmentResolutionError(f"File {vendor_id} is not owned by the requesting user", provider=self.name)

        try:
            return await self.file_store.download(stored["storage_path"])
        except Exception as e:
            raise AttachmentResolutionError(f"Download failed for {vendor_id}: {e}", provider=self.name) from e

    @staticmethod
    def _placeholder_for(part: ContentPart) -> str:
        if part.get("type") == "image":
            return IMAGE_UNAVAILABLE
        return PDF_UNAVAILABLE

    @staticmethod
    def has_document_blocks(converted_messages: List[Dict[str, Any]]) -> bool:
        """True if any converted message carries a document block."""
        for msg in converted_messages:
            content = msg.get("content")
            if isinstance(content, list) and any(block.get("type") == "document" for block in content):
                return True
        return False

    @staticmethod
    def _convert_tools(tools: List[ToolDefinition]) -> List[Dict[str, Any]]:
        """
        Convert OpenAI-format tools to Claude format.

        Claude uses 'input_schema' instead of 'parameters'.
        """
        claude_tools = []
        for tool in tools:
            func = tool.get("function", {})
            claude_tools.append({
                "name": func.get("name", ""),
                "description": func.get("description", ""),
                "input_schema": func.get("parameters", {"type": "object", "properties": {}}),
            })
        return claude_tools

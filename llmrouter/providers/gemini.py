import base64
import binascii
import time
from contextlib import aclosing
from typing import Dict, Any, List, AsyncIterator, Optional, Tuple

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from .base import BaseLLMProvider
from ..errors import SearchGroundingUnsupportedError
from ..types import ChatMessage, ContentPart, StreamChunk, StreamOptions, ToolDefinition
from ..utils import message_text

GROUNDING_NOTICE = (
    "*Web search is not available with the current API key, "
    "so this answer was generated without live search results.*\n\n"
)

# Fragments of the vendor message that identify a rejected grounding tool.
# The vendor does not expose a dedicated error code for this case.
GROUNDING_ERROR_MARKERS = ("search grounding", "google_search", "google search")

# Models that only return thought parts when asked to
THINKING_MODEL_PREFIX = "gemini-2.5"


def is_grounding_unsupported(error: Exception) -> bool:
    """
    Classify a google-genai error as "search grounding not supported".

    Only 400/403 client errors qualify; the message is then checked for
    grounding markers.
    """
    if not isinstance(error, genai_errors.ClientError):
        return False
    if error.code not in (400, 403):
        return False
    message = (error.message or "").lower()
    return any(marker in message for marker in GROUNDING_ERROR_MARKERS)


class GeminiProvider(BaseLLMProvider):
    """
    Provider for the Google Gemini API (google-genai SDK, API key auth).

    Supports optional Google Search grounding. When the key has no
    grounding access the request is retried once without the tool and the
    answer is prefixed with a notice.
    """

    name = "google"
    display_name = "Gemini"
    models = frozenset({"gemini-2.0-flash-exp", "gemini-2.5-flash", "gemini-2.5-flash-preview-05-20"})
    default_model = "gemini-2.5-flash-preview-05-20"
    cost_per_token = {"input": 0.0075, "output": 0.03}
    max_tokens = 65536
    supports_functions = True
    supports_vision = True

    def __init__(self, api_key: Optional[str], timeout: Optional[float] = None):
        super().__init__(api_key, timeout)
        self.client = self._build_client()

    def _build_client(self) -> Optional[genai.Client]:
        if not self.api_key:
            return None
        return genai.Client(api_key=self.api_key, http_options=self._http_options())

    def _http_options(self) -> Optional[types.HttpOptions]:
        if self.timeout is None:
            return None
        # google-genai takes the timeout in milliseconds
        return types.HttpOptions(timeout=int(self.timeout * 1000))

    def _search_tool(self) -> types.Tool:
        return types.Tool(google_search=types.GoogleSearch())

    async def stream(
        self,
        messages: List[ChatMessage],
        options: Optional[StreamOptions] = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream a chat response from Gemini.

        Args:
            messages (List[ChatMessage]): Conversation messages.
            options (StreamOptions, optional): Per-request options; `web_search`
                enables grounding.

        Yields:
            StreamChunk: Content/thinking chunks, then one terminal chunk.
        """
        options = options or {}
        if not self.client:
            raise self.vendor_error(RuntimeError("client not configured"))

        log = self.get_logger(options)
        system_instruction, contents = await self.convert_messages(messages, options)
        model = self.resolve_model(options)
        web_search = bool(options.get("web_search"))

        log.info(
            "stream_start",
            model=model,
            max_tokens=self.resolve_max_tokens(options),
            web_search=web_search,
        )

        if web_search:
            try:
                async with aclosing(
                    self._stream_contents(model, contents, system_instruction, options, log, web_search=True)
                ) as chunks:
                    async for chunk in chunks:
                        yield chunk
                return
            except SearchGroundingUnsupportedError as e:
                log.warning("search_grounding_fallback", error=str(e))
            yield {"content": GROUNDING_NOTICE, "done": False}

        async with aclosing(
            self._stream_contents(model, contents, system_instruction, options, log, web_search=False)
        ) as chunks:
            async for chunk in chunks:
                yield chunk

    async def _stream_contents(
        self,
        model: str,
        contents: List[types.Content],
        system_instruction: Optional[str],
        options: StreamOptions,
        log: Any,
        *,
        web_search: bool,
    ) -> AsyncIterator[StreamChunk]:
        """
        One vendor streaming call.

        Raises SearchGroundingUnsupportedError only if grounding was requested
        and nothing has been yielded yet, so the caller can safely retry.
        """
        config = self._build_config(model, options, system_instruction, web_search)

        start = time.perf_counter()
        chunk_count = 0
        total_chars = 0
        usage = None
        grounding = None

        try:
            stream = await self.client.aio.models.generate_content_stream(
                model=model,
                contents=contents,
                config=config,
            )
            async with aclosing(stream):
                async for chunk in stream:
                    if chunk.usage_metadata:
                        um = chunk.usage_metadata
                        usage = self.normalize_usage(
                            prompt_tokens=um.prompt_token_count,
                            completion_tokens=um.candidates_token_count,
                            total_tokens=um.total_token_count,
                        )

                    candidate = chunk.candidates[0] if chunk.candidates else None
                    if candidate is None:
                        continue
                    if candidate.grounding_metadata:
                        grounding = candidate.grounding_metadata
                    if not candidate.content or not candidate.content.parts:
                        continue

                    for part in candidate.content.parts:
                        if not part.text:
                            continue
                        chunk_count += 1
                        if part.thought:
                            yield {"content": "", "done": False, "thinking": part.text, "is_thinking": True}
                        else:
                            total_chars += len(part.text)
                            yield {"content": part.text, "done": False}
        except genai_errors.APIError as e:
            if web_search and chunk_count == 0 and is_grounding_unsupported(e):
                raise SearchGroundingUnsupportedError(
                    f"{self.display_name} API error: {e.message}", provider=self.name
                ) from e
            log.error("vendor_error", error=str(e), chunks=chunk_count)
            raise self.vendor_error(e) from e
        except httpx.HTTPError as e:
            log.error("vendor_error", error=str(e), chunks=chunk_count)
            raise self.vendor_error(e) from e

        if grounding is not None:
            log.info(
                "search_grounding",
                queries=grounding.web_search_queries,
                sources=len(grounding.grounding_chunks or []),
            )
        log.info(
            "stream_complete",
            chunks=chunk_count,
            characters=total_chars,
            usage=usage,
            latency_ms=(time.perf_counter() - start) * 1000.0,
        )
        yield self.terminal_chunk(usage)

    def _build_config(
        self,
        model: str,
        options: StreamOptions,
        system_instruction: Optional[str],
        web_search: bool,
    ) -> types.GenerateContentConfig:
        config_kwargs: Dict[str, Any] = {
            "temperature": self.resolve_temperature(options),
            "max_output_tokens": self.resolve_max_tokens(options),
            "candidate_count": 1,
        }
        if system_instruction:
            config_kwargs["system_instruction"] = system_instruction
        if model.startswith(THINKING_MODEL_PREFIX):
            config_kwargs["thinking_config"] = types.ThinkingConfig(include_thoughts=True)

        tools = []
        if web_search:
            tools.append(self._search_tool())
        if options.get("functions"):
            tools.extend(self._convert_tools(options["functions"]))
        if tools:
            config_kwargs["tools"] = tools

        return types.GenerateContentConfig(**config_kwargs)

    async def convert_messages(
        self,
        messages: List[ChatMessage],
        options: Optional[StreamOptions] = None,
    ) -> Tuple[Optional[str], List[types.Content]]:
        """
        Convert messages to Gemini contents.

        System messages become the `system_instruction` of the request
        config; "assistant" maps to the "model" role.
        """
        system_parts = []
        contents = []

        for msg in messages:
            role = msg.get("role", "user")
            content = msg.get("content", "")

            if role == "system":
                system_parts.append(message_text(content))
                continue

            gemini_role = "model" if role == "assistant" else "user"

            if isinstance(content, str):
                parts = [{"text": content}]
            else:
                parts = [self._convert_part(part) for part in content]

            if parts:
                contents.append(types.Content(role=gemini_role, parts=parts))

        system_instruction = "\n\n".join(system_parts) if system_parts else None
        return system_instruction, contents

    @staticmethod
    def _convert_part(part: ContentPart) -> Dict[str, Any]:
        match part.get("type"):
            case "text":
                return {"text": part.get("text", "")}
            case "image":
                image = part.get("image", {})
                if image.get("base64"):
                    try:
                        data = base64.b64decode(image["base64"])
                    except (binascii.Error, ValueError):
                        return {"text": ""}
                    return {
                        "inline_data": {
                            "mime_type": image.get("mime_type") or "image/jpeg",
                            "data": data,
                        }
                    }
            case "file_uri":
                return {
                    "file_data": {
                        "file_uri": part.get("file_uri", ""),
                        "mime_type": part.get("mime_type") or "application/pdf",
                    }
                }
            case "pdf":
                return {"text": part.get("extracted_text", "")}
        return {"text": ""}

    @staticmethod
    def _convert_tools(tools: List[ToolDefinition]) -> List[types.Tool]:
        """
        Convert OpenAI-format tools to Gemini function declarations.
        """
        function_declarations = []
        for tool in tools:
            func = tool.get("function", {})
            function_declarations.append(types.FunctionDeclaration(
                name=func.get("name", ""),
                description=func.get("description", ""),
                parameters_json_schema=func.get("parameters"),
            ))
        return [types.Tool(function_declarations=function_declarations)]

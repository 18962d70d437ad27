import base64
import httpx
import openai
import anthropic
import pytest
from types import SimpleNamespace
from unittest.mock import MagicMock, AsyncMock, patch

from llmrouter.errors import EmbeddingNotSupportedError, VendorAPIError
from llmrouter.storage import FileStore
from llmrouter.providers.openai import OpenAIProvider
from llmrouter.providers.anthropic import (
    AnthropicProvider,
    FILES_BETA_HEADER,
    FILE_URI_UNAVAILABLE,
    IMAGE_UNAVAILABLE,
    PDF_UNAVAILABLE,
)


class TestOpenAIProvider:

    @pytest.mark.asyncio
    @patch("llmrouter.providers.openai.AsyncOpenAI")
    async def test_convert_messages_text(self, mock_openai_cls):
        provider = OpenAIProvider(api_key="fake-key")

        messages = [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "hello"},
        ]
        converted = await provider.convert_messages(messages)

        # System stays inline
        assert converted == [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "hello"},
        ]

    @pytest.mark.asyncio
    @patch("llmrouter.providers.openai.AsyncOpenAI")
    async def test_convert_parts_preserves_order(self, mock_openai_cls):
        provider = OpenAIProvider(api_key="fake-key")

        messages = [{
            "role": "user",
            "content": [
                {"type": "text", "text": "compare"},
                {"type": "image", "image": {"base64": "AAAA", "mime_type": "image/png"}},
                {"type": "image", "image": {"url": "https://example.com/cat.jpg"}},
                {"type": "file_uri", "file_uri": "gs://bucket/doc.pdf", "mime_type": "application/pdf"},
                {"type": "file_id", "file_id": "file-123", "mime_type": "application/pdf"},
                {"type": "pdf", "extracted_text": "page one"},
                {"type": "mystery"},
            ],
        }]
        converted = await provider.convert_messages(messages)

        assert converted[0]["content"] == [
            {"type": "text", "text": "compare"},
            {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}},
            {"type": "image_url", "image_url": {"url": "https://example.com/cat.jpg"}},
            {"type": "text", "text": ""},
            {"type": "file", "file": {"file_id": "file-123"}},
            {"type": "text", "text": "page one"},
            {"type": "text", "text": ""},
        ]

    @pytest.mark.asyncio
    @patch("llmrouter.providers.openai.AsyncOpenAI")
    async def test_stream_single_terminal_chunk(self, mock_openai_cls, fake_stream, make_openai_chunk, drain):
        client_mock = MagicMock()
        mock_openai_cls.return_value = client_mock
        stream = fake_stream([
            make_openai_chunk(content="Hel"),
            make_openai_chunk(content=""),
            make_openai_chunk(content="lo"),
            make_openai_chunk(finish_reason="length"),
        ])
        client_mock.chat.completions.create = AsyncMock(return_value=stream)

        provider = OpenAIProvider(api_key="fake-key")
        chunks = await drain(provider.stream([{"role": "user", "content": "hi"}], {"max_tokens": 999999}))

        assert chunks == [
            {"content": "Hel", "done": False},
            {"content": "lo", "done": False},
            {"content": "", "done": True},
        ]
        assert stream.closed

        kwargs = client_mock.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        # Clamped at the adapter ceiling
        assert kwargs["max_tokens"] == 16384
        assert kwargs["temperature"] == 0.7
        assert kwargs["stream"] is True
        assert kwargs["stream_options"] == {"include_usage": True}

    @pytest.mark.asyncio
    @patch("llmrouter.providers.openai.AsyncOpenAI")
    async def test_stream_passes_options(self, mock_openai_cls, fake_stream, make_openai_chunk, drain):
        client_mock = MagicMock()
        mock_openai_cls.return_value = client_mock
        client_mock.chat.completions.create = AsyncMock(
            return_value=fake_stream([make_openai_chunk(finish_reason="stop")])
        )
        tools = [{"type": "function", "function": {"name": "web_search", "parameters": {}}}]

        provider = OpenAIProvider(api_key="fake-key")
        await drain(provider.stream(
            [{"role": "user", "content": "hi"}],
            {"model": "gpt-4o", "max_tokens": 200, "temperature": 0, "functions": tools},
        ))

        kwargs = client_mock.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["max_tokens"] == 200
        # An explicit zero temperature is kept
        assert kwargs["temperature"] == 0
        assert kwargs["tools"] == tools

    @pytest.mark.asyncio
    @patch("llmrouter.providers.openai.AsyncOpenAI")
    async def test_open_failure_wrapped(self, mock_openai_cls, drain):
        client_mock = MagicMock()
        mock_openai_cls.return_value = client_mock
        client_mock.chat.completions.create = AsyncMock(
            side_effect=openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1"))
        )

        provider = OpenAIProvider(api_key="fake-key")
        with pytest.raises(VendorAPIError, match="OpenAI API error: Connection error."):
            await drain(provider.stream([{"role": "user", "content": "hi"}]))

    @pytest.mark.asyncio
    @patch("llmrouter.providers.openai.AsyncOpenAI")
    async def test_mid_stream_failure_keeps_partial_output(self, mock_openai_cls, fake_stream, make_openai_chunk):
        client_mock = MagicMock()
        mock_openai_cls.return_value = client_mock
        error = openai.APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1"))
        stream = fake_stream([make_openai_chunk(content="partial")], error=error)
        client_mock.chat.completions.create = AsyncMock(return_value=stream)

        provider = OpenAIProvider(api_key="fake-key")
        received = []
        with pytest.raises(VendorAPIError, match="OpenAI API error"):
            async for chunk in provider.stream([{"role": "user", "content": "hi"}]):
                received.append(chunk)

        assert received == [{"content": "partial", "done": False}]
        assert stream.closed

    @pytest.mark.asyncio
    @patch("llmrouter.providers.openai.AsyncOpenAI")
    async def test_consumer_cancel_closes_stream(self, mock_openai_cls, fake_stream, make_openai_chunk):
        client_mock = MagicMock()
        mock_openai_cls.return_value = client_mock
        stream = fake_stream([make_openai_chunk(content="a"), make_openai_chunk(content="b")])
        client_mock.chat.completions.create = AsyncMock(return_value=stream)

        provider = OpenAIProvider(api_key="fake-key")
        gen = provider.stream([{"role": "user", "content": "hi"}])
        first = await gen.__anext__()
        await gen.aclose()

        assert first == {"content": "a", "done": False}
        assert stream.closed

    @pytest.mark.asyncio
    @pytest.mark.parametrize("requested", [None, 0, -5])
    @patch("llmrouter.providers.openai.AsyncOpenAI")
    async def test_non_positive_max_tokens_use_ceiling(self, mock_openai_cls, requested, fake_stream, make_openai_chunk, drain):
        client_mock = MagicMock()
        mock_openai_cls.return_value = client_mock
        client_mock.chat.completions.create = AsyncMock(
            return_value=fake_stream([make_openai_chunk(finish_reason="stop")])
        )

        provider = OpenAIProvider(api_key="fake-key")
        await drain(provider.stream([{"role": "user", "content": "hi"}], {"max_tokens": requested}))

        assert client_mock.chat.completions.create.call_args.kwargs["max_tokens"] == 16384


def claude_event(event_type, **fields):
    return SimpleNamespace(type=event_type, **fields)


def claude_events(*texts, input_tokens=10, output_tokens=5):
    events = [claude_event("message_start", message=SimpleNamespace(
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=1)
    ))]
    for text in texts:
        events.append(claude_event("content_block_delta", delta=SimpleNamespace(type="text_delta", text=text)))
    events.append(claude_event("message_delta", usage=SimpleNamespace(output_tokens=output_tokens)))
    events.append(claude_event("message_stop"))
    return events


def image_transport(status=200, body=b"\x89PNG", content_type="image/png"):
    def handler(request):
        return httpx.Response(status, content=body, headers={"content-type": content_type})
    return httpx.MockTransport(handler)


class TestAnthropicProvider:

    @pytest.mark.asyncio
    @patch("llmrouter.providers.anthropic.AsyncAnthropic")
    async def test_convert_messages_split_system(self, mock_anthropic_cls):
        provider = AnthropicProvider(api_key="fake-key")

        messages = [
            {"role": "system", "content": "system prompt"},
            {"role": "user", "content": "user query"},
        ]

        system, converted = await provider.convert_messages(messages)

        assert system == "system prompt"
        assert converted == [{"role": "user", "content": "user query"}]

    @pytest.mark.asyncio
    @patch("llmrouter.providers.anthropic.AsyncAnthropic")
    async def test_remote_image_fetched_as_base64(self, mock_anthropic_cls):
        provider = AnthropicProvider(api_key="fake-key", http_transport=image_transport())

        _, converted = await provider.convert_messages([{
            "role": "user",
            "content": [
                {"type": "text", "text": "what is this?"},
                {"type": "image", "image": {"url": "https://example.com/a.png"}},
            ],
        }])

        assert converted[0]["content"] == [
            {"type": "text", "text": "what is this?"},
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": "image/png",
                    "data": base64.b64encode(b"\x89PNG").decode(),
                },
            },
        ]

    @pytest.mark.asyncio
    @patch("llmrouter.providers.anthropic.AsyncAnthropic")
    async def test_image_fetch_failure_degrades_to_placeholder(self, mock_anthropic_cls):
        provider = AnthropicProvider(api_key="fake-key", http_transport=image_transport(status=404))

        _, converted = await provider.convert_messages([{
            "role": "user",
            "content": [
                {"type": "image", "image": {"url": "https://example.com/missing.png"}},
                {"type": "text", "text": "and this text survives"},
            ],
        }])

        assert converted[0]["content"] == [
            {"type": "text", "text": IMAGE_UNAVAILABLE},
            {"type": "text", "text": "and this text survives"},
        ]

    @pytest.mark.asyncio
    @patch("llmrouter.providers.anthropic.AsyncAnthropic")
    async def test_base64_image_and_file_uri(self, mock_anthropic_cls):
        provider = AnthropicProvider(api_key="fake-key")

        _, converted = await provider.convert_messages([{
            "role": "user",
            "content": [
                {"type": "image", "image": {"base64": "QUJD"}},
                {"type": "file_uri", "file_uri": "https://generativelanguage/files/1", "mime_type": "application/pdf"},
                {"type": "unknown"},
            ],
        }])

        assert converted[0]["content"] == [
            {"type": "image", "source": {"type": "base64", "media_type": "image/jpeg", "data": "QUJD"}},
            {"type": "text", "text": FILE_URI_UNAVAILABLE},
        ]

    @pytest.mark.asyncio
    @patch("llmrouter.providers.anthropic.AsyncAnthropic")
    async def test_file_id_resolved_from_store(self, mock_anthropic_cls, fake_file_store):
        store = fake_file_store(
            files={"file_abc": {"storage_path": "u1/doc.pdf", "owning_user_id": "u1"}},
            blobs={"u1/doc.pdf": b"%PDF-1.7"},
        )
        provider = AnthropicProvider(api_key="fake-key", file_store=store)

        _, converted = await provider.convert_messages(
            [{"role": "user", "content": [{"type": "file_id", "file_id": "file_abc", "mime_type": "application/pdf"}]}],
            {"user_id": "u1"},
        )

        assert converted[0]["content"] == [{
            "type": "document",
            "source": {
                "type": "base64",
                "media_type": "application/pdf",
                "data": base64.b64encode(b"%PDF-1.7").decode(),
            },
        }]
        assert AnthropicProvider.has_document_blocks(converted)

    @pytest.mark.asyncio
    @patch("llmrouter.providers.anthropic.AsyncAnthropic")
    async def test_file_owned_by_other_user(self, mock_anthropic_cls, fake_file_store):
        store = fake_file_store(
            files={"file_abc": {"storage_path": "u2/doc.pdf", "owning_user_id": "u2"}},
            blobs={"u2/doc.pdf": b"%PDF"},
        )
        provider = AnthropicProvider(api_key="fake-key", file_store=store)

        _, converted = await provider.convert_messages(
            [{"role": "user", "content": [{"type": "file_id", "file_id": "file_abc", "mime_type": "application/pdf"}]}],
            {"user_id": "u1"},
        )

        assert converted[0]["content"] == [{"type": "text", "text": PDF_UNAVAILABLE}]
        assert store.downloads == []

    @pytest.mark.asyncio
    @patch("llmrouter.providers.anthropic.AsyncAnthropic")
    async def test_file_id_without_store(self, mock_anthropic_cls):
        provider = AnthropicProvider(api_key="fake-key")

        _, converted = await provider.convert_messages(
            [{"role": "user", "content": [{"type": "file_id", "file_id": "file_abc", "mime_type": "application/pdf"}]}]
        )

        assert converted[0]["content"] == [{"type": "text", "text": PDF_UNAVAILABLE}]

    @pytest.mark.asyncio
    @patch("llmrouter.providers.anthropic.AsyncAnthropic")
    async def test_download_failure_still_sends_request(self, mock_anthropic_cls, fake_stream, fake_file_store, drain):
        client_mock = MagicMock()
        mock_anthropic_cls.return_value = client_mock
        client_mock.messages.stream = MagicMock(return_value=fake_stream(claude_events("Summary")))
        # Registered in the lookup table but missing from object storage
        store = fake_file_store(files={"file_abc": {"storage_path": "u1/gone.pdf", "owning_user_id": "u1"}})

        provider = AnthropicProvider(api_key="fake-key", file_store=store)
        chunks = await drain(provider.stream(
            [{"role": "user", "content": [
                {"type": "text", "text": "Summarize this"},
                {"type": "file_id", "file_id": "file_abc", "mime_type": "application/pdf"},
            ]}],
            {"user_id": "u1"},
        ))

        kwargs = client_mock.messages.stream.call_args.kwargs
        assert kwargs["messages"][0]["content"] == [
            {"type": "text", "text": "Summarize this"},
            {"type": "text", "text": PDF_UNAVAILABLE},
        ]
        # No document block, so no beta header
        assert "extra_headers" not in kwargs
        assert chunks[-1]["done"] is True

    @pytest.mark.asyncio
    @patch("llmrouter.providers.anthropic.AsyncAnthropic")
    async def test_beta_header_only_with_documents(self, mock_anthropic_cls, fake_stream, fake_file_store, drain):
        client_mock = MagicMock()
        mock_anthropic_cls.return_value = client_mock
        client_mock.messages.stream = MagicMock(side_effect=lambda **kw: fake_stream(claude_events("ok")))
        store = fake_file_store(
            files={"file_abc": {"storage_path": "p", "owning_user_id": "u1"}},
            blobs={"p": b"%PDF"},
        )
        provider = AnthropicProvider(api_key="fake-key", file_store=store)

        await drain(provider.stream([{"role": "user", "content": "plain"}]))
        plain_kwargs = client_mock.messages.stream.call_args.kwargs

        await drain(provider.stream(
            [{"role": "user", "content": [{"type": "file_id", "file_id": "file_abc", "mime_type": "application/pdf"}]}],
            {"user_id": "u1"},
        ))
        pdf_kwargs = client_mock.messages.stream.call_args.kwargs

        assert "extra_headers" not in plain_kwargs
        assert pdf_kwargs["extra_headers"] == {"anthropic-beta": FILES_BETA_HEADER}

    @pytest.mark.asyncio
    @patch("llmrouter.providers.anthropic.AsyncAnthropic")
    async def test_stream_events_to_chunks(self, mock_anthropic_cls, fake_stream, drain):
        client_mock = MagicMock()
        mock_anthropic_cls.return_value = client_mock
        events = claude_events("Hello", " world", input_tokens=12, output_tokens=7)
        events.insert(1, claude_event(
            "content_block_delta", delta=SimpleNamespace(type="thinking_delta", thinking="pondering")
        ))
        stream = fake_stream(events)
        client_mock.messages.stream = MagicMock(return_value=stream)

        provider = AnthropicProvider(api_key="fake-key")
        chunks = await drain(provider.stream(
            [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}],
            {"max_tokens": 50000},
        ))

        assert chunks == [
            {"content": "", "done": False, "thinking": "pondering", "is_thinking": True},
            {"content": "Hello", "done": False},
            {"content": " world", "done": False},
            {"content": "", "done": True, "usage": {"prompt_tokens": 12, "completion_tokens": 7, "total_tokens": 19}},
        ]
        kwargs = client_mock.messages.stream.call_args.kwargs
        assert kwargs["system"] == "sys"
        assert kwargs["model"] == "claude-3-5-haiku-20241022"
        assert kwargs["max_tokens"] == 8192
        assert stream.closed

    @pytest.mark.asyncio
    @patch("llmrouter.providers.anthropic.AsyncAnthropic")
    async def test_vendor_error_wrapped(self, mock_anthropic_cls, drain):
        client_mock = MagicMock()
        mock_anthropic_cls.return_value = client_mock
        client_mock.messages.stream = MagicMock(
            side_effect=anthropic.APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com"))
        )

        provider = AnthropicProvider(api_key="fake-key")
        with pytest.raises(VendorAPIError, match="Claude API error"):
            await drain(provider.stream([{"role": "user", "content": "hi"}]))

    @pytest.mark.asyncio
    @patch("llmrouter.providers.anthropic.AsyncAnthropic")
    async def test_embed_not_supported(self, mock_anthropic_cls):
        provider = AnthropicProvider(api_key="fake-key")
        with pytest.raises(EmbeddingNotSupportedError):
            await provider.embed("hello")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_url", ["http://[::1/a.png", "http://exa mple.com/\x00a.png"])
    @patch("llmrouter.providers.anthropic.AsyncAnthropic")
    async def test_malformed_image_url_degrades_to_placeholder(self, mock_anthropic_cls, bad_url):
        provider = AnthropicProvider(api_key="fake-key")

        _, converted = await provider.convert_messages([{
            "role": "user",
            "content": [
                {"type": "text", "text": "before"},
                {"type": "image", "image": {"url": bad_url}},
                {"type": "text", "text": "after"},
            ],
        }])

        assert converted[0]["content"] == [
            {"type": "text", "text": "before"},
            {"type": "text", "text": IMAGE_UNAVAILABLE},
            {"type": "text", "text": "after"},
        ]

    @pytest.mark.asyncio
    @patch("llmrouter.providers.anthropic.AsyncAnthropic")
    async def test_consumer_cancel_closes_stream(self, mock_anthropic_cls, fake_stream):
        client_mock = MagicMock()
        mock_anthropic_cls.return_value = client_mock
        stream = fake_stream(claude_events("first", "second"))
        client_mock.messages.stream = MagicMock(return_value=stream)

        provider = AnthropicProvider(api_key="fake-key")
        gen = provider.stream([{"role": "user", "content": "hi"}])
        first = await gen.__anext__()
        assert not stream.closed
        await gen.aclose()

        assert first == {"content": "first", "done": False}
        assert stream.closed

    def test_fake_store_satisfies_protocol(self, fake_file_store):
        assert isinstance(fake_file_store(), FileStore)

from typing import Literal, List, Dict, Any, Union, TypedDict, Optional

# =============================================================================
# Type Definitions
# =============================================================================

# Providers registered by the router
Provider = Literal["openai", "anthropic", "google", "google-vertex", "deepseek"]

Role = Literal["user", "assistant", "system"]


class TextPart(TypedDict):
    """
    Plain text content part.
    """
    type: Literal["text"]
    text: str


class ImageSource(TypedDict, total=False):
    """
    Image payload: either a remote/data URL or raw base64 with a MIME type.
    """
    url: str
    base64: str
    mime_type: str


class ImagePart(TypedDict):
    """
    Image content part.
    """
    type: Literal["image"]
    image: ImageSource


class FileUriPart(TypedDict):
    """
    Reference to a file hosted by Gemini (e.g. an uploaded PDF).
    """
    type: Literal["file_uri"]
    file_uri: str
    mime_type: str


class FileIdPart(TypedDict):
    """
    Reference to a file registered with Anthropic or OpenAI.
    """
    type: Literal["file_id"]
    file_id: str
    mime_type: str


class PdfPart(TypedDict):
    """
    Text extracted from a PDF, used when no native file API applies.
    """
    type: Literal["pdf"]
    extracted_text: str


# The "type" key is the single discriminator of the union
ContentPart = Union[TextPart, ImagePart, FileUriPart, FileIdPart, PdfPart]
MessageContent = Union[str, List[ContentPart]]


class ChatMessage(TypedDict, total=False):
    """
    Provider-agnostic chat message.

    Content is either a plain string or an ordered list of content parts.
    Providers render parts in list order.
    """
    role: Role
    content: MessageContent
    metadata: Dict[str, Any]


# =============================================================================
# Streaming
# =============================================================================

class TokenUsage(TypedDict):
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class StreamChunk(TypedDict, total=False):
    """
    One unit of streamed output.

    A chunk carries either answer text (`content`), reasoning text
    (`thinking` with `is_thinking=True`), or is the terminal chunk
    (`done=True`). Exactly one terminal chunk ends every stream.
    """
    content: str
    done: bool
    thinking: str
    is_thinking: bool
    usage: TokenUsage


class StreamOptions(TypedDict, total=False):
    """
    Per-request options threaded from the router to an adapter.

    `logger` is a structlog bound logger; adapters log through it instead of
    a module-global logger when it is supplied.
    """
    max_tokens: int
    temperature: float
    functions: List["ToolDefinition"]
    user_id: str
    conversation_id: str
    model: str
    web_search: bool
    logger: Any


class CostPerToken(TypedDict):
    """
    Cost in cents per 1K tokens.
    """
    input: float
    output: float


# =============================================================================
# Tool Calling Type Definitions
# =============================================================================

class FunctionParameters(TypedDict, total=False):
    """
    JSON Schema for function parameters.
    """
    type: Literal["object"]
    properties: Dict[str, Any]
    required: List[str]


class FunctionDefinition(TypedDict, total=False):
    name: str
    description: str
    parameters: FunctionParameters


class ToolDefinition(TypedDict):
    """
    Tool definition in OpenAI format.
    """
    type: Literal["function"]
    function: FunctionDefinition


class ToolCall(TypedDict, total=False):
    """
    Tool invocation request, by name.
    """
    id: str
    name: str
    arguments: Dict[str, Any]


class ToolResult(TypedDict, total=False):
    tool_name: str
    result: Any
    error: Optional[str]


# =============================================================================
# Storage
# =============================================================================

class StoredFile(TypedDict, total=False):
    """
    Record returned by a file store lookup.
    """
    storage_path: str
    owning_user_id: str
    mime_type: str

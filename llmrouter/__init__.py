from .router import LLMRouter
from .config import Settings, load_settings
from .errors import (
    LLMRouterError,
    ProviderNotConfiguredError,
    ModelNotSupportedError,
    VendorAPIError,
    EmbeddingNotSupportedError,
    AttachmentResolutionError,
    UnknownToolError,
)
from .observability import configure_logging, get_logger
from .storage import FileStore
from .tools import ToolExecutor, AVAILABLE_TOOLS
from .types import (
    ChatMessage, ContentPart, TextPart, ImagePart, FileUriPart, FileIdPart, PdfPart,
    StreamChunk, StreamOptions, TokenUsage, ToolCall, ToolResult, Provider,
)
from .utils import (
    create_message, create_text_part, create_image_part,
    create_file_uri_part, create_file_id_part, create_pdf_part,
)

__all__ = [
    "LLMRouter",
    "Settings",
    "load_settings",
    "LLMRouterError",
    "ProviderNotConfiguredError",
    "ModelNotSupportedError",
    "VendorAPIError",
    "EmbeddingNotSupportedError",
    "AttachmentResolutionError",
    "UnknownToolError",
    "configure_logging",
    "get_logger",
    "FileStore",
    "ToolExecutor",
    "AVAILABLE_TOOLS",
    "ChatMessage",
    "ContentPart",
    "TextPart",
    "ImagePart",
    "FileUriPart",
    "FileIdPart",
    "PdfPart",
    "StreamChunk",
    "StreamOptions",
    "TokenUsage",
    "ToolCall",
    "ToolResult",
    "Provider",
    "create_message",
    "create_text_part",
    "create_image_part",
    "create_file_uri_part",
    "create_file_id_part",
    "create_pdf_part",
]

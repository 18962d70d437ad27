import base64
import httpx
from pathlib import Path
from typing import Union, List, Optional, Dict, Any, Literal, Tuple

from .types import (
    ChatMessage, ContentPart, TextPart, ImagePart, ImageSource,
    FileUriPart, FileIdPart, PdfPart, ToolDefinition,
)

# Timeout for fetching remote images, in seconds
IMAGE_FETCH_TIMEOUT = 30.0

# Extension to MIME type for local image files; anything else is sent as JPEG
IMAGE_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}

# Some image hosts reject requests without a browser User-Agent
IMAGE_FETCH_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
}

# =============================================================================
# Image Helpers
# =============================================================================

def encode_image_file(image_path: Union[str, Path]) -> Tuple[str, str]:
    """
    Read a local image as (base64_data, mime_type).

    Raises:
        FileNotFoundError: No file at `image_path`.
    """
    path = Path(image_path)
    if not path.exists():
        raise FileNotFoundError(f"Image file not found: {image_path}")

    with open(path, "rb") as f:
        b64_data = base64.b64encode(f.read()).decode("utf-8")

    return b64_data, IMAGE_MIME_TYPES.get(path.suffix.lower(), "image/jpeg")


async def encode_image_url(
    url: str,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Tuple[str, str]:
    """
    Download a remote image as (base64_data, mime_type).

    The MIME type comes from the response Content-Type. `transport` lets
    callers swap the network layer (tests pass `httpx.MockTransport`).

    Raises:
        httpx.HTTPError: Network failure or non-2xx status.
        httpx.InvalidURL: The URL cannot be parsed.
    """
    async with httpx.AsyncClient(
        timeout=IMAGE_FETCH_TIMEOUT,
        headers=IMAGE_FETCH_HEADERS,
        follow_redirects=True,
        transport=transport,
    ) as http_client:
        response = await http_client.get(url)
        response.raise_for_status()

    content_type = response.headers.get("content-type") or "image/jpeg"
    return base64.b64encode(response.content).decode("utf-8"), content_type.split(";")[0].strip()


def parse_data_uri(uri: str) -> Tuple[str, str]:
    """
    Split a `data:<mime>;base64,<data>` URI into (base64_data, mime_type).

    Raises:
        ValueError: If the URI is not a data URI.
    """
    if not uri.startswith("data:") or "," not in uri:
        raise ValueError(f"Not a data URI: {uri[:50]}")
    header, data = uri.split(",", 1)
    mime_type = header.split(":")[1].split(";")[0] or "application/octet-stream"
    return data, mime_type


async def resolve_image_to_base64(
    url: str,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Tuple[str, str]:
    """
    Resolve an image reference (URL or data URI) to base64 data.

    Args:
        url (str): HTTP/HTTPS URL or Data URI (data:image/...).

    Returns:
        Tuple[str, str]: A tuple containing (base64_data, mime_type).
    """
    if url.startswith("data:"):
        return parse_data_uri(url)
    return await encode_image_url(url, transport=transport)


def image_data_uri(source: ImageSource) -> Optional[str]:
    """Return a data URI for a base64 image source, or None if it has no data."""
    if not source.get("base64"):
        return None
    mime_type = source.get("mime_type") or "image/jpeg"
    return f"data:{mime_type};base64,{source['base64']}"


# =============================================================================
# Content Part Builders
# =============================================================================

def create_text_part(text: str) -> TextPart:
    return {"type": "text", "text": text}


def create_image_part(
    source: str,
    *,
    mime_type: Optional[str] = None,
) -> ImagePart:
    """
    Create an image content part.

    Args:
        source (str): Can be:
            - A remote URL (e.g., "https://example.com/image.jpg")
            - A data URI (e.g., "data:image/png;base64,...")
            - A local file path (e.g., "/path/to/image.png")
            - Raw base64 data (requires `mime_type` kwarg)
        mime_type (str, optional): Required if `source` is raw base64 data.

    Returns:
        ImagePart: Remote URLs are kept as `url`; everything else is
                   stored as base64 plus MIME type.

    Raises:
        ValueError: If the source type cannot be determined.
    """
    if source.startswith(("http://", "https://")):
        return {"type": "image", "image": {"url": source}}

    if source.startswith("data:"):
        b64_data, detected_mime = parse_data_uri(source)
        return {"type": "image", "image": {"base64": b64_data, "mime_type": detected_mime}}

    if mime_type:
        return {"type": "image", "image": {"base64": source, "mime_type": mime_type}}

    if len(source) < 260 and Path(source).exists():
        b64_data, detected_mime = encode_image_file(source)
        return {"type": "image", "image": {"base64": b64_data, "mime_type": detected_mime}}

    raise ValueError(
        f"Cannot determine image source type for: {source[:50]}... "
        "Provide mime_type for raw base64 data."
    )


def create_file_uri_part(file_uri: str, mime_type: str = "application/pdf") -> FileUriPart:
    return {"type": "file_uri", "file_uri": file_uri, "mime_type": mime_type}


def create_file_id_part(file_id: str, mime_type: str = "application/pdf") -> FileIdPart:
    return {"type": "file_id", "file_id": file_id, "mime_type": mime_type}


def create_pdf_part(extracted_text: str) -> PdfPart:
    return {"type": "pdf", "extracted_text": extracted_text}


def create_message(
    role: Literal["system", "user", "assistant"],
    content: Union[str, List[Union[str, ContentPart]]],
    metadata: Optional[Dict[str, Any]] = None,
) -> ChatMessage:
    """
    Create a ChatMessage.

    String elements inside a content list are normalized to text parts.

    Args:
        role (str): 'system', 'user' or 'assistant'.
        content (Union[str, List]): The content of the message.
        metadata (dict, optional): Opaque caller metadata, never sent to vendors.

    Returns:
        ChatMessage: The message dictionary.
    """
    if isinstance(content, str):
        message: ChatMessage = {"role": role, "content": content}
    else:
        parts: List[ContentPart] = [
            create_text_part(item) if isinstance(item, str) else item
            for item in content
        ]
        message = {"role": role, "content": parts}

    if metadata:
        message["metadata"] = metadata
    return message


def message_text(content: Any) -> str:
    """Join the text parts of a message content (string or part list)."""
    if isinstance(content, str):
        return content
    return "\n".join(
        part.get("text", "") for part in content if part.get("type") == "text"
    )


# =============================================================================
# Tool Calling Helpers
# =============================================================================

def create_tool(
    name: str,
    description: str,
    parameters: Dict[str, Any],
    required: Optional[List[str]] = None,
) -> ToolDefinition:
    """
    Create a tool definition in the OpenAI function calling schema.

    Args:
        name (str): The name of the function/tool to be called.
        description (str): A clear description of what the tool does.
        parameters (Dict): JSON Schema properties of the arguments.
        required (List[str], optional): Required parameter names.

    Returns:
        ToolDefinition: A dictionary representing the tool definition.
    """
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": parameters,
                "required": required or [],
            },
        },
    }

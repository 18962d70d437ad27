"""Router error hierarchy.

Configuration and vendor failures propagate to the caller; attachment
failures are absorbed by the content normalizers and replaced with a
placeholder.
"""

from typing import Optional


class LLMRouterError(Exception):
    """Base exception for router and adapter operations."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.provider:
            parts.append(f"provider={self.provider}")
        return " ".join(parts)


class ProviderNotConfiguredError(LLMRouterError):
    """Requested provider has no registered adapter (no credentials at startup)."""

    pass


class ModelNotSupportedError(LLMRouterError):
    """Requested model is not in the adapter's model list."""

    def __init__(self, message: str, model: str, provider: Optional[str] = None):
        super().__init__(message, provider)
        self.model = model


class VendorAPIError(LLMRouterError):
    """Any failure talking to a vendor API: network, auth, rate limit, timeout,
    malformed response.

    The message has the form "<Provider> API error: <detail>".
    """

    pass


class SearchGroundingUnsupportedError(VendorAPIError):
    """The vendor rejected the search grounding tool for this key/account.

    Recovered inside the Gemini adapters by retrying without the tool;
    never reaches the caller.
    """

    pass


class EmbeddingNotSupportedError(LLMRouterError):
    """Adapter has no embeddings endpoint."""

    pass


class AttachmentResolutionError(LLMRouterError):
    """A single image or file part could not be fetched, downloaded or decoded.

    Raised inside normalizers and converted to a placeholder text part.
    """

    pass


class UnknownToolError(LLMRouterError):
    """Tool executor has no tool registered under the requested name."""

    def __init__(self, tool_name: str):
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name

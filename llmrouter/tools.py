"""Tool definitions and name-based dispatch.

Tool bodies return descriptive placeholders until the backing services
(document RAG, web search, image generation) exist.
"""

from typing import Any, Awaitable, Callable, Dict, List

from .errors import UnknownToolError
from .observability import get_logger
from .types import ToolCall, ToolDefinition, ToolResult
from .utils import create_tool

logger = get_logger(component="tools")

AVAILABLE_TOOLS: Dict[str, ToolDefinition] = {
    "search_document": create_tool(
        "search_document",
        "Search through the uploaded document for relevant information",
        {
            "query": {
                "type": "string",
                "description": "Search query to find relevant information in the document",
            },
        },
        required=["query"],
    ),
    "web_search": create_tool(
        "web_search",
        "Search the web for current information",
        {
            "query": {"type": "string", "description": "Search query for web search"},
        },
        required=["query"],
    ),
    "generate_image": create_tool(
        "generate_image",
        "Generate an image using Stable Diffusion",
        {
            "prompt": {"type": "string", "description": "Detailed image generation prompt"},
            "style": {
                "type": "string",
                "description": "Image style (realistic, artistic, cartoon, etc.)",
                "enum": ["realistic", "artistic", "cartoon", "abstract", "photographic"],
            },
        },
        required=["prompt"],
    ),
    "summarize_document": create_tool(
        "summarize_document",
        "Provide a summary of the uploaded document",
        {
            "focus": {
                "type": "string",
                "description": "Optional: specific aspect to focus on in the summary",
            },
            "length": {
                "type": "string",
                "description": "Length of summary (brief, medium, detailed)",
                "enum": ["brief", "medium", "detailed"],
            },
        },
    ),
}


class ToolExecutor:
    """
    Executes tool calls by name over the fixed tool table.
    """

    def __init__(self):
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[Any]]] = {
            "search_document": self._search_document,
            "web_search": self._web_search,
            "generate_image": self._generate_image,
            "summarize_document": self._summarize_document,
        }

    @staticmethod
    def definitions() -> List[ToolDefinition]:
        """Tool table in OpenAI format, for `StreamOptions["functions"]`."""
        return list(AVAILABLE_TOOLS.values())

    async def execute(self, tool_call: ToolCall) -> ToolResult:
        """
        Run one tool call.

        Args:
            tool_call (ToolCall): Name and parsed arguments.

        Returns:
            ToolResult: The tool output; a failing tool reports its error in
                        `error` with `result=None`.

        Raises:
            UnknownToolError: No tool is registered under that name.
        """
        name = tool_call.get("name", "")
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownToolError(name)

        arguments = tool_call.get("arguments") or {}
        try:
            result = await handler(arguments)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("tool_failed", tool=name, error=str(e))
            return {"tool_name": name, "result": None, "error": str(e) or type(e).__name__}

        return {"tool_name": name, "result": result}

    async def _search_document(self, args: Dict[str, Any]) -> str:
        return (
            f'Searching document for: "{args["query"]}". '
            "This feature will be implemented with document RAG."
        )

    async def _web_search(self, args: Dict[str, Any]) -> str:
        return (
            f'Web search for: "{args["query"]}". '
            "This feature will be implemented with search providers."
        )

    async def _generate_image(self, args: Dict[str, Any]) -> str:
        style = args.get("style") or "default"
        return (
            f'Generating image with prompt: "{args["prompt"]}" in {style} style. '
            "This feature will be implemented with image generation service."
        )

    async def _summarize_document(self, args: Dict[str, Any]) -> str:
        focus = f" with focus on: {args['focus']}" if args.get("focus") else ""
        length = args.get("length") or "medium"
        return (
            f"Summarizing document{focus} in {length} length. "
            "This feature will be implemented with document processing."
        )

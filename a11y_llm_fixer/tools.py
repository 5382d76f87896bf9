"""LLM-callable accessibility tools and their dispatch onto the tool server.

``ToolInvoker.invoke`` never raises: every failure becomes a ``ToolError`` that
is handed back to the LLM like any other tool result.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Union

import orjson
from pydantic import ValidationError

from .contrast import contrast_ratio
from .mcp_bridge import A11yServer, BridgeError
from .schema import ContrastResult, ToolError

logger = logging.getLogger(__name__)

DEFAULT_TAGS = ["wcag2aa"]


class ToolName(str, Enum):
    TEST_HTML = "test_html_accessibility"
    CHECK_CONTRAST = "check_color_contrast"
    GET_RULES = "get_accessibility_rules"


# Names of the operations on the a11y-mcp-server side
SERVER_TOOLS = {
    ToolName.TEST_HTML: "test_html_string",
    ToolName.CHECK_CONTRAST: "check_color_contrast",
    ToolName.GET_RULES: "get_rules",
}

_TAGS_PARAM = {
    "type": "array",
    "items": {"type": "string"},
    "description": "WCAG tags to test against, e.g. wcag2aa",
}

TOOL_SCHEMAS: List[Dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": ToolName.TEST_HTML.value,
            "description": "Test an HTML document for accessibility violations with axe-core.",
            "parameters": {
                "type": "object",
                "properties": {
                    "html": {"type": "string", "description": "HTML content to test"},
                    "tags": _TAGS_PARAM,
                },
                "required": ["html"],
                "additionalProperties": False,
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": ToolName.CHECK_CONTRAST.value,
            "description": "Check the WCAG contrast ratio of a foreground/background color pair.",
            "parameters": {
                "type": "object",
                "properties": {
                    "foreground": {"type": "string", "description": "Foreground color in hex"},
                    "background": {"type": "string", "description": "Background color in hex"},
                    "fontSize": {"type": "number", "description": "Font size in pixels"},
                    "isBold": {"type": "boolean", "description": "Whether text is bold"},
                },
                "required": ["foreground", "background"],
                "additionalProperties": False,
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": ToolName.GET_RULES.value,
            "description": "List the accessibility rules checked for the given WCAG tags.",
            "parameters": {
                "type": "object",
                "properties": {"tags": _TAGS_PARAM},
                "required": [],
                "additionalProperties": False,
            },
        },
    },
]


class ToolInvoker:
    """Executes named tool operations against an optional, externally owned server."""

    def __init__(self, server: Optional[A11yServer] = None, default_tags: Optional[List[str]] = None):
        self.server = server
        self.default_tags = list(default_tags or DEFAULT_TAGS)

    @property
    def connected(self) -> bool:
        return self.server is not None and self.server.connected

    def invoke(self, name: str, args: Optional[Dict[str, Any]] = None) -> Union[Any, ToolError]:
        args = args or {}
        try:
            tool = ToolName(name)
        except ValueError:
            return ToolError(error=f"Unknown function: {name}")
        logger.info("Tool call: %s", tool.value)

        if tool is ToolName.TEST_HTML:
            if not isinstance(args.get("html"), str):
                return ToolError(error="Missing required argument: html")
            server_args = {"html": args["html"], "tags": args.get("tags") or self.default_tags}
        elif tool is ToolName.CHECK_CONTRAST:
            fg, bg = args.get("foreground"), args.get("background")
            if not isinstance(fg, str) or not isinstance(bg, str):
                return ToolError(error="Missing required arguments: foreground, background")
            if not self.connected:
                return contrast_ratio(fg, bg).model_dump(by_alias=True)
            server_args = {
                "foreground": fg,
                "background": bg,
                "fontSize": args.get("fontSize", 16),
                "isBold": bool(args.get("isBold", False)),
            }
        else:
            server_args = {"tags": args.get("tags") or self.default_tags}

        return self._call_server(SERVER_TOOLS[tool], server_args)

    def check_contrast(self, foreground: str, background: str) -> ContrastResult:
        """Contrast check for fix validation; falls back to the local computation."""
        payload = self.invoke(ToolName.CHECK_CONTRAST.value, {"foreground": foreground, "background": background})
        if isinstance(payload, ToolError):
            logger.info("Contrast check failed, using local calculation: %s", payload.error)
            return contrast_ratio(foreground, background)
        try:
            return ContrastResult.model_validate(payload)
        except ValidationError:
            return contrast_ratio(foreground, background)

    def _call_server(self, server_tool: str, arguments: Dict[str, Any]) -> Union[Any, ToolError]:
        if not self.connected:
            return ToolError(error="Accessibility server not connected")
        try:
            result = self.server.call_tool(server_tool, arguments)
        except BridgeError as e:
            logger.warning("Tool server call %s failed: %s", server_tool, e)
            return ToolError(error=str(e))
        return normalize_result(result)


def normalize_result(result: Dict[str, Any]) -> Union[Any, ToolError]:
    """Turn an MCP tools/call result into a JSON value (first text item) or a ToolError."""
    content = result.get("content") or []
    text = None
    for item in content:
        if isinstance(item, dict) and item.get("type") == "text" and item.get("text"):
            text = item["text"]
            break
    if result.get("isError"):
        return ToolError(error=text or "Tool server reported an error")
    if text is None:
        return ToolError(error="No result from accessibility server")
    try:
        return orjson.loads(text)
    except orjson.JSONDecodeError:
        return ToolError(error=f"Malformed reply from accessibility server: {text[:200]}")

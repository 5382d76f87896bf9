"""a11y_llm_fixer

LLM-driven WCAG fixer for HTML files, backed by an axe-core tool server.

Primary entrypoints:
 - cli.py (Typer CLI)
 - conversation.py (LLM tool-calling loop)
 - mcp_bridge.py (a11y-mcp-server child process over stdio JSON-RPC)
 - fixer.py (applying proposed fixes)
"""

__version__ = "0.1.0"

__all__ = [
    "contrast",
    "conversation",
    "fixer",
    "mcp_bridge",
    "tools",
]

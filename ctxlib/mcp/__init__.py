from ctxlib.mcp.server import (
    mcp,
    main,
    registered_tool_names,
)

__all__ = [
    "mcp",
    "main",
    "registered_tool_names",
]

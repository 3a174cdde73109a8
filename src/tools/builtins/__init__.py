from __future__ import annotations

from typing import TYPE_CHECKING

from src.tools.builtins.find_files import GlobTool
from src.tools.builtins.grep import GrepTool
from src.tools.builtins.ls import ListDirectoryTool
from src.tools.builtins.read_file import ReadFileTool
from src.tools.builtins.read_many_files import ReadManyFilesTool
from src.tools.builtins.shell import ShellTool
from src.tools.builtins.web_fetch import WebFetchTool
from src.tools.builtins.write_file import WriteFileTool
from src.tools.registry import ToolRegistry

if TYPE_CHECKING:
    import httpx

    from src.tools.context import ToolContext


def register_builtins(
    registry: ToolRegistry,
    context: ToolContext,
    *,
    enable_shell: bool = True,
    enable_web_fetch: bool = True,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """Register all built-in tools with the registry.

    Read-only tools are always registered. Shell and web access can be left
    out for restricted sessions.
    """
    registry.register(ReadFileTool(context))
    registry.register(ReadManyFilesTool(context))
    registry.register(GlobTool(context))
    registry.register(GrepTool(context))
    registry.register(ListDirectoryTool(context))
    registry.register(WriteFileTool(context))

    if enable_shell:
        registry.register(ShellTool(context))
    if enable_web_fetch:
        registry.register(WebFetchTool(context, transport=http_transport))

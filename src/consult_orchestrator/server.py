"""consult-orchestrator MCP server."""

from mcp.server.fastmcp import FastMCP

from .config import load_config
from .logging_config import setup_logging
from .tools import register_all_tools

mcp = FastMCP("consult-orchestrator")
config = load_config()
setup_logging(config.log_level, config.log_dir)
register_all_tools(mcp, config)

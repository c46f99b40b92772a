"""MCP tool registration."""

from typing import Optional

from mcp.server.fastmcp import FastMCP

from ..config import Config
from ..engine import ConsultEngine
from .roles import register_role_tools
from .workflow import register_workflow_tools

TOOL_NAMES = (
	"start_workflow",
	"run_checkpoint",
	"skip_checkpoint",
	"consult_role",
	"workflow_status",
	"abort_workflow",
	"reset_conversation",
	"release_workflow",
	"workflow_history",
	"list_roles",
)


def register_all_tools(mcp: FastMCP, config: Config, engine: Optional[ConsultEngine] = None) -> None:
	"""Register all MCP tools."""
	register_workflow_tools(mcp, config, engine)
	register_role_tools(mcp, config, engine)

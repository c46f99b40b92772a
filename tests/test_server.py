"""Tests for server startup and tool registration."""

import pytest

from consult_orchestrator.tools import TOOL_NAMES


def test_server_imports():
	"""Server module should import without errors."""
	from consult_orchestrator.server import mcp
	assert mcp is not None


@pytest.mark.asyncio
async def test_server_tool_names():
	"""Server should expose every workflow tool."""
	from consult_orchestrator.server import mcp
	tool_names = {tool.name for tool in await mcp.list_tools()}

	missing = set(TOOL_NAMES) - tool_names
	assert not missing, f"Missing tools: {missing}"

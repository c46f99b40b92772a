"""Role registry MCP tools."""

import json
from typing import Optional

from mcp.server.fastmcp import FastMCP

from ..config import Config
from ..engine import ConsultEngine, get_engine
from ..workflow import STANDARD_LABELS


def register_role_tools(mcp: FastMCP, config: Config, engine: Optional[ConsultEngine] = None) -> None:
	"""Register role inspection tools."""

	@mcp.tool()
	async def list_roles() -> str:
		"""
		List the consultation roles and the checkpoints they gate.

		Returns each role's description, allowed checkpoints, latency
		ceiling and model profile.
		"""
		eng = engine or await get_engine(config)
		table = eng.scheduler.checkpoint_roles
		roles = []
		for role in eng.registry.roles():
			roles.append({
				"id": role.id,
				"description": role.description,
				"allowed_checkpoints": [label for label in STANDARD_LABELS if label in role.allowed_checkpoints],
				"gates": [label for label, ids in table.items() if role.id in ids],
				"out_of_band": role.out_of_band,
				"max_latency_seconds": role.max_latency,
				"model": role.profile.model,
				"reasoning_effort": role.profile.reasoning_effort,
				"sandbox": role.profile.sandbox,
			})
		return json.dumps({"success": True, "count": len(roles), "roles": roles}, indent=2)

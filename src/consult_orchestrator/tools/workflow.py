"""Workflow checkpoint MCP tools."""

import json
from typing import Optional

from mcp.server.fastmcp import FastMCP

from ..config import Config
from ..engine import ConsultEngine, get_engine
from ..errors import OrchestratorError


def _error(e: Exception) -> str:
	return json.dumps({"success": False, "error": str(e), "error_type": type(e).__name__})


def register_workflow_tools(mcp: FastMCP, config: Config, engine: Optional[ConsultEngine] = None) -> None:
	"""Register workflow checkpoint tools."""

	async def _engine() -> ConsultEngine:
		return engine or await get_engine(config)

	@mcp.tool()
	async def start_workflow(checkpoints: str = "", instance_id: str = "") -> str:
		"""
		Start a development workflow.

		Args:
			checkpoints: Comma-separated checkpoint labels in order
				(default: 0,T-1,T,T+1,L-1,L)
			instance_id: Optional workflow id (generated if empty)
		"""
		eng = await _engine()
		labels = [c.strip() for c in checkpoints.split(",") if c.strip()]
		try:
			instance = eng.create_workflow(labels or None, instance_id=instance_id or None)
		except OrchestratorError as e:
			return _error(e)
		return json.dumps({"success": True, "workflow": instance.to_dict()}, indent=2)

	@mcp.tool()
	async def run_checkpoint(instance_id: str, checkpoint: str, prompt: str, revision: str = "") -> str:
		"""
		Consult the roles required at the current checkpoint.

		Blocks until every required role has answered or timed out. The
		result is "advanced", "completed", "held" (with role and reason)
		or "aborted".

		Args:
			instance_id: Workflow id from start_workflow
			checkpoint: Label of the current checkpoint (e.g. "T")
			prompt: What to review: plan, diff summary, file list
			revision: Commit hash or other revision the verdict applies to
		"""
		eng = await _engine()
		try:
			instance = eng.get_workflow(instance_id)
			outcome = await eng.scheduler.evaluate(instance, checkpoint, prompt, revision=revision)
		except OrchestratorError as e:
			return _error(e)
		return json.dumps({"success": True, **outcome.to_dict()}, indent=2)

	@mcp.tool()
	async def skip_checkpoint(instance_id: str, checkpoint: str, change_size: int, reason: str = "") -> str:
		"""
		Skip a conditional checkpoint (T-1 or T+1) for a small change.

		Args:
			instance_id: Workflow id
			checkpoint: Label of the current checkpoint
			change_size: Size of the change in lines
			reason: Why the checkpoint is being skipped
		"""
		eng = await _engine()
		try:
			instance = eng.get_workflow(instance_id)
			outcome = await eng.scheduler.skip(instance, checkpoint, change_size, reason)
		except OrchestratorError as e:
			return _error(e)
		return json.dumps({"success": True, **outcome.to_dict()}, indent=2)

	@mcp.tool()
	async def consult_role(instance_id: str, role: str, prompt: str) -> str:
		"""
		Consult a role out-of-band (e.g. the troubleshooter while debugging).

		Does not move the workflow.

		Args:
			instance_id: Workflow id
			role: Role id (architect, reviewer, troubleshooter)
			prompt: Question or context for the role
		"""
		eng = await _engine()
		try:
			instance = eng.get_workflow(instance_id)
			result = await eng.scheduler.consult(instance, role, prompt)
		except OrchestratorError as e:
			return _error(e)
		return json.dumps({"success": True, **result.to_dict()}, indent=2)

	@mcp.tool()
	async def workflow_status(instance_id: str = "") -> str:
		"""
		Get the state of one workflow, or of all workflows.

		Args:
			instance_id: Workflow id (empty for all)
		"""
		eng = await _engine()
		if not instance_id:
			return json.dumps({
				"success": True,
				"count": len(eng.instances),
				"workflows": [i.to_dict() for i in eng.instances.values()],
			}, indent=2)
		try:
			instance = eng.get_workflow(instance_id)
		except OrchestratorError as e:
			return _error(e)
		return json.dumps({
			"success": True,
			"workflow": instance.to_dict(),
			"conversations": [h.to_dict() for h in eng.sessions.list_handles(instance_id)],
		}, indent=2)

	@mcp.tool()
	async def abort_workflow(instance_id: str, reason: str = "operator cancelled") -> str:
		"""
		Abort a workflow. In-flight consultations are cancelled.

		Args:
			instance_id: Workflow id
			reason: Why the workflow is aborted
		"""
		eng = await _engine()
		try:
			instance = eng.get_workflow(instance_id)
			outcome = await eng.scheduler.abort(instance, reason)
		except OrchestratorError as e:
			return _error(e)
		return json.dumps({"success": True, **outcome.to_dict()}, indent=2)

	@mcp.tool()
	async def reset_conversation(instance_id: str, role: str) -> str:
		"""
		Drop the conversation with a role so the next consultation starts fresh.

		Use after an agent error caused by an expired conversation.

		Args:
			instance_id: Workflow id
			role: Role id
		"""
		eng = await _engine()
		try:
			instance = eng.get_workflow(instance_id)
			eng.scheduler.reset_conversation(instance, role)
		except OrchestratorError as e:
			return _error(e)
		return json.dumps({"success": True, "instance_id": instance_id, "role": role})

	@mcp.tool()
	async def release_workflow(instance_id: str) -> str:
		"""
		Forget a finished workflow and its conversations.

		Args:
			instance_id: Workflow id
		"""
		eng = await _engine()
		try:
			eng.forget_workflow(instance_id)
		except OrchestratorError as e:
			return _error(e)
		return json.dumps({"success": True, "instance_id": instance_id})

	@mcp.tool()
	async def workflow_history(instance_id: str, limit: int = 50) -> str:
		"""
		Get audited exchanges and transitions of a workflow.

		Args:
			instance_id: Workflow id
			limit: Maximum number of exchanges (most recent first)
		"""
		eng = await _engine()
		if eng.audit is None:
			return json.dumps({"success": False, "error": "Audit log is disabled"})
		exchanges = await eng.audit.list_exchanges(instance_id, limit=limit)
		transitions = await eng.audit.list_transitions(instance_id)
		return json.dumps({
			"success": True,
			"instance_id": instance_id,
			"exchanges": exchanges,
			"transitions": transitions,
		}, indent=2)

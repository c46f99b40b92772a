"""Shared test fixtures and helpers for consult-orchestrator tests."""

import asyncio
from typing import Any, Callable, Optional, Union

from consult_orchestrator.roles import DEFAULT_ROLES, Role, RoleRegistry
from consult_orchestrator.sessions import DEFAULT_SCHEMES
from consult_orchestrator.transport import AgentProcessError, AgentTransport

APPROVE = "Looks good.\n\nVERDICT: approve"
CONCERNS = "Naming in src/app.py:12 could be clearer.\n\nVERDICT: concerns"
BUGS = "Off-by-one in src/app.py:42 when the list is empty.\n\nVERDICT: bugs-found"
BLOCKED = "The plan drops the migration entirely.\n\nVERDICT: blocked"
RAMBLING = "I looked at a few files and have some thoughts about naming."


class Slow:
	"""Scripted response that takes `delay` seconds to arrive."""

	def __init__(self, delay: float, text: str = APPROVE):
		self.delay = delay
		self.text = text


ScriptItem = Union[str, BaseException, Slow]


class ScriptedTransport(AgentTransport):
	"""
	Transport that answers from a per-role script instead of an agent process.

	Each call pops the next item for the role: a string is returned as the
	response, an exception is raised, a Slow sleeps first.
	"""

	def __init__(self, script: Optional[dict[str, list[ScriptItem]]] = None, schemes=DEFAULT_SCHEMES):
		super().__init__(schemes)
		self.script: dict[str, list[ScriptItem]] = {k: list(v) for k, v in (script or {}).items()}
		self.calls: list[tuple[str, Optional[str], str]] = []
		self.conversation_ids: dict[str, str] = {}
		self.active = 0
		self.max_active = 0
		self._counter = 0

	def add(self, role_id: str, *items: ScriptItem) -> None:
		self.script.setdefault(role_id, []).extend(items)

	def calls_for(self, role_id: str) -> list[tuple[str, Optional[str], str]]:
		return [c for c in self.calls if c[0] == role_id]

	async def _dispatch(self, role: Role, conversation_id: Optional[str], prompt: str) -> tuple[str, str]:
		self.calls.append((role.id, conversation_id, prompt))
		queue = self.script.get(role.id)
		if not queue:
			raise AgentProcessError(f"No scripted response for {role.id}")
		item = queue.pop(0)

		self.active += 1
		self.max_active = max(self.max_active, self.active)
		try:
			if isinstance(item, Slow):
				await asyncio.sleep(item.delay)
				item = item.text
			else:
				# Yield so concurrent consultations interleave
				await asyncio.sleep(0)
			if isinstance(item, BaseException):
				raise item
		finally:
			self.active -= 1

		if conversation_id:
			return item, conversation_id
		raw_id = self.conversation_ids.get(role.id)
		if raw_id is None:
			self._counter += 1
			raw_id = f"0199a1b2-{self._counter:04x}-7000-8000-00000000abcd"
		return item, raw_id


def make_registry(max_latency: float = 5.0, **overrides: float) -> RoleRegistry:
	"""Default roles with short latency ceilings (per-role overrides by id)."""
	roles = [
		role.model_copy(update={"max_latency": overrides.get(role.id, max_latency)})
		for role in DEFAULT_ROLES
	]
	return RoleRegistry(roles)


class FakeToolResult:
	"""Stand-in for mcp.types.CallToolResult."""

	def __init__(self, text: str = "", structured: Optional[dict[str, Any]] = None, is_error: bool = False):
		self.content = [FakeTextBlock(text)] if text else []
		self.structuredContent = structured
		self.isError = is_error


class FakeTextBlock:
	def __init__(self, text: str):
		self.type = "text"
		self.text = text


class FakeRoleProcess:
	"""Records call_tool invocations and replays canned results."""

	def __init__(self, results: list[Any]):
		self.results = list(results)
		self.calls: list[tuple[str, dict[str, Any]]] = []
		self.alive = True

	async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
		self.calls.append((name, arguments))
		result = self.results.pop(0)
		if isinstance(result, BaseException):
			raise result
		return result

	async def stop(self) -> None:
		self.alive = False


def capture_tools(config: Any, register_fn: Callable) -> dict:
	"""Register tools on a mock MCP and return the captured tool functions.

	Args:
		config: Config object to pass to the registration function
		register_fn: The registration function (e.g., register_workflow_tools)

	Returns:
		Dict mapping tool name to the tool function
	"""
	captured = {}

	class MockMCP:
		def tool(self):
			def decorator(fn):
				captured[fn.__name__] = fn
				return fn
			return decorator

	register_fn(MockMCP(), config)
	return captured

"""
Agent Transport - sends a prompt to the external agent of a role.

Each role is served by its own `codex mcp-server` process, launched lazily
with the role's execution profile and driven through the MCP client:

- fresh conversation: `codex` tool
- continuation:       `codex-reply` tool with the conversation identifier

Calls block for as long as the agent needs, up to the role's latency
ceiling. Launching the process has its own limit and does not count
against that ceiling. Nothing is retried here; every failure comes back
as a tagged AgentExchange for the scheduler to act on.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from .config import Config
from .errors import MalformedHandle, OrchestratorError
from .roles import Role
from .sessions import DEFAULT_SCHEMES, ConversationHandle, validate_conversation_id

logger = logging.getLogger(__name__)


class TransportOutcome(str, Enum):
	"""How a transport call ended."""
	OK = "ok"
	TIMEOUT = "timeout"
	MALFORMED_HANDLE = "malformed-handle"
	AGENT_ERROR = "agent-error"


class AgentProcessError(OrchestratorError):
	"""Raised when the agent process is unreachable, crashed, or reports an error."""
	pass


@dataclass
class AgentExchange:
	"""One request/response round trip with an agent."""
	role_id: str
	prompt: str
	response: str = ""
	latency: float = 0.0
	outcome: TransportOutcome = TransportOutcome.OK
	detail: str = ""
	conversation_id: str = ""
	started_at: str = field(default_factory=lambda: datetime.now().isoformat())

	@property
	def ok(self) -> bool:
		return self.outcome == TransportOutcome.OK


class AgentTransport:
	"""
	Base transport: pre-send handle validation, bounded wait, outcome tagging.

	Subclasses implement `_dispatch`.
	"""

	def __init__(self, schemes: tuple[str, ...] = DEFAULT_SCHEMES):
		self.schemes = tuple(schemes)

	async def send(self, role: Role, handle: ConversationHandle, prompt: str) -> AgentExchange:
		"""
		Send a prompt to the agent for a role.

		Args:
			role: Role being consulted (its max_latency is the timeout ceiling)
			handle: Conversation handle; a pending handle starts a fresh conversation
			prompt: Prompt text

		Returns:
			AgentExchange tagged ok / timeout / malformed-handle / agent-error
		"""
		exchange = AgentExchange(role_id=role.id, prompt=prompt)

		conversation_body: Optional[str] = None
		if not handle.is_pending:
			try:
				conversation_body = validate_conversation_id(handle.token, self.schemes)
			except MalformedHandle as e:
				logger.warning(f"Refusing to send to {role.id}: {e}")
				exchange.outcome = TransportOutcome.MALFORMED_HANDLE
				exchange.detail = str(e)
				exchange.conversation_id = handle.token
				return exchange

		mode = "continuation" if conversation_body else "fresh session"
		logger.info(f"Consulting {role.id} ({mode}, {len(prompt)} chars, ceiling {role.max_latency:.0f}s)")

		try:
			await self._prepare(role)
		except AgentProcessError as e:
			exchange.outcome = TransportOutcome.AGENT_ERROR
			exchange.detail = str(e)
			logger.error(f"Agent error from {role.id}: {e}")
			return exchange
		except Exception as e:
			exchange.outcome = TransportOutcome.AGENT_ERROR
			exchange.detail = f"{type(e).__name__}: {e}"
			logger.error(f"Failed to launch agent for {role.id}: {exchange.detail}")
			return exchange

		start = time.monotonic()
		try:
			response, raw_id = await asyncio.wait_for(
				self._dispatch(role, conversation_body, prompt),
				timeout=role.max_latency,
			)
		except asyncio.TimeoutError:
			exchange.outcome = TransportOutcome.TIMEOUT
			exchange.detail = f"No response from {role.id} within {role.max_latency:.0f}s"
			logger.warning(exchange.detail)
		except AgentProcessError as e:
			exchange.outcome = TransportOutcome.AGENT_ERROR
			exchange.detail = str(e)
			logger.error(f"Agent error from {role.id}: {e}")
		except Exception as e:
			exchange.outcome = TransportOutcome.AGENT_ERROR
			exchange.detail = f"{type(e).__name__}: {e}"
			logger.error(f"Transport failure for {role.id}: {exchange.detail}")
		else:
			exchange.response = response
			if conversation_body:
				exchange.conversation_id = handle.token
			elif raw_id:
				exchange.conversation_id = f"{self.schemes[0]}{raw_id}"
			logger.info(f"{role.id} responded ({len(response)} chars)")
		finally:
			exchange.latency = time.monotonic() - start

		return exchange

	async def _prepare(self, role: Role) -> None:
		"""Get the role's agent ready. Runs before the latency ceiling starts."""
		return None

	async def _dispatch(
		self, role: Role, conversation_id: Optional[str], prompt: str,
	) -> tuple[str, str]:
		"""
		Deliver the prompt and wait for the reply.

		Returns:
			Tuple of (response_text, conversation_id_without_scheme)
		"""
		raise NotImplementedError

	async def close(self) -> None:
		"""Release transport resources."""
		return None


class _RoleProcess:
	"""
	Owns the MCP client session for one role's agent process.

	The stdio client and session contexts live in a dedicated task so that
	they are entered and exited by the same task; callers only issue
	call_tool on the shared session.
	"""

	def __init__(self, role_id: str, params: StdioServerParameters):
		self.role_id = role_id
		self.params = params
		self._session: Optional[ClientSession] = None
		self._error: Optional[BaseException] = None
		self._ready = asyncio.Event()
		self._closing = asyncio.Event()
		self._task: Optional[asyncio.Task] = None

	@property
	def alive(self) -> bool:
		return self._task is not None and not self._task.done() and self._session is not None

	async def start(self) -> None:
		self._task = asyncio.create_task(self._run(), name=f"agent-{self.role_id}")
		await self._ready.wait()
		if self._session is None:
			raise AgentProcessError(f"Failed to launch agent for {self.role_id}: {self._error}")
		logger.info(f"Agent process for {self.role_id} started")

	async def _run(self) -> None:
		try:
			async with stdio_client(self.params) as (read, write):
				async with ClientSession(read, write) as session:
					await session.initialize()
					self._session = session
					self._ready.set()
					await self._closing.wait()
		except Exception as e:
			self._error = e
			logger.error(f"Agent process for {self.role_id} exited: {e}")
		finally:
			self._session = None
			self._ready.set()

	async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
		session = self._session
		if session is None:
			raise AgentProcessError(f"Agent process for {self.role_id} is not running: {self._error}")
		return await session.call_tool(name, arguments=arguments)

	def cancel(self) -> None:
		if self._task is not None:
			self._task.cancel()

	async def stop(self) -> None:
		self._closing.set()
		if self._task is not None:
			try:
				await self._task
			except asyncio.CancelledError:
				pass


class CodexMcpTransport(AgentTransport):
	"""Transport over `codex mcp-server`, one process per role."""

	FRESH_TOOL = "codex"
	REPLY_TOOL = "codex-reply"
	REPLY_ID_FIELD = "conversationId"
	CONVERSATION_ID_KEYS = ("threadId", "conversationId")

	def __init__(
		self,
		command: str = "codex",
		prompts_dir: Path = Path("prompts"),
		cwd: Optional[Path] = None,
		schemes: tuple[str, ...] = DEFAULT_SCHEMES,
		launch_timeout: float = 60.0,
	):
		super().__init__(schemes)
		self.command = command
		self.prompts_dir = Path(prompts_dir)
		self.cwd = Path(cwd) if cwd else Path.cwd()
		self._processes: dict[str, _RoleProcess] = {}
		self.launch_timeout = launch_timeout
		self._launch_locks: dict[str, asyncio.Lock] = {}

	@classmethod
	def from_config(cls, config: Config, cwd: Optional[Path] = None) -> "CodexMcpTransport":
		return cls(
			command=config.codex_command,
			prompts_dir=config.prompts_dir,
			cwd=cwd,
			schemes=config.conversation_schemes,
			launch_timeout=config.launch_timeout,
		)

	def server_parameters(self, role: Role) -> StdioServerParameters:
		"""Build the launch command for a role's agent process."""
		prompt_path = role.prompt_path(self.prompts_dir)
		if not prompt_path.exists():
			raise AgentProcessError(f"Prompt file not found for {role.id}: {prompt_path}")
		system_prompt = prompt_path.read_text(encoding="utf-8")

		overrides = role.profile.to_config_overrides()
		overrides.insert(2, f"system_prompt={json.dumps(system_prompt)}")

		args = ["mcp-server"]
		for override in overrides:
			args.extend(["-c", override])
		return StdioServerParameters(command=self.command, args=args, cwd=str(self.cwd))

	async def _prepare(self, role: Role) -> None:
		await self._process_for(role)

	async def _process_for(self, role: Role) -> _RoleProcess:
		"""Return the running agent process for a role, launching it if needed."""
		lock = self._launch_locks.setdefault(role.id, asyncio.Lock())
		async with lock:
			process = self._processes.get(role.id)
			if process is not None and process.alive:
				return process
			if process is not None:
				logger.warning(f"Agent process for {role.id} is gone; relaunching")
			process = _RoleProcess(role.id, self.server_parameters(role))
			try:
				await asyncio.wait_for(process.start(), timeout=self.launch_timeout)
			except asyncio.TimeoutError:
				process.cancel()
				raise AgentProcessError(
					f"Agent process for {role.id} did not start within {self.launch_timeout:.0f}s"
				) from None
			except asyncio.CancelledError:
				process.cancel()
				raise
			self._processes[role.id] = process
			return process

	async def _dispatch(
		self, role: Role, conversation_id: Optional[str], prompt: str,
	) -> tuple[str, str]:
		process = await self._process_for(role)

		if conversation_id:
			tool = self.REPLY_TOOL
			arguments: dict[str, Any] = {self.REPLY_ID_FIELD: conversation_id, "prompt": prompt}
		else:
			tool = self.FRESH_TOOL
			arguments = {
				"prompt": prompt,
				"cwd": str(self.cwd),
				"sandbox": role.profile.sandbox,
				"approval-policy": "never",
			}

		result = await process.call_tool(tool, arguments)

		text = _result_text(result)
		if getattr(result, "isError", False):
			raise AgentProcessError(f"{tool} returned an error: {text[:500]}")

		return text, conversation_id or self._conversation_id(result)

	def _conversation_id(self, result: Any) -> str:
		structured = getattr(result, "structuredContent", None) or {}
		for key in self.CONVERSATION_ID_KEYS:
			value = structured.get(key)
			if value:
				return str(value)
		logger.warning("Agent response carried no conversation identifier; follow-ups start fresh")
		return ""

	async def close(self) -> None:
		"""Stop all agent processes."""
		processes = list(self._processes.values())
		self._processes.clear()
		for process in processes:
			await process.stop()


def _result_text(result: Any) -> str:
	"""Join the text content blocks of a tool result."""
	parts = []
	for block in getattr(result, "content", None) or []:
		text = getattr(block, "text", None)
		if text:
			parts.append(text)
	return "\n".join(parts)

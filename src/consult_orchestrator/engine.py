"""
Consultation engine - wires registry, sessions, transport, reconciler,
audit log and scheduler together for the MCP server.

The server holds workflow instances on behalf of the driving agent, keyed
by instance id.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from .audit import AuditLog
from .config import Config, get_config
from .errors import DuplicateWorkflow, UnknownWorkflow
from .reconciler import ResponseReconciler
from .roles import RoleRegistry
from .scheduler import CheckpointScheduler
from .sessions import SessionStore
from .transport import AgentTransport, CodexMcpTransport
from .workflow import WorkflowInstance

logger = logging.getLogger(__name__)


class ConsultEngine:
	"""
	Long-lived state behind the MCP tools.

	Usage:
		engine = ConsultEngine(config)
		await engine.start()
		instance = engine.create_workflow(["0", "T", "L"])
	"""

	def __init__(
		self,
		config: Config,
		transport: Optional[AgentTransport] = None,
		audit: Optional[AuditLog] = None,
		cwd: Optional[Path] = None,
	):
		self.config = config
		self.registry = RoleRegistry.from_config(config)
		self.sessions = SessionStore(idle_timeout=config.session_idle_timeout)
		self.transport = transport or CodexMcpTransport.from_config(config, cwd=cwd)
		self.audit = audit
		self.scheduler = CheckpointScheduler(
			self.registry,
			self.sessions,
			self.transport,
			reconciler=ResponseReconciler(),
			audit=audit,
			change_size_threshold=config.change_size_threshold,
		)
		self.instances: dict[str, WorkflowInstance] = {}
		self._ready: Optional[asyncio.Future] = None

	async def start(self) -> None:
		"""Open the audit log if enabled."""
		if self.audit is None and self.config.audit_enabled:
			self.audit = AuditLog(self.config.audit_db_path)
			await self.audit.init()
			self.scheduler.audit = self.audit
		logger.info(f"Consult engine ready with roles: {', '.join(self.registry.ids())}")

	async def ensure_started(self) -> None:
		"""Run start() once, however many callers are waiting on it."""
		if self._ready is None:
			self._ready = asyncio.ensure_future(self.start())
		await self._ready

	def create_workflow(self, labels: Optional[list[str]] = None, instance_id: Optional[str] = None) -> WorkflowInstance:
		if instance_id and instance_id in self.instances:
			raise DuplicateWorkflow(instance_id)
		instance = self.scheduler.create_instance(labels, instance_id=instance_id)
		self.instances[instance.id] = instance
		return instance

	def get_workflow(self, instance_id: str) -> WorkflowInstance:
		instance = self.instances.get(instance_id)
		if instance is None:
			raise UnknownWorkflow(instance_id)
		return instance

	def forget_workflow(self, instance_id: str) -> None:
		"""Release a closed workflow and its conversations."""
		instance = self.get_workflow(instance_id)
		self.scheduler.release(instance)
		del self.instances[instance_id]

	async def close(self) -> None:
		await self.transport.close()
		if self.audit is not None:
			await self.audit.close()


# Singleton
_engine: Optional[ConsultEngine] = None


async def get_engine(config: Optional[Config] = None) -> ConsultEngine:
	"""Get or create the global engine."""
	global _engine
	if _engine is None:
		_engine = ConsultEngine(config or get_config())
	await _engine.ensure_started()
	return _engine

"""
Audit Log - SQLite-backed record of agent exchanges and workflow transitions.

Exchanges are otherwise ephemeral; this is the only place they persist.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import aiosqlite

from .transport import AgentExchange
from .workflow import WorkflowInstance

logger = logging.getLogger(__name__)


class AuditLog:
	"""
	Append-only audit storage.

	Usage:
		audit = AuditLog(config.audit_db_path)
		await audit.init()
		await audit.record_exchange("wf-1", "T", exchange, "approve")
	"""

	# Stored prompt/response bodies are capped
	MAX_BODY = 20_000

	def __init__(self, db_path: str | Path):
		self.db_path = Path(db_path)
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		self._db: Optional[aiosqlite.Connection] = None

	async def init(self) -> None:
		"""Initialize the database schema."""
		self._db = await aiosqlite.connect(str(self.db_path))
		self._db.row_factory = aiosqlite.Row

		await self._db.execute("""
			CREATE TABLE IF NOT EXISTS exchanges (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				instance_id TEXT NOT NULL,
				checkpoint TEXT NOT NULL,
				role_id TEXT NOT NULL,
				outcome TEXT NOT NULL,
				verdict TEXT DEFAULT '',
				latency_seconds REAL DEFAULT 0.0,
				conversation_id TEXT DEFAULT '',
				prompt TEXT DEFAULT '',
				response TEXT DEFAULT '',
				detail TEXT DEFAULT '',
				started_at TEXT NOT NULL
			)
		""")
		await self._db.execute("""
			CREATE TABLE IF NOT EXISTS transitions (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				instance_id TEXT NOT NULL,
				from_position INTEGER NOT NULL,
				to_position INTEGER NOT NULL,
				status TEXT NOT NULL,
				reason TEXT DEFAULT '',
				timestamp TEXT NOT NULL
			)
		""")
		await self._db.execute("""
			CREATE INDEX IF NOT EXISTS idx_exchanges_instance ON exchanges(instance_id)
		""")
		await self._db.execute("""
			CREATE INDEX IF NOT EXISTS idx_transitions_instance ON transitions(instance_id)
		""")
		await self._db.commit()
		logger.info(f"Audit log initialized: {self.db_path}")

	async def close(self) -> None:
		"""Close the database connection."""
		if self._db:
			await self._db.close()
			self._db = None

	def _conn(self) -> aiosqlite.Connection:
		if self._db is None:
			raise RuntimeError("AuditLog not initialized - call init() first")
		return self._db

	async def record_exchange(
		self,
		instance_id: str,
		checkpoint: str,
		exchange: AgentExchange,
		verdict: str = "",
	) -> None:
		"""Persist one agent exchange."""
		db = self._conn()
		await db.execute(
			"""
			INSERT INTO exchanges
			(instance_id, checkpoint, role_id, outcome, verdict, latency_seconds,
			 conversation_id, prompt, response, detail, started_at)
			VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
			""",
			(
				instance_id,
				checkpoint,
				exchange.role_id,
				exchange.outcome.value,
				verdict,
				exchange.latency,
				exchange.conversation_id,
				exchange.prompt[:self.MAX_BODY],
				exchange.response[:self.MAX_BODY],
				exchange.detail,
				exchange.started_at,
			),
		)
		await db.commit()

	async def record_transition(self, instance: WorkflowInstance, from_position: int, reason: str = "") -> None:
		"""Persist a position/status change of a workflow instance."""
		db = self._conn()
		await db.execute(
			"""
			INSERT INTO transitions (instance_id, from_position, to_position, status, reason, timestamp)
			VALUES (?, ?, ?, ?, ?, ?)
			""",
			(
				instance.id,
				from_position,
				instance.position,
				instance.status.value,
				reason,
				datetime.now().isoformat(),
			),
		)
		await db.commit()

	async def list_exchanges(self, instance_id: str, limit: int = 100) -> list[dict[str, Any]]:
		db = self._conn()
		async with db.execute(
			"SELECT * FROM exchanges WHERE instance_id = ? ORDER BY id DESC LIMIT ?",
			(instance_id, limit),
		) as cursor:
			rows = await cursor.fetchall()
		return [dict(row) for row in rows]

	async def list_transitions(self, instance_id: str) -> list[dict[str, Any]]:
		db = self._conn()
		async with db.execute(
			"SELECT * FROM transitions WHERE instance_id = ? ORDER BY id",
			(instance_id,),
		) as cursor:
			rows = await cursor.fetchall()
		return [dict(row) for row in rows]

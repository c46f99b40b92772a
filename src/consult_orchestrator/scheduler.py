"""
Checkpoint Scheduler - the workflow state machine.

States per instance: Pending(i) for each checkpoint index, then Completed
or Aborted. An instance advances from Pending(i) only when every mandatory
role at checkpoint i has a satisfying verdict (approve or concerns) for the
current revision. Everything else holds the position and is reported back
to the caller with the role, checkpoint and reason.

Within a checkpoint, roles are consulted concurrently (fan-out) and all
results are joined before deciding (fan-in). Transport failures are never
retried here.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .audit import AuditLog
from .errors import DuplicateWorkflow, OutOfOrderCheckpoint, SkipNotAllowed, WorkflowClosed
from .reconciler import ResponseReconciler, Verdict, VerdictKind
from .roles import RoleRegistry
from .sessions import SessionStore
from .transport import AgentExchange, AgentTransport, TransportOutcome
from .workflow import (
	CHECKPOINT_ROLES,
	Checkpoint,
	TransitionRecord,
	VerdictRecord,
	WorkflowInstance,
	WorkflowStatus,
	build_checkpoints,
	new_instance_id,
)

logger = logging.getLogger(__name__)


class OutcomeKind(str, Enum):
	"""Result of a scheduler operation, as reported to the driving caller."""
	ADVANCED = "advanced"
	HELD = "held"
	ABORTED = "aborted"
	COMPLETED = "completed"


@dataclass
class RoleResult:
	"""Result of consulting one role."""
	role_id: str
	verdict: Verdict
	exchange: Optional[AgentExchange] = None
	hold_reason: str = ""

	def to_dict(self) -> dict:
		data = {
			"role": self.role_id,
			"verdict": self.verdict.to_dict(),
			"hold_reason": self.hold_reason,
		}
		if self.exchange is not None:
			data["outcome"] = self.exchange.outcome.value
			data["latency_seconds"] = round(self.exchange.latency, 2)
			data["response"] = self.exchange.response
		return data


@dataclass
class Outcome:
	"""What happened to an instance as a result of a scheduler call."""
	kind: OutcomeKind
	instance_id: str
	checkpoint: Optional[str]
	position: int
	reason: str = ""
	role_id: Optional[str] = None
	results: list[RoleResult] = field(default_factory=list)

	@property
	def held(self) -> bool:
		return self.kind == OutcomeKind.HELD

	def to_dict(self) -> dict:
		return {
			"outcome": self.kind.value,
			"instance_id": self.instance_id,
			"checkpoint": self.checkpoint,
			"position": self.position,
			"reason": self.reason,
			"role": self.role_id,
			"results": [r.to_dict() for r in self.results],
		}


def hold_reason(exchange: Optional[AgentExchange], verdict: Verdict) -> str:
	"""Human-readable reason a role result keeps the checkpoint held."""
	if exchange is not None:
		if exchange.outcome == TransportOutcome.TIMEOUT:
			return "Timeout"
		if exchange.outcome == TransportOutcome.MALFORMED_HANDLE:
			return "MalformedHandle"
		if exchange.outcome == TransportOutcome.AGENT_ERROR:
			return f"AgentError: {exchange.detail}"
	return verdict.kind.value


class CheckpointScheduler:
	"""
	Drives workflow instances through their checkpoints.

	Usage:
		scheduler = CheckpointScheduler(registry, SessionStore(), transport)
		instance = scheduler.create_instance(["0", "T", "L"])
		outcome = await scheduler.evaluate(instance, "0", prompt, revision="abc123")
	"""

	def __init__(
		self,
		registry: RoleRegistry,
		sessions: SessionStore,
		transport: AgentTransport,
		reconciler: Optional[ResponseReconciler] = None,
		audit: Optional[AuditLog] = None,
		change_size_threshold: int = 0,
		checkpoint_roles: Optional[dict[str, tuple[str, ...]]] = None,
	):
		"""
		Initialize the scheduler and validate the checkpoint -> role table.

		Raises:
			UnknownRole: A checkpoint maps to an unregistered role
			ConfigurationError: The mapping is otherwise inconsistent
		"""
		self.registry = registry
		self.sessions = sessions
		self.transport = transport
		self.reconciler = reconciler or ResponseReconciler()
		self.audit = audit
		self.change_size_threshold = change_size_threshold
		self.checkpoint_roles = dict(checkpoint_roles or CHECKPOINT_ROLES)

		registry.validate(self.checkpoint_roles)

		self._locks: dict[str, asyncio.Lock] = {}
		self._inflight: dict[str, set[asyncio.Task]] = {}

	def create_instance(
		self,
		labels: Optional[list[str]] = None,
		checkpoints: Optional[tuple[Checkpoint, ...]] = None,
		instance_id: Optional[str] = None,
	) -> WorkflowInstance:
		"""
		Create a workflow instance at Pending(0).

		Args:
			labels: Checkpoint labels in order (default: the full standard sequence)
			checkpoints: Explicit checkpoint definitions (overrides labels)
			instance_id: Optional identifier (generated if omitted)

		Raises:
			DuplicateWorkflow: instance_id still has live conversations or a driver lock
		"""
		if checkpoints is None:
			checkpoints = build_checkpoints(
				labels,
				change_size_threshold=self.change_size_threshold,
				checkpoint_roles=self.checkpoint_roles,
			)
		self.registry.validate({cp.label: cp.roles for cp in checkpoints})
		if instance_id and (instance_id in self._locks or self.sessions.list_handles(instance_id)):
			raise DuplicateWorkflow(instance_id)

		instance = WorkflowInstance(id=instance_id or new_instance_id(), checkpoints=checkpoints)
		logger.info(f"Created workflow {instance.id}: {' -> '.join(instance.labels)}")
		return instance

	async def evaluate(
		self,
		instance: WorkflowInstance,
		label: str,
		prompt: str,
		revision: str = "",
	) -> Outcome:
		"""
		Consult the roles of the current checkpoint and advance or hold.

		Roles that already have a satisfying verdict for this revision are
		not consulted again.

		Args:
			instance: Workflow instance (owned by the caller)
			label: Checkpoint label; must be the current checkpoint
			prompt: Prompt sent to each required role
			revision: Code/artifact revision the verdicts apply to

		Returns:
			Outcome (ADVANCED, HELD, COMPLETED or ABORTED)

		Raises:
			OutOfOrderCheckpoint: label is not the current checkpoint
			UnknownCheckpoint: label is not part of the instance
		"""
		if instance.status == WorkflowStatus.ABORTED:
			return self._aborted_outcome(instance)
		index = self._require_current(instance, label)

		async with self._lock_for(instance):
			if instance.status == WorkflowStatus.ABORTED:
				return self._aborted_outcome(instance)
			# Position may have moved while waiting for the lock
			index = self._require_current(instance, label)
			checkpoint = instance.checkpoints[index]

			if instance.status == WorkflowStatus.PENDING:
				instance.status = WorkflowStatus.IN_PROGRESS

			pending_roles = [
				role_id for role_id in checkpoint.roles
				if not self._is_satisfied(instance, index, role_id, revision)
			]
			logger.info(
				f"Workflow {instance.id} checkpoint {label}: consulting {', '.join(pending_roles) or 'no one'}"
			)

			results = await self._consult_all(instance, checkpoint, pending_roles, prompt)

			if instance.status == WorkflowStatus.ABORTED:
				return self._aborted_outcome(instance, results)

			for result in results:
				self._record_verdict(instance, index, checkpoint.label, result, revision)

			blocking = [r for r in results if r.hold_reason]
			if blocking:
				first = blocking[0]
				summary = "; ".join(f"{r.role_id}: {r.hold_reason}" for r in blocking)
				logger.warning(f"Workflow {instance.id} held at {label} ({summary})")
				return Outcome(
					kind=OutcomeKind.HELD,
					instance_id=instance.id,
					checkpoint=label,
					position=instance.position,
					reason=first.hold_reason,
					role_id=first.role_id,
					results=results,
				)

			return await self._advance(instance, checkpoint, "all required roles satisfied", results)

	async def skip(
		self,
		instance: WorkflowInstance,
		label: str,
		change_size: int,
		reason: str = "",
	) -> Outcome:
		"""
		Explicitly skip a conditional checkpoint for a small change.

		Raises:
			SkipNotAllowed: The checkpoint is mandatory or the change is too large
			OutOfOrderCheckpoint: label is not the current checkpoint
		"""
		if instance.status == WorkflowStatus.ABORTED:
			return self._aborted_outcome(instance)
		self._require_current(instance, label)

		async with self._lock_for(instance):
			if instance.status == WorkflowStatus.ABORTED:
				return self._aborted_outcome(instance)
			index = self._require_current(instance, label)
			checkpoint = instance.checkpoints[index]

			if not checkpoint.is_skippable(change_size):
				raise SkipNotAllowed(
					f"Checkpoint {label!r} ({checkpoint.policy.value}, threshold "
					f"{checkpoint.min_change_size}) cannot be skipped for change size {change_size}"
				)

			detail = f"skipped: change size {change_size} < {checkpoint.min_change_size}"
			if reason:
				detail = f"{detail} ({reason})"
			return await self._advance(instance, checkpoint, detail, [])

	async def consult(
		self,
		instance: WorkflowInstance,
		role_id: str,
		prompt: str,
	) -> RoleResult:
		"""
		Out-of-band consultation (e.g. troubleshooter while debugging).

		Uses the instance's conversation with that role but never moves
		the instance's position.

		Raises:
			UnknownRole: role_id is not registered
			WorkflowClosed: The instance is completed or aborted
		"""
		self.registry.resolve(role_id)
		if instance.is_closed:
			raise WorkflowClosed(f"Workflow {instance.id} is {instance.status.value}")
		current = instance.current
		label = f"out-of-band@{current.label}" if current else "out-of-band"
		logger.info(f"Out-of-band consultation of {role_id} for workflow {instance.id} at {label}")

		results = await self._consult_all(instance, None, [role_id], prompt, label=label)
		return results[0]

	async def abort(self, instance: WorkflowInstance, reason: str = "operator cancelled") -> Outcome:
		"""
		Abort an instance. In-flight consultations are cancelled and any
		result that still comes back is ignored. A completed instance stays
		completed.
		"""
		if instance.status == WorkflowStatus.ABORTED:
			return self._aborted_outcome(instance)
		if instance.status == WorkflowStatus.COMPLETED:
			logger.info(f"Abort requested for completed workflow {instance.id}; nothing to do")
			return Outcome(
				kind=OutcomeKind.COMPLETED,
				instance_id=instance.id,
				checkpoint=None,
				position=instance.position,
				reason="already completed",
			)

		label = instance.current.label if instance.current else None
		instance.status = WorkflowStatus.ABORTED
		instance.abort_reason = reason

		inflight = self._inflight.pop(instance.id, set())
		for task in inflight:
			task.cancel()

		logger.warning(
			f"Workflow {instance.id} aborted at {label}: {reason} ({len(inflight)} in-flight call(s) cancelled)"
		)
		await self._record_transition(instance, instance.position, reason)
		return self._aborted_outcome(instance, checkpoint=label)

	def reset_conversation(self, instance: WorkflowInstance, role_id: str, reason: str = "reset by operator") -> None:
		"""Invalidate the conversation with a role so the next call starts fresh."""
		self.registry.resolve(role_id)
		self.sessions.invalidate(instance.id, role_id, reason)

	def release(self, instance: WorkflowInstance) -> None:
		"""Forget per-instance state once the development session ends."""
		dropped = self.sessions.drop_instance(instance.id)
		self._locks.pop(instance.id, None)
		self._inflight.pop(instance.id, None)
		logger.debug(f"Released workflow {instance.id} ({dropped} conversation(s))")

	# Internals

	def _lock_for(self, instance: WorkflowInstance) -> asyncio.Lock:
		lock = self._locks.get(instance.id)
		if lock is None:
			lock = asyncio.Lock()
			self._locks[instance.id] = lock
		return lock

	def _require_current(self, instance: WorkflowInstance, label: str) -> int:
		index = instance.index_of(label)
		current = instance.current
		if current is None or index != instance.position:
			raise OutOfOrderCheckpoint(instance.id, label, current.label if current else None)
		return index

	def _is_satisfied(self, instance: WorkflowInstance, index: int, role_id: str, revision: str) -> bool:
		records = [v for v in instance.verdicts_for(index, revision) if v.role_id == role_id]
		return bool(records) and VerdictKind(records[-1].kind).satisfies

	async def _consult_all(
		self,
		instance: WorkflowInstance,
		checkpoint: Optional[Checkpoint],
		role_ids: list[str],
		prompt: str,
		label: str = "",
	) -> list[RoleResult]:
		"""Fan out one consultation per role and join them all."""
		if not role_ids:
			return []
		label = label or (checkpoint.label if checkpoint else "")

		tasks = [
			asyncio.create_task(
				self._consult_role(instance, label, role_id, prompt),
				name=f"{instance.id}:{label}:{role_id}",
			)
			for role_id in role_ids
		]
		inflight = self._inflight.setdefault(instance.id, set())
		inflight.update(tasks)
		try:
			gathered = await asyncio.gather(*tasks, return_exceptions=True)
		finally:
			inflight.difference_update(tasks)

		results = []
		for role_id, item in zip(role_ids, gathered):
			if isinstance(item, asyncio.CancelledError):
				verdict = Verdict(kind=VerdictKind.INCONCLUSIVE, rationale="consultation cancelled")
				results.append(RoleResult(role_id=role_id, verdict=verdict, hold_reason="Cancelled"))
			elif isinstance(item, BaseException):
				raise item
			else:
				results.append(item)
		return results

	async def _consult_role(
		self,
		instance: WorkflowInstance,
		label: str,
		role_id: str,
		prompt: str,
	) -> RoleResult:
		role = self.registry.resolve(role_id)
		handle = self.sessions.get_or_create(instance.id, role_id)

		exchange = await self.transport.send(role, handle, prompt)

		if instance.status == WorkflowStatus.ABORTED:
			logger.info(f"Ignoring late {role_id} response for aborted workflow {instance.id}")
			verdict = Verdict(kind=VerdictKind.INCONCLUSIVE, rationale="workflow aborted")
			return RoleResult(role_id=role_id, verdict=verdict, exchange=exchange, hold_reason="Aborted")

		if exchange.outcome == TransportOutcome.OK:
			if handle.is_pending and exchange.conversation_id:
				self.sessions.install_token(handle, exchange.conversation_id)
			self.sessions.touch(handle)
		elif exchange.outcome == TransportOutcome.MALFORMED_HANDLE:
			self.sessions.invalidate(instance.id, role_id, exchange.detail)
		# Timeouts and agent errors leave the handle valid for a retry

		verdict = self.reconciler.reconcile(exchange)
		await self._record_exchange(instance, label, exchange, verdict)

		reason = "" if verdict.kind.satisfies else hold_reason(exchange, verdict)
		return RoleResult(role_id=role_id, verdict=verdict, exchange=exchange, hold_reason=reason)

	def _record_verdict(
		self,
		instance: WorkflowInstance,
		index: int,
		label: str,
		result: RoleResult,
		revision: str,
	) -> None:
		instance.verdicts.append(VerdictRecord(
			checkpoint_index=index,
			label=label,
			role_id=result.role_id,
			revision=revision,
			kind=result.verdict.kind.value,
			rationale=result.verdict.rationale,
		))

	async def _advance(
		self,
		instance: WorkflowInstance,
		checkpoint: Checkpoint,
		reason: str,
		results: list[RoleResult],
	) -> Outcome:
		from_position = instance.position
		if checkpoint.terminal:
			instance.status = WorkflowStatus.COMPLETED
			kind = OutcomeKind.COMPLETED
			logger.info(f"Workflow {instance.id} completed at {checkpoint.label}")
		else:
			instance.position += 1
			instance.status = WorkflowStatus.IN_PROGRESS
			kind = OutcomeKind.ADVANCED
			logger.info(
				f"Workflow {instance.id} advanced {checkpoint.label} -> "
				f"{instance.checkpoints[instance.position].label} ({reason})"
			)

		await self._record_transition(instance, from_position, reason)
		return Outcome(
			kind=kind,
			instance_id=instance.id,
			checkpoint=checkpoint.label,
			position=instance.position,
			reason=reason,
			results=results,
		)

	def _aborted_outcome(
		self,
		instance: WorkflowInstance,
		results: Optional[list[RoleResult]] = None,
		checkpoint: Optional[str] = None,
	) -> Outcome:
		if checkpoint is None:
			checkpoint = instance.checkpoints[instance.position].label
		return Outcome(
			kind=OutcomeKind.ABORTED,
			instance_id=instance.id,
			checkpoint=checkpoint,
			position=instance.position,
			reason=instance.abort_reason,
			results=results or [],
		)

	async def _record_transition(self, instance: WorkflowInstance, from_position: int, reason: str) -> None:
		instance.transitions.append(TransitionRecord(
			from_position=from_position,
			to_position=instance.position,
			status=instance.status,
			reason=reason,
		))
		if self.audit is None:
			return
		try:
			await self.audit.record_transition(instance, from_position, reason)
		except Exception as e:
			logger.error(f"Failed to audit transition of {instance.id}: {e}")

	async def _record_exchange(
		self,
		instance: WorkflowInstance,
		label: str,
		exchange: AgentExchange,
		verdict: Verdict,
	) -> None:
		if self.audit is None:
			return
		try:
			await self.audit.record_exchange(instance.id, label, exchange, verdict.kind.value)
		except Exception as e:
			logger.error(f"Failed to audit exchange with {exchange.role_id}: {e}")

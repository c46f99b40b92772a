"""
Workflow data model - checkpoints and workflow instances.

A WorkflowInstance is an ordered, fixed sequence of checkpoints. Only the
CheckpointScheduler mutates an instance; callers own it and pass it in.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from .errors import ConfigurationError, UnknownCheckpoint

# Fixed checkpoint sequence of the development workflow
STANDARD_LABELS: tuple[str, ...] = ("0", "T-1", "T", "T+1", "L-1", "L")

# Checkpoint -> required roles. Troubleshooter is out-of-band.
CHECKPOINT_ROLES: dict[str, tuple[str, ...]] = {
	"0": ("architect",),
	"T-1": ("architect",),
	"T": ("reviewer",),
	"T+1": ("reviewer",),
	"L-1": ("reviewer",),
	"L": ("architect",),
}

# Checkpoints that may be skipped for small changes
CONDITIONAL_LABELS: frozenset[str] = frozenset({"T-1", "T+1"})


class AdvancementPolicy(str, Enum):
	"""Whether a checkpoint is always required."""
	MANDATORY = "mandatory"
	CONDITIONAL = "conditional"  # skippable when the change size is below threshold


class WorkflowStatus(str, Enum):
	"""Lifecycle status of a workflow instance."""
	PENDING = "pending"
	IN_PROGRESS = "in_progress"
	COMPLETED = "completed"
	ABORTED = "aborted"


@dataclass(frozen=True)
class Checkpoint:
	"""A fixed point in the workflow where roles must be consulted."""
	label: str
	roles: tuple[str, ...]
	policy: AdvancementPolicy = AdvancementPolicy.MANDATORY
	min_change_size: int = 0
	terminal: bool = False

	def is_skippable(self, change_size: Optional[int]) -> bool:
		"""True if policy permits skipping for a change of the given size."""
		if self.policy != AdvancementPolicy.CONDITIONAL or change_size is None:
			return False
		return change_size < self.min_change_size


@dataclass
class VerdictRecord:
	"""A verdict recorded against a checkpoint for one role and revision."""
	checkpoint_index: int
	label: str
	role_id: str
	revision: str
	kind: str
	rationale: str = ""
	recorded_at: str = field(default_factory=lambda: datetime.now().isoformat())


@dataclass
class TransitionRecord:
	"""A state transition of a workflow instance."""
	from_position: int
	to_position: int
	status: WorkflowStatus
	reason: str = ""
	timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


@dataclass
class WorkflowInstance:
	"""State of one development workflow."""
	id: str
	checkpoints: tuple[Checkpoint, ...]
	position: int = 0
	status: WorkflowStatus = WorkflowStatus.PENDING
	created_at: str = field(default_factory=lambda: datetime.now().isoformat())
	abort_reason: str = ""
	verdicts: list[VerdictRecord] = field(default_factory=list)
	transitions: list[TransitionRecord] = field(default_factory=list)

	def __post_init__(self) -> None:
		self.checkpoints = tuple(self.checkpoints)
		if not self.checkpoints:
			raise ConfigurationError("A workflow needs at least one checkpoint")
		labels = [cp.label for cp in self.checkpoints]
		if len(set(labels)) != len(labels):
			raise ConfigurationError(f"Duplicate checkpoint labels: {labels}")
		for cp in self.checkpoints[:-1]:
			if cp.terminal:
				raise ConfigurationError(f"Only the last checkpoint may be terminal, not {cp.label!r}")
		if not self.checkpoints[-1].terminal:
			raise ConfigurationError(f"Last checkpoint {labels[-1]!r} must be terminal")

	@property
	def is_closed(self) -> bool:
		return self.status in (WorkflowStatus.COMPLETED, WorkflowStatus.ABORTED)

	@property
	def current(self) -> Optional[Checkpoint]:
		"""The checkpoint awaiting evaluation, or None once closed."""
		if self.is_closed:
			return None
		return self.checkpoints[self.position]

	@property
	def labels(self) -> list[str]:
		return [cp.label for cp in self.checkpoints]

	def index_of(self, label: str) -> int:
		for i, cp in enumerate(self.checkpoints):
			if cp.label == label:
				return i
		raise UnknownCheckpoint(f"Workflow {self.id} has no checkpoint {label!r} (has {self.labels})")

	def verdicts_for(self, index: int, revision: Optional[str] = None) -> list[VerdictRecord]:
		"""Verdicts recorded at a checkpoint, optionally for one revision."""
		return [
			v for v in self.verdicts
			if v.checkpoint_index == index and (revision is None or v.revision == revision)
		]

	def to_dict(self) -> dict:
		"""Summary for status reporting."""
		current = self.current
		return {
			"id": self.id,
			"status": self.status.value,
			"position": self.position,
			"current_checkpoint": current.label if current else None,
			"checkpoints": [
				{
					"label": cp.label,
					"roles": list(cp.roles),
					"policy": cp.policy.value,
					"terminal": cp.terminal,
				}
				for cp in self.checkpoints
			],
			"abort_reason": self.abort_reason,
			"verdicts": [
				{
					"checkpoint": v.label,
					"role": v.role_id,
					"revision": v.revision,
					"kind": v.kind,
					"recorded_at": v.recorded_at,
				}
				for v in self.verdicts
			],
		}


def build_checkpoints(
	labels: Optional[list[str]] = None,
	change_size_threshold: int = 0,
	checkpoint_roles: Optional[dict[str, tuple[str, ...]]] = None,
) -> tuple[Checkpoint, ...]:
	"""
	Build checkpoint definitions for a subset of the standard labels.

	Args:
		labels: Labels in workflow order (default: all STANDARD_LABELS)
		change_size_threshold: Changes smaller than this may skip conditional checkpoints
		checkpoint_roles: Label -> roles table (default: CHECKPOINT_ROLES)

	Returns:
		Tuple of checkpoints; the last one is terminal
	"""
	labels = list(labels) if labels else list(STANDARD_LABELS)
	table = checkpoint_roles or CHECKPOINT_ROLES

	order = {label: i for i, label in enumerate(STANDARD_LABELS)}
	known = [label for label in labels if label in order]
	if known != sorted(known, key=order.__getitem__):
		raise ConfigurationError(f"Checkpoint labels out of workflow order: {labels}")

	checkpoints = []
	for i, label in enumerate(labels):
		if label not in table:
			raise ConfigurationError(f"No roles mapped to checkpoint {label!r}")
		conditional = label in CONDITIONAL_LABELS and change_size_threshold > 0
		checkpoints.append(Checkpoint(
			label=label,
			roles=tuple(table[label]),
			policy=AdvancementPolicy.CONDITIONAL if conditional else AdvancementPolicy.MANDATORY,
			min_change_size=change_size_threshold if conditional else 0,
			terminal=i == len(labels) - 1,
		))
	return tuple(checkpoints)


def new_instance_id() -> str:
	return f"wf-{uuid.uuid4().hex[:12]}"

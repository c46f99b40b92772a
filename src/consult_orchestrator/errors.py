"""Exception taxonomy for the consultation engine."""

from typing import Optional


class OrchestratorError(Exception):
	"""Base exception for consult-orchestrator errors."""
	pass


class ConfigurationError(OrchestratorError):
	"""Raised when static role/checkpoint configuration is inconsistent."""
	pass


class UnknownRole(ConfigurationError):
	"""Raised when a role identifier is not registered."""

	def __init__(self, role_id: str):
		self.role_id = role_id
		super().__init__(f"Unknown role: {role_id}")


class MalformedHandle(OrchestratorError):
	"""Raised when a conversation identifier fails the pre-send shape check."""

	def __init__(self, token: str, reason: str = ""):
		self.token = token
		self.reason = reason or "identifier does not match <scheme><hex body>"
		super().__init__(f"Malformed conversation handle {token!r}: {self.reason}")


class OutOfOrderCheckpoint(OrchestratorError):
	"""Raised when a checkpoint is evaluated before the current one is satisfied."""

	def __init__(self, instance_id: str, requested: str, current: Optional[str]):
		self.instance_id = instance_id
		self.requested = requested
		self.current = current
		super().__init__(
			f"Workflow {instance_id}: cannot evaluate checkpoint {requested!r} "
			f"while current checkpoint is {current!r}"
		)


class UnknownCheckpoint(OrchestratorError):
	"""Raised when a label is not part of the workflow instance."""
	pass


class SkipNotAllowed(OrchestratorError):
	"""Raised when skipping a checkpoint is not permitted by its policy."""
	pass


class WorkflowClosed(OrchestratorError):
	"""Raised when consulting on behalf of a completed or aborted workflow."""
	pass


class UnknownWorkflow(OrchestratorError):
	"""Raised when a workflow instance id is not known to the server."""

	def __init__(self, instance_id: str):
		self.instance_id = instance_id
		super().__init__(f"Unknown workflow: {instance_id}")


class DuplicateWorkflow(OrchestratorError):
	"""Raised when a workflow id is already in use."""

	def __init__(self, instance_id: str):
		self.instance_id = instance_id
		super().__init__(f"Workflow already exists: {instance_id}")

"""
Conversation Session Store - one conversation handle per (workflow, role).

Handles are local bookkeeping: allocating one never touches the network.
The agent's conversation identifier is installed after the first transport
call and must be reused for every later call to the same role within the
same workflow instance, until invalidated.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from .errors import MalformedHandle

logger = logging.getLogger(__name__)

DEFAULT_SCHEMES: tuple[str, ...] = ("codex:",)

_BODY_PATTERN = re.compile(r"^[0-9a-fA-F][0-9a-fA-F-]*$")


class HandleState(str, Enum):
	"""State of a conversation handle."""
	ACTIVE = "active"
	EXPIRED = "expired"
	INVALID = "invalid"


@dataclass
class ConversationHandle:
	"""A durable reference to an agent conversation."""
	instance_id: str
	role_id: str
	token: str = ""  # empty until the agent creates the session
	created_at: str = field(default_factory=lambda: datetime.now().isoformat())
	last_activity: float = field(default_factory=time.monotonic)
	state: HandleState = HandleState.ACTIVE
	invalid_reason: str = ""

	@property
	def is_pending(self) -> bool:
		"""True until the first exchange installs a token."""
		return not self.token

	def to_dict(self) -> dict:
		return {
			"instance_id": self.instance_id,
			"role_id": self.role_id,
			"token": self.token,
			"created_at": self.created_at,
			"state": self.state.value,
			"invalid_reason": self.invalid_reason,
		}


def validate_conversation_id(token: str, schemes: tuple[str, ...] = DEFAULT_SCHEMES) -> str:
	"""
	Check a conversation identifier and return its body.

	The identifier must be one of the recognized scheme prefixes followed
	by a hexadecimal/hyphen body (e.g. "codex:0199a1b2-...").

	Raises:
		MalformedHandle: If the identifier does not have that shape
	"""
	if not token:
		raise MalformedHandle(token, "empty identifier")
	for scheme in schemes:
		if token.startswith(scheme):
			body = token[len(scheme):]
			if _BODY_PATTERN.match(body):
				return body
			raise MalformedHandle(token, f"body after {scheme!r} is not hexadecimal")
	raise MalformedHandle(token, f"missing scheme prefix (expected one of {list(schemes)})")


class SessionStore:
	"""
	Tracks conversation handles, partitioned by (instance_id, role_id).

	Concurrent consultations within one instance never share a handle:
	each role has its own entry, and only the task with the outstanding
	call for that role mutates it.
	"""

	def __init__(self, idle_timeout: float = 0.0):
		"""
		Args:
			idle_timeout: Seconds of inactivity after which a handle expires (0 = never)
		"""
		self.idle_timeout = idle_timeout
		self._handles: dict[tuple[str, str], ConversationHandle] = {}

	def get_or_create(self, instance_id: str, role_id: str) -> ConversationHandle:
		"""Return the active handle for (instance, role), allocating a fresh one if needed."""
		key = (instance_id, role_id)
		handle = self._handles.get(key)

		if handle is not None and handle.state == HandleState.ACTIVE and self._is_idle(handle):
			handle.state = HandleState.EXPIRED
			logger.info(f"Conversation for {role_id} in {instance_id} expired after inactivity")

		if handle is None or handle.state != HandleState.ACTIVE:
			handle = ConversationHandle(instance_id=instance_id, role_id=role_id)
			self._handles[key] = handle
			logger.debug(f"Allocated conversation handle for {role_id} in {instance_id}")

		return handle

	def get(self, instance_id: str, role_id: str) -> Optional[ConversationHandle]:
		"""Return the current handle without allocating."""
		return self._handles.get((instance_id, role_id))

	def install_token(self, handle: ConversationHandle, token: str) -> None:
		"""Install the conversation identifier returned by the first exchange."""
		if handle.state != HandleState.ACTIVE:
			logger.warning(
				f"Ignoring token for {handle.state.value} handle ({handle.role_id} in {handle.instance_id})"
			)
			return
		if handle.token and handle.token != token:
			logger.warning(
				f"Agent returned a different conversation id for {handle.role_id} "
				f"in {handle.instance_id}; keeping {handle.token}"
			)
			return
		handle.token = token
		self.touch(handle)

	def invalidate(self, instance_id: str, role_id: str, reason: str) -> None:
		"""Mark the handle invalid; the next get_or_create allocates a fresh one."""
		handle = self._handles.get((instance_id, role_id))
		if handle is None:
			return
		handle.state = HandleState.INVALID
		handle.invalid_reason = reason
		logger.info(f"Invalidated conversation for {role_id} in {instance_id}: {reason}")

	def touch(self, handle: ConversationHandle) -> None:
		"""Record activity on a successful exchange."""
		handle.last_activity = time.monotonic()

	def drop_instance(self, instance_id: str) -> int:
		"""Forget all handles of a finished workflow instance."""
		keys = [key for key in self._handles if key[0] == instance_id]
		for key in keys:
			del self._handles[key]
		return len(keys)

	def list_handles(self, instance_id: Optional[str] = None) -> list[ConversationHandle]:
		return [
			h for (iid, _), h in self._handles.items()
			if instance_id is None or iid == instance_id
		]

	def _is_idle(self, handle: ConversationHandle) -> bool:
		if self.idle_timeout <= 0:
			return False
		return time.monotonic() - handle.last_activity > self.idle_timeout

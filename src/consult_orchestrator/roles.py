"""
Agent Role Registry - static mapping of role name to consultation profile.

Roles are loaded once at startup (built-in defaults, optionally overridden
by the [roles.<id>] tables of config.toml) and are read-only afterwards.
"""

import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import Config
from .errors import ConfigurationError, UnknownRole
from .workflow import STANDARD_LABELS

logger = logging.getLogger(__name__)

DEFAULT_MAX_LATENCY = 600.0  # 10 minutes


class ExecutionProfile(BaseModel):
	"""Launch profile for the external agent process of a role."""
	model_config = ConfigDict(frozen=True)

	model: str = Field(default="gpt-5.2", description="Model identifier")
	reasoning_effort: str = Field(default="high", description="model_reasoning_effort level")
	sandbox: str = Field(default="read-only", description="Sandbox permission level")
	sandbox_permissions: tuple[str, ...] = Field(default=("disk-full-read-access",))

	def to_config_overrides(self) -> list[str]:
		"""Render as `-c key=value` overrides for the codex command line."""
		permissions = ", ".join(f'"{p}"' for p in self.sandbox_permissions)
		return [
			f'model="{self.model}"',
			f'model_reasoning_effort="{self.reasoning_effort}"',
			f'sandbox="{self.sandbox}"',
			f"sandbox_permissions=[{permissions}]",
		]


class Role(BaseModel):
	"""A named specialist consultation profile."""
	model_config = ConfigDict(frozen=True)

	id: str = Field(description="Role identifier (e.g. 'architect')")
	description: str = Field(default="")
	prompt_ref: str = Field(description="Prompt file name, relative to the prompts directory")
	allowed_checkpoints: frozenset[str] = Field(default_factory=frozenset)
	max_latency: float = Field(default=DEFAULT_MAX_LATENCY, gt=0, description="Response ceiling in seconds")
	profile: ExecutionProfile = Field(default_factory=ExecutionProfile)
	out_of_band: bool = Field(default=False, description="Consulted outside the main checkpoint sequence")

	def prompt_path(self, prompts_dir: Path) -> Path:
		"""Resolve the prompt reference against a prompts directory."""
		return Path(prompts_dir) / self.prompt_ref

	def allows(self, label: str) -> bool:
		return self.out_of_band or label in self.allowed_checkpoints


DEFAULT_ROLES: tuple[Role, ...] = (
	Role(
		id="architect",
		description="Design and plan review before implementation; documentation sign-off",
		prompt_ref="architect.txt",
		allowed_checkpoints=frozenset({"0", "T-1", "L"}),
	),
	Role(
		id="reviewer",
		description="Code review of implemented changes",
		prompt_ref="reviewer.txt",
		allowed_checkpoints=frozenset({"T", "T+1", "L-1"}),
	),
	Role(
		id="troubleshooter",
		description="Debugging consultation at any point in the workflow",
		prompt_ref="troubleshooter.txt",
		allowed_checkpoints=frozenset(STANDARD_LABELS),
		out_of_band=True,
	),
)

_PROFILE_KEYS = {"model", "reasoning_effort", "sandbox", "sandbox_permissions"}


class RoleRegistry:
	"""
	Read-only registry of consultation roles.

	Usage:
		registry = RoleRegistry.from_config(config)
		role = registry.resolve("reviewer")
	"""

	def __init__(self, roles: Iterable[Role]):
		table: dict[str, Role] = {}
		for role in roles:
			if role.id in table:
				raise ConfigurationError(f"Duplicate role definition: {role.id}")
			table[role.id] = role
		if not table:
			raise ConfigurationError("No roles configured")
		self._roles: Mapping[str, Role] = MappingProxyType(table)

	@classmethod
	def from_config(cls, config: Optional[Config] = None) -> "RoleRegistry":
		"""Build the registry from defaults plus config.toml role tables."""
		overrides: dict[str, dict[str, Any]] = dict(config.roles) if config else {}
		default_latency = config.transport_timeout if config else DEFAULT_MAX_LATENCY

		roles = []
		for role in DEFAULT_ROLES:
			data = role.model_dump()
			data["max_latency"] = default_latency
			roles.append(_build_role(role.id, data, overrides.pop(role.id, {})))

		# Roles only present in config
		for role_id, table in overrides.items():
			base = {"id": role_id, "prompt_ref": f"{role_id}.txt", "max_latency": default_latency}
			roles.append(_build_role(role_id, base, table))

		registry = cls(roles)
		logger.info(f"Role registry loaded: {', '.join(registry.ids())}")
		return registry

	def resolve(self, role_id: str) -> Role:
		"""Look up a role, raising UnknownRole if it is not registered."""
		try:
			return self._roles[role_id]
		except KeyError:
			raise UnknownRole(role_id) from None

	def __contains__(self, role_id: object) -> bool:
		return role_id in self._roles

	def ids(self) -> list[str]:
		return list(self._roles)

	def roles(self) -> list[Role]:
		return list(self._roles.values())

	def validate(self, checkpoint_roles: Mapping[str, Iterable[str]]) -> None:
		"""
		Validate a checkpoint -> required roles mapping.

		Raises:
			UnknownRole: A referenced role is not registered
			ConfigurationError: A checkpoint has no roles, or a role is not
				allowed at the checkpoint it is mapped to
		"""
		for label, role_ids in checkpoint_roles.items():
			role_ids = list(role_ids)
			if not role_ids:
				raise ConfigurationError(f"Checkpoint {label!r} has no required roles")
			for role_id in role_ids:
				role = self.resolve(role_id)
				if role.out_of_band:
					raise ConfigurationError(
						f"Role {role_id!r} is out-of-band and cannot gate checkpoint {label!r}"
					)
				if not role.allows(label):
					raise ConfigurationError(
						f"Role {role_id!r} is not allowed at checkpoint {label!r}"
					)


def _build_role(role_id: str, base: dict[str, Any], table: dict[str, Any]) -> Role:
	"""Merge a config table onto a role definition."""
	data = dict(base)
	profile = dict(data.pop("profile", None) or {})
	for key, val in table.items():
		if key in _PROFILE_KEYS:
			profile[key] = tuple(val) if key == "sandbox_permissions" else val
		elif key == "allowed_checkpoints":
			data[key] = frozenset(val)
		else:
			data[key] = val
	data["id"] = role_id
	data["profile"] = profile
	try:
		return Role.model_validate(data)
	except ValidationError as e:
		raise ConfigurationError(f"Invalid configuration for role {role_id!r}: {e}") from e

"""Tests for the role registry."""

from pathlib import Path

import pytest

from consult_orchestrator.config import Config
from consult_orchestrator.errors import ConfigurationError, UnknownRole
from consult_orchestrator.roles import DEFAULT_ROLES, ExecutionProfile, Role, RoleRegistry
from consult_orchestrator.workflow import CHECKPOINT_ROLES


def test_default_registry_resolves_roles():
	registry = RoleRegistry(DEFAULT_ROLES)
	assert registry.ids() == ["architect", "reviewer", "troubleshooter"]
	assert registry.resolve("reviewer").prompt_ref == "reviewer.txt"
	assert "architect" in registry
	assert "qa" not in registry


def test_resolve_unknown_role_raises():
	registry = RoleRegistry(DEFAULT_ROLES)
	with pytest.raises(UnknownRole) as exc_info:
		registry.resolve("security-auditor")
	assert exc_info.value.role_id == "security-auditor"


def test_default_checkpoint_table_is_valid():
	"""The standard checkpoint table validates against the default roles."""
	RoleRegistry(DEFAULT_ROLES).validate(CHECKPOINT_ROLES)


def test_validate_rejects_unknown_role():
	registry = RoleRegistry(DEFAULT_ROLES)
	with pytest.raises(UnknownRole):
		registry.validate({"T": ("reviewer", "security-auditor")})


def test_validate_rejects_out_of_band_gate():
	"""The troubleshooter cannot be a mandatory checkpoint role."""
	registry = RoleRegistry(DEFAULT_ROLES)
	with pytest.raises(ConfigurationError, match="out-of-band"):
		registry.validate({"T": ("troubleshooter",)})


def test_validate_rejects_disallowed_checkpoint():
	registry = RoleRegistry(DEFAULT_ROLES)
	with pytest.raises(ConfigurationError, match="not allowed"):
		registry.validate({"0": ("reviewer",)})


def test_validate_rejects_empty_roles():
	registry = RoleRegistry(DEFAULT_ROLES)
	with pytest.raises(ConfigurationError, match="no required roles"):
		registry.validate({"T": ()})


def test_duplicate_role_rejected():
	with pytest.raises(ConfigurationError, match="Duplicate"):
		RoleRegistry([DEFAULT_ROLES[0], DEFAULT_ROLES[0]])


def test_roles_are_immutable():
	role = RoleRegistry(DEFAULT_ROLES).resolve("architect")
	with pytest.raises(Exception):
		role.max_latency = 1.0


def test_profile_config_overrides():
	profile = ExecutionProfile()
	assert profile.to_config_overrides() == [
		'model="gpt-5.2"',
		'model_reasoning_effort="high"',
		'sandbox="read-only"',
		'sandbox_permissions=["disk-full-read-access"]',
	]


def test_prompt_path_resolves_against_directory(tmp_path: Path):
	role = Role(id="reviewer", prompt_ref="reviewer.txt")
	assert role.prompt_path(tmp_path) == tmp_path / "reviewer.txt"


def test_from_config_applies_overrides(tmp_path: Path):
	config = Config(config_dir=tmp_path, data_dir=tmp_path, transport_timeout=300.0)
	config.roles = {
		"reviewer": {"model": "gpt-5.2-codex", "max_latency": 120},
		"qa": {"description": "Test plan review", "allowed_checkpoints": ["T"]},
	}

	registry = RoleRegistry.from_config(config)

	reviewer = registry.resolve("reviewer")
	assert reviewer.profile.model == "gpt-5.2-codex"
	assert reviewer.profile.reasoning_effort == "high"
	assert reviewer.max_latency == 120
	assert registry.resolve("architect").max_latency == 300.0

	qa = registry.resolve("qa")
	assert qa.prompt_ref == "qa.txt"
	assert qa.allows("T")
	assert not qa.allows("0")


def test_from_config_rejects_invalid_latency(tmp_path: Path):
	config = Config(config_dir=tmp_path, data_dir=tmp_path)
	config.roles = {"reviewer": {"max_latency": 0}}
	with pytest.raises(ConfigurationError, match="reviewer"):
		RoleRegistry.from_config(config)

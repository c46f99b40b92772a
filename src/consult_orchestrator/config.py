"""Configuration system using platformdirs for cross-platform paths."""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import platformdirs
from dotenv import load_dotenv

APP_NAME = "consult-orchestrator"
APP_AUTHOR = "consult-orchestrator"

ENV_PREFIX = "CONSULT_ORCHESTRATOR_"


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	audit_db_path: Path = field(init=False)
	log_dir: Path = field(init=False)

	# Directory holding <role>.txt prompt files
	prompts_dir: Path = field(default_factory=lambda: Path.cwd() / "prompts")

	# Agent launch
	codex_command: str = "codex"
	transport_timeout: float = 600.0
	launch_timeout: float = 60.0

	# Sessions
	session_idle_timeout: float = 0.0
	conversation_schemes: tuple[str, ...] = ("codex:",)

	# Scheduling
	change_size_threshold: int = 50
	audit_enabled: bool = True

	log_level: str = "INFO"

	# Per-role overrides from the [roles.<id>] tables of config.toml
	roles: dict[str, dict[str, Any]] = field(default_factory=dict)

	def __post_init__(self) -> None:
		self.audit_db_path = self.data_dir / "audit.db"
		self.log_dir = self.data_dir / "logs"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)


_PATH_FIELDS = {"config_dir", "data_dir", "prompts_dir"}
_FLOAT_FIELDS = {"transport_timeout", "launch_timeout", "session_idle_timeout"}
_INT_FIELDS = {"change_size_threshold"}
_BOOL_FIELDS = {"audit_enabled"}


def _coerce(attr: str, val: Any) -> Any:
	"""Convert a raw toml/env value to the type of the config field."""
	if attr in _PATH_FIELDS:
		return Path(os.path.expanduser(str(val)))
	if attr in _FLOAT_FIELDS:
		return float(val)
	if attr in _INT_FIELDS:
		return int(val)
	if attr in _BOOL_FIELDS:
		if isinstance(val, str):
			return val.strip().lower() in ("1", "true", "yes", "on")
		return bool(val)
	if attr == "conversation_schemes":
		if isinstance(val, str):
			val = [s.strip() for s in val.split(",") if s.strip()]
		return tuple(val)
	return val


def _apply_env_overrides(config: Config) -> Config:
	"""Apply CONSULT_ORCHESTRATOR_* environment variable overrides."""
	env_map = {
		f"{ENV_PREFIX}CONFIG_DIR": "config_dir",
		f"{ENV_PREFIX}DATA_DIR": "data_dir",
		f"{ENV_PREFIX}PROMPTS_DIR": "prompts_dir",
		f"{ENV_PREFIX}CODEX_COMMAND": "codex_command",
		f"{ENV_PREFIX}TRANSPORT_TIMEOUT": "transport_timeout",
		f"{ENV_PREFIX}LAUNCH_TIMEOUT": "launch_timeout",
		f"{ENV_PREFIX}SESSION_IDLE_TIMEOUT": "session_idle_timeout",
		f"{ENV_PREFIX}CONVERSATION_SCHEMES": "conversation_schemes",
		f"{ENV_PREFIX}CHANGE_SIZE_THRESHOLD": "change_size_threshold",
		f"{ENV_PREFIX}AUDIT_ENABLED": "audit_enabled",
		"LOG_LEVEL": "log_level",
	}
	for env_key, attr in env_map.items():
		val = os.getenv(env_key)
		if val:
			setattr(config, attr, _coerce(attr, val))
	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def _apply_toml(config: Config) -> Config:
	"""Apply config.toml overrides if file exists."""
	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	for key, val in data.items():
		if key == "roles":
			config.roles = {role_id: dict(table) for role_id, table in val.items()}
		elif hasattr(config, key):
			setattr(config, key, _coerce(key, val))

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config() -> Config:
	"""Load config with precedence: env vars (.env included) > config.toml > defaults."""
	load_dotenv()
	config = Config()
	config = _apply_env_overrides(config)
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.ensure_dirs()
	return config


# Singleton
_config: Config | None = None


def get_config() -> Config:
	"""Get or create the global config instance."""
	global _config
	if _config is None:
		_config = load_config()
	return _config

"""CLI for consult-orchestrator: setup, serve, doctor, roles, checkpoints, and history commands."""

import argparse
import asyncio
import dataclasses
import json
import platform
import shutil
import sys
from pathlib import Path

from importlib.metadata import version as pkg_version

from .config import Config, load_config
from .errors import OrchestratorError

SERVER_NAME = "consult-orchestrator"

MCP_ENTRY = {
	"type": "stdio",
	"command": "consult-orchestrator",
	"args": ["serve"],
}

CORE_DEPS = ["mcp", "aiosqlite", "platformdirs", "python-dotenv", "pydantic", "rich"]


def _detect_claude_code_config() -> Path:
	"""Detect the MCP settings file of the driving agent."""
	home = Path.home()
	candidates = [
		home / ".claude" / "claude_code_config.json",
		home / ".claude.json",
	]
	for path in candidates:
		if path.exists():
			return path
	# Default location even if it doesn't exist yet
	return home / ".claude" / "claude_code_config.json"


def _inject_mcp_config(config_path: Path, entry: dict = MCP_ENTRY) -> bool:
	"""Register (or refresh) the consult-orchestrator server entry in an MCP config file."""
	try:
		data = json.loads(config_path.read_text()) if config_path.exists() else {}
		servers = data.setdefault("mcpServers", {})

		current = servers.get(SERVER_NAME)
		if current == entry:
			print(f"  Already configured in {config_path}")
			return True

		servers[SERVER_NAME] = dict(entry)
		config_path.parent.mkdir(parents=True, exist_ok=True)
		config_path.write_text(json.dumps(data, indent=2))
		print(f"  {'Updated stale entry in' if current else 'Added to'} {config_path}")
		return True
	except (json.JSONDecodeError, OSError) as e:
		print(f"  Failed to update {config_path}: {e}")
		return False


def cmd_setup(args: argparse.Namespace) -> None:
	"""Write a default config.toml and register the MCP server."""
	print("consult-orchestrator setup")
	print(f"{'=' * 40}")

	config = load_config()
	print(f"  Config: {config.config_dir}")
	print(f"  Data:   {config.data_dir}")

	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		toml_path.write_text(
			'# consult-orchestrator configuration\n'
			'\n'
			'# prompts_dir = "~/prompts"\n'
			'# transport_timeout = 600\n'
			'# launch_timeout = 60\n'
			'# change_size_threshold = 50\n'
			'\n'
			'# [roles.reviewer]\n'
			'# model = "gpt-5.2"\n'
			'# reasoning_effort = "high"\n'
		)
		print(f"  Config file created: {toml_path}")
	else:
		print(f"  Config file exists: {toml_path}")

	target = Path(args.mcp_config) if getattr(args, "mcp_config", None) else _detect_claude_code_config()
	_inject_mcp_config(target)


def cmd_serve(args: argparse.Namespace) -> None:
	"""Run the MCP server (stdio transport)."""
	from .server import mcp
	mcp.run()


def _check_config_toml(config_dir: Path) -> tuple[str, str | None]:
	"""Parse config.toml and flag keys the server would ignore. Returns (status, issue_or_none)."""
	import tomllib

	toml_path = config_dir / "config.toml"
	if not toml_path.exists():
		return "not found (optional)", None
	try:
		with open(toml_path, "rb") as f:
			data = tomllib.load(f)
	except tomllib.TOMLDecodeError as e:
		return f"INVALID ({e})", f"config.toml parse error: {e}"

	known = {fld.name for fld in dataclasses.fields(Config) if fld.init}
	unknown = sorted(key for key in data if key not in known)
	if unknown:
		return f"valid, {len(unknown)} unknown key(s)", f"config.toml keys ignored: {', '.join(unknown)}"
	roles = data.get("roles", {})
	if not isinstance(roles, dict) or not all(isinstance(t, dict) for t in roles.values()):
		return "INVALID (roles)", "config.toml: [roles.<id>] entries must be tables"
	return f"valid ({len(roles)} role override(s))", None


def _check_roles(config: Config) -> tuple[list[str], list[str]]:
	"""Validate the role table and prompt files. Returns (status_lines, issues)."""
	from .roles import RoleRegistry
	from .workflow import CHECKPOINT_ROLES

	lines: list[str] = []
	issues: list[str] = []
	try:
		registry = RoleRegistry.from_config(config)
		registry.validate(CHECKPOINT_ROLES)
	except OrchestratorError as e:
		return [f"INVALID ({e})"], [f"Role configuration: {e}"]

	for role in registry.roles():
		prompt = role.prompt_path(config.prompts_dir)
		if prompt.exists():
			lines.append(f"{role.id:16s} {prompt}")
		else:
			lines.append(f"{role.id:16s} MISSING {prompt}")
			issues.append(f"Prompt file for {role.id} not found: {prompt}")
	return lines, issues


def _check_codex(command: str) -> tuple[str, str | None]:
	"""Check that the agent executable is on PATH."""
	path = shutil.which(command)
	if path:
		return f"OK ({path})", None
	return "NOT FOUND", f"'{command}' not found on PATH"


def _check_server_startup() -> tuple[str, str | None]:
	"""Build the server and confirm every tool is exposed. Returns (status, issue_or_none)."""
	from .tools import TOOL_NAMES

	try:
		from .server import mcp as server_instance
		tools = asyncio.run(server_instance.list_tools())
	except Exception as e:
		return f"FAILED ({e})", f"Server startup failed: {e}"

	registered = {tool.name for tool in tools}
	missing = [name for name in TOOL_NAMES if name not in registered]
	if missing:
		return f"INCOMPLETE (missing {', '.join(missing)})", f"Server is missing tools: {', '.join(missing)}"
	return f"OK ({len(registered)} tools registered)", None


def cmd_doctor(args: argparse.Namespace) -> None:
	"""Health check - verify installation and configuration."""
	print("consult-orchestrator doctor")
	print(f"{'=' * 40}")

	config = load_config()
	issues: list[str] = []

	py_ver = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
	print(f"  Python:       {py_ver}")
	print(f"  Platform:     {platform.system()} {platform.machine()}")
	print()

	print("  Core deps:")
	for dep in CORE_DEPS:
		try:
			dep_ver = pkg_version(dep)
			print(f"    {dep:22s} {dep_ver}")
		except Exception:
			print(f"    {dep:22s} NOT INSTALLED")
			issues.append(f"{dep} package not installed")
	print()

	print("  Agent:")
	codex_status, codex_issue = _check_codex(config.codex_command)
	print(f"    {config.codex_command}: {codex_status}")
	if codex_issue:
		issues.append(codex_issue)
	print()

	print("  Config:")
	toml_status, toml_issue = _check_config_toml(config.config_dir)
	print(f"    config.toml:         {toml_status}")
	if toml_issue:
		issues.append(toml_issue)
	print()

	print("  Roles:")
	role_lines, role_issues = _check_roles(config)
	for line in role_lines:
		print(f"    {line}")
	issues.extend(role_issues)
	print()

	print("  Server:")
	server_status, server_issue = _check_server_startup()
	print(f"    {server_status}")
	if server_issue:
		issues.append(server_issue)
	print()

	if issues:
		print(f"  {len(issues)} issue(s) found:")
		for issue in issues:
			print(f"    - {issue}")
		sys.exit(1)
	else:
		print("  All checks passed.")


def cmd_roles(args: argparse.Namespace) -> None:
	"""Show the role registry."""
	from .roles import RoleRegistry
	from .visualizer import render_roles
	from .workflow import CHECKPOINT_ROLES

	config = load_config()
	try:
		registry = RoleRegistry.from_config(config)
	except OrchestratorError as e:
		print(f"Error: {e}")
		sys.exit(1)
	render_roles(registry, CHECKPOINT_ROLES)


def cmd_checkpoints(args: argparse.Namespace) -> None:
	"""Show the checkpoint sequence a workflow would use."""
	from .visualizer import render_checkpoints
	from .workflow import build_checkpoints

	config = load_config()
	labels = [c.strip() for c in args.labels.split(",") if c.strip()] if args.labels else None
	threshold = args.threshold if args.threshold is not None else config.change_size_threshold
	try:
		checkpoints = build_checkpoints(labels, change_size_threshold=threshold)
	except OrchestratorError as e:
		print(f"Error: {e}")
		sys.exit(1)
	render_checkpoints(checkpoints)


async def _load_history(config: Config, instance_id: str, limit: int):
	from .audit import AuditLog

	audit = AuditLog(config.audit_db_path)
	await audit.init()
	try:
		return await audit.list_exchanges(instance_id, limit=limit), await audit.list_transitions(instance_id)
	finally:
		await audit.close()


def cmd_history(args: argparse.Namespace) -> None:
	"""Show audited exchanges and transitions of a workflow."""
	from .visualizer import render_history

	config = load_config()
	if not config.audit_db_path.exists():
		print(f"No audit log at {config.audit_db_path}")
		sys.exit(1)
	exchanges, transitions = asyncio.run(_load_history(config, args.instance_id, args.limit))
	if not exchanges and not transitions:
		print(f"No history for workflow '{args.instance_id}'.")
		return
	render_history(exchanges, transitions)


def main() -> None:
	"""CLI entry point."""
	parser = argparse.ArgumentParser(
		prog="consult-orchestrator",
		description="MCP server gating development checkpoints on specialist agent consultations",
	)
	subparsers = parser.add_subparsers(dest="command")

	# setup
	setup_parser = subparsers.add_parser("setup", help="Write default config and register the MCP server")
	setup_parser.add_argument("--mcp-config", type=str, default=None, help="MCP config file to update")
	setup_parser.set_defaults(func=cmd_setup)

	# serve
	serve_parser = subparsers.add_parser("serve", help="Run MCP server (stdio)")
	serve_parser.set_defaults(func=cmd_serve)

	# doctor
	doctor_parser = subparsers.add_parser("doctor", help="Health check")
	doctor_parser.set_defaults(func=cmd_doctor)

	# roles
	roles_parser = subparsers.add_parser("roles", help="Show consultation roles")
	roles_parser.set_defaults(func=cmd_roles)

	# checkpoints
	cp_parser = subparsers.add_parser("checkpoints", help="Show the checkpoint sequence")
	cp_parser.add_argument("--labels", type=str, default="", help="Comma-separated labels (default: all)")
	cp_parser.add_argument("--threshold", type=int, default=None, help="Change size threshold for T-1/T+1")
	cp_parser.set_defaults(func=cmd_checkpoints)

	# history
	history_parser = subparsers.add_parser("history", help="Show the audit trail of a workflow")
	history_parser.add_argument("instance_id", help="Workflow id")
	history_parser.add_argument("--limit", type=int, default=50, help="Max exchanges")
	history_parser.set_defaults(func=cmd_history)

	args = parser.parse_args()

	if not args.command:
		parser.print_help()
		sys.exit(1)

	args.func(args)

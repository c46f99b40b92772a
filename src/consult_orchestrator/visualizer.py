"""Rich views for workflows, roles and the audit trail."""

from typing import Any, Optional

from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from .roles import RoleRegistry
from .workflow import STANDARD_LABELS, AdvancementPolicy, Checkpoint, WorkflowInstance, WorkflowStatus

VERDICT_STYLES = {
	"approve": "green",
	"concerns": "yellow",
	"bugs-found": "red",
	"blocked": "bold red",
	"inconclusive": "magenta",
}


def format_duration(seconds: float) -> str:
	"""Format a duration for display. e.g. '1.2s', '45ms', '2m 3s'."""
	if seconds < 0.001:
		return "<1ms"
	if seconds < 1.0:
		return f"{seconds * 1000:.0f}ms"
	if seconds < 60.0:
		return f"{seconds:.1f}s"
	minutes = int(seconds // 60)
	secs = seconds % 60
	return f"{minutes}m {secs:.0f}s"


def _checkpoint_icon(instance: WorkflowInstance, index: int) -> str:
	if instance.status == WorkflowStatus.COMPLETED or index < instance.position:
		return "[green]\\[x][/green]"
	if index == instance.position:
		if instance.status == WorkflowStatus.ABORTED:
			return "[red][!][/red]"
		if instance.status == WorkflowStatus.IN_PROGRESS:
			return "[yellow][~][/yellow]"
	return "[dim][ ][/dim]"


def render_workflow(instance: WorkflowInstance, console: Optional[Console] = None) -> None:
	"""Render a workflow as a Rich Tree of checkpoints and verdicts."""
	console = console or Console()

	tree = Tree(f"[bold]{instance.id}[/bold]  [dim]({instance.status.value})[/dim]")
	if instance.abort_reason:
		tree.add(f"[red]aborted: {instance.abort_reason}[/red]")

	for i, cp in enumerate(instance.checkpoints):
		suffix = " [dim](conditional)[/dim]" if cp.policy == AdvancementPolicy.CONDITIONAL else ""
		branch = tree.add(f"{_checkpoint_icon(instance, i)} [bold]{cp.label}[/bold] {', '.join(cp.roles)}{suffix}")
		for v in instance.verdicts_for(i):
			style = VERDICT_STYLES.get(v.kind, "white")
			revision = f" @ {v.revision[:10]}" if v.revision else ""
			branch.add(f"[{style}]{v.kind}[/{style}] {v.role_id}{revision}")

	console.print(tree)


def render_roles(
	registry: RoleRegistry,
	checkpoint_roles: dict[str, tuple[str, ...]],
	console: Optional[Console] = None,
) -> None:
	"""Render the role registry as a table."""
	console = console or Console()

	table = Table(title="Roles")
	table.add_column("Role", style="bold")
	table.add_column("Gates")
	table.add_column("Allowed")
	table.add_column("Model")
	table.add_column("Ceiling", justify="right")
	table.add_column("Prompt", style="dim")

	for role in registry.roles():
		gates = [label for label, ids in checkpoint_roles.items() if role.id in ids]
		allowed = "any (out-of-band)" if role.out_of_band else ", ".join(
			label for label in STANDARD_LABELS if label in role.allowed_checkpoints
		)
		table.add_row(
			role.id,
			", ".join(gates) or "-",
			allowed,
			f"{role.profile.model} ({role.profile.reasoning_effort})",
			format_duration(role.max_latency),
			role.prompt_ref,
		)

	console.print(table)


def render_checkpoints(checkpoints: tuple[Checkpoint, ...], console: Optional[Console] = None) -> None:
	"""Render a checkpoint sequence as a table."""
	console = console or Console()

	table = Table(title="Checkpoints")
	table.add_column("#", justify="right", style="dim")
	table.add_column("Label", style="bold")
	table.add_column("Roles")
	table.add_column("Policy")
	table.add_column("Terminal")

	for i, cp in enumerate(checkpoints):
		policy = cp.policy.value
		if cp.min_change_size:
			policy += f" (< {cp.min_change_size} lines)"
		table.add_row(str(i), cp.label, ", ".join(cp.roles), policy, "yes" if cp.terminal else "")

	console.print(table)


def render_history(
	exchanges: list[dict[str, Any]],
	transitions: list[dict[str, Any]],
	console: Optional[Console] = None,
) -> None:
	"""Render audited exchanges and transitions of one workflow."""
	console = console or Console()

	table = Table(title="Exchanges")
	table.add_column("Time", style="dim")
	table.add_column("Checkpoint")
	table.add_column("Role", style="bold")
	table.add_column("Outcome")
	table.add_column("Verdict")
	table.add_column("Latency", justify="right")

	for row in reversed(exchanges):
		verdict = row.get("verdict") or ""
		style = VERDICT_STYLES.get(verdict, "white")
		outcome = row["outcome"]
		table.add_row(
			str(row["started_at"])[:19],
			row["checkpoint"],
			row["role_id"],
			outcome if outcome == "ok" else f"[red]{outcome}[/red]",
			f"[{style}]{verdict}[/{style}]" if verdict else "",
			format_duration(row.get("latency_seconds") or 0.0),
		)
	console.print(table)

	if transitions:
		trans_table = Table(title="Transitions")
		trans_table.add_column("Time", style="dim")
		trans_table.add_column("From", justify="right")
		trans_table.add_column("To", justify="right")
		trans_table.add_column("Status")
		trans_table.add_column("Reason")
		for row in transitions:
			trans_table.add_row(
				str(row["timestamp"])[:19],
				str(row["from_position"]),
				str(row["to_position"]),
				row["status"],
				row.get("reason") or "",
			)
		console.print(trans_table)

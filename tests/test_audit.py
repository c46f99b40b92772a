"""Tests for the audit log."""

from pathlib import Path

import pytest

from consult_orchestrator.audit import AuditLog
from consult_orchestrator.transport import AgentExchange, TransportOutcome
from consult_orchestrator.workflow import WorkflowInstance, WorkflowStatus, build_checkpoints


@pytest.mark.asyncio
async def test_record_and_list_exchanges(tmp_path: Path):
	audit = AuditLog(tmp_path / "nested" / "audit.db")
	await audit.init()
	try:
		ok = AgentExchange(
			role_id="reviewer",
			prompt="review",
			response="VERDICT: approve",
			latency=12.5,
			conversation_id="codex:abc",
		)
		timeout = AgentExchange(
			role_id="reviewer",
			prompt="review again",
			outcome=TransportOutcome.TIMEOUT,
			detail="No response from reviewer within 600s",
		)
		await audit.record_exchange("wf-1", "T", ok, "approve")
		await audit.record_exchange("wf-1", "T", timeout, "inconclusive")
		await audit.record_exchange("wf-2", "0", ok, "approve")

		rows = await audit.list_exchanges("wf-1")
	finally:
		await audit.close()

	assert len(rows) == 2
	latest, first = rows
	assert latest["outcome"] == "timeout"
	assert latest["detail"].startswith("No response")
	assert first["verdict"] == "approve"
	assert first["conversation_id"] == "codex:abc"
	assert first["latency_seconds"] == 12.5


@pytest.mark.asyncio
async def test_record_transition(tmp_path: Path):
	audit = AuditLog(tmp_path / "audit.db")
	await audit.init()
	try:
		instance = WorkflowInstance(id="wf-1", checkpoints=build_checkpoints(["0", "L"]))
		instance.position = 1
		instance.status = WorkflowStatus.IN_PROGRESS
		await audit.record_transition(instance, 0, "all required roles satisfied")

		rows = await audit.list_transitions("wf-1")
	finally:
		await audit.close()

	assert len(rows) == 1
	assert rows[0]["from_position"] == 0
	assert rows[0]["to_position"] == 1
	assert rows[0]["status"] == "in_progress"


@pytest.mark.asyncio
async def test_long_bodies_truncated(tmp_path: Path):
	audit = AuditLog(tmp_path / "audit.db")
	await audit.init()
	try:
		exchange = AgentExchange(role_id="architect", prompt="x" * 50_000, response="y")
		await audit.record_exchange("wf-1", "0", exchange)
		rows = await audit.list_exchanges("wf-1")
	finally:
		await audit.close()

	assert len(rows[0]["prompt"]) == AuditLog.MAX_BODY


@pytest.mark.asyncio
async def test_use_before_init_raises(tmp_path: Path):
	audit = AuditLog(tmp_path / "audit.db")
	with pytest.raises(RuntimeError, match="not initialized"):
		await audit.list_transitions("wf-1")

"""Tests for the consultation engine wiring."""

import asyncio
from pathlib import Path

import pytest

import consult_orchestrator.engine as engine_module
from consult_orchestrator.config import Config
from consult_orchestrator.engine import ConsultEngine, get_engine
from consult_orchestrator.errors import DuplicateWorkflow, UnknownWorkflow

from .helpers import APPROVE, ScriptedTransport


@pytest.mark.asyncio
async def test_start_opens_audit_log(tmp_path: Path):
	config = Config(config_dir=tmp_path, data_dir=tmp_path)
	engine = ConsultEngine(config, transport=ScriptedTransport({"architect": [APPROVE]}))
	await engine.start()
	try:
		assert engine.audit is not None
		assert engine.scheduler.audit is engine.audit

		instance = engine.create_workflow(["0", "L"])
		await engine.scheduler.evaluate(instance, "0", "plan")

		exchanges = await engine.audit.list_exchanges(instance.id)
		assert len(exchanges) == 1
	finally:
		await engine.close()

	assert config.audit_db_path.exists()


@pytest.mark.asyncio
async def test_audit_disabled(tmp_path: Path):
	config = Config(config_dir=tmp_path, data_dir=tmp_path, audit_enabled=False)
	engine = ConsultEngine(config, transport=ScriptedTransport())
	await engine.start()

	assert engine.audit is None
	assert engine.scheduler.audit is None


def test_forget_workflow(tmp_path: Path):
	config = Config(config_dir=tmp_path, data_dir=tmp_path, audit_enabled=False)
	engine = ConsultEngine(config, transport=ScriptedTransport())
	instance = engine.create_workflow(instance_id="wf-1")
	engine.sessions.get_or_create(instance.id, "architect")

	engine.forget_workflow("wf-1")

	assert engine.sessions.list_handles("wf-1") == []
	with pytest.raises(UnknownWorkflow):
		engine.get_workflow("wf-1")


def test_change_size_threshold_from_config(tmp_path: Path):
	config = Config(config_dir=tmp_path, data_dir=tmp_path, audit_enabled=False, change_size_threshold=10)
	engine = ConsultEngine(config, transport=ScriptedTransport())

	instance = engine.create_workflow()

	policies = {cp.label: cp.policy.value for cp in instance.checkpoints}
	assert policies["T-1"] == "conditional"
	assert policies["T"] == "mandatory"


def test_create_workflow_rejects_known_id(tmp_path: Path):
	config = Config(config_dir=tmp_path, data_dir=tmp_path, audit_enabled=False)
	engine = ConsultEngine(config, transport=ScriptedTransport())
	engine.create_workflow(instance_id="wf-1")

	with pytest.raises(DuplicateWorkflow):
		engine.create_workflow(instance_id="wf-1")


@pytest.mark.asyncio
async def test_concurrent_get_engine_shares_one_engine(tmp_path: Path, monkeypatch):
	monkeypatch.setattr(engine_module, "_engine", None)
	config = Config(config_dir=tmp_path, data_dir=tmp_path)

	first, second = await asyncio.gather(get_engine(config), get_engine(config))
	try:
		assert first is second
		assert first.audit is not None
	finally:
		await first.close()


@pytest.mark.asyncio
async def test_ensure_started_runs_once(tmp_path: Path):
	config = Config(config_dir=tmp_path, data_dir=tmp_path, audit_enabled=False)
	engine = ConsultEngine(config, transport=ScriptedTransport())
	calls = []

	async def fake_start():
		calls.append(1)
		await asyncio.sleep(0)

	engine.start = fake_start
	await asyncio.gather(engine.ensure_started(), engine.ensure_started())
	await engine.ensure_started()

	assert calls == [1]

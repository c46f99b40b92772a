"""Tests for the workflow data model."""

import pytest

from consult_orchestrator.errors import ConfigurationError, UnknownCheckpoint
from consult_orchestrator.workflow import (
	STANDARD_LABELS,
	AdvancementPolicy,
	Checkpoint,
	WorkflowInstance,
	WorkflowStatus,
	build_checkpoints,
	new_instance_id,
)


def test_build_standard_checkpoints():
	checkpoints = build_checkpoints()
	assert [cp.label for cp in checkpoints] == list(STANDARD_LABELS)
	assert [cp.roles for cp in checkpoints] == [
		("architect",), ("architect",), ("reviewer",), ("reviewer",), ("reviewer",), ("architect",),
	]
	assert [cp.terminal for cp in checkpoints] == [False] * 5 + [True]
	assert all(cp.policy == AdvancementPolicy.MANDATORY for cp in checkpoints)


def test_conditional_checkpoints_with_threshold():
	checkpoints = {cp.label: cp for cp in build_checkpoints(change_size_threshold=50)}
	assert checkpoints["T-1"].policy == AdvancementPolicy.CONDITIONAL
	assert checkpoints["T+1"].policy == AdvancementPolicy.CONDITIONAL
	assert checkpoints["T"].policy == AdvancementPolicy.MANDATORY
	assert checkpoints["T-1"].is_skippable(10)
	assert not checkpoints["T-1"].is_skippable(50)
	assert not checkpoints["T-1"].is_skippable(None)
	assert not checkpoints["T"].is_skippable(1)


def test_subset_keeps_order_and_marks_last_terminal():
	checkpoints = build_checkpoints(["0", "T", "L"])
	assert [cp.label for cp in checkpoints] == ["0", "T", "L"]
	assert checkpoints[-1].terminal
	assert not checkpoints[1].terminal


def test_out_of_order_labels_rejected():
	with pytest.raises(ConfigurationError, match="order"):
		build_checkpoints(["T", "0", "L"])


def test_unmapped_label_rejected():
	with pytest.raises(ConfigurationError, match="No roles"):
		build_checkpoints(["0", "X"])


def test_instance_requires_terminal_last_checkpoint():
	with pytest.raises(ConfigurationError, match="terminal"):
		WorkflowInstance(id="wf-1", checkpoints=(Checkpoint("0", ("architect",)),))


def test_instance_rejects_early_terminal():
	checkpoints = (
		Checkpoint("0", ("architect",), terminal=True),
		Checkpoint("L", ("architect",), terminal=True),
	)
	with pytest.raises(ConfigurationError, match="Only the last"):
		WorkflowInstance(id="wf-1", checkpoints=checkpoints)


def test_instance_rejects_duplicate_labels():
	checkpoints = (
		Checkpoint("T", ("reviewer",)),
		Checkpoint("T", ("reviewer",), terminal=True),
	)
	with pytest.raises(ConfigurationError, match="Duplicate"):
		WorkflowInstance(id="wf-1", checkpoints=checkpoints)


def test_instance_current_and_index():
	instance = WorkflowInstance(id="wf-1", checkpoints=build_checkpoints(["0", "T", "L"]))
	assert instance.status == WorkflowStatus.PENDING
	assert instance.current.label == "0"
	assert instance.index_of("L") == 2
	with pytest.raises(UnknownCheckpoint):
		instance.index_of("T+1")

	instance.status = WorkflowStatus.COMPLETED
	assert instance.current is None
	assert instance.is_closed


def test_instance_to_dict():
	instance = WorkflowInstance(id="wf-1", checkpoints=build_checkpoints(["0", "L"]))
	data = instance.to_dict()
	assert data["id"] == "wf-1"
	assert data["current_checkpoint"] == "0"
	assert [cp["label"] for cp in data["checkpoints"]] == ["0", "L"]


def test_new_instance_id_is_unique():
	ids = {new_instance_id() for _ in range(50)}
	assert len(ids) == 50
	assert all(i.startswith("wf-") for i in ids)

"""Tests for the response reconciler."""

import json

import pytest

from consult_orchestrator.reconciler import (
	ResponseReconciler,
	VerdictKind,
	extract_locations,
	normalize_kind,
)
from consult_orchestrator.transport import AgentExchange, TransportOutcome

from .helpers import APPROVE, BLOCKED, BUGS, CONCERNS, RAMBLING


def _exchange(text: str, role_id: str = "reviewer", outcome: TransportOutcome = TransportOutcome.OK) -> AgentExchange:
	return AgentExchange(role_id=role_id, prompt="review", response=text, outcome=outcome)


@pytest.fixture
def reconciler() -> ResponseReconciler:
	return ResponseReconciler()


class TestVerdictLine:

	@pytest.mark.parametrize("text,kind", [
		(APPROVE, VerdictKind.APPROVE),
		(CONCERNS, VerdictKind.CONCERNS),
		(BUGS, VerdictKind.BUGS_FOUND),
		(BLOCKED, VerdictKind.BLOCKED),
		("Fine overall.\n\n**Verdict:** approve with concerns", VerdictKind.CONCERNS),
		("## Final verdict: LGTM", VerdictKind.APPROVE),
	])
	def test_explicit_verdict(self, reconciler, text, kind):
		assert reconciler.reconcile(_exchange(text)).kind == kind

	def test_verdict_line_beats_markers(self, reconciler):
		text = "The earlier blocked state is resolved.\n\nVERDICT: approve"
		assert reconciler.reconcile(_exchange(text)).kind == VerdictKind.APPROVE

	def test_bug_locations_preserved(self, reconciler):
		verdict = reconciler.reconcile(_exchange(BUGS))
		assert verdict.kind == VerdictKind.BUGS_FOUND
		assert [loc.raw for loc in verdict.locations] == ["src/app.py:42"]
		assert verdict.locations[0].line == "42"


class TestStructuredResponse:

	def test_code_review_schema_with_issues(self, reconciler):
		text = json.dumps({
			"approved": False,
			"summary": "Off-by-one on empty input",
			"issues": [{"file": "src/app.py", "line": 42, "severity": "high", "description": "index error"}],
		})
		verdict = reconciler.reconcile(_exchange(text))
		assert verdict.kind == VerdictKind.BUGS_FOUND
		assert verdict.rationale == "Off-by-one on empty input"
		assert [loc.raw for loc in verdict.locations] == ["src/app.py:42"]

	def test_approved_with_issues_is_concerns(self, reconciler):
		text = json.dumps({"approved": True, "issues": [{"file": "README.md", "description": "typo"}]})
		assert reconciler.reconcile(_exchange(text)).kind == VerdictKind.CONCERNS

	def test_fenced_json_verdict(self, reconciler):
		text = 'Review done.\n\n```json\n{"verdict": "approve", "summary": "clean"}\n```'
		assert reconciler.reconcile(_exchange(text)).kind == VerdictKind.APPROVE


class TestMarkers:

	def test_negated_bug_phrase_alone_is_inconclusive(self, reconciler):
		verdict = reconciler.reconcile(_exchange("I went through every file. No bugs found."))
		assert verdict.kind == VerdictKind.INCONCLUSIVE

	def test_negation_does_not_hide_real_approval(self, reconciler):
		assert reconciler.reconcile(_exchange("No issues identified. LGTM")).kind == VerdictKind.APPROVE

	def test_found_bugs(self, reconciler):
		verdict = reconciler.reconcile(_exchange("I found 2 bugs in src/parser.py:17 and src/parser.py:30."))
		assert verdict.kind == VerdictKind.BUGS_FOUND
		assert [loc.raw for loc in verdict.locations] == ["src/parser.py:17", "src/parser.py:30"]

	def test_blocked_outranks_bugs(self, reconciler):
		text = "I found a bug in the handler, but more importantly this must not merge until the schema lands."
		assert reconciler.reconcile(_exchange(text)).kind == VerdictKind.BLOCKED

	def test_architect_grammar(self, reconciler):
		verdict = reconciler.reconcile(_exchange("The design is sound.", role_id="architect"))
		assert verdict.kind == VerdictKind.APPROVE

	@pytest.mark.parametrize("text", [
		"I am unable to approve this change until the race in src/app.py:10 is fixed.",
		"This is not ready to merge.",
		"I won't approve this yet.",
		"I will not approve this: the migration is missing.",
		"I would not approve the current approach.",
		"I refuse to approve a change that drops the audit table.",
		"Not yet ready to proceed; the tests look good but coverage is thin.",
		"This cannot be approved as written.",
		"I can’t approve this, sorry.",
	])
	def test_refusal_never_approves(self, reconciler, text):
		verdict = reconciler.reconcile(_exchange(text))
		assert verdict.kind == VerdictKind.BLOCKED
		assert not verdict.kind.satisfies

	def test_refusal_keeps_flagged_location(self, reconciler):
		text = "I am unable to approve this change until the race in src/app.py:10 is fixed."
		verdict = reconciler.reconcile(_exchange(text))
		assert [loc.raw for loc in verdict.locations] == ["src/app.py:10"]

	def test_architect_refusal(self, reconciler):
		text = "The plan is sound in places but I won't sign off on it."
		assert reconciler.reconcile(_exchange(text, role_id="architect")).kind == VerdictKind.BLOCKED

	def test_unrecognized_response_is_inconclusive(self, reconciler):
		verdict = reconciler.reconcile(_exchange(RAMBLING))
		assert verdict.kind == VerdictKind.INCONCLUSIVE
		assert not verdict.kind.satisfies

	def test_empty_response_is_inconclusive(self, reconciler):
		assert reconciler.reconcile(_exchange("")).kind == VerdictKind.INCONCLUSIVE


class TestFailedExchanges:

	@pytest.mark.parametrize("outcome", [
		TransportOutcome.TIMEOUT,
		TransportOutcome.AGENT_ERROR,
		TransportOutcome.MALFORMED_HANDLE,
	])
	def test_failed_exchange_never_approves(self, reconciler, outcome):
		exchange = _exchange(APPROVE, outcome=outcome)
		exchange.detail = "something went wrong"
		verdict = reconciler.reconcile(exchange)
		assert verdict.kind == VerdictKind.INCONCLUSIVE
		assert verdict.rationale == "something went wrong"


def test_satisfying_kinds():
	assert VerdictKind.APPROVE.satisfies
	assert VerdictKind.CONCERNS.satisfies
	assert not VerdictKind.BUGS_FOUND.satisfies
	assert not VerdictKind.BLOCKED.satisfies
	assert not VerdictKind.INCONCLUSIVE.satisfies


def test_normalize_kind():
	assert normalize_kind("Bugs Found") == VerdictKind.BUGS_FOUND
	assert normalize_kind("approved") == VerdictKind.APPROVE
	assert normalize_kind("maybe") is None


def test_extract_locations_skips_bare_words():
	locations = extract_locations("See e.g. the README and src/app.py line 12 plus tests/test_app.py#L5-9.")
	assert [(loc.path, loc.line) for loc in locations] == [
		("src/app.py", "12"),
		("tests/test_app.py", "5-9"),
	]

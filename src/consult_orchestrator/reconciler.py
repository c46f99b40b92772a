"""
Response Reconciler - turns an agent response into a structured Verdict.

Recognized forms, first match wins:
1. A JSON object (bare or in a ```json fence) with a "verdict" field, or
   an "approved" flag plus "issues" list (code_review response schema)
2. An explicit "VERDICT: <kind>" line
3. Marker phrases, by precedence blocked > bugs-found > concerns > approve

Anything else is INCONCLUSIVE. An inconclusive verdict never lets a
workflow advance.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .transport import AgentExchange

logger = logging.getLogger(__name__)


class VerdictKind(str, Enum):
	"""Outcome of a consultation."""
	APPROVE = "approve"
	CONCERNS = "concerns"
	BUGS_FOUND = "bugs-found"
	BLOCKED = "blocked"
	INCONCLUSIVE = "inconclusive"

	@property
	def satisfies(self) -> bool:
		"""True if this verdict lets the checkpoint advance."""
		return self in (VerdictKind.APPROVE, VerdictKind.CONCERNS)


@dataclass(frozen=True)
class FlaggedLocation:
	"""A file/line reference quoted by the agent."""
	path: str
	line: Optional[str] = None
	raw: str = ""


@dataclass
class Verdict:
	"""Structured result of one consultation."""
	kind: VerdictKind
	rationale: str = ""
	locations: list[FlaggedLocation] = field(default_factory=list)

	def to_dict(self) -> dict:
		return {
			"kind": self.kind.value,
			"rationale": self.rationale,
			"locations": [loc.raw or loc.path for loc in self.locations],
		}


_KIND_ALIASES: dict[str, VerdictKind] = {
	"approve": VerdictKind.APPROVE,
	"approved": VerdictKind.APPROVE,
	"lgtm": VerdictKind.APPROVE,
	"concern": VerdictKind.CONCERNS,
	"concerns": VerdictKind.CONCERNS,
	"approve-with-concerns": VerdictKind.CONCERNS,
	"bugs-found": VerdictKind.BUGS_FOUND,
	"bugs": VerdictKind.BUGS_FOUND,
	"bug-found": VerdictKind.BUGS_FOUND,
	"blocked": VerdictKind.BLOCKED,
	"block": VerdictKind.BLOCKED,
	"reject": VerdictKind.BLOCKED,
	"rejected": VerdictKind.BLOCKED,
}


def normalize_kind(value: str) -> Optional[VerdictKind]:
	"""Map a free-form verdict word to a VerdictKind."""
	key = re.sub(r"[\s_]+", "-", value.strip().lower()).strip("*.`'\"")
	return _KIND_ALIASES.get(key)


_VERDICT_LINE = re.compile(
	r"^[\s>*#-]*(?:final\s+)?(?:verdict|decision)\**\s*[:=-]\s*\**\s*"
	r"(approve[\s_-]with[\s_-]concerns|approve[d]?|lgtm|concerns?|bugs?[\s_-]found|bugs|blocked|block|rejected?)\b",
	re.IGNORECASE | re.MULTILINE,
)

_FLAGS = re.IGNORECASE | re.MULTILINE

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)

_LOCATION = re.compile(
	r"(?<![\w/:.])(?P<path>(?:[\w.-]+/)*[\w-][\w.-]*\.[A-Za-z][A-Za-z0-9]{0,7})"
	r"(?:(?::|#L)(?P<line>\d+(?:-\d+)?)|,?\s+line\s+(?P<line2>\d+))?"
)


@dataclass
class MarkerGrammar:
	"""Marker phrases for one role."""
	negations: list[str]
	markers: dict[VerdictKind, list[str]]

	def compile(self) -> "_CompiledGrammar":
		return _CompiledGrammar(
			negations=[re.compile(p, _FLAGS) for p in self.negations],
			markers={
				kind: [re.compile(p, _FLAGS) for p in patterns]
				for kind, patterns in self.markers.items()
			},
		)


@dataclass
class _CompiledGrammar:
	negations: list[re.Pattern]
	markers: dict[VerdictKind, list[re.Pattern]]


# Phrases that mention a marker word but mean the opposite. They are removed
# before the markers are checked and never count as a verdict on their own.
_CLEAN_PHRASES = [
	r"\bno\s+(?:new\s+)?(?:bugs|issues|problems|defects|blockers|blocking\s+issues|concerns)(?:\s+(?:were|was))?(?:\s+(?:found|identified|detected|remain(?:ing)?))?\b",
	r"\b(?:bugs|issues|concerns|blockers)\s*:\s*(?:none|n/a)\b",
	r"\bnot\s+blocked\b",
	r"\bnothing\s+blocking\b",
	r"\bwithout\s+(?:any\s+)?(?:concerns|issues|reservations)\b",
]

_REFUSAL = r"(?:cannot|can['’]t|can\s+not|unable\s+to|not\s+able\s+to|won['’]t|will\s+not|would\s+not|wouldn['’]t|refuse\s+to|do\s+not|don['’]t)"

_BLOCK_MARKERS = [
	r"\bblocked\b",
	r"\bblocking\s+(?:issue|problem|concern)s?\b",
	rf"\b{_REFUSAL}\s+(?:yet\s+)?(?:approve|sign\s+off)\b",
	r"\b(?:cannot|can't|can\s+not|should\s+not|shouldn't|must\s+not|won't|will\s+not)\s+be\s+approved\b",
	r"\bnot\s+(?:yet\s+)?approved\b",
	r"\bnot\s+(?:yet\s+)?ready\s+(?:to|for)\s+(?:merge|proceed|ship|approval)\b",
	r"\b(?:do\s+not|don't|must\s+not|should\s+not|shouldn't|cannot|can't)\s+(?:yet\s+)?(?:proceed|merge)\b",
	r"\brejected?\b",
]

_BUG_MARKERS = [
	r"\bbugs?\s+(?:were\s+)?found\b",
	r"\bfound\s+(?:\d+\s+|several\s+|some\s+|a\s+)?(?:critical\s+)?bugs?\b",
	r"^\s*(?:#+\s*)?bugs?\s*(?:\(\d+\))?\s*:?\s*$",
	r"^\s*(?:[-*]|\d+[.)])\s*\**\s*bug\b",
	r"\bcritical\s+(?:bug|issue|defect)s?\b",
	r"\bdefects?\s+found\b",
]

_CONCERN_MARKERS = [
	r"\bapproved?\s+with\s+(?:concerns|comments|suggestions|reservations|nits)\b",
	r"\bconcerns?\b",
	r"\breservations\b",
	r"^\s*(?:#+\s*)?(?:suggestions|recommendations|risks)\s*:?\s*$",
]

_APPROVE_MARKERS = [
	r"\bapproved?\b",
	r"\blgtm\b",
	r"\blooks\s+good(?:\s+to\s+me)?\b",
	r"\bship\s+it\b",
	r"\bready\s+to\s+(?:merge|proceed)\b",
]

DEFAULT_GRAMMAR = MarkerGrammar(
	negations=_CLEAN_PHRASES,
	markers={
		VerdictKind.BLOCKED: _BLOCK_MARKERS,
		VerdictKind.BUGS_FOUND: _BUG_MARKERS,
		VerdictKind.CONCERNS: _CONCERN_MARKERS,
		VerdictKind.APPROVE: _APPROVE_MARKERS,
	},
)

# The architect reviews designs and plans, not code, so it never reports bugs
ARCHITECT_GRAMMAR = MarkerGrammar(
	negations=_CLEAN_PHRASES,
	markers={
		VerdictKind.BLOCKED: _BLOCK_MARKERS,
		VerdictKind.CONCERNS: _CONCERN_MARKERS + [r"\brisks?\s+identified\b"],
		VerdictKind.APPROVE: _APPROVE_MARKERS + [
			r"\b(?:design|plan|approach|docs?|documentation)\s+(?:is\s+)?(?:sound|accepted|up\s+to\s+date)\b",
		],
	},
)

ROLE_GRAMMARS: dict[str, MarkerGrammar] = {
	"architect": ARCHITECT_GRAMMAR,
	"reviewer": DEFAULT_GRAMMAR,
	"troubleshooter": DEFAULT_GRAMMAR,
}

_PRECEDENCE = (
	VerdictKind.BLOCKED,
	VerdictKind.BUGS_FOUND,
	VerdictKind.CONCERNS,
	VerdictKind.APPROVE,
)


class ResponseReconciler:
	"""Parses agent responses into verdicts, failing closed."""

	MAX_RATIONALE = 500

	def __init__(self, grammars: Optional[dict[str, MarkerGrammar]] = None):
		grammars = grammars if grammars is not None else ROLE_GRAMMARS
		self._grammars = {role_id: g.compile() for role_id, g in grammars.items()}
		self._default = DEFAULT_GRAMMAR.compile()

	def reconcile(self, exchange: AgentExchange) -> Verdict:
		"""Derive a verdict from an exchange. Failed exchanges are inconclusive."""
		if not exchange.ok:
			return Verdict(
				kind=VerdictKind.INCONCLUSIVE,
				rationale=exchange.detail or exchange.outcome.value,
			)

		text = exchange.response or ""
		locations = extract_locations(text)

		verdict = self._from_json(text)
		if verdict is None:
			verdict = self._from_verdict_line(text)
		if verdict is None:
			verdict = self._from_markers(exchange.role_id, text)

		if not verdict.locations:
			verdict.locations = locations
		logger.info(f"Verdict for {exchange.role_id}: {verdict.kind.value}")
		return verdict

	def _from_json(self, text: str) -> Optional[Verdict]:
		data = _load_json_object(text)
		if data is None:
			return None

		issues = data.get("issues") if isinstance(data.get("issues"), list) else []
		locations = [loc for loc in (_issue_location(i) for i in issues) if loc is not None]
		rationale = str(data.get("summary") or data.get("rationale") or "")[:self.MAX_RATIONALE]

		kind: Optional[VerdictKind] = None
		raw_verdict = data.get("verdict")
		if isinstance(raw_verdict, str):
			kind = normalize_kind(raw_verdict)
		elif isinstance(data.get("approved"), bool):
			if data["approved"]:
				kind = VerdictKind.CONCERNS if issues else VerdictKind.APPROVE
			else:
				kind = VerdictKind.BUGS_FOUND if issues else VerdictKind.BLOCKED

		if kind is None:
			return None
		return Verdict(kind=kind, rationale=rationale, locations=locations)

	def _from_verdict_line(self, text: str) -> Optional[Verdict]:
		match = _VERDICT_LINE.search(text)
		if not match:
			return None
		kind = normalize_kind(match.group(1))
		if kind is None:
			return None
		return Verdict(kind=kind, rationale=_summarize(text, self.MAX_RATIONALE))

	def _from_markers(self, role_id: str, text: str) -> Verdict:
		grammar = self._grammars.get(role_id, self._default)

		stripped = text
		for pattern in grammar.negations:
			stripped = pattern.sub(" ", stripped)

		for kind in _PRECEDENCE:
			patterns = grammar.markers.get(kind, [])
			if any(p.search(stripped) for p in patterns):
				return Verdict(kind=kind, rationale=_summarize(text, self.MAX_RATIONALE))

		return Verdict(
			kind=VerdictKind.INCONCLUSIVE,
			rationale="Response matched no recognized verdict markers",
		)


def extract_locations(text: str) -> list[FlaggedLocation]:
	"""Collect path:line references verbatim, in order of appearance."""
	seen: set[str] = set()
	locations = []
	for match in _LOCATION.finditer(text):
		path = match.group("path")
		line = match.group("line") or match.group("line2")
		# Bare words like "e.g." or "module.py" without a directory or line are too ambiguous
		if line is None and "/" not in path:
			continue
		raw = match.group(0).strip()
		if raw in seen:
			continue
		seen.add(raw)
		locations.append(FlaggedLocation(path=path, line=line, raw=raw))
	return locations


def _load_json_object(text: str) -> Optional[dict[str, Any]]:
	"""Parse the response as a JSON object, bare or fenced."""
	candidates = [text.strip()]
	candidates.extend(m.group(1) for m in _FENCED_JSON.finditer(text))
	for candidate in candidates:
		if not candidate.startswith("{"):
			continue
		try:
			data = json.loads(candidate)
		except json.JSONDecodeError:
			continue
		if isinstance(data, dict):
			return data
	return None


def _issue_location(issue: Any) -> Optional[FlaggedLocation]:
	if not isinstance(issue, dict) or not issue.get("file"):
		return None
	path = str(issue["file"])
	line = issue.get("line")
	line_str = str(line) if line is not None else None
	raw = f"{path}:{line_str}" if line_str else path
	return FlaggedLocation(path=path, line=line_str, raw=raw)


def _summarize(text: str, limit: int) -> str:
	"""First paragraph of the response, truncated."""
	for paragraph in re.split(r"\n\s*\n", text.strip()):
		paragraph = paragraph.strip()
		if paragraph:
			return paragraph[:limit]
	return ""

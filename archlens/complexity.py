"""Per-function complexity scoring over the leaf tokens of each function body.

score = 1
      + depth            for every if / while / for / loop / match guard
      + depth * (n - 1)  for a match with n arms
      + 1                for every && or || inside an if/while condition or guard

``depth`` is 1 in the function body and grows by one inside every block
opened by a branching construct (including ``else`` blocks and match blocks).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

from .model import ComplexityItem, ParsedFile, ParsedFunction, Token


_BRANCH_KEYWORDS = {"if", "while", "for", "loop"}


@dataclass
class _Block:
	kind: str  # plain | branch | match
	depth: int
	paren: int
	arms: int = 0


@dataclass
class _Pending:
	kind: str
	depth: int
	paren: int
	condition: bool


def score_tokens(tokens: Iterable[Token]) -> int:
	score = 1
	stack: List[_Block] = []
	pending: Optional[_Pending] = None
	paren = 0

	for tok in tokens:
		v = tok.value
		if tok.kind == "ident":
			if v in _BRANCH_KEYWORDS or v == "match":
				depth = 1 + sum(1 for b in stack if b.kind != "plain")
				if v != "match":
					score += depth
				pending = _Pending("match" if v == "match" else "branch", depth, paren, v in ("if", "while"))
			elif v == "else":
				depth = 1 + sum(1 for b in stack if b.kind != "plain")
				pending = _Pending("branch", depth, paren, False)
			continue
		if tok.kind != "punct":
			continue

		if v in ("(", "["):
			paren += 1
		elif v in (")", "]"):
			paren -= 1
		elif v == "{":
			if pending is not None and pending.paren == paren:
				stack.append(_Block(pending.kind, pending.depth, paren))
				pending = None
			else:
				stack.append(_Block("plain", 0, paren))
		elif v == "}":
			if stack:
				block = stack.pop()
				if block.kind == "match" and block.arms > 1:
					score += (block.arms - 1) * block.depth
		elif v == "=>":
			if pending is not None and pending.condition and pending.paren == paren:
				# The preceding `if` was a match guard.
				pending = None
			if stack and stack[-1].kind == "match" and stack[-1].paren == paren:
				stack[-1].arms += 1
		elif v in ("&&", "||"):
			if pending is not None and pending.condition:
				score += 1
		elif v == ";":
			if pending is not None and pending.paren == paren:
				pending = None

	# Unterminated bodies still count the arms seen so far.
	for block in stack:
		if block.kind == "match" and block.arms > 1:
			score += (block.arms - 1) * block.depth
	return score


def score_function(fn: ParsedFunction) -> ComplexityItem:
	return ComplexityItem(
		function_name=fn.name,
		file_path=fn.file_path,
		score=score_tokens(fn.body_tokens),
		line_start=fn.line_start,
		line_end=fn.line_end,
	)


def score_functions(files: List[ParsedFile]) -> List[ComplexityItem]:
	return [score_function(fn) for f in files for fn in f.functions]


def average_score(items: List[ComplexityItem]) -> float:
	if not items:
		return 0.0
	return sum(i.score for i in items) / len(items)

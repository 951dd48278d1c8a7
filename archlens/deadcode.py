"""Dead-code candidates: functions and types nothing in the project refers to.

A node is a candidate when its in-degree is zero once ``contains`` edges and
self-loops (direct recursion) are ignored, and no entry-point rule exempts it.

Entry-point rules, checked in order:

- ``name``: a free function whose name is in ``entry_point_names`` (``main``)
- ``public``: declared plain ``pub`` while ``exempt_public`` is set
  (``pub(crate)`` and friends are not exempt)
- ``test``: ``#[test]``-style attribute or defined inside ``#[cfg(test)]``
- ``trait``: a trait method or a method of ``impl Trait for Type``,
  reachable through dynamic dispatch
- ``attribute``: an attribute whose path or last segment is listed in
  ``entry_point_attributes`` (``no_mangle``, ``tokio::main``, route macros...)
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from .callgraph import in_degree
from .config import Settings, get_settings
from .model import GraphData, ParsedFile, ParsedFunction, ParsedType, type_node_id


logger = logging.getLogger(__name__)


def _attribute_matches(attributes: Iterable[str], patterns: Iterable[str]) -> bool:
	wanted = set(patterns)
	for attr in attributes:
		head = attr.split("(", 1)[0].strip()
		if head in wanted or head.rsplit("::", 1)[-1] in wanted:
			return True
	return False


def function_exemption(fn: ParsedFunction, settings: Settings) -> Optional[str]:
	if fn.owner is None and fn.short_name in settings.entry_point_names:
		return "name"
	if settings.exempt_public and fn.is_public:
		return "public"
	if fn.is_test:
		return "test"
	if fn.trait_impl:
		return "trait"
	if _attribute_matches(fn.attributes, settings.entry_point_attributes):
		return "attribute"
	return None


def type_exemption(t: ParsedType, settings: Settings) -> Optional[str]:
	if settings.exempt_public and t.is_public:
		return "public"
	if _attribute_matches(t.attributes, settings.entry_point_attributes):
		return "attribute"
	return None


def find_dead_code(files: List[ParsedFile], graph: GraphData, settings: Optional[Settings] = None) -> List[str]:
	settings = settings or get_settings()
	reasons: Dict[str, Optional[str]] = {}
	for f in files:
		for fn in f.functions:
			reasons[fn.node_id] = function_exemption(fn, settings)
		for t in f.types:
			reasons[type_node_id(f.path, t.name)] = type_exemption(t, settings)

	degree = in_degree(graph)
	candidates = [
		node.id
		for node in graph.nodes
		if node.kind in ("function", "type")
		and degree.get(node.id, 0) == 0
		and node.id in reasons
		and reasons[node.id] is None
	]
	logger.debug("%d dead-code candidates out of %d entities", len(candidates), len(reasons))
	return candidates

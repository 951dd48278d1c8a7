from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .callgraph import find_cycles, in_degree
from .complexity import average_score
from .config import Settings, get_settings
from .model import AnalysisSummary, ComplexityItem, GraphData, ParsedFile


logger = logging.getLogger(__name__)


def summarize_file(f: ParsedFile) -> str:
	parts: List[str] = []
	parts.append(f"Module {f.module_name or '?'} at {f.path} ({f.line_count} lines)")
	if f.failed:
		parts.append("  Not parsed")
	if f.types:
		parts.append(f"  Types: {', '.join(t.name for t in f.types)}")
	if f.functions:
		parts.append(f"  Functions: {', '.join(fn.name for fn in f.functions)}")
	if f.imports:
		parts.append(f"  Imports: {', '.join(sorted(f.imports)[:10])}")
	return "\n".join(parts)


def _oversized_files(files: List[ParsedFile], limit: int) -> Optional[str]:
	big = sorted((f for f in files if f.line_count > limit), key=lambda f: f.node_id)
	if not big:
		return None
	listed = ", ".join(f"{f.path} ({f.line_count} lines)" for f in big)
	return f"Oversized file: {listed} exceeds {limit} lines"


def _complex_functions(complexity: List[ComplexityItem], limit: int) -> Optional[str]:
	hot = sorted(
		(c for c in complexity if c.score > limit),
		key=lambda c: (c.file_path, c.function_name),
	)
	if not hot:
		return None
	listed = ", ".join(f"{c.function_name} in {c.file_path} (score {c.score})" for c in hot)
	return f"High complexity: {listed} above {limit}"


def _central_nodes(graph: GraphData, limit: int) -> Optional[str]:
	degree = in_degree(graph)
	labels: Dict[str, str] = {n.id: n.label for n in graph.nodes}
	hubs = sorted(node_id for node_id, d in degree.items() if d > limit)
	if not hubs:
		return None
	listed = ", ".join(f"{labels[h]} ({degree[h]} dependents)" for h in hubs)
	return f"Central dependency: {listed} above fan-in {limit}"


def _circular_imports(graph: GraphData) -> Optional[str]:
	cycles = find_cycles(graph)
	if not cycles:
		return None
	labels: Dict[str, str] = {n.id: n.label for n in graph.nodes}
	listed = "; ".join(" -> ".join(labels[i] for i in cycle) for cycle in cycles)
	return f"Circular dependency: {listed}"


def architecture_notes(
	files: List[ParsedFile],
	graph: GraphData,
	complexity: List[ComplexityItem],
	settings: Optional[Settings] = None,
) -> List[str]:
	"""Evaluate the note rules in order; each rule yields at most one note.

	Offenders inside a note are ordered by node id (file path and function
	name for complexity), so notes are stable across identical runs.
	"""
	settings = settings or get_settings()
	rules = [
		_oversized_files(files, settings.max_file_lines),
		_complex_functions(complexity, settings.max_complexity),
		_central_nodes(graph, settings.max_fan_in),
		_circular_imports(graph),
	]
	notes = [n for n in rules if n is not None]
	for note in notes:
		logger.info("%s", note)
	return notes


def build_summary(
	project_id: str,
	project_name: str,
	files: List[ParsedFile],
	complexity: List[ComplexityItem],
	dead_code: List[str],
	notes: List[str],
) -> AnalysisSummary:
	parsed = [f for f in files if not f.failed]
	return AnalysisSummary(
		project_id=project_id,
		project_name=project_name,
		total_files=len(files),
		total_functions=len(complexity),
		total_structs=sum(len(f.types) for f in parsed),
		total_imports=sum(len(f.imports) for f in parsed),
		avg_complexity=average_score(complexity),
		dead_code_candidates=list(dead_code),
		architecture_notes=list(notes),
	)

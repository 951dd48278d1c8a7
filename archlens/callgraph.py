from __future__ import annotations

import json
from typing import Dict, Iterable, List, Optional, Set, Tuple

import networkx as nx

from .model import GraphData, GraphEdge, GraphNode, ParsedFile, file_node_id, type_node_id
from .resolve import ResolutionResult


EDGE_LABELS: Dict[str, str] = {
	"import": "imports",
	"call": "calls",
	"use": "uses",
}
CONTAINS = "contains"


class CallGraph:
	"""Accumulates nodes and edges in insertion order.

	Nodes are unique by id. Edges whose endpoints are not nodes are dropped and
	exact duplicates (same endpoints and label) are kept once.
	"""

	def __init__(self) -> None:
		self.nodes: Dict[str, GraphNode] = {}
		self.edges: List[GraphEdge] = []
		self._edge_keys: Set[Tuple[str, str, Optional[str]]] = set()
		self.dropped_edges = 0

	def add_node(self, node: GraphNode) -> None:
		self.nodes.setdefault(node.id, node)

	def add_edge(self, source: str, target: str, label: Optional[str] = None) -> None:
		if source not in self.nodes or target not in self.nodes:
			self.dropped_edges += 1
			return
		key = (source, target, label)
		if key in self._edge_keys:
			return
		self._edge_keys.add(key)
		self.edges.append(GraphEdge(from_=source, to=target, label=label))

	def to_data(self) -> GraphData:
		return GraphData(nodes=list(self.nodes.values()), edges=list(self.edges))


def build_graph(files: List[ParsedFile], resolution: ResolutionResult) -> GraphData:
	graph = CallGraph()
	for f in files:
		graph.add_node(GraphNode(id=file_node_id(f.path), label=f.path, kind="file"))
		for fn in f.functions:
			graph.add_node(GraphNode(id=fn.node_id, label=fn.name, kind="function"))
		for t in f.types:
			graph.add_node(GraphNode(id=type_node_id(f.path, t.name), label=t.name, kind="type"))

	for f in files:
		fid = file_node_id(f.path)
		for fn in f.functions:
			graph.add_edge(fid, fn.node_id, CONTAINS)
		for t in f.types:
			graph.add_edge(fid, type_node_id(f.path, t.name), CONTAINS)

	for dep in resolution.resolved:
		graph.add_edge(dep.source, dep.target, EDGE_LABELS[dep.kind])
	return graph.to_data()


def graph_to_json(graph: GraphData) -> str:
	return json.dumps(graph.model_dump(by_alias=True), separators=(",", ":"))


def in_degree(graph: GraphData, exclude_labels: Iterable[str] = (CONTAINS,), ignore_self_loops: bool = True) -> Dict[str, int]:
	excluded = set(exclude_labels)
	degree = {n.id: 0 for n in graph.nodes}
	for e in graph.edges:
		if e.label in excluded or (ignore_self_loops and e.from_ == e.to):
			continue
		degree[e.to] = degree.get(e.to, 0) + 1
	return degree


def to_digraph(graph: GraphData, label: Optional[str] = None, kind: Optional[str] = None) -> nx.DiGraph:
	"""networkx view of ``graph`` restricted to ``kind`` nodes and ``label`` edges."""
	g = nx.DiGraph()
	g.add_nodes_from(n.id for n in graph.nodes if kind is None or n.kind == kind)
	for e in graph.edges:
		if (label is None or e.label == label) and e.from_ in g and e.to in g:
			g.add_edge(e.from_, e.to)
	return g


def _shortest_cycle(g: nx.DiGraph, start: str) -> List[str]:
	if g.has_edge(start, start):
		return [start, start]
	best: Optional[List[str]] = None
	for succ in sorted(g.successors(start)):
		path = nx.shortest_path(g, succ, start)
		if best is None or len(path) < len(best):
			best = path
	return [start] + (best or [start])


def find_cycles(graph: GraphData, label: str = EDGE_LABELS["import"], kind: str = "file") -> List[List[str]]:
	"""One cycle per strongly connected group of ``kind`` nodes joined by ``label`` edges.

	Each cycle starts and ends at the group's smallest node id; cycles are
	ordered by that id.
	"""
	g = to_digraph(graph, label, kind)
	cycles: List[List[str]] = []
	for component in nx.strongly_connected_components(g):
		start = min(component)
		if len(component) == 1 and not g.has_edge(start, start):
			continue
		cycles.append(_shortest_cycle(g.subgraph(component), start))
	cycles.sort(key=lambda c: c[0])
	return cycles

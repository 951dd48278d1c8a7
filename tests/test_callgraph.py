import json

from archlens.callgraph import (
	CallGraph,
	build_graph,
	find_cycles,
	graph_to_json,
	in_degree,
	to_digraph,
)
from archlens.model import GraphData, GraphEdge, GraphNode
from archlens.resolve import resolve_dependencies

from conftest import parse


def file_graph(edges, extra_nodes=()):
	ids = sorted({a for a, _ in edges} | {b for _, b in edges} | set(extra_nodes))
	return GraphData(
		nodes=[GraphNode(id=f"file:{i}", label=i, kind="file") for i in ids],
		edges=[GraphEdge(from_=f"file:{a}", to=f"file:{b}", label="imports") for a, b in edges],
	)


def sample_files():
	return [
		parse("src/a.rs", "use crate::b;\nstruct Local;\nfn go(l: Local) { b::helper(); }\n"),
		parse("src/b.rs", "fn helper(x: i32) -> i32 { if x > 0 { 1 } else { 0 } }\n"),
	]


def test_build_graph_nodes_and_edges():
	files = sample_files()
	graph = build_graph(files, resolve_dependencies(files))
	assert [n.id for n in graph.nodes] == [
		"file:src/a.rs",
		"fn:src/a.rs::go",
		"type:src/a.rs::Local",
		"file:src/b.rs",
		"fn:src/b.rs::helper",
	]
	edges = [(e.from_, e.to, e.label) for e in graph.edges]
	assert edges[:3] == [
		("file:src/a.rs", "fn:src/a.rs::go", "contains"),
		("file:src/a.rs", "type:src/a.rs::Local", "contains"),
		("file:src/b.rs", "fn:src/b.rs::helper", "contains"),
	]
	assert ("file:src/a.rs", "file:src/b.rs", "imports") in edges
	assert ("fn:src/a.rs::go", "fn:src/b.rs::helper", "calls") in edges
	assert ("fn:src/a.rs::go", "type:src/a.rs::Local", "uses") in edges

	ids = {n.id for n in graph.nodes}
	assert all(e.from_ in ids and e.to in ids for e in graph.edges)


def test_graph_json_uses_from_key_and_is_stable():
	files = sample_files()
	first = graph_to_json(build_graph(files, resolve_dependencies(files)))
	second = graph_to_json(build_graph(files, resolve_dependencies(files)))
	assert first == second
	data = json.loads(first)
	assert set(data["edges"][0]) == {"from", "to", "label"}


def test_call_graph_drops_dangling_and_duplicate_edges():
	g = CallGraph()
	g.add_node(GraphNode(id="a", label="a", kind="file"))
	g.add_node(GraphNode(id="b", label="b", kind="file"))
	g.add_node(GraphNode(id="a", label="other", kind="file"))
	g.add_edge("a", "b", "imports")
	g.add_edge("a", "b", "imports")
	g.add_edge("a", "b", "calls")
	g.add_edge("a", "missing", "calls")
	data = g.to_data()
	assert [n.label for n in data.nodes] == ["a", "b"]
	assert [(e.from_, e.to, e.label) for e in data.edges] == [("a", "b", "imports"), ("a", "b", "calls")]
	assert g.dropped_edges == 1


def test_in_degree_ignores_contains_and_self_loops():
	graph = GraphData(
		nodes=[
			GraphNode(id="file:x", label="x", kind="file"),
			GraphNode(id="fn:x::f", label="f", kind="function"),
			GraphNode(id="fn:x::g", label="g", kind="function"),
		],
		edges=[
			GraphEdge(from_="file:x", to="fn:x::f", label="contains"),
			GraphEdge(from_="fn:x::f", to="fn:x::f", label="calls"),
			GraphEdge(from_="fn:x::f", to="fn:x::g", label="calls"),
		],
	)
	assert in_degree(graph) == {"file:x": 0, "fn:x::f": 0, "fn:x::g": 1}
	assert in_degree(graph, exclude_labels=(), ignore_self_loops=False)["fn:x::f"] == 2


def test_two_file_cycle_is_reported_once():
	graph = file_graph([("b.rs", "a.rs"), ("a.rs", "b.rs")])
	assert find_cycles(graph) == [["file:a.rs", "file:b.rs", "file:a.rs"]]


def test_cycles_per_component_with_shortest_path():
	graph = file_graph(
		[
			("a", "b"),
			("b", "c"),
			("c", "a"),
			("c", "b"),
			("x", "y"),
			("y", "x"),
			("y", "z"),
		]
	)
	assert find_cycles(graph) == [
		["file:a", "file:b", "file:c", "file:a"],
		["file:x", "file:y", "file:x"],
	]


def test_acyclic_graph_has_no_cycles():
	graph = file_graph([("a", "b"), ("b", "c"), ("a", "c")])
	assert find_cycles(graph) == []


def test_long_import_ring():
	n = 2000
	ids = [f"m{i:05d}" for i in range(n)]
	graph = file_graph([(ids[i], ids[(i + 1) % n]) for i in range(n)])
	cycles = find_cycles(graph)
	assert len(cycles) == 1
	assert cycles[0][0] == cycles[0][-1] == "file:m00000"
	assert len(cycles[0]) == n + 1


def test_to_digraph_filters_kind_and_label():
	files = sample_files()
	graph = build_graph(files, resolve_dependencies(files))
	g = to_digraph(graph, label="imports", kind="file")
	assert sorted(g.nodes) == ["file:src/a.rs", "file:src/b.rs"]
	assert list(g.edges) == [("file:src/a.rs", "file:src/b.rs")]

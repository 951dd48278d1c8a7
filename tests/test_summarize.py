from archlens.callgraph import build_graph
from archlens.complexity import score_functions
from archlens.config import Settings
from archlens.model import GraphData, GraphEdge, GraphNode, ParsedFile, ParseWarning
from archlens.resolve import resolve_dependencies
from archlens.summarize import architecture_notes, build_summary, summarize_file

from conftest import parse


def notes_for(files, settings):
	graph = build_graph(files, resolve_dependencies(files))
	return architecture_notes(files, graph, score_functions(files), settings)


def test_cyclic_imports_give_one_note_naming_both_files(settings):
	files = [
		parse("src/a.rs", "use crate::b;\npub fn a() {}\n"),
		parse("src/b.rs", "use crate::a;\npub fn b() {}\n"),
	]
	notes = notes_for(files, settings)
	circular = [n for n in notes if n.startswith("Circular dependency")]
	assert circular == ["Circular dependency: src/a.rs -> src/b.rs -> src/a.rs"]


def test_rules_are_ordered_and_name_offenders():
	files = [
		parse("src/big.rs", "pub fn branchy(a: bool, b: bool) {\n    if a { }\n    if b { }\n}\n"),
		parse("src/small.rs", "pub fn tiny() {}\n"),
	]
	settings = Settings(max_file_lines=3, max_complexity=2, max_fan_in=8)
	notes = notes_for(files, settings)
	assert notes == [
		"Oversized file: src/big.rs (4 lines) exceeds 3 lines",
		"High complexity: branchy in src/big.rs (score 3) above 2",
	]


def test_central_dependency_counts_non_contains_edges(settings):
	nodes = [GraphNode(id=f"file:{n}.rs", label=f"{n}.rs", kind="file") for n in ("a", "b", "c", "hub")]
	edges = [GraphEdge(from_=f"file:{n}.rs", to="file:hub.rs", label="imports") for n in ("a", "b", "c")]
	edges.append(GraphEdge(from_="file:a.rs", to="file:hub.rs", label="contains"))
	graph = GraphData(nodes=nodes, edges=edges)
	notes = architecture_notes([], graph, [], Settings(max_fan_in=2))
	assert notes == ["Central dependency: hub.rs (3 dependents) above fan-in 2"]
	assert architecture_notes([], graph, [], Settings(max_fan_in=3)) == []


def test_build_summary_counts():
	files = [
		parse("src/lib.rs", "use crate::x;\nuse std::fmt;\npub struct A;\nenum B { One }\nfn f() { if true {} }\nfn g() {}\n"),
		ParsedFile(
			path="src/blob.rs",
			line_count=3,
			diagnostics=[ParseWarning(path="src/blob.rs", message="binary content, not parsed")],
			failed=True,
		),
	]
	items = score_functions(files)
	summary = build_summary("p1", "demo", files, items, ["fn:src/lib.rs::g"], ["note"])
	assert summary.total_files == 2
	assert summary.total_functions == 2 == len(items)
	assert summary.total_structs == 2
	assert summary.total_imports == 2
	assert summary.avg_complexity == 1.5
	assert summary.dead_code_candidates == ["fn:src/lib.rs::g"]
	assert summary.architecture_notes == ["note"]


def test_empty_summary():
	summary = build_summary("p1", "demo", [], [], [], [])
	assert summary.total_functions == 0
	assert summary.avg_complexity == 0.0


def test_summarize_file():
	parsed = parse("src/lib.rs", "use std::fmt;\npub struct A;\nfn f() {}\n")
	text = summarize_file(parsed)
	assert text.splitlines()[0] == "Module crate at src/lib.rs (3 lines)"
	assert "  Types: A" in text
	assert "  Functions: f" in text
	assert "  Imports: std::fmt" in text

from hypothesis import given, settings as hyp_settings, strategies as st

from archlens.callgraph import CallGraph, build_graph, find_cycles
from archlens.complexity import score_function, score_functions, score_tokens
from archlens.config import Settings
from archlens.deadcode import find_dead_code
from archlens.model import GraphNode, Token
from archlens.resolve import resolve_dependencies
from archlens.rust_parse import parse_rust_file
from archlens.summarize import build_summary


names = st.from_regex(r"[a-z][a-z0-9_]{0,8}", fullmatch=True).filter(lambda s: s not in {"if", "in", "fn", "for", "let", "mut", "ref", "as", "use", "mod", "dyn", "loop", "type", "while", "match", "else", "impl", "pub", "self", "super", "crate", "move", "where", "true", "false", "const", "static", "struct", "enum", "trait", "return", "break", "continue", "unsafe", "async", "await", "yield", "union", "extern", "gen", "box", "do", "final", "macro", "override", "priv", "typeof", "unsized", "virtual", "abstract", "become", "try"})


def words(text):
	return [Token("ident" if w[0].isalnum() or w[0] == "_" else "punct", w, 1) for w in text.split()]


@given(st.lists(st.tuples(names, st.integers(min_value=0, max_value=999)), max_size=20))
def test_straight_line_code_scores_one(statements):
	body = " ".join(f"let {n} = {v} + call ( {v} ) ;" for n, v in statements)
	assert score_tokens(words("{ " + body + " }")) == 1


@hyp_settings(max_examples=12)
@given(st.integers(min_value=1, max_value=12))
def test_nested_ifs_score_triangular(depth):
	text = "fn f(c: bool) {\n" + "if c { " * depth + "}" * depth + "\n}\n"
	fn = parse_rust_file("src/lib.rs", text).functions[0]
	assert score_function(fn).score == 1 + depth * (depth + 1) // 2


@given(st.integers(min_value=1, max_value=15))
def test_match_arms(arms):
	body = "match x { " + " ".join(f"{i} => {i} ," for i in range(arms)) + " }"
	assert score_tokens(words(body)) == arms


@given(st.lists(st.integers(min_value=0, max_value=6), max_size=12))
def test_summary_totals_follow_complexity_items(branch_counts):
	text = "\n".join(f"fn f{i}(a: bool) {{ {'if a { } ' * n}}}" for i, n in enumerate(branch_counts))
	parsed = parse_rust_file("src/lib.rs", text)
	items = score_functions([parsed])
	summary = build_summary("p", "demo", [parsed], items, [], [])
	assert summary.total_functions == len(items) == len(branch_counts)
	assert [i.score for i in items] == [1 + n for n in branch_counts]
	if items:
		assert summary.avg_complexity == sum(i.score for i in items) / len(items)
	else:
		assert summary.avg_complexity == 0.0


node_ids = st.sampled_from([f"file:m{i}.rs" for i in range(8)])


@given(st.lists(st.tuples(node_ids, node_ids), max_size=40), st.sets(node_ids, max_size=8))
def test_graph_never_has_dangling_edges_and_cycles_are_closed(pairs, present):
	g = CallGraph()
	for node_id in sorted(present):
		g.add_node(GraphNode(id=node_id, label=node_id[5:], kind="file"))
	for a, b in pairs:
		g.add_edge(a, b, "imports")
	data = g.to_data()
	ids = {n.id for n in data.nodes}
	assert all(e.from_ in ids and e.to in ids for e in data.edges)

	edges = {(e.from_, e.to) for e in data.edges}
	seen_starts = set()
	for cycle in find_cycles(data):
		assert cycle[0] == cycle[-1] == min(cycle)
		assert cycle[0] not in seen_starts
		seen_starts.add(cycle[0])
		assert all((a, b) in edges for a, b in zip(cycle, cycle[1:]))


@hyp_settings(max_examples=30)
@given(st.lists(names, min_size=1, max_size=6, unique=True), st.data())
def test_entry_points_never_reported(fn_names, data):
	entry = data.draw(st.sampled_from(fn_names))
	text = "\n".join(f"fn {n}() {{}}" for n in fn_names)
	parsed = parse_rust_file("src/lib.rs", text)
	graph = build_graph([parsed], resolve_dependencies([parsed]))
	dead = find_dead_code([parsed], graph, Settings(entry_point_names=[entry]))
	assert f"fn:src/lib.rs::{entry}" not in dead
	assert len(dead) == len(fn_names) - 1

from archlens.callgraph import build_graph
from archlens.config import Settings
from archlens.deadcode import find_dead_code
from archlens.model import ResolvedDependency
from archlens.resolve import build_index, resolve_dependencies, resolve_module_path

from conftest import parse


def deps(result, kind=None):
	return [(d.source, d.target) for d in result.resolved if kind is None or d.kind == kind]


def test_imports_and_calls_across_files():
	files = [
		parse(
			"src/main.rs",
			"""
			mod util;
			use crate::util::helper;

			fn main() {
			    helper();
			    util::other();
			}
			""",
		),
		parse("src/util.rs", "pub fn helper() {}\npub fn other() {}\n"),
	]
	result = resolve_dependencies(files)
	assert ResolvedDependency(source="file:src/main.rs", target="file:src/util.rs", kind="import") in result.resolved
	assert ("file:src/main.rs", "fn:src/util.rs::helper") in deps(result, "import")
	assert deps(result, "call") == [
		("fn:src/main.rs::main", "fn:src/util.rs::helper"),
		("fn:src/main.rs::main", "fn:src/util.rs::other"),
	]
	assert result.ambiguities == []


def test_ambiguous_call_resolves_to_every_candidate():
	files = [
		parse("src/a.rs", "fn run() {}\n"),
		parse("src/b.rs", "fn run() {}\n"),
		parse("src/c.rs", "fn go() { run(); }\n"),
	]
	result = resolve_dependencies(files)
	assert deps(result, "call") == [
		("fn:src/c.rs::go", "fn:src/a.rs::run"),
		("fn:src/c.rs::go", "fn:src/b.rs::run"),
	]
	assert len(result.ambiguities) == 1
	assert result.ambiguities[0].raw_target == "run"


def test_local_definition_wins_over_project_wide_match():
	files = [
		parse("src/a.rs", "fn run() {}\nfn go() { run(); }\n"),
		parse("src/b.rs", "fn run() {}\n"),
	]
	result = resolve_dependencies(files)
	assert deps(result, "call") == [("fn:src/a.rs::go", "fn:src/a.rs::run")]


def test_method_and_associated_calls():
	files = [
		parse(
			"src/store.rs",
			"""
			struct Store;
			impl Store {
			    fn new() -> Self { Store }
			    fn save(&self) {}
			    fn flush(&self) { self.save(); }
			}
			fn open() { let s = Store::new(); s.flush(); }
			""",
		)
	]
	result = resolve_dependencies(files)
	calls = deps(result, "call")
	assert ("fn:src/store.rs::Store::flush", "fn:src/store.rs::Store::save") in calls
	assert ("fn:src/store.rs::open", "fn:src/store.rs::Store::new") in calls
	assert ("fn:src/store.rs::open", "fn:src/store.rs::Store::flush") in calls
	uses = deps(result, "use")
	assert ("fn:src/store.rs::open", "type:src/store.rs::Store") in uses


def test_unresolved_external_references():
	files = [parse("src/lib.rs", "use serde::Serialize;\nfn f() { std::process::exit(1); }\n")]
	result = resolve_dependencies(files)
	raw = {(d.raw_target, d.kind) for d in result.unresolved}
	assert ("serde::Serialize", "import") in raw
	assert ("std::process::exit", "call") in raw
	assert deps(result) == []


def test_resolve_module_path_relative_forms():
	files = [
		parse("src/lib.rs", "pub mod net;\n"),
		parse("src/net/mod.rs", "pub struct Client;\npub mod http;\n"),
		parse("src/net/http.rs", "fn get() {}\n"),
	]
	index = build_index(files)
	assert resolve_module_path(index, "src/net/http.rs", ["super", "Client"]) == ("src/net/mod.rs", ["Client"])
	assert resolve_module_path(index, "src/net/mod.rs", ["self", "http", "get"]) == ("src/net/http.rs", ["get"])
	assert resolve_module_path(index, "src/lib.rs", ["crate", "net", "http"]) == ("src/net/http.rs", [])
	assert resolve_module_path(index, "src/lib.rs", ["net", "Client"]) == ("src/net/mod.rs", ["Client"])
	assert resolve_module_path(index, "src/lib.rs", ["tokio", "spawn"]) is None


def test_crate_name_paths_between_workspace_members():
	files = [
		parse("core-lib/src/lib.rs", "pub fn shared() {}\n"),
		parse("app/src/main.rs", "use core_lib::shared;\nfn main() { shared(); }\n"),
	]
	result = resolve_dependencies(files)
	assert ("file:app/src/main.rs", "file:core-lib/src/lib.rs") in deps(result, "import")
	assert ("fn:app/src/main.rs::main", "fn:core-lib/src/lib.rs::shared") in deps(result, "call")


def test_parallel_resolution_preserves_order():
	files = [parse(f"src/m{i}.rs", f"fn f{i}() {{ f{(i + 1) % 6}(); }}\n") for i in range(6)]
	assert resolve_dependencies(files, max_workers=4).resolved == resolve_dependencies(files, max_workers=1).resolved


def test_crate_name_call_in_root_crate_falls_back_to_name_match():
	files = [
		parse("src/main.rs", "fn main() { mycrate::helper(); }\n"),
		parse("src/lib.rs", "fn helper() {}\n"),
	]
	result = resolve_dependencies(files)
	assert deps(result, "call") == [("fn:src/main.rs::main", "fn:src/lib.rs::helper")]
	graph = build_graph(files, result)
	assert find_dead_code(files, graph, Settings()) == []


def test_standard_library_paths_stay_external():
	files = [parse("src/lib.rs", "fn exit() {}\nfn f() { std::process::exit(1); }\n")]
	result = resolve_dependencies(files)
	assert deps(result, "call") == []


def test_renamed_import_binds_the_alias():
	files = [
		parse("src/a.rs", "use crate::util::helper as h;\nuse crate::util::Pool as DbPool;\nfn run(p: DbPool) { h(); }\n"),
		parse("src/util.rs", "pub struct Pool;\npub fn helper() {}\n"),
	]
	result = resolve_dependencies(files)
	assert deps(result, "call") == [("fn:src/a.rs::run", "fn:src/util.rs::helper")]
	assert ("fn:src/a.rs::run", "type:src/util.rs::Pool") in deps(result, "use")
	assert ("file:src/a.rs", "fn:src/util.rs::helper") in deps(result, "import")

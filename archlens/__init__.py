"""archlens: architecture analysis for Rust source trees.

Modules:
- fs_scan.py: Source collection and crate/module naming.
- remote.py: Shallow git clones for remote projects.
- rust_parse.py: Per-file parsing on the tree-sitter Rust grammar (functions, types, use statements).
- resolve.py: Name index and cross-file dependency resolution.
- callgraph.py: Graph construction, in-degree and cycle detection.
- complexity.py: Per-function complexity scores.
- deadcode.py: Unreferenced functions and types.
- summarize.py: Architecture notes and the run summary.
- pipeline.py: The Analyzer orchestrating one run.
- store.py: SQLAlchemy persistence of runs.
- model.py, errors.py, config.py, log.py: Data model and ambient plumbing.
"""

__all__ = [
	"fs_scan",
	"remote",
	"rust_parse",
	"resolve",
	"callgraph",
	"complexity",
	"deadcode",
	"summarize",
	"pipeline",
	"store",
	"model",
	"errors",
	"config",
	"log",
]

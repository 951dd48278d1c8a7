from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

import uvicorn

from archlens.config import get_settings
from archlens.errors import AnalysisError
from archlens.log import setup_logging
from archlens.model import AnalysisRun, ProjectRef
from archlens.pipeline import Analyzer, default_project_name
from archlens.store import AnalysisStore
from archlens.summarize import summarize_file


def render_text(run: AnalysisRun) -> str:
	s = run.summary
	lines = [
		f"Project {s.project_name}: {s.total_files} files, {s.total_functions} functions, "
		f"{s.total_structs} types, {s.total_imports} imports, avg complexity {s.avg_complexity:.2f}",
	]
	for f in run.parsed_files:
		lines.append(summarize_file(f))
	if s.dead_code_candidates:
		lines.append("Dead code candidates:")
		lines.extend(f"  {c}" for c in s.dead_code_candidates)
	if s.architecture_notes:
		lines.append("Notes:")
		lines.extend(f"  {n}" for n in s.architecture_notes)
	return "\n".join(lines)


def cmd_analyze(args: argparse.Namespace) -> int:
	settings = get_settings()
	store = None
	if not args.no_store:
		store = AnalysisStore(args.db or settings.database_url)
		store.create_all()

	if args.remote:
		ref = ProjectRef(name=args.name or default_project_name(args.path), remote_source=args.path)
	else:
		root = os.path.abspath(args.path)
		ref = ProjectRef(name=args.name or default_project_name(root), path=root)

	try:
		run = Analyzer(settings=settings, store=store).run(ref)
	except AnalysisError as e:
		print(f"error ({e.stage}): {e}", file=sys.stderr)
		return 1

	if args.format == "text":
		print(render_text(run))
	else:
		print(json.dumps(run.model_dump(mode="json", by_alias=True), indent=2))
	return 0


def cmd_serve(args: argparse.Namespace) -> int:
	uvicorn.run("api:app", host=args.host, port=args.port, reload=args.reload)
	return 0


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(prog="archlens")
	parser.add_argument("--log-level", default=None, help="Overrides ARCHLENS_LOG_LEVEL")
	parser.add_argument("--log-file", default=None, help="Also write logs to this file (overrides ARCHLENS_LOG_FILE)")
	sub = parser.add_subparsers(dest="cmd", required=True)

	pa = sub.add_parser("analyze", help="Analyze a Rust project and print the run")
	pa.add_argument("path", help="Project root, or a git URL with --remote")
	pa.add_argument("--name", help="Project name (defaults to the directory or repository name)")
	pa.add_argument("--remote", action="store_true", help="Treat PATH as a git URL and clone it")
	pa.add_argument("--db", help="Database URL (defaults to ARCHLENS_DATABASE_URL)")
	pa.add_argument("--no-store", action="store_true", help="Do not persist the run")
	pa.add_argument("--format", choices=["json", "text"], default="json")
	pa.set_defaults(func=cmd_analyze)

	ps = sub.add_parser("serve", help="Run FastAPI server")
	ps.add_argument("--host", default="127.0.0.1")
	ps.add_argument("--port", type=int, default=8000)
	ps.add_argument("--reload", action="store_true")
	ps.set_defaults(func=cmd_serve)
	return parser


def main(argv=None) -> int:
	args = build_parser().parse_args(argv)
	settings = get_settings()
	log_file = args.log_file or settings.log_file
	setup_logging(args.log_level or settings.log_level, Path(log_file) if log_file else None)
	return args.func(args)


if __name__ == "__main__":
	sys.exit(main())

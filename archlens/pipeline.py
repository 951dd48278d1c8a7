"""Runs the analysis stages in order and publishes the result.

collect -> parse (per file, parallel) -> resolve (index barrier, then per file
in parallel) -> graph -> {complexity, dead code} in parallel -> notes ->
summary -> persist.

Nothing is written to the store until every stage has finished; a failure in
any fatal stage raises ``AnalysisError`` and leaves the previous run intact.
"""

from __future__ import annotations

import logging
import os
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .callgraph import build_graph
from .complexity import score_functions
from .config import Settings, get_settings
from .deadcode import find_dead_code
from .errors import AnalysisError, CollectionError
from .fs_scan import CollectionResult, collect_sources, read_source, to_module_name
from .model import AnalysisRun, AnalysisSummary, FileEntry, ParsedFile, ParseWarning, Project, ProjectRef
from .remote import RemoteWorkspace
from .resolve import resolve_dependencies
from .rust_parse import parse_source
from .store import AnalysisStore
from .summarize import architecture_notes, build_summary


logger = logging.getLogger(__name__)


def default_project_name(source: str) -> str:
	"""Last path or URL segment, without a trailing ``.git``."""
	name = os.path.basename(source.rstrip("/\\"))
	if name.endswith(".git"):
		name = name[:-4]
	return name or "project"


def load_and_parse(root: str, rel_path: str) -> ParsedFile:
	try:
		data = read_source(root, rel_path)
	except OSError as e:
		logger.warning("Cannot read %s: %s", rel_path, e)
		return ParsedFile(
			path=rel_path,
			module_name=to_module_name(rel_path),
			diagnostics=[ParseWarning(path=rel_path, message=f"unreadable: {e.strerror or e}")],
			failed=True,
		)
	return parse_source(rel_path, data)


class Analyzer:
	"""Analysis entry point.

	Holds one lock per project (keyed by name) so that two runs of the same project never
	interleave; runs of different projects proceed in parallel.
	"""

	def __init__(self, settings: Optional[Settings] = None, store: Optional[AnalysisStore] = None) -> None:
		self.settings = settings or get_settings()
		self.store = store
		self._locks: Dict[str, threading.Lock] = {}
		self._locks_guard = threading.Lock()

	def _lock_for(self, name: str) -> threading.Lock:
		with self._locks_guard:
			return self._locks.setdefault(name, threading.Lock())

	def _project(self, ref: ProjectRef) -> Project:
		location = ref.remote_source or ref.path
		if self.store is None:
			pid = str(uuid.uuid5(uuid.NAMESPACE_URL, f"archlens:{ref.name}"))
			return Project(id=pid, name=ref.name, path=location)
		try:
			return self.store.upsert_project(ref.name, location)
		except SQLAlchemyError as e:
			raise AnalysisError(f"Cannot register project {ref.name}: {e}", stage="persist") from e

	def analyze(self, ref: ProjectRef) -> AnalysisSummary:
		return self.run(ref).summary

	def run(self, ref: ProjectRef) -> AnalysisRun:
		if not ref.path and not ref.remote_source:
			raise AnalysisError("Either a local path or a remote source is required", stage="collect")
		# Keyed by name (unique per project) so registration is covered too.
		with self._lock_for(ref.name):
			project = self._project(ref)
			if ref.remote_source:
				try:
					with RemoteWorkspace(ref.remote_source, timeout=self.settings.clone_timeout) as root:
						return self._run_at(project, str(root))
				except CollectionError as e:
					raise AnalysisError(str(e), stage="collect") from e
			return self._run_at(project, ref.path)

	def _collect(self, root: str) -> CollectionResult:
		try:
			return collect_sources(root, self.settings.ignore_patterns, self.settings.extensions)
		except CollectionError as e:
			raise AnalysisError(str(e), stage="collect") from e

	def _parse(self, collected: CollectionResult) -> List[ParsedFile]:
		load = partial(load_and_parse, collected.root)
		workers = self.settings.max_workers
		if workers > 1 and len(collected.paths) > 1:
			with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="archlens-parse") as pool:
				return list(pool.map(load, collected.paths))
		return [load(p) for p in collected.paths]

	def _run_at(self, project: Project, root: str) -> AnalysisRun:
		logger.info("Analyzing %s at %s", project.name, root)
		collected = self._collect(root)
		files = self._parse(collected)
		if files and all(f.failed for f in files):
			raise AnalysisError(f"None of the {len(files)} source files could be parsed", stage="parse")

		resolution = resolve_dependencies(files, max_workers=self.settings.max_workers)
		graph = build_graph(files, resolution)

		with ThreadPoolExecutor(max_workers=2, thread_name_prefix="archlens-post") as pool:
			complexity_future = pool.submit(score_functions, files)
			dead_future = pool.submit(find_dead_code, files, graph, self.settings)
			complexity = complexity_future.result()
			dead_code = dead_future.result()
		notes = architecture_notes(files, graph, complexity, self.settings)

		diagnostics: List[str] = list(collected.warnings)
		for f in files:
			for w in f.diagnostics:
				logger.warning("%s", w)
				diagnostics.append(str(w))
		if resolution.ambiguities:
			logger.info("%d ambiguous references resolved to every candidate", len(resolution.ambiguities))
		diagnostics.extend(str(a) for a in resolution.ambiguities)

		summary = build_summary(project.id, project.name, files, complexity, dead_code, notes)
		run = AnalysisRun(
			run_id=str(uuid.uuid4()),
			project=project,
			files=[FileEntry(id=f.node_id, path=f.path, module_name=f.module_name, line_count=f.line_count) for f in files],
			graph=graph,
			complexity=complexity,
			summary=summary,
			diagnostics=diagnostics,
			parsed_files=files,
		)

		if self.store is not None:
			try:
				self.store.replace_run(run)
			except SQLAlchemyError as e:
				raise AnalysisError(f"Failed to store run for {project.name}: {e}", stage="persist") from e
		logger.info(
			"Analyzed %s: %d files, %d functions, avg complexity %.2f",
			project.name,
			summary.total_files,
			summary.total_functions,
			summary.avg_complexity,
		)
		return run

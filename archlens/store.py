"""Persistence of analysis runs (SQLAlchemy 2.0, synchronous sessions).

Only the latest run of a project is kept. ``replace_run`` deletes the prior
run and writes the new one inside a single transaction, so a failed write
leaves the previous artifacts in place.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, create_engine, delete, select
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .complexity import average_score
from .model import (
	AnalysisRun,
	AnalysisSummary,
	ComplexityItem,
	FileEntry,
	GraphData,
	GraphEdge,
	GraphNode,
	Project,
)


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


def _new_id() -> str:
	return str(uuid.uuid4())


class Base(DeclarativeBase):
	"""Base class for all archlens tables."""

	pass


class ProjectRow(Base):
	__tablename__ = "projects"

	id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
	name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
	path: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
	created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
	updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

	def __repr__(self) -> str:
		return f"<ProjectRow {self.name}>"


class RunRow(Base):
	__tablename__ = "analysis_runs"

	id: Mapped[str] = mapped_column(String(36), primary_key=True)
	project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
	created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
	diagnostics: Mapped[list] = mapped_column(JSON, nullable=False, default=list)


class FileRow(Base):
	__tablename__ = "files"

	id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
	run_id: Mapped[str] = mapped_column(String(36), ForeignKey("analysis_runs.id", ondelete="CASCADE"), nullable=False, index=True)
	position: Mapped[int] = mapped_column(Integer, nullable=False)
	node_id: Mapped[str] = mapped_column(String(1000), nullable=False)
	path: Mapped[str] = mapped_column(String(1000), nullable=False)
	module_name: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
	line_count: Mapped[int] = mapped_column(Integer, nullable=False)


class NodeRow(Base):
	__tablename__ = "graph_nodes"

	id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
	run_id: Mapped[str] = mapped_column(String(36), ForeignKey("analysis_runs.id", ondelete="CASCADE"), nullable=False, index=True)
	position: Mapped[int] = mapped_column(Integer, nullable=False)
	node_id: Mapped[str] = mapped_column(String(1000), nullable=False)
	label: Mapped[str] = mapped_column(String(1000), nullable=False)
	kind: Mapped[str] = mapped_column(String(20), nullable=False)


class EdgeRow(Base):
	__tablename__ = "graph_edges"

	id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
	run_id: Mapped[str] = mapped_column(String(36), ForeignKey("analysis_runs.id", ondelete="CASCADE"), nullable=False, index=True)
	position: Mapped[int] = mapped_column(Integer, nullable=False)
	source: Mapped[str] = mapped_column(String(1000), nullable=False)
	target: Mapped[str] = mapped_column(String(1000), nullable=False)
	label: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)


class ComplexityRow(Base):
	__tablename__ = "complexity_items"

	id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
	run_id: Mapped[str] = mapped_column(String(36), ForeignKey("analysis_runs.id", ondelete="CASCADE"), nullable=False, index=True)
	position: Mapped[int] = mapped_column(Integer, nullable=False)
	function_name: Mapped[str] = mapped_column(String(1000), nullable=False)
	file_path: Mapped[str] = mapped_column(String(1000), nullable=False)
	score: Mapped[int] = mapped_column(Integer, nullable=False)
	line_start: Mapped[int] = mapped_column(Integer, nullable=False)
	line_end: Mapped[int] = mapped_column(Integer, nullable=False)


class SummaryRow(Base):
	"""Stored counts; function totals and the average are derived from ``complexity_items``."""

	__tablename__ = "summaries"

	run_id: Mapped[str] = mapped_column(String(36), ForeignKey("analysis_runs.id", ondelete="CASCADE"), primary_key=True)
	total_files: Mapped[int] = mapped_column(Integer, nullable=False)
	total_structs: Mapped[int] = mapped_column(Integer, nullable=False)
	total_imports: Mapped[int] = mapped_column(Integer, nullable=False)
	dead_code_candidates: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
	architecture_notes: Mapped[list] = mapped_column(JSON, nullable=False, default=list)


_RUN_TABLES = (FileRow, NodeRow, EdgeRow, ComplexityRow, SummaryRow)


def _to_project(row: ProjectRow) -> Project:
	return Project(id=row.id, name=row.name, path=row.path, created_at=row.created_at, updated_at=row.updated_at)


class AnalysisStore:
	def __init__(self, database_url: str = "sqlite:///archlens.db", echo: bool = False) -> None:
		kwargs = {}
		if database_url.startswith("sqlite"):
			kwargs["connect_args"] = {"check_same_thread": False}
			if database_url in ("sqlite://", "sqlite:///:memory:"):
				kwargs["poolclass"] = StaticPool
		self.engine = create_engine(database_url, echo=echo, **kwargs)
		self.session_maker = sessionmaker(
			self.engine,
			class_=Session,
			expire_on_commit=False,
			autoflush=False,
		)

	def create_all(self) -> None:
		Base.metadata.create_all(self.engine)

	@contextmanager
	def session(self) -> Generator[Session, None, None]:
		session = self.session_maker()
		try:
			yield session
			session.commit()
		except Exception:
			session.rollback()
			raise
		finally:
			session.close()

	# Projects

	def upsert_project(self, name: str, path: str) -> Project:
		with self.session() as s:
			row = s.scalars(select(ProjectRow).where(ProjectRow.name == name)).first()
			if row is None:
				row = ProjectRow(id=_new_id(), name=name, path=path)
				s.add(row)
				logger.info("Created project %s", name)
			elif row.path != path:
				row.path = path
				row.updated_at = _utcnow()
			s.flush()
			return _to_project(row)

	def get_project(self, project_id: str) -> Optional[Project]:
		with self.session() as s:
			row = s.get(ProjectRow, project_id)
			return _to_project(row) if row is not None else None

	def list_projects(self) -> List[Project]:
		with self.session() as s:
			return [_to_project(r) for r in s.scalars(select(ProjectRow).order_by(ProjectRow.name))]

	# Runs

	def replace_run(self, run: AnalysisRun) -> None:
		project_id = run.project.id
		with self.session() as s:
			old = list(s.scalars(select(RunRow.id).where(RunRow.project_id == project_id)))
			if old:
				for table in _RUN_TABLES:
					s.execute(delete(table).where(table.run_id.in_(old)))
				s.execute(delete(RunRow).where(RunRow.id.in_(old)))

			s.add(RunRow(id=run.run_id, project_id=project_id, diagnostics=list(run.diagnostics)))
			s.flush()
			s.add_all(
				FileRow(run_id=run.run_id, position=i, node_id=f.id, path=f.path, module_name=f.module_name, line_count=f.line_count)
				for i, f in enumerate(run.files)
			)
			s.add_all(
				NodeRow(run_id=run.run_id, position=i, node_id=n.id, label=n.label, kind=n.kind)
				for i, n in enumerate(run.graph.nodes)
			)
			s.add_all(
				EdgeRow(run_id=run.run_id, position=i, source=e.from_, target=e.to, label=e.label)
				for i, e in enumerate(run.graph.edges)
			)
			s.add_all(
				ComplexityRow(
					run_id=run.run_id,
					position=i,
					function_name=c.function_name,
					file_path=c.file_path,
					score=c.score,
					line_start=c.line_start,
					line_end=c.line_end,
				)
				for i, c in enumerate(run.complexity)
			)
			summary = run.summary
			s.add(
				SummaryRow(
					run_id=run.run_id,
					total_files=summary.total_files,
					total_structs=summary.total_structs,
					total_imports=summary.total_imports,
					dead_code_candidates=list(summary.dead_code_candidates),
					architecture_notes=list(summary.architecture_notes),
				)
			)
		logger.info("Stored run %s for project %s (%d files)", run.run_id, project_id, len(run.files))

	def latest_run_id(self, project_id: str) -> Optional[str]:
		with self.session() as s:
			stmt = (
				select(RunRow.id)
				.where(RunRow.project_id == project_id)
				.order_by(RunRow.created_at.desc())
				.limit(1)
			)
			return s.scalars(stmt).first()

	def load_files(self, project_id: str) -> Optional[List[FileEntry]]:
		run_id = self.latest_run_id(project_id)
		if run_id is None:
			return None
		with self.session() as s:
			rows = s.scalars(select(FileRow).where(FileRow.run_id == run_id).order_by(FileRow.position))
			return [FileEntry(id=r.node_id, path=r.path, module_name=r.module_name, line_count=r.line_count) for r in rows]

	def load_graph(self, project_id: str) -> Optional[GraphData]:
		run_id = self.latest_run_id(project_id)
		if run_id is None:
			return None
		with self.session() as s:
			nodes = s.scalars(select(NodeRow).where(NodeRow.run_id == run_id).order_by(NodeRow.position))
			edges = s.scalars(select(EdgeRow).where(EdgeRow.run_id == run_id).order_by(EdgeRow.position))
			return GraphData(
				nodes=[GraphNode(id=n.node_id, label=n.label, kind=n.kind) for n in nodes],
				edges=[GraphEdge(from_=e.source, to=e.target, label=e.label) for e in edges],
			)

	def _complexity(self, s: Session, run_id: str) -> List[ComplexityItem]:
		rows = s.scalars(select(ComplexityRow).where(ComplexityRow.run_id == run_id).order_by(ComplexityRow.position))
		return [
			ComplexityItem(
				function_name=r.function_name,
				file_path=r.file_path,
				score=r.score,
				line_start=r.line_start,
				line_end=r.line_end,
			)
			for r in rows
		]

	def load_complexity(self, project_id: str) -> Optional[List[ComplexityItem]]:
		run_id = self.latest_run_id(project_id)
		if run_id is None:
			return None
		with self.session() as s:
			return self._complexity(s, run_id)

	def load_summary(self, project_id: str) -> Optional[AnalysisSummary]:
		run_id = self.latest_run_id(project_id)
		if run_id is None:
			return None
		with self.session() as s:
			project = s.get(ProjectRow, project_id)
			row = s.get(SummaryRow, run_id)
			if project is None or row is None:
				return None
			items = self._complexity(s, run_id)
			return AnalysisSummary(
				project_id=project_id,
				project_name=project.name,
				total_files=row.total_files,
				total_functions=len(items),
				total_structs=row.total_structs,
				total_imports=row.total_imports,
				avg_complexity=average_score(items),
				dead_code_candidates=list(row.dead_code_candidates),
				architecture_notes=list(row.architecture_notes),
			)

	def load_diagnostics(self, project_id: str) -> Optional[List[str]]:
		run_id = self.latest_run_id(project_id)
		if run_id is None:
			return None
		with self.session() as s:
			run = s.get(RunRow, run_id)
			return list(run.diagnostics) if run is not None else None

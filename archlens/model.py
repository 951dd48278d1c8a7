from __future__ import annotations

from datetime import datetime
from typing import List, Literal, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field


class Token(NamedTuple):
	kind: str
	value: str
	line: int


class ParseWarning(BaseModel):
	path: str
	message: str
	line: Optional[int] = None

	def __str__(self) -> str:
		where = f"{self.path}:{self.line}" if self.line else self.path
		return f"{where}: {self.message}"


class ParsedFunction(BaseModel):
	model_config = ConfigDict(frozen=True)

	name: str
	file_path: str
	line_start: int
	line_end: int
	signature: str = ""
	is_public: bool = False
	owner: Optional[str] = None
	trait_impl: bool = False
	attributes: List[str] = []
	is_test: bool = False
	calls: List[str] = []
	type_refs: List[str] = []
	# Only kept for scoring; never serialized or persisted.
	body_tokens: List[Token] = Field(default_factory=list, exclude=True, repr=False)

	@property
	def short_name(self) -> str:
		return self.name.split("#", 1)[0].rsplit("::", 1)[-1]

	@property
	def node_id(self) -> str:
		return function_node_id(self.file_path, self.name)


class ParsedType(BaseModel):
	model_config = ConfigDict(frozen=True)

	name: str
	kind: Literal["struct", "enum", "union", "trait", "type"]
	line_start: int
	line_end: int
	is_public: bool = False
	attributes: List[str] = []
	type_refs: List[str] = []


class ParsedFile(BaseModel):
	model_config = ConfigDict(frozen=True)

	path: str
	module_name: Optional[str] = None
	line_count: int = 0
	functions: List[ParsedFunction] = []
	types: List[ParsedType] = []
	imports: List[str] = []
	diagnostics: List[ParseWarning] = []
	failed: bool = False

	@property
	def node_id(self) -> str:
		return file_node_id(self.path)


class Dependency(BaseModel):
	source: str
	raw_target: str
	kind: Literal["import", "call", "use"]


class ResolvedDependency(BaseModel):
	source: str
	target: str
	kind: Literal["import", "call", "use"]


class ResolutionAmbiguity(BaseModel):
	source: str
	raw_target: str
	candidates: List[str]

	def __str__(self) -> str:
		return f"{self.source}: '{self.raw_target}' matches {len(self.candidates)} targets ({', '.join(self.candidates)})"


class GraphNode(BaseModel):
	id: str
	label: str
	kind: Literal["file", "function", "type"]


class GraphEdge(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	from_: str = Field(alias="from")
	to: str
	label: Optional[str] = None


class GraphData(BaseModel):
	nodes: List[GraphNode] = []
	edges: List[GraphEdge] = []


class ComplexityItem(BaseModel):
	function_name: str
	file_path: str
	score: int = Field(ge=1)
	line_start: int
	line_end: int


class FileEntry(BaseModel):
	id: str
	path: str
	module_name: Optional[str] = None
	line_count: int


class AnalysisSummary(BaseModel):
	project_id: str
	project_name: str
	total_files: int = 0
	total_functions: int = 0
	total_structs: int = 0
	total_imports: int = 0
	avg_complexity: float = 0.0
	dead_code_candidates: List[str] = []
	architecture_notes: List[str] = []


class Project(BaseModel):
	id: str
	name: str
	path: str
	created_at: Optional[datetime] = None
	updated_at: Optional[datetime] = None


class ProjectRef(BaseModel):
	name: str
	path: str = ""
	remote_source: Optional[str] = None


class AnalysisRun(BaseModel):
	run_id: str
	project: Project
	files: List[FileEntry]
	graph: GraphData
	complexity: List[ComplexityItem]
	summary: AnalysisSummary
	diagnostics: List[str] = []
	parsed_files: List[ParsedFile] = Field(default_factory=list, exclude=True, repr=False)


def file_node_id(path: str) -> str:
	return f"file:{path}"


def function_node_id(file_path: str, name: str) -> str:
	return f"fn:{file_path}::{name}"


def type_node_id(file_path: str, name: str) -> str:
	return f"type:{file_path}::{name}"

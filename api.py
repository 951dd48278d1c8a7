from __future__ import annotations

import logging
import os
import threading
from functools import lru_cache
from typing import Dict, List, Optional, TypeVar

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel

from archlens.config import get_settings
from archlens.errors import AnalysisError
from archlens.model import AnalysisSummary, ComplexityItem, FileEntry, GraphData, Project, ProjectRef
from archlens.pipeline import Analyzer, default_project_name
from archlens.store import AnalysisStore


logger = logging.getLogger(__name__)

T = TypeVar("T")


class AnalyzeRequest(BaseModel):
	project_name: Optional[str] = None
	path: Optional[str] = None
	github_url: Optional[str] = None


class AnalyzeResponse(BaseModel):
	project_id: str
	files_analyzed: int
	functions_found: int
	message: str


@lru_cache
def _default_store() -> AnalysisStore:
	store = AnalysisStore(get_settings().database_url)
	store.create_all()
	return store


def get_store() -> AnalysisStore:
	return _default_store()


_analyzers: Dict[int, Analyzer] = {}
_analyzers_lock = threading.Lock()


def get_analyzer(store: AnalysisStore = Depends(get_store)) -> Analyzer:
	# One analyzer per store, so its per-project locks are shared across requests.
	with _analyzers_lock:
		analyzer = _analyzers.get(id(store))
		if analyzer is None or analyzer.store is not store:
			analyzer = Analyzer(settings=get_settings(), store=store)
			_analyzers[id(store)] = analyzer
		return analyzer


def _found(value: Optional[T], project_id: str) -> T:
	if value is None:
		raise HTTPException(status_code=404, detail=f"No analysis for project {project_id}")
	return value


app = FastAPI(title="archlens")


@app.post("/analyze", response_model=AnalyzeResponse)
def analyze(req: AnalyzeRequest, analyzer: Analyzer = Depends(get_analyzer)) -> AnalyzeResponse:
	if not req.path and not req.github_url:
		raise HTTPException(status_code=400, detail="Either path or github_url is required")
	if req.github_url:
		ref = ProjectRef(
			name=req.project_name or default_project_name(req.github_url),
			remote_source=req.github_url,
		)
	else:
		root = os.path.abspath(req.path)
		ref = ProjectRef(name=req.project_name or default_project_name(root), path=root)

	try:
		summary = analyzer.analyze(ref)
	except AnalysisError as e:
		logger.error("Analysis of %s failed in %s: %s", ref.name, e.stage, e)
		raise HTTPException(status_code=422, detail=f"{e.stage}: {e}") from e

	return AnalyzeResponse(
		project_id=summary.project_id,
		files_analyzed=summary.total_files,
		functions_found=summary.total_functions,
		message=f"Analyzed {summary.total_files} files of {summary.project_name}",
	)


@app.get("/projects", response_model=List[Project])
def list_projects(store: AnalysisStore = Depends(get_store)) -> List[Project]:
	return store.list_projects()


@app.get("/projects/{project_id}/summary", response_model=AnalysisSummary)
def project_summary(project_id: str, store: AnalysisStore = Depends(get_store)) -> AnalysisSummary:
	return _found(store.load_summary(project_id), project_id)


@app.get("/projects/{project_id}/files", response_model=List[FileEntry])
def project_files(project_id: str, store: AnalysisStore = Depends(get_store)) -> List[FileEntry]:
	return _found(store.load_files(project_id), project_id)


@app.get("/projects/{project_id}/graph", response_model=GraphData)
def project_graph(project_id: str, store: AnalysisStore = Depends(get_store)) -> GraphData:
	return _found(store.load_graph(project_id), project_id)


@app.get("/projects/{project_id}/complexity", response_model=List[ComplexityItem])
def project_complexity(project_id: str, store: AnalysisStore = Depends(get_store)) -> List[ComplexityItem]:
	return _found(store.load_complexity(project_id), project_id)


@app.get("/projects/{project_id}/diagnostics", response_model=List[str])
def project_diagnostics(project_id: str, store: AnalysisStore = Depends(get_store)) -> List[str]:
	return _found(store.load_diagnostics(project_id), project_id)


def create_app() -> FastAPI:
	return app

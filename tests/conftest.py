from textwrap import dedent

import pytest

from archlens.config import Settings
from archlens.rust_parse import parse_rust_file
from archlens.store import AnalysisStore


def rust(code: str) -> str:
	return dedent(code).lstrip("\n")


def parse(path: str, code: str):
	return parse_rust_file(path, rust(code))


@pytest.fixture
def write_tree(tmp_path):
	def _write(files):
		for rel, content in files.items():
			p = tmp_path / rel
			p.parent.mkdir(parents=True, exist_ok=True)
			if isinstance(content, bytes):
				p.write_bytes(content)
			else:
				p.write_text(rust(content))
		return tmp_path

	return _write


@pytest.fixture
def settings():
	return Settings(max_workers=1)


@pytest.fixture
def store():
	s = AnalysisStore("sqlite://")
	s.create_all()
	yield s
	s.engine.dispose()

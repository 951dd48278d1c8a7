from __future__ import annotations

import fnmatch
import logging
import os
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel

from .errors import CollectionError


logger = logging.getLogger(__name__)

EXTENSION_LANGUAGE: Dict[str, str] = {
	".rs": "rust",
}


class CollectionResult(BaseModel):
	root: str
	paths: List[str] = []
	warnings: List[str] = []


def crate_location(rel_path: str) -> Tuple[str, Optional[str], List[str]]:
	"""Split a root-relative source path into (crate_dir, crate_name, module segments).

	The crate root is the directory holding the innermost ``src`` component;
	``lib.rs``/``main.rs`` directly under it map to the crate itself and
	``mod.rs`` maps to its directory.
	"""
	parts = rel_path.split("/")
	src_index = -1
	for i in range(len(parts) - 1):
		if parts[i] == "src":
			src_index = i
	if src_index >= 0:
		crate_dir = "/".join(parts[: src_index + 1])
		crate_name = parts[src_index - 1].replace("-", "_") if src_index > 0 else None
		segments = parts[src_index + 1 :]
	else:
		crate_dir = ""
		crate_name = None
		segments = list(parts)

	segments[-1] = os.path.splitext(segments[-1])[0]
	if segments[-1] == "mod":
		segments.pop()
	elif len(segments) == 1 and segments[0] in ("lib", "main") and src_index >= 0:
		segments.pop()
	return crate_dir, crate_name, [s.replace("-", "_") for s in segments]


def to_module_name(rel_path: str) -> str:
	_, _, segments = crate_location(rel_path)
	return "::".join(["crate"] + segments)


def _is_ignored(name: str, rel_path: str, patterns: Iterable[str]) -> bool:
	for pattern in patterns:
		if name == pattern or fnmatch.fnmatch(name, pattern) or fnmatch.fnmatch(rel_path, pattern):
			return True
	return False


def collect_sources(
	root: str,
	ignore_patterns: Optional[Iterable[str]] = None,
	extensions: Optional[Iterable[str]] = None,
) -> CollectionResult:
	root = os.path.abspath(root)
	if not os.path.isdir(root):
		raise CollectionError(f"Project root does not exist or is not a directory: {root}")
	if not os.access(root, os.R_OK | os.X_OK):
		raise CollectionError(f"Project root is not readable: {root}")

	ignore = list(ignore_patterns or [])
	allowed = {e.lower() for e in (extensions or EXTENSION_LANGUAGE.keys())}
	warnings: List[str] = []
	seen_dirs = set()
	seen_files = set()
	paths: List[str] = []

	def on_error(err: OSError) -> None:
		warnings.append(f"Cannot read directory {err.filename}: {err.strerror}")

	for dirpath, dirnames, filenames in os.walk(root, onerror=on_error, followlinks=True):
		real_dir = os.path.realpath(dirpath)
		if real_dir in seen_dirs:
			dirnames[:] = []
			continue
		seen_dirs.add(real_dir)

		rel_dir = os.path.relpath(dirpath, root)
		kept = []
		for d in sorted(dirnames):
			rel = d if rel_dir == "." else f"{rel_dir}/{d}".replace(os.sep, "/")
			if _is_ignored(d, rel, ignore):
				continue
			if os.path.realpath(os.path.join(dirpath, d)) in seen_dirs:
				logger.debug("Skipping already visited directory %s", rel)
				continue
			kept.append(d)
		dirnames[:] = kept

		for filename in sorted(filenames):
			path = os.path.join(dirpath, filename)
			rel_path = os.path.relpath(path, root).replace(os.sep, "/")
			if os.path.splitext(filename)[1].lower() not in allowed:
				continue
			if _is_ignored(filename, rel_path, ignore):
				continue
			real = os.path.realpath(path)
			if real in seen_files:
				continue
			if not os.path.isfile(real) or not os.access(real, os.R_OK):
				warnings.append(f"Skipping unreadable file {rel_path}")
				continue
			seen_files.add(real)
			paths.append(rel_path)

	for w in warnings:
		logger.warning(w)
	return CollectionResult(root=root, paths=sorted(set(paths)), warnings=warnings)


def read_source(root: str, rel_path: str) -> bytes:
	with open(os.path.join(root, rel_path), "rb") as fh:
		return fh.read()

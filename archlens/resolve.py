"""Resolve raw imports, calls and type references to graph node ids.

Resolution runs in two phases. ``build_index`` reduces every parsed file
into one read-only ``NameIndex``; ``resolve_file`` then resolves one file's
references against that snapshot and can run for many files concurrently.

Ambiguous names resolve to every candidate and are reported as
``ResolutionAmbiguity`` records.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .fs_scan import crate_location
from .model import (
	Dependency,
	ParsedFile,
	ParsedFunction,
	ResolutionAmbiguity,
	ResolvedDependency,
	file_node_id,
	type_node_id,
)


logger = logging.getLogger(__name__)

ModuleKey = Tuple[str, Tuple[str, ...]]

# Path roots that never name project code.
_EXTERNAL_ROOTS = {"std", "core", "alloc"}


def _base_name(name: str) -> str:
	return name.split("#", 1)[0]


def _short(name: str) -> str:
	return _base_name(name).rsplit("::", 1)[-1]


@dataclass(frozen=True)
class _FnEntry:
	node_id: str
	path: str
	short: str
	qualified: str
	is_method: bool


@dataclass(frozen=True)
class NameIndex:
	"""Read-only lookup tables over all parsed files of a run."""

	modules: Mapping[ModuleKey, str]
	crates: Mapping[str, str]
	file_module: Mapping[str, ModuleKey]
	functions: Mapping[str, Tuple[_FnEntry, ...]]
	file_functions: Mapping[str, Mapping[str, Tuple[_FnEntry, ...]]]
	types: Mapping[str, Tuple[str, ...]]
	file_types: Mapping[str, Mapping[str, Tuple[str, ...]]]


def _freeze(groups: Dict[str, list]) -> Mapping[str, tuple]:
	return MappingProxyType({k: tuple(v) for k, v in groups.items()})


def build_index(files: Sequence[ParsedFile]) -> NameIndex:
	modules: Dict[ModuleKey, str] = {}
	crates: Dict[str, str] = {}
	file_module: Dict[str, ModuleKey] = {}
	functions: Dict[str, list] = {}
	file_functions: Dict[str, Mapping[str, tuple]] = {}
	types: Dict[str, list] = {}
	file_types: Dict[str, Mapping[str, tuple]] = {}

	for f in files:
		crate_dir, crate_name, segments = crate_location(f.path)
		key = (crate_dir, tuple(segments))
		modules.setdefault(key, f.path)
		file_module[f.path] = key
		if crate_name and crate_name not in crates:
			crates[crate_name] = crate_dir

		local_fns: Dict[str, list] = {}
		for fn in f.functions:
			entry = _FnEntry(
				node_id=fn.node_id,
				path=f.path,
				short=_short(fn.name),
				qualified=_base_name(fn.name),
				is_method=fn.owner is not None,
			)
			functions.setdefault(entry.short, []).append(entry)
			local_fns.setdefault(entry.short, []).append(entry)
		file_functions[f.path] = _freeze(local_fns)

		local_types: Dict[str, list] = {}
		for t in f.types:
			short = _short(t.name)
			tid = type_node_id(f.path, t.name)
			types.setdefault(short, []).append(tid)
			local_types.setdefault(short, []).append(tid)
		file_types[f.path] = _freeze(local_types)

	return NameIndex(
		modules=MappingProxyType(modules),
		crates=MappingProxyType(crates),
		file_module=MappingProxyType(file_module),
		functions=_freeze(functions),
		file_functions=MappingProxyType(file_functions),
		types=_freeze(types),
		file_types=MappingProxyType(file_types),
	)


@dataclass
class ResolutionResult:
	resolved: List[ResolvedDependency] = field(default_factory=list)
	unresolved: List[Dependency] = field(default_factory=list)
	ambiguities: List[ResolutionAmbiguity] = field(default_factory=list)

	def extend(self, other: "ResolutionResult") -> None:
		self.resolved.extend(other.resolved)
		self.unresolved.extend(other.unresolved)
		self.ambiguities.extend(other.ambiguities)


def _lookup_module(index: NameIndex, crate_dir: str, base: Sequence[str], rest: Sequence[str], min_prefix: int) -> Optional[Tuple[str, List[str]]]:
	"""Longest ``rest`` prefix naming a module under ``base``; returns (path, tail)."""
	for k in range(len(rest), min_prefix - 1, -1):
		path = index.modules.get((crate_dir, tuple(base) + tuple(rest[:k])))
		if path is not None:
			return path, list(rest[k:])
	return None


def resolve_module_path(index: NameIndex, path: str, segments: Sequence[str]) -> Optional[Tuple[str, List[str]]]:
	"""Map a ``::`` path used in file ``path`` to (target file, remaining item segments).

	Tries the exact module path first (``crate::``, a known crate name, or the
	crate root), then paths relative to the file's own module (``self::``,
	``super::``, child and sibling modules).
	"""
	if not segments:
		return None
	crate_dir, current = index.file_module[path]
	head, rest = segments[0], list(segments[1:])

	if head == "crate":
		return _lookup_module(index, crate_dir, (), rest, 0)
	if head in index.crates and head not in ("self", "super"):
		return _lookup_module(index, index.crates[head], (), rest, 0)
	if head == "self":
		return _lookup_module(index, crate_dir, current, rest, 0)
	if head == "super":
		base = list(current)
		while segments and segments[0] == "super":
			base = base[:-1]
			segments = segments[1:]
		return _lookup_module(index, crate_dir, base, list(segments), 0)

	found = _lookup_module(index, crate_dir, (), segments, 1)
	if found is None:
		found = _lookup_module(index, crate_dir, current, segments, 1)
	if found is None and current:
		found = _lookup_module(index, crate_dir, current[:-1], segments, 1)
	return found


class _FileResolver:
	def __init__(self, index: NameIndex, parsed: ParsedFile) -> None:
		self.index = index
		self.file = parsed
		self.result = ResolutionResult()
		# Local name -> (target file, imported item or None for a module import).
		self.imported: Dict[str, Tuple[str, Optional[str]]] = {}

	def _emit(self, source: str, raw: str, kind: str, targets: Sequence[str]) -> None:
		targets = list(dict.fromkeys(targets))
		if not targets:
			self.result.unresolved.append(Dependency(source=source, raw_target=raw, kind=kind))
			return
		if len(targets) > 1:
			self.result.ambiguities.append(ResolutionAmbiguity(source=source, raw_target=raw, candidates=targets))
		for target in targets:
			self.result.resolved.append(ResolvedDependency(source=source, target=target, kind=kind))

	def _item_ids(self, path: str, name: str) -> List[str]:
		ids = [t for t in self.index.file_types[path].get(name, ())]
		ids += [e.node_id for e in self.index.file_functions[path].get(name, ()) if not e.is_method]
		return ids

	def resolve_imports(self) -> None:
		source = self.file.node_id
		for raw in self.file.imports:
			path, _, alias = raw.partition(" as ")
			segments = path.split("::")
			found = resolve_module_path(self.index, self.file.path, segments)
			if found is None:
				self._emit(source, raw, "import", [])
				continue
			target, tail = found
			targets = []
			if target != self.file.path:
				targets.append(file_node_id(target))
			item = tail[0] if tail and tail[0] != "*" else None
			if item:
				targets += self._item_ids(target, item)
			local = alias or (segments[-1] if segments[-1] not in ("*", "self") else (segments[-2] if len(segments) > 1 else None))
			if local and local not in ("crate", "super", "self", "_"):
				self.imported[local] = (target, item)
			if targets:
				# One import pointing at both a file and an item is not ambiguous.
				for t in dict.fromkeys(targets):
					self.result.resolved.append(ResolvedDependency(source=source, target=t, kind="import"))
			else:
				self._emit(source, raw, "import", [])

	def _functions_in(self, path: str, short: str, methods: Optional[bool]) -> List[str]:
		entries = self.index.file_functions.get(path, {}).get(short, ())
		return [e.node_id for e in entries if methods is None or e.is_method == methods]

	def _project_functions(self, short: str, methods: Optional[bool]) -> List[str]:
		return [e.node_id for e in self.index.functions.get(short, ()) if methods is None or e.is_method == methods]

	def _qualified_functions(self, qualified: str) -> List[str]:
		short = qualified.rsplit("::", 1)[-1]
		local = [
			e.node_id
			for e in self.index.file_functions[self.file.path].get(short, ())
			if e.qualified == qualified or e.qualified.endswith("::" + qualified)
		]
		if local:
			return local
		return [
			e.node_id
			for e in self.index.functions.get(short, ())
			if e.qualified == qualified or e.qualified.endswith("::" + qualified)
		]

	def resolve_call(self, fn: ParsedFunction, raw: str) -> List[str]:
		path = self.file.path
		if raw.startswith("."):
			name = raw[1:]
			return self._functions_in(path, name, True) or self._project_functions(name, True)

		segments = raw.split("::")
		if len(segments) == 1:
			name = segments[0]
			local = self._functions_in(path, name, False)
			if local:
				return local
			if name in self.imported:
				target, item = self.imported[name]
				found = self._functions_in(target, item or name, False)
				if found:
					return found
			return self._project_functions(name, False)

		if segments[0] == "Self" and fn.owner:
			segments = [fn.owner] + segments[1:]
		name = segments[-1]
		owner_qualified = self._qualified_functions("::".join(segments[-2:]))
		if owner_qualified:
			return owner_qualified

		head = segments[0]
		targets: List[str] = []
		if head in self.imported and self.imported[head][1] is None:
			target = self.imported[head][0]
			if len(segments) == 2:
				targets = self._functions_in(target, name, False)
			else:
				found = resolve_module_path(self.index, target, ["self"] + segments[1:-1])
				if found and not found[1]:
					targets = self._functions_in(found[0], name, False)
		else:
			found = resolve_module_path(self.index, path, segments[:-1])
			if found and not found[1]:
				targets = self._functions_in(found[0], name, False)
		if targets or head in _EXTERNAL_ROOTS:
			return targets
		# Re-exports and crate names the module map cannot place still match by name.
		return self._project_functions(name, False)

	def resolve_type(self, name: str) -> List[str]:
		local = list(self.index.file_types[self.file.path].get(name, ()))
		if local:
			return local
		if name in self.imported:
			target, item = self.imported[name]
			found = list(self.index.file_types[target].get(item or name, ()))
			if found:
				return found
		return list(self.index.types.get(name, ()))

	def run(self) -> ResolutionResult:
		self.resolve_imports()
		for fn in self.file.functions:
			source = fn.node_id
			for raw in fn.calls:
				self._emit(source, raw, "call", self.resolve_call(fn, raw))
			for name in fn.type_refs:
				self._emit(source, name, "use", self.resolve_type(name))
		for t in self.file.types:
			source = type_node_id(self.file.path, t.name)
			for name in t.type_refs:
				self._emit(source, name, "use", [x for x in self.resolve_type(name) if x != source])
		return self.result


def resolve_file(index: NameIndex, parsed: ParsedFile) -> ResolutionResult:
	return _FileResolver(index, parsed).run()


def resolve_dependencies(files: Sequence[ParsedFile], max_workers: int = 1) -> ResolutionResult:
	index = build_index(files)
	result = ResolutionResult()
	if max_workers > 1 and len(files) > 1:
		with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="archlens-resolve") as pool:
			per_file = list(pool.map(partial(resolve_file, index), files))
	else:
		per_file = [resolve_file(index, f) for f in files]
	for part in per_file:
		result.extend(part)
	logger.debug(
		"Resolved %d dependencies, %d unresolved, %d ambiguous",
		len(result.resolved),
		len(result.unresolved),
		len(result.ambiguities),
	)
	return result

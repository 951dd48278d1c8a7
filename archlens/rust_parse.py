"""Per-file structural parsing of Rust sources with the tree-sitter grammar.

``parse_rust_file`` walks one syntax tree and collects functions (free,
inherent and trait methods, inline modules), type items, ``use`` and
``extern crate`` imports, attributes and ``pub`` visibility. Syntax errors
become ``ParseWarning`` records; items outside the damaged region are kept.

Function bodies are also flattened into leaf tokens (``body_tokens``) for the
complexity scorer, so spans and scores come from the same tree.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Dict, List, NamedTuple, Optional, Tuple, Union

import tree_sitter_rust as tsrust
from tree_sitter import Language, Node, Parser

from .fs_scan import to_module_name
from .model import ParsedFile, ParsedFunction, ParsedType, ParseWarning, Token


logger = logging.getLogger(__name__)

RUST_LANGUAGE = Language(tsrust.language())

KEYWORDS = frozenset(
	{
		"as", "async", "await", "break", "const", "continue", "crate", "dyn",
		"else", "enum", "extern", "false", "fn", "for", "if", "impl", "in",
		"let", "loop", "match", "mod", "move", "mut", "pub", "ref", "return",
		"self", "Self", "static", "struct", "super", "trait", "true", "type",
		"union", "unsafe", "use", "where", "while", "yield",
	}
)

_COMMENTS = {"line_comment", "block_comment"}
# Nodes kept as one token even though the grammar gives them children.
_LEAF_KINDS = {
	"string_literal": "string",
	"raw_string_literal": "string",
	"char_literal": "char",
	"integer_literal": "number",
	"float_literal": "number",
	"lifetime": "lifetime",
	"label": "lifetime",
}
_TYPE_ITEMS = {"struct_item": "struct", "enum_item": "enum", "union_item": "union", "type_item": "type"}
_ITEM_NODES = {
	"function_item", "struct_item", "enum_item", "union_item", "type_item",
	"trait_item", "impl_item", "mod_item", "use_declaration", "extern_crate_declaration",
}
_PATH_STARTS = {"self", "Self", "super", "crate"}
_VARIANTS = {"Some", "Ok", "Err"}
_TEST_ATTR = re.compile(r"^(?:\w+::)*test\b")
_WORD = re.compile(r"^(?:r#)?[^\W\d]\w*$")
_GENERIC_ARGS = re.compile(r"<[^<>]*>")
_MAX_SYNTAX_WARNINGS = 5

_NO_SPACE_BEFORE = {",", ";", ")", "]", ".", ":", "::", "?", "<", ">", ">>", "("}
_NO_SPACE_AFTER = {"(", "[", "&", "::", ".", "<", "#", "!"}

_local = threading.local()


def _parser() -> Parser:
	# Parser objects are not safe to share between the parse workers.
	parser = getattr(_local, "parser", None)
	if parser is None:
		parser = _local.parser = Parser(RUST_LANGUAGE)
	return parser


def is_keyword(value: str) -> bool:
	return value in KEYWORDS


def _text(node: Node) -> str:
	return node.text.decode("utf-8", errors="replace")


def _line(node: Node) -> int:
	return node.start_point[0] + 1


def _squash(text: str) -> str:
	return re.sub(r"\s+", " ", text).strip()


def _path_text(node: Node) -> str:
	"""``a :: b::<T>::c`` -> ``a::b::c``."""
	text = re.sub(r"\s+", "", _text(node))
	prev = None
	while prev != text:
		prev, text = text, _GENERIC_ARGS.sub("", text)
	return "::".join(s for s in text.split("::") if s)


def node_tokens(node: Node) -> List[Token]:
	"""Leaf tokens of ``node`` in source order; comments and missing nodes are dropped."""
	tokens: List[Token] = []
	stack = [node]
	while stack:
		n = stack.pop()
		if n.type in _COMMENTS or n.is_missing:
			continue
		if n.type in _LEAF_KINDS or n.child_count == 0:
			value = _text(n)
			if not value:
				continue
			kind = _LEAF_KINDS.get(n.type) or ("ident" if _WORD.match(value) else "punct")
			tokens.append(Token(kind, value, _line(n)))
			continue
		stack.extend(reversed(n.children))
	return tokens


def render_tokens(tokens: List[Token]) -> str:
	out: List[str] = []
	prev = ""
	for tok in tokens:
		v = tok.value
		if out and v not in _NO_SPACE_BEFORE and prev not in _NO_SPACE_AFTER:
			out.append(" ")
		out.append(v)
		prev = v
	return "".join(out)


def _skip_generics(tokens: List[Token], i: int) -> int:
	"""``tokens[i]`` is ``<``; return the index just past its matching ``>`` or -1."""
	depth = 0
	while i < len(tokens):
		v = tokens[i].value
		if v == "<":
			depth += 1
		elif v == ">":
			depth -= 1
		elif v == ">>":
			depth -= 2
		elif v in ("{", "}", ";"):
			return -1
		i += 1
		if depth <= 0:
			return i
	return -1


def _token_calls(tokens: List[Token]) -> List[str]:
	"""Calls written inside a macro's token tree, which the grammar leaves unparsed."""
	calls: List[str] = []
	n = len(tokens)
	k = 0
	while k < n:
		tok = tokens[k]
		if tok.kind != "ident" or (is_keyword(tok.value) and tok.value not in _PATH_STARTS):
			k += 1
			continue
		method = k > 0 and tokens[k - 1].value == "."
		segments = [tok.value]
		j = k + 1
		while j + 1 < n and tokens[j].value == "::":
			nxt = tokens[j + 1]
			if nxt.value == "<":
				after = _skip_generics(tokens, j + 1)
				if after < 0:
					break
				j = after
			elif nxt.kind == "ident":
				segments.append(nxt.value)
				j += 2
			else:
				break
		if j < n and tokens[j].value == "(":
			if method:
				calls.append("." + segments[0])
			elif not (len(segments) == 1 and (is_keyword(segments[0]) or segments[0] in _VARIANTS)):
				calls.append("::".join(segments))
		k = max(j, k + 1)
	return calls


def _callee(function: Node) -> Optional[Tuple[int, str]]:
	"""(source position, raw callee) for the ``function`` part of a call expression."""
	t = function.type
	if t == "generic_function":
		inner = function.child_by_field_name("function")
		return _callee(inner) if inner is not None else None
	if t == "field_expression":
		field = function.child_by_field_name("field")
		if field is None or field.type != "field_identifier":
			return None
		return field.start_byte, "." + _text(field)
	if t in ("identifier", "scoped_identifier", "self", "super", "crate"):
		path = _path_text(function)
		if not path or ("::" not in path and (is_keyword(path) or path in _VARIANTS)):
			return None
		return function.start_byte, path
	return None


def extract_calls(node: Node) -> List[str]:
	"""Collect raw callee references under ``node`` in source order.

	Plain and path calls are kept as written (``helper``, ``Self::new``,
	``db::init_pool``); method calls are prefixed with a dot (``.save``).
	Macro invocations are not calls, but calls inside their arguments are.
	"""
	found: List[Tuple[int, int, str]] = []
	stack = [node]
	while stack:
		n = stack.pop()
		if n.type == "call_expression":
			function = n.child_by_field_name("function")
			callee = _callee(function) if function is not None else None
			if callee is not None:
				found.append((callee[0], 0, callee[1]))
		elif n.type == "macro_invocation":
			for tree in n.children:
				if tree.type == "token_tree":
					for seq, name in enumerate(_token_calls(node_tokens(tree)), 1):
						found.append((tree.start_byte, seq, name))
			continue
		stack.extend(reversed(n.children))
	found.sort()
	return list(dict.fromkeys(name for _, _, name in found))


def extract_type_refs(tokens: List[Token], exclude: Optional[str] = None) -> List[str]:
	refs: List[str] = []
	for i, tok in enumerate(tokens):
		v = tok.value
		if tok.kind != "ident" or not v[:1].isupper() or is_keyword(v) or v == exclude:
			continue
		if i + 1 < len(tokens) and tokens[i + 1].value == "!":
			continue
		refs.append(v)
	return list(dict.fromkeys(refs))


def _attribute_text(node: Node) -> str:
	for child in node.named_children:
		if child.type == "attribute":
			return _squash(_text(child))
	return _squash(_text(node)).lstrip("#!").strip("[]").strip()


def _is_public(node: Node) -> bool:
	for child in node.children:
		if child.type == "visibility_modifier":
			# pub(crate), pub(super) and pub(in path) are not external API.
			return re.sub(r"\s+", "", _text(child)) == "pub"
	return False


def _type_name(node: Optional[Node]) -> Optional[str]:
	"""Bare name of an impl's self type: ``Holder<Vec<T>>`` -> ``Holder``."""
	while node is not None:
		if node.type in ("generic_type", "reference_type", "pointer_type"):
			node = node.child_by_field_name("type")
		elif node.type == "scoped_type_identifier":
			node = node.child_by_field_name("name")
		else:
			break
	if node is None:
		return None
	return _path_text(node).rsplit("::", 1)[-1] or None


def _flatten_use(node: Node, prefix: List[str], out: List[str]) -> None:
	"""Expand one use tree into ``a::b::c`` paths; renamed imports keep ``as alias``."""
	t = node.type
	if t in _COMMENTS:
		return
	if t == "use_as_clause":
		path = node.child_by_field_name("path")
		alias = node.child_by_field_name("alias")
		segments = _path_text(path).split("::") if path is not None else []
		if segments == ["self"] and prefix:
			segments = []
		full = "::".join(prefix + segments)
		if full:
			out.append(f"{full} as {_text(alias)}" if alias is not None else full)
	elif t == "scoped_use_list":
		path = node.child_by_field_name("path")
		base = prefix + (_path_text(path).split("::") if path is not None else [])
		items = node.child_by_field_name("list")
		if items is not None:
			_flatten_use(items, base, out)
	elif t == "use_list":
		for child in node.named_children:
			_flatten_use(child, prefix, out)
	elif t == "use_wildcard":
		path = next((c for c in node.named_children if c.type not in _COMMENTS), None)
		base = prefix + (_path_text(path).split("::") if path is not None else [])
		out.append("::".join(base + ["*"]))
	elif t == "self" and prefix:
		out.append("::".join(prefix))
	else:
		full = "::".join(prefix + [s for s in _path_text(node).split("::") if s])
		if full:
			out.append(full)


def _rebase_use(path: str, depth: int) -> str:
	"""Rewrite a use path written ``depth`` inline modules deep so it is relative to the file's module.

	Each leading ``super`` climbs one inline module; once they are used up the
	rest still climbs above the file and stays ``super::``.
	"""
	segments = path.split("::")
	climbed = 0
	while climbed < depth and segments and segments[0] == "super":
		segments = segments[1:]
		climbed += 1
	if not climbed:
		return path
	if segments and segments[0] == "super":
		return "::".join(segments)
	return "::".join(["self"] + segments)


class _Scope(NamedTuple):
	mod_path: Tuple[str, ...] = ()
	owner: Optional[str] = None
	trait_impl: bool = False
	in_test: bool = False


class _RustTreeWalker:
	"""Collects items from one file's syntax tree."""

	def __init__(self, path: str, source: bytes, line_count: int) -> None:
		self.path = path
		self.source = source
		self.line_count = line_count
		self.functions: List[ParsedFunction] = []
		self.types: List[ParsedType] = []
		self.imports: List[str] = []
		self.diagnostics: List[ParseWarning] = []
		self._fn_names: Dict[str, int] = {}
		self._type_names: Dict[str, int] = {}

	def warn(self, message: str, line: Optional[int] = None) -> None:
		self.diagnostics.append(ParseWarning(path=self.path, message=message, line=line))

	def _clamp(self, line: int) -> int:
		return max(1, min(line, self.line_count or 1))

	def _end_line(self, node: Node) -> int:
		return self._clamp(node.end_point[0] + 1)

	def _unique(self, names: Dict[str, int], name: str, line: int) -> str:
		count = names.get(name, 0) + 1
		names[name] = count
		if count == 1:
			return name
		unique = f"{name}#{count}"
		self.warn(f"duplicate definition of '{name}' renamed to '{unique}'", line)
		return unique

	def _qualify(self, scope: _Scope, name: str, with_owner: bool = True) -> str:
		parts = list(scope.mod_path)
		if with_owner and scope.owner:
			parts.append(scope.owner)
		parts.append(name)
		return "::".join(parts)

	def report_syntax_errors(self, root: Node) -> None:
		errors: List[Tuple[int, str]] = []
		stack = [root]
		while stack:
			n = stack.pop()
			if n.is_missing:
				errors.append((self._clamp(_line(n)), f"missing '{n.type}'"))
			elif n.type == "ERROR":
				snippet = _squash(_text(n))[:40]
				errors.append((self._clamp(_line(n)), f"syntax error near {snippet!r}"))
			elif n.has_error:
				stack.extend(n.children)
		errors.sort()
		for line, message in errors[:_MAX_SYNTAX_WARNINGS]:
			self.warn(message, line)
		if len(errors) > _MAX_SYNTAX_WARNINGS:
			self.warn(f"{len(errors) - _MAX_SYNTAX_WARNINGS} further syntax errors")

	def walk(self, container: Node, scope: _Scope) -> None:
		attrs: List[str] = []
		children = container.children
		i = 0
		while i < len(children):
			node = children[i]
			t = node.type
			i += 1
			if t in _COMMENTS or t == "inner_attribute_item":
				continue
			if t == "attribute_item":
				attrs.append(_attribute_text(node))
				continue

			if t == "ERROR":
				self.walk(node, scope)
			elif t == "fn" and container.type == "ERROR":
				i = self._recover_fn(children, i, attrs, scope)
			elif t == "function_item":
				self._function(node, attrs, scope)
			elif t == "type_item" and scope.owner:
				# Associated type of an impl.
				pass
			elif t in _TYPE_ITEMS:
				self._type(node, _TYPE_ITEMS[t], attrs, scope)
			elif t == "trait_item":
				self._trait(node, attrs, scope)
			elif t == "impl_item":
				self._impl(node, scope)
			elif t == "mod_item":
				self._mod(node, attrs, scope)
			elif t == "use_declaration":
				self._use(node, scope)
			elif t == "extern_crate_declaration":
				name = node.child_by_field_name("name")
				alias = node.child_by_field_name("alias")
				if name is not None:
					self.imports.append(_text(name) + (f" as {_text(alias)}" if alias is not None else ""))
			attrs = []

	def _add_function(
		self,
		name: str,
		line_start: int,
		line_end: int,
		signature: str,
		is_pub: bool,
		attrs: List[str],
		scope: _Scope,
		calls: List[str],
		signature_tokens: List[Token],
		body: List[Token],
	) -> None:
		if name.startswith("r#"):
			name = name[2:]
		self.functions.append(
			ParsedFunction(
				name=self._unique(self._fn_names, self._qualify(scope, name), line_start),
				file_path=self.path,
				line_start=line_start,
				line_end=max(line_end, line_start),
				signature=signature,
				is_public=is_pub,
				owner=scope.owner,
				trait_impl=scope.trait_impl,
				attributes=list(attrs),
				is_test=scope.in_test or any(_TEST_ATTR.match(a) for a in attrs),
				calls=calls,
				type_refs=extract_type_refs(signature_tokens + body, exclude=scope.owner),
				body_tokens=body,
			)
		)

	def _function(self, node: Node, attrs: List[str], scope: _Scope) -> None:
		name = node.child_by_field_name("name")
		body = node.child_by_field_name("body")
		if name is None or body is None:
			self.warn("malformed function declaration", _line(node))
			return
		body_tokens = node_tokens(body)
		if body_tokens and body_tokens[0].value == "{":
			body_tokens = body_tokens[1:]
		last = body.children[-1] if body.child_count else None
		if last is not None and last.type == "}" and not last.is_missing and body_tokens:
			body_tokens = body_tokens[:-1]
		signature_tokens = [tok for child in node.children if child != body for tok in node_tokens(child)]
		signature = _squash(self.source[node.start_byte : body.start_byte].decode("utf-8", errors="replace"))
		self._add_function(
			_text(name),
			_line(node),
			self._end_line(body),
			signature,
			_is_public(node),
			attrs,
			scope,
			extract_calls(body),
			signature_tokens,
			body_tokens,
		)

	def _recover_fn(self, siblings: List[Node], i: int, attrs: List[str], scope: _Scope) -> int:
		"""``siblings[i - 1]`` is a bare ``fn`` inside a damaged region; keep what can be read.

		The body runs up to the next complete item or the end of the region.
		Returns the index to continue from.
		"""
		keyword = siblings[i - 1]
		if i >= len(siblings) or siblings[i].type != "identifier":
			return i
		name = _text(siblings[i])
		k = i + 1
		while k < len(siblings) and siblings[k].type not in _ITEM_NODES:
			k += 1
		rest = [tok for s in siblings[i + 1 : k] for tok in node_tokens(s)]
		open_at = next((idx for idx, tok in enumerate(rest) if tok.value == "{"), len(rest))
		head = node_tokens(keyword) + node_tokens(siblings[i]) + rest[:open_at]
		body = rest[open_at + 1 :]
		end = siblings[k - 1]
		self.warn(f"unterminated body for fn {name}", _line(keyword))
		self._add_function(
			name,
			_line(keyword),
			self._end_line(end),
			render_tokens(head),
			False,
			attrs,
			scope,
			list(dict.fromkeys(_token_calls(body))),
			head,
			body,
		)
		return k

	def _add_type(self, name: str, kind: str, node: Node, attrs: List[str], refs_from: List[Token], scope: _Scope) -> None:
		line_start = _line(node)
		self.types.append(
			ParsedType(
				name=self._unique(self._type_names, self._qualify(scope, name, with_owner=False), line_start),
				kind=kind,
				line_start=line_start,
				line_end=max(self._end_line(node), line_start),
				is_public=_is_public(node),
				attributes=list(attrs),
				type_refs=extract_type_refs(refs_from, exclude=name),
			)
		)

	def _after(self, node: Node, start: Node, stop: Optional[Node] = None) -> List[Token]:
		"""Tokens of the children of ``node`` after ``start`` and before ``stop``."""
		tokens: List[Token] = []
		seen = False
		for child in node.children:
			if stop is not None and child == stop:
				break
			if seen:
				tokens.extend(node_tokens(child))
			elif child == start:
				seen = True
		return tokens

	def _type(self, node: Node, kind: str, attrs: List[str], scope: _Scope) -> None:
		name = node.child_by_field_name("name")
		if name is None:
			self.warn(f"malformed {kind} declaration", _line(node))
			return
		self._add_type(_text(name), kind, node, attrs, self._after(node, name), scope)

	def _trait(self, node: Node, attrs: List[str], scope: _Scope) -> None:
		name = node.child_by_field_name("name")
		if name is None:
			self.warn("malformed trait declaration", _line(node))
			return
		trait = _text(name)
		body = node.child_by_field_name("body")
		self._add_type(trait, "trait", node, attrs, self._after(node, name, body), scope)
		if body is not None:
			self.walk(body, _Scope(scope.mod_path, trait, True, scope.in_test))

	def _impl(self, node: Node, scope: _Scope) -> None:
		body = node.child_by_field_name("body")
		if body is None:
			self.warn("malformed impl block", _line(node))
			return
		owner = _type_name(node.child_by_field_name("type"))
		has_trait = node.child_by_field_name("trait") is not None
		self.walk(body, _Scope(scope.mod_path, owner or "impl", has_trait, scope.in_test))

	def _mod(self, node: Node, attrs: List[str], scope: _Scope) -> None:
		name = node.child_by_field_name("name")
		body = node.child_by_field_name("body")
		if name is None or body is None:
			# `mod x;` names a file that collection picks up on its own.
			return
		in_test = scope.in_test or any(a.replace(" ", "") == "cfg(test)" for a in attrs)
		self.walk(body, _Scope(scope.mod_path + (_text(name),), None, False, in_test))

	def _use(self, node: Node, scope: _Scope) -> None:
		argument = node.child_by_field_name("argument")
		if argument is None:
			self.warn("malformed use declaration", _line(node))
			return
		paths: List[str] = []
		_flatten_use(argument, [], paths)
		self.imports.extend(_rebase_use(p, len(scope.mod_path)) for p in paths)


def decode_source(data: bytes) -> Tuple[Optional[str], Optional[str]]:
	"""Return ``(text, problem)``; ``text`` is None when the content is binary."""
	if b"\x00" in data:
		return None, "binary content, not parsed"
	try:
		return data.decode("utf-8-sig"), None
	except UnicodeDecodeError as e:
		return data.decode("utf-8", errors="replace"), f"invalid UTF-8 at byte {e.start}, decoded with replacement"


def count_lines(data: Union[str, bytes]) -> int:
	"""Number of ``\\n``-separated lines; other Unicode line breaks do not count."""
	if not data:
		return 0
	newline = b"\n" if isinstance(data, bytes) else "\n"
	return data.count(newline) + (0 if data.endswith(newline) else 1)


def parse_rust_file(path: str, text: str) -> ParsedFile:
	source = text.encode("utf-8")
	tree = _parser().parse(source)
	walker = _RustTreeWalker(path, source, count_lines(text))
	if tree.root_node.has_error:
		walker.report_syntax_errors(tree.root_node)
	walker.walk(tree.root_node, _Scope())
	logger.debug("Parsed %s: %d functions, %d types", path, len(walker.functions), len(walker.types))

	return ParsedFile(
		path=path,
		module_name=to_module_name(path),
		line_count=walker.line_count,
		functions=walker.functions,
		types=walker.types,
		imports=list(dict.fromkeys(walker.imports)),
		diagnostics=walker.diagnostics,
	)


def parse_source(path: str, data: bytes) -> ParsedFile:
	"""Parse raw file bytes; never raises for malformed content."""
	text, problem = decode_source(data)
	if text is None:
		return ParsedFile(
			path=path,
			module_name=to_module_name(path),
			line_count=count_lines(data),
			diagnostics=[ParseWarning(path=path, message=problem or "unparseable")],
			failed=True,
		)
	parsed = parse_rust_file(path, text)
	if problem:
		parsed = parsed.model_copy(update={"diagnostics": [ParseWarning(path=path, message=problem)] + parsed.diagnostics})
	return parsed

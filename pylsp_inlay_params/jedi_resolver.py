"""Jedi/parso adapter for the hint engine.

parso gives us the call sites of a document and the shape of every
declaration (parameter lists, class bodies, lambda assignments); Jedi
resolves a callee name to where it is declared, following imports.

Positions: parso and Jedi use 1-based lines and 0-based columns, the engine
uses absolute offsets into the document, LSP uses 0-based lines.
"""
from __future__ import annotations
import bisect
import logging
from pathlib import Path
from typing import AbstractSet, Dict, Iterator, List, Optional, Sequence, Set, Tuple

import jedi
import parso
from parso.utils import split_lines

from pylsp_inlay_params.hints import (
    DEFAULT_FORBIDDEN_SOURCE_UNITS,
    DEFAULT_TOGGLES,
    CalleeResolver,
    collect_parameter_hints,
)
from pylsp_inlay_params.model import (
    Argument,
    ArgumentKind,
    CallSite,
    ClassAttribute,
    Declaration,
    DeclarationKind,
    FeatureToggles,
    HintCandidate,
    Initializer,
    Parameter,
)

log = logging.getLogger(__name__)

# "init-or-new": checked per class, the first class in the bases that has
# either one wins
_INITIALIZER_NAMES = ("__init__", "__new__")

# object.__init__/__new__ take nothing worth showing
_ROOT_CLASS = ("builtins.pyi", "object")

_STATICMETHOD_DECORATORS = frozenset(("staticmethod", "builtins.staticmethod"))

# Nodes between a method's funcdef and the classdef that owns it
_METHOD_WRAPPERS = frozenset(("decorated", "async_funcdef", "async_stmt", "suite"))


class LineIndex:
    """Converts between absolute offsets and line/column positions."""

    def __init__(self, source: str):
        self._source = source
        self._starts: List[int] = []
        offset = 0
        for line in split_lines(source, keepends=True):
            self._starts.append(offset)
            offset += len(line)

    def offset(self, start_pos: Tuple[int, int]) -> int:
        """Offset of a parso ``(line, column)`` position (1-based line)."""
        line, column = start_pos
        return self._starts[line - 1] + column

    def position(self, offset: int) -> Tuple[int, int]:
        """LSP ``(line, character)`` of *offset* (0-based line).

        ``character`` counts UTF-16 code units, the LSP default encoding.
        """
        line = bisect.bisect_right(self._starts, offset) - 1
        prefix = self._source[self._starts[line]:offset]
        return line, len(prefix.encode("utf-16-le")) // 2


# ---------------------------------------------------------------------------
# Call site discovery
# ---------------------------------------------------------------------------

def _is_operator(node, value: str) -> bool:
    return node.type == "operator" and node.value == value


def _is_call_trailer(node) -> bool:
    return node.type == "trailer" and _is_operator(node.children[0], "(")


def _name_leaf(node):
    """Name leaf of ``name`` or of a ``.name`` trailer, else None."""
    if node.type == "name":
        return node
    if node.type == "trailer" and _is_operator(node.children[0], "."):
        return node.children[1]
    return None


def _reference_leaf(node):
    """Last name of a dotted reference, ignoring subscripts (``a.B[T]`` -> B)."""
    if node.type == "atom_expr":
        for part in reversed(node.children):
            if part.type == "trailer" and _is_operator(part.children[0], "["):
                continue
            return _name_leaf(part)
        return None
    return _name_leaf(node)


def _argument_identifier(node) -> Optional[str]:
    if node.type == "name":
        return node.value
    if node.type == "atom_expr":
        leaf = _name_leaf(node.children[-1])
        return leaf.value if leaf is not None else None
    return None


def _convert_argument(node, index: LineIndex) -> Argument:
    offset = index.offset(node.start_pos)
    if node.type == "argument":
        first = node.children[0]
        if _is_operator(first, "*"):
            return Argument(ArgumentKind.STAR, offset)
        if _is_operator(first, "**"):
            return Argument(ArgumentKind.DOUBLE_STAR, offset)
        if _is_operator(node.children[1], "="):
            return Argument(ArgumentKind.KEYWORD, offset)
        # Generator argument or ``name := value``
        return Argument(ArgumentKind.POSITIONAL, offset)
    return Argument(ArgumentKind.POSITIONAL, offset, _argument_identifier(node))


def _split_arguments(trailer) -> list:
    if len(trailer.children) == 2:  # "(" ")"
        return []
    inner = trailer.children[1]
    if inner.type == "arglist":
        return [child for child in inner.children if not _is_operator(child, ",")]
    return [inner]


def _calls_in(atom_expr, index: LineIndex) -> Iterator[CallSite]:
    children = atom_expr.children
    is_decorator_expr = atom_expr.parent is not None and atom_expr.parent.type == "decorator"
    for position, trailer in enumerate(children):
        if position == 0 or not _is_call_trailer(trailer):
            continue
        yield CallSite(
            arguments=tuple(
                _convert_argument(arg, index) for arg in _split_arguments(trailer)
            ),
            callee=_name_leaf(children[position - 1]),
            is_decorator=is_decorator_expr and position == len(children) - 1,
        )


def iter_call_sites(module, index: LineIndex) -> Iterator[CallSite]:
    """Every call expression of a parso module, outer calls first."""
    stack = [module]
    while stack:
        node = stack.pop()
        children = getattr(node, "children", None)
        if children is None:
            continue
        if node.type == "atom_expr":
            yield from _calls_in(node, index)
        stack.extend(reversed(children))


# ---------------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------------

def _enclosing_class(funcdef):
    node = funcdef.parent
    while node is not None and node.type in _METHOD_WRAPPERS:
        node = node.parent
    if node is not None and node.type == "classdef":
        return node
    return None


def _is_staticmethod(funcdef) -> bool:
    for decorator in funcdef.get_decorators():
        if decorator.children[1].get_code(include_prefix=False).strip() in _STATICMETHOD_DECORATORS:
            return True
    return False


def _parameter_nodes(node) -> list:
    if node.type == "lambdef":
        return node.children[1:-2]
    # funcdef: 'def' name parameters ... -> '(' params ')'
    return node.children[2].children[1:-1]


def _convert_parameters(node, has_receiver: bool) -> Tuple[Parameter, ...]:
    parameters: List[Parameter] = []
    receiver_pending = has_receiver
    for child in _parameter_nodes(node):
        if child.type == "param":
            star_count = child.star_count
            parameters.append(Parameter(
                name=child.name.value,
                is_receiver=receiver_pending and star_count == 0,
                is_positional_collector=star_count == 1,
                is_keyword_collector=star_count == 2,
            ))
            receiver_pending = False
        elif _is_operator(child, "*"):
            # Bare "*": keyword-only marker, takes a slot but has no name
            parameters.append(Parameter(name=None))
        # "/" and "," are markers only
    return tuple(parameters)


def _is_augmented(expr_stmt) -> bool:
    """``count += 1`` rebinds an existing name, it declares nothing."""
    operator = expr_stmt.children[1]
    return operator.type == "operator" and operator.value != "="


def _is_class_var(expr_stmt) -> bool:
    annassign = expr_stmt.children[1]
    if annassign.type != "annassign":
        return False
    return "ClassVar" in annassign.children[1].get_code(include_prefix=False)


def _siblings_after(top, siblings) -> list:
    for position, sibling in enumerate(siblings):
        if sibling is top:
            return siblings[position + 1:]
    return []


def _top_child_of(node, parent_type: str):
    """Ancestor-or-self of *node* whose parent has type *parent_type*."""
    while node.parent is not None:
        if node.parent.type == parent_type:
            return node
        if node.parent.type == "suite":
            return None
        node = node.parent
    return None


class JediCalleeResolver(CalleeResolver):
    """Resolves callees of one document through a ``jedi.Script``.

    Modules and scripts of other files are loaded on demand and kept for
    the lifetime of the resolver, which is one hint request.
    """

    def __init__(
        self,
        script: jedi.Script,
        module,
        path: Optional[str] = None,
        forbidden_units: AbstractSet[str] = DEFAULT_FORBIDDEN_SOURCE_UNITS,
    ):
        self._script = script
        self._forbidden_units = forbidden_units
        self._path = Path(path).absolute() if path else None
        self._modules: Dict[Path, object] = {}
        self._scripts: Dict[Path, jedi.Script] = {}
        if self._path is not None:
            self._modules[self._path] = module
            self._scripts[self._path] = script

    # -- CalleeResolver -----------------------------------------------------

    def resolve_callee(self, call: CallSite) -> Optional[Declaration]:
        leaf = call.callee
        if leaf is None:
            return None
        try:
            return self._goto(self._script, leaf)
        except Exception as e:
            log.debug("pylsp_inlay_params: cannot resolve %r: %s", leaf.value, e)
            return None

    def find_bound_lambda(self, variable: Declaration) -> Optional[Declaration]:
        if variable.node is None:
            return None
        top = _top_child_of(variable.node, "expr_stmt")
        if top is None:
            return None
        for sibling in _siblings_after(top, top.parent.children):
            # "name: Callable = lambda ..." keeps the value inside annassign
            nodes = sibling.children if sibling.type == "annassign" else [sibling]
            for node in nodes:
                if node.type == "lambdef":
                    return Declaration(
                        kind=DeclarationKind.LAMBDA,
                        name=variable.name,
                        source_unit=variable.source_unit,
                        parameters=_convert_parameters(node, has_receiver=False),
                        path=variable.path,
                        node=node,
                    )
        return None

    def find_initializer(self, cls: Declaration) -> Optional[Initializer]:
        if cls.node is None or cls.path is None:
            return None
        try:
            found = self._find_initializer(cls.node, Path(cls.path), set())
            if found is not None:
                funcdef, path, owner = found
                return Initializer(
                    declaration=self._function_declaration(funcdef, path),
                    own=owner is cls.node,
                )
        except Exception as e:
            log.debug("pylsp_inlay_params: initializer lookup failed for %s: %s", cls.name, e)
        return None

    def list_data_attributes(self, cls: Declaration) -> Sequence[ClassAttribute]:
        if cls.node is None:
            return []
        body = cls.node.children[-1]
        # "class Point: x = 0" has no suite
        statements = body.children if body.type == "suite" else [body]

        attributes: List[ClassAttribute] = []
        seen: Set[str] = set()
        for statement in statements:
            if statement.type != "simple_stmt":
                continue
            for expr in statement.children:
                if expr.type != "expr_stmt" or _is_augmented(expr) or _is_class_var(expr):
                    continue
                for name in expr.get_defined_names():
                    if name.parent.type == "trailer" or name.value in seen:
                        continue
                    seen.add(name.value)
                    attributes.append(ClassAttribute(name.value))
        return attributes

    # -- helpers ------------------------------------------------------------

    def _goto(self, script: jedi.Script, leaf, prefer_stubs: bool = False) -> Optional[Declaration]:
        line, column = leaf.start_pos
        names = script.goto(
            line=line, column=column, follow_imports=True, prefer_stubs=prefer_stubs,
        )
        for name in names:
            declaration = self._declaration_for(name)
            if declaration is not None:
                return declaration
        return None

    def _declaration_for(self, name) -> Optional[Declaration]:
        # Compiled modules and namespaces have nothing parso can read
        if name.module_path is None or name.line is None:
            return None
        path = Path(name.module_path).absolute()
        module = self._load_module(path)
        if module is None:
            return None
        leaf = module.get_leaf_for_position((name.line, name.column))
        if leaf is None or leaf.type != "name":
            return None

        definition = leaf.get_definition()
        if definition is None:
            return None
        if definition.type == "funcdef":
            return self._function_declaration(definition, path)
        if definition.type == "classdef":
            return Declaration(
                kind=DeclarationKind.CLASS,
                name=leaf.value,
                source_unit=path.name,
                path=str(path),
                node=definition,
            )
        kind = DeclarationKind.VARIABLE if definition.type == "expr_stmt" else DeclarationKind.OTHER
        return Declaration(
            kind=kind, name=leaf.value, source_unit=path.name, path=str(path), node=leaf,
        )

    def _function_declaration(self, funcdef, path: Path) -> Declaration:
        has_receiver = _enclosing_class(funcdef) is not None and not _is_staticmethod(funcdef)
        return Declaration(
            kind=DeclarationKind.FUNCTION,
            name=funcdef.name.value,
            source_unit=path.name,
            parameters=_convert_parameters(funcdef, has_receiver),
            path=str(path),
            node=funcdef,
        )

    def _load_module(self, path: Path):
        if path not in self._modules:
            try:
                self._modules[path] = parso.parse(path.read_text(encoding="utf-8", errors="replace"))
            except OSError as e:
                log.debug("pylsp_inlay_params: cannot read %s: %s", path, e)
                self._modules[path] = None
        return self._modules[path]

    def _script_for(self, path: Path) -> jedi.Script:
        if path not in self._scripts:
            self._scripts[path] = jedi.Script(path=str(path))
        return self._scripts[path]

    def _find_initializer(self, classdef, path: Path, seen: set):
        """Depth-first search of *classdef* and its bases, left to right."""
        key = (path, classdef.start_pos)
        if key in seen or (path.name, classdef.name.value) == _ROOT_CLASS:
            return None
        seen.add(key)

        methods: Dict[str, object] = {}
        for funcdef in classdef.iter_funcdefs():
            # First overload wins
            methods.setdefault(funcdef.name.value, funcdef)
        for method_name in _INITIALIZER_NAMES:
            if method_name in methods:
                return methods[method_name], path, classdef

        for base_leaf in self._base_leaves(classdef):
            # Stubs give builtins such as Exception a readable declaration
            base = self._goto(self._script_for(path), base_leaf, prefer_stubs=True)
            if base is None or base.kind is not DeclarationKind.CLASS:
                continue
            found = self._find_initializer(base.node, Path(base.path), seen)
            if found is not None:
                return found
        return None

    @staticmethod
    def _base_leaves(classdef) -> list:
        arglist = classdef.get_super_arglist()
        if arglist is None:
            return []
        if arglist.type == "arglist":
            nodes = [child for child in arglist.children if not _is_operator(child, ",")]
        else:
            nodes = [arglist]
        leaves = []
        for node in nodes:
            # metaclass=..., *bases
            if node.type == "argument":
                continue
            leaf = _reference_leaf(node)
            if leaf is not None:
                leaves.append(leaf)
        return leaves


def collect_document_hints(
    script: jedi.Script,
    source: str,
    path: Optional[str] = None,
    toggles: FeatureToggles = DEFAULT_TOGGLES,
    forbidden_units: AbstractSet[str] = DEFAULT_FORBIDDEN_SOURCE_UNITS,
) -> List[HintCandidate]:
    """Parameter hints for every call in *source*, ordered by offset."""
    module = parso.parse(source)
    index = LineIndex(source)
    resolver = JediCalleeResolver(script, module, path, forbidden_units)

    candidates: List[HintCandidate] = []
    for call in iter_call_sites(module, index):
        try:
            candidates.extend(collect_parameter_hints(call, resolver, toggles, forbidden_units))
        except Exception:
            log.debug("pylsp_inlay_params: skipping call at %s", call.callee, exc_info=True)
    candidates.sort(key=lambda candidate: candidate.offset)
    return candidates

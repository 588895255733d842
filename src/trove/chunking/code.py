"""Curly-brace source strategy — tree-sitter declarations for JS, TS and Go."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from trove.chunking._base import (
    Chunk,
    ChunkMetadata,
    ChunkType,
    DocumentInput,
    build_chunk_id,
    extract_lines,
)
from trove.exceptions import ParseError

logger = logging.getLogger(__name__)

try:
    import tree_sitter
    from tree_sitter_go import language as _go_language
    from tree_sitter_javascript import language as _js_language
    from tree_sitter_typescript import language_tsx as _tsx_language
    from tree_sitter_typescript import language_typescript as _ts_language

    _HAS_TREESITTER = True
except ImportError:  # pragma: no cover
    _HAS_TREESITTER = False

_FUNCTION_EXPRESSIONS = frozenset({"arrow_function", "function_expression", "function"})
_JS_TYPE_DECLARATIONS = frozenset(
    {"interface_declaration", "type_alias_declaration", "enum_declaration"}
)
_JS_CLASS_DECLARATIONS = frozenset({"class_declaration", "abstract_class_declaration"})
_JS_FUNCTION_DECLARATIONS = frozenset(
    {"function_declaration", "generator_function_declaration"}
)


@dataclass(slots=True)
class _Declaration:
    """A top-level declaration found while walking the tree."""

    chunk_type: ChunkType
    name: str
    line_start: int
    line_end: int
    symbols: list[str] = field(default_factory=list)


def supports_language(language: str | None) -> bool:
    """Return whether a tree-sitter grammar is available for *language*."""
    return _HAS_TREESITTER and language in ("javascript", "typescript", "go")


def chunk_code(document: DocumentInput) -> list[Chunk]:
    """Chunk curly-brace source into declaration chunks.

    Raises :class:`ParseError` when no grammar is available for the
    document's language or the source contains syntax errors.  Returns an
    empty list when the source parses but declares nothing chunkable.
    """
    if not supports_language(document.language):
        raise ParseError(f"no syntax grammar available for language {document.language!r}")

    parser = tree_sitter.Parser(_grammar_for(document))
    tree = parser.parse(document.content.encode())
    root = tree.root_node
    if root.has_error:
        line = _first_error_line(root)
        raise ParseError(f"syntax error near line {line}")

    if document.language == "go":
        declarations, imports = _walk_go(root)
    else:
        declarations, imports = _walk_js(root)

    context = "\n".join(imports) or None
    chunks: list[Chunk] = []
    for index, decl in enumerate(declarations):
        chunks.append(
            Chunk(
                id=build_chunk_id(document.document_id, index, decl.name),
                chunk_type=decl.chunk_type,
                text=extract_lines(document.content, decl.line_start, decl.line_end).strip(),
                metadata=ChunkMetadata(
                    index=index,
                    title=decl.name,
                    line_start=decl.line_start,
                    line_end=decl.line_end,
                    symbols=tuple(decl.symbols or [decl.name]),
                    language=document.language,
                    context=context,
                ),
            )
        )
    return chunks


def _grammar_for(document: DocumentInput) -> tree_sitter.Language:
    if document.language == "go":
        return tree_sitter.Language(_go_language())
    if document.language == "typescript":
        if (document.source_path or "").endswith(".tsx"):
            return tree_sitter.Language(_tsx_language())
        return tree_sitter.Language(_ts_language())
    return tree_sitter.Language(_js_language())


def _first_error_line(node: tree_sitter.Node) -> int:
    """Return the 1-indexed line of the first ERROR or MISSING node."""
    if node.type == "ERROR" or node.is_missing:
        return node.start_point.row + 1
    for child in node.children:
        if child.has_error:
            return _first_error_line(child)
    return node.start_point.row + 1


def _text(node: tree_sitter.Node | None) -> str | None:
    if node is None or node.text is None:
        return None
    return node.text.decode()


def _span(node: tree_sitter.Node) -> tuple[int, int]:
    return node.start_point.row + 1, node.end_point.row + 1


# ------------------------------------------------------------------
# JavaScript / TypeScript
# ------------------------------------------------------------------


def _walk_js(root: tree_sitter.Node) -> tuple[list[_Declaration], list[str]]:
    declarations: list[_Declaration] = []
    imports: list[str] = []

    for child in root.children:
        if child.type == "import_statement":
            text = _text(child)
            if text:
                imports.append(text.strip())
            continue
        if child.type == "export_statement":
            # Unwrap export; the chunk spans the whole statement so the
            # ``export`` keyword stays in the text.
            for inner in child.children:
                _visit_js_declaration(inner, child, declarations)
            continue
        _visit_js_declaration(child, child, declarations)

    return declarations, imports


def _visit_js_declaration(
    node: tree_sitter.Node,
    span_node: tree_sitter.Node,
    declarations: list[_Declaration],
) -> None:
    line_start, line_end = _span(span_node)

    if node.type in _JS_FUNCTION_DECLARATIONS:
        name = _text(node.child_by_field_name("name"))
        if name:
            declarations.append(_Declaration(ChunkType.FUNCTION, name, line_start, line_end))
    elif node.type in _JS_CLASS_DECLARATIONS:
        name = _text(node.child_by_field_name("name"))
        if name:
            methods = _class_methods(node)
            declarations.append(
                _Declaration(ChunkType.CLASS, name, line_start, line_end, [name, *methods])
            )
    elif node.type in _JS_TYPE_DECLARATIONS:
        name = _text(node.child_by_field_name("name"))
        if name:
            declarations.append(_Declaration(ChunkType.TYPE, name, line_start, line_end))
    elif node.type in ("lexical_declaration", "variable_declaration"):
        # Only ``const f = () => ...`` style bindings are chunked.
        for child in node.children:
            if child.type != "variable_declarator":
                continue
            name = _text(child.child_by_field_name("name"))
            value = child.child_by_field_name("value")
            if name and value is not None and value.type in _FUNCTION_EXPRESSIONS:
                declarations.append(_Declaration(ChunkType.FUNCTION, name, line_start, line_end))


def _class_methods(node: tree_sitter.Node) -> list[str]:
    body = node.child_by_field_name("body")
    if body is None:
        return []
    methods: list[str] = []
    for child in body.children:
        if child.type in ("method_definition", "method_signature", "abstract_method_signature"):
            name = _text(child.child_by_field_name("name"))
            if name:
                methods.append(name)
    return methods


# ------------------------------------------------------------------
# Go
# ------------------------------------------------------------------


def _walk_go(root: tree_sitter.Node) -> tuple[list[_Declaration], list[str]]:
    declarations: list[_Declaration] = []
    imports: list[str] = []

    for child in root.children:
        line_start, line_end = _span(child)
        if child.type == "import_declaration":
            text = _text(child)
            if text:
                imports.append(text.strip())
        elif child.type == "function_declaration":
            name = _text(child.child_by_field_name("name"))
            if name:
                declarations.append(_Declaration(ChunkType.FUNCTION, name, line_start, line_end))
        elif child.type == "method_declaration":
            # ``func (r *Receiver) Method()`` is scoped as ``Receiver.Method``.
            name = _text(child.child_by_field_name("name"))
            if not name:
                continue
            receiver = _go_receiver_type(child)
            scoped = f"{receiver}.{name}" if receiver else name
            declarations.append(
                _Declaration(ChunkType.FUNCTION, scoped, line_start, line_end, [scoped, name])
            )
        elif child.type == "type_declaration":
            names = [
                n
                for spec in child.children
                if spec.type in ("type_spec", "type_alias")
                if (n := _text(spec.child_by_field_name("name")))
            ]
            if names:
                declarations.append(
                    _Declaration(ChunkType.TYPE, names[0], line_start, line_end, names)
                )

    return declarations, imports


def _go_receiver_type(node: tree_sitter.Node) -> str | None:
    """Extract the receiver type name from a Go method declaration."""
    receiver = node.child_by_field_name("receiver")
    if receiver is None:
        return None
    for param in receiver.children:
        if param.type != "parameter_declaration":
            continue
        type_node = param.child_by_field_name("type")
        while type_node is not None and type_node.type in ("pointer_type", "generic_type"):
            inner = next((c for c in type_node.children if c.is_named), None)
            type_node = inner
        name = _text(type_node)
        if name:
            return name
    return None

"""Language and document-kind detection (extension first, content sniffing second)."""

from __future__ import annotations

import json
import posixpath
import re

from trove.chunking._base import DocumentKind

_EXTENSION_LANGUAGES: dict[str, str] = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".go": "go",
    ".java": "java",
    ".c": "c",
    ".h": "c",
    ".cc": "cpp",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".rs": "rust",
    ".kt": "kotlin",
    ".swift": "swift",
    ".scala": "scala",
    ".php": "php",
    ".md": "markdown",
    ".markdown": "markdown",
    ".mdx": "markdown",
    ".txt": "text",
    ".rst": "text",
    ".json": "json",
    ".yaml": "text",
    ".yml": "text",
}

CURLY_BRACE_LANGUAGES = frozenset(
    {
        "typescript",
        "javascript",
        "go",
        "java",
        "c",
        "cpp",
        "csharp",
        "rust",
        "kotlin",
        "swift",
        "scala",
        "php",
    }
)

_MARKDOWN_HEADING_RE = re.compile(r"^#{1,6}\s+\S", re.MULTILINE)
_GO_RE = re.compile(r"^package\s+\w+\s*$", re.MULTILINE)
_CODE_RE = re.compile(
    r"^\s*(?:export\s+)?(?:default\s+)?"
    r"(?:async\s+)?(?:function\b|class\s+\w|interface\s+\w|import\s|const\s+\w+\s*=|func\s)",
    re.MULTILINE,
)
_TS_HINT_RE = re.compile(r"\binterface\s+\w+|\btype\s+\w+\s*=|\)\s*:\s*\w+")


def detect_language(path: str | None) -> str | None:
    """Map a file path to a language name by extension (case-insensitive)."""
    if not path:
        return None
    ext = posixpath.splitext(path)[1].lower()
    return _EXTENSION_LANGUAGES.get(ext)


def sniff_record_kind(content: str) -> DocumentKind | None:
    """Return ``ISSUE`` / ``PULL_REQUEST`` if *content* is a JSON tracker record."""
    stripped = content.lstrip()
    if not stripped.startswith("{"):
        return None
    try:
        record = json.loads(content)
    except json.JSONDecodeError:
        return None
    if not isinstance(record, dict) or "title" not in record:
        return None
    if "pull_request" in record or "review_comments" in record or (
        "head" in record and "base" in record
    ):
        return DocumentKind.PULL_REQUEST
    if "number" in record:
        return DocumentKind.ISSUE
    return None


def _sniff_code_language(content: str) -> str | None:
    if _GO_RE.search(content) and "func " in content:
        return "go"
    if _CODE_RE.search(content) and "{" in content:
        return "typescript" if _TS_HINT_RE.search(content) else "javascript"
    return None


def detect_document(content: str, path: str | None = None) -> tuple[DocumentKind, str | None]:
    """Detect the document kind and language of *content*.

    The extension decides when it is unambiguous (source languages,
    markdown, plain text).  Without an extension, with an unknown one, or
    for JSON, the content is sniffed for tracker records, code and headings.
    """
    language = detect_language(path)

    if language in CURLY_BRACE_LANGUAGES:
        return DocumentKind.CODE, language
    if language == "markdown":
        return DocumentKind.MARKDOWN, language
    if language == "text":
        return DocumentKind.TEXT, language

    record_kind = sniff_record_kind(content)
    if record_kind is not None:
        return record_kind, "json"
    if language == "json":
        return DocumentKind.TEXT, language

    code_language = _sniff_code_language(content)
    if code_language is not None:
        return DocumentKind.CODE, code_language
    if _MARKDOWN_HEADING_RE.search(content):
        return DocumentKind.MARKDOWN, "markdown"
    return DocumentKind.TEXT, "text"

"""Tests for language and document-kind detection."""

from __future__ import annotations

import json

import pytest

from trove.chunking import DocumentKind, detect_document, detect_language


class TestDetectLanguage:
    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("src/app.ts", "typescript"),
            ("src/App.TSX", "typescript"),
            ("lib/index.mjs", "javascript"),
            ("cmd/main.go", "go"),
            ("README.md", "markdown"),
            ("notes.txt", "text"),
            ("data.json", "json"),
            ("Makefile", None),
            (None, None),
        ],
    )
    def test_extension_mapping(self, path, expected):
        assert detect_language(path) == expected


class TestDetectDocument:
    def test_extension_wins_for_source(self):
        assert detect_document("not really code", "a.go") == (DocumentKind.CODE, "go")

    def test_extension_wins_for_markdown(self):
        assert detect_document("plain words", "guide.md") == (DocumentKind.MARKDOWN, "markdown")

    def test_other_curly_brace_languages_are_code(self):
        assert detect_document("class A {}", "A.java") == (DocumentKind.CODE, "java")

    def test_issue_record(self):
        content = json.dumps({"number": 1, "title": "Bug", "body": "x"})
        assert detect_document(content, "1.json") == (DocumentKind.ISSUE, "json")

    def test_pull_request_record(self):
        content = json.dumps({"number": 2, "title": "Fix", "head": {}, "base": {}})
        assert detect_document(content, "2.json") == (DocumentKind.PULL_REQUEST, "json")

    def test_other_json_is_text(self):
        assert detect_document('{"name": "pkg"}', "package.json") == (DocumentKind.TEXT, "json")

    def test_sniffs_typescript_without_extension(self):
        content = "interface Point { x: number }\nexport function f(): Point {\n  return { x: 1 };\n}\n"
        assert detect_document(content) == (DocumentKind.CODE, "typescript")

    def test_sniffs_javascript_without_extension(self):
        content = "function f() {\n  return 1;\n}\n"
        assert detect_document(content, "script") == (DocumentKind.CODE, "javascript")

    def test_sniffs_go_without_extension(self):
        content = "package main\n\nfunc main() {}\n"
        assert detect_document(content) == (DocumentKind.CODE, "go")

    def test_sniffs_markdown_headings(self):
        assert detect_document("# Title\n\nBody.\n", "NOTES") == (DocumentKind.MARKDOWN, "markdown")

    def test_falls_back_to_text(self):
        assert detect_document("just some words") == (DocumentKind.TEXT, "text")

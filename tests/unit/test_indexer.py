"""Tests for the codebase indexer — import graph and architecture summary."""

from __future__ import annotations

import pytest

from policyscan.scanner.indexer import CodebaseIndex, parse_file

_TS_APP = {
    "src/index.ts": (
        "import { handler } from './api/handler';\n"
        "import express from 'express';\n"
        "const app = express();\n"
        "app.get('/x', handler);\n"
    ),
    "src/api/handler.ts": (
        "import { verify } from '../auth';\n"
        "export function handler(req, res) { verify(req); }\n"
    ),
    "src/auth/index.ts": (
        "export const verify = (req) => { jwt.verify(req.token) };\n"
        "export class AuthError extends Error {}\n"
    ),
}


@pytest.fixture
def ts_index() -> CodebaseIndex:
    return CodebaseIndex.build(_TS_APP.items())


class TestParsing:
    def test_js_imports(self):
        parsed = parse_file(
            "a.js",
            "import x from './x';\n"
            "const y = require('y');\n"
            "const z = await import('./z');\n"
            "export { a, b as c } from './re';\n",
        )
        assert parsed.imports == ["./x", "y", "./z", "./re"]

    def test_python_imports(self):
        parsed = parse_file(
            "pkg/mod.py",
            "import os\nfrom .models import User\nfrom ..core import db\n",
        )
        assert parsed.imports == [".models", "..core", "os"]

    def test_exports(self):
        parsed = parse_file(
            "a.js",
            "export default function main() {}\n"
            "export { one, two as second };\n"
            "module.exports = { three, four };\n"
            "exports.five = 5;\n",
        )
        assert parsed.exports == ["main", "one", "two", "three", "four", "five"]

    def test_functions_skip_keywords(self):
        parsed = parse_file(
            "a.js",
            "function load() {}\n"
            "const save = async (x) => x;\n"
            "if (ok) { run(); }\n",
        )
        assert parsed.functions == ["load", "save"]

    def test_python_functions_and_classes(self):
        parsed = parse_file("a.py", "class Repo:\n    def get(self):\n        pass\n")
        assert parsed.classes == ["Repo"]
        assert parsed.functions == ["get"]


class TestGraph:
    def test_dependencies_resolve_suffixes(self, ts_index: CodebaseIndex):
        assert ts_index.dependencies("src/index.ts") == ["src/api/handler.ts"]
        assert ts_index.dependencies("src/api/handler.ts") == ["src/auth/index.ts"]

    def test_dependents(self, ts_index: CodebaseIndex):
        assert ts_index.dependents("src/auth/index.ts") == ["src/api/handler.ts"]

    def test_bare_specifiers_unresolved(self, ts_index: CodebaseIndex):
        assert ts_index.unresolved_imports("src/index.ts") == ["express"]
        assert ts_index.unresolved_imports("missing.ts") == []

    def test_export_index(self, ts_index: CodebaseIndex):
        assert ts_index.definers("verify") == ["src/auth/index.ts"]
        assert ts_index.definers("nothing") == []

    def test_python_relative_imports(self):
        index = CodebaseIndex.build(
            [
                ("app/__init__.py", ""),
                ("app/models.py", "class User:\n    pass\n"),
                ("app/views.py", "from .models import User\nfrom . import helpers\nimport os\n"),
            ]
        )
        assert index.dependencies("app/views.py") == ["app/__init__.py", "app/models.py"]
        assert index.unresolved_imports("app/views.py") == ["os"]

    def test_find_definition(self, ts_index: CodebaseIndex):
        found = ts_index.find_definition("AuthError")
        assert found is not None
        assert found.file == "src/auth/index.ts"
        assert found.line == 2
        assert ts_index.find_definition("Nope") is None


class TestStructure:
    def test_backend(self, ts_index: CodebaseIndex):
        s = ts_index.structure
        assert s.kind == "backend"
        assert s.framework == "Express"
        assert s.has_auth
        assert s.has_api
        assert not s.has_frontend
        assert "src/index.ts" in s.entry_points
        assert s.summary == "backend application using Express with authentication"

    def test_fullstack(self):
        index = CodebaseIndex.build(
            [
                ("web/App.jsx", "import React, { useState } from 'react';\n"),
                ("server.js", "const router = express.Router();\nrouter.get('/x');\n"),
            ]
        )
        assert index.structure.kind == "fullstack"

    def test_frontend(self):
        index = CodebaseIndex.build([("App.vue", "import { createApp } from 'vue';\n")])
        assert index.structure.kind == "frontend"
        assert index.structure.framework == "Vue"

    def test_small_tree_is_script(self):
        index = CodebaseIndex.build([("a.py", "print('hi')\n"), ("b.py", "x = 1\n")])
        assert index.structure.kind == "script"

    def test_larger_tree_is_library(self):
        index = CodebaseIndex.build([(f"m{i}.py", "x = 1\n") for i in range(4)])
        assert index.structure.kind == "library"

    def test_empty_is_unknown(self):
        index = CodebaseIndex.build([])
        assert len(index) == 0
        assert index.structure.kind == "unknown"
        assert index.summary_for_analysis() == "Codebase structure unknown."


class TestSearch:
    def test_pattern_usage_capped(self):
        content = "\n".join(f"app.use(rateLimit({i}))" for i in range(15))
        index = CodebaseIndex.build([("server.js", content)])

        usage = index.find_pattern_usage("rate_limit")

        assert len(usage) == 10
        assert usage[0].line == 1
        assert usage[0].relevance == "rate_limit implementation"

    def test_unknown_pattern_category(self, ts_index: CodebaseIndex):
        assert ts_index.find_pattern_usage("telemetry") == []

    def test_search_related_code_prefers_auth_files(self, ts_index: CodebaseIndex):
        results = ts_index.search_related_code("verify auth token")
        assert results[0].file == "src/auth/index.ts"
        assert results[0].relevance == "authentication file"

    def test_search_related_code_excludes_file(self, ts_index: CodebaseIndex):
        results = ts_index.search_related_code("verify", exclude_file="src/auth/index.ts")
        assert "src/auth/index.ts" not in [r.file for r in results]
        assert results

    def test_summary_for_analysis(self, ts_index: CodebaseIndex):
        summary = ts_index.summary_for_analysis()
        assert "Files: 3" in summary
        assert "Has authentication/authorization code" in summary
        assert "Has API endpoints" in summary

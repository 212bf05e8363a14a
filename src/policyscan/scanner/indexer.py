"""Codebase indexer — approximate import/export map and architecture summary.

Everything here is regex based and best effort. Its only consumer is the
optional semantic-analysis stage, which uses the summary and the
pattern-usage snippets as context; detection never depends on it.
"""

from __future__ import annotations

import posixpath
import re
from collections.abc import Iterable
from dataclasses import dataclass, field

# --- extractors -------------------------------------------------------------

_IMPORT_PATTERNS = [
    re.compile(r"""import\s+(?:(?:\{[^}]+\}|\*\s+as\s+\w+|\w+)\s+from\s+)?['"]([^'"]+)['"]"""),
    re.compile(r"""require\s*\(\s*['"]([^'"]+)['"]\s*\)"""),
    re.compile(r"""import\s*\(\s*['"]([^'"]+)['"]\s*\)"""),
    re.compile(r"""from\s+['"]([^'"]+)['"]"""),
]

_PY_IMPORT_PATTERNS = [
    re.compile(r"^\s*from\s+(\.*[\w.]*)\s+import\b", re.MULTILINE),
    re.compile(r"^\s*import\s+([\w.]+)", re.MULTILINE),
]

_EXPORT_PATTERNS = [
    re.compile(r"export\s+(?:default\s+)?(?:class|function|const|let|var|async\s+function)\s+(\w+)"),
    re.compile(r"export\s+\{\s*([^}]+)\s*\}"),
    re.compile(r"module\.exports\s*=\s*(?:\{([^}]+)\}|(\w+))"),
    re.compile(r"exports\.(\w+)\s*="),
]

_FUNCTION_PATTERNS = [
    re.compile(r"(?:function|async\s+function)\s+(\w+)"),
    re.compile(r"(?:const|let|var)\s+(\w+)\s*=\s*(?:async\s*)?\([^)]*\)\s*=>"),
    re.compile(r"(?:const|let|var)\s+(\w+)\s*=\s*(?:async\s*)?function"),
    re.compile(r"(\w+)\s*:\s*(?:async\s*)?\([^)]*\)\s*=>"),
    re.compile(r"^\s*(?:async\s+)?def\s+(\w+)\s*\(", re.MULTILINE),
]

_CLASS_PATTERNS = [
    re.compile(r"\bclass\s+(\w+)"),
]

_IDENT_RE = re.compile(r"^[A-Za-z_]\w*$")
_KEYWORDS = frozenset(
    {"if", "for", "while", "switch", "catch", "function", "return", "with", "elif"}
)

_RESOLVE_SUFFIXES = (
    "",
    ".ts",
    ".tsx",
    ".js",
    ".jsx",
    "/index.ts",
    "/index.tsx",
    "/index.js",
    "/index.jsx",
)

# --- structure detection ----------------------------------------------------

_STRUCTURE_PATTERNS: dict[str, list[re.Pattern[str]]] = {
    "auth": [
        re.compile(
            r"(?:authenticate|authorize|verifyToken|checkPermission|isAuthenticated"
            r"|requireAuth|passport|jwt\.verify)",
            re.IGNORECASE,
        ),
        re.compile(r"\b(?:session|cookie|bearer|oauth|oidc)\b", re.IGNORECASE),
    ],
    "database": [
        re.compile(
            r"\b(?:mongoose|sequelize|prisma|typeorm|knex|pg|mysql|mongodb|supabase"
            r"|firebase|sqlalchemy|psycopg2?)\b",
            re.IGNORECASE,
        ),
        re.compile(r"(?:\.query\(|\bSELECT\s|\bINSERT\s+INTO\b|\bUPDATE\s+\w+\s+SET\b)", re.IGNORECASE),
    ],
    "api": [
        re.compile(
            r"(?:app\.(?:get|post|put|delete)\(|router\.|\bexpress\b|\bfastify\b|\bkoa\b"
            r"|\bhapi\b|\bflask\b|\bfastapi\b|@app\.route)",
            re.IGNORECASE,
        ),
        re.compile(r"\b(?:endpoint|route|controller)\b", re.IGNORECASE),
    ],
    "middleware": [
        re.compile(r"(?:app\.use\(|\bmiddleware\b|\binterceptor\b)", re.IGNORECASE),
        re.compile(r"\b(?:rateLimit|cors|helmet|bodyParser|multer)\b", re.IGNORECASE),
    ],
    "frontend": [
        re.compile(r"\b(?:react|vue|angular|svelte|nuxt|gatsby)\b", re.IGNORECASE),
        re.compile(r"\b(?:useState|useEffect|ReactDOM|createApp)\b"),
    ],
    "tests": [
        re.compile(r"\b(?:describe\(|jest|mocha|chai|vitest|pytest|unittest)\b"),
        re.compile(r"\bexpect\s*\("),
    ],
}

_FRAMEWORKS = [
    ("Next.js", re.compile(r"\bnext(?:/|\.config|js)\b", re.IGNORECASE)),
    ("Express", re.compile(r"\bexpress\b", re.IGNORECASE)),
    ("Fastify", re.compile(r"\bfastify\b", re.IGNORECASE)),
    ("React", re.compile(r"\breact\b", re.IGNORECASE)),
    ("Vue", re.compile(r"\bvue\b", re.IGNORECASE)),
    ("Flask", re.compile(r"\bflask\b", re.IGNORECASE)),
    ("FastAPI", re.compile(r"\bfastapi\b", re.IGNORECASE)),
]

_ENTRY_POINT_RE = re.compile(r"(?:^|/)(?:index|main|app|server)\.(?:[jt]sx?|py)$")

PATTERN_CATEGORIES: dict[str, list[re.Pattern[str]]] = {
    "auth": [
        re.compile(r"(?:authenticate|authorize|verifyToken|isAuthenticated|requireAuth|checkAuth)", re.I),
        re.compile(r"(?:jwt\.verify|passport\.authenticate|session\.user)", re.I),
    ],
    "rate_limit": [
        re.compile(r"(?:rateLimit|rateLimiter|rate_limit|throttle|slowDown)", re.I),
        re.compile(r"(?:X-RateLimit|retry-after|\b429\b)", re.I),
    ],
    "permissions": [
        re.compile(r"(?:checkPermission|hasPermission|canAccess|isAllowed|authorize)", re.I),
        re.compile(r"\b(?:scope|permission|role|access)\b", re.I),
    ],
    "middleware": [
        re.compile(r"(?:app\.use|router\.use|\.middleware)", re.I),
        re.compile(r"(?:next\(\)|req,\s*res,\s*next)", re.I),
    ],
    "error_handler": [
        re.compile(r"(?:\.catch\(|\bcatch\s*\(|try\s*\{|\btry:|\bexcept\b|error\s*=>)", re.I),
        re.compile(r"(?:errorHandler|handleError|onError)", re.I),
    ],
    "database": [
        re.compile(r"(?:createTable|CREATE TABLE|schema|model\s*\(|defineModel)", re.I),
        re.compile(r"(?:mongoose\.Schema|sequelize\.define|prisma\.\w+\.create)", re.I),
        re.compile(r"(?:ttl|expires_at|retention|delete_after)", re.I),
    ],
    "cache": [
        re.compile(r"(?:redis|memcache|cache)\.(?:set|get|expire|setex)", re.I),
        re.compile(r"(?:\bttl\b|EXPIRE|EX\s+\d+)", re.I),
    ],
    "storage": [
        re.compile(r"(?:s3|gcs|blob|storage)\.(?:upload|put|delete)", re.I),
        re.compile(r"(?:deleteObject|removeFile|purge)", re.I),
    ],
}

_MAX_PATTERN_RESULTS = 10


@dataclass
class CodebaseFile:
    """Declarations extracted from a single file."""

    path: str
    content: str
    imports: list[str] = field(default_factory=list)
    exports: list[str] = field(default_factory=list)
    functions: list[str] = field(default_factory=list)
    classes: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class CodebaseStructure:
    """Coarse architecture classification of the scanned tree."""

    kind: str = "unknown"
    has_auth: bool = False
    has_database: bool = False
    has_api: bool = False
    has_middleware: bool = False
    has_frontend: bool = False
    has_tests: bool = False
    framework: str = ""
    entry_points: tuple[str, ...] = ()
    summary: str = "unknown application"


@dataclass(frozen=True)
class RelatedCode:
    """A snippet of code located by one of the index searches."""

    file: str
    line: int
    snippet: str
    relevance: str


class CodebaseIndex:
    """In-memory index over every fetched file of one scan."""

    def __init__(self) -> None:
        self.files: dict[str, CodebaseFile] = {}
        self.import_graph: dict[str, set[str]] = {}
        self.export_index: dict[str, list[str]] = {}
        self.structure = CodebaseStructure()

    @classmethod
    def build(cls, files: Iterable[tuple[str, str]]) -> CodebaseIndex:
        index = cls()
        for path, content in files:
            index.files[path] = parse_file(path, content)
        index._build_graph()
        index.structure = index._detect_structure()
        return index

    def __len__(self) -> int:
        return len(self.files)

    # --- graph lookups ---

    def dependencies(self, path: str) -> list[str]:
        """Files that ``path`` imports (resolved relative imports only)."""
        return sorted(self.import_graph.get(path, ()))

    def dependents(self, path: str) -> list[str]:
        """Files that import ``path``."""
        return sorted(p for p, deps in self.import_graph.items() if path in deps)

    def definers(self, symbol: str) -> list[str]:
        return list(self.export_index.get(symbol, ()))

    def unresolved_imports(self, path: str) -> list[str]:
        parsed = self.files.get(path)
        if parsed is None:
            return []
        resolved = self.import_graph.get(path, set())
        return [
            imp
            for imp in parsed.imports
            if _resolve(self.files, path, imp) not in resolved
        ]

    # --- searches ---

    def find_definition(self, name: str) -> RelatedCode | None:
        """Locate where a function, class or export called ``name`` is declared."""
        regex = re.compile(
            rf"(?:function|class|const|let|var|export|def)\s+{re.escape(name)}\b"
        )
        for path, parsed in self.files.items():
            if not (
                name in parsed.exports
                or name in parsed.functions
                or name in parsed.classes
            ):
                continue
            lines = parsed.content.splitlines()
            for i, line in enumerate(lines):
                if regex.search(line):
                    return RelatedCode(
                        file=path,
                        line=i + 1,
                        snippet="\n".join(lines[max(0, i - 1) : i + 10]),
                        relevance=f"Definition of {name}",
                    )
        return None

    def find_pattern_usage(self, category: str) -> list[RelatedCode]:
        """Up to ten snippets showing where a concern (auth, cache, ...) is handled."""
        patterns = PATTERN_CATEGORIES.get(category, [])
        results: list[RelatedCode] = []
        for path, parsed in self.files.items():
            lines = parsed.content.splitlines()
            for i, line in enumerate(lines):
                if any(p.search(line) for p in patterns):
                    results.append(
                        RelatedCode(
                            file=path,
                            line=i + 1,
                            snippet="\n".join(lines[max(0, i - 2) : i + 5]),
                            relevance=f"{category} implementation",
                        )
                    )
                    if len(results) >= _MAX_PATTERN_RESULTS:
                        return results
        return results

    def search_related_code(
        self,
        query: str,
        max_results: int = 5,
        exclude_file: str | None = None,
    ) -> list[RelatedCode]:
        """Best line per file scored by query-term hits, auth files first for auth queries."""
        query_lower = query.lower()
        terms = [t for t in query_lower.split() if len(t) > 2]
        results: list[RelatedCode] = []

        for path, parsed in self.files.items():
            if path == exclude_file:
                continue
            lines = parsed.content.splitlines()
            best: tuple[float, int] | None = None
            for i, line in enumerate(lines):
                lower = line.lower()
                score = float(sum(1 for t in terms if t in lower))
                if score and re.search(r"(?:function|class|const|export|def)\s+\w+", line):
                    score += 0.5
                if score > 0 and (best is None or score > best[0]):
                    best = (score, i)
            if best is not None:
                i = best[1]
                results.append(
                    RelatedCode(
                        file=path,
                        line=i + 1,
                        snippet="\n".join(lines[max(0, i - 2) : i + 3]),
                        relevance=_relevance(path),
                    )
                )

        if "permission" in query_lower or "auth" in query_lower:
            results.sort(
                key=lambda r: 0
                if re.search(r"auth|permission|middleware", r.file, re.I)
                else 1
            )
        return results[:max_results]

    def summary_for_analysis(self) -> str:
        """Short text block describing the codebase, for the semantic stage."""
        if not self.files:
            return "Codebase structure unknown."
        s = self.structure
        lines = [
            "## Codebase Analysis",
            f"Type: {s.summary}",
            f"Files: {len(self.files)}",
            "",
        ]
        if s.has_auth:
            lines.append("- Has authentication/authorization code")
        if s.has_middleware:
            lines.append("- Has middleware (may handle rate limiting, auth checks)")
        if s.has_database:
            lines.append("- Has database integration")
        if s.has_api:
            lines.append("- Has API endpoints")
        lines.append("")
        lines.append("Note: This is a multi-file codebase. Authentication, permissions,")
        lines.append("rate limiting, and error handling may be in separate files.")
        return "\n".join(lines)

    # --- construction ---

    def _build_graph(self) -> None:
        self.import_graph.clear()
        self.export_index.clear()

        for path, parsed in self.files.items():
            for exp in parsed.exports:
                self.export_index.setdefault(exp, []).append(path)

        for path, parsed in self.files.items():
            deps: set[str] = set()
            for imp in parsed.imports:
                resolved = _resolve(self.files, path, imp)
                if resolved:
                    deps.add(resolved)
            self.import_graph[path] = deps

    def _detect_structure(self) -> CodebaseStructure:
        if not self.files:
            return CodebaseStructure()

        all_content = "\n".join(f.content for f in self.files.values())
        found = {
            name: any(p.search(all_content) for p in patterns)
            for name, patterns in _STRUCTURE_PATTERNS.items()
        }

        framework = ""
        for name, regex in _FRAMEWORKS:
            if regex.search(all_content):
                framework = name
                break

        has_api, has_frontend = found["api"], found["frontend"]
        if has_frontend and has_api:
            kind = "fullstack"
        elif has_api:
            kind = "backend"
        elif has_frontend:
            kind = "frontend"
        elif len(self.files) <= 3:
            kind = "script"
        else:
            kind = "library"

        parts = [f"{kind} application"]
        if framework:
            parts.append(f"using {framework}")
        if found["auth"]:
            parts.append("with authentication")
        if found["database"]:
            parts.append("with database")
        if found["middleware"]:
            parts.append("with middleware")

        return CodebaseStructure(
            kind=kind,
            has_auth=found["auth"],
            has_database=found["database"],
            has_api=has_api,
            has_middleware=found["middleware"],
            has_frontend=has_frontend,
            has_tests=found["tests"],
            framework=framework,
            entry_points=tuple(p for p in self.files if _ENTRY_POINT_RE.search(p)),
            summary=" ".join(parts),
        )


def parse_file(path: str, content: str) -> CodebaseFile:
    """Extract imports, exports, functions and classes from one file."""
    imports: list[str] = []
    patterns = _PY_IMPORT_PATTERNS if path.endswith(".py") else _IMPORT_PATTERNS
    for pattern in patterns:
        imports.extend(m.group(1) for m in pattern.finditer(content) if m.group(1))

    exports: list[str] = []
    for pattern in _EXPORT_PATTERNS:
        for m in pattern.finditer(content):
            raw = next((g for g in m.groups() if g), "")
            for item in raw.split(","):
                name = re.split(r"\s+as\s+", item.strip())[0].strip()
                if _IDENT_RE.match(name):
                    exports.append(name)

    functions = [
        m.group(1)
        for pattern in _FUNCTION_PATTERNS
        for m in pattern.finditer(content)
        if _IDENT_RE.match(m.group(1)) and m.group(1) not in _KEYWORDS
    ]
    classes = [m.group(1) for pattern in _CLASS_PATTERNS for m in pattern.finditer(content)]

    return CodebaseFile(
        path=path,
        content=content,
        imports=list(dict.fromkeys(imports)),
        exports=list(dict.fromkeys(exports)),
        functions=list(dict.fromkeys(functions)),
        classes=list(dict.fromkeys(classes)),
    )


def _resolve(files: dict[str, CodebaseFile], from_path: str, spec: str) -> str | None:
    """Resolve a relative import specifier to a known file, or None."""
    if not spec.startswith("."):
        return None
    base_dir = posixpath.dirname(from_path)

    if from_path.endswith(".py"):
        dots = len(spec) - len(spec.lstrip("."))
        target = base_dir
        for _ in range(dots - 1):
            target = posixpath.dirname(target)
        rest = spec[dots:].replace(".", "/")
        stem = posixpath.join(target, rest) if rest else target
        candidates = [f"{stem}.py"] if rest else []
        candidates.append(posixpath.join(stem, "__init__.py"))
        for candidate in candidates:
            candidate = posixpath.normpath(candidate)
            if candidate in files:
                return candidate
        return None

    joined = posixpath.normpath(posixpath.join(base_dir, spec))
    for suffix in _RESOLVE_SUFFIXES:
        candidate = joined + suffix
        if candidate in files:
            return candidate
    return None


def _relevance(path: str) -> str:
    parts = []
    checks = [
        ("auth", "authentication file"),
        ("middleware", "middleware"),
        ("util", "utility"),
        ("service", "service layer"),
        ("controller", "controller"),
        ("route", "route handler"),
    ]
    for needle, label in checks:
        if needle in path.lower():
            parts.append(label)
    return ", ".join(parts) or "related code"

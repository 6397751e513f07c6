"""Dependency graph builder.

Builds an import/export graph over the source files of a project's dominant
language and scores how central each file is in that graph.

Supported:
- Python: AST-based import parsing, dotted and relative module resolution.
- Go: import blocks parsed with regexes, module path read from go.mod.

Resolution is repo-local only: an import becomes an edge only when it maps
to a file of the analyzed inventory. Unreadable or unparsable files are
skipped, so a broken file degrades the graph instead of failing the build.
"""

from __future__ import annotations

import ast
import re
import threading
from collections import Counter
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from loguru import logger

from ..schemas import DependencyGraph, DependencyNode, FileInfo
from .errors import GraphBuildCancelled


GO_VENDOR_PREFIXES = ("github.com/", "golang.org/", "google.golang.org/", "gopkg.in/")

GO_STDLIB_ROOTS = frozenset({
    "archive", "bufio", "bytes", "cmp", "compress", "container", "context",
    "crypto", "database", "debug", "embed", "encoding", "errors", "expvar",
    "flag", "fmt", "go", "hash", "html", "image", "index", "io", "iter",
    "log", "maps", "math", "mime", "net", "os", "path", "plugin", "reflect",
    "regexp", "runtime", "slices", "sort", "strconv", "strings", "sync",
    "syscall", "testing", "text", "time", "unicode", "unique", "unsafe",
})


@dataclass(frozen=True)
class GraphBuilderConfig:
    max_file_bytes: int = 512 * 1024


def relative_path(path: str, root: str | Path) -> str:
    """Project-relative posix path for ``path`` (absolute or already relative)."""
    p = Path(path)
    if p.is_absolute():
        try:
            return p.resolve().relative_to(Path(root).resolve()).as_posix()
        except ValueError:
            return p.as_posix()
    return PurePosixPath(path.replace("\\", "/")).as_posix()


def centrality(graph: Optional[DependencyGraph], rel_path: str) -> float:
    """(2*in + out) / (3*(N-1)), clamped to [0, 1].

    0.5 for graphs with at most one node, 0.0 for files missing from the graph.
    """
    if graph is None:
        return 0.0
    node = graph.nodes.get(rel_path)
    if node is None:
        return 0.0
    total = len(graph.nodes)
    if total <= 1:
        return 0.5
    in_degree = len(node.dependents)
    out_degree = len(node.dependencies)
    score = (2 * in_degree + out_degree) / (3 * (total - 1))
    return max(0.0, min(1.0, score))


# =============================================================================
# LANGUAGE ANALYZERS
# =============================================================================


class PythonImportAnalyzer:
    language = "python"
    extensions = (".py",)

    def is_test_file(self, rel: str) -> bool:
        name = PurePosixPath(rel).name
        return name.startswith("test_") or name.endswith("_test.py") or name == "conftest.py"

    def parse(self, source: str) -> Tuple[List[str], List[str]]:
        tree = ast.parse(source)
        imports: List[str] = []

        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                for alias in node.names:
                    if alias.name:
                        imports.append(alias.name)
            elif isinstance(node, ast.ImportFrom):
                prefix = "." * node.level
                if node.module:
                    imports.append(prefix + node.module)
                    for alias in node.names:
                        if alias.name and alias.name != "*":
                            imports.append(prefix + node.module + "." + alias.name)
                elif node.level:
                    imports.append(prefix)
                    for alias in node.names:
                        if alias.name and alias.name != "*":
                            imports.append(prefix + alias.name)

        exports: List[str] = []
        for stmt in tree.body:
            if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                if not stmt.name.startswith("_"):
                    exports.append(stmt.name)
            elif isinstance(stmt, ast.Assign):
                for target in stmt.targets:
                    if isinstance(target, ast.Name) and not target.id.startswith("_"):
                        exports.append(target.id)
            elif isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
                if not stmt.target.id.startswith("_"):
                    exports.append(stmt.target.id)

        return list(dict.fromkeys(imports)), exports

    def resolve(self, import_ref: str, base_rel: str, known: Set[str]) -> Optional[str]:
        import_ref = (import_ref or "").strip()
        if not import_ref:
            return None

        dots = len(import_ref) - len(import_ref.lstrip("."))
        name = import_ref.lstrip(".")

        if dots:
            base_dir = PurePosixPath(base_rel).parent
            for _ in range(dots - 1):
                base_dir = base_dir.parent
            if name:
                stem = (base_dir / name.replace(".", "/")).as_posix()
                candidates = [f"{stem}.py", f"{stem}/__init__.py"]
            else:
                candidates = [(base_dir / "__init__.py").as_posix()]
        else:
            stem = name.replace(".", "/")
            candidates = [f"{stem}.py", f"{stem}/__init__.py", f"src/{stem}.py", f"src/{stem}/__init__.py"]

        for cand in candidates:
            cand = cand[2:] if cand.startswith("./") else cand
            if cand in known:
                return cand
        return None


_GO_IMPORT_SINGLE = re.compile(r'^\s*import\s+(?:[\w.]+\s+)?"([^"]+)"')
_GO_IMPORT_BLOCK_START = re.compile(r"^\s*import\s*\(\s*$")
_GO_IMPORT_LINE = re.compile(r'^\s*(?:[\w.]+\s+)?"([^"]+)"')
_GO_FUNC = re.compile(r"^func\s+(?:\([^)]*\)\s*)?([A-Za-z_]\w*)")
_GO_DECL = re.compile(r"^(type|var|const)\s+([A-Za-z_]\w*)")
_GO_DECL_BLOCK = re.compile(r"^(type|var|const)\s*\(\s*$")
_GO_BLOCK_MEMBER = re.compile(r"^\s+([A-Za-z_]\w*)")
_GO_PACKAGE = re.compile(r"^\s*package\s+\w+")


class GoImportAnalyzer:
    language = "go"
    extensions = (".go",)

    def __init__(self, project_root: Path, known_dirs: Optional[Set[str]] = None):
        self.project_root = project_root
        self.module_path = self._load_module_path()
        self.known_dirs: Set[str] = set(known_dirs or ())

    def _load_module_path(self) -> Optional[str]:
        go_mod = self.project_root / "go.mod"
        try:
            with open(go_mod, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if line.startswith("module "):
                        return line[len("module"):].strip() or None
        except OSError:
            return None
        return None

    def is_test_file(self, rel: str) -> bool:
        return rel.endswith("_test.go")

    def parse(self, source: str) -> Tuple[List[str], List[str]]:
        lines = source.splitlines()
        if not any(_GO_PACKAGE.match(line) for line in lines):
            raise ValueError("missing package clause")

        imports: List[str] = []
        exports: List[str] = []
        in_imports = False
        decl_block: Optional[str] = None

        for line in lines:
            if in_imports:
                if line.strip().startswith(")"):
                    in_imports = False
                    continue
                m = _GO_IMPORT_LINE.match(line)
                if m:
                    imports.append(m.group(1))
                continue

            if decl_block:
                if line.strip().startswith(")"):
                    decl_block = None
                    continue
                m = _GO_BLOCK_MEMBER.match(line)
                if m and m.group(1)[0].isupper():
                    exports.append(m.group(1))
                continue

            if _GO_IMPORT_BLOCK_START.match(line):
                in_imports = True
                continue
            m = _GO_IMPORT_SINGLE.match(line)
            if m:
                imports.append(m.group(1))
                continue
            m = _GO_DECL_BLOCK.match(line)
            if m:
                decl_block = m.group(1)
                continue
            m = _GO_FUNC.match(line) or _GO_DECL.match(line)
            if m:
                name = m.group(m.lastindex or 1)
                if name[0].isupper():
                    exports.append(name)

        return imports, exports

    def is_local_import(self, import_ref: str) -> bool:
        if self.module_path:
            return import_ref == self.module_path or import_ref.startswith(self.module_path + "/")
        if import_ref.startswith(GO_VENDOR_PREFIXES) or "/vendor/" in import_ref:
            return False
        first = import_ref.split("/", 1)[0]
        if first in self.known_dirs:
            return True
        return "." not in first and first not in GO_STDLIB_ROOTS

    def resolve(self, import_ref: str, base_rel: str, known: Set[str]) -> Optional[str]:
        if not self.is_local_import(import_ref):
            return None
        if self.module_path and import_ref.startswith(self.module_path):
            rel_dir = import_ref[len(self.module_path):].strip("/")
        else:
            rel_dir = import_ref.strip("/")

        package_files = sorted(
            p for p in known
            if PurePosixPath(p).parent.as_posix() == (rel_dir or ".")
            and not self.is_test_file(p)
            and PurePosixPath(p).name != "doc.go"
        )
        return package_files[0] if package_files else None


# =============================================================================
# BUILDER
# =============================================================================


class DependencyGraphBuilder:
    """
    Builds a DependencyGraph for the dominant language of a file inventory.

    Usage:
        builder = DependencyGraphBuilder("/path/to/project")
        graph = builder.analyze_dependencies(project.files)
        score = builder.calculate_centrality(graph, "pkg/core.py")
    """

    def __init__(self, project_root: str | Path, config: Optional[GraphBuilderConfig] = None):
        self.project_root = Path(project_root)
        self.config = config or GraphBuilderConfig()

    def _analyzer_for(self, language: str, rel_paths: Iterable[str]):
        if language == "python":
            return PythonImportAnalyzer()
        if language == "go":
            dirs = {PurePosixPath(p).parts[0] for p in rel_paths if len(PurePosixPath(p).parts) > 1}
            return GoImportAnalyzer(self.project_root, known_dirs=dirs)
        return None

    @staticmethod
    def dominant_language(files: Sequence[FileInfo]) -> Optional[str]:
        counts = Counter(f.language for f in files if f.language and f.language != "unknown")
        if not counts:
            return None
        return sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]

    def analyze_dependencies(
        self,
        files: Sequence[FileInfo],
        cancel_event: Optional[threading.Event] = None,
    ) -> DependencyGraph:
        language = self.dominant_language(files)
        lang_files = [f for f in files if f.language == language]
        rels = [relative_path(f.path, self.project_root) for f in lang_files]
        analyzer = self._analyzer_for(language or "", rels)
        if analyzer is None:
            logger.debug(f"No dependency analyzer for dominant language '{language}', returning empty graph")
            return DependencyGraph()

        graph = DependencyGraph()
        sources: List[Tuple[str, FileInfo]] = []
        for rel, info in zip(rels, lang_files):
            if analyzer.is_test_file(rel) or rel in graph.nodes:
                continue
            graph.nodes[rel] = DependencyNode(path=rel)
            sources.append((rel, info))

        known = set(graph.nodes)
        skipped = 0
        for index, (rel, info) in enumerate(sources):
            if cancel_event is not None and cancel_event.is_set():
                raise GraphBuildCancelled(graph, index, len(sources))

            source = self._read_source(info.path, rel)
            if source is None:
                skipped += 1
                continue
            try:
                imports, exports = analyzer.parse(source)
            except (SyntaxError, ValueError) as e:
                logger.debug(f"Skipping {rel}: parse failed ({e})")
                skipped += 1
                continue

            node = graph.nodes[rel]
            node.imports = imports
            node.exports = exports

            linked: Set[str] = set()
            for import_ref in imports:
                target = analyzer.resolve(import_ref, rel, known)
                if target and target != rel and target not in linked:
                    linked.add(target)
                    graph.add_edge(rel, target)

        logger.debug(
            f"Dependency graph ({language}): {len(graph.nodes)} nodes, "
            f"{len(graph.edges)} edges, {skipped} skipped"
        )
        return graph

    def _read_source(self, path: str, rel: str) -> Optional[str]:
        p = Path(path)
        if not p.is_absolute():
            p = self.project_root / rel
        try:
            if p.stat().st_size > self.config.max_file_bytes:
                logger.debug(f"Skipping {rel}: larger than {self.config.max_file_bytes} bytes")
                return None
            return p.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.debug(f"Skipping {rel}: {e}")
            return None

    def calculate_centrality(self, graph: DependencyGraph, path: str) -> float:
        return centrality(graph, relative_path(path, self.project_root))

    def get_dependents(self, graph: DependencyGraph, path: str) -> List[str]:
        node = graph.nodes.get(relative_path(path, self.project_root))
        return list(node.dependents) if node else []

    def get_file_dependencies(self, path: str) -> List[str]:
        """Project-local files imported by ``path``, resolved against the working tree."""
        rel = relative_path(path, self.project_root)
        suffix = PurePosixPath(rel).suffix
        if suffix == ".py":
            language = "python"
        elif suffix == ".go":
            language = "go"
        else:
            return []

        known = {
            p.relative_to(self.project_root).as_posix()
            for p in self.project_root.rglob(f"*{suffix}")
            if p.is_file()
        }
        analyzer = self._analyzer_for(language, known)
        source = self._read_source(path, rel)
        if analyzer is None or source is None:
            return []
        try:
            imports, _ = analyzer.parse(source)
        except (SyntaxError, ValueError) as e:
            logger.debug(f"Cannot list dependencies of {rel}: {e}")
            return []

        resolved: List[str] = []
        for import_ref in imports:
            target = analyzer.resolve(import_ref, rel, known)
            if target and target != rel and target not in resolved:
                resolved.append(target)
        return resolved

"""
Project analyzer.

Walks a project directory and produces the ProjectContext snapshot the rest
of the engine ranks: per-file language, type, token estimate and mtime, plus
the dependency graph of the dominant language.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from fnmatch import fnmatch
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional

from loguru import logger

from ..schemas import FileInfo, ProjectContext
from .config import AnalyzerConfig
from .dependency_graph import DependencyGraphBuilder
from .token_counter import HeuristicTokenCounter, TokenCounter


LANGUAGE_BY_EXTENSION: Dict[str, str] = {
    ".go": "go",
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".java": "java",
    ".cpp": "c++",
    ".cc": "c++",
    ".h": "c++",
    ".hpp": "c++",
    ".c": "c",
    ".rs": "rust",
    ".md": "markdown",
    ".yml": "yaml",
    ".yaml": "yaml",
    ".json": "json",
    ".toml": "toml",
    ".sh": "shell",
}

SOURCE_EXTENSIONS = (".go", ".py", ".js", ".jsx", ".ts", ".tsx", ".java", ".cpp", ".cc", ".c", ".h", ".hpp", ".rs")
DOC_EXTENSIONS = (".md", ".txt", ".rst")
CONFIG_EXTENSIONS = (".yml", ".yaml", ".json", ".toml", ".ini", ".cfg")
SCRIPT_EXTENSIONS = (".sh", ".bat", ".ps1")

ENTRY_POINT_NAMES = ("main.go", "main.py", "__main__.py", "app.py", "index.js", "index.ts", "main.rs")

LARGE_CODEBASE_TOKENS = 100_000


def detect_language(rel_path: str) -> str:
    return LANGUAGE_BY_EXTENSION.get(PurePosixPath(rel_path).suffix.lower(), "unknown")


def detect_file_type(rel_path: str) -> str:
    """source/test/documentation/configuration/script/unknown."""
    path = PurePosixPath(rel_path.lower())
    name = path.name
    suffix = path.suffix

    if name.endswith("_test.go"):
        return "test"
    if suffix == ".py" and (name.startswith("test_") or name.endswith("_test.py")):
        return "test"
    if suffix in (".js", ".jsx", ".ts", ".tsx") and (".test." in name or ".spec." in name):
        return "test"

    if suffix in SOURCE_EXTENSIONS:
        return "source"
    if suffix in DOC_EXTENSIONS:
        return "documentation"
    if suffix in CONFIG_EXTENSIONS:
        return "configuration"
    if suffix in SCRIPT_EXTENSIONS:
        return "script"
    if "test" in rel_path.lower():
        return "test"
    return "unknown"


class ProjectAnalyzer:
    """
    Builds a ProjectContext from a directory on disk.

    Usage:
        analyzer = ProjectAnalyzer()
        project = analyzer.analyze_project("/path/to/project")
    """

    def __init__(
        self,
        token_counter: Optional[TokenCounter] = None,
        config: Optional[AnalyzerConfig] = None,
        build_graph: bool = True,
    ):
        self.token_counter = token_counter or HeuristicTokenCounter()
        self.config = config or AnalyzerConfig()
        self.build_graph = build_graph

    def is_ignored(self, rel_path: str) -> bool:
        parts = PurePosixPath(rel_path).parts
        for pattern in self.config.ignore_patterns:
            if pattern.endswith("/*"):
                if pattern[:-2] in parts[:-1]:
                    return True
            elif fnmatch(parts[-1], pattern) or fnmatch(rel_path, pattern):
                return True
        return False

    def get_file_info(self, file_path: str | Path, root: str | Path) -> Optional[FileInfo]:
        """FileInfo for one file, or None when it is too large or unreadable."""
        path = Path(file_path)
        rel = path.relative_to(root).as_posix()
        try:
            stat = path.stat()
            if stat.st_size > self.config.max_file_size:
                logger.debug(f"Skipping {rel}: {stat.st_size} bytes exceeds limit")
                return None
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"Error reading {rel}: {e}")
            return None

        return FileInfo(
            path=rel,
            language=detect_language(rel),
            file_type=detect_file_type(rel),
            token_count=self.token_counter.count_tokens(content),
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            size=stat.st_size,
        )

    def analyze_project(self, project_path: str | Path) -> ProjectContext:
        root = Path(project_path).resolve()
        if not root.is_dir():
            raise FileNotFoundError(f"Project path does not exist: {project_path}")

        files: List[FileInfo] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames.sort()
            for filename in sorted(filenames):
                full = Path(dirpath) / filename
                rel = full.relative_to(root).as_posix()
                if self.is_ignored(rel):
                    continue
                info = self.get_file_info(full, root)
                if info is not None:
                    files.append(info)

        notes = [f"Entry point: {f.path}" for f in files if PurePosixPath(f.path).name in ENTRY_POINT_NAMES]
        graph = DependencyGraphBuilder(root).analyze_dependencies(files) if self.build_graph else None

        project = ProjectContext.from_files(str(root), files, dependency_graph=graph, analysis=notes)
        if project.total_tokens > LARGE_CODEBASE_TOKENS:
            project.analysis.append("Large codebase detected - context optimization recommended")

        logger.info(
            f"Analyzed project {root.name}: {project.total_files} files, "
            f"{project.total_tokens} tokens, languages={project.languages}"
        )
        return project

"""
Tests for the project analyzer (file inventory builder).
"""

from __future__ import annotations

from pathlib import Path

import pytest

from teeny_orb.modules.context_engine.config import AnalyzerConfig
from teeny_orb.modules.context_engine.project_analyzer import (
    ProjectAnalyzer,
    detect_file_type,
    detect_language,
)


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    files = {
        "main.py": "from app import service\n\nservice.run()\n",
        "app/__init__.py": "",
        "app/service.py": "def run():\n    return 1\n",
        "tests/test_service.py": "from app import service\n",
        "README.md": "# Demo\n",
        "config.yaml": "debug: true\n",
        "node_modules/pkg/index.js": "module.exports = {}\n",
        "debug.log": "noise\n",
    }
    for rel, content in files.items():
        path = tmp_path / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return tmp_path


class TestDetection:
    @pytest.mark.parametrize("path,expected", [
        ("pkg/store_test.go", "test"),
        ("tests/test_api.py", "test"),
        ("api_test.py", "test"),
        ("web/button.test.tsx", "test"),
        ("web/button.spec.js", "test"),
        ("cmd/main.go", "source"),
        ("app/models.py", "source"),
        ("docs/guide.md", "documentation"),
        ("notes.txt", "documentation"),
        ("settings.toml", "configuration"),
        ("deploy.sh", "script"),
        ("fixtures/testdata.bin", "test"),
        ("image.png", "unknown"),
    ])
    def test_file_type_rules(self, path, expected):
        assert detect_file_type(path) == expected

    def test_language_by_extension(self):
        assert detect_language("a/b.go") == "go"
        assert detect_language("x.PY") == "python"
        assert detect_language("ui.tsx") == "typescript"
        assert detect_language("Makefile") == "unknown"


class TestAnalyzeProject:
    def test_inventory_skips_ignored_paths(self, project_dir):
        project = ProjectAnalyzer().analyze_project(project_dir)

        paths = {f.path for f in project.files}
        assert paths == {
            "main.py", "app/__init__.py", "app/service.py",
            "tests/test_service.py", "README.md", "config.yaml",
        }
        assert project.total_files == 6
        assert project.total_tokens == sum(f.token_count for f in project.files)
        assert project.languages["python"] == 4
        assert project.root_path == str(project_dir.resolve())

    def test_file_metadata(self, project_dir):
        project = ProjectAnalyzer().analyze_project(project_dir)
        service = project.file_by_path("app/service.py")

        assert service.language == "python"
        assert service.file_type == "source"
        assert service.token_count > 0
        assert service.last_modified.tzinfo is not None
        assert project.file_by_path("tests/test_service.py").file_type == "test"

    def test_dependency_graph_and_notes(self, project_dir):
        project = ProjectAnalyzer().analyze_project(project_dir)

        graph = project.dependency_graph
        assert graph is not None
        assert "app/service.py" in graph.nodes["main.py"].dependencies
        assert "Entry point: main.py" in project.analysis

    def test_graph_can_be_skipped(self, project_dir):
        project = ProjectAnalyzer(build_graph=False).analyze_project(project_dir)
        assert project.dependency_graph is None

    def test_oversized_files_are_skipped(self, project_dir):
        (project_dir / "big.py").write_text("x = 1\n" * 100, encoding="utf-8")

        project = ProjectAnalyzer(config=AnalyzerConfig(max_file_size=200)).analyze_project(project_dir)

        assert project.file_by_path("big.py") is None
        assert project.file_by_path("main.py") is not None

    def test_missing_directory_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ProjectAnalyzer().analyze_project(tmp_path / "missing")

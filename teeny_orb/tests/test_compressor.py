"""
Tests for the Context Compressor.
"""

from __future__ import annotations

import pytest

from teeny_orb.modules.context_engine.compressor import ContextCompressor, placeholder_content
from teeny_orb.modules.context_engine.errors import UnknownCompressionStrategyError
from teeny_orb.modules.schemas import (
    CompressionStrategy,
    ContextFile,
    FileInfo,
    SelectedContext,
    Task,
    TaskType,
)


PYTHON_SOURCE = '''import os
from pathlib import Path


class Loader:
    """Loads things."""

    def load(self, path):
        # read the file
        data = Path(path).read_text()
        data = data.strip()
        lines = data.split("\\n")
        lines = [l for l in lines if l]
        return lines


def helper(x):
    return x + 1
'''

GO_SOURCE = '''package store

import (
    "fmt"
    "strings"
)

// Store keeps values.
type Store struct {
    items map[string]string
}

func NewStore() *Store {
    return &Store{items: map[string]string{}}
}

func (s *Store) Get(key string) string {
    /* lookup */
    v := s.items[key]
    fmt.Println(strings.ToUpper(v))
    return v
}
'''


def make_selection(*files: ContextFile) -> SelectedContext:
    return SelectedContext(
        task=Task(type=TaskType.REFACTOR, description="tidy loader"),
        files=list(files),
        total_tokens=sum(f.file_info.token_count for f in files),
        total_files=len(files),
    )


def source_file(path: str, language: str, content: str, tokens: int = 200) -> ContextFile:
    info = FileInfo(path=path, language=language, file_type="source", token_count=tokens)
    return ContextFile(file_info=info, relevance_score=0.9, content=content)


@pytest.fixture
def compressor():
    return ContextCompressor()


class TestEstimates:
    @pytest.mark.parametrize("strategy,expected", [
        ("none", 1.0),
        ("summary", 0.3),
        ("snippet", 0.4),
        ("minify", 0.8),
        ("semantic", 0.5),
        ("zip", 0.7),
    ])
    def test_estimate_compression_constants(self, compressor, strategy, expected):
        assert compressor.estimate_compression(None, strategy) == pytest.approx(expected)

    def test_quality_impact(self, compressor):
        assert compressor.estimate_quality_impact(CompressionStrategy.NONE, 0.1) == 1.0
        assert compressor.estimate_quality_impact(CompressionStrategy.SNIPPET, 0.4) == pytest.approx(0.8 - 0.6 * 0.3)
        assert compressor.estimate_quality_impact(CompressionStrategy.MINIFY, 1.0) == pytest.approx(0.95)

    def test_lists_all_strategies(self, compressor):
        assert set(compressor.get_compression_strategies()) == set(CompressionStrategy)


class TestCompress:
    def test_unknown_strategy_raises(self, compressor):
        with pytest.raises(UnknownCompressionStrategyError):
            compressor.compress(make_selection(), "zip")

    def test_none_keeps_content_and_tokens(self, compressor):
        selection = make_selection(source_file("loader.py", "python", PYTHON_SOURCE, tokens=321))

        result = compressor.compress(selection, CompressionStrategy.NONE)

        packed = result.compressed_files[0]
        assert packed.compressed_content == PYTHON_SOURCE
        assert packed.compressed_tokens == 321
        assert result.compression_ratio == pytest.approx(1.0)
        assert result.quality_score == 1.0

    def test_python_snippets_keep_imports_and_truncate_bodies(self, compressor):
        selection = make_selection(source_file("loader.py", "python", PYTHON_SOURCE))

        packed = compressor.compress(selection, "snippet").compressed_files[0]

        text = packed.compressed_content
        assert text.startswith("# SNIPPETS from loader.py")
        assert "import os" in text
        assert "from pathlib import Path" in text
        assert "    def load(self, path):" in text
        assert "... function body truncated ..." in text
        assert "        return lines" in text
        assert "def helper(x):" in text
        assert packed.techniques == ["snippets"]

    def test_python_minify_strips_comments_and_keeps_indentation(self, compressor):
        selection = make_selection(source_file("loader.py", "python", PYTHON_SOURCE))

        packed = compressor.compress(selection, CompressionStrategy.MINIFY).compressed_files[0]

        assert "# read the file" not in packed.compressed_content
        assert "        data = Path(path).read_text()" in packed.compressed_content
        assert "\n\n" not in packed.compressed_content
        assert packed.techniques == ["minify", "remove_comments", "remove_whitespace", "remove_empty_lines"]

    def test_go_summary_keeps_declarations_and_signatures(self, compressor):
        selection = make_selection(source_file("store/store.go", "go", GO_SOURCE))

        text = compressor.compress(selection, CompressionStrategy.SUMMARY).compressed_files[0].compressed_content

        assert text.startswith("// SUMMARY of store/store.go (go, 200 tokens)")
        assert "package store" in text
        assert "type Store struct {" in text
        assert "func NewStore() *Store { /* ... */ }" in text
        assert "return v" not in text

    def test_go_minify_removes_block_and_line_comments(self, compressor):
        selection = make_selection(source_file("store/store.go", "go", GO_SOURCE))

        text = compressor.compress(selection, "minify").compressed_files[0].compressed_content

        assert "Store keeps values" not in text
        assert "lookup" not in text
        assert "v := s.items[key]" in text

    def test_semantic_groups_sections(self, compressor):
        selection = make_selection(source_file("loader.py", "python", PYTHON_SOURCE))

        text = compressor.compress(selection, "semantic").compressed_files[0].compressed_content

        assert "# Imports:" in text
        assert "# Type Definitions:" in text
        assert "class Loader:" in text
        assert "# Functions:" in text
        assert "def helper(x): ..." in text

    def test_placeholder_used_without_content(self, compressor):
        info = FileInfo(path="lib/x.go", language="go", file_type="source", token_count=50)
        selection = make_selection(ContextFile(file_info=info))

        packed = compressor.compress(selection, CompressionStrategy.NONE).compressed_files[0]

        assert packed.compressed_content == placeholder_content(info)
        assert "// File: lib/x.go" in packed.compressed_content

    def test_generic_summary_for_unknown_language(self, compressor):
        content = "\n".join(f"line {i}" for i in range(20))
        selection = make_selection(source_file("notes.txt", "unknown", content))

        text = compressor.compress(selection, "summary").compressed_files[0].compressed_content

        assert "File with 20 lines" in text
        assert "line 0" in text
        assert "line 19" in text
        assert "line 10" not in text

    def test_failing_file_falls_back_to_original(self):
        class Exploding:
            def count_tokens(self, text):
                if "SNIPPETS" in text:
                    raise RuntimeError("tokenizer unavailable")
                return len(text.split())

        compressor = ContextCompressor(token_counter=Exploding())
        selection = make_selection(source_file("loader.py", "python", PYTHON_SOURCE, tokens=100))

        packed = compressor.compress(selection, "snippet").compressed_files[0]

        assert packed.techniques == ["fallback_original"]
        assert packed.compressed_content == PYTHON_SOURCE
        assert packed.compressed_tokens == 100

    def test_to_selected_context_carries_compressed_tokens(self, compressor):
        selection = make_selection(source_file("loader.py", "python", PYTHON_SOURCE, tokens=500))

        result = compressor.compress(selection, "summary")
        rebuilt = result.to_selected_context()

        assert rebuilt.files[0].content == result.compressed_files[0].compressed_content
        assert rebuilt.total_tokens == result.compressed_files[0].compressed_tokens
        assert rebuilt.total_tokens < 500
        assert rebuilt.metadata["compression_strategy"] == "summary"
        assert rebuilt.metadata["original_tokens"] == 500

"""
Context Compressor.

Applies one lossy reduction technique to every file of a selection and
estimates the quality cost of doing so:

- none:     passthrough
- summary:  package/import/type declarations and function signatures only
- snippet:  imports plus the head and tail of every function
- minify:   strip comments, collapse whitespace, drop blank lines
- semantic: grouped digest of package, imports, types and signatures

Files without pre-loaded content get a metadata placeholder. A failure on
one file keeps that file uncompressed; it never fails the selection.
"""

from __future__ import annotations

import io
import re
import time
import tokenize
from typing import Dict, List, Optional, Tuple

from loguru import logger

from ..schemas import (
    CompressedContext,
    CompressedFile,
    CompressionStrategy,
    FileInfo,
    SelectedContext,
)
from .config import CompressionConfig
from .errors import UnknownCompressionStrategyError
from .token_counter import HeuristicTokenCounter, TokenCounter


JS_LANGUAGES = ("javascript", "typescript")
HASH_COMMENT_LANGUAGES = ("python", "yaml", "shell")

_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT = re.compile(r"(?<![:\"'])//.*$", re.MULTILINE)
_INNER_SPACES = re.compile(r"(?<=\S)[ \t]{2,}")
_JS_TYPE = re.compile(r"^\s*(export\s+)?(default\s+)?(abstract\s+)?(class|interface|enum)\s+\w+|^\s*(export\s+)?type\s+\w+\s*=")


def coerce_strategy(strategy: object) -> CompressionStrategy:
    if isinstance(strategy, CompressionStrategy):
        return strategy
    try:
        return CompressionStrategy(str(strategy))
    except ValueError:
        raise UnknownCompressionStrategyError(strategy) from None


def placeholder_content(info: FileInfo) -> str:
    return f"// File: {info.path}\n// Tokens: {info.token_count}\n// Type: {info.file_type}\n"


def _comment_prefix(language: str) -> str:
    return "#" if language in HASH_COMMENT_LANGUAGES else "//"


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip())


class ContextCompressor:
    """
    Compresses a SelectedContext with a single strategy.

    Usage:
        compressor = ContextCompressor()
        packed = compressor.compress(selection, CompressionStrategy.SNIPPET)
        slimmer = packed.to_selected_context()
    """

    def __init__(
        self,
        token_counter: Optional[TokenCounter] = None,
        config: Optional[CompressionConfig] = None,
    ):
        self.token_counter = token_counter or HeuristicTokenCounter()
        self.config = config or CompressionConfig()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def get_compression_strategies(self) -> List[CompressionStrategy]:
        return list(CompressionStrategy)

    def estimate_compression(self, selection: Optional[SelectedContext], strategy: object) -> float:
        """Planning estimate of the compressed/original ratio. Does no work."""
        try:
            key = coerce_strategy(strategy).value
        except UnknownCompressionStrategyError:
            return self.config.unknown_estimate
        return self.config.estimates.get(key, self.config.unknown_estimate)

    def estimate_quality_impact(self, strategy: object, ratio: float) -> float:
        try:
            strat = coerce_strategy(strategy)
        except UnknownCompressionStrategyError:
            return 0.7
        if strat == CompressionStrategy.NONE:
            return 1.0
        base = self.config.quality_base.get(strat.value, 0.7)
        sensitivity = self.config.quality_sensitivity.get(strat.value, 0.0)
        ratio = max(0.0, min(1.0, ratio))
        return max(0.0, min(1.0, base - (1.0 - ratio) * sensitivity))

    def compress(self, selection: SelectedContext, strategy: object) -> CompressedContext:
        strat = coerce_strategy(strategy)
        started = time.perf_counter()

        packed_files: List[CompressedFile] = []
        total_original = 0
        total_compressed = 0

        for cf in selection.files:
            info = cf.file_info
            content = cf.content if cf.content else placeholder_content(info)
            original_tokens = info.token_count or self.token_counter.count_tokens(content)

            try:
                compressed, techniques = self._compress_text(content, info, strat)
                if strat == CompressionStrategy.NONE:
                    compressed_tokens = original_tokens
                else:
                    compressed_tokens = self.token_counter.count_tokens(compressed)
            except Exception as e:
                logger.warning(f"Compression failed for {info.path} ({strat.value}): {e}. Keeping original content")
                compressed, techniques = content, ["fallback_original"]
                compressed_tokens = original_tokens

            ratio = compressed_tokens / original_tokens if original_tokens > 0 else 1.0
            packed_files.append(CompressedFile(
                original_path=info.path,
                compressed_content=compressed,
                original_tokens=original_tokens,
                compressed_tokens=compressed_tokens,
                compression_ratio=ratio,
                method=strat.value,
                techniques=techniques,
                quality_impact=self.estimate_quality_impact(strat, ratio),
            ))
            total_original += original_tokens
            total_compressed += compressed_tokens

        overall_ratio = total_compressed / total_original if total_original > 0 else 1.0
        result = CompressedContext(
            original=selection,
            compressed_files=packed_files,
            compression_ratio=overall_ratio,
            token_reduction=total_original - total_compressed,
            strategy=strat,
            quality_score=self.estimate_quality_impact(strat, overall_ratio),
            compression_time=time.perf_counter() - started,
        )
        logger.debug(
            f"Compressed {len(packed_files)} files with {strat.value}: "
            f"{total_original} -> {total_compressed} tokens (ratio {overall_ratio:.2f})"
        )
        return result

    # -------------------------------------------------------------------------
    # Strategy dispatch
    # -------------------------------------------------------------------------

    def _compress_text(self, content: str, info: FileInfo, strategy: CompressionStrategy) -> Tuple[str, List[str]]:
        if strategy == CompressionStrategy.NONE:
            return content, ["none"]
        if strategy == CompressionStrategy.SUMMARY:
            return self._summary(content, info), ["summary"]
        if strategy == CompressionStrategy.SNIPPET:
            return self._snippets(content, info), ["snippets"]
        if strategy == CompressionStrategy.MINIFY:
            return self._minify(content, info)
        if strategy == CompressionStrategy.SEMANTIC:
            return self._semantic(content, info), ["semantic"]
        raise UnknownCompressionStrategyError(strategy)

    # -------------------------------------------------------------------------
    # summary
    # -------------------------------------------------------------------------

    def _summary(self, content: str, info: FileInfo) -> str:
        c = _comment_prefix(info.language)
        header = f"{c} SUMMARY of {info.path} ({info.language}, {info.token_count} tokens)\n"
        lines = content.split("\n")

        kept: List[str] = []
        if info.language == "go":
            for line in lines:
                stripped = line.strip()
                if stripped.startswith(("package ", "type ")) or self._is_import_line(line, "go"):
                    kept.append(line)
                elif stripped.startswith("func "):
                    kept.append(self._signature(line, "go"))
        elif info.language == "python":
            for line in lines:
                stripped = line.strip()
                if self._is_import_line(line, "python") or stripped.startswith(("class ", "@")):
                    kept.append(line)
                elif self._is_function_start(line, "python"):
                    kept.append(self._signature(line, "python"))
        elif info.language in JS_LANGUAGES:
            for line in lines:
                if self._is_import_line(line, info.language) or _JS_TYPE.match(line):
                    kept.append(line)
                elif self._is_function_start(line, info.language):
                    kept.append(self._signature(line, info.language))
        else:
            return header + self._generic_summary(lines, c)

        return header + "".join(line + "\n" for line in kept)

    def _generic_summary(self, lines: List[str], c: str) -> str:
        n = self.config.generic_summary_lines
        out = f"File with {len(lines)} lines\n"
        if len(lines) <= 10:
            return out + "\n".join(lines)
        out += f"{c} First {n} lines:\n" + "".join(l + "\n" for l in lines[:n])
        out += f"{c} ... content truncated ...\n"
        out += f"{c} Last {n} lines:\n" + "".join(l + "\n" for l in lines[-n:])
        return out

    # -------------------------------------------------------------------------
    # snippet
    # -------------------------------------------------------------------------

    def _snippets(self, content: str, info: FileInfo) -> str:
        language = info.language
        c = _comment_prefix(language)
        lines = content.split("\n")
        out: List[str] = [f"{c} SNIPPETS from {info.path}"]

        if self.config.preserve_imports:
            out.extend(line for line in lines if self._is_import_line(line, language))
            out.append("")

        head_len = self.config.min_function_lines + 1
        tail_len = self.config.snippet_context_lines
        covered_until = -1

        for i, line in enumerate(lines):
            if i <= covered_until or not self._is_function_start(line, language):
                continue
            end = self._function_end(lines, i, language)
            covered_until = end
            head_end = min(end + 1, i + head_len)
            out.extend(lines[i:head_end])
            if end >= head_end:
                out.append(" " * (_indent(line) + 4) + f"{c} ... function body truncated ...")
                tail_start = max(head_end, end - tail_len + 1)
                out.extend(lines[tail_start:end + 1])
            out.append("")

        return "\n".join(out) + "\n"

    def _function_end(self, lines: List[str], start: int, language: str) -> int:
        """Index of the last line belonging to the function starting at ``start``."""
        if language == "python":
            base = _indent(lines[start])
            # Signatures may wrap; the body starts once parentheses balance
            sig_end = start
            depth = 0
            while sig_end < len(lines):
                depth += lines[sig_end].count("(") - lines[sig_end].count(")")
                if depth <= 0:
                    break
                sig_end += 1
            end = min(sig_end, len(lines) - 1)
            for j in range(end + 1, len(lines)):
                line = lines[j]
                if not line.strip():
                    continue
                if _indent(line) <= base:
                    break
                end = j
            return end

        depth = 0
        opened = False
        for j in range(start, len(lines)):
            depth += lines[j].count("{") - lines[j].count("}")
            if "{" in lines[j]:
                opened = True
            if opened and depth <= 0:
                return j
        return start if not opened else len(lines) - 1

    # -------------------------------------------------------------------------
    # minify
    # -------------------------------------------------------------------------

    def _minify(self, content: str, info: FileInfo) -> Tuple[str, List[str]]:
        techniques = ["minify"]
        if not self.config.preserve_comments:
            content = self._remove_comments(content, info.language)
            techniques.append("remove_comments")

        collapsed = [_INNER_SPACES.sub(" ", line.rstrip()) for line in content.split("\n")]
        techniques.append("remove_whitespace")

        non_empty = [line for line in collapsed if line.strip()]
        techniques.append("remove_empty_lines")
        return "\n".join(non_empty), techniques

    def _remove_comments(self, content: str, language: str) -> str:
        if language == "go" or language in JS_LANGUAGES:
            content = _BLOCK_COMMENT.sub("", content)
            return _LINE_COMMENT.sub("", content)
        if language == "python":
            return self._strip_python_comments(content)
        return content

    @staticmethod
    def _strip_python_comments(content: str) -> str:
        try:
            tokens = list(tokenize.generate_tokens(io.StringIO(content).readline))
        except (tokenize.TokenError, IndentationError, SyntaxError):
            return "\n".join(line for line in content.split("\n") if not line.lstrip().startswith("#"))

        lines = content.split("\n")
        for tok in reversed(tokens):
            if tok.type == tokenize.COMMENT:
                row, col = tok.start
                line = lines[row - 1]
                lines[row - 1] = line[:col].rstrip()
        return "\n".join(lines)

    # -------------------------------------------------------------------------
    # semantic
    # -------------------------------------------------------------------------

    def _semantic(self, content: str, info: FileInfo) -> str:
        language = info.language
        c = _comment_prefix(language)
        lines = content.split("\n")
        out: List[str] = [f"{c} SEMANTIC COMPRESSION of {info.path}"]

        if language == "go":
            package = next((l for l in lines if l.strip().startswith("package ")), None)
            if package:
                out.append(package)

        imports = [l.strip() for l in lines if self._is_import_line(l, language)]
        if imports:
            out.append(f"{c} Imports:")
            out.extend(imports)
            out.append("")

        types = [l for l in lines if self._is_type_definition(l, language)]
        if types:
            out.append(f"{c} Type Definitions:")
            out.extend(types)
            out.append("")

        functions = [self._signature(l, language) for l in lines if self._is_function_start(l, language)]
        if functions:
            out.append(f"{c} Functions:")
            out.extend(functions)

        return "\n".join(out) + "\n"

    # -------------------------------------------------------------------------
    # Line classification
    # -------------------------------------------------------------------------

    @staticmethod
    def _is_import_line(line: str, language: str) -> bool:
        stripped = line.strip()
        if language == "go":
            return stripped.startswith("import ") or (stripped.startswith('"') and "import" in line)
        if language in JS_LANGUAGES:
            return stripped.startswith("import ") or "require(" in stripped
        if language == "python":
            return stripped.startswith(("import ", "from ")) and _indent(line) == 0
        lowered = stripped.lower()
        return "import" in lowered or "include" in lowered

    @staticmethod
    def _is_function_start(line: str, language: str) -> bool:
        stripped = line.strip()
        if language == "go":
            return stripped.startswith("func ")
        if language in JS_LANGUAGES:
            return "function " in stripped or ("=>" in stripped and "=" in stripped.replace("=>", ""))
        if language == "python":
            return stripped.startswith(("def ", "async def "))
        return False

    @staticmethod
    def _is_type_definition(line: str, language: str) -> bool:
        stripped = line.strip()
        if language == "go":
            return stripped.startswith("type ")
        if language == "python":
            return stripped.startswith("class ")
        if language in JS_LANGUAGES:
            return bool(_JS_TYPE.match(line))
        return False

    @staticmethod
    def _signature(line: str, language: str) -> str:
        text = line.rstrip()
        if language == "python":
            return text + " ..."
        if text.endswith("{"):
            text = text[:-1].rstrip()
        return text + " { /* ... */ }"

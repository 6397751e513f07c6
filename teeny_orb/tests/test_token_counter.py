"""Tests for the heuristic token estimator."""

from __future__ import annotations

from teeny_orb.modules.context_engine.token_counter import HeuristicTokenCounter


def test_empty_text_is_zero():
    assert HeuristicTokenCounter().count_tokens("") == 0


def test_words_scaled_by_subword_factor():
    # 2 words * 1.2
    assert HeuristicTokenCounter().count_tokens("hello world") == 2


def test_punctuation_and_symbols_counted():
    # 3 words + 1 punctuation (;) + 2 symbols (= +) = 6, * 1.2
    assert HeuristicTokenCounter().count_tokens("a = b + c;") == 7


def test_language_multiplier():
    counter = HeuristicTokenCounter()
    text = "func main() { fmt.Println(x) }"

    assert counter.count_tokens_with_language(text, "go") == int(counter.count_tokens(text) * 1.3)
    assert counter.count_tokens_with_language(text, "cobol") == counter.count_tokens(text)


def test_custom_multipliers_override_defaults():
    counter = HeuristicTokenCounter(multipliers={"go": 2.0})
    assert counter.count_tokens_with_language("one two three four five", "go") == 12


def test_statistics(tmp_path):
    counter = HeuristicTokenCounter()
    stats = counter.statistics("x = 1\ny = 2\n")

    assert stats.lines == 3
    assert stats.words == 4
    assert stats.total_tokens == counter.count_tokens("x = 1\ny = 2\n")

    path = tmp_path / "a.txt"
    path.write_text("alpha beta gamma", encoding="utf-8")
    assert counter.count_file(path) == 3

import pytest

from cligate.prompting import (
    build_prompt,
    detect_task_type,
    estimate_tokens,
    load_rules,
    rules_stats,
    smart_build_prompt,
)

RULES = "## Core Rules\n- Keep functions small.\n"


@pytest.mark.parametrize(
    "prompt,expected",
    [
        ("Review this code for bugs", "code_review"),
        ("Implement a circuit breaker pattern", "implementation"),
        ("Fix the authentication error", "debugging"),
        ("Refactor this function for better performance", "refactoring"),
        ("Explain how async/await works", "explanation"),
        ("Translate this sentence into French", "general"),
    ],
)
def test_detect_task_type(prompt, expected):
    assert detect_task_type(prompt) == expected


def test_detect_task_type_matches_word_starts():
    # "padding" must not read as "add"
    assert detect_task_type("Set padding to zero") == "general"
    assert detect_task_type("Adding a column") == "implementation"


@pytest.mark.parametrize("text,tokens", [("Hello World", 3), ("", 0), ("abcd", 1)])
def test_estimate_tokens(text, tokens):
    assert estimate_tokens(text) == tokens


def test_smart_build_prompt_includes_rules_for_code_tasks():
    out = smart_build_prompt("Implement error handling", rules=RULES)
    assert out.startswith("# Context and Rules\n" + RULES)
    assert "Core Rules" in out
    assert out.endswith("# Task\nImplement error handling")
    assert len(out) > len("Implement error handling")


def test_smart_build_prompt_skips_rules_for_explanations():
    out = smart_build_prompt("Explain how the GIL works", rules=RULES)
    assert out == "# Task\nExplain how the GIL works"


def test_build_prompt_sections():
    out = build_prompt("Test task", rules=RULES, context="This is additional context", task_type="implementation")
    assert "# Context and Rules" in out
    assert "# Additional Context\nThis is additional context\n\n" in out
    assert out.index("# Additional Context") < out.index("# Task")
    assert out.endswith("# Task\nTest task")


def test_build_prompt_without_rules_is_minimal():
    out = build_prompt("Casual question", rules=RULES, include_rules=False)
    assert out == "# Task\nCasual question"
    assert len(out) < 100


def test_build_prompt_without_type_includes_rules():
    assert "# Context and Rules" in build_prompt("anything", rules=RULES)
    assert "# Context and Rules" not in build_prompt("anything", rules=RULES, task_type="general")


def test_rules_file_loading(tmp_path):
    path = tmp_path / "CORE_RULES.md"
    assert load_rules(path) == ""
    stats = rules_stats(path)
    assert stats.loaded is False
    assert stats.tokens == 0

    path.write_text(RULES)
    assert load_rules(path) == RULES
    stats = rules_stats(path)
    assert stats.loaded is True
    assert stats.tokens == estimate_tokens(RULES)
    assert stats.path == path

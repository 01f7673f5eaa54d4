from localchat.sessions.schema import ChatSession, Message
from localchat.tokens import (
    calculate_context_usage,
    conversation_token_usage,
    estimate_json_token_count,
    estimate_token_count,
    format_context_size,
)


def test_empty_text_is_zero():
    assert estimate_token_count("") == 0
    assert estimate_token_count("   \n\t") == 0
    assert estimate_json_token_count(None) == 0


def test_word_heuristic():
    assert estimate_token_count("hello") == 2
    assert estimate_token_count("hello world") == 3
    assert estimate_token_count("  hello \n\n world  ") == 3


def test_punctuation_non_ascii_and_digits_add_weight():
    assert estimate_token_count("hello, world!") == 5
    assert estimate_token_count("olá") == 3
    assert estimate_token_count("12345") == 4


def test_appending_words_never_decreases_estimate():
    text = ""
    previous = 0
    for word in ["alpha", "beta,", "42", "ção", "(x)", "end."]:
        text = f"{text} {word}".strip()
        current = estimate_token_count(text)
        assert current >= previous
        previous = current


def test_format_context_size():
    assert format_context_size(999) == "999 tokens"
    assert format_context_size(4096) == "4.1K tokens"
    assert format_context_size(131072) == "131K tokens"


def test_calculate_context_usage_is_capped():
    assert calculate_context_usage(1024, 4096) == 25
    assert calculate_context_usage(10_000, 4096) == 100


def test_conversation_usage_sums_messages_input_and_extra():
    session = ChatSession(
        messages=[Message(role="user", content="hello world"), Message(role="assistant", content="hi")]
    )
    assert conversation_token_usage(session, "hello", 10) == 3 + 2 + 2 + 10
    assert conversation_token_usage(None, "hello") == 2

from shared.observability import (
    bind_request_context,
    current_request_id,
    describe_text,
    hash_payload,
    reset_request_context,
)


def test_describe_text_does_not_leak_message() -> None:
    described = describe_text("salary 3000")

    assert described["chars"] == 11
    assert "salary" not in str(described)
    assert described == describe_text("salary 3000")
    assert described != describe_text("salary 3001")


def test_hash_payload_is_stable_for_mappings() -> None:
    assert hash_payload({"b": 1, "a": 2}) == hash_payload({"a": 2, "b": 1})
    assert hash_payload("x") == hash_payload(b"x")


def test_request_context_binding_is_scoped() -> None:
    token = bind_request_context("req-1")
    try:
        assert current_request_id() == "req-1"
    finally:
        reset_request_context(token)

    assert current_request_id() is None

"""Tests for request validation and prompt sanitization."""

import pytest

from daygent.errors import ErrorKind, ValidationError
from daygent.schemas import ChatMessage, LLMRequest, Role
from daygent.validation import (
    MAX_CONTENT_LENGTH,
    sanitize_prompt_content,
    validate_and_sanitize_request,
    validate_request,
)


def _payload(**overrides):
    payload = {
        "model": "gpt-3.5-turbo",
        "messages": [{"role": "user", "content": "Hello"}],
    }
    payload.update(overrides)
    return payload


def _messages(n):
    return [{"role": "user", "content": f"message {i}"} for i in range(n)]


class TestValidateRequest:
    """Test structural validation."""

    def test_valid_minimal_request(self):
        """A model and one message is enough."""
        request = validate_request(_payload())

        assert isinstance(request, LLMRequest)
        assert request.model == "gpt-3.5-turbo"
        assert request.messages == [ChatMessage(Role.USER, "Hello")]
        assert request.temperature is None
        assert request.max_tokens is None

    def test_accepts_llm_request_instance(self):
        """An LLMRequest passes through validation."""
        original = LLMRequest(
            model="gpt-4o",
            messages=[ChatMessage(Role.SYSTEM, "Be brief"), ChatMessage(Role.USER, "Hi")],
            temperature=0.5,
            max_tokens=100,
        )
        request = validate_request(original)

        assert request.model == "gpt-4o"
        assert [m.role for m in request.messages] == [Role.SYSTEM, Role.USER]
        assert request.temperature == 0.5
        assert request.max_tokens == 100

    def test_missing_payload(self):
        with pytest.raises(ValidationError) as exc:
            validate_request(None)
        assert exc.value.field == "request"

    @pytest.mark.parametrize("count", [1, 2, 50, 100])
    def test_message_count_within_bounds(self, count):
        """1 to 100 well-formed messages validate."""
        request = validate_request(_payload(messages=_messages(count)))
        assert len(request.messages) == count

    @pytest.mark.parametrize("count", [0, 101, 150])
    def test_message_count_out_of_bounds(self, count):
        """0 or more than 100 messages fail."""
        with pytest.raises(ValidationError) as exc:
            validate_request(_payload(messages=_messages(count)))
        assert exc.value.field == "messages"

    def test_messages_must_be_a_list(self):
        with pytest.raises(ValidationError):
            validate_request(_payload(messages="Hello"))
        with pytest.raises(ValidationError):
            validate_request(_payload(messages=None))

    @pytest.mark.parametrize("model", ["", None, 42, "m" * 101])
    def test_invalid_model(self, model):
        with pytest.raises(ValidationError) as exc:
            validate_request(_payload(model=model))
        assert exc.value.field == "model"

    def test_model_at_max_length(self):
        assert validate_request(_payload(model="m" * 100)).model == "m" * 100

    def test_invalid_role_names_the_message(self):
        """The offending message index is reported."""
        messages = [{"role": "user", "content": "ok"}, {"role": "tool", "content": "x"}]
        with pytest.raises(ValidationError) as exc:
            validate_request(_payload(messages=messages))
        assert exc.value.field == "messages[1].role"

    def test_empty_content(self):
        with pytest.raises(ValidationError) as exc:
            validate_request(_payload(messages=[{"role": "user", "content": ""}]))
        assert exc.value.field == "messages[0].content"

    def test_content_length_limit(self):
        at_limit = [{"role": "user", "content": "a" * MAX_CONTENT_LENGTH}]
        over_limit = [{"role": "user", "content": "a" * (MAX_CONTENT_LENGTH + 1)}]

        assert validate_request(_payload(messages=at_limit))
        with pytest.raises(ValidationError):
            validate_request(_payload(messages=over_limit))

    @pytest.mark.parametrize("temperature", [0, 0.7, 2, 2.0])
    def test_valid_temperature(self, temperature):
        assert validate_request(_payload(temperature=temperature)).temperature == float(temperature)

    @pytest.mark.parametrize("temperature", [-0.1, 2.1, "hot", True])
    def test_invalid_temperature(self, temperature):
        with pytest.raises(ValidationError) as exc:
            validate_request(_payload(temperature=temperature))
        assert exc.value.field == "temperature"

    @pytest.mark.parametrize("temperature", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_temperature(self, temperature):
        with pytest.raises(ValidationError) as exc:
            validate_request(_payload(temperature=temperature))
        assert exc.value.field == "temperature"

    @pytest.mark.parametrize("max_tokens", [1, 500, 100_000])
    def test_valid_max_tokens(self, max_tokens):
        assert validate_request(_payload(max_tokens=max_tokens)).max_tokens == max_tokens

    @pytest.mark.parametrize("max_tokens", [0, -5, 100_001, 1.5, False])
    def test_invalid_max_tokens(self, max_tokens):
        with pytest.raises(ValidationError) as exc:
            validate_request(_payload(max_tokens=max_tokens))
        assert exc.value.field == "max_tokens"

    def test_error_payload(self):
        """Validation errors carry the validation kind and the field."""
        with pytest.raises(ValidationError) as exc:
            validate_request(_payload(model=""))

        assert exc.value.kind == ErrorKind.VALIDATION
        payload = exc.value.to_dict()
        assert payload["kind"] == "validation"
        assert payload["field"] == "model"
        assert "model" in payload["message"]
        assert isinstance(exc.value, ValueError)


class TestSanitizePromptContent:
    """Test injection-pattern stripping."""

    def test_plain_text_unchanged(self):
        assert sanitize_prompt_content("Summarize this issue") == "Summarize this issue"

    def test_strips_null_bytes(self):
        assert sanitize_prompt_content("a\x00b") == "ab"

    def test_strips_template_markers(self):
        assert sanitize_prompt_content("Hi {{user.secret}} there") == "Hi  there"

    def test_strips_script_blocks(self):
        assert sanitize_prompt_content("<script>alert(1)</script>hello") == "hello"
        assert sanitize_prompt_content("<SCRIPT type='x'>bad()</SCRIPT>ok") == "ok"

    def test_unclosed_script_tag_is_kept(self):
        """Only complete open/close pairs are removed."""
        assert sanitize_prompt_content("<script>alert(1)") == "<script>alert(1)"

    def test_strips_javascript_protocol(self):
        assert sanitize_prompt_content("click JavaScript:alert(1)") == "click alert(1)"

    def test_strips_event_handlers(self):
        assert sanitize_prompt_content("<img onerror=alert(1)>") == "<img alert(1)>"
        assert sanitize_prompt_content('<a onClick = "x">') == '<a  "x">'

    def test_collapses_whitespace(self):
        assert sanitize_prompt_content("a\n\n\nb") == "a  b"
        assert sanitize_prompt_content("a  b") == "a  b"
        assert sanitize_prompt_content("a \t \n b") == "a  b"

    def test_trims(self):
        assert sanitize_prompt_content("   padded   ") == "padded"

    def test_nested_pattern_is_fully_removed(self):
        """Stripping one pattern cannot leave another behind."""
        assert sanitize_prompt_content("jajavascript:vascript:alert") == "alert"

    def test_marker_split_across_lines(self):
        """Whitespace collapsing can join a marker, which is then removed."""
        assert sanitize_prompt_content("{{a   \n\n  b}}") == ""

    @pytest.mark.parametrize(
        "text",
        [
            "plain",
            "jajavascript:vascript:alert",
            "{{a   \n\n  b}}",
            "<scr<script></script>ipt>x</script>",
            "ononclick=click=",
            "  \x00{{x}}   <script>y</script>  z  ",
            "<script>never closed",
            "",
        ],
    )
    def test_idempotent(self, text):
        once = sanitize_prompt_content(text)
        assert sanitize_prompt_content(once) == once


class TestValidateAndSanitize:
    """Test the combined transform."""

    def test_sanitizes_every_message(self):
        request = validate_and_sanitize_request(
            _payload(
                messages=[
                    {"role": "system", "content": "  be   helpful  "},
                    {"role": "user", "content": "hi <script>x</script>"},
                ]
            )
        )

        assert [m.content for m in request.messages] == ["be  helpful", "hi"]

    def test_validation_runs_first(self):
        with pytest.raises(ValidationError):
            validate_and_sanitize_request(_payload(messages=[]))

"""
Unit tests for the curl request template parser.
"""

import base64

import pytest

from curlbridge.core.errors import ErrorKind, TemplateParseError
from curlbridge.engine.template import parse_request_template

OPENAI_CHAT = """curl https://api.openai.com/v1/chat/completions \\
  -H "Content-Type: application/json" \\
  -H "Authorization: Bearer sk-test" \\
  -d '{
    "model": "gpt-4o-mini",
    "messages": [{"role": "user", "content": "Hello!"}]
  }'"""


def test_parses_multiline_openai_template():
    parsed = parse_request_template(OPENAI_CHAT)

    assert parsed.method == "POST"
    assert parsed.url == "https://api.openai.com/v1/chat/completions"
    assert parsed.headers == {
        "Content-Type": "application/json",
        "Authorization": "Bearer sk-test",
    }
    assert parsed.body_template == {
        "model": "gpt-4o-mini",
        "messages": [{"role": "user", "content": "Hello!"}],
    }


def test_double_quoted_body_with_escaped_quotes():
    text = 'curl -X POST "https://tts.example.com/v1/speak" --data "{\\"text\\": \\"hi\\", \\"voice\\": \\"nova\\"}"'
    parsed = parse_request_template(text)
    assert parsed.body_template == {"text": "hi", "voice": "nova"}


def test_location_flag_and_explicit_method():
    parsed = parse_request_template("curl --location --request GET 'https://api.example.com/speak?lang=en'")
    assert parsed.method == "GET"
    assert parsed.url == "https://api.example.com/speak?lang=en"


def test_url_flag():
    parsed = parse_request_template("curl --url https://api.example.com/x -X put")
    assert parsed.url == "https://api.example.com/x"
    assert parsed.method == "PUT"


def test_glued_short_flag():
    parsed = parse_request_template("curl -XPATCH https://api.example.com/x")
    assert parsed.method == "PATCH"


def test_template_without_body_gives_empty_body():
    parsed = parse_request_template('curl "https://api.example.com/generate" -H "Accept: audio/mpeg"')
    assert parsed.body_template is None
    assert parsed.has_body is False
    assert parsed.method == "POST"


def test_duplicate_headers_last_write_wins_case_insensitive():
    parsed = parse_request_template(
        'curl https://a.example.com -H "X-Key: one" -H "x-key: two" -H "Accept: */*"'
    )
    assert parsed.headers == {"x-key": "two", "Accept": "*/*"}


def test_header_value_may_contain_colons():
    parsed = parse_request_template('curl https://a.example.com -H "X-Callback: https://cb.example.com:8080/x"')
    assert parsed.headers["X-Callback"] == "https://cb.example.com:8080/x"


def test_user_flag_becomes_basic_auth():
    parsed = parse_request_template("curl -u alice:secret https://a.example.com")
    expected = base64.b64encode(b"alice:secret").decode()
    assert parsed.headers["Authorization"] == f"Basic {expected}"


def test_json_flag_sets_content_type():
    parsed = parse_request_template("""curl https://a.example.com --json '{"a": 1}'""")
    assert parsed.headers["Content-Type"] == "application/json"
    assert parsed.body_template == {"a": 1}


def test_ignored_value_flags_are_not_mistaken_for_url():
    parsed = parse_request_template("curl -s --max-time 30 -o out.mp3 https://a.example.com/tts")
    assert parsed.url == "https://a.example.com/tts"


def test_get_flag_sets_method():
    parsed = parse_request_template("curl -G https://a.example.com/search")
    assert parsed.method == "GET"


# ── Rejections ─────────────────────────────────────────────────────────────────

def test_invalid_json_body_is_parse_error():
    with pytest.raises(TemplateParseError) as exc_info:
        parse_request_template("""curl https://a.example.com -d '{"model": '""")
    assert exc_info.value.kind is ErrorKind.CURL_PARSE_ERROR


@pytest.mark.parametrize(
    "text",
    [
        "",
        "   ",
        "wget https://a.example.com",
        "curl -H 'Accept: */*'",
        "curl https://a.example.com https://b.example.com",
        "curl /relative/path",
        "curl https://a.example.com -d '{}' -d '{}'",
        "curl https://a.example.com -H 'NoColonHeader'",
        "curl https://a.example.com -d '{\"a\": 1}",
        "curl https://a.example.com -X",
    ],
)
def test_ambiguous_or_malformed_templates_are_rejected(text):
    with pytest.raises(TemplateParseError):
        parse_request_template(text)


@pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity"])
def test_non_finite_json_literals_are_parse_errors(literal):
    with pytest.raises(TemplateParseError):
        parse_request_template(f"""curl https://a.example.com -d '{{"speed": {literal}}}'""")

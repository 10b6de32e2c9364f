"""
Unit tests for AdapterInvoker.

Providers are simulated with httpx.MockTransport; every failure is expected
back as an InvocationResult error, never as a raised exception.
"""

import asyncio
import base64
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from curlbridge.core.errors import AdapterError, ErrorKind
from curlbridge.engine.extractor import BinaryOutput, TextOutput
from curlbridge.engine.invoker import AdapterInvoker, InvocationResult
from curlbridge.engine.tokens import TokenManager
from curlbridge.models import AuthConfig, ProviderDescriptor
from curlbridge.services.provider_store import InMemoryProviderStore

CHAT_TEMPLATE = """curl https://llm.example.com/v1/chat/completions \\
  -H "Content-Type: application/json" \\
  -d '{"model": "small", "messages": [{"role": "user", "content": ""}]}'"""

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
MP3_BYTES = b"ID3\x04\x00" + b"\x22" * 64


# ── Fixtures ───────────────────────────────────────────────────────────────────

class Upstream:
    """Routes requests by URL to canned handlers and records what it saw."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = request.url
        route = self.routes[f"{url.scheme}://{url.host}{url.path}"]
        result = route(request)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def chat_descriptor(**overrides) -> ProviderDescriptor:
    fields = {
        "id": "chat-1",
        "name": "Chat",
        "request_template": CHAT_TEMPLATE,
        "request_path": "messages[0].content",
        "response_path": "choices[0].message.content",
        "response_encoding": "text",
    }
    fields.update(overrides)
    return ProviderDescriptor(**fields)


def sent_json(request: httpx.Request):
    return json.loads(request.content)


# ── Success paths ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_chat_invocation_places_input_and_extracts_reply():
    upstream = Upstream({
        "https://llm.example.com/v1/chat/completions":
            lambda r: httpx.Response(200, json={"choices": [{"message": {"content": "4"}}]}),
    })
    invoker = AdapterInvoker(upstream.client())

    result = await invoker.invoke(chat_descriptor(), "What is 2+2?", {"temperature": 0.2})

    assert result.ok
    assert result.output == TextOutput("4")
    body = sent_json(upstream.requests[0])
    assert body["messages"][0] == {"role": "user", "content": "What is 2+2?"}
    assert body["model"] == "small"
    assert body["temperature"] == 0.2
    assert upstream.requests[0].method == "POST"
    assert upstream.requests[0].headers["content-type"] == "application/json"


@pytest.mark.asyncio
async def test_default_request_path_used_when_descriptor_has_none():
    upstream = Upstream({
        "https://img.example.com/gen": lambda r: httpx.Response(200, content=PNG_BYTES),
    })
    descriptor = ProviderDescriptor(
        id="img", request_template="curl https://img.example.com/gen", response_encoding="binary"
    )

    result = await AdapterInvoker(upstream.client()).invoke(
        descriptor, "a fox", default_request_path="prompt", default_mime_type="image/png"
    )

    assert result.output == BinaryOutput(data=PNG_BYTES, mime_type="image/png")
    assert sent_json(upstream.requests[0]) == {"prompt": "a fox"}


@pytest.mark.asyncio
async def test_base64_invocation_decodes_audio():
    encoded = base64.b64encode(MP3_BYTES).decode()
    upstream = Upstream({
        "https://tts.example.com/speak": lambda r: httpx.Response(200, json={"audioContent": encoded}),
    })
    descriptor = ProviderDescriptor(
        id="tts",
        request_template="""curl https://tts.example.com/speak -d '{"input": {"text": ""}}'""",
        request_path="input.text",
        response_path="audioContent",
        response_encoding="base64",
    )

    result = await AdapterInvoker(upstream.client()).invoke(descriptor, "hello")

    assert result.output.data == MP3_BYTES
    assert result.output.mime_type == "audio/mpeg"


@pytest.mark.asyncio
async def test_url_invocation_fetches_asset():
    upstream = Upstream({
        "https://img.example.com/gen":
            lambda r: httpx.Response(200, json={"data": [{"url": "https://cdn.example.com/a.png"}]}),
        "https://cdn.example.com/a.png":
            lambda r: httpx.Response(200, content=PNG_BYTES, headers={"content-type": "image/png"}),
    })
    descriptor = ProviderDescriptor(
        id="img-url",
        request_template="""curl https://img.example.com/gen -d '{"prompt": ""}'""",
        request_path="prompt",
        response_path="data[0].url",
        response_encoding="url",
    )

    result = await AdapterInvoker(upstream.client()).invoke(descriptor, "a castle")

    assert result.output == BinaryOutput(data=PNG_BYTES, mime_type="image/png")
    assert [r.method for r in upstream.requests] == ["POST", "GET"]
    assert set(result.timings.stages) >= {"compose", "upstream", "extract", "secondary_fetch"}


@pytest.mark.asyncio
async def test_get_template_sends_query_and_no_body():
    upstream = Upstream({
        "https://tts.example.com/speak": lambda r: httpx.Response(200, content=MP3_BYTES),
    })
    descriptor = ProviderDescriptor(
        id="tts-get",
        request_template="curl -X GET 'https://tts.example.com/speak?lang=en'",
        request_path="text=",
        response_encoding="binary",
    )

    result = await AdapterInvoker(upstream.client()).invoke(descriptor, "hi there", {"voice": "v2"})

    assert result.ok
    sent = upstream.requests[0]
    assert sent.method == "GET"
    assert sent.url.params["text"] == "hi there"
    assert sent.url.params["voice"] == "v2"
    assert sent.url.params["lang"] == "en"
    assert sent.content == b""


@pytest.mark.asyncio
async def test_descriptor_is_not_mutated():
    upstream = Upstream({
        "https://llm.example.com/v1/chat/completions":
            lambda r: httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]}),
    })
    descriptor = chat_descriptor()
    before = descriptor.model_dump()

    await AdapterInvoker(upstream.client()).invoke(descriptor, "x", {"model": "big"})

    assert descriptor.model_dump() == before


# ── Failure classification ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_upstream_500_is_http_error_value():
    upstream = Upstream({
        "https://llm.example.com/v1/chat/completions":
            lambda r: httpx.Response(500, text="internal boom"),
    })

    result = await AdapterInvoker(upstream.client()).invoke(chat_descriptor(), "hi")

    assert not result.ok
    assert result.output is None
    assert result.error.kind is ErrorKind.UPSTREAM_HTTP_ERROR
    assert result.error.context["status_code"] == 500
    assert "internal boom" in result.error.context["body_preview"]


@pytest.mark.asyncio
async def test_error_body_preview_is_truncated():
    upstream = Upstream({
        "https://llm.example.com/v1/chat/completions": lambda r: httpx.Response(400, text="x" * 2000),
    })
    invoker = AdapterInvoker(upstream.client(), error_preview_chars=50)

    result = await invoker.invoke(chat_descriptor(), "hi")

    assert len(result.error.context["body_preview"]) == 53


@pytest.mark.asyncio
async def test_missing_response_path_is_path_resolution_error():
    upstream = Upstream({
        "https://llm.example.com/v1/chat/completions": lambda r: httpx.Response(200, json={"choices": []}),
    })

    result = await AdapterInvoker(upstream.client()).invoke(chat_descriptor(), "hi")

    assert result.error.kind is ErrorKind.PATH_RESOLUTION_ERROR
    assert result.error.context["direction"] == "response"


@pytest.mark.asyncio
async def test_bad_template_is_curl_parse_error_without_network():
    upstream = Upstream({})

    result = await AdapterInvoker(upstream.client()).invoke(
        chat_descriptor(request_template="wget https://x.example.com"), "hi"
    )

    assert result.error.kind is ErrorKind.CURL_PARSE_ERROR
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_unsupported_encoding_is_reported():
    upstream = Upstream({})

    result = await AdapterInvoker(upstream.client()).invoke(chat_descriptor(response_encoding="xml"), "hi")

    assert result.error.kind is ErrorKind.UNSUPPORTED_RESPONSE_TYPE
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_secondary_fetch_failure_is_reported_with_stage():
    upstream = Upstream({
        "https://img.example.com/gen":
            lambda r: httpx.Response(200, json={"url": "https://cdn.example.com/gone.png"}),
        "https://cdn.example.com/gone.png": lambda r: httpx.Response(404),
    })
    descriptor = ProviderDescriptor(
        id="img-url",
        request_template="curl https://img.example.com/gen",
        request_path="prompt",
        response_path="url",
        response_encoding="url",
    )

    result = await AdapterInvoker(upstream.client()).invoke(descriptor, "x")

    assert result.error.kind is ErrorKind.UPSTREAM_HTTP_ERROR
    assert result.error.context["stage"] == "secondary"
    assert result.error.context["status_code"] == 404


@pytest.mark.asyncio
async def test_transport_timeout_is_upstream_timeout():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    invoker = AdapterInvoker(httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    result = await invoker.invoke(chat_descriptor(), "hi")

    assert result.error.kind is ErrorKind.UPSTREAM_TIMEOUT


@pytest.mark.asyncio
async def test_connection_error_is_http_error_without_status():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    invoker = AdapterInvoker(httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    result = await invoker.invoke(chat_descriptor(), "hi")

    assert result.error.kind is ErrorKind.UPSTREAM_HTTP_ERROR
    assert "status_code" not in result.error.to_dict()


@pytest.mark.asyncio
async def test_deadline_exceeded_is_upstream_timeout():
    async def slow(request):
        await asyncio.sleep(1)
        return httpx.Response(200, json={})

    upstream = Upstream({"https://llm.example.com/v1/chat/completions": slow})

    result = await AdapterInvoker(upstream.client()).invoke(chat_descriptor(), "hi", timeout=0.05)

    assert result.error.kind is ErrorKind.UPSTREAM_TIMEOUT


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [504, 524])
async def test_gateway_timeout_statuses_are_upstream_timeout(status):
    upstream = Upstream({
        "https://llm.example.com/v1/chat/completions": lambda r: httpx.Response(status),
    })

    result = await AdapterInvoker(upstream.client()).invoke(chat_descriptor(), "hi")

    assert result.error.kind is ErrorKind.UPSTREAM_TIMEOUT
    assert result.error.http_status == 504


@pytest.mark.asyncio
@pytest.mark.parametrize("extra", [{"speed": float("nan")}, {"speed": float("-inf")}, {"raw": b"\x00"}])
async def test_unencodable_extra_fields_are_returned_as_error(extra):
    upstream = Upstream({})

    result = await AdapterInvoker(upstream.client()).invoke(chat_descriptor(), "cat", extra)

    assert not result.ok
    assert result.error.kind is ErrorKind.PATH_RESOLUTION_ERROR
    assert result.error.context["direction"] == "request"
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_unwrap_raises_the_error():
    upstream = Upstream({
        "https://llm.example.com/v1/chat/completions": lambda r: httpx.Response(502),
    })

    result = await AdapterInvoker(upstream.client()).invoke(chat_descriptor(), "hi")

    with pytest.raises(Exception) as exc_info:
        result.unwrap()
    assert exc_info.value is result.error


# ── Login-protected providers ──────────────────────────────────────────────────

def auth_descriptor(**auth_overrides) -> ProviderDescriptor:
    auth = {
        "login_endpoint": "https://auth.example.com/login",
        "token_path": "token",
        "credentials": {"key": "k"},
    }
    auth.update(auth_overrides)
    return ProviderDescriptor(
        id="tts-auth",
        request_template='curl https://tts.example.com/speak -H "Authorization: Bearer stale"',
        request_path="text",
        response_encoding="binary",
        auth=AuthConfig(**auth),
    )


@pytest.mark.asyncio
async def test_bearer_token_replaces_template_authorization_header():
    upstream = Upstream({
        "https://auth.example.com/login": lambda r: httpx.Response(200, json={"token": "fresh"}),
        "https://tts.example.com/speak": lambda r: httpx.Response(200, content=MP3_BYTES),
    })
    client = upstream.client()
    invoker = AdapterInvoker(client, TokenManager(client, InMemoryProviderStore()))

    result = await invoker.invoke(auth_descriptor(), "hello")

    assert result.ok
    speak = upstream.requests[-1]
    assert speak.headers.get_list("authorization") == ["Bearer fresh"]


@pytest.mark.asyncio
async def test_unauthorized_reply_invalidates_cached_token():
    upstream = Upstream({
        "https://auth.example.com/login": lambda r: httpx.Response(200, json={"token": "fresh"}),
        "https://tts.example.com/speak": lambda r: httpx.Response(401, json={"error": "expired"}),
    })
    client = upstream.client()
    invoker = AdapterInvoker(client, TokenManager(client, InMemoryProviderStore()))
    descriptor = auth_descriptor(
        token="persisted", token_expires_at=datetime.now(timezone.utc) + timedelta(hours=1)
    )

    first = await invoker.invoke(descriptor, "hello")
    assert first.error.kind is ErrorKind.UPSTREAM_HTTP_ERROR
    assert upstream.requests[0].headers["authorization"] == "Bearer persisted"

    await invoker.invoke(descriptor, "hello")
    logins = [r for r in upstream.requests if r.url.host == "auth.example.com"]
    assert len(logins) == 1


@pytest.mark.asyncio
async def test_failed_login_is_token_refresh_failed_and_skips_upstream():
    upstream = Upstream({
        "https://auth.example.com/login": lambda r: httpx.Response(403),
        "https://tts.example.com/speak": lambda r: httpx.Response(200, content=MP3_BYTES),
    })
    client = upstream.client()
    invoker = AdapterInvoker(client, TokenManager(client, InMemoryProviderStore()))

    result = await invoker.invoke(auth_descriptor(), "hello")

    assert result.error.kind is ErrorKind.TOKEN_REFRESH_FAILED
    assert all(r.url.host != "tts.example.com" for r in upstream.requests)


@pytest.mark.asyncio
async def test_auth_provider_without_token_manager_fails_cleanly():
    upstream = Upstream({})

    result = await AdapterInvoker(upstream.client()).invoke(auth_descriptor(), "hello")

    assert result.error.kind is ErrorKind.TOKEN_REFRESH_FAILED


# ── Probe ──────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_probe_reports_extracted_preview():
    upstream = Upstream({
        "https://llm.example.com/v1/chat/completions":
            lambda r: httpx.Response(200, json={"choices": [{"message": {"content": "pong"}}]}),
    })

    report = await AdapterInvoker(upstream.client()).probe(CHAT_TEMPLATE, "choices[0].message.content")

    assert report.success
    assert report.status_code == 200
    assert report.preview == "pong"
    assert report.to_dict()["content_type"] == "application/json"
    # the template is sent verbatim
    assert sent_json(upstream.requests[0])["messages"][0]["content"] == ""


@pytest.mark.asyncio
async def test_probe_describes_binary_reply():
    upstream = Upstream({
        "https://tts.example.com/speak":
            lambda r: httpx.Response(200, content=MP3_BYTES, headers={"content-type": "audio/mpeg"}),
    })

    report = await AdapterInvoker(upstream.client()).probe(
        "curl https://tts.example.com/speak", response_encoding="binary"
    )

    assert report.success
    assert report.preview == f"Binary data received ({len(MP3_BYTES)} bytes, audio/mpeg)"


@pytest.mark.asyncio
async def test_probe_reports_extraction_problem_but_succeeds():
    upstream = Upstream({
        "https://llm.example.com/v1/chat/completions": lambda r: httpx.Response(200, json={"other": 1}),
    })

    report = await AdapterInvoker(upstream.client()).probe(CHAT_TEMPLATE, "choices[0].message.content")

    assert report.success
    assert report.preview.startswith("Extraction failed (PATH_RESOLUTION_ERROR)")


@pytest.mark.asyncio
async def test_probe_reports_upstream_failure():
    upstream = Upstream({
        "https://llm.example.com/v1/chat/completions": lambda r: httpx.Response(401, text="no key"),
    })

    report = await AdapterInvoker(upstream.client()).probe(CHAT_TEMPLATE)

    assert not report.success
    assert report.status_code == 401
    assert report.to_dict()["error"]["kind"] == "UPSTREAM_HTTP_ERROR"


@pytest.mark.asyncio
async def test_probe_reports_parse_failure():
    report = await AdapterInvoker(Upstream({}).client()).probe("curl")

    assert not report.success
    assert report.error.kind is ErrorKind.CURL_PARSE_ERROR


# ── Results and timings ────────────────────────────────────────────────────────

def test_unwrap_without_output_or_error_is_empty_response():
    with pytest.raises(AdapterError) as exc_info:
        InvocationResult().unwrap()
    assert exc_info.value.kind is ErrorKind.EMPTY_RESPONSE


@pytest.mark.asyncio
async def test_timings_record_success_outcome():
    upstream = Upstream({
        "https://llm.example.com/v1/chat/completions":
            lambda r: httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]}),
    })

    result = await AdapterInvoker(upstream.client()).invoke(chat_descriptor(), "hi")

    assert result.timings.outcome == "ok"
    assert result.timings.error_kind is None
    assert result.timings.total_ms >= 0


@pytest.mark.asyncio
async def test_timings_record_failed_stage_and_kind():
    upstream = Upstream({
        "https://llm.example.com/v1/chat/completions": lambda r: httpx.Response(503),
    })

    result = await AdapterInvoker(upstream.client()).invoke(chat_descriptor(), "hi")

    timings = result.timings
    assert timings.outcome == "error"
    assert timings.error_kind == "UPSTREAM_HTTP_ERROR"
    assert timings.current_stage == "upstream"
    assert "extract" not in timings.stages
    assert "upstream" in timings.stages

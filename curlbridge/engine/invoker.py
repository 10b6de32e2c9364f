"""
Adapter Invoker
===============
Runs one provider invocation end to end:

    template -> compose -> [token] -> upstream call -> extract -> [secondary fetch]

Responsibilities
----------------
1. Parses the descriptor's curl template and composes the request.
2. Merges a bearer token for providers with a login step.
3. Performs the upstream call through a shared httpx.AsyncClient.
4. Classifies every failure into one ErrorKind and returns it as a value:
   ``invoke`` never raises AdapterError, so a broken provider cannot crash
   the caller.
5. Records stage-level latency and logs it at the end of each invocation.

Design Decisions
----------------
- No retries.  One failed upstream call is one reported error.
- No timeout unless configured; the optional deadline wraps the whole
  invocation in asyncio.wait_for and surfaces as UPSTREAM_TIMEOUT.
- Cancellation (asyncio.CancelledError) is not caught; the call is simply
  abandoned and nothing is persisted.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence, Union

import httpx

from curlbridge.config import get_settings
from curlbridge.core.errors import (
    AdapterError,
    ErrorKind,
    UpstreamHTTPError,
    preview_text,
)
from curlbridge.core.logging import get_logger, new_request_id, set_logging_context
from curlbridge.engine.composer import ComposedRequest, compose_request
from curlbridge.engine.extractor import (
    BinaryOutput,
    CanonicalOutput,
    RemoteAsset,
    ResponseEncoding,
    TextOutput,
    UpstreamReply,
    extract_binary,
    extract_output,
)
from curlbridge.engine.template import parse_request_template, set_header
from curlbridge.engine.tokens import TokenManager
from curlbridge.metrics.latency import InvocationTimings
from curlbridge.models import ProviderDescriptor

logger = get_logger(__name__)

# Gateway timeouts reported by the provider's edge count as timeouts, not HTTP errors
_TIMEOUT_STATUSES = {504, 524}


@dataclass
class InvocationResult:
    output: Optional[CanonicalOutput] = None
    error: Optional[AdapterError] = None
    timings: Optional[InvocationTimings] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> CanonicalOutput:
        if self.error is not None:
            raise self.error
        if self.output is None:
            raise AdapterError(ErrorKind.EMPTY_RESPONSE, "Invocation produced no output")
        return self.output


@dataclass
class ProbeReport:
    success: bool
    status_code: Optional[int] = None
    content_type: str = ""
    preview: str = ""
    error: Optional[AdapterError] = field(default=None, repr=False)

    def to_dict(self) -> dict:
        payload: dict = {
            "success": self.success,
            "status_code": self.status_code,
            "content_type": self.content_type or "unknown",
            "preview": self.preview,
        }
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        return payload


class AdapterInvoker:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_manager: Optional[TokenManager] = None,
        timeout_seconds: Optional[float] = None,
        error_preview_chars: Optional[int] = None,
        probe_preview_chars: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self._client = http_client
        self._tokens = token_manager
        self._timeout = timeout_seconds if timeout_seconds is not None else settings.upstream_timeout_seconds
        self._error_preview = error_preview_chars or settings.error_preview_chars
        self._probe_preview = probe_preview_chars or settings.probe_preview_chars

    # ── Public API ─────────────────────────────────────────────────────────────

    async def invoke(
        self,
        descriptor: ProviderDescriptor,
        primary_input: Any,
        extra_fields: Optional[Mapping[str, Any]] = None,
        *,
        default_request_path: str = "",
        fallback_paths: Sequence[str] = (),
        default_mime_type: str = "application/octet-stream",
        timeout: Optional[float] = None,
    ) -> InvocationResult:
        """
        Invoke one provider.

        Parameters
        ----------
        descriptor           : provider record from the store (never mutated)
        primary_input        : chat message, image prompt or text to speak
        extra_fields         : top-level body fields such as voice, size, model
        default_request_path : used when the descriptor has no request path
        fallback_paths       : response paths tried in order when the
                               descriptor has no response path
        default_mime_type    : MIME type for binary output nothing else names
        timeout              : per-call deadline; overrides the configured one

        Returns
        -------
        InvocationResult with either ``output`` or ``error`` set.
        """
        request_id = new_request_id()
        set_logging_context(provider_id=descriptor.id, request_id=request_id)
        timings = InvocationTimings(provider_id=descriptor.id, request_id=request_id)
        deadline = timeout if timeout is not None else self._timeout

        logger.info(
            "Invocation started",
            extra={
                "provider_id": descriptor.id,
                "request_id": request_id,
                "response_encoding": descriptor.response_encoding,
                "extra_fields": sorted((extra_fields or {}).keys()),
            },
        )

        try:
            output = await asyncio.wait_for(
                self._run(
                    descriptor,
                    primary_input,
                    extra_fields,
                    timings,
                    default_request_path=default_request_path,
                    fallback_paths=fallback_paths,
                    default_mime_type=default_mime_type,
                ),
                timeout=deadline,
            )
        except AdapterError as exc:
            return self._failure(exc, timings)
        except asyncio.TimeoutError:
            return self._failure(
                AdapterError(
                    ErrorKind.UPSTREAM_TIMEOUT,
                    f"Provider did not answer within {deadline}s",
                    timeout_seconds=deadline,
                ),
                timings,
            )

        timings.finish()
        return InvocationResult(output=output, timings=timings)

    async def probe(
        self,
        template_text: str,
        response_path: str = "",
        response_encoding: str = "text",
    ) -> ProbeReport:
        """Send a template exactly as written and describe what came back.

        Used by operators to check a provider before saving it.  Never raises
        AdapterError; failures are reported in the ProbeReport.
        """
        try:
            parsed = parse_request_template(template_text)
            request = ComposedRequest(
                method=parsed.method,
                url=parsed.url,
                headers=dict(parsed.headers),
                body=parsed.body_template,
            )
            reply = await asyncio.wait_for(self._send(request, stage="primary"), timeout=self._timeout)
        except AdapterError as exc:
            return ProbeReport(
                success=False,
                status_code=exc.context.get("status_code"),
                preview=exc.message,
                error=exc,
            )
        except asyncio.TimeoutError:
            error = AdapterError(ErrorKind.UPSTREAM_TIMEOUT, "Provider took too long to respond")
            return ProbeReport(success=False, preview=error.message, error=error)

        preview = self._describe(reply, response_path, response_encoding)
        logger.info(
            "Provider probe completed",
            extra={"status_code": reply.status_code, "content_type": reply.content_type},
        )
        return ProbeReport(
            success=True,
            status_code=reply.status_code,
            content_type=reply.content_type,
            preview=preview,
        )

    # ── Private helpers ────────────────────────────────────────────────────────

    async def _run(
        self,
        descriptor: ProviderDescriptor,
        primary_input: Any,
        extra_fields: Optional[Mapping[str, Any]],
        timings: InvocationTimings,
        *,
        default_request_path: str,
        fallback_paths: Sequence[str],
        default_mime_type: str,
    ) -> CanonicalOutput:
        encoding = ResponseEncoding.parse(descriptor.response_encoding)

        async with timings.stage("compose"):
            parsed = parse_request_template(descriptor.request_template)
            request = compose_request(
                parsed,
                descriptor.request_path or default_request_path,
                primary_input,
                extra_fields,
            )

        if descriptor.auth is not None:
            if self._tokens is None:
                raise AdapterError(
                    ErrorKind.TOKEN_REFRESH_FAILED,
                    "Provider requires a login but no token manager is configured",
                )
            async with timings.stage("token"):
                token = await self._tokens.get_token(descriptor)
            set_header(request.headers, "Authorization", f"Bearer {token}")

        async with timings.stage("upstream"):
            try:
                reply = await self._send(request, stage="primary")
            except UpstreamHTTPError as exc:
                if exc.status_code == 401 and descriptor.auth is not None and self._tokens is not None:
                    self._tokens.invalidate(descriptor.id)
                raise

        async with timings.stage("extract"):
            extracted = extract_output(
                reply,
                descriptor.response_path,
                encoding,
                fallback_paths=fallback_paths,
                default_mime_type=default_mime_type,
            )

        if isinstance(extracted, RemoteAsset):
            async with timings.stage("secondary_fetch"):
                return await self._fetch_asset(extracted, default_mime_type)
        return extracted

    async def _send(self, request: ComposedRequest, stage: str) -> UpstreamReply:
        logger.debug(
            "Sending upstream request",
            extra={"method": request.method, "host": httpx.URL(request.url).host, "stage": stage},
        )
        try:
            response = await self._client.request(
                request.method,
                request.url,
                headers=request.headers,
                json=request.body,
            )
        except httpx.TimeoutException as exc:
            raise AdapterError(
                ErrorKind.UPSTREAM_TIMEOUT, f"Timed out talking to provider ({stage} fetch)", stage=stage
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamHTTPError(f"Could not reach provider ({stage} fetch): {exc!r}", stage=stage) from exc

        reply = UpstreamReply(
            content=response.content,
            content_type=response.headers.get("content-type", ""),
            status_code=response.status_code,
        )
        if response.status_code in _TIMEOUT_STATUSES:
            raise AdapterError(
                ErrorKind.UPSTREAM_TIMEOUT,
                f"Provider gateway timed out with status {response.status_code} ({stage} fetch)",
                status_code=response.status_code,
                stage=stage,
            )
        if not response.is_success:
            raise UpstreamHTTPError(
                f"Provider responded with status {response.status_code} ({stage} fetch)",
                status_code=response.status_code,
                body_preview=preview_text(response.content, self._error_preview),
                stage=stage,
            )
        return reply

    async def _fetch_asset(self, asset: RemoteAsset, default_mime_type: str) -> BinaryOutput:
        reply = await self._send(ComposedRequest(method="GET", url=asset.url), stage="secondary")
        return extract_binary(reply, default_mime_type)

    def _describe(self, reply: UpstreamReply, response_path: str, response_encoding: str) -> str:
        try:
            extracted: Union[CanonicalOutput, RemoteAsset] = extract_output(
                reply,
                response_path,
                response_encoding,
            )
        except AdapterError as exc:
            return f"Extraction failed ({exc.kind.value}): {exc.message}"

        if isinstance(extracted, TextOutput):
            return preview_text(extracted.value.encode("utf-8"), self._probe_preview)
        if isinstance(extracted, BinaryOutput):
            return f"Binary data received ({len(extracted.data)} bytes, {extracted.mime_type})"
        return f"URL received: {extracted.url}"

    def _failure(self, error: AdapterError, timings: InvocationTimings) -> InvocationResult:
        logger.warning(
            "Invocation failed",
            extra={
                "provider_id": timings.provider_id,
                "request_id": timings.request_id,
                "kind": error.kind.value,
                "error": error.message,
            },
        )
        timings.finish(error.kind.value)
        return InvocationResult(error=error, timings=timings)

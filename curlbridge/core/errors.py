"""
Error taxonomy for provider invocations.

Every failure inside the engine is raised as an AdapterError carrying one
ErrorKind.  AdapterInvoker.invoke catches them at its boundary and hands
them back as values, so a failing provider never takes the host down.
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    CURL_PARSE_ERROR = "CURL_PARSE_ERROR"
    PATH_RESOLUTION_ERROR = "PATH_RESOLUTION_ERROR"
    UPSTREAM_HTTP_ERROR = "UPSTREAM_HTTP_ERROR"
    UPSTREAM_TIMEOUT = "UPSTREAM_TIMEOUT"
    UNSUPPORTED_RESPONSE_TYPE = "UNSUPPORTED_RESPONSE_TYPE"
    EMPTY_RESPONSE = "EMPTY_RESPONSE"
    TOKEN_REFRESH_FAILED = "TOKEN_REFRESH_FAILED"
    RESPONSE_DECODE_ERROR = "RESPONSE_DECODE_ERROR"


# Status the HTTP surface answers with for each kind
HTTP_STATUS_BY_KIND = {
    ErrorKind.CURL_PARSE_ERROR: 400,
    ErrorKind.PATH_RESOLUTION_ERROR: 502,
    ErrorKind.UPSTREAM_HTTP_ERROR: 502,
    ErrorKind.UPSTREAM_TIMEOUT: 504,
    ErrorKind.UNSUPPORTED_RESPONSE_TYPE: 500,
    ErrorKind.EMPTY_RESPONSE: 502,
    ErrorKind.TOKEN_REFRESH_FAILED: 502,
    ErrorKind.RESPONSE_DECODE_ERROR: 502,
}


class AdapterError(Exception):
    """A classified failure of one provider invocation."""

    def __init__(self, kind: ErrorKind, message: str, **context: Any) -> None:
        self.kind = kind
        self.message = message
        self.context = context
        super().__init__(f"{kind.value}: {message}")

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_KIND.get(self.kind, 500)

    def to_dict(self) -> dict:
        payload = {"kind": self.kind.value, "message": self.message}
        payload.update({k: v for k, v in self.context.items() if v is not None})
        return payload


class TemplateParseError(AdapterError):
    """The curl request template could not be turned into a request."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorKind.CURL_PARSE_ERROR, message)


class PathResolutionError(AdapterError):
    def __init__(self, path: str, direction: str, message: Optional[str] = None) -> None:
        super().__init__(
            ErrorKind.PATH_RESOLUTION_ERROR,
            message or f"Nothing found at {direction} path '{path}'",
            path=path,
            direction=direction,
        )
        self.path = path
        self.direction = direction


class UpstreamHTTPError(AdapterError):
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body_preview: Optional[str] = None,
        stage: str = "primary",
    ) -> None:
        super().__init__(
            ErrorKind.UPSTREAM_HTTP_ERROR,
            message,
            status_code=status_code,
            body_preview=body_preview,
            stage=stage,
        )
        self.status_code = status_code
        self.body_preview = body_preview
        self.stage = stage


def preview_text(data: bytes, limit: int) -> str:
    """Decode at most `limit` characters of a reply body for error messages."""
    text = data[: limit * 4].decode("utf-8", errors="replace")
    if len(text) > limit:
        return text[:limit] + "..."
    return text

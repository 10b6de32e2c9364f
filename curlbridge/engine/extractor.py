"""
Response extractor
==================
Turns a provider's raw reply into canonical output according to the
descriptor's declared encoding:

    binary  reply bytes are the output; the response path is ignored
    text    JSON reply, value at the response path (``json`` is an alias)
    base64  JSON reply, base64 string (optionally a data URI) at the path
    url     JSON reply, absolute URL at the path; the invoker fetches it

An empty response path is only resolved through the ``fallback_paths`` the
call site passes in explicitly; the extractor has no built-in guesses.
"""

import base64
import binascii
import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Sequence, Tuple, Union

from curlbridge.core.errors import AdapterError, ErrorKind, PathResolutionError
from curlbridge.engine.paths import MISSING, PathSyntaxError, get_path

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[^;,]*)(?:;[^;,]*)*;base64,", re.IGNORECASE)

_MAGIC_NUMBERS: Tuple[Tuple[bytes, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"ID3", "audio/mpeg"),
    (b"\xff\xfb", "audio/mpeg"),
    (b"\xff\xf3", "audio/mpeg"),
    (b"\xff\xf2", "audio/mpeg"),
    (b"OggS", "audio/ogg"),
    (b"fLaC", "audio/flac"),
)


class ResponseEncoding(str, Enum):
    BINARY = "binary"
    BASE64 = "base64"
    URL = "url"
    TEXT = "text"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ResponseEncoding":
        normalized = (value or "text").strip().lower()
        if normalized == "json":
            normalized = "text"
        try:
            return cls(normalized)
        except ValueError:
            raise AdapterError(
                ErrorKind.UNSUPPORTED_RESPONSE_TYPE,
                f"Unsupported response type: {value!r}",
                response_encoding=value,
            ) from None


@dataclass(frozen=True)
class TextOutput:
    value: str
    kind: str = "text"


@dataclass(frozen=True)
class BinaryOutput:
    data: bytes
    mime_type: str
    kind: str = "binary"


@dataclass(frozen=True)
class RemoteAsset:
    """A URL found in the reply whose bytes are the real output."""

    url: str


CanonicalOutput = Union[TextOutput, BinaryOutput]


@dataclass
class UpstreamReply:
    content: bytes
    content_type: str = ""
    status_code: int = 200

    @property
    def media_type(self) -> str:
        return self.content_type.split(";", 1)[0].strip().lower()


def strip_data_uri(payload: str) -> str:
    """Remove a leading ``data:<mime>;base64,`` prefix; no-op when absent."""
    return _DATA_URI_RE.sub("", payload.strip(), count=1)


def sniff_mime_type(data: bytes) -> Optional[str]:
    for magic, mime in _MAGIC_NUMBERS:
        if data.startswith(magic):
            return mime
    if data[:4] == b"RIFF" and data[8:12] == b"WAVE":
        return "audio/wav"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def _is_media_type(media_type: str) -> bool:
    return media_type.split("/", 1)[0] in {"image", "audio", "video"}


def _load_json(reply: UpstreamReply) -> Any:
    try:
        return json.loads(reply.content)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise AdapterError(
            ErrorKind.RESPONSE_DECODE_ERROR,
            f"Provider reply is not valid JSON: {exc}",
            content_type=reply.content_type or None,
        ) from exc


def _resolve(data: Any, response_path: str, fallback_paths: Sequence[str]) -> Any:
    candidates = [response_path] if response_path else list(fallback_paths)
    if not candidates:
        raise PathResolutionError("", "response", "No response path configured and no fallback given")
    for candidate in candidates:
        try:
            value = get_path(data, candidate)
        except PathSyntaxError as exc:
            raise PathResolutionError(candidate, "response", str(exc)) from exc
        if value is not MISSING and value is not None:
            return value
    raise PathResolutionError(" | ".join(candidates), "response")


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def extract_binary(reply: UpstreamReply, default_mime_type: str = "application/octet-stream") -> BinaryOutput:
    """The reply body as-is, labelled from Content-Type, magic bytes or the default."""
    if not reply.content:
        raise AdapterError(ErrorKind.EMPTY_RESPONSE, "Provider returned an empty body")
    mime = reply.media_type if _is_media_type(reply.media_type) else None
    return BinaryOutput(
        data=reply.content,
        mime_type=mime or sniff_mime_type(reply.content) or default_mime_type,
    )


def extract_output(
    reply: UpstreamReply,
    response_path: str,
    encoding: Union[str, ResponseEncoding],
    *,
    fallback_paths: Sequence[str] = (),
    default_mime_type: str = "application/octet-stream",
) -> Union[TextOutput, BinaryOutput, RemoteAsset]:
    """Extract canonical output from `reply`; raises AdapterError on failure."""
    if not isinstance(encoding, ResponseEncoding):
        encoding = ResponseEncoding.parse(encoding)
    response_path = (response_path or "").strip()

    if encoding is ResponseEncoding.BINARY:
        return extract_binary(reply, default_mime_type)

    if encoding is ResponseEncoding.TEXT:
        if not response_path and not fallback_paths:
            # plain-text providers: the whole reply is the answer
            text = reply.content.decode("utf-8", errors="replace")
            if not text.strip():
                raise AdapterError(ErrorKind.EMPTY_RESPONSE, "Provider returned an empty body")
            return TextOutput(text)
        return TextOutput(_as_text(_resolve(_load_json(reply), response_path, fallback_paths)))

    value = _resolve(_load_json(reply), response_path, fallback_paths)
    path_label = response_path or " | ".join(fallback_paths)

    if encoding is ResponseEncoding.BASE64:
        if not isinstance(value, str):
            raise PathResolutionError(
                path_label, "response", f"Expected a base64 string, found {type(value).__name__}"
            )
        match = _DATA_URI_RE.match(value.strip())
        try:
            data = base64.b64decode("".join(strip_data_uri(value).split()), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise AdapterError(
                ErrorKind.RESPONSE_DECODE_ERROR, f"Invalid base64 payload: {exc}", path=path_label
            ) from exc
        if not data:
            raise AdapterError(ErrorKind.EMPTY_RESPONSE, "Decoded base64 payload is empty", path=path_label)
        mime = match.group("mime") if match and match.group("mime") else None
        return BinaryOutput(data=data, mime_type=mime or sniff_mime_type(data) or default_mime_type)

    # ResponseEncoding.URL
    if not isinstance(value, str) or not re.match(r"^https?://\S+$", value.strip(), re.IGNORECASE):
        raise PathResolutionError(
            path_label, "response", f"Expected an absolute http(s) URL, found {str(value)[:100]!r}"
        )
    return RemoteAsset(url=value.strip())

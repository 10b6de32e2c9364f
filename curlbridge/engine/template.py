"""
Request template parser
=======================
Turns the curl command an operator pasted for a provider into a
RequestDescriptor (method, url, headers, body template).

The text is tokenized with shell quoting rules, then the argument list is
walked flag by flag.  Anything ambiguous (two URLs, two bodies, a body that
is not JSON) is rejected with TemplateParseError rather than guessed at.
"""

import base64
import json
import re
import shlex
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from curlbridge.core.errors import TemplateParseError

DEFAULT_METHOD = "POST"

_LINE_CONTINUATION_RE = re.compile(r"\\\r?\n")

_HEADER_FLAGS = {"-H", "--header"}
_METHOD_FLAGS = {"-X", "--request"}
_DATA_FLAGS = {"-d", "--data", "--data-raw", "--data-binary", "--data-ascii", "--json"}
_URL_FLAGS = {"--url"}
# Flags whose value does not shape the request but must not be read as the URL
_IGNORED_VALUE_FLAGS = {
    "-o", "--output", "-m", "--max-time", "--connect-timeout", "-e", "--referer",
    "--retry", "--retry-delay", "-w", "--write-out", "-x", "--proxy", "-b", "--cookie",
    "-c", "--cookie-jar", "--cacert", "--cert", "--key", "-r", "--range",
}
_VALUE_FLAGS = (
    _HEADER_FLAGS | _METHOD_FLAGS | _DATA_FLAGS | _URL_FLAGS | _IGNORED_VALUE_FLAGS
    | {"-u", "--user", "-A", "--user-agent"}
)


@dataclass
class RequestDescriptor:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body_template: Any = None

    @property
    def has_body(self) -> bool:
        return self.body_template is not None


def set_header(headers: Dict[str, str], name: str, value: str) -> None:
    """Set a header, replacing any existing one whose name differs only in case."""
    for existing in [k for k in headers if k.lower() == name.lower()]:
        del headers[existing]
    headers[name] = value


def _tokenize(text: str) -> List[str]:
    joined = _LINE_CONTINUATION_RE.sub(" ", text)
    try:
        return shlex.split(joined, posix=True)
    except ValueError as exc:
        raise TemplateParseError(f"Could not tokenize template: {exc}") from exc


def _split_flag(token: str) -> tuple:
    """``--header=X`` -> (``--header``, ``X``); other tokens pass through."""
    if token.startswith("--") and "=" in token:
        flag, _, value = token.partition("=")
        return flag, value
    return token, None


def _iter_args(tokens: List[str]) -> Iterator[tuple]:
    """Yield (flag, value) pairs; positional arguments come out as (None, token)."""
    i = 0
    while i < len(tokens):
        token = tokens[i]
        if not token.startswith("-") or token == "-":
            yield None, token
            i += 1
            continue

        flag, inline_value = _split_flag(token)
        if flag in _VALUE_FLAGS:
            if inline_value is not None:
                yield flag, inline_value
                i += 1
                continue
            if i + 1 >= len(tokens):
                raise TemplateParseError(f"Flag {flag} is missing its value")
            yield flag, tokens[i + 1]
            i += 2
            continue

        # short flag glued to its value, e.g. -XPOST
        if not flag.startswith("--") and len(flag) > 2 and flag[:2] in _VALUE_FLAGS:
            yield flag[:2], flag[2:]
        else:
            yield flag, None
        i += 1


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def _parse_body(raw: str) -> Any:
    raw = raw.strip()
    if not raw:
        return None
    if raw.startswith("@"):
        raise TemplateParseError("Body read from a file (@...) is not supported")
    try:
        return json.loads(raw, parse_constant=_reject_constant)
    except json.JSONDecodeError as exc:
        raise TemplateParseError(f"Request body is not valid JSON: {exc.msg} at position {exc.pos}") from exc
    except ValueError as exc:
        raise TemplateParseError(f"Request body is not valid JSON: {exc}") from exc


def parse_request_template(text: str) -> RequestDescriptor:
    """Parse curl command text into a RequestDescriptor.

    Raises TemplateParseError when the text is not a curl command, names no
    URL or more than one, or carries a body that is not valid JSON.
    """
    if not text or not text.strip():
        raise TemplateParseError("Request template is empty")

    tokens = _tokenize(text)
    if not tokens or tokens[0] != "curl":
        raise TemplateParseError("Request template must start with 'curl'")

    method: Optional[str] = None
    urls: List[str] = []
    headers: Dict[str, str] = {}
    bodies: List[str] = []

    for flag, value in _iter_args(tokens[1:]):
        if flag is None or flag in _URL_FLAGS:
            urls.append(value)
        elif flag in _HEADER_FLAGS:
            name, sep, header_value = value.partition(":")
            if not sep or not name.strip():
                raise TemplateParseError(f"Malformed header '{value}'")
            set_header(headers, name.strip(), header_value.strip())
        elif flag in _METHOD_FLAGS:
            method = value.upper()
        elif flag in _DATA_FLAGS:
            bodies.append(value)
            if flag == "--json":
                headers.setdefault("Content-Type", "application/json")
                headers.setdefault("Accept", "application/json")
        elif flag in ("-u", "--user"):
            encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
            set_header(headers, "Authorization", f"Basic {encoded}")
        elif flag in ("-A", "--user-agent"):
            set_header(headers, "User-Agent", value)
        elif flag in ("-G", "--get"):
            method = method or "GET"
        elif flag in ("-I", "--head"):
            method = method or "HEAD"
        # -L/--location, -s, -i, --compressed and other switches: no effect

    if not urls:
        raise TemplateParseError("No URL found in request template")
    if len(urls) > 1:
        raise TemplateParseError(f"Ambiguous template: {len(urls)} URLs found ({', '.join(urls)})")
    url = urls[0]
    if not re.match(r"^https?://[^/\s]+", url, re.IGNORECASE):
        raise TemplateParseError(f"URL must be absolute http(s), got '{url}'")

    if len(bodies) > 1:
        raise TemplateParseError("Ambiguous template: more than one body argument")
    body = _parse_body(bodies[0]) if bodies else None

    return RequestDescriptor(
        method=method or DEFAULT_METHOD,
        url=url,
        headers=headers,
        body_template=body,
    )

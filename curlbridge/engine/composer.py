"""
Request composer
================
Builds the concrete request for one invocation from a parsed template, the
caller's primary input and any extra fields.

Composition is additive over the template: keys the request path and the
extra fields do not touch reach the provider exactly as the operator wrote
them, and a value the template already pins wins over a caller-supplied
extra field of the same name.
"""

import copy
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from curlbridge.core.errors import PathResolutionError
from curlbridge.core.logging import get_logger
from curlbridge.engine.paths import PathSyntaxError, set_path
from curlbridge.engine.template import RequestDescriptor

logger = get_logger(__name__)

_BODYLESS_METHODS = {"GET", "HEAD"}


@dataclass
class ComposedRequest:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None


def is_query_path(request_path: str) -> bool:
    """``text=`` / ``q=value`` style paths target a query parameter."""
    return "=" in request_path


def _with_query_params(url: str, params: Mapping[str, Any], overwrite: bool) -> str:
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    existing = {key for key, _ in query}
    for key, value in params.items():
        if key in existing:
            if not overwrite:
                continue
            query = [(k, v) for k, v in query if k != key]
        query.append((key, str(value)))
    return urlunsplit(parts._replace(query=urlencode(query)))


def _merge_extra_fields(body: Any, extra_fields: Mapping[str, Any]) -> Any:
    if not isinstance(body, dict):
        if extra_fields:
            logger.debug(
                "Template body is not an object, extra fields dropped",
                extra={"extra_fields": sorted(extra_fields)},
            )
        return body
    for key, value in extra_fields.items():
        if body.get(key) is not None:
            logger.debug("Template pins extra field, caller value ignored", extra={"field": key})
            continue
        body[key] = copy.deepcopy(value)
    return body


def _ensure_json_body(body: Any, request_path: str) -> Any:
    try:
        json.dumps(body, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise PathResolutionError(
            request_path, "request", f"Composed body is not valid JSON: {exc}"
        ) from exc
    return body


def compose_request(
    parsed: RequestDescriptor,
    request_path: str,
    primary_input: Any,
    extra_fields: Optional[Mapping[str, Any]] = None,
) -> ComposedRequest:
    """Merge the caller's input into a copy of the template.

    Raises PathResolutionError (direction ``request``) when there is no
    request path, it cannot be applied to the template body, or the result
    cannot be sent as JSON (NaN, bytes, sets and the like).
    """
    extras = {k: v for k, v in (extra_fields or {}).items() if v is not None}
    headers = dict(parsed.headers)
    request_path = (request_path or "").strip()

    if not request_path:
        raise PathResolutionError("", "request", "No request path configured for this provider")

    if is_query_path(request_path):
        param = request_path.split("=", 1)[0].strip()
        if not param:
            raise PathResolutionError(request_path, "request", "Query request path has no parameter name")
        url = _with_query_params(parsed.url, {param: primary_input}, overwrite=True)
        body = copy.deepcopy(parsed.body_template)
        if parsed.method in _BODYLESS_METHODS:
            url = _with_query_params(url, extras, overwrite=False)
            body = None
        elif body is not None:
            body = _ensure_json_body(_merge_extra_fields(body, extras), request_path)
        return ComposedRequest(method=parsed.method, url=url, headers=headers, body=body)

    template = parsed.body_template if parsed.body_template is not None else {}
    try:
        body = set_path(template, request_path, primary_input)
    except PathSyntaxError as exc:
        raise PathResolutionError(request_path, "request", str(exc)) from exc

    body = _ensure_json_body(_merge_extra_fields(body, extras), request_path)
    return ComposedRequest(method=parsed.method, url=parsed.url, headers=headers, body=body)

"""
Path accessor
=============
Reads and writes locations inside decoded JSON (dicts and lists) using the
path syntax operators type into provider descriptors::

    choices[0].message.content
    data[0].b64_json
    [0].generated_text          # reply that is a bare list

A path is parsed once into a tuple of ``Field`` / ``Index`` segments and the
result is cached, so hot paths never re-run the parser.

Reading never raises for a missing location: it returns ``MISSING``, which is
distinct from a JSON ``null`` stored at that location.  Writing is
copy-on-write: the caller's structure is never mutated.
"""

import copy
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Tuple, Union


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class PathSyntaxError(ValueError):
    def __init__(self, expression: str, reason: str) -> None:
        self.expression = expression
        super().__init__(f"Invalid path '{expression}': {reason}")


@dataclass(frozen=True)
class Field:
    name: str


@dataclass(frozen=True)
class Index:
    position: int


Segment = Union[Field, Index]
PathLike = Union[str, Tuple[Segment, ...]]

_PART_RE = re.compile(r"^(?P<name>[^\[\]]*)(?P<indices>(?:\[\d+\])*)$")
_INDEX_RE = re.compile(r"\[(\d+)\]")


@lru_cache(maxsize=512)
def parse_path(expression: str) -> Tuple[Segment, ...]:
    """Parse ``a.b[0].c`` into ``(Field('a'), Field('b'), Index(0), Field('c'))``.

    An empty expression addresses the root and parses to ``()``.
    """
    expression = expression.strip()
    if not expression:
        return ()

    segments: list = []
    for position, part in enumerate(expression.split(".")):
        match = _PART_RE.match(part)
        if match is None:
            raise PathSyntaxError(expression, f"malformed segment '{part}'")
        name = match.group("name")
        indices = [int(i) for i in _INDEX_RE.findall(match.group("indices"))]
        if name:
            segments.append(Field(name))
        elif position > 0 or not indices:
            raise PathSyntaxError(expression, "empty segment")
        segments.extend(Index(i) for i in indices)
    return tuple(segments)


def _segments(path: PathLike) -> Tuple[Segment, ...]:
    return parse_path(path) if isinstance(path, str) else path


def _step(current: Any, segment: Segment) -> Any:
    if isinstance(segment, Field):
        if isinstance(current, dict) and segment.name in current:
            return current[segment.name]
        return MISSING
    if isinstance(current, list) and segment.position < len(current):
        return current[segment.position]
    return MISSING


def get_path(root: Any, path: PathLike) -> Any:
    """Return the value at `path`, or MISSING as soon as a segment cannot resolve."""
    current = root
    for segment in _segments(path):
        current = _step(current, segment)
        if current is MISSING:
            return MISSING
    return current


def _fits(container: Any, segment: Segment) -> bool:
    if isinstance(segment, Field):
        return isinstance(container, dict)
    return isinstance(container, list)


def _empty_for(segment: Segment) -> Any:
    return {} if isinstance(segment, Field) else []


def _assign(container: Any, segment: Segment, value: Any) -> None:
    if isinstance(segment, Field):
        container[segment.name] = value
        return
    while len(container) <= segment.position:
        container.append(None)
    container[segment.position] = value


def set_path(root: Any, path: PathLike, value: Any) -> Any:
    """Return a deep copy of `root` with `value` placed at `path`.

    Missing intermediate containers are created (dicts before field
    segments, lists before index segments, lists padded with None).
    Sibling keys at every level are left untouched.
    """
    segments = _segments(path)
    if not segments:
        raise PathSyntaxError("", "cannot replace the root")

    new_root = copy.deepcopy(root) if root is not None else _empty_for(segments[0])
    if not _fits(new_root, segments[0]):
        raise PathSyntaxError(
            str(path), f"root is a {type(new_root).__name__}, cannot apply {segments[0]!r}"
        )

    current = new_root
    for segment, next_segment in zip(segments, segments[1:]):
        child = _step(current, segment)
        if not _fits(child, next_segment):
            child = _empty_for(next_segment)
            _assign(current, segment, child)
        current = child

    _assign(current, segments[-1], value)
    return new_root

"""Minimal JSONPath evaluator used by transformations, templates and assertions.

Supported syntax::

    $                 root
    .name / ['name']  child member
    [0] / [-1]        array index
    [*] / .*          all children
    [1:3] / [::2]     array slice
    ..name / ..*      recursive descent
    .length           length of an array or string

A path that selects through a wildcard, slice or recursive descent returns a
list of every match. A definite path returns the single value, or ``MISSING``
when nothing is there.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from flowengine.exceptions import TransformationError


class _Missing:
    """Marks a path that selected nothing (distinct from JSON null)."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


@dataclass(frozen=True)
class Segment:
    kind: str  # key | index | wildcard | slice | recursive
    key: str | None = None
    index: int | None = None
    start: int | None = None
    stop: int | None = None
    step: int | None = None

    @property
    def is_multi(self) -> bool:
        return self.kind in ("wildcard", "slice", "recursive")


def normalize_path(path: str) -> str:
    """Prefix bare member paths (``data.id``) with ``$.``."""
    path = path.strip()
    if not path or path == "$":
        return "$"
    if path.startswith("$"):
        return path
    if path.startswith("["):
        return "$" + path
    return "$." + path


def parse_path(path: str) -> list[Segment]:
    """Split a JSONPath into segments."""
    text = normalize_path(path)
    segments: list[Segment] = []
    i = 1
    length = len(text)
    while i < length:
        char = text[i]
        if text.startswith("..", i):
            i += 2
            if i < length and text[i] == "[":
                inner, i = _read_bracket(text, i, path)
                seg = _bracket_segment(inner, path)
                segments.append(Segment("recursive", key=seg.key))
                continue
            name, i = _read_name(text, i)
            segments.append(
                Segment("recursive", key=None if name == "*" else name)
            )
        elif char == ".":
            name, i = _read_name(text, i + 1)
            if not name:
                raise TransformationError(path, f"Empty member name at {i}")
            if name == "*":
                segments.append(Segment("wildcard"))
            else:
                segments.append(Segment("key", key=name))
        elif char == "[":
            inner, i = _read_bracket(text, i, path)
            segments.append(_bracket_segment(inner, path))
        else:
            raise TransformationError(path, f"Unexpected character {char!r}")
    return segments


def _read_name(text: str, i: int) -> tuple[str, int]:
    start = i
    while i < len(text) and text[i] not in ".[":
        i += 1
    return text[start:i].strip(), i


def _read_bracket(text: str, i: int, path: str) -> tuple[str, int]:
    quote: str | None = None
    start = i + 1
    i += 1
    while i < len(text):
        char = text[i]
        if quote:
            if char == quote:
                quote = None
        elif char in "'\"":
            quote = char
        elif char == "]":
            return text[start:i].strip(), i + 1
        i += 1
    raise TransformationError(path, "Unclosed '['")


def _bracket_segment(inner: str, path: str) -> Segment:
    if inner == "*":
        return Segment("wildcard")
    if len(inner) >= 2 and inner[0] == inner[-1] and inner[0] in "'\"":
        return Segment("key", key=inner[1:-1])
    if inner.startswith("?"):
        raise TransformationError(
            path, "Filter expressions are not supported, use where()"
        )
    if ":" in inner:
        parts = [p.strip() for p in inner.split(":")]
        if len(parts) > 3:
            raise TransformationError(path, f"Invalid slice [{inner}]")
        try:
            values = [int(p) if p else None for p in parts]
        except ValueError as exc:
            raise TransformationError(path, f"Invalid slice [{inner}]") from exc
        values += [None] * (3 - len(values))
        if values[2] == 0:
            raise TransformationError(path, "Slice step cannot be zero")
        return Segment("slice", start=values[0], stop=values[1], step=values[2])
    try:
        return Segment("index", index=int(inner))
    except ValueError:
        return Segment("key", key=inner)


def _children(node: Any) -> list[Any]:
    if isinstance(node, dict):
        return list(node.values())
    if isinstance(node, list):
        return list(node)
    return []


def _descendants(node: Any) -> list[Any]:
    found: list[Any] = []
    for child in _children(node):
        found.append(child)
        found.extend(_descendants(child))
    return found


def _apply(segment: Segment, node: Any) -> list[Any]:
    if segment.kind == "key":
        if isinstance(node, dict):
            return [node[segment.key]] if segment.key in node else []
        if segment.key == "length" and isinstance(node, (list, str)):
            return [len(node)]
        if isinstance(node, list) and segment.key is not None:
            if segment.key.lstrip("-").isdigit():
                return _apply(Segment("index", index=int(segment.key)), node)
        return []
    if segment.kind == "index":
        if isinstance(node, list):
            index = segment.index or 0
            if -len(node) <= index < len(node):
                return [node[index]]
            return []
        if isinstance(node, dict) and str(segment.index) in node:
            return [node[str(segment.index)]]
        return []
    if segment.kind == "wildcard":
        return _children(node)
    if segment.kind == "slice":
        if isinstance(node, list):
            return node[segment.start:segment.stop:segment.step]
        return []
    # recursive descent
    candidates = [node] + _descendants(node)
    if segment.key is None:
        return _descendants(node)
    return [
        c[segment.key]
        for c in candidates
        if isinstance(c, dict) and segment.key in c
    ]


def evaluate_path(data: Any, path: str) -> Any:
    """Evaluate a JSONPath against data."""
    segments = parse_path(path)
    nodes = [data]
    multi = False
    for segment in segments:
        next_nodes: list[Any] = []
        for node in nodes:
            next_nodes.extend(_apply(segment, node))
        multi = multi or segment.is_multi
        nodes = next_nodes
    if multi:
        return nodes
    return nodes[0] if nodes else MISSING

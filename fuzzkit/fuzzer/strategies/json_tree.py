"""
Mutable JSON tree used by the mutation strategies.

Objects are kept as ordered (key, value) pairs rather than dicts so that
duplicate keys survive serialization, and RawFragment lets a strategy splice
bytes that no JSON encoder would ever produce (invalid UTF-8, deep nesting).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterator

# A step is ("k", pair_index) inside an object or ("i", index) inside an array.
Step = tuple[str, int]
Path = tuple[Step, ...]


@dataclass
class JsonObject:
    pairs: list[list[Any]] = field(default_factory=list)

    def index_of(self, key: str) -> int | None:
        for i, (k, _) in enumerate(self.pairs):
            if k == key:
                return i
        return None


@dataclass
class RawFragment:
    """Bytes emitted verbatim by dump()."""
    data: bytes


def to_tree(value: Any) -> Any:
    if isinstance(value, dict):
        return JsonObject([[str(k), to_tree(v)] for k, v in value.items()])
    if isinstance(value, (list, tuple)):
        return [to_tree(v) for v in value]
    return value


def _scalar(value: Any) -> bytes:
    return json.dumps(value, ensure_ascii=False).encode("utf-8")


def dump(node: Any) -> bytes:
    """Serialize a tree to compact JSON bytes."""
    if isinstance(node, RawFragment):
        return node.data
    if isinstance(node, JsonObject):
        parts = [_scalar(k) + b":" + dump(v) for k, v in node.pairs]
        return b"{" + b",".join(parts) + b"}"
    if isinstance(node, list):
        return b"[" + b",".join(dump(v) for v in node) + b"]"
    return _scalar(node)


def canonical_body(body: Any) -> bytes:
    """The unmutated wire form of a template body."""
    if body is None:
        return b""
    return dump(to_tree(body))


def walk(node: Any, path: Path = ()) -> Iterator[tuple[Path, Any]]:
    """Yield (path, node) for every value in the tree, root first."""
    yield path, node
    if isinstance(node, JsonObject):
        for i, (_, value) in enumerate(node.pairs):
            yield from walk(value, path + (("k", i),))
    elif isinstance(node, list):
        for i, value in enumerate(node):
            yield from walk(value, path + (("i", i),))


def get(root: Any, path: Path) -> Any:
    node = root
    for kind, idx in path:
        node = node.pairs[idx][1] if kind == "k" else node[idx]
    return node


def replace(root: Any, path: Path, value: Any) -> Any:
    """Replace the node at path; returns the (possibly new) root."""
    if not path:
        return value
    parent = get(root, path[:-1])
    kind, idx = path[-1]
    if kind == "k":
        parent.pairs[idx][1] = value
    else:
        parent[idx] = value
    return root


def label(root: Any, path: Path) -> str:
    """Human-readable dotted form of a path."""
    parts = []
    node = root
    for kind, idx in path:
        if kind == "k":
            parts.append(str(node.pairs[idx][0]))
            node = node.pairs[idx][1]
        else:
            parts.append(str(idx))
            node = node[idx]
    return ".".join(parts) or "$"


def resolve(root: Any, dotted: str) -> Path | None:
    """Find the path for a dotted field name such as 'auth.ts' or 'items.0.id'."""
    path: list[Step] = []
    node = root
    for part in dotted.split("."):
        if isinstance(node, JsonObject):
            idx = node.index_of(part)
            if idx is None:
                return None
            path.append(("k", idx))
            node = node.pairs[idx][1]
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
            path.append(("i", int(part)))
            node = node[int(part)]
        else:
            return None
    return tuple(path)


def is_scalar(node: Any) -> bool:
    return not isinstance(node, (JsonObject, list, RawFragment))


def read_dotted(value: Any, dotted: str) -> Any:
    """Look up a dotted path in plain decoded JSON; raises KeyError when absent."""
    node = value
    for part in dotted.split("."):
        if isinstance(node, dict) and part in node:
            node = node[part]
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        else:
            raise KeyError(dotted)
    return node

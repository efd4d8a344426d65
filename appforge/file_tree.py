# appforge/file_tree.py
"""
Hierarchical view of a flat set of project paths.

Storage order is irrelevant: children live in a plain mapping and the
presentation order (directories first, then names in ascending order) is
derived every time the tree is traversed.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Generic, Iterable, Iterator, List, Mapping, Tuple, TypeVar, Union

from .models import AppPlan, FileDescriptor, Project

T = TypeVar("T")


@dataclass(frozen=True)
class Leaf(Generic[T]):
    payload: T


@dataclass(frozen=True)
class Directory:
    children: Mapping[str, "Node"] = field(default_factory=lambda: MappingProxyType({}))

    def __len__(self) -> int:
        return len(self.children)


Node = Union[Directory, Leaf]


@dataclass(frozen=True)
class TreeRow:
    depth: int
    name: str
    path: str
    node: Node

    @property
    def is_dir(self) -> bool:
        return isinstance(self.node, Directory)


def _segments(path: str) -> List[str]:
    return [s for s in path.split("/") if s]


def _freeze(level: Dict[str, Any]) -> Directory:
    children: Dict[str, Node] = {}
    for name, value in level.items():
        children[name] = _freeze(value) if isinstance(value, dict) else value
    return Directory(children=MappingProxyType(children))


def build_file_tree(entries: Iterable[Tuple[str, T]]) -> Directory:
    """Build a directory tree from ``(path, payload)`` pairs.

    - Duplicate paths: the last payload wins.
    - Intermediate segments always become directories, replacing a leaf
      that was registered under the same name.
    - A leaf never replaces an existing directory, so a path that is both a
      file and a directory prefix yields the directory whatever the input
      order.
    """
    root: Dict[str, Any] = {}
    for path, payload in entries:
        parts = _segments(path)
        if not parts:
            continue
        level = root
        for part in parts[:-1]:
            nxt = level.get(part)
            if not isinstance(nxt, dict):
                nxt = {}
                level[part] = nxt
            level = nxt
        if isinstance(level.get(parts[-1]), dict):
            continue
        level[parts[-1]] = Leaf(payload)
    return _freeze(root)


def tree_from_plan(plan: AppPlan) -> Directory:
    return build_file_tree((f.path, f) for f in plan.file_structure)


def tree_for_project(project: Project) -> Directory:
    """Plan entries plus any file present in ``project.files`` but not in the plan."""
    planned = {f.path: f for f in project.plan.file_structure}
    extras = [FileDescriptor(path=p) for p in project.files if p not in planned]
    return build_file_tree([(f.path, f) for f in (*planned.values(), *extras)])


def _sort_key(item: Tuple[str, Node]) -> Tuple[int, str]:
    name, node = item
    return (0 if isinstance(node, Directory) else 1, name)


def sorted_children(directory: Directory) -> List[Tuple[str, Node]]:
    """Children in presentation order: directories before leaves, then by name."""
    return sorted(directory.children.items(), key=_sort_key)


def walk(directory: Directory, *, _depth: int = 0, _prefix: str = "") -> Iterator[TreeRow]:
    """Depth-first traversal in presentation order."""
    for name, node in sorted_children(directory):
        path = f"{_prefix}{name}"
        yield TreeRow(depth=_depth, name=name, path=path, node=node)
        if isinstance(node, Directory):
            yield from walk(node, _depth=_depth + 1, _prefix=f"{path}/")


def leaf_paths(directory: Directory) -> List[str]:
    return [row.path for row in walk(directory) if not row.is_dir]


def render_tree(directory: Directory, *, indent: str = "  ") -> str:
    lines = []
    for row in walk(directory):
        suffix = "/" if row.is_dir else ""
        lines.append(f"{indent * row.depth}{row.name}{suffix}")
    return "\n".join(lines)


__all__ = [
    "Directory",
    "Leaf",
    "Node",
    "TreeRow",
    "build_file_tree",
    "leaf_paths",
    "render_tree",
    "sorted_children",
    "tree_for_project",
    "tree_from_plan",
    "walk",
]

# appforge/reconcile.py
"""
Before/after comparison of file-content snapshots.

Equality is exact string identity. Callers that want whitespace- or
newline-insensitive comparison must normalise both snapshots first.
Deleted paths (present only in ``before``) are never reported.
"""
from __future__ import annotations

import difflib
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Mapping


def reconcile(before: Mapping[str, str], after: Mapping[str, str]) -> FrozenSet[str]:
    """Paths that exist in both snapshots and whose content differs."""
    return frozenset(p for p, old in before.items() if p in after and after[p] != old)


def added_paths(before: Mapping[str, str], after: Mapping[str, str]) -> FrozenSet[str]:
    """Paths that exist only in ``after``."""
    return frozenset(p for p in after if p not in before)


@dataclass(frozen=True)
class ChangeSet:
    changed: FrozenSet[str]
    added: FrozenSet[str]

    @property
    def is_empty(self) -> bool:
        return not (self.changed or self.added)

    def touched(self) -> FrozenSet[str]:
        return self.changed | self.added


def diff_snapshots(before: Mapping[str, str], after: Mapping[str, str]) -> ChangeSet:
    return ChangeSet(changed=reconcile(before, after), added=added_paths(before, after))


def unified_diff(before: Mapping[str, str], after: Mapping[str, str], paths: Iterable[str]) -> str:
    """Concatenated unified diffs for ``paths`` (added files diff against empty text)."""
    chunks = []
    for path in sorted(paths):
        old_text = before.get(path, "")
        new_text = after.get(path, "")
        lines = difflib.unified_diff(
            old_text.splitlines(keepends=True),
            new_text.splitlines(keepends=True),
            fromfile=f"a/{path}" if path in before else "/dev/null",
            tofile=f"b/{path}",
        )
        text = "".join(line if line.endswith("\n") else line + "\n" for line in lines)
        if text:
            chunks.append(text)
    return "".join(chunks)


__all__ = ["ChangeSet", "added_paths", "diff_snapshots", "reconcile", "unified_diff"]

# appforge/stream_parser.py
"""
Incremental parser for the file-block streaming protocol.

Wire format (repeatable, nothing else between blocks)::

    --FILE_START: <path>--
    <file content>
    --FILE_END--

Fragments arrive at arbitrary boundaries: a delimiter can be split across two
``feed`` calls and one fragment can close several files. The parser keeps a
single raw buffer and recomputes every emitted value from it, so each
``FileContentDelta`` is a full replacement of the file's content so far,
never an append instruction. No delta is emitted for a file until some of
its content has arrived.

Typical use::

    parser = StreamParser()
    for fragment in fragments:
        for event in parser.feed(fragment):
            state.apply(event)
    for event in parser.end():
        state.apply(event)
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Union

FILE_START = "--FILE_START:"
PATH_END = "--"
FILE_END = "--FILE_END--"


class StreamParserError(RuntimeError):
    """Misuse of the parser (e.g. feeding after end-of-stream)."""


@dataclass(frozen=True)
class FileContentDelta:
    path: str
    content_so_far: str


@dataclass(frozen=True)
class FileComplete:
    path: str
    final_content: str


@dataclass(frozen=True)
class StreamEnd:
    pass


StreamEvent = Union[FileContentDelta, FileComplete, StreamEnd]


def _partial_suffix_len(text: str, token: str) -> int:
    """Length of the longest suffix of ``text`` that is a proper prefix of ``token``."""
    for n in range(min(len(text), len(token) - 1), 0, -1):
        if text.endswith(token[:n]):
            return n
    return 0


class StreamParser:
    """Turns a fragment sequence into ``StreamEvent`` values.

    States: idle (``open_path is None``) and open (header parsed, content
    accumulating). The parser is single-consumer and must be fed in arrival
    order.

    ``accept_truncated`` controls what happens to a file still open at
    end-of-stream. With the default (lenient) policy its content is emitted as
    final; otherwise no ``FileComplete`` is emitted and the path is exposed via
    ``truncated_path``. The protocol carries no signal telling a model that
    omitted the terminator apart from one that was cut off.
    """

    def __init__(self, *, accept_truncated: bool = True) -> None:
        self.accept_truncated = accept_truncated
        self._buffer = ""
        self._open_path: Optional[str] = None
        self._files: Dict[str, str] = {}
        self._completed: List[str] = []
        self._opened = 0
        self._ended = False
        self.truncated_path: Optional[str] = None

    # ---------- inspection ----------

    @property
    def open_path(self) -> Optional[str]:
        return self._open_path

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def files(self) -> Dict[str, str]:
        """Final content of every completed file (later blocks for the same path win)."""
        return dict(self._files)

    @property
    def completed_paths(self) -> List[str]:
        """Paths in the order their ``FileComplete`` was emitted."""
        return list(self._completed)

    @property
    def is_empty(self) -> bool:
        """True when no file block was ever opened (no recognisable output)."""
        return self._opened == 0

    # ---------- driving ----------

    def feed(self, fragment: str) -> List[StreamEvent]:
        if self._ended:
            raise StreamParserError("feed() called after end()")
        if not fragment:
            return self._pending_delta()
        self._buffer += fragment

        events: List[StreamEvent] = []
        while True:
            if self._open_path is None:
                if not self._open_next():
                    break
            end = self._buffer.find(FILE_END)
            if end == -1:
                break
            events.append(self._complete(self._buffer[:end]))
            self._buffer = self._buffer[end + len(FILE_END):]

        events.extend(self._pending_delta())
        return events

    def end(self) -> List[StreamEvent]:
        """Signal end-of-stream; emits the final events exactly once."""
        if self._ended:
            raise StreamParserError("end() called twice")
        self._ended = True

        events: List[StreamEvent] = []
        if self._open_path is not None:
            if self.accept_truncated:
                events.append(self._complete(self._buffer))
            else:
                self.truncated_path = self._open_path
                self._open_path = None
        self._buffer = ""
        events.append(StreamEnd())
        return events

    # ---------- internals ----------

    def _open_next(self) -> bool:
        """Idle state: locate the next header. Returns True once a file is open."""
        start = self._buffer.find(FILE_START)
        if start == -1:
            # Only a tail that may still grow into a marker is worth keeping.
            keep = _partial_suffix_len(self._buffer, FILE_START)
            self._buffer = self._buffer[len(self._buffer) - keep:] if keep else ""
            return False

        # Commentary before the marker is not file content.
        self._buffer = self._buffer[start:]
        path_end = self._buffer.find(PATH_END, len(FILE_START))
        if path_end == -1:
            return False

        self._open_path = self._buffer[len(FILE_START):path_end].strip()
        self._buffer = self._buffer[path_end + len(PATH_END):]
        self._opened += 1
        return True

    def _complete(self, raw: str) -> FileComplete:
        path = self._open_path
        assert path is not None
        content = raw.strip()
        self._files[path] = content
        self._completed.append(path)
        self._open_path = None
        return FileComplete(path=path, final_content=content)

    def _pending_delta(self) -> List[StreamEvent]:
        if self._open_path is None:
            return []
        # Hold back a tail that may be the start of the terminator so that
        # successive deltas only ever grow.
        held = _partial_suffix_len(self._buffer, FILE_END)
        visible = self._buffer[: len(self._buffer) - held] if held else self._buffer
        content = visible.strip()
        if not content:
            # Nothing after the header yet; an empty delta would blank the file.
            return []
        return [FileContentDelta(path=self._open_path, content_so_far=content)]


def parse_stream(fragments: Iterable[str], *, accept_truncated: bool = True) -> Iterator[StreamEvent]:
    """Drive a parser over ``fragments`` and yield every event, ending with ``StreamEnd``."""
    parser = StreamParser(accept_truncated=accept_truncated)
    for fragment in fragments:
        yield from parser.feed(fragment)
    yield from parser.end()


def parse_text(text: str) -> Dict[str, str]:
    """Parse a complete protocol document in one go; returns ``{path: content}``."""
    parser = StreamParser()
    parser.feed(text)
    parser.end()
    return parser.files


__all__ = [
    "FILE_END",
    "FILE_START",
    "FileComplete",
    "FileContentDelta",
    "StreamEnd",
    "StreamEvent",
    "StreamParser",
    "StreamParserError",
    "parse_stream",
    "parse_text",
]

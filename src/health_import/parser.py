"""Incremental element parser for health export XML.

Feeds the byte stream chunk by chunk into an ``lxml`` pull parser running in
recover mode and turns it into a flat event stream:

- ``ElementOpened`` for each element start, in document order, with the local
  tag name and attribute keys lower-cased;
- ``MalformedFragment`` for each error the parser recorded while recovering.

Finished elements are cleared as soon as they close and their finished
siblings are detached, so no document tree accumulates: memory stays at one
element plus the chain of open ancestors.

libxml2 keeps going after some errors but silently stops producing events
after others (a stray end tag pops the root, content after the root halts
the push parser). So every fatal error is treated as the end of the current
parser: events from the offending line on are dropped, a fresh parser is
started behind a copy of the root start tag, and the bytes from the next
line onwards are fed to it again. Only the offending line is lost.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import IO, Iterator, Optional, Union
from xml.sax.saxutils import quoteattr

from lxml import etree as LET

logger = logging.getLogger("etl.health.parser")

DEFAULT_CHUNK_BYTES = 1 << 20

# wrapper used when the failure happens before the root element was seen
_RESUME_ROOT = b"<resume>"


@dataclass(frozen=True)
class ElementOpened:
    tag: str
    attrs: dict[str, str] = field(default_factory=dict)
    line: int | None = None


@dataclass(frozen=True)
class MalformedFragment:
    message: str
    line: int | None = None


ParseEvent = Union[ElementOpened, MalformedFragment]


@dataclass(frozen=True)
class _ParseError:
    line: int
    level: int
    type: Optional[int]
    message: str


def _lname(tag) -> str:
    if not isinstance(tag, str):
        # comments / processing instructions
        return ""
    return (tag.split("}", 1)[-1] if "}" in tag else tag).lower()


def _start_tag(elem) -> bytes:
    """Attribute-less copy of ``elem``'s start tag, with the namespaces in scope."""
    local = LET.QName(elem).localname
    parts = [f"{elem.prefix}:{local}" if elem.prefix else local]
    for prefix, uri in (elem.nsmap or {}).items():
        parts.append(f"{'xmlns:' + prefix if prefix else 'xmlns'}={quoteattr(uri)}")
    return ("<" + " ".join(parts) + ">").encode("utf-8")


def _new_parser() -> LET.XMLPullParser:
    return LET.XMLPullParser(
        events=("start", "end"),
        recover=True,
        huge_tree=True,
        resolve_entities=False,
        no_network=True,
        remove_comments=True,
        remove_pis=True,
    )


class ElementStream:
    """Iterate parse events over a binary stream.

    ``malformed`` counts recovered errors seen so far; ``restarts`` counts how
    often the underlying parser was replaced after a fatal error. Event and
    error line numbers refer to the whole input, across restarts.
    """

    def __init__(self, stream: IO[bytes], chunk_bytes: int = DEFAULT_CHUNK_BYTES):
        self._stream = stream
        self._chunk_bytes = max(1, int(chunk_bytes))
        self._parser = _new_parser()
        self._errors_seen = 0
        # line of the next byte read from the stream
        self._line = 1
        # input line that line 1 of the current parser corresponds to
        self._parser_line = 1
        # last two fed segments as (first line, bytes); restarts re-feed from here
        self._window: deque[tuple[int, bytes]] = deque(maxlen=2)
        self._root_tag: Optional[bytes] = None
        self._skip_wrapper = False
        self._skip_line = False
        self._last_line = 0
        self._replay_floor = 0
        self._last_restart_line = 0
        self.malformed = 0
        self.restarts = 0

    def __iter__(self) -> Iterator[ParseEvent]:
        while True:
            # I/O errors from the stream are fatal and propagate
            chunk = self._stream.read(self._chunk_bytes)
            if not chunk:
                break
            if self._skip_line:
                # rest of an offending line that ran past the previous chunk
                cut = chunk.find(b"\n")
                if cut < 0:
                    continue
                chunk = chunk[cut + 1:]
                self._line += 1
                self._parser_line = self._line
                self._skip_line = False
                if not chunk:
                    continue
            self._window.append((self._line, chunk))
            self._line += chunk.count(b"\n")
            yield from self._parse(chunk)
        yield from self._close()

    def _parse(self, data: bytes) -> Iterator[ParseEvent]:
        while data:
            errors: list[_ParseError] = []
            try:
                self._parser.feed(data)
            except LET.XMLSyntaxError as e:
                errors.append(_ParseError(self._input_line(getattr(e, "lineno", 0)),
                                          LET.ErrorLevels.FATAL, None, str(e)))
            opened = list(self._read_events())
            errors[:0] = self._new_errors()

            fatal_at = next((i for i, err in enumerate(errors) if err.level >= LET.ErrorLevels.FATAL), None)
            if fatal_at is None:
                yield from self._emit(opened)
                for err in errors:
                    yield self._malformed(err.message, err.line)
                return

            fatal = errors[fatal_at]
            yield from self._emit(ev for ev in opened if ev.line is None or ev.line < fatal.line)
            # later errors are side effects of the parser's own recovery
            for err in errors[:fatal_at + 1]:
                yield self._malformed(err.message, err.line)
            data = self._restart(fatal)

    def _read_events(self) -> Iterator[ElementOpened]:
        for action, elem in self._parser.read_events():
            if action == "start":
                if self._skip_wrapper:
                    self._skip_wrapper = False
                    continue
                tag = _lname(elem.tag)
                if not tag:
                    continue
                if self._root_tag is None:
                    self._root_tag = _start_tag(elem)
                line = self._input_line(elem.sourceline) if elem.sourceline else None
                if line is not None and line <= self._replay_floor:
                    continue
                attrs = {_lname(k): v for k, v in elem.attrib.items()}
                yield ElementOpened(tag, attrs, line)
            else:
                elem.clear(keep_tail=False)
                # drop siblings that already finished
                while elem.getprevious() is not None:
                    del elem.getparent()[0]

    def _emit(self, events) -> Iterator[ElementOpened]:
        for ev in events:
            if ev.line is not None:
                self._last_line = ev.line
            yield ev

    def _new_errors(self) -> list[_ParseError]:
        # feed_error_log, not error_log: the latter belongs to parse(), not feed()
        log = self._parser.feed_error_log
        if len(log) <= self._errors_seen:
            return []
        entries = list(log)[self._errors_seen:]
        self._errors_seen = len(log)
        return [
            _ParseError(self._input_line(entry.line), entry.level, entry.type, entry.message)
            for entry in entries
            if entry.level >= LET.ErrorLevels.ERROR
        ]

    def _input_line(self, parser_line: Optional[int]) -> int:
        if not parser_line or parser_line < 1:
            return self._line
        return parser_line + self._parser_line - 1

    def _malformed(self, message: str, line: int | None) -> MalformedFragment:
        self.malformed += 1
        logger.warning("malformed XML fragment near line %s: %s", line, (message or "").strip())
        return MalformedFragment((message or "").strip(), line)

    def _restart(self, fatal: _ParseError) -> bytes:
        """Replace the parser and return the bytes to feed it again.

        Content after the root element is valid where it starts, so it is
        re-read from its own line; any other error skips the rest of its line.
        """
        resume = fatal.line + 1
        if fatal.type == LET.ErrorTypes.ERR_DOCUMENT_END and fatal.line > self._last_restart_line:
            resume = fatal.line
        resume = max(resume, self._last_restart_line + 1)
        tail, resume = self._tail_from(resume)

        self.restarts += 1
        self._last_restart_line = resume
        logger.info("restarting XML parser at line %d after fatal error (restart #%d)", resume, self.restarts)
        self._parser = _new_parser()
        self._errors_seen = 0
        self._replay_floor = self._last_line
        self._parser.feed(self._root_tag or _RESUME_ROOT)
        self._skip_wrapper = True
        self._window.clear()
        if tail is None:
            self._skip_line = True
            return b""
        self._parser_line = resume
        if tail:
            self._window.append((resume, tail))
        return tail

    def _tail_from(self, resume: int) -> tuple[Optional[bytes], int]:
        """Bytes of the fed window from the start of line ``resume``.

        None means that line has not been read yet.
        """
        if not self._window:
            return None, resume
        first = self._window[0][0]
        buf = b"".join(seg for _, seg in self._window)
        if resume <= first:
            return buf, first
        pos = 0
        for _ in range(resume - first):
            nl = buf.find(b"\n", pos)
            if nl < 0:
                return None, resume
            pos = nl + 1
        return buf[pos:], resume

    def _close(self) -> Iterator[ParseEvent]:
        try:
            self._parser.close()
        except LET.XMLSyntaxError as e:
            yield from self._emit(self._read_events())
            yield self._malformed(str(e), self._input_line(getattr(e, "lineno", 0)))
            return
        yield from self._emit(self._read_events())
        for err in self._new_errors():
            yield self._malformed(err.message, err.line)


def iter_elements(stream: IO[bytes], chunk_bytes: int = DEFAULT_CHUNK_BYTES) -> Iterator[ParseEvent]:
    """Convenience wrapper: ``ElementStream(stream, chunk_bytes)`` as a plain iterator."""
    return iter(ElementStream(stream, chunk_bytes))

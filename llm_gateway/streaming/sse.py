"""Server-sent event parsing and framing."""

import json
from collections.abc import AsyncGenerator, Iterable
from contextlib import aclosing
from dataclasses import dataclass

DONE_SENTINEL = "[DONE]"
DONE_FRAME = f"data: {DONE_SENTINEL}\n\n"


@dataclass(frozen=True)
class SSEEvent:
    event: str | None
    data: str

    @property
    def is_done(self) -> bool:
        return self.data.strip() == DONE_SENTINEL


class _EventBuilder:
    def __init__(self) -> None:
        self.event: str | None = None
        self.data_lines: list[str] = []

    def feed(self, raw_line: str) -> SSEEvent | None:
        line = raw_line.rstrip("\r")
        if not line:
            return self.flush()
        if line.startswith(":"):
            return None
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self.event = value
        elif field == "data":
            self.data_lines.append(value)
        return None

    def flush(self) -> SSEEvent | None:
        if self.event is None and not self.data_lines:
            return None
        event = SSEEvent(event=self.event, data="\n".join(self.data_lines))
        self.event = None
        self.data_lines = []
        return event


async def iter_sse_events(
    lines: AsyncGenerator[str, None],
) -> AsyncGenerator[SSEEvent, None]:
    """Group raw lines into events; a blank line ends each event.

    Closing this iterator closes ``lines`` as well, releasing the upstream
    connection.
    """
    builder = _EventBuilder()
    async with aclosing(lines):
        async for line in lines:
            event = builder.feed(line)
            if event is not None:
                yield event
    tail = builder.flush()
    if tail is not None:
        yield tail


def parse_sse_events(lines: Iterable[str]) -> list[SSEEvent]:
    builder = _EventBuilder()
    events: list[SSEEvent] = []
    for line in lines:
        event = builder.feed(line)
        if event is not None:
            events.append(event)
    tail = builder.flush()
    if tail is not None:
        events.append(tail)
    return events


def format_sse(payload: dict[str, object]) -> str:
    return f"data: {json.dumps(payload, separators=(',', ':'))}\n\n"

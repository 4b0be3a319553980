"""
Decoder for the ``<|stats|>{json}<|/stats|>`` block the upstream appends to its text stream.

One-shot mode works on a complete body, incremental mode on a growing buffer fed by
successive upstream reads, where a marker may straddle two reads.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

STATS_START = "<|stats|>"
STATS_END = "<|/stats|>"
# 未出现起始标记时保留的尾部长度，防止标记被拆在两次读取之间
MARKER_LOOKBEHIND = len(STATS_START) - 1


def _parse_stats_json(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        return None


def parse_stats_sentinel(text: str) -> tuple[str, Any]:
    """Strip the stats block from a complete body; returns ``(text, stats)``.

    The last occurrence of each marker wins, so literal markers quoted earlier in
    the prose are left alone.
    """
    start = text.rfind(STATS_START)
    end = text.rfind(STATS_END)
    if start == -1 or end == -1 or end < start:
        return text, None

    before = text[:start]
    stats_raw = text[start + len(STATS_START):end]
    after = text[end + len(STATS_END):]
    return before + after, _parse_stats_json(stats_raw)


class SentinelState(str, Enum):
    NONE = "none"
    NEED_MORE = "need_more"
    CONSUMED = "consumed"


@dataclass(slots=True)
class SentinelStep:
    state: SentinelState
    prose: str
    pending: str
    stats: Any = None


def decode_stats_step(buffer: str) -> SentinelStep:
    """Run one incremental decode step over ``buffer``.

    ``prose`` is text confirmed to lie outside any stats block, ``pending`` is what
    the caller must keep. On CONSUMED the caller should call again with ``pending``.
    """
    start = buffer.find(STATS_START)
    if start == -1:
        return SentinelStep(state=SentinelState.NONE, prose="", pending=buffer)

    prose = buffer[:start]
    end = buffer.find(STATS_END, start + len(STATS_START))
    if end == -1:
        return SentinelStep(state=SentinelState.NEED_MORE, prose=prose, pending=buffer[start:])

    stats_raw = buffer[start + len(STATS_START):end]
    return SentinelStep(
        state=SentinelState.CONSUMED,
        prose=prose,
        pending=buffer[end + len(STATS_END):],
        stats=_parse_stats_json(stats_raw),
    )


class StatsStreamDecoder:
    """Stateful driver for :func:`decode_stats_step` over a text stream."""

    def __init__(self) -> None:
        self._pending = ""
        self.stats: Any = None

    @property
    def pending(self) -> str:
        return self._pending

    def _drain(self) -> list[str]:
        pieces: list[str] = []
        while True:
            step = decode_stats_step(self._pending)
            if step.prose:
                pieces.append(step.prose)
            self._pending = step.pending
            if step.state is not SentinelState.CONSUMED:
                return pieces
            if step.stats is not None:
                self.stats = step.stats

    def feed(self, text: str) -> list[str]:
        """Append ``text`` and return the prose pieces that are now safe to emit."""
        self._pending += text
        pieces = self._drain()
        if len(self._pending) > MARKER_LOOKBEHIND and STATS_START not in self._pending:
            cut = len(self._pending) - MARKER_LOOKBEHIND
            pieces.append(self._pending[:cut])
            self._pending = self._pending[cut:]
        return pieces

    def finish(self, tail: str = "") -> list[str]:
        """Resolve whatever is left once the upstream stream has ended."""
        self._pending += tail
        pieces = self._drain()
        if self._pending:
            pieces.append(self._pending)
            self._pending = ""
        return pieces

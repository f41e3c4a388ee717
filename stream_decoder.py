"""
stream_decoder.py — turn raw response bytes into event envelopes.

Wire format (one frame per line):

    data: {"type": "node_start", "node": "vision", "message": "...", "timestamp": "..."}\n

Decoding rules:
  • Chunk boundaries are arbitrary. Bytes go through an incremental UTF-8
    decoder, so a multi-byte character split across two chunks is held and
    completed by the next one instead of being dropped or mangled.
  • Decoded text is appended to a carried buffer and split on "\n". The last
    segment (possibly incomplete) becomes the new buffer.
  • Only lines with the `data:` field are frames (one optional space after the
    colon is stripped). Anything else (comments, `event:` lines, blank
    keep-alives) is ignored.
  • A frame whose payload is not valid JSON, or not a recognised envelope, is
    dropped on its own; decoding carries on with the next line.
  • When the transport finishes, whatever is left in the buffer is an
    unterminated line and is discarded, never parsed.
"""
from __future__ import annotations

import codecs
import json
import logging
from contextlib import aclosing
from typing import AsyncIterable, AsyncIterator, Optional

from cancel_token import CancelToken
from errors import ProtocolError
from models import Envelope, envelope_from_dict

logger = logging.getLogger(__name__)

FRAME_FIELD = "data:"


def parse_line(line: str) -> Optional[Envelope]:
    """
    Parse one complete line. Returns None for non-frame lines and for
    malformed frames (which are logged and skipped).
    """
    if not line.startswith(FRAME_FIELD):
        return None
    payload = line[len(FRAME_FIELD):]
    if payload.startswith(" "):
        payload = payload[1:]
    try:
        return envelope_from_dict(json.loads(payload))
    except (ValueError, ProtocolError) as exc:
        logger.debug("Dropping malformed frame (%s): %.200s", exc, line)
        return None


class StreamDecoder:
    """Stateful line-framed decoder. Feed it chunks in arrival order."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self.dropped = 0

    @property
    def pending(self) -> str:
        """Text received after the last newline."""
        return self._buffer

    def feed(self, chunk: bytes) -> list[Envelope]:
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")

        envelopes: list[Envelope] = []
        for line in lines:
            envelope = parse_line(line)
            if envelope is not None:
                envelopes.append(envelope)
            elif line.startswith(FRAME_FIELD):
                self.dropped += 1
        return envelopes

    def close(self) -> None:
        """End of transport: discard any unterminated trailing line."""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        if tail.strip():
            logger.debug("Discarding unterminated trailing line: %.200s", tail)
        self._buffer = ""
        self._decoder.reset()


async def decode_stream(
    chunks: AsyncIterable[bytes],
    cancel_token: CancelToken,
) -> AsyncIterator[Envelope]:
    """
    Yield envelopes from `chunks` in arrival order.

    The token is checked before every chunk and before every envelope, so
    nothing is yielded once it is cancelled, even if the transport keeps
    delivering bytes. A transport error is re-raised once; if the token was
    cancelled the generator simply ends instead.
    """
    decoder = StreamDecoder()
    try:
        async with _closing(chunks) as source:
            async for chunk in source:
                if cancel_token.cancelled:
                    return
                for envelope in decoder.feed(chunk):
                    if cancel_token.cancelled:
                        return
                    yield envelope
    except Exception:
        if cancel_token.cancelled:
            logger.debug("Stream error after cancellation ignored")
            return
        raise
    finally:
        decoder.close()
        if decoder.dropped:
            logger.warning("Dropped %d malformed frame(s)", decoder.dropped)


def _closing(chunks: AsyncIterable[bytes]):
    """aclosing() for async generators; a no-op wrapper for plain iterables."""
    if hasattr(chunks, "aclose"):
        return aclosing(chunks)
    return _Passthrough(chunks)


class _Passthrough:

    def __init__(self, chunks: AsyncIterable[bytes]) -> None:
        self._chunks = chunks

    async def __aenter__(self) -> AsyncIterable[bytes]:
        return self._chunks

    async def __aexit__(self, *exc) -> bool:
        return False

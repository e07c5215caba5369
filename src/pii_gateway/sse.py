"""SSE stream rewriter — restores placeholders in streamed chat completions.

Upstream emits OpenAI-style events:

    data: {"id": ..., "choices": [{"index": 0, "delta": {"content": "Hi «PER"}}]}

    data: {"id": ..., "choices": [{"index": 0, "delta": {"content": "SON_001»"}}]}

    data: [DONE]

Only ``choices[0].delta.content`` is rewritten.  Every other line goes
out byte-identical: the ``[DONE]`` sentinel, role/tool-call/finish events,
comments, blank lines, and lines that aren't valid JSON.

Usage:
    async for chunk in unmask_sse_stream(upstream.aiter_bytes(), vault, config):
        yield chunk
"""

from __future__ import annotations
import codecs
import json
import logging
import time
from typing import Any, AsyncIterable, AsyncIterator

from .masking import (
    MaskingConfig,
    flush_redaction_buffer,
    flush_stream_buffer,
    unmask_stream_chunk,
    unredact_stream_chunk,
)
from .vault import Vault

logger = logging.getLogger(__name__)

_DATA_PREFIX = "data:"
_DONE = "[DONE]"


def _parse_event(payload: str) -> Any | None:
    """Parse a data payload; None if it isn't JSON."""
    try:
        return json.loads(payload)
    except ValueError:
        return None


def _content_delta(event: Any) -> dict[str, Any] | None:
    """Return ``choices[0].delta`` if it carries non-empty string content."""
    if not isinstance(event, dict):
        return None
    choices = event.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return delta if isinstance(content, str) and content else None


def _frame(event: dict[str, Any], eol: str = "\n") -> str:
    return f"{_DATA_PREFIX} {json.dumps(event, ensure_ascii=False, separators=(',', ':'))}{eol}"


def _final_event(content: str) -> dict[str, Any]:
    now = time.time()
    return {
        "id": f"flush-{int(now * 1000)}",
        "object": "chat.completion.chunk",
        "created": int(now),
        "choices": [
            {"index": 0, "delta": {"content": content}, "finish_reason": None},
        ],
    }


class SSEUnmasker:
    """Per-stream rewrite state.  Feed upstream bytes, get client bytes.

    Holds three things between chunks: an incomplete trailing line (until
    its newline arrives), and one carry-over buffer each for PII and
    secrets placeholders.  The carry-over buffers never exceed the token
    grammar's ``max_length``.
    """

    __slots__ = (
        "_pii_vault", "_config", "_secrets_vault", "_decoder",
        "_line", "_pii_buffer", "_secrets_buffer", "_skip_blank", "_in_event",
    )

    def __init__(
        self,
        pii_vault: Vault | None,
        config: MaskingConfig | None = None,
        secrets_vault: Vault | None = None,
    ) -> None:
        self._pii_vault = pii_vault
        self._config = config or MaskingConfig()
        self._secrets_vault = secrets_vault
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._line = ""
        self._pii_buffer = ""
        self._secrets_buffer = ""
        self._skip_blank = False
        self._in_event = False     # last emitted line left an event open

    def feed(self, chunk: bytes) -> bytes:
        """Process one upstream chunk, return bytes ready for the client."""
        text = self._line + self._decoder.decode(chunk)
        *lines, self._line = text.split("\n")
        return "".join(self._process_line(line, "\n") for line in lines).encode("utf-8")

    def flush(self) -> bytes:
        """End of stream: process any unterminated line, then emit held content."""
        tail = self._line + self._decoder.decode(b"", final=True)
        self._line = ""
        out = self._process_line(tail, "\n") if tail else ""

        held = self._flush_buffers()
        if held:
            logger.debug("Flushing %d held characters at end of stream", len(held))
            if self._in_event:
                # Close the upstream's last event so ours parses on its own
                out += "\n"
            out += _frame(_final_event(held), "\n\n")
        return out.encode("utf-8")

    # ------------------------------------------------------------------

    def _process_line(self, line: str, eol: str) -> str:
        out = self._rewrite_line(line, eol)
        if out:
            self._in_event = out.strip("\r\n") != ""
        return out

    def _rewrite_line(self, line: str, eol: str) -> str:
        if line.endswith("\r"):
            line, eol = line[:-1], "\r" + eol

        if self._skip_blank:
            # Separator of a data line we swallowed
            self._skip_blank = False
            if not line:
                return ""

        if not line.startswith(_DATA_PREFIX):
            return line + eol

        payload = line[len(_DATA_PREFIX):]
        if payload.startswith(" "):
            payload = payload[1:]
        if payload == _DONE:
            return line + eol

        event = _parse_event(payload)
        if event is None:
            logger.debug("Passing through unparseable SSE data line")
            return line + eol

        delta = _content_delta(event)
        if delta is None:
            return line + eol

        content = self._unmask(delta["content"])
        if not content:
            # Everything was held back; nothing to send for this event yet
            self._skip_blank = True
            return ""

        delta["content"] = content
        return _frame(event, eol)

    def _unmask(self, content: str) -> str:
        # PII first: secrets unredaction only ever sees PII-restored text
        if self._pii_vault is not None:
            result = unmask_stream_chunk(self._pii_buffer, content, self._pii_vault, self._config)
            self._pii_buffer = result.remaining_buffer
            content = result.output

        if self._secrets_vault is not None and content:
            result = unredact_stream_chunk(self._secrets_buffer, content, self._secrets_vault)
            self._secrets_buffer = result.remaining_buffer
            content = result.output

        return content

    def _flush_buffers(self) -> str:
        # The secrets buffer holds text that precedes the PII buffer, so the
        # flushed PII text goes through secrets unredaction behind it.
        if self._pii_vault is not None:
            text = flush_stream_buffer(self._pii_buffer, self._pii_vault, self._config)
        else:
            text = self._pii_buffer
        text = self._secrets_buffer + text
        if self._secrets_vault is not None:
            text = flush_redaction_buffer(text, self._secrets_vault)

        self._pii_buffer = ""
        self._secrets_buffer = ""
        return text


async def unmask_sse_stream(
    source: AsyncIterable[bytes],
    pii_vault: Vault | None,
    config: MaskingConfig | None = None,
    secrets_vault: Vault | None = None,
) -> AsyncIterator[bytes]:
    """Wrap an upstream SSE byte stream, restoring placeholders as they complete.

    Pulls one chunk at a time, so it never reads ahead of the consumer.  An
    upstream error propagates as-is and held content is dropped.  Closing
    this generator closes ``source`` too, when it supports ``aclose()``.
    """
    unmasker = SSEUnmasker(pii_vault, config, secrets_vault)
    try:
        async for chunk in source:
            if isinstance(chunk, str):
                chunk = chunk.encode("utf-8")
            out = unmasker.feed(bytes(chunk))
            if out:
                yield out

        tail = unmasker.flush()
        if tail:
            yield tail
    finally:
        aclose = getattr(source, "aclose", None)
        if aclose is not None:
            await aclose()

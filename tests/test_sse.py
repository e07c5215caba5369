"""Tests for the SSE stream rewriter."""

import json

import pytest

from pii_gateway.masking import MaskingConfig
from pii_gateway.sse import SSEUnmasker, unmask_sse_stream
from pii_gateway.vault import SECRET_TOKEN_FORMAT, Vault


def _event(content=None, **delta) -> bytes:
    if content is not None:
        delta["content"] = content
    event = {
        "id": "chatcmpl-1",
        "object": "chat.completion.chunk",
        "created": 1700000000,
        "choices": [{"index": 0, "delta": delta, "finish_reason": None}],
    }
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n".encode("utf-8")


DONE = b"data: [DONE]\n\n"


def _events(raw: bytes) -> list[dict]:
    events = []
    for line in raw.decode("utf-8").split("\n"):
        if line.startswith("data: ") and line != "data: [DONE]":
            events.append(json.loads(line[len("data: "):]))
    return events


def _content(raw: bytes) -> str:
    return "".join(e["choices"][0]["delta"].get("content", "") for e in _events(raw))


def _vaults() -> tuple[Vault, Vault]:
    pii = Vault()
    pii.mask("Zoë Müller", "PERSON")
    pii.mask("zoe@example.com", "EMAIL_ADDRESS")
    secrets = Vault(SECRET_TOKEN_FORMAT)
    secrets.mask("sk-proj-abcdefghijklmnopqrstuvwx", "API_KEY_OPENAI")
    return pii, secrets


def _run(unmasker: SSEUnmasker, chunks: list[bytes]) -> bytes:
    return b"".join(unmasker.feed(c) for c in chunks) + unmasker.flush()


async def _source(chunks):
    for chunk in chunks:
        yield chunk


async def _collect(stream) -> bytes:
    return b"".join([chunk async for chunk in stream])


# ── Round trip ───────────────────────────────────────────────────────

STREAM = (
    _event(role="assistant")
    + _event("Café for «PERSON_0")
    + _event("01», mail «EMAIL_ADDRESS_001» and key [[SECRET_")
    + _event("API_KEY_OPENAI_001]] done")
    + DONE
)
EXPECTED = "Café for Zoë Müller, mail zoe@example.com and key sk-proj-abcdefghijklmnopqrstuvwx done"


def test_every_byte_split_round_trips():
    pii, secrets = _vaults()
    for i in range(len(STREAM) + 1):
        out = _run(SSEUnmasker(pii, MaskingConfig(), secrets), [STREAM[:i], STREAM[i:]])
        assert _content(out) == EXPECTED, i
        assert out.endswith(DONE), i


def test_single_byte_chunks_round_trip():
    pii, secrets = _vaults()
    out = _run(SSEUnmasker(pii, None, secrets), [STREAM[i:i + 1] for i in range(len(STREAM))])
    assert _content(out) == EXPECTED


@pytest.mark.asyncio
async def test_async_stream_round_trips():
    pii, secrets = _vaults()
    chunks = [STREAM[i:i + 7] for i in range(0, len(STREAM), 7)]
    out = await _collect(unmask_sse_stream(_source(chunks), pii, MaskingConfig(), secrets))
    assert _content(out) == EXPECTED


def test_modified_event_keeps_envelope():
    pii, _ = _vaults()
    out = _run(SSEUnmasker(pii), [_event("Hi «PERSON_001»")])
    (event,) = _events(out)
    assert event["id"] == "chatcmpl-1"
    assert event["created"] == 1700000000
    assert event["choices"][0] == {
        "index": 0, "delta": {"content": "Hi Zoë Müller"}, "finish_reason": None,
    }
    assert out.endswith(b"\n\n")


def test_markers_applied_to_pii():
    pii, _ = _vaults()
    out = _run(SSEUnmasker(pii, MaskingConfig(show_markers=True)), [_event("«PERSON_001»")])
    assert _content(out) == "[protected]Zoë Müller"


# ── Buffering and flush ──────────────────────────────────────────────

def test_fully_held_event_is_suppressed():
    pii, _ = _vaults()
    unmasker = SSEUnmasker(pii)
    assert unmasker.feed(_event("«PERS")) == b""
    out = unmasker.feed(_event("ON_001»!"))
    assert _content(out) == "Zoë Müller!"


def test_flush_emits_one_final_event():
    pii, _ = _vaults()
    unmasker = SSEUnmasker(pii)
    unmasker.feed(_event("Bye «PERSON_00"))
    tail = unmasker.flush()

    (event,) = _events(tail)
    assert event["id"].startswith("flush-")
    assert event["object"] == "chat.completion.chunk"
    assert event["choices"] == [{"index": 0, "delta": {"content": "«PERSON_00"}, "finish_reason": None}]
    assert tail.endswith(b"\n\n")


def test_flush_with_nothing_held_is_empty():
    pii, _ = _vaults()
    unmasker = SSEUnmasker(pii)
    unmasker.feed(_event("all done") + DONE)
    assert unmasker.flush() == b""


def test_flush_keeps_stream_order_across_buffers():
    pii, secrets = _vaults()
    unmasker = SSEUnmasker(pii, None, secrets)
    first = unmasker.feed(_event("key [[SECRET_API"))
    assert _content(first) == "key "
    assert unmasker.feed(_event("«PER")) == b""
    assert _content(unmasker.flush()) == "[[SECRET_API«PER"


def test_unterminated_last_line_is_processed():
    pii, _ = _vaults()
    raw = _event("«PERSON_001»").rstrip(b"\n")
    out = _run(SSEUnmasker(pii), [raw])
    assert _content(out) == "Zoë Müller"
    assert out.endswith(b"}\n")


def _all_data_lines_parse(raw: bytes) -> None:
    for line in raw.decode("utf-8").split("\n"):
        if line.startswith("data:") and line != "data: [DONE]":
            json.loads(line[len("data:"):])


def test_unterminated_tail_is_closed_before_final_event():
    pii, _ = _vaults()
    unmasker = SSEUnmasker(pii)
    out = unmasker.feed(_event("Hi «PERS"))
    out += unmasker.feed(_event("ON_001» and «PER").rstrip(b"\n"))
    out += unmasker.flush()

    _all_data_lines_parse(out)
    assert _content(out) == "Hi Zoë Müller and «PER"
    assert len(_events(out)) == 3
    assert out.endswith(b"\n\n")


def test_unterminated_done_is_closed_before_final_event():
    pii, _ = _vaults()
    unmasker = SSEUnmasker(pii)
    out = unmasker.feed(_event("Bye «PER") + b"data: [DONE]") + unmasker.flush()

    assert b"[DONE]data" not in out
    assert b"data: [DONE]\n\ndata: {" in out
    _all_data_lines_parse(out)
    assert _content(out) == "Bye «PER"


# ── Pass-through ─────────────────────────────────────────────────────

def test_pass_through_is_byte_identical():
    pii, _ = _vaults()
    raw = (
        b": keep-alive\n\n"
        + b"data: {not json\n\n"
        + b'data: {"choices": [{"index": 0, "delta": {"role": "assistant"}}]}\n\n'
        + b'data: {"choices": [{"index": 0, "delta": {"content": ""}, "finish_reason": "stop"}]}\n\n'
        + b"event: ping\r\ndata: [DONE]\r\n\r\n"
    )
    assert _run(SSEUnmasker(pii), [raw[:10], raw[10:]]) == raw


def test_data_prefix_without_space():
    pii, _ = _vaults()
    raw = b'data:{"choices":[{"index":0,"delta":{"content":"\xc2\xab' + b'PERSON_001\xc2\xbb"}}]}\n\n'
    assert _content(_run(SSEUnmasker(pii), [raw])) == "Zoë Müller"


def test_no_contexts_keeps_content():
    out = _run(SSEUnmasker(None), [_event("«PERSON_001»"), DONE])
    assert _content(out) == "«PERSON_001»"


# ── Errors and cancellation ──────────────────────────────────────────

@pytest.mark.asyncio
async def test_upstream_error_propagates_without_flush():
    pii, _ = _vaults()

    async def failing():
        yield _event("ok «PERSON_0")
        raise ConnectionError("upstream reset")

    received = []
    with pytest.raises(ConnectionError):
        async for chunk in unmask_sse_stream(failing(), pii):
            received.append(chunk)
    assert _content(b"".join(received)) == "ok "
    assert b"flush-" not in b"".join(received)


@pytest.mark.asyncio
async def test_consumer_close_releases_source():
    pii, _ = _vaults()
    closed = []

    async def endless():
        try:
            while True:
                yield _event("tick ")
        finally:
            closed.append(True)

    stream = unmask_sse_stream(endless(), pii)
    assert _content(await stream.__anext__()) == "tick "
    await stream.aclose()
    assert closed == [True]
